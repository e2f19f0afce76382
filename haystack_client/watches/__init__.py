"""Watches: live views of records over a shared server subscription."""

from .api_subject import ApiSubject
from .apis import HttpWatchApis, WatchApis
from .batch_subject import BatchSubject
from .service import WatchService
from .subject import Subject, SubjectObserver, SubjectState
from .watch import Watch, WatchListener

__all__ = [
    "ApiSubject",
    "BatchSubject",
    "HttpWatchApis",
    "Subject",
    "SubjectObserver",
    "SubjectState",
    "Watch",
    "WatchApis",
    "WatchListener",
    "WatchService",
]
