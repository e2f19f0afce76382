"""Haystack Python Client - async HTTP client for Haystack record servers."""

from .client import Client
from .config import DEFAULT_POLL_RATE_SECS, MIN_POLL_RATE_SECS, ClientServiceConfig
from .errors import (
    HaystackError,
    TransportError,
    ConnectionError,
    HttpError,
    NotFoundError,
    ApiError,
    SubscriptionLostError,
    ClosedError,
)
from .models import (
    Grid,
    ReadOptions,
    DuplicateOptions,
    WatchOpenResult,
    WatchPollResult,
    record_id,
    to_ids,
)
from .records import RecordService
from .roles import RolesService
from .watches import ApiSubject, BatchSubject, HttpWatchApis, Watch, WatchService

__version__ = "0.1.0"
__all__ = [
    "Client",
    "ClientServiceConfig",
    "DEFAULT_POLL_RATE_SECS",
    "MIN_POLL_RATE_SECS",
    "HaystackError",
    "TransportError",
    "ConnectionError",
    "HttpError",
    "NotFoundError",
    "ApiError",
    "SubscriptionLostError",
    "ClosedError",
    "Grid",
    "ReadOptions",
    "DuplicateOptions",
    "WatchOpenResult",
    "WatchPollResult",
    "record_id",
    "to_ids",
    "RecordService",
    "RolesService",
    "ApiSubject",
    "BatchSubject",
    "HttpWatchApis",
    "Watch",
    "WatchService",
]
