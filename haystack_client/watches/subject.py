"""The subject contract shared by every watch.

A subject mediates one server subscription on behalf of many watches. Ids
are reference counted: each occurrence passed to ``add_ids`` is one
reference and each occurrence passed to ``remove_ids`` releases one. The
network only hears about an id when its first reference is taken or its
last one released.
"""

from enum import Enum
from typing import Iterable, Protocol, runtime_checkable

from ..errors import SubscriptionLostError
from ..models import Grid


class SubjectState(Enum):
    UNOPENED = "unopened"
    OPEN = "open"
    LOST = "lost"
    CLOSED = "closed"


class SubjectObserver(Protocol):
    """Receives the changes a subject fetches."""

    def on_update(self, changed: Grid) -> None:
        """Called with the records that changed, in the order received."""
        ...

    def on_lost(self, error: SubscriptionLostError) -> None:
        """Called once when the server drops the subscription."""
        ...


@runtime_checkable
class Subject(Protocol):
    """Add ids, remove ids, poll and close a shared subscription.

    ``add_ids`` and ``remove_ids`` take a multiset of references: every
    occurrence of an id is one reference, so the same id may appear more than
    once in a call. The server only hears about an id when its count goes
    from zero to one, or back to zero.

    Once closed, every coroutine other than ``close`` raises ``ClosedError``.
    """

    @property
    def closed(self) -> bool: ...

    @property
    def ids(self) -> list[str]:
        """Ids currently referenced, in the order first added."""
        ...

    @property
    def grid(self) -> Grid:
        """Latest known record of every referenced id."""
        ...

    @property
    def poll_rate(self) -> float: ...

    def subscribe(self, observer: SubjectObserver) -> None: ...

    def unsubscribe(self, observer: SubjectObserver) -> None: ...

    async def add_ids(self, ids: Iterable[str]) -> None:
        """Take one reference per occurrence of each id."""
        ...

    async def remove_ids(self, ids: Iterable[str]) -> None:
        """Release one reference per occurrence of each id."""
        ...

    async def poll(self) -> Grid:
        """Poll for records changed since the last poll."""
        ...

    async def refresh(self) -> Grid:
        """Fetch every referenced record again, bypassing the incremental poll."""
        ...

    async def close(self) -> None:
        """Release the subscription. Repeated calls are no-ops."""
        ...
