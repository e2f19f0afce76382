"""The watch handle given to application code."""

from typing import Callable, Iterable, Optional, Union
import asyncio
import logging

from ..errors import ClosedError, SubscriptionLostError
from ..models import Grid, IdLike, Record, is_removed, record_id, to_ids
from .subject import Subject

logger = logging.getLogger(__name__)

WatchListener = Callable[["Watch", Grid], None]


class Watch:
    """A live view of a set of records.

    Watches opened on the same subject share its server subscription. Each
    watch keeps its own ids and its own snapshot of their records, which is
    updated whenever the subject fetches changes.

    Example:
        >>> watch = await Watch.open(subject, ["site-1", "site-2"], "sites")
        >>> watch.add_listener(lambda w, changed: print(changed.ids()))
        >>> await watch.close()
    """

    # Open watches of each subject. A subject's entry is dropped with its
    # last watch.
    _open_watches: dict[Subject, list["Watch"]] = {}

    def __init__(
        self,
        subject: Subject,
        ids: Union[IdLike, Iterable[IdLike]],
        display: str,
        grid: Optional[Grid] = None,
    ):
        self._subject = subject
        self._ids: dict[str, None] = dict.fromkeys(to_ids(ids))
        self._display = display
        self._rows: dict[str, Record] = {}
        # A supplied grid is only a cache until the subject delivers data.
        self._cached = grid is not None
        if grid is not None:
            for row in grid.filter_ids(self._ids).rows:
                self._rows[record_id(row)] = row
        self._closed = False
        self._error: Optional[SubscriptionLostError] = None
        self._listeners: list[WatchListener] = []

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"Watch({self._display!r}, ids={len(self._ids)}, {state})"

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @classmethod
    async def open(
        cls,
        subject: Subject,
        ids: Union[IdLike, Iterable[IdLike]],
        display: str,
        grid: Optional[Grid] = None,
    ) -> "Watch":
        """Open a watch on ``ids``.

        Args:
            subject: The subject to share.
            ids: The ids to watch.
            display: Display name for the watch.
            grid: Optional records to show until the subject delivers its own.

        Returns:
            An open watch.
        """
        watch = cls(subject, ids, display, grid)
        subject.subscribe(watch)
        try:
            await subject.add_ids(list(watch._ids))
        except BaseException:
            subject.unsubscribe(watch)
            raise
        cls._open_watches.setdefault(subject, []).append(watch)
        if not watch._cached:
            watch._merge(subject.grid.filter_ids(watch._ids).rows)
        return watch

    async def close(self) -> None:
        """Close the watch and release its ids. Closing twice is a no-op."""
        if self._closed:
            return
        self._closed = True
        self._rows.clear()
        self._listeners.clear()
        self._subject.unsubscribe(self)
        self._unregister()
        if self._error is None and not self._subject.closed:
            await self._subject.remove_ids(list(self._ids))

    @classmethod
    async def close_all(cls, subject: Subject) -> None:
        """Close every open watch of ``subject``, then the subject itself.

        The watches close concurrently so their ids are released together.
        """
        watches = list(cls._open_watches.get(subject, ()))
        results = await asyncio.gather(
            *(watch.close() for watch in watches), return_exceptions=True
        )
        await subject.close()
        for result in results:
            if isinstance(result, BaseException):
                raise result

    @classmethod
    def watches(cls, subject: Subject) -> list["Watch"]:
        """Open watches sharing ``subject``."""
        return list(cls._open_watches.get(subject, ()))

    def _unregister(self) -> None:
        watches = self._open_watches.get(self._subject)
        if watches is None:
            return
        if self in watches:
            watches.remove(self)
        if not watches:
            del self._open_watches[self._subject]

    def _check_open(self) -> None:
        if self._closed:
            raise ClosedError("watch")

    def _check_alive(self) -> None:
        self._check_open()
        if self._error is not None:
            raise self._error

    # =========================================================================
    # State
    # =========================================================================

    @property
    def display(self) -> str:
        return self._display

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def error(self) -> Optional[SubscriptionLostError]:
        """Set once the server has dropped the shared subscription."""
        return self._error

    @property
    def ids(self) -> list[str]:
        self._check_open()
        return list(self._ids)

    @property
    def grid(self) -> Grid:
        """Snapshot of the watched records.

        Raises:
            ClosedError: If the watch is closed.
        """
        self._check_open()
        rows = [self._rows[id] for id in self._ids if id in self._rows]
        return Grid(rows=rows, meta={"watchDis": self._display})

    @property
    def poll_rate(self) -> float:
        self._check_open()
        return self._subject.poll_rate

    # =========================================================================
    # Operations
    # =========================================================================

    async def add_ids(self, ids: Union[IdLike, Iterable[IdLike]]) -> None:
        """Watch additional ids."""
        self._check_alive()
        new_ids = [id for id in to_ids(ids) if id not in self._ids]
        if not new_ids:
            return
        self._ids.update(dict.fromkeys(new_ids))
        try:
            await self._subject.add_ids(new_ids)
        except BaseException:
            for id in new_ids:
                self._ids.pop(id, None)
            raise
        self._merge(self._subject.grid.filter_ids(new_ids).rows)

    async def remove_ids(self, ids: Union[IdLike, Iterable[IdLike]]) -> None:
        """Stop watching some ids."""
        self._check_alive()
        gone = [id for id in to_ids(ids) if id in self._ids]
        if not gone:
            return
        for id in gone:
            del self._ids[id]
            self._rows.pop(id, None)
        await self._subject.remove_ids(gone)

    async def poll(self) -> Grid:
        """Poll the shared subject now and return this watch's snapshot."""
        self._check_alive()
        await self._subject.poll()
        return self.grid

    async def refresh(self) -> Grid:
        """Fetch every watched record again and replace the snapshot."""
        self._check_alive()
        full = await self._subject.refresh()
        self._check_open()
        rows = full.filter_ids(self._ids).rows
        self._rows = {record_id(row): row for row in rows}
        self._cached = False
        self._notify(Grid(rows=rows))
        return self.grid

    # =========================================================================
    # Listeners
    # =========================================================================

    def add_listener(self, listener: WatchListener) -> None:
        """Call ``listener(watch, changed)`` whenever watched records change."""
        self._check_open()
        self._listeners.append(listener)

    def remove_listener(self, listener: WatchListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, changed: Grid) -> None:
        for listener in list(self._listeners):
            try:
                listener(self, changed)
            except Exception:
                logger.exception("Watch listener failed for %r", self._display)

    # =========================================================================
    # Subject observer
    # =========================================================================

    def on_update(self, changed: Grid) -> None:
        if self._closed:
            return
        rows = changed.filter_ids(self._ids).rows
        if not rows:
            return
        if self._cached:
            # First real data: drop the supplied grid rather than merge into it.
            self._cached = False
            self._rows = {
                record_id(row): row
                for row in self._subject.grid.filter_ids(self._ids).rows
            }
        else:
            self._merge(rows)
        self._notify(Grid(rows=rows))

    def on_lost(self, error: SubscriptionLostError) -> None:
        if self._closed:
            return
        self._error = error

    def _merge(self, rows: Iterable[Record]) -> None:
        for row in rows:
            id = record_id(row)
            if is_removed(row):
                self._rows.pop(id, None)
            else:
                self._rows[id] = row
