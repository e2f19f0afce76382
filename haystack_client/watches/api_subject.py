"""Subject owning one server watch subscription."""

from typing import Iterable, Optional
import asyncio
import logging

from ..config import DEFAULT_POLL_RATE_SECS, MIN_POLL_RATE_SECS
from ..errors import ClosedError, NotFoundError, SubscriptionLostError
from ..models import Grid, Record, is_removed, record_id
from .apis import WatchApis
from .subject import SubjectObserver, SubjectState

logger = logging.getLogger(__name__)


def _server_rate(rate: Optional[float]) -> Optional[float]:
    """A server-reported poll rate, raised to ``MIN_POLL_RATE_SECS``."""
    if rate is None:
        return None
    return max(rate, MIN_POLL_RATE_SECS)


class ApiSubject:
    """A subject that talks to the server directly.

    The subscription is opened by the first ``add_ids`` and closed again once
    no id is referenced, after which the subject can be reopened. ``close()``
    is terminal, as is losing the subscription on the server.

    While open, the subject polls on a timer. The next poll is scheduled
    ``poll_rate`` seconds after the previous one completes, using whatever
    rate the server last reported.

    Example:
        >>> subject = ApiSubject(HttpWatchApis(client), poll_rate=2)
        >>> await subject.add_ids(["site-1", "site-2"])
        >>> changed = await subject.poll()
    """

    def __init__(
        self,
        apis: WatchApis,
        display: str = "haystack-client",
        poll_rate: float = DEFAULT_POLL_RATE_SECS,
    ):
        self._apis = apis
        self._display = display
        self._default_poll_rate = poll_rate
        self._poll_rate = poll_rate
        self._state = SubjectState.UNOPENED
        self._watch_id: Optional[str] = None
        self._refs: dict[str, int] = {}
        self._records: dict[str, Record] = {}
        self._observers: list[SubjectObserver] = []
        # Serializes open/add/remove/close; polls have their own lock.
        self._lock = asyncio.Lock()
        self._poll_lock = asyncio.Lock()
        self._timer: Optional[asyncio.TimerHandle] = None
        self._poll_task: Optional[asyncio.Future] = None

    def __repr__(self) -> str:
        return (
            f"ApiSubject(state={self._state.value}, watch_id={self._watch_id!r}, "
            f"ids={len(self._refs)})"
        )

    @property
    def state(self) -> SubjectState:
        return self._state

    @property
    def watch_id(self) -> Optional[str]:
        """Server handle of the open subscription, if any."""
        return self._watch_id

    @property
    def closed(self) -> bool:
        return self._state in (SubjectState.CLOSED, SubjectState.LOST)

    @property
    def ids(self) -> list[str]:
        return list(self._refs)

    @property
    def grid(self) -> Grid:
        rows = [self._records[id] for id in self._refs if id in self._records]
        meta = {"watchId": self._watch_id} if self._watch_id else {}
        return Grid(rows=rows, meta=meta)

    @property
    def poll_rate(self) -> float:
        return self._poll_rate

    def ref_count(self, id: str) -> int:
        return self._refs.get(id, 0)

    def subscribe(self, observer: SubjectObserver) -> None:
        if observer not in self._observers:
            self._observers.append(observer)

    def unsubscribe(self, observer: SubjectObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def _check_open(self) -> None:
        if self.closed:
            raise ClosedError("subject")

    # =========================================================================
    # Ids
    # =========================================================================

    async def add_ids(self, ids: Iterable[str]) -> None:
        """Take a reference per occurrence of each id, subscribing new ones.

        Raises:
            ClosedError: If the subject is closed or lost.
            SubscriptionLostError: If the server no longer knows the subscription.
            TransportError: If the network call fails. References are rolled back.
        """
        self._check_open()
        ids = list(ids)
        async with self._lock:
            self._check_open()
            new_ids = self._take_refs(ids)
            if not new_ids:
                return
            try:
                if self._watch_id is None:
                    await self._open(new_ids)
                else:
                    await self._add(new_ids)
                self._check_open()
            except BaseException:
                self._release_refs(ids)
                raise

    async def remove_ids(self, ids: Iterable[str]) -> None:
        """Release a reference per occurrence of each id, unsubscribing unused ones.

        Releasing the last referenced id closes the subscription. References
        are released even when the network call fails.
        """
        self._check_open()
        ids = list(ids)
        async with self._lock:
            self._check_open()
            gone = self._release_refs(ids)
            if not gone or self._watch_id is None:
                return
            if self._refs:
                logger.debug("Removing %d ids from watch %s", len(gone), self._watch_id)
                await self._apis.remove(self._watch_id, gone)
            else:
                await self._close_subscription()

    def _take_refs(self, ids: list[str]) -> list[str]:
        new_ids = []
        for id in ids:
            count = self._refs.get(id, 0)
            if count == 0:
                new_ids.append(id)
            self._refs[id] = count + 1
        return new_ids

    def _release_refs(self, ids: list[str]) -> list[str]:
        gone = []
        for id in ids:
            count = self._refs.get(id, 0)
            if count == 0:
                logger.debug("Ignoring release of unreferenced id %s", id)
            elif count == 1:
                del self._refs[id]
                self._records.pop(id, None)
                gone.append(id)
            else:
                self._refs[id] = count - 1
        return gone

    async def _open(self, ids: list[str]) -> None:
        result = await self._apis.open(ids, self._display)
        self._watch_id = result.watch_id
        if result.poll_rate is not None:
            self._poll_rate = _server_rate(result.poll_rate)
        if self._state is SubjectState.UNOPENED:
            self._state = SubjectState.OPEN
        logger.info(
            "Opened watch %s for %d ids, polling every %ss",
            self._watch_id,
            len(ids),
            self._poll_rate,
        )
        self._apply(result.grid)
        self._schedule_poll()

    async def _add(self, ids: list[str]) -> None:
        watch_id = self._watch_id
        logger.debug("Adding %d ids to watch %s", len(ids), watch_id)
        try:
            grid = await self._apis.add(watch_id, ids)
        except NotFoundError as e:
            raise self._lose(watch_id) from e
        if grid is not None:
            self._apply(grid)

    async def _close_subscription(self) -> None:
        watch_id, self._watch_id = self._watch_id, None
        self._cancel_timer()
        self._poll_rate = self._default_poll_rate
        if self._state is SubjectState.OPEN:
            self._state = SubjectState.UNOPENED
        logger.info("Closing watch %s", watch_id)
        await self._apis.close(watch_id)

    # =========================================================================
    # Polling
    # =========================================================================

    async def poll(self) -> Grid:
        """Poll for changes. Polls never overlap; a second caller waits.

        Returns:
            The referenced records that changed since the last poll.

        Raises:
            ClosedError: If the subject is closed or lost.
            SubscriptionLostError: If the server no longer knows the subscription.
        """
        self._check_open()
        async with self._poll_lock:
            self._check_open()
            return await self._fetch(refresh=False)

    async def refresh(self) -> Grid:
        """Fetch every referenced record and replace the snapshot."""
        self._check_open()
        async with self._poll_lock:
            self._check_open()
            return await self._fetch(refresh=True)

    async def _fetch(self, refresh: bool) -> Grid:
        watch_id = self._watch_id
        if watch_id is None:
            return Grid()
        try:
            result = await self._apis.poll(watch_id, refresh)
        except NotFoundError as e:
            if watch_id != self._watch_id:
                return Grid()
            raise self._lose(watch_id) from e

        if watch_id != self._watch_id or self.closed:
            logger.debug("Discarding poll result of closed watch %s", watch_id)
            return Grid()
        rate = _server_rate(result.poll_rate)
        if rate is not None and rate != self._poll_rate:
            logger.info(
                "Watch %s poll rate changed from %ss to %ss",
                watch_id,
                self._poll_rate,
                rate,
            )
            self._poll_rate = rate
        if refresh:
            self._records.clear()
        return self._apply(result.grid)

    def _apply(self, grid: Grid) -> Grid:
        changed = []
        for row in grid.rows:
            if "id" not in row:
                continue
            id = record_id(row)
            if id not in self._refs:
                continue
            if is_removed(row):
                self._records.pop(id, None)
            else:
                self._records[id] = row
            changed.append(row)

        result = Grid(rows=changed, meta=dict(grid.meta))
        if changed:
            for observer in list(self._observers):
                observer.on_update(result)
        return result

    def _schedule_poll(self) -> None:
        if self._state is not SubjectState.OPEN or self._watch_id is None:
            return
        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self._poll_rate, self._on_poll_timer)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_poll_timer(self) -> None:
        self._timer = None
        self._poll_task = asyncio.ensure_future(self._scheduled_poll())

    async def _scheduled_poll(self) -> None:
        try:
            await self.poll()
        except (SubscriptionLostError, ClosedError):
            return
        except Exception:
            logger.warning("Poll of watch %s failed", self._watch_id, exc_info=True)
        self._schedule_poll()

    def _lose(self, watch_id: str) -> SubscriptionLostError:
        self._state = SubjectState.LOST
        self._cancel_timer()
        self._watch_id = None
        self._refs.clear()
        self._records.clear()
        error = SubscriptionLostError(watch_id)
        logger.warning("Watch %s was lost by the server", watch_id)
        for observer in list(self._observers):
            observer.on_lost(error)
        return error

    # =========================================================================
    # Close
    # =========================================================================

    async def close(self) -> None:
        """Close the subscription, whatever ids are still referenced.

        The poll timer stops at once; a poll already in flight completes but
        its result is discarded.
        """
        if self.closed:
            return
        self._state = SubjectState.CLOSED
        self._cancel_timer()
        self._refs.clear()
        self._records.clear()
        async with self._lock:
            watch_id, self._watch_id = self._watch_id, None
            if watch_id is not None:
                logger.info("Closing watch %s", watch_id)
                await self._apis.close(watch_id)
