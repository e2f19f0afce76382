"""Subject decorator that coalesces id changes made in the same tick."""

from typing import Iterable, Optional
import asyncio
import logging

from ..errors import ClosedError
from ..models import Grid
from .subject import Subject, SubjectObserver

logger = logging.getLogger(__name__)


def _retrieve_exception(future: asyncio.Future) -> None:
    # Callers may all have been cancelled; mark the error as seen.
    if not future.cancelled():
        future.exception()


class _Window:
    """Id changes collected between two flushes.

    Deltas are kept per id in call order, so an add and a remove of the same
    id in one window cancel out.
    """

    __slots__ = ("deltas", "future", "handle")

    def __init__(self, loop: asyncio.AbstractEventLoop):
        self.deltas: dict[str, int] = {}
        self.future: asyncio.Future = loop.create_future()
        self.future.add_done_callback(_retrieve_exception)
        self.handle: Optional[asyncio.Handle] = None

    def record(self, ids: Iterable[str], delta: int) -> None:
        for id in ids:
            self.deltas[id] = self.deltas.get(id, 0) + delta

    def net(self) -> tuple[list[str], list[str]]:
        """Ids to add and ids to remove, one entry per outstanding reference."""
        adds: list[str] = []
        removes: list[str] = []
        for id, delta in self.deltas.items():
            if delta > 0:
                adds.extend([id] * delta)
            elif delta < 0:
                removes.extend([id] * -delta)
        return adds, removes


class BatchSubject:
    """Batches ``add_ids``/``remove_ids`` calls into one call on the inner subject.

    Calls made before the event loop gets back to the flush callback land in
    the same window. The window is flushed with ``loop.call_soon``, or after
    ``delay`` seconds when a delay is given, and can be flushed early with
    ``flush()``. A flush makes at most one ``add_ids`` and one ``remove_ids``
    call, adds first. Every caller of a window waits for its flush and sees
    its error, if any.

    Flushes run one at a time. Calls made while a flush is in flight go to
    the next window.

    ``poll``, ``refresh`` and ``close`` are not batched.
    """

    def __init__(self, subject: Subject, delay: float = 0.0):
        self._subject = subject
        self._delay = delay
        self._window: Optional[_Window] = None
        self._lock = asyncio.Lock()
        self._flushes: set[asyncio.Future] = set()

    def __repr__(self) -> str:
        return f"BatchSubject({self._subject!r})"

    @property
    def subject(self) -> Subject:
        """The decorated subject."""
        return self._subject

    @property
    def closed(self) -> bool:
        return self._subject.closed

    @property
    def ids(self) -> list[str]:
        return self._subject.ids

    @property
    def grid(self) -> Grid:
        return self._subject.grid

    @property
    def poll_rate(self) -> float:
        return self._subject.poll_rate

    @property
    def pending(self) -> bool:
        """True while a window is waiting to be flushed."""
        return self._window is not None

    def subscribe(self, observer: SubjectObserver) -> None:
        self._subject.subscribe(observer)

    def unsubscribe(self, observer: SubjectObserver) -> None:
        self._subject.unsubscribe(observer)

    async def add_ids(self, ids: Iterable[str]) -> None:
        await self._enqueue(ids, 1)

    async def remove_ids(self, ids: Iterable[str]) -> None:
        await self._enqueue(ids, -1)

    async def poll(self) -> Grid:
        return await self._subject.poll()

    async def refresh(self) -> Grid:
        return await self._subject.refresh()

    async def close(self) -> None:
        await self._subject.close()

    async def flush(self) -> None:
        """Flush the pending window now."""
        window = self._window
        if window is None:
            return
        self._window = None
        window.handle.cancel()
        await self._flush(window)
        await window.future

    async def _enqueue(self, ids: Iterable[str], delta: int) -> None:
        if self.closed:
            raise ClosedError("subject")
        window = self._current_window()
        window.record(ids, delta)
        await asyncio.shield(window.future)

    def _current_window(self) -> _Window:
        if self._window is None:
            loop = asyncio.get_running_loop()
            window = _Window(loop)
            if self._delay > 0:
                window.handle = loop.call_later(self._delay, self._start_flush, window)
            else:
                window.handle = loop.call_soon(self._start_flush, window)
            self._window = window
        return self._window

    def _start_flush(self, window: _Window) -> None:
        if self._window is not window:
            return
        self._window = None
        task = asyncio.ensure_future(self._flush(window))
        self._flushes.add(task)
        task.add_done_callback(self._flushes.discard)

    async def _flush(self, window: _Window) -> None:
        try:
            async with self._lock:
                adds, removes = window.net()
                logger.debug("Flushing watch batch: +%d -%d", len(adds), len(removes))
                error: Optional[Exception] = None
                if adds:
                    try:
                        await self._subject.add_ids(adds)
                    except Exception as e:
                        error = e
                if removes:
                    try:
                        await self._subject.remove_ids(removes)
                    except Exception as e:
                        error = error or e
        except asyncio.CancelledError:
            window.future.cancel()
            raise
        if error is not None:
            window.future.set_exception(error)
        else:
            window.future.set_result(None)
