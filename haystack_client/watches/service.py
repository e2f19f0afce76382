"""Service for opening watches."""

import asyncio
from typing import Iterable, Optional, Union

from ..config import ClientServiceConfig
from ..models import Grid, IdLike
from .api_subject import ApiSubject
from .apis import WatchApis
from .batch_subject import BatchSubject
from .watch import Watch


class WatchService:
    """Opens watches that share one server subscription.

    The shared subject is created by the first ``make``. If it is closed, or
    the server loses its subscription, the next ``make`` starts a new one;
    watches of the old subject are not moved over, but ``close`` still closes
    them.
    """

    def __init__(self, config: ClientServiceConfig, apis: WatchApis):
        """Create a watch service.

        Args:
            config: Client configuration; supplies the default poll rate and
                    the batch window delay.
            apis: Watch network operations.
        """
        self._config = config
        self._apis = apis
        self._subject: Optional[BatchSubject] = None
        self._subjects: list[BatchSubject] = []

    @property
    def subject(self) -> Optional[BatchSubject]:
        """The shared subject, if one is live."""
        return self._subject

    def _make_subject(self) -> BatchSubject:
        api_subject = ApiSubject(
            self._apis,
            display=f"{self._config.project} watch",
            poll_rate=self._config.poll_rate,
        )
        return BatchSubject(api_subject, delay=self._config.batch_delay)

    async def make(
        self,
        display: str,
        ids: Union[IdLike, Iterable[IdLike]],
        grid: Optional[Grid] = None,
    ) -> Watch:
        """Open a watch on the specified records.

        Args:
            display: Display name for the watch.
            ids: The ids to watch.
            grid: Optional records to show until the server's arrive.

        Returns:
            An open watch.
        """
        if self._subject is None or self._subject.closed:
            # Lost subjects stay tracked while their watches are open.
            self._subjects = [
                subject
                for subject in self._subjects
                if not subject.closed or Watch.watches(subject)
            ]
            self._subject = self._make_subject()
            self._subjects.append(self._subject)
        return await Watch.open(self._subject, ids, display, grid)

    async def close(self) -> None:
        """Close every open watch of this service and release the subscription.

        Watches left on a lost subscription are closed too. Every subject is
        closed even if one fails; the first error is then raised.
        """
        subjects, self._subjects = self._subjects, []
        self._subject = None
        results = await asyncio.gather(
            *(Watch.close_all(subject) for subject in subjects),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result
