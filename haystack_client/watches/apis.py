"""Network operations backing a watch subscription."""

from typing import TYPE_CHECKING, Any, Iterable, Protocol, runtime_checkable

from ..models import Grid, WatchOpenResult, WatchPollResult

if TYPE_CHECKING:
    from ..client import Client


@runtime_checkable
class WatchApis(Protocol):
    """The three coarse watch operations offered by a server.

    ``open`` creates a subscription, ``add``/``remove`` change its ids,
    ``poll`` fetches what changed and ``close`` releases it. Every call is a
    network round trip.
    """

    async def open(self, ids: list[str], display: str) -> WatchOpenResult:
        """Open a subscription for ``ids``."""
        ...

    async def poll(self, watch_id: str, refresh: bool = False) -> WatchPollResult:
        """Fetch changed records, or every record when ``refresh`` is set.

        Raises:
            NotFoundError: If the subscription no longer exists.
        """
        ...

    async def add(self, watch_id: str, ids: list[str]) -> Grid:
        """Add ids to a subscription and return their current records."""
        ...

    async def remove(self, watch_id: str, ids: list[str]) -> None:
        ...

    async def close(self, watch_id: str) -> None:
        ...


def _id_rows(ids: Iterable[str]) -> list[dict[str, Any]]:
    return [{"id": {"_kind": "ref", "val": id}} for id in ids]


class HttpWatchApis:
    """Watch operations over the Haystack ``watchSub``, ``watchPoll`` and
    ``watchUnsub`` ops.

    https://project-haystack.org/doc/Ops#watchSub
    https://project-haystack.org/doc/Ops#watchUnsub
    https://project-haystack.org/doc/Ops#watchPoll
    """

    def __init__(self, client: "Client"):
        self._client = client

    def _url(self, op: str) -> str:
        return self._client.config.haystack_service_url(op)

    async def _post(self, op: str, meta: dict[str, Any], ids: Iterable[str] = ()) -> Any:
        body = {"meta": meta, "rows": _id_rows(ids)}
        return await self._client.fetch_val("POST", self._url(op), json=body)

    async def open(self, ids: list[str], display: str) -> WatchOpenResult:
        data = await self._post("watchSub", {"watchDis": display}, ids)
        return WatchOpenResult.from_dict(data)

    async def poll(self, watch_id: str, refresh: bool = False) -> WatchPollResult:
        meta: dict[str, Any] = {"watchId": watch_id}
        if refresh:
            meta["refresh"] = {"_kind": "marker"}
        return WatchPollResult.from_dict(await self._post("watchPoll", meta))

    async def add(self, watch_id: str, ids: list[str]) -> Grid:
        return Grid.from_dict(await self._post("watchSub", {"watchId": watch_id}, ids))

    async def remove(self, watch_id: str, ids: list[str]) -> None:
        await self._post("watchUnsub", {"watchId": watch_id}, ids)

    async def close(self, watch_id: str) -> None:
        await self._post(
            "watchUnsub", {"watchId": watch_id, "close": {"_kind": "marker"}}
        )
