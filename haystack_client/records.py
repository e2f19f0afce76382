"""Record service: read, create, update and delete records."""

from typing import TYPE_CHECKING, Any, Iterable, Optional, Union

from .models import DuplicateOptions, Grid, IdLike, ReadOptions, Record, ref_value, to_ids

if TYPE_CHECKING:
    from .client import Client

Records = Union[Grid, Iterable[Record]]


class RecordService:
    """Record CRUD against ``/api/{project}/records``.

    Example:
        >>> grid = await client.records.read_by_filter(
        ...     "site", ReadOptions(sort=["dis"], limit=10)
        ... )
    """

    def __init__(self, client: "Client"):
        self._client = client
        self._url = client.config.haystack_service_url("records")

    async def _grid(self, method: str, url: str, **kwargs: Any) -> Grid:
        return Grid.from_dict(await self._client.fetch_val(method, url, **kwargs))

    @staticmethod
    def _params(key: str, value: str, options: Optional[ReadOptions]) -> dict[str, str]:
        params = {key: value}
        if options is not None:
            params.update(options.to_params())
        return params

    # =========================================================================
    # Read
    # =========================================================================

    async def read_by_id(self, id: IdLike) -> Record:
        """Read a record via its id.

        Raises:
            NotFoundError: If the record can't be found.
        """
        return await self._client.fetch_val("GET", f"{self._url}/{ref_value(id)}")

    async def read_by_ids(
        self, ids: Iterable[IdLike], options: Optional[ReadOptions] = None
    ) -> Grid:
        """Read the records with the given ids."""
        params = self._params("ids", "|".join(to_ids(ids)), options)
        return await self._grid("GET", self._url, params=params)

    async def read_by_filter(
        self, filter: str, options: Optional[ReadOptions] = None
    ) -> Grid:
        """Query records via a haystack filter."""
        params = self._params("filter", filter, options)
        return await self._grid("GET", self._url, params=params)

    async def read_count(self, filter: str) -> int:
        """Count the records matching a haystack filter."""
        grid = await self._grid("GET", self._url, params={"count": filter})
        return int(grid.meta.get("count", 0))

    # =========================================================================
    # Create
    # =========================================================================

    async def create(self, records: Records) -> Grid:
        """Create multiple records."""
        body = Grid.from_records(records).to_dict()
        return await self._grid("POST", self._url, json=body)

    async def create_record(self, record: Record) -> Record:
        """Create a single record."""
        return await self._client.fetch_val("POST", self._url, json=record)

    # =========================================================================
    # Update
    # =========================================================================

    async def update(self, records: Records) -> Grid:
        """Update records. Each record must carry its ``id`` and ``mod``."""
        body = Grid.from_records(records).to_dict()
        return await self._grid("PATCH", self._url, json=body)

    async def update_by_filter(self, filter: str, changes: Record) -> Grid:
        """Apply the same changes to every record matching a filter."""
        return await self._grid(
            "PATCH", self._url, params={"filter": filter}, json=changes
        )

    async def duplicate(
        self, id: IdLike, options: Optional[DuplicateOptions] = None
    ) -> list[str]:
        """Duplicate a record and return the ids of the copies."""
        options = options or DuplicateOptions()
        data = await self._client.fetch_val(
            "POST",
            f"{self._url}/{ref_value(id)}/duplicate",
            json=options.to_dict(),
        )
        return to_ids(data or [])

    # =========================================================================
    # Delete
    # =========================================================================

    async def delete_by_id(self, id: IdLike) -> Record:
        """Delete a record and return it."""
        return await self._client.fetch_val("DELETE", f"{self._url}/{ref_value(id)}")

    async def delete_by_ids(self, ids: Iterable[IdLike]) -> Grid:
        """Delete the records with the given ids."""
        return await self._grid(
            "DELETE", self._url, params={"ids": "|".join(to_ids(ids))}
        )

    async def delete_by_filter(self, filter: str) -> Grid:
        """Delete every record matching a haystack filter."""
        return await self._grid("DELETE", self._url, params={"filter": filter})
