"""Roles service."""

from typing import TYPE_CHECKING, Iterable, Optional, Union

from .models import Grid, IdLike, ReadOptions, Record, ref_value

if TYPE_CHECKING:
    from .client import Client


class RolesService:
    """Role CRUD against the host ``roles`` service."""

    def __init__(self, client: "Client"):
        self._client = client
        self._url = client.config.host_service_url("roles")

    async def read_all(self) -> list[Record]:
        """Query all roles."""
        grid = Grid.from_dict(await self._client.fetch_val("GET", self._url))
        return grid.rows

    async def read_by_id(self, id: IdLike) -> Record:
        """Read a role via its id.

        Raises:
            NotFoundError: If the role can't be found.
        """
        return await self._client.fetch_val("GET", f"{self._url}/{ref_value(id)}")

    async def read_by_filter(
        self, filter: str, options: Optional[ReadOptions] = None
    ) -> Grid:
        """Query roles via a haystack filter.

        ``options.unique`` is not supported by the roles service and is ignored.
        """
        params = {"filter": filter}
        if options is not None:
            params.update(options.to_params())
            params.pop("unique", None)
        return Grid.from_dict(
            await self._client.fetch_val("GET", self._url, params=params)
        )

    async def create(self, roles: Union[Grid, Iterable[Record]]) -> Grid:
        """Create multiple roles."""
        body = Grid.from_records(roles).to_dict()
        return Grid.from_dict(await self._client.fetch_val("POST", self._url, json=body))

    async def create_role(self, role: Record) -> Record:
        """Create a single role."""
        return await self._client.fetch_val("POST", self._url, json=role)

    async def update(self, id: IdLike) -> Record:
        """Update a role.

        The returned record only carries the role's ``id`` and ``mod``.
        """
        return await self._client.fetch_val("PATCH", f"{self._url}/{ref_value(id)}")

    async def delete_by_id(self, id: IdLike) -> None:
        """Delete a role via its id."""
        await self._client.fetch_val("DELETE", f"{self._url}/{ref_value(id)}")
