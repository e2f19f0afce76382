"""HTTP client for a Haystack record server."""

from typing import Any, Optional
import logging

import httpx

from .config import ClientServiceConfig
from .errors import ApiError, ConnectionError, HttpError, NotFoundError, TransportError
from .records import RecordService
from .roles import RolesService
from .watches import HttpWatchApis, WatchService

logger = logging.getLogger(__name__)


class Client:
    """Async HTTP client for a Haystack record server.

    Example:
        >>> config = ClientServiceConfig("http://localhost:8080", project="demo")
        >>> async with Client(config) as client:
        ...     sites = await client.records.read_by_filter("site")
        ...     watch = await client.watches.make("sites", sites.ids())
        ...     print(watch.grid.rows)
    """

    def __init__(
        self,
        config: ClientServiceConfig,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Create a new client.

        Args:
            config: Server location and client settings.
            transport: Optional httpx transport, e.g. ``httpx.MockTransport``.
        """
        self.config = config
        self._client = httpx.AsyncClient(timeout=config.timeout, transport=transport)
        self._records = None
        self._roles = None
        self._watches = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.close()

    async def close(self):
        """Close open watches and the HTTP client."""
        try:
            if self._watches is not None:
                await self._watches.close()
        finally:
            await self._client.aclose()

    @property
    def records(self):
        """The record service."""
        if self._records is None:
            self._records = RecordService(self)
        return self._records

    @property
    def roles(self):
        """The roles service."""
        if self._roles is None:
            self._roles = RolesService(self)
        return self._roles

    @property
    def watches(self):
        """The watch service."""
        if self._watches is None:
            self._watches = WatchService(self.config, HttpWatchApis(self))
        return self._watches

    async def _request(
        self,
        method: str,
        url: str,
        *,
        json: Optional[Any] = None,
        params: Optional[dict] = None,
    ) -> httpx.Response:
        logger.debug("%s %s", method, url)
        try:
            return await self._client.request(
                method,
                url,
                json=json,
                params=params,
                headers=self.config.headers(),
            )
        except httpx.ConnectError as e:
            raise ConnectionError(str(e)) from e
        except httpx.TimeoutException as e:
            raise ConnectionError(f"Request timed out: {e}") from e
        except httpx.TransportError as e:
            raise TransportError(str(e)) from e

    async def fetch_val(
        self,
        method: str,
        url: str,
        *,
        json: Optional[Any] = None,
        params: Optional[dict] = None,
    ) -> Any:
        """Make a request and decode its JSON value.

        Raises:
            ConnectionError: If unable to connect to the server.
            NotFoundError: If the server answers 404.
            ApiError: If the server returns an error grid.
            HttpError: For any other unsuccessful status.
            TransportError: If the exchange fails for any other reason.
        """
        response = await self._request(method, url, json=json, params=params)

        if response.status_code == 404:
            raise NotFoundError(f"{method} {url}")
        if response.status_code == 204 or not response.content:
            if response.status_code >= 400:
                raise HttpError(response.status_code, f"{method} {url} failed")
            return None

        try:
            data = response.json()
        except ValueError as e:
            raise TransportError(f"Invalid JSON from {url}: {e}") from e

        meta = data.get("meta") if isinstance(data, dict) else None
        if isinstance(meta, dict) and meta.get("err"):
            raise ApiError(
                code=meta.get("errType", "err"),
                message=meta.get("dis", "Unknown error"),
                trace=meta.get("errTrace", ""),
            )
        if response.status_code >= 400:
            raise HttpError(response.status_code, f"{method} {url} failed")
        return data
