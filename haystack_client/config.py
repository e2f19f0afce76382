"""Service configuration for the Haystack client."""

from dataclasses import dataclass
from typing import Mapping, Optional
import os

DEFAULT_POLL_RATE_SECS = 5.0
MIN_POLL_RATE_SECS = 0.5
DEFAULT_TIMEOUT_SECS = 30.0


@dataclass
class ClientServiceConfig:
    """Connection settings shared by every service of a client.

    Attributes:
        base_url: Origin of the server (e.g., "http://localhost:8080").
        project: Name of the project the record and watch ops run against.
        path_prefix: Optional path inserted between the origin and ``/api``.
        timeout: Request timeout in seconds.
        api_key: Optional bearer token sent with every request.
        poll_rate: Poll rate in seconds used for a watch until the server
                   reports its own. Must be positive; rates reported by
                   the server are raised to ``MIN_POLL_RATE_SECS``.
        batch_delay: Seconds a watch batch window stays open. Zero flushes
                     on the next event loop iteration.
    """
    base_url: str
    project: str
    path_prefix: str = ""
    timeout: float = DEFAULT_TIMEOUT_SECS
    api_key: Optional[str] = None
    poll_rate: float = DEFAULT_POLL_RATE_SECS
    batch_delay: float = 0.0

    def __post_init__(self):
        if not self.base_url:
            raise ValueError("base_url must not be empty")
        if not self.project:
            raise ValueError("project must not be empty")
        if self.poll_rate <= 0:
            raise ValueError("poll_rate must be positive")
        if self.batch_delay < 0:
            raise ValueError("batch_delay must not be negative")
        self.base_url = self.base_url.rstrip("/")
        prefix = self.path_prefix.strip("/")
        self.path_prefix = f"/{prefix}" if prefix else ""

    @classmethod
    def from_env(
        cls,
        prefix: str = "HAYSTACK_",
        environ: Optional[Mapping[str, str]] = None,
    ) -> "ClientServiceConfig":
        """Build a configuration from environment variables.

        Reads ``<prefix>URL``, ``<prefix>PROJECT``, ``<prefix>PATH_PREFIX``,
        ``<prefix>API_KEY``, ``<prefix>TIMEOUT`` and ``<prefix>POLL_RATE``.
        """
        env = os.environ if environ is None else environ
        return cls(
            base_url=env.get(f"{prefix}URL", "http://localhost:8080"),
            project=env.get(f"{prefix}PROJECT", ""),
            path_prefix=env.get(f"{prefix}PATH_PREFIX", ""),
            api_key=env.get(f"{prefix}API_KEY") or None,
            timeout=float(env.get(f"{prefix}TIMEOUT", DEFAULT_TIMEOUT_SECS)),
            poll_rate=float(env.get(f"{prefix}POLL_RATE", DEFAULT_POLL_RATE_SECS)),
        )

    def haystack_service_url(self, path: str) -> str:
        """URL of a project scoped service or op."""
        return f"{self.base_url}{self.path_prefix}/api/{self.project}/{path}"

    def host_service_url(self, path: str) -> str:
        """URL of a host (project independent) service."""
        return f"{self.base_url}{self.path_prefix}/api/host/{path}"

    def headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers
