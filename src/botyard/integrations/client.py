"""Uniform HTTP client for third-party services.

Every service is reached through ``ServiceClient.request(endpoint, params)``.
The per-service differences (API path prefix, where the credential goes)
live in a ``ServiceProfile``, so handlers and the announcement scheduler
never deal with them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import httpx

from botyard.config import HttpConfig
from botyard.errors import ApiError
from botyard.logging import get_logger
from botyard.models import Integration, ServiceName

log = get_logger("integrations.client")


@dataclass(frozen=True)
class ServiceProfile:
    """How to talk to one kind of service."""

    display_name: str
    api_prefix: str = ""
    auth_header: str | None = None
    auth_param: str | None = None
    fixed_base_url: str | None = None  # public APIs that need no apiUrl
    requires_key: bool = True
    headers: dict[str, str] = field(default_factory=dict)


PROFILES: dict[ServiceName, ServiceProfile] = {
    ServiceName.PLEX: ServiceProfile(
        "Plex", auth_header="X-Plex-Token", headers={"Accept": "application/json"}
    ),
    ServiceName.JELLYFIN: ServiceProfile("Jellyfin", auth_header="X-Emby-Token"),
    ServiceName.SONARR: ServiceProfile("Sonarr", api_prefix="/api/v3", auth_header="X-Api-Key"),
    ServiceName.RADARR: ServiceProfile("Radarr", api_prefix="/api/v3", auth_header="X-Api-Key"),
    ServiceName.LIDARR: ServiceProfile("Lidarr", api_prefix="/api/v1", auth_header="X-Api-Key"),
    ServiceName.READARR: ServiceProfile("Readarr", api_prefix="/api/v1", auth_header="X-Api-Key"),
    ServiceName.PROWLARR: ServiceProfile("Prowlarr", api_prefix="/api/v1", auth_header="X-Api-Key"),
    ServiceName.OVERSEERR: ServiceProfile("Overseerr", api_prefix="/api/v1", auth_header="X-Api-Key"),
    ServiceName.TAUTULLI: ServiceProfile("Tautulli", api_prefix="/api/v2", auth_param="apikey"),
    ServiceName.MINECRAFT: ServiceProfile(
        "Minecraft",
        fixed_base_url="https://api.mcsrvstat.us/3",
        requires_key=False,
    ),
}


class ServiceClient:
    """GET-only JSON client for one configured service.

    Attributes:
        service: Which service this client talks to.
        profile: Path and credential conventions of the service.
        base_url: Service root, without trailing slash.
    """

    def __init__(
        self,
        service: ServiceName,
        base_url: str | None,
        api_key: str | None,
        timeout: float = 10.0,
        user_agent: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.service = ServiceName(service)
        self.profile = PROFILES[self.service]
        self.base_url = (self.profile.fixed_base_url or base_url or "").rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.user_agent = user_agent
        self.transport = transport

    @classmethod
    def for_integration(
        cls,
        integration: Integration,
        http: HttpConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "ServiceClient":
        """Build a client from an integration record."""
        http = http or HttpConfig()
        return cls(
            integration.service,
            integration.config.api_url,
            integration.config.api_key,
            timeout=http.timeout_seconds,
            user_agent=http.user_agent,
            transport=transport,
        )

    @property
    def name(self) -> str:
        return self.profile.display_name

    def url(self, endpoint: str) -> str:
        """Absolute URL of an endpoint, with the service's API prefix."""
        if endpoint and not endpoint.startswith("/"):
            endpoint = "/" + endpoint
        return f"{self.base_url}{self.profile.api_prefix}{endpoint}"

    async def request(self, endpoint: str, params: dict[str, Any] | None = None) -> Any:
        """GET an endpoint and return the decoded JSON body.

        Raises:
            ApiError: If the service is not configured, unreachable, answers
                with an error status, or returns something that is not JSON.
        """
        if not self.base_url or (self.profile.requires_key and not self.api_key):
            raise ApiError(self.name, "API URL and API key are required")

        headers = dict(self.profile.headers)
        if self.user_agent:
            headers["User-Agent"] = self.user_agent
        query = {k: v for k, v in (params or {}).items() if v is not None}
        if self.profile.auth_header:
            headers[self.profile.auth_header] = self.api_key or ""
        if self.profile.auth_param:
            query[self.profile.auth_param] = self.api_key

        url = self.url(endpoint)
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                transport=self.transport,
            ) as client:
                response = await client.get(url, params=query, headers=headers)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            log.warning("service_http_error", service=self.service.value, status=status)
            raise ApiError(self.name, f"HTTP {status}", status=status) from e
        except httpx.HTTPError as e:
            log.warning("service_unreachable", service=self.service.value, error=str(e))
            raise ApiError(self.name, str(e) or type(e).__name__) from e

        try:
            return response.json()
        except ValueError as e:
            raise ApiError(self.name, "invalid JSON response", status=response.status_code) from e
