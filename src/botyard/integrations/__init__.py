"""Third-party service integrations.

``IntegrationRegistry`` maps each service to the handler that runs its
``integration``-type commands. It is built once at startup and shared by
every bot. ``feed_for`` returns the recently-added feed the announcement
scheduler polls, for the services that have one.
"""

from __future__ import annotations

import httpx

from botyard.config import HttpConfig
from botyard.integrations.arr import (
    LidarrHandler,
    ProwlarrHandler,
    RadarrHandler,
    ReadarrHandler,
    SonarrHandler,
)
from botyard.integrations.base import IntegrationHandler
from botyard.integrations.client import ServiceClient
from botyard.integrations.feeds import MediaFeed, MediaItem
from botyard.integrations.jellyfin import JellyfinFeed, JellyfinHandler
from botyard.integrations.minecraft import MinecraftHandler
from botyard.integrations.overseerr import OverseerrHandler
from botyard.integrations.plex import PlexFeed, PlexHandler
from botyard.integrations.starboard import StarboardWatcher
from botyard.integrations.tautulli import TautulliHandler
from botyard.models import Integration, ServiceName

HANDLER_CLASSES: tuple[type[IntegrationHandler], ...] = (
    PlexHandler,
    JellyfinHandler,
    SonarrHandler,
    RadarrHandler,
    LidarrHandler,
    ReadarrHandler,
    ProwlarrHandler,
    OverseerrHandler,
    TautulliHandler,
    MinecraftHandler,
)

# Services with a recently-added feed the announcement scheduler can poll
SCHEDULABLE = frozenset({ServiceName.PLEX, ServiceName.JELLYFIN})


class IntegrationRegistry:
    """Service name -> integration handler."""

    def __init__(self, handlers: list[IntegrationHandler]) -> None:
        self._handlers = {handler.service: handler for handler in handlers}

    @classmethod
    def default(
        cls,
        http: HttpConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "IntegrationRegistry":
        """Registry with every built-in handler."""
        return cls([handler_cls(http, transport) for handler_cls in HANDLER_CLASSES])

    def get(self, service: ServiceName | str | None) -> IntegrationHandler | None:
        if service is None:
            return None
        try:
            return self._handlers.get(ServiceName(service))
        except ValueError:
            return None

    @property
    def services(self) -> list[ServiceName]:
        return list(self._handlers)


def feed_for(
    integration: Integration,
    http: HttpConfig | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> MediaFeed | None:
    """Recently-added feed for an integration, or None if it has none."""
    if integration.service not in SCHEDULABLE:
        return None
    client = ServiceClient.for_integration(integration, http, transport)
    if integration.service == ServiceName.PLEX:
        return PlexFeed(client)
    return JellyfinFeed(client)


__all__ = [
    "SCHEDULABLE",
    "IntegrationHandler",
    "IntegrationRegistry",
    "MediaFeed",
    "MediaItem",
    "ServiceClient",
    "StarboardWatcher",
    "feed_for",
]
