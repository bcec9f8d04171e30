"""Base class for integration command handlers."""

from __future__ import annotations

from collections.abc import Callable, Coroutine
from typing import TYPE_CHECKING, Any, ClassVar

import discord
import httpx

from botyard.config import HttpConfig
from botyard.integrations.client import PROFILES, ServiceClient
from botyard.logging import get_logger
from botyard.models import BotConfig, Integration, ServiceName

if TYPE_CHECKING:
    from botyard.commands import Invocation
    from botyard.models import Command

log = get_logger("integrations")

Action = Callable[["Invocation", Integration], Coroutine[Any, Any, None]]


class IntegrationHandler:
    """Runs ``integration``-type commands against one service.

    Subclasses set ``service`` and fill ``self.actions`` with the actions
    they support, keyed by the command's ``integrationAction``.

    Attributes:
        http: Outbound HTTP settings.
        transport: Optional httpx transport (tests pass a MockTransport).
        actions: Action name -> coroutine taking (invocation, integration).
    """

    service: ClassVar[ServiceName]

    def __init__(
        self,
        http: HttpConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.http = http or HttpConfig()
        self.transport = transport
        self.actions: dict[str, Action] = {}

    @property
    def display_name(self) -> str:
        return PROFILES[self.service].display_name

    @property
    def failure_message(self) -> str:
        return f"An error occurred while connecting to {self.display_name}."

    def client(self, integration: Integration) -> ServiceClient:
        return ServiceClient.for_integration(integration, self.http, self.transport)

    async def execute(self, command: "Command", invocation: "Invocation", config: BotConfig) -> None:
        """Run a command's integration action.

        The handler finds its own integration record in the bot's full
        configuration. Service failures become a generic reply.
        """
        integration = config.integration_for(self.service)
        if integration is None:
            await invocation.reply(f"{self.display_name} integration not configured for this bot.")
            return

        action = command.integration_action or ""
        handler = self.actions.get(action)
        if handler is None:
            await invocation.reply(f"Unknown {self.display_name} action: {action}")
            return

        try:
            await handler(invocation, integration)
        except Exception as e:
            log.warning(
                "integration_action_failed",
                service=self.service.value,
                action=action,
                error=str(e),
            )
            await invocation.reply(self.failure_message)

    async def require_query(self, invocation: "Invocation") -> str | None:
        """Read the search text, replying with a prompt if it is missing."""
        query = invocation.text("query")
        if not query:
            await invocation.reply("Please provide a search query.")
            return None
        return query


def join_title(parent: str | None, title: str | None) -> str:
    """``Parent - Title`` when there is a parent, else the title."""
    title = title or "Unknown"
    return f"{parent} - {title}" if parent else title


def timestamped_embed(title: str, color: int, **kwargs: Any) -> discord.Embed:
    return discord.Embed(title=title, color=color, timestamp=discord.utils.utcnow(), **kwargs)
