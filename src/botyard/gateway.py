"""Gateway connection for one running bot.

Each running bot owns one GatewayClient: a discord.Client with a fixed
intent set and a listener table that the dispatch engines populate at
runtime. Unlike ``commands.Bot`` there is no command framework or app
command tree here; commands and events come from stored configuration
and are attached as plain listeners.
"""

from __future__ import annotations

import asyncio
import inspect
import math
import sys
import time
from collections import defaultdict
from collections.abc import Callable, Coroutine
from typing import Any

import discord

from botyard.errors import AuthError
from botyard.logging import get_logger

log = get_logger("gateway")

Listener = Callable[..., Coroutine[Any, Any, Any]]

# Raised-error substrings that identify the two common operator mistakes
_INTENT_MARKERS = ("privileged intent", "disallowed intent")
_TOKEN_MARKERS = ("improper token", "invalid token", "unauthorized", "401")


def default_intents() -> discord.Intents:
    """Intents every bot connects with.

    ``message_content`` and ``members`` are privileged and must be enabled
    for the application in the developer portal.
    """
    return discord.Intents(
        guilds=True,
        guild_messages=True,
        message_content=True,
        members=True,
        guild_reactions=True,
        moderation=True,
    )


def describe_login_failure(message: str) -> str:
    """Turn a raw login failure into an operator-actionable message."""
    lowered = message.lower()
    if any(marker in lowered for marker in _INTENT_MARKERS):
        return (
            "PRIVILEGED INTENTS NOT ENABLED: Go to Discord Developer Portal → Bot → "
            "Enable 'Server Members Intent' and 'Message Content Intent'"
        )
    if any(marker in lowered for marker in _TOKEN_MARKERS):
        return "INVALID TOKEN: The bot token is incorrect or has been reset"
    return message


class GatewayClient(discord.Client):
    """discord.Client with runtime-attachable listeners.

    Listeners are keyed by discord.py event name without the ``on_``
    prefix (``message``, ``member_join``, ``interaction`` ...). Every
    dispatch schedules each listener as its own task, so a failing or
    slow listener never affects the others.

    Attributes:
        bot_id: Id of the bot this connection belongs to.
        started_at: Monotonic timestamp of the ready event, if reached.
    """

    def __init__(self, bot_id: str, intents: discord.Intents | None = None) -> None:
        super().__init__(intents=intents or default_intents())
        self.bot_id = bot_id
        self.started_at: float | None = None
        self._runtime_listeners: dict[str, list[Listener]] = defaultdict(list)
        self._runner: asyncio.Task[None] | None = None

    # =========================================================================
    # Listener table
    # =========================================================================

    def add_listener(self, handler: Listener, event: str) -> None:
        """Attach a coroutine function to an event."""
        if not inspect.iscoroutinefunction(handler):
            raise TypeError("Listeners must be coroutine functions")
        self._runtime_listeners[event].append(handler)

    def remove_listener(self, handler: Listener, event: str) -> None:
        """Detach a listener. Unknown listeners are ignored."""
        handlers = self._runtime_listeners.get(event)
        if not handlers:
            return
        try:
            handlers.remove(handler)
        except ValueError:
            pass

    def listener_count(self, event: str | None = None) -> int:
        """Number of attached listeners, for one event or in total."""
        if event is not None:
            return len(self._runtime_listeners.get(event, ()))
        return sum(len(handlers) for handlers in self._runtime_listeners.values())

    def dispatch(self, event: str, /, *args: Any, **kwargs: Any) -> None:
        super().dispatch(event, *args, **kwargs)
        event_name = "on_" + event
        for handler in list(self._runtime_listeners.get(event, ())):
            self._schedule_event(handler, event_name, *args, **kwargs)

    async def on_error(self, event_method: str, /, *args: Any, **kwargs: Any) -> None:
        error = sys.exc_info()[1]
        log.exception("listener_failed", bot_id=self.bot_id, event=event_method)
        if event_method != "on_listener_error":
            self.dispatch("listener_error", event_method, error)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def open(self, token: str, ready_timeout: float = 30.0) -> None:
        """Log in, connect and wait until the gateway reports ready.

        Args:
            token: Bot token.
            ready_timeout: Seconds to wait for the ready event.

        Raises:
            AuthError: With the raw failure message if login fails, the
                connection closes before ready, or the wait times out.
        """
        try:
            await self.login(token)
        except discord.LoginFailure as e:
            raise AuthError(str(e)) from e
        except discord.HTTPException as e:
            raise AuthError(f"{e.status} {e.text or e}") from e

        self._runner = asyncio.create_task(self.connect(), name=f"gateway-{self.bot_id}")
        ready = asyncio.create_task(self.wait_until_ready())

        done, _ = await asyncio.wait(
            {self._runner, ready},
            timeout=ready_timeout,
            return_when=asyncio.FIRST_COMPLETED,
        )

        if ready in done:
            self.started_at = time.monotonic()
            return

        ready.cancel()
        if self._runner in done:
            error = None if self._runner.cancelled() else self._runner.exception()
            await self.close()
            raise AuthError(str(error) if error else "Gateway closed before ready") from error

        await self.close()
        self._runner.cancel()
        raise AuthError(f"Timed out after {ready_timeout:g}s waiting for the gateway")

    async def close(self) -> None:
        await super().close()
        if self._runner is not None and not self._runner.done():
            self._runner.cancel()
        self._runner = None

    async def register_remote_commands(self, commands: list[dict[str, Any]]) -> None:
        """Replace the application's global command list.

        Raises:
            discord.HTTPException: If the registry rejects the payload.
        """
        if self.application_id is None:
            raise RuntimeError("application id unknown before login")
        await self.http.bulk_upsert_global_commands(self.application_id, commands)

    # =========================================================================
    # Live status
    # =========================================================================

    @property
    def latency_ms(self) -> float | None:
        latency = self.latency
        if latency is None or math.isnan(latency) or math.isinf(latency):
            return None
        return round(latency * 1000, 1)

    @property
    def uptime_seconds(self) -> float | None:
        if self.started_at is None:
            return None
        return round(time.monotonic() - self.started_at, 1)

    @property
    def identity(self) -> str | None:
        """The bot account's display tag, once logged in."""
        return str(self.user) if self.user else None

    @property
    def guild_count(self) -> int:
        return len(self.guilds)

    async def resolve_channel(self, channel_id: str | int | None) -> Any | None:
        """Find a channel by id from the cache, falling back to the API.

        Returns:
            The channel, or None if it does not exist or is not visible.
        """
        if not channel_id:
            return None
        try:
            snowflake = int(channel_id)
        except (TypeError, ValueError):
            return None

        channel = self.get_channel(snowflake)
        if channel is not None:
            return channel

        try:
            return await self.fetch_channel(snowflake)
        except (discord.NotFound, discord.Forbidden, discord.InvalidData):
            return None
        except discord.HTTPException as e:
            log.warning("channel_fetch_failed", bot_id=self.bot_id, channel_id=channel_id, error=str(e))
            return None

    def text_channels(self) -> list[dict[str, str]]:
        """Text channels across every guild the bot is in."""
        return [
            {
                "id": str(channel.id),
                "name": channel.name,
                "guildId": str(guild.id),
                "guildName": guild.name,
            }
            for guild in self.guilds
            for channel in guild.text_channels
        ]
