"""Starboard: repost messages that collect enough of one reaction.

One watcher serves every running bot. Each bot with a ``starboard``
integration gets a single ``reaction_add`` listener on its connection;
the posted-message set is persisted on the integration record and every
write is registered with the self-write ledger.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import discord

from botyard.logging import get_logger
from botyard.models import BotConfig, Integration, ServiceName
from botyard.suppression import POSTED_MESSAGE_IDS_CAP, SelfWriteLedger, merge_seen

if TYPE_CHECKING:
    from botyard.gateway import GatewayClient
    from botyard.store import ConfigStore

log = get_logger("starboard")

STARBOARD_COLOR = 0xFFD700


def starboard_integrations(config: BotConfig) -> list[Integration]:
    """Starboard integrations that have a target channel."""
    return [
        i
        for i in config.integrations
        if i.service == ServiceName.STARBOARD and i.config.channel_id
    ]


def emoji_matches(emoji: Any, wanted: str) -> bool:
    return str(emoji) == wanted or getattr(emoji, "name", None) == wanted


def starboard_embed(message: discord.Message) -> discord.Embed:
    """Card reposting ``message`` with its author, text and first image."""
    embed = discord.Embed(
        color=STARBOARD_COLOR,
        description=message.content or "",
        timestamp=message.created_at,
    )
    embed.set_author(
        name=str(message.author),
        icon_url=message.author.display_avatar.url,
    )
    embed.add_field(name="Source", value=f"[Jump to message]({message.jump_url})", inline=False)
    for attachment in message.attachments:
        if (attachment.content_type or "").startswith("image/"):
            embed.set_image(url=attachment.url)
            break
    return embed


class StarboardWatcher:
    """Per-bot reaction watchers feeding starboard channels.

    Attributes:
        store: Config store the posted-message sets live in.
        ledger: Self-write ledger shared with the config watcher.
    """

    def __init__(self, store: "ConfigStore", ledger: SelfWriteLedger) -> None:
        self.store = store
        self.ledger = ledger
        self._listeners: dict[str, tuple["GatewayClient", Any]] = {}
        # (bot id, integration id, message id) being posted right now
        self._posting: set[tuple[str, str, str]] = set()

    def is_watching(self, bot_id: str) -> bool:
        return bot_id in self._listeners

    def start_for_bot(self, bot_id: str, config: BotConfig, connection: "GatewayClient") -> None:
        """Attach a reaction listener if the bot has a starboard configured."""
        integrations = starboard_integrations(config)
        if not integrations:
            return

        async def listener(reaction: discord.Reaction, user: Any) -> None:
            if getattr(user, "bot", False):
                return
            for integration in integrations:
                try:
                    await self.handle_reaction(bot_id, integration, reaction, connection)
                except Exception as e:
                    log.error(
                        "starboard_failed",
                        bot_id=bot_id,
                        integration_id=integration.id,
                        error=str(e),
                    )

        connection.add_listener(listener, "reaction_add")
        self._listeners[bot_id] = (connection, listener)
        log.info("starboard_started", bot_id=bot_id, integrations=len(integrations))

    def stop_for_bot(self, bot_id: str) -> None:
        entry = self._listeners.pop(bot_id, None)
        if entry is None:
            return
        connection, listener = entry
        connection.remove_listener(listener, "reaction_add")
        log.info("starboard_stopped", bot_id=bot_id)

    def reload_for_bot(self, bot_id: str, config: BotConfig, connection: "GatewayClient") -> None:
        self.stop_for_bot(bot_id)
        self.start_for_bot(bot_id, config, connection)

    def stop_all(self) -> None:
        for bot_id in list(self._listeners):
            self.stop_for_bot(bot_id)

    async def handle_reaction(
        self,
        bot_id: str,
        integration: Integration,
        reaction: discord.Reaction,
        connection: "GatewayClient",
    ) -> bool:
        """Repost the reacted message once it reaches the threshold.

        Returns:
            True if the message was posted to the starboard.
        """
        settings = integration.config
        if not emoji_matches(reaction.emoji, settings.emoji or "⭐"):
            return False
        if reaction.count < (settings.threshold or 3):
            return False

        # The posted set may have grown since the listener was attached
        fresh = self.store.read(bot_id).find_integration(integration.id)
        if fresh is None:
            return False
        message = reaction.message
        message_id = str(message.id)
        key = (bot_id, integration.id, message_id)
        if message_id in fresh.config.posted_message_ids or key in self._posting:
            return False

        # Claimed before the first await so a reaction arriving mid-post is dropped
        self._posting.add(key)
        try:
            return await self._post(bot_id, integration, reaction, connection)
        finally:
            self._posting.discard(key)

    async def _post(
        self,
        bot_id: str,
        integration: Integration,
        reaction: discord.Reaction,
        connection: "GatewayClient",
    ) -> bool:
        settings = integration.config
        message = reaction.message
        message_id = str(message.id)

        channel = await connection.resolve_channel(settings.channel_id)
        if channel is None:
            log.warning("starboard_channel_missing", bot_id=bot_id, channel_id=settings.channel_id)
            return False

        await channel.send(
            content=f"{settings.emoji} **{reaction.count}** | <#{message.channel.id}>",
            embeds=[starboard_embed(message)],
        )

        def record(config: BotConfig) -> None:
            target = config.find_integration(integration.id)
            if target is not None:
                target.config.posted_message_ids = merge_seen(
                    target.config.posted_message_ids, [message_id], POSTED_MESSAGE_IDS_CAP
                )

        self.store.update(bot_id, record, self_writes=self.ledger)
        log.info("starboard_posted", bot_id=bot_id, message_id=message_id)
        return True
