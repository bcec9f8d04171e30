"""Event rule dispatch for a running bot.

Each stored event rule becomes exactly one gateway listener. Reloading
detaches every listener this engine attached and attaches the new set;
there is no incremental diffing, rule counts are small and reloads rare.
"""

from __future__ import annotations

from collections.abc import Callable, Coroutine
from typing import TYPE_CHECKING, Any

import discord

from botyard.embeds import build_embed, truncate
from botyard.logging import get_logger
from botyard.models import ActionType, BotConfig, EventRule, EventType

if TYPE_CHECKING:
    from botyard.gateway import GatewayClient

log = get_logger("events")

# (event type, rule name)
TriggeredCallback = Callable[[str, "str | None"], None]
RuleHandler = Callable[..., Coroutine[Any, Any, bool]]

DELETED_COLOR = 0xFF0000
EDITED_COLOR = 0xFFAA00


def render_placeholders(text: str, user: Any = None, member_count: int | None = None) -> str:
    """Substitute ``{user}`` and ``{memberCount}`` in a message template."""
    return text.replace("{user}", str(user) if user is not None else "Unknown").replace(
        "{memberCount}", str(member_count if member_count is not None else 0)
    )


class EventDispatchEngine:
    """Attaches one listener per event rule and runs the rule's reaction.

    Attributes:
        connection: The bot's gateway connection.
        config: Current configuration snapshot.
        handlers: Built-in handler per event type. A handler returns True
            when the event was acted on.
    """

    def __init__(
        self,
        connection: "GatewayClient",
        config: BotConfig,
        on_triggered: TriggeredCallback | None = None,
    ) -> None:
        self.connection = connection
        self.config = config
        self.on_triggered = on_triggered
        self._active: list[tuple[str, str, Callable[..., Coroutine[Any, Any, None]]]] = []

        self.handlers: dict[EventType, RuleHandler] = {
            EventType.MESSAGE_CREATE: self._on_message_create,
            EventType.MESSAGE_DELETE: self._on_message_delete,
            EventType.MESSAGE_UPDATE: self._on_message_update,
            EventType.MEMBER_JOIN: self._on_member_join,
            EventType.MEMBER_LEAVE: self._on_member_leave,
            EventType.REACTION_ADD: self._on_reaction_add,
            EventType.REACTION_REMOVE: self._on_reaction_remove,
        }

    @property
    def bot_id(self) -> str:
        return self.config.id

    @property
    def attached(self) -> list[tuple[str, str]]:
        """(rule id, gateway event) for every attached listener."""
        return [(rule_id, event) for rule_id, event, _ in self._active]

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def load(self, config: BotConfig) -> None:
        """Detach everything, then attach one listener per rule in ``config``."""
        self.detach()
        self.config = config

        for rule in config.events:
            self._attach(rule)

        log.info("events_loaded", bot_id=config.id, count=len(self._active))

    def reload(self, config: BotConfig) -> None:
        log.info("events_reloading", bot_id=config.id)
        self.load(config)

    def detach(self) -> None:
        """Remove every listener this engine attached."""
        for _, event, listener in self._active:
            self.connection.remove_listener(listener, event)
        self._active = []

    def _attach(self, rule: EventRule) -> None:
        async def listener(*args: Any) -> None:
            await self.handle(rule, *args)

        event = rule.event_type.gateway_event
        self.connection.add_listener(listener, event)
        self._active.append((rule.id, event, listener))

    # =========================================================================
    # Dispatch
    # =========================================================================

    async def handle(self, rule: EventRule, *args: Any) -> None:
        """Run one rule against one gateway event, containing any failure."""
        handler = self.handlers.get(rule.event_type)
        if handler is None:
            log.warning("unhandled_event_type", bot_id=self.bot_id, event_type=rule.event_type)
            return

        try:
            handled = await handler(rule, *args)
        except Exception as e:
            log.exception(
                "event_handler_failed",
                bot_id=self.bot_id,
                rule_id=rule.id,
                event_type=rule.event_type.value,
                error=str(e),
            )
            return

        # Every event that completes without raising counts as triggered,
        # whether or not the rule had anything to do
        log.debug("event_handled", bot_id=self.bot_id, rule_id=rule.id, acted=bool(handled))
        if self.on_triggered is not None:
            self.on_triggered(rule.event_type.value, rule.name)

    async def _on_message_create(self, rule: EventRule, message: discord.Message) -> bool:
        if message.author.bot:
            return False
        return await self.execute_action(rule, message.channel, user=message.author)

    async def _on_message_delete(self, rule: EventRule, message: discord.Message) -> bool:
        channel = await self.connection.resolve_channel(rule.config.log_channel_id)
        if channel is None:
            return False

        author = str(message.author) if message.author else "Unknown"
        embed = discord.Embed(
            title="Message Deleted",
            description=f"Message by {author} was deleted",
            color=DELETED_COLOR,
            timestamp=discord.utils.utcnow(),
        )
        embed.add_field(name="Content", value=truncate(message.content or "No content", 1024))
        embed.add_field(name="Channel", value=getattr(message.channel, "name", "Unknown"))
        await channel.send(embed=embed)
        return True

    async def _on_message_update(
        self,
        rule: EventRule,
        before: discord.Message,
        after: discord.Message,
    ) -> bool:
        if after.author.bot or before.content == after.content:
            return False

        channel = await self.connection.resolve_channel(rule.config.log_channel_id)
        if channel is None:
            return False

        embed = discord.Embed(
            title="Message Edited",
            description=f"Message by {after.author} was edited",
            color=EDITED_COLOR,
            timestamp=discord.utils.utcnow(),
        )
        embed.add_field(name="Before", value=truncate(before.content or "No content", 1024))
        embed.add_field(name="After", value=truncate(after.content or "No content", 1024))
        embed.add_field(name="Channel", value=getattr(after.channel, "name", "Unknown"))
        await channel.send(embed=embed)
        return True

    async def _on_member_join(self, rule: EventRule, member: discord.Member) -> bool:
        channel = await self.connection.resolve_channel(rule.config.welcome_channel_id)
        if channel is None:
            return False
        return await self.execute_action(
            rule,
            channel,
            user=member,
            member_count=member.guild.member_count,
        )

    async def _on_member_leave(self, rule: EventRule, member: discord.Member) -> bool:
        channel = await self.connection.resolve_channel(rule.config.log_channel_id)
        if channel is None:
            return False

        embed = discord.Embed(
            title="Member Left",
            description=f"{member} left the server",
            color=DELETED_COLOR,
            timestamp=discord.utils.utcnow(),
        )
        await channel.send(embed=embed)
        return True

    async def _on_reaction_add(self, rule: EventRule, reaction: discord.Reaction, user: Any) -> bool:
        return await self._apply_role_reaction(rule, reaction, user, add=True)

    async def _on_reaction_remove(self, rule: EventRule, reaction: discord.Reaction, user: Any) -> bool:
        return await self._apply_role_reaction(rule, reaction, user, add=False)

    async def _apply_role_reaction(
        self,
        rule: EventRule,
        reaction: discord.Reaction,
        user: Any,
        add: bool,
    ) -> bool:
        if user.bot or not rule.config.role_reactions:
            return False

        emoji = reaction.emoji
        names = {str(emoji), getattr(emoji, "name", None) or str(emoji)}
        mapping = next((rr for rr in rule.config.role_reactions if rr.emoji in names), None)
        if mapping is None:
            return False

        guild = reaction.message.guild
        if guild is None:
            return False

        role = guild.get_role(int(mapping.role_id))
        if role is None:
            log.warning("role_not_found", bot_id=self.bot_id, role_id=mapping.role_id)
            return False

        member = guild.get_member(user.id) or await guild.fetch_member(user.id)
        if add:
            await member.add_roles(role, reason="Reaction role")
        else:
            await member.remove_roles(role, reason="Reaction role")

        log.info(
            "reaction_role_applied",
            bot_id=self.bot_id,
            role=role.name,
            user=str(user),
            added=add,
        )
        return True

    # =========================================================================
    # Actions
    # =========================================================================

    async def execute_action(
        self,
        rule: EventRule,
        channel: Any,
        user: Any = None,
        member_count: int | None = None,
    ) -> bool:
        """Run the rule's configured action in ``channel``.

        Returns:
            True if the action did something.
        """
        action = rule.action
        if action is None:
            return False

        if action.type == ActionType.SEND_MESSAGE:
            text = render_placeholders(action.message or "Event triggered", user, member_count)
            await channel.send(text)
            return True

        if action.type == ActionType.SEND_EMBED:
            embed = build_embed(action.embed_data, "Event", "An event occurred")
            await channel.send(embed=embed)
            return True

        if action.type == ActionType.ASSIGN_ROLE:
            if user is None or not action.role_id:
                return False
            guild = channel.guild
            role = guild.get_role(int(action.role_id))
            if role is None:
                log.warning("role_not_found", bot_id=self.bot_id, role_id=action.role_id)
                return False
            member = user if isinstance(user, discord.Member) else (
                guild.get_member(user.id) or await guild.fetch_member(user.id)
            )
            await member.add_roles(role, reason=f"Event rule {rule.name or rule.id}")
            return True

        log.warning("unknown_action_type", bot_id=self.bot_id, action_type=action.type)
        return False
