"""Command dispatch for a running bot.

Translates a bot's stored command list into live handling of two kinds of
invocation:
- Prefix invocation: a chat message starting with the bot's prefix
- Slash invocation: an application-command interaction

Both are wrapped in an ``Invocation`` so actions, moderation and
integration handlers do not care which kind they got.
"""

from __future__ import annotations

from collections.abc import Callable, Coroutine, Sequence
from typing import TYPE_CHECKING, Any, Protocol

import discord

from botyard.embeds import build_embed
from botyard.errors import PermissionDenied
from botyard.logging import get_logger
from botyard.models import BotConfig, Command, ResponseType

if TYPE_CHECKING:
    from botyard.gateway import GatewayClient
    from botyard.integrations import IntegrationRegistry
    from botyard.moderation import ModerationHandler

log = get_logger("commands")

NOT_PERMITTED = "You do not have permission to use this command."
NOT_FOUND = "Command not found."
FAILED = "An error occurred while executing the command."
NO_RESPONSE = "No response configured."
NO_INTEGRATION = "Integration not configured."

# (command name, invoking user tag)
ExecutedCallback = Callable[[str, str], None]


# =============================================================================
# Invocation
# =============================================================================


class Invocation:
    """One command invocation, from a message or an interaction.

    Attributes:
        author: The invoking user.
        member: The invoking guild member, or None outside guilds.
        guild: Guild the command was invoked in, if any.
        channel: Channel the command was invoked in.
        args: Whitespace-split arguments after the command name.
        message: Source message for prefix invocations.
        interaction: Source interaction for slash invocations.
    """

    def __init__(
        self,
        *,
        author: Any,
        member: Any,
        guild: Any,
        channel: Any,
        args: Sequence[str] = (),
        message: Any = None,
        interaction: Any = None,
    ) -> None:
        self.author = author
        self.member = member
        self.guild = guild
        self.channel = channel
        self.args = list(args)
        self.message = message
        self.interaction = interaction

    @classmethod
    def from_message(cls, message: discord.Message, args: Sequence[str]) -> "Invocation":
        author = message.author
        return cls(
            author=author,
            member=author if isinstance(author, discord.Member) else None,
            guild=message.guild,
            channel=message.channel,
            args=args,
            message=message,
        )

    @classmethod
    def from_interaction(cls, interaction: discord.Interaction) -> "Invocation":
        user = interaction.user
        invocation = cls(
            author=user,
            member=user if isinstance(user, discord.Member) else None,
            guild=interaction.guild,
            channel=interaction.channel,
            interaction=interaction,
        )
        invocation.args = [str(v) for v in invocation.options.values()]
        return invocation

    @property
    def is_interaction(self) -> bool:
        return self.interaction is not None

    @property
    def user_tag(self) -> str:
        return str(self.author) if self.author is not None else "Unknown"

    @property
    def options(self) -> dict[str, Any]:
        """Slash-command option values by name (empty for prefix invocations)."""
        if self.interaction is None:
            return {}
        data = self.interaction.data or {}
        return {opt["name"]: opt.get("value") for opt in data.get("options", [])}

    def option(self, name: str, default: Any = None) -> Any:
        return self.options.get(name, default)

    def text(self, option_name: str = "query") -> str:
        """Free text argument: a named option or the joined prefix args."""
        if self.is_interaction:
            return str(self.option(option_name) or "").strip()
        return " ".join(self.args).strip()

    @property
    def permissions(self) -> discord.Permissions:
        """Guild-level permissions of the invoker (none outside guilds)."""
        if self.member is None:
            return discord.Permissions.none()
        return self.member.guild_permissions

    async def target_member(self, option_name: str = "user") -> Any | None:
        """Member the command targets: first mention, or the ``user`` option."""
        if self.message is not None:
            for mentioned in self.message.mentions:
                if isinstance(mentioned, discord.Member):
                    return mentioned
            return None

        user_id = self.option(option_name)
        if not user_id or self.guild is None:
            return None
        member = self.guild.get_member(int(user_id))
        if member is not None:
            return member
        try:
            return await self.guild.fetch_member(int(user_id))
        except discord.NotFound:
            return None

    async def reply(
        self,
        content: str | None = None,
        *,
        embeds: list[discord.Embed] | None = None,
        ephemeral: bool = False,
    ) -> None:
        """Reply to the invocation.

        ``ephemeral`` only applies to interactions; prefix invocations always
        reply in the channel.
        """
        kwargs: dict[str, Any] = {}
        if content is not None:
            kwargs["content"] = content
        if embeds:
            kwargs["embeds"] = embeds

        if self.interaction is None:
            await self.message.reply(**kwargs)
            return

        if self.interaction.response.is_done():
            await self.interaction.followup.send(ephemeral=ephemeral, **kwargs)
        else:
            await self.interaction.response.send_message(ephemeral=ephemeral, **kwargs)

    async def react(self, emoji: str) -> None:
        """Add a reaction to the source message (no-op for interactions)."""
        if self.message is not None:
            await self.message.add_reaction(emoji)


# =============================================================================
# Dispatch
# =============================================================================


class ActionHandler(Protocol):
    """Executes one response type for a command."""

    async def __call__(self, command: Command, invocation: Invocation) -> None:
        ...


class CommandDispatchEngine:
    """Live command dispatch for one bot connection.

    Attributes:
        connection: The bot's gateway connection.
        config: Current configuration snapshot.
        commands: Case-folded name -> Command index.
        registered: Payload last sent to the remote command registry.
    """

    def __init__(
        self,
        connection: "GatewayClient",
        config: BotConfig,
        moderation: "ModerationHandler | None" = None,
        integrations: "IntegrationRegistry | None" = None,
        on_executed: ExecutedCallback | None = None,
    ) -> None:
        self.connection = connection
        self.config = config
        self.moderation = moderation
        self.integrations = integrations
        self.on_executed = on_executed
        self.commands: dict[str, Command] = {}
        self.registered: list[dict[str, Any]] = []
        self._attached = False

        self.actions: dict[ResponseType, ActionHandler] = {
            ResponseType.TEXT: self._send_text,
            ResponseType.EMBED: self._send_embed,
            ResponseType.REACTION: self._add_reaction,
            ResponseType.MODERATION: self._run_moderation,
            ResponseType.INTEGRATION: self._run_integration,
        }

        self.load(config)

    @property
    def bot_id(self) -> str:
        return self.config.id

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def attach(self) -> None:
        """Attach the message and interaction listeners (once)."""
        if self._attached:
            return
        self.connection.add_listener(self.on_message, "message")
        self.connection.add_listener(self.on_interaction, "interaction")
        self._attached = True

    def detach(self) -> None:
        if not self._attached:
            return
        self.connection.remove_listener(self.on_message, "message")
        self.connection.remove_listener(self.on_interaction, "interaction")
        self._attached = False

    def load(self, config: BotConfig) -> None:
        """Rebuild the command index from a configuration snapshot."""
        index: dict[str, Command] = {}
        for command in config.commands:
            if command.key in index:
                log.warning(
                    "duplicate_command_ignored",
                    bot_id=config.id,
                    command=command.name,
                )
                continue
            index[command.key] = command

        self.config = config
        self.commands = index
        log.info("commands_loaded", bot_id=config.id, count=len(index))

    async def reload(self, config: BotConfig) -> None:
        """Swap in a new configuration and re-register remote commands."""
        log.info("commands_reloading", bot_id=config.id)
        self.load(config)
        await self.register_remote()

    def remote_payload(self) -> list[dict[str, Any]]:
        """Application-command declarations for slash and both commands."""
        return [
            {
                "name": command.key,
                "description": command.description or "No description",
                "type": 1,
                "options": command.options,
            }
            for command in self.commands.values()
            if command.is_remote
        ]

    async def register_remote(self) -> bool:
        """Declare remote commands to the gateway, best-effort.

        The full list is always sent, so commands removed from the
        configuration are removed remotely too.

        Returns:
            True if the registry accepted the list.
        """
        payload = self.remote_payload()
        try:
            await self.connection.register_remote_commands(payload)
        except Exception as e:
            log.warning(
                "remote_command_registration_failed",
                bot_id=self.bot_id,
                error=str(e),
            )
            return False

        self.registered = payload
        log.info("remote_commands_registered", bot_id=self.bot_id, count=len(payload))
        return True

    # =========================================================================
    # Listeners
    # =========================================================================

    async def on_message(self, message: discord.Message) -> None:
        if message.author.bot:
            return

        prefix = self.config.prefix
        content = message.content or ""
        if not content.startswith(prefix):
            return

        tokens = content[len(prefix):].split()
        if not tokens:
            return

        command = self.commands.get(tokens[0].lower())
        # Users type arbitrary text after the prefix; unknown names are not errors
        if command is None or not command.accepts_prefix:
            return

        await self.execute(command, Invocation.from_message(message, tokens[1:]))

    async def on_interaction(self, interaction: discord.Interaction) -> None:
        if interaction.type != discord.InteractionType.application_command:
            return

        invocation = Invocation.from_interaction(interaction)
        name = str((interaction.data or {}).get("name", "")).lower()
        command = self.commands.get(name)

        if command is None or not command.is_remote:
            try:
                await invocation.reply(NOT_FOUND, ephemeral=True)
            except discord.DiscordException as e:
                log.warning("command_reply_failed", bot_id=self.bot_id, error=str(e))
            return

        await self.execute(command, invocation)

    # =========================================================================
    # Execution
    # =========================================================================

    def require_permission(self, command: Command, invocation: Invocation) -> None:
        """Raise PermissionDenied unless the invoker holds every required permission."""
        if not command.required_permissions:
            return
        required = discord.Permissions(**{name: True for name in command.required_permissions})
        if not invocation.permissions.is_superset(required):
            raise PermissionDenied(NOT_PERMITTED)

    async def execute(self, command: Command, invocation: Invocation) -> None:
        """Run a command's action, containing any failure.

        Nothing raised here reaches the gateway's event loop: failures are
        logged and answered with a generic reply.
        """
        log.debug(
            "command_invoked",
            bot_id=self.bot_id,
            command=command.name,
            user=invocation.user_tag,
            slash=invocation.is_interaction,
        )

        try:
            self.require_permission(command, invocation)

            handler = self.actions.get(command.response_type)
            if handler is None:
                log.warning(
                    "unknown_response_type",
                    bot_id=self.bot_id,
                    response_type=command.response_type,
                )
                return
            await handler(command, invocation)

        except PermissionDenied as e:
            log.info("command_denied", bot_id=self.bot_id, command=command.name, user=invocation.user_tag)
            try:
                await invocation.reply(str(e), ephemeral=True)
            except discord.DiscordException as reply_error:
                log.warning("command_reply_failed", bot_id=self.bot_id, error=str(reply_error))
            return

        except Exception as e:
            log.exception(
                "command_failed",
                bot_id=self.bot_id,
                command=command.name,
                error=str(e),
            )
            try:
                await invocation.reply(FAILED, ephemeral=True)
            except discord.DiscordException as reply_error:
                log.warning(
                    "command_reply_failed",
                    bot_id=self.bot_id,
                    error=str(reply_error),
                )
            return

        if self.on_executed is not None:
            self.on_executed(command.name, invocation.user_tag)

    async def _send_text(self, command: Command, invocation: Invocation) -> None:
        await invocation.reply(command.response_content or NO_RESPONSE)

    async def _send_embed(self, command: Command, invocation: Invocation) -> None:
        await invocation.reply(embeds=[build_embed(command.embed_data)])

    async def _add_reaction(self, command: Command, invocation: Invocation) -> None:
        # Interactions have no message to react to
        await invocation.react(command.reaction or "✅")

    async def _run_moderation(self, command: Command, invocation: Invocation) -> None:
        if self.moderation is None:
            raise RuntimeError("moderation handler not configured")
        await self.moderation.execute(command, invocation)

    async def _run_integration(self, command: Command, invocation: Invocation) -> None:
        handler = (
            self.integrations.get(command.integration_service)
            if self.integrations is not None and command.integration_service
            else None
        )
        if handler is None:
            await invocation.reply(NO_INTEGRATION)
            return
        await handler.execute(command, invocation, self.config)
