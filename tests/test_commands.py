"""Tests for command dispatch.

Covers prefix and slash invocation, permission gating, each response type,
failure containment and remote command registration.
"""

from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

from botyard.commands import (
    FAILED,
    NO_INTEGRATION,
    NOT_FOUND,
    NOT_PERMITTED,
    CommandDispatchEngine,
    Invocation,
)
from botyard.errors import PermissionDenied
from botyard.models import BotConfig


def make_config(*commands: dict, prefix: str = "!") -> BotConfig:
    return BotConfig.model_validate({"id": "bot-1", "prefix": prefix, "commands": list(commands)})


def make_message(content: str, *, bot: bool = False, permissions: discord.Permissions | None = None):
    if permissions is not None:
        author = MagicMock(spec=discord.Member)
        author.guild_permissions = permissions
    else:
        author = MagicMock()
    author.bot = bot
    author.__str__.return_value = "alice"

    message = MagicMock()
    message.author = author
    message.content = content
    message.mentions = []
    message.reply = AsyncMock()
    message.add_reaction = AsyncMock()
    return message


def make_interaction(name: str, options: list[dict] | None = None):
    interaction = MagicMock()
    interaction.type = discord.InteractionType.application_command
    interaction.data = {"name": name, "options": options or []}
    interaction.user.__str__.return_value = "alice"
    interaction.response.is_done = MagicMock(return_value=False)
    interaction.response.send_message = AsyncMock()
    interaction.followup.send = AsyncMock()
    return interaction


PING = {"name": "ping", "responseType": "text", "responseContent": "pong"}


# =============================================================================
# Prefix invocation
# =============================================================================


class TestPrefixInvocation:
    """Tests for prefix-triggered commands."""

    @pytest.mark.asyncio
    async def test_ping_replies_pong(self, connection) -> None:
        engine = CommandDispatchEngine(connection, make_config(PING))
        engine.attach()
        message = make_message("!ping")

        await connection.dispatch("message", message)

        message.reply.assert_awaited_once_with(content="pong")

    @pytest.mark.asyncio
    async def test_unknown_command_is_silent(self, connection) -> None:
        engine = CommandDispatchEngine(connection, make_config(PING))
        engine.attach()
        message = make_message("!pong")

        await connection.dispatch("message", message)

        message.reply.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_name_is_case_insensitive(self, connection) -> None:
        engine = CommandDispatchEngine(connection, make_config(PING))
        message = make_message("!PiNg extra args")
        await engine.on_message(message)
        message.reply.assert_awaited_once_with(content="pong")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content", ["ping", "!", "! ", "?ping", ""])
    async def test_non_invocations_ignored(self, connection, content: str) -> None:
        engine = CommandDispatchEngine(connection, make_config(PING))
        message = make_message(content)
        await engine.on_message(message)
        message.reply.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_bot_authors_ignored(self, connection) -> None:
        engine = CommandDispatchEngine(connection, make_config(PING))
        message = make_message("!ping", bot=True)
        await engine.on_message(message)
        message.reply.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_custom_prefix(self, connection) -> None:
        engine = CommandDispatchEngine(connection, make_config(PING, prefix="$$"))
        message = make_message("$$ping")
        await engine.on_message(message)
        message.reply.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_slash_only_command_not_prefix_invocable(self, connection) -> None:
        engine = CommandDispatchEngine(connection, make_config({**PING, "type": "slash"}))
        message = make_message("!ping")
        await engine.on_message(message)
        message.reply.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_text_response(self, connection) -> None:
        engine = CommandDispatchEngine(connection, make_config({"name": "hello"}))
        message = make_message("!hello")
        await engine.on_message(message)
        message.reply.assert_awaited_once_with(content="No response configured.")


# =============================================================================
# Response types
# =============================================================================


class TestResponseTypes:
    """Tests for embed, reaction, moderation and integration responses."""

    @pytest.mark.asyncio
    async def test_embed_response(self, connection) -> None:
        config = make_config(
            {"name": "rules", "responseType": "embed", "embedData": {"title": "Rules", "color": "#00ff00"}}
        )
        engine = CommandDispatchEngine(connection, config)
        message = make_message("!rules")

        await engine.on_message(message)

        embeds = message.reply.await_args.kwargs["embeds"]
        assert embeds[0].title == "Rules"
        assert embeds[0].color.value == 0x00FF00

    @pytest.mark.asyncio
    async def test_reaction_response(self, connection) -> None:
        config = make_config({"name": "like", "responseType": "reaction", "reaction": "👍"})
        engine = CommandDispatchEngine(connection, config)
        message = make_message("!like")

        await engine.on_message(message)

        message.add_reaction.assert_awaited_once_with("👍")
        message.reply.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_moderation_delegates_to_handler(self, connection) -> None:
        moderation = MagicMock()
        moderation.execute = AsyncMock()
        config = make_config({"name": "kick", "responseType": "moderation", "moderationAction": "kick"})
        engine = CommandDispatchEngine(connection, config, moderation=moderation)

        await engine.on_message(make_message("!kick @bob"))

        command, invocation = moderation.execute.await_args.args
        assert command.name == "kick"
        assert invocation.args == ["@bob"]

    @pytest.mark.asyncio
    async def test_integration_delegates_to_registry(self, connection) -> None:
        handler = MagicMock()
        handler.execute = AsyncMock()
        registry = MagicMock()
        registry.get.return_value = handler
        config = make_config(
            {
                "name": "plex",
                "responseType": "integration",
                "integrationService": "plex",
                "integrationAction": "nowPlaying",
            }
        )
        engine = CommandDispatchEngine(connection, config, integrations=registry)

        await engine.on_message(make_message("!plex"))

        command, _, passed_config = handler.execute.await_args.args
        assert command.integration_action == "nowPlaying"
        assert passed_config is config

    @pytest.mark.asyncio
    async def test_integration_without_handler(self, connection) -> None:
        config = make_config({"name": "plex", "responseType": "integration", "integrationService": "plex"})
        engine = CommandDispatchEngine(connection, config)
        message = make_message("!plex")

        await engine.on_message(message)

        message.reply.assert_awaited_once_with(content=NO_INTEGRATION)


# =============================================================================
# Permissions and failures
# =============================================================================


class TestPermissionsAndFailures:
    """Tests for permission gating and failure containment."""

    @pytest.mark.asyncio
    async def test_missing_permission_rejected(self, connection) -> None:
        config = make_config({**PING, "requiredPermissions": ["KickMembers"]})
        engine = CommandDispatchEngine(connection, config)
        message = make_message("!ping", permissions=discord.Permissions(send_messages=True))

        await engine.on_message(message)

        message.reply.assert_awaited_once_with(content=NOT_PERMITTED)

    @pytest.mark.asyncio
    async def test_denied_command_is_not_executed(self, connection) -> None:
        config = make_config({**PING, "requiredPermissions": ["KickMembers"]})
        executed = []
        engine = CommandDispatchEngine(
            connection, config, on_executed=lambda name, user: executed.append(name)
        )
        message = make_message("!ping", permissions=discord.Permissions(send_messages=True))

        await engine.on_message(message)

        assert executed == []

    def test_require_permission_raises(self, connection) -> None:
        config = make_config({**PING, "requiredPermissions": ["KickMembers"]})
        engine = CommandDispatchEngine(connection, config)
        message = make_message("!ping", permissions=discord.Permissions(send_messages=True))

        with pytest.raises(PermissionDenied, match="do not have permission"):
            engine.require_permission(engine.commands["ping"], Invocation.from_message(message, []))

    @pytest.mark.asyncio
    async def test_outside_guild_has_no_permissions(self, connection) -> None:
        config = make_config({**PING, "requiredPermissions": ["ManageMessages"]})
        engine = CommandDispatchEngine(connection, config)
        message = make_message("!ping")

        await engine.on_message(message)

        message.reply.assert_awaited_once_with(content=NOT_PERMITTED)

    @pytest.mark.asyncio
    async def test_permission_granted(self, connection) -> None:
        config = make_config({**PING, "requiredPermissions": ["KickMembers"]})
        executed = []
        engine = CommandDispatchEngine(
            connection, config, on_executed=lambda name, user: executed.append((name, user))
        )
        message = make_message("!ping", permissions=discord.Permissions(kick_members=True))

        await engine.on_message(message)

        message.reply.assert_awaited_once_with(content="pong")
        assert executed == [("ping", "alice")]

    @pytest.mark.asyncio
    async def test_failure_is_contained(self, connection) -> None:
        config = make_config({"name": "kick", "responseType": "moderation"})
        executed = []
        engine = CommandDispatchEngine(
            connection, config, on_executed=lambda name, user: executed.append(name)
        )
        message = make_message("!kick")

        # No moderation handler configured
        await engine.on_message(message)

        message.reply.assert_awaited_once_with(content=FAILED)
        assert executed == []

    @pytest.mark.asyncio
    async def test_failed_error_reply_is_swallowed(self, connection) -> None:
        config = make_config({"name": "kick", "responseType": "moderation"})
        engine = CommandDispatchEngine(connection, config)
        message = make_message("!kick")
        message.reply.side_effect = discord.DiscordException("channel gone")

        await engine.on_message(message)


# =============================================================================
# Slash invocation
# =============================================================================


class TestSlashInvocation:
    """Tests for application-command interactions."""

    @pytest.mark.asyncio
    async def test_slash_command_replies(self, connection) -> None:
        engine = CommandDispatchEngine(connection, make_config({**PING, "type": "both"}))
        engine.attach()
        interaction = make_interaction("ping")

        await connection.dispatch("interaction", interaction)

        interaction.response.send_message.assert_awaited_once_with(ephemeral=False, content="pong")

    @pytest.mark.asyncio
    async def test_unknown_slash_command(self, connection) -> None:
        engine = CommandDispatchEngine(connection, make_config(PING))
        interaction = make_interaction("ping")

        # Prefix-only commands are not remote
        await engine.on_interaction(interaction)

        interaction.response.send_message.assert_awaited_once_with(ephemeral=True, content=NOT_FOUND)

    @pytest.mark.asyncio
    async def test_non_command_interactions_ignored(self, connection) -> None:
        engine = CommandDispatchEngine(connection, make_config({**PING, "type": "slash"}))
        interaction = make_interaction("ping")
        interaction.type = discord.InteractionType.component

        await engine.on_interaction(interaction)

        interaction.response.send_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_followup_when_already_responded(self, connection) -> None:
        engine = CommandDispatchEngine(connection, make_config({**PING, "type": "slash"}))
        interaction = make_interaction("ping")
        interaction.response.is_done.return_value = True

        await engine.on_interaction(interaction)

        interaction.followup.send.assert_awaited_once_with(ephemeral=False, content="pong")

    def test_invocation_options(self) -> None:
        interaction = make_interaction("search", [{"name": "query", "value": "dune"}])
        invocation = Invocation.from_interaction(interaction)
        assert invocation.is_interaction
        assert invocation.option("query") == "dune"
        assert invocation.text() == "dune"
        assert invocation.args == ["dune"]


# =============================================================================
# Lifecycle and remote registration
# =============================================================================


class TestEngineLifecycle:
    """Tests for listener attachment, reloads and remote registration."""

    def test_attach_is_idempotent(self, connection) -> None:
        engine = CommandDispatchEngine(connection, make_config(PING))
        engine.attach()
        engine.attach()
        assert connection.listener_count("message") == 1
        assert connection.listener_count("interaction") == 1

        engine.detach()
        engine.detach()
        assert connection.listener_count() == 0

    def test_duplicate_names_keep_first(self, connection) -> None:
        config = make_config(
            {"name": "ping", "responseContent": "first"},
            {"name": "PING", "responseContent": "second"},
        )
        engine = CommandDispatchEngine(connection, config)
        assert engine.commands["ping"].response_content == "first"

    def test_remote_payload_only_has_remote_commands(self, connection) -> None:
        config = make_config(
            {"name": "local"},
            {"name": "Slashy", "type": "slash", "description": "Does things"},
            {"name": "both", "type": "both", "options": [{"name": "query", "type": 3}]},
        )
        engine = CommandDispatchEngine(connection, config)
        payload = engine.remote_payload()
        assert [p["name"] for p in payload] == ["slashy", "both"]
        assert payload[0]["description"] == "Does things"
        assert payload[1]["options"] == [{"name": "query", "type": 3}]

    @pytest.mark.asyncio
    async def test_register_remote(self, connection) -> None:
        engine = CommandDispatchEngine(connection, make_config({**PING, "type": "slash"}))
        assert await engine.register_remote() is True
        assert connection.registered == [engine.registered]

    @pytest.mark.asyncio
    async def test_register_remote_failure_is_reported(self, connection) -> None:
        connection.register_error = RuntimeError("rate limited")
        engine = CommandDispatchEngine(connection, make_config({**PING, "type": "slash"}))
        assert await engine.register_remote() is False
        assert engine.registered == []

    @pytest.mark.asyncio
    async def test_reload_swaps_commands_and_sends_full_list(self, connection) -> None:
        engine = CommandDispatchEngine(connection, make_config({**PING, "type": "slash"}))
        engine.attach()

        await engine.reload(make_config({"name": "hello", "responseContent": "hi"}))

        assert list(engine.commands) == ["hello"]
        # Removed slash commands are removed remotely too
        assert connection.registered[-1] == []
        assert connection.listener_count("message") == 1

        message = make_message("!hello")
        await connection.dispatch("message", message)
        message.reply.assert_awaited_once_with(content="hi")

    @pytest.mark.asyncio
    async def test_reload_is_idempotent(self, connection) -> None:
        config = make_config(PING, {"name": "s", "type": "slash"})
        engine = CommandDispatchEngine(connection, config)
        engine.attach()

        await engine.reload(config)
        first = (dict(engine.commands), list(engine.registered), connection.listener_count())
        await engine.reload(config)
        second = (dict(engine.commands), list(engine.registered), connection.listener_count())

        assert first == second
