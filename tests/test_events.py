"""Tests for event rule dispatch."""

from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

from botyard.events import EventDispatchEngine, render_placeholders
from botyard.models import BotConfig


def make_config(*rules: dict) -> BotConfig:
    return BotConfig.model_validate({"id": "bot-1", "events": list(rules)})


def make_user(name: str = "alice", bot: bool = False) -> MagicMock:
    user = MagicMock()
    user.bot = bot
    user.id = 42
    user.__str__.return_value = name
    return user


def make_message(content: str = "hello", author=None, channel=None) -> MagicMock:
    message = MagicMock()
    message.content = content
    message.author = author or make_user()
    message.channel = channel or MagicMock()
    message.channel.send = AsyncMock()
    return message


GREETER = {
    "name": "greeter",
    "eventType": "messageCreate",
    "action": {"type": "sendMessage", "message": "Hello {user}!"},
}


def test_render_placeholders() -> None:
    assert render_placeholders("Hi {user}, you are #{memberCount}", "bob", 7) == "Hi bob, you are #7"
    assert render_placeholders("{user} {memberCount}") == "Unknown 0"


class TestLifecycle:
    """Tests for attaching and detaching rule listeners."""

    def test_one_listener_per_rule(self, connection) -> None:
        config = make_config(GREETER, GREETER, {"eventType": "member-joined"})
        engine = EventDispatchEngine(connection, config)
        engine.load(config)

        assert connection.listener_count("message") == 2
        assert connection.listener_count("member_join") == 1
        assert len(engine.attached) == 3

    def test_reload_replaces_listeners(self, connection) -> None:
        engine = EventDispatchEngine(connection, make_config())
        engine.load(make_config(GREETER, GREETER))

        engine.reload(make_config({"eventType": "messageDelete"}))

        assert connection.listener_count("message") == 0
        assert connection.listener_count("message_delete") == 1

    def test_reload_is_idempotent(self, connection) -> None:
        config = make_config(GREETER, {"eventType": "guildMemberRemove"})
        engine = EventDispatchEngine(connection, config)
        engine.load(config)
        engine.reload(config)
        engine.reload(config)
        assert connection.listener_count() == 2

    def test_detach(self, connection) -> None:
        config = make_config(GREETER)
        engine = EventDispatchEngine(connection, config)
        engine.load(config)
        engine.detach()
        assert connection.listener_count() == 0
        assert engine.attached == []


class TestMessageRules:
    """Tests for message create, delete and edit rules."""

    @pytest.mark.asyncio
    async def test_message_create_sends_rendered_text(self, connection) -> None:
        triggered = []
        config = make_config(GREETER)
        engine = EventDispatchEngine(connection, config, on_triggered=lambda t, n: triggered.append((t, n)))
        engine.load(config)
        message = make_message()

        await connection.dispatch("message", message)

        message.channel.send.assert_awaited_once_with("Hello alice!")
        assert triggered == [("messageCreate", "greeter")]

    @pytest.mark.asyncio
    async def test_bot_messages_ignored(self, connection) -> None:
        triggered = []
        config = make_config(GREETER)
        engine = EventDispatchEngine(connection, config, on_triggered=lambda t, n: triggered.append(t))
        engine.load(config)
        message = make_message(author=make_user(bot=True))

        await connection.dispatch("message", message)

        message.channel.send.assert_not_awaited()
        assert triggered == ["messageCreate"]

    @pytest.mark.asyncio
    async def test_rule_without_action_still_triggers(self, connection) -> None:
        """Completing without raising counts as triggered even with nothing to do."""
        triggered = []
        config = make_config({"eventType": "messageCreate"})
        engine = EventDispatchEngine(connection, config, on_triggered=lambda t, n: triggered.append(t))
        engine.load(config)

        await connection.dispatch("message", make_message())

        assert triggered == ["messageCreate"]

    @pytest.mark.asyncio
    async def test_send_embed_action(self, connection) -> None:
        config = make_config(
            {"eventType": "messageCreate", "action": {"type": "sendEmbed", "embedData": {"title": "Hey"}}}
        )
        engine = EventDispatchEngine(connection, config)
        engine.load(config)
        message = make_message()

        await connection.dispatch("message", message)

        embed = message.channel.send.await_args.kwargs["embed"]
        assert embed.title == "Hey"
        assert embed.description == "An event occurred"

    @pytest.mark.asyncio
    async def test_message_delete_logged(self, connection, channel) -> None:
        config = make_config({"eventType": "messageDelete", "config": {"logChannelId": "100"}})
        engine = EventDispatchEngine(connection, config)
        engine.load(config)
        deleted = make_message("secret plans")
        deleted.channel.name = "general"

        await connection.dispatch("message_delete", deleted)

        embed = channel.send.await_args.kwargs["embed"]
        assert embed.title == "Message Deleted"
        assert embed.fields[0].value == "secret plans"
        assert embed.fields[1].value == "general"

    @pytest.mark.asyncio
    async def test_message_delete_without_log_channel(self, connection, channel) -> None:
        triggered = []
        config = make_config({"eventType": "messageDelete", "config": {"logChannelId": "999"}})
        engine = EventDispatchEngine(connection, config, on_triggered=lambda t, n: triggered.append(t))
        engine.load(config)

        await connection.dispatch("message_delete", make_message())

        channel.send.assert_not_awaited()
        assert triggered == ["messageDelete"]

    @pytest.mark.asyncio
    async def test_message_edit_logged(self, connection, channel) -> None:
        config = make_config({"eventType": "messageUpdate", "config": {"logChannelId": "100"}})
        engine = EventDispatchEngine(connection, config)
        engine.load(config)
        author = make_user()

        await connection.dispatch(
            "message_edit", make_message("old", author), make_message("new", author)
        )

        embed = channel.send.await_args.kwargs["embed"]
        assert embed.title == "Message Edited"
        assert [f.value for f in embed.fields[:2]] == ["old", "new"]

    @pytest.mark.asyncio
    async def test_unchanged_content_edit_ignored(self, connection, channel) -> None:
        triggered = []
        config = make_config({"eventType": "messageUpdate", "config": {"logChannelId": "100"}})
        engine = EventDispatchEngine(connection, config, on_triggered=lambda t, n: triggered.append(t))
        engine.load(config)
        author = make_user()

        # Embed unfurls fire edits with identical content
        await connection.dispatch(
            "message_edit", make_message("same", author), make_message("same", author)
        )

        channel.send.assert_not_awaited()
        assert triggered == ["messageUpdate"]

    @pytest.mark.asyncio
    async def test_handler_failure_is_contained(self, connection) -> None:
        triggered = []
        config = make_config(GREETER)
        engine = EventDispatchEngine(connection, config, on_triggered=lambda t, n: triggered.append(t))
        engine.load(config)
        message = make_message()
        message.channel.send.side_effect = discord.DiscordException("no access")

        await connection.dispatch("message", message)

        assert triggered == []


class TestMemberRules:
    """Tests for member join and leave rules."""

    @pytest.mark.asyncio
    async def test_member_join_welcome(self, connection, channel) -> None:
        config = make_config(
            {
                "eventType": "guildMemberAdd",
                "config": {"welcomeChannelId": "100"},
                "action": {"type": "sendMessage", "message": "Welcome {user}, member #{memberCount}"},
            }
        )
        engine = EventDispatchEngine(connection, config)
        engine.load(config)
        member = make_user("newbie")
        member.guild.member_count = 12

        await connection.dispatch("member_join", member)

        channel.send.assert_awaited_once_with("Welcome newbie, member #12")

    @pytest.mark.asyncio
    async def test_member_join_assigns_role(self, connection, channel) -> None:
        role = MagicMock()
        channel.guild = MagicMock()
        channel.guild.get_role.return_value = role
        config = make_config(
            {
                "eventType": "guildMemberAdd",
                "config": {"welcomeChannelId": "100"},
                "action": {"type": "assignRole", "roleId": "555"},
            }
        )
        engine = EventDispatchEngine(connection, config)
        engine.load(config)
        member = MagicMock(spec=discord.Member)
        member.add_roles = AsyncMock()

        await connection.dispatch("member_join", member)

        channel.guild.get_role.assert_called_once_with(555)
        member.add_roles.assert_awaited_once()
        assert member.add_roles.await_args.args == (role,)

    @pytest.mark.asyncio
    async def test_member_leave_logged(self, connection, channel) -> None:
        config = make_config({"eventType": "guildMemberRemove", "config": {"logChannelId": "100"}})
        engine = EventDispatchEngine(connection, config)
        engine.load(config)

        await connection.dispatch("member_remove", make_user("leaver"))

        embed = channel.send.await_args.kwargs["embed"]
        assert embed.description == "leaver left the server"


class TestReactionRoles:
    """Tests for reaction role rules."""

    @pytest.fixture
    def setup(self, connection):
        config = make_config(
            {
                "eventType": "messageReactionAdd",
                "config": {"roleReactions": [{"emoji": "🎮", "roleId": "777"}]},
            },
            {
                "eventType": "messageReactionRemove",
                "config": {"roleReactions": [{"emoji": "🎮", "roleId": "777"}]},
            },
        )
        engine = EventDispatchEngine(connection, config)
        engine.load(config)

        role = MagicMock()
        member = MagicMock()
        member.add_roles = AsyncMock()
        member.remove_roles = AsyncMock()
        guild = MagicMock()
        guild.get_role.return_value = role
        guild.get_member.return_value = member

        reaction = MagicMock()
        reaction.emoji = "🎮"
        reaction.message.guild = guild
        return engine, reaction, role, member

    @pytest.mark.asyncio
    async def test_reaction_adds_role(self, connection, setup) -> None:
        _, reaction, role, member = setup
        await connection.dispatch("reaction_add", reaction, make_user())
        member.add_roles.assert_awaited_once_with(role, reason="Reaction role")

    @pytest.mark.asyncio
    async def test_reaction_removal_removes_role(self, connection, setup) -> None:
        _, reaction, role, member = setup
        await connection.dispatch("reaction_remove", reaction, make_user())
        member.remove_roles.assert_awaited_once_with(role, reason="Reaction role")

    @pytest.mark.asyncio
    async def test_unmapped_emoji_ignored(self, connection, setup) -> None:
        _, reaction, _, member = setup
        reaction.emoji = "🍕"
        await connection.dispatch("reaction_add", reaction, make_user())
        member.add_roles.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_bot_reactions_ignored(self, connection, setup) -> None:
        _, reaction, _, member = setup
        await connection.dispatch("reaction_add", reaction, make_user(bot=True))
        member.add_roles.assert_not_awaited()
