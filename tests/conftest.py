"""Pytest configuration and shared fixtures."""

from collections import defaultdict
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from click.testing import CliRunner

from botyard.announcements import AnnouncementScheduler
from botyard.config import Config
from botyard.database import create_tables, get_engine
from botyard.errors import AuthError
from botyard.integrations import IntegrationRegistry, StarboardWatcher
from botyard.migrations import migrate
from botyard.notifications import NotificationHub
from botyard.store import ConfigStore
from botyard.supervisor import BotSupervisor
from botyard.suppression import SelfWriteLedger


@pytest.fixture
def cli_runner() -> CliRunner:
    """Provide a Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def test_config(tmp_path: Path) -> Config:
    """Create a test configuration with temp database."""
    return Config(
        data_dir=tmp_path,
        log_level="DEBUG",
        scheduler={"initial_check": False},
    )


@pytest.fixture
def engine(test_config: Config):
    """Create a test database engine with migrations applied."""
    eng = get_engine(test_config)
    migrate(eng)
    create_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def store(engine) -> ConfigStore:
    return ConfigStore(engine)


@pytest.fixture
def ledger() -> SelfWriteLedger:
    return SelfWriteLedger()


# =============================================================================
# Gateway doubles
# =============================================================================


class FakeConnection:
    """In-memory stand-in for GatewayClient.

    Listeners run inline when ``dispatch`` is awaited, so tests can drive
    gateway events deterministically.
    """

    def __init__(
        self,
        bot_id: str = "bot",
        channels: dict[str, Any] | None = None,
        fail_with: str | None = None,
    ) -> None:
        self.bot_id = bot_id
        self.channels = dict(channels or {})
        self.fail_with = fail_with
        self.register_error: Exception | None = None
        self.registered: list[list[dict[str, Any]]] = []
        self.opened_with: str | None = None
        self.closed = False

        self.identity: str | None = "TestBot#0001"
        self.guild_count = 1
        self.latency_ms: float | None = 42.0
        self.uptime_seconds: float | None = 1.5

        self._listeners: dict[str, list[Any]] = defaultdict(list)

    def add_listener(self, handler, event: str) -> None:
        self._listeners[event].append(handler)

    def remove_listener(self, handler, event: str) -> None:
        handlers = self._listeners.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    def listener_count(self, event: str | None = None) -> int:
        if event is not None:
            return len(self._listeners.get(event, ()))
        return sum(len(handlers) for handlers in self._listeners.values())

    async def dispatch(self, event: str, *args: Any) -> None:
        for handler in list(self._listeners.get(event, ())):
            await handler(*args)

    async def open(self, token: str, ready_timeout: float = 30.0) -> None:
        self.opened_with = token
        if self.fail_with:
            raise AuthError(self.fail_with)
        await self.dispatch("ready")

    async def close(self) -> None:
        self.closed = True

    async def register_remote_commands(self, commands: list[dict[str, Any]]) -> None:
        if self.register_error is not None:
            raise self.register_error
        self.registered.append(commands)

    async def resolve_channel(self, channel_id) -> Any | None:
        if not channel_id:
            return None
        return self.channels.get(str(channel_id))

    def text_channels(self) -> list[dict[str, str]]:
        return [
            {"id": channel_id, "name": channel.name, "guildId": "1", "guildName": "Test Guild"}
            for channel_id, channel in self.channels.items()
        ]


def _make_channel(channel_id: str = "100", name: str = "general") -> MagicMock:
    channel = MagicMock()
    channel.id = int(channel_id)
    channel.name = name
    channel.guild = None
    channel.send = AsyncMock()
    return channel


@pytest.fixture
def channel() -> MagicMock:
    return _make_channel()


@pytest.fixture
def connection(channel) -> FakeConnection:
    return FakeConnection(channels={"100": channel})


# =============================================================================
# Supervisor wiring
# =============================================================================


class ConnectionFactory:
    """Hands out FakeConnections and remembers them by bot id."""

    def __init__(self) -> None:
        self.fail_with: str | None = None
        self.made: dict[str, FakeConnection] = {}

    def __call__(self, bot_id: str) -> FakeConnection:
        connection = FakeConnection(bot_id, fail_with=self.fail_with)
        self.made[bot_id] = connection
        return connection


@pytest.fixture
def hub() -> NotificationHub:
    return NotificationHub()


@pytest.fixture
def factory() -> ConnectionFactory:
    return ConnectionFactory()


@pytest.fixture
def supervisor(store, ledger, hub, test_config, factory) -> BotSupervisor:
    """Supervisor whose bots connect through FakeConnections."""
    return BotSupervisor(
        store=store,
        hub=hub,
        scheduler=AnnouncementScheduler(store, ledger, test_config),
        starboard=StarboardWatcher(store, ledger),
        registry=IntegrationRegistry.default(),
        ledger=ledger,
        config=test_config,
        connection_factory=factory,
    )
