"""Bot lifecycle supervisor.

The supervisor is the only owner of running bots. Everything else (the
admin API, the CLI, the config watcher) goes through its operations:

- start / stop / restart a bot's gateway connection
- reload a running bot's configuration without reconnecting
- watch stored records for external edits and reload affected bots
- report live status
- fan lifecycle, command and event activity out to the bot's durable
  log and to live notification subscribers

Writes the system makes to its own records (status, announcement dedup
state, starboard posts) are registered with the ``SelfWriteLedger`` before
they land, and the watcher skips revisions found there.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from botyard.commands import CommandDispatchEngine
from botyard.errors import (
    AlreadyRunning,
    AuthError,
    BotyardError,
    MissingCredential,
    NotFound,
    NotRunning,
    StartFailed,
)
from botyard.events import EventDispatchEngine
from botyard.gateway import GatewayClient, describe_login_failure
from botyard.logging import get_logger
from botyard.models import BotConfig, BotState, BotStatus, utcnow
from botyard.moderation import ModerationHandler
from botyard.notifications import NotificationHub, NotificationType
from botyard.suppression import SelfWriteLedger

if TYPE_CHECKING:
    from botyard.announcements import AnnouncementScheduler
    from botyard.config import Config
    from botyard.integrations import IntegrationRegistry, StarboardWatcher
    from botyard.store import ConfigStore

log = get_logger("supervisor")

ConnectionFactory = Callable[[str], GatewayClient]


@dataclass
class RunningBot:
    """In-memory state of one started bot."""

    connection: GatewayClient
    config: BotConfig
    commands: CommandDispatchEngine
    events: EventDispatchEngine
    started_at: datetime = field(default_factory=utcnow)


class BotSupervisor:
    """Starts, stops, reloads and watches bots.

    Attributes:
        store: Bot configuration store.
        hub: Live notification fan-out.
        scheduler: Announcement scheduler.
        starboard: Starboard reaction watcher.
        registry: Integration handlers shared by all bots.
        ledger: Revisions produced by the system's own writes.
        config: Application configuration.
    """

    def __init__(
        self,
        store: "ConfigStore",
        hub: NotificationHub,
        scheduler: "AnnouncementScheduler",
        starboard: "StarboardWatcher",
        registry: "IntegrationRegistry",
        ledger: SelfWriteLedger,
        config: "Config",
        connection_factory: ConnectionFactory | None = None,
        moderation: ModerationHandler | None = None,
    ) -> None:
        self.store = store
        self.hub = hub
        self.scheduler = scheduler
        self.starboard = starboard
        self.registry = registry
        self.ledger = ledger
        self.config = config
        self.connection_factory: ConnectionFactory = connection_factory or GatewayClient
        self.moderation = moderation or ModerationHandler()

        self._bots: dict[str, RunningBot] = {}
        self._starting: set[str] = set()
        self._revisions: dict[str, int] = {}
        self._watch_task: asyncio.Task[None] | None = None

    # =========================================================================
    # Queries
    # =========================================================================

    def is_running(self, bot_id: str) -> bool:
        return bot_id in self._bots

    def running_bots(self) -> list[str]:
        return list(self._bots)

    def instance(self, bot_id: str) -> RunningBot:
        """The running instance of a bot.

        Raises:
            NotRunning: If the bot is not running.
        """
        running = self._bots.get(bot_id)
        if running is None:
            raise NotRunning(bot_id)
        return running

    def status(self, bot_id: str) -> BotStatus:
        """Live status, read from the connection at call time."""
        running = self._bots.get(bot_id)
        if running is None:
            return BotStatus(bot_id=bot_id, running=False, status=BotState.OFFLINE)

        connection = running.connection
        return BotStatus(
            bot_id=bot_id,
            running=True,
            status=BotState.ONLINE,
            username=connection.identity or "Unknown",
            guilds=connection.guild_count,
            uptime_seconds=connection.uptime_seconds,
            latency_ms=connection.latency_ms,
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self, bot_id: str) -> BotStatus:
        """Connect a bot and bring its commands, events and jobs online.

        Raises:
            AlreadyRunning: If the bot is running or being started.
            NotFound: If there is no such bot.
            MissingCredential: If the bot has no token.
            StartFailed: If the gateway refused the connection; ``reason``
                carries an operator-actionable hint where one is known.
        """
        if bot_id in self._bots or bot_id in self._starting:
            raise AlreadyRunning(bot_id)

        config = self.store.read(bot_id)
        if not config.token:
            raise MissingCredential(bot_id)

        log.info("bot_starting", bot_id=bot_id, name=config.name)
        connection = self.connection_factory(bot_id)

        async def on_ready() -> None:
            tag = connection.identity or "Unknown"
            log.info("bot_ready", bot_id=bot_id, user=tag)
            self.emit_log(bot_id, f"Bot ready as {tag}")
            self._persist_status(bot_id, BotState.ONLINE)
            self.emit_status(bot_id, BotState.ONLINE)

        async def on_listener_error(event_method: str, error: BaseException | None) -> None:
            self.emit_log(bot_id, f"ERROR: {error or event_method}")

        # Registered before login so the first ready is not missed
        connection.add_listener(on_ready, "ready")
        connection.add_listener(on_listener_error, "listener_error")

        self._starting.add(bot_id)
        try:
            try:
                await connection.open(
                    config.token,
                    ready_timeout=self.config.supervisor.ready_timeout_seconds,
                )
            except AuthError as e:
                await connection.close()
                reason = describe_login_failure(str(e))
                log.error("bot_start_failed", bot_id=bot_id, error=str(e), reason=reason)
                self.emit_log(bot_id, f"FAILED TO START: {reason}")
                raise StartFailed(bot_id, reason) from e

            try:
                self._bots[bot_id] = await self._bring_up(bot_id, config, connection)
            except Exception:
                self.scheduler.stop_for_bot(bot_id)
                self.starboard.stop_for_bot(bot_id)
                await connection.close()
                raise
        finally:
            self._starting.discard(bot_id)

        log.info("bot_started", bot_id=bot_id, user=connection.identity)
        return self.status(bot_id)

    async def _bring_up(
        self,
        bot_id: str,
        config: BotConfig,
        connection: GatewayClient,
    ) -> RunningBot:
        """Attach dispatch engines, announcement jobs and the starboard."""
        commands = CommandDispatchEngine(
            connection,
            config,
            moderation=self.moderation,
            integrations=self.registry,
            on_executed=lambda name, user: self.emit_command(bot_id, name, user),
        )
        commands.attach()
        await commands.register_remote()

        events = EventDispatchEngine(
            connection,
            config,
            on_triggered=lambda event_type, rule: self.emit_event(
                bot_id, event_type, {"rule": rule}
            ),
        )
        events.load(config)

        self.scheduler.start_for_bot(bot_id, config, connection)
        self.starboard.start_for_bot(bot_id, config, connection)

        return RunningBot(
            connection=connection,
            config=config,
            commands=commands,
            events=events,
        )

    async def stop(self, bot_id: str) -> None:
        """Disconnect a bot and tear down everything attached to it.

        Raises:
            NotRunning: If the bot is not running.
        """
        running = self._bots.get(bot_id)
        if running is None:
            raise NotRunning(bot_id)

        log.info("bot_stopping", bot_id=bot_id)
        self.scheduler.stop_for_bot(bot_id)
        self.starboard.stop_for_bot(bot_id)
        running.events.detach()
        running.commands.detach()
        try:
            await running.connection.close()
        finally:
            del self._bots[bot_id]

        self._persist_status(bot_id, BotState.OFFLINE)
        self.emit_status(bot_id, BotState.OFFLINE)
        self.emit_log(bot_id, "Bot stopped")
        log.info("bot_stopped", bot_id=bot_id)

    async def restart(self, bot_id: str) -> BotStatus:
        if self.is_running(bot_id):
            await self.stop(bot_id)
        return await self.start(bot_id)

    async def reload_bot_config(self, bot_id: str) -> bool:
        """Resynchronize a running bot with its stored configuration.

        The gateway connection stays open; listeners, remote commands,
        announcement jobs and the starboard watcher are rebuilt from the
        fresh record.

        Returns:
            True if the bot was running and has been reloaded.
        """
        running = self._bots.get(bot_id)
        if running is None:
            return False

        config = self.store.read(bot_id)
        running.config = config
        await running.commands.reload(config)
        running.events.reload(config)
        self.scheduler.reload_for_bot(bot_id, config, running.connection)
        self.starboard.reload_for_bot(bot_id, config, running.connection)

        self.emit_log(bot_id, "Configuration reloaded")
        log.info("bot_reloaded", bot_id=bot_id)
        return True

    async def delete(self, bot_id: str) -> None:
        """Stop the bot if running, then delete its record.

        Raises:
            NotFound: If there is no such bot.
        """
        if self.is_running(bot_id):
            await self.stop(bot_id)
        self.store.delete(bot_id)
        self.ledger.forget(bot_id)
        self._revisions.pop(bot_id, None)

    async def start_auto(self) -> list[str]:
        """Start every bot whose ``settings.autoStart`` is on.

        Failures are logged per bot and do not stop the others.

        Returns:
            Ids of the bots that started.
        """
        bots = self.store.list()
        log.info("auto_start_scan", bots=len(bots))

        started = []
        for config in bots:
            if not config.settings.auto_start:
                continue
            try:
                await self.start(config.id)
            except BotyardError as e:
                log.error("auto_start_failed", bot_id=config.id, error=str(e))
                continue
            started.append(config.id)
        return started

    async def stop_all(self) -> None:
        """Stop every running bot, the watcher and all background jobs."""
        log.info("stopping_all_bots", count=len(self._bots))
        await self.stop_watching()

        for bot_id in list(self._bots):
            try:
                await self.stop(bot_id)
            except Exception as e:
                log.error("bot_stop_failed", bot_id=bot_id, error=str(e))

        self.scheduler.stop_all()
        self.starboard.stop_all()
        log.info("all_bots_stopped")

    # =========================================================================
    # Config watch
    # =========================================================================

    def start_watching(self) -> None:
        """Begin polling stored revisions in the background."""
        if self._watch_task is not None and not self._watch_task.done():
            return
        self._revisions = self.store.revisions()
        self._watch_task = asyncio.create_task(self.watch(), name="config-watch")

    async def stop_watching(self) -> None:
        task, self._watch_task = self._watch_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def watch(self) -> None:
        """Poll for record changes until cancelled."""
        interval = self.config.supervisor.watch_interval_seconds
        log.info("config_watch_started", interval=interval)
        while True:
            await asyncio.sleep(interval)
            try:
                await self.check_changes()
            except Exception as e:
                log.error("config_watch_failed", error=str(e))

    async def check_changes(self) -> list[str]:
        """Compare stored revisions with the last seen ones and react.

        A changed record is skipped only if every revision since the last
        poll was registered as a self-write; any unregistered revision
        means an external edit, and a running bot is reloaded.

        Returns:
            Ids of the bots that were reloaded.
        """
        current = self.store.revisions()
        reloaded = []

        for bot_id in set(self._revisions) - set(current):
            self._revisions.pop(bot_id, None)
            self.ledger.forget(bot_id)
            if self.is_running(bot_id):
                log.warning("running_bot_record_removed", bot_id=bot_id)
                await self.stop(bot_id)

        for bot_id, revision in current.items():
            previous = self._revisions.get(bot_id)
            self._revisions[bot_id] = revision
            if previous is None or previous == revision:
                continue

            own = [self.ledger.consume(bot_id, r) for r in range(previous + 1, revision + 1)]
            if all(own):
                log.debug("self_write_skipped", bot_id=bot_id, revision=revision)
                continue

            log.info("config_changed", bot_id=bot_id, revision=revision)
            if not self.is_running(bot_id):
                continue
            try:
                if await self.reload_bot_config(bot_id):
                    reloaded.append(bot_id)
            except Exception as e:
                log.error("bot_reload_failed", bot_id=bot_id, error=str(e))

        return reloaded

    # =========================================================================
    # Fan-out
    # =========================================================================

    def emit_log(self, bot_id: str, message: str) -> None:
        self.store.append_log(bot_id, message)
        self.hub.publish(bot_id, NotificationType.LOG, message=message)

    def emit_status(self, bot_id: str, status: BotState | str) -> None:
        self.hub.publish(bot_id, NotificationType.STATUS, status=BotState(status).value)

    def emit_command(self, bot_id: str, command_name: str, user: str) -> None:
        self.emit_log(bot_id, f"Command executed: {command_name} by {user}")
        self.hub.publish(bot_id, NotificationType.COMMAND, commandName=command_name, user=user)

    def emit_event(self, bot_id: str, event_type: str, data: dict[str, Any] | None = None) -> None:
        self.emit_log(bot_id, f"Event triggered: {event_type}")
        self.hub.publish(bot_id, NotificationType.EVENT, eventType=event_type, data=data or {})

    def _persist_status(self, bot_id: str, status: BotState) -> None:
        try:
            self.store.patch(bot_id, {"status": status.value}, self_writes=self.ledger)
        except NotFound:
            log.debug("status_target_missing", bot_id=bot_id)
        except BotyardError as e:
            log.warning("status_persist_failed", bot_id=bot_id, status=status.value, error=str(e))
