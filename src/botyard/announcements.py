"""Recurring "recently added" announcements for media integrations.

Integrations whose ``scheduler.enabled`` is set get one APScheduler cron
job each, keyed ``{bot_id}-{integration_id}``. A poll:

1. Re-reads the bot's configuration (never the snapshot from arming time)
2. Fetches recently added items through the service's feed
3. Drops items already in ``announcedIds``
4. Announces at most 25 items, grouped so episodes of one show share a card
5. Records the announced ids (most recent 500 kept) and ``lastChecked``

The dedup write is a config write like any other, so it is registered
with the ``SelfWriteLedger`` before it lands and the supervisor's watcher
does not reload the bot because of it.

A test check runs the same fetch-and-group pipeline over a time window
instead of the dedup set and never touches persisted state.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import timedelta, timezone
from typing import TYPE_CHECKING, Any
from zoneinfo import ZoneInfo

import discord
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from botyard.embeds import truncate
from botyard.errors import ApiError, NotFound, SchedulerCheckError
from botyard.integrations import SCHEDULABLE, feed_for
from botyard.integrations.client import PROFILES
from botyard.integrations.feeds import MediaFeed, MediaItem
from botyard.logging import get_logger
from botyard.models import BotConfig, Integration, Interval, ServiceName, utcnow
from botyard.suppression import ANNOUNCED_IDS_CAP, SelfWriteLedger, merge_seen, unseen

if TYPE_CHECKING:
    from botyard.config import Config
    from botyard.gateway import GatewayClient
    from botyard.store import ConfigStore

log = get_logger("announcements")

INTERVAL_CRON: dict[Interval, str] = {
    Interval.HOURLY: "0 * * * *",
    Interval.EVERY_6H: "0 */6 * * *",
    Interval.DAILY: "0 9 * * *",
    Interval.WEEKLY: "0 9 * * 1",
}

TEST_WINDOWS: dict[Interval, timedelta] = {
    Interval.HOURLY: timedelta(hours=1),
    Interval.EVERY_6H: timedelta(hours=6),
    Interval.DAILY: timedelta(days=1),
    Interval.WEEKLY: timedelta(days=7),
}

MAX_ITEMS_PER_POLL = 25
EMBEDS_PER_MESSAGE = 10

SERVICE_COLORS = {
    ServiceName.PLEX: 0xE5A00D,
    ServiceName.JELLYFIN: 0x00A4DC,
}

FeedFactory = Callable[[Integration], "MediaFeed | None"]


# =============================================================================
# Grouping and cards
# =============================================================================


@dataclass
class AnnouncementUnit:
    """One announcement card: a show with its new episodes, or one item."""

    key: str
    kind: str
    title: str
    items: list[MediaItem] = field(default_factory=list)
    lookup_key: str | None = None
    external_url: str | None = None

    @property
    def lead(self) -> MediaItem:
        return self.items[0]

    @property
    def item_ids(self) -> list[str]:
        return [item.id for item in self.items]


def group_items(items: list[MediaItem]) -> list[AnnouncementUnit]:
    """Collapse episodes of the same show into one unit.

    Shows come first (in order of first appearance), then movies, then
    anything else. Every input item lands in exactly one unit.
    """
    shows: dict[str, AnnouncementUnit] = {}
    movies: list[AnnouncementUnit] = []
    other: list[AnnouncementUnit] = []

    for item in items:
        if item.kind == "episode":
            key = item.parent_id or "unknown"
            unit = shows.get(key)
            if unit is None:
                unit = shows[key] = AnnouncementUnit(
                    key=key,
                    kind="show",
                    title=item.parent_title or "Unknown Show",
                    lookup_key=item.lookup_key,
                )
            unit.items.append(item)
        elif item.kind == "movie":
            movies.append(
                AnnouncementUnit(
                    key=item.id,
                    kind="movie",
                    title=item.title,
                    items=[item],
                    lookup_key=item.lookup_key,
                    external_url=item.external_url,
                )
            )
        else:
            other.append(AnnouncementUnit(key=item.id, kind="other", title=item.title, items=[item]))

    return [*shows.values(), *movies, *other]


async def resolve_links(feed: MediaFeed, units: list[AnnouncementUnit]) -> None:
    """Fill in external links for all units concurrently."""
    pending = [unit for unit in units if unit.external_url is None and unit.lookup_key]
    if not pending:
        return
    urls = await asyncio.gather(*(feed.external_url(unit.lookup_key) for unit in pending))
    for unit, url in zip(pending, urls):
        unit.external_url = url


def unit_embed(unit: AnnouncementUnit, integration: Integration, test: bool = False) -> discord.Embed:
    """Render one announcement unit as a card."""
    server_name = integration.config.server_name or f"{PROFILES[integration.service].display_name} Server"
    footer = f"TEST | {server_name} | Recently Added" if test else f"{server_name} | Recently Added"
    color = SERVICE_COLORS.get(integration.service, 0xE5A00D)
    lead = unit.lead

    if unit.kind == "show":
        embed = discord.Embed(
            title=f"📺 {unit.title}",
            description=" · ".join(item.episode_label for item in unit.items),
            color=color,
            url=unit.external_url,
            timestamp=utcnow(),
        )
        if lead.year:
            embed.add_field(name="Year", value=str(lead.year), inline=True)
        embed.add_field(name="New episodes", value=str(len(unit.items)), inline=True)
    elif unit.kind == "movie":
        embed = discord.Embed(
            title=f"🎬 {unit.title}",
            color=color,
            url=unit.external_url,
            timestamp=utcnow(),
        )
        if lead.year:
            embed.add_field(name="Year", value=str(lead.year), inline=True)
        if lead.summary:
            embed.description = truncate(lead.summary, 150)
    else:
        title = f"{lead.parent_title} - {lead.title}" if lead.parent_title else lead.title
        embed = discord.Embed(title=title, color=color, timestamp=utcnow())

    if lead.thumb_url:
        embed.set_thumbnail(url=lead.thumb_url)
    embed.set_footer(text=footer)
    return embed


def batched(units: list[AnnouncementUnit], size: int = EMBEDS_PER_MESSAGE) -> list[list[AnnouncementUnit]]:
    return [units[i : i + size] for i in range(0, len(units), size)]


# =============================================================================
# Scheduler
# =============================================================================


class AnnouncementScheduler:
    """Owns every announcement job across all running bots.

    Attributes:
        store: Config store the dedup state is read from and written to.
        ledger: Self-write ledger shared with the supervisor's watcher.
        config: Application configuration.
        scheduler: APScheduler instance.
    """

    def __init__(
        self,
        store: "ConfigStore",
        ledger: SelfWriteLedger,
        config: "Config",
        feed_factory: FeedFactory | None = None,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.config = config
        self.feed_factory: FeedFactory = feed_factory or (lambda i: feed_for(i, config.http))

        tz_name = config.scheduler.timezone
        self._timezone = ZoneInfo(tz_name) if tz_name != "UTC" else timezone.utc

        # Jobs are rebuilt from bot records whenever a bot starts, so the
        # default in-memory job store is enough
        self.scheduler = AsyncIOScheduler(
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": 3600,
            },
            timezone=self._timezone,
        )
        self._jobs: dict[str, set[str]] = {}

    # =========================================================================
    # Scheduler lifecycle
    # =========================================================================

    def start(self) -> None:
        """Start the underlying scheduler (needs a running event loop)."""
        if not self.scheduler.running:
            self.scheduler.start()
            log.info("announcement_scheduler_started", timezone=self.config.scheduler.timezone)

    def shutdown(self) -> None:
        self.stop_all()
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            log.info("announcement_scheduler_stopped")

    # =========================================================================
    # Per-bot jobs
    # =========================================================================

    @staticmethod
    def job_key(bot_id: str, integration_id: str) -> str:
        return f"{bot_id}-{integration_id}"

    def start_for_bot(self, bot_id: str, config: BotConfig, connection: "GatewayClient") -> None:
        """Arm one job per integration with announcements enabled."""
        for integration in config.integrations:
            if not integration.scheduling_enabled:
                continue
            if integration.service not in SCHEDULABLE:
                log.warning(
                    "announcements_unsupported",
                    bot_id=bot_id,
                    integration_id=integration.id,
                    service=integration.service.value,
                )
                continue
            self._arm(bot_id, integration, connection)

    def stop_for_bot(self, bot_id: str) -> None:
        """Remove every job armed for a bot."""
        for job_id in self._jobs.pop(bot_id, set()):
            if self.scheduler.get_job(job_id) is not None:
                self.scheduler.remove_job(job_id)
        log.debug("announcement_jobs_stopped", bot_id=bot_id)

    def reload_for_bot(self, bot_id: str, config: BotConfig, connection: "GatewayClient") -> None:
        self.stop_for_bot(bot_id)
        self.start_for_bot(bot_id, config, connection)

    def stop_all(self) -> None:
        for bot_id in list(self._jobs):
            self.stop_for_bot(bot_id)

    def get_jobs(self, bot_id: str | None = None) -> list[dict[str, Any]]:
        """Describe armed jobs, optionally for one bot."""
        bot_ids = [bot_id] if bot_id is not None else list(self._jobs)
        jobs = []
        for owner in bot_ids:
            for job_id in sorted(self._jobs.get(owner, ())):
                job = self.scheduler.get_job(job_id)
                if job is None:
                    continue
                next_run = getattr(job, "next_run_time", None)
                jobs.append(
                    {
                        "id": job_id,
                        "botId": owner,
                        "integrationId": job.args[1],
                        "trigger": str(job.trigger),
                        "nextRun": next_run.isoformat() if next_run else None,
                    }
                )
        return jobs

    def _arm(self, bot_id: str, integration: Integration, connection: "GatewayClient") -> None:
        key = self.job_key(bot_id, integration.id)
        settings = integration.config.scheduler
        interval = settings.interval if settings else Interval.DAILY
        trigger = CronTrigger.from_crontab(INTERVAL_CRON[interval], timezone=self._timezone)

        extra: dict[str, Any] = {}
        if self.config.scheduler.initial_check:
            # First run fires now, outside the cron cadence, under the same
            # max_instances guard as every later run
            extra["next_run_time"] = utcnow()

        # replace_existing cancels any previous job for this key
        self.scheduler.add_job(
            self._scheduled_check,
            trigger=trigger,
            args=[bot_id, integration.id, connection],
            id=key,
            name=f"Announcements: {integration.name or integration.service.value}",
            replace_existing=True,
            **extra,
        )
        self._jobs.setdefault(bot_id, set()).add(key)
        log.info("announcement_job_armed", bot_id=bot_id, job_id=key, interval=interval.value)

    async def _scheduled_check(
        self,
        bot_id: str,
        integration_id: str,
        connection: "GatewayClient",
    ) -> None:
        try:
            await self.check_and_announce(bot_id, integration_id, connection)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.error(
                "announcement_check_failed",
                bot_id=bot_id,
                integration_id=integration_id,
                error=str(e),
            )

    # =========================================================================
    # Polling
    # =========================================================================

    async def check_and_announce(
        self,
        bot_id: str,
        integration_id: str,
        connection: "GatewayClient",
    ) -> list[str]:
        """Announce new items for one integration.

        Returns:
            Ids of the items announced by this poll.
        """
        try:
            config = self.store.read(bot_id)
        except NotFound:
            log.info("announcement_bot_gone", bot_id=bot_id)
            return []

        integration = config.find_integration(integration_id)
        if integration is None or not integration.scheduling_enabled:
            log.info("announcement_integration_gone", bot_id=bot_id, integration_id=integration_id)
            return []
        channel_id = integration.config.scheduler.channel_id
        if not channel_id:
            return []

        channel = await connection.resolve_channel(channel_id)
        if channel is None:
            log.warning("announcement_channel_missing", bot_id=bot_id, channel_id=channel_id)
            return []

        feed = self.feed_factory(integration)
        if feed is None:
            return []
        try:
            items = await feed.recent()
        except ApiError as e:
            log.warning("announcement_fetch_failed", bot_id=bot_id, integration_id=integration_id, error=str(e))
            return []

        fresh = unseen(items, integration.config.scheduler.announced_ids, key=lambda i: i.id)
        if not fresh:
            log.debug("announcement_nothing_new", bot_id=bot_id, integration_id=integration_id)
            return []

        to_announce = fresh[:MAX_ITEMS_PER_POLL]
        log.info(
            "announcement_new_items",
            bot_id=bot_id,
            integration_id=integration_id,
            found=len(fresh),
            announcing=len(to_announce),
        )

        units = group_items(to_announce)
        await resolve_links(feed, units)

        announced: list[str] = []
        for batch in batched(units):
            try:
                await channel.send(embeds=[unit_embed(unit, integration) for unit in batch])
            except discord.DiscordException as e:
                # Unsent items stay unseen and are retried next poll
                log.error("announcement_send_failed", bot_id=bot_id, error=str(e))
                continue
            for unit in batch:
                announced.extend(unit.item_ids)

        self._record(bot_id, integration_id, announced)
        return announced

    def _record(self, bot_id: str, integration_id: str, announced: list[str]) -> None:
        checked_at = utcnow()

        def apply(config: BotConfig) -> None:
            target = config.find_integration(integration_id)
            if target is None or target.config.scheduler is None:
                return
            settings = target.config.scheduler
            settings.announced_ids = merge_seen(settings.announced_ids, announced, ANNOUNCED_IDS_CAP)
            settings.last_checked = checked_at

        try:
            self.store.update(bot_id, apply, self_writes=self.ledger)
        except NotFound:
            log.info("announcement_bot_gone", bot_id=bot_id)

    # =========================================================================
    # Manual test
    # =========================================================================

    async def test_check(
        self,
        bot_id: str,
        integration_id: str,
        connection: "GatewayClient",
    ) -> dict[str, Any]:
        """Post what the integration added within its interval window.

        Dedup state is neither consulted nor updated, so a test run never
        hides an item from the next real poll.

        Returns:
            ``{"sent": <cards sent>, "message": <operator summary>}``

        Raises:
            SchedulerCheckError: If the integration, its channel or the
                channel permissions are not usable.
        """
        config = self.store.read(bot_id)
        integration = config.find_integration(integration_id)
        if integration is None:
            raise SchedulerCheckError("Integration not found")

        settings = integration.config.scheduler
        if settings is None or not settings.channel_id:
            raise SchedulerCheckError("No channel configured for scheduler")

        channel = await connection.resolve_channel(settings.channel_id)
        if channel is None:
            raise SchedulerCheckError(
                f"Channel {settings.channel_id} not found (bot may not have access)"
            )

        guild = getattr(channel, "guild", None)
        if guild is not None:
            perms = channel.permissions_for(guild.me)
            if not perms.send_messages:
                raise SchedulerCheckError(f"Bot is missing Send Messages permission in #{channel.name}")
            if not perms.embed_links:
                raise SchedulerCheckError(f"Bot is missing Embed Links permission in #{channel.name}")

        feed = self.feed_factory(integration)
        display = PROFILES[integration.service].display_name
        if feed is None:
            raise SchedulerCheckError(f"{display} does not support announcements")

        try:
            items = await feed.recent()
        except ApiError as e:
            raise SchedulerCheckError(str(e)) from e
        if not items:
            return {"sent": 0, "message": f"No recently added items found on {display}."}

        cutoff = utcnow() - TEST_WINDOWS[settings.interval]
        recent = [item for item in items if item.added_at is not None and item.added_at >= cutoff]
        if not recent:
            return {"sent": 0, "message": f"No items added in the last {settings.interval.value} window."}

        to_send = recent[:MAX_ITEMS_PER_POLL]
        units = group_items(to_send)
        await resolve_links(feed, units)
        for batch in batched(units):
            await channel.send(embeds=[unit_embed(unit, integration, test=True) for unit in batch])

        extra = (
            f" (showing {MAX_ITEMS_PER_POLL} of {len(recent)} items)"
            if len(recent) > MAX_ITEMS_PER_POLL
            else ""
        )
        log.info("announcement_test_sent", bot_id=bot_id, integration_id=integration_id, cards=len(units))
        return {
            "sent": len(units),
            "message": f"Sent {len(to_send)} item(s) as {len(units)} grouped embed(s) "
            f"to #{channel.name}{extra}",
        }
