"""Jellyfin integration."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import TYPE_CHECKING, Any

import discord

from botyard.embeds import progress_bar, truncate
from botyard.errors import ApiError
from botyard.integrations.base import IntegrationHandler, join_title, timestamped_embed
from botyard.integrations.client import ServiceClient
from botyard.integrations.feeds import MediaItem, imdb_url
from botyard.logging import get_logger
from botyard.models import Integration, ServiceName

if TYPE_CHECKING:
    from botyard.commands import Invocation

log = get_logger("integrations.jellyfin")

JELLYFIN_COLOR = 0x00A4DC
PAUSED_COLOR = 0x747F8D

TYPE_ICONS = {"Movie": "🎬", "Episode": "📺", "Series": "📺"}
COLLECTION_ICONS = {"movies": "🎬", "tvshows": "📺", "music": "🎵", "books": "📚", "photos": "🖼"}

# Jellyfin ticks are 100ns
TICKS_PER_MS = 10_000


def image_url(client: ServiceClient, item_id: str | None, tag: str | None) -> str | None:
    if not item_id or not tag:
        return None
    return f"{client.base_url}/Items/{item_id}/Images/Primary?tag={tag}&api_key={client.api_key}"


def item_embed(client: ServiceClient, item: dict[str, Any]) -> discord.Embed:
    embed = discord.Embed(
        title=f"{TYPE_ICONS.get(item.get('Type'), '📁')} "
        + join_title(item.get("SeriesName"), item.get("Name")),
        color=JELLYFIN_COLOR,
    )
    if item.get("ProductionYear"):
        embed.add_field(name="Year", value=str(item["ProductionYear"]), inline=True)
    if item.get("CommunityRating"):
        embed.add_field(name="Rating", value=f"⭐ {item['CommunityRating']:.1f}", inline=True)
    if item.get("Overview"):
        embed.description = truncate(item["Overview"], 200)
    thumb = image_url(client, item.get("Id"), (item.get("ImageTags") or {}).get("Primary"))
    if thumb:
        embed.set_thumbnail(url=thumb)
    return embed


class JellyfinHandler(IntegrationHandler):
    """nowPlaying, recentlyAdded, search and stats for Jellyfin."""

    service = ServiceName.JELLYFIN

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.actions = {
            "nowPlaying": self.now_playing,
            "recentlyAdded": self.recently_added,
            "search": self.search,
            "stats": self.stats,
        }

    async def now_playing(self, invocation: "Invocation", integration: Integration) -> None:
        client = self.client(integration)
        # Only sessions active within the last 16 minutes
        sessions = await client.request("/Sessions", {"ActiveWithinSeconds": 960}) or []
        playing = [s for s in sessions if s.get("NowPlayingItem")]
        if not playing:
            await invocation.reply("Nothing is currently playing on Jellyfin.")
            return

        embeds = []
        for session in playing[:10]:
            item = session["NowPlayingItem"]
            play_state = session.get("PlayState") or {}
            paused = bool(play_state.get("IsPaused"))
            embed = discord.Embed(
                title=f"{'⏸' if paused else '▶'} " + join_title(item.get("SeriesName"), item.get("Name")),
                color=PAUSED_COLOR if paused else JELLYFIN_COLOR,
            )
            embed.add_field(name="👤 User", value=session.get("UserName") or "Unknown", inline=True)
            embed.add_field(
                name="📱 Client",
                value=f"{session.get('Client') or 'Unknown'} · {session.get('DeviceName') or ''}",
                inline=True,
            )
            if play_state.get("PositionTicks") and item.get("RunTimeTicks"):
                embed.add_field(
                    name="⏱ Progress",
                    value=progress_bar(
                        play_state["PositionTicks"] / TICKS_PER_MS,
                        item["RunTimeTicks"] / TICKS_PER_MS,
                    ),
                    inline=False,
                )
            tags = item.get("ImageTags") or {}
            if tags.get("Primary"):
                thumb = image_url(client, item.get("Id"), tags["Primary"])
            else:
                thumb = image_url(client, item.get("ParentId"), item.get("ParentThumbImageTag"))
            if thumb:
                embed.set_thumbnail(url=thumb)
            embeds.append(embed)

        header = "1 active stream" if len(playing) == 1 else f"{len(playing)} active streams"
        await invocation.reply(f"🎬 **Now Playing on Jellyfin** - {header}", embeds=embeds)

    async def recently_added(self, invocation: "Invocation", integration: Integration) -> None:
        client = self.client(integration)
        data = await client.request(
            "/Items",
            {
                "SortBy": "DateCreated",
                "SortOrder": "Descending",
                "Recursive": "true",
                "Limit": 10,
                "IncludeItemTypes": "Movie,Episode,Series",
                "Fields": "Overview,ImageTags",
            },
        )
        items = (data or {}).get("Items") or []
        if not items:
            await invocation.reply("No recently added items found.")
            return

        server_name = integration.config.server_name or "Jellyfin"
        embeds = []
        for item in items:
            embed = item_embed(client, item)
            embed.set_footer(text=server_name)
            embeds.append(embed)
        await invocation.reply("🆕 **Recently Added on Jellyfin**", embeds=embeds)

    async def search(self, invocation: "Invocation", integration: Integration) -> None:
        query = await self.require_query(invocation)
        if query is None:
            return

        client = self.client(integration)
        data = await client.request(
            "/Items",
            {
                "SearchTerm": query,
                "Recursive": "true",
                "Limit": 5,
                "IncludeItemTypes": "Movie,Series,Episode",
                "Fields": "Overview,ImageTags",
            },
        )
        items = (data or {}).get("Items") or []
        if not items:
            await invocation.reply(f'No results found for "{query}".')
            return
        await invocation.reply(embeds=[item_embed(client, item) for item in items])

    async def stats(self, invocation: "Invocation", integration: Integration) -> None:
        client = self.client(integration)
        server_name = integration.config.server_name or "Jellyfin"
        folders = ((await client.request("/Library/MediaFolders")) or {}).get("Items") or []

        embed = timestamped_embed(f"📊 {server_name} - Library Stats", JELLYFIN_COLOR)
        embed.set_footer(text="Powered by Jellyfin")
        if not folders:
            embed.description = "No libraries found."
            await invocation.reply(embeds=[embed])
            return

        async def count(folder: dict[str, Any]) -> tuple[str, str]:
            try:
                result = await client.request(
                    "/Items", {"ParentId": folder.get("Id"), "Recursive": "true", "Limit": 0}
                )
            except ApiError:
                return folder.get("Name", "?"), "N/A"
            total = (result or {}).get("TotalRecordCount", 0)
            icon = COLLECTION_ICONS.get(folder.get("CollectionType"), "📁")
            return f"{icon} {folder.get('Name')}", f"{total} item{'' if total == 1 else 's'}"

        for name, value in await asyncio.gather(*(count(f) for f in folders[:25])):
            embed.add_field(name=name, value=value, inline=True)
        await invocation.reply(embeds=[embed])


class JellyfinFeed:
    """Recently added movies and episodes from a Jellyfin server."""

    service = ServiceName.JELLYFIN

    def __init__(self, client: ServiceClient, limit: int = 50) -> None:
        self.client = client
        self.limit = limit

    async def recent(self) -> list[MediaItem]:
        data = await self.client.request(
            "/Items",
            {
                "SortBy": "DateCreated",
                "SortOrder": "Descending",
                "Recursive": "true",
                "Limit": self.limit,
                "IncludeItemTypes": "Movie,Episode",
                "Fields": "Overview,ProviderIds,DateCreated,ImageTags",
            },
        )
        return [self._to_item(raw) for raw in (data or {}).get("Items") or [] if raw.get("Id")]

    async def external_url(self, lookup_key: str) -> str | None:
        try:
            data = await self.client.request("/Items", {"Ids": lookup_key, "Fields": "ProviderIds"})
        except ApiError as e:
            log.debug("imdb_lookup_failed", key=lookup_key, error=str(e))
            return None
        items = (data or {}).get("Items") or []
        if not items:
            return None
        return imdb_url((items[0].get("ProviderIds") or {}).get("Imdb"))

    def _to_item(self, raw: dict[str, Any]) -> MediaItem:
        kind = {"Episode": "episode", "Movie": "movie"}.get(raw.get("Type"), "other")
        tags = raw.get("ImageTags") or {}
        item = MediaItem(
            id=str(raw["Id"]),
            kind=kind,
            title=raw.get("Name") or "Unknown",
            year=raw.get("ProductionYear"),
            summary=raw.get("Overview"),
            thumb_url=image_url(self.client, raw.get("Id"), tags.get("Primary")),
            added_at=_parse_date(raw.get("DateCreated")),
            external_url=imdb_url((raw.get("ProviderIds") or {}).get("Imdb")),
        )

        if kind == "episode":
            item.parent_id = str(raw.get("SeriesId") or raw.get("SeriesName") or "unknown")
            item.parent_title = raw.get("SeriesName") or "Unknown Show"
            item.season = raw.get("ParentIndexNumber")
            item.episode = raw.get("IndexNumber")
            item.lookup_key = raw.get("SeriesId")
            # Episode IMDb ids point at the episode, not the show
            item.external_url = None
            series_thumb = image_url(self.client, raw.get("SeriesId"), raw.get("SeriesPrimaryImageTag"))
            item.thumb_url = series_thumb or item.thumb_url
        elif kind == "movie" and item.external_url is None:
            item.lookup_key = item.id

        return item


def _parse_date(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        # Jellyfin sends 7 fractional digits; fromisoformat accepts at most 6
        head, dot, rest = value.partition(".")
        if dot:
            digits = len(rest) - len(rest.lstrip("0123456789"))
            value = f"{head}.{rest[:min(digits, 6)]}{rest[digits:]}"
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
