"""Plex Media Server integration."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
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

log = get_logger("integrations.plex")

PLEX_COLOR = 0xE5A00D
PAUSED_COLOR = 0x747F8D
ON_DECK_COLOR = 0x5865F2

TYPE_LABELS = {
    "movie": "🎬 Movie",
    "show": "📺 Show",
    "episode": "📺 Episode",
    "artist": "🎵 Artist",
    "album": "🎵 Album",
}
SECTION_ICONS = {"movie": "🎬", "show": "📺", "artist": "🎵"}


def container_items(data: Any) -> list[dict[str, Any]]:
    """Metadata (or Directory) entries of a Plex MediaContainer response."""
    container = (data or {}).get("MediaContainer") or {}
    return container.get("Metadata") or container.get("Directory") or []


def thumb_url(client: ServiceClient, path: str | None) -> str | None:
    if not path:
        return None
    return f"{client.base_url}{path}?X-Plex-Token={client.api_key}"


class PlexHandler(IntegrationHandler):
    """search, nowPlaying, stats, recentlyAdded and onDeck for Plex."""

    service = ServiceName.PLEX

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.actions = {
            "search": self.search,
            "nowPlaying": self.now_playing,
            "stats": self.stats,
            "recentlyAdded": self.recently_added,
            "onDeck": self.on_deck,
        }

    async def search(self, invocation: "Invocation", integration: Integration) -> None:
        query = await self.require_query(invocation)
        if query is None:
            return

        client = self.client(integration)
        results = container_items(await client.request("/search", {"query": query}))
        if not results:
            await invocation.reply(f'No results found for "{query}".')
            return

        embeds = []
        for item in results[:5]:
            embed = discord.Embed(
                title=join_title(item.get("grandparentTitle"), item.get("title")),
                color=PLEX_COLOR,
            )
            embed.add_field(name="Type", value=TYPE_LABELS.get(item.get("type"), item.get("type") or "?"), inline=True)
            if item.get("year"):
                embed.add_field(name="Year", value=str(item["year"]), inline=True)
            if item.get("rating"):
                embed.add_field(name="Rating", value=f"⭐ {item['rating']}", inline=True)
            if item.get("summary"):
                embed.description = truncate(item["summary"], 200)
            if item.get("thumb"):
                embed.set_thumbnail(url=thumb_url(client, item["thumb"]))
            embeds.append(embed)

        await invocation.reply(embeds=embeds)

    async def now_playing(self, invocation: "Invocation", integration: Integration) -> None:
        client = self.client(integration)
        sessions = container_items(await client.request("/status/sessions"))
        if not sessions:
            await invocation.reply("Nothing is currently playing on Plex.")
            return

        embeds = []
        for session in sessions[:10]:
            player = session.get("Player") or {}
            paused = player.get("state") == "paused"
            embed = discord.Embed(
                title=f"{'⏸' if paused else '▶'} "
                + join_title(session.get("grandparentTitle"), session.get("title")),
                color=PAUSED_COLOR if paused else PLEX_COLOR,
            )
            embed.add_field(name="👤 User", value=(session.get("User") or {}).get("title", "Unknown"), inline=True)
            embed.add_field(name="📱 Player", value=player.get("title", "Unknown device"), inline=True)
            media = (session.get("Media") or [{}])[0]
            if media.get("videoResolution"):
                embed.add_field(name="🎥 Quality", value=f"{media['videoResolution']}p", inline=True)
            if session.get("viewOffset") and session.get("duration"):
                embed.add_field(
                    name="⏱ Progress",
                    value=progress_bar(session["viewOffset"], session["duration"]),
                    inline=False,
                )
            if session.get("thumb"):
                embed.set_thumbnail(url=thumb_url(client, session["thumb"]))
            embeds.append(embed)

        header = "1 active stream" if len(sessions) == 1 else f"{len(sessions)} active streams"
        await invocation.reply(f"🎬 **Now Playing on Plex** - {header}", embeds=embeds)

    async def stats(self, invocation: "Invocation", integration: Integration) -> None:
        client = self.client(integration)
        sections = container_items(await client.request("/library/sections"))
        server_name = integration.config.server_name or "Plex Server"

        embed = timestamped_embed(f"📊 {server_name} - Library Stats", PLEX_COLOR)
        embed.set_footer(text="Powered by Plex")
        if not sections:
            embed.description = "No libraries found."
            await invocation.reply(embeds=[embed])
            return

        async def count(section: dict[str, Any]) -> tuple[str, str]:
            icon = SECTION_ICONS.get(section.get("type"), "📁")
            try:
                data = await client.request(
                    f"/library/sections/{section.get('key')}/all",
                    {"X-Plex-Container-Start": 0, "X-Plex-Container-Size": 0},
                )
            except ApiError:
                return section.get("title", "?"), "N/A"
            container = data.get("MediaContainer") or {}
            total = container.get("totalSize", container.get("size", 0))
            return f"{icon} {section.get('title')}", f"{total} item{'' if total == 1 else 's'}"

        for name, value in await asyncio.gather(*(count(s) for s in sections[:25])):
            embed.add_field(name=name, value=value, inline=True)
        await invocation.reply(embeds=[embed])

    async def recently_added(self, invocation: "Invocation", integration: Integration) -> None:
        client = self.client(integration)
        items = container_items(await client.request("/library/recentlyAdded"))
        if not items:
            await invocation.reply("No recently added items found.")
            return

        server_name = integration.config.server_name or "Plex Server"
        embeds = []
        for item in items[:10]:
            embed = discord.Embed(
                title=join_title(item.get("grandparentTitle"), item.get("title")),
                color=PLEX_COLOR,
            )
            embed.set_footer(text=server_name)
            embed.add_field(name="Type", value=TYPE_LABELS.get(item.get("type"), item.get("type") or "?"), inline=True)
            if item.get("year"):
                embed.add_field(name="Year", value=str(item["year"]), inline=True)
            if item.get("thumb"):
                embed.set_thumbnail(url=thumb_url(client, item["thumb"]))
            embeds.append(embed)

        extra = f" *(showing 10 of {len(items)})*" if len(items) > 10 else ""
        await invocation.reply(f"🆕 **Recently Added on Plex**{extra}", embeds=embeds)

    async def on_deck(self, invocation: "Invocation", integration: Integration) -> None:
        client = self.client(integration)
        items = container_items(await client.request("/library/onDeck"))
        if not items:
            await invocation.reply("Nothing is on deck right now.")
            return

        server_name = integration.config.server_name or "Plex Server"
        embeds = []
        for item in items[:10]:
            embed = discord.Embed(
                title=join_title(item.get("grandparentTitle"), item.get("title")),
                color=ON_DECK_COLOR,
            )
            embed.set_footer(text=server_name)
            if item.get("viewOffset") and item.get("duration"):
                embed.add_field(
                    name="⏱ Progress",
                    value=progress_bar(item["viewOffset"], item["duration"]),
                    inline=False,
                )
            if item.get("thumb"):
                embed.set_thumbnail(url=thumb_url(client, item["thumb"]))
            embeds.append(embed)

        await invocation.reply(f"▶ **On Deck - {server_name}**", embeds=embeds)


class PlexFeed:
    """Recently added items from a Plex server."""

    service = ServiceName.PLEX

    def __init__(self, client: ServiceClient) -> None:
        self.client = client

    async def recent(self) -> list[MediaItem]:
        data = await self.client.request("/library/recentlyAdded")
        return [self._to_item(raw) for raw in container_items(data) if raw.get("ratingKey")]

    async def external_url(self, lookup_key: str) -> str | None:
        try:
            data = await self.client.request(
                f"/library/metadata/{lookup_key}", {"includeGuids": 1}
            )
        except ApiError as e:
            log.debug("imdb_lookup_failed", key=lookup_key, error=str(e))
            return None

        metadata = container_items(data)
        if not metadata:
            return None
        for guid in metadata[0].get("Guid") or []:
            guid_id = str(guid.get("id", ""))
            if guid_id.startswith("imdb://"):
                return imdb_url(guid_id.removeprefix("imdb://"))
        return None

    def _to_item(self, raw: dict[str, Any]) -> MediaItem:
        kind = raw.get("type")
        added_at = raw.get("addedAt")
        item = MediaItem(
            id=str(raw["ratingKey"]),
            kind=kind if kind in ("episode", "movie") else "other",
            title=raw.get("title") or "Unknown",
            year=raw.get("year"),
            summary=raw.get("summary"),
            thumb_url=thumb_url(self.client, raw.get("thumb")),
            added_at=datetime.fromtimestamp(int(added_at), tz=timezone.utc) if added_at else None,
        )

        if item.kind == "episode":
            parent_key = raw.get("grandparentRatingKey")
            item.parent_id = str(parent_key or raw.get("grandparentTitle") or "unknown")
            item.parent_title = raw.get("grandparentTitle") or "Unknown Show"
            item.year = raw.get("parentYear") or raw.get("year")
            item.season = raw.get("parentIndex")
            item.episode = raw.get("index")
            item.thumb_url = thumb_url(self.client, raw.get("grandparentThumb") or raw.get("thumb"))
            item.lookup_key = str(parent_key) if parent_key else None
        elif item.kind == "movie":
            item.lookup_key = item.id
        else:
            item.parent_title = raw.get("grandparentTitle")

        return item
