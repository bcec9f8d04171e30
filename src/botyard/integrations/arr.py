"""Sonarr, Radarr, Lidarr, Readarr and Prowlarr integrations.

The four library managers share one API shape (``/lookup``, ``/calendar``,
``/queue``) and differ only in resource names and how an entry is shown,
so they share ``ArrHandler``.
"""

from __future__ import annotations

from datetime import date, timedelta
from typing import TYPE_CHECKING, Any, ClassVar

import discord

from botyard.embeds import format_size, truncate
from botyard.integrations.base import IntegrationHandler, timestamped_embed
from botyard.models import Integration, ServiceName

if TYPE_CHECKING:
    from botyard.commands import Invocation


def _short_date(value: str | None) -> str:
    return value[:10] if value else "TBA"


class ArrHandler(IntegrationHandler):
    """search, calendar and queue for an *arr library manager.

    Subclasses describe their resource (lookup path, calendar span) and
    how one search result or calendar entry is rendered.
    """

    color: ClassVar[int]
    icon: ClassVar[str]
    lookup_path: ClassVar[str]
    calendar_days: ClassVar[int] = 30
    calendar_params: ClassVar[dict[str, Any]] = {}
    noun: ClassVar[str]

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.actions = {
            "search": self.search,
            "calendar": self.calendar,
            "queue": self.queue,
        }

    def describe_result(self, result: dict[str, Any]) -> tuple[str, str]:
        return result.get("title", "Unknown"), str(result.get("year") or "N/A")

    def describe_release(self, entry: dict[str, Any]) -> tuple[str, str]:
        return entry.get("title", "Unknown"), _short_date(entry.get("releaseDate"))

    async def search(self, invocation: "Invocation", integration: Integration) -> None:
        query = await self.require_query(invocation)
        if query is None:
            return

        results = await self.client(integration).request(self.lookup_path, {"term": query})
        if not results:
            await invocation.reply(f'No {self.noun} found for "{query}".')
            return

        embed = discord.Embed(
            title=f"{self.display_name} Search Results: {query}",
            color=self.color,
            description="\n".join(
                f"{i}. {name} ({detail})"
                for i, (name, detail) in enumerate(
                    (self.describe_result(r) for r in results[:5]), start=1
                )
            ),
        )
        embed.set_footer(text=f"Powered by {self.display_name}")
        await invocation.reply(embeds=[embed])

    async def calendar(self, invocation: "Invocation", integration: Integration) -> None:
        start = date.today()
        end = start + timedelta(days=self.calendar_days)
        entries = await self.client(integration).request(
            "/calendar",
            {"start": start.isoformat(), "end": end.isoformat(), **self.calendar_params},
        )
        if not entries:
            await invocation.reply(f"No upcoming {self.noun} in the next {self.calendar_days} days.")
            return

        embed = timestamped_embed(
            f"{self.icon} Upcoming {self.noun.capitalize()} (Next {self.calendar_days} Days)",
            self.color,
        )
        for entry in entries[:10]:
            name, detail = self.describe_release(entry)
            embed.add_field(name=truncate(name, 256), value=detail, inline=False)
        if len(entries) > 10:
            embed.set_footer(text=f"Showing 10 of {len(entries)} upcoming")
        await invocation.reply(embeds=[embed])

    async def queue(self, invocation: "Invocation", integration: Integration) -> None:
        data = await self.client(integration).request("/queue")
        records = data.get("records", []) if isinstance(data, dict) else (data or [])
        if not records:
            await invocation.reply(f"✅ {self.display_name} download queue is empty.")
            return

        embed = timestamped_embed(f"⬇️ {self.display_name} Download Queue", self.color)
        for item in records[:10]:
            size = item.get("size") or 0
            done = round((size - (item.get("sizeleft") or 0)) / size * 100) if size > 0 else 0
            embed.add_field(
                name=truncate(item.get("title") or "Unknown", 256),
                value=f"{item.get('status') or 'unknown'} · {done}%",
                inline=True,
            )
        if len(records) > 10:
            embed.set_footer(text=f"Showing 10 of {len(records)} items")
        await invocation.reply(embeds=[embed])


class SonarrHandler(ArrHandler):
    service = ServiceName.SONARR
    color = 0x3498DB
    icon = "📺"
    lookup_path = "/series/lookup"
    calendar_days = 7
    calendar_params = {"includeSeries": "true"}
    noun = "episodes"

    def describe_release(self, entry: dict[str, Any]) -> tuple[str, str]:
        series = (entry.get("series") or {}).get("title", "Unknown")
        label = f"S{entry.get('seasonNumber', 0):02d}E{entry.get('episodeNumber', 0):02d}"
        return f"{series} - {label}", _short_date(entry.get("airDate"))


class RadarrHandler(ArrHandler):
    service = ServiceName.RADARR
    color = 0xFFC230
    icon = "🎬"
    lookup_path = "/movie/lookup"
    noun = "movies"

    def describe_release(self, entry: dict[str, Any]) -> tuple[str, str]:
        released = entry.get("digitalRelease") or entry.get("inCinemas")
        return entry.get("title", "Unknown"), _short_date(released)


class LidarrHandler(ArrHandler):
    service = ServiceName.LIDARR
    color = 0x1DB954
    icon = "🎵"
    lookup_path = "/artist/lookup"
    calendar_params = {"includeArtist": "true"}
    noun = "releases"

    def describe_result(self, result: dict[str, Any]) -> tuple[str, str]:
        return result.get("artistName", "Unknown"), result.get("artistType") or "Artist"

    def describe_release(self, entry: dict[str, Any]) -> tuple[str, str]:
        artist = (entry.get("artist") or {}).get("artistName", "Unknown Artist")
        kind = entry.get("albumType") or "Release"
        return f"{artist} - {entry.get('title', 'Unknown')}", f"{kind} · {_short_date(entry.get('releaseDate'))}"


class ReadarrHandler(ArrHandler):
    service = ServiceName.READARR
    color = 0x8B4513
    icon = "📚"
    lookup_path = "/book/lookup"
    calendar_params = {"includeAuthor": "true"}
    noun = "books"

    def describe_result(self, result: dict[str, Any]) -> tuple[str, str]:
        author = (result.get("author") or {}).get("authorName") or result.get("authorTitle")
        return result.get("title", "Unknown"), author or "Unknown Author"

    def describe_release(self, entry: dict[str, Any]) -> tuple[str, str]:
        author = (entry.get("author") or {}).get("authorName", "Unknown Author")
        return entry.get("title", "Unknown"), f"by {author} · {_short_date(entry.get('releaseDate'))}"


class ProwlarrHandler(IntegrationHandler):
    """indexers, stats and search for Prowlarr."""

    service = ServiceName.PROWLARR
    color = 0xF97316

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.actions = {
            "indexers": self.indexers,
            "stats": self.stats,
            "search": self.search,
        }

    async def indexers(self, invocation: "Invocation", integration: Integration) -> None:
        indexers = await self.client(integration).request("/indexer") or []
        if not indexers:
            await invocation.reply("No indexers configured in Prowlarr.")
            return

        enabled = [i for i in indexers if i.get("enable")]
        disabled = [i for i in indexers if not i.get("enable")]
        embed = timestamped_embed("🔍 Prowlarr Indexers", self.color)
        if enabled:
            embed.add_field(
                name=f"✅ Enabled ({len(enabled)})",
                value="\n".join(
                    f"{'📰' if i.get('protocol') == 'usenet' else '🧲'} {i.get('name')}"
                    for i in enabled[:20]
                ),
                inline=False,
            )
        if disabled:
            embed.add_field(
                name=f"❌ Disabled ({len(disabled)})",
                value=", ".join(str(i.get("name")) for i in disabled[:10]),
                inline=False,
            )
        embed.set_footer(text=f"{len(indexers)} total indexers")
        await invocation.reply(embeds=[embed])

    async def stats(self, invocation: "Invocation", integration: Integration) -> None:
        data = await self.client(integration).request("/indexerstats") or {}
        stats = sorted(
            data.get("indexers") or [],
            key=lambda s: s.get("numberOfSuccessfulQueries") or 0,
            reverse=True,
        )
        if not stats:
            await invocation.reply("No indexer statistics available.")
            return

        embed = timestamped_embed("📊 Prowlarr Indexer Stats", self.color)
        for s in stats[:10]:
            ok = s.get("numberOfSuccessfulQueries") or 0
            total = ok + (s.get("numberOfFailedQueries") or 0)
            rate = round(ok / total * 100) if total else 0
            avg = f"{round(s['averageResponseTime'])}ms" if s.get("averageResponseTime") else "?"
            embed.add_field(
                name=s.get("indexerName", "Unknown"),
                value=f"✅ {rate}% success · ⏱ {avg} avg · ⬇️ {s.get('numberOfSuccessfulGrabs') or 0} grabs",
                inline=False,
            )
        if len(stats) > 10:
            embed.set_footer(text=f"Showing top 10 of {len(stats)} indexers")
        await invocation.reply(embeds=[embed])

    async def search(self, invocation: "Invocation", integration: Integration) -> None:
        query = await self.require_query(invocation)
        if query is None:
            return

        # indexerIds=-2 searches every indexer
        results = await self.client(integration).request(
            "/search", {"query": query, "indexerIds": -2, "type": "search", "limit": 10}
        )
        if not results:
            await invocation.reply(f'No results found for "{query}".')
            return

        embed = timestamped_embed(f"🔍 Search: {query}", self.color)
        for result in results[:10]:
            size = format_size(result["size"]) if result.get("size") else "?"
            seeders = f" · 🌱 {result['seeders']}" if result.get("seeders") is not None else ""
            embed.add_field(
                name=truncate(result.get("title") or "Unknown", 100),
                value=f"{result.get('indexer') or 'Unknown'} · {size}{seeders}",
                inline=False,
            )
        if len(results) > 10:
            embed.set_footer(text=f"Showing 10 of {len(results)} results")
        await invocation.reply(embeds=[embed])
