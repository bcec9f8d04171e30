"""Overseerr integration."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import discord

from botyard.embeds import truncate
from botyard.integrations.base import IntegrationHandler, timestamped_embed
from botyard.models import Integration, ServiceName

if TYPE_CHECKING:
    from botyard.commands import Invocation

OVERSEERR_COLOR = 0xF59E0B

REQUEST_STATUS = {
    1: ("⏳", "Pending"),
    2: ("✅", "Approved"),
    3: ("❌", "Declined"),
    4: ("🟢", "Available"),
    5: ("⬇️", "Processing"),
}
MEDIA_STATUS = {2: "✅ Available", 3: "⬇️ Partial", 4: "⏳ Processing", 5: "📋 Requested"}
TYPE_ICONS = {"movie": "🎬", "tv": "📺"}


class OverseerrHandler(IntegrationHandler):
    """requests, pending and search for Overseerr."""

    service = ServiceName.OVERSEERR

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.actions = {
            "requests": self.requests,
            "pending": self.pending,
            "search": self.search,
        }

    async def requests(self, invocation: "Invocation", integration: Integration) -> None:
        await self._list_requests(invocation, integration, "all")

    async def pending(self, invocation: "Invocation", integration: Integration) -> None:
        await self._list_requests(invocation, integration, "pending")

    async def _list_requests(
        self,
        invocation: "Invocation",
        integration: Integration,
        filter: str,
    ) -> None:
        data = await self.client(integration).request(
            "/request", {"take": 10, "filter": filter, "sort": "added"}
        ) or {}
        results = data.get("results") or []
        if not results:
            await invocation.reply("No pending requests." if filter == "pending" else "No requests found.")
            return

        embed = timestamped_embed(
            "⏳ Pending Requests" if filter == "pending" else "📋 Media Requests",
            OVERSEERR_COLOR,
        )
        for req in results[:10]:
            media = req.get("media") or {}
            title = media.get("originalTitle") or media.get("title") or "Unknown"
            icon, label = REQUEST_STATUS.get(req.get("status"), ("❓", "Unknown"))
            requester = (req.get("requestedBy") or {}).get("displayName") or "Unknown"
            embed.add_field(
                name=f"{TYPE_ICONS.get(req.get('type'), '📁')} {title}",
                value=f"{icon} {label} · by {requester}",
                inline=False,
            )

        total = (data.get("pageInfo") or {}).get("results") or 0
        if total > 10:
            embed.set_footer(text=f"Showing 10 of {total} requests")
        await invocation.reply(embeds=[embed])

    async def search(self, invocation: "Invocation", integration: Integration) -> None:
        query = await self.require_query(invocation)
        if query is None:
            return

        data = await self.client(integration).request("/search", {"query": query}) or {}
        results = [r for r in data.get("results") or [] if r.get("mediaType") in ("movie", "tv")]
        if not results:
            await invocation.reply(f'No results found for "{query}".')
            return

        embeds = []
        for item in results[:5]:
            is_movie = item["mediaType"] == "movie"
            title = item.get("title") if is_movie else item.get("name")
            released = item.get("releaseDate") if is_movie else item.get("firstAirDate")
            embed = discord.Embed(
                title=f"{'🎬' if is_movie else '📺'} {title or 'Unknown'}",
                color=OVERSEERR_COLOR,
            )
            if released:
                embed.add_field(name="Year", value=released[:4], inline=True)
            if item.get("voteAverage"):
                embed.add_field(name="Rating", value=f"⭐ {item['voteAverage']:.1f}", inline=True)
            status = MEDIA_STATUS.get((item.get("mediaInfo") or {}).get("status"))
            if status:
                embed.add_field(name="Status", value=status, inline=True)
            if item.get("overview"):
                embed.description = truncate(item["overview"], 200)
            if item.get("posterPath"):
                embed.set_thumbnail(url=f"https://image.tmdb.org/t/p/w185{item['posterPath']}")
            embeds.append(embed)

        await invocation.reply(embeds=embeds)
