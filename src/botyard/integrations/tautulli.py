"""Tautulli integration."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import discord

from botyard.errors import ApiError
from botyard.integrations.base import IntegrationHandler, timestamped_embed
from botyard.integrations.client import ServiceClient
from botyard.models import Integration, ServiceName

if TYPE_CHECKING:
    from botyard.commands import Invocation

TAUTULLI_COLOR = 0xE5A00D
PAUSED_COLOR = 0x747F8D
SECTION_ICONS = {"movie": "🎬", "show": "📺", "artist": "🎵"}


async def command(client: ServiceClient, cmd: str, **params: Any) -> Any:
    """Run a Tautulli API command and unwrap its response envelope.

    Raises:
        ApiError: If the call fails or Tautulli reports an error result.
    """
    data = await client.request("", {"cmd": cmd, **params})
    body = (data or {}).get("response") or {}
    if body.get("result") != "success":
        raise ApiError(client.name, body.get("message") or "Tautulli API error")
    return body.get("data")


def _day(epoch: Any) -> str:
    if not epoch:
        return "Unknown"
    return datetime.fromtimestamp(int(epoch), tz=timezone.utc).strftime("%Y-%m-%d")


class TautulliHandler(IntegrationHandler):
    """activity, history and stats for Tautulli."""

    service = ServiceName.TAUTULLI

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.actions = {
            "activity": self.activity,
            "history": self.history,
            "stats": self.stats,
        }

    async def activity(self, invocation: "Invocation", integration: Integration) -> None:
        client = self.client(integration)
        data = await command(client, "get_activity") or {}
        sessions = data.get("sessions") or []
        if not sessions:
            await invocation.reply("Nothing is currently playing on Plex.")
            return

        embeds = []
        for session in sessions[:10]:
            state = session.get("state")
            icon = "⏸" if state == "paused" else "⏳" if state == "buffering" else "▶"
            embed = discord.Embed(
                title=f"{icon} {session.get('full_title') or session.get('title')}",
                color=PAUSED_COLOR if state == "paused" else TAUTULLI_COLOR,
            )
            embed.add_field(
                name="👤 User",
                value=session.get("friendly_name") or session.get("user") or "Unknown",
                inline=True,
            )
            embed.add_field(name="📱 Player", value=session.get("player") or "Unknown", inline=True)
            stream = (
                "Direct Play"
                if session.get("transcode_decision") == "direct play"
                else f"Transcode ({session.get('video_resolution') or '?'})"
            )
            embed.add_field(name="📡 Stream", value=stream, inline=True)

            try:
                percent = int(session.get("progress_percent") or 0)
            except (TypeError, ValueError):
                percent = 0
            if percent > 0:
                filled = round(percent / 100 * 15)
                embed.add_field(
                    name="⏱ Progress",
                    value=f"{'█' * filled}{'░' * (15 - filled)} {percent}%",
                    inline=False,
                )
            if session.get("thumb"):
                embed.set_thumbnail(
                    url=f"{client.url('')}?apikey={client.api_key}&cmd=pms_image_proxy"
                    f"&img={quote(session['thumb'], safe='')}"
                )
            embeds.append(embed)

        streams = data.get("stream_count") or len(sessions)
        header = "1 active stream" if int(streams) == 1 else f"{streams} active streams"
        await invocation.reply(f"📊 **Tautulli - Now Playing** - {header}", embeds=embeds)

    async def history(self, invocation: "Invocation", integration: Integration) -> None:
        data = await command(
            self.client(integration),
            "get_history",
            length=10,
            order_column="date",
            order_dir="desc",
        ) or {}
        records = data.get("data") or []
        if not records:
            await invocation.reply("No watch history found.")
            return

        embed = timestamped_embed("📋 Recent Watch History", TAUTULLI_COLOR)
        for record in records[:10]:
            done = f"{round(record['percent_complete'])}%" if record.get("percent_complete") else "?%"
            user = record.get("friendly_name") or record.get("user") or "Unknown"
            embed.add_field(
                name=record.get("full_title") or record.get("title") or "Unknown",
                value=f"{user} · {done} · {_day(record.get('date'))}",
                inline=False,
            )
        total = data.get("recordsTotal") or len(records)
        if total > 10:
            embed.set_footer(text=f"Showing 10 of {total} entries")
        await invocation.reply(embeds=[embed])

    async def stats(self, invocation: "Invocation", integration: Integration) -> None:
        client = self.client(integration)
        libraries, users_data = await asyncio.gather(
            command(client, "get_libraries"),
            command(client, "get_users_table", length=5, order_column="last_seen", order_dir="desc"),
        )
        libraries = libraries if isinstance(libraries, list) else []
        users = (users_data or {}).get("data") or []

        embed = timestamped_embed("📊 Tautulli - Stats", TAUTULLI_COLOR)
        if libraries:
            embed.add_field(name="📚 Libraries", value="​", inline=False)
            for lib in libraries[:6]:
                embed.add_field(
                    name=f"{SECTION_ICONS.get(lib.get('section_type'), '📁')} {lib.get('section_name')}",
                    value=f"{lib.get('count', '?')} items",
                    inline=True,
                )
        if users:
            embed.add_field(name="👥 Recent Users", value="​", inline=False)
            for user in users[:5]:
                last_seen = _day(user.get("last_seen")) if user.get("last_seen") else "Never"
                embed.add_field(
                    name=user.get("friendly_name") or user.get("username") or "Unknown",
                    value=f"Last seen: {last_seen}",
                    inline=True,
                )
        if not libraries and not users:
            embed.description = "No data available."
        await invocation.reply(embeds=[embed])
