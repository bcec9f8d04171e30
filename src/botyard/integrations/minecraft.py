"""Minecraft server status via the public mcsrvstat.us API.

No credential is needed, but the server must be reachable from the
internet.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from botyard.errors import ApiError
from botyard.integrations.base import IntegrationHandler, timestamped_embed
from botyard.models import Integration, ServiceName

if TYPE_CHECKING:
    from botyard.commands import Invocation

ONLINE_COLOR = 0x57F287
OFFLINE_COLOR = 0xED4245


class MinecraftHandler(IntegrationHandler):
    """status and players for a Minecraft server."""

    service = ServiceName.MINECRAFT

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.actions = {
            "status": self.status,
            "players": self.players,
        }

    @property
    def failure_message(self) -> str:
        return "An error occurred while querying the Minecraft server."

    async def _query(self, integration: Integration) -> tuple[dict[str, Any], str]:
        address = integration.config.server_address
        if not address:
            raise ApiError(self.display_name, "No server address configured")
        data = await self.client(integration).request(f"/{address}") or {}
        return data, integration.config.server_name or address

    async def status(self, invocation: "Invocation", integration: Integration) -> None:
        data, name = await self._query(integration)
        if not data.get("online"):
            embed = timestamped_embed(
                f"🔴 {name}",
                OFFLINE_COLOR,
                description="Server is currently offline.",
            )
            await invocation.reply(embeds=[embed])
            return

        players = data.get("players") or {}
        version = data.get("version") or (data.get("protocol") or {}).get("name") or "Unknown"
        software = data.get("software")
        embed = timestamped_embed(f"🟢 {name}", ONLINE_COLOR)
        embed.add_field(
            name="👥 Players",
            value=f"{players.get('online', 0)} / {players.get('max', 0)}",
            inline=True,
        )
        embed.add_field(
            name="🎮 Version",
            value=f"{software} {version}" if software else version,
            inline=True,
        )
        motd = ((data.get("motd") or {}).get("clean") or [""])[0].strip()
        if motd:
            embed.description = f"*{motd}*"
        await invocation.reply(embeds=[embed])

    async def players(self, invocation: "Invocation", integration: Integration) -> None:
        data, name = await self._query(integration)
        if not data.get("online"):
            await invocation.reply(f"🔴 **{name}** is offline.")
            return

        players = data.get("players") or {}
        online = players.get("online", 0)
        maximum = players.get("max", 0)
        names = [p.get("name") for p in players.get("list") or [] if p.get("name")]

        if online == 0:
            embed = timestamped_embed(
                f"👥 {name} - Players",
                ONLINE_COLOR,
                description="No players are currently online.",
            )
        elif names:
            embed = timestamped_embed(
                f"👥 {name} - Online Players",
                ONLINE_COLOR,
                description="\n".join(f"• {player}" for player in names),
            )
        else:
            embed = timestamped_embed(
                f"👥 {name} - Online Players",
                ONLINE_COLOR,
                description=f"{online} player(s) online.\n*(Server did not share player names)*",
            )
        embed.set_footer(text=f"{online} / {maximum} players")
        await invocation.reply(embeds=[embed])
