"""Moderation command actions.

Every action checks that both the invoking member and the bot itself hold
the permission the action needs before touching anything.
"""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING

import discord

from botyard.errors import PermissionDenied
from botyard.logging import get_logger

if TYPE_CHECKING:
    from botyard.commands import Invocation
    from botyard.models import Command

log = get_logger("moderation")

NO_REASON = "No reason provided"
DEFAULT_TIMEOUT_MINUTES = 5
DEFAULT_PURGE_AMOUNT = 10


class ModerationHandler:
    """Runs kick, ban, unban, timeout, purge and warn actions."""

    def __init__(self) -> None:
        self.actions = {
            "kick": self.kick,
            "ban": self.ban,
            "unban": self.unban,
            "timeout": self.timeout,
            "purge": self.purge,
            "warn": self.warn,
        }

    async def execute(self, command: "Command", invocation: "Invocation") -> None:
        action = command.moderation_action
        if not action:
            await invocation.reply("No moderation action configured.", ephemeral=True)
            return

        handler = self.actions.get(action)
        if handler is None:
            await invocation.reply(f"Unknown moderation action: {action}", ephemeral=True)
            return

        try:
            await handler(invocation)
        except PermissionDenied as e:
            log.info("moderation_denied", action=action, user=invocation.user_tag, reason=str(e))
            await invocation.reply(str(e), ephemeral=True)

    def require_permission(self, invocation: "Invocation", permission: str) -> None:
        """Raise PermissionDenied unless invoker and bot both hold ``permission``."""
        if not getattr(invocation.permissions, permission, False):
            raise PermissionDenied("You do not have permission to use this command.")

        me = invocation.guild.me if invocation.guild is not None else None
        if me is None or not getattr(me.guild_permissions, permission, False):
            raise PermissionDenied("I do not have permission to perform this action.")

    def _reason(self, invocation: "Invocation", skip: int = 1) -> str:
        if invocation.is_interaction:
            return invocation.option("reason") or NO_REASON
        return " ".join(invocation.args[skip:]) or NO_REASON

    async def kick(self, invocation: "Invocation") -> None:
        member = await invocation.target_member()
        if member is None:
            await invocation.reply("Please mention a user to kick.")
            return
        self.require_permission(invocation, "kick_members")

        reason = self._reason(invocation)
        try:
            await member.kick(reason=reason)
        except discord.HTTPException as e:
            log.warning("kick_failed", member=str(member), error=str(e))
            await invocation.reply("I cannot kick this member.")
            return

        log.info("member_kicked", member=str(member), by=invocation.user_tag)
        await invocation.reply(f"Successfully kicked {member}. Reason: {reason}")

    async def ban(self, invocation: "Invocation") -> None:
        member = await invocation.target_member()
        if member is None:
            await invocation.reply("Please mention a user to ban.")
            return
        self.require_permission(invocation, "ban_members")

        reason = self._reason(invocation)
        try:
            await member.ban(reason=reason)
        except discord.HTTPException as e:
            log.warning("ban_failed", member=str(member), error=str(e))
            await invocation.reply("I cannot ban this member.")
            return

        log.info("member_banned", member=str(member), by=invocation.user_tag)
        await invocation.reply(f"Successfully banned {member}. Reason: {reason}")

    async def unban(self, invocation: "Invocation") -> None:
        if invocation.is_interaction:
            user_id = invocation.option("userid")
        else:
            user_id = invocation.args[0] if invocation.args else None
        if not user_id:
            await invocation.reply("Please provide a user ID to unban.")
            return
        self.require_permission(invocation, "ban_members")

        try:
            await invocation.guild.unban(discord.Object(id=int(user_id)))
        except (ValueError, discord.HTTPException) as e:
            log.warning("unban_failed", user_id=user_id, error=str(e))
            await invocation.reply("An error occurred while unbanning the member. Check the user ID.")
            return

        log.info("member_unbanned", user_id=user_id, by=invocation.user_tag)
        await invocation.reply(f"Successfully unbanned user with ID: {user_id}")

    async def timeout(self, invocation: "Invocation") -> None:
        member = await invocation.target_member()
        if invocation.is_interaction:
            minutes = invocation.option("duration") or DEFAULT_TIMEOUT_MINUTES
        else:
            try:
                minutes = int(invocation.args[1])
            except (IndexError, ValueError):
                minutes = DEFAULT_TIMEOUT_MINUTES
        minutes = int(minutes) if int(minutes) > 0 else DEFAULT_TIMEOUT_MINUTES

        if member is None:
            await invocation.reply("Please mention a user to timeout.")
            return
        self.require_permission(invocation, "moderate_members")

        reason = self._reason(invocation, skip=2)
        try:
            await member.timeout(timedelta(minutes=minutes), reason=reason)
        except discord.HTTPException as e:
            log.warning("timeout_failed", member=str(member), error=str(e))
            await invocation.reply("An error occurred while timing out the member.")
            return

        log.info("member_timed_out", member=str(member), minutes=minutes, by=invocation.user_tag)
        await invocation.reply(
            f"Successfully timed out {member} for {minutes} minute(s). Reason: {reason}"
        )

    async def purge(self, invocation: "Invocation") -> None:
        if invocation.is_interaction:
            raw = invocation.option("amount", DEFAULT_PURGE_AMOUNT)
        else:
            raw = invocation.args[0] if invocation.args else DEFAULT_PURGE_AMOUNT
        try:
            amount = int(raw)
        except (TypeError, ValueError):
            amount = DEFAULT_PURGE_AMOUNT

        if not 1 <= amount <= 100:
            await invocation.reply("Please provide a number between 1 and 100.")
            return
        self.require_permission(invocation, "manage_messages")

        try:
            deleted = await invocation.channel.purge(limit=amount)
        except discord.HTTPException as e:
            log.warning("purge_failed", error=str(e))
            await invocation.reply("An error occurred while purging messages.")
            return

        log.info("messages_purged", count=len(deleted), by=invocation.user_tag)
        await invocation.reply(f"Successfully deleted {len(deleted)} message(s).", ephemeral=True)

    async def warn(self, invocation: "Invocation") -> None:
        member = await invocation.target_member()
        if member is None:
            await invocation.reply("Please mention a user to warn.")
            return

        reason = self._reason(invocation)
        guild_name = invocation.guild.name if invocation.guild is not None else "this server"
        try:
            await member.send(f"You have been warned in {guild_name}. Reason: {reason}")
        except discord.HTTPException:
            await invocation.reply(f"Warned {member}, but could not send them a DM.")
            return

        log.info("member_warned", member=str(member), by=invocation.user_tag)
        await invocation.reply(f"Successfully warned {member}. Reason: {reason}")
