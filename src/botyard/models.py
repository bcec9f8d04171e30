"""Pydantic models for Botyard bot configuration.

A bot's configuration is stored as one JSON document with camelCase keys
(the shape the admin front end edits). These models validate that document
and expose it to Python code with snake_case attribute names. Unknown keys
on loosely-typed sections (settings, integration config, event config) are
preserved so a round trip through the store never loses operator data.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import discord
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from ulid import ULID


# =============================================================================
# Helpers
# =============================================================================


def generate_id() -> str:
    """Generate a new ULID for entities."""
    return str(ULID())


def utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def normalize_permission(name: str) -> str:
    """Normalize a permission name to discord.py's flag spelling.

    Accepts ``KickMembers``, ``kickMembers``, ``KICK_MEMBERS`` and
    ``kick_members``.
    """
    name = name.strip()
    if "_" in name or name.isupper():
        return name.lower()
    return _CAMEL_BOUNDARY.sub("_", name).lower()


class CamelModel(BaseModel):
    """Base model reading and writing camelCase keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


class LooseCamelModel(CamelModel):
    """CamelModel that keeps keys it does not know about."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )


# =============================================================================
# Enums
# =============================================================================


class BotState(str, Enum):
    """Last observed connection state of a bot."""

    ONLINE = "online"
    OFFLINE = "offline"


class CommandType(str, Enum):
    """How a command can be invoked."""

    PREFIX = "prefix"
    SLASH = "slash"
    BOTH = "both"


class ResponseType(str, Enum):
    """What a command does when invoked."""

    TEXT = "text"
    EMBED = "embed"
    REACTION = "reaction"
    MODERATION = "moderation"
    INTEGRATION = "integration"


_EVENT_ALIASES = {
    "message-created": "messageCreate",
    "message-deleted": "messageDelete",
    "message-updated": "messageUpdate",
    "member-joined": "guildMemberAdd",
    "member-left": "guildMemberRemove",
    "reaction-added": "messageReactionAdd",
    "reaction-removed": "messageReactionRemove",
}

_GATEWAY_EVENTS = {
    "messageCreate": "message",
    "messageDelete": "message_delete",
    "messageUpdate": "message_edit",
    "guildMemberAdd": "member_join",
    "guildMemberRemove": "member_remove",
    "messageReactionAdd": "reaction_add",
    "messageReactionRemove": "reaction_remove",
}


class EventType(str, Enum):
    """Gateway events an event rule can react to."""

    MESSAGE_CREATE = "messageCreate"
    MESSAGE_DELETE = "messageDelete"
    MESSAGE_UPDATE = "messageUpdate"
    MEMBER_JOIN = "guildMemberAdd"
    MEMBER_LEAVE = "guildMemberRemove"
    REACTION_ADD = "messageReactionAdd"
    REACTION_REMOVE = "messageReactionRemove"

    @classmethod
    def _missing_(cls, value: object) -> "EventType | None":
        if isinstance(value, str):
            canonical = _EVENT_ALIASES.get(value.lower().replace("_", "-"))
            if canonical:
                return cls(canonical)
        return None

    @property
    def gateway_event(self) -> str:
        """The discord.py event name (without ``on_``) for this type."""
        return _GATEWAY_EVENTS[self.value]


class ActionType(str, Enum):
    """Action an event rule performs."""

    SEND_MESSAGE = "sendMessage"
    SEND_EMBED = "sendEmbed"
    ASSIGN_ROLE = "assignRole"


class ServiceName(str, Enum):
    """Third-party services a bot can integrate with."""

    PLEX = "plex"
    JELLYFIN = "jellyfin"
    SONARR = "sonarr"
    RADARR = "radarr"
    LIDARR = "lidarr"
    READARR = "readarr"
    PROWLARR = "prowlarr"
    OVERSEERR = "overseerr"
    TAUTULLI = "tautulli"
    MINECRAFT = "minecraft"
    STARBOARD = "starboard"


class Interval(str, Enum):
    """Symbolic announcement intervals.

    Unrecognized values fall back to daily.
    """

    HOURLY = "hourly"
    EVERY_6H = "every6h"
    DAILY = "daily"
    WEEKLY = "weekly"

    @classmethod
    def _missing_(cls, value: object) -> "Interval":
        return cls.DAILY


# =============================================================================
# Commands
# =============================================================================


class Command(CamelModel):
    """A declarative chat command."""

    id: str = Field(default_factory=generate_id)
    name: str
    description: str = "No description"
    type: CommandType = CommandType.PREFIX
    response_type: ResponseType = ResponseType.TEXT
    required_permissions: list[str] | None = None
    options: list[dict[str, Any]] = Field(default_factory=list)

    # Type-specific payload
    response_content: str | None = None
    embed_data: dict[str, Any] | None = None
    reaction: str = "✅"
    moderation_action: str | None = None
    integration_service: ServiceName | None = None
    integration_action: str | None = None

    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Command names are single, non-empty tokens."""
        v = v.strip()
        if not v or any(c.isspace() for c in v):
            raise ValueError("command name must be a single word")
        return v

    @field_validator("required_permissions", mode="before")
    @classmethod
    def validate_permissions(cls, v: Any) -> list[str] | None:
        """Normalize permission names and reject unknown ones."""
        if v is None or v == "" or v == []:
            return None
        if isinstance(v, str):
            v = [v]
        names = [normalize_permission(str(p)) for p in v]
        unknown = [n for n in names if n not in discord.Permissions.VALID_FLAGS]
        if unknown:
            raise ValueError(f"unknown permissions: {', '.join(unknown)}")
        return names

    @property
    def key(self) -> str:
        """Case-folded lookup key."""
        return self.name.lower()

    @property
    def is_remote(self) -> bool:
        """Whether the command is declared to the gateway's command registry."""
        return self.type in (CommandType.SLASH, CommandType.BOTH)

    @property
    def accepts_prefix(self) -> bool:
        """Whether the command can be triggered by prefix invocation."""
        return self.type in (CommandType.PREFIX, CommandType.BOTH)


# =============================================================================
# Event Rules
# =============================================================================


class RoleReaction(CamelModel):
    """Maps one emoji to one role for reaction roles."""

    emoji: str
    role_id: str


class EventRuleConfig(LooseCamelModel):
    """Free-form event rule configuration."""

    log_channel_id: str | None = None
    welcome_channel_id: str | None = None
    role_reactions: list[RoleReaction] | None = None


class EventAction(CamelModel):
    """What an event rule does when it fires."""

    type: ActionType
    message: str | None = None
    embed_data: dict[str, Any] | None = None
    role_id: str | None = None


class EventRule(CamelModel):
    """A declarative reaction to a gateway event."""

    id: str = Field(default_factory=generate_id)
    name: str | None = None
    event_type: EventType
    config: EventRuleConfig = Field(default_factory=EventRuleConfig)
    action: EventAction | None = None

    created_at: datetime | None = None
    updated_at: datetime | None = None


# =============================================================================
# Integrations
# =============================================================================


class SchedulerSettings(CamelModel):
    """Recurring announcement settings for one integration."""

    enabled: bool = False
    interval: Interval = Interval.DAILY
    channel_id: str | None = None
    announced_ids: list[str] = Field(default_factory=list)
    last_checked: datetime | None = None


class IntegrationConfig(LooseCamelModel):
    """Service endpoint, credential and service-specific settings."""

    api_url: str | None = None
    api_key: str | None = None
    server_name: str | None = None
    server_address: str | None = None  # minecraft

    # starboard
    channel_id: str | None = None
    emoji: str = "⭐"
    threshold: int = 3
    posted_message_ids: list[str] = Field(default_factory=list)

    scheduler: SchedulerSettings | None = None


class Integration(CamelModel):
    """Binds a bot to one external service."""

    id: str = Field(default_factory=generate_id)
    service: ServiceName
    name: str | None = None
    config: IntegrationConfig = Field(default_factory=IntegrationConfig)

    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def scheduling_enabled(self) -> bool:
        """Whether recurring announcements are switched on."""
        return bool(self.config.scheduler and self.config.scheduler.enabled)


# =============================================================================
# Bot
# =============================================================================


class BotSettings(LooseCamelModel):
    """Bot-level settings."""

    auto_start: bool = False


class BotConfig(CamelModel):
    """Complete stored configuration for one bot."""

    id: str = Field(default_factory=generate_id)
    name: str = "Unnamed Bot"
    token: str = ""
    prefix: str = "!"
    status: BotState = BotState.OFFLINE
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    commands: list[Command] = Field(default_factory=list)
    events: list[EventRule] = Field(default_factory=list)
    integrations: list[Integration] = Field(default_factory=list)
    settings: BotSettings = Field(default_factory=BotSettings)

    @field_validator("prefix", mode="before")
    @classmethod
    def default_prefix(cls, v: Any) -> str:
        """An empty prefix falls back to ``!``."""
        return v or "!"

    def find_integration(self, integration_id: str) -> Integration | None:
        """Find an integration by id."""
        for integration in self.integrations:
            if integration.id == integration_id:
                return integration
        return None

    def integration_for(self, service: ServiceName | str) -> Integration | None:
        """Find the first integration configured for a service."""
        service = ServiceName(service)
        for integration in self.integrations:
            if integration.service == service:
                return integration
        return None

    def to_record(self) -> dict[str, Any]:
        """Serialize to the stored JSON shape."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def masked_token(self) -> str:
        """The token as shown to API clients."""
        return self.token[:6] + "..." if self.token else ""

    def redacted(self) -> dict[str, Any]:
        """Serialized form with the token masked, for logs and listings."""
        record = self.to_record()
        if self.token:
            record["token"] = self.masked_token()
        return record


class BotStatus(BaseModel):
    """Live runtime status of a bot."""

    bot_id: str
    running: bool
    status: BotState
    username: str | None = None
    guilds: int | None = None
    uptime_seconds: float | None = None
    latency_ms: float | None = None
