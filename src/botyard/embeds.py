"""Embed construction and small formatting helpers.

Stored configuration describes embeds as plain dicts (``title``,
``description``, ``color``, ``fields``, ``footer``, ``thumbnail``,
``image``); ``build_embed`` turns one into a discord.Embed.
"""

from __future__ import annotations

from typing import Any

import discord

DEFAULT_COLOR = 0x0099FF

# Discord's hard limits
TITLE_LIMIT = 256
DESCRIPTION_LIMIT = 4096
FIELD_NAME_LIMIT = 256
FIELD_VALUE_LIMIT = 1024
MAX_FIELDS = 25


def parse_color(value: Any, default: int = DEFAULT_COLOR) -> int:
    """Parse ``#rrggbb``, ``0xrrggbb`` or an int into a color value.

    Unparseable values return ``default``.
    """
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value if 0 <= value <= 0xFFFFFF else default

    text = str(value).strip().lower()
    if text.startswith("#"):
        text = text[1:]
    elif text.startswith("0x"):
        text = text[2:]
    try:
        parsed = int(text, 16)
    except ValueError:
        return default
    return parsed if 0 <= parsed <= 0xFFFFFF else default


def truncate(text: str, limit: int, suffix: str = "…") -> str:
    """Cut ``text`` to at most ``limit`` characters, marking the cut."""
    if len(text) <= limit:
        return text
    return text[: max(limit - len(suffix), 0)] + suffix


def format_duration(ms: float) -> str:
    """Format milliseconds as ``m:ss`` or ``h:mm:ss``."""
    total = int(ms // 1000)
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{seconds:02d}"
    return f"{minutes}:{seconds:02d}"


def progress_bar(position: float, total: float, width: int = 15) -> str:
    """Unicode progress bar with elapsed and total durations (in ms)."""
    fraction = min(position / total, 1.0) if total > 0 else 0.0
    filled = round(fraction * width)
    bar = "█" * filled + "░" * (width - filled)
    return f"{bar} {format_duration(position)} / {format_duration(total)}"


def format_size(size: float) -> str:
    """Human-readable byte count (decimal units)."""
    if size >= 1e9:
        return f"{size / 1e9:.1f} GB"
    if size >= 1e6:
        return f"{size / 1e6:.1f} MB"
    return f"{size / 1e3:.0f} KB"


def build_embed(
    data: dict[str, Any] | None,
    default_title: str = "Embed",
    default_description: str = "No description",
) -> discord.Embed:
    """Build a discord.Embed from a stored embed description.

    Args:
        data: Embed description; every key is optional.
        default_title: Title used when ``data`` has none.
        default_description: Description used when ``data`` has none.

    Returns:
        The embed.
    """
    data = data or {}

    embed = discord.Embed(
        title=truncate(str(data.get("title") or default_title), TITLE_LIMIT),
        description=truncate(
            str(data.get("description") or default_description), DESCRIPTION_LIMIT
        ),
        color=parse_color(data.get("color")),
    )

    for field in (data.get("fields") or [])[:MAX_FIELDS]:
        if not isinstance(field, dict) or not field.get("name") or not field.get("value"):
            continue
        embed.add_field(
            name=truncate(str(field["name"]), FIELD_NAME_LIMIT),
            value=truncate(str(field["value"]), FIELD_VALUE_LIMIT),
            inline=bool(field.get("inline", False)),
        )

    footer = data.get("footer")
    if isinstance(footer, dict):
        footer = footer.get("text")
    if footer:
        embed.set_footer(text=str(footer))

    thumbnail = data.get("thumbnail")
    if isinstance(thumbnail, dict):
        thumbnail = thumbnail.get("url")
    if thumbnail:
        embed.set_thumbnail(url=str(thumbnail))

    image = data.get("image")
    if isinstance(image, dict):
        image = image.get("url")
    if image:
        embed.set_image(url=str(image))

    return embed
