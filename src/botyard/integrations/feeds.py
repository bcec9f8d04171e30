"""Recently-added media feeds for the announcement scheduler.

A feed turns one media server's "recently added" listing into a flat list
of ``MediaItem`` records. The scheduler only sees this shape; Plex and
Jellyfin quirks stay in their feed classes.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from botyard.models import ServiceName


@dataclass
class MediaItem:
    """One newly added library item.

    Attributes:
        id: Stable identifier, used for dedup.
        kind: ``episode``, ``movie`` or ``other``.
        title: Item title (episode title for episodes).
        parent_id: Show identifier for episodes, used for grouping.
        parent_title: Show title for episodes.
        lookup_key: Key for the external-link lookup (show key for
            episodes, item key for movies).
        external_url: External (IMDb) link when the listing already has it.
    """

    id: str
    kind: str
    title: str
    parent_id: str | None = None
    parent_title: str | None = None
    year: int | None = None
    season: int | None = None
    episode: int | None = None
    summary: str | None = None
    thumb_url: str | None = None
    added_at: datetime | None = None
    lookup_key: str | None = None
    external_url: str | None = None

    @property
    def episode_label(self) -> str:
        """``S01E02`` style label, falling back to the title."""
        label = ""
        if self.season is not None:
            label += f"S{self.season:02d}"
        if self.episode is not None:
            label += f"E{self.episode:02d}"
        return label or self.title


class MediaFeed(Protocol):
    """Source of recently added items for one integration."""

    service: ServiceName

    async def recent(self) -> list[MediaItem]:
        """Recently added items, newest first.

        Raises:
            ApiError: If the media server cannot be queried.
        """
        ...

    async def external_url(self, lookup_key: str) -> str | None:
        """External link for an item or show; None when unknown or on error."""
        ...


def imdb_url(imdb_id: str | None) -> str | None:
    if not imdb_id:
        return None
    return f"https://www.imdb.com/title/{imdb_id}/"
