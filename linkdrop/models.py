"""Shared data models for linkdrop."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Tuple

MAX_ENTRIES = 50


@dataclass(frozen=True)
class FeedDraft:
    """A link waiting to be committed to the feed."""

    url: str
    title: str
    description: Optional[str] = None


@dataclass(frozen=True)
class FeedEntry:
    """Single committed feed entry."""

    id: str
    url: str
    title: str
    published_at: datetime
    description: Optional[str] = None


@dataclass(frozen=True)
class FeedDocument:
    """The whole feed, entries ordered newest first."""

    id: str
    title: str
    updated: datetime
    entries: Tuple[FeedEntry, ...] = field(default_factory=tuple)
