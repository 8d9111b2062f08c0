"""Offset pagination shared by every composer: page window + result envelope."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any

from needledrop.config import settings
from needledrop.errors import ValidationFailed


@dataclass
class Entry:
    """One returned row plus the viewer-specific upvote flag."""

    item: Any
    has_upvoted: bool = False
    replies: list["Entry"] = field(default_factory=list)


@dataclass
class FeedPage:
    entries: list[Entry] = field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 20

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit)

    @classmethod
    def empty(cls, page: int, limit: int) -> "FeedPage":
        return cls(entries=[], total=0, page=page, limit=limit)


def offset_for(page: int, limit: int) -> int:
    """Validate the window and return ``(page - 1) * limit``."""
    if isinstance(page, bool) or not isinstance(page, int) or page < 1:
        raise ValidationFailed("page must be an integer >= 1")
    if (
        isinstance(limit, bool)
        or not isinstance(limit, int)
        or not 1 <= limit <= settings.feed_max_limit
    ):
        raise ValidationFailed(f"limit must be between 1 and {settings.feed_max_limit}")
    return (page - 1) * limit
