"""In-process cache of the tags attached to each note.

Entries are dropped whenever an association, a tag, or a note changes;
there is no expiry.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from duo.metrics import CACHE_OPERATIONS
from duo.models import Tag

logger = logging.getLogger(__name__)


class TagNoteCache:
    """Map of note id -> tags linked to that note."""

    def __init__(self) -> None:
        self._entries: dict[str, list[Tag]] = {}
        self._hits = 0
        self._misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, note_id: str) -> Optional[list[Tag]]:
        """Return cached tags for *note_id*, or None on miss."""
        tags = self._entries.get(note_id)
        if tags is None:
            self._misses += 1
            CACHE_OPERATIONS.labels(operation="miss").inc()
            return None
        self._hits += 1
        CACHE_OPERATIONS.labels(operation="hit").inc()
        logger.debug("CACHE_HIT: note %s", note_id)
        return list(tags)

    def put(self, note_id: str, tags: list[Tag]) -> None:
        self._entries[note_id] = list(tags)

    def invalidate(self, note_id: str) -> None:
        """Forget the entry of one note."""
        if self._entries.pop(note_id, None) is not None:
            CACHE_OPERATIONS.labels(operation="invalidate").inc()

    def invalidate_tag(self, tag_id: str) -> None:
        """Forget every entry that contains *tag_id*."""
        stale = [
            note_id
            for note_id, tags in self._entries.items()
            if any(t.id == tag_id for t in tags)
        ]
        for note_id in stale:
            self.invalidate(note_id)

    def clear(self) -> dict[str, int]:
        """Drop all entries. Returns count of cleared entries."""
        cleared = len(self._entries)
        self._entries.clear()
        self._hits = 0
        self._misses = 0
        CACHE_OPERATIONS.labels(operation="clear").inc()
        return {"cleared": cleared}

    def stats(self) -> dict[str, Any]:
        """Return cache statistics."""
        total = self._hits + self._misses
        hit_rate = self._hits / total if total > 0 else 0.0
        return {
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(hit_rate, 4),
            "entries": len(self._entries),
        }
