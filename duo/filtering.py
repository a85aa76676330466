"""Client-side filtering and search over the in-memory note set."""

from __future__ import annotations

from typing import AbstractSet, Iterable, Optional

from duo.models import Note, NoteFilter


def matches_view(note: Note, view: NoteFilter) -> bool:
    """Structural filter: trash shows only deleted notes, the rest hide them."""
    if view is NoteFilter.TRASH:
        return note.is_deleted
    if note.is_deleted:
        return False
    if view is NoteFilter.FAVORITES:
        return note.is_favorite
    return True


def matches_query(note: Note, query: str) -> bool:
    """Case-insensitive substring match on title or content."""
    q = query.strip().lower()
    if not q:
        return True
    return q in note.title.lower() or q in note.content.lower()


def filter_notes(
    notes: Iterable[Note],
    view: NoteFilter = NoteFilter.ALL,
    query: str = "",
    tagged_ids: Optional[AbstractSet[str]] = None,
) -> list[Note]:
    """Apply the structural filter, then search, then tag membership.

    Under the tag view *tagged_ids* holds the ids associated with the
    selected tag; until it is loaded nothing is shown.
    """
    if view is NoteFilter.TAG and tagged_ids is None:
        return []
    result = [n for n in notes if matches_view(n, view) and matches_query(n, query)]
    if view is NoteFilter.TAG:
        result = [n for n in result if n.id in tagged_ids]
    return result
