"""Note container: the user's notes, the current view, and bulk operations.

Every mutation of an existing note is applied locally first and rolled
back if the data service rejects it.  Creation is the exception: the row id
comes from the service, so the insert is awaited before the note appears.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from typing import Any, Awaitable, Callable, Iterable, Optional

from duo.errors import DuoError, InvalidInputError, NotFoundError
from duo.filtering import filter_notes
from duo.metrics import OPTIMISTIC_ROLLBACKS
from duo.models import NOTE_TAGS_TABLE, NOTES_TABLE, BulkResult, Note, NoteFilter
from duo.session import SessionStore
from duo.state import Observable, optimistic_update
from duo.tags import TagStore

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = frozenset({"title", "content", "is_favorite", "is_deleted"})


def _now() -> datetime:
    return datetime.now(UTC)


class NoteStore(Observable):
    """Mirror of the notes table plus the derived, filtered view."""

    def __init__(
        self, service: Any, session: SessionStore, tags: Optional[TagStore] = None
    ) -> None:
        super().__init__()
        self._service = service
        self._session = session
        self._tags = tags
        self.notes: list[Note] = []
        self.loading = False
        self.error: Optional[str] = None
        self.view = NoteFilter.ALL
        self.selected_tag_id: Optional[str] = None
        self.search_query = ""
        self._tagged_ids: Optional[set[str]] = None
        # Request generations: a response is applied only if no newer
        # request of the same kind was issued while it was in flight.
        self._fetch_generation = 0
        self._view_generation = 0

    @property
    def session(self) -> SessionStore:
        return self._session

    def get(self, note_id: str) -> Note:
        for note in self.notes:
            if note.id == note_id:
                return note
        raise NotFoundError(f"Note {note_id} not found")

    @property
    def visible_notes(self) -> list[Note]:
        """Notes matching the current view, tag selection and search query."""
        return filter_notes(self.notes, self.view, self.search_query, self._tagged_ids)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def fetch_notes(self) -> list[Note]:
        """Replace the local set with the remote one, most recently updated first."""
        self._fetch_generation += 1
        generation = self._fetch_generation
        user = self._session.user
        if user is None:
            self.notes = []
            self.notify()
            return []

        self.loading = True
        self.notify()
        try:
            rows = await self._service.select(
                NOTES_TABLE, {"user_id": user.id}, order="updated_at.desc"
            )
        except DuoError as e:
            logger.error("Error fetching notes: %s", e)
            if generation == self._fetch_generation:
                self.loading = False
                self._fail(e)
            raise
        if generation != self._fetch_generation:
            logger.debug("Discarding stale notes response (generation %d)", generation)
            return list(self.notes)
        self.notes = [Note.model_validate(r) for r in rows]
        self.loading = False
        self.error = None
        self.notify()
        logger.info("Loaded %d notes", len(self.notes))
        return list(self.notes)

    # ------------------------------------------------------------------
    # Single-note operations
    # ------------------------------------------------------------------

    async def create_note(self, title: str, content: str = "") -> Note:
        """Create a note; requires a signed-in user and a non-empty title."""
        user = self._session.require_user("create notes")
        title = title.strip()
        if not title:
            raise InvalidInputError("Title is required")
        try:
            row = await self._service.insert(
                NOTES_TABLE, {"title": title, "content": content, "user_id": user.id}
            )
        except DuoError as e:
            logger.error("Error creating note: %s", e)
            self._fail(e)
            raise
        note = Note.model_validate(row)
        self.notes = [note, *self.notes]
        self.error = None
        self.notify()
        logger.info("Created note %s — '%s'", note.id, note.title)
        return note

    async def update_note(self, note_id: str, **fields: Any) -> Note:
        """Patch editable fields of a note and refresh its updated timestamp."""
        unknown = set(fields) - EDITABLE_FIELDS
        if unknown:
            raise InvalidInputError(f"Cannot update fields: {', '.join(sorted(unknown))}")
        if "title" in fields:
            fields["title"] = (fields["title"] or "").strip()
            if not fields["title"]:
                raise InvalidInputError("Title is required")
        current = self.get(note_id)
        stamp = _now()
        updated = current.model_copy(update={**fields, "updated_at": stamp})
        payload = {**fields, "updated_at": stamp.isoformat()}

        rows = await self._run(
            lambda: self._replace(updated),
            lambda: self._service.update(NOTES_TABLE, payload, {"id": note_id}),
            undo=lambda: self._swap(current, replacing=updated),
            action="update_note",
        )
        if rows:
            remote = Note.model_validate(rows[0])
            self._swap(remote, replacing=updated)
            self.notify()
            return remote
        return updated

    async def toggle_favorite(self, note_id: str) -> Note:
        note = self.get(note_id)
        return await self.update_note(note_id, is_favorite=not note.is_favorite)

    async def move_to_trash(self, note_id: str) -> Note:
        """Soft delete: the row stays and can be restored."""
        return await self.update_note(note_id, is_deleted=True)

    async def restore_note(self, note_id: str) -> Note:
        """Bring a trashed note back."""
        return await self.update_note(note_id, is_deleted=False)

    async def delete_permanently(self, note_id: str) -> None:
        """Remove the note's tag associations, then the note row."""
        note = self.get(note_id)
        index = self.notes.index(note)
        try:
            await self._run(
                lambda: self._drop([note_id]),
                lambda: self._delete_remote(note_id),
                undo=lambda: self._reinsert([(index, note)]),
                action="delete_note",
            )
        finally:
            # The association rows may be gone even if the note row is not.
            self._invalidate_tags(note_id)
        self._forget(note_id)
        logger.info("Deleted note %s", note_id)

    # ------------------------------------------------------------------
    # View control
    # ------------------------------------------------------------------

    def set_view(self, view: NoteFilter) -> None:
        """Select a structural view; clears any tag selection."""
        view = NoteFilter(view)
        if view is NoteFilter.TAG:
            raise InvalidInputError("Use select_tag() to filter by tag")
        self._view_generation += 1
        self.view = view
        self.selected_tag_id = None
        self._tagged_ids = None
        self.notify()

    async def select_tag(self, tag_id: str) -> list[Note]:
        """Show the non-deleted notes linked to *tag_id*."""
        if self._tags is None:
            raise InvalidInputError("Tag filtering is not available")
        self._view_generation += 1
        generation = self._view_generation
        self.view = NoteFilter.TAG
        self.selected_tag_id = tag_id
        self._tagged_ids = None
        self.notify()
        try:
            note_ids = await self._tags.note_ids_for_tag(tag_id)
        except DuoError as e:
            logger.error("Error loading notes for tag %s: %s", tag_id, e)
            if generation == self._view_generation:
                self._fail(e)
            raise
        if generation != self._view_generation:
            logger.debug("Discarding stale tag filter for %s", tag_id)
            return self.visible_notes
        self._tagged_ids = note_ids
        self.notify()
        return self.visible_notes

    async def refresh_tag_filter(self) -> None:
        """Reload the selected tag's note ids after associations changed."""
        if self.view is NoteFilter.TAG and self.selected_tag_id:
            await self.select_tag(self.selected_tag_id)

    def set_search_query(self, query: str) -> None:
        self.search_query = query
        self.notify()

    def clear_search(self) -> None:
        self.set_search_query("")

    async def apply_view(
        self,
        view: NoteFilter = NoteFilter.ALL,
        tag_id: Optional[str] = None,
        query: str = "",
    ) -> list[Note]:
        """Set view, tag and search in one call and return the visible notes."""
        self.search_query = query
        if NoteFilter(view) is NoteFilter.TAG:
            if not tag_id:
                raise InvalidInputError("tag_id is required for the tag view")
            return await self.select_tag(tag_id)
        self.set_view(view)
        return self.visible_notes

    # ------------------------------------------------------------------
    # Bulk operations
    # ------------------------------------------------------------------

    async def bulk_set_favorite(self, note_ids: Iterable[str], favorite: bool = True) -> BulkResult:
        return await self._bulk_update(
            note_ids, {"is_favorite": favorite}, "favorite" if favorite else "unfavorite"
        )

    async def bulk_move_to_trash(self, note_ids: Iterable[str]) -> BulkResult:
        return await self._bulk_update(note_ids, {"is_deleted": True}, "trash")

    async def bulk_restore(self, note_ids: Iterable[str]) -> BulkResult:
        return await self._bulk_update(note_ids, {"is_deleted": False}, "restore")

    async def bulk_delete_permanently(self, note_ids: Iterable[str]) -> BulkResult:
        """Permanently delete several notes concurrently."""
        targets = self._targets(note_ids)
        positions = {n.id: self.notes.index(n) for n in targets}
        self._drop([n.id for n in targets])
        self.notify()
        outcomes = await asyncio.gather(
            *(self._delete_remote(n.id) for n in targets), return_exceptions=True
        )
        result = self._settle("delete", targets, outcomes)
        failed = set(result.failed)
        self._reinsert([(positions[n.id], n) for n in targets if n.id in failed])
        for note in targets:
            self._invalidate_tags(note.id)
        for note_id in result.succeeded:
            self._forget(note_id)
        self.notify()
        self._raise_unexpected(outcomes)
        return result

    async def bulk_add_tag(self, note_ids: Iterable[str], tag_id: str) -> BulkResult:
        """Attach one tag to several notes concurrently."""
        if self._tags is None:
            raise InvalidInputError("Tagging is not available")
        targets = self._targets(note_ids)
        outcomes = await asyncio.gather(
            *(self._tags.add_tag_to_note(n.id, tag_id) for n in targets),
            return_exceptions=True,
        )
        result = self._settle("tag", targets, outcomes)
        self.notify()
        self._raise_unexpected(outcomes)
        if self.view is NoteFilter.TAG and self.selected_tag_id == tag_id:
            await self.refresh_tag_filter()
        return result

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _bulk_update(
        self, note_ids: Iterable[str], fields: dict[str, Any], action: str
    ) -> BulkResult:
        targets = self._targets(note_ids)
        stamp = _now()
        payload = {**fields, "updated_at": stamp.isoformat()}
        for note in targets:
            self._replace(note.model_copy(update={**fields, "updated_at": stamp}))
        self.notify()
        outcomes = await asyncio.gather(
            *(self._service.update(NOTES_TABLE, payload, {"id": n.id}) for n in targets),
            return_exceptions=True,
        )
        result = self._settle(action, targets, outcomes)
        for note in targets:
            if note.id in result.failed:
                self._replace(note)
        self.notify()
        self._raise_unexpected(outcomes)
        return result

    def _settle(
        self, action: str, targets: list[Note], outcomes: list[Any]
    ) -> BulkResult:
        """Split gathered outcomes into succeeded and failed note ids."""
        result = BulkResult(action=action)
        for note, outcome in zip(targets, outcomes):
            if isinstance(outcome, BaseException):
                result.failed.append(note.id)
                OPTIMISTIC_ROLLBACKS.labels(action=f"bulk_{action}").inc()
                logger.warning("Bulk %s failed for note %s: %s", action, note.id, outcome)
            else:
                result.succeeded.append(note.id)
        if result.failed:
            self.error = (
                f"{len(result.failed)} of {len(targets)} notes could not be updated"
            )
        else:
            self.error = None
        return result

    @staticmethod
    def _raise_unexpected(outcomes: list[Any]) -> None:
        """Re-raise the first failure that is not a DuoError (a bug, or cancellation)."""
        for outcome in outcomes:
            if isinstance(outcome, BaseException) and not isinstance(outcome, DuoError):
                raise outcome

    def _targets(self, note_ids: Iterable[str]) -> list[Note]:
        return [self.get(note_id) for note_id in dict.fromkeys(note_ids)]

    async def _delete_remote(self, note_id: str) -> None:
        await self._service.delete(NOTE_TAGS_TABLE, {"note_id": note_id})
        await self._service.delete(NOTES_TABLE, {"id": note_id})

    def _replace(self, updated: Note) -> None:
        self.notes = [updated if n.id == updated.id else n for n in self.notes]

    def _drop(self, note_ids: list[str]) -> None:
        dropped = set(note_ids)
        self.notes = [n for n in self.notes if n.id not in dropped]

    def _swap(self, note: Note, *, replacing: Note) -> None:
        """Swap *note* in for *replacing*, unless a later change replaced it first."""
        self.notes = [
            note if n.id == note.id and n is replacing else n
            for n in self.notes
        ]

    def _reinsert(self, placed: list[tuple[int, Note]]) -> None:
        """Put dropped notes back at their old positions."""
        notes = list(self.notes)
        present = {n.id for n in notes}
        for index, note in sorted(placed, key=lambda p: p[0]):
            if note.id not in present:
                notes.insert(min(index, len(notes)), note)
        self.notes = notes

    def _invalidate_tags(self, note_id: str) -> None:
        if self._tags is not None:
            self._tags.forget_note(note_id)

    def _forget(self, note_id: str) -> None:
        self._invalidate_tags(note_id)
        if self._tagged_ids is not None:
            self._tagged_ids.discard(note_id)

    async def _run(
        self,
        mutate: Callable[[], None],
        request: Callable[[], Awaitable[Any]],
        *,
        undo: Callable[[], None],
        action: str,
    ) -> Any:
        try:
            result = await optimistic_update(
                self, mutate, request, undo=undo, action=action
            )
        except DuoError as e:
            self._fail(e)
            raise
        self.error = None
        return result

    def _fail(self, error: Exception) -> None:
        self.error = str(error)
        self.notify()
