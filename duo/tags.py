"""Tag container: the user's tags and their associations with notes."""

from __future__ import annotations

import logging
from typing import Any, Optional

from duo.cache import TagNoteCache
from duo.colors import DEFAULT_COLOR
from duo.errors import DuoError, InvalidInputError, NotFoundError, RemoteRequestError
from duo.models import NOTE_TAGS_TABLE, TAGS_TABLE, NoteTag, Tag
from duo.session import SessionStore
from duo.state import Observable, optimistic_update

logger = logging.getLogger(__name__)


def _sort_key(tag: Tag) -> str:
    return tag.name.lower()


def _clean_name(name: str) -> str:
    name = name.strip()
    if not name:
        raise InvalidInputError("Tag name is required")
    return name


class TagStore(Observable):
    """Mirror of the tags table for the signed-in user."""

    def __init__(self, service: Any, session: SessionStore) -> None:
        super().__init__()
        self._service = service
        self._session = session
        self.cache = TagNoteCache()
        self.tags: list[Tag] = []
        self.error: Optional[str] = None

    def get(self, tag_id: str) -> Tag:
        for tag in self.tags:
            if tag.id == tag_id:
                return tag
        raise NotFoundError(f"Tag {tag_id} not found")

    # ------------------------------------------------------------------
    # Tags
    # ------------------------------------------------------------------

    async def fetch_tags(self) -> list[Tag]:
        """Replace the local tags with the remote ones, ordered by name."""
        user = self._session.user
        if user is None:
            self.tags = []
            self.notify()
            return []
        try:
            rows = await self._service.select(
                TAGS_TABLE, {"user_id": user.id}, order="name.asc"
            )
        except DuoError as e:
            logger.error("Error fetching tags: %s", e)
            self._fail(e)
            raise
        self.tags = sorted((Tag.model_validate(r) for r in rows), key=_sort_key)
        self.error = None
        self.notify()
        return list(self.tags)

    async def create_tag(self, name: str, color: Optional[str] = None) -> Tag:
        """Create a tag; requires a signed-in user and a non-empty name."""
        user = self._session.require_user("create tags")
        name = _clean_name(name)
        try:
            row = await self._service.insert(
                TAGS_TABLE,
                {"name": name, "color": color or DEFAULT_COLOR, "user_id": user.id},
            )
        except DuoError as e:
            logger.error("Error creating tag: %s", e)
            self._fail(e)
            raise
        tag = Tag.model_validate(row)
        self.tags = sorted([*self.tags, tag], key=_sort_key)
        self.error = None
        self.notify()
        logger.info("Created tag %s — '%s'", tag.id, tag.name)
        return tag

    async def update_tag(
        self, tag_id: str, name: Optional[str] = None, color: Optional[str] = None
    ) -> Tag:
        """Rename and/or recolor a tag."""
        self._session.require_user("update tags")
        current = self.get(tag_id)
        fields: dict[str, Any] = {}
        if name is not None:
            fields["name"] = _clean_name(name)
        if color:
            fields["color"] = color
        if not fields:
            return current
        updated = current.model_copy(update=fields)

        rows = await self._run(
            lambda: self._swap(updated, replacing=current),
            lambda: self._service.update(TAGS_TABLE, fields, {"id": tag_id}),
            undo=lambda: self._swap(current, replacing=updated),
            action="update_tag",
        )
        self.cache.invalidate_tag(tag_id)
        if rows:
            remote = Tag.model_validate(rows[0])
            self._swap(remote, replacing=updated)
            self.notify()
            return remote
        return updated

    async def delete_tag(self, tag_id: str) -> None:
        """Remove the tag's associations, then the tag itself."""
        self._session.require_user("delete tags")
        tag = self.get(tag_id)

        def mutate() -> None:
            self.tags = [t for t in self.tags if t.id != tag_id]

        async def request() -> None:
            await self._service.delete(NOTE_TAGS_TABLE, {"tag_id": tag_id})
            await self._service.delete(TAGS_TABLE, {"id": tag_id})

        try:
            await self._run(
                mutate, request, undo=lambda: self._reinsert(tag), action="delete_tag"
            )
        finally:
            self.cache.invalidate_tag(tag_id)
        logger.info("Deleted tag %s", tag_id)

    # ------------------------------------------------------------------
    # Associations
    # ------------------------------------------------------------------

    async def get_note_tags(self, note_id: str) -> list[Tag]:
        """Tags linked to *note_id*; remote failures yield an empty list."""
        cached = self.cache.get(note_id)
        if cached is not None:
            return cached
        try:
            links = await self._service.select(NOTE_TAGS_TABLE, {"note_id": note_id})
            tag_ids = [link["tag_id"] for link in links]
            rows = (
                await self._service.select(
                    TAGS_TABLE, {"id": tag_ids}, order="name.asc"
                )
                if tag_ids
                else []
            )
        except RemoteRequestError as e:
            logger.warning("Error fetching note tags for %s: %s", note_id, e)
            return []
        tags = sorted((Tag.model_validate(r) for r in rows), key=_sort_key)
        self.cache.put(note_id, tags)
        return tags

    async def add_tag_to_note(self, note_id: str, tag_id: str) -> NoteTag:
        """Link a tag to a note; an existing link is returned unchanged."""
        match = {"note_id": note_id, "tag_id": tag_id}
        try:
            existing = await self._service.select(NOTE_TAGS_TABLE, match)
            if existing:
                return NoteTag.model_validate(existing[0])
            try:
                row = await self._service.insert(NOTE_TAGS_TABLE, match)
            except RemoteRequestError as e:
                if e.status_code != 409:
                    raise
                logger.info("Tag %s already on note %s", tag_id, note_id)
                return NoteTag(note_id=note_id, tag_id=tag_id)
            return NoteTag.model_validate(row)
        except DuoError as e:
            logger.error("Error adding tag to note: %s", e)
            raise
        finally:
            self.cache.invalidate(note_id)

    async def remove_tag_from_note(self, note_id: str, tag_id: str) -> None:
        """Unlink a tag from a note; a missing link is a no-op."""
        try:
            await self._service.delete(
                NOTE_TAGS_TABLE, {"note_id": note_id, "tag_id": tag_id}
            )
        except DuoError as e:
            logger.error("Error removing tag from note: %s", e)
            raise
        finally:
            self.cache.invalidate(note_id)

    async def note_ids_for_tag(self, tag_id: str) -> set[str]:
        """Ids of every note linked to *tag_id*, in one query."""
        links = await self._service.select(NOTE_TAGS_TABLE, {"tag_id": tag_id})
        return {link["note_id"] for link in links}

    def forget_note(self, note_id: str) -> None:
        """Drop cached associations of a note that no longer exists."""
        self.cache.invalidate(note_id)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _run(self, mutate, request, *, undo, action: str) -> Any:
        try:
            result = await optimistic_update(
                self, mutate, request, undo=undo, action=action
            )
        except DuoError as e:
            self._fail(e)
            raise
        self.error = None
        return result

    def _swap(self, tag: Tag, *, replacing: Tag) -> None:
        """Swap *tag* in for *replacing*, unless a later change replaced it first."""
        self.tags = sorted(
            (tag if t.id == tag.id and t is replacing else t for t in self.tags),
            key=_sort_key,
        )

    def _reinsert(self, tag: Tag) -> None:
        if all(t.id != tag.id for t in self.tags):
            self.tags = sorted([*self.tags, tag], key=_sort_key)

    def _fail(self, error: Exception) -> None:
        self.error = str(error)
        self.notify()
