"""Pydantic models for rows of the hosted data service and derived results."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

NOTES_TABLE = "notes"
TAGS_TABLE = "tags"
NOTE_TAGS_TABLE = "note_tags"


class NoteFilter(str, Enum):
    """Structural views over the note set."""

    ALL = "all"
    FAVORITES = "favorites"
    TRASH = "trash"
    TAG = "tag"


class User(BaseModel):
    """Identity returned by the auth service."""

    id: str
    email: Optional[str] = None


class AuthSession(BaseModel):
    """Tokens and identity of a signed-in user."""

    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "bearer"
    expires_in: Optional[int] = None
    user: User


class Note(BaseModel):
    """A row of the notes table."""

    id: str
    user_id: Optional[str] = None
    title: str
    content: str = ""
    is_favorite: bool = False
    is_deleted: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("content", mode="before")
    @classmethod
    def _null_content(cls, value: Optional[str]) -> str:
        return value or ""


class Tag(BaseModel):
    """A row of the tags table."""

    id: str
    user_id: Optional[str] = None
    name: str
    color: str = Field(..., description="Hex (#RRGGBB) or hsl() color string")
    created_at: Optional[datetime] = None


class NoteTag(BaseModel):
    """Association row linking a note to a tag."""

    note_id: str
    tag_id: str
    created_at: Optional[datetime] = None


class BulkResult(BaseModel):
    """Outcome of a bulk operation: ids that went through and ids rolled back."""

    action: str
    succeeded: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)


class Bookmark(BaseModel):
    """A bookmark found in a browser export, with its innermost folder."""

    title: str
    url: Optional[str] = None
    folder: Optional[str] = None


class ImportReport(BaseModel):
    """Summary of a bookmark import."""

    tags_created: int = 0
    notes_created: int = 0
    skipped: int = 0
    errors: list[str] = Field(default_factory=list)
    log: list[str] = Field(default_factory=list)
