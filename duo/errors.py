"""Exceptions raised by the Duo containers and the data-service client."""

from __future__ import annotations


class DuoError(Exception):
    """Base class for failures scoped to a single user action."""


class AuthenticationError(DuoError):
    """Not signed in, or credentials rejected by the auth service."""


class InvalidInputError(DuoError):
    """A required field is empty or a value is not accepted."""


class NotFoundError(DuoError):
    """The referenced note or tag is not in the local state."""


class RemoteRequestError(DuoError):
    """Network or service failure reported by the hosted data service."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class BookmarkImportError(DuoError):
    """The bookmark file could not be imported."""
