"""Thin HTTP client for the Duo FastAPI backend.

All functions return parsed JSON (dicts/lists) or raise on failure.
Uses requests (synchronous) since Streamlit reruns are synchronous.
"""

from __future__ import annotations

import os
from typing import Any, Optional

import requests

BASE_URL = os.getenv("DUO_API_URL", "http://localhost:8000")
_TIMEOUT = 15  # seconds
_IMPORT_TIMEOUT = 300  # large bookmark files create one note per request


class ApiError(Exception):
    """The backend rejected a request; message is its ``detail``."""

    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


def _auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _check(resp: requests.Response) -> Any:
    """Raise ApiError with the backend's detail on 4xx/5xx."""
    if resp.status_code >= 400:
        try:
            detail = resp.json().get("detail", resp.text)
        except ValueError:
            detail = resp.text
        raise ApiError(str(detail), resp.status_code)
    return resp.json()


# --- Auth ---


def login(email: str, password: str) -> dict[str, Any]:
    """POST /auth/login — returns {"token", "user"}."""
    resp = requests.post(
        f"{BASE_URL}/auth/login",
        json={"email": email, "password": password},
        timeout=_TIMEOUT,
    )
    return _check(resp)


def logout(token: str) -> dict[str, Any]:
    """POST /auth/logout — drop the server-side workspace."""
    resp = requests.post(f"{BASE_URL}/auth/logout", headers=_auth(token), timeout=_TIMEOUT)
    return _check(resp)


# --- Notes ---


def list_notes(
    token: str, view: str = "all", tag_id: Optional[str] = None, query: str = ""
) -> list[dict[str, Any]]:
    """GET /notes — notes visible under a view, tag and search query."""
    params: dict[str, str] = {"view": view, "q": query}
    if tag_id:
        params["tag_id"] = tag_id
    resp = requests.get(
        f"{BASE_URL}/notes", params=params, headers=_auth(token), timeout=_TIMEOUT
    )
    return _check(resp)


def refresh_notes(token: str) -> list[dict[str, Any]]:
    """POST /notes/refresh — re-fetch every note."""
    resp = requests.post(f"{BASE_URL}/notes/refresh", headers=_auth(token), timeout=_TIMEOUT)
    return _check(resp)


def create_note(token: str, title: str, content: str) -> dict[str, Any]:
    """POST /notes — create a note."""
    resp = requests.post(
        f"{BASE_URL}/notes",
        json={"title": title, "content": content},
        headers=_auth(token),
        timeout=_TIMEOUT,
    )
    return _check(resp)


def update_note(token: str, note_id: str, title: str, content: str) -> dict[str, Any]:
    """PATCH /notes/{id} — edit title and content."""
    resp = requests.patch(
        f"{BASE_URL}/notes/{note_id}",
        json={"title": title, "content": content},
        headers=_auth(token),
        timeout=_TIMEOUT,
    )
    return _check(resp)


def note_action(token: str, note_id: str, action: str) -> dict[str, Any]:
    """POST /notes/{id}/{favorite|trash|restore}."""
    resp = requests.post(
        f"{BASE_URL}/notes/{note_id}/{action}", headers=_auth(token), timeout=_TIMEOUT
    )
    return _check(resp)


def delete_note(token: str, note_id: str) -> dict[str, Any]:
    """DELETE /notes/{id} — delete permanently."""
    resp = requests.delete(
        f"{BASE_URL}/notes/{note_id}", headers=_auth(token), timeout=_TIMEOUT
    )
    return _check(resp)


def bulk(
    token: str, action: str, note_ids: list[str], tag_id: Optional[str] = None
) -> dict[str, Any]:
    """POST /notes/bulk — returns {"succeeded", "failed"}."""
    resp = requests.post(
        f"{BASE_URL}/notes/bulk",
        json={"action": action, "note_ids": note_ids, "tag_id": tag_id},
        headers=_auth(token),
        timeout=_TIMEOUT,
    )
    return _check(resp)


def note_tags(token: str, note_id: str) -> list[dict[str, Any]]:
    """GET /notes/{id}/tags."""
    resp = requests.get(
        f"{BASE_URL}/notes/{note_id}/tags", headers=_auth(token), timeout=_TIMEOUT
    )
    return _check(resp)


def add_note_tag(token: str, note_id: str, tag_id: str) -> dict[str, Any]:
    """PUT /notes/{id}/tags/{tag_id}."""
    resp = requests.put(
        f"{BASE_URL}/notes/{note_id}/tags/{tag_id}", headers=_auth(token), timeout=_TIMEOUT
    )
    return _check(resp)


def remove_note_tag(token: str, note_id: str, tag_id: str) -> dict[str, Any]:
    """DELETE /notes/{id}/tags/{tag_id}."""
    resp = requests.delete(
        f"{BASE_URL}/notes/{note_id}/tags/{tag_id}", headers=_auth(token), timeout=_TIMEOUT
    )
    return _check(resp)


# --- Tags ---


def list_tags(token: str) -> list[dict[str, Any]]:
    """GET /tags."""
    resp = requests.get(f"{BASE_URL}/tags", headers=_auth(token), timeout=_TIMEOUT)
    return _check(resp)


def create_tag(token: str, name: str, color: str) -> dict[str, Any]:
    """POST /tags."""
    resp = requests.post(
        f"{BASE_URL}/tags",
        json={"name": name, "color": color},
        headers=_auth(token),
        timeout=_TIMEOUT,
    )
    return _check(resp)


def update_tag(token: str, tag_id: str, name: str, color: str) -> dict[str, Any]:
    """PATCH /tags/{id}."""
    resp = requests.patch(
        f"{BASE_URL}/tags/{tag_id}",
        json={"name": name, "color": color},
        headers=_auth(token),
        timeout=_TIMEOUT,
    )
    return _check(resp)


def delete_tag(token: str, tag_id: str) -> dict[str, Any]:
    """DELETE /tags/{id}."""
    resp = requests.delete(f"{BASE_URL}/tags/{tag_id}", headers=_auth(token), timeout=_TIMEOUT)
    return _check(resp)


def tag_cache_stats(token: str) -> dict[str, Any]:
    """GET /tags/cache/stats — hit/miss counters."""
    resp = requests.get(
        f"{BASE_URL}/tags/cache/stats", headers=_auth(token), timeout=_TIMEOUT
    )
    return _check(resp)


# --- Import / service ---


def import_bookmarks(token: str, html: str) -> dict[str, Any]:
    """POST /import/bookmarks — returns the import report."""
    resp = requests.post(
        f"{BASE_URL}/import/bookmarks",
        json={"html": html},
        headers=_auth(token),
        timeout=_IMPORT_TIMEOUT,
    )
    return _check(resp)


def get_health() -> dict[str, Any]:
    """GET /health — backend liveness."""
    resp = requests.get(f"{BASE_URL}/health", timeout=5)
    resp.raise_for_status()
    return resp.json()
