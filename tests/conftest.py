"""Shared fixtures: an in-memory stand-in for the hosted data service."""

from __future__ import annotations

import asyncio
import itertools
from datetime import UTC, datetime, timedelta
from typing import Any, Callable, Optional

import pytest

from duo.data_service import SIGNED_IN, SIGNED_OUT
from duo.errors import AuthenticationError, InvalidInputError, RemoteRequestError
from duo.models import NOTE_TAGS_TABLE, NOTES_TABLE, TAGS_TABLE, AuthSession, User
from duo.workspace import Workspace

_EPOCH = datetime(2024, 1, 1, tzinfo=UTC)


def _matches(row: dict[str, Any], filters: dict[str, Any] | None) -> bool:
    for column, value in (filters or {}).items():
        if isinstance(value, (list, tuple, set, frozenset)):
            if row.get(column) not in value:
                return False
        elif row.get(column) != value:
            return False
    return True


class FakeBackend:
    """Tables, users and failure injection shared by every FakeDataService."""

    def __init__(self) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = {
            NOTES_TABLE: [],
            TAGS_TABLE: [],
            NOTE_TAGS_TABLE: [],
        }
        self.users: dict[str, tuple[str, User]] = {}
        self.tokens: set[str] = set()
        self.calls: list[tuple[str, str]] = []
        self._failures: list[tuple[str, str, Optional[str]]] = []
        self._gates: dict[tuple[str, str], asyncio.Event] = {}
        self._ids = itertools.count(1)
        self._ticks = itertools.count(1)

    # --- setup helpers ---

    def next_id(self, prefix: str) -> str:
        return f"{prefix}-{next(self._ids)}"

    def timestamp(self) -> str:
        """Strictly increasing ISO timestamps."""
        return (_EPOCH + timedelta(seconds=next(self._ticks))).isoformat()

    def add_user(self, email: str, password: str) -> User:
        user = User(id=self.next_id("user"), email=email)
        self.users[email] = (password, user)
        return user

    def seed_note(self, user: User, title: str, **fields: Any) -> dict[str, Any]:
        stamp = self.timestamp()
        row = {
            "id": self.next_id("note"),
            "user_id": user.id,
            "title": title,
            "content": "",
            "is_favorite": False,
            "is_deleted": False,
            "created_at": stamp,
            "updated_at": stamp,
            **fields,
        }
        self.tables[NOTES_TABLE].append(row)
        return dict(row)

    def seed_tag(self, user: User, name: str, color: str = "#3B82F6") -> dict[str, Any]:
        row = {
            "id": self.next_id("tag"),
            "user_id": user.id,
            "name": name,
            "color": color,
            "created_at": self.timestamp(),
        }
        self.tables[TAGS_TABLE].append(row)
        return dict(row)

    def link(self, note_id: str, tag_id: str) -> None:
        self.tables[NOTE_TAGS_TABLE].append(
            {"note_id": note_id, "tag_id": tag_id, "created_at": self.timestamp()}
        )

    def rows(self, table: str, **filters: Any) -> list[dict[str, Any]]:
        return [dict(r) for r in self.tables[table] if _matches(r, filters)]

    # --- failure injection ---

    def fail(self, op: str, table: str, row_id: Optional[str] = None) -> None:
        """Make *op* on *table* fail, optionally only for one note/tag id."""
        self._failures.append((op, table, row_id))

    def heal(self) -> None:
        self._failures.clear()

    def pause(self, op: str, table: str) -> asyncio.Event:
        """Hold the next *op* on *table* until set.

        A select has already read its rows while held; a write has not yet
        checked for injected failures.
        """
        gate = asyncio.Event()
        self._gates[(op, table)] = gate
        return gate

    def check(self, op: str, table: str, match: dict[str, Any] | None) -> None:
        self.calls.append((op, table))
        match = match or {}
        for f_op, f_table, row_id in self._failures:
            if f_op != op or f_table != table:
                continue
            if row_id is None or row_id in (
                match.get("id"),
                match.get("note_id"),
                match.get("tag_id"),
            ):
                raise RemoteRequestError("injected failure", status_code=500)

    async def gate(self, op: str, table: str) -> None:
        gate = self._gates.pop((op, table), None)
        if gate is not None:
            await gate.wait()


class FakeDataService:
    """Same surface as DataService, backed by a FakeBackend."""

    def __init__(self, backend: FakeBackend) -> None:
        self.backend = backend
        self._session: Optional[AuthSession] = None
        self._listeners: list[Callable[[str, Optional[AuthSession]], None]] = []
        self.closed = False

    @property
    def session(self) -> Optional[AuthSession]:
        return self._session

    def preset_session(self, user: User) -> AuthSession:
        """Start signed in without going through authenticate()."""
        token = f"token-{user.id}-{len(self.backend.tokens)}"
        self.backend.tokens.add(token)
        self._session = AuthSession(access_token=token, refresh_token="refresh", user=user)
        return self._session

    async def close(self) -> None:
        self._listeners.clear()
        self.closed = True

    async def select(self, table, filters=None, order=None, columns="*"):
        self.backend.check("select", table, filters)
        rows = self.backend.rows(table, **(filters or {}))
        await self.backend.gate("select", table)
        if order:
            column, _, direction = order.partition(".")
            rows.sort(key=lambda r: str(r.get(column)), reverse=direction == "desc")
        return rows

    async def insert(self, table, rows):
        row = dict(rows if isinstance(rows, dict) else rows[0])
        await self.backend.gate("insert", table)
        self.backend.check("insert", table, row)
        stamp = self.backend.timestamp()
        if table == NOTE_TAGS_TABLE:
            if self.backend.rows(table, note_id=row["note_id"], tag_id=row["tag_id"]):
                raise RemoteRequestError("duplicate key value", status_code=409)
        else:
            row.setdefault("id", self.backend.next_id(table.rstrip("s")))
        if table == NOTES_TABLE:
            row.setdefault("content", "")
            row.setdefault("is_favorite", False)
            row.setdefault("is_deleted", False)
            row.setdefault("updated_at", stamp)
        row.setdefault("created_at", stamp)
        self.backend.tables[table].append(row)
        return dict(row)

    async def update(self, table, fields, match):
        await self.backend.gate("update", table)
        self.backend.check("update", table, match)
        updated = []
        for row in self.backend.tables[table]:
            if _matches(row, match):
                row.update(fields)
                updated.append(dict(row))
        return updated

    async def delete(self, table, match):
        if not match:
            raise InvalidInputError(f"refusing to delete from {table} without a match")
        await self.backend.gate("delete", table)
        self.backend.check("delete", table, match)
        self.backend.tables[table] = [
            r for r in self.backend.tables[table] if not _matches(r, match)
        ]

    def on_session_change(self, callback):
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    async def authenticate(self, email, password):
        self.backend.calls.append(("authenticate", "auth"))
        entry = self.backend.users.get(email)
        if entry is None or entry[0] != password:
            raise AuthenticationError("Invalid login credentials")
        session = self.preset_session(entry[1])
        self._emit(SIGNED_IN)
        return session

    async def sign_out(self):
        self.backend.calls.append(("sign_out", "auth"))
        if self._session:
            self.backend.tokens.discard(self._session.access_token)
        self._session = None
        self._emit(SIGNED_OUT)

    async def get_current_user(self):
        if self._session is None:
            return None
        if self._session.access_token not in self.backend.tokens:
            return None
        return self._session.user

    def _emit(self, event: str) -> None:
        for listener in list(self._listeners):
            listener(event, self._session)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def user(backend: FakeBackend) -> User:
    return backend.add_user("ada@example.com", "correct-horse")


@pytest.fixture
def service(backend: FakeBackend, user: User) -> FakeDataService:
    svc = FakeDataService(backend)
    svc.preset_session(user)
    return svc


@pytest.fixture
def fresh(backend: FakeBackend) -> FakeDataService:
    """A client with no session yet."""
    return FakeDataService(backend)


class FakeServiceFactory:
    """Service factory for WorkspaceRegistry that remembers what it built."""

    def __init__(self, backend: FakeBackend) -> None:
        self.backend = backend
        self.created: list[FakeDataService] = []

    def __call__(self) -> FakeDataService:
        service = FakeDataService(self.backend)
        self.created.append(service)
        return service


@pytest.fixture
def factory(backend: FakeBackend) -> FakeServiceFactory:
    return FakeServiceFactory(backend)


@pytest.fixture
def workspace(service: FakeDataService) -> Workspace:
    """A workspace whose session container already holds the signed-in user."""
    ws = Workspace(service)
    ws.session.set_session(service.session)
    return ws


@pytest.fixture
def anonymous(backend: FakeBackend) -> Workspace:
    """A workspace with nobody signed in."""
    ws = Workspace(FakeDataService(backend))
    ws.session.set_session(None)
    return ws
