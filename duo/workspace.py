"""Per-user bundles of state containers, held by the API process."""

from __future__ import annotations

import asyncio
import logging
import secrets
from typing import Any, Callable, Optional

from duo.metrics import ACTIVE_WORKSPACES
from duo.notes import NoteStore
from duo.session import SessionStore
from duo.tags import TagStore

logger = logging.getLogger(__name__)


class Workspace:
    """Session, tag and note containers bound to one data-service client."""

    def __init__(self, service: Any) -> None:
        self.service = service
        self.session = SessionStore(service)
        self.tags = TagStore(service, self.session)
        self.notes = NoteStore(service, self.session, self.tags)

    async def open(self) -> None:
        await self.session.init()

    async def load(self) -> None:
        """Fetch notes and tags concurrently."""
        await asyncio.gather(self.notes.fetch_notes(), self.tags.fetch_tags())

    async def close(self) -> None:
        self.session.close()
        await self.service.close()


class WorkspaceRegistry:
    """Signed-in workspaces keyed by an opaque bearer token."""

    def __init__(self, service_factory: Optional[Callable[[], Any]] = None) -> None:
        self.service_factory = service_factory
        self._workspaces: dict[str, Workspace] = {}

    def __len__(self) -> int:
        return len(self._workspaces)

    def get(self, token: str) -> Optional[Workspace]:
        return self._workspaces.get(token)

    async def sign_in(self, email: str, password: str) -> tuple[str, Workspace]:
        """Authenticate a new workspace and load its notes and tags."""
        if self.service_factory is None:
            raise RuntimeError("WorkspaceRegistry has no service factory")
        workspace = Workspace(self.service_factory())
        try:
            await workspace.open()
            await workspace.session.sign_in(email, password)
            await workspace.load()
        except Exception:
            await workspace.close()
            raise
        token = secrets.token_urlsafe(32)
        self._workspaces[token] = workspace
        ACTIVE_WORKSPACES.set(len(self._workspaces))
        return token, workspace

    async def sign_out(self, token: str) -> None:
        """Sign the workspace out and forget it. Unknown tokens are ignored."""
        workspace = self._workspaces.pop(token, None)
        ACTIVE_WORKSPACES.set(len(self._workspaces))
        if workspace is None:
            return
        try:
            await workspace.session.sign_out()
        finally:
            await workspace.close()

    async def discard(self, token: str) -> None:
        """Forget a workspace whose session the data service already ended."""
        workspace = self._workspaces.pop(token, None)
        ACTIVE_WORKSPACES.set(len(self._workspaces))
        if workspace is not None:
            logger.info("Dropping workspace of an ended session")
            await workspace.close()

    async def close_all(self) -> None:
        for token in list(self._workspaces):
            workspace = self._workspaces.pop(token)
            await workspace.close()
        ACTIVE_WORKSPACES.set(0)
        logger.info("All workspaces closed")
