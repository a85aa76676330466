"""Session container: mirrors the auth service's identity into local state."""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from duo.errors import AuthenticationError, InvalidInputError, RemoteRequestError
from duo.models import AuthSession, User
from duo.state import Observable

logger = logging.getLogger(__name__)


class SessionStore(Observable):
    """Current identity, loading flag, and sign-in / sign-out operations."""

    def __init__(self, service: Any) -> None:
        super().__init__()
        self._service = service
        self._unsubscribe: Optional[Callable[[], None]] = None
        self.session: Optional[AuthSession] = None
        self.user: Optional[User] = None
        self.loading = True
        self.initialized = False

    async def init(self) -> None:
        """Subscribe to session changes and load the initial identity."""
        if self._unsubscribe is None:
            self._unsubscribe = self._service.on_session_change(self._on_session_change)
        await self.refresh_session()

    def close(self) -> None:
        """Stop mirroring session changes."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def set_session(self, session: Optional[AuthSession]) -> None:
        self.session = session
        self.user = session.user if session else None
        self.loading = False
        self.initialized = True
        self.notify()

    async def refresh_session(self) -> None:
        """Re-read the identity from the auth service; errors clear it."""
        try:
            user = await self._service.get_current_user()
        except RemoteRequestError as e:
            logger.error("Error refreshing session: %s", e)
            self.set_session(None)
            return
        session = self._service.session
        if user is None or session is None:
            self.set_session(None)
        else:
            self.set_session(session.model_copy(update={"user": user}))

    async def sign_in(self, email: str, password: str) -> User:
        """Authenticate; raises AuthenticationError when credentials are rejected."""
        email = email.strip()
        if not email or not password:
            raise InvalidInputError("Email and password are required")
        self.loading = True
        self.notify()
        try:
            session = await self._service.authenticate(email, password)
            self.set_session(session)
            return session.user
        finally:
            self.loading = False
            self.notify()

    async def sign_out(self) -> None:
        """Sign out remotely and always clear the local identity."""
        self.loading = True
        self.notify()
        try:
            await self._service.sign_out()
        finally:
            self.set_session(None)

    def require_user(self, action: str) -> User:
        """Return the signed-in user or raise AuthenticationError."""
        if self.user is None:
            raise AuthenticationError(f"User must be authenticated to {action}")
        return self.user

    def _on_session_change(self, event: str, session: Optional[AuthSession]) -> None:
        logger.info("Session event: %s", event)
        self.set_session(session)
