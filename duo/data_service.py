"""HTTP client for the hosted data service.

Tables are reached through a PostgREST-style endpoint (``/rest/v1``) and
identity through a GoTrue-style endpoint (``/auth/v1``).  Every failure is
surfaced as a ``DuoError`` subclass.  The only retry is a single one after
an expired access token has been refreshed; a rejected refresh ends the
session with ``SIGNED_OUT``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Optional

import httpx

from duo.config import Settings
from duo.errors import AuthenticationError, InvalidInputError, RemoteRequestError
from duo.metrics import REMOTE_DURATION, REMOTE_REQUESTS
from duo.models import AuthSession, User

logger = logging.getLogger(__name__)

SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"
TOKEN_REFRESHED = "TOKEN_REFRESHED"

SessionListener = Callable[[str, Optional[AuthSession]], None]

_AUTH_REJECTED = {400, 401, 403, 422}

# Refresh this many seconds before the access token actually expires
_EXPIRY_MARGIN = 30


def _quote(value: Any) -> str:
    """Double-quote a list member, backslash-escaping quotes and backslashes."""
    text = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{text}"'


def encode_filters(filters: dict[str, Any] | None) -> dict[str, str]:
    """Translate a column -> value mapping into PostgREST query parameters."""
    params: dict[str, str] = {}
    for column, value in (filters or {}).items():
        if value is None:
            params[column] = "is.null"
        elif isinstance(value, bool):
            params[column] = f"eq.{str(value).lower()}"
        elif isinstance(value, (list, tuple, set, frozenset)):
            quoted = ",".join(_quote(v) for v in value)
            params[column] = f"in.({quoted})"
        else:
            params[column] = f"eq.{value}"
    return params


def _error_message(response: httpx.Response) -> str:
    """Best-effort extraction of the service's error text."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        for key in ("message", "error_description", "msg", "error"):
            if body.get(key):
                return str(body[key])
    return f"HTTP {response.status_code}"


class DataService:
    """Async client for one browser user's view of the hosted data service."""

    def __init__(
        self, settings: Settings, client: Optional[httpx.AsyncClient] = None
    ) -> None:
        self._rest_url = settings.rest_url
        self._auth_url = settings.auth_url
        self._key = settings.data_service_key
        self._client = client or httpx.AsyncClient(timeout=settings.request_timeout)
        self._owns_client = client is None
        self._session: Optional[AuthSession] = None
        self._expires_at: Optional[float] = None
        self._refresh_lock = asyncio.Lock()
        self._listeners: list[SessionListener] = []

    @property
    def session(self) -> Optional[AuthSession]:
        """The current auth session, if signed in."""
        return self._session

    async def close(self) -> None:
        """Drop listeners and close the HTTP client if this instance owns it."""
        self._listeners.clear()
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # Tables
    # ------------------------------------------------------------------

    async def select(
        self,
        table: str,
        filters: dict[str, Any] | None = None,
        order: str | None = None,
        columns: str = "*",
    ) -> list[dict[str, Any]]:
        """Return rows of *table* matching *filters*, in *order* (``col.asc|desc``)."""
        params = {"select": columns, **encode_filters(filters)}
        if order:
            params["order"] = order
        response = await self._authorized(
            "GET", f"{self._rest_url}/{table}", "select", table, params=params
        )
        return response.json()

    async def insert(
        self, table: str, rows: dict[str, Any] | list[dict[str, Any]]
    ) -> dict[str, Any]:
        """Insert one or more rows and return the first inserted row."""
        payload = rows if isinstance(rows, list) else [rows]
        response = await self._authorized(
            "POST",
            f"{self._rest_url}/{table}",
            "insert",
            table,
            json=payload,
            prefer="return=representation",
        )
        data = response.json()
        if not data:
            raise RemoteRequestError(f"insert into {table} returned no rows")
        return data[0]

    async def update(
        self, table: str, fields: dict[str, Any], match: dict[str, Any]
    ) -> list[dict[str, Any]]:
        """Update rows matching *match* and return the affected rows."""
        response = await self._authorized(
            "PATCH",
            f"{self._rest_url}/{table}",
            "update",
            table,
            params=encode_filters(match),
            json=fields,
            prefer="return=representation",
        )
        return response.json()

    async def delete(self, table: str, match: dict[str, Any]) -> None:
        """Delete rows matching *match*. An empty match is refused."""
        if not match:
            raise InvalidInputError(f"refusing to delete from {table} without a match")
        await self._authorized(
            "DELETE",
            f"{self._rest_url}/{table}",
            "delete",
            table,
            params=encode_filters(match),
        )

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    def on_session_change(self, callback: SessionListener) -> Callable[[], None]:
        """Register *callback* for session events. Returns an unsubscribe handle."""
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    async def authenticate(self, email: str, password: str) -> AuthSession:
        """Sign in with email and password."""
        try:
            response = await self._send(
                "POST",
                f"{self._auth_url}/token",
                "authenticate",
                "auth",
                params={"grant_type": "password"},
                json={"email": email, "password": password},
            )
        except RemoteRequestError as e:
            if e.status_code in _AUTH_REJECTED:
                raise AuthenticationError(str(e)) from e
            raise
        session = AuthSession.model_validate(response.json())
        self._set_session(SIGNED_IN, session)
        logger.info("Signed in as %s", session.user.email or session.user.id)
        return session

    async def refresh_session(self) -> AuthSession:
        """Exchange the refresh token for a new access token."""
        if not self._session or not self._session.refresh_token:
            raise AuthenticationError("No session to refresh")
        try:
            response = await self._send(
                "POST",
                f"{self._auth_url}/token",
                "refresh",
                "auth",
                params={"grant_type": "refresh_token"},
                json={"refresh_token": self._session.refresh_token},
            )
        except RemoteRequestError as e:
            if e.status_code in _AUTH_REJECTED:
                raise AuthenticationError(str(e)) from e
            raise
        session = AuthSession.model_validate(response.json())
        self._set_session(TOKEN_REFRESHED, session)
        return session

    async def sign_out(self) -> None:
        """Revoke the session remotely; local identity is cleared regardless."""
        try:
            if self._session:
                await self._send("POST", f"{self._auth_url}/logout", "sign_out", "auth")
        except RemoteRequestError as e:
            logger.warning("Remote sign-out failed: %s", e)
        finally:
            self._set_session(SIGNED_OUT, None)

    async def get_current_user(self) -> Optional[User]:
        """Return the identity behind the current token, or None."""
        if not self._session:
            return None
        try:
            response = await self._authorized(
                "GET", f"{self._auth_url}/user", "get_user", "auth"
            )
        except AuthenticationError as e:
            logger.info("Session ended: %s", e)
            return None
        except RemoteRequestError as e:
            if e.status_code in _AUTH_REJECTED:
                logger.info("Session rejected by auth service: %s", e)
                return None
            raise
        return User.model_validate(response.json())

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _set_session(self, event: str, session: Optional[AuthSession]) -> None:
        self._session = session
        if session is not None and session.expires_in:
            lifetime = max(session.expires_in - _EXPIRY_MARGIN, 0)
            self._expires_at = time.monotonic() + lifetime
        else:
            self._expires_at = None
        for listener in list(self._listeners):
            try:
                listener(event, session)
            except Exception:
                logger.exception("Session listener failed on %s", event)

    def _token_expired(self) -> bool:
        return self._expires_at is not None and time.monotonic() >= self._expires_at

    async def _authorized(
        self, method: str, url: str, operation: str, table: str, **kwargs: Any
    ) -> httpx.Response:
        """_send on behalf of the signed-in user, keeping the access token fresh.

        An expired token is refreshed before the request.  A 401 is answered
        with one refresh and one retry.
        """
        if self._session is not None and self._token_expired():
            await self._refresh_or_end(self._session.access_token)
        token = self._session.access_token if self._session else None
        try:
            return await self._send(method, url, operation, table, **kwargs)
        except RemoteRequestError as e:
            if e.status_code != 401 or token is None:
                raise
        await self._refresh_or_end(token)
        return await self._send(method, url, operation, table, **kwargs)

    async def _refresh_or_end(self, stale_token: str) -> None:
        """Replace *stale_token*; if the auth service refuses, sign out locally."""
        async with self._refresh_lock:
            if self._session is None:
                raise AuthenticationError("Session expired, please sign in again")
            if self._session.access_token != stale_token:
                return  # refreshed by a concurrent request
            try:
                await self.refresh_session()
            except AuthenticationError as e:
                logger.warning("Session refresh rejected, signing out: %s", e)
                self._set_session(SIGNED_OUT, None)
                raise AuthenticationError(
                    "Session expired, please sign in again"
                ) from e

    def _headers(self, prefer: str | None = None) -> dict[str, str]:
        token = self._session.access_token if self._session else self._key
        headers = {"apikey": self._key, "Authorization": f"Bearer {token}"}
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def _send(
        self,
        method: str,
        url: str,
        operation: str,
        table: str,
        *,
        prefer: str | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send a request, recording metrics and mapping failures to RemoteRequestError."""
        start = time.perf_counter()
        status = "error"
        try:
            response = await self._client.request(
                method, url, headers=self._headers(prefer), **kwargs
            )
            if response.is_error:
                message = _error_message(response)
                logger.warning(
                    "%s %s failed (%d): %s",
                    operation,
                    table,
                    response.status_code,
                    message,
                )
                raise RemoteRequestError(message, status_code=response.status_code)
            status = "success"
            return response
        except httpx.HTTPError as e:
            logger.error("%s %s failed: %s", operation, table, e)
            raise RemoteRequestError(f"{operation} {table} failed: {e}") from e
        finally:
            REMOTE_REQUESTS.labels(table=table, operation=operation, status=status).inc()
            REMOTE_DURATION.labels(operation=operation).observe(
                time.perf_counter() - start
            )
