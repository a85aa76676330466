"""Unit tests for duo.data_service — HTTP client for the hosted data service."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from duo.config import Settings
from duo.data_service import (
    SIGNED_IN,
    SIGNED_OUT,
    TOKEN_REFRESHED,
    DataService,
    encode_filters,
)
from duo.errors import AuthenticationError, InvalidInputError, RemoteRequestError
from duo.session import SessionStore

SESSION_BODY = {
    "access_token": "access-1",
    "refresh_token": "refresh-1",
    "token_type": "bearer",
    "expires_in": 3600,
    "user": {"id": "u1", "email": "ada@example.com"},
}

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _settings() -> Settings:
    return Settings(data_service_url="http://svc.test/", data_service_key="anon-key")


def _service(handler, requests: list | None = None) -> DataService:
    """DataService whose HTTP traffic goes to *handler*, recording requests."""

    def record(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        return handler(request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(record))
    return DataService(_settings(), client)


def _signed_in_handler(inner):
    """Answer the password grant, delegate everything else to *inner*."""

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/auth/v1/token":
            return httpx.Response(200, json=SESSION_BODY)
        return inner(request)

    return handler


# ---------------------------------------------------------------------------
# Filter encoding
# ---------------------------------------------------------------------------


class TestEncodeFilters:
    def test_scalar_values(self):
        assert encode_filters({"id": "n1", "count": 3}) == {
            "id": "eq.n1",
            "count": "eq.3",
        }

    def test_booleans_and_null(self):
        assert encode_filters({"is_deleted": False, "tag_id": None}) == {
            "is_deleted": "eq.false",
            "tag_id": "is.null",
        }

    def test_membership(self):
        assert encode_filters({"id": ["a", "b"]}) == {"id": 'in.("a","b")'}

    def test_empty(self):
        assert encode_filters(None) == {}

    def test_membership_escapes_quotes_and_backslashes(self):
        params = encode_filters({"name": ['say "hi"', "a\\b", "x,y"]})
        assert params == {"name": 'in.("say \\"hi\\"","a\\\\b","x,y")'}


# ---------------------------------------------------------------------------
# Tables
# ---------------------------------------------------------------------------


class TestTables:
    @pytest.mark.asyncio
    async def test_select_sends_filters_and_anon_key(self):
        sent: list[httpx.Request] = []
        service = _service(lambda r: httpx.Response(200, json=[{"id": "t1"}]), sent)

        rows = await service.select("tags", {"user_id": "u1"}, order="name.asc")

        assert rows == [{"id": "t1"}]
        request = sent[0]
        assert request.method == "GET"
        assert request.url.path == "/rest/v1/tags"
        assert request.url.params["user_id"] == "eq.u1"
        assert request.url.params["order"] == "name.asc"
        assert request.url.params["select"] == "*"
        assert request.headers["apikey"] == "anon-key"
        assert request.headers["authorization"] == "Bearer anon-key"

    @pytest.mark.asyncio
    async def test_insert_returns_first_row(self):
        sent: list[httpx.Request] = []
        service = _service(
            lambda r: httpx.Response(201, json=[{"id": "n1", "title": "T"}]), sent
        )

        row = await service.insert("notes", {"title": "T"})

        assert row == {"id": "n1", "title": "T"}
        assert sent[0].headers["prefer"] == "return=representation"
        assert json.loads(sent[0].content) == [{"title": "T"}]

    @pytest.mark.asyncio
    async def test_insert_without_rows_back(self):
        service = _service(lambda r: httpx.Response(201, json=[]))
        with pytest.raises(RemoteRequestError, match="returned no rows"):
            await service.insert("notes", {"title": "T"})

    @pytest.mark.asyncio
    async def test_update_uses_match_as_filter(self):
        sent: list[httpx.Request] = []
        service = _service(lambda r: httpx.Response(200, json=[{"id": "n1"}]), sent)

        rows = await service.update("notes", {"is_favorite": True}, {"id": "n1"})

        assert rows == [{"id": "n1"}]
        assert sent[0].method == "PATCH"
        assert sent[0].url.params["id"] == "eq.n1"
        assert json.loads(sent[0].content) == {"is_favorite": True}

    @pytest.mark.asyncio
    async def test_delete_requires_match(self):
        sent: list[httpx.Request] = []
        service = _service(lambda r: httpx.Response(204), sent)

        with pytest.raises(InvalidInputError):
            await service.delete("notes", {})

        assert sent == []

    @pytest.mark.asyncio
    async def test_delete(self):
        sent: list[httpx.Request] = []
        service = _service(lambda r: httpx.Response(204), sent)

        await service.delete("note_tags", {"note_id": "n1", "tag_id": "t1"})

        assert sent[0].method == "DELETE"
        assert sent[0].url.params["note_id"] == "eq.n1"
        assert sent[0].url.params["tag_id"] == "eq.t1"

    @pytest.mark.asyncio
    async def test_error_status_maps_to_remote_error(self):
        service = _service(
            lambda r: httpx.Response(409, json={"message": "duplicate key value"})
        )

        with pytest.raises(RemoteRequestError, match="duplicate key value") as exc_info:
            await service.insert("note_tags", {"note_id": "n1", "tag_id": "t1"})

        assert exc_info.value.status_code == 409

    @pytest.mark.asyncio
    async def test_network_failure_maps_to_remote_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        service = _service(handler)

        with pytest.raises(RemoteRequestError) as exc_info:
            await service.select("notes")

        assert exc_info.value.status_code is None


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class TestAuth:
    @pytest.mark.asyncio
    async def test_authenticate_stores_session_and_notifies(self):
        sent: list[httpx.Request] = []
        service = _service(
            _signed_in_handler(lambda r: httpx.Response(200, json=[])), sent
        )
        events: list[str] = []
        service.on_session_change(lambda event, session: events.append(event))

        session = await service.authenticate("ada@example.com", "pw")
        await service.select("notes")

        assert session.user.id == "u1"
        assert service.session == session
        assert events == [SIGNED_IN]
        assert sent[0].url.params["grant_type"] == "password"
        assert sent[1].headers["authorization"] == "Bearer access-1"

    @pytest.mark.asyncio
    async def test_rejected_credentials(self):
        service = _service(
            lambda r: httpx.Response(400, json={"error_description": "Invalid login"})
        )

        with pytest.raises(AuthenticationError, match="Invalid login"):
            await service.authenticate("ada@example.com", "wrong")

        assert service.session is None

    @pytest.mark.asyncio
    async def test_auth_outage_is_not_an_auth_error(self):
        service = _service(lambda r: httpx.Response(503, text="unavailable"))
        with pytest.raises(RemoteRequestError) as exc_info:
            await service.authenticate("ada@example.com", "pw")
        assert not isinstance(exc_info.value, AuthenticationError)

    @pytest.mark.asyncio
    async def test_refresh_session(self):
        sent: list[httpx.Request] = []
        service = _service(_signed_in_handler(lambda r: httpx.Response(200)), sent)
        events: list[str] = []
        await service.authenticate("ada@example.com", "pw")
        service.on_session_change(lambda event, session: events.append(event))

        await service.refresh_session()

        assert sent[-1].url.params["grant_type"] == "refresh_token"
        assert json.loads(sent[-1].content) == {"refresh_token": "refresh-1"}
        assert events == [TOKEN_REFRESHED]

    @pytest.mark.asyncio
    async def test_refresh_without_session(self):
        service = _service(lambda r: httpx.Response(200))
        with pytest.raises(AuthenticationError):
            await service.refresh_session()

    @pytest.mark.asyncio
    async def test_sign_out_clears_even_when_remote_fails(self):
        service = _service(
            _signed_in_handler(lambda r: httpx.Response(500, json={"msg": "boom"}))
        )
        await service.authenticate("ada@example.com", "pw")
        events: list[str] = []
        service.on_session_change(lambda event, session: events.append(event))

        await service.sign_out()

        assert service.session is None
        assert events == [SIGNED_OUT]

    @pytest.mark.asyncio
    async def test_get_current_user(self):
        def inner(request):
            return httpx.Response(200, json={"id": "u1", "email": "ada@example.com"})

        service = _service(_signed_in_handler(inner))
        assert await service.get_current_user() is None

        await service.authenticate("ada@example.com", "pw")
        user = await service.get_current_user()

        assert user.email == "ada@example.com"

    @pytest.mark.asyncio
    async def test_expired_token_yields_no_user(self):
        service = _service(
            _signed_in_handler(lambda r: httpx.Response(401, json={"msg": "expired"}))
        )
        await service.authenticate("ada@example.com", "pw")
        assert await service.get_current_user() is None

    @pytest.mark.asyncio
    async def test_unsubscribe_and_failing_listener(self):
        service = _service(_signed_in_handler(lambda r: httpx.Response(200)))
        events: list[str] = []

        def broken(event, session):
            raise RuntimeError("listener bug")

        service.on_session_change(broken)
        unsubscribe = service.on_session_change(lambda e, s: events.append(e))
        await service.authenticate("ada@example.com", "pw")
        unsubscribe()
        await service.sign_out()

        assert events == [SIGNED_IN]
        assert service.session is None


# ---------------------------------------------------------------------------
# Token refresh
# ---------------------------------------------------------------------------


def _token_handler(rest, *, login_expires_in: int = 3600, refresh_status: int = 200):
    """Password grant issues access-1, refresh grant issues access-2."""

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/auth/v1/token":
            if request.url.params["grant_type"] == "password":
                return httpx.Response(
                    200, json={**SESSION_BODY, "expires_in": login_expires_in}
                )
            if refresh_status != 200:
                return httpx.Response(
                    refresh_status, json={"error_description": "Invalid Refresh Token"}
                )
            return httpx.Response(
                200,
                json={
                    **SESSION_BODY,
                    "access_token": "access-2",
                    "refresh_token": "refresh-2",
                },
            )
        return rest(request)

    return handler


def _only_fresh_token(request: httpx.Request) -> httpx.Response:
    if request.headers["authorization"] == "Bearer access-2":
        return httpx.Response(200, json=[{"id": "n1"}])
    return httpx.Response(401, json={"message": "JWT expired"})


def _grants(sent: list[httpx.Request]) -> list[str]:
    return [r.url.params["grant_type"] for r in sent if r.url.path == "/auth/v1/token"]


class TestTokenRefresh:
    @pytest.mark.asyncio
    async def test_expired_token_refreshed_before_request(self):
        sent: list[httpx.Request] = []
        # an expires_in inside the safety margin counts as already expired
        service = _service(_token_handler(_only_fresh_token, login_expires_in=10), sent)
        events: list[str] = []
        service.on_session_change(lambda event, session: events.append(event))
        await service.authenticate("ada@example.com", "pw")

        rows = await service.select("notes")

        assert rows == [{"id": "n1"}]
        assert _grants(sent) == ["password", "refresh_token"]
        assert [r.url.path for r in sent].count("/rest/v1/notes") == 1
        assert service.session.access_token == "access-2"
        assert events == [SIGNED_IN, TOKEN_REFRESHED]

    @pytest.mark.asyncio
    async def test_unauthorized_response_refreshes_and_retries_once(self):
        sent: list[httpx.Request] = []
        service = _service(_token_handler(_only_fresh_token), sent)
        await service.authenticate("ada@example.com", "pw")

        rows = await service.select("notes")

        assert rows == [{"id": "n1"}]
        notes_calls = [r for r in sent if r.url.path == "/rest/v1/notes"]
        assert [r.headers["authorization"] for r in notes_calls] == [
            "Bearer access-1",
            "Bearer access-2",
        ]

    @pytest.mark.asyncio
    async def test_rejected_refresh_ends_session(self):
        service = _service(_token_handler(_only_fresh_token, refresh_status=400))
        events: list[str] = []
        service.on_session_change(lambda event, session: events.append(event))
        await service.authenticate("ada@example.com", "pw")

        with pytest.raises(AuthenticationError, match="Session expired"):
            await service.update("notes", {"title": "T"}, {"id": "n1"})

        assert service.session is None
        assert events == [SIGNED_IN, SIGNED_OUT]

    @pytest.mark.asyncio
    async def test_session_store_follows_ended_session(self):
        service = _service(_token_handler(_only_fresh_token, refresh_status=400))
        store = SessionStore(service)
        await store.init()
        await store.sign_in("ada@example.com", "pw")
        assert store.user is not None

        with pytest.raises(AuthenticationError):
            await service.select("notes")

        assert store.user is None

    @pytest.mark.asyncio
    async def test_concurrent_requests_share_one_refresh(self):
        sent: list[httpx.Request] = []
        service = _service(_token_handler(_only_fresh_token, login_expires_in=10), sent)
        await service.authenticate("ada@example.com", "pw")

        await asyncio.gather(service.select("notes"), service.select("notes"))

        assert _grants(sent) == ["password", "refresh_token"]

    @pytest.mark.asyncio
    async def test_anonymous_401_is_not_retried(self):
        sent: list[httpx.Request] = []
        service = _service(lambda r: httpx.Response(401, json={"message": "no"}), sent)

        with pytest.raises(RemoteRequestError) as exc_info:
            await service.select("notes")

        assert exc_info.value.status_code == 401
        assert len(sent) == 1


class TestClose:
    @pytest.mark.asyncio
    async def test_shared_client_left_open(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        service = DataService(_settings(), client)

        await service.close()

        assert client.is_closed is False
        await client.aclose()

    @pytest.mark.asyncio
    async def test_owned_client_closed(self):
        service = DataService(_settings())
        await service.close()
        assert service._client.is_closed is True
