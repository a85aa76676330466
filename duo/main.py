"""FastAPI application serving Duo workspaces to the browser UI.

Endpoints:
  POST   /auth/login              — Sign in, returns a bearer token
  POST   /auth/logout             — Sign out and drop the workspace
  GET    /auth/me                 — Current user
  GET    /notes                   — Visible notes for a view / tag / query
  POST   /notes/refresh           — Re-fetch all notes
  POST   /notes                   — Create a note
  PATCH  /notes/{id}              — Edit title / content
  POST   /notes/{id}/favorite     — Toggle favorite
  POST   /notes/{id}/trash        — Move to trash
  POST   /notes/{id}/restore      — Restore from trash
  DELETE /notes/{id}              — Delete permanently
  POST   /notes/bulk              — Bulk favorite / trash / restore / delete / tag
  GET    /notes/{id}/tags         — Tags of a note
  PUT    /notes/{id}/tags/{tag}   — Attach a tag
  DELETE /notes/{id}/tags/{tag}   — Detach a tag
  GET    /tags                    — List tags
  POST   /tags                    — Create a tag
  PATCH  /tags/{id}               — Edit a tag
  DELETE /tags/{id}               — Delete a tag
  GET    /tags/cache/stats        — Tag-note cache statistics
  POST   /import/bookmarks        — Import an exported bookmark file
  GET    /health                  — Liveness
  GET    /metrics                 — Prometheus metrics
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import Any, Literal, Optional

import httpx
from fastapi import Depends, FastAPI, Header, HTTPException, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel, Field
from starlette.middleware.base import BaseHTTPMiddleware

from duo.bookmarks import import_bookmarks
from duo.config import settings
from duo.data_service import DataService
from duo.errors import (
    AuthenticationError,
    BookmarkImportError,
    DuoError,
    InvalidInputError,
    NotFoundError,
    RemoteRequestError,
)
from duo.metrics import HTTP_DURATION, HTTP_REQUESTS
from duo.models import BulkResult, ImportReport, Note, NoteFilter, NoteTag, Tag, User
from duo.workspace import Workspace, WorkspaceRegistry

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
)
logger = logging.getLogger(__name__)

# --- Global instances ---
registry = WorkspaceRegistry()
_http_client: httpx.AsyncClient | None = None

# Endpoints excluded from HTTP metrics
_METRICS_EXCLUDE = {"/metrics", "/openapi.json", "/docs", "/redoc"}

_ERROR_STATUS: dict[type[DuoError], int] = {
    AuthenticationError: status.HTTP_401_UNAUTHORIZED,
    InvalidInputError: status.HTTP_400_BAD_REQUEST,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    BookmarkImportError: 422,
    RemoteRequestError: status.HTTP_502_BAD_GATEWAY,
}


class MetricsMiddleware(BaseHTTPMiddleware):
    """Record HTTP request count and duration for Prometheus."""

    async def dispatch(self, request: Request, call_next):
        """Wrap each request with timing and counting."""
        if request.url.path in _METRICS_EXCLUDE:
            return await call_next(request)

        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start

        # Label by route template so note ids do not explode cardinality
        route = request.scope.get("route")
        endpoint = getattr(route, "path", request.url.path)
        HTTP_REQUESTS.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=response.status_code,
        ).inc()
        HTTP_DURATION.labels(endpoint=endpoint).observe(elapsed)
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: shared HTTP client for all workspaces. Shutdown: close them."""
    global _http_client
    _http_client = httpx.AsyncClient(timeout=settings.request_timeout)
    registry.service_factory = lambda: DataService(settings, _http_client)
    logger.info("Duo API ready — data service at %s", settings.data_service_url)
    yield
    await registry.close_all()
    await _http_client.aclose()
    _http_client = None
    logger.info("Duo API shut down.")


app = FastAPI(title="Duo Notes API", version="1.0.0", lifespan=lifespan)

app.add_middleware(MetricsMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DuoError)
async def duo_error_handler(request: Request, exc: DuoError) -> JSONResponse:
    """Map container errors to HTTP statuses."""
    code = next(
        (s for cls, s in _ERROR_STATUS.items() if isinstance(exc, cls)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    return JSONResponse(status_code=code, content={"detail": str(exc)})


# --- Request / Response models ---


class LoginRequest(BaseModel):
    """Login request body."""

    email: str
    password: str


class LoginResponse(BaseModel):
    """Login response body."""

    token: str
    user: User


class NoteCreateRequest(BaseModel):
    title: str
    content: str = ""


class NoteUpdateRequest(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None


class BulkRequest(BaseModel):
    """Bulk action over selected notes."""

    action: Literal["favorite", "unfavorite", "trash", "restore", "delete", "tag"]
    note_ids: list[str] = Field(..., min_length=1)
    tag_id: Optional[str] = None


class TagCreateRequest(BaseModel):
    name: str
    color: Optional[str] = None


class TagUpdateRequest(BaseModel):
    name: Optional[str] = None
    color: Optional[str] = None


class BookmarkImportRequest(BaseModel):
    """Contents of an exported bookmark HTML file."""

    html: str


# --- Dependencies ---


def bearer_token(authorization: Optional[str] = Header(default=None)) -> str:
    """Extract the bearer token or reject the request."""
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not signed in",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return token


async def current_workspace(token: str = Depends(bearer_token)) -> Workspace:
    """Resolve the caller's workspace; an ended session counts as signed out."""
    workspace = registry.get(token)
    if workspace is not None and workspace.session.user is None:
        await registry.discard(token)
        workspace = None
    if workspace is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session expired, please sign in again",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return workspace


# --- Auth ---


@app.post("/auth/login", response_model=LoginResponse)
async def login(request: LoginRequest) -> LoginResponse:
    """Sign in and open a workspace."""
    token, workspace = await registry.sign_in(request.email, request.password)
    return LoginResponse(token=token, user=workspace.session.user)


@app.post("/auth/logout")
async def logout(token: str = Depends(bearer_token)) -> dict[str, str]:
    """Sign out; always succeeds locally."""
    await registry.sign_out(token)
    return {"message": "Signed out"}


@app.get("/auth/me", response_model=User)
async def me(workspace: Workspace = Depends(current_workspace)) -> User:
    return workspace.session.require_user("read the profile")


# --- Notes ---


@app.get("/notes", response_model=list[Note])
async def list_notes(
    view: NoteFilter = NoteFilter.ALL,
    tag_id: Optional[str] = None,
    q: str = "",
    workspace: Workspace = Depends(current_workspace),
) -> list[Note]:
    """Notes visible under the given view, tag selection and search query."""
    return await workspace.notes.apply_view(view, tag_id, q)


@app.post("/notes/refresh", response_model=list[Note])
async def refresh_notes(workspace: Workspace = Depends(current_workspace)) -> list[Note]:
    """Re-fetch every note (including trashed ones) from the data service."""
    return await workspace.notes.fetch_notes()


@app.post("/notes", response_model=Note, status_code=status.HTTP_201_CREATED)
async def create_note(
    request: NoteCreateRequest, workspace: Workspace = Depends(current_workspace)
) -> Note:
    return await workspace.notes.create_note(request.title, request.content)


@app.post("/notes/bulk", response_model=BulkResult)
async def bulk_notes(
    request: BulkRequest, workspace: Workspace = Depends(current_workspace)
) -> BulkResult:
    """Apply one action to several notes concurrently."""
    notes = workspace.notes
    ids = request.note_ids
    if request.action == "favorite":
        return await notes.bulk_set_favorite(ids, True)
    if request.action == "unfavorite":
        return await notes.bulk_set_favorite(ids, False)
    if request.action == "trash":
        return await notes.bulk_move_to_trash(ids)
    if request.action == "restore":
        return await notes.bulk_restore(ids)
    if request.action == "delete":
        return await notes.bulk_delete_permanently(ids)
    if not request.tag_id:
        raise InvalidInputError("tag_id is required to tag notes")
    return await notes.bulk_add_tag(ids, request.tag_id)


@app.patch("/notes/{note_id}", response_model=Note)
async def update_note(
    note_id: str,
    request: NoteUpdateRequest,
    workspace: Workspace = Depends(current_workspace),
) -> Note:
    fields = request.model_dump(exclude_none=True)
    if not fields:
        return workspace.notes.get(note_id)
    return await workspace.notes.update_note(note_id, **fields)


@app.post("/notes/{note_id}/favorite", response_model=Note)
async def toggle_favorite(
    note_id: str, workspace: Workspace = Depends(current_workspace)
) -> Note:
    return await workspace.notes.toggle_favorite(note_id)


@app.post("/notes/{note_id}/trash", response_model=Note)
async def trash_note(
    note_id: str, workspace: Workspace = Depends(current_workspace)
) -> Note:
    return await workspace.notes.move_to_trash(note_id)


@app.post("/notes/{note_id}/restore", response_model=Note)
async def restore_note(
    note_id: str, workspace: Workspace = Depends(current_workspace)
) -> Note:
    return await workspace.notes.restore_note(note_id)


@app.delete("/notes/{note_id}")
async def delete_note(
    note_id: str, workspace: Workspace = Depends(current_workspace)
) -> dict[str, str]:
    await workspace.notes.delete_permanently(note_id)
    return {"message": "Note deleted"}


@app.get("/notes/{note_id}/tags", response_model=list[Tag])
async def note_tags(
    note_id: str, workspace: Workspace = Depends(current_workspace)
) -> list[Tag]:
    return await workspace.tags.get_note_tags(note_id)


@app.put("/notes/{note_id}/tags/{tag_id}", response_model=NoteTag)
async def add_note_tag(
    note_id: str, tag_id: str, workspace: Workspace = Depends(current_workspace)
) -> NoteTag:
    link = await workspace.tags.add_tag_to_note(note_id, tag_id)
    await workspace.notes.refresh_tag_filter()
    return link


@app.delete("/notes/{note_id}/tags/{tag_id}")
async def remove_note_tag(
    note_id: str, tag_id: str, workspace: Workspace = Depends(current_workspace)
) -> dict[str, str]:
    await workspace.tags.remove_tag_from_note(note_id, tag_id)
    await workspace.notes.refresh_tag_filter()
    return {"message": "Tag removed"}


# --- Tags ---


@app.get("/tags", response_model=list[Tag])
async def list_tags(workspace: Workspace = Depends(current_workspace)) -> list[Tag]:
    return list(workspace.tags.tags)


@app.post("/tags", response_model=Tag, status_code=status.HTTP_201_CREATED)
async def create_tag(
    request: TagCreateRequest, workspace: Workspace = Depends(current_workspace)
) -> Tag:
    return await workspace.tags.create_tag(request.name, request.color)


@app.get("/tags/cache/stats")
async def tag_cache_stats(
    workspace: Workspace = Depends(current_workspace),
) -> dict[str, Any]:
    """Hit/miss statistics of the tag-note cache."""
    return workspace.tags.cache.stats()


@app.patch("/tags/{tag_id}", response_model=Tag)
async def update_tag(
    tag_id: str,
    request: TagUpdateRequest,
    workspace: Workspace = Depends(current_workspace),
) -> Tag:
    return await workspace.tags.update_tag(tag_id, request.name, request.color)


@app.delete("/tags/{tag_id}")
async def delete_tag(
    tag_id: str, workspace: Workspace = Depends(current_workspace)
) -> dict[str, str]:
    await workspace.tags.delete_tag(tag_id)
    if workspace.notes.selected_tag_id == tag_id:
        workspace.notes.set_view(NoteFilter.ALL)
    return {"message": "Tag deleted"}


# --- Import ---


@app.post("/import/bookmarks", response_model=ImportReport)
async def import_bookmark_file(
    request: BookmarkImportRequest, workspace: Workspace = Depends(current_workspace)
) -> ImportReport:
    """Turn an exported bookmark file into notes and folder tags."""
    return await import_bookmarks(request.html, workspace.notes, workspace.tags)


# --- Service ---


@app.get("/health")
async def health() -> dict[str, Any]:
    return {
        "status": "healthy",
        "data_service": settings.data_service_url,
        "workspaces": len(registry),
    }


@app.get("/metrics")
async def metrics() -> Response:
    """Prometheus metrics endpoint."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
