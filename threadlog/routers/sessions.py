"""Session browsing, live stream, and reconciliation endpoints."""
from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from threadlog.errors import ErrorKind, ThreadlogError
from threadlog.live.tail_watcher import format_sse
from threadlog.models import (
    ProjectTreeResponse,
    ReconcileReport,
    SessionMessageView,
    SessionSummary,
    SessionThread,
)
from threadlog.services import session_index
from threadlog.tree import thread_to_summary

logger = logging.getLogger("threadlog.api")

sessions_router = APIRouter(prefix="/api/sessions", tags=["sessions"])

_STATUS_BY_KIND = {
    ErrorKind.CORPUS_MISSING: 404,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.TRANSIENT: 503,
}


class SessionLocation(BaseModel):
    sessionId: str
    project: str


def _http_error(exc: ThreadlogError) -> HTTPException:
    status = _STATUS_BY_KIND.get(exc.kind, 500)
    if status >= 500:
        logger.error(f"{exc.kind.value}: {exc.message}")
    return HTTPException(status_code=status, detail=exc.message or exc.kind.value)


@sessions_router.get("/tree", response_model=ProjectTreeResponse)
def get_session_tree():
    """Collapsed folder tree of every project and its threads."""
    try:
        return session_index.project_tree()
    except ThreadlogError as exc:
        if exc.kind == ErrorKind.CORPUS_MISSING:
            return ProjectTreeResponse(fileTree=[], totalSessions=0, error=exc.message)
        raise _http_error(exc)


@sessions_router.get("/threads", response_model=list[SessionSummary])
def list_session_threads(
    limit: int = Query(0, ge=0, description="0 returns every thread"),
):
    try:
        threads = session_index.list_threads()
    except ThreadlogError as exc:
        raise _http_error(exc)
    if limit:
        threads = threads[:limit]
    return [thread_to_summary(thread) for thread in threads]


@sessions_router.get("/thread/{session_id}", response_model=SessionThread)
def get_session_thread(session_id: str):
    try:
        return session_index.get_thread(session_id)
    except ThreadlogError as exc:
        raise _http_error(exc)


@sessions_router.get("/find/{session_id}", response_model=SessionLocation)
def find_session(session_id: str):
    try:
        project = session_index.find_session(session_id)
    except ThreadlogError as exc:
        raise _http_error(exc)
    return SessionLocation(sessionId=session_id, project=project)


@sessions_router.get("/stream")
async def stream_session_events(request: Request):
    """Server-sent events: new_session, new_messages and periodic heartbeats."""
    try:
        watcher = session_index.open_watcher()
    except ThreadlogError as exc:
        raise _http_error(exc)

    async def event_stream():
        async with watcher:
            async for event in watcher:
                if await request.is_disconnected():
                    break
                yield format_sse(event)

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Accel-Buffering": "no"},
    )


@sessions_router.post("/reconcile", response_model=ReconcileReport)
def reconcile_summaries(apply: bool = Query(False)):
    try:
        return session_index.reconcile(apply=apply)
    except ThreadlogError as exc:
        raise _http_error(exc)


@sessions_router.get("/{project}/{session_id}", response_model=list[SessionMessageView])
def get_session_messages(project: str, session_id: str):
    try:
        return session_index.read_session_messages(project, session_id)
    except ThreadlogError as exc:
        raise _http_error(exc)
