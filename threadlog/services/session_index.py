"""Read-only query facade over the session corpus.

Nothing is cached: every call scans the corpus directory again.
"""
from __future__ import annotations

import logging
from pathlib import Path

from threadlog import config
from threadlog.errors import CorpusNotFoundError, SessionNotFoundError, TransientReadError
from threadlog.live.tail_watcher import TailWatcher
from threadlog.models import (
    ProjectTreeResponse,
    ReconcileReport,
    SessionFile,
    SessionMessageView,
    SessionThread,
)
from threadlog.parsers.sessions import iter_project_dirs, parse_session_file, scan_session_files
from threadlog.reconcile import reconcile_summaries
from threadlog.threads import assemble_threads, build_session_thread
from threadlog.tree import build_project_tree

logger = logging.getLogger("threadlog.session_index")

_CONVERSATION_TYPES = ("user", "assistant")


def _projects_dir(projects_dir: Path | None) -> Path:
    return Path(projects_dir) if projects_dir is not None else config.PROJECTS_DIR


def _scan(projects_dir: Path | None) -> list[SessionFile]:
    root = _projects_dir(projects_dir)
    try:
        return scan_session_files(root)
    except OSError as exc:
        raise TransientReadError(f"Failed to scan {root}: {exc}") from exc


def _safe_name(value: str) -> bool:
    return bool(value) and value not in {".", ".."} and "/" not in value and "\\" not in value


def list_threads(projects_dir: Path | None = None) -> list[SessionThread]:
    return assemble_threads(_scan(projects_dir))


def get_thread(session_id: str, projects_dir: Path | None = None) -> SessionThread:
    """Thread containing ``session_id``; continuation file ids resolve to their root."""
    files = _scan(projects_dir)
    match = next((f for f in files if f.id == session_id), None)
    root_id = match.rootSessionId if match is not None else session_id
    thread = build_session_thread(root_id, files)
    if not thread.files:
        raise SessionNotFoundError(f"Session {session_id} not found")
    return thread


def project_tree(projects_dir: Path | None = None) -> ProjectTreeResponse:
    threads = list_threads(projects_dir)
    tree = build_project_tree(threads)
    return ProjectTreeResponse(
        fileTree=tree,
        totalSessions=sum(node.sessionCount for node in tree),
    )


def find_session(session_id: str, projects_dir: Path | None = None) -> str:
    """Name of the project directory holding the ``session_id`` file."""
    if not _safe_name(session_id):
        raise SessionNotFoundError(f"Session {session_id} not found")
    root = _projects_dir(projects_dir)
    try:
        for project_dir in iter_project_dirs(root):
            if (project_dir / f"{session_id}{config.SESSION_FILE_SUFFIX}").is_file():
                return project_dir.name
    except OSError as exc:
        raise TransientReadError(f"Failed to scan {root}: {exc}") from exc
    raise SessionNotFoundError(f"Session {session_id} not found")


def read_session_messages(
    project: str,
    session_id: str,
    projects_dir: Path | None = None,
) -> list[SessionMessageView]:
    """User and assistant messages of a single session file, in file order."""
    root = _projects_dir(projects_dir)
    if not root.is_dir():
        raise CorpusNotFoundError(f"Projects directory not found: {root}")
    if not (_safe_name(project) and _safe_name(session_id)):
        raise SessionNotFoundError(f"Session {project}/{session_id} not found")

    path = root / project / f"{session_id}{config.SESSION_FILE_SUFFIX}"
    if not path.is_file():
        raise SessionNotFoundError(f"Session {project}/{session_id} not found")
    try:
        session_file = parse_session_file(path)
    except OSError as exc:
        raise TransientReadError(f"Failed to read {path}: {exc}") from exc

    return [
        SessionMessageView(
            role=(entry.message.role if entry.message and entry.message.role else entry.type),
            content=entry.message.content if entry.message else "",
            timestamp=entry.timestamp,
        )
        for entry in session_file.messages
        if entry.type in _CONVERSATION_TYPES
    ]


def reconcile(apply: bool = False, projects_dir: Path | None = None) -> ReconcileReport:
    root = _projects_dir(projects_dir)
    try:
        report = reconcile_summaries(root, apply=apply)
    except OSError as exc:
        raise TransientReadError(f"Reconciliation failed under {root}: {exc}") from exc
    logger.info(
        "Reconcile %s: %d misplaced, %d orphaned",
        "applied" if report.applied else "dry run",
        report.misplaced,
        report.orphaned,
    )
    return report


def open_watcher(projects_dir: Path | None = None, **options) -> TailWatcher:
    """Unstarted watcher over the corpus; the caller owns its lifetime."""
    root = _projects_dir(projects_dir)
    if not root.is_dir():
        raise CorpusNotFoundError(f"Projects directory not found: {root}")
    return TailWatcher(root, **options)
