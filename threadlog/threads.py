"""Stitch session files into logical conversation threads."""
from __future__ import annotations

import logging
from collections import defaultdict
from pathlib import Path
from typing import Any, Iterable

from threadlog.models import UNTITLED_SESSION, LogEntry, SessionFile, SessionThread
from threadlog.parsers.sessions import scan_session_files

logger = logging.getLogger("threadlog.threads")

TITLE_MAX_CHARS = 100
TITLE_ELLIPSIS = "..."


def first_text(content: Any) -> str:
    """Text of a message payload: the string itself, or the first block's text."""
    if isinstance(content, str):
        return content
    if isinstance(content, list) and content:
        block = content[0]
        if isinstance(block, dict):
            text = block.get("text")
            return text if isinstance(text, str) else ""
        if isinstance(block, str):
            return block
    return ""


def derive_title(messages: list[LogEntry], summaries: list[LogEntry]) -> str:
    for summary in summaries[:1]:
        if summary.summary:
            return summary.summary

    first_user = next((m for m in messages if m.type == "user"), None)
    if first_user is not None and first_user.message is not None:
        text = first_text(first_user.message.content)
        if text:
            suffix = TITLE_ELLIPSIS if len(text) > TITLE_MAX_CHARS else ""
            return text[:TITLE_MAX_CHARS] + suffix

    return UNTITLED_SESSION


def _file_sort_key(session_file: SessionFile) -> tuple[str, str]:
    first_ts = session_file.messages[0].timestamp if session_file.messages else ""
    return first_ts, session_file.id


def build_session_thread(root_session_id: str, all_files: Iterable[SessionFile]) -> SessionThread:
    """Assemble one thread. An unknown root id yields an empty thread."""
    thread_files = [
        f for f in all_files
        if f.rootSessionId == root_session_id or f.id == root_session_id
    ]
    thread_files.sort(key=_file_sort_key)

    messages: list[LogEntry] = []
    summaries: list[LogEntry] = []
    for session_file in thread_files:
        messages.extend(session_file.messages)
        summaries.extend(session_file.summaries)

    # list.sort is stable, so equal timestamps keep file order
    messages.sort(key=lambda m: m.timestamp)

    return SessionThread(
        rootSessionId=root_session_id,
        files=thread_files,
        messages=messages,
        summaries=summaries,
        title=derive_title(messages, summaries),
    )


def group_files_by_root(files: Iterable[SessionFile]) -> dict[str, list[SessionFile]]:
    groups: dict[str, list[SessionFile]] = defaultdict(list)
    for session_file in files:
        groups[session_file.rootSessionId].append(session_file)
    return dict(groups)


def assemble_threads(files: Iterable[SessionFile]) -> list[SessionThread]:
    """Build every thread, most recently active first."""
    threads = [
        build_session_thread(root_id, group)
        for root_id, group in group_files_by_root(files).items()
    ]
    threads.sort(key=lambda t: (t.last_timestamp, t.rootSessionId), reverse=True)
    return threads


def list_threads(projects_dir: Path) -> list[SessionThread]:
    files = scan_session_files(projects_dir)
    threads = assemble_threads(files)
    logger.info("Assembled %d threads from %d files", len(threads), len(files))
    return threads


def get_thread(root_session_id: str, all_files: Iterable[SessionFile]) -> SessionThread:
    return build_session_thread(root_session_id, all_files)
