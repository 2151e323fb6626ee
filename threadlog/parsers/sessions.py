"""Parse JSONL session log files into SessionFile models."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator

from pydantic import ValidationError

from threadlog import config
from threadlog.errors import CorpusNotFoundError
from threadlog.models import LogEntry, SessionFile
from threadlog.observability import record_file_parsed, record_parser_failure, start_span

logger = logging.getLogger("threadlog.parser")


@dataclass
class ParsedLines:
    entries: list[LogEntry] = field(default_factory=list)
    failed_lines: int = 0


def parse_jsonl_text(text: str, *, source: str = "") -> ParsedLines:
    """Parse newline-delimited JSON, dropping lines that do not decode to an object.

    Only `\\n` separates records; JSON strings may legally contain other
    line-break characters such as U+2028.
    """
    result = ParsedLines()
    for line_no, raw_line in enumerate(text.split("\n"), start=1):
        line = raw_line.strip()
        if not line:
            continue
        try:
            raw = json.loads(line)
        except json.JSONDecodeError as exc:
            result.failed_lines += 1
            logger.warning("Skipping malformed line %s in %s: %s", line_no, source or "<text>", exc)
            continue
        if not isinstance(raw, dict):
            result.failed_lines += 1
            logger.warning("Skipping non-object line %s in %s", line_no, source or "<text>")
            continue
        try:
            result.entries.append(LogEntry.model_validate(raw))
        except ValidationError as exc:
            result.failed_lines += 1
            logger.warning("Skipping invalid entry on line %s in %s: %s", line_no, source or "<text>", exc)
    return result


def build_session_file(
    session_id: str,
    project: str,
    filepath: str,
    entries: list[LogEntry],
    failed_lines: int = 0,
) -> SessionFile:
    """Partition entries and work out which thread the file belongs to.

    A message whose `sessionId` differs from the filename-derived id marks the
    file as a continuation of that session.
    """
    messages: list[LogEntry] = []
    summaries: list[LogEntry] = []
    root_session_id: str | None = None
    is_root = True

    for entry in entries:
        if entry.is_summary:
            summaries.append(entry)
            continue
        messages.append(entry)
        if entry.sessionId and entry.sessionId != session_id:
            is_root = False
            root_session_id = entry.sessionId
        elif not root_session_id and entry.sessionId:
            root_session_id = entry.sessionId

    return SessionFile(
        id=session_id,
        project=project,
        filepath=filepath,
        messages=messages,
        summaries=summaries,
        rootSessionId=root_session_id or session_id,
        isRoot=is_root,
        continuationOf=None if is_root else root_session_id,
        failedLines=failed_lines,
    )


def parse_session_file(path: Path) -> SessionFile:
    """Parse one session file. Raises OSError when the file cannot be read."""
    text = path.read_text(encoding="utf-8", errors="replace")
    parsed = parse_jsonl_text(text, source=str(path))
    project = path.parent.name
    if parsed.failed_lines:
        record_parser_failure("jsonl", project=project, count=parsed.failed_lines)
    record_file_parsed(project=project)
    return build_session_file(
        path.stem,
        project,
        str(path),
        parsed.entries,
        parsed.failed_lines,
    )


def iter_project_dirs(projects_dir: Path) -> Iterator[Path]:
    """Yield non-hidden project directories in name order."""
    if not projects_dir.is_dir():
        raise CorpusNotFoundError(f"Projects directory not found: {projects_dir}")
    for project_dir in sorted(projects_dir.iterdir(), key=lambda p: p.name):
        if project_dir.name.startswith("."):
            continue
        if not project_dir.is_dir():
            continue
        yield project_dir


def iter_session_paths(project_dir: Path) -> list[Path]:
    return sorted(
        (p for p in project_dir.glob(f"*{config.SESSION_FILE_SUFFIX}") if p.is_file()),
        key=lambda p: p.name,
    )


def scan_session_files(projects_dir: Path) -> list[SessionFile]:
    """Parse every session file under every project directory."""
    files: list[SessionFile] = []
    with start_span("threadlog.scan", {"projects_dir": str(projects_dir)}):
        for project_dir in iter_project_dirs(projects_dir):
            for path in iter_session_paths(project_dir):
                try:
                    files.append(parse_session_file(path))
                except OSError as exc:
                    logger.error(f"Failed to read session file {path}: {exc}")
    logger.debug("Parsed %d session files from %s", len(files), projects_dir)
    return files
