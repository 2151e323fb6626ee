"""Find and relocate summary records stored in the wrong session file.

Shared by the API and the `reconcile_summaries` CLI. Planning never touches
disk; applying rewrites files one at a time and is not transactional.
"""
from __future__ import annotations

import json
import logging
from collections import defaultdict
from pathlib import Path
from typing import Any, Iterable

from threadlog.models import (
    LogEntry,
    OrphanedSummary,
    ReconcileReport,
    SessionFile,
    SummaryFix,
)
from threadlog.parsers.sessions import scan_session_files

logger = logging.getLogger("threadlog.reconcile")


def build_uuid_index(files: Iterable[SessionFile]) -> dict[str, str]:
    """Map every message uuid to the first file (by scan order) that holds it."""
    index: dict[str, str] = {}
    for session_file in files:
        for message in session_file.messages:
            if message.uuid and message.uuid not in index:
                index[message.uuid] = session_file.filepath
    return index


def _fix_key(fix: SummaryFix) -> str:
    return f"{Path(fix.fromFile).name} -> {Path(fix.toFile).name}"


def plan_reconciliation(files: list[SessionFile]) -> ReconcileReport:
    index = build_uuid_index(files)
    report = ReconcileReport(
        totalMessages=len(index),
        totalSummaries=sum(len(f.summaries) for f in files),
    )
    fixes_by_file: dict[str, list[str]] = defaultdict(list)

    for session_file in files:
        own_uuids = {m.uuid for m in session_file.messages if m.uuid}
        for summary in session_file.summaries:
            leaf = summary.leafUuid
            if not leaf or leaf in own_uuids:
                continue
            owner = index.get(leaf)
            if owner is None:
                report.orphans.append(
                    OrphanedSummary(summary=summary.summary or "", leafUuid=leaf, file=session_file.filepath)
                )
                continue
            fix = SummaryFix(
                summary=summary.summary or "",
                leafUuid=leaf,
                fromFile=session_file.filepath,
                toFile=owner,
            )
            report.fixes.append(fix)
            fixes_by_file[_fix_key(fix)].append(fix.summary)

    report.misplaced = len(report.fixes)
    report.orphaned = len(report.orphans)
    report.fixesByFile = dict(fixes_by_file)
    if report.orphans:
        logger.warning("%d summaries reference messages that exist nowhere in the corpus", report.orphaned)
    return report


def _decode(line: bytes) -> dict[str, Any] | None:
    try:
        raw = json.loads(line.decode("utf-8", errors="replace"))
    except json.JSONDecodeError:
        return None
    return raw if isinstance(raw, dict) else None


def _summary_key(raw: dict[str, Any]) -> tuple[str, str]:
    return str(raw.get("leafUuid") or ""), str(raw.get("summary") or "")


def _read_lines(path: Path) -> list[bytes]:
    # raw bytes, so undecodable lines are written back untouched
    return [line for line in path.read_bytes().split(b"\n") if line.strip()]


def _write_lines(path: Path, lines: list[bytes]) -> None:
    path.write_bytes(b"\n".join(lines) + b"\n")


def apply_reconciliation(report: ReconcileReport) -> list[str]:
    """Move misplaced summaries to their owning files; returns rewritten paths.

    Every other line, malformed ones included, keeps its position.
    """
    moves: dict[str, dict[str, str]] = defaultdict(dict)
    for fix in report.fixes:
        moves[fix.fromFile][fix.leafUuid] = fix.toFile

    pending: dict[str, list[bytes]] = {}
    incoming: dict[str, list[bytes]] = defaultdict(list)

    for from_file, targets in moves.items():
        kept: list[bytes] = []
        for line in _read_lines(Path(from_file)):
            raw = _decode(line)
            leaf = raw.get("leafUuid") if raw else None
            if raw and raw.get("type") == "summary" and leaf in targets:
                incoming[targets[leaf]].append(line)
                continue
            kept.append(line)
        pending[from_file] = kept

    for to_file, lines in incoming.items():
        current = pending[to_file] if to_file in pending else _read_lines(Path(to_file))
        seen = {
            _summary_key(raw)
            for raw in (_decode(line) for line in current)
            if raw and raw.get("type") == "summary"
        }
        for line in lines:
            raw = _decode(line)
            key = _summary_key(raw) if raw else ("", line)
            if key in seen:
                continue
            seen.add(key)
            current.append(line)
        pending[to_file] = current

    for path_str, lines in pending.items():
        _write_lines(Path(path_str), lines)
        logger.info(f"Rewrote {path_str}")
    return sorted(pending)


def reconcile_summaries(projects_dir: Path, apply: bool = False) -> ReconcileReport:
    files = scan_session_files(projects_dir)
    report = plan_reconciliation(files)
    if apply and report.fixes:
        report.rewrittenFiles = apply_reconciliation(report)
        report.applied = True
    return report


def find_unsummarized_leaves(session_file: SessionFile) -> list[LogEntry]:
    """Leaf messages (nothing names them as parent) that no summary points at."""
    parents = {m.parentUuid for m in session_file.messages if m.parentUuid}
    summarized = {s.leafUuid for s in session_file.summaries if s.leafUuid}
    return [
        m for m in session_file.messages
        if m.uuid and m.uuid not in parents and m.uuid not in summarized
    ]
