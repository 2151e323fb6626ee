#!/usr/bin/env python3
"""Report (and optionally fix) summaries stored in the wrong session file.

Usage:
  python -m threadlog.scripts.reconcile_summaries
  python -m threadlog.scripts.reconcile_summaries --project /Users/alice/proj
  python -m threadlog.scripts.reconcile_summaries --apply
  python -m threadlog.scripts.reconcile_summaries --json
"""
from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

from threadlog import config
from threadlog.errors import CorpusNotFoundError
from threadlog.models import ReconcileReport
from threadlog.parsers.paths import encode_project_dir
from threadlog.parsers.sessions import scan_session_files
from threadlog.reconcile import apply_reconciliation, find_unsummarized_leaves, plan_reconciliation


def _within(path: str, directory: Path) -> bool:
    return Path(path).parent == directory


def _restrict(report: ReconcileReport, project_dir: Path) -> ReconcileReport:
    fixes = [f for f in report.fixes if _within(f.fromFile, project_dir)]
    orphans = [o for o in report.orphans if _within(o.file, project_dir)]
    fixes_by_file: dict[str, list[str]] = {}
    for fix in fixes:
        key = f"{Path(fix.fromFile).name} -> {Path(fix.toFile).name}"
        fixes_by_file.setdefault(key, []).append(fix.summary)
    return report.model_copy(
        update={
            "fixes": fixes,
            "orphans": orphans,
            "misplaced": len(fixes),
            "orphaned": len(orphans),
            "fixesByFile": fixes_by_file,
        }
    )


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser()
    parser.add_argument("--projects-dir", default=str(config.PROJECTS_DIR))
    parser.add_argument("--project", default="", help="working directory of one project to restrict the report to")
    parser.add_argument("--apply", action="store_true")
    parser.add_argument("--json", action="store_true")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.WARNING)
    projects_dir = Path(args.projects_dir).expanduser()
    try:
        files = scan_session_files(projects_dir)
    except CorpusNotFoundError as e:
        print(e.message)
        return 1

    report = plan_reconciliation(files)
    project_dir: Path | None = None
    if args.project:
        project_dir = projects_dir / encode_project_dir(args.project)
        if not project_dir.is_dir():
            print(f"Project directory not found: {project_dir}")
            return 1
        report = _restrict(report, project_dir)

    if args.apply and report.fixes:
        report.rewrittenFiles = apply_reconciliation(report)
        report.applied = True

    unsummarized = {
        f.filepath: len(find_unsummarized_leaves(f))
        for f in files
        if project_dir is None or _within(f.filepath, project_dir)
    }
    unsummarized = {path: count for path, count in unsummarized.items() if count}

    if args.json:
        payload = report.model_dump()
        payload["projectsDir"] = str(projects_dir)
        payload["unsummarizedLeaves"] = unsummarized
        print(json.dumps(payload, indent=2))
        return 0

    print(f"Projects dir: {projects_dir}")
    if project_dir is not None:
        print(f"Project filter: {project_dir.name}")
    print(f"Messages indexed: {report.totalMessages}")
    print(f"Summaries: {report.totalSummaries}")
    print(f"Misplaced: {report.misplaced}")
    print(f"Orphaned: {report.orphaned}")
    print("")
    for key, summaries in report.fixesByFile.items():
        print(f"{key} ({len(summaries)})")
        for summary in summaries[:5]:
            print(f"    {summary}")
    for orphan in report.orphans:
        print(f"orphan leaf={orphan.leafUuid} file={Path(orphan.file).name} summary={orphan.summary}")
    if unsummarized:
        print("")
        print(f"Files with unsummarized leaves: {len(unsummarized)}")
    if report.applied:
        print("")
        print(f"Rewrote {len(report.rewrittenFiles)} files")
    elif report.fixes:
        print("")
        print("Dry run; pass --apply to move the misplaced summaries")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
