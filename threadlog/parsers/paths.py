"""Decode project directory names into filesystem path segments.

Project directories are named after the working directory with every path
separator (and most punctuation) replaced by ``-``. The mapping is lossy, so a
``cwd`` recorded inside the logs always wins; name decoding is a fallback
driven by a small, installation-specific prefix table.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Iterable, Optional

import yaml

from threadlog import config
from threadlog.models import LogEntry, SessionFile

logger = logging.getLogger("threadlog.paths")

ENCODED_SEPARATOR = "-"
_NON_ALNUM = re.compile(r"[^a-zA-Z0-9]")


@dataclass(frozen=True)
class PrefixRule:
    """One special-case prefix.

    ``kind="fixed"``: emit ``segments`` then the remainder split on the separator.
    ``kind="home"``: emit the home directory segments then ``segments``.
    ``parts`` restricts the rule to names that split into exactly that many parts.
    ``contains`` restricts it to names holding that substring.
    """

    prefix: str
    segments: tuple[str, ...] = ()
    kind: str = "fixed"
    parts: Optional[int] = None
    contains: Optional[str] = None

    def matches(self, name: str) -> bool:
        if not name.startswith(self.prefix):
            return False
        if self.contains and self.contains not in name:
            return False
        if self.parts is not None:
            return len(_split(name)) == self.parts
        return True


DEFAULT_PREFIX_RULES: tuple[PrefixRule, ...] = (
    PrefixRule(prefix="Users-", kind="home", segments=("claude",), contains="claude"),
    PrefixRule(prefix="Volumes-DevM-2-", segments=("Volumes", "DevM.2")),
    PrefixRule(prefix="Users-", kind="home", parts=2),
)


def _split(value: str, separator: str = ENCODED_SEPARATOR) -> list[str]:
    return [segment for segment in value.split(separator) if segment]


def home_segments(home: Path | str | None = None) -> list[str]:
    raw = str(home if home is not None else Path.home())
    return _split(raw.replace("\\", "/"), "/")


def _rule_from_mapping(raw: dict) -> PrefixRule:
    prefix = str(raw.get("prefix") or "")
    if not prefix:
        raise ValueError("prefix rule without a prefix")
    kind = str(raw.get("kind") or "fixed").strip().lower()
    if kind not in {"fixed", "home"}:
        raise ValueError(f"unknown prefix rule kind: {kind}")
    segments = raw.get("segments") or []
    if not isinstance(segments, list):
        raise ValueError("prefix rule segments must be a list")
    parts = raw.get("parts")
    contains = raw.get("contains")
    return PrefixRule(
        prefix=prefix,
        segments=tuple(str(s) for s in segments if str(s)),
        kind=kind,
        parts=int(parts) if parts is not None else None,
        contains=str(contains) if contains else None,
    )


def load_prefix_rules(path: Path) -> tuple[PrefixRule, ...]:
    """Load a prefix table from YAML.

    Expected shape::

        prefixes:
          - prefix: "Volumes-DevM-2-"
            segments: ["Volumes", "DevM.2"]
          - prefix: "Users-"
            kind: home
            segments: ["claude"]
            contains: "claude"
          - prefix: "Users-"
            kind: home
            parts: 2
    """
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")
    raw_rules = data.get("prefixes") or []
    if not isinstance(raw_rules, list):
        raise ValueError(f"{path}: 'prefixes' must be a list")
    return tuple(_rule_from_mapping(item) for item in raw_rules if isinstance(item, dict))


@lru_cache(maxsize=1)
def get_prefix_rules() -> tuple[PrefixRule, ...]:
    if not config.PATH_PREFIXES_FILE:
        return DEFAULT_PREFIX_RULES
    path = Path(config.PATH_PREFIXES_FILE).expanduser()
    try:
        return load_prefix_rules(path)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        logger.error(f"Failed to load path prefix table {path}: {exc}; using defaults")
        return DEFAULT_PREFIX_RULES


def segments_from_cwd(entries: Iterable[LogEntry]) -> list[str] | None:
    for entry in entries:
        if entry.cwd and entry.cwd.strip():
            segments = _split(entry.cwd.replace("\\", "/"), "/")
            if segments:
                return segments
    return None


def decode_project_name(
    project_name: str,
    *,
    home: Path | str | None = None,
    prefix_rules: Iterable[PrefixRule] | None = None,
) -> list[str]:
    cleaned = project_name[1:] if project_name.startswith(ENCODED_SEPARATOR) else project_name
    if not _split(cleaned):
        return home_segments(home)

    rules = tuple(prefix_rules) if prefix_rules is not None else get_prefix_rules()
    for rule in rules:
        if not rule.matches(cleaned):
            continue
        if rule.kind == "home":
            return home_segments(home) + list(rule.segments)
        return list(rule.segments) + _split(cleaned[len(rule.prefix):])

    return _split(cleaned)


def resolve_project_segments(
    project_name: str,
    entries: Iterable[LogEntry] = (),
    *,
    home: Path | str | None = None,
    prefix_rules: Iterable[PrefixRule] | None = None,
) -> list[str]:
    """Real filesystem location of a project as a list of path segments."""
    from_cwd = segments_from_cwd(entries)
    if from_cwd:
        return from_cwd
    return decode_project_name(project_name, home=home, prefix_rules=prefix_rules)


def sample_cwd_entries(
    session_files: Iterable[SessionFile],
    max_files: int | None = None,
    max_lines: int | None = None,
) -> list[LogEntry]:
    """First few entries of the first few files, enough to find a ``cwd``."""
    file_limit = config.CWD_SAMPLE_FILES if max_files is None else max_files
    line_limit = config.CWD_SAMPLE_LINES if max_lines is None else max_lines
    sample: list[LogEntry] = []
    for index, session_file in enumerate(session_files):
        if index >= file_limit:
            break
        sample.extend(session_file.messages[:line_limit])
    return sample


def encode_project_dir(path: str) -> str:
    """Forward encoding used for project directory names."""
    return _NON_ALNUM.sub(ENCODED_SEPARATOR, path)
