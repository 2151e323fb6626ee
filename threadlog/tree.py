"""Build the collapsed project folder tree shown in the sidebar.

Each pass (collapse, sort, count) returns a fresh node graph instead of
rewriting nodes in place.
"""
from __future__ import annotations

import locale
from collections import defaultdict
from pathlib import Path
from typing import Any, Iterable, Sequence

from threadlog.date_utils import utc_now_iso
from threadlog.models import FileTreeNode, SessionSummary, SessionThread
from threadlog.parsers.paths import PrefixRule, resolve_project_segments, sample_cwd_entries

ROOT_NAME = "root"
COLLAPSE_SEPARATOR = "/"
TreeEntry = tuple[Sequence[str], Sequence[SessionSummary]]


def thread_to_summary(thread: SessionThread) -> SessionSummary:
    now = utc_now_iso()
    return SessionSummary(
        id=thread.rootSessionId,
        title=thread.title,
        messageCount=len(thread.messages),
        fileCount=len(thread.files),
        lastUpdated=thread.messages[-1].timestamp if thread.messages else now,
        firstMessage=thread.messages[0].timestamp if thread.messages else now,
        summaries=[s.summary for s in thread.summaries if s.summary],
    )


def _new_scratch(name: str, path: str) -> dict[str, Any]:
    return {"name": name, "path": path, "_children": {}, "sessions": []}


def _insert(root: dict[str, Any], segments: Sequence[str], sessions: Sequence[SessionSummary]) -> None:
    node = root
    traversed: list[str] = []
    for segment in segments or ("/",):
        traversed.append(segment)
        child = node["_children"].get(segment)
        if child is None:
            child = _new_scratch(segment, "/" + "/".join(s for s in traversed if s != "/"))
            node["_children"][segment] = child
        node = child
    node["sessions"].extend(sessions)


def _freeze(node: dict[str, Any]) -> FileTreeNode:
    sessions = sorted(node["sessions"], key=lambda s: s.lastUpdated, reverse=True)
    return FileTreeNode(
        name=node["name"],
        path=node["path"],
        type="folder",
        children=[_freeze(child) for child in node["_children"].values()],
        sessions=sessions,
    )


def _can_collapse(node: FileTreeNode) -> bool:
    return (
        node.type == "folder"
        and len(node.children) == 1
        and node.children[0].type == "folder"
        and not node.sessions
    )


def collapse_node(node: FileTreeNode, separator: str = COLLAPSE_SEPARATOR) -> FileTreeNode:
    """Merge chains of single-folder-child, session-less folders."""
    current = node
    while _can_collapse(current):
        only_child = current.children[0]
        current = current.model_copy(
            update={
                "name": f"{current.name}{separator}{only_child.name}",
                "path": only_child.path,
                "children": list(only_child.children),
                "sessions": list(only_child.sessions),
            }
        )
    return current.model_copy(
        update={"children": [collapse_node(child, separator) for child in current.children]}
    )


def _name_key(name: str) -> tuple[str, str]:
    return locale.strxfrm(name.casefold()), name


def sort_node(node: FileTreeNode) -> FileTreeNode:
    """Folders before projects, then locale-aware name order, at every level."""
    children = sorted(
        (sort_node(child) for child in node.children),
        key=lambda child: (child.type != "folder", _name_key(child.name)),
    )
    return node.model_copy(update={"children": children})


def count_node(node: FileTreeNode) -> FileTreeNode:
    children = [count_node(child) for child in node.children]
    total = len(node.sessions) + sum(child.sessionCount for child in children)
    return node.model_copy(update={"children": children, "sessionCount": total})


def build_tree(entries: Iterable[TreeEntry], *, separator: str = COLLAPSE_SEPARATOR) -> list[FileTreeNode]:
    """Top-level nodes of the collapsed, sorted and counted tree."""
    scratch = _new_scratch(ROOT_NAME, "")
    for segments, sessions in entries:
        _insert(scratch, list(segments), list(sessions))

    root = _freeze(scratch)
    children = [collapse_node(child, separator) for child in root.children]
    root = root.model_copy(update={"children": children})
    return count_node(sort_node(root)).children


def build_project_tree(
    threads: Iterable[SessionThread],
    *,
    home: Path | str | None = None,
    prefix_rules: Iterable[PrefixRule] | None = None,
) -> list[FileTreeNode]:
    """Group threads by project directory and place them in the folder tree."""
    by_project: dict[str, list[SessionThread]] = defaultdict(list)
    for thread in threads:
        by_project[thread.project].append(thread)

    rules = tuple(prefix_rules) if prefix_rules is not None else None
    entries: list[TreeEntry] = []
    for project, project_threads in by_project.items():
        project_files = [
            f for thread in project_threads for f in thread.files if f.project == project
        ]
        segments = resolve_project_segments(
            project,
            sample_cwd_entries(project_files),
            home=home,
            prefix_rules=rules,
        )
        entries.append((segments, [thread_to_summary(t) for t in project_threads]))
    return build_tree(entries)


def session_counts_consistent(nodes: Iterable[FileTreeNode]) -> bool:
    for node in nodes:
        expected = len(node.sessions) + sum(child.sessionCount for child in node.children)
        if node.sessionCount != expected or not session_counts_consistent(node.children):
            return False
    return True


def iter_nodes(nodes: Iterable[FileTreeNode]):
    for node in nodes:
        yield node
        yield from iter_nodes(node.children)
