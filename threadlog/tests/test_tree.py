import unittest

from threadlog.models import FileTreeNode, LogEntry, SessionFile, SessionSummary, SessionThread
from threadlog.parsers.paths import DEFAULT_PREFIX_RULES
from threadlog.tree import (
    build_project_tree,
    build_tree,
    collapse_node,
    iter_nodes,
    session_counts_consistent,
)


def _summary(session_id: str, last: str = "2024-01-01T00:00:00Z") -> SessionSummary:
    return SessionSummary(id=session_id, lastUpdated=last, firstMessage=last)


class BuildTreeTests(unittest.TestCase):
    def test_single_chain_collapses_to_one_node(self) -> None:
        tree = build_tree([(["a", "b", "c"], [_summary("s1")])])

        self.assertEqual(len(tree), 1)
        node = tree[0]
        self.assertEqual(node.name, "a/b/c")
        self.assertEqual(node.path, "/a/b/c")
        self.assertEqual([s.id for s in node.sessions], ["s1"])
        self.assertEqual(node.sessionCount, 1)

    def test_folder_with_own_sessions_stops_collapse(self) -> None:
        tree = build_tree(
            [
                (["a", "b"], [_summary("s-b")]),
                (["a", "b", "c"], [_summary("s-c")]),
            ]
        )

        self.assertEqual([n.name for n in tree], ["a/b"])
        b = tree[0]
        self.assertEqual([s.id for s in b.sessions], ["s-b"])
        self.assertEqual([c.name for c in b.children], ["c"])
        self.assertEqual(b.sessionCount, 2)

    def test_branching_folder_is_not_collapsed(self) -> None:
        tree = build_tree(
            [
                (["Users", "alice", "x"], [_summary("s1")]),
                (["Users", "alice", "y"], [_summary("s2"), _summary("s3")]),
            ]
        )

        self.assertEqual(tree[0].name, "Users/alice")
        self.assertEqual([c.name for c in tree[0].children], ["x", "y"])
        self.assertEqual(tree[0].sessionCount, 3)
        self.assertTrue(session_counts_consistent(tree))

    def test_children_sorted_by_name(self) -> None:
        tree = build_tree(
            [
                (["r", "beta"], [_summary("s1")]),
                (["r", "Alpha"], [_summary("s2")]),
                (["r", "gamma"], [_summary("s3")]),
            ]
        )

        self.assertEqual([c.name for c in tree[0].children], ["Alpha", "beta", "gamma"])

    def test_sessions_merge_and_sort_newest_first(self) -> None:
        tree = build_tree(
            [
                (["p"], [_summary("old", "2024-01-01T00:00:00Z")]),
                (["p"], [_summary("new", "2024-03-01T00:00:00Z")]),
            ]
        )

        self.assertEqual([s.id for s in tree[0].sessions], ["new", "old"])
        self.assertEqual(tree[0].sessionCount, 2)

    def test_empty_segments_land_on_root_path(self) -> None:
        tree = build_tree([([], [_summary("s1")])])

        self.assertEqual(tree[0].path, "/")
        self.assertEqual(tree[0].sessionCount, 1)

    def test_collapse_returns_new_nodes(self) -> None:
        leaf = FileTreeNode(name="c", path="/a/b/c", sessions=[_summary("s1")])
        b = FileTreeNode(name="b", path="/a/b", children=[leaf])
        a = FileTreeNode(name="a", path="/a", children=[b])

        collapsed = collapse_node(a)

        self.assertEqual(collapsed.name, "a/b/c")
        self.assertEqual(a.name, "a")
        self.assertEqual(a.children[0].name, "b")

    def test_counts_consistent_on_every_node(self) -> None:
        tree = build_tree(
            [
                (["a", "b", "c"], [_summary("s1")]),
                (["a", "d"], [_summary("s2")]),
                (["e"], [_summary("s3"), _summary("s4")]),
            ]
        )

        self.assertTrue(session_counts_consistent(tree))
        self.assertEqual(sum(n.sessionCount for n in tree), 4)
        self.assertEqual(
            sum(len(n.sessions) for n in iter_nodes(tree)),
            4,
        )


class BuildProjectTreeTests(unittest.TestCase):
    def _thread(self, root_id: str, project: str, cwd: str | None = None) -> SessionThread:
        message = LogEntry(
            type="user",
            uuid=f"{root_id}-m1",
            sessionId=root_id,
            timestamp="2024-01-01T10:00:00Z",
            cwd=cwd,
        )
        session_file = SessionFile(
            id=root_id,
            project=project,
            filepath=f"/c/{project}/{root_id}.jsonl",
            rootSessionId=root_id,
            messages=[message],
        )
        return SessionThread(rootSessionId=root_id, files=[session_file], messages=[message], title=root_id)

    def test_threads_are_placed_by_decoded_project_path(self) -> None:
        threads = [
            self._thread("sess-1", "-Users-alice-proj"),
            self._thread("sess-9", "-Users-alice-other", cwd="/Users/alice/other-repo"),
        ]

        tree = build_project_tree(threads, home="/Users/alice", prefix_rules=DEFAULT_PREFIX_RULES)

        self.assertEqual(tree[0].name, "Users/alice")
        by_name = {c.name: c for c in tree[0].children}
        self.assertEqual(set(by_name), {"proj", "other-repo"})
        self.assertEqual(by_name["proj"].sessions[0].id, "sess-1")
        self.assertEqual(by_name["proj"].sessions[0].messageCount, 1)
        self.assertEqual(tree[0].sessionCount, 2)


if __name__ == "__main__":
    unittest.main()
