import json
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from fastapi import HTTPException

from threadlog import config
from threadlog.errors import TransientReadError
from threadlog.routers import sessions as sessions_router
from threadlog.services import session_index


def _user(uuid: str, session: str, ts: str, text: str) -> str:
    return json.dumps(
        {
            "type": "user",
            "uuid": uuid,
            "sessionId": session,
            "timestamp": ts,
            "cwd": "/Users/alice/proj",
            "message": {"role": "user", "content": text},
        }
    )


def _assistant(uuid: str, session: str, ts: str, text: str) -> str:
    return json.dumps(
        {
            "type": "assistant",
            "uuid": uuid,
            "sessionId": session,
            "timestamp": ts,
            "message": {"role": "assistant", "content": [{"type": "text", "text": text}]},
        }
    )


class _FakeRequest:
    async def is_disconnected(self) -> bool:
        return False


class SessionsRouterTests(unittest.TestCase):
    def setUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        self.root = Path(tmpdir.name)
        project_dir = self.root / "-Users-alice-proj"
        project_dir.mkdir()
        (project_dir / "sess-1.jsonl").write_text(
            "\n".join(
                [
                    _user("m1", "sess-1", "2024-01-01T10:00:00Z", "Refactor the login module please"),
                    _assistant("m2", "sess-1", "2024-01-01T10:00:05Z", "Sure"),
                    json.dumps({"type": "system", "uuid": "m3", "sessionId": "sess-1"}),
                ]
            )
            + "\n",
            encoding="utf-8",
        )
        (project_dir / "sess-2.jsonl").write_text(
            _user("m4", "sess-1", "2024-01-01T11:00:00Z", "continue") + "\n",
            encoding="utf-8",
        )
        patcher = patch.object(config, "PROJECTS_DIR", self.root)
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_tree_groups_thread_under_project_path(self) -> None:
        response = sessions_router.get_session_tree()

        self.assertIsNone(response.error)
        self.assertEqual(response.totalSessions, 1)
        node = response.fileTree[0]
        self.assertEqual(node.name, "Users/alice/proj")
        self.assertEqual(node.sessions[0].id, "sess-1")
        self.assertEqual(node.sessions[0].fileCount, 2)
        self.assertEqual(node.sessions[0].title, "Refactor the login module please")

    def test_tree_reports_missing_corpus_without_failing(self) -> None:
        with patch.object(config, "PROJECTS_DIR", self.root / "missing"):
            response = sessions_router.get_session_tree()

        self.assertEqual(response.fileTree, [])
        self.assertEqual(response.totalSessions, 0)
        self.assertIn("not found", response.error)

    def test_threads_listing(self) -> None:
        summaries = sessions_router.list_session_threads(limit=0)

        self.assertEqual([s.id for s in summaries], ["sess-1"])
        self.assertEqual(summaries[0].messageCount, 4)

    def test_thread_by_continuation_id_resolves_root(self) -> None:
        thread = sessions_router.get_session_thread("sess-2")

        self.assertEqual(thread.rootSessionId, "sess-1")
        self.assertEqual([f.id for f in thread.files], ["sess-1", "sess-2"])

    def test_unknown_thread_is_404(self) -> None:
        with self.assertRaises(HTTPException) as ctx:
            sessions_router.get_session_thread("nope")

        self.assertEqual(ctx.exception.status_code, 404)

    def test_find_session(self) -> None:
        location = sessions_router.find_session("sess-2")

        self.assertEqual(location.project, "-Users-alice-proj")
        with self.assertRaises(HTTPException) as ctx:
            sessions_router.find_session("missing")
        self.assertEqual(ctx.exception.status_code, 404)

    def test_session_messages_only_user_and_assistant(self) -> None:
        messages = sessions_router.get_session_messages("-Users-alice-proj", "sess-1")

        self.assertEqual([m.role for m in messages], ["user", "assistant"])
        self.assertEqual(messages[0].content, "Refactor the login module please")

    def test_session_messages_rejects_traversal(self) -> None:
        with self.assertRaises(HTTPException) as ctx:
            sessions_router.get_session_messages("..", "sess-1")

        self.assertEqual(ctx.exception.status_code, 404)

    def test_missing_corpus_lookup_is_404(self) -> None:
        with patch.object(config, "PROJECTS_DIR", self.root / "missing"):
            with self.assertRaises(HTTPException) as ctx:
                sessions_router.get_session_thread("sess-1")

        self.assertEqual(ctx.exception.status_code, 404)

    def test_transient_errors_are_503(self) -> None:
        with patch.object(session_index, "list_threads", side_effect=TransientReadError("disk busy")):
            with self.assertRaises(HTTPException) as ctx:
                sessions_router.list_session_threads(limit=0)

        self.assertEqual(ctx.exception.status_code, 503)
        self.assertEqual(ctx.exception.detail, "disk busy")

    def test_reconcile_dry_run(self) -> None:
        report = sessions_router.reconcile_summaries(apply=False)

        self.assertFalse(report.applied)
        self.assertEqual(report.misplaced, 0)
        self.assertEqual(report.totalMessages, 4)

    def test_reconcile_apply_with_undecodable_line(self) -> None:
        project_dir = self.root / "-Users-alice-proj"
        (project_dir / "sess-3.jsonl").write_bytes(
            b"\xff\xfe garbage\n"
            + json.dumps({"type": "summary", "summary": "Belongs to sess-1", "leafUuid": "m1"}).encode("utf-8")
            + b"\n"
        )

        report = sessions_router.reconcile_summaries(apply=True)

        self.assertTrue(report.applied)
        self.assertEqual(report.misplaced, 1)
        self.assertEqual((project_dir / "sess-3.jsonl").read_bytes(), b"\xff\xfe garbage\n")


class SessionStreamRouterTests(unittest.IsolatedAsyncioTestCase):
    async def test_stream_sends_heartbeat_frames(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)

        with patch.object(config, "PROJECTS_DIR", Path(tmpdir.name)), patch.object(
            config, "HEARTBEAT_SECONDS", 0.05
        ):
            response = await sessions_router.stream_session_events(_FakeRequest())
            self.assertEqual(response.media_type, "text/event-stream")
            frame = await anext(response.body_iterator)
            await response.body_iterator.aclose()

        self.assertTrue(frame.startswith("data: "))
        self.assertEqual(json.loads(frame[len("data: "):])["type"], "heartbeat")

    async def test_stream_on_missing_corpus_is_404(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)

        with patch.object(config, "PROJECTS_DIR", Path(tmpdir.name) / "missing"):
            with self.assertRaises(HTTPException) as ctx:
                await sessions_router.stream_session_events(_FakeRequest())

        self.assertEqual(ctx.exception.status_code, 404)


if __name__ == "__main__":
    unittest.main()
