"""Tail growing session files and publish live update events.

Uses `watchfiles` for change notifications. Each watcher owns its byte
offsets; consumers iterate it (``async for event in watcher``) and close it to
release the underlying watch.
"""
from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import AsyncIterator, Iterable

from watchfiles import Change, awatch

from threadlog import config
from threadlog.date_utils import utc_now_iso
from threadlog.models import LiveEvent
from threadlog.observability import record_live_event
from threadlog.parsers.sessions import ParsedLines, parse_jsonl_text

logger = logging.getLogger("threadlog.watcher")

_STOP = object()


def reconnect_delay(
    attempt: int,
    base: float | None = None,
    cap: float | None = None,
) -> float:
    """Exponential backoff, capped: base, 2*base, 4*base ... up to cap."""
    if attempt <= 0:
        return 0.0
    base_seconds = config.RECONNECT_BASE_SECONDS if base is None else base
    cap_seconds = config.RECONNECT_MAX_SECONDS if cap is None else cap
    return min(base_seconds * (2 ** (attempt - 1)), cap_seconds)


def read_appended(path: Path, offset: int) -> tuple[ParsedLines, int]:
    """Parse the bytes appended since ``offset``; returns (parsed, new_offset).

    A file that did not grow (or shrank) yields nothing and keeps the offset.
    The offset always moves to the current size, so a record caught mid-write
    is dropped as malformed rather than held back for the next read.
    """
    with open(path, "rb") as fh:
        fh.seek(0, os.SEEK_END)
        size = fh.tell()
        if size <= offset:
            if size < offset:
                logger.warning(
                    "File %s shrank from %d to %d bytes; truncation is not handled", path, offset, size
                )
            return ParsedLines(), offset
        fh.seek(offset)
        raw = fh.read(size - offset)
    if not raw.endswith(b"\n"):
        logger.debug("Read of %s ended mid-record at byte %d", path, size)
    parsed = parse_jsonl_text(raw.decode("utf-8", errors="replace"), source=str(path))
    return parsed, offset + len(raw)


def format_sse(event: LiveEvent) -> str:
    return f"data: {event.model_dump_json(exclude_none=True)}\n\n"


def _is_session_file(path: Path) -> bool:
    return path.suffix == config.SESSION_FILE_SUFFIX and not path.name.startswith("._")


class TailWatcher:
    """Watch a corpus directory and emit new_session / new_messages / heartbeat events."""

    def __init__(
        self,
        root_dir: Path,
        *,
        heartbeat_interval: float | None = None,
        replay_existing: bool | None = None,
        debounce_ms: int | None = None,
        max_pending: int = 1000,
    ):
        self.root_dir = Path(root_dir)
        self.heartbeat_interval = config.HEARTBEAT_SECONDS if heartbeat_interval is None else heartbeat_interval
        self.replay_existing = config.REPLAY_EXISTING if replay_existing is None else replay_existing
        self.debounce_ms = config.WATCH_DEBOUNCE_MS if debounce_ms is None else debounce_ms
        self._offsets: dict[str, int] = {}
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_pending)
        self._stop_event = asyncio.Event()
        self._tasks: list[asyncio.Task] = []
        self._running = False
        self._closed = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def offsets(self) -> dict[str, int]:
        return dict(self._offsets)

    async def start(self) -> None:
        if self._running:
            logger.warning("Tail watcher already running")
            return
        if self._closed:
            raise RuntimeError("Tail watcher has been closed")

        self._running = True
        if not self.replay_existing:
            self._offsets.update(await asyncio.to_thread(self._current_sizes))
        self._tasks = [
            asyncio.create_task(self._watch_loop()),
            asyncio.create_task(self._heartbeat_loop()),
        ]
        logger.info(f"Tail watcher started for {self.root_dir}")

    async def aclose(self) -> None:
        """Stop watching; releases the filesystem watch and the heartbeat timer."""
        if self._closed:
            return
        self._closed = True
        self._running = False
        self._stop_event.set()
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []
        try:
            self._queue.put_nowait(_STOP)
        except asyncio.QueueFull:
            pass
        logger.info("Tail watcher stopped")

    async def __aenter__(self) -> "TailWatcher":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    def __aiter__(self) -> "TailWatcher":
        return self

    async def __anext__(self) -> LiveEvent:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        event = await self._queue.get()
        if event is _STOP:
            raise StopAsyncIteration
        return event

    def _current_sizes(self) -> dict[str, int]:
        sizes: dict[str, int] = {}
        if not self.root_dir.is_dir():
            return sizes
        for path in self.root_dir.rglob(f"*{config.SESSION_FILE_SUFFIX}"):
            try:
                sizes[str(path)] = path.stat().st_size
            except OSError:
                continue
        return sizes

    async def _emit(self, event: LiveEvent) -> None:
        await self._queue.put(event)
        record_live_event(event.type)

    async def _watch_loop(self) -> None:
        attempt = 0
        while not self._stop_event.is_set():
            try:
                async for changes in awatch(
                    self.root_dir,
                    stop_event=self._stop_event,
                    debounce=self.debounce_ms,
                    recursive=True,
                ):
                    attempt = 0
                    await self.process_changes(changes)
                return
            except asyncio.CancelledError:
                raise
            except Exception as e:
                attempt += 1
                delay = reconnect_delay(attempt)
                logger.error(f"Watch on {self.root_dir} failed ({e}); retrying in {delay:.0f}s")
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
                except asyncio.TimeoutError:
                    continue

    async def _heartbeat_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.heartbeat_interval)
                return
            except asyncio.TimeoutError:
                pass
            try:
                self._queue.put_nowait(LiveEvent(type="heartbeat", timestamp=utc_now_iso()))
                record_live_event("heartbeat")
            except asyncio.QueueFull:
                # consumer is behind on real events already
                continue

    async def process_changes(self, changes: Iterable[tuple[Change, str]]) -> None:
        """Handle one batch of notifications, in path then added/modified/deleted order."""
        for change_type, path_str in sorted(changes, key=lambda c: (c[1], int(c[0]))):
            path = Path(path_str)
            if not _is_session_file(path):
                continue
            try:
                if change_type == Change.added:
                    await self._handle_added(path)
                elif change_type == Change.modified:
                    await self._handle_modified(path)
                elif change_type == Change.deleted:
                    self._offsets.pop(path_str, None)
            except Exception as e:
                logger.error(f"Error processing {change_type.name} for {path}: {e}")

    async def _handle_added(self, path: Path) -> None:
        self._offsets.setdefault(str(path), 0)
        await self._emit(
            LiveEvent(
                type="new_session",
                timestamp=utc_now_iso(),
                sessionId=path.stem,
                project=path.parent.name,
            )
        )

    async def _handle_modified(self, path: Path) -> None:
        key = str(path)
        last_offset = self._offsets.get(key, 0)
        parsed, new_offset = await asyncio.to_thread(read_appended, path, last_offset)
        self._offsets[key] = new_offset
        if not parsed.entries:
            return

        session_id = path.stem
        project = path.parent.name
        logger.debug("new_messages %s/%s (+%d entries)", project, session_id, len(parsed.entries))
        await self._emit(
            LiveEvent(
                type="new_messages",
                timestamp=utc_now_iso(),
                sessionId=session_id,
                fullSessionId=f"{project}/{session_id}",
                project=project,
                messages=[entry.model_dump(mode="json", exclude_unset=True) for entry in parsed.entries],
                messageCount=len(parsed.entries),
            )
        )


async def watch(root_dir: Path, **options) -> AsyncIterator[LiveEvent]:
    """Live event feed for ``root_dir``; closing the generator stops the watch."""
    async with TailWatcher(root_dir, **options) as watcher:
        async for event in watcher:
            yield event
