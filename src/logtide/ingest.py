from __future__ import annotations

import asyncio
import codecs
import logging
import os
import queue
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterable, AsyncIterator, Dict, Optional, Union

from logtide.aggregator import StatsAggregator
from logtide.errors import IngestionError
from logtide.events import EventKind
from logtide.parser import aiter_lines, parse_line

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
YIELD_EVERY = 200          # lines between event-loop yields
TAIL_QUEUE_MAX = 10000
TAIL_POLL_S = 0.2


class RunState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    COMPLETE = "complete"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = (RunState.COMPLETE, RunState.FAILED, RunState.CANCELLED)


# ----------------------------
# Chunk sources
# ----------------------------
async def file_chunks(path: str, chunk_size: int = CHUNK_SIZE) -> AsyncIterator[str]:
    f = await asyncio.to_thread(open, path, "r", encoding="utf-8", errors="replace")
    try:
        while True:
            chunk = await asyncio.to_thread(f.read, chunk_size)
            if not chunk:
                break
            yield chunk
    finally:
        f.close()


async def body_chunks(stream: AsyncIterable[bytes]) -> AsyncIterator[str]:
    """Decode a byte stream; multibyte characters may straddle chunks."""
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    async for data in stream:
        text = decoder.decode(data)
        if text:
            yield text
    tail = decoder.decode(b"", final=True)
    if tail:
        yield tail


@dataclass
class TailHandle:
    thread: threading.Thread
    q: "queue.Queue[Union[str, BaseException]]"
    stop: threading.Event


def start_tail_thread(path: str, from_start: bool, poll_interval: float = TAIL_POLL_S) -> TailHandle:
    q: "queue.Queue[Union[str, BaseException]]" = queue.Queue(maxsize=TAIL_QUEUE_MAX)
    stop = threading.Event()

    def put(item) -> bool:
        # block while the consumer is behind; give up only when stopped
        while not stop.is_set():
            try:
                q.put(item, timeout=0.5)
                return True
            except queue.Full:
                continue
        return False

    def worker():
        while not stop.is_set():
            try:
                f = open(path, "r", encoding="utf-8", errors="replace")
            except FileNotFoundError:
                # not created yet; keep waiting for it
                time.sleep(1.0)
                continue
            except OSError as e:
                put(e)
                return
            with f:
                if not from_start:
                    f.seek(0, os.SEEK_END)
                while not stop.is_set():
                    chunk = f.readline()
                    if not chunk:
                        time.sleep(poll_interval)
                        continue
                    if not put(chunk):
                        return
            return

    t = threading.Thread(target=worker, name=f"tail:{path}", daemon=True)
    t.start()
    return TailHandle(thread=t, q=q, stop=stop)


async def tail_chunks(path: str, from_start: bool = False, poll_interval: float = TAIL_POLL_S) -> AsyncIterator[str]:
    """Follow a growing file until the consumer stops iterating."""
    handle = start_tail_thread(path, from_start=from_start, poll_interval=poll_interval)
    try:
        while True:
            try:
                item = await asyncio.to_thread(handle.q.get, True, 0.5)
            except queue.Empty:
                continue
            if isinstance(item, BaseException):
                raise item
            yield item
    finally:
        handle.stop.set()


# ----------------------------
# Runs
# ----------------------------
class IngestionRun:
    """
    One pass over one chunk source: idle -> streaming -> complete | failed |
    cancelled. Runs are single-use; reset the aggregator and start a new run
    to ingest again.
    """

    def __init__(self, aggregator: StatsAggregator, *, name: str = "stream"):
        self.aggregator = aggregator
        self.bus = aggregator.bus
        self.name = name
        self.state = RunState.IDLE
        self.error: Optional[str] = None
        self.lines = 0
        self.started_at: Optional[float] = None
        self.finished_at: Optional[float] = None
        self._cancel_requested = False
        self._task: Optional[asyncio.Task] = None

    @property
    def done(self) -> bool:
        return self.state in TERMINAL_STATES

    def info(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "lines": self.lines,
            "error": self.error,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }

    def cancel(self) -> None:
        if self.done:
            return
        self._cancel_requested = True
        task = self._task
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    async def run(self, source: AsyncIterable[str]) -> Dict[str, Any]:
        if self.state is not RunState.IDLE:
            raise RuntimeError(f"run {self.name!r} already {self.state.value}")

        self.state = RunState.STREAMING
        self.started_at = time.time()
        self._task = asyncio.current_task()
        logger.info("ingestion %s started", self.name)

        lines = aiter_lines(source)
        try:
            if self._cancel_requested:
                raise asyncio.CancelledError()
            async for line in lines:
                self.aggregator.ingest(parse_line(line))
                self.lines += 1
                if self._cancel_requested:
                    raise asyncio.CancelledError()
                if self.lines % YIELD_EVERY == 0:
                    await asyncio.sleep(0)
        except asyncio.CancelledError:
            await self._close(lines, source)
            self._finish(RunState.CANCELLED, "ingestion cancelled")
            self.bus.publish(EventKind.ERROR, {"message": self.error, "source": self.name, "cancelled": True})
            logger.info("ingestion %s cancelled after %d lines", self.name, self.lines)
            if not self._cancel_requested:
                raise
            task = asyncio.current_task()
            if task is not None and task.cancelling():
                task.uncancel()
            return self.aggregator.snapshot()
        except Exception as e:
            await self._close(lines, source)
            self._finish(RunState.FAILED, str(e) or e.__class__.__name__)
            self.bus.publish(EventKind.ERROR, {"message": self.error, "source": self.name})
            logger.error("ingestion %s failed after %d lines: %s", self.name, self.lines, self.error)
            raise IngestionError(self.error, source=self.name) from e

        self._finish(RunState.COMPLETE)
        snapshot = self.aggregator.snapshot()
        self.bus.publish(EventKind.COMPLETE, snapshot)
        logger.info("ingestion %s complete: %d lines", self.name, self.lines)
        return snapshot

    def _finish(self, state: RunState, error: Optional[str] = None) -> None:
        self.state = state
        self.error = error
        self.finished_at = time.time()
        self._task = None

    async def _close(self, *gens) -> None:
        for gen in gens:
            aclose = getattr(gen, "aclose", None)
            if aclose is None:
                continue
            try:
                await aclose()
            except Exception:
                logger.warning("closing source for %s failed", self.name, exc_info=True)
