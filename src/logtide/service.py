from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

from logtide.aggregator import StatsAggregator
from logtide.broadcaster import LiveBroadcaster
from logtide.config import Settings
from logtide.errors import IngestionError, RunInProgress
from logtide.events import EventBus
from logtide.ingest import IngestionRun, RunState, file_chunks, tail_chunks

logger = logging.getLogger(__name__)


class LogService:
    """Wires the aggregator, broadcaster and ingestion runs for one process."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or Settings()
        self.bus = EventBus()
        self.aggregator = StatsAggregator(
            self.settings.alert_patterns,
            self.bus,
            max_errors=self.settings.max_errors,
            max_recent_logs=self.settings.max_recent_logs,
            stats_every=self.settings.stats_every,
        )
        self.broadcaster = LiveBroadcaster(
            self.aggregator,
            self.bus,
            max_alerts=self.settings.max_alerts,
            queue_size=self.settings.subscriber_queue,
        )
        self.run: Optional[IngestionRun] = None
        self._task: Optional[asyncio.Task] = None

    def new_run(self, name: str) -> IngestionRun:
        if self.run is not None and self.run.state is RunState.STREAMING:
            raise RunInProgress(f"run {self.run.name!r} is still streaming")
        self.run = IngestionRun(self.aggregator, name=name)
        return self.run

    def run_info(self) -> Dict[str, Any]:
        if self.run is None:
            return {"name": None, "state": RunState.IDLE.value, "lines": 0, "error": None,
                    "started_at": None, "finished_at": None}
        return self.run.info()

    def start_file_run(self) -> Optional[asyncio.Task]:
        path = self.settings.log_file
        if not path:
            return None
        run = self.new_run(path)
        if self.settings.follow:
            source = tail_chunks(path, from_start=self.settings.tail_from_start)
        else:
            source = file_chunks(path, chunk_size=self.settings.chunk_size)
        self._task = asyncio.create_task(self._drive(run, source))
        return self._task

    async def _drive(self, run: IngestionRun, source) -> None:
        try:
            await run.run(source)
        except IngestionError:
            # the run has already logged and published the failure
            return

    async def stop(self) -> None:
        if self.run is not None:
            self.run.cancel()
        if self._task is not None:
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self.broadcaster.close()
