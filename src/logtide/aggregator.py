from __future__ import annotations

import threading
import time
from collections import Counter, deque
from typing import Any, Deque, Dict, List, Optional, Sequence

from logtide import alerts
from logtide.events import EventBus, EventKind
from logtide.models import AlertPattern, ErrorRecord, LogEntry

MAX_ERRORS = 50
MAX_RECENT_LOGS = 100
STATS_EVERY = 1000


def _status_class(status: int) -> str:
    return f"{status // 100}xx"


def top_items(counts: Counter, limit: int = 5) -> List[Dict[str, Any]]:
    rows = sorted(counts.items(), key=lambda kv: (-kv[1], str(kv[0])))[:limit]
    return [{"key": k, "value": v} for k, v in rows]


class _Stats:
    """Mutable aggregate state; replaced wholesale on reset."""

    def __init__(self, max_errors: int, max_recent_logs: int):
        self.total_lines = 0
        self.error_count = 0
        self.warn_count = 0
        self.status_codes: Counter = Counter()
        self.methods: Counter = Counter()
        self.paths: Counter = Counter()
        self.ips: Counter = Counter()
        self.levels: Counter = Counter()
        # newest-first; maxlen evicts from the right (oldest)
        self.errors: Deque[ErrorRecord] = deque(maxlen=max_errors)
        self.recent_logs: Deque[LogEntry] = deque(maxlen=max_recent_logs)
        self.start_time = time.time()


class StatsAggregator:
    """
    Incremental statistics over a LogEntry stream.

    All state sits behind one lock; events go out on the bus after the lock
    is released so slow handlers never stall a concurrent snapshot.
    """

    def __init__(
        self,
        patterns: Optional[Sequence[AlertPattern]] = None,
        bus: Optional[EventBus] = None,
        *,
        max_errors: int = MAX_ERRORS,
        max_recent_logs: int = MAX_RECENT_LOGS,
        stats_every: int = STATS_EVERY,
    ):
        self.patterns: List[AlertPattern] = list(patterns or [])
        self.bus = bus or EventBus()
        self.max_errors = max_errors
        self.max_recent_logs = max_recent_logs
        self.stats_every = stats_every
        self._lock = threading.Lock()
        self._stats = _Stats(max_errors, max_recent_logs)

    @property
    def total_lines(self) -> int:
        with self._lock:
            return self._stats.total_lines

    def ingest(self, entry: LogEntry) -> None:
        with self._lock:
            s = self._stats
            s.total_lines += 1

            if entry.level:
                s.levels[entry.level] += 1
                if entry.level == "ERROR":
                    s.error_count += 1
                    s.errors.appendleft(ErrorRecord.from_entry(entry))
                elif entry.level == "WARN":
                    s.warn_count += 1

            # counted independently of the level: an ERROR line with a 5xx
            # status increments error_count twice
            if entry.status:
                s.status_codes[_status_class(entry.status)] += 1
                if entry.status >= 400:
                    s.error_count += 1
                    s.errors.appendleft(ErrorRecord.from_entry(entry))

            if entry.method:
                s.methods[entry.method] += 1
            if entry.path:
                s.paths[entry.path] += 1
            if entry.ip:
                s.ips[entry.ip] += 1

            fired = alerts.check(entry, self.patterns)

            s.recent_logs.appendleft(entry)
            emit_stats = self.stats_every > 0 and s.total_lines % self.stats_every == 0

        for alert in fired:
            self.bus.publish(EventKind.ALERT, alert)
        self.bus.publish(EventKind.ENTRY, entry)
        if emit_stats:
            self.bus.publish(EventKind.STATS, self.snapshot())

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            s = self._stats
            duration = time.time() - s.start_time
            total = s.total_lines
            return {
                "total_lines": total,
                "error_count": s.error_count,
                "warn_count": s.warn_count,
                "status_codes": dict(s.status_codes),
                "methods": dict(s.methods),
                "paths": dict(s.paths),
                "ips": dict(s.ips),
                "levels": dict(s.levels),
                "errors": [e.model_dump(mode="json") for e in s.errors],
                "recent_logs": [e.model_dump(mode="json") for e in s.recent_logs],
                "start_time": s.start_time,
                "duration": duration,
                "lines_per_second": round(total / duration, 2) if duration > 0 else 0.0,
                "error_rate": f"{(s.error_count / total * 100) if total else 0.0:.2f}%",
                "top_paths": top_items(s.paths, 10),
                "top_ips": top_items(s.ips, 10),
                "top_methods": top_items(s.methods),
                "top_levels": top_items(s.levels, 10),
            }

    def reset(self) -> None:
        with self._lock:
            self._stats = _Stats(self.max_errors, self.max_recent_logs)
        self.bus.publish(EventKind.RESET, None)
