from __future__ import annotations

import asyncio
import json
import logging
from collections import deque
from typing import Any, Deque, Dict, List, Optional, Set

from logtide.aggregator import StatsAggregator
from logtide.errors import SubscriberClosed
from logtide.events import Event, EventBus, EventKind
from logtide.models import to_jsonable

logger = logging.getLogger(__name__)

MAX_ALERTS = 100
SUBSCRIBER_QUEUE = 5000


def format_sse(kind: str, data: Any) -> str:
    return f"event: {kind}\ndata: {json.dumps(data)}\n\n"


class Subscription:
    """One live consumer. Delivery never blocks the broadcaster."""

    def __init__(self, maxsize: int = SUBSCRIBER_QUEUE):
        self.q: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.closed = False

    def send(self, kind: str, data: Any) -> None:
        if self.closed:
            raise SubscriberClosed("subscriber closed")
        try:
            self.q.put_nowait((kind, data))
        except asyncio.QueueFull:
            # too slow to keep up; cut it loose rather than buffer forever
            self.closed = True
            raise SubscriberClosed("subscriber queue full")

    def close(self) -> None:
        self.closed = True

    async def get(self):
        return await self.q.get()

    def drain(self) -> List[tuple]:
        items = []
        while not self.q.empty():
            items.append(self.q.get_nowait())
        return items


class LiveBroadcaster:
    """
    Fans analyzer events out to live subscribers and serves the pull
    surface (stats, alert history, reset).
    """

    def __init__(
        self,
        aggregator: StatsAggregator,
        bus: Optional[EventBus] = None,
        *,
        max_alerts: int = MAX_ALERTS,
        queue_size: int = SUBSCRIBER_QUEUE,
    ):
        self.aggregator = aggregator
        self.queue_size = queue_size
        self.subscribers: Set[Subscription] = set()
        self.alert_history: Deque[Dict[str, Any]] = deque(maxlen=max_alerts)
        (bus or aggregator.bus).subscribe(self._on_event)

    # ----------------------------
    # Push
    # ----------------------------
    def _on_event(self, event: Event) -> None:
        data = to_jsonable(event.payload)
        if event.kind is EventKind.ALERT:
            self.alert_history.appendleft(data)
        self._deliver(event.kind.value, data)

    def broadcast(self, kind: str, payload: Any) -> None:
        self._deliver(kind, to_jsonable(payload))

    def _deliver(self, kind: str, data: Any) -> None:
        dead = []
        for sub in list(self.subscribers):
            try:
                sub.send(kind, data)
            except Exception:
                dead.append(sub)
        for sub in dead:
            self.subscribers.discard(sub)
        if dead:
            logger.debug("dropped %d subscriber(s) during %s broadcast", len(dead), kind)

    def subscribe(self) -> Subscription:
        sub = Subscription(maxsize=self.queue_size)
        sub.send(EventKind.STATS.value, self.aggregator.snapshot())
        self.subscribers.add(sub)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        sub.close()
        self.subscribers.discard(sub)

    def close(self) -> None:
        for sub in list(self.subscribers):
            sub.close()
        self.subscribers.clear()

    # ----------------------------
    # Pull
    # ----------------------------
    def stats(self) -> Dict[str, Any]:
        return self.aggregator.snapshot()

    def alerts(self) -> List[Dict[str, Any]]:
        return list(self.alert_history)

    def reset(self) -> None:
        self.aggregator.reset()
        self.alert_history.clear()
