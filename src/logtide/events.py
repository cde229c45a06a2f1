from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, FrozenSet, Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    ENTRY = "entry"
    STATS = "stats"
    ALERT = "alert"
    COMPLETE = "complete"
    ERROR = "error"
    RESET = "reset"


@dataclass(frozen=True)
class Event:
    kind: EventKind
    payload: Any = None


Handler = Callable[[Event], None]


class EventBus:
    """
    Synchronous fan-out of analyzer events to registered handlers.
    A handler that raises is logged and skipped; the rest still run.
    """

    def __init__(self):
        self._handlers: List[Tuple[Handler, Optional[FrozenSet[EventKind]]]] = []
        self._lock = threading.Lock()

    def subscribe(self, handler: Handler, kinds: Optional[Iterable[EventKind]] = None) -> None:
        with self._lock:
            self._handlers.append((handler, frozenset(kinds) if kinds is not None else None))

    def unsubscribe(self, handler: Handler) -> None:
        with self._lock:
            self._handlers = [(h, k) for h, k in self._handlers if h != handler]

    def publish(self, kind: EventKind, payload: Any = None) -> None:
        event = Event(kind=kind, payload=payload)
        with self._lock:
            handlers = list(self._handlers)
        for handler, kinds in handlers:
            if kinds is not None and kind not in kinds:
                continue
            try:
                handler(event)
            except Exception:
                logger.exception("event handler %r failed on %s", handler, kind.value)
