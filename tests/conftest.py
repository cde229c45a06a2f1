from typing import List

import pytest

from logtide.aggregator import StatsAggregator
from logtide.events import Event, EventBus, EventKind
from logtide.models import AlertPattern

SCENARIO = [
    "2024-01-15 10:00:00 [INFO] start",
    '192.168.1.1 - - [15/Jan/2024:10:00:01 +0000] "GET /api HTTP/1.1" 500 120 "-" "-"',
    "not a recognized line at all",
]


class Recorder:
    def __init__(self, bus: EventBus):
        self.events: List[Event] = []
        bus.subscribe(self.events.append)

    def of(self, kind: EventKind) -> List[Event]:
        return [e for e in self.events if e.kind is kind]


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def recorder(bus):
    return Recorder(bus)


@pytest.fixture
def server_errors():
    return AlertPattern(name="5xx", status_range=(500, 599))


@pytest.fixture
def aggregator(bus, server_errors):
    return StatsAggregator([server_errors], bus)
