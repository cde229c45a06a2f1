from logtide.events import EventBus, EventKind


def test_failing_handler_does_not_stop_delivery():
    bus = EventBus()
    seen = []

    def broken(event):
        raise RuntimeError("boom")

    bus.subscribe(broken)
    bus.subscribe(seen.append)
    bus.publish(EventKind.ENTRY, {"raw": "x"})

    assert len(seen) == 1
    assert seen[0].kind is EventKind.ENTRY
    assert seen[0].payload == {"raw": "x"}


def test_kind_filter_and_unsubscribe():
    bus = EventBus()
    alerts, everything = [], []
    bus.subscribe(alerts.append, kinds=[EventKind.ALERT])
    bus.subscribe(everything.append)

    bus.publish(EventKind.ENTRY)
    bus.publish(EventKind.ALERT, "a")
    assert [e.payload for e in alerts] == ["a"]
    assert len(everything) == 2

    bus.unsubscribe(everything.append)
    bus.publish(EventKind.ALERT, "b")
    assert len(everything) == 2
    assert len(alerts) == 2
