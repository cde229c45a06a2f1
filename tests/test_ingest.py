import asyncio

import pytest

from logtide.errors import IngestionError
from logtide.events import EventKind
from logtide.ingest import IngestionRun, RunState, body_chunks, file_chunks, tail_chunks

from conftest import SCENARIO


async def _chunks(*parts):
    for part in parts:
        yield part


def test_run_completes_with_final_snapshot(aggregator, recorder):
    text = "\n".join(SCENARIO)
    run = IngestionRun(aggregator, name="scenario")
    assert run.state is RunState.IDLE

    snapshot = asyncio.run(run.run(_chunks(text[:10], text[10:50], text[50:])))

    assert run.state is RunState.COMPLETE
    assert run.lines == 3
    assert snapshot["total_lines"] == 3
    complete = recorder.of(EventKind.COMPLETE)
    assert len(complete) == 1
    assert complete[0].payload["total_lines"] == 3
    assert recorder.of(EventKind.ERROR) == []


def test_runs_are_single_use(aggregator):
    run = IngestionRun(aggregator)
    asyncio.run(run.run(_chunks("a\n")))
    with pytest.raises(RuntimeError):
        asyncio.run(run.run(_chunks("b\n")))


def test_source_failure_keeps_partial_stats(aggregator, recorder):
    async def broken():
        yield SCENARIO[0] + "\n" + SCENARIO[1] + "\n"
        raise OSError("disk went away")

    run = IngestionRun(aggregator, name="broken")
    with pytest.raises(IngestionError) as exc:
        asyncio.run(run.run(broken()))

    assert exc.value.source == "broken"
    assert run.state is RunState.FAILED
    assert run.error == "disk went away"
    errors = recorder.of(EventKind.ERROR)
    assert len(errors) == 1
    assert errors[0].payload == {"message": "disk went away", "source": "broken"}
    assert recorder.of(EventKind.COMPLETE) == []
    assert aggregator.snapshot()["total_lines"] == 2


def test_cancel_from_handler_closes_source(aggregator, recorder, bus):
    closed = []

    async def endless():
        try:
            i = 0
            while True:
                yield f"line {i}\n"
                i += 1
        finally:
            closed.append(True)

    run = IngestionRun(aggregator)

    def stop_after_three(event):
        if aggregator.total_lines >= 3:
            run.cancel()

    bus.subscribe(stop_after_three, kinds=[EventKind.ENTRY])
    snapshot = asyncio.run(run.run(endless()))

    assert run.state is RunState.CANCELLED
    assert snapshot["total_lines"] == 3
    assert closed == [True]
    errors = recorder.of(EventKind.ERROR)
    assert len(errors) == 1
    assert errors[0].payload["cancelled"] is True


def test_cancel_from_another_task(aggregator):
    closed = []

    async def stalls():
        try:
            yield "first\n"
            await asyncio.Event().wait()
            yield "never\n"
        finally:
            closed.append(True)

    async def scenario():
        run = IngestionRun(aggregator)
        task = asyncio.create_task(run.run(stalls()))
        for _ in range(100):
            await asyncio.sleep(0)
            if run.lines:
                break
        run.cancel()
        snapshot = await task
        return run, snapshot

    run, snapshot = asyncio.run(scenario())
    assert run.state is RunState.CANCELLED
    assert snapshot["total_lines"] == 1
    assert closed == [True]


def test_cancel_before_start_ingests_nothing(aggregator, recorder):
    run = IngestionRun(aggregator)
    run.cancel()
    snapshot = asyncio.run(run.run(_chunks("a\n", "b\n", "c\n")))

    assert run.state is RunState.CANCELLED
    assert run.lines == 0
    assert snapshot["total_lines"] == 0
    assert recorder.of(EventKind.COMPLETE) == []
    assert recorder.of(EventKind.ERROR)[0].payload["cancelled"] is True


def test_cancel_before_start_with_empty_source(aggregator):
    run = IngestionRun(aggregator)
    run.cancel()
    asyncio.run(run.run(_chunks()))
    assert run.state is RunState.CANCELLED


def test_bad_json_number_does_not_fail_the_run(aggregator, recorder):
    text = "2024-01-15 10:00:00 [INFO] a\n" '{"status": 1e999}\n' "2024-01-15 10:00:01 [INFO] b\n"
    snapshot = asyncio.run(IngestionRun(aggregator).run(_chunks(text)))

    assert snapshot["total_lines"] == 3
    assert snapshot["levels"] == {"INFO": 2}
    assert recorder.of(EventKind.ERROR) == []
    assert len(recorder.of(EventKind.COMPLETE)) == 1


def test_task_cancellation_propagates(aggregator):
    async def stalls():
        yield "first\n"
        await asyncio.Event().wait()

    async def scenario():
        run = IngestionRun(aggregator)
        task = asyncio.create_task(run.run(stalls()))
        for _ in range(100):
            await asyncio.sleep(0)
            if run.lines:
                break
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        return run

    run = asyncio.run(scenario())
    assert run.state is RunState.CANCELLED


def test_file_source_without_trailing_newline(tmp_path, aggregator):
    path = tmp_path / "app.log"
    path.write_text("\n".join(SCENARIO), encoding="utf-8")

    run = IngestionRun(aggregator, name=str(path))
    snapshot = asyncio.run(run.run(file_chunks(str(path), chunk_size=7)))

    assert snapshot["total_lines"] == 3
    assert snapshot["recent_logs"][0]["unparsed"] is True


def test_missing_file_fails_the_run(tmp_path, aggregator):
    run = IngestionRun(aggregator)
    with pytest.raises(IngestionError):
        asyncio.run(run.run(file_chunks(str(tmp_path / "nope.log"))))
    assert run.state is RunState.FAILED


def test_body_chunks_decode_split_characters():
    data = "café ☕\nnaïve\n".encode("utf-8")

    async def stream():
        for i in range(len(data)):
            yield data[i:i + 1]

    async def collect():
        return "".join([c async for c in body_chunks(stream())])

    assert asyncio.run(collect()) == "café ☕\nnaïve\n"


def test_tail_follows_appended_lines(tmp_path, aggregator):
    path = tmp_path / "live.log"
    path.write_text("2024-01-15 10:00:00 [INFO] one\n", encoding="utf-8")

    async def scenario():
        run = IngestionRun(aggregator, name="tail")
        task = asyncio.create_task(run.run(tail_chunks(str(path), from_start=True, poll_interval=0.02)))
        await asyncio.sleep(0.1)
        with open(path, "a", encoding="utf-8") as f:
            f.write("2024-01-15 10:00:01 [ERROR] two\n")
        for _ in range(250):
            if aggregator.total_lines >= 2:
                break
            await asyncio.sleep(0.02)
        run.cancel()
        await task
        return run

    run = asyncio.run(scenario())
    assert run.state is RunState.CANCELLED
    snap = aggregator.snapshot()
    assert snap["total_lines"] == 2
    assert snap["levels"] == {"INFO": 1, "ERROR": 1}
