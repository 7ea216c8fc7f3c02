"""OperationRegistry lifecycle rules and the JobRunner submit/poll surface."""

import asyncio
from datetime import timedelta

import pytest

from obscura.errors import UnknownOperationError, UpstreamGenerationError
from obscura.operations import JobRunner, OperationRegistry, describe_error

from tests.helpers import FixedClock, ist


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(ist(2024, 3, 1, 10, 0))


@pytest.fixture
def registry(clock) -> OperationRegistry:
    return OperationRegistry(clock=clock)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

def test_register_creates_queued_entry(registry):
    op_id = registry.register("case")
    op = registry.get(op_id)
    assert op.status == "queued"
    assert op.kind == "case"
    assert op.progress_percent == 0
    assert registry.list_ids() == [op_id]


def test_ids_are_unique(registry):
    assert len({registry.register("case") for _ in range(50)}) == 50


def test_progress_is_clamped_and_monotonic(registry):
    op_id = registry.register("case")
    assert registry.mark_processing(op_id, 40, "Working")
    registry.mark_processing(op_id, 20)
    assert registry.get(op_id).progress_percent == 40
    registry.mark_processing(op_id, 250)
    op = registry.get(op_id)
    assert op.progress_percent == 100
    assert op.status_message == "Working"


def test_completed_is_terminal(registry, clock):
    op_id = registry.register("case")
    registry.mark_processing(op_id, 50)
    clock.advance(seconds=30)
    assert registry.mark_completed(op_id, {"case_id": "abc"})

    op = registry.get(op_id)
    assert op.status == "completed"
    assert op.result == {"case_id": "abc"}
    assert op.completed_at == clock.now

    assert registry.mark_failed(op_id, "boom") is False
    assert registry.mark_completed(op_id, {"case_id": "other"}) is False
    assert registry.mark_processing(op_id, 10) is False
    assert registry.get(op_id).result == {"case_id": "abc"}


def test_failed_is_terminal(registry):
    op_id = registry.register("case")
    registry.mark_processing(op_id)
    assert registry.mark_failed(op_id, "boom")
    assert registry.mark_completed(op_id, {}) is False
    assert registry.get(op_id).error == "boom"


def test_queued_cannot_jump_to_terminal(registry):
    op_id = registry.register("case")
    assert registry.mark_completed(op_id, {}) is False
    assert registry.get(op_id).status == "queued"


def test_unknown_ids_are_ignored(registry):
    assert registry.mark_processing("missing") is False
    assert registry.mark_completed("missing", {}) is False
    assert registry.get("missing") is None


def test_get_returns_a_copy(registry):
    op_id = registry.register("case")
    registry.mark_processing(op_id)
    registry.mark_completed(op_id, {"warnings": []})
    registry.get(op_id).result["warnings"].append("tampered")
    assert registry.get(op_id).result == {"warnings": []}


def test_evict_older_than(registry, clock):
    old = registry.register("case")
    registry.mark_processing(old)
    registry.mark_completed(old, None)
    clock.advance(minutes=90)
    fresh = registry.register("case")
    registry.mark_processing(fresh)
    registry.mark_failed(fresh, "boom")
    assert registry.evict_older_than(timedelta(hours=1)) == 1
    assert registry.get(old) is None
    assert registry.get(fresh) is not None


def test_eviction_keeps_in_flight_operations(registry, clock):
    queued = registry.register("case")
    running = registry.register("case")
    registry.mark_processing(running, 40, "Rendering map")
    clock.advance(hours=5)
    assert registry.evict_older_than(timedelta(hours=1)) == 0

    registry.mark_completed(running, {"case_id": "c1"})
    assert registry.get(running).status == "completed"
    assert registry.get(queued).status == "queued"


def test_describe_error():
    assert describe_error(UpstreamGenerationError("backend down")) == "backend down"
    assert describe_error(KeyError("x")) == "KeyError: 'x'"


# ---------------------------------------------------------------------------
# JobRunner
# ---------------------------------------------------------------------------

async def test_runner_completes_job(registry):
    runner = JobRunner(registry)

    async def job(report):
        report(50, "Halfway")
        return {"answer": 42}

    op_id = runner.submit("case", job)
    op = await runner.wait(op_id)
    assert op.status == "completed"
    assert op.result == {"answer": 42}
    assert op.status_message == "Completed"


async def test_runner_marks_failure(registry):
    runner = JobRunner(registry)

    async def job(report):
        raise UpstreamGenerationError("Generator backend returned HTTP 500 (story.victim)")

    op = await runner.wait(runner.submit("case", job))
    assert op.status == "failed"
    assert op.error == "Generator backend returned HTTP 500 (story.victim)"


async def test_poll_sees_progress_while_running(registry):
    runner = JobRunner(registry)
    gate = asyncio.Event()

    async def job(report):
        report(30, "Generating story")
        await gate.wait()
        return None

    op_id = runner.submit("case", job)
    await asyncio.sleep(0)
    op = runner.poll(op_id)
    assert op.status == "processing"
    assert op.progress_percent == 30
    gate.set()
    assert (await runner.wait(op_id)).status == "completed"


async def test_poll_unknown_operation(registry):
    runner = JobRunner(registry)
    with pytest.raises(UnknownOperationError) as exc:
        runner.poll("case_missing")
    assert exc.value.status_code == 404


async def test_submit_evicts_stale_operations(registry, clock):
    runner = JobRunner(registry, max_age=timedelta(hours=1))

    async def job(report):
        return None

    first = runner.submit("case", job)
    await runner.wait(first)
    clock.advance(hours=2)
    second = runner.submit("case", job)
    assert registry.get(first) is None
    await runner.drain()
    assert runner.poll(second).status == "completed"
