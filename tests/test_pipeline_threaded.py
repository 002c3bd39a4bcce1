from __future__ import annotations

import threading
import time
from collections.abc import Callable

import allure
import pytest

from tierflow.config import PipelineSettings
from tierflow.pipeline.executors import ExecutorResult
from tierflow.pipeline.models import BatchStatus, TaskStatus, TierStatus
from tierflow.pipeline.service import TaskPipeline

pytestmark = [
    allure.epic("Pipeline"),
    allure.feature("Threaded Workers"),
]

_THREADED = PipelineSettings(threaded=True, tick_interval_seconds=0.01)


class _GateExecutor:
    """Blocks every call until ``release`` is set."""

    def __init__(self) -> None:
        self.started = threading.Event()
        self.release = threading.Event()

    def execute(self, task) -> ExecutorResult:
        self.started.set()
        if not self.release.wait(timeout=5):
            return ExecutorResult(status="failed", errors=["gate never opened"], retryable=False)
        return ExecutorResult(status="completed", data=task.payload)


def _wait_for(condition: Callable[[], bool], timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(0.005)
    return False


def test_threaded_run_completes_batch(make_registry, make_files) -> None:
    pipeline = TaskPipeline(
        make_registry([("reader", 2, 2), ("parser", 3, 3), ("writer", 1, 1)]),
        settings=_THREADED,
    )
    batch_id = pipeline.submit_batch(make_files("a", "b", "c", "d", "e"))

    pipeline.start()
    try:
        with pytest.raises(RuntimeError, match="running on threads"):
            pipeline.tick()
        run = pipeline.run_until_idle(timeout_seconds=10)
    finally:
        pipeline.stop()

    assert run.idle is True
    assert pipeline.get_batch_status(batch_id).status == BatchStatus.COMPLETED
    for tier in pipeline.registry.tiers():
        assert 1 <= tier.peak_load <= tier.capacity
        assert tier.current_load == 0


def test_start_requires_threaded_settings(make_registry) -> None:
    pipeline = TaskPipeline(make_registry([("reader", 1, 1)]))

    with pytest.raises(RuntimeError, match="Threaded mode is disabled"):
        pipeline.start()


def test_in_flight_load_lowers_system_health(make_registry, make_files) -> None:
    gate = _GateExecutor()
    pipeline = TaskPipeline(
        make_registry([("reader", 1, 1)], executors={"reader": gate}),
        settings=_THREADED,
    )
    batch_id = pipeline.submit_batch(make_files("a", "b"))

    pipeline.start()
    try:
        assert gate.started.wait(timeout=5)
        assert _wait_for(
            lambda: pipeline.get_pipeline_status().tiers[0].status == TierStatus.OVERLOADED,
        )
        status = pipeline.get_pipeline_status()
        assert status.tiers[0].current_load == 1
        assert status.system_health == 70
    finally:
        gate.release.set()
        run = pipeline.run_until_idle(timeout_seconds=5)
        pipeline.stop()

    assert run.idle is True
    assert pipeline.get_batch_status(batch_id).status == BatchStatus.COMPLETED


def test_cancel_stops_in_flight_task_from_routing(make_registry, make_files) -> None:
    gate = _GateExecutor()
    pipeline = TaskPipeline(
        make_registry([("reader", 1, 1), ("writer", 1, 1)], executors={"reader": gate}),
        settings=_THREADED,
    )
    batch_id = pipeline.submit_batch(make_files("a"))

    pipeline.start()
    try:
        assert gate.started.wait(timeout=5)
        assert pipeline.cancel_batch(batch_id) == BatchStatus.CANCELLED
        gate.release.set()
        run = pipeline.run_until_idle(timeout_seconds=5)
    finally:
        gate.release.set()
        pipeline.stop()

    assert run.idle is True
    (task,) = pipeline.ledger.tasks()
    assert task.status == TaskStatus.CANCELLED
    assert pipeline.get_batch_status(batch_id).status == BatchStatus.CANCELLED
    assert "cancelled" in [event.event_type for event in pipeline.ledger.events_for(task.id)]
