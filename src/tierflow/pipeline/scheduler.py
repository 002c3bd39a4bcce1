"""Per-tier scheduling unit.

A ``TierWorker`` exclusively owns one tier: its queues, load counter and agents.
Other components talk to it only through its inbox (new tasks, cancellations and
settled executions), so no tier state is mutated from outside its owner.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Protocol

from tierflow.embedding import Embedder
from tierflow.pipeline.errors import TaskExecutionError
from tierflow.pipeline.executors import ExecutorResult, StageExecutor
from tierflow.pipeline.feedback import PerformanceFeedback
from tierflow.pipeline.ledger import TaskLedger
from tierflow.pipeline.models import Agent, AgentStatus, Task, TaskStatus, Tier, TierStatus
from tierflow.pipeline.retry import RetryManager
from tierflow.pipeline.scoring import expected_duration_ms, select_best_agent, task_vector
from tierflow.storage.common import utc_now

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Settlement:
    """Executor outcome delivered back to the owning worker."""

    task_id: str
    agent_id: str
    result: ExecutorResult
    duration_ms: float


@dataclass(slots=True)
class TickSummary:
    """Counters for one scheduling pass."""

    assigned: int = 0
    completed: int = 0
    failed: int = 0
    retried: int = 0
    cancelled: int = 0

    def merge(self, other: TickSummary) -> None:
        self.assigned += other.assigned
        self.completed += other.completed
        self.failed += other.failed
        self.retried += other.retried
        self.cancelled += other.cancelled


SettleCallback = Callable[[Settlement], None]


class Dispatcher(Protocol):
    """Runs a stage executor and reports the settlement through ``on_settled``."""

    def submit(
        self,
        executor: StageExecutor,
        task: Task,
        agent_id: str,
        on_settled: SettleCallback,
    ) -> None:
        """Start executing ``task`` on behalf of ``agent_id``."""

    def shutdown(self) -> None:
        """Release dispatcher resources."""


class InlineDispatcher:
    """Executes synchronously inside the scheduling pass."""

    def submit(
        self,
        executor: StageExecutor,
        task: Task,
        agent_id: str,
        on_settled: SettleCallback,
    ) -> None:
        on_settled(run_executor(executor, task, agent_id))

    def shutdown(self) -> None:
        return None


class ThreadPoolDispatcher:
    """Bounded pool with one slot per agent; a busy agent is a real in-flight call."""

    def __init__(self, max_workers: int, *, thread_name_prefix: str = "tierflow") -> None:
        self._pool = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix=thread_name_prefix,
        )

    def submit(
        self,
        executor: StageExecutor,
        task: Task,
        agent_id: str,
        on_settled: SettleCallback,
    ) -> None:
        future = self._pool.submit(run_executor, executor, task, agent_id)

        def _deliver(done: Future[Settlement]) -> None:
            on_settled(done.result())

        future.add_done_callback(_deliver)

    def shutdown(self) -> None:
        self._pool.shutdown(wait=True)


def run_executor(executor: StageExecutor, task: Task, agent_id: str) -> Settlement:
    """Invoke a stage executor and normalize every outcome to a settlement."""

    started = time.perf_counter()
    try:
        result = executor.execute(task)
    except TaskExecutionError as error:
        result = ExecutorResult(status="failed", errors=[str(error)], retryable=error.retryable)
    except Exception as error:  # noqa: BLE001
        logger.exception("Executor raised for task %s", task.id)
        result = ExecutorResult(
            status="failed",
            errors=[f"{type(error).__name__}: {error}"],
            retryable=True,
        )
    duration_ms = (time.perf_counter() - started) * 1000.0
    return Settlement(task_id=task.id, agent_id=agent_id, result=result, duration_ms=duration_ms)


class TierWorker:
    """Scheduling loop for one tier."""

    def __init__(  # noqa: PLR0913
        self,
        tier: Tier,
        *,
        ledger: TaskLedger,
        embedder: Embedder,
        feedback: PerformanceFeedback,
        retry_manager: RetryManager,
        dispatcher: Dispatcher,
        time_ceiling_ms: float,
    ) -> None:
        self.tier = tier
        self.next_worker: TierWorker | None = None
        self._ledger = ledger
        self._embedder = embedder
        self._feedback = feedback
        self._retry_manager = retry_manager
        self._dispatcher = dispatcher
        self._time_ceiling_ms = time_ceiling_ms
        self._agents = {agent.id: agent for agent in tier.agents}
        self._inbox: queue.SimpleQueue[tuple[str, object]] = queue.SimpleQueue()

    def post_task(self, task_id: str) -> None:
        self._inbox.put(("task", task_id))

    def post_cancel(self, batch_id: str) -> None:
        self._inbox.put(("cancel", batch_id))

    def post_settlement(self, settlement: Settlement) -> None:
        self._inbox.put(("settled", settlement))

    def is_idle(self) -> bool:
        return self._inbox.empty() and not self.tier.input_queue and self.tier.current_load == 0

    def tick(self) -> TickSummary:
        """Drain the inbox, assign queued tasks to idle agents, drain again."""

        summary = TickSummary()
        self._drain_inbox(summary)
        self._schedule(summary)
        self._drain_inbox(summary)
        return summary

    def run_forever(self, stop_event: threading.Event, interval_seconds: float) -> None:
        logger.info("Tier worker %s started", self.tier.id)
        while not stop_event.is_set():
            self.tick()
            stop_event.wait(interval_seconds)
        logger.info("Tier worker %s stopped", self.tier.id)

    def _drain_inbox(self, summary: TickSummary) -> None:
        while True:
            with self._ledger.lock:
                try:
                    kind, body = self._inbox.get_nowait()
                except queue.Empty:
                    return
                if kind == "task":
                    self._accept(str(body), summary)
                elif kind == "cancel":
                    summary.cancelled += self._cancel_batch(str(body))
                elif isinstance(body, Settlement):
                    self._settle(body, summary)

    def _accept(self, task_id: str, summary: TickSummary) -> None:
        task = self._ledger.get_task(task_id)
        if task is None:
            return
        if self._ledger.is_cancelled(task_id):
            self._ledger.mark_cancelled(task, reason="batch cancelled before enqueue")
            summary.cancelled += 1
            return
        self.tier.input_queue.append(task_id)

    def _schedule(self, summary: TickSummary) -> None:
        tier = self.tier
        if not tier.input_queue:
            tier.status = TierStatus.ACTIVE
            return

        idle = tier.idle_agents()
        free_slots = tier.capacity - tier.current_load
        if not idle or free_slots <= 0:
            tier.status = TierStatus.OVERLOADED
            return
        tier.status = TierStatus.ACTIVE

        for _ in range(min(len(idle), len(tier.input_queue), free_slots)):
            with self._ledger.lock:
                assignment = self._assign_next()
            if assignment is None:
                continue
            task, agent = assignment
            summary.assigned += 1
            self._dispatcher.submit(tier.executor, task, agent.id, self.post_settlement)

    def _assign_next(self) -> tuple[Task, Agent] | None:
        tier = self.tier
        task = self._ledger.get_task(tier.input_queue.popleft())
        if task is None:
            return None
        selected = select_best_agent(
            tier.idle_agents(),
            task_vector(task, self._embedder),
            time_ceiling_ms=self._time_ceiling_ms,
        )
        if selected is None:
            tier.input_queue.appendleft(task.id)
            return None
        agent, score = selected

        agent.status = AgentStatus.PROCESSING
        agent.current_task_id = task.id
        tier.current_load += 1
        tier.peak_load = max(tier.peak_load, tier.current_load)

        processing = task.processing
        processing.status = TaskStatus.PROCESSING
        processing.assigned_agent = agent.id
        processing.start_time = utc_now()
        processing.end_time = None
        processing.expected_duration_ms = expected_duration_ms(agent, task)
        self._ledger.mark_started(task)
        self._ledger.record(
            task.id,
            "assigned",
            tier=tier.id,
            agent=agent.id,
            score=round(score, 4),
        )
        logger.debug("Assigned task %s to %s (score %.4f)", task.id, agent.id, score)
        return task, agent

    def _settle(self, settlement: Settlement, summary: TickSummary) -> None:
        agent = self._agents[settlement.agent_id]
        agent.status = AgentStatus.IDLE
        agent.current_task_id = None
        self.tier.current_load -= 1

        task = self._ledger.get_task(settlement.task_id)
        if task is None:
            return
        result = settlement.result
        task.processing.end_time = utc_now()
        task.processing.duration_ms = settlement.duration_ms
        self._feedback.on_task_settled(agent, success=result.ok, duration_ms=settlement.duration_ms)

        if task.status == TaskStatus.CANCELLED or self._ledger.is_cancelled(task.id):
            if task.status != TaskStatus.CANCELLED:
                self._ledger.mark_cancelled(task, reason="batch cancelled while in flight")
                summary.cancelled += 1
            return

        if result.ok:
            task.processing.status = TaskStatus.COMPLETED
            task.processing.result = result.data
            task.processing.error = None
            self._ledger.record(
                task.id,
                "completed",
                tier=self.tier.id,
                agent=agent.id,
                duration_ms=round(settlement.duration_ms, 3),
            )
            summary.completed += 1
            self.tier.output_queue.append(task.id)
            self._flush_output()
            return

        error = TaskExecutionError(
            "; ".join(result.errors) or "stage reported failure",
            retryable=result.retryable,
        )
        self._ledger.record(task.id, "failed", tier=self.tier.id, agent=agent.id, error=str(error))
        outcome = self._retry_manager.on_task_failure(task, error, requeue=self._requeue)
        if outcome.retried:
            summary.retried += 1
        if outcome.failed:
            summary.failed += 1
            self._ledger.resolve_chain(task, failed=True)

    def _requeue(self, task: Task) -> None:
        self.tier.input_queue.append(task.id)

    def _flush_output(self) -> None:
        while self.tier.output_queue:
            task = self._ledger.get_task(self.tier.output_queue.popleft())
            if task is None:
                continue
            if self.next_worker is None:
                self._ledger.resolve_chain(task, failed=False)
                continue
            successor = self._ledger.create_successor(task, target_tier=self.next_worker.tier.id)
            self._ledger.retire(task.id)
            self.next_worker.post_task(successor.id)

    def _cancel_batch(self, batch_id: str) -> int:
        cancelled = 0
        kept = []
        for task_id in self.tier.input_queue:
            batch = self._ledger.batch_for(task_id)
            task = self._ledger.get_task(task_id)
            if batch is not None and batch.id == batch_id and task is not None:
                self._ledger.mark_cancelled(task, reason="batch cancelled while queued")
                cancelled += 1
            else:
                kept.append(task_id)
        self.tier.input_queue.clear()
        self.tier.input_queue.extend(kept)

        for agent in self.tier.agents:
            if agent.current_task_id is None:
                continue
            task = self._ledger.get_task(agent.current_task_id)
            batch = self._ledger.batch_for(agent.current_task_id)
            if task is not None and batch is not None and batch.id == batch_id:
                self._ledger.mark_cancelled(task, reason="batch cancelled while in flight")
                cancelled += 1
        return cancelled
