"""Pipeline service: batch submission, driving the tier workers, status views."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from uuid import uuid4

from tierflow.chunking.engine import ChunkingEngine
from tierflow.chunking.models import ChunkingMode, SourceMetadata
from tierflow.config import PipelineSettings
from tierflow.embedding import Embedder
from tierflow.pipeline.errors import TierConfigurationError, UnknownBatchError
from tierflow.pipeline.feedback import PerformanceFeedback
from tierflow.pipeline.ledger import LedgerSnapshot, TaskLedger
from tierflow.pipeline.models import (
    AgentStatus,
    BatchStatus,
    BatchStatusView,
    FileBatch,
    FileSpec,
    PipelineStatusView,
    Task,
    TaskMetadata,
    Tier,
    TierStatus,
    TierStatusView,
)
from tierflow.pipeline.progress import BatchProgressTracker
from tierflow.pipeline.registry import TierRegistry
from tierflow.pipeline.retry import RetryManager
from tierflow.pipeline.scheduler import (
    Dispatcher,
    InlineDispatcher,
    ThreadPoolDispatcher,
    TickSummary,
    TierWorker,
)
from tierflow.storage.common import utc_now

logger = logging.getLogger(__name__)

ORIGIN_TASK_TYPE = "batch_processing"
HEALTH_LOAD_THRESHOLD = 0.9
HEALTH_LOAD_PENALTY = 10
HEALTH_OVERLOAD_PENALTY = 20

ContentReader = Callable[[FileSpec], str]


@dataclass(slots=True)
class PipelineRunSummary:
    """Aggregate counters for a driven run."""

    ticks: int = 0
    idle: bool = False
    totals: TickSummary = field(default_factory=TickSummary)


class TaskPipeline:
    """Owns the tier workers of one pipeline instance and exposes the boundary operations."""

    def __init__(
        self,
        registry: TierRegistry,
        *,
        settings: PipelineSettings | None = None,
        chunking_engine: ChunkingEngine | None = None,
        embedder: Embedder | None = None,
        feedback: PerformanceFeedback | None = None,
    ) -> None:
        self.settings = settings or PipelineSettings()
        self.registry = registry
        self.chunking_engine = chunking_engine
        self.ledger = TaskLedger(
            chunk_listener=chunking_engine.set_status if chunking_engine else None,
        )
        tiers = registry.tiers()
        if not tiers:
            raise TierConfigurationError("Pipeline needs at least one registered tier.")
        for tier in tiers:
            if not tier.agents:
                raise TierConfigurationError(f"Tier {tier.id!r} has no agents.")

        self.tracker = BatchProgressTracker(self.ledger, tier_count=len(tiers))
        self._embedder = embedder or registry.embedder
        self._feedback = feedback or PerformanceFeedback()
        self._retry_manager = RetryManager(self.ledger)
        self._dispatchers: list[Dispatcher] = []
        self.workers = [self._build_worker(tier) for tier in tiers]
        for current, following in zip(self.workers, self.workers[1:], strict=False):
            current.next_worker = following
        self._threads: list[threading.Thread] = []
        self._stop_event = threading.Event()

    def submit_batch(
        self,
        files: Sequence[FileSpec],
        *,
        contents: Mapping[str, str] | None = None,
        reader: ContentReader | None = None,
        strategy: ChunkingMode | str | None = None,
    ) -> str:
        """Register a batch and enqueue its origin tasks into the first tier.

        With a chunking engine and file contents available, every chunk becomes its own
        origin task; otherwise each file does.
        """

        if not files:
            raise ValueError("A batch needs at least one file.")

        batch_id = str(uuid4())
        now = utc_now()
        origin_tasks: list[Task] = []
        for spec in files:
            content = self._read_content(spec, contents=contents, reader=reader)
            if content is None or self.chunking_engine is None:
                origin_tasks.append(self._origin_task(batch_id, {"file": spec.to_payload()}))
                continue
            chunks = self.chunking_engine.chunk(
                content,
                SourceMetadata(
                    file_id=spec.id,
                    content_type=spec.type,
                    size=spec.size,
                    path=spec.path,
                ),
                strategy,
            )
            if not chunks:
                origin_tasks.append(self._origin_task(batch_id, {"file": spec.to_payload()}))
            for chunk in chunks:
                origin_tasks.append(
                    self._origin_task(
                        batch_id,
                        {"file": spec.to_payload(), "chunk": chunk.to_payload()},
                        chunk_id=chunk.id,
                    ),
                )

        batch = FileBatch(
            id=batch_id,
            files=list(files),
            created_at=now,
            estimated_processing_seconds=self._estimate_seconds(files),
        )
        first_worker = self.workers[0]
        with self.ledger.lock:
            self.ledger.add_batch(batch, origin_tasks)
            for task in origin_tasks:
                first_worker.post_task(task.id)
        logger.info(
            "Submitted batch %s: %d file(s), %d origin task(s)",
            batch_id,
            len(files),
            len(origin_tasks),
        )
        return batch_id

    def cancel_batch(self, batch_id: str) -> BatchStatus:
        """Cancel queued and in-flight work of one batch; other batches are untouched."""

        batch = self.ledger.cancel_batch(batch_id)
        if batch is None:
            raise UnknownBatchError(batch_id)
        if batch.status == BatchStatus.CANCELLED:
            for worker in self.workers:
                worker.post_cancel(batch_id)
        return batch.status

    def get_pipeline_status(self) -> PipelineStatusView:
        with self.ledger.lock:
            tiers = [_tier_view(worker) for worker in self.workers]
            batches = self.ledger.batches()
            total_tasks = self.ledger.active_count()
        health = 100
        for view in tiers:
            if view.current_load / view.capacity > HEALTH_LOAD_THRESHOLD:
                health -= HEALTH_LOAD_PENALTY
            if view.status == TierStatus.OVERLOADED:
                health -= HEALTH_OVERLOAD_PENALTY
        return PipelineStatusView(
            tiers=tiers,
            total_agents=sum(view.total_agents for view in tiers),
            total_tasks=total_tasks,
            active_batches=sum(1 for batch in batches if not batch.is_terminal),
            completed_batches=sum(1 for batch in batches if batch.status == BatchStatus.COMPLETED),
            system_health=max(0, health),
        )

    def get_batch_status(self, batch_id: str) -> BatchStatusView | None:
        with self.ledger.lock:
            batch = self.ledger.get_batch(batch_id)
            if batch is None:
                return None
            return BatchStatusView(
                batch_id=batch.id,
                status=batch.status,
                files=len(batch.files),
                chains=len(batch.origin_task_ids),
                resolved_chains=len(batch.resolved_chains),
                progress=self.tracker.progress(batch_id),
                created_at=batch.created_at,
                estimated_completion=self.tracker.estimated_completion(batch_id),
                failed_task_ids=list(batch.failed_task_ids),
            )

    def tick(self) -> TickSummary:
        """One cooperative pass over every tier, in level order."""

        if self._threads:
            raise RuntimeError("Pipeline workers are running on threads; tick() is unavailable.")
        summary = TickSummary()
        for worker in self.workers:
            summary.merge(worker.tick())
        return summary

    def is_idle(self) -> bool:
        with self.ledger.lock:
            return all(worker.is_idle() for worker in self.workers)

    def run_until_idle(
        self,
        *,
        max_ticks: int | None = None,
        timeout_seconds: float | None = None,
    ) -> PipelineRunSummary:
        """Drive the pipeline until no tier has queued, pending or in-flight work."""

        run = PipelineRunSummary()
        deadline = None if timeout_seconds is None else time.monotonic() + timeout_seconds
        while True:
            if self.is_idle():
                run.idle = True
                return run
            if max_ticks is not None and run.ticks >= max_ticks:
                return run
            if deadline is not None and time.monotonic() >= deadline:
                return run
            if self._threads:
                time.sleep(self.settings.tick_interval_seconds)
            else:
                run.totals.merge(self.tick())
            run.ticks += 1

    def start(self) -> None:
        """Run every tier worker on its own thread."""

        if self._threads:
            return
        if not self.settings.threaded:
            raise RuntimeError("Threaded mode is disabled; set PipelineSettings.threaded.")
        self._stop_event.clear()
        for worker in self.workers:
            thread = threading.Thread(
                target=worker.run_forever,
                args=(self._stop_event, self.settings.tick_interval_seconds),
                name=f"tierflow-{worker.tier.id}",
                daemon=True,
            )
            self._threads.append(thread)
            thread.start()

    def stop(self, timeout_seconds: float = 5.0) -> None:
        self._stop_event.set()
        for thread in self._threads:
            thread.join(timeout=timeout_seconds)
        self._threads.clear()
        for dispatcher in self._dispatchers:
            dispatcher.shutdown()

    def snapshot(self) -> LedgerSnapshot:
        return self.ledger.snapshot()

    def _build_worker(self, tier: Tier) -> TierWorker:
        dispatcher: Dispatcher
        if self.settings.threaded:
            dispatcher = ThreadPoolDispatcher(
                max_workers=min(len(tier.agents), tier.capacity),
                thread_name_prefix=f"tierflow-{tier.id}",
            )
        else:
            dispatcher = InlineDispatcher()
        self._dispatchers.append(dispatcher)
        for agent in tier.agents:
            agent.status = AgentStatus.IDLE
        return TierWorker(
            tier,
            ledger=self.ledger,
            embedder=self._embedder,
            feedback=self._feedback,
            retry_manager=self._retry_manager,
            dispatcher=dispatcher,
            time_ceiling_ms=self.settings.processing_time_ceiling_ms,
        )

    def _origin_task(
        self,
        batch_id: str,
        payload: dict[str, object],
        *,
        chunk_id: str | None = None,
    ) -> Task:
        return Task(
            id=str(uuid4()),
            type=ORIGIN_TASK_TYPE,
            priority=1,
            payload=payload,
            metadata=TaskMetadata(
                source_tier=None,
                target_tier=self.workers[0].tier.id,
                created_at=utc_now(),
                max_retries=self.settings.max_retries,
                batch_id=batch_id,
            ),
            chunk_id=chunk_id,
        )

    def _estimate_seconds(self, files: Sequence[FileSpec]) -> float:
        total_bytes = sum(max(0, spec.size) for spec in files)
        rate = self.settings.bytes_per_second
        return sum(total_bytes / (rate * worker.tier.capacity) for worker in self.workers)

    @staticmethod
    def _read_content(
        spec: FileSpec,
        *,
        contents: Mapping[str, str] | None,
        reader: ContentReader | None,
    ) -> str | None:
        if contents is not None and spec.id in contents:
            return contents[spec.id]
        if reader is not None:
            return reader(spec)
        return None


def _tier_view(worker: TierWorker) -> TierStatusView:
    tier = worker.tier
    active = sum(1 for agent in tier.agents if agent.status == AgentStatus.PROCESSING)
    return TierStatusView(
        id=tier.id,
        name=tier.name,
        level=tier.level,
        status=tier.status,
        capacity=tier.capacity,
        current_load=tier.current_load,
        input_queue_size=len(tier.input_queue),
        output_queue_size=len(tier.output_queue),
        total_agents=len(tier.agents),
        active_agents=active,
        idle_agents=len(tier.agents) - active,
    )
