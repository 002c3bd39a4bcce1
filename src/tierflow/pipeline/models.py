"""Domain models for tiers, agents, tasks and batches."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from tierflow.pipeline.executors import StageExecutor


class TierStatus(str, Enum):
    """Backpressure state derived by the tier's scheduling unit."""

    ACTIVE = "active"
    OVERLOADED = "overloaded"


class AgentStatus(str, Enum):
    IDLE = "idle"
    PROCESSING = "processing"
    ERROR = "error"


class TaskStatus(str, Enum):
    """Task lifecycle states."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class BatchStatus(str, Enum):
    """Batch lifecycle states."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    PARTIALLY_FAILED = "partially_failed"
    CANCELLED = "cancelled"


TERMINAL_BATCH_STATUSES = frozenset(
    {BatchStatus.COMPLETED, BatchStatus.PARTIALLY_FAILED, BatchStatus.CANCELLED},
)


@dataclass(slots=True, frozen=True)
class FileSpec:
    """Input file descriptor for batch submission."""

    id: str
    path: str
    size: int
    type: str

    def to_payload(self) -> dict[str, Any]:
        return {"id": self.id, "path": self.path, "size": self.size, "type": self.type}


@dataclass(slots=True)
class AgentPerformance:
    """Live statistics mutated only by performance feedback."""

    success_rate: float = 0.9
    avg_processing_time_ms: float = 1_000.0
    quality_score: float = 0.8
    tasks_completed: int = 0
    tasks_failed: int = 0


@dataclass(slots=True)
class Agent:
    """Worker descriptor; the specialization vector is fixed at construction."""

    id: str
    tier_id: str
    vector: tuple[float, ...]
    performance: AgentPerformance = field(default_factory=AgentPerformance)
    status: AgentStatus = AgentStatus.IDLE
    current_task_id: str | None = None


@dataclass(slots=True)
class Tier:
    """Ordered processing stage; queues and load are owned by its scheduling unit."""

    id: str
    name: str
    level: int
    capacity: int
    keywords: tuple[str, ...]
    executor: StageExecutor
    agents: list[Agent] = field(default_factory=list)
    status: TierStatus = TierStatus.ACTIVE
    current_load: int = 0
    peak_load: int = 0
    input_queue: deque[str] = field(default_factory=deque)
    output_queue: deque[str] = field(default_factory=deque)

    def idle_agents(self) -> list[Agent]:
        return [agent for agent in self.agents if agent.status == AgentStatus.IDLE]


@dataclass(slots=True)
class TaskMetadata:
    """Routing metadata; ``batch_id`` is only set on a chain's origin task."""

    source_tier: str | None
    target_tier: str
    created_at: datetime
    max_retries: int
    retry_count: int = 0
    batch_id: str | None = None


@dataclass(slots=True)
class TaskProcessing:
    """Execution record maintained by the scheduler."""

    status: TaskStatus = TaskStatus.PENDING
    assigned_agent: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    expected_duration_ms: float | None = None
    duration_ms: float | None = None
    result: Any = None
    error: str | None = None


@dataclass(slots=True)
class Task:
    """Unit of work moving through tiers."""

    id: str
    type: str
    priority: int
    payload: Any
    metadata: TaskMetadata
    processing: TaskProcessing = field(default_factory=TaskProcessing)
    dependencies: list[str] = field(default_factory=list)
    chunk_id: str | None = None

    @property
    def status(self) -> TaskStatus:
        return self.processing.status


@dataclass(slots=True)
class FileBatch:
    """Files submitted together and tracked to resolution as one unit."""

    id: str
    files: list[FileSpec]
    created_at: datetime
    estimated_processing_seconds: float
    status: BatchStatus = BatchStatus.PENDING
    finished_at: datetime | None = None
    origin_task_ids: list[str] = field(default_factory=list)
    resolved_chains: set[str] = field(default_factory=set)
    failed_task_ids: list[str] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_BATCH_STATUSES


@dataclass(slots=True)
class TaskEvent:
    """Audit trail entry for a task transition."""

    task_id: str
    event_type: str
    created_at: datetime
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class TierStatusView:
    """Read-only snapshot of one tier."""

    id: str
    name: str
    level: int
    status: TierStatus
    capacity: int
    current_load: int
    input_queue_size: int
    output_queue_size: int
    total_agents: int
    active_agents: int
    idle_agents: int


@dataclass(slots=True)
class PipelineStatusView:
    """Pipeline-wide snapshot."""

    tiers: list[TierStatusView]
    total_agents: int
    total_tasks: int
    active_batches: int
    completed_batches: int
    system_health: int


@dataclass(slots=True)
class BatchStatusView:
    """Batch snapshot with progress and ETA."""

    batch_id: str
    status: BatchStatus
    files: int
    chains: int
    resolved_chains: int
    progress: float
    created_at: datetime
    estimated_completion: datetime
    failed_task_ids: list[str]
