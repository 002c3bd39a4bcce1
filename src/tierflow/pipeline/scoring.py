"""Agent-task match scoring and service-time estimation."""

from __future__ import annotations

import json
import math
from collections.abc import Sequence
from typing import Any

from tierflow.embedding import Embedder, Vector, cosine_similarity
from tierflow.pipeline.models import Agent, Task

SUCCESS_WEIGHT = 0.3
SPEED_WEIGHT = 0.2
QUALITY_WEIGHT = 0.2
SIMILARITY_WEIGHT = 0.3
MAX_COMPLEXITY_FACTOR = 5.0
MIN_EFFICIENCY = 0.05
_BYTES_PER_MB = 1024 * 1024


def task_vector(task: Task, embedder: Embedder) -> Vector:
    """Hash the task type and payload keywords into the agent vector space."""

    text = f"{task.type} {json.dumps(task.payload, default=str, ensure_ascii=False)}"
    return embedder.embed([text])[0]


def match_score(agent: Agent, vector: Sequence[float], *, time_ceiling_ms: float) -> float:
    performance = agent.performance
    normalized_time = min(1.0, max(0.0, performance.avg_processing_time_ms / time_ceiling_ms))
    return (
        SUCCESS_WEIGHT * performance.success_rate
        + SPEED_WEIGHT * (1.0 - normalized_time)
        + QUALITY_WEIGHT * performance.quality_score
        + SIMILARITY_WEIGHT * cosine_similarity(agent.vector, vector)
    )


def select_best_agent(
    agents: Sequence[Agent],
    vector: Sequence[float],
    *,
    time_ceiling_ms: float,
) -> tuple[Agent, float] | None:
    """Highest-scoring agent; ties go to the lowest agent id."""

    best: tuple[Agent, float] | None = None
    for agent in sorted(agents, key=lambda item: item.id):
        score = match_score(agent, vector, time_ceiling_ms=time_ceiling_ms)
        if best is None or score > best[1]:
            best = (agent, score)
    return best


def complexity_factor(task: Task) -> float:
    """Grows logarithmically with item count and payload size, capped at 5x."""

    factor = 1.0
    payload = task.payload if isinstance(task.payload, dict) else {}
    items = payload_item_count(payload)
    if items > 0:
        factor += math.log(items) * 0.1
    size = payload_size(payload)
    if size > 0:
        factor += math.log(size / _BYTES_PER_MB + 1) * 0.2
    return min(factor, MAX_COMPLEXITY_FACTOR)


def payload_item_count(payload: dict[str, Any]) -> int:
    """Listed files, else the number of parts the chunk's source was split into."""

    files = payload.get("files")
    if isinstance(files, list):
        return len(files)
    chunk = payload.get("chunk")
    if isinstance(chunk, dict) and isinstance(chunk.get("total_chunks"), int):
        return chunk["total_chunks"]
    return 0


def payload_size(payload: dict[str, Any]) -> int:
    if isinstance(payload.get("size"), int | float):
        return int(payload["size"])
    chunk = payload.get("chunk")
    if isinstance(chunk, dict) and "start" in chunk and "end" in chunk:
        return int(chunk["end"]) - int(chunk["start"])
    file_spec = payload.get("file")
    if isinstance(file_spec, dict) and isinstance(file_spec.get("size"), int | float):
        return int(file_spec["size"])
    return 0


def expected_duration_ms(agent: Agent, task: Task) -> float:
    """``avgProcessingTime x complexity / successRate``."""

    efficiency = max(agent.performance.success_rate, MIN_EFFICIENCY)
    return agent.performance.avg_processing_time_ms * complexity_factor(task) / efficiency
