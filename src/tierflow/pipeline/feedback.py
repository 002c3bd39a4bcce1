"""Agent performance feedback."""

from __future__ import annotations

from dataclasses import dataclass

from tierflow.pipeline.models import Agent

SUCCESS_QUALITY_TARGET = 0.9
FAILURE_QUALITY_TARGET = 0.3


@dataclass(slots=True)
class PerformanceFeedback:
    """Exponential moving average update of agent statistics."""

    alpha: float = 0.1

    def on_task_settled(self, agent: Agent, *, success: bool, duration_ms: float) -> None:
        """Fold one settled task into the agent's stats.

        Only the scheduling unit owning the agent calls this, so updates for a given
        agent are serialized.
        """

        alpha = self.alpha
        keep = 1.0 - alpha
        performance = agent.performance
        performance.success_rate = _clamp(
            performance.success_rate * keep + (1.0 if success else 0.0) * alpha,
        )
        performance.avg_processing_time_ms = max(
            0.0,
            performance.avg_processing_time_ms * keep + max(0.0, duration_ms) * alpha,
        )
        target = SUCCESS_QUALITY_TARGET if success else FAILURE_QUALITY_TARGET
        performance.quality_score = _clamp(performance.quality_score * keep + target * alpha)
        if success:
            performance.tasks_completed += 1
        else:
            performance.tasks_failed += 1


def _clamp(value: float) -> float:
    return min(1.0, max(0.0, value))
