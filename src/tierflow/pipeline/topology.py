"""Default ten-tier topology."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True, frozen=True)
class TierDefinition:
    """Static tier description used to build a registry."""

    id: str
    name: str
    level: int
    capacity: int
    keywords: tuple[str, ...]

    @property
    def default_agent_count(self) -> int:
        return max(1, self.capacity // 10)


DEFAULT_TOPOLOGY: tuple[TierDefinition, ...] = (
    TierDefinition(
        id="content_reading",
        name="Content Reading Layer",
        level=1,
        capacity=1000,
        keywords=(
            "file_reading",
            "text_extraction",
            "binary_parsing",
            "ocr_processing",
            "pdf_extraction",
            "image_text_extraction",
            "audio_transcription",
            "video_analysis",
        ),
    ),
    TierDefinition(
        id="content_classification",
        name="Content Classification Layer",
        level=2,
        capacity=800,
        keywords=(
            "content_type_detection",
            "language_identification",
            "topic_classification",
            "sentiment_analysis",
            "category_assignment",
            "priority_scoring",
            "complexity_assessment",
        ),
    ),
    TierDefinition(
        id="content_analysis",
        name="Content Analysis Layer",
        level=3,
        capacity=600,
        keywords=(
            "semantic_analysis",
            "entity_extraction",
            "relationship_mapping",
            "pattern_recognition",
            "anomaly_detection",
            "trend_analysis",
            "quality_assessment",
        ),
    ),
    TierDefinition(
        id="task_creation",
        name="Task Creation Layer",
        level=4,
        capacity=500,
        keywords=(
            "task_generation",
            "dependency_mapping",
            "resource_allocation",
            "priority_assignment",
            "deadline_setting",
            "workflow_design",
            "requirement_analysis",
        ),
    ),
    TierDefinition(
        id="task_processing",
        name="Task Processing Layer",
        level=5,
        capacity=400,
        keywords=(
            "data_processing",
            "computation_execution",
            "algorithm_application",
            "transformation_execution",
            "calculation_performing",
            "logic_execution",
            "analysis_performing",
        ),
    ),
    TierDefinition(
        id="result_collection",
        name="Result Collection & Deduplication Layer",
        level=6,
        capacity=300,
        keywords=(
            "result_gathering",
            "duplicate_detection",
            "data_aggregation",
            "result_validation",
            "error_correction",
            "completion_tracking",
            "status_monitoring",
        ),
    ),
    TierDefinition(
        id="information_synthesis",
        name="Information Synthesis Layer",
        level=7,
        capacity=200,
        keywords=(
            "data_synthesis",
            "information_integration",
            "knowledge_consolidation",
            "pattern_synthesis",
            "trend_identification",
            "insight_generation",
            "summary_creation",
        ),
    ),
    TierDefinition(
        id="validation_evaluation",
        name="Validation & Evaluation Layer",
        level=8,
        capacity=150,
        keywords=(
            "quality_validation",
            "accuracy_assessment",
            "completeness_checking",
            "consistency_verification",
            "performance_evaluation",
            "error_detection",
            "improvement_suggestion",
        ),
    ),
    TierDefinition(
        id="result_delivery",
        name="Final Result Delivery Layer",
        level=9,
        capacity=100,
        keywords=(
            "result_formatting",
            "output_generation",
            "delivery_coordination",
            "notification_sending",
            "report_generation",
            "data_export",
            "integration_updating",
        ),
    ),
    TierDefinition(
        id="system_coordination",
        name="System Coordination Layer",
        level=10,
        capacity=50,
        keywords=(
            "system_monitoring",
            "load_balancing",
            "performance_optimization",
            "error_handling",
            "resource_management",
            "workflow_coordination",
            "system_tuning",
        ),
    ),
)

DEFAULT_TIER_IDS: tuple[str, ...] = tuple(definition.id for definition in DEFAULT_TOPOLOGY)


def select_topology(tier_ids: tuple[str, ...]) -> tuple[TierDefinition, ...]:
    """Default definitions restricted to ``tier_ids``, in level order."""

    wanted = set(tier_ids)
    return tuple(definition for definition in DEFAULT_TOPOLOGY if definition.id in wanted)
