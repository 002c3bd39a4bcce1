"""Runtime configuration for chunking and the tiered pipeline."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from tierflow.pipeline.topology import DEFAULT_TIER_IDS

DEFAULT_STRATEGY_BY_CONTENT_TYPE: dict[str, str] = {
    "text": "hybrid",
    "csv": "fixed_size",
    "log": "fixed_size",
    "markdown": "semantic",
    "json": "hierarchical",
    "xml": "hierarchical",
    "html": "hierarchical",
    "pdf": "adaptive",
    "docx": "adaptive",
}


@dataclass(slots=True)
class ChunkingSettings:
    """Size bounds and thresholds for chunking strategies."""

    fixed_chunk_size: int = 4_000
    semantic_max_size: int = 6_000
    semantic_min_size: int = 500
    hybrid_upper_bound: int = 8_000
    hybrid_target_size: int = 4_000
    adaptive_base_size: int = 4_000
    adaptive_min_size: int = 2_000
    adaptive_max_size: int = 8_000
    adaptive_lookahead: int = 2_000
    adaptive_low_complexity: float = 0.3
    adaptive_high_complexity: float = 0.8
    hierarchical_min_leaf: int = 50
    semantic_edge_threshold: float = 0.7
    sequential_edge_strength: float = 0.9
    strategy_by_content_type: dict[str, str] = field(
        default_factory=lambda: dict(DEFAULT_STRATEGY_BY_CONTENT_TYPE),
    )


@dataclass(slots=True)
class PipelineSettings:
    """Scheduler and routing settings."""

    tick_interval_seconds: float = 0.1
    max_retries: int = 3
    tier_ids: tuple[str, ...] = DEFAULT_TIER_IDS
    agents_per_tier: int = 0
    processing_time_ceiling_ms: float = 10_000.0
    bytes_per_second: float = 1024 * 1024
    threaded: bool = False


@dataclass(slots=True)
class EmbeddingSettings:
    """Specialization vector settings."""

    model_name: str = "hashing"
    dimensions: int = 384
    agent_mutation_rate: float = 0.1


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".tierflow.db")
    chunking: ChunkingSettings = field(default_factory=ChunkingSettings)
    pipeline: PipelineSettings = field(default_factory=PipelineSettings)
    embedding: EmbeddingSettings = field(default_factory=EmbeddingSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local runs."""

        return cls(
            db_path=db_path or Path(os.getenv("TIERFLOW_DB_PATH", ".tierflow.db")),
            chunking=ChunkingSettings(
                fixed_chunk_size=int(os.getenv("TIERFLOW_FIXED_CHUNK_SIZE", "4000")),
                semantic_max_size=int(os.getenv("TIERFLOW_SEMANTIC_MAX_SIZE", "6000")),
                semantic_min_size=int(os.getenv("TIERFLOW_SEMANTIC_MIN_SIZE", "500")),
                hybrid_upper_bound=int(os.getenv("TIERFLOW_HYBRID_UPPER_BOUND", "8000")),
                hybrid_target_size=int(os.getenv("TIERFLOW_HYBRID_TARGET_SIZE", "4000")),
                adaptive_base_size=int(os.getenv("TIERFLOW_ADAPTIVE_BASE_SIZE", "4000")),
                adaptive_min_size=int(os.getenv("TIERFLOW_ADAPTIVE_MIN_SIZE", "2000")),
                adaptive_max_size=int(os.getenv("TIERFLOW_ADAPTIVE_MAX_SIZE", "8000")),
                adaptive_lookahead=int(os.getenv("TIERFLOW_ADAPTIVE_LOOKAHEAD", "2000")),
                hierarchical_min_leaf=int(os.getenv("TIERFLOW_HIERARCHICAL_MIN_LEAF", "50")),
                semantic_edge_threshold=float(
                    os.getenv("TIERFLOW_SEMANTIC_EDGE_THRESHOLD", "0.7"),
                ),
            ),
            pipeline=PipelineSettings(
                tick_interval_seconds=float(os.getenv("TIERFLOW_TICK_INTERVAL_SECONDS", "0.1")),
                max_retries=int(os.getenv("TIERFLOW_MAX_RETRIES", "3")),
                tier_ids=_collect_tier_ids(),
                agents_per_tier=int(os.getenv("TIERFLOW_AGENTS_PER_TIER", "0")),
                processing_time_ceiling_ms=float(
                    os.getenv("TIERFLOW_PROCESSING_TIME_CEILING_MS", "10000"),
                ),
                bytes_per_second=float(os.getenv("TIERFLOW_BYTES_PER_SECOND", str(1024 * 1024))),
                threaded=_env_bool("TIERFLOW_THREADED", default=False),
            ),
            embedding=EmbeddingSettings(
                model_name=os.getenv("TIERFLOW_EMBEDDING_MODEL", "hashing"),
                dimensions=int(os.getenv("TIERFLOW_VECTOR_DIMENSIONS", "384")),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for out-of-range values."""

        chunking = self.chunking
        for name, value in (
            ("TIERFLOW_FIXED_CHUNK_SIZE", chunking.fixed_chunk_size),
            ("TIERFLOW_SEMANTIC_MAX_SIZE", chunking.semantic_max_size),
            ("TIERFLOW_HYBRID_TARGET_SIZE", chunking.hybrid_target_size),
            ("TIERFLOW_ADAPTIVE_BASE_SIZE", chunking.adaptive_base_size),
            ("TIERFLOW_ADAPTIVE_MIN_SIZE", chunking.adaptive_min_size),
            ("TIERFLOW_ADAPTIVE_LOOKAHEAD", chunking.adaptive_lookahead),
            ("TIERFLOW_VECTOR_DIMENSIONS", self.embedding.dimensions),
        ):
            if value <= 0:
                raise ValueError(f"{name} must be a positive integer.")
        if chunking.semantic_min_size < 0:
            raise ValueError("TIERFLOW_SEMANTIC_MIN_SIZE must be >= 0.")
        if chunking.semantic_min_size > chunking.semantic_max_size:
            raise ValueError(
                "TIERFLOW_SEMANTIC_MIN_SIZE must not exceed TIERFLOW_SEMANTIC_MAX_SIZE.",
            )
        if chunking.hybrid_target_size > chunking.hybrid_upper_bound:
            raise ValueError(
                "TIERFLOW_HYBRID_TARGET_SIZE must not exceed TIERFLOW_HYBRID_UPPER_BOUND.",
            )
        if not (
            chunking.adaptive_min_size <= chunking.adaptive_base_size <= chunking.adaptive_max_size
        ):
            raise ValueError(
                "Adaptive sizes must satisfy "
                "TIERFLOW_ADAPTIVE_MIN_SIZE <= base <= TIERFLOW_ADAPTIVE_MAX_SIZE.",
            )
        if chunking.hierarchical_min_leaf < 0:
            raise ValueError("TIERFLOW_HIERARCHICAL_MIN_LEAF must be >= 0.")
        if not 0.0 <= chunking.semantic_edge_threshold <= 1.0:
            raise ValueError("TIERFLOW_SEMANTIC_EDGE_THRESHOLD must be within [0, 1].")

        pipeline = self.pipeline
        if pipeline.max_retries < 0:
            raise ValueError("TIERFLOW_MAX_RETRIES must be >= 0.")
        if pipeline.tick_interval_seconds <= 0:
            raise ValueError("TIERFLOW_TICK_INTERVAL_SECONDS must be > 0.")
        if pipeline.agents_per_tier < 0:
            raise ValueError("TIERFLOW_AGENTS_PER_TIER must be >= 0.")
        if pipeline.processing_time_ceiling_ms <= 0:
            raise ValueError("TIERFLOW_PROCESSING_TIME_CEILING_MS must be > 0.")
        if pipeline.bytes_per_second <= 0:
            raise ValueError("TIERFLOW_BYTES_PER_SECOND must be > 0.")
        if not pipeline.tier_ids:
            raise ValueError("TIERFLOW_TIERS must name at least one tier.")
        unknown = [tier_id for tier_id in pipeline.tier_ids if tier_id not in DEFAULT_TIER_IDS]
        if unknown:
            raise ValueError(f"Unknown tier ids in TIERFLOW_TIERS: {', '.join(unknown)}")


def _collect_tier_ids() -> tuple[str, ...]:
    raw = os.getenv("TIERFLOW_TIERS", "").strip()
    if not raw:
        return DEFAULT_TIER_IDS
    values: list[str] = []
    for part in raw.split(","):
        token = part.strip()
        if token and token not in values:
            values.append(token)
    return tuple(values)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
