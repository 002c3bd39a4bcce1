"""Domain models for content chunks and their relationship graph."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class ChunkingMode(str, Enum):
    """Available splitting strategies."""

    FIXED_SIZE = "fixed_size"
    SEMANTIC = "semantic"
    HYBRID = "hybrid"
    ADAPTIVE = "adaptive"
    HIERARCHICAL = "hierarchical"


class RelationshipType(str, Enum):
    """Edge kinds in the chunk relationship graph."""

    SEQUENTIAL = "sequential"
    SEMANTIC = "semantic"
    REFERENCE = "reference"
    HIERARCHICAL = "hierarchical"
    CROSS_REFERENCE = "cross_reference"


class ChunkStatus(str, Enum):
    """Processing state of a chunk as its task chain advances."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class UnsupportedContentType(ValueError):
    """Raised when a strategy is asked to split a content type it does not handle."""

    def __init__(self, mode: ChunkingMode | None, content_type: str) -> None:
        if mode is None:
            message = f"No default chunking strategy for content type {content_type!r}."
        else:
            message = f"Strategy {mode.value!r} does not support content type {content_type!r}."
        super().__init__(message)
        self.mode = mode
        self.content_type = content_type


class ChunkIntegrityError(RuntimeError):
    """Raised when a chunk span cannot be read back from its source content."""


class HierarchicalParseError(ValueError):
    """Structured content could not be parsed into leaves."""


@dataclass(slots=True)
class SourceMetadata:
    """File metadata handed over by the file-reading collaborator."""

    file_id: str
    content_type: str
    size: int = 0
    path: str | None = None


@dataclass(slots=True, frozen=True)
class ChunkRelationship:
    """Directed weighted edge to another chunk of the same source."""

    type: RelationshipType
    target_id: str
    strength: float


@dataclass(slots=True)
class Chunk:
    """Bounded content unit addressed by source id and index."""

    id: str
    parent_id: str
    index: int
    total_chunks: int
    start: int
    end: int
    text: str
    checksum: str
    complexity: float
    fingerprint: tuple[str, ...]
    content_type: str
    strategy: ChunkingMode
    status: ChunkStatus = ChunkStatus.PENDING
    node_path: str | None = None
    relationships: list[ChunkRelationship] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def size(self) -> int:
        return self.end - self.start

    def to_payload(self) -> dict[str, object]:
        """Serializable task payload for the pipeline."""

        return {
            "chunk_id": self.id,
            "parent_id": self.parent_id,
            "index": self.index,
            "total_chunks": self.total_chunks,
            "start": self.start,
            "end": self.end,
            "checksum": self.checksum,
            "complexity": self.complexity,
            "fingerprint": list(self.fingerprint),
            "content_type": self.content_type,
            "text": self.text,
        }


@dataclass(slots=True)
class ChunkSpan:
    """Raw span produced by a strategy before metrics are attached."""

    start: int
    end: int
    node_path: str | None = None


@dataclass(slots=True)
class ChunkingResult:
    """Spans plus warnings recorded while splitting."""

    mode: ChunkingMode
    spans: list[ChunkSpan]
    warnings: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ChunkingMetrics:
    """Aggregate counters for chunking calls."""

    total_chunks: int = 0
    total_chars: int = 0
    processing_seconds: float = 0.0
    failed_calls: int = 0
    fallbacks: int = 0

    @property
    def average_chunk_size(self) -> float:
        if self.total_chunks == 0:
            return 0.0
        return self.total_chars / self.total_chunks

    @property
    def throughput(self) -> float:
        """Chunks produced per second of splitting time."""

        if self.processing_seconds <= 0:
            return 0.0
        return self.total_chunks / self.processing_seconds
