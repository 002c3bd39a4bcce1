"""Chunking engine: strategy dispatch, integrity checks, registry and search."""

from __future__ import annotations

import logging
import time
from uuid import uuid4

from tierflow.chunking.index import ChunkIndex
from tierflow.chunking.models import (
    Chunk,
    ChunkIntegrityError,
    ChunkingMetrics,
    ChunkingMode,
    ChunkingResult,
    ChunkStatus,
    SourceMetadata,
    UnsupportedContentType,
)
from tierflow.chunking.relationships import build_relationships
from tierflow.chunking.strategies import STRATEGIES, SUPPORTED_CONTENT_TYPES
from tierflow.chunking.text_metrics import checksum, complexity_score, fingerprint
from tierflow.config import ChunkingSettings
from tierflow.embedding import Embedder, HashingEmbedder

logger = logging.getLogger(__name__)

_TILING_MODES = frozenset(
    {
        ChunkingMode.FIXED_SIZE,
        ChunkingMode.SEMANTIC,
        ChunkingMode.HYBRID,
        ChunkingMode.ADAPTIVE,
    },
)


class ChunkingEngine:
    """Splits source content into checksum-addressed chunks and keeps them searchable."""

    def __init__(
        self,
        settings: ChunkingSettings | None = None,
        *,
        embedder: Embedder | None = None,
    ) -> None:
        self.settings = settings or ChunkingSettings()
        self.embedder = embedder or HashingEmbedder()
        self.metrics = ChunkingMetrics()
        self._chunks: dict[str, Chunk] = {}
        self._by_parent: dict[str, list[str]] = {}
        self._index = ChunkIndex()

    def resolve_mode(
        self,
        content_type: str,
        mode: ChunkingMode | str | None = None,
    ) -> ChunkingMode:
        """Requested mode, else the configured default for the content type."""

        if mode is not None:
            return ChunkingMode(mode)
        configured = self.settings.strategy_by_content_type.get(content_type)
        if configured is None:
            raise UnsupportedContentType(None, content_type)
        return ChunkingMode(configured)

    def chunk(
        self,
        content: str,
        source: SourceMetadata,
        mode: ChunkingMode | str | None = None,
    ) -> list[Chunk]:
        """Split ``content`` and register the resulting chunks under ``source.file_id``."""

        started = time.perf_counter()
        try:
            resolved = self.resolve_mode(source.content_type, mode)
            if source.content_type not in SUPPORTED_CONTENT_TYPES[resolved]:
                raise UnsupportedContentType(resolved, source.content_type)

            result = STRATEGIES[resolved](content, source.content_type, self.settings)
            chunks = self._materialize(content, source, result, run=uuid4().hex[:8])
            build_relationships(
                chunks,
                embedder=self.embedder,
                semantic_threshold=self.settings.semantic_edge_threshold,
                sequential_strength=self.settings.sequential_edge_strength,
            )
        except (UnsupportedContentType, ChunkIntegrityError):
            self.metrics.failed_calls += 1
            raise

        self._register(source.file_id, chunks)
        self.metrics.total_chunks += len(chunks)
        self.metrics.total_chars += sum(chunk.size for chunk in chunks)
        self.metrics.processing_seconds += time.perf_counter() - started
        if result.warnings:
            self.metrics.fallbacks += 1
        logger.debug(
            "Chunked %s (%s) into %d chunks with %s",
            source.file_id,
            source.content_type,
            len(chunks),
            result.mode.value,
        )
        return chunks

    def get_chunk(self, chunk_id: str) -> Chunk | None:
        return self._chunks.get(chunk_id)

    def get_chunks_by_parent(self, file_id: str) -> list[Chunk]:
        chunks = [self._chunks[chunk_id] for chunk_id in self._by_parent.get(file_id, [])]
        return sorted(chunks, key=lambda chunk: chunk.index)

    def search_chunks(self, query: str) -> list[Chunk]:
        """Case-insensitive substring match over summaries, key phrases, concepts and text."""

        needle = query.strip().lower()
        if not needle:
            return []
        matched = set(self._index.search(needle))
        return [
            self._chunks[chunk_id]
            for chunk_ids in self._by_parent.values()
            for chunk_id in chunk_ids
            if chunk_id in matched or needle in self._chunks[chunk_id].text.lower()
        ]

    def set_status(self, chunk_id: str, status: ChunkStatus) -> None:
        chunk = self._chunks.get(chunk_id)
        if chunk is not None:
            chunk.status = status

    def _materialize(
        self,
        content: str,
        source: SourceMetadata,
        result: ChunkingResult,
        *,
        run: str,
    ) -> list[Chunk]:
        if result.mode in _TILING_MODES:
            _check_tiling(content, result)

        total = len(result.spans)
        chunks: list[Chunk] = []
        for index, span in enumerate(result.spans):
            text = content[span.start : span.end]
            chunk = Chunk(
                id=f"chunk:{source.file_id}:{run}:{index}",
                parent_id=source.file_id,
                index=index,
                total_chunks=total,
                start=span.start,
                end=span.end,
                text=text,
                checksum=checksum(text),
                complexity=complexity_score(text),
                fingerprint=fingerprint(text),
                content_type=source.content_type,
                strategy=result.mode,
                node_path=span.node_path,
                warnings=list(result.warnings),
            )
            _verify_readback(content, chunk)
            chunks.append(chunk)
        return chunks

    def _register(self, file_id: str, chunks: list[Chunk]) -> None:
        for stale_id in self._by_parent.pop(file_id, []):
            self._index.discard(stale_id)
        self._by_parent[file_id] = [chunk.id for chunk in chunks]
        for chunk in chunks:
            self._chunks[chunk.id] = chunk
            self._index.add(chunk)


def _check_tiling(content: str, result: ChunkingResult) -> None:
    cursor = 0
    for span in result.spans:
        if span.start != cursor or span.end <= span.start:
            raise ChunkIntegrityError(
                f"{result.mode.value} produced a gap or overlap at offset {cursor}",
            )
        cursor = span.end
    if cursor != len(content):
        raise ChunkIntegrityError(
            f"{result.mode.value} covered {cursor} of {len(content)} characters",
        )


def _verify_readback(content: str, chunk: Chunk) -> None:
    if not 0 <= chunk.start < chunk.end <= len(content):
        raise ChunkIntegrityError(
            f"{chunk.id} span [{chunk.start}, {chunk.end}) is outside the source content",
        )
    if checksum(content[chunk.start : chunk.end]) != chunk.checksum:
        raise ChunkIntegrityError(f"{chunk.id} checksum does not match its source span")
