"""In-memory search index over chunk summaries, key phrases and concepts."""

from __future__ import annotations

from dataclasses import dataclass

from tierflow.chunking.models import Chunk

_SUMMARY_CHARS = 200


@dataclass(slots=True)
class ChunkIndexEntry:
    """Searchable view of one chunk."""

    chunk_id: str
    content_hash: str
    summary: str
    key_phrases: tuple[str, ...]
    concepts: tuple[str, ...]

    def matches(self, needle: str) -> bool:
        if needle in self.summary.lower():
            return True
        if any(needle in phrase for phrase in self.key_phrases):
            return True
        return any(needle in concept for concept in self.concepts)


def build_index_entry(chunk: Chunk) -> ChunkIndexEntry:
    summary = " ".join(chunk.text.split())[:_SUMMARY_CHARS]
    return ChunkIndexEntry(
        chunk_id=chunk.id,
        content_hash=chunk.checksum,
        summary=summary,
        key_phrases=chunk.fingerprint,
        concepts=(
            chunk.content_type,
            chunk.strategy.value,
            f"complexity_{int(chunk.complexity * 10)}",
        ),
    )


class ChunkIndex:
    """Substring search over indexed chunk entries, in insertion order."""

    def __init__(self) -> None:
        self._entries: dict[str, ChunkIndexEntry] = {}

    def add(self, chunk: Chunk) -> None:
        self._entries[chunk.id] = build_index_entry(chunk)

    def discard(self, chunk_id: str) -> None:
        self._entries.pop(chunk_id, None)

    def get(self, chunk_id: str) -> ChunkIndexEntry | None:
        return self._entries.get(chunk_id)

    def search(self, query: str) -> list[str]:
        needle = query.strip().lower()
        if not needle:
            return []
        return [entry.chunk_id for entry in self._entries.values() if entry.matches(needle)]
