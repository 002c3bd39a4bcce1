"""Controllers for chunking CLI commands."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from tierflow.chunking.engine import ChunkingEngine
from tierflow.chunking.models import SourceMetadata
from tierflow.chunking.sources import file_spec_for, read_text
from tierflow.config import Settings
from tierflow.embedding import build_embedder
from tierflow.pipeline.metrics import render_chunk_lines, render_chunking_metrics


@dataclass(slots=True)
class ChunkFileCommand:
    """CLI input for chunking one file."""

    path: Path
    content_type: str | None
    strategy: str | None
    show_relationships: bool
    search: str | None = None


class ChunkingCliController:
    """Runs the chunking engine over local files."""

    def chunk_file(self, command: ChunkFileCommand) -> list[str]:
        settings = Settings.from_env()
        settings.validate()
        engine = ChunkingEngine(
            settings.chunking,
            embedder=build_embedder(
                settings.embedding.model_name,
                dimensions=settings.embedding.dimensions,
            ),
        )
        spec = file_spec_for(command.path, content_type=command.content_type)
        chunks = engine.chunk(
            read_text(spec),
            SourceMetadata(file_id=spec.id, content_type=spec.type, size=spec.size, path=spec.path),
            command.strategy,
        )

        lines = [f"Source: {spec.path} type={spec.type} size={spec.size} chunks={len(chunks)}"]
        lines.extend(render_chunk_lines(chunks, show_relationships=command.show_relationships))
        if command.search:
            matches = engine.search_chunks(command.search)
            lines.append(
                f"Search {command.search!r}: "
                + (", ".join(f"#{chunk.index + 1}" for chunk in matches) or "no matches"),
            )
        lines.append(render_chunking_metrics(engine.metrics))
        return lines
