"""Local file reading for chunking and batch submission."""

from __future__ import annotations

from pathlib import Path

from tierflow.pipeline.models import FileSpec

CONTENT_TYPE_BY_SUFFIX: dict[str, str] = {
    ".txt": "text",
    ".text": "text",
    ".md": "markdown",
    ".markdown": "markdown",
    ".json": "json",
    ".xml": "xml",
    ".html": "html",
    ".htm": "html",
    ".csv": "csv",
    ".log": "log",
    ".pdf": "pdf",
    ".docx": "docx",
}


def infer_content_type(path: Path) -> str:
    return CONTENT_TYPE_BY_SUFFIX.get(path.suffix.lower(), "text")


def file_spec_for(path: Path, *, content_type: str | None = None) -> FileSpec:
    """Describe a local file; the id is its resolved path."""

    resolved = path.resolve()
    return FileSpec(
        id=str(resolved),
        path=str(resolved),
        size=resolved.stat().st_size,
        type=content_type or infer_content_type(resolved),
    )


def read_text(spec: FileSpec) -> str:
    return Path(spec.path).read_text(encoding="utf-8", errors="replace")
