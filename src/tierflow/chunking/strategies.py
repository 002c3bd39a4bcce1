"""Splitting strategies.

Every strategy returns spans over the original content, so a chunk's text is always
``content[start:end]``. Fixed-size, semantic, hybrid and adaptive spans tile the
content with no gaps or overlaps. Hierarchical spans cover only qualifying leaves.
"""

from __future__ import annotations

import json
import logging
import re
import xml.etree.ElementTree as ET
from collections.abc import Callable, Iterator
from typing import Any

from tierflow.chunking.models import (
    ChunkingMode,
    ChunkingResult,
    ChunkSpan,
    HierarchicalParseError,
)
from tierflow.chunking.text_metrics import complexity_score, paragraph_spans, sentence_break
from tierflow.config import ChunkingSettings

logger = logging.getLogger(__name__)

SUPPORTED_CONTENT_TYPES: dict[ChunkingMode, frozenset[str]] = {
    ChunkingMode.FIXED_SIZE: frozenset({"text", "csv", "log"}),
    ChunkingMode.SEMANTIC: frozenset({"text", "markdown", "html"}),
    ChunkingMode.HYBRID: frozenset({"text", "json", "xml"}),
    ChunkingMode.ADAPTIVE: frozenset({"text", "pdf", "docx"}),
    ChunkingMode.HIERARCHICAL: frozenset({"json", "xml", "html"}),
}

_MARKUP_LEAF_PATTERN = re.compile(r"<([A-Za-z][\w:.-]*)(?:\s[^<>]*)?>([^<]*)</\1\s*>")

Strategy = Callable[[str, str, ChunkingSettings], ChunkingResult]


def fixed_size(content: str, content_type: str, settings: ChunkingSettings) -> ChunkingResult:
    del content_type
    size = settings.fixed_chunk_size
    spans = [
        ChunkSpan(start=start, end=min(start + size, len(content)))
        for start in range(0, len(content), size)
    ]
    return ChunkingResult(mode=ChunkingMode.FIXED_SIZE, spans=spans)


def semantic(content: str, content_type: str, settings: ChunkingSettings) -> ChunkingResult:
    del content_type
    return ChunkingResult(
        mode=ChunkingMode.SEMANTIC,
        spans=_semantic_spans(content, settings),
    )


def hybrid(content: str, content_type: str, settings: ChunkingSettings) -> ChunkingResult:
    del content_type
    spans: list[ChunkSpan] = []
    for span in _semantic_spans(content, settings):
        if span.end - span.start > settings.hybrid_upper_bound:
            spans.extend(_split_on_sentences(content, span, settings))
        else:
            spans.append(span)
    return ChunkingResult(mode=ChunkingMode.HYBRID, spans=spans)


def adaptive(content: str, content_type: str, settings: ChunkingSettings) -> ChunkingResult:
    del content_type
    spans: list[ChunkSpan] = []
    position = 0
    while position < len(content):
        window = content[position : position + settings.adaptive_lookahead]
        size = adaptive_chunk_size(complexity_score(window), settings)
        end = _adaptive_break(content, position, size, settings)
        spans.append(ChunkSpan(start=position, end=end))
        position = end
    return ChunkingResult(mode=ChunkingMode.ADAPTIVE, spans=spans)


def adaptive_chunk_size(complexity: float, settings: ChunkingSettings) -> int:
    if complexity > settings.adaptive_high_complexity:
        return settings.adaptive_min_size
    if complexity < settings.adaptive_low_complexity:
        return settings.adaptive_max_size
    return settings.adaptive_base_size


def _adaptive_break(content: str, position: int, size: int, settings: ChunkingSettings) -> int:
    if len(content) - position <= size:
        return len(content)
    limit = position + min(size + size // 2, settings.adaptive_max_size)
    cut = sentence_break(
        content,
        position,
        min(len(content), limit + 1),
        size,
        minimum=settings.adaptive_min_size,
    )
    return cut or position + size


def hierarchical(content: str, content_type: str, settings: ChunkingSettings) -> ChunkingResult:
    try:
        if content_type == "json":
            spans = _json_leaf_spans(content, settings.hierarchical_min_leaf)
        else:
            if content_type == "xml":
                _check_well_formed_xml(content)
            spans = _markup_leaf_spans(content, settings.hierarchical_min_leaf)
        if not spans:
            raise HierarchicalParseError(
                f"no leaf nodes longer than {settings.hierarchical_min_leaf} chars",
            )
    except HierarchicalParseError as error:
        warning = f"hierarchical parsing failed ({error}); fell back to semantic chunking"
        logger.warning("Chunking %s content: %s", content_type, warning)
        return ChunkingResult(
            mode=ChunkingMode.SEMANTIC,
            spans=_semantic_spans(content, settings),
            warnings=[warning],
        )
    return ChunkingResult(mode=ChunkingMode.HIERARCHICAL, spans=spans)


STRATEGIES: dict[ChunkingMode, Strategy] = {
    ChunkingMode.FIXED_SIZE: fixed_size,
    ChunkingMode.SEMANTIC: semantic,
    ChunkingMode.HYBRID: hybrid,
    ChunkingMode.ADAPTIVE: adaptive,
    ChunkingMode.HIERARCHICAL: hierarchical,
}


def _semantic_spans(content: str, settings: ChunkingSettings) -> list[ChunkSpan]:
    spans: list[ChunkSpan] = []
    current_start: int | None = None
    current_end = 0
    for unit_start, unit_end in paragraph_spans(content):
        if current_start is None:
            current_start, current_end = unit_start, unit_end
            continue
        current_size = current_end - current_start
        if (
            current_size + (unit_end - unit_start) > settings.semantic_max_size
            and current_size > settings.semantic_min_size
        ):
            spans.append(ChunkSpan(start=current_start, end=current_end))
            current_start = unit_start
        current_end = unit_end
    if current_start is not None:
        spans.append(ChunkSpan(start=current_start, end=current_end))
    return spans


def _split_on_sentences(
    content: str,
    span: ChunkSpan,
    settings: ChunkingSettings,
) -> list[ChunkSpan]:
    target = settings.hybrid_target_size
    pieces: list[ChunkSpan] = []
    position = span.start
    while span.end - position > target:
        search_end = min(span.end, position + settings.hybrid_upper_bound)
        cut = sentence_break(content, position, search_end, target) or position + target
        pieces.append(ChunkSpan(start=position, end=cut))
        position = cut
    pieces.append(ChunkSpan(start=position, end=span.end))
    return pieces


def _json_leaf_spans(content: str, min_leaf: int) -> list[ChunkSpan]:
    try:
        document = json.loads(content)
    except json.JSONDecodeError as error:
        raise HierarchicalParseError(f"invalid JSON: {error.msg} at line {error.lineno}") from error

    spans: list[ChunkSpan] = []
    cursor = 0
    for path, value in _iter_json_leaves(document, "$"):
        if len(value) <= min_leaf:
            continue
        located = _locate_json_string(content, value, cursor)
        if located is None:
            raise HierarchicalParseError(f"leaf {path} could not be located in source text")
        start, end = located
        spans.append(ChunkSpan(start=start, end=end, node_path=path))
        cursor = end
    return spans


def _iter_json_leaves(node: Any, path: str) -> Iterator[tuple[str, str]]:
    if isinstance(node, dict):
        for key, value in node.items():
            yield from _iter_json_leaves(value, f"{path}.{key}")
    elif isinstance(node, list):
        for index, value in enumerate(node):
            yield from _iter_json_leaves(value, f"{path}[{index}]")
    elif isinstance(node, str):
        yield path, node


def _locate_json_string(content: str, value: str, cursor: int) -> tuple[int, int] | None:
    for ensure_ascii in (False, True):
        literal = json.dumps(value, ensure_ascii=ensure_ascii)
        position = content.find(literal, cursor)
        if position >= 0:
            return position + 1, position + len(literal) - 1
    return None


def _check_well_formed_xml(content: str) -> None:
    try:
        ET.fromstring(content)  # noqa: S314
    except ET.ParseError as error:
        raise HierarchicalParseError(f"invalid XML: {error}") from error


def _markup_leaf_spans(content: str, min_leaf: int) -> list[ChunkSpan]:
    spans: list[ChunkSpan] = []
    ordinals: dict[str, int] = {}
    for match in _MARKUP_LEAF_PATTERN.finditer(content):
        tag = match.group(1)
        ordinal = ordinals.get(tag, 0)
        ordinals[tag] = ordinal + 1
        if len(match.group(2).strip()) <= min_leaf:
            continue
        spans.append(
            ChunkSpan(start=match.start(2), end=match.end(2), node_path=f"{tag}[{ordinal}]"),
        )
    return spans
