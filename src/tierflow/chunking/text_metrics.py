"""Text measurements used by chunking strategies and the search index."""

from __future__ import annotations

import hashlib
import re
from collections import Counter

_WORD_PATTERN = re.compile(r"\w+")
_SENTENCE_SPLIT_PATTERN = re.compile(r"[.!?]+")
_SENTENCE_END_PATTERN = re.compile(r"[.!?]+\s+")
_PARAGRAPH_BREAK_PATTERN = re.compile(r"\n\s*\n")


def checksum(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def complexity_score(text: str) -> float:
    """Blend of sentence length, vocabulary richness and word length in [0, 1]."""

    words = _WORD_PATTERN.findall(text.lower())
    if not words:
        return 0.0
    sentences = [part for part in _SENTENCE_SPLIT_PATTERN.split(text) if part.strip()]
    sentence_count = max(1, len(sentences))

    avg_words_per_sentence = len(words) / sentence_count
    lexical_diversity = len(set(words)) / len(words)
    avg_word_length = sum(len(word) for word in words) / len(words)

    score = (
        min(avg_words_per_sentence / 20, 1.0) * 0.4
        + lexical_diversity * 0.3
        + min(avg_word_length / 10, 1.0) * 0.3
    )
    return round(min(1.0, max(0.0, score)), 4)


def fingerprint(text: str, *, limit: int = 10, min_length: int = 4) -> tuple[str, ...]:
    """Most frequent words, ties broken by first appearance."""

    words = [word for word in _WORD_PATTERN.findall(text.lower()) if len(word) >= min_length]
    counts = Counter(words)
    return tuple(word for word, _ in counts.most_common(limit))


def paragraph_spans(text: str, start: int = 0, end: int | None = None) -> list[tuple[int, int]]:
    """Contiguous paragraph units covering ``text[start:end]`` without gaps.

    Each unit ends right after the blank-line separator that follows it.
    """

    stop = len(text) if end is None else end
    spans: list[tuple[int, int]] = []
    cursor = start
    for match in _PARAGRAPH_BREAK_PATTERN.finditer(text, start, stop):
        if match.end() <= cursor:
            continue
        spans.append((cursor, match.end()))
        cursor = match.end()
    if cursor < stop:
        spans.append((cursor, stop))
    return spans


def sentence_break(
    text: str,
    start: int,
    end: int,
    target: int,
    *,
    minimum: int = 0,
) -> int | None:
    """Sentence end nearest to ``start + target`` within ``(start, end)``.

    Only break points past half of the target and at least ``minimum`` characters
    from ``start`` are accepted.
    """

    best: int | None = None
    best_distance: int | None = None
    goal = start + target
    for match in _SENTENCE_END_PATTERN.finditer(text, start, end):
        position = match.end()
        length = position - start
        if position >= end or length <= target * 0.5 or length < minimum:
            continue
        distance = abs(position - goal)
        if best_distance is None or distance < best_distance:
            best = position
            best_distance = distance
    return best
