from __future__ import annotations

import math

import allure
import pytest

from tierflow import embedding as embedding_module
from tierflow.embedding import (
    HashingEmbedder,
    build_embedder,
    cosine_similarity,
    extract_keywords,
    normalize,
)

pytestmark = [
    allure.epic("Routing"),
    allure.feature("Specialization Vectors"),
]


def test_extract_keywords_drops_short_tokens_and_caps_count() -> None:
    text = "An ox ate hay; Quarterly revenue grew. " + " ".join(f"word{i}" for i in range(30))

    keywords = extract_keywords(text, limit=5)

    assert keywords == ["quarterly", "revenue", "grew", "word0", "word1"]


def test_hashing_embedder_is_deterministic_and_normalized() -> None:
    embedder = HashingEmbedder(dimensions=64)

    first, second = embedder.embed(["text_extraction pdf_extraction"] * 2)

    assert first == second
    assert len(first) == 64
    assert math.sqrt(sum(value * value for value in first)) == pytest.approx(1.0)


def test_hashing_embedder_returns_zero_vector_without_keywords() -> None:
    (vector,) = HashingEmbedder(dimensions=16).embed(["a an ox"])

    assert vector == [0.0] * 16


def test_build_embedder_selects_hashing_backend() -> None:
    embedder = build_embedder("hashing", dimensions=32)

    assert isinstance(embedder, HashingEmbedder)
    assert embedder.dimensions == 32


def test_build_embedder_raises_when_model_cannot_load(monkeypatch: pytest.MonkeyPatch) -> None:
    class _BrokenEmbedder:
        def __init__(self, model_name: str) -> None:
            raise OSError(f"model {model_name} not found")

    monkeypatch.setattr(embedding_module, "SentenceTransformerEmbedder", _BrokenEmbedder)

    with pytest.raises(RuntimeError, match="Failed to initialize embedding model missing-model"):
        build_embedder("missing-model")


def test_cosine_similarity_requires_equal_dimensions() -> None:
    with pytest.raises(ValueError, match="same size"):
        cosine_similarity([1.0, 0.0], [1.0])


def test_cosine_similarity_of_normalized_vectors() -> None:
    left = normalize([1.0, 1.0])

    assert cosine_similarity(left, left) == pytest.approx(1.0)
    assert cosine_similarity(left, normalize([1.0, -1.0])) == pytest.approx(0.0)
    assert normalize([0.0, 0.0]) == [0.0, 0.0]
