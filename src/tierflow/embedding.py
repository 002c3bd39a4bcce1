"""Embedding abstractions for specialization vectors and chunk fingerprints."""

from __future__ import annotations

import hashlib
import logging
import math
import re
from array import array
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

Vector = list[float]
_TOKEN_SPLIT_PATTERN = re.compile(r"\W+")
_HF_UNAUTH_WARNING_PATTERN = re.compile(
    r"^Warning:\s*You are sending unauthenticated requests to the HF Hub\.",
)


class _HfHubUnauthWarningFilter(logging.Filter):
    """Suppress one noisy HF Hub unauthenticated warning line."""

    def filter(self, record: logging.LogRecord) -> bool:
        return _HF_UNAUTH_WARNING_PATTERN.match(record.getMessage()) is None


def _suppress_hf_hub_unauth_warning() -> None:
    logger = logging.getLogger("huggingface_hub.utils._http")
    if any(isinstance(item, _HfHubUnauthWarningFilter) for item in logger.filters):
        return
    logger.addFilter(_HfHubUnauthWarningFilter())


class Embedder(Protocol):
    """Embedding backend interface."""

    model_name: str
    dimensions: int

    def embed(self, texts: list[str]) -> list[Vector]:
        """Encode texts into normalized vectors."""
        raise NotImplementedError


def extract_keywords(text: str, *, min_length: int = 4, limit: int = 20) -> list[str]:
    """Lowercased word tokens of at least ``min_length`` chars, first ``limit`` kept."""

    words = [word for word in _TOKEN_SPLIT_PATTERN.split((text or "").lower()) if word]
    return [word for word in words if len(word) >= min_length][:limit]


@dataclass(slots=True)
class HashingEmbedder:
    """Deterministic keyword embedder: each keyword bumps one hashed bucket."""

    model_name: str = "hashing"
    dimensions: int = 384
    min_keyword_length: int = 4
    max_keywords: int = 20

    def embed(self, texts: list[str]) -> list[Vector]:
        return [self._embed_single(text) for text in texts]

    def embed_keywords(self, keywords: Iterable[str]) -> Vector:
        """Embed an explicit keyword list without tokenizing."""

        vector = array("f", [0.0]) * self.dimensions
        for keyword in keywords:
            vector[self.bucket(keyword)] += 1.0
        return normalize(list(vector))

    def bucket(self, keyword: str) -> int:
        digest = hashlib.sha1(keyword.encode("utf-8"), usedforsecurity=False).digest()  # noqa: S324
        return int.from_bytes(digest[:4], byteorder="little") % self.dimensions

    def _embed_single(self, text: str) -> Vector:
        keywords = extract_keywords(
            text,
            min_length=self.min_keyword_length,
            limit=self.max_keywords,
        )
        return self.embed_keywords(keywords)


@dataclass(slots=True)
class SentenceTransformerEmbedder:
    """Sentence-transformers backend with lazy import."""

    model_name: str
    dimensions: int = field(init=False)
    _model: Any = field(init=False, repr=False)

    def __post_init__(self) -> None:
        _suppress_hf_hub_unauth_warning()
        from sentence_transformers import SentenceTransformer  # type: ignore

        self._model = SentenceTransformer(self.model_name)
        self.dimensions = int(self._model.get_sentence_embedding_dimension())

    def embed(self, texts: list[str]) -> list[Vector]:
        vectors = self._model.encode(texts, normalize_embeddings=True)
        return [vector.tolist() for vector in vectors]


def build_embedder(model_name: str, *, dimensions: int = 384) -> Embedder:
    """Build the configured embedder.

    ``hashing`` selects the deterministic keyword embedder. Any other name is loaded
    through sentence-transformers; a load failure is raised, never replaced silently.
    """

    if model_name == "hashing":
        return HashingEmbedder(model_name=model_name, dimensions=dimensions)
    try:
        return SentenceTransformerEmbedder(model_name=model_name)
    except (ImportError, ModuleNotFoundError, OSError, RuntimeError, ValueError) as error:
        raise RuntimeError(
            f"Failed to initialize embedding model {model_name}. "
            "Install tierflow[embeddings] or set TIERFLOW_EMBEDDING_MODEL=hashing.",
        ) from error


def normalize(vector: Sequence[float]) -> Vector:
    """Scale to unit length; the zero vector is returned unchanged."""

    norm = math.sqrt(sum(value * value for value in vector))
    if norm == 0:
        return list(vector)
    return [value / norm for value in vector]


def cosine_similarity(left: Sequence[float], right: Sequence[float]) -> float:
    """Compute cosine similarity for normalized vectors."""

    if len(left) != len(right):
        raise ValueError("Vectors must have the same size")

    dot = sum(l_value * r_value for l_value, r_value in zip(left, right, strict=True))
    return max(-1.0, min(1.0, dot))
