"""Relationship graph between chunks of one source."""

from __future__ import annotations

from collections import defaultdict

from tierflow.chunking.models import Chunk, ChunkRelationship, RelationshipType
from tierflow.embedding import Embedder, Vector, cosine_similarity


def build_relationships(
    chunks: list[Chunk],
    *,
    embedder: Embedder,
    semantic_threshold: float,
    sequential_strength: float,
) -> None:
    """Attach sequential, semantic and sibling edges to ``chunks`` in place."""

    for left, right in zip(chunks, chunks[1:], strict=False):
        left.relationships.append(
            ChunkRelationship(RelationshipType.SEQUENTIAL, right.id, sequential_strength),
        )
        right.relationships.append(
            ChunkRelationship(RelationshipType.SEQUENTIAL, left.id, sequential_strength),
        )

    fingerprints = [" ".join(chunk.fingerprint) for chunk in chunks]
    vectors = embedder.embed(fingerprints) if chunks else []
    for left_index, right_index, similarity in _similar_pairs(vectors, semantic_threshold):
        strength = round(similarity, 4)
        left, right = chunks[left_index], chunks[right_index]
        left.relationships.append(ChunkRelationship(RelationshipType.SEMANTIC, right.id, strength))
        right.relationships.append(ChunkRelationship(RelationshipType.SEMANTIC, left.id, strength))

    for siblings in _group_by_parent_node(chunks).values():
        for chunk in siblings:
            chunk.relationships.extend(
                ChunkRelationship(RelationshipType.HIERARCHICAL, other.id, 1.0)
                for other in siblings
                if other.id != chunk.id
            )


def _similar_pairs(
    vectors: list[Vector],
    threshold: float,
) -> list[tuple[int, int, float]]:
    pairs: list[tuple[int, int, float]] = []
    for left_index, left_vec in enumerate(vectors):
        if not any(left_vec):
            continue
        for right_index in range(left_index + 1, len(vectors)):
            right_vec = vectors[right_index]
            if not any(right_vec):
                continue
            similarity = cosine_similarity(left_vec, right_vec)
            if similarity > threshold:
                pairs.append((left_index, right_index, similarity))
    return pairs


def _group_by_parent_node(chunks: list[Chunk]) -> dict[str, list[Chunk]]:
    groups: dict[str, list[Chunk]] = defaultdict(list)
    for chunk in chunks:
        if chunk.node_path is None:
            continue
        parent_path = _parent_node_path(chunk.node_path)
        if parent_path:
            groups[parent_path].append(chunk)
    return {path: members for path, members in groups.items() if len(members) > 1}


def _parent_node_path(node_path: str) -> str:
    cut = max(node_path.rfind("."), node_path.rfind("["))
    return node_path[:cut] if cut > 0 else ""
