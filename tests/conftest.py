"""Shared test fixtures."""

from __future__ import annotations

import os
from collections.abc import Callable

import pytest

from tierflow.embedding import HashingEmbedder
from tierflow.pipeline.executors import StageExecutor
from tierflow.pipeline.models import FileSpec
from tierflow.pipeline.registry import TierRegistry

RegistryFactory = Callable[..., TierRegistry]
FilesFactory = Callable[..., list[FileSpec]]


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep developer TIERFLOW_* variables out of tests."""

    for name in list(os.environ):
        if name.startswith("TIERFLOW_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def make_registry() -> RegistryFactory:
    """Registry from ``(tier_id, capacity, agent_count)`` triples in level order."""

    def _build(
        tiers: list[tuple[str, int, int]],
        *,
        executors: dict[str, StageExecutor] | None = None,
    ) -> TierRegistry:
        registry = TierRegistry(embedder=HashingEmbedder(dimensions=64))
        for level, (tier_id, capacity, agents) in enumerate(tiers, start=1):
            registry.register_tier(
                tier_id,
                level,
                capacity,
                (f"{tier_id}_work", "generic_processing"),
                executor=(executors or {}).get(tier_id),
            )
            registry.populate_agents(tier_id, agents)
        return registry

    return _build


@pytest.fixture()
def make_files() -> FilesFactory:
    def _build(*file_ids: str, size: int = 2048, file_type: str = "text") -> list[FileSpec]:
        return [
            FileSpec(id=file_id, path=f"/data/{file_id}.txt", size=size, type=file_type)
            for file_id in file_ids
        ]

    return _build
