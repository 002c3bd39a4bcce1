"""Tier registry and agent pools."""

from __future__ import annotations

import random
from collections.abc import Callable, Iterable, Mapping

from tierflow.embedding import Embedder, HashingEmbedder, normalize
from tierflow.pipeline.errors import TierConfigurationError
from tierflow.pipeline.executors import PassThroughExecutor, StageExecutor
from tierflow.pipeline.models import Agent, Tier
from tierflow.pipeline.topology import TierDefinition


class TierRegistry:
    """Ordered tiers with their agent pools.

    Tier state is handed to one scheduling unit per tier once the pipeline starts;
    the registry itself only serves setup and read-only lookups afterwards.
    """

    def __init__(self, *, embedder: Embedder | None = None, mutation_rate: float = 0.1) -> None:
        self.embedder = embedder or HashingEmbedder()
        self.mutation_rate = mutation_rate
        self._tiers: dict[str, Tier] = {}
        self._agents: dict[str, Agent] = {}

    def register_tier(  # noqa: PLR0913
        self,
        tier_id: str,
        level: int,
        capacity: int,
        keywords: Iterable[str],
        *,
        executor: StageExecutor | None = None,
        name: str | None = None,
    ) -> Tier:
        """Register a processing stage; capacity must be positive and id/level unique."""

        if capacity <= 0:
            raise TierConfigurationError(
                f"Tier {tier_id!r} must have capacity > 0, got {capacity}.",
            )
        if tier_id in self._tiers:
            raise TierConfigurationError(f"Tier {tier_id!r} is already registered.")
        if any(tier.level == level for tier in self._tiers.values()):
            raise TierConfigurationError(f"Tier level {level} is already taken.")

        tier = Tier(
            id=tier_id,
            name=name or tier_id.replace("_", " ").title(),
            level=level,
            capacity=capacity,
            keywords=tuple(keywords),
            executor=executor or PassThroughExecutor(tier_id=tier_id),
        )
        self._tiers[tier_id] = tier
        return tier

    def populate_agents(self, tier_id: str, count: int) -> list[Agent]:
        """Create ``count`` more agents with fixed specialization vectors."""

        tier = self.get_tier(tier_id)
        if count <= 0:
            raise TierConfigurationError(f"Agent count for tier {tier_id!r} must be > 0.")

        base = self.embedder.embed([" ".join((tier.id, *tier.keywords))])[0]
        created: list[Agent] = []
        for offset in range(count):
            index = len(tier.agents) + offset
            agent_id = f"{tier_id}-agent-{index:03d}"
            agent = Agent(
                id=agent_id,
                tier_id=tier_id,
                vector=tuple(self._perturb(base, seed=agent_id)),
            )
            self._agents[agent_id] = agent
            created.append(agent)
        tier.agents.extend(created)
        return created

    def get_tier(self, tier_id: str) -> Tier:
        tier = self._tiers.get(tier_id)
        if tier is None:
            raise TierConfigurationError(f"Unknown tier {tier_id!r}.")
        return tier

    def list_agents(self, tier_id: str) -> list[Agent]:
        return list(self.get_tier(tier_id).agents)

    def get_agent(self, agent_id: str) -> Agent | None:
        return self._agents.get(agent_id)

    def tiers(self) -> list[Tier]:
        """Registered tiers in level order."""

        return sorted(self._tiers.values(), key=lambda tier: tier.level)

    def next_tier(self, tier_id: str) -> Tier | None:
        ordered = self.tiers()
        for position, tier in enumerate(ordered):
            if tier.id == tier_id:
                return ordered[position + 1] if position + 1 < len(ordered) else None
        raise TierConfigurationError(f"Unknown tier {tier_id!r}.")

    def _perturb(self, base: list[float], *, seed: str) -> list[float]:
        rng = random.Random(seed)  # noqa: S311
        noise = normalize([rng.gauss(0.0, 1.0) for _ in base])
        return normalize(
            [
                value + self.mutation_rate * jitter
                for value, jitter in zip(base, noise, strict=True)
            ],
        )


def build_registry(
    definitions: Iterable[TierDefinition],
    *,
    embedder: Embedder | None = None,
    agents_per_tier: int = 0,
    executor_factory: Callable[[TierDefinition], StageExecutor] | None = None,
    executors: Mapping[str, StageExecutor] | None = None,
) -> TierRegistry:
    """Registry for ``definitions``; ``agents_per_tier=0`` means capacity // 10."""

    registry = TierRegistry(embedder=embedder)
    for definition in definitions:
        executor = (executors or {}).get(definition.id)
        if executor is None and executor_factory is not None:
            executor = executor_factory(definition)
        registry.register_tier(
            definition.id,
            definition.level,
            definition.capacity,
            definition.keywords,
            executor=executor,
            name=definition.name,
        )
        registry.populate_agents(
            definition.id,
            agents_per_tier or definition.default_agent_count,
        )
    return registry
