from __future__ import annotations

from pathlib import Path

import allure
import pytest

from tierflow.config import ChunkingSettings, PipelineSettings, Settings
from tierflow.pipeline.topology import DEFAULT_TIER_IDS

pytestmark = [
    allure.epic("Configuration"),
    allure.feature("Settings"),
]


def test_from_env_defaults() -> None:
    settings = Settings.from_env()

    assert settings.db_path == Path(".tierflow.db")
    assert settings.chunking.fixed_chunk_size == 4_000
    assert settings.chunking.strategy_by_content_type["json"] == "hierarchical"
    assert settings.pipeline.tier_ids == DEFAULT_TIER_IDS
    assert settings.pipeline.max_retries == 3
    assert settings.pipeline.threaded is False
    assert settings.embedding.model_name == "hashing"
    settings.validate()


def test_from_env_reads_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("TIERFLOW_DB_PATH", str(tmp_path / "env.db"))
    monkeypatch.setenv("TIERFLOW_FIXED_CHUNK_SIZE", "1000")
    monkeypatch.setenv("TIERFLOW_MAX_RETRIES", "5")
    monkeypatch.setenv("TIERFLOW_TIERS", "content_reading, content_classification,content_reading")
    monkeypatch.setenv("TIERFLOW_THREADED", "yes")

    settings = Settings.from_env()

    assert settings.db_path == tmp_path / "env.db"
    assert settings.chunking.fixed_chunk_size == 1_000
    assert settings.pipeline.max_retries == 5
    assert settings.pipeline.tier_ids == ("content_reading", "content_classification")
    assert settings.pipeline.threaded is True


def test_explicit_db_path_wins_over_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("TIERFLOW_DB_PATH", str(tmp_path / "env.db"))

    assert Settings.from_env(db_path=tmp_path / "cli.db").db_path == tmp_path / "cli.db"


def test_invalid_boolean_is_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TIERFLOW_THREADED", "maybe")

    with pytest.raises(ValueError, match="Invalid boolean value for TIERFLOW_THREADED"):
        Settings.from_env()


@pytest.mark.parametrize(
    ("settings", "message"),
    [
        (Settings(pipeline=PipelineSettings(max_retries=-1)), "TIERFLOW_MAX_RETRIES"),
        (Settings(pipeline=PipelineSettings(tier_ids=("nope",))), "Unknown tier ids"),
        (Settings(pipeline=PipelineSettings(tier_ids=())), "at least one tier"),
        (Settings(chunking=ChunkingSettings(fixed_chunk_size=0)), "TIERFLOW_FIXED_CHUNK_SIZE"),
        (
            Settings(chunking=ChunkingSettings(semantic_min_size=7_000)),
            "TIERFLOW_SEMANTIC_MIN_SIZE must not exceed",
        ),
        (
            Settings(chunking=ChunkingSettings(hybrid_target_size=9_000)),
            "TIERFLOW_HYBRID_TARGET_SIZE must not exceed",
        ),
        (Settings(chunking=ChunkingSettings(adaptive_min_size=5_000)), "Adaptive sizes"),
        (
            Settings(chunking=ChunkingSettings(semantic_edge_threshold=1.5)),
            "TIERFLOW_SEMANTIC_EDGE_THRESHOLD",
        ),
    ],
)
def test_validate_rejects_out_of_range_values(settings: Settings, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        settings.validate()


def test_zero_retries_is_valid() -> None:
    Settings(pipeline=PipelineSettings(max_retries=0)).validate()
