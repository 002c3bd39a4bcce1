from __future__ import annotations

import json
import re
from pathlib import Path

import allure
from click.testing import CliRunner

from tierflow.main import tierflow

pytestmark = [
    allure.epic("CLI"),
    allure.feature("Commands"),
]


def _write(path: Path, content: str) -> Path:
    path.write_text(content, encoding="utf-8")
    return path


def test_chunk_command_prints_chunks_and_metrics(tmp_path: Path) -> None:
    source = _write(tmp_path / "service.log", "a" * 10_000)

    result = CliRunner().invoke(tierflow, ["chunk", str(source), "--relationships"])

    assert result.exit_code == 0, result.output
    assert "type=log size=10000 chunks=3" in result.output
    assert "#1/3 [0:4000] size=4000" in result.output
    assert "edges: " in result.output
    assert "sequential=2" in result.output
    assert "Chunking: chunks=3" in result.output


def test_chunk_command_reports_fallback_and_search(tmp_path: Path) -> None:
    source = _write(tmp_path / "broken.json", '{"title": "unterminated')

    result = CliRunner().invoke(tierflow, ["chunk", str(source), "--search", "unterminated"])

    assert result.exit_code == 0, result.output
    assert "warning: hierarchical parsing failed" in result.output
    assert "Search 'unterminated': #1" in result.output


def test_chunk_command_rejects_unsupported_strategy(tmp_path: Path) -> None:
    source = _write(tmp_path / "table.csv", "a,b\n1,2\n")

    result = CliRunner().invoke(tierflow, ["chunk", str(source), "--strategy", "hierarchical"])

    assert result.exit_code == 1
    assert "'csv'" in result.output


def test_pipeline_tiers_lists_topology() -> None:
    result = CliRunner().invoke(
        tierflow,
        ["pipeline", "tiers", "--tier", "content_reading", "--tier", "content_classification"],
    )

    assert result.exit_code == 0, result.output
    lines = result.output.splitlines()
    assert lines[0] == "Tiers: 2"
    assert "content_reading" in lines[1]
    assert "capacity=1000 agents=100" in lines[1]
    assert "content_classification" in lines[2]


def test_pipeline_run_then_inspect(tmp_path: Path) -> None:
    db_path = tmp_path / "runs.db"
    notes = _write(tmp_path / "notes.md", "First paragraph.\n\nSecond paragraph.\n")
    data = _write(tmp_path / "data.json", json.dumps({"body": "x" * 120}))
    runner = CliRunner()

    run = runner.invoke(
        tierflow,
        [
            "pipeline",
            "run",
            str(notes),
            str(data),
            "--db-path",
            str(db_path),
            "--tier",
            "content_reading",
            "--tier",
            "content_classification",
        ],
    )

    assert run.exit_code == 0, run.output
    match = re.search(r"Batch submitted: batch_id=(\S+) files=2", run.output)
    assert match is not None
    batch_id = match.group(1)
    assert "idle=yes" in run.output
    assert f"Batch {batch_id}: status=completed" in run.output
    assert f"Run stored: db={db_path} tasks=4" in run.output

    listing = runner.invoke(tierflow, ["pipeline", "inspect", "--db-path", str(db_path)])
    assert listing.exit_code == 0, listing.output
    assert batch_id in listing.output

    detail = runner.invoke(
        tierflow,
        ["pipeline", "inspect", "--db-path", str(db_path), "--batch-id", batch_id, "--events"],
    )
    assert detail.exit_code == 0, detail.output
    assert "Status: completed" in detail.output
    assert "Tasks: 4" in detail.output
    assert "chain_exited" in detail.output


def test_pipeline_inspect_reports_missing_batch(tmp_path: Path) -> None:
    db_path = tmp_path / "runs.db"

    empty = CliRunner().invoke(tierflow, ["pipeline", "inspect", "--db-path", str(db_path)])
    missing = CliRunner().invoke(
        tierflow,
        ["pipeline", "inspect", "--db-path", str(db_path), "--batch-id", "nope"],
    )

    assert empty.output.strip() == "No stored batches."
    assert missing.output.strip() == "Batch not found: nope"
