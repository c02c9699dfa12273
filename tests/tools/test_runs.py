from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from mcp_wandb_run_server.tools.runs import (
    ai_context_impl,
    clear_registries,
    compare_runs_impl,
    export_metric_csv_impl,
    get_registry,
    list_runs_impl,
    run_summary_impl,
)


@pytest.fixture(autouse=True)
def _fresh_registries():
    clear_registries()
    yield
    clear_registries()


@pytest.fixture
def run_folder(tmp_path: Path, write_run_log, records, sample_run) -> Path:
    write_run_log(tmp_path / "run-20240101-abc123" / "run-abc123.wandb", sample_run)
    write_run_log(
        tmp_path / "run-20240102-def456" / "run-def456.wandb",
        [
            records.run("def456", project="demo", display_name="calm-sea-2"),
            records.config({"lr": 0.01, "batch_size": 32}),
            records.history(0, loss=1.2),
            records.history(1, loss=0.9),
            records.history(3, loss=0.4),
        ],
    )
    return tmp_path


@pytest.mark.asyncio
async def test_list_runs(run_folder: Path) -> None:
    out = await list_runs_impl(folder=str(run_folder))

    assert out["folder"] == str(run_folder.resolve())
    assert out["count"] == 2
    assert [r["run_id"] for r in out["runs"]] == ["abc123", "def456"]
    first = out["runs"][0]
    assert first["run_name"] == "brisk-sun-1"
    assert first["selected"] is True
    assert first["parsed"] is False


@pytest.mark.asyncio
async def test_list_runs_missing_folder(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        await list_runs_impl(folder=str(tmp_path / "absent"))


@pytest.mark.asyncio
async def test_registry_follows_disk(run_folder: Path, write_run_log, records) -> None:
    registry = await get_registry(str(run_folder))
    assert registry.total_count() == 2

    write_run_log(run_folder / "run-new" / "run-new.wandb", [records.run("new")])
    (run_folder / "run-20240101-abc123" / "run-abc123.wandb").unlink()

    again = await get_registry(str(run_folder))
    assert again is registry
    assert sorted(r.run_id for r in registry.get_runs()) == ["def456", "new"]


@pytest.mark.asyncio
async def test_run_summary(run_folder: Path) -> None:
    path = run_folder / "run-20240101-abc123" / "run-abc123.wandb"
    out = await run_summary_impl(run_path=str(path))

    assert out["run_id"] == "abc123"
    assert out["config"]["lr"] == 0.001
    loss = out["metrics"]["loss"]
    assert (loss["points"], loss["initial"], loss["final"], loss["trend"]) == (3, 1.0, 0.5, "→")
    assert "gpu.0.gpu" in out["system_metrics"]
    assert out["metadata"]["exit_code"] == 0
    assert out["summary"] == {}


@pytest.mark.asyncio
async def test_run_summary_reads_companion_files(run_folder: Path) -> None:
    run_dir = run_folder / "run-20240102-def456"
    files_dir = run_dir / "files"
    files_dir.mkdir()
    (files_dir / "wandb-metadata.json").write_text(json.dumps({"host": "node-9", "gpu": "H100"}))
    (files_dir / "wandb-summary.json").write_text(json.dumps({"loss": 0.4}))

    out = await run_summary_impl(run_path=str(run_dir / "run-def456.wandb"))

    assert out["metadata"]["host"] == "node-9"
    assert out["metadata"]["gpu"] == "H100"
    assert out["summary"] == {"loss": 0.4}


@pytest.mark.asyncio
async def test_compare_runs(run_folder: Path) -> None:
    out = await compare_runs_impl(folder=str(run_folder), metrics=["loss"])

    assert out["run_ids"] == ["abc123", "def456"]
    [loss] = out["metrics"]
    assert loss["metric"] == "loss"
    assert loss["runs"]["def456"]["last_step"] == 3
    assert out["config_common"]["batch_size"] == 32
    assert out["config_differences"]["lr"] == {"abc123": 0.001, "def456": 0.01}
    assert out["errors"] == {}


@pytest.mark.asyncio
async def test_compare_runs_reports_parse_errors(run_folder: Path) -> None:
    bad = run_folder / "run-broken" / "run-broken.wandb"
    bad.parent.mkdir()
    bad.write_bytes(b"not a run log")

    out = await compare_runs_impl(folder=str(run_folder), run_ids=["broken", "def456"])

    assert out["run_ids"] == ["def456"]
    assert "broken" in out["errors"]


@pytest.mark.asyncio
async def test_compare_runs_unknown_id(run_folder: Path) -> None:
    with pytest.raises(ValueError, match="Unknown run id"):
        await compare_runs_impl(folder=str(run_folder), run_ids=["nope"])


@pytest.mark.asyncio
async def test_export_metric_csv(run_folder: Path) -> None:
    out = await export_metric_csv_impl(folder=str(run_folder), metric="loss")

    assert out["runs"] == ["abc123", "def456"]
    assert out["csv"] == (
        "step,brisk-sun-1,calm-sea-2\n"
        "0,1,1.2\n"
        "1,0.8,0.9\n"
        "2,0.5,\n"
        "3,,0.4\n"
    )


@pytest.mark.asyncio
async def test_concurrent_exports_keep_their_own_runs(run_folder: Path) -> None:
    first, second = await asyncio.gather(
        export_metric_csv_impl(folder=str(run_folder), metric="loss", run_ids=["abc123"]),
        export_metric_csv_impl(folder=str(run_folder), metric="loss", run_ids=["def456"]),
    )

    assert first["runs"] == ["abc123"]
    assert first["csv"] == "step,brisk-sun-1\n0,1\n1,0.8\n2,0.5\n"
    assert second["runs"] == ["def456"]
    assert second["csv"] == "step,calm-sea-2\n0,1.2\n1,0.9\n3,0.4\n"

    registry = await get_registry(str(run_folder))
    assert registry.get_selected_run_ids() == ["abc123", "def456"]


@pytest.mark.asyncio
async def test_export_system_metric(run_folder: Path) -> None:
    out = await export_metric_csv_impl(folder=str(run_folder), metric="cpu", run_ids=["abc123"])
    assert out["csv"].startswith("step,brisk-sun-1\n0,12.5\n")


@pytest.mark.asyncio
async def test_export_unknown_metric(run_folder: Path) -> None:
    with pytest.raises(ValueError, match="Available: acc, loss"):
        await export_metric_csv_impl(folder=str(run_folder), metric="missing")
    with pytest.raises(ValueError, match="non-empty"):
        await export_metric_csv_impl(folder=str(run_folder), metric="  ")


@pytest.mark.asyncio
async def test_ai_context(run_folder: Path) -> None:
    out = await ai_context_impl(folder=str(run_folder), run_ids=["def456"])

    assert out["run_count"] == 1
    assert out["token_estimate"] > 0
    markdown = out["markdown"]
    assert "Runs: 1 selected" in markdown
    assert "| def456 | calm-sea-2 | loss: 1.2 → 0.4 |" in markdown
