from __future__ import annotations

import json
from pathlib import Path

import pytest

from mcp_wandb_run_server.cli import main


@pytest.fixture
def run_path(tmp_path: Path, write_run_log, sample_run) -> Path:
    return write_run_log(tmp_path / "run-abc123" / "run-abc123.wandb", sample_run)


def test_inspect_text(run_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    main(["inspect", str(run_path)])
    out = capsys.readouterr().out
    assert out.startswith("Run abc123 (brisk-sun-1)  project=demo")
    assert "  loss: 3 pts  1 -> 0.5" in out
    assert "System metrics: 2" in out


def test_inspect_json(run_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    main(["inspect", "--json", "--verify-checksums", str(run_path)])
    out = json.loads(capsys.readouterr().out)
    assert out["run_id"] == "abc123"
    assert out["metrics"]["acc"]["final"] == 0.6


def test_scan(run_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    main(["scan", str(run_path.parent.parent)])
    out = capsys.readouterr().out
    assert out.startswith("abc123\tbrisk-sun-1\tdemo\t")
    assert "Found 1 runs." in out


def test_compare_csv(run_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    main(["compare", str(run_path.parent.parent), "--metric", "loss", "--csv"])
    assert capsys.readouterr().out == "step,brisk-sun-1\n0,1\n1,0.8\n2,0.5\n"


def test_context_to_file(run_path: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    target = tmp_path / "context.md"
    main(["context", str(run_path.parent.parent), "--run", "abc123", "-o", str(target)])
    assert target.read_text(encoding="utf-8").startswith("# W&B Training Runs Context")
    assert capsys.readouterr().out.startswith(f"Wrote {target}")


@pytest.mark.parametrize(
    "argv",
    [
        ["inspect", "does-not-exist.wandb"],
        ["scan", "no-such-folder"],
    ],
)
def test_missing_paths_exit_2(argv: list[str], capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as exc:
        main(argv)
    assert exc.value.code == 2
    assert capsys.readouterr().err


def test_unknown_run_exits_2(run_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as exc:
        main(["compare", str(run_path.parent.parent), "--run", "ghost"])
    assert exc.value.code == 2
    assert "Unknown run id: ghost" in capsys.readouterr().err


def test_inspect_groups_metrics_and_reads_companions(
    tmp_path: Path, write_run_log, records, capsys: pytest.CaptureFixture[str]
) -> None:
    path = write_run_log(
        tmp_path / "run-g" / "run-g.wandb",
        [records.run("g"), records.history(0, **{"train/loss": 1.0, "train/acc": 0.1, "lr": 0.01})],
    )
    files_dir = path.parent / "files"
    files_dir.mkdir()
    (files_dir / "wandb-metadata.json").write_text(json.dumps({"host": "node-3"}))
    (files_dir / "wandb-summary.json").write_text(json.dumps({"train/loss": 1.0}))

    main(["inspect", str(path)])
    out = capsys.readouterr().out

    assert "  host: node-3" in out
    assert "  [train]\n    train/acc: 1 pts" in out
    assert "\n  lr: 1 pts" in out
    assert "Summary: 1 keys" in out
