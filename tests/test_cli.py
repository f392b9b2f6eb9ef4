"""Tests for the Click CLI interface."""

from __future__ import annotations

import subprocess
import sys

from click.testing import CliRunner
from omegaconf import OmegaConf

from boltzfanout.cli import cli


def _write_config(path, predictor, jobs, **extra):
    OmegaConf.save(
        OmegaConf.create({"predictor": predictor, "gpus": "0,1", "jobs": jobs, **extra}),
        path,
    )
    return path


def test_cli_help():
    """Top-level --help shows group description and subcommands."""
    runner = CliRunner()
    result = runner.invoke(cli, ["--help"])
    assert result.exit_code == 0
    assert "Boltz fan-out" in result.output
    assert "run" in result.output
    assert "benchmark" in result.output
    assert "summarize" in result.output


def test_cli_version():
    """--version prints the package version."""
    runner = CliRunner()
    result = runner.invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert "version" in result.output.lower()


def test_run_help():
    """``boltzfanout run --help`` shows config and monitoring options."""
    runner = CliRunner()
    result = runner.invoke(cli, ["run", "--help"])
    assert result.exit_code == 0
    assert "--config" in result.output
    assert "--base-config" in result.output
    assert "--gpus" in result.output
    assert "--poll-interval" in result.output
    assert "--timeout" in result.output
    assert "--no-telemetry" in result.output


def test_benchmark_help():
    """``boltzfanout benchmark --help`` shows benchmark options."""
    runner = CliRunner()
    result = runner.invoke(cli, ["benchmark", "--help"])
    assert result.exit_code == 0
    assert "INPUT_PATH" in result.output
    assert "--predictor" in result.output
    assert "--flags" in result.output
    assert "--name" in result.output


def test_run_requires_config():
    runner = CliRunner()
    result = runner.invoke(cli, ["run"])
    assert result.exit_code != 0
    assert "--config" in result.output


def test_run_all_jobs_succeed(tmp_path, fake_predictor, make_input):
    config = _write_config(
        tmp_path / "jobs.yaml",
        fake_predictor,
        [
            {"name": "a", "input": str(make_input("a", "ok"))},
            {"name": "b", "input": str(make_input("b", "ok"))},
        ],
    )
    runner = CliRunner()
    result = runner.invoke(
        cli,
        [
            "run",
            "--config", str(config),
            "--poll-interval", "0.2",
            "--no-telemetry",
            "--output-root", str(tmp_path / "results"),
        ],
    )
    assert result.exit_code == 0, result.output
    assert "Successful runs: 2/2" in result.output
    assert "Report:" in result.output


def test_run_exits_nonzero_when_a_job_fails(tmp_path, fake_predictor, make_input):
    config = _write_config(
        tmp_path / "jobs.yaml",
        fake_predictor,
        [
            {"name": "a", "input": str(make_input("a", "ok"))},
            {"name": "b", "input": str(make_input("b", "fail"))},
        ],
    )
    runner = CliRunner()
    result = runner.invoke(
        cli,
        [
            "run",
            "--config", str(config),
            "--no-telemetry",
            "--output-root", str(tmp_path / "results"),
            "poll_interval_sec=0.2",
        ],
    )
    assert result.exit_code == 1
    assert "Successful runs: 1/2" in result.output
    assert "FAILED: gpu1_b" in result.output


def test_run_rejects_unknown_config_key(tmp_path, fake_predictor, make_input):
    config = _write_config(
        tmp_path / "jobs.yaml",
        fake_predictor,
        [{"name": "a", "input": str(make_input("a", "ok"))}],
        poll_intreval_sec=5,
    )
    runner = CliRunner()
    result = runner.invoke(cli, ["run", "--config", str(config)])
    assert result.exit_code != 0
    assert "Unknown harness config keys: poll_intreval_sec" in result.output


def test_run_reports_invalid_job_gpu_cleanly(tmp_path, fake_predictor, make_input):
    config = _write_config(
        tmp_path / "jobs.yaml",
        fake_predictor,
        [{"name": "a", "input": str(make_input("a", "ok")), "gpu": "two"}],
    )
    runner = CliRunner()
    result = runner.invoke(
        cli, ["run", "--config", str(config), "--output-root", str(tmp_path / "results")]
    )
    assert result.exit_code == 1
    assert "Job 'a': invalid gpu 'two'" in result.output
    assert not isinstance(result.exception, ValueError)
    assert not (tmp_path / "results").exists()


def test_benchmark_runs_input_on_each_gpu(tmp_path, fake_predictor, make_input):
    target = make_input("affinity", "ok")
    runner = CliRunner()
    result = runner.invoke(
        cli,
        [
            "benchmark", str(target),
            "--gpus", "0,1",
            "--predictor", fake_predictor,
            "--flags", "",
            "--poll-interval", "0.2",
            "--no-telemetry",
            "--output-root", str(tmp_path / "results"),
        ],
    )
    assert result.exit_code == 0, result.output
    assert "Benchmark Results Summary: affinity" in result.output
    assert "gpu0_benchmark" in result.output
    assert "gpu1_benchmark" in result.output
    (run_dir,) = (tmp_path / "results").iterdir()
    assert run_dir.name.startswith("benchmark_results_affinity_")


def test_summarize_rewrites_report(tmp_path, fake_predictor, make_input):
    config = _write_config(
        tmp_path / "jobs.yaml",
        fake_predictor,
        [{"name": "a", "input": str(make_input("a", "ok"))}],
    )
    runner = CliRunner()
    first = runner.invoke(
        cli,
        [
            "run",
            "--config", str(config),
            "--poll-interval", "0.2",
            "--no-telemetry",
            "--output-root", str(tmp_path / "results"),
        ],
    )
    assert first.exit_code == 0, first.output
    (run_dir,) = (tmp_path / "results").iterdir()
    (run_dir / "report.txt").unlink()

    result = runner.invoke(cli, ["summarize", str(run_dir)])
    assert result.exit_code == 0, result.output
    assert "Successful runs: 1/1" in result.output
    assert (run_dir / "report.txt").is_file()


def test_summarize_without_manifest_fails(tmp_path):
    runner = CliRunner()
    result = runner.invoke(cli, ["summarize", str(tmp_path)])
    assert result.exit_code != 0
    assert "manifest.json" in result.output


def test_python_m_boltzfanout_help():
    """``python -m boltzfanout --help`` works via __main__.py."""
    result = subprocess.run(
        [sys.executable, "-m", "boltzfanout", "--help"],
        capture_output=True,
        text=True,
        timeout=30,
    )
    assert result.returncode == 0
    assert "Boltz fan-out" in result.stdout
    assert "benchmark" in result.stdout
