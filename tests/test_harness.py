"""End-to-end tests for the harness using a stand-in predictor."""

from __future__ import annotations

import json
from datetime import datetime

import pytest

from boltzfanout.classify import Classification
from boltzfanout.config import build_config
from boltzfanout.errors import ConfigError, HarnessError
from boltzfanout.harness import new_run_dir, resolve_slots, run_harness, summarize_run

QUERY_TEXT = "0, 1000, 32768, 50\n1, 2000, 32768, 60\n2, 3000, 32768, 70\n"


def _config(tmp_path, predictor, jobs, **extra):
    return build_config(
        {
            "predictor": predictor,
            "common_flags": "--use_msa_server",
            "gpus": "0,1,2",
            "output_root": str(tmp_path / "results"),
            "poll_interval_sec": 0.2,
            "telemetry_interval_sec": 0.1,
            "jobs": jobs,
            **extra,
        }
    )


def _run(config, **kwargs):
    kwargs.setdefault("telemetry_query", lambda: QUERY_TEXT)
    kwargs.setdefault("device_counter", lambda: 0)
    return run_harness(config, **kwargs)


def test_run_classifies_every_job_and_writes_layout(tmp_path, fake_predictor, make_input) -> None:
    jobs = [
        {"name": "simple", "input": str(make_input("simple", "ok"))},
        {"name": "oom", "input": str(make_input("oom", "fail"))},
        {"name": "empty", "input": str(make_input("empty", "noartifacts"))},
    ]
    result = _run(_config(tmp_path, fake_predictor, jobs))

    assert [o.descriptor_id for o in result.outcomes] == ["gpu0_simple", "gpu1_oom", "gpu2_empty"]
    assert [o.classification for o in result.outcomes] == [
        Classification.SUCCESS,
        Classification.FAILED,
        Classification.INDETERMINATE,
    ]
    assert result.outcomes[0].artifact_count == 1
    assert result.outcomes[1].exit_status == 1
    assert result.exit_code == 1

    run_dir = result.run_dir
    assert run_dir.parent == tmp_path / "results"
    assert run_dir.name.startswith("multi_gpu_results_")
    for name in ("gpu0_simple", "gpu1_oom", "gpu2_empty"):
        assert (run_dir / name).is_dir()
        assert (run_dir / f"{name}.log").is_file()
    assert (run_dir / "telemetry.csv").is_file()
    assert (run_dir / "harness.log").read_text()
    assert result.report_path.read_text() == result.report_text
    assert "Successful runs: 1/3" in result.report_text

    manifest = json.loads((run_dir / "manifest.json").read_text())
    assert [j["id"] for j in manifest["jobs"]] == ["gpu0_simple", "gpu1_oom", "gpu2_empty"]
    assert all(j["exit_status"] is not None for j in manifest["jobs"])
    assert manifest["wall_clock"] > 0


def test_each_job_sees_its_own_gpu(tmp_path, fake_predictor, make_input) -> None:
    jobs = [
        {"name": "a", "input": str(make_input("a", "ok")), "gpu": 2},
        {"name": "b", "input": str(make_input("b", "ok"))},
    ]
    result = _run(_config(tmp_path, fake_predictor, jobs, telemetry_enabled=False))

    assert [h.descriptor.gpu_slot for h in result.handles] == [2, 0]
    for handle in result.handles:
        log = handle.descriptor.log_path.read_text()
        assert f"gpu {handle.descriptor.gpu_slot}" in log
    assert result.exit_code == 0
    assert result.telemetry == []
    assert not (result.run_dir / "telemetry.csv").exists()


def test_benign_error_mention_is_classified_failed(tmp_path, fake_predictor, make_input) -> None:
    jobs = [{"name": "noisy", "input": str(make_input("noisy", "noisy"))}]
    result = _run(_config(tmp_path, fake_predictor, jobs))

    outcome = result.outcomes[0]
    assert outcome.exit_status == 0
    assert outcome.artifact_count == 1
    assert outcome.classification is Classification.FAILED


def test_launch_failure_does_not_stop_other_jobs(tmp_path, fake_predictor, make_input) -> None:
    config = _config(
        tmp_path,
        str(tmp_path / "not-installed"),
        [{"name": "a", "input": str(make_input("a", "ok"))}],
    )
    result = _run(config)
    assert result.outcomes[0].classification is Classification.FAILED
    assert result.handles[0].launch_error
    assert result.report_path.is_file()


def test_timeout_marks_hung_job_indeterminate(tmp_path, fake_predictor, make_input) -> None:
    jobs = [
        {"name": "quick", "input": str(make_input("quick", "ok"))},
        {"name": "hung", "input": str(make_input("hung", "sleep 120"))},
    ]
    result = _run(_config(tmp_path, fake_predictor, jobs, timeout_sec=3, kill_grace_sec=5))

    quick, hung = result.outcomes
    assert quick.classification is Classification.SUCCESS
    assert hung.classification is Classification.INDETERMINATE
    assert result.handles[1].timed_out is True


def test_telemetry_is_sampled_for_job_slots(tmp_path, fake_predictor, make_input) -> None:
    jobs = [{"name": "slow", "input": str(make_input("slow", "sleep 1"))}]
    result = _run(_config(tmp_path, fake_predictor, jobs))

    assert result.telemetry
    assert {s.gpu_slot for s in result.telemetry} == {0}
    assert "GPU 0: 1000MB/32768MB" in result.report_text


def test_empty_job_list_is_fatal_before_anything_is_created(tmp_path, fake_predictor) -> None:
    config = _config(tmp_path, fake_predictor, [])
    with pytest.raises(ConfigError, match="empty"):
        _run(config)
    assert not (tmp_path / "results").exists()


def test_uncreatable_output_root_is_fatal(tmp_path, fake_predictor, make_input) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    config = _config(
        tmp_path,
        fake_predictor,
        [{"name": "a", "input": str(make_input("a", "ok"))}],
        output_root=str(blocker / "results"),
    )
    with pytest.raises(HarnessError, match="Cannot create output directory"):
        _run(config)


def test_summarize_run_reclassifies_from_manifest(tmp_path, fake_predictor, make_input) -> None:
    jobs = [
        {"name": "a", "input": str(make_input("a", "ok"))},
        {"name": "b", "input": str(make_input("b", "noartifacts"))},
    ]
    result = _run(_config(tmp_path, fake_predictor, jobs))

    again = summarize_run(result.run_dir)
    assert again.outcomes == result.outcomes
    assert [s.gpu_slot for s in again.telemetry] == [s.gpu_slot for s in result.telemetry]

    # Artifacts appearing later change the classification on re-summary.
    late = result.handles[1].descriptor.output_dir / "predictions" / "b"
    late.mkdir(parents=True)
    (late / "b_model_0.cif").write_text("data_b\n")
    updated = summarize_run(result.run_dir)
    assert updated.outcomes[1].classification is Classification.SUCCESS
    assert updated.exit_code == 0


def test_summarize_run_requires_manifest(tmp_path) -> None:
    with pytest.raises(HarnessError, match="manifest.json"):
        summarize_run(tmp_path)


def test_resolve_slots() -> None:
    assert resolve_slots("all", device_counter=lambda: 4) == [0, 1, 2, 3]
    assert resolve_slots("all", device_counter=lambda: 0) is None
    assert resolve_slots("1,3", device_counter=lambda: 0) == [1, 3]
    assert resolve_slots("0,1,2,3,4,5,6,7", device_counter=lambda: 4) == [0, 1, 2, 3]
    with pytest.raises(ConfigError):
        resolve_slots("6,7", device_counter=lambda: 2)


def test_new_run_dir_is_timestamped_and_unique(tmp_path) -> None:
    now = datetime(2025, 3, 1, 12, 30, 5)
    first = new_run_dir(tmp_path, "bench", now)
    assert first.name == "bench_20250301_123005"
    first.mkdir()
    assert new_run_dir(tmp_path, "bench", now).name == "bench_20250301_123005_1"
