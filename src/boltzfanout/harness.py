"""End-to-end run: launch -> monitor + telemetry -> classify -> report."""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Mapping

from boltzfanout.classify import (
    DEFAULT_ARTIFACT_SUBDIR,
    DEFAULT_ARTIFACT_SUFFIXES,
    DEFAULT_FAILURE_TOKENS,
    JobOutcome,
    LogClassifier,
    SubstringLogClassifier,
    classify_all,
)
from boltzfanout.config import HarnessConfig
from boltzfanout.errors import ConfigError, HarnessError
from boltzfanout.jobs import JobHandle, JobState, build_descriptors, parse_gpu_list
from boltzfanout.launcher import launch_all
from boltzfanout.manifest import MANIFEST_NAME, load_manifest, write_manifest
from boltzfanout.monitor import LivenessMonitor
from boltzfanout.report import Report, generate, render
from boltzfanout.telemetry import (
    TelemetrySample,
    TelemetrySampler,
    TelemetrySink,
    count_devices,
    query_devices,
)

logger = logging.getLogger(__name__)

TELEMETRY_NAME = "telemetry.csv"
REPORT_NAME = "report.txt"
HARNESS_LOG_NAME = "harness.log"


@dataclass
class RunResult:
    run_dir: Path
    handles: list[JobHandle]
    outcomes: list[JobOutcome]
    report: Report
    telemetry: list[TelemetrySample]
    report_path: Path
    report_text: str

    @property
    def exit_code(self) -> int:
        return 0 if self.report.all_succeeded else 1


def resolve_slots(
    gpus,
    *,
    device_counter: Callable[[], int] = count_devices,
) -> list[int] | None:
    """Turn the configured GPU list into concrete slots.

    ``"all"`` means every device ``nvidia-smi -L`` reports.  Requested
    slots beyond the detected device count are dropped with a warning.
    ``None`` means the device count is unknown and slots are assigned
    0, 1, 2, ... per job.
    """
    requested = parse_gpu_list(gpus)
    available = device_counter()

    if requested is None:
        if available == 0:
            logger.warning("No GPUs detected; assigning slots 0..N-1 by job order")
            return None
        return list(range(available))

    if available and any(slot >= available for slot in requested):
        logger.warning(
            "Only %d GPUs available, but %d requested (%s); adjusting",
            available, len(requested), ",".join(map(str, requested)),
        )
        requested = [slot for slot in requested if slot < available]
        if not requested:
            raise ConfigError(f"None of the requested GPUs exist ({available} detected)")
    return requested


def new_run_dir(output_root: str | Path, prefix: str, now: datetime | None = None) -> Path:
    """Pick ``<root>/<prefix>_<YYYYmmdd_HHMMSS>`` without creating it."""
    stamp = (now or datetime.now()).strftime("%Y%m%d_%H%M%S")
    base = Path(output_root) / f"{prefix}_{stamp}"
    candidate = base
    n = 1
    while candidate.exists():
        candidate = base.with_name(f"{base.name}_{n}")
        n += 1
    return candidate


def _attach_file_log(path: Path) -> logging.Handler:
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
    logging.getLogger("boltzfanout").addHandler(handler)
    return handler


def _detach_file_log(handler: logging.Handler) -> None:
    logging.getLogger("boltzfanout").removeHandler(handler)
    handler.close()


def run_harness(
    config: HarnessConfig,
    *,
    log_classifier: LogClassifier | None = None,
    telemetry_query: Callable[[], str] = query_devices,
    device_counter: Callable[[], int] = count_devices,
    base_env: Mapping[str, str] | None = None,
    now: datetime | None = None,
    title: str = "Results Summary",
) -> RunResult:
    """Run every configured job and write the report.

    Raises :class:`ConfigError` for an empty or invalid job set and
    :class:`HarnessError` if the run directory cannot be created; both
    happen before any job starts.  Individual job failures never abort
    the run.
    """
    if not config.jobs:
        raise ConfigError("No jobs to run: the job list is empty")

    slots = resolve_slots(config.gpus, device_counter=device_counter)
    run_dir = new_run_dir(config.output_root, config.run_prefix, now)
    descriptors = build_descriptors(
        config.jobs,
        run_dir,
        predictor=config.predictor,
        common_flags=config.common_flags,
        slots=slots,
    )

    try:
        run_dir.mkdir(parents=True)
    except OSError as exc:
        raise HarnessError(f"Cannot create output directory {run_dir}: {exc}") from exc

    file_log = _attach_file_log(run_dir / HARNESS_LOG_NAME)
    try:
        logger.info("=== Starting %d jobs ===", len(descriptors))
        logger.info("Output directory: %s", run_dir)

        wall_start = time.time()
        handles = launch_all(descriptors, gpu_env_var=config.gpu_env_var, base_env=base_env)
        manifest_path = run_dir / MANIFEST_NAME
        run_meta = {"started_at": wall_start, "config": asdict(config)}
        write_manifest(handles, manifest_path, **run_meta)

        sampler = None
        if config.telemetry_enabled:
            sampler = TelemetrySampler(
                TelemetrySink(run_dir / TELEMETRY_NAME),
                interval_sec=config.telemetry_interval_sec,
                slots=[d.gpu_slot for d in descriptors],
                query=telemetry_query,
            )
            sampler.start()

        try:
            LivenessMonitor(
                handles,
                interval_sec=config.poll_interval_sec,
                timeout_sec=config.timeout_sec,
                kill_grace_sec=config.kill_grace_sec,
            ).run()
        finally:
            if sampler is not None:
                sampler.stop()

        wall_clock = time.time() - wall_start
        write_manifest(handles, manifest_path, wall_clock=wall_clock, **run_meta)
        logger.info("=== All jobs completed in %.1fs ===", wall_clock)

        outcomes = classify_all(
            handles,
            artifact_subdir=config.artifact_subdir,
            log_classifier=log_classifier or SubstringLogClassifier(config.failure_tokens),
            artifact_suffixes=config.artifact_suffixes,
        )
        telemetry = sampler.samples if sampler is not None else []
        report = generate(outcomes, telemetry, wall_clock=wall_clock)
        text = render(report, title=title, run_dir=run_dir)
        report_path = run_dir / REPORT_NAME
        report_path.write_text(text, encoding="utf-8")
        logger.info("Report written to %s", report_path)
    finally:
        _detach_file_log(file_log)

    return RunResult(
        run_dir=run_dir,
        handles=handles,
        outcomes=outcomes,
        report=report,
        telemetry=telemetry,
        report_path=report_path,
        report_text=text,
    )


def summarize_run(
    run_dir: str | Path,
    *,
    log_classifier: LogClassifier | None = None,
    title: str = "Results Summary",
) -> RunResult:
    """Re-classify the jobs of an existing run directory and rewrite its report."""
    run_dir = Path(run_dir)
    manifest_path = run_dir / MANIFEST_NAME
    if not manifest_path.is_file():
        raise HarnessError(f"No {MANIFEST_NAME} in {run_dir}")

    handles, meta = load_manifest(manifest_path)
    saved = meta.get("config") or {}
    for handle in handles:
        if handle.state is not JobState.FINISHED:
            logger.warning(
                "%s has no recorded exit status; the run may have been interrupted",
                handle.descriptor.id,
            )
            handle.exit_status = -1

    outcomes = classify_all(
        handles,
        artifact_subdir=saved.get("artifact_subdir", DEFAULT_ARTIFACT_SUBDIR),
        log_classifier=log_classifier
        or SubstringLogClassifier(saved.get("failure_tokens") or DEFAULT_FAILURE_TOKENS),
        artifact_suffixes=saved.get("artifact_suffixes") or DEFAULT_ARTIFACT_SUFFIXES,
    )

    telemetry_path = run_dir / TELEMETRY_NAME
    telemetry = TelemetrySink(telemetry_path).read() if telemetry_path.is_file() else []

    report = generate(outcomes, telemetry, wall_clock=meta.get("wall_clock"))
    text = render(report, title=title, run_dir=run_dir)
    report_path = run_dir / REPORT_NAME
    report_path.write_text(text, encoding="utf-8")

    return RunResult(
        run_dir=run_dir,
        handles=handles,
        outcomes=outcomes,
        report=report,
        telemetry=telemetry,
        report_path=report_path,
        report_text=text,
    )
