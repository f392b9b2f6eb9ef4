"""Aggregate job outcomes and telemetry into a text report."""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence

import numpy as np

from boltzfanout.classify import Classification, JobOutcome
from boltzfanout.telemetry import TelemetrySample

ROW_FORMAT = "{:<6} {:<28} {:<14} {:>10} {:>11}"


@dataclass(frozen=True)
class ReportRow:
    gpu_slot: int
    job_id: str
    status: str
    duration: float
    artifact_count: int


@dataclass(frozen=True)
class DeviceSummary:
    gpu_slot: int
    last: TelemetrySample
    peak_memory_used: float
    mean_utilization: float
    n_samples: int


@dataclass
class Report:
    rows: list[ReportRow]
    job_count: int
    success_count: int
    failure_count: int
    indeterminate_count: int
    log_missing_count: int
    mean_success_duration: float | None
    total_success_duration: float
    parallel_efficiency: float | None
    wall_clock: float | None
    structure_count: int
    devices: list[DeviceSummary] = field(default_factory=list)
    attention: list[tuple[str, str, Path]] = field(default_factory=list)

    @property
    def all_succeeded(self) -> bool:
        return self.job_count > 0 and self.success_count == self.job_count


def parallel_efficiency(durations: Sequence[float], job_count: int) -> float | None:
    """``mean * job_count / total * 100`` over successful durations.

    ``None`` when there are no successful jobs or they took no time.
    """
    if not durations:
        return None
    total = float(np.sum(durations))
    if total <= 0:
        return None
    return float(np.mean(durations)) * job_count / total * 100.0


def summarize_devices(telemetry: Sequence[TelemetrySample]) -> list[DeviceSummary]:
    by_slot: OrderedDict[int, list[TelemetrySample]] = OrderedDict()
    for sample in sorted(telemetry, key=lambda s: s.timestamp):
        by_slot.setdefault(sample.gpu_slot, []).append(sample)

    summaries = []
    for slot in sorted(by_slot):
        samples = by_slot[slot]
        summaries.append(
            DeviceSummary(
                gpu_slot=slot,
                last=samples[-1],
                peak_memory_used=float(np.max([s.memory_used for s in samples])),
                mean_utilization=float(np.mean([s.utilization_percent for s in samples])),
                n_samples=len(samples),
            )
        )
    return summaries


def generate(
    outcomes: Sequence[JobOutcome],
    telemetry: Sequence[TelemetrySample] = (),
    *,
    wall_clock: float | None = None,
) -> Report:
    """Build a report with one row per outcome, in submission order."""
    rows = [
        ReportRow(
            gpu_slot=o.gpu_slot,
            job_id=o.descriptor_id,
            status=o.classification.value,
            duration=o.duration,
            artifact_count=o.artifact_count,
        )
        for o in outcomes
    ]

    def _count(kind: Classification) -> int:
        return sum(1 for o in outcomes if o.classification is kind)

    success_durations = [o.duration for o in outcomes if o.classification is Classification.SUCCESS]
    mean_success = float(np.mean(success_durations)) if success_durations else None

    return Report(
        rows=rows,
        job_count=len(outcomes),
        success_count=len(success_durations),
        failure_count=_count(Classification.FAILED),
        indeterminate_count=_count(Classification.INDETERMINATE),
        log_missing_count=_count(Classification.LOG_MISSING),
        mean_success_duration=mean_success,
        total_success_duration=float(np.sum(success_durations)) if success_durations else 0.0,
        parallel_efficiency=parallel_efficiency(success_durations, len(outcomes)),
        wall_clock=wall_clock,
        structure_count=sum(o.artifact_count for o in outcomes),
        devices=summarize_devices(telemetry),
        attention=[
            (o.descriptor_id, o.classification.value, o.log_path)
            for o in outcomes
            if o.classification is not Classification.SUCCESS
        ],
    )


def render(report: Report, *, title: str = "Results Summary", run_dir: Path | None = None) -> str:
    """Render a report as plain text."""
    lines = [f"=== {title} ==="]
    if run_dir is not None:
        lines.append(f"Output directory: {run_dir}")
    lines.append("")

    lines.append(ROW_FORMAT.format("GPU", "Job", "Status", "Time (s)", "Structures"))
    lines.append(ROW_FORMAT.format("---", "---", "------", "--------", "----------"))
    for row in report.rows:
        lines.append(
            ROW_FORMAT.format(
                row.gpu_slot, row.job_id, row.status, f"{row.duration:.2f}", row.artifact_count
            )
        )

    lines += ["", "=== Performance Statistics ==="]
    lines.append(f"Successful runs: {report.success_count}/{report.job_count}")
    lines.append(f"Failed runs: {report.failure_count}")
    if report.indeterminate_count:
        lines.append(f"Indeterminate runs: {report.indeterminate_count}")
    if report.log_missing_count:
        lines.append(f"Runs without a log: {report.log_missing_count}")
    if report.mean_success_duration is not None:
        lines.append(f"Average execution time: {report.mean_success_duration:.2f}s")
        lines.append(f"Total execution time: {report.total_success_duration:.2f}s")
    if report.parallel_efficiency is not None:
        lines.append(f"Parallel efficiency: {report.parallel_efficiency:.2f}%")
    if report.wall_clock is not None:
        lines.append(f"Wall-clock time: {report.wall_clock:.2f}s")
    lines.append(f"Total structure files generated: {report.structure_count}")

    if report.devices:
        lines += ["", "=== GPU Memory Usage Summary ==="]
        for dev in report.devices:
            lines.append(
                f"{dev.last.describe()} - peak {dev.peak_memory_used:.0f}MB, "
                f"mean util {dev.mean_utilization:.1f}% ({dev.n_samples} samples)"
            )
    else:
        lines += ["", "No GPU telemetry samples recorded."]

    if report.attention:
        lines += ["", "=== Jobs Needing Attention ==="]
        for job_id, status, log_path in report.attention:
            lines.append(f"{status.upper()}: {job_id} - check {log_path}")

    return "\n".join(lines) + "\n"
