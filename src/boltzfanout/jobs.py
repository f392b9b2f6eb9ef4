"""Job descriptors, process handles, and job-set construction.

A :class:`JobDescriptor` is the static definition of one prediction run.
A :class:`JobHandle` tracks the process launched for it:

    Created -> Running -> Finished(exit_status)

A launch failure goes straight from Created to Finished.
"""

from __future__ import annotations

import enum
import shlex
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Sequence

from boltzfanout.errors import ConfigError


class JobState(str, enum.Enum):
    CREATED = "created"
    RUNNING = "running"
    FINISHED = "finished"


@dataclass(frozen=True)
class JobDescriptor:
    """Static definition of one job bound to one GPU slot."""

    id: str
    gpu_slot: int
    command: tuple[str, ...]
    output_dir: Path
    log_path: Path

    def __post_init__(self) -> None:
        if self.gpu_slot < 0:
            raise ConfigError(f"GPU slot must be non-negative, got {self.gpu_slot}")
        if not self.command:
            raise ConfigError(f"Job {self.id!r} has an empty command")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "gpu_slot": self.gpu_slot,
            "command": list(self.command),
            "output_dir": str(self.output_dir),
            "log_path": str(self.log_path),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> JobDescriptor:
        return cls(
            id=str(data["id"]),
            gpu_slot=int(data["gpu_slot"]),
            command=tuple(str(part) for part in data["command"]),
            output_dir=Path(data["output_dir"]),
            log_path=Path(data["log_path"]),
        )


@dataclass
class JobHandle:
    """Runtime record of a launched job."""

    descriptor: JobDescriptor
    process: subprocess.Popen | None = None
    start_time: float | None = None
    end_time: float | None = None
    exit_status: int | None = None
    launch_error: str | None = None
    timed_out: bool = False

    @property
    def state(self) -> JobState:
        if self.exit_status is not None:
            return JobState.FINISHED
        if self.process is not None:
            return JobState.RUNNING
        return JobState.CREATED

    @property
    def duration(self) -> float:
        """Seconds between launch and exit (0.0 until finished)."""
        if self.start_time is None or self.end_time is None:
            return 0.0
        return max(0.0, self.end_time - self.start_time)

    def refresh(self) -> bool:
        """Poll the process; return True if it finished on this call."""
        if self.exit_status is not None or self.process is None:
            return False
        returncode = self.process.poll()
        if returncode is None:
            return False
        self.end_time = time.time()
        self.exit_status = returncode
        return True

    def mark_finished(self, exit_status: int, *, end_time: float | None = None) -> None:
        self.end_time = time.time() if end_time is None else end_time
        self.exit_status = exit_status

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.descriptor.to_dict(),
            "start_time": self.start_time,
            "end_time": self.end_time,
            "exit_status": self.exit_status,
            "launch_error": self.launch_error,
            "timed_out": self.timed_out,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> JobHandle:
        """Rebuild a process-less handle from a manifest record."""
        return cls(
            descriptor=JobDescriptor.from_dict(data),
            start_time=data.get("start_time"),
            end_time=data.get("end_time"),
            exit_status=data.get("exit_status"),
            launch_error=data.get("launch_error"),
            timed_out=bool(data.get("timed_out", False)),
        )


def parse_gpu_list(spec: str | int | Sequence[int | str] | None) -> list[int] | None:
    """Parse a GPU slot list such as ``"0,1,2,3"``.

    Returns ``None`` for ``"all"``/empty, meaning every available device.
    """
    if spec is None:
        return None
    if isinstance(spec, int):
        items: Iterable[Any] = [spec]
    elif isinstance(spec, str):
        if spec.strip().lower() in ("", "all"):
            return None
        items = spec.split(",")
    else:
        items = spec
        if not list(items):
            return None

    slots: list[int] = []
    for item in items:
        text = str(item).strip()
        if not text:
            continue
        try:
            slot = int(text)
        except ValueError as exc:
            raise ConfigError(f"Invalid GPU slot {text!r} in {spec!r}") from exc
        if slot < 0:
            raise ConfigError(f"GPU slot must be non-negative, got {slot}")
        if slot in slots:
            raise ConfigError(f"GPU slot {slot} listed more than once")
        slots.append(slot)
    return slots


def build_command(
    predictor: str | Sequence[str],
    input_path: str | Path,
    flags: str | Sequence[str],
    output_dir: Path,
) -> tuple[str, ...]:
    """``<predictor> predict <input> [flags...] --out_dir <dir>``."""
    base = shlex.split(predictor) if isinstance(predictor, str) else list(predictor)
    extra = shlex.split(flags) if isinstance(flags, str) else [str(f) for f in flags]
    return (*base, "predict", str(input_path), *extra, "--out_dir", str(output_dir))


def _explicit_slot(job: dict[str, Any], name: str, slots: Sequence[int] | None) -> int:
    try:
        slot = int(job["gpu"])
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Job {name!r}: invalid gpu {job['gpu']!r}") from exc
    if slots is not None and slot not in slots:
        raise ConfigError(
            f"Job {name!r}: gpu {slot} is not one of the available slots "
            f"({','.join(map(str, slots))})"
        )
    return slot


def build_descriptors(
    jobs: Sequence[dict[str, Any]],
    run_dir: Path,
    *,
    predictor: str | Sequence[str] = "boltz",
    common_flags: str | Sequence[str] = (),
    slots: Sequence[int] | None = None,
) -> list[JobDescriptor]:
    """Build one descriptor per job spec, in submission order.

    Each spec is a mapping with ``name``, ``input`` and optional ``flags``
    and ``gpu``.  Jobs without ``gpu`` take the next unused slot from
    ``slots``; with no ``slots`` they take 0, 1, 2, ...
    """
    if not jobs:
        raise ConfigError("No jobs to run: the job list is empty")

    names = [str(job.get("name") or f"job{index}") for index, job in enumerate(jobs)]
    explicit = {
        index: _explicit_slot(job, name, slots)
        for index, (job, name) in enumerate(zip(jobs, names))
        if job.get("gpu") is not None
    }
    taken = set(explicit.values())
    pool = [s for s in (slots if slots is not None else range(len(jobs))) if s not in taken]
    free = iter(pool)

    common = shlex.split(common_flags) if isinstance(common_flags, str) else list(common_flags)
    descriptors: list[JobDescriptor] = []
    for index, (job, name) in enumerate(zip(jobs, names)):
        if "input" not in job or job["input"] in (None, ""):
            raise ConfigError(f"Job {name!r} has no input file")
        if index in explicit:
            slot = explicit[index]
        else:
            slot = next(free, None)
            if slot is None:
                raise ConfigError(
                    f"Not enough GPU slots for {len(jobs)} jobs (slots: {list(slots or [])})"
                )

        flags = job.get("flags") or ()
        job_flags = shlex.split(flags) if isinstance(flags, str) else [str(f) for f in flags]
        job_id = f"gpu{slot}_{name}"
        output_dir = run_dir / job_id
        descriptors.append(
            JobDescriptor(
                id=job_id,
                gpu_slot=slot,
                command=build_command(predictor, job["input"], [*common, *job_flags], output_dir),
                output_dir=output_dir,
                log_path=run_dir / f"{job_id}.log",
            )
        )

    validate_descriptors(descriptors)
    return descriptors


def validate_descriptors(descriptors: Sequence[JobDescriptor]) -> None:
    """Reject empty job sets and slots shared by concurrently-run jobs."""
    if not descriptors:
        raise ConfigError("No jobs to run: the job list is empty")

    by_slot: dict[int, str] = {}
    ids: set[str] = set()
    for desc in descriptors:
        if desc.gpu_slot in by_slot:
            raise ConfigError(
                f"GPU slot {desc.gpu_slot} is assigned to both "
                f"{by_slot[desc.gpu_slot]!r} and {desc.id!r}"
            )
        if desc.id in ids:
            raise ConfigError(f"Duplicate job id {desc.id!r}")
        by_slot[desc.gpu_slot] = desc.id
        ids.add(desc.id)
