"""Classify finished jobs from their logs and output artifacts.

Rules, applied in order:

1. no log file                                  -> ``LogMissing``
2. job was stopped by the harness timeout       -> ``Indeterminate``
3. log matches the failure heuristic            -> ``Failed``
4. artifact directory exists and is non-empty   -> ``Success``
5. otherwise                                    -> ``Indeterminate``

The log scan in rule 3 wins over a zero exit status: the predictor does not
reliably surface its exit code through wrapper layers.  A benign log line
that mentions "error" therefore marks a good run as failed.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Protocol

from boltzfanout.jobs import JobHandle, JobState

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_TOKENS = ("error", "failed")
DEFAULT_ARTIFACT_SUFFIXES = (".cif", ".pdb")
DEFAULT_ARTIFACT_SUBDIR = "predictions"


class Classification(str, enum.Enum):
    SUCCESS = "Success"
    FAILED = "Failed"
    INDETERMINATE = "Indeterminate"
    LOG_MISSING = "LogMissing"


@dataclass(frozen=True)
class JobOutcome:
    descriptor_id: str
    classification: Classification
    duration: float
    artifact_count: int
    gpu_slot: int
    log_path: Path
    exit_status: int | None = None


class LogClassifier(Protocol):
    """Decides from a job's log whether the job failed."""

    def is_failure(self, log_path: Path) -> bool: ...


class SubstringLogClassifier:
    """Case-insensitive substring scan for failure tokens."""

    def __init__(self, tokens: Iterable[str] = DEFAULT_FAILURE_TOKENS) -> None:
        self.tokens = tuple(token.lower() for token in tokens if token)
        if not self.tokens:
            raise ValueError("At least one failure token is required")

    def is_failure(self, log_path: Path) -> bool:
        text = Path(log_path).read_text(encoding="utf-8", errors="replace").lower()
        return any(token in text for token in self.tokens)


def count_artifacts(
    directory: Path,
    suffixes: Iterable[str] = DEFAULT_ARTIFACT_SUFFIXES,
) -> int:
    """Count structure files under ``directory`` (recursively)."""
    directory = Path(directory)
    if not directory.is_dir():
        return 0
    wanted = {s.lower() for s in suffixes}
    return sum(1 for p in directory.rglob("*") if p.is_file() and p.suffix.lower() in wanted)


def _non_empty_dir(directory: Path) -> bool:
    return directory.is_dir() and any(directory.iterdir())


def classify(
    handle: JobHandle,
    expected_artifact_dir: Path,
    *,
    log_classifier: LogClassifier | None = None,
    artifact_suffixes: Iterable[str] = DEFAULT_ARTIFACT_SUFFIXES,
) -> JobOutcome:
    """Classify a finished job.  Reads only the filesystem and the handle."""
    if handle.state is not JobState.FINISHED:
        raise ValueError(f"Job {handle.descriptor.id!r} has not finished")

    log_classifier = log_classifier or SubstringLogClassifier()
    desc = handle.descriptor
    artifact_dir = Path(expected_artifact_dir)

    if not desc.log_path.exists():
        status = Classification.LOG_MISSING
    elif handle.timed_out:
        status = Classification.INDETERMINATE
    elif log_classifier.is_failure(desc.log_path):
        status = Classification.FAILED
    elif _non_empty_dir(artifact_dir):
        status = Classification.SUCCESS
    else:
        status = Classification.INDETERMINATE

    return JobOutcome(
        descriptor_id=desc.id,
        classification=status,
        duration=handle.duration,
        artifact_count=count_artifacts(artifact_dir, artifact_suffixes),
        gpu_slot=desc.gpu_slot,
        log_path=desc.log_path,
        exit_status=handle.exit_status,
    )


def classify_all(
    handles: Iterable[JobHandle],
    *,
    artifact_subdir: str = DEFAULT_ARTIFACT_SUBDIR,
    log_classifier: LogClassifier | None = None,
    artifact_suffixes: Iterable[str] = DEFAULT_ARTIFACT_SUFFIXES,
) -> list[JobOutcome]:
    """Classify every handle, preserving submission order."""
    suffixes = tuple(artifact_suffixes)
    outcomes = []
    for handle in handles:
        outcome = classify(
            handle,
            handle.descriptor.output_dir / artifact_subdir,
            log_classifier=log_classifier,
            artifact_suffixes=suffixes,
        )
        if outcome.classification is not Classification.SUCCESS:
            logger.warning(
                "GPU %d (%s): %s - check %s",
                outcome.gpu_slot, outcome.descriptor_id,
                outcome.classification.value.upper(), outcome.log_path,
            )
        outcomes.append(outcome)
    return outcomes
