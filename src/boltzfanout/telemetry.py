"""GPU memory/utilization sampling via ``nvidia-smi``.

The sampler runs in its own thread, independent of job state, and appends
one row per device per sample to a CSV file.  If the query tool cannot be
run the sampler logs a single warning and stops sampling; the harness keeps
going.
"""

from __future__ import annotations

import csv
import logging
import subprocess
import threading
import time
from dataclasses import astuple, dataclass, fields
from pathlib import Path
from typing import Callable, Iterable, Sequence

from boltzfanout.errors import TelemetryUnavailable

logger = logging.getLogger(__name__)

QUERY_COMMAND = (
    "nvidia-smi",
    "--query-gpu=index,memory.used,memory.total,utilization.gpu",
    "--format=csv,noheader,nounits",
)
LIST_COMMAND = ("nvidia-smi", "-L")


@dataclass(frozen=True)
class TelemetrySample:
    timestamp: float
    gpu_slot: int
    memory_used: float  # MiB
    memory_total: float  # MiB
    utilization_percent: float

    @property
    def memory_percent(self) -> float:
        if self.memory_total <= 0:
            return 0.0
        return self.memory_used / self.memory_total * 100.0

    def describe(self) -> str:
        return (
            f"GPU {self.gpu_slot}: {self.memory_used:.0f}MB/{self.memory_total:.0f}MB "
            f"({self.memory_percent:.1f}%) - Util: {self.utilization_percent:.0f}%"
        )


CSV_HEADER = tuple(f.name for f in fields(TelemetrySample))


def parse_query_output(
    text: str,
    timestamp: float,
    slots: Iterable[int] | None = None,
) -> list[TelemetrySample]:
    """Parse ``index, memory.used, memory.total, utilization.gpu`` rows.

    Whitespace is stripped and unparseable lines are skipped.  When
    ``slots`` is given, rows for other devices are dropped.
    """
    wanted = None if slots is None else set(slots)
    samples: list[TelemetrySample] = []
    for line in text.splitlines():
        columns = [item.strip() for item in line.split(",")]
        if len(columns) < 4:
            continue
        try:
            index = int(columns[0])
            used = float(columns[1])
            total = float(columns[2])
            util = float(columns[3])
        except ValueError:
            logger.debug("Skipping unparseable telemetry line: %r", line)
            continue
        if wanted is not None and index not in wanted:
            continue
        samples.append(
            TelemetrySample(
                timestamp=timestamp,
                gpu_slot=index,
                memory_used=used,
                memory_total=total,
                utilization_percent=util,
            )
        )
    return samples


def _run_command(cmd: Sequence[str], timeout: float = 30.0) -> str:
    try:
        return subprocess.check_output(
            list(cmd), text=True, stderr=subprocess.DEVNULL, timeout=timeout
        )
    except (OSError, subprocess.SubprocessError) as exc:
        raise TelemetryUnavailable(f"{cmd[0]} unavailable: {exc}") from exc


def query_devices(command: Sequence[str] = QUERY_COMMAND) -> str:
    """Run the device-query tool and return its raw CSV text."""
    return _run_command(command)


def count_devices(command: Sequence[str] = LIST_COMMAND) -> int:
    """Number of GPUs reported by ``nvidia-smi -L`` (0 if unavailable)."""
    try:
        output = _run_command(command)
    except TelemetryUnavailable as exc:
        logger.warning("Could not count GPUs: %s", exc)
        return 0
    return sum(1 for line in output.splitlines() if line.strip().startswith("GPU"))


class TelemetrySink:
    """Append-only CSV record of telemetry samples."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if not self.path.exists() or self.path.stat().st_size == 0:
            with open(self.path, "w", newline="") as f:
                csv.writer(f).writerow(CSV_HEADER)

    def append(self, samples: Iterable[TelemetrySample]) -> None:
        with open(self.path, "a", newline="") as f:
            writer = csv.writer(f)
            for sample in samples:
                writer.writerow(astuple(sample))

    def read(self) -> list[TelemetrySample]:
        with open(self.path, newline="") as f:
            reader = csv.DictReader(f)
            return [
                TelemetrySample(
                    timestamp=float(row["timestamp"]),
                    gpu_slot=int(row["gpu_slot"]),
                    memory_used=float(row["memory_used"]),
                    memory_total=float(row["memory_total"]),
                    utilization_percent=float(row["utilization_percent"]),
                )
                for row in reader
            ]


class TelemetrySampler:
    """Sample device stats every ``interval_sec`` until stopped.

    The first sample is taken one interval after :meth:`start`, so a run
    shorter than the interval records no samples.
    """

    def __init__(
        self,
        sink: TelemetrySink | None,
        *,
        interval_sec: float = 60.0,
        slots: Iterable[int] | None = None,
        query: Callable[[], str] = query_devices,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if interval_sec <= 0:
            raise ValueError(f"interval_sec must be positive, got {interval_sec}")
        self.sink = sink
        self.interval_sec = interval_sec
        self.slots = None if slots is None else list(slots)
        self._query = query
        self._clock = clock
        self._stop = threading.Event()
        self._lock = threading.Lock()
        self._samples: list[TelemetrySample] = []
        self._thread: threading.Thread | None = None
        self.disabled = False

    @property
    def samples(self) -> list[TelemetrySample]:
        with self._lock:
            return list(self._samples)

    def sample_once(self) -> list[TelemetrySample]:
        """Take one sample of every watched device and record it."""
        if self.disabled:
            return []
        try:
            raw = self._query()
        except TelemetryUnavailable as exc:
            self.disabled = True
            logger.warning("GPU telemetry disabled: %s", exc)
            return []

        batch = parse_query_output(raw, self._clock(), self.slots)
        if self.sink is not None:
            self.sink.append(batch)
        with self._lock:
            self._samples.extend(batch)
        for sample in batch:
            logger.info("  %s", sample.describe())
        return batch

    def _run(self) -> None:
        while not self._stop.wait(self.interval_sec):
            self.sample_once()
            if self.disabled:
                return

    def start(self) -> None:
        if self._thread is not None:
            raise RuntimeError("TelemetrySampler already started")
        self._thread = threading.Thread(target=self._run, name="telemetry", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        """Signal the sampling thread and wait for its current write to end."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)

    def __enter__(self) -> TelemetrySampler:
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()
