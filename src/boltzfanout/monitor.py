"""Liveness monitoring for launched jobs.

The monitor wakes once per poll interval to log running/finished counts.
A watcher thread per process waits on it and wakes the monitor early when
a job exits, so the loop never busy-polls and ends as soon as the last job
finishes.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime
from typing import Callable, Sequence

from boltzfanout.jobs import JobHandle, JobState
from boltzfanout.launcher import terminate_all

logger = logging.getLogger(__name__)


def poll(handles: Sequence[JobHandle]) -> tuple[int, int]:
    """Refresh every handle and return ``(running_count, finished_count)``."""
    running = 0
    finished = 0
    for handle in handles:
        handle.refresh()
        if handle.state is JobState.FINISHED:
            finished += 1
        else:
            running += 1
    return running, finished


def _log_progress(running: int, finished: int) -> None:
    logger.info("%s: running=%d finished=%d", datetime.now().strftime("%H:%M:%S"), running, finished)


def _log_job_finished(handle: JobHandle) -> None:
    desc = handle.descriptor
    if handle.timed_out:
        logger.warning("GPU %d (%s): Timed out after %.1fs", desc.gpu_slot, desc.id, handle.duration)
    elif handle.exit_status == 0:
        logger.info("GPU %d (%s): Complete (%.1fs)", desc.gpu_slot, desc.id, handle.duration)
    else:
        logger.warning(
            "GPU %d (%s): Failed (exit code: %s) - check %s",
            desc.gpu_slot, desc.id, handle.exit_status, desc.log_path,
        )


class LivenessMonitor:
    """Wait for all handles to finish, reporting progress each interval.

    Parameters
    ----------
    handles : launched job handles.
    interval_sec : seconds between progress lines.
    timeout_sec : optional overall limit; jobs still running when it
        elapses are terminated and marked as timed out.
    on_finished : called once per handle when it is first seen finished.
    """

    def __init__(
        self,
        handles: Sequence[JobHandle],
        *,
        interval_sec: float = 30.0,
        timeout_sec: float | None = None,
        kill_grace_sec: float = 10.0,
        on_finished: Callable[[JobHandle], None] | None = _log_job_finished,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if interval_sec <= 0:
            raise ValueError(f"interval_sec must be positive, got {interval_sec}")
        self.handles = list(handles)
        self.interval_sec = interval_sec
        self.timeout_sec = timeout_sec
        self.kill_grace_sec = kill_grace_sec
        self.on_finished = on_finished
        self._clock = clock
        self._wake = threading.Event()
        self._announced: set[str] = set()
        self.intervals = 0

    def _watch(self, handle: JobHandle) -> None:
        proc = handle.process
        if proc is None:
            return

        def waiter() -> None:
            proc.wait()
            self._wake.set()

        threading.Thread(
            target=waiter, name=f"watch-{handle.descriptor.id}", daemon=True
        ).start()

    def _announce(self) -> None:
        for handle in self.handles:
            key = handle.descriptor.id
            if handle.state is JobState.FINISHED and key not in self._announced:
                self._announced.add(key)
                if self.on_finished is not None:
                    self.on_finished(handle)

    def _expire(self) -> None:
        terminate_all(
            [h for h in self.handles if h.state is not JobState.FINISHED],
            grace_sec=self.kill_grace_sec,
        )

    def run(self) -> tuple[int, int]:
        """Block until every job is finished; return the final counts."""
        for handle in self.handles:
            self._watch(handle)

        started = self._clock()
        deadline = None if self.timeout_sec is None else started + self.timeout_sec
        next_report = started

        while True:
            running, finished = poll(self.handles)
            self._announce()
            now = self._clock()

            if running == 0:
                _log_progress(running, finished)
                return running, finished

            if now >= next_report:
                self.intervals += 1
                _log_progress(running, finished)
                next_report = now + self.interval_sec

            if deadline is not None and now >= deadline:
                logger.warning(
                    "Timeout of %.0fs reached with %d job(s) still running; terminating",
                    self.timeout_sec, running,
                )
                self._expire()
                continue

            wait_for = next_report - now
            if deadline is not None:
                wait_for = min(wait_for, deadline - now)
            self._wake.wait(timeout=max(wait_for, 0.0))
            self._wake.clear()
