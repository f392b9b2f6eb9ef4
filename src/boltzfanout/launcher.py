"""Start one predictor process per GPU slot."""

from __future__ import annotations

import errno
import logging
import os
import signal
import subprocess
import time
from typing import Mapping, Sequence

from boltzfanout.errors import LaunchError
from boltzfanout.jobs import JobDescriptor, JobHandle

logger = logging.getLogger(__name__)

DEFAULT_GPU_ENV_VAR = "CUDA_VISIBLE_DEVICES"

# Shell conventions for "command not found" / "not executable".
EXIT_NOT_FOUND = 127
EXIT_NOT_EXECUTABLE = 126


def _launch_exit_status(exc: OSError) -> int:
    if isinstance(exc, FileNotFoundError) or exc.errno == errno.ENOENT:
        return EXIT_NOT_FOUND
    if isinstance(exc, PermissionError) or exc.errno == errno.EACCES:
        return EXIT_NOT_EXECUTABLE
    return 1


def launch(
    descriptor: JobDescriptor,
    *,
    gpu_env_var: str = DEFAULT_GPU_ENV_VAR,
    base_env: Mapping[str, str] | None = None,
) -> JobHandle:
    """Start ``descriptor.command`` bound to its GPU slot without blocking.

    The output directory and the log's parent directory are created before
    spawning.  Combined stdout/stderr goes to ``descriptor.log_path``.  If
    the command cannot be started, the returned handle is already finished
    with a non-zero exit status and the error is written to the log.
    """
    descriptor.output_dir.mkdir(parents=True, exist_ok=True)
    descriptor.log_path.parent.mkdir(parents=True, exist_ok=True)

    env = dict(os.environ if base_env is None else base_env)
    env[gpu_env_var] = str(descriptor.gpu_slot)

    handle = JobHandle(descriptor=descriptor, start_time=time.time())
    with open(descriptor.log_path, "wb") as log_file:
        try:
            handle.process = subprocess.Popen(
                list(descriptor.command),
                stdout=log_file,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                env=env,
                start_new_session=True,
            )
        except OSError as exc:
            error = LaunchError(exc.errno, f"could not start {descriptor.command[0]!r}: {exc}")
            handle.launch_error = str(error)
            handle.mark_finished(_launch_exit_status(exc), end_time=handle.start_time)
            log_file.write(f"launch error: {error}\n".encode("utf-8"))
            logger.error(
                "GPU %d (%s): failed to launch: %s (log: %s)",
                descriptor.gpu_slot, descriptor.id, exc, descriptor.log_path,
            )
            return handle

    logger.info(
        "GPU %d (%s): started pid %d - %s",
        descriptor.gpu_slot, descriptor.id, handle.process.pid,
        " ".join(descriptor.command),
    )
    return handle


def launch_all(descriptors, **kwargs) -> list[JobHandle]:
    """Launch every descriptor in order; failures never stop the others."""
    return [launch(desc, **kwargs) for desc in descriptors]


def _signal_group(proc: subprocess.Popen, sig: signal.Signals) -> None:
    # Each job leads its own session, so its pid is also its process group id.
    try:
        os.killpg(proc.pid, sig)
    except ProcessLookupError:
        pass  # every process in the group has exited


def terminate_all(handles: Sequence[JobHandle], *, grace_sec: float = 10.0) -> None:
    """Stop running jobs together with any processes they spawned.

    SIGTERM goes to every job's process group first; after ``grace_sec``
    the groups are sent SIGKILL.  All jobs share one grace period.
    """
    stopping = []
    for handle in handles:
        proc = handle.process
        if proc is None or handle.exit_status is not None:
            continue
        if proc.poll() is not None:
            handle.mark_finished(proc.returncode)
            continue
        _signal_group(proc, signal.SIGTERM)
        stopping.append(handle)

    deadline = time.monotonic() + grace_sec
    for handle in stopping:
        proc = handle.process
        try:
            proc.wait(timeout=max(deadline - time.monotonic(), 0.0))
        except subprocess.TimeoutExpired:
            logger.warning("%s did not exit after SIGTERM, killing", handle.descriptor.id)
        # Also kills children left behind by a leader that exited on SIGTERM.
        _signal_group(proc, signal.SIGKILL)
        proc.wait()
        handle.timed_out = True
        handle.mark_finished(proc.returncode)


def terminate(handle: JobHandle, *, grace_sec: float = 10.0) -> None:
    """Stop one running job: SIGTERM, then SIGKILL after ``grace_sec``."""
    terminate_all([handle], grace_sec=grace_sec)
