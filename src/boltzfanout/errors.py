"""Exception types raised by the harness."""

from __future__ import annotations


class HarnessError(RuntimeError):
    """A condition that stops the harness before any job is launched."""


class ConfigError(ValueError):
    """Invalid harness configuration or job set."""


class LaunchError(OSError):
    """A job command could not be started.

    Never raised out of :func:`boltzfanout.launcher.launch`; the launcher
    records it on the returned handle instead.
    """


class TelemetryUnavailable(RuntimeError):
    """The device-query tool is missing or cannot be run."""
