"""Options and helpers shared by the ``run`` and ``benchmark`` subcommands."""

from __future__ import annotations

import functools
import logging
from pathlib import Path

import click

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format=LOG_FORMAT)


def monitoring_options(func):
    """Decorator adding polling, telemetry and timeout options."""

    @click.option(
        "--poll-interval",
        type=float,
        default=None,
        help="Seconds between progress lines (config default: 30).",
    )
    @click.option(
        "--telemetry-interval",
        type=float,
        default=None,
        help="Seconds between GPU telemetry samples (config default: 60).",
    )
    @click.option(
        "--no-telemetry",
        is_flag=True,
        default=False,
        help="Do not sample GPU memory/utilization.",
    )
    @click.option(
        "--timeout",
        type=float,
        default=None,
        help="Terminate jobs still running after this many seconds.",
    )
    @click.option(
        "--output-root",
        type=click.Path(file_okay=False, path_type=Path),
        default=None,
        help="Directory in which the timestamped run directory is created.",
    )
    @click.option("-v", "--verbose", is_flag=True, default=False, help="Debug logging.")
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        return func(*args, **kwargs)

    return wrapper


def monitoring_overrides(
    *,
    poll_interval: float | None,
    telemetry_interval: float | None,
    no_telemetry: bool,
    timeout: float | None,
    output_root: Path | None,
) -> dict:
    """Map CLI monitoring options onto config fields (unset options skipped)."""
    values: dict = {}
    if poll_interval is not None:
        values["poll_interval_sec"] = poll_interval
    if telemetry_interval is not None:
        values["telemetry_interval_sec"] = telemetry_interval
    if no_telemetry:
        values["telemetry_enabled"] = False
    if timeout is not None:
        values["timeout_sec"] = timeout
    if output_root is not None:
        values["output_root"] = str(output_root)
    return values


def finish(result) -> None:
    """Print the report and exit non-zero unless every job succeeded."""
    click.echo(result.report_text, nl=False)
    click.echo(f"Report: {result.report_path}")
    if result.exit_code != 0:
        raise SystemExit(result.exit_code)
