"""``boltzfanout run`` subcommand.

    boltzfanout run --config configs/examples_8gpu.yaml
    boltzfanout run --config jobs.yaml --gpus 0,1,2,3 timeout_sec=7200
"""

from __future__ import annotations

from pathlib import Path

import click

from boltzfanout.cli._common import (
    finish,
    monitoring_options,
    monitoring_overrides,
    setup_logging,
)


@click.command()
@click.option(
    "--config",
    "config_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="YAML file describing the jobs to run.",
)
@click.option(
    "--base-config",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Optional shared config that --config overrides.",
)
@click.option(
    "--gpus",
    type=str,
    default=None,
    help="Comma-separated GPU slots, or 'all' (config default: all).",
)
@monitoring_options
@click.argument("overrides", nargs=-1)
def run(
    config_path: Path,
    base_config: Path | None,
    gpus: str | None,
    poll_interval: float | None,
    telemetry_interval: float | None,
    no_telemetry: bool,
    timeout: float | None,
    output_root: Path | None,
    verbose: bool,
    overrides: tuple[str, ...],
) -> None:
    """Run every job in a config, one job per GPU slot.

    Trailing KEY=VALUE arguments override config values.
    """
    setup_logging(verbose)
    from boltzfanout.config import load_config
    from boltzfanout.errors import ConfigError, HarnessError
    from boltzfanout.harness import run_harness

    extra = monitoring_overrides(
        poll_interval=poll_interval,
        telemetry_interval=telemetry_interval,
        no_telemetry=no_telemetry,
        timeout=timeout,
        output_root=output_root,
    )
    if gpus is not None:
        extra["gpus"] = gpus
    try:
        config = load_config(
            config_path, base_config=base_config, overrides=overrides, values=extra
        )
        result = run_harness(config)
    except (ConfigError, HarnessError) as exc:
        raise click.ClickException(str(exc)) from exc

    finish(result)
