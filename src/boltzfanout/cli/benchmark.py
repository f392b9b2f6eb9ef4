"""``boltzfanout benchmark`` subcommand.

Runs the same input on every selected GPU to compare per-device timing:

    boltzfanout benchmark protein_ligand_affinity.yaml --gpus 0,1,2,3
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
@click.argument("input_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--gpus",
    type=str,
    default="all",
    show_default=True,
    help="Comma-separated GPU slots to benchmark, or 'all'.",
)
@click.option(
    "--predictor",
    type=str,
    default="boltz",
    show_default=True,
    help="Predictor executable (may include leading arguments).",
)
@click.option(
    "--flags",
    type=str,
    default="--use_msa_server",
    show_default=True,
    help="Extra predictor flags applied to every run.",
)
@click.option(
    "--name",
    type=str,
    default=None,
    help="Benchmark name used in the output directory (default: input file stem).",
)
@monitoring_options
def benchmark(
    input_path: Path,
    gpus: str,
    predictor: str,
    flags: str,
    name: str | None,
    poll_interval: float | None,
    telemetry_interval: float | None,
    no_telemetry: bool,
    timeout: float | None,
    output_root: Path | None,
    verbose: bool,
) -> None:
    """Benchmark one input on each GPU in parallel."""
    setup_logging(verbose)
    from boltzfanout.config import build_config
    from boltzfanout.errors import ConfigError, HarnessError
    from boltzfanout.harness import resolve_slots, run_harness

    name = name or input_path.stem
    try:
        slots = resolve_slots(gpus)
        if slots is None:
            raise ConfigError("No GPUs detected; pass --gpus explicitly")
        config = build_config(
            {
                "predictor": predictor,
                "common_flags": flags,
                "gpus": slots,
                "run_prefix": f"benchmark_results_{name}",
                "poll_interval_sec": 60.0,
                "jobs": [
                    {"name": "benchmark", "input": str(input_path), "gpu": slot}
                    for slot in slots
                ],
                **monitoring_overrides(
                    poll_interval=poll_interval,
                    telemetry_interval=telemetry_interval,
                    no_telemetry=no_telemetry,
                    timeout=timeout,
                    output_root=output_root,
                ),
            }
        )
        result = run_harness(config, title=f"Benchmark Results Summary: {name}")
    except (ConfigError, HarnessError) as exc:
        raise click.ClickException(str(exc)) from exc

    finish(result)
