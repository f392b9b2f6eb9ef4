"""``boltzfanout`` command-line interface."""

from __future__ import annotations

import click

from boltzfanout import __version__
from boltzfanout.cli.benchmark import benchmark
from boltzfanout.cli.run import run
from boltzfanout.cli.summarize import summarize


@click.group()
@click.version_option(version=__version__, prog_name="boltzfanout")
def cli() -> None:
    """Boltz fan-out: run predictions across GPUs and summarize the results."""


cli.add_command(run)
cli.add_command(benchmark)
cli.add_command(summarize)

__all__ = ["cli"]
