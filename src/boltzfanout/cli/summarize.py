"""``boltzfanout summarize`` subcommand."""

from __future__ import annotations

from pathlib import Path

import click

from boltzfanout.cli._common import finish, setup_logging


@click.command()
@click.argument("run_dir", type=click.Path(exists=True, file_okay=False, path_type=Path))
def summarize(run_dir: Path) -> None:
    """Re-classify a finished run directory and print its report."""
    setup_logging()
    from boltzfanout.errors import HarnessError
    from boltzfanout.harness import summarize_run

    try:
        result = summarize_run(run_dir)
    except (HarnessError, ValueError) as exc:
        raise click.ClickException(str(exc)) from exc

    finish(result)
