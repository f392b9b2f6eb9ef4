"""Allow ``python -m boltzfanout``."""

from boltzfanout.cli import cli

if __name__ == "__main__":
    cli()
