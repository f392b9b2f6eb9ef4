"""Fan out Boltz predictions across GPU slots and summarize the results."""

__version__ = "0.1.0"

__all__ = ["__version__"]
