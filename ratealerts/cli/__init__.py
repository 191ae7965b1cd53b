"""Command-line interface for ratealerts."""

from ratealerts.cli.main import cli, main

__all__ = ["cli", "main"]
