"""CLI module for jobnet-runner."""

from jobnet.cli.main import cli, main

__all__ = ["cli", "main"]
