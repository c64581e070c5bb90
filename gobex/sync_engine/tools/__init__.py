"""Command-line tools for the Gobex sync engine."""

from .sync_cli import SyncCLI, main

__all__ = ["SyncCLI", "main"]
