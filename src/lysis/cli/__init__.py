"""Lysis command-line interface."""

from lysis.cli.main import app, cli, main

__all__ = ["app", "cli", "main"]
