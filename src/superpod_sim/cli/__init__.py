"""Terminal front end."""

from superpod_sim.cli.app import app, main

__all__ = ["app", "main"]
