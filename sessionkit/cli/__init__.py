"""Command-line interface for SessionKit."""

from .commands import app

__all__ = ["app"]
