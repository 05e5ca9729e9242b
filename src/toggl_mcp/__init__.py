"""Toggl Track MCP server with cached, hydrated time entries."""

__version__ = "1.0.0"

from .server import main  # noqa: E402

__all__ = ["__version__", "main"]
