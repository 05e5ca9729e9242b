"""
Tool dispatch for the Toggl MCP server.
"""

from __future__ import annotations

import logging
import traceback
from typing import Any

from . import handlers
from .handlers import ToolContext
from .toggl_api import TogglApiError

logger = logging.getLogger(__name__)


class UnknownToolError(LookupError):
    """Raised when a tool name has no registered handler."""


class ToolRouter:
    """Routes tool calls to handlers and converts failures into error payloads."""

    def __init__(self, context: ToolContext):
        self._context = context

    @property
    def context(self) -> ToolContext:
        return self._context

    def _error_payload(self, exc: BaseException) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": True, "message": str(exc) or exc.__class__.__name__}
        if isinstance(exc, TogglApiError):
            payload["code"] = exc.code
        if self._context.debug:
            payload["details"] = "".join(
                traceback.format_exception(type(exc), exc, exc.__traceback__)
            )
        return payload

    async def call(self, tool_name: str, arguments: dict[str, Any] | None = None) -> Any:
        args = arguments or {}
        handler = handlers.TOOL_HANDLERS.get(tool_name)
        try:
            if handler is None:
                raise UnknownToolError(f"Unknown tool: {tool_name}")
            return await handler(self._context, **args)
        except (TogglApiError, ValueError, UnknownToolError) as exc:
            logger.warning("Tool %s failed: %s", tool_name, exc)
            return self._error_payload(exc)
        except Exception as exc:
            logger.exception("Unexpected error in %s", tool_name)
            return self._error_payload(exc)
