"""
MCP server exposing Toggl Track time tracking with cached name hydration.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import click
from mcp.server.fastmcp import FastMCP

from . import __version__
from .config import ConfigError, Settings
from .handlers import ToolContext
from .router import ToolRouter

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(server: FastMCP) -> AsyncIterator[None]:
    """Warm the entity cache in the background; close the HTTP client on exit."""
    warm_task: asyncio.Task[None] | None = None
    try:
        warm_task = asyncio.create_task(get_router().context.coordinator.ensure_warm())
    except ConfigError as exc:
        logger.warning("Cache warm skipped: %s", exc)
    try:
        yield
    finally:
        if warm_task is not None and not warm_task.done():
            warm_task.cancel()
        await _shutdown()


mcp = FastMCP(
    "toggl-mcp",
    instructions=(
        "Toggl Track time tracking. Time entries are returned hydrated with "
        "workspace, project, client, task, user and tag names resolved from an "
        "in-memory cache that is warmed at startup."
    ),
    lifespan=_lifespan,
)

_settings: Settings | None = None
_router: ToolRouter | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def get_router() -> ToolRouter:
    global _router
    if _router is None:
        _router = ToolRouter(ToolContext.create(get_settings()))
    return _router


async def _shutdown() -> None:
    global _router
    if _router is not None:
        await _router.context.coordinator.cancel()
        await _router.context.client.aclose()
        _router = None


async def _call(tool_name: str, **kwargs: Any) -> Any:
    return await get_router().call(tool_name, kwargs)


# Health / auth


@mcp.tool()
async def toggl_check_auth() -> dict[str, Any]:
    """Verify Toggl API connectivity and authentication is valid.

    Returns:
        dict with authenticated, user ({id, masked email, fullname}) and
        workspaces ({id, name}).
    """
    return await _call("toggl_check_auth")


# Time tracking


@mcp.tool()
async def toggl_get_time_entries(
    period: str | None = None,
    start_date: str | None = None,
    end_date: str | None = None,
    workspace_id: int | None = None,
    project_id: int | None = None,
) -> dict[str, Any]:
    """Get time entries hydrated with workspace/project/client/task/tag names.

    Args:
        period: One of today, yesterday, week, lastWeek, month, lastMonth.
        start_date: Start date (YYYY-MM-DD). Ignored when period is set.
        end_date: End date (YYYY-MM-DD), inclusive.
        workspace_id: Only entries in this workspace.
        project_id: Only entries in this project.

    Returns:
        dict with "count" and "entries". Defaults to today when no range is given.
    """
    return await _call(
        "toggl_get_time_entries",
        period=period,
        start_date=start_date,
        end_date=end_date,
        workspace_id=workspace_id,
        project_id=project_id,
    )


@mcp.tool()
async def toggl_get_current_entry() -> dict[str, Any]:
    """Get the currently running time entry, if any."""
    return await _call("toggl_get_current_entry")


@mcp.tool()
async def toggl_start_timer(
    description: str | None = None,
    workspace_id: int | None = None,
    project_id: int | None = None,
    task_id: int | None = None,
    tags: list[str] | None = None,
) -> dict[str, Any]:
    """Start a new running timer.

    Args:
        description: Description of the time entry.
        workspace_id: Workspace ID (uses TOGGL_DEFAULT_WORKSPACE_ID if omitted).
        project_id: Optional project ID.
        task_id: Optional task ID.
        tags: Tag names for the entry.
    """
    return await _call(
        "toggl_start_timer",
        description=description,
        workspace_id=workspace_id,
        project_id=project_id,
        task_id=task_id,
        tags=tags,
    )


@mcp.tool()
async def toggl_stop_timer() -> dict[str, Any]:
    """Stop the currently running timer."""
    return await _call("toggl_stop_timer")


@mcp.tool()
async def toggl_create_time_entry(
    start: str,
    stop: str,
    description: str | None = None,
    workspace_id: int | None = None,
    project_id: int | None = None,
    task_id: int | None = None,
    tags: list[str] | None = None,
    billable: bool | None = None,
) -> dict[str, Any]:
    """Create a completed time entry with explicit start and stop times.

    Args:
        start: Start time, ISO 8601 (e.g. 2026-01-10T09:00:00Z).
        stop: Stop time, ISO 8601. Must be after start.
        description: Description of the time entry.
        workspace_id: Workspace ID (uses default if omitted).
        project_id: Optional project ID.
        task_id: Optional task ID.
        tags: Tag names for the entry.
        billable: Whether the entry is billable.
    """
    return await _call(
        "toggl_create_time_entry",
        start=start,
        stop=stop,
        description=description,
        workspace_id=workspace_id,
        project_id=project_id,
        task_id=task_id,
        tags=tags,
        billable=billable,
    )


@mcp.tool()
async def toggl_update_time_entry(
    time_entry_id: int,
    workspace_id: int | None = None,
    description: str | None = None,
    project_id: int | None = None,
    clear_project: bool = False,
    task_id: int | None = None,
    tags: list[str] | None = None,
    start: str | None = None,
    stop: str | None = None,
    billable: bool | None = None,
) -> dict[str, Any]:
    """Update an existing time entry.

    Args:
        time_entry_id: ID of the time entry to update.
        workspace_id: Workspace ID (looked up from the entry if omitted).
        description: New description.
        project_id: New project ID.
        clear_project: Remove the project from the entry.
        task_id: New task ID.
        tags: New tags (replaces existing tags).
        start: New start time (ISO 8601).
        stop: New stop time (ISO 8601).
        billable: Whether the entry is billable.
    """
    return await _call(
        "toggl_update_time_entry",
        time_entry_id=time_entry_id,
        workspace_id=workspace_id,
        description=description,
        project_id=project_id,
        clear_project=clear_project,
        task_id=task_id,
        tags=tags,
        start=start,
        stop=stop,
        billable=billable,
    )


@mcp.tool()
async def toggl_delete_time_entry(
    time_entry_id: int, workspace_id: int | None = None
) -> dict[str, Any]:
    """Delete a time entry."""
    return await _call(
        "toggl_delete_time_entry", time_entry_id=time_entry_id, workspace_id=workspace_id
    )


# Reports


@mcp.tool()
async def toggl_daily_report(date: str | None = None, format: str = "json") -> Any:
    """Daily report with hours by project and workspace.

    Args:
        date: Report date (YYYY-MM-DD), defaults to today.
        format: "json" (default) or "text".
    """
    return await _call("toggl_daily_report", date=date, format=format)


@mcp.tool()
async def toggl_weekly_report(week_offset: int = 0, format: str = "json") -> Any:
    """Weekly report with daily breakdown and project summaries.

    Args:
        week_offset: 0 for this week, -1 for last week, and so on.
        format: "json" (default) or "text".
    """
    return await _call("toggl_weekly_report", week_offset=week_offset, format=format)


@mcp.tool()
async def toggl_project_summary(
    period: str | None = None,
    start_date: str | None = None,
    end_date: str | None = None,
    workspace_id: int | None = None,
) -> dict[str, Any]:
    """Total hours per project for a date range (defaults to the current week)."""
    return await _call(
        "toggl_project_summary",
        period=period,
        start_date=start_date,
        end_date=end_date,
        workspace_id=workspace_id,
    )


@mcp.tool()
async def toggl_workspace_summary(
    period: str | None = None,
    start_date: str | None = None,
    end_date: str | None = None,
) -> dict[str, Any]:
    """Total hours per workspace for a date range (defaults to the current week)."""
    return await _call(
        "toggl_workspace_summary",
        period=period,
        start_date=start_date,
        end_date=end_date,
    )


# Management


@mcp.tool()
async def toggl_list_workspaces() -> dict[str, Any]:
    """List all available workspaces."""
    return await _call("toggl_list_workspaces")


@mcp.tool()
async def toggl_list_projects(workspace_id: int | None = None) -> dict[str, Any]:
    """List projects for a workspace (uses default workspace if omitted)."""
    return await _call("toggl_list_projects", workspace_id=workspace_id)


@mcp.tool()
async def toggl_list_clients(workspace_id: int | None = None) -> dict[str, Any]:
    """List clients for a workspace (uses default workspace if omitted)."""
    return await _call("toggl_list_clients", workspace_id=workspace_id)


# Cache management


@mcp.tool()
async def toggl_warm_cache(workspace_id: int | None = None) -> dict[str, Any]:
    """Pre-fetch workspaces, projects, clients and tags into the cache.

    Args:
        workspace_id: Warm only this workspace. Otherwise the first three
            workspaces are warmed.
    """
    return await _call("toggl_warm_cache", workspace_id=workspace_id)


@mcp.tool()
async def toggl_cache_stats() -> dict[str, Any]:
    """Cache sizes per entity kind, hit/miss counts and hit rate."""
    return await _call("toggl_cache_stats")


@mcp.tool()
async def toggl_clear_cache() -> dict[str, Any]:
    """Clear all cached entities and reset hit/miss counters."""
    return await _call("toggl_clear_cache")


# Timeline


@mcp.tool()
async def toggl_get_timeline(
    period: str | None = None,
    start_date: str | None = None,
    end_date: str | None = None,
    app: str | None = None,
    include_events: bool = True,
    limit: int = 50,
) -> dict[str, Any]:
    """Desktop activity timeline with per-application usage.

    PRIVACY NOTE: events include window titles, which may contain document
    names, email subjects or URLs. Requires the Toggl desktop app with timeline
    sync enabled.

    Args:
        period: One of today, yesterday, week, lastWeek, month, lastMonth.
        start_date: Start date (YYYY-MM-DD, local time).
        end_date: End date (YYYY-MM-DD, local time), inclusive.
        app: Case-insensitive substring filter on application name.
        include_events: Include the events array (summary is always returned).
        limit: Max events in the events array (1-1000, default 50). Does not
            affect the summary.
    """
    return await _call(
        "toggl_get_timeline",
        period=period,
        start_date=start_date,
        end_date=end_date,
        app=app,
        include_events=include_events,
        limit=limit,
    )


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(__version__, "--version", "-v", prog_name="toggl-mcp")
def main() -> None:
    """
    Toggl Track MCP server (stdio).

    \b
    Environment:
      TOGGL_API_KEY                Required Toggl API token
      TOGGL_DEFAULT_WORKSPACE_ID   Optional default workspace id
      TOGGL_CACHE_TTL              Cache TTL in ms (default: 3600000)
      TOGGL_CACHE_SIZE             Max cached entities (default: 1000)
      TOGGL_DEBUG                  "true" for debug logging and error details
    """
    try:
        settings = get_settings()
    except ConfigError as exc:
        click.echo(str(exc), err=True)
        sys.exit(1)

    logging.basicConfig(
        stream=sys.stderr,
        level=getattr(logging, settings.log_level, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    mcp.run()
