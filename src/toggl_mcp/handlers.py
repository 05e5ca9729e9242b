"""
Tool handlers. Each handler takes a `ToolContext` plus the tool's arguments and
returns a JSON-serializable result.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from .cache import EntityCache, EntityKind
from .config import Settings
from .dates import (
    SECONDS_PER_DAY,
    DateRange,
    get_date_range,
    is_date_period,
    parse_date,
    parse_iso_datetime,
    resolve_date_range,
    week_bounds,
)
from .hydrator import EntityResolver, Hydrator
from .reports import (
    daily_report,
    format_report,
    project_summaries,
    seconds_to_hours,
    weekly_report,
    workspace_summaries,
)
from .timeline import summarize
from .toggl_api import TogglClient
from .warming import CacheWarmer, WarmCoordinator

Handler = Callable[..., Awaitable[Any]]


@dataclass
class ToolContext:
    """Long-lived collaborators shared by every tool call."""

    client: TogglClient
    cache: EntityCache
    resolver: EntityResolver
    hydrator: Hydrator
    coordinator: WarmCoordinator
    default_workspace_id: int | None = None
    debug: bool = False

    @classmethod
    def create(cls, settings: Settings, client: Any | None = None) -> "ToolContext":
        client = client or TogglClient(settings.api_key)
        cache = EntityCache(settings.cache)
        resolver = EntityResolver(cache, client)
        return cls(
            client=client,
            cache=cache,
            resolver=resolver,
            hydrator=Hydrator(resolver),
            coordinator=WarmCoordinator(
                CacheWarmer(resolver), settings.default_workspace_id
            ),
            default_workspace_id=settings.default_workspace_id,
            debug=settings.debug,
        )


def is_positive_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _require_workspace_id(ctx: ToolContext, provided: Any) -> int:
    if is_positive_int(provided):
        return provided
    if ctx.default_workspace_id:
        return ctx.default_workspace_id
    raise ValueError(
        "Workspace ID required (set TOGGL_DEFAULT_WORKSPACE_ID or provide workspace_id)"
    )


async def _resolve_workspace_id(
    ctx: ToolContext, provided: Any, time_entry_id: int
) -> int:
    if is_positive_int(provided):
        return provided
    entry = await ctx.client.get_time_entry(time_entry_id)
    if entry.get("workspace_id"):
        return entry["workspace_id"]
    return _require_workspace_id(ctx, None)


def _require_time_entry_id(value: Any) -> int:
    if not is_positive_int(value):
        raise ValueError("time_entry_id must be a positive integer")
    return value


def _mask_email(email: str | None) -> str | None:
    if not email:
        return None
    user, _, domain = email.partition("@")
    if not domain:
        return "***"
    masked = "*" * len(user) if len(user) <= 2 else f"{user[0]}***{user[-1]}"
    return f"{masked}@{domain}"


def _today_range() -> DateRange:
    return get_date_range("today")


async def _hydrate_one(ctx: ToolContext, entry: dict[str, Any]) -> dict[str, Any]:
    await ctx.coordinator.ensure_warm()
    return (await ctx.hydrator.hydrate([entry]))[0]


async def _entries_for(
    ctx: ToolContext, date_range: DateRange | None, default: DateRange
) -> list[dict[str, Any]]:
    date_range = date_range or default
    return await ctx.client.get_time_entries_for_range(date_range.start, date_range.end)


# Health / auth


async def check_auth(ctx: ToolContext) -> dict[str, Any]:
    me = await ctx.client.get_me()
    workspaces = await ctx.client.get_workspaces()
    return {
        "authenticated": True,
        "user": {
            "id": me.get("id"),
            "email": _mask_email(me.get("email")),
            "fullname": me.get("fullname"),
        },
        "workspaces": [{"id": w["id"], "name": w.get("name")} for w in workspaces],
    }


# Time tracking


async def get_time_entries(
    ctx: ToolContext,
    period: str | None = None,
    start_date: str | None = None,
    end_date: str | None = None,
    workspace_id: int | None = None,
    project_id: int | None = None,
) -> dict[str, Any]:
    await ctx.coordinator.ensure_warm()
    date_range = resolve_date_range(period, start_date, end_date)
    entries = await _entries_for(ctx, date_range, _today_range())

    if workspace_id is not None:
        entries = [e for e in entries if e.get("workspace_id") == workspace_id]
    if project_id is not None:
        entries = [e for e in entries if e.get("project_id") == project_id]

    hydrated = await ctx.hydrator.hydrate(entries)
    return {"count": len(hydrated), "entries": hydrated}


async def get_current_entry(ctx: ToolContext) -> dict[str, Any]:
    entry = await ctx.client.get_current_time_entry()
    if not entry:
        return {"running": False, "message": "No timer currently running"}
    return {"running": True, "entry": await _hydrate_one(ctx, entry)}


async def start_timer(
    ctx: ToolContext,
    description: str | None = None,
    workspace_id: int | None = None,
    project_id: int | None = None,
    task_id: int | None = None,
    tags: list[str] | None = None,
) -> dict[str, Any]:
    wid = _require_workspace_id(ctx, workspace_id)
    entry = await ctx.client.start_timer(
        wid,
        description=description,
        project_id=project_id if is_positive_int(project_id) else None,
        task_id=task_id if is_positive_int(task_id) else None,
        tags=tags,
    )
    return {
        "success": True,
        "message": "Timer started",
        "entry": await _hydrate_one(ctx, entry),
    }


async def stop_timer(ctx: ToolContext) -> dict[str, Any]:
    current = await ctx.client.get_current_time_entry()
    if not current:
        return {"success": False, "message": "No timer currently running"}
    stopped = await ctx.client.stop_timer(current["workspace_id"], current["id"])
    return {
        "success": True,
        "message": "Timer stopped",
        "entry": await _hydrate_one(ctx, stopped),
    }


async def create_time_entry(
    ctx: ToolContext,
    start: str | None = None,
    stop: str | None = None,
    description: str | None = None,
    workspace_id: int | None = None,
    project_id: int | None = None,
    task_id: int | None = None,
    tags: list[str] | None = None,
    billable: bool | None = None,
) -> dict[str, Any]:
    wid = _require_workspace_id(ctx, workspace_id)
    start_at = parse_iso_datetime(start)
    stop_at = parse_iso_datetime(stop)
    if start_at is None:
        raise ValueError(
            "start is required and must be a valid ISO 8601 date (e.g., 2026-01-10T09:00:00Z)"
        )
    if stop_at is None:
        raise ValueError(
            "stop is required and must be a valid ISO 8601 date (e.g., 2026-01-10T17:00:00Z)"
        )
    duration = int((stop_at - start_at).total_seconds())
    if duration <= 0:
        raise ValueError("Stop time must be after start time")

    entry = await ctx.client.create_time_entry(
        wid,
        {
            "description": description,
            "project_id": project_id if is_positive_int(project_id) else None,
            "task_id": task_id if is_positive_int(task_id) else None,
            "tags": tags,
            "billable": billable,
            "start": start_at.isoformat(),
            "stop": stop_at.isoformat(),
            "duration": duration,
        },
    )
    return {
        "success": True,
        "message": "Time entry created",
        "entry": await _hydrate_one(ctx, entry),
    }


async def update_time_entry(
    ctx: ToolContext,
    time_entry_id: int | None = None,
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
    entry_id = _require_time_entry_id(time_entry_id)
    wid = await _resolve_workspace_id(ctx, workspace_id, entry_id)

    updates: dict[str, Any] = {}
    if description is not None:
        updates["description"] = description
    if clear_project:
        updates["project_id"] = None
    elif project_id is not None:
        if not is_positive_int(project_id):
            raise ValueError("project_id must be a positive integer")
        updates["project_id"] = project_id
    if is_positive_int(task_id):
        updates["task_id"] = task_id
    if tags is not None:
        updates["tags"] = tags
    if billable is not None:
        updates["billable"] = billable
    if parse_iso_datetime(start) is not None:
        updates["start"] = start
    if parse_iso_datetime(stop) is not None:
        updates["stop"] = stop

    updated = await ctx.client.update_time_entry(wid, entry_id, updates)
    return {
        "success": True,
        "message": "Time entry updated",
        "entry": await _hydrate_one(ctx, updated),
    }


async def delete_time_entry(
    ctx: ToolContext,
    time_entry_id: int | None = None,
    workspace_id: int | None = None,
) -> dict[str, Any]:
    entry_id = _require_time_entry_id(time_entry_id)
    wid = await _resolve_workspace_id(ctx, workspace_id, entry_id)
    await ctx.client.delete_time_entry(wid, entry_id)
    return {"success": True, "message": f"Time entry {entry_id} deleted"}


# Reports


async def get_daily_report(
    ctx: ToolContext, date: str | None = None, format: str = "json"
) -> Any:
    await ctx.coordinator.ensure_warm()
    day = parse_date(date, "date") if date else _today_range().start
    entries = await ctx.client.get_time_entries_for_range(day, day + timedelta(days=1))
    hydrated = await ctx.hydrator.hydrate(entries)
    report = daily_report(day.date().isoformat(), hydrated)
    return format_report(report) if format == "text" else report


async def get_weekly_report(
    ctx: ToolContext, week_offset: int = 0, format: str = "json"
) -> Any:
    await ctx.coordinator.ensure_warm()
    bounds = week_bounds(week_offset or 0)
    entries = await ctx.client.get_time_entries_for_range(
        bounds.start, bounds.start + timedelta(days=7)
    )
    hydrated = await ctx.hydrator.hydrate(entries)
    report = weekly_report(
        bounds.start.date().isoformat(), bounds.end.date().isoformat(), hydrated
    )
    return format_report(report) if format == "text" else report


async def get_project_summary(
    ctx: ToolContext,
    period: str | None = None,
    start_date: str | None = None,
    end_date: str | None = None,
    workspace_id: int | None = None,
) -> dict[str, Any]:
    await ctx.coordinator.ensure_warm()
    date_range = resolve_date_range(period, start_date, end_date)
    entries = await _entries_for(ctx, date_range, week_bounds(0))
    if workspace_id is not None:
        entries = [e for e in entries if e.get("workspace_id") == workspace_id]

    hydrated = await ctx.hydrator.hydrate(entries)
    summaries = sorted(
        project_summaries(hydrated), key=lambda s: s["total_seconds"], reverse=True
    )
    return {
        "project_count": len(summaries),
        "total_hours": seconds_to_hours(sum(s["total_seconds"] for s in summaries)),
        "projects": summaries,
    }


async def get_workspace_summary(
    ctx: ToolContext,
    period: str | None = None,
    start_date: str | None = None,
    end_date: str | None = None,
) -> dict[str, Any]:
    await ctx.coordinator.ensure_warm()
    date_range = resolve_date_range(period, start_date, end_date)
    entries = await _entries_for(ctx, date_range, week_bounds(0))

    hydrated = await ctx.hydrator.hydrate(entries)
    summaries = sorted(
        workspace_summaries(hydrated), key=lambda s: s["total_seconds"], reverse=True
    )
    return {
        "workspace_count": len(summaries),
        "total_hours": seconds_to_hours(sum(s["total_seconds"] for s in summaries)),
        "workspaces": summaries,
    }


# Management


async def list_workspaces(ctx: ToolContext) -> dict[str, Any]:
    workspaces = await ctx.client.get_workspaces()
    ctx.cache.put_many(EntityKind.WORKSPACE, workspaces)
    return {
        "count": len(workspaces),
        "workspaces": [
            {
                "id": ws["id"],
                "name": ws.get("name"),
                "premium": ws.get("premium"),
                "default_currency": ws.get("default_currency"),
            }
            for ws in workspaces
        ],
    }


async def list_projects(ctx: ToolContext, workspace_id: int | None = None) -> dict[str, Any]:
    wid = _require_workspace_id(ctx, workspace_id)
    projects = await ctx.client.get_projects(wid)
    ctx.cache.put_many(EntityKind.PROJECT, projects)
    return {
        "workspace_id": wid,
        "count": len(projects),
        "projects": [
            {
                "id": p["id"],
                "name": p.get("name"),
                "active": p.get("active"),
                "billable": p.get("billable"),
                "color": p.get("color"),
                "client_id": p.get("client_id"),
            }
            for p in projects
        ],
    }


async def list_clients(ctx: ToolContext, workspace_id: int | None = None) -> dict[str, Any]:
    wid = _require_workspace_id(ctx, workspace_id)
    clients = await ctx.client.get_clients(wid)
    ctx.cache.put_many(EntityKind.CLIENT, clients)
    return {
        "workspace_id": wid,
        "count": len(clients),
        "clients": [
            {"id": c["id"], "name": c.get("name"), "archived": c.get("archived")}
            for c in clients
        ],
    }


# Cache management


def _stats_payload(ctx: ToolContext) -> dict[str, Any]:
    return ctx.cache.stats().to_dict()


async def warm_cache(ctx: ToolContext, workspace_id: int | None = None) -> dict[str, Any]:
    wid = workspace_id if is_positive_int(workspace_id) else ctx.default_workspace_id
    await ctx.coordinator.warm(wid)
    return {
        "success": True,
        "message": "Cache warmed successfully",
        "stats": _stats_payload(ctx),
    }


async def cache_stats(ctx: ToolContext) -> dict[str, Any]:
    stats = ctx.cache.stats()
    return {
        **stats.to_dict(),
        "hit_rate": f"{stats.hit_rate}%",
        "cache_warmed": ctx.coordinator.warmed,
        "api": ctx.client.get_health(),
    }


async def clear_cache(ctx: ToolContext) -> dict[str, Any]:
    ctx.cache.clear()
    ctx.coordinator.reset()
    return {"success": True, "message": "Cache cleared successfully"}


# Timeline


def _timeline_window(
    period: str | None, start_date: str | None, end_date: str | None
) -> tuple[float | None, float | None]:
    if period:
        if not is_date_period(period):
            raise ValueError(f"Invalid period: {period}")
        window = get_date_range(period)
        return window.start.timestamp(), window.end.timestamp()
    start_ts = parse_date(start_date, "start_date").timestamp() if start_date else None
    end_ts = (
        parse_date(end_date, "end_date").timestamp() + SECONDS_PER_DAY if end_date else None
    )
    return start_ts, end_ts


async def get_timeline(
    ctx: ToolContext,
    period: str | None = None,
    start_date: str | None = None,
    end_date: str | None = None,
    app: str | None = None,
    include_events: bool = True,
    limit: int = 50,
) -> dict[str, Any]:
    events = await ctx.client.get_timeline()
    start_ts, end_ts = _timeline_window(period, start_date, end_date)
    return summarize(
        events,
        start=start_ts,
        end=end_ts,
        app=app,
        include_events=include_events is not False,
        limit=limit,
    )


TOOL_HANDLERS: dict[str, Handler] = {
    "toggl_check_auth": check_auth,
    "toggl_get_time_entries": get_time_entries,
    "toggl_get_current_entry": get_current_entry,
    "toggl_start_timer": start_timer,
    "toggl_stop_timer": stop_timer,
    "toggl_create_time_entry": create_time_entry,
    "toggl_update_time_entry": update_time_entry,
    "toggl_delete_time_entry": delete_time_entry,
    "toggl_daily_report": get_daily_report,
    "toggl_weekly_report": get_weekly_report,
    "toggl_project_summary": get_project_summary,
    "toggl_workspace_summary": get_workspace_summary,
    "toggl_list_workspaces": list_workspaces,
    "toggl_list_projects": list_projects,
    "toggl_list_clients": list_clients,
    "toggl_warm_cache": warm_cache,
    "toggl_cache_stats": cache_stats,
    "toggl_clear_cache": clear_cache,
    "toggl_get_timeline": get_timeline,
}
