"""
Report aggregation over hydrated time entries.
"""

from __future__ import annotations

import time
from collections.abc import Iterable, Sequence
from typing import Any

from .dates import parse_iso_datetime

NO_PROJECT = "No Project"


def seconds_to_hours(seconds: float) -> float:
    return round(seconds / 3600, 2)


def format_duration(seconds: int) -> str:
    hours, rest = divmod(int(seconds), 3600)
    minutes, secs = divmod(rest, 60)
    if hours > 0:
        return f"{hours}h {minutes}m"
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def entry_duration(entry: dict[str, Any], now: float | None = None) -> int:
    """Entry duration in seconds; running timers count elapsed time since start."""
    duration = entry.get("duration") or 0
    if duration >= 0:
        return duration
    started = parse_iso_datetime(entry.get("start"))
    if started is None:
        return 0
    now = time.time() if now is None else now
    return max(0, int(now - started.timestamp()))


def _billable_seconds(entries: Iterable[dict[str, Any]]) -> int:
    return sum(
        e.get("duration", 0)
        for e in entries
        if e.get("billable") and e.get("duration", 0) >= 0
    )


def _group(entries: Iterable[dict[str, Any]], key) -> dict[str, list[dict[str, Any]]]:
    grouped: dict[str, list[dict[str, Any]]] = {}
    for entry in entries:
        grouped.setdefault(key(entry), []).append(entry)
    return grouped


def group_by_date(entries: Iterable[dict[str, Any]]) -> dict[str, list[dict[str, Any]]]:
    return _group(entries, lambda e: str(e.get("start", "")).split("T")[0])


def group_by_project(entries: Iterable[dict[str, Any]]) -> dict[str, list[dict[str, Any]]]:
    return _group(entries, lambda e: e.get("project_name") or NO_PROJECT)


def group_by_workspace(entries: Iterable[dict[str, Any]]) -> dict[str, list[dict[str, Any]]]:
    return _group(entries, lambda e: e["workspace_name"])


def total_duration(entries: Iterable[dict[str, Any]], now: float | None = None) -> int:
    return sum(entry_duration(e, now) for e in entries)


def report_entry(entry: dict[str, Any], now: float | None = None) -> dict[str, Any]:
    duration = entry_duration(entry, now)
    return {
        "id": entry.get("id"),
        "workspace": entry.get("workspace_name"),
        "project": entry.get("project_name"),
        "client": entry.get("client_name"),
        "task": entry.get("task_name"),
        "description": entry.get("description"),
        "start": entry.get("start"),
        "stop": entry.get("stop"),
        "duration_hours": seconds_to_hours(duration),
        "duration_seconds": duration,
        "tags": entry.get("tag_names") or entry.get("tags"),
        "billable": entry.get("billable"),
    }


def project_summary(
    project_name: str, entries: Sequence[dict[str, Any]], now: float | None = None
) -> dict[str, Any]:
    total = total_duration(entries, now)
    billable = _billable_seconds(entries)
    first = entries[0] if entries else {}
    return {
        "project_id": first.get("project_id"),
        "project_name": project_name,
        "client_name": first.get("client_name"),
        "workspace_name": first.get("workspace_name") or "Unknown",
        "total_hours": seconds_to_hours(total),
        "total_seconds": total,
        "billable_hours": seconds_to_hours(billable),
        "billable_seconds": billable,
        "entry_count": len(entries),
    }


def workspace_summary(
    workspace_name: str,
    workspace_id: int,
    entries: Sequence[dict[str, Any]],
    now: float | None = None,
) -> dict[str, Any]:
    total = total_duration(entries, now)
    billable = _billable_seconds(entries)
    project_ids = {e.get("project_id") for e in entries if e.get("project_id")}
    return {
        "workspace_id": workspace_id,
        "workspace_name": workspace_name,
        "total_hours": seconds_to_hours(total),
        "total_seconds": total,
        "billable_hours": seconds_to_hours(billable),
        "billable_seconds": billable,
        "project_count": len(project_ids),
        "entry_count": len(entries),
    }


def project_summaries(
    entries: Sequence[dict[str, Any]], now: float | None = None
) -> list[dict[str, Any]]:
    return [
        project_summary(name, group, now)
        for name, group in group_by_project(entries).items()
    ]


def workspace_summaries(
    entries: Sequence[dict[str, Any]], now: float | None = None
) -> list[dict[str, Any]]:
    return [
        workspace_summary(name, group[0].get("workspace_id") or 0, group, now)
        for name, group in group_by_workspace(entries).items()
    ]


def daily_report(
    day: str, entries: Sequence[dict[str, Any]], now: float | None = None
) -> dict[str, Any]:
    total = total_duration(entries, now)
    return {
        "date": day,
        "total_hours": seconds_to_hours(total),
        "total_seconds": total,
        "entries": [report_entry(e, now) for e in entries],
        "by_project": project_summaries(entries, now),
        "by_workspace": workspace_summaries(entries, now),
    }


def weekly_report(
    week_start: str,
    week_end: str,
    entries: Sequence[dict[str, Any]],
    now: float | None = None,
) -> dict[str, Any]:
    total = total_duration(entries, now)
    daily = [
        daily_report(day, group, now) for day, group in group_by_date(entries).items()
    ]
    daily.sort(key=lambda report: report["date"])
    return {
        "week_start": week_start,
        "week_end": week_end,
        "total_hours": seconds_to_hours(total),
        "total_seconds": total,
        "daily_breakdown": daily,
        "by_project": project_summaries(entries, now),
        "by_workspace": workspace_summaries(entries, now),
    }


def format_report(report: dict[str, Any]) -> str:
    lines: list[str] = []
    if "week_start" in report:
        lines.append(f"Weekly Report ({report['week_start']} to {report['week_end']})")
        lines.append(f"Total: {report['total_hours']} hours")
        lines.append("")
        lines.append("Daily Breakdown:")
        for day in report["daily_breakdown"]:
            lines.append(f"  {day['date']}: {day['total_hours']}h")
    else:
        lines.append(f"Daily Report for {report['date']}")
        lines.append(f"Total: {report['total_hours']} hours")

    lines.append("")
    lines.append("By Workspace:")
    for ws in report["by_workspace"]:
        lines.append(
            f"  {ws['workspace_name']}: {ws['total_hours']}h ({ws['project_count']} projects)"
        )

    lines.append("")
    lines.append("By Project:")
    for proj in report["by_project"]:
        client = f" ({proj['client_name']})" if proj.get("client_name") else ""
        lines.append(f"  {proj['project_name']}{client}: {proj['total_hours']}h")

    return "\n".join(lines)
