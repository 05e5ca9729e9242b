"""
Desktop activity timeline filtering and per-application summaries.
"""

from __future__ import annotations

import time
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

DEFAULT_LIMIT = 50
MAX_LIMIT = 1000
UNKNOWN_APP = "Unknown"


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_timeline_event(value: Any) -> bool:
    if not isinstance(value, dict):
        return False
    end_time = value.get("end_time")
    return (
        isinstance(value.get("id"), int)
        and not isinstance(value.get("id"), bool)
        and _is_number(value.get("start_time"))
        and (end_time is None or _is_number(end_time))
        and isinstance(value.get("desktop_id"), str)
        and isinstance(value.get("idle"), bool)
    )


def clamp_limit(raw: Any) -> int:
    limit = raw if _is_number(raw) else DEFAULT_LIMIT
    return int(max(1, min(limit, MAX_LIMIT)))


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat().replace("+00:00", "Z")


def summarize(
    events: Iterable[dict[str, Any]],
    start: float | None = None,
    end: float | None = None,
    app: str | None = None,
    include_events: bool = True,
    limit: Any = DEFAULT_LIMIT,
    now: float | None = None,
) -> dict[str, Any]:
    """Filter events overlapping [start, end) and aggregate seconds per application.

    Events without an end_time are treated as running until `now`. Durations are
    clipped to the window. `summary` and `total_seconds` cover every matching
    event; only the returned `events` list is capped by `limit`.
    """
    if now is None:
        now = int(time.time())
    app_filter = app.lower() if app else None
    limit = clamp_limit(limit)

    app_seconds: dict[str, float] = {}
    returned: list[dict[str, Any]] = []
    total_events = 0
    total_seconds: float = 0

    for event in events:
        event_start = event["start_time"]
        event_end = event.get("end_time")
        if event_end is None:
            event_end = now

        if start is not None and event_end < start:
            continue
        if end is not None and event_start >= end:
            continue

        filename = event.get("filename")
        if filename is None:
            filename = UNKNOWN_APP
        if app_filter and app_filter not in filename.lower():
            continue

        clipped_start = max(event_start, start) if start is not None else event_start
        clipped_end = min(event_end, end) if end is not None else event_end
        duration = max(0, clipped_end - clipped_start)

        total_events += 1
        total_seconds += duration
        app_seconds[filename] = app_seconds.get(filename, 0) + duration

        if include_events and len(returned) < limit:
            returned.append(
                {
                    **event,
                    "filename": filename,
                    "start": _iso(clipped_start),
                    "end": _iso(clipped_end),
                    "duration_seconds": duration,
                }
            )

    summary = dict(sorted(app_seconds.items(), key=lambda item: item[1], reverse=True))
    result: dict[str, Any] = {
        "total_events": total_events,
        "returned_events": len(returned),
        "truncated": include_events and total_events > len(returned),
        "total_seconds": total_seconds,
        "summary": summary,
    }
    if include_events:
        result["events"] = returned
    return result
