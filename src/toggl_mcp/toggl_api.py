"""
Async Toggl Track API v9 client.

Wraps an httpx.AsyncClient with Basic auth, bounded retries for rate limiting
and transient network failures, and health bookkeeping for diagnostics.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from datetime import date, datetime, timedelta, timezone
from datetime import time as dt_time
from typing import Any, Protocol

import httpx

from . import __version__
from .timeline import is_timeline_event

logger = logging.getLogger(__name__)

API_BASE_URL = "https://api.track.toggl.com/api/v9"
TIMELINE_BASE_URL = "https://track.toggl.com/api/v9"
USER_AGENT = f"toggl-mcp/{__version__}"
CREATED_WITH = "toggl-mcp"
MAX_ATTEMPTS = 3


class TogglApiError(RuntimeError):
    """Raised when a Toggl API call fails."""

    def __init__(self, code: str, message: str, status: int | None = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status = status


class UpstreamSource(Protocol):
    """Entity lookups the cache layer resolves references through."""

    async def get_workspace(self, workspace_id: int) -> dict[str, Any]: ...

    async def get_workspaces(self) -> list[dict[str, Any]]: ...

    async def get_project(self, project_id: int) -> dict[str, Any]: ...

    async def get_projects(self, workspace_id: int) -> list[dict[str, Any]]: ...

    async def get_client(self, client_id: int) -> dict[str, Any]: ...

    async def get_clients(self, workspace_id: int) -> list[dict[str, Any]]: ...

    async def get_task(
        self, task_id: int, workspace_id: int, project_id: int
    ) -> dict[str, Any]: ...

    async def get_tasks(
        self, workspace_id: int, project_id: int
    ) -> list[dict[str, Any]]: ...

    async def get_user(self, user_id: int) -> dict[str, Any]: ...

    async def get_tag(self, tag_id: int, workspace_id: int) -> dict[str, Any]: ...

    async def get_tags(self, workspace_id: int) -> list[dict[str, Any]]: ...


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class TogglClient:
    """Toggl Track API client implementing `UpstreamSource` plus time-entry calls."""

    def __init__(
        self,
        api_key: str,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout_seconds: float = 30.0,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
    ):
        key = api_key.strip()
        self._http = httpx.AsyncClient(
            auth=httpx.BasicAuth(key, "api_token"),
            headers={"Content-Type": "application/json", "User-Agent": USER_AGENT},
            timeout=timeout_seconds,
            transport=transport,
        )
        self._sleep = sleep or asyncio.sleep

        self._failure_count = 0
        self._last_error: str | None = None
        self._last_failure_at: float | None = None
        self._last_success_at: float | None = None

    def _record_failure(self, exc: Exception) -> None:
        self._failure_count += 1
        self._last_failure_at = time.time()
        self._last_error = f"{exc.__class__.__name__}: {exc}"

    def _record_success(self) -> None:
        self._failure_count = 0
        self._last_error = None
        self._last_success_at = time.time()

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        status = response.status_code
        text = response.text
        if status in (401, 403):
            raise TogglApiError(
                "auth_failed",
                f"Authentication failed ({status}). Verify TOGGL_API_KEY is correct, "
                "has no leading/trailing spaces, and is the Toggl Track API token. "
                f"Server response: {text}",
                status,
            )
        if status == 404:
            raise TogglApiError("not_found", f"Toggl API resource not found: {text}", status)
        raise TogglApiError("api_error", f"Toggl API error ({status}): {text}", status)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
        base_url: str = API_BASE_URL,
    ) -> Any:
        url = f"{base_url}{path}"
        logger.debug("%s %s", method, url)

        for attempt in range(MAX_ATTEMPTS):
            try:
                response = await self._http.request(method, url, json=json, params=params)
            except httpx.HTTPError as exc:
                self._record_failure(exc)
                if attempt == MAX_ATTEMPTS - 1:
                    raise TogglApiError(
                        "network_error", f"Toggl API request failed for {path}: {exc}"
                    ) from exc
                await self._sleep(attempt + 1)
                continue

            if response.status_code == 429:
                retry_after = response.headers.get("Retry-After")
                try:
                    delay = float(retry_after) if retry_after else (attempt + 1) * 2.0
                except ValueError:
                    delay = (attempt + 1) * 2.0
                exc = TogglApiError("rate_limited", "Toggl API rate limit exceeded", 429)
                self._record_failure(exc)
                if attempt == MAX_ATTEMPTS - 1:
                    raise exc
                logger.warning("Rate limited. Retrying after %.1fs...", delay)
                await self._sleep(delay)
                continue

            if response.is_server_error and attempt < MAX_ATTEMPTS - 1:
                self._record_failure(
                    TogglApiError("api_error", f"HTTP {response.status_code}", response.status_code)
                )
                logger.warning(
                    "Toggl API returned %s for %s, retrying", response.status_code, path
                )
                await self._sleep(attempt + 1)
                continue

            if response.is_error:
                try:
                    self._raise_for_status(response)
                except TogglApiError as exc:
                    self._record_failure(exc)
                    raise

            self._record_success()
            if response.status_code == 204 or not response.content:
                return {}
            try:
                return response.json()
            except ValueError as exc:
                raise TogglApiError(
                    "invalid_response", f"Toggl API returned non-JSON for {path}"
                ) from exc

        raise TogglApiError("api_error", "Max retries reached")

    # Users

    async def get_me(self) -> dict[str, Any]:
        return await self._request("GET", "/me")

    async def get_user(self, user_id: int) -> dict[str, Any]:
        # v9 has no per-user lookup for regular accounts; only /me resolves.
        me = await self.get_me()
        if me.get("id") != user_id:
            raise TogglApiError("not_found", f"User {user_id} not found")
        return me

    # Workspaces

    async def get_workspaces(self) -> list[dict[str, Any]]:
        return await self._request("GET", "/workspaces")

    async def get_workspace(self, workspace_id: int) -> dict[str, Any]:
        return await self._request("GET", f"/workspaces/{workspace_id}")

    # Projects / clients

    async def get_projects(self, workspace_id: int) -> list[dict[str, Any]]:
        return await self._request("GET", f"/workspaces/{workspace_id}/projects") or []

    async def get_project(self, project_id: int) -> dict[str, Any]:
        # No workspace-less project endpoint, so scan workspaces.
        for workspace in await self.get_workspaces():
            for project in await self.get_projects(workspace["id"]):
                if project.get("id") == project_id:
                    return project
        raise TogglApiError("not_found", f"Project {project_id} not found")

    async def get_clients(self, workspace_id: int) -> list[dict[str, Any]]:
        return await self._request("GET", f"/workspaces/{workspace_id}/clients") or []

    async def get_client(self, client_id: int) -> dict[str, Any]:
        for workspace in await self.get_workspaces():
            try:
                clients = await self.get_clients(workspace["id"])
            except TogglApiError as exc:
                if exc.code == "auth_failed":
                    raise
                logger.debug("Skipping clients of workspace %s: %s", workspace["id"], exc)
                continue
            for client in clients:
                if client.get("id") == client_id:
                    return client
        raise TogglApiError("not_found", f"Client {client_id} not found")

    # Tasks / tags

    async def get_tasks(self, workspace_id: int, project_id: int) -> list[dict[str, Any]]:
        return (
            await self._request(
                "GET", f"/workspaces/{workspace_id}/projects/{project_id}/tasks"
            )
            or []
        )

    async def get_task(
        self, task_id: int, workspace_id: int, project_id: int
    ) -> dict[str, Any]:
        return await self._request(
            "GET", f"/workspaces/{workspace_id}/projects/{project_id}/tasks/{task_id}"
        )

    async def get_tags(self, workspace_id: int) -> list[dict[str, Any]]:
        return await self._request("GET", f"/workspaces/{workspace_id}/tags") or []

    async def get_tag(self, tag_id: int, workspace_id: int) -> dict[str, Any]:
        return await self._request("GET", f"/workspaces/{workspace_id}/tags/{tag_id}")

    # Time entries

    async def get_time_entries(
        self, start_date: date | None = None, end_date: date | None = None
    ) -> list[dict[str, Any]]:
        params: dict[str, Any] = {}
        if start_date is not None:
            params["start_date"] = start_date.isoformat()
        if end_date is not None:
            params["end_date"] = end_date.isoformat()
        return await self._request("GET", "/me/time_entries", params=params or None) or []

    async def get_time_entries_for_range(
        self, start: datetime, end: datetime
    ) -> list[dict[str, Any]]:
        end_date = end.date()
        if end.time() != dt_time.min:
            # end_date is exclusive upstream; keep the partial last day.
            end_date += timedelta(days=1)
        return await self.get_time_entries(start.date(), end_date)

    async def get_current_time_entry(self) -> dict[str, Any] | None:
        result = await self._request("GET", "/me/time_entries/current")
        return result or None

    async def get_time_entry(self, time_entry_id: int) -> dict[str, Any]:
        return await self._request("GET", f"/me/time_entries/{time_entry_id}")

    async def create_time_entry(
        self, workspace_id: int, entry: dict[str, Any]
    ) -> dict[str, Any]:
        payload = {
            "workspace_id": workspace_id,
            "created_with": CREATED_WITH,
            "start": _iso_now(),
        }
        payload.update({k: v for k, v in entry.items() if v is not None})
        return await self._request(
            "POST", f"/workspaces/{workspace_id}/time_entries", json=payload
        )

    async def update_time_entry(
        self, workspace_id: int, time_entry_id: int, updates: dict[str, Any]
    ) -> dict[str, Any]:
        return await self._request(
            "PUT",
            f"/workspaces/{workspace_id}/time_entries/{time_entry_id}",
            json=updates,
        )

    async def delete_time_entry(self, workspace_id: int, time_entry_id: int) -> None:
        await self._request(
            "DELETE", f"/workspaces/{workspace_id}/time_entries/{time_entry_id}"
        )

    async def start_timer(
        self,
        workspace_id: int,
        description: str | None = None,
        project_id: int | None = None,
        task_id: int | None = None,
        tags: list[str] | None = None,
    ) -> dict[str, Any]:
        return await self.create_time_entry(
            workspace_id,
            {
                "description": description,
                "project_id": project_id,
                "task_id": task_id,
                "tags": tags,
                "start": _iso_now(),
                "duration": -1,  # running
            },
        )

    async def stop_timer(self, workspace_id: int, time_entry_id: int) -> dict[str, Any]:
        return await self.update_time_entry(
            workspace_id, time_entry_id, {"stop": _iso_now()}
        )

    # Timeline

    async def get_timeline(self) -> list[dict[str, Any]]:
        """Desktop activity events. Undocumented endpoint on the track.toggl.com host."""
        data = await self._request("GET", "/timeline", base_url=TIMELINE_BASE_URL)
        if not isinstance(data, list):
            raise TogglApiError(
                "invalid_response", "Timeline API returned invalid response format"
            )
        return [event for event in data if is_timeline_event(event)]

    def get_health(self) -> dict[str, Any]:
        return {
            "failureCount": self._failure_count,
            "lastError": self._last_error,
            "lastFailureAt": self._last_failure_at,
            "lastSuccessAt": self._last_success_at,
        }

    async def aclose(self) -> None:
        await self._http.aclose()
