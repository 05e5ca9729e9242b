from __future__ import annotations

import asyncio
from typing import Any

import pytest

from toggl_mcp.cache import CacheConfig, EntityCache
from toggl_mcp.hydrator import EntityResolver, Hydrator
from toggl_mcp.toggl_api import TogglApiError


class FakeClock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeUpstream:
    """In-memory stand-in for the Toggl API that records every call."""

    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.failures: set[tuple[str, Any]] = set()
        self.workspaces: dict[int, dict[str, Any]] = {
            1: {"id": 1, "name": "Acme"},
            2: {"id": 2, "name": "Side Gig"},
        }
        self.projects: dict[int, dict[str, Any]] = {
            10: {"id": 10, "workspace_id": 1, "name": "Website", "client_id": 100},
            11: {"id": 11, "workspace_id": 1, "name": "Internal"},
            20: {"id": 20, "workspace_id": 2, "name": "Blog"},
        }
        self.clients: dict[int, dict[str, Any]] = {
            100: {"id": 100, "workspace_id": 1, "name": "Globex"},
        }
        self.tasks: dict[int, dict[str, Any]] = {
            1000: {"id": 1000, "workspace_id": 1, "project_id": 10, "name": "Homepage"},
        }
        self.users: dict[int, dict[str, Any]] = {
            7: {"id": 7, "fullname": "Sam Doe", "email": "sam@example.com"},
        }
        self.tags: dict[int, dict[str, Any]] = {
            501: {"id": 501, "workspace_id": 1, "name": "urgent"},
            502: {"id": 502, "workspace_id": 1, "name": "review"},
        }

    def count(self, name: str) -> int:
        return sum(1 for call_name, _ in self.calls if call_name == name)

    def fail(self, name: str, key: Any = None) -> None:
        self.failures.add((name, key))

    async def _record(self, name: str, *args: Any) -> None:
        self.calls.append((name, args))
        if self.delay:
            await asyncio.sleep(self.delay)
        key = args[0] if args else None
        if (name, key) in self.failures or (name, None) in self.failures:
            raise TogglApiError("network_error", f"{name} failed")

    @staticmethod
    def _lookup(store: dict[int, dict[str, Any]], entity_id: int, label: str) -> dict[str, Any]:
        if entity_id not in store:
            raise TogglApiError("not_found", f"{label} {entity_id} not found")
        return store[entity_id]

    async def get_workspace(self, workspace_id: int) -> dict[str, Any]:
        await self._record("get_workspace", workspace_id)
        return self._lookup(self.workspaces, workspace_id, "Workspace")

    async def get_workspaces(self) -> list[dict[str, Any]]:
        await self._record("get_workspaces")
        return list(self.workspaces.values())

    async def get_project(self, project_id: int) -> dict[str, Any]:
        await self._record("get_project", project_id)
        return self._lookup(self.projects, project_id, "Project")

    async def get_projects(self, workspace_id: int) -> list[dict[str, Any]]:
        await self._record("get_projects", workspace_id)
        return [p for p in self.projects.values() if p["workspace_id"] == workspace_id]

    async def get_client(self, client_id: int) -> dict[str, Any]:
        await self._record("get_client", client_id)
        return self._lookup(self.clients, client_id, "Client")

    async def get_clients(self, workspace_id: int) -> list[dict[str, Any]]:
        await self._record("get_clients", workspace_id)
        return [c for c in self.clients.values() if c["workspace_id"] == workspace_id]

    async def get_task(self, task_id: int, workspace_id: int, project_id: int) -> dict[str, Any]:
        await self._record("get_task", task_id, workspace_id, project_id)
        return self._lookup(self.tasks, task_id, "Task")

    async def get_tasks(self, workspace_id: int, project_id: int) -> list[dict[str, Any]]:
        await self._record("get_tasks", workspace_id, project_id)
        return [t for t in self.tasks.values() if t["project_id"] == project_id]

    async def get_user(self, user_id: int) -> dict[str, Any]:
        await self._record("get_user", user_id)
        return self._lookup(self.users, user_id, "User")

    async def get_tag(self, tag_id: int, workspace_id: int) -> dict[str, Any]:
        await self._record("get_tag", tag_id, workspace_id)
        return self._lookup(self.tags, tag_id, "Tag")

    async def get_tags(self, workspace_id: int) -> list[dict[str, Any]]:
        await self._record("get_tags", workspace_id)
        return [t for t in self.tags.values() if t["workspace_id"] == workspace_id]


class FakeTogglClient(FakeUpstream):
    """FakeUpstream plus the time-entry and timeline calls tool handlers make."""

    def __init__(self, delay: float = 0.0):
        super().__init__(delay)
        self.me: dict[str, Any] = {"id": 7, "email": "sam@example.com", "fullname": "Sam Doe"}
        self.entries: list[dict[str, Any]] = []
        self.current: dict[str, Any] | None = None
        self.timeline: list[dict[str, Any]] = []
        self.writes: list[tuple[str, tuple[Any, ...]]] = []
        self.closed = False

    async def get_me(self) -> dict[str, Any]:
        await self._record("get_me")
        return self.me

    async def get_time_entries_for_range(self, start, end) -> list[dict[str, Any]]:
        await self._record("get_time_entries_for_range", start, end)
        return list(self.entries)

    async def get_current_time_entry(self) -> dict[str, Any] | None:
        await self._record("get_current_time_entry")
        return self.current

    async def get_time_entry(self, time_entry_id: int) -> dict[str, Any]:
        await self._record("get_time_entry", time_entry_id)
        for entry in self.entries:
            if entry["id"] == time_entry_id:
                return entry
        raise TogglApiError("not_found", f"Time entry {time_entry_id} not found")

    async def create_time_entry(self, workspace_id: int, entry: dict[str, Any]) -> dict[str, Any]:
        self.writes.append(("create", (workspace_id, entry)))
        created = {"id": 900, "workspace_id": workspace_id}
        created.update({k: v for k, v in entry.items() if v is not None})
        return created

    async def update_time_entry(
        self, workspace_id: int, time_entry_id: int, updates: dict[str, Any]
    ) -> dict[str, Any]:
        self.writes.append(("update", (workspace_id, time_entry_id, updates)))
        return {"id": time_entry_id, "workspace_id": workspace_id, **updates}

    async def delete_time_entry(self, workspace_id: int, time_entry_id: int) -> None:
        self.writes.append(("delete", (workspace_id, time_entry_id)))

    async def start_timer(self, workspace_id: int, **fields: Any) -> dict[str, Any]:
        return await self.create_time_entry(workspace_id, {**fields, "duration": -1})

    async def stop_timer(self, workspace_id: int, time_entry_id: int) -> dict[str, Any]:
        return await self.update_time_entry(
            workspace_id, time_entry_id, {"stop": "2026-01-10T10:00:00Z"}
        )

    async def get_timeline(self) -> list[dict[str, Any]]:
        await self._record("get_timeline")
        return list(self.timeline)

    def get_health(self) -> dict[str, Any]:
        return {"failureCount": 0, "lastError": None}

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def cache(clock: FakeClock) -> EntityCache:
    return EntityCache(CacheConfig(ttl_ms=60_000, max_size=60), clock=clock)


@pytest.fixture
def resolver(cache: EntityCache, upstream: FakeUpstream) -> EntityResolver:
    return EntityResolver(cache, upstream)


@pytest.fixture
def hydrator(resolver: EntityResolver) -> Hydrator:
    return Hydrator(resolver)


@pytest.fixture
def fake_client() -> FakeTogglClient:
    return FakeTogglClient()
