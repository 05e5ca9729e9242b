"""
Time-entry hydration: resolve workspace/project/client/task/user/tag ids to names.

Every lookup goes through the entity cache first and falls back to the upstream
source on a miss. Upstream failures never escape; the affected field gets a
placeholder name instead.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from .cache import EntityCache, EntityKind
from .toggl_api import UpstreamSource

logger = logging.getLogger(__name__)


def placeholder_name(kind: EntityKind, entity_id: int) -> str:
    return f"{kind.label} {entity_id}"


class EntityResolver:
    """Cache-or-fetch access to Toggl entities."""

    def __init__(self, cache: EntityCache, upstream: UpstreamSource):
        self._cache = cache
        self._upstream = upstream

    @property
    def cache(self) -> EntityCache:
        return self._cache

    async def _resolve(
        self,
        kind: EntityKind,
        entity_id: int,
        fetch: Callable[[], Awaitable[dict[str, Any]]],
    ) -> dict[str, Any] | None:
        cached = self._cache.get(kind, entity_id)
        if cached is not None:
            return cached
        try:
            entity = await fetch()
        except Exception as exc:
            logger.warning("Failed to fetch %s %s: %s", kind.value, entity_id, exc)
            return None
        if entity:
            self._cache.put(kind, entity_id, entity)
            return entity
        return None

    async def _fetch_list(
        self,
        kind: EntityKind,
        fetch: Callable[[], Awaitable[list[dict[str, Any]]]],
        scope: str,
    ) -> list[dict[str, Any]]:
        try:
            entities = await fetch() or []
        except Exception as exc:
            logger.warning("Failed to fetch %s for %s: %s", kind.plural, scope, exc)
            return []
        self._cache.put_many(kind, entities)
        return entities

    async def workspace(self, workspace_id: int) -> dict[str, Any] | None:
        return await self._resolve(
            EntityKind.WORKSPACE,
            workspace_id,
            lambda: self._upstream.get_workspace(workspace_id),
        )

    async def project(self, project_id: int) -> dict[str, Any] | None:
        return await self._resolve(
            EntityKind.PROJECT, project_id, lambda: self._upstream.get_project(project_id)
        )

    async def client(self, client_id: int) -> dict[str, Any] | None:
        return await self._resolve(
            EntityKind.CLIENT, client_id, lambda: self._upstream.get_client(client_id)
        )

    async def task(
        self, task_id: int, workspace_id: int, project_id: int
    ) -> dict[str, Any] | None:
        return await self._resolve(
            EntityKind.TASK,
            task_id,
            lambda: self._upstream.get_task(task_id, workspace_id, project_id),
        )

    async def user(self, user_id: int) -> dict[str, Any] | None:
        return await self._resolve(
            EntityKind.USER, user_id, lambda: self._upstream.get_user(user_id)
        )

    async def tag(self, tag_id: int, workspace_id: int) -> dict[str, Any] | None:
        return await self._resolve(
            EntityKind.TAG, tag_id, lambda: self._upstream.get_tag(tag_id, workspace_id)
        )

    async def workspaces(self) -> list[dict[str, Any]]:
        return await self._fetch_list(
            EntityKind.WORKSPACE, self._upstream.get_workspaces, "account"
        )

    async def projects(self, workspace_id: int) -> list[dict[str, Any]]:
        return await self._fetch_list(
            EntityKind.PROJECT,
            lambda: self._upstream.get_projects(workspace_id),
            f"workspace {workspace_id}",
        )

    async def clients(self, workspace_id: int) -> list[dict[str, Any]]:
        return await self._fetch_list(
            EntityKind.CLIENT,
            lambda: self._upstream.get_clients(workspace_id),
            f"workspace {workspace_id}",
        )

    async def tasks(self, workspace_id: int, project_id: int) -> list[dict[str, Any]]:
        return await self._fetch_list(
            EntityKind.TASK,
            lambda: self._upstream.get_tasks(workspace_id, project_id),
            f"project {project_id}",
        )

    async def tags(self, workspace_id: int) -> list[dict[str, Any]]:
        return await self._fetch_list(
            EntityKind.TAG,
            lambda: self._upstream.get_tags(workspace_id),
            f"workspace {workspace_id}",
        )


class Hydrator:
    """Attach display names to raw time entries."""

    def __init__(self, resolver: EntityResolver):
        self._resolver = resolver

    async def _prefetch_projects(self, entries: Sequence[dict[str, Any]]) -> None:
        cache = self._resolver.cache
        project_ids: dict[int, None] = {}
        for entry in entries:
            project_id = entry.get("project_id")
            if project_id:
                project_ids[project_id] = None
        missing = [pid for pid in project_ids if not cache.contains(EntityKind.PROJECT, pid)]
        if not missing:
            return
        logger.debug("Fetching %d missing projects...", len(missing))
        await asyncio.gather(*(self._resolver.project(pid) for pid in missing))

    async def hydrate_entry(self, entry: dict[str, Any]) -> dict[str, Any]:
        resolver = self._resolver
        hydrated = dict(entry)
        workspace_id = entry.get("workspace_id")
        project_id = entry.get("project_id")
        task_id = entry.get("task_id")
        user_id = entry.get("user_id")

        workspace = await resolver.workspace(workspace_id) if workspace_id else None
        hydrated["workspace_name"] = (workspace or {}).get("name") or placeholder_name(
            EntityKind.WORKSPACE, workspace_id
        )

        if project_id:
            project = await resolver.project(project_id)
            hydrated["project_name"] = (project or {}).get("name") or placeholder_name(
                EntityKind.PROJECT, project_id
            )
            client_id = (project or {}).get("client_id")
            if client_id:
                hydrated["client_id"] = client_id
                client = await resolver.client(client_id)
                hydrated["client_name"] = (client or {}).get("name") or placeholder_name(
                    EntityKind.CLIENT, client_id
                )

        if task_id and project_id:
            task = await resolver.task(task_id, workspace_id, project_id)
            hydrated["task_name"] = (task or {}).get("name") or placeholder_name(
                EntityKind.TASK, task_id
            )

        if user_id:
            user = await resolver.user(user_id) or {}
            hydrated["user_name"] = (
                user.get("fullname")
                or user.get("email")
                or placeholder_name(EntityKind.USER, user_id)
            )

        tag_ids = entry.get("tag_ids") or []
        if tag_ids:
            names: list[str] = []
            for tag_id in tag_ids:
                tag = await resolver.tag(tag_id, workspace_id)
                if tag and tag.get("name"):
                    names.append(tag["name"])
            hydrated["tag_names"] = names

        return hydrated

    async def hydrate(self, entries: Sequence[dict[str, Any]]) -> list[dict[str, Any]]:
        """Return one hydrated copy per entry, in input order."""
        await self._prefetch_projects(entries)
        return [await self.hydrate_entry(entry) for entry in entries]
