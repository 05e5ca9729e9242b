"""
Cache warming: bulk pre-fetch of workspaces, projects, clients and tags.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any

from .hydrator import EntityResolver

logger = logging.getLogger(__name__)

MAX_WARM_WORKSPACES = 3


class CacheWarmer:
    """Best-effort cache priming. Never raises."""

    def __init__(self, resolver: EntityResolver, max_workspaces: int = MAX_WARM_WORKSPACES):
        self._resolver = resolver
        self._max_workspaces = max_workspaces

    async def _warm_workspace(self, workspace_id: int) -> None:
        await asyncio.gather(
            self._resolver.projects(workspace_id),
            self._resolver.clients(workspace_id),
            self._resolver.tags(workspace_id),
        )

    async def warm(self, workspace_id: int | None = None) -> None:
        logger.info("Warming cache...")
        try:
            workspaces = await self._resolver.workspaces()
            if workspace_id:
                await self._warm_workspace(workspace_id)
            else:
                # Serial across workspaces to stay under the API rate limit.
                for workspace in workspaces[: self._max_workspaces]:
                    await self._warm_workspace(workspace["id"])
            logger.info("Cache warmed successfully")
        except Exception as exc:
            logger.warning("Failed to warm cache: %s", exc)


class WarmCoordinator:
    """
    Single-flight guard around `CacheWarmer.warm`.

    At most one warm runs at a time. Callers asking for the target that is
    already in flight await that same task; callers asking for a different
    target wait for it to settle and then run their own.
    """

    def __init__(self, warmer: CacheWarmer, default_workspace_id: int | None = None):
        self._warmer = warmer
        self._default_workspace_id = default_workspace_id
        self._inflight: asyncio.Task[None] | None = None
        self._inflight_target: int | None = None
        self.warmed = False

    @property
    def in_flight(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    def _settle(self, task: asyncio.Task[Any]) -> None:
        if self._inflight is task:
            self._inflight = None
            self._inflight_target = None
        if not task.cancelled() and task.exception() is None:
            self.warmed = True

    async def warm(self, workspace_id: int | None = None) -> None:
        while self._inflight is not None and not self._inflight.done():
            task = self._inflight
            if self._inflight_target == workspace_id:
                await asyncio.shield(task)
                return
            try:
                await asyncio.shield(task)
            except Exception as exc:
                logger.debug("Previous cache warm failed: %s", exc)

        task = asyncio.ensure_future(self._warmer.warm(workspace_id))
        self._inflight = task
        self._inflight_target = workspace_id
        task.add_done_callback(self._settle)
        await asyncio.shield(task)

    async def ensure_warm(self) -> None:
        if self.warmed:
            return
        await self.warm(self._default_workspace_id)

    def reset(self) -> None:
        self.warmed = False

    async def cancel(self) -> None:
        """Cancel the in-flight warm, if any, and wait for it to unwind."""
        task = self._inflight
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
