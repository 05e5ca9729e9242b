from __future__ import annotations

import asyncio
import base64
import json
from datetime import datetime

import httpx
import pytest

from toggl_mcp.cache import CacheConfig, EntityCache
from toggl_mcp.hydrator import EntityResolver, Hydrator
from toggl_mcp.toggl_api import TogglApiError, TogglClient


class FakeSleep:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _client(handler, sleep: FakeSleep | None = None) -> TogglClient:
    return TogglClient(
        " secret-token ",
        transport=httpx.MockTransport(handler),
        sleep=sleep or FakeSleep(),
    )


def _run(client: TogglClient, coro):
    async def run():
        try:
            return await coro
        finally:
            await client.aclose()

    return asyncio.run(run())


def test_requests_use_basic_auth_with_trimmed_key():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[{"id": 1, "name": "Acme"}])

    client = _client(handler)
    workspaces = _run(client, client.get_workspaces())

    assert workspaces == [{"id": 1, "name": "Acme"}]
    expected = base64.b64encode(b"secret-token:api_token").decode()
    assert seen[0].headers["Authorization"] == f"Basic {expected}"
    assert seen[0].headers["User-Agent"].startswith("toggl-mcp/")
    assert str(seen[0].url) == "https://api.track.toggl.com/api/v9/workspaces"


def test_rate_limit_retries_after_header_delay():
    responses = [
        httpx.Response(429, headers={"Retry-After": "7"}),
        httpx.Response(200, json={"id": 5}),
    ]
    sleep = FakeSleep()
    client = _client(lambda request: responses.pop(0), sleep)

    me = _run(client, client.get_me())

    assert me == {"id": 5}
    assert sleep.delays == [7.0]
    assert client.get_health()["failureCount"] == 0


def test_rate_limit_exhausts_attempts():
    sleep = FakeSleep()
    client = _client(lambda request: httpx.Response(429), sleep)

    with pytest.raises(TogglApiError) as excinfo:
        _run(client, client.get_me())

    assert excinfo.value.code == "rate_limited"
    assert excinfo.value.status == 429
    assert sleep.delays == [2.0, 4.0]


def test_server_errors_are_retried():
    responses = [httpx.Response(502, text="bad gateway"), httpx.Response(200, json=[])]
    client = _client(lambda request: responses.pop(0))

    assert _run(client, client.get_tags(1)) == []


def test_unauthorized_maps_to_auth_failed():
    client = _client(lambda request: httpx.Response(401, text="Incorrect username and/or password"))

    with pytest.raises(TogglApiError) as excinfo:
        _run(client, client.get_me())

    assert excinfo.value.code == "auth_failed"
    assert excinfo.value.status == 401
    assert "TOGGL_API_KEY" in excinfo.value.message
    health = client.get_health()
    assert health["failureCount"] == 1
    assert health["lastError"].startswith("TogglApiError")


def test_not_found_maps_to_not_found():
    client = _client(lambda request: httpx.Response(404, text="missing"))

    with pytest.raises(TogglApiError) as excinfo:
        _run(client, client.get_workspace(9))

    assert excinfo.value.code == "not_found"


def test_network_errors_retry_then_fail():
    attempts: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(1)
        raise httpx.ConnectError("connection refused", request=request)

    sleep = FakeSleep()
    client = _client(handler, sleep)

    with pytest.raises(TogglApiError) as excinfo:
        _run(client, client.get_workspaces())

    assert excinfo.value.code == "network_error"
    assert len(attempts) == 3
    assert sleep.delays == [1, 2]


def test_no_content_returns_empty_dict():
    client = _client(lambda request: httpx.Response(204))

    assert _run(client, client.get_workspace(1)) == {}


def test_non_json_body_is_invalid_response():
    client = _client(lambda request: httpx.Response(200, text="<html>"))

    with pytest.raises(TogglApiError) as excinfo:
        _run(client, client.get_workspaces())

    assert excinfo.value.code == "invalid_response"


def test_get_project_scans_workspaces():
    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.endswith("/workspaces"):
            return httpx.Response(200, json=[{"id": 1}, {"id": 2}])
        if path.endswith("/workspaces/1/projects"):
            return httpx.Response(200, json=[{"id": 10, "name": "Website"}])
        if path.endswith("/workspaces/2/projects"):
            return httpx.Response(200, json=[{"id": 20, "name": "Blog"}])
        return httpx.Response(404)

    client = _client(handler)

    assert _run(client, client.get_project(20)) == {"id": 20, "name": "Blog"}


def test_get_project_not_found():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/workspaces"):
            return httpx.Response(200, json=[{"id": 1}])
        return httpx.Response(200, json=[])

    client = _client(handler)

    with pytest.raises(TogglApiError) as excinfo:
        _run(client, client.get_project(99))

    assert excinfo.value.code == "not_found"


def test_get_user_only_resolves_current_user():
    client = _client(lambda request: httpx.Response(200, json={"id": 7, "fullname": "Sam"}))

    assert _run(client, client.get_user(7))["fullname"] == "Sam"

    client = _client(lambda request: httpx.Response(200, json={"id": 7, "fullname": "Sam"}))
    with pytest.raises(TogglApiError) as excinfo:
        _run(client, client.get_user(8))
    assert excinfo.value.code == "not_found"


def test_get_tag_uses_single_tag_endpoint():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"id": 2, "name": "b"})

    client = _client(handler)

    assert _run(client, client.get_tag(2, 1)) == {"id": 2, "name": "b"}
    assert seen[0].url.path == "/api/v9/workspaces/1/tags/2"


def test_hydrating_tags_fetches_each_tag_once(clock):
    paths: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        paths.append(path)
        if "/tags/" in path:
            tag_id = int(path.rsplit("/", 1)[1])
            return httpx.Response(
                200, json={"id": tag_id, "workspace_id": 1, "name": f"tag-{tag_id}"}
            )
        return httpx.Response(200, json={"id": 1, "name": "Acme"})

    client = _client(handler)
    cache = EntityCache(CacheConfig(ttl_ms=60_000, max_size=60), clock=clock)
    hydrator = Hydrator(EntityResolver(cache, client))
    entry = {"id": 1, "workspace_id": 1, "duration": 60, "tag_ids": [1, 2, 3, 4, 5]}

    async def hydrate_twice():
        first = await hydrator.hydrate([entry])
        second = await hydrator.hydrate([entry])
        return first, second

    first, second = _run(client, hydrate_twice())

    assert first[0]["tag_names"] == [f"tag-{i}" for i in range(1, 6)]
    assert second[0]["tag_names"] == first[0]["tag_names"]
    assert "/api/v9/workspaces/1/tags" not in paths
    assert [p for p in paths if "/tags/" in p] == [
        f"/api/v9/workspaces/1/tags/{i}" for i in range(1, 6)
    ]
    assert len(paths) == 6


def test_time_entries_for_range_includes_partial_last_day():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[])

    client = _client(handler)
    _run(
        client,
        client.get_time_entries_for_range(
            datetime(2026, 1, 5), datetime(2026, 1, 11, 23, 59, 59)
        ),
    )

    assert seen[0].url.params["start_date"] == "2026-01-05"
    assert seen[0].url.params["end_date"] == "2026-01-12"


def test_start_timer_posts_running_entry():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"id": 55, "duration": -1})

    client = _client(handler)
    _run(client, client.start_timer(1, description="Writing", project_id=10))

    body = json.loads(seen[0].content)
    assert seen[0].method == "POST"
    assert seen[0].url.path.endswith("/workspaces/1/time_entries")
    assert body["duration"] == -1
    assert body["created_with"] == "toggl-mcp"
    assert body["project_id"] == 10
    assert "task_id" not in body


def test_timeline_keeps_only_well_formed_events():
    events = [
        {"id": 1, "start_time": 0, "end_time": 10, "desktop_id": "d", "idle": False},
        {"id": "bad", "start_time": 0, "end_time": 10, "desktop_id": "d", "idle": False},
    ]
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=events)

    client = _client(handler)

    assert [e["id"] for e in _run(client, client.get_timeline())] == [1]
    assert seen[0].url.host == "track.toggl.com"


def test_timeline_rejects_non_list_payload():
    client = _client(lambda request: httpx.Response(200, json={"events": []}))

    with pytest.raises(TogglApiError) as excinfo:
        _run(client, client.get_timeline())

    assert excinfo.value.code == "invalid_response"
