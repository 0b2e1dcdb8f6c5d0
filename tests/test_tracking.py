"""Tracking callback, health and exposition endpoint tests."""

from __future__ import annotations

import asyncio
import logging

import pytest
from httpx import AsyncClient

from usage_tracking.lib.metrics import LabelKey, UsageRegistry

ALICE_LINE = 'llm_requests_total{user="alice",groups="eng",path="/v1/chat"}'


@pytest.mark.asyncio
async def test_track_then_metrics_reports_counts(async_client: AsyncClient) -> None:
    """Each accepted callback should bump the exposed counter by one."""
    payload = {"user": "alice", "groups": "eng", "path": "/v1/chat"}

    response = await async_client.post("/track", json=payload)
    assert response.status_code == 202
    assert response.content == b""

    metrics = await async_client.get("/metrics")
    assert metrics.status_code == 200
    assert f"{ALICE_LINE} 1.0" in metrics.text

    await async_client.post("/track", json=payload)
    metrics = await async_client.get("/metrics")
    assert f"{ALICE_LINE} 2.0" in metrics.text


@pytest.mark.asyncio
async def test_metrics_uses_prometheus_content_type(async_client: AsyncClient) -> None:
    response = await async_client.get("/metrics")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert "# TYPE llm_requests_total counter" in response.text


@pytest.mark.asyncio
async def test_track_rejects_non_post(async_client: AsyncClient, registry: UsageRegistry) -> None:
    response = await async_client.get("/track")

    assert response.status_code == 405
    assert response.headers["allow"] == "POST"
    assert response.text == "POST only"
    assert registry.snapshot() == {}


@pytest.mark.asyncio
async def test_track_rejects_invalid_json(async_client: AsyncClient, registry: UsageRegistry) -> None:
    response = await async_client.post(
        "/track", content=b"not-json", headers={"Content-Type": "application/json"}
    )

    assert response.status_code == 400
    assert response.text == "invalid JSON"
    assert registry.snapshot() == {}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        b"[]",
        b'"alice"',
        b'{"user": 42}',
        b'{"user": "alice", "groups": ["a", "b"]}',
    ],
)
async def test_track_rejects_wrong_shape(
    async_client: AsyncClient, registry: UsageRegistry, body: bytes
) -> None:
    response = await async_client.post("/track", content=body)

    assert response.status_code == 400
    assert registry.snapshot() == {}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        b'{"user": "", "path": "/x"}',
        b'{"groups": "eng"}',
        b'{"user": null, "path": "/x"}',
        b"null",
    ],
)
async def test_track_requires_user(
    async_client: AsyncClient, registry: UsageRegistry, body: bytes
) -> None:
    response = await async_client.post("/track", content=body, headers={"Content-Type": "application/json"})

    assert response.status_code == 422
    assert response.text == "missing user"
    assert registry.snapshot() == {}


@pytest.mark.asyncio
async def test_host_and_method_are_not_part_of_the_key(
    async_client: AsyncClient, registry: UsageRegistry
) -> None:
    for host, method in (("a.example", "GET"), ("b.example", "POST")):
        response = await async_client.post(
            "/track",
            json={"user": "alice", "groups": "eng", "path": "/v1/chat", "host": host, "method": method},
        )
        assert response.status_code == 202

    assert registry.snapshot() == {LabelKey("alice", "eng", "/v1/chat"): 2}


@pytest.mark.asyncio
async def test_optional_labels_default_to_empty(
    async_client: AsyncClient, registry: UsageRegistry
) -> None:
    response = await async_client.post("/track", json={"user": "bob", "unknown": "ignored"})

    assert response.status_code == 202
    assert registry.value(LabelKey("bob", "", "")) == 1

    metrics = await async_client.get("/metrics")
    assert 'llm_requests_total{user="bob",groups="",path=""} 1.0' in metrics.text


@pytest.mark.asyncio
async def test_member_names_match_without_case(
    async_client: AsyncClient, registry: UsageRegistry
) -> None:
    response = await async_client.post(
        "/track", json={"User": "alice", "GROUPS": "eng", "Path": "/v1/chat", "Host": "llm.example"}
    )

    assert response.status_code == 202
    assert registry.snapshot() == {LabelKey("alice", "eng", "/v1/chat"): 1}


@pytest.mark.asyncio
async def test_null_labels_count_as_empty(async_client: AsyncClient, registry: UsageRegistry) -> None:
    response = await async_client.post("/track", json={"user": "bob", "groups": None, "path": None})

    assert response.status_code == 202
    assert registry.snapshot() == {LabelKey("bob", "", ""): 1}


@pytest.mark.asyncio
async def test_trailing_data_is_rejected(async_client: AsyncClient, registry: UsageRegistry) -> None:
    response = await async_client.post("/track", content=b'{"user": "alice"} {"user": "bob"}')

    assert response.status_code == 400
    assert registry.snapshot() == {}


@pytest.mark.asyncio
async def test_labels_are_compared_literally(async_client: AsyncClient, registry: UsageRegistry) -> None:
    """Group lists and casing are not normalised."""
    await async_client.post("/track", json={"user": "alice", "groups": "a,b"})
    await async_client.post("/track", json={"user": "alice", "groups": "b,a"})
    await async_client.post("/track", json={"user": "Alice", "groups": "a,b"})

    assert registry.snapshot() == {
        LabelKey("alice", "a,b", ""): 1,
        LabelKey("alice", "b,a", ""): 1,
        LabelKey("Alice", "a,b", ""): 1,
    }


@pytest.mark.asyncio
async def test_concurrent_tracks_are_all_counted(
    async_client: AsyncClient, registry: UsageRegistry
) -> None:
    payload = {"user": "alice", "groups": "eng", "path": "/v1/chat"}

    responses = await asyncio.gather(*(async_client.post("/track", json=payload) for _ in range(100)))

    assert all(response.status_code == 202 for response in responses)
    assert registry.value(LabelKey("alice", "eng", "/v1/chat")) == 100


@pytest.mark.asyncio
async def test_unsubmitted_keys_are_absent(async_client: AsyncClient) -> None:
    await async_client.post("/track", json={"user": "alice", "groups": "eng", "path": "/v1/chat"})
    await async_client.post("/track", json={"user": "", "groups": "ops"})

    metrics = (await async_client.get("/metrics")).text
    assert 'user="carol"' not in metrics
    assert 'groups="ops"' not in metrics


@pytest.mark.asyncio
async def test_healthz_returns_no_content(async_client: AsyncClient) -> None:
    first = await async_client.get("/healthz")
    assert first.status_code == 204
    assert first.content == b""

    for index in range(20):
        await async_client.post("/track", json={"user": f"user-{index}"})

    second = await async_client.get("/healthz")
    assert second.status_code == 204
    assert second.content == b""


@pytest.mark.asyncio
async def test_track_logs_one_record_per_call(async_client: AsyncClient, caplog) -> None:
    caplog.set_level(logging.INFO, logger="usage_tracking")

    await async_client.post("/track", json={"user": "alice", "path": "/v1/chat"})
    await async_client.post("/track", json={"user": ""})
    await async_client.get("/track")

    records = [record for record in caplog.records if record.name == "usage_tracking.tracking.routes"]
    assert [record.getMessage() for record in records] == [
        "counter incremented",
        "missing user",
        "invalid method",
    ]
    assert [record.levelno for record in records] == [logging.INFO, logging.WARNING, logging.WARNING]
    assert records[0].user == "alice"
    assert records[0].path == "/v1/chat"

    request_ids = {record.req_id for record in records}
    assert len(request_ids) == 3


@pytest.mark.asyncio
async def test_payload_dump_only_at_debug(async_client: AsyncClient, caplog) -> None:
    caplog.set_level(logging.INFO, logger="usage_tracking")
    await async_client.post("/track", json={"user": "alice", "host": "llm.example"})
    assert "payload dump" not in [record.getMessage() for record in caplog.records]

    caplog.clear()
    caplog.set_level(logging.DEBUG, logger="usage_tracking")
    await async_client.post("/track", json={"user": "alice", "host": "llm.example"})

    dumps = [record for record in caplog.records if record.getMessage() == "payload dump"]
    assert len(dumps) == 1
    assert dumps[0].payload["host"] == "llm.example"
