import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.platform.cache.store import InMemoryStore, RedisStore
from app.platform.logger import log_scan_event


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


@pytest.mark.asyncio
async def test_values_expire_after_ttl():
    clock = FakeClock()
    store = InMemoryStore(clock=clock)
    await store.set("dns:example.com", {"safe": True, "reason": ""}, ttl_seconds=60)

    clock.now += 59
    assert await store.get("dns:example.com") == {"safe": True, "reason": ""}
    clock.now += 1
    assert await store.get("dns:example.com") is None


@pytest.mark.asyncio
async def test_window_keeps_order_and_prunes():
    clock = FakeClock()
    store = InMemoryStore(clock=clock)
    for ts in (30.0, 10.0, 20.0):
        await store.window_add("scan:ip:1.2.3.4", ts, ttl_seconds=600)

    assert await store.window_members("scan:ip:1.2.3.4") == [10.0, 20.0, 30.0]

    await store.window_prune("scan:ip:1.2.3.4", older_than=20.0)
    assert await store.window_members("scan:ip:1.2.3.4") == [30.0]

    await store.delete("scan:ip:1.2.3.4")
    assert await store.window_members("scan:ip:1.2.3.4") == []


@pytest.mark.asyncio
async def test_redis_store_prefixes_and_serializes():
    redis = MagicMock()
    redis.get = AsyncMock(return_value=json.dumps(1234.5))
    redis.set = AsyncMock()
    redis.zrange = AsyncMock(return_value=[("a", 10.0), ("b", 20.0)])
    store = RedisStore(redis)

    assert await store.get("scan:domain:example.com") == 1234.5
    redis.get.assert_awaited_once_with("a11y:scan:domain:example.com")

    await store.set("scan:domain:example.com", 99.0, ttl_seconds=21600)
    redis.set.assert_awaited_once_with("a11y:scan:domain:example.com", "99.0", ex=21600)

    assert await store.window_members("scan:ip:1.2.3.4") == [10.0, 20.0]


def test_scan_log_event_shape():
    payload = log_scan_event(
        ip="203.0.113.1", domain="example.com", result="failed",
        job_id="job-1", duration_ms=1200, error="x" * 900,
    )
    assert payload["event"] == "scan_request"
    assert payload["result"] == "failed"
    assert payload["job_id"] == "job-1"
    assert len(payload["error"]) == 500
    assert "is_admin" not in payload
