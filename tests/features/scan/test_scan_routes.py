import uuid
from unittest.mock import MagicMock

import pytest
from kombu.exceptions import OperationalError
from selenium.common.exceptions import WebDriverException
from sqlalchemy import func, select

from app.features.scan.models.scan_job import ScanJob
from app.features.scan.routes.scan import get_network_guard
from app.features.scan.services.engine.axe_scanner import NAVIGATION_LOOP_MESSAGE, ScanError
from app.features.scan.services.engine.browser import BrowserFactory
from app.features.scan.services.guard.dns_guard import NetworkOriginGuard
from app.platform.config import settings

SCAN_URL = "/api/v1/scan"
WORKER_AUTH = {"Authorization": "Bearer cron-test-secret"}


def unique_domain() -> str:
    return f"site-{uuid.uuid4().hex[:10]}.com"


async def count_jobs(db, domain: str) -> int:
    result = await db.execute(select(func.count()).select_from(ScanJob).where(ScanJob.domain == domain))
    return result.scalar_one()


@pytest.mark.asyncio
async def test_inline_scan_completes(client):
    domain = unique_domain()
    res = await client.post(SCAN_URL, json={"url": f"https://{domain.upper()}/"})

    assert res.status_code == 200
    body = res.json()
    assert body["status"] == "success"
    assert body["data"]["domain"] == domain
    assert body["data"]["status"] == "completed"

    job = await client.get(f"{SCAN_URL}/{body['data']['job_id']}")
    assert job.status_code == 200
    assert job.headers["cache-control"] == "no-store"
    view = job.json()["data"]
    assert view["status"] == "completed"
    assert view["score"] == 87
    assert view["report_id"]
    assert view["private_token"] in view["private_url"]
    assert "failure_code" not in view


@pytest.mark.asyncio
async def test_private_ip_is_rejected_without_a_job(client, db, fake_engine):
    res = await client.post(SCAN_URL, json={"url": "http://10.0.0.5/admin"})

    assert res.status_code == 400
    body = res.json()
    assert body["status"] == "error"
    assert body["data"]["error"] == "rejected"
    assert body["data"]["status"] == "rejected"
    assert "private" in body["message"]
    assert await count_jobs(db, "10.0.0.5") == 0
    assert fake_engine.calls == []


@pytest.mark.asyncio
async def test_domain_resolving_to_metadata_is_rejected(client, test_app, fresh_store, db, make_resolver):
    guard = NetworkOriginGuard(resolver=make_resolver("169.254.169.254"), store=fresh_store)
    test_app.dependency_overrides[get_network_guard] = lambda: guard
    domain = unique_domain()

    res = await client.post(SCAN_URL, json={"url": domain})

    assert res.status_code == 400
    assert "private/internal IP address" in res.json()["message"]
    assert await count_jobs(db, domain) == 0


@pytest.mark.asyncio
async def test_invalid_body_is_a_validation_error(client):
    res = await client.post(SCAN_URL, json={})
    assert res.status_code == 422


@pytest.mark.asyncio
async def test_rescan_during_cooldown_is_rate_limited(client):
    domain = unique_domain()
    first = await client.post(SCAN_URL, json={"url": domain})
    assert first.status_code == 200

    res = await client.post(SCAN_URL, json={"url": domain})

    assert res.status_code == 429
    assert res.headers["retry-after"] == str(settings.DOMAIN_COOLDOWN_SECONDS)
    body = res.json()
    assert body["data"]["error"] == "rate_limited"
    assert body["data"]["retry_after_sec"] == settings.DOMAIN_COOLDOWN_SECONDS
    assert "recently scanned" in body["message"]


@pytest.mark.asyncio
async def test_ip_limit_counts_per_forwarded_client(client):
    headers = {"X-Forwarded-For": "198.51.100.77, 10.0.0.1"}
    for _ in range(settings.MAX_SCANS_PER_IP):
        res = await client.post(SCAN_URL, json={"url": unique_domain()}, headers=headers)
        assert res.status_code == 200

    res = await client.post(SCAN_URL, json={"url": unique_domain()}, headers=headers)
    assert res.status_code == 429
    assert "Rate limit exceeded" in res.json()["message"]

    other = await client.post(SCAN_URL, json={"url": unique_domain()}, headers={"X-Forwarded-For": "198.51.100.78"})
    assert other.status_code == 200


@pytest.mark.asyncio
async def test_admin_header_skips_cooldown(client):
    domain = unique_domain()
    admin = {"X-Scan-Admin": "admin-test-secret"}

    assert (await client.post(SCAN_URL, json={"url": domain}, headers=admin)).status_code == 200
    assert (await client.post(SCAN_URL, json={"url": domain}, headers=admin)).status_code == 200
    # admin runs never start a cooldown for everyone else
    assert (await client.post(SCAN_URL, json={"url": domain})).status_code == 200


@pytest.mark.asyncio
async def test_non_ascii_admin_header_is_just_not_admin(client):
    domain = unique_domain()
    # Starlette decodes header bytes as latin-1
    forged = {"X-Scan-Admin": "admin-test-secr\u00e9t".encode("latin-1")}

    assert (await client.post(SCAN_URL, json={"url": domain}, headers=forged)).status_code == 200
    assert (await client.post(SCAN_URL, json={"url": domain}, headers=forged)).status_code == 429


@pytest.mark.asyncio
async def test_failed_scan_reports_navigation_loop(client, fake_engine):
    fake_engine.error = ScanError(
        f"{NAVIGATION_LOOP_MESSAGE} (repeated navigation/redirect) Last URL: https://loop.example/",
        failure_code="navigation_loop",
        attempted_urls=["https://loop.example/"],
        final_url="https://loop.example/",
    )

    res = await client.post(SCAN_URL, json={"url": unique_domain()})
    assert res.status_code == 200
    assert res.json()["data"]["status"] == "failed"

    view = (await client.get(f"{SCAN_URL}/{res.json()['data']['job_id']}")).json()["data"]
    assert view["status"] == "failed"
    assert view["failure_code"] == "navigation_loop"
    assert view["failure_message"] == NAVIGATION_LOOP_MESSAGE
    assert view["attempted_urls"] == ["https://loop.example/"]
    assert "report_id" not in view


@pytest.mark.asyncio
async def test_unexpected_engine_error_still_finishes_the_job(client, fake_engine):
    fake_engine.error = None
    fake_engine.run = MagicMock(side_effect=RuntimeError("driver crashed"))

    res = await client.post(SCAN_URL, json={"url": unique_domain()})
    assert res.status_code == 200

    view = (await client.get(f"{SCAN_URL}/{res.json()['data']['job_id']}")).json()["data"]
    assert view["status"] == "failed"
    assert view["failure_code"] == "unknown"
    assert "driver crashed" in view["error"]


@pytest.mark.asyncio
async def test_malformed_axe_payload_fails_the_job(client, fake_engine):
    # violation without a rule id cannot be derived
    fake_engine.violations = [{"impact": "critical"}]

    res = await client.post(SCAN_URL, json={"url": unique_domain()})
    assert res.status_code == 200
    assert res.json()["data"]["status"] == "failed"

    view = (await client.get(f"{SCAN_URL}/{res.json()['data']['job_id']}")).json()["data"]
    assert view["status"] == "failed"
    assert view["failure_code"] == "unknown"


@pytest.mark.asyncio
async def test_queued_mode_deduplicates_active_jobs(client, monkeypatch, fake_engine):
    monkeypatch.setattr(settings, "SCAN_EXECUTION_MODE", "queued")
    domain = unique_domain()

    first = await client.post(SCAN_URL, json={"url": domain})
    second = await client.post(SCAN_URL, json={"url": f"https://www.{domain}"})
    third = await client.post(SCAN_URL, json={"url": f"https://{domain}/pricing"})

    assert first.json()["data"]["status"] == "queued"
    assert second.json()["data"]["job_id"] != first.json()["data"]["job_id"]
    assert third.json()["data"]["job_id"] == first.json()["data"]["job_id"]
    assert fake_engine.calls == []


@pytest.mark.asyncio
async def test_dispatched_mode_hands_job_to_celery(client, monkeypatch, fake_engine):
    from app.features.scan.workers import tasks

    task = MagicMock()
    monkeypatch.setattr(settings, "SCAN_EXECUTION_MODE", "dispatched")
    monkeypatch.setattr(tasks, "run_scan_job", task)

    res = await client.post(SCAN_URL, json={"url": unique_domain()})

    assert res.status_code == 200
    assert res.json()["data"]["status"] == "queued"
    task.delay.assert_called_once_with(res.json()["data"]["job_id"])
    assert fake_engine.calls == []


@pytest.mark.asyncio
async def test_dispatch_survives_broker_outage(client, monkeypatch):
    from app.features.scan.workers import tasks

    task = MagicMock()
    task.delay.side_effect = OperationalError("connection refused")
    monkeypatch.setattr(settings, "SCAN_EXECUTION_MODE", "dispatched")
    monkeypatch.setattr(tasks, "run_scan_job", task)

    res = await client.post(SCAN_URL, json={"url": unique_domain()})

    assert res.status_code == 200
    assert res.json()["data"]["status"] == "queued"


@pytest.mark.asyncio
async def test_worker_requires_cron_secret(client):
    assert (await client.post(f"{SCAN_URL}/worker")).status_code == 401
    res = await client.get(f"{SCAN_URL}/worker", headers={"Authorization": "Bearer wrong"})
    assert res.status_code == 401
    forged = {"Authorization": "Bearer cron-test-secr\u00e9t".encode("latin-1")}
    accented = await client.get(f"{SCAN_URL}/worker", headers=forged)
    assert accented.status_code == 401
    assert res.json()["message"] == "Unauthorized"


@pytest.mark.asyncio
async def test_worker_drains_queued_jobs(client, monkeypatch):
    monkeypatch.setattr(settings, "SCAN_EXECUTION_MODE", "queued")
    monkeypatch.setattr(settings, "WORKER_BATCH_SIZE", 1000)

    queued = await client.post(SCAN_URL, json={"url": unique_domain()})
    job_id = queued.json()["data"]["job_id"]

    res = await client.post(f"{SCAN_URL}/worker", headers=WORKER_AUTH)
    assert res.status_code == 200
    summary = res.json()["data"]
    assert summary["processed"] >= 1
    assert {"job_id": job_id, "status": "completed"} in summary["results"]

    view = (await client.get(f"{SCAN_URL}/{job_id}")).json()["data"]
    assert view["status"] == "completed"

    # nothing left for a second pass to pick up
    again = await client.get(f"{SCAN_URL}/worker", headers=WORKER_AUTH)
    assert again.json()["data"]["processed"] == 0
    assert again.json()["message"] == "No queued jobs."


@pytest.mark.asyncio
async def test_unknown_job_is_not_found(client):
    res = await client.get(f"{SCAN_URL}/{uuid.uuid4()}")
    assert res.status_code == 404
    assert res.headers["cache-control"] == "no-store"


@pytest.mark.asyncio
async def test_scanner_health_reports_browser(client, monkeypatch):
    monkeypatch.setattr(BrowserFactory, "probe", staticmethod(lambda: {"browser_version": "120.0", "launch_ms": 850}))

    res = await client.get(f"{SCAN_URL}/health")
    assert res.status_code == 200
    assert res.json()["data"] == {"ok": True, "browser_version": "120.0", "launch_ms": 850}


@pytest.mark.asyncio
async def test_scanner_health_when_browser_is_missing(client, monkeypatch):
    def broken_probe():
        raise WebDriverException("chromedriver not found")

    monkeypatch.setattr(BrowserFactory, "probe", staticmethod(broken_probe))

    res = await client.get(f"{SCAN_URL}/health")
    assert res.status_code == 503
    assert res.json()["data"]["ok"] is False
