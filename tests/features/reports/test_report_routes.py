import uuid

import pytest

from app.features.scan.services.analysis.result_deriver import derive_result
from app.features.scan.services.reports.report_store import ScanReportStore

SCAN_URL = "/api/v1/scan"
REPORTS_URL = "/api/v1/reports"


async def scan_and_fetch_job(client, make_public=False):
    domain = f"report-{uuid.uuid4().hex[:10]}.com"
    res = await client.post(SCAN_URL, json={"url": domain, "make_public": make_public})
    job_id = res.json()["data"]["job_id"]
    return (await client.get(f"{SCAN_URL}/{job_id}")).json()["data"]


@pytest.mark.asyncio
async def test_private_report_requires_its_token(client):
    job = await scan_and_fetch_job(client)
    url = f"{REPORTS_URL}/{job['report_id']}"

    missing = await client.get(url)
    assert missing.status_code == 401

    wrong = await client.get(url, params={"t": "not-the-token"})
    assert wrong.status_code == 403

    accented = await client.get(url, params={"t": "t\u00e9l\u00e9"})
    assert accented.status_code == 403

    ok = await client.get(url, params={"t": job["private_token"]})
    assert ok.status_code == 200
    report = ok.json()["data"]
    assert report["domain"] == job["domain"]
    assert report["score"] == 87
    assert report["is_public"] is False
    assert report["public_url"] is None
    assert report["totals"]["total_issues"] == 2
    assert {issue["rule_id"] for issue in report["issues"]} == {"image-alt", "color-contrast"}
    assert ok.headers["cache-control"] == "private, no-store"


@pytest.mark.asyncio
async def test_public_report_is_open(client):
    job = await scan_and_fetch_job(client, make_public=True)

    res = await client.get(f"{REPORTS_URL}/{job['report_id']}")
    assert res.status_code == 200
    assert res.json()["data"]["is_public"] is True
    assert res.json()["data"]["public_url"].endswith(f"/report/{job['domain']}")


@pytest.mark.asyncio
async def test_unknown_report(client):
    res = await client.get(f"{REPORTS_URL}/{uuid.uuid4()}")
    assert res.status_code == 404


@pytest.mark.asyncio
async def test_rescan_updates_the_same_report(db):
    store = ScanReportStore(db)
    domain = f"rescan-{uuid.uuid4().hex[:10]}.com"

    first = await store.upsert_from_result(
        domain, derive_result([{"id": "image-alt", "impact": "critical", "nodes": [{"target": ["img"]}]}])
    )
    token = first.private_token
    second = await store.upsert_from_result(domain, derive_result([]))

    assert second.id == first.id
    assert second.private_token == token
    assert second.score == 100
    assert second.issues == []


@pytest.mark.asyncio
async def test_opted_out_report_never_becomes_public(db):
    store = ScanReportStore(db)
    domain = f"optout-{uuid.uuid4().hex[:10]}.com"

    report = await store.upsert_from_result(domain, derive_result([]), make_public=True)
    assert report.is_public

    report.opted_out = True
    await db.commit()

    report = await store.upsert_from_result(domain, derive_result([]), make_public=True)
    assert report.is_public is False


@pytest.mark.asyncio
async def test_public_flag_is_sticky(db):
    store = ScanReportStore(db)
    domain = f"sticky-{uuid.uuid4().hex[:10]}.com"

    await store.upsert_from_result(domain, derive_result([]), make_public=True)
    report = await store.upsert_from_result(domain, derive_result([]), make_public=False)
    assert report.is_public is True


@pytest.mark.asyncio
async def test_stored_issues_keep_only_selectors(db):
    store = ScanReportStore(db)
    domain = f"privacy-{uuid.uuid4().hex[:10]}.com"
    raw = {
        "id": "color-contrast",
        "impact": "serious",
        "tags": ["wcag143"],
        "nodes": [{"target": [".cta"], "html": "<a class='cta'>Jane Doe's account</a>"}],
    }

    report = await store.upsert_from_result(domain, derive_result([raw]))
    issue = report.issues[0]

    assert issue["selector"] == ".cta"
    assert issue["selectors"] == [".cta"]
    assert "html" not in issue
    assert "Jane Doe" not in str(report.issues)
