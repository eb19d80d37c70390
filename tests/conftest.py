"""
Test configuration and fixtures for the Accessibility Scan API.

Environment is pinned before the app is imported: a throwaway SQLite file,
the in-process store, no log files, and inline execution unless a test says
otherwise.
"""

import asyncio
import os
import tempfile

test_db_path = tempfile.mktemp(suffix=".db")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{test_db_path}"
os.environ["FORCE_IN_MEMORY_STORE"] = "true"
os.environ["REDIS_URL"] = ""
os.environ["LOG_DIR"] = ""
os.environ["SCAN_EXECUTION_MODE"] = "inline"
os.environ["CRON_SECRET"] = "cron-test-secret"
os.environ["ADMIN_SECRET"] = "admin-test-secret"
os.environ["HYDRATION_DELAY_SECONDS"] = "0"
os.environ["AXE_RETRY_BACKOFF_SECONDS"] = "0"

from types import SimpleNamespace
from typing import AsyncGenerator, List, Optional
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from app.features.scan.services.analysis.result_deriver import ResultDeriver
from app.features.scan.services.engine.axe_scanner import ScanError, ScanResult
from app.features.scan.services.guard.dns_guard import NetworkOriginGuard
from app.platform.cache.store import InMemoryStore, set_store
from app.platform.utils.rate_limit import ScanLimiter


SAMPLE_VIOLATIONS = [
    {
        "id": "image-alt",
        "impact": "critical",
        "tags": ["wcag2a", "wcag111"],
        "nodes": [{"target": ["main > img.hero"]}],
    },
    {
        "id": "color-contrast",
        "impact": "serious",
        "tags": ["wcag2aa", "wcag143"],
        "nodes": [{"target": [".btn-primary"]}, {"target": [".footer a"]}],
    },
]


class FakeEngine:
    """Stands in for AxeScanEngine: returns a canned result or raises a canned error."""

    def __init__(self, violations: Optional[list] = None, error: Optional[ScanError] = None):
        self.violations = SAMPLE_VIOLATIONS if violations is None else violations
        self.error = error
        self.calls: List[tuple] = []

    def run(self, url: str, domain: str, allow_http_fallback: bool = False) -> ScanResult:
        self.calls.append((url, domain, allow_http_fallback))
        if self.error is not None:
            raise self.error
        return ScanResult(
            derived=ResultDeriver.derive(self.violations),
            axe_version="4.10.0",
            final_url=url,
            attempted_urls=[url],
            timings={"total_ms": 1200, "nav_ms": 400, "axe_ms": 600},
        )


def public_resolver(*addresses: str) -> AsyncMock:
    """dnspython-shaped resolver mock: A answers with `addresses`, AAAA has none."""
    import dns.resolver

    async def resolve(domain, record_type, lifetime=None):
        if record_type == "A" and addresses:
            return [SimpleNamespace(address=address) for address in addresses]
        raise dns.resolver.NoAnswer()

    resolver = AsyncMock()
    resolver.resolve.side_effect = resolve
    return resolver


@pytest.fixture(autouse=True)
def fresh_store():
    """Every test starts with an empty process-wide store."""
    store = InMemoryStore()
    set_store(store)
    yield store
    set_store(None)


@pytest.fixture(scope="session", autouse=True)
def create_tables():
    from app.features.scan import models  # noqa: F401
    from app.platform.db.base import Base
    from app.platform.config import settings
    from app.platform.db.session import build_engine

    async def _create():
        engine = build_engine(settings.DATABASE_URL)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        await engine.dispose()

    asyncio.run(_create())
    yield
    if os.path.exists(test_db_path):
        os.remove(test_db_path)


@pytest_asyncio.fixture
async def db():
    from app.platform.db.session import SessionLocal

    async with SessionLocal() as session:
        yield session


@pytest.fixture(scope="session")
def test_app():
    """Create FastAPI test application."""
    from app.main import app

    return app


@pytest.fixture
def make_resolver():
    return public_resolver


@pytest.fixture
def fake_engine():
    return FakeEngine()


@pytest.fixture
def limiter(fresh_store):
    return ScanLimiter(store=fresh_store)


@pytest.fixture
def guard(fresh_store):
    return NetworkOriginGuard(resolver=public_resolver("93.184.216.34"), store=fresh_store)


@pytest_asyncio.fixture
async def client(test_app, fake_engine, guard, limiter) -> AsyncGenerator[AsyncClient, None]:
    """
    HTTP client against the app with the browser, resolver and limiter swapped
    for in-process fakes.
    """
    from app.features.scan.routes.scan import get_network_guard, get_scan_engine, get_scan_limiter

    test_app.dependency_overrides[get_scan_engine] = lambda: fake_engine
    test_app.dependency_overrides[get_network_guard] = lambda: guard
    test_app.dependency_overrides[get_scan_limiter] = lambda: limiter

    async with AsyncClient(transport=ASGITransport(app=test_app), base_url="http://testserver") as ac:
        yield ac

    test_app.dependency_overrides.clear()
