"""
Async client for the scan API.

Submits a scan and polls the job until it reaches a terminal state. Running
out of polls or wall-clock time is reported as PollOutcome.pending: the job is
most likely still queued behind the worker, which is not a failure.
"""
import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from app.platform.logger import get_logger

logger = get_logger(__name__)

TERMINAL = {"completed", "failed", "rejected", "rate_limited"}


class PollOutcome(str, Enum):
    completed = "completed"
    failed = "failed"
    pending = "pending"


@dataclass
class PollResult:
    outcome: PollOutcome
    job_id: str
    job: Dict[str, Any] = field(default_factory=dict)
    polls: int = 0


class ScanRequestRefused(Exception):
    """Submission was rejected (400) or rate limited (429); no job exists."""

    def __init__(self, status_code: int, message: str, data: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.data = data or {}

    @property
    def retry_after_sec(self) -> Optional[int]:
        return self.data.get("retry_after_sec")


class ScanClient:
    def __init__(
        self,
        base_url: str = "http://localhost:8000/api/v1",
        client: Optional[httpx.AsyncClient] = None,
        poll_interval: float = 2.0,
        max_polls: int = 60,
        timeout: float = 180.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.client = client or httpx.AsyncClient(base_url=base_url, timeout=30.0)
        self.poll_interval = poll_interval
        self.max_polls = max_polls
        self.timeout = timeout
        self.sleep = sleep

    async def aclose(self) -> None:
        await self.client.aclose()

    async def submit(self, url: str, make_public: bool = False) -> Dict[str, Any]:
        response = await self.client.post("/scan", json={"url": url, "make_public": make_public})
        body = response.json()
        data = body.get("data") or {}

        if response.status_code in (400, 429):
            raise ScanRequestRefused(response.status_code, body.get("message", ""), data)
        response.raise_for_status()
        return data

    async def get_job(self, job_id: str) -> Dict[str, Any]:
        response = await self.client.get(f"/scan/{job_id}")
        response.raise_for_status()
        return response.json().get("data") or {}

    async def wait_for_job(self, job_id: str) -> PollResult:
        started = time.monotonic()
        job: Dict[str, Any] = {}

        for poll in range(1, self.max_polls + 1):
            job = await self.get_job(job_id)
            status = job.get("status")
            if status in TERMINAL:
                outcome = PollOutcome.completed if status == "completed" else PollOutcome.failed
                return PollResult(outcome=outcome, job_id=job_id, job=job, polls=poll)

            if time.monotonic() - started + self.poll_interval > self.timeout:
                logger.info(f"[{job_id}] Still {status} after {poll} polls, giving up for now")
                return PollResult(outcome=PollOutcome.pending, job_id=job_id, job=job, polls=poll)

            await self.sleep(self.poll_interval)

        return PollResult(outcome=PollOutcome.pending, job_id=job_id, job=job, polls=self.max_polls)

    async def scan(self, url: str, make_public: bool = False) -> PollResult:
        submitted = await self.submit(url, make_public=make_public)
        return await self.wait_for_job(submitted["job_id"])
