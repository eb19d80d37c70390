"""
Fair-use limits for scan submissions.

Two independent policies, either of which denies:
- per-identity: at most MAX_SCANS_PER_IP recorded scans in a sliding window
- per-domain: one scan per DOMAIN_COOLDOWN_SECONDS

State lives in the shared key-value store. With the in-memory backend the
limits are per process; run with REDIS_URL when more than one instance serves
traffic.
"""
import math
import time
from typing import Callable, Optional

from fastapi import status

from app.platform.cache.store import KeyValueStore, get_store
from app.platform.config import settings
from app.platform.exceptions import AppError
from app.platform.logger import get_logger

logger = get_logger(__name__)


class RateLimitedError(AppError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    error_code = "rate_limited"

    def __init__(self, message: str, retry_after_sec: int):
        super().__init__(
            message,
            data={"retry_after_sec": retry_after_sec},
            headers={"Retry-After": str(retry_after_sec)},
        )
        self.retry_after_sec = retry_after_sec


def format_wait(seconds: float) -> str:
    if seconds >= 3600:
        hours = math.ceil(seconds / 3600)
        return f"~{hours} hour{'s' if hours > 1 else ''}"
    minutes = max(1, math.ceil(seconds / 60))
    return f"~{minutes} minute{'s' if minutes > 1 else ''}"


class ScanLimiter:
    def __init__(
        self,
        store: Optional[KeyValueStore] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._store = store
        self.clock = clock

    @property
    def store(self) -> KeyValueStore:
        return self._store or get_store()

    @staticmethod
    def _ip_key(ip: str) -> str:
        return f"scan:ip:{ip}"

    @staticmethod
    def _domain_key(domain: str) -> str:
        return f"scan:domain:{domain}"

    async def domain_cooldown_remaining(self, domain: str) -> float:
        last_scan = await self.store.get(self._domain_key(domain))
        if last_scan is None:
            return 0.0
        remaining = settings.DOMAIN_COOLDOWN_SECONDS - (self.clock() - float(last_scan))
        return max(0.0, remaining)

    async def check(self, ip: str, domain: str, is_admin: bool = False) -> None:
        """Raise RateLimitedError if either policy denies. Trusted callers skip both."""
        if is_admin:
            return

        now = self.clock()
        window = settings.IP_WINDOW_SECONDS
        ip_key = self._ip_key(ip)

        await self.store.window_prune(ip_key, now - window)
        recent = await self.store.window_members(ip_key)

        if len(recent) >= settings.MAX_SCANS_PER_IP:
            retry_after = max(0, math.ceil(recent[0] + window - now))
            logger.info(f"[limiter] ip={ip} denied: {len(recent)} scans in window")
            raise RateLimitedError(
                f"Rate limit exceeded. Maximum {settings.MAX_SCANS_PER_IP} scans per "
                f"{window // 60} minutes. Please wait and try again.",
                retry_after_sec=retry_after,
            )

        cooldown = await self.domain_cooldown_remaining(domain)
        if cooldown > 0:
            logger.info(f"[limiter] domain={domain} denied: cooldown {int(cooldown)}s left")
            raise RateLimitedError(
                f"This domain was recently scanned. Please try again in {format_wait(cooldown)}.",
                retry_after_sec=math.ceil(cooldown),
            )

    async def record_scan(self, ip: str, domain: str) -> None:
        """Charge one scan to the identity and start the domain cooldown."""
        now = self.clock()
        await self.store.window_add(self._ip_key(ip), now, settings.IP_WINDOW_SECONDS)
        await self.store.set(self._domain_key(domain), now, settings.DOMAIN_COOLDOWN_SECONDS)


scan_limiter = ScanLimiter()
