"""
Network-origin guard.

Static validation cannot tell where a hostname points; this resolves A and
AAAA records and refuses targets with any private/internal address, closing
the SSRF hole left by DNS rebinding or internal-only records.
"""
import asyncio
from typing import List, NamedTuple, Optional, Tuple

import dns.asyncresolver
import dns.exception
import dns.resolver

from app.platform.cache.store import KeyValueStore, get_store
from app.platform.config import settings
from app.platform.exceptions import AppError
from app.platform.logger import get_logger
from app.platform.utils.ip_ranges import is_private_address

logger = get_logger(__name__)

# Per-query outcome
RESOLVED = "resolved"
ABSENT = "absent"
TRANSIENT = "transient"


class UnsafeTargetError(AppError):
    error_code = "rejected"


class GuardVerdict(NamedTuple):
    safe: bool
    reason: str = ""


class NetworkOriginGuard:
    def __init__(
        self,
        resolver: Optional[dns.asyncresolver.Resolver] = None,
        store: Optional[KeyValueStore] = None,
    ):
        self._resolver = resolver
        self._store = store

    @property
    def resolver(self) -> dns.asyncresolver.Resolver:
        if self._resolver is None:
            self._resolver = dns.asyncresolver.Resolver()
        return self._resolver

    @property
    def store(self) -> KeyValueStore:
        return self._store or get_store()

    async def _query(self, domain: str, record_type: str) -> Tuple[List[str], str]:
        try:
            answer = await self.resolver.resolve(
                domain, record_type, lifetime=settings.DNS_TIMEOUT_SECONDS
            )
        except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
            return [], ABSENT
        except dns.exception.DNSException as exc:
            # timeouts, SERVFAIL (NoNameservers) and friends
            logger.warning(f"[dns-guard] {record_type} lookup for {domain} failed: {exc!r}")
            return [], TRANSIENT
        return [rdata.address for rdata in answer], RESOLVED

    async def check(self, domain: str, is_admin: bool = False) -> GuardVerdict:
        if is_admin and settings.ALLOW_PRIVATE_TARGETS:
            return GuardVerdict(safe=True)

        cache_key = f"dns:{domain}"
        cached = await self.store.get(cache_key)
        if cached is not None:
            return GuardVerdict(safe=cached["safe"], reason=cached["reason"])

        (ipv4, v4_outcome), (ipv6, v6_outcome) = await asyncio.gather(
            self._query(domain, "A"),
            self._query(domain, "AAAA"),
        )

        if not ipv4 and not ipv6:
            if TRANSIENT in (v4_outcome, v6_outcome):
                # Fail open: availability wins over a resolver hiccup; not cached
                logger.warning(f"[dns-guard] Allowing {domain} after transient resolver error")
                return GuardVerdict(safe=True)
            verdict = GuardVerdict(
                safe=False,
                reason=f'Domain "{domain}" could not be resolved (domain does not resolve).',
            )
        elif any(is_private_address(ip) for ip in ipv4):
            verdict = GuardVerdict(
                safe=False,
                reason=f'Domain "{domain}" resolves to a private/internal IP address. '
                "Scanning is not allowed.",
            )
        elif any(is_private_address(ip) for ip in ipv6):
            verdict = GuardVerdict(
                safe=False,
                reason=f'Domain "{domain}" resolves to a private/internal IPv6 address. '
                "Scanning is not allowed.",
            )
        else:
            verdict = GuardVerdict(safe=True)

        if not verdict.safe:
            logger.info(f"[dns-guard] Blocked {domain}: {verdict.reason}")

        await self.store.set(
            cache_key,
            {"safe": verdict.safe, "reason": verdict.reason},
            settings.DNS_CACHE_TTL_SECONDS,
        )
        return verdict

    async def ensure_safe(self, domain: str, is_admin: bool = False) -> None:
        verdict = await self.check(domain, is_admin=is_admin)
        if not verdict.safe:
            raise UnsafeTargetError(verdict.reason)


network_guard = NetworkOriginGuard()
