"""
Scan pipeline.

submit_scan:  normalise -> DNS guard -> fair-use limits -> dedup -> queued job,
              then run inline, leave for the worker, or dispatch to Celery.
execute_job:  shared by every execution path so inline and worker runs stay
              behaviourally identical.
process_queue: one time-boxed worker pass, jobs executed strictly one after
              another (one browser per process).
"""
import asyncio
import time
from typing import Any, Dict, Optional, Set

from kombu.exceptions import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.scan.models.scan_job import ScanJob, ScanJobStatus
from app.features.scan.services.engine.axe_scanner import (
    NAVIGATION_LOOP_MESSAGE,
    AxeScanEngine,
    ScanError,
    ScanResult,
)
from app.features.scan.services.guard.dns_guard import NetworkOriginGuard, network_guard
from app.features.scan.services.jobs.job_store import ScanJobStore, truncate_error
from app.features.scan.services.reports.report_store import (
    ScanReportStore,
    private_report_url,
    public_report_url,
)
from app.platform.config import settings
from app.platform.exceptions import AppError
from app.platform.logger import get_logger, log_scan_event
from app.platform.utils.clock import as_utc, elapsed_ms, utcnow
from app.platform.utils.rate_limit import ScanLimiter, scan_limiter
from app.platform.utils.url_validator import build_scan_url, normalize_domain, validate_domain_input

logger = get_logger(__name__)


def _log_target(raw: str) -> str:
    return raw.strip()[:253]


def _allows_http_fallback(scan_url: str, domain: str) -> bool:
    # Only when we chose the scheme ourselves
    return scan_url == f"https://{domain}/"


# Engine threads still running after their job was failed on the ceiling
_lingering_scans: Set[asyncio.Future] = set()


async def submit_scan(
    db: AsyncSession,
    *,
    url: str,
    ip: str,
    is_admin: bool = False,
    make_public: bool = False,
    guard: Optional[NetworkOriginGuard] = None,
    limiter: Optional[ScanLimiter] = None,
    engine: Optional[AxeScanEngine] = None,
) -> ScanJob:
    """
    Accept or refuse a scan request.

    Refusals (DomainValidationError, UnsafeTargetError, RateLimitedError) are
    raised to the caller and never create a job row. An active job for the same
    domain is returned instead of creating a duplicate.
    """
    guard = guard or network_guard
    limiter = limiter or scan_limiter
    domain = _log_target(url)

    try:
        validate_domain_input(url)
        domain = normalize_domain(url)
        await guard.ensure_safe(domain, is_admin=is_admin)
        await limiter.check(ip, domain, is_admin=is_admin)
    except AppError as exc:
        exc.data.setdefault("status", exc.error_code)
        log_scan_event(ip=ip, domain=domain, result=exc.error_code, is_admin=is_admin, error=exc.message)
        raise

    store = ScanJobStore(db)

    existing = await store.find_active_for_domain(domain)
    if existing is not None:
        logger.info(f"[{existing.id}] Reusing active job for {domain}")
        return existing

    job = await store.create(
        domain=domain,
        scan_url=build_scan_url(url, domain),
        ip=ip,
        is_admin=is_admin,
        make_public=make_public,
    )
    log_scan_event(ip=ip, domain=domain, result="queued", job_id=job.id, is_admin=is_admin)

    mode = settings.SCAN_EXECUTION_MODE
    if mode == "inline":
        return await execute_job(db, job, engine=engine, limiter=limiter)

    if mode == "dispatched":
        # deferred import: the worker module imports this one
        from app.features.scan.workers.tasks import run_scan_job

        try:
            run_scan_job.delay(job.id)
            logger.info(f"[{job.id}] Dispatched to scan worker queue")
        except OperationalError as exc:
            logger.error(f"[{job.id}] Broker unavailable, leaving job for the queue drain: {exc}")

    return job


def _completed_payload(result: ScanResult, report) -> Dict[str, Any]:
    return {
        "report_id": report.id,
        "private_token": report.private_token,
        "is_public": report.is_public,
        "public_url": public_report_url(report.domain),
        "private_url": private_report_url(report),
        "score": result.derived.score,
        "timings": result.timings,
        "engine": {"axe_version": result.axe_version, "attempts": result.attempts},
        "final_url": result.final_url,
        "attempted_urls": result.attempted_urls,
    }


def _release_lingering(scan: asyncio.Future) -> None:
    _lingering_scans.discard(scan)
    if not scan.cancelled() and scan.exception() is not None:
        logger.info(f"[worker] Late engine thread finished with: {scan.exception()!r}")


def engine_busy() -> bool:
    return bool(_lingering_scans)


async def _run_engine(engine: AxeScanEngine, job_id: str, scan_url: str, domain: str) -> ScanResult:
    scan = asyncio.ensure_future(
        asyncio.to_thread(engine.run, scan_url, domain, _allows_http_fallback(scan_url, domain))
    )
    done, _ = await asyncio.wait({scan}, timeout=settings.SCAN_TIMEOUT_SECONDS)
    if scan in done:
        return scan.result()

    # Selenium threads cannot be cancelled; the engine's own deadline winds this
    # one down, so wait for the browser to be released before moving on.
    await asyncio.wait({scan}, timeout=settings.ENGINE_RELEASE_GRACE_SECONDS)
    if scan.done():
        if not scan.cancelled():
            scan.exception()
    else:
        logger.error(
            f"[{job_id}] Engine still busy {settings.ENGINE_RELEASE_GRACE_SECONDS:g}s after the scan ceiling"
        )
        _lingering_scans.add(scan)
        scan.add_done_callback(_release_lingering)

    raise ScanError(
        "Scan timed out.",
        status_code=504,
        failure_code="timeout",
        attempted_urls=[scan_url],
    )


async def execute_job(
    db: AsyncSession,
    job: ScanJob,
    engine: Optional[AxeScanEngine] = None,
    limiter: Optional[ScanLimiter] = None,
) -> ScanJob:
    """
    Run one queued job to a terminal state.

    Never raises for scan failures: every outcome is written to the job row.
    """
    store = ScanJobStore(db)
    limiter = limiter or scan_limiter

    claimed = await store.claim(job.id)
    if claimed is None:
        logger.info(f"[{job.id}] Not queued anymore, skipping")
        return await store.get(job.id)
    # Plain values: a rollback below expires every loaded instance
    job_id, scan_url, domain = claimed.id, claimed.scan_url, claimed.domain
    ip, is_admin, make_public = claimed.ip, claimed.is_admin, claimed.make_public

    started = time.monotonic()
    logger.info(f"[{job_id}] Scanning {scan_url}")

    error: Optional[ScanError] = None
    result: Optional[ScanResult] = None
    payload: Dict[str, Any] = {}
    try:
        result = await _run_engine(engine or AxeScanEngine(), job_id, scan_url, domain)
        report = await ScanReportStore(db).upsert_from_result(domain, result.derived, make_public=make_public)
        payload = _completed_payload(result, report)
    except ScanError as exc:
        error = exc
    except Exception as exc:
        logger.error(f"[{job_id}] Unexpected scan failure: {exc}", exc_info=True)
        await db.rollback()
        error = ScanError(f"Unexpected error: {exc}", status_code=500, attempted_urls=[scan_url])

    # A failed attempt still consumes the cooldown
    if not is_admin:
        await limiter.record_scan(ip, domain)

    duration = elapsed_ms(started)

    if error is None:
        job = await store.update(
            job_id,
            status=ScanJobStatus.completed,
            completed_at=utcnow(),
            duration_ms=duration,
            result_json=payload,
        )
        logger.info(f"[{job_id}] Completed in {duration}ms, score={result.derived.score}")
        log_scan_event(
            ip=ip, domain=domain, result="completed",
            job_id=job_id, is_admin=is_admin, duration_ms=duration,
        )
        return job

    job = await store.update(
        job_id,
        status=ScanJobStatus.failed,
        completed_at=utcnow(),
        duration_ms=duration,
        error=error.message,
        failure_code=error.failure_code,
        result_json={
            "failure_code": error.failure_code,
            "status_code": error.status_code,
            "attempted_urls": error.attempted_urls,
            "final_url": error.final_url,
        },
    )
    logger.warning(f"[{job_id}] Failed ({error.failure_code}) after {duration}ms: {truncate_error(error.message)}")
    log_scan_event(
        ip=ip, domain=domain, result="failed",
        job_id=job_id, is_admin=is_admin, duration_ms=duration, error=error.message,
    )
    return job


async def process_queue(
    db: AsyncSession,
    engine: Optional[AxeScanEngine] = None,
    limiter: Optional[ScanLimiter] = None,
    batch_size: Optional[int] = None,
    time_budget: Optional[float] = None,
) -> Dict[str, Any]:
    """One worker pass: expire orphans, then drain a batch sequentially."""
    started = time.monotonic()
    budget = settings.WORKER_TIME_BUDGET_SECONDS if time_budget is None else time_budget
    store = ScanJobStore(db)

    cleaned = await store.cleanup_expired()
    job_ids = [job.id for job in await store.fetch_queued(batch_size or settings.WORKER_BATCH_SIZE)]

    results = []
    for job_id in job_ids:
        if time.monotonic() - started >= budget:
            logger.info(f"[worker] Time budget spent, leaving {len(job_ids) - len(results)} job(s) queued")
            break
        if engine_busy():
            logger.warning("[worker] Browser from a timed-out scan still open, stopping this pass")
            break
        # re-read: a rollback in the previous run expires loaded rows
        job = await store.get(job_id)
        if job is None:
            continue
        finished = await execute_job(db, job, engine=engine, limiter=limiter)
        results.append({"job_id": finished.id, "status": finished.status.value})

    if results:
        logger.info(f"[worker] Processed {len(results)} job(s), cleaned {cleaned}")
    return {"processed": len(results), "cleaned": cleaned, "results": results}


def describe_job(job: ScanJob) -> Dict[str, Any]:
    """Polling payload for a job."""
    view: Dict[str, Any] = {
        "job_id": job.id,
        "domain": job.domain,
        "status": job.status.value,
        "created_at": as_utc(job.created_at).isoformat() if job.created_at else None,
    }
    payload = job.result_json or {}

    if job.status == ScanJobStatus.completed:
        for key in ("report_id", "private_token", "public_url", "private_url", "score", "timings"):
            view[key] = payload.get(key)

    if job.status == ScanJobStatus.failed:
        failure_code = job.failure_code or "unknown"
        view["failure_code"] = failure_code
        view["failure_message"] = (
            NAVIGATION_LOOP_MESSAGE if failure_code == "navigation_loop" else job.error
        )
        view["attempted_urls"] = payload.get("attempted_urls") or []
        view["error"] = job.error

    return view
