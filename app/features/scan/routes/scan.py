import asyncio

from fastapi import APIRouter, Depends, Request, status
from selenium.common.exceptions import WebDriverException
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.scan.schemas.scan import (
    ScanJobView,
    ScanSubmitRequest,
    ScanSubmitResponse,
    WorkerRunResponse,
)
from app.features.scan.services.engine.axe_scanner import AxeScanEngine
from app.features.scan.services.engine.browser import BrowserFactory
from app.features.scan.services.guard.dns_guard import NetworkOriginGuard, network_guard
from app.features.scan.services.jobs.job_store import ScanJobStore
from app.features.scan.services.orchestration.pipeline import (
    describe_job,
    process_queue,
    submit_scan,
)
from app.platform.config import settings
from app.platform.db.session import get_db
from app.platform.logger import get_logger
from app.platform.response import api_response
from app.platform.utils.rate_limit import ScanLimiter, scan_limiter
from app.platform.utils.request_identity import get_client_ip, has_bearer_secret, is_admin_request

logger = get_logger(__name__)

router = APIRouter(prefix="/scan", tags=["scan"])


# Overridable collaborators (tests swap these through app.dependency_overrides)
def get_scan_engine() -> AxeScanEngine:
    return AxeScanEngine()


def get_network_guard() -> NetworkOriginGuard:
    return network_guard


def get_scan_limiter() -> ScanLimiter:
    return scan_limiter


@router.post("")
async def start_scan(
    payload: ScanSubmitRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    engine: AxeScanEngine = Depends(get_scan_engine),
    guard: NetworkOriginGuard = Depends(get_network_guard),
    limiter: ScanLimiter = Depends(get_scan_limiter),
):
    """
    Submit a scan. Validation and fair-use refusals come back as 400/429;
    a scan that runs and fails is still a 200, reported through the job status.
    """
    job = await submit_scan(
        db,
        url=payload.url,
        ip=get_client_ip(request),
        is_admin=is_admin_request(request),
        make_public=payload.make_public,
        guard=guard,
        limiter=limiter,
        engine=engine,
    )
    return api_response(
        data=ScanSubmitResponse(job_id=job.id, domain=job.domain, status=job.status.value),
        message="Scan accepted",
        status_code=status.HTTP_200_OK,
    )


@router.api_route("/worker", methods=["GET", "POST"])
async def run_worker(
    request: Request,
    db: AsyncSession = Depends(get_db),
    engine: AxeScanEngine = Depends(get_scan_engine),
    limiter: ScanLimiter = Depends(get_scan_limiter),
):
    """Scheduler-triggered queue drain, authenticated with Bearer CRON_SECRET."""
    if not has_bearer_secret(request, settings.CRON_SECRET):
        logger.warning(f"[worker] Unauthorized trigger from {get_client_ip(request)}")
        return api_response(message="Unauthorized", status_code=status.HTTP_401_UNAUTHORIZED)

    summary = await process_queue(db, engine=engine, limiter=limiter)
    message = "No queued jobs." if not summary["processed"] else "Queue drained"
    return api_response(data=WorkerRunResponse(**summary), message=message)


@router.get("/health")
async def scanner_health():
    """Launch and close a browser to prove the scan runtime works."""
    try:
        probe = await asyncio.to_thread(BrowserFactory.probe)
    except WebDriverException as exc:
        logger.error(f"[scanner] Browser probe failed: {exc}")
        return api_response(
            data={"ok": False, "error": (exc.msg or str(exc))[:500]},
            message="Browser could not be launched",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )
    return api_response(data={"ok": True, **probe}, message="Scanner is healthy")


@router.get("/{job_id}")
async def get_scan_job(job_id: str, db: AsyncSession = Depends(get_db)):
    job = await ScanJobStore(db).get(job_id)
    if job is None:
        return api_response(
            message="Job not found. It may have expired or never existed.",
            status_code=status.HTTP_404_NOT_FOUND,
            headers={"Cache-Control": "no-store"},
        )
    return api_response(
        data=ScanJobView(**describe_job(job)).model_dump(exclude_none=True),
        message="Scan job retrieved",
        headers={"Cache-Control": "no-store"},
    )
