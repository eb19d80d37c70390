"""
Celery tasks for scan execution.

Tasks are synchronous; each drives the async pipeline through asyncio.run()
with its own short-lived database engine (see async_db_helper). The job row
is the only record of outcome, so tasks never retry a scan themselves.
"""
import asyncio
from typing import Any, Dict

from app.platform.async_db_helper import get_async_db
from app.platform.cache.store import close_store
from app.platform.celery_app import celery_app
from app.platform.logger import get_logger

logger = get_logger(__name__)


async def _drain_queue() -> Dict[str, Any]:
    from app.features.scan.services.orchestration.pipeline import process_queue

    try:
        async with get_async_db() as db:
            return await process_queue(db)
    finally:
        await close_store()


async def _run_job(job_id: str) -> Dict[str, Any]:
    from app.features.scan.services.jobs.job_store import ScanJobStore
    from app.features.scan.services.orchestration.pipeline import execute_job

    try:
        async with get_async_db() as db:
            job = await ScanJobStore(db).get(job_id)
            if job is None:
                logger.warning(f"[{job_id}] Job not found, nothing to run")
                return {"job_id": job_id, "status": "missing"}
            finished = await execute_job(db, job)
            return {"job_id": job_id, "status": finished.status.value}
    finally:
        await close_store()


@celery_app.task(bind=True, name="app.features.scan.workers.tasks.drain_scan_queue", ignore_result=True)
def drain_scan_queue(self) -> Dict[str, Any]:
    """
    Periodic worker pass (Celery Beat): expire orphaned jobs, then run up to
    WORKER_BATCH_SIZE queued jobs one after another.
    """
    summary = asyncio.run(_drain_queue())
    if summary["processed"] or summary["cleaned"]:
        logger.info(f"[worker] Drain pass: {summary['processed']} processed, {summary['cleaned']} cleaned")
    return summary


@celery_app.task(bind=True, name="app.features.scan.workers.tasks.run_scan_job")
def run_scan_job(self, job_id: str) -> Dict[str, Any]:
    """Run a single job dispatched by the submit endpoint."""
    logger.info(f"[{job_id}] Worker picked up job (task {self.request.id})")
    return asyncio.run(_run_job(job_id))
