from datetime import timedelta
from typing import Any, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.scan.models.scan_job import ACTIVE_STATUSES, ScanJob, ScanJobStatus
from app.platform.config import settings
from app.platform.logger import get_logger
from app.platform.utils.clock import utcnow

logger = get_logger(__name__)

EXPIRED_ERROR = "Job expired before processing"
ERROR_MAX_LENGTH = 500


def truncate_error(message: Optional[str]) -> Optional[str]:
    if message is None:
        return None
    return message[:ERROR_MAX_LENGTH]


class ScanJobStore:
    """
    Durable record of every scan attempt.

    Deduplication via find_active_for_domain is best effort, not a lock: two
    submissions racing inside the same instant can both create jobs, and the
    report ends up holding whichever finishes last.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(
        self,
        domain: str,
        scan_url: str,
        ip: str,
        is_admin: bool = False,
        make_public: bool = False,
    ) -> ScanJob:
        now = utcnow()
        job = ScanJob(
            domain=domain,
            scan_url=scan_url,
            ip=ip,
            is_admin=is_admin,
            make_public=make_public,
            status=ScanJobStatus.queued,
            created_at=now,
            expires_at=now + timedelta(seconds=settings.JOB_TTL_SECONDS),
        )
        self.db.add(job)
        await self.db.commit()
        await self.db.refresh(job)
        logger.info(f"[{job.id}] Created scan job for {domain}")
        return job

    async def get(self, job_id: str) -> Optional[ScanJob]:
        return await self.db.get(ScanJob, job_id)

    async def update(self, job_id: str, **fields: Any) -> Optional[ScanJob]:
        """Apply partial changes. Terminal jobs keep their status."""
        job = await self.get(job_id)
        if job is None:
            return None

        new_status = fields.get("status")
        if job.is_terminal and new_status is not None and new_status != job.status:
            logger.warning(
                f"[{job_id}] Ignoring update to {new_status.value}: "
                f"job already {job.status.value}"
            )
            return job

        if "error" in fields:
            fields["error"] = truncate_error(fields["error"])

        for key, value in fields.items():
            setattr(job, key, value)

        await self.db.commit()
        await self.db.refresh(job)
        return job

    async def claim(self, job_id: str) -> Optional[ScanJob]:
        """Atomically move a queued job to running; None if someone else got it first."""
        now = utcnow()
        result = await self.db.execute(
            update(ScanJob)
            .where(
                ScanJob.id == job_id,
                ScanJob.status == ScanJobStatus.queued,
                ScanJob.expires_at > now,
            )
            .values(status=ScanJobStatus.running, started_at=now)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        if result.rowcount != 1:
            return None

        job = await self.get(job_id)
        if job is not None:
            await self.db.refresh(job)
        return job

    async def find_active_for_domain(self, domain: str) -> Optional[ScanJob]:
        result = await self.db.execute(
            select(ScanJob)
            .where(
                ScanJob.domain == domain,
                ScanJob.status.in_(ACTIVE_STATUSES),
                ScanJob.expires_at > utcnow(),
            )
            .order_by(ScanJob.created_at.desc())
            .limit(1)
        )
        return result.scalars().first()

    async def fetch_queued(self, limit: int) -> List[ScanJob]:
        result = await self.db.execute(
            select(ScanJob)
            .where(
                ScanJob.status == ScanJobStatus.queued,
                ScanJob.expires_at > utcnow(),
            )
            .order_by(ScanJob.created_at.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def cleanup_expired(self) -> int:
        now = utcnow()
        result = await self.db.execute(
            update(ScanJob)
            .where(
                ScanJob.status.in_(ACTIVE_STATUSES),
                ScanJob.expires_at <= now,
            )
            .values(
                status=ScanJobStatus.failed,
                error=EXPIRED_ERROR,
                failure_code="timeout",
                completed_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        cleaned = result.rowcount or 0
        if cleaned:
            logger.warning(f"[jobs] Marked {cleaned} expired job(s) as failed")
        return cleaned
