import enum

from sqlalchemy import Boolean, Column, DateTime, Enum, Index, Integer, JSON, String, Text, func

from app.platform.db.base import BaseModel
from app.platform.utils.clock import utcnow


class ScanJobStatus(enum.Enum):
    """Scan job status state machine"""
    queued = "queued"
    running = "running"
    completed = "completed"
    failed = "failed"
    rejected = "rejected"
    rate_limited = "rate_limited"


ACTIVE_STATUSES = (ScanJobStatus.queued, ScanJobStatus.running)
TERMINAL_STATUSES = (
    ScanJobStatus.completed,
    ScanJobStatus.failed,
    ScanJobStatus.rejected,
    ScanJobStatus.rate_limited,
)


class ScanJob(BaseModel):
    """One attempt to scan one URL. A rescan of the same domain is always a new row."""

    __tablename__ = "scan_jobs"

    domain = Column(String(253), nullable=False)  # canonical hostname, not raw input
    scan_url = Column(Text, nullable=False)

    status = Column(Enum(ScanJobStatus), default=ScanJobStatus.queued, nullable=False)

    # Origin metadata for fair-use accounting
    ip = Column(String(64), nullable=False)
    is_admin = Column(Boolean, default=False, nullable=False)
    make_public = Column(Boolean, default=False, nullable=False)

    # Set in Python so FIFO order survives second-resolution server clocks
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)

    # Terminal diagnostics
    duration_ms = Column(Integer, nullable=True)
    error = Column(Text, nullable=True)
    failure_code = Column(String(32), nullable=True)

    # report linkage, score, timings, attempted urls
    result_json = Column(JSON, nullable=True)

    __table_args__ = (
        Index("idx_scan_jobs_domain_status", "domain", "status"),
        Index("idx_scan_jobs_status_created", "status", "created_at"),
        Index("idx_scan_jobs_expires_at", "expires_at"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
