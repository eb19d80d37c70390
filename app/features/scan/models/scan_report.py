from sqlalchemy import Boolean, Column, DateTime, Integer, JSON, String

from app.platform.db.base import BaseModel


class ScanReport(BaseModel):
    """
    Durable, user-visible result for a domain. One row per domain, mutated in
    place on every rescan; removal is an owner-initiated flow that only sets
    `opted_out`.
    """

    __tablename__ = "scan_reports"

    domain = Column(String(253), nullable=False, unique=True, index=True)
    score = Column(Integer, nullable=False, default=0)  # 0-100
    wcag_level = Column(String(16), nullable=False)

    is_public = Column(Boolean, default=False, nullable=False)
    private_token = Column(String(64), nullable=False)
    opted_out = Column(Boolean, default=False, nullable=False)

    totals = Column(JSON, nullable=False, default=dict)
    issue_breakdown = Column(JSON, nullable=False, default=dict)
    issues = Column(JSON, nullable=False, default=list)

    last_scanned_at = Column(DateTime(timezone=True), nullable=False)
