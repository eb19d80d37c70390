import secrets
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.scan.services.reports.report_store import ScanReportStore, public_report_url
from app.platform.db.session import get_db
from app.platform.response import api_response
from app.platform.utils.clock import as_utc

router = APIRouter(prefix="/reports", tags=["Reports"])


@router.get("/{report_id}", status_code=200)
async def get_report(
    report_id: str,
    t: Optional[str] = Query(None, description="Private access token"),
    db: AsyncSession = Depends(get_db),
):
    """
    Report for a domain. Public reports are open; private ones need the
    capability token handed out when the scan completed.
    """
    report = await ScanReportStore(db).get_by_id(report_id)
    if report is None:
        return api_response(message="Report not found", status_code=status.HTTP_404_NOT_FOUND)

    if not report.is_public:
        if not t:
            return api_response(
                message="This report is private", status_code=status.HTTP_401_UNAUTHORIZED
            )
        if not secrets.compare_digest(t.encode(), report.private_token.encode()):
            return api_response(
                message="Invalid report token", status_code=status.HTTP_403_FORBIDDEN
            )

    return api_response(
        data={
            "report_id": report.id,
            "domain": report.domain,
            "score": report.score,
            "wcag_level": report.wcag_level,
            "is_public": report.is_public,
            "public_url": public_report_url(report.domain) if report.is_public else None,
            "totals": report.totals,
            "issue_breakdown": report.issue_breakdown,
            "issues": report.issues,
            "last_scanned_at": as_utc(report.last_scanned_at),
            "created_at": as_utc(report.created_at),
        },
        message="Report retrieved",
        headers={"Cache-Control": "private, no-store"} if not report.is_public else None,
    )
