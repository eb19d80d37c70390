import secrets
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.scan.models.scan_report import ScanReport
from app.features.scan.schemas.issue import DerivedResult
from app.platform.config import settings
from app.platform.logger import get_logger
from app.platform.utils.clock import utcnow

logger = get_logger(__name__)

MAX_SELECTOR_LENGTH = 200
MAX_CODE_EXAMPLE_LENGTH = 500


def new_private_token() -> str:
    return secrets.token_urlsafe(24)


def public_report_url(domain: str) -> str:
    return f"{settings.SITE_URL.rstrip('/')}/report/{quote(domain, safe='')}"


def private_report_url(report: ScanReport) -> str:
    return f"{settings.SITE_URL.rstrip('/')}/r/{report.id}?t={report.private_token}"


def _stored_issues(derived: DerivedResult) -> List[Dict[str, Any]]:
    issues = []
    for issue in derived.issues:
        selectors = [selector[:MAX_SELECTOR_LENGTH] for selector in issue.selectors]
        issues.append(
            {
                "rule_id": issue.rule_id,
                "impact": issue.impact.value,
                "wcag_reference": issue.wcag_reference,
                "how_to_fix": issue.how_to_fix,
                "selector": selectors[0] if selectors else None,
                "selectors": selectors,
                "code_example": (issue.code_example or "")[:MAX_CODE_EXAMPLE_LENGTH] or None,
            }
        )
    return issues


class ScanReportStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, report_id: str) -> Optional[ScanReport]:
        return await self.db.get(ScanReport, report_id)

    async def get_by_domain(self, domain: str) -> Optional[ScanReport]:
        result = await self.db.execute(select(ScanReport).where(ScanReport.domain == domain))
        return result.scalars().first()

    async def upsert_from_result(
        self, domain: str, derived: DerivedResult, make_public: bool = False
    ) -> ScanReport:
        """
        Create the domain's report on first scan, overwrite its findings afterwards.

        Visibility only ever flips to public on request, and never for a domain
        whose owner opted out. Concurrent scans of one domain resolve as last
        writer wins.
        """
        report = await self.get_by_domain(domain)
        if report is None:
            report = ScanReport(
                domain=domain,
                wcag_level=derived.wcag_level,
                is_public=False,
                private_token=new_private_token(),
            )
            self.db.add(report)

        self._apply(report, derived, make_public)

        try:
            await self.db.commit()
        except IntegrityError:
            # Another execution inserted this domain first; overwrite theirs
            await self.db.rollback()
            logger.warning(f"[reports] Concurrent insert for {domain}, retrying as update")
            report = await self.get_by_domain(domain)
            if report is None:
                raise
            self._apply(report, derived, make_public)
            await self.db.commit()

        await self.db.refresh(report)
        logger.info(f"[reports] Saved report {report.id} for {domain} (score={report.score})")
        return report

    @staticmethod
    def _apply(report: ScanReport, derived: DerivedResult, make_public: bool) -> None:
        report.score = derived.score
        report.wcag_level = derived.wcag_level
        report.totals = derived.totals.model_dump()
        report.issue_breakdown = dict(derived.issue_breakdown)
        report.issues = _stored_issues(derived)
        report.last_scanned_at = utcnow()
        if report.opted_out:
            report.is_public = False
        elif make_public:
            report.is_public = True
