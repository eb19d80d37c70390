"""
Scan models package.
"""
from app.features.scan.models.scan_job import ScanJob, ScanJobStatus
from app.features.scan.models.scan_report import ScanReport

__all__ = ["ScanJob", "ScanJobStatus", "ScanReport"]
