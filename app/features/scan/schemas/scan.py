"""
Scan Schemas

Request and response models for the scan API endpoints.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class ScanSubmitRequest(BaseModel):
    """Free-text target; normalisation and validation happen in the pipeline."""
    url: str = Field(..., max_length=2048)
    make_public: bool = False

    class Config:
        json_schema_extra = {
            "example": {
                "url": "https://example.com",
                "make_public": False,
            }
        }


class ScanSubmitResponse(BaseModel):
    job_id: str
    domain: str
    status: str


class ScanJobView(BaseModel):
    """Polling payload. Report fields appear once completed, failure fields once failed."""
    job_id: str
    domain: str
    status: str
    created_at: Optional[datetime] = None

    report_id: Optional[str] = None
    private_token: Optional[str] = None
    public_url: Optional[str] = None
    private_url: Optional[str] = None
    score: Optional[int] = None
    timings: Optional[Dict[str, Any]] = None

    failure_code: Optional[str] = None
    failure_message: Optional[str] = None
    attempted_urls: Optional[List[str]] = None
    error: Optional[str] = None


class WorkerRunResponse(BaseModel):
    processed: int
    cleaned: int
    results: List[Dict[str, Any]]
