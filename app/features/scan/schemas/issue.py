"""
Issue Schemas

Ingestion models for the rule engine's violation payload and the derived,
privacy-bounded issue model stored on reports.
"""
from enum import Enum
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, Field, field_validator


class Impact(str, Enum):
    critical = "critical"
    serious = "serious"
    moderate = "moderate"
    minor = "minor"


class RawNode(BaseModel):
    """An affected element. Only the selector path is read; html and text are ignored."""
    target: List[Union[str, List[str]]] = Field(default_factory=list)


class RawViolation(BaseModel):
    """
    One rule violation as returned by the rule engine.

    Anything the engine adds beyond {id, impact, tags, nodes} is dropped here so
    downstream derivation works on a closed type.
    """
    id: str
    impact: Optional[Impact] = None
    tags: List[str] = Field(default_factory=list)
    nodes: List[RawNode] = Field(default_factory=list)

    @field_validator("impact", mode="before")
    @classmethod
    def unknown_impact_is_absent(cls, value):
        if value not in {impact.value for impact in Impact}:
            return None
        return value

    @field_validator("tags", "nodes", mode="before")
    @classmethod
    def null_is_empty(cls, value):
        return value or []


class DerivedIssue(BaseModel):
    rule_id: str
    impact: Impact
    wcag_reference: str
    how_to_fix: str
    code_example: Optional[str] = None
    selectors: List[str] = Field(default_factory=list)

    class Config:
        json_schema_extra = {
            "example": {
                "rule_id": "image-alt",
                "impact": "critical",
                "wcag_reference": "WCAG 1.1.1",
                "how_to_fix": "Add descriptive alt text to all informative images.",
                "code_example": '<img src="photo.jpg" alt="Description" />',
                "selectors": ["main > img.hero"],
            }
        }


class Totals(BaseModel):
    total_issues: int = 0
    contrast_issues: int = 0
    aria_issues: int = 0
    alt_text_issues: int = 0


class DerivedResult(BaseModel):
    score: int
    wcag_level: str
    totals: Totals
    issue_breakdown: Dict[str, int]
    issues: List[DerivedIssue]
