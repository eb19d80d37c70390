import re
from typing import Any, Dict, Iterable, List, Tuple

from app.features.scan.schemas.issue import (
    DerivedIssue,
    DerivedResult,
    Impact,
    RawNode,
    RawViolation,
    Totals,
)
from app.features.scan.services.analysis.rule_guidance import guidance_for

WCAG_LEVEL = "2.2 AA"

MAX_SELECTORS_PER_ISSUE = 5
MAX_SELECTOR_LENGTH = 200

IMPACT_PENALTIES: Dict[Impact, int] = {
    Impact.critical: 8,
    Impact.serious: 5,
    Impact.moderate: 3,
    Impact.minor: 1,
}

CATEGORIES = ("contrast", "aria", "altText", "structure", "forms", "navigation")

ALT_TEXT_RULES = frozenset({"image-alt", "input-image-alt", "area-alt"})
STRUCTURE_RULES = frozenset({"heading-order", "document-title", "html-has-lang", "landmark-one-main"})
FORM_RULES = frozenset({"label", "button-name", "select-name"})

_CRITERION_TAG_RE = re.compile(r"^wcag(\d)(\d)(\d+)$")
_LONG_ATTRIBUTE_RE = re.compile(r"\[([^\]]{60,})\]")


class ResultDeriver:
    """
    Turns the rule engine's violation list into the stored report shape.

    Everything here is pure: the same violations always give the same score,
    totals and category counts, whatever order they arrive in.
    """

    @staticmethod
    def wcag_reference(tags: Iterable[str]) -> str:
        tags = list(tags)
        for tag in tags:
            match = _CRITERION_TAG_RE.match(tag)
            if match:
                return f"WCAG {match.group(1)}.{match.group(2)}.{match.group(3)}"

        if {"wcag2aa", "wcag21aa", "wcag22aa"} & set(tags):
            return "WCAG 2.x AA"
        if {"wcag2a", "wcag21a"} & set(tags):
            return "WCAG 2.x A"
        if "best-practice" in tags:
            return "Best Practice"
        return "WCAG"

    @staticmethod
    def sanitize_selector(raw: str) -> str:
        # Attribute values can carry user-authored text; keep only structure
        selector = _LONG_ATTRIBUTE_RE.sub("[...]", raw)
        if len(selector) > MAX_SELECTOR_LENGTH:
            selector = selector[: MAX_SELECTOR_LENGTH - 3] + "..."
        return selector

    @staticmethod
    def extract_selectors(nodes: List[RawNode]) -> List[str]:
        selectors: List[str] = []
        for node in nodes:
            if len(selectors) >= MAX_SELECTORS_PER_ISSUE:
                break
            if not node.target:
                continue
            first = node.target[0]
            raw = " ".join(first) if isinstance(first, list) else str(first)
            selectors.append(ResultDeriver.sanitize_selector(raw))
        return selectors

    @staticmethod
    def categorize(rule_id: str) -> str:
        if "contrast" in rule_id:
            return "contrast"
        if "aria" in rule_id:
            return "aria"
        if rule_id in ALT_TEXT_RULES:
            return "altText"
        if rule_id in STRUCTURE_RULES:
            return "structure"
        if rule_id in FORM_RULES:
            return "forms"
        if "link" in rule_id or "tabindex" in rule_id:
            return "navigation"
        return "structure"

    @staticmethod
    def score(issues: Iterable[DerivedIssue]) -> int:
        penalty = sum(IMPACT_PENALTIES[issue.impact] for issue in issues)
        return max(0, min(100, 100 - penalty))

    @staticmethod
    def derive_issue(violation: RawViolation) -> DerivedIssue:
        guidance = guidance_for(violation.id)
        return DerivedIssue(
            rule_id=violation.id,
            impact=violation.impact or Impact.moderate,
            wcag_reference=ResultDeriver.wcag_reference(violation.tags),
            how_to_fix=guidance.how_to_fix,
            code_example=guidance.code_example or None,
            selectors=ResultDeriver.extract_selectors(violation.nodes),
        )

    @staticmethod
    def summarize(issues: List[DerivedIssue]) -> Tuple[Totals, Dict[str, int]]:
        breakdown = {category: 0 for category in CATEGORIES}
        for issue in issues:
            breakdown[ResultDeriver.categorize(issue.rule_id)] += 1

        totals = Totals(
            total_issues=len(issues),
            contrast_issues=breakdown["contrast"],
            aria_issues=breakdown["aria"],
            alt_text_issues=breakdown["altText"],
        )
        return totals, breakdown

    @staticmethod
    def derive(raw_violations: Iterable[Any]) -> DerivedResult:
        """
        Accepts engine payload dicts or already-parsed RawViolation objects.

        Raises pydantic.ValidationError if a violation lacks a rule id.
        """
        violations = [
            item if isinstance(item, RawViolation) else RawViolation.model_validate(item)
            for item in raw_violations
        ]
        issues = [ResultDeriver.derive_issue(violation) for violation in violations]
        totals, breakdown = ResultDeriver.summarize(issues)

        return DerivedResult(
            score=ResultDeriver.score(issues),
            wcag_level=WCAG_LEVEL,
            totals=totals,
            issue_breakdown=breakdown,
            issues=issues,
        )


def derive_result(raw_violations: Iterable[Any]) -> DerivedResult:
    return ResultDeriver.derive(raw_violations)
