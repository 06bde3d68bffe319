# compliance_api/services/risk.py
from __future__ import annotations

from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence

from compliance_api.services.records import PayrollRecord
from compliance_api.services.rules.base import CRITICAL, Violation, money
from compliance_api.services.rules.policy import RulePolicy

_DEFAULT = RulePolicy()


def severity_points(severity: str, policy: Optional[RulePolicy] = None) -> int:
    return (policy or _DEFAULT).points(severity)


def category_scores(violations: Iterable[Violation], policy: Optional[RulePolicy] = None) -> Dict[str, int]:
    """Points per category, each capped so one noisy area cannot dominate the score."""
    policy = policy or _DEFAULT
    raw: Dict[str, int] = {}
    for v in violations:
        raw[v.category] = raw.get(v.category, 0) + policy.points(v.severity)
    return {cat: min(pts, policy.category_cap) for cat, pts in raw.items()}


def calculate_risk_score(violations: Iterable[Violation], policy: Optional[RulePolicy] = None) -> int:
    policy = policy or _DEFAULT
    total = sum(category_scores(violations, policy).values())
    return max(0, min(int(total), policy.total_cap))


def derive_risk_level(score: int, policy: Optional[RulePolicy] = None) -> str:
    policy = policy or _DEFAULT
    for limit, level in policy.level_breakpoints:
        if score <= limit:
            return level
    return policy.top_level


def dedupe(violations: Iterable[Violation]) -> List[Violation]:
    """First occurrence wins per (rule, category)."""
    seen = set()
    out: List[Violation] = []
    for v in violations:
        key = (v.rule_id or v.type, v.category)
        if key in seen:
            continue
        seen.add(key)
        out.append(v)
    return out


def financial_year_start(when: datetime) -> datetime:
    year = when.year if when.month >= 4 else when.year - 1
    return datetime(year, 4, 1)


def annual_projection_findings(history: Sequence[PayrollRecord],
                               policy: Optional[RulePolicy] = None) -> List[Violation]:
    """
    Projected annual gross (current gross x 12) above the taxable threshold
    while no TDS has been deducted so far in the financial year.
    """
    policy = policy or _DEFAULT
    if not history:
        return []
    current = history[-1]
    projected = current.gross * 12
    if current.tds != 0 or projected <= policy.tds_annual_threshold:
        return []

    fy_start = financial_year_start(current.sort_date)
    earlier_tds = any(
        r.tds > 0 for r in history[:-1]
        if fy_start <= r.sort_date <= current.sort_date
    )
    if earlier_tds:
        return []
    return [Violation(
        type="TDS Annual Projection",
        severity=CRITICAL,
        message=(f"Projected annual income {money(projected)} exceeds {money(policy.tds_annual_threshold)} "
                 "but no TDS has been deducted this financial year."),
        recommended_fix="Compute the annual tax liability and start TDS deductions immediately.",
        category="TDS",
        rule_id="TDS-ANNUAL",
    )]
