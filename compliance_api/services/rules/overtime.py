# compliance_api/services/rules/overtime.py
from __future__ import annotations

from typing import TYPE_CHECKING, List

from compliance_api.services.records import EmployeeSlice
from compliance_api.services.rules.base import HIGH, MEDIUM, Violation

if TYPE_CHECKING:
    from compliance_api.services.compliance_engine import EngineContext

CATEGORY = "OVERTIME"


def evaluate(ctx: "EngineContext", sl: EmployeeSlice) -> List[Violation]:
    s = sl.attendance
    if s is None:
        return []
    p = ctx.policy
    out: List[Violation] = []

    long_days = [r for r in s.daily if r.overtime_hours > p.overtime_daily_limit]
    if long_days:
        worst = max(r.overtime_hours for r in long_days)
        out.append(Violation(
            type="Daily Overtime Limit",
            severity=MEDIUM,
            message=(f"Overtime exceeded {p.overtime_daily_limit:g}h on {len(long_days)} day(s); "
                     f"highest was {worst:g}h."),
            recommended_fix="Cap daily overtime and spread the workload across shifts.",
            category=CATEGORY,
            rule_id="OT-DAILY",
        ))

    total = s.overtime_hours
    if total > p.overtime_monthly_limit:
        out.append(Violation(
            type="Monthly Overtime Limit",
            severity=HIGH,
            message=f"Monthly overtime of {total:g}h exceeds the {p.overtime_monthly_limit:g}h limit.",
            recommended_fix="Stop further overtime this month and review staffing for the team.",
            category=CATEGORY,
            rule_id="OT-MONTHLY",
        ))
    elif p.overtime_monthly_warning is not None and total >= p.overtime_monthly_warning:
        out.append(Violation(
            type="Overtime Early Warning",
            severity=MEDIUM,
            message=(f"Monthly overtime of {total:g}h is approaching the "
                     f"{p.overtime_monthly_limit:g}h limit."),
            recommended_fix="Plan the remaining shifts so the monthly overtime limit is not crossed.",
            category=CATEGORY,
            rule_id="OT-WARNING",
        ))
    return out
