# compliance_api/services/rules/salary_anomaly.py
from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Iterable, List

from compliance_api.services.records import EmployeeSlice, basic_pay
from compliance_api.services.rules.base import HIGH, MEDIUM, Violation, factor, money, pct

if TYPE_CHECKING:
    from compliance_api.services.compliance_engine import EngineContext

CATEGORY = "SALARY"


def _mean(values: Iterable[Decimal]) -> Decimal:
    values = list(values)
    return sum(values, Decimal("0")) / len(values) if values else Decimal("0")


def evaluate(ctx: "EngineContext", sl: EmployeeSlice) -> List[Violation]:
    current = sl.current
    if current is None:
        return []
    p = ctx.policy
    out: List[Violation] = []

    basic = basic_pay(current, sl.employee)
    if current.gross > 0 and basic > 0 and basic / current.gross < p.basic_share_floor:
        out.append(Violation(
            type="Salary Structure Anomaly",
            severity=MEDIUM,
            message=f"Basic pay {money(basic)} is under {pct(p.basic_share_floor)} of gross {money(current.gross)}.",
            recommended_fix=(f"Restructure pay so basic is at least {pct(p.basic_share_floor)} of gross; "
                             f"statutory wage rules may apply."),
            category=CATEGORY,
            rule_id="SAL-STRUCTURE",
        ))

    baseline = sl.baseline[-p.salary_baseline_size:]
    if not baseline:
        return out

    avg_gross = _mean(r.gross for r in baseline)
    if avg_gross > 0 and current.gross > avg_gross * p.salary_spike_multiplier:
        out.append(Violation(
            type="Salary Spike",
            severity=HIGH,
            message=(f"Gross {money(current.gross)} is over {factor(p.salary_spike_multiplier)} "
                     f"the recent average of {money(avg_gross)}."),
            recommended_fix="Confirm the increase is backed by an approved revision or one-time payout.",
            category=CATEGORY,
            rule_id="SAL-SPIKE",
        ))

    avg_reimb = _mean(r.reimbursement for r in baseline)
    if avg_reimb > 0 and current.reimbursement > avg_reimb * p.reimbursement_spike_multiplier:
        out.append(Violation(
            type="Reimbursement Spike",
            severity=MEDIUM,
            message=(f"Reimbursement {money(current.reimbursement)} is over {factor(p.reimbursement_spike_multiplier)} "
                     f"the recent average of {money(avg_reimb)}."),
            recommended_fix="Verify the supporting bills before releasing the reimbursement.",
            category=CATEGORY,
            rule_id="SAL-REIMBURSEMENT",
        ))

    avg_ded = _mean(r.deductions for r in baseline)
    if avg_ded > 0 and current.deductions < avg_ded * p.deduction_drop_ratio:
        out.append(Violation(
            type="Deduction Drop",
            severity=MEDIUM,
            message=(f"Deductions {money(current.deductions)} fell below {pct(p.deduction_drop_ratio)} of the "
                     f"recent average of {money(avg_ded)}."),
            recommended_fix="Check whether a statutory or loan deduction was skipped this month.",
            category=CATEGORY,
            rule_id="SAL-DEDUCTIONS",
        ))

    return out
