# compliance_api/services/rules/esi.py
from __future__ import annotations

from typing import TYPE_CHECKING, List

from compliance_api.services.records import EmployeeSlice
from compliance_api.services.rules.base import (
    HIGH, LOW, MEDIUM, Violation, deposit_due, money, pct, within_tolerance,
)

if TYPE_CHECKING:
    from compliance_api.services.compliance_engine import EngineContext

CATEGORY = "ESI"


def _contribution_checks(ctx: "EngineContext", sl: EmployeeSlice) -> List[Violation]:
    rec, p, emp = sl.current, ctx.policy, sl.employee
    gross = rec.gross
    out: List[Violation] = []

    if 0 < gross <= p.esi_wage_ceiling:
        employee_rate = pct(p.esi_employee_rate)
        if rec.esi == 0:
            out.append(Violation(
                type="ESI Eligibility",
                severity=HIGH,
                message=f"Gross {money(gross)} is within the ESI ceiling but no ESI was deducted.",
                recommended_fix=f"Register the employee under ESI and deduct {employee_rate} of gross from the next payroll.",
                category=CATEGORY,
                rule_id="ESI-ELIGIBILITY",
            ))
        else:
            expected = gross * p.esi_employee_rate
            if not within_tolerance(rec.esi, expected, p.esi_employee_tolerance):
                out.append(Violation(
                    type="ESI Contribution Mismatch",
                    severity=MEDIUM,
                    message=f"Employee ESI {money(rec.esi)} does not match {employee_rate} of gross ({money(expected)}).",
                    recommended_fix=f"Recalculate the employee ESI share at {employee_rate} of gross.",
                    category=CATEGORY,
                    rule_id="ESI-EMPLOYEE-SHARE",
                ))
        if rec.esi_employer > 0:
            expected = gross * p.esi_employer_rate
            if not within_tolerance(rec.esi_employer, expected, p.esi_employer_tolerance):
                employer_rate = pct(p.esi_employer_rate)
                out.append(Violation(
                    type="ESI Employer Share Mismatch",
                    severity=MEDIUM,
                    message=(f"Employer ESI {money(rec.esi_employer)} does not match {employer_rate} "
                             f"of gross ({money(expected)})."),
                    recommended_fix=f"Recalculate the employer ESI share at {employer_rate} of gross.",
                    category=CATEGORY,
                    rule_id="ESI-EMPLOYER-SHARE",
                ))
        return out

    still_enrolled = emp.esi_applicable or rec.esi > 0
    if gross > p.esi_wage_ceiling and still_enrolled:
        period = rec.month_key or ctx.month_key
        exit_month = emp.esi_exit_month or rec.esi_exit_month
        if exit_month != period:
            out.append(Violation(
                type="ESI Exit Rule",
                severity=MEDIUM,
                message=(f"Gross {money(gross)} crossed the ESI ceiling but the employee is still enrolled "
                         f"without an exit recorded for {period}."),
                recommended_fix="Record the ESI exit at the end of the current contribution period.",
                category=CATEGORY,
                rule_id="ESI-EXIT",
            ))
    return out


def evaluate(ctx: "EngineContext", sl: EmployeeSlice) -> List[Violation]:
    rec = sl.current
    if rec is None:
        return []
    p = ctx.policy
    out = _contribution_checks(ctx, sl)

    window = [r.gross for r in sl.history[-p.esi_oscillation_window:] if r.gross > 0]
    if len(window) >= p.esi_oscillation_window and min(window) <= p.esi_wage_ceiling < max(window):
        out.append(Violation(
            type="ESI Threshold Oscillation",
            severity=MEDIUM,
            message=(f"Gross moved between {money(min(window))} and {money(max(window))} across the "
                     f"{money(p.esi_wage_ceiling)} ESI ceiling in the last {len(window)} payrolls."),
            recommended_fix="Fix ESI coverage per contribution period instead of re-deciding it every month.",
            category=CATEGORY,
            rule_id="ESI-OSCILLATION",
        ))

    # only meaningful when the month's attendance was supplied at all
    present_days = sl.attendance.present_days if sl.attendance else 0
    if rec.esi > 0 and ctx.attendance and present_days == 0:
        out.append(Violation(
            type="ESI Without Attendance",
            severity=LOW,
            message=f"ESI of {money(rec.esi)} was deducted but no attendance was recorded for {ctx.month_key}.",
            recommended_fix="Confirm the employee worked this month or reverse the ESI deduction.",
            category=CATEGORY,
            rule_id="ESI-NO-ATTENDANCE",
        ))

    deposits = ctx.statutory_payments
    paid = deposits.esi_paid_date if deposits else None
    due = deposit_due(rec.month_key or ctx.month_key, p.esi_deposit_due_day)
    if (rec.esi > 0 or rec.esi_employer > 0) and paid and due and paid.date() > due:
        out.append(Violation(
            type="ESI Deposit Late",
            severity=HIGH,
            message=(f"ESI for {rec.month_key or ctx.month_key} was deposited on {paid:%Y-%m-%d}, "
                     f"after the {due:%Y-%m-%d} due date."),
            recommended_fix="Deposit ESI by the due date and pay the interest on the delay.",
            category=CATEGORY,
            rule_id="ESI-DEPOSIT-LATE",
        ))
    return out
