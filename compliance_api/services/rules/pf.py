# compliance_api/services/rules/pf.py
from __future__ import annotations

from typing import TYPE_CHECKING, List

from compliance_api.services.records import EmployeeSlice, basic_pay
from compliance_api.services.rules.base import (
    HIGH, MEDIUM, Violation, deposit_due, money, pct, within_tolerance,
)

if TYPE_CHECKING:
    from compliance_api.services.compliance_engine import EngineContext

CATEGORY = "PF"


def evaluate(ctx: "EngineContext", sl: EmployeeSlice) -> List[Violation]:
    rec = sl.current
    if rec is None:
        return []
    p = ctx.policy
    emp = sl.employee

    derived_wage = basic_pay(rec, emp) + (rec.da or emp.da)
    pf_wage = rec.pf_wage if rec.pf_wage is not None else derived_wage
    eligible = (0 < pf_wage <= p.pf_wage_ceiling) or emp.pf_applicable
    employee_share = rec.pf
    rate = pct(p.pf_employee_rate)
    previous = sl.baseline[-1] if sl.baseline else None
    present_days = sl.attendance.present_days if sl.attendance else 0

    out: List[Violation] = []

    if eligible and employee_share == 0:
        out.append(Violation(
            type="PF Eligibility",
            severity=HIGH,
            message=f"Employee is PF-eligible (PF wage {money(pf_wage)}) but no PF contribution was deducted.",
            recommended_fix=f"Enable PF for this employee and deduct {rate} of the PF wage from the next payroll.",
            category=CATEGORY,
            rule_id="PF-ELIGIBILITY",
        ))

    if not eligible and employee_share == 0:
        was_member = any(r.pf > 0 for r in sl.baseline)
        if present_days > 0 and was_member:
            # an existing member keeps contributing after crossing the wage ceiling
            out.append(Violation(
                type="PF Missing Despite Attendance",
                severity=HIGH,
                message=(f"Employee attended {present_days} day(s) and contributed to PF earlier, "
                         f"but no PF was deducted this month."),
                recommended_fix="Resume PF deductions; an enrolled member stays covered above the wage ceiling.",
                category=CATEGORY,
                rule_id="PF-ATTENDANCE",
            ))
        low, high = p.pf_avoidance_band
        if pf_wage > 0 and low <= rec.gross <= high:
            out.append(Violation(
                type="PF Avoidance Pattern",
                severity=MEDIUM,
                message=(f"Gross {money(rec.gross)} sits just around the {money(p.pf_wage_ceiling)} ceiling "
                         f"with no PF deducted."),
                recommended_fix="Check whether the pay structure was set to keep the PF wage above the ceiling.",
                category=CATEGORY,
                rule_id="PF-AVOIDANCE",
            ))

    in_play = eligible or employee_share > 0 or rec.employer_epf > 0 or rec.employer_eps > 0
    if not in_play or pf_wage <= 0:
        return out

    if rec.pf_wage is not None and not within_tolerance(rec.pf_wage, derived_wage, p.pf_tolerance):
        out.append(Violation(
            type="PF Wage Mismatch",
            severity=MEDIUM,
            message=f"Reported PF wage {money(rec.pf_wage)} differs from Basic + DA {money(derived_wage)}.",
            recommended_fix="Recompute the PF wage as Basic + DA in the payroll component mapping.",
            category=CATEGORY,
            rule_id="PF-WAGE",
        ))

    if employee_share > 0:
        expected = pf_wage * p.pf_employee_rate
        if not within_tolerance(employee_share, expected, p.pf_tolerance):
            out.append(Violation(
                type="PF Contribution Mismatch",
                severity=HIGH,
                message=f"Employee PF {money(employee_share)} does not match {rate} of PF wage ({money(expected)}).",
                recommended_fix=f"Correct the employee PF deduction to {rate} of the PF wage and settle the difference.",
                category=CATEGORY,
                rule_id="PF-EMPLOYEE-SHARE",
            ))

    if employee_share > 0 and previous is not None and previous.pf > 0 and not rec.remarks:
        swing = abs(employee_share - previous.pf) / previous.pf
        if swing > p.pf_fluctuation_ratio:
            out.append(Violation(
                type="PF Fluctuation",
                severity=MEDIUM,
                message=(f"Employee PF moved from {money(previous.pf)} to {money(employee_share)} "
                         f"month over month without a recorded revision."),
                recommended_fix="Record the salary revision behind the change or correct the PF deduction.",
                category=CATEGORY,
                rule_id="PF-FLUCTUATION",
            ))

    eps_cap = min(pf_wage, p.pf_wage_ceiling) * p.pf_eps_rate
    if rec.employer_eps > eps_cap + p.pf_tolerance:
        out.append(Violation(
            type="EPS Cap Exceeded",
            severity=MEDIUM,
            message=(f"Employer EPS {money(rec.employer_eps)} exceeds {pct(p.pf_eps_rate)} "
                     f"of the capped wage ({money(eps_cap)})."),
            recommended_fix=(f"Cap EPS at {pct(p.pf_eps_rate)} of min(PF wage, {money(p.pf_wage_ceiling)}) "
                             f"and move the excess to EPF."),
            category=CATEGORY,
            rule_id="PF-EPS-CAP",
        ))

    employer_total = rec.employer_epf + rec.employer_eps
    if employer_total > 0:
        expected_employer = pf_wage * p.pf_employer_rate
        if not within_tolerance(employer_total, expected_employer, p.pf_employer_tolerance):
            out.append(Violation(
                type="PF Employer Share Mismatch",
                severity=HIGH,
                message=(f"Employer EPF + EPS {money(employer_total)} does not equal {pct(p.pf_employer_rate)} "
                         f"of PF wage ({money(expected_employer)})."),
                recommended_fix=(f"Reconcile the employer EPF/EPS split so the total equals "
                                 f"{pct(p.pf_employer_rate)} of the PF wage."),
                category=CATEGORY,
                rule_id="PF-EMPLOYER-SHARE",
            ))

    deposits = ctx.statutory_payments
    paid = deposits.pf_paid_date if deposits else None
    due = deposit_due(rec.month_key or ctx.month_key, p.pf_deposit_due_day)
    if (employee_share > 0 or employer_total > 0) and paid and due and paid.date() > due:
        out.append(Violation(
            type="PF Deposit Late",
            severity=HIGH,
            message=(f"PF for {rec.month_key or ctx.month_key} was deposited on {paid:%Y-%m-%d}, "
                     f"after the {due:%Y-%m-%d} due date."),
            recommended_fix="Deposit PF by the due date and pay the damages and interest on the delay.",
            category=CATEGORY,
            rule_id="PF-DEPOSIT-LATE",
        ))

    return out
