# compliance_api/services/rules/tds.py
from __future__ import annotations

import re
from typing import TYPE_CHECKING, List, Optional

from compliance_api.services.records import ZERO, EmployeeSlice
from compliance_api.services.rules.base import HIGH, LOW, MEDIUM, Violation, deposit_due, money, pct

if TYPE_CHECKING:
    from compliance_api.services.compliance_engine import EngineContext

CATEGORY = "TDS"


def _regime(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    return value.strip().lower().replace("_", " ").replace("-", " ").replace(" regime", "")


def _shared_pan(ctx: "EngineContext", sl: EmployeeSlice) -> List[Violation]:
    pan = re.sub(r"\s+", "", sl.employee.pan or "").upper()
    holders = ctx.shared_pans.get(pan) if pan else None
    if not holders:
        return []
    others = ", ".join(h for h in holders if h != sl.employee.employee_id)
    return [Violation(
        type="TDS Duplicate PAN",
        severity=HIGH,
        message=f"PAN {pan} is also recorded for employee(s) {others}.",
        recommended_fix="Verify the PAN against the employee's card; TDS credit is lost when PANs are shared.",
        category=CATEGORY,
        rule_id="TDS-DUPLICATE-PAN",
    )]


def evaluate(ctx: "EngineContext", sl: EmployeeSlice) -> List[Violation]:
    out = _shared_pan(ctx, sl)
    rec = sl.current
    if rec is None:
        return out
    p = ctx.policy
    emp = sl.employee

    gross, tds = rec.gross, rec.tds
    if rec.tds_rate is not None:
        # feeds send either 0.2 or 20; 1 means one percent
        rate = rec.tds_rate / 100 if rec.tds_rate >= 1 else rec.tds_rate
    else:
        rate = tds / gross if gross > 0 else ZERO

    if not emp.pan and gross > 0 and rate < p.tds_pan_missing_rate:
        floor = pct(p.tds_pan_missing_rate)
        out.append(Violation(
            type="TDS PAN Rule",
            severity=HIGH,
            message=f"PAN is missing and TDS was deducted at {rate * 100:.2f}% instead of at least {floor}.",
            recommended_fix=f"Collect the employee's PAN or deduct TDS at {floor} until it is furnished.",
            category=CATEGORY,
            rule_id="TDS-PAN",
        ))

    declared = _regime(emp.tax_regime)
    configured = _regime(rec.tax_regime or p.payroll_tax_regime)
    if declared and configured and declared != configured:
        out.append(Violation(
            type="TDS Regime Mismatch",
            severity=MEDIUM,
            message=f"Employee declared the {declared} regime but payroll computed tax under the {configured} regime.",
            recommended_fix="Recompute TDS under the regime the employee declared for this financial year.",
            category=CATEGORY,
            rule_id="TDS-REGIME",
        ))

    if rec.tds_expected > 0 and abs(tds - rec.tds_expected) > p.tds_tolerance:
        out.append(Violation(
            type="TDS Projection Mismatch",
            severity=MEDIUM,
            message=f"TDS deducted {money(tds)} differs from the projected {money(rec.tds_expected)}.",
            recommended_fix="Re-run the annual tax projection and true-up the remaining months.",
            category=CATEGORY,
            rule_id="TDS-PROJECTION",
        ))

    previous = sl.baseline[-1] if sl.baseline else None
    if previous is not None and tds > 0 and tds == previous.tds and previous.gross > 0:
        change = abs(gross - previous.gross) / previous.gross
        if change > p.tds_flat_salary_change:
            out.append(Violation(
                type="TDS Not Revised",
                severity=MEDIUM,
                message=(f"Gross moved from {money(previous.gross)} to {money(gross)} but TDS stayed "
                         f"at {money(tds)}."),
                recommended_fix="Re-run the tax projection on the revised salary and adjust the monthly TDS.",
                category=CATEGORY,
                rule_id="TDS-NOT-REVISED",
            ))

    declaration = emp.tds_declaration_amount or rec.tds_declaration_amount
    proof = emp.tds_proof_amount or rec.tds_proof_amount
    if declaration > 0 and declaration - proof > p.tds_proof_gap:
        out.append(Violation(
            type="TDS Proof Shortfall",
            severity=LOW,
            message=f"Investment proofs of {money(proof)} fall short of the declared {money(declaration)}.",
            recommended_fix="Request the missing investment proofs or recompute TDS on proven amounts only.",
            category=CATEGORY,
            rule_id="TDS-PROOF",
        ))

    deposits = ctx.statutory_payments
    if deposits is not None and tds > 0:
        period = rec.month_key or ctx.month_key
        paid = deposits.tds_paid_date or deposits.tds_challan_date
        due = deposit_due(period, p.tds_deposit_due_day)
        if paid is None:
            out.append(Violation(
                type="TDS Deposit Missing",
                severity=HIGH,
                message=f"TDS of {money(tds)} was deducted for {period} but no deposit or challan date is recorded.",
                recommended_fix="Deposit the TDS against a challan and record its date.",
                category=CATEGORY,
                rule_id="TDS-DEPOSIT-MISSING",
            ))
        elif due and paid.date() > due:
            out.append(Violation(
                type="TDS Deposit Late",
                severity=HIGH,
                message=f"TDS for {period} was deposited on {paid:%Y-%m-%d}, after the {due:%Y-%m-%d} due date.",
                recommended_fix="Deposit TDS by the due date and pay the interest on the delay.",
                category=CATEGORY,
                rule_id="TDS-DEPOSIT-LATE",
            ))

    return out
