# compliance_api/services/rules/pt.py
from __future__ import annotations

from collections.abc import Mapping
from decimal import Decimal
from typing import TYPE_CHECKING, Any, List, Optional, Sequence

from compliance_api.services.normalizer import to_decimal
from compliance_api.services.records import EmployeeSlice
from compliance_api.services.rules.base import HIGH, MEDIUM, Violation, factor, money, within_tolerance

if TYPE_CHECKING:
    from compliance_api.services.compliance_engine import EngineContext

CATEGORY = "PT"


def slabs_for_state(state_rules: Mapping, state: Optional[str]) -> List[Mapping]:
    table = state_rules.get("ptSlabs") or {}
    if not isinstance(table, Mapping):
        return []
    for key in (state, (state or "").upper(), "default"):
        if key and isinstance(table.get(key), (list, tuple)):
            return [s for s in table[key] if isinstance(s, Mapping)]
    return []


def match_slab(slabs: Sequence[Mapping], gross: Decimal) -> Optional[Mapping[str, Any]]:
    """Last slab whose lower bound is <= gross, provided gross is not past its upper bound."""
    ordered = sorted(slabs, key=lambda s: to_decimal(s.get("min")))
    found = None
    for slab in ordered:
        if to_decimal(slab.get("min")) <= gross:
            found = slab
    if found is None:
        return None
    upper = found.get("max")
    # integer slab tables leave a gap of one rupee between max and the next min
    if upper is not None and gross >= to_decimal(upper) + 1:
        return None
    return found


def evaluate(ctx: "EngineContext", sl: EmployeeSlice) -> List[Violation]:
    rec = sl.current
    if rec is None:
        return []
    p = ctx.policy
    state = sl.employee.state or rec.state
    gross, pt = rec.gross, rec.pt

    slab = match_slab(slabs_for_state(ctx.state_rules, state), gross)
    if slab is None:
        if pt > 0:
            return [Violation(
                type="PT Deduction Invalid State",
                severity=MEDIUM,
                message=f"PT of {money(pt)} was deducted but no PT slab applies for state {state or 'unknown'}.",
                recommended_fix="Stop the PT deduction or configure the PT slabs for the employee's state.",
                category=CATEGORY,
                rule_id="PT-NO-SLAB",
            )]
        return []

    amount = to_decimal(slab.get("amount"))
    if amount > 0 and pt == 0:
        return [Violation(
            type="PT Missing",
            severity=HIGH,
            message=f"PT of {money(amount)} applies for gross {money(gross)} but nothing was deducted.",
            recommended_fix="Deduct professional tax as per the state slab.",
            category=CATEGORY,
            rule_id="PT-MISSING",
        )]
    if amount > 0 and pt > amount * p.pt_double_factor:
        return [Violation(
            type="PT Deducted Twice",
            severity=MEDIUM,
            message=f"PT of {money(pt)} is more than {factor(p.pt_double_factor)} the slab amount {money(amount)}.",
            recommended_fix="Reverse the duplicate PT deduction and refund the employee.",
            category=CATEGORY,
            rule_id="PT-DOUBLE",
        )]
    if pt > 0 and not within_tolerance(pt, amount, p.pt_tolerance):
        return [Violation(
            type="PT Slab Mismatch",
            severity=MEDIUM,
            message=f"PT deducted {money(pt)} does not match the slab amount {money(amount)}.",
            recommended_fix="Align the PT deduction with the applicable state slab.",
            category=CATEGORY,
            rule_id="PT-SLAB",
        )]
    return []
