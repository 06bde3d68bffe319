# compliance_api/services/rules/min_wage.py
from __future__ import annotations

from collections.abc import Mapping
from decimal import Decimal
from typing import TYPE_CHECKING, List, Optional

from compliance_api.services.normalizer import to_decimal
from compliance_api.services.records import EmployeeSlice, basic_pay
from compliance_api.services.rules.base import HIGH, Violation, money

if TYPE_CHECKING:
    from compliance_api.services.compliance_engine import EngineContext

CATEGORY = "WAGE"


def minimum_wage_for(state_rules: Mapping, role: Optional[str], state: Optional[str],
                     floor: Decimal) -> Decimal:
    """Role first, then state, then the table default, then the configured floor."""
    table = state_rules.get("minWages") or state_rules.get("minimumWages") or {}
    if isinstance(table, Mapping):
        for key in (role, state, (state or "").upper(), "default"):
            if key and table.get(key) is not None:
                return to_decimal(table[key])
    return floor


def evaluate(ctx: "EngineContext", sl: EmployeeSlice) -> List[Violation]:
    emp = sl.employee
    basic = basic_pay(sl.current, emp)
    if basic <= 0:
        return []
    state = emp.state or (sl.current.state if sl.current else None)
    floor = minimum_wage_for(ctx.state_rules, emp.job_role, state, ctx.policy.min_wage_floor)
    if floor > 0 and basic < floor:
        return [Violation(
            type="Minimum Wage Violation",
            severity=HIGH,
            message=f"Basic pay {money(basic)} is below the applicable minimum wage of {money(floor)}.",
            recommended_fix="Revise the salary structure to at least the notified minimum wage and pay arrears.",
            category=CATEGORY,
            rule_id="WAGE-MINIMUM",
        )]
    return []
