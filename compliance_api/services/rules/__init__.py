# compliance_api/services/rules/__init__.py
"""
Rule registry. Each rule is `evaluate(ctx, employee_slice) -> list[Violation]`;
the engine runs them in this order, which is also the order of violations in
every report.
"""
from compliance_api.services.rules import (
    attendance_fraud, esi, min_wage, overtime, pf, pt, salary_anomaly, tds,
)
from compliance_api.services.rules.base import Violation
from compliance_api.services.rules.policy import RulePolicy

RULES = (
    ("pf", pf.evaluate),
    ("esi", esi.evaluate),
    ("pt", pt.evaluate),
    ("tds", tds.evaluate),
    ("min_wage", min_wage.evaluate),
    ("overtime", overtime.evaluate),
    ("attendance_fraud", attendance_fraud.evaluate),
    ("salary_anomaly", salary_anomaly.evaluate),
)

__all__ = ["RULES", "RulePolicy", "Violation"]
