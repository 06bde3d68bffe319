# compliance_api/services/compliance_engine.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple

from compliance_api.services.attendance_summary import shared_usage, summarize_attendance
from compliance_api.services.normalizer import (
    build_payroll_history, duplicate_pans, employed_during, normalize_employees,
    normalize_payroll, normalize_statutory_payments,
)
from compliance_api.services.records import (
    AttendanceSummary, Employee, EmployeeSlice, PayrollRecord, StatutoryPayments,
)
from compliance_api.services.report_builder import ComplianceReport, build_report
from compliance_api.services.risk import annual_projection_findings, dedupe
from compliance_api.services.rules import RULES
from compliance_api.services.rules.base import Violation
from compliance_api.services.rules.policy import RulePolicy
from compliance_api.services.schema_adapter import Adapters

log = logging.getLogger(__name__)


@dataclass
class EngineContext:
    month_key: str
    policy: RulePolicy
    state_rules: Mapping[str, Any]
    generated_at: datetime
    employees: List[Employee] = field(default_factory=list)
    excluded_employees: List[Dict[str, Any]] = field(default_factory=list)
    payroll_records: List[PayrollRecord] = field(default_factory=list)
    skipped_payroll: int = 0
    histories: Dict[str, List[PayrollRecord]] = field(default_factory=dict)
    attendance: Dict[str, AttendanceSummary] = field(default_factory=dict)
    device_usage: Dict[str, int] = field(default_factory=dict)
    ip_usage: Dict[str, int] = field(default_factory=dict)
    # PAN -> ids, only PANs shared by several employees
    shared_pans: Dict[str, List[str]] = field(default_factory=dict)
    statutory_payments: Optional[StatutoryPayments] = None
    rule_failures: List[Tuple[str, str]] = field(default_factory=list)

    def slice_for(self, employee: Employee) -> EmployeeSlice:
        return EmployeeSlice(
            employee=employee,
            history=self.histories.get(employee.employee_id, []),
            attendance=self.attendance.get(employee.employee_id),
        )


def build_context(dataset: Mapping[str, Any], month_key: str,
                  state_rules: Optional[Mapping[str, Any]] = None,
                  policy: Optional[RulePolicy] = None,
                  generated_at: Optional[datetime] = None,
                  adapters: Optional[Adapters] = None) -> EngineContext:
    """
    Normalize the raw collections once for a scope month. Payroll records dated
    after the month are left out so the current record is the month's own.
    """
    adapters = adapters or Adapters()
    employees, excluded = normalize_employees(dataset.get("employees"), adapters.employee)
    records, skipped = normalize_payroll(dataset.get("payroll"), adapters.payroll)
    in_scope = [r for r in records if r.month_key is None or r.month_key <= month_key]
    attendance = summarize_attendance(dataset.get("attendance"), month_key, adapters.attendance)
    device_usage, ip_usage = shared_usage(attendance)
    deposits = normalize_statutory_payments(dataset.get("statutoryPayments"), adapters.deposits)

    if state_rules is None:
        state_rules = dataset.get("stateRules") or {}

    return EngineContext(
        month_key=month_key,
        policy=policy or RulePolicy(),
        state_rules=state_rules,
        generated_at=generated_at or datetime.now(timezone.utc).replace(tzinfo=None),
        employees=employees,
        excluded_employees=excluded,
        payroll_records=records,
        skipped_payroll=skipped,
        histories=build_payroll_history(in_scope),
        attendance=attendance,
        device_usage=device_usage,
        ip_usage=ip_usage,
        shared_pans=duplicate_pans(employees),
        statutory_payments=deposits,
    )


def _run_rule(ctx: EngineContext, name: str, rule, sl: EmployeeSlice) -> List[Violation]:
    try:
        return list(rule(ctx, sl) or [])
    except Exception:
        # one broken rule must not sink the employee's report
        log.exception("Compliance rule %s failed for employee %s; counted as no violations",
                      name, sl.employee.employee_id)
        ctx.rule_failures.append((sl.employee.employee_id, name))
        return []


def evaluate_employee(ctx: EngineContext, employee: Employee) -> List[Violation]:
    sl = ctx.slice_for(employee)
    found: List[Violation] = []
    for name, rule in RULES:
        found.extend(_run_rule(ctx, name, rule, sl))
    found.extend(_run_rule(ctx, "tds_annual_projection",
                           lambda c, s: annual_projection_findings(s.history, c.policy), sl))
    return dedupe(found)


def run_engine(ctx: EngineContext) -> List[ComplianceReport]:
    """One report per employee employed during the scope month, in directory order."""
    reports: List[ComplianceReport] = []
    for employee in ctx.employees:
        if not employed_during(employee, ctx.month_key):
            log.debug("Skipping %s: not employed during %s", employee.employee_id, ctx.month_key)
            continue
        violations = evaluate_employee(ctx, employee)
        reports.append(build_report(employee, violations, ctx.generated_at, ctx.policy))
    return reports
