# compliance_api/services/anomaly_detector.py
"""
Data-quality sweep over the raw collections, independent of the per-employee
rules. Catches records the rules would silently read as zero: malformed
identifiers, broken attendance days, payroll without attendance, and payroll
arithmetic that cannot be right.
"""
from __future__ import annotations

import logging
import re
from collections import Counter
from collections.abc import Mapping
from dataclasses import dataclass
from itertools import pairwise
from typing import Any, Dict, List, Optional, Set

from compliance_api.services.attendance_summary import iter_attendance_days, summarize_attendance
from compliance_api.services.normalizer import (
    build_payroll_history, iter_records, month_key as to_month_key, normalize_payroll, to_text,
)
from compliance_api.services.records import PRESENT_STATUSES
from compliance_api.services.rules.base import HIGH, LOW, MEDIUM, Violation, money
from compliance_api.services.rules.policy import RulePolicy
from compliance_api.services.schema_adapter import Adapters

log = logging.getLogger(__name__)

ILLEGAL_ID_CHARS = re.compile(r"[/\\?#%.\[\]]")
CATEGORY = "DATA"


def sanitize_id(value: Any) -> str:
    return ILLEGAL_ID_CHARS.sub("-", str(value if value is not None else "").strip())


@dataclass(frozen=True)
class AnomalyFinding:
    employee_id: str
    employee_name: str
    date: str
    violation: Violation

    def to_dict(self) -> Dict[str, Any]:
        return {
            "employeeId": self.employee_id,
            "employeeName": self.employee_name,
            "date": self.date,
            **self.violation.to_dict(),
        }


def _v(type_: str, severity: str, message: str, fix: str, rule_id: str) -> Violation:
    return Violation(type=type_, severity=severity, message=message, recommended_fix=fix,
                     category=CATEGORY, rule_id=rule_id)


def detect_anomalies(dataset: Mapping[str, Any], policy: Optional[RulePolicy] = None,
                     month: Optional[str] = None, adapters: Optional[Adapters] = None
                     ) -> List[AnomalyFinding]:
    policy = policy or RulePolicy()
    adapters = adapters or Adapters()
    findings: List[AnomalyFinding] = []
    names: Dict[str, str] = {}

    def add(emp_id: str, date: str, violation: Violation) -> None:
        findings.append(AnomalyFinding(emp_id, names.get(emp_id, "Unknown Employee"), date, violation))

    # employee directory
    for key, record in iter_records(dataset.get("employees")):
        if not isinstance(record, Mapping):
            continue
        f = adapters.employee.read(record)
        raw_id = to_text(f["employee_id"]) or to_text(key)
        safe = sanitize_id(raw_id)
        names[safe] = to_text(f["name"]) or "Unknown Employee"
        if not raw_id or ILLEGAL_ID_CHARS.search(raw_id):
            add(safe, "", _v(
                "Invalid Employee ID", MEDIUM,
                f"Employee identifier {raw_id!r} is empty or contains reserved characters.",
                "Rename the identifier using letters, digits and hyphens only.", "DATA-ID"))

    # attendance days
    seen_by_month: Dict[str, Set[str]] = {}
    for day, entries in iter_attendance_days(dataset.get("attendance"), adapters.attendance):
        day_month = to_month_key(day)
        if month is not None and day_month != month:
            continue
        if entries is None:
            add("", day, _v(
                "Malformed Attendance Day", MEDIUM,
                f"Attendance for {day} is not a set of employee records.",
                "Re-import the attendance day from the source system.", "DATA-ATT-DAY"))
            continue
        counts: Counter = Counter()
        for raw_emp, record in entries:
            safe = sanitize_id(raw_emp)
            counts[safe] += 1
            if day_month:
                seen_by_month.setdefault(day_month, set()).add(safe)
            f = adapters.attendance.read(record) if isinstance(record, Mapping) else {}
            status = f.get("status")
            if not isinstance(record, Mapping) or not to_text(status):
                add(safe, day, _v(
                    "Incomplete Attendance Record", MEDIUM,
                    f"Attendance on {day} has no status.",
                    "Mark the day as present, absent or leave.", "DATA-ATT-STATUS"))
            elif str(status).strip().lower() in PRESENT_STATUSES and not (
                    to_text(f["time"]) or to_text(f["check_in_time"])):
                add(safe, day, _v(
                    "Missing Punch Time", LOW,
                    f"Marked present on {day} without a punch time.",
                    "Capture the check-in time or correct the status.", "DATA-ATT-PUNCH"))
        for safe, n in counts.items():
            if n > 1:
                add(safe, day, _v(
                    "Duplicate Attendance", MEDIUM,
                    f"{n} attendance entries on {day} for the same employee.",
                    "Keep a single attendance entry per employee per day.", "DATA-ATT-DUP"))

    # payroll
    records, _ = normalize_payroll(dataset.get("payroll"), adapters.payroll)
    leave_days = {
        emp: s.leave_days
        for emp, s in summarize_attendance(dataset.get("attendance"), month, adapters.attendance).items()
    } if month else {}

    for rec in records:
        rec_month = rec.month_key
        if month is not None and rec_month != month:
            continue
        safe = sanitize_id(rec.employee_id)
        if safe not in names and rec.employee_name:
            names[safe] = rec.employee_name
        when = rec_month or ""
        if rec_month and safe not in seen_by_month.get(rec_month, set()):
            add(safe, when, _v(
                "Payroll Without Attendance", MEDIUM,
                f"Salary processed for {rec_month} without any attendance record.",
                "Verify the employee worked this month before releasing salary.", "DATA-PAY-NO-ATT"))
        if rec.net < 0:
            add(safe, when, _v(
                "Negative Net Salary", HIGH,
                f"Net salary is {money(rec.net)}.",
                "Review deductions and recovery schedules for this employee.", "DATA-PAY-NEGATIVE"))
        if rec.deductions > rec.gross:
            add(safe, when, _v(
                "Deductions Exceed Earnings", HIGH,
                f"Deductions {money(rec.deductions)} exceed earnings {money(rec.gross)}.",
                "Cap deductions and reschedule recoveries.", "DATA-PAY-DEDUCTIONS"))
        if leave_days.get(rec.employee_id, 0) > 0 and rec.deductions <= 0:
            add(safe, when, _v(
                "Leave Without Deduction", LOW,
                f"{leave_days[rec.employee_id]} leave day(s) recorded but no deduction was applied.",
                "Check leave balances and apply loss-of-pay where due.", "DATA-PAY-LEAVE"))

    for emp_id, history in build_payroll_history(records).items():
        for prev, cur in pairwise(history):
            if month is not None and cur.month_key != month:
                continue
            if prev.net == 0 or cur.remarks:
                continue
            swing = (cur.net - prev.net) / abs(prev.net)
            if abs(swing) > policy.net_swing_ratio:
                add(sanitize_id(emp_id), cur.month_key or "", _v(
                    "Net Salary Swing", MEDIUM,
                    f"Net salary changed by {swing * 100:+.1f}% ({money(prev.net)} -> {money(cur.net)}).",
                    "Document the reason for the change or correct the payroll entry.", "DATA-PAY-SWING"))

    log.info("Anomaly sweep found %d finding(s)%s", len(findings), f" for {month}" if month else "")
    return findings
