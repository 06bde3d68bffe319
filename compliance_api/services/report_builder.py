# compliance_api/services/report_builder.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from io import BytesIO
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from openpyxl import Workbook

from compliance_api.services.records import Employee
from compliance_api.services.risk import calculate_risk_score, category_scores, derive_risk_level
from compliance_api.services.rules.base import SEVERITIES, Violation
from compliance_api.services.rules.policy import RulePolicy

MAX_SUGGESTIONS = 5


@dataclass(frozen=True)
class ComplianceReport:
    employee_id: str
    employee_name: str
    risk_score: int
    risk_level: str
    violations: Tuple[Violation, ...]
    generated_at: datetime
    category_scores: Dict[str, int] = field(default_factory=dict)

    @property
    def violation_count(self) -> int:
        return len(self.violations)


@dataclass
class ScanResult:
    scan_id: str
    scope_key: str
    month_key: str
    run_id: Optional[str]
    reasons: Tuple[str, ...]
    generated_at: datetime
    reports: List[ComplianceReport] = field(default_factory=list)
    anomalies: List[Dict[str, Any]] = field(default_factory=list)
    excluded: List[Dict[str, Any]] = field(default_factory=list)
    rule_failures: List[Tuple[str, str]] = field(default_factory=list)
    failed_writes: List[str] = field(default_factory=list)
    completed_at: Optional[datetime] = None

    @property
    def high_risk(self) -> List[ComplianceReport]:
        return [r for r in self.reports if r.risk_level in ("High", "Critical")]


def build_report(employee: Employee, violations: Sequence[Violation], generated_at: datetime,
                 policy: Optional[RulePolicy] = None) -> ComplianceReport:
    score = calculate_risk_score(violations, policy)
    return ComplianceReport(
        employee_id=employee.employee_id,
        employee_name=employee.name,
        risk_score=score,
        risk_level=derive_risk_level(score, policy),
        violations=tuple(violations),
        generated_at=generated_at,
        category_scores=category_scores(violations, policy),
    )


def summary_dict(report: ComplianceReport) -> Dict[str, Any]:
    return {
        "employeeId": report.employee_id,
        "employeeName": report.employee_name,
        "riskScore": report.risk_score,
        "riskLevel": report.risk_level,
        "violationCount": report.violation_count,
        "categoryScores": dict(report.category_scores),
        "generatedAt": report.generated_at.isoformat(),
    }


def violations_list(report: ComplianceReport) -> List[Dict[str, Any]]:
    return [v.to_dict() for v in report.violations]


def report_dict(report: ComplianceReport) -> Dict[str, Any]:
    return {**summary_dict(report), "violations": violations_list(report)}


def report_from_dict(d: Mapping[str, Any]) -> ComplianceReport:
    """Inverse of `report_dict`, for stored rows."""
    generated = d.get("generatedAt")
    return ComplianceReport(
        employee_id=d.get("employeeId") or "",
        employee_name=d.get("employeeName") or "",
        risk_score=int(d.get("riskScore") or 0),
        risk_level=d.get("riskLevel") or "Low",
        violations=tuple(Violation.from_dict(v) for v in d.get("violations") or []),
        generated_at=datetime.fromisoformat(generated) if generated else datetime.min,
        category_scores=dict(d.get("categoryScores") or {}),
    )


def fix_suggestions(reports: Iterable[ComplianceReport], limit: int = MAX_SUGGESTIONS) -> List[Dict[str, Any]]:
    """Distinct fixes, most employees touched first; severity breaks ties."""
    rank = {sev: i for i, sev in enumerate(reversed(SEVERITIES))}
    by_fix: Dict[str, Dict[str, Any]] = {}
    order: List[str] = []
    for report in reports:
        for v in report.violations:
            entry = by_fix.get(v.recommended_fix)
            if entry is None:
                entry = by_fix[v.recommended_fix] = {
                    "suggestion": v.recommended_fix,
                    "category": v.category,
                    "severity": v.severity,
                    "employees": set(),
                }
                order.append(v.recommended_fix)
            elif rank.get(v.severity, 99) < rank.get(entry["severity"], 99):
                entry["severity"] = v.severity
            entry["employees"].add(report.employee_id)

    ordered = sorted(order, key=lambda k: (-len(by_fix[k]["employees"]), rank.get(by_fix[k]["severity"], 99)))
    out = []
    for key in ordered[:limit]:
        entry = by_fix[key]
        out.append({**entry, "employees": len(entry["employees"])})
    return out


def scan_metadata(result: ScanResult) -> Dict[str, Any]:
    levels = {sev: 0 for sev in SEVERITIES}
    for r in result.reports:
        levels[r.risk_level] = levels.get(r.risk_level, 0) + 1
    return {
        "scanId": result.scan_id,
        "scopeKey": result.scope_key,
        "monthKey": result.month_key,
        "runId": result.run_id,
        "reasons": list(result.reasons),
        "generatedAt": result.generated_at.isoformat(),
        "completedAt": result.completed_at.isoformat() if result.completed_at else None,
        "employeeCount": len(result.reports),
        "excludedCount": len(result.excluded),
        "violationCount": sum(r.violation_count for r in result.reports),
        "anomalyCount": len(result.anomalies),
        "riskLevels": levels,
        "ruleFailures": [{"employeeId": e, "rule": n} for e, n in result.rule_failures],
        "failedWrites": list(result.failed_writes),
    }


# ---------- xlsx ----------

def _num(x):
    try:
        return float(x) if x is not None else 0.0
    except (TypeError, ValueError):
        return 0.0


def build_workbook(scope_key: str, reports: Iterable[Mapping[str, Any]],
                   anomalies: Iterable[Mapping[str, Any]] = ()) -> BytesIO:
    """Reports are `report_dict`-shaped mappings, so stored rows export the same way."""
    wb = Workbook()
    ws = wb.active
    ws.title = "SUMMARY"
    ws.append(["SCOPE", scope_key])
    ws.append([])
    ws.append(["SR.NO", "EMP ID", "NAME", "RISK SCORE", "RISK LEVEL", "VIOLATIONS", "GENERATED AT"])

    ws_v = wb.create_sheet("VIOLATIONS")
    ws_v.append(["EMP ID", "NAME", "CATEGORY", "TYPE", "SEVERITY", "MESSAGE", "RECOMMENDED FIX"])

    for i, rep in enumerate(reports, start=1):
        violations = rep.get("violations") or []
        ws.append([
            i, rep.get("employeeId"), rep.get("employeeName"), _num(rep.get("riskScore")),
            rep.get("riskLevel"), len(violations), rep.get("generatedAt"),
        ])
        for v in violations:
            ws_v.append([
                rep.get("employeeId"), rep.get("employeeName"), v.get("category"), v.get("type"),
                v.get("severity"), v.get("message"), v.get("recommendedFix"),
            ])

    ws_a = wb.create_sheet("ANOMALIES")
    ws_a.append(["EMP ID", "NAME", "DATE", "TYPE", "SEVERITY", "MESSAGE", "RECOMMENDED FIX"])
    for a in anomalies:
        ws_a.append([
            a.get("employeeId"), a.get("employeeName"), a.get("date"), a.get("type"),
            a.get("severity"), a.get("message"), a.get("recommendedFix"),
        ])

    bio = BytesIO()
    wb.save(bio)
    bio.seek(0)
    return bio
