from __future__ import annotations
import logging
from datetime import date

from flask import Blueprint, request, current_app, send_file

from compliance_api.common.auth import requires_perms
from compliance_api.common.errors import APIError
from compliance_api.common.http import ok, fail
from compliance_api.models.compliance import ComplianceDataset, ComplianceScan, EmployeeRiskReport
from compliance_api.services.datasets import SqlDatasetProvider
from compliance_api.services.normalizer import month_key
from compliance_api.services.report_builder import (
    build_workbook, fix_suggestions, report_dict, report_from_dict, scan_metadata,
)
from compliance_api.services.rules.base import SEVERITIES
from compliance_api.services.scope_resolver import ScopeResolutionError, resolve_scope

log = logging.getLogger(__name__)

bp = Blueprint("compliance_risk", __name__, url_prefix="/api/v1/compliance-risk")

COLLECTIONS = ("employees", "payroll", "attendance")


def _coordinator():
    return current_app.extensions["compliance_scans"]


def _service():
    return current_app.extensions["compliance_service"]


def _scope_key(raw) -> str:
    key = month_key(raw) if raw else None
    if not key:
        raise APIError("BAD_SCOPE", "scope must be a month (YYYY-MM)", 422)
    return key


def _truthy(v) -> bool:
    return str(v).strip().lower() in ("1", "true", "yes", "y") if v is not None else False


# ---------- datasets ----------

@bp.put("/datasets/<scope_key>")
@requires_perms("compliance.risk.write")
def put_dataset(scope_key: str):
    key = _scope_key(scope_key)
    j = request.get_json(silent=True)
    if not isinstance(j, dict):
        return fail("JSON object body is required", 422)
    bad = [c for c in COLLECTIONS if c in j and not isinstance(j[c], (list, dict))]
    if j.get("statutoryPayments") is not None and not isinstance(j["statutoryPayments"], dict):
        bad.append("statutoryPayments")
    if bad:
        return fail("collections must be lists or objects", 422, errors={c: "invalid" for c in bad})

    row = SqlDatasetProvider().save(key, j, run_id=j.get("runId"))
    log.info("Compliance dataset stored scope=%s counts=%s", key, row.counts())
    scan_status = None
    if not _truthy(request.args.get("no_scan")):
        scan_status = _coordinator().trigger(key, "dataset-updated")
    return ok({**row.to_dict(), "scan": scan_status})


@bp.get("/datasets/<scope_key>")
@requires_perms("compliance.risk.read")
def get_dataset(scope_key: str):
    row = ComplianceDataset.query.filter_by(scope_key=_scope_key(scope_key)).first()
    if not row:
        return fail("Dataset not found", 404)
    return ok(row.to_dict())


# ---------- scans ----------

@bp.post("/scans")
@requires_perms("compliance.risk.write")
def start_scan():
    j = request.get_json(silent=True) or {}
    scope = (str(j.get("scope") or "")).strip()
    if not scope:
        return fail("scope is required (YYYY-MM or payroll run id)", 422)
    reason = (str(j.get("reason") or "manual")).strip() or "manual"

    if not _truthy(j.get("wait")):
        return ok({"status": _coordinator().trigger(scope, reason), "scope": scope}, 202)

    status, result = _coordinator().run_now(scope, reason)
    if status == "queued":
        return ok({"status": status, "scope": scope}, 202)
    if result is None:
        return fail(f"Could not resolve scope {scope!r}", 422, code="SCOPE_UNRESOLVED")
    return ok({"status": status, **scan_metadata(result)})


@bp.post("/payroll-runs/<run_id>/completed")
@requires_perms("compliance.risk.write")
def payroll_run_completed(run_id: str):
    """Hook for the payroll pipeline: a finished run schedules a scan of its month."""
    status = _coordinator().trigger(run_id, "payroll-run-completed")
    return ok({"status": status, "runId": run_id}, 202)


@bp.get("/scans/status")
@requires_perms("compliance.risk.read")
def scan_status():
    return ok(_coordinator().state())


@bp.get("/scans")
@requires_perms("compliance.risk.read")
def list_scans():
    q = ComplianceScan.query
    scope = request.args.get("scope")
    if scope:
        q = q.filter(ComplianceScan.scope_key == _scope_key(scope))
    try:
        limit = max(1, min(int(request.args.get("limit", 20)), 200))
    except ValueError:
        return fail("limit must be integer", 422)
    rows = q.order_by(ComplianceScan.id.desc()).limit(limit).all()
    return ok([r.to_dict() for r in rows], count=len(rows))


@bp.get("/scans/<scope_key>")
@requires_perms("compliance.risk.read")
def latest_scan(scope_key: str):
    row = (ComplianceScan.query
           .filter(ComplianceScan.scope_key == _scope_key(scope_key))
           .order_by(ComplianceScan.id.desc())
           .first())
    if not row:
        return fail("No scan for this scope", 404)
    return ok(row.to_dict(with_anomalies=True))


# ---------- reports ----------

def _report_rows(scope_key: str, level: str | None = None):
    q = EmployeeRiskReport.query.filter(EmployeeRiskReport.scope_key == scope_key)
    if level:
        q = q.filter(EmployeeRiskReport.risk_level == level)
    return q.order_by(EmployeeRiskReport.risk_score.desc(), EmployeeRiskReport.employee_id.asc()).all()


@bp.get("/reports")
@requires_perms("compliance.risk.read")
def list_reports():
    key = _scope_key(request.args.get("scope"))
    level = (request.args.get("level") or "").strip().capitalize() or None
    if level and level not in SEVERITIES:
        return fail("level must be one of Low, Medium, High, Critical", 422)
    rows = _report_rows(key, level)
    return ok([r.to_summary() for r in rows], scope=key, count=len(rows))


@bp.get("/reports/<scope_key>/<employee_id>")
@requires_perms("compliance.risk.read")
def get_report(scope_key: str, employee_id: str):
    row = EmployeeRiskReport.query.filter_by(scope_key=_scope_key(scope_key), employee_id=employee_id).first()
    if not row:
        return fail("Report not found", 404)
    return ok(row.to_dict())


@bp.get("/suggestions")
@requires_perms("compliance.risk.read")
def suggestions():
    key = _scope_key(request.args.get("scope"))
    reports = [report_from_dict(r.to_dict()) for r in _report_rows(key)]
    return ok(fix_suggestions(reports), scope=key)


@bp.post("/preview")
@requires_perms("compliance.risk.read")
def preview():
    """Evaluate an ad-hoc snapshot without persisting anything."""
    j = request.get_json(silent=True)
    if not isinstance(j, dict):
        return fail("JSON object body is required", 422)
    try:
        scope = resolve_scope(j.get("month") or j.get("scope"))
    except ScopeResolutionError as e:
        return fail(str(e), 422, code="SCOPE_UNRESOLVED")

    result = _service().evaluate(j, scope, ("preview",))
    return ok({
        **scan_metadata(result),
        "reports": [report_dict(r) for r in result.reports],
        "anomalies": result.anomalies,
        "suggestions": fix_suggestions(result.reports),
        "excluded": result.excluded,
    })


@bp.get("/export")
@requires_perms("compliance.risk.read")
def export_reports():
    fmt = (request.args.get("format") or "xlsx").lower()
    if fmt != "xlsx":
        return fail("Only format=xlsx supported", 422)
    key = _scope_key(request.args.get("scope"))

    scan = (ComplianceScan.query.filter(ComplianceScan.scope_key == key)
            .order_by(ComplianceScan.id.desc()).first())
    bio = build_workbook(key, [r.to_dict() for r in _report_rows(key)], (scan.anomalies or []) if scan else [])
    filename = f"compliance_risk_{key.replace('-', '')}_{date.today().strftime('%Y%m%d')}.xlsx"
    return send_file(bio, mimetype="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
                     as_attachment=True, download_name=filename)
