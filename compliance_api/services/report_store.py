from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from compliance_api.extensions import db
from compliance_api.models.compliance import ComplianceScan, EmployeeRiskReport
from compliance_api.services.report_builder import ScanResult, scan_metadata, violations_list

log = logging.getLogger(__name__)


class SqlReportSink:
    """
    Persists a scan. Each employee report commits on its own, so one bad row
    is logged and skipped without losing the rest of the scan.
    """

    def write(self, result: ScanResult) -> List[str]:
        scan_pk = self._write_scan(result)
        self._drop_stale(result)

        failed: List[str] = []
        for report in result.reports:
            try:
                EmployeeRiskReport.query.filter_by(
                    scope_key=result.scope_key, employee_id=report.employee_id
                ).delete(synchronize_session=False)
                db.session.add(EmployeeRiskReport(
                    scan_id=scan_pk,
                    scope_key=result.scope_key,
                    employee_id=report.employee_id,
                    employee_name=report.employee_name,
                    risk_score=report.risk_score,
                    risk_level=report.risk_level,
                    violation_count=report.violation_count,
                    violations=violations_list(report),
                    category_scores=dict(report.category_scores),
                    generated_at=report.generated_at,
                ))
                db.session.commit()
            except SQLAlchemyError:
                db.session.rollback()
                log.error("Compliance report write failed (table=compliance_reports, scope=%s, employee=%s)",
                          result.scope_key, report.employee_id, exc_info=True)
                failed.append(report.employee_id)

        if failed and scan_pk is not None:
            self._record_failures(scan_pk, failed)
        return failed

    def _write_scan(self, result: ScanResult) -> Optional[int]:
        meta = scan_metadata(result)
        try:
            row = ComplianceScan(
                scan_uid=result.scan_id,
                scope_key=result.scope_key,
                run_id=result.run_id,
                reasons=list(result.reasons),
                employee_count=meta["employeeCount"],
                excluded_count=meta["excludedCount"],
                violation_count=meta["violationCount"],
                anomaly_count=meta["anomalyCount"],
                summary={
                    "riskLevels": meta["riskLevels"],
                    "ruleFailures": meta["ruleFailures"],
                    "excluded": result.excluded,
                },
                anomalies=result.anomalies,
                generated_at=result.generated_at,
                completed_at=result.completed_at,
            )
            db.session.add(row)
            db.session.commit()
            return row.id
        except SQLAlchemyError:
            db.session.rollback()
            log.error("Compliance scan write failed (table=compliance_scans, scope=%s)",
                      result.scope_key, exc_info=True)
            return None

    def _drop_stale(self, result: ScanResult) -> None:
        keep = [r.employee_id for r in result.reports]
        try:
            q = EmployeeRiskReport.query.filter(EmployeeRiskReport.scope_key == result.scope_key)
            if keep:
                q = q.filter(EmployeeRiskReport.employee_id.notin_(keep))
            q.delete(synchronize_session=False)
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            log.error("Could not drop superseded compliance reports (scope=%s)", result.scope_key, exc_info=True)

    def _record_failures(self, scan_pk: int, failed: List[str]) -> None:
        try:
            row = db.session.get(ComplianceScan, scan_pk)
            if row is not None:
                row.summary = {**(row.summary or {}), "failedWrites": failed}
                db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            log.error("Could not record failed writes on scan %s", scan_pk, exc_info=True)
