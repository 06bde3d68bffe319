from datetime import datetime

from compliance_api.extensions import db


class ComplianceDataset(db.Model):
    """Raw employees / payroll / attendance snapshot a scan reads for one month."""
    __tablename__ = "compliance_datasets"

    id = db.Column(db.Integer, primary_key=True)
    scope_key = db.Column(db.String(7), nullable=False, unique=True, index=True)  # YYYY-MM
    run_id = db.Column(db.String(64), index=True)
    payload = db.Column(db.JSON, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def counts(self):
        p = self.payload or {}

        def _n(x):
            return len(x) if isinstance(x, (list, dict)) else 0

        return {
            "employees": _n(p.get("employees")),
            "payroll": _n(p.get("payroll")),
            "attendance_days": _n(p.get("attendance")),
        }

    def to_dict(self):
        return {
            "id": self.id,
            "scope": self.scope_key,
            "run_id": self.run_id,
            "counts": self.counts(),
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class ComplianceScan(db.Model):
    __tablename__ = "compliance_scans"

    id = db.Column(db.Integer, primary_key=True)
    scan_uid = db.Column(db.String(32), nullable=False, unique=True)
    scope_key = db.Column(db.String(7), nullable=False, index=True)
    run_id = db.Column(db.String(64))
    reasons = db.Column(db.JSON)
    employee_count = db.Column(db.Integer, default=0)
    excluded_count = db.Column(db.Integer, default=0)
    violation_count = db.Column(db.Integer, default=0)
    anomaly_count = db.Column(db.Integer, default=0)
    summary = db.Column(db.JSON)
    anomalies = db.Column(db.JSON)
    generated_at = db.Column(db.DateTime, nullable=False)
    completed_at = db.Column(db.DateTime)

    def to_dict(self, with_anomalies=False):
        d = dict(self.summary or {})
        d.update({
            "id": self.id,
            "scanId": self.scan_uid,
            "scope": self.scope_key,
            "runId": self.run_id,
            "reasons": self.reasons or [],
            "employeeCount": self.employee_count,
            "excludedCount": self.excluded_count,
            "violationCount": self.violation_count,
            "anomalyCount": self.anomaly_count,
            "generatedAt": self.generated_at.isoformat() if self.generated_at else None,
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
        })
        if with_anomalies:
            d["anomalies"] = self.anomalies or []
        return d


class EmployeeRiskReport(db.Model):
    """Latest report per employee per scope; each scan supersedes the previous one."""
    __tablename__ = "compliance_reports"

    id = db.Column(db.Integer, primary_key=True)
    scan_id = db.Column(db.Integer, db.ForeignKey("compliance_scans.id", ondelete="SET NULL"))
    scope_key = db.Column(db.String(7), nullable=False, index=True)
    employee_id = db.Column(db.String(64), nullable=False)
    employee_name = db.Column(db.String(200))
    risk_score = db.Column(db.Integer, nullable=False, default=0)
    risk_level = db.Column(db.String(10), nullable=False, default="Low")
    violation_count = db.Column(db.Integer, nullable=False, default=0)
    violations = db.Column(db.JSON)
    category_scores = db.Column(db.JSON)
    generated_at = db.Column(db.DateTime, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("scope_key", "employee_id", name="uq_compliance_report_scope_emp"),
        db.Index("ix_compliance_report_level", "scope_key", "risk_level"),
    )

    def to_summary(self):
        return {
            "employeeId": self.employee_id,
            "employeeName": self.employee_name,
            "riskScore": self.risk_score,
            "riskLevel": self.risk_level,
            "violationCount": self.violation_count,
            "categoryScores": self.category_scores or {},
            "generatedAt": self.generated_at.isoformat() if self.generated_at else None,
        }

    def to_dict(self):
        d = self.to_summary()
        d["scope"] = self.scope_key
        d["violations"] = self.violations or []
        return d
