from __future__ import annotations

from typing import Any, Dict, Optional

from compliance_api.extensions import db
from compliance_api.models.compliance import ComplianceDataset
from compliance_api.services.scope_resolver import Scope


class SqlDatasetProvider:
    """Reads the per-month raw snapshot uploaded through the datasets endpoint."""

    def lookup_run(self, run_id: str) -> Optional[str]:
        row = (
            ComplianceDataset.query
            .filter(ComplianceDataset.run_id == run_id)
            .order_by(ComplianceDataset.id.desc())
            .first()
        )
        return row.scope_key if row else None

    def load(self, scope: Scope) -> Optional[Dict[str, Any]]:
        row = ComplianceDataset.query.filter_by(scope_key=scope.scope_key).first()
        return dict(row.payload or {}) if row else None

    def save(self, scope_key: str, payload: Dict[str, Any], run_id: Optional[str] = None) -> ComplianceDataset:
        row = ComplianceDataset.query.filter_by(scope_key=scope_key).first()
        if row is None:
            row = ComplianceDataset(scope_key=scope_key)
            db.session.add(row)
        row.payload = payload
        row.run_id = run_id or payload.get("runId") or row.run_id
        db.session.commit()
        return row
