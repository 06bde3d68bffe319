from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from compliance_api.services.anomaly_detector import detect_anomalies
from compliance_api.services.compliance_engine import build_context, run_engine
from compliance_api.services.report_builder import ScanResult, scan_metadata
from compliance_api.services.rules.policy import RulePolicy
from compliance_api.services.schema_adapter import Adapters
from compliance_api.services.scope_resolver import Scope, ScopeResolutionError, resolve_scope

log = logging.getLogger(__name__)

Listener = Callable[[ScanResult, Dict[str, Any]], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def merge_state_rules(base: Optional[Mapping[str, Any]], override: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Table-level merge: dataset-supplied entries win over configured ones."""
    out: Dict[str, Any] = {k: dict(v) if isinstance(v, Mapping) else v for k, v in (base or {}).items()}
    for key, value in (override or {}).items():
        if isinstance(value, Mapping) and isinstance(out.get(key), dict):
            out[key].update(value)
        else:
            out[key] = value
    return out


class ComplianceScanService:
    """
    resolve scope -> load snapshot -> run rules + anomaly sweep -> persist ->
    notify listeners. Returns None when the scope cannot be resolved.
    """

    def __init__(self, datasets, state_rules_provider: Optional[Callable[[date], Mapping]] = None,
                 sink=None, policy: Optional[RulePolicy] = None,
                 clock: Callable[[], datetime] = _utcnow):
        self.datasets = datasets
        self.state_rules_provider = state_rules_provider
        self.sink = sink
        self.policy = policy or RulePolicy()
        self.clock = clock
        self.adapters = Adapters()
        self._listeners: List[Listener] = []

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def evaluate(self, raw: Mapping[str, Any], scope: Scope, reasons: Sequence[str] = (),
                 generated_at: Optional[datetime] = None) -> ScanResult:
        """Pure evaluation, nothing persisted."""
        generated_at = generated_at or self.clock()
        first_day = date(int(scope.month_key[:4]), int(scope.month_key[5:7]), 1)
        configured = self.state_rules_provider(first_day) if self.state_rules_provider else {}
        state_rules = merge_state_rules(configured, raw.get("stateRules"))

        ctx = build_context(raw, scope.month_key, state_rules=state_rules, policy=self.policy,
                            generated_at=generated_at, adapters=self.adapters)
        reports = run_engine(ctx)
        anomalies = detect_anomalies(raw, self.policy, scope.month_key, self.adapters)

        return ScanResult(
            scan_id=uuid.uuid4().hex,
            scope_key=scope.scope_key,
            month_key=scope.month_key,
            run_id=scope.run_id,
            reasons=tuple(reasons),
            generated_at=generated_at,
            reports=reports,
            anomalies=[a.to_dict() for a in anomalies],
            excluded=list(ctx.excluded_employees),
            rule_failures=list(ctx.rule_failures),
        )

    def run_scan(self, scope_identifier, reasons: Sequence[str] = ()) -> Optional[ScanResult]:
        try:
            scope = resolve_scope(scope_identifier, self.datasets.lookup_run)
        except ScopeResolutionError as e:
            log.warning("Compliance scan aborted: %s", e)
            return None

        raw = self.datasets.load(scope)
        if raw is None:
            log.info("No dataset for scope %s; scanning an empty snapshot", scope.scope_key)
            raw = {}

        log.info("Compliance scan started scope=%s reasons=%s", scope.scope_key, ",".join(reasons) or "-")
        result = self.evaluate(raw, scope, reasons)
        result.completed_at = self.clock()

        if self.sink is not None:
            result.failed_writes = self.sink.write(result)

        meta = scan_metadata(result)
        log.info("Compliance scan finished scope=%s employees=%d violations=%d anomalies=%d failed_writes=%d",
                 scope.scope_key, meta["employeeCount"], meta["violationCount"],
                 meta["anomalyCount"], len(result.failed_writes))

        for listener in list(self._listeners):
            try:
                listener(result, meta)
            except Exception:
                log.exception("Scan completion listener %r failed", listener)
        return result


def log_high_risk(result: ScanResult, meta: Dict[str, Any]) -> None:
    """Default completion listener: surface High and Critical employees in the log."""
    for report in result.high_risk:
        log.warning("High compliance risk scope=%s employee=%s score=%d level=%s violations=%d",
                    result.scope_key, report.employee_id, report.risk_score,
                    report.risk_level, report.violation_count)
