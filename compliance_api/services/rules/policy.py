# compliance_api/services/rules/policy.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields, replace
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional, Tuple

from compliance_api.services.rules.base import CRITICAL, HIGH, LOW, MEDIUM

log = logging.getLogger(__name__)


def _default_points() -> Dict[str, int]:
    return {LOW: 10, MEDIUM: 20, HIGH: 30, CRITICAL: 40}


@dataclass(frozen=True)
class RulePolicy:
    """
    Every threshold the rules and the risk scorer use. Defaults encode the
    statutory values; override per deployment via COMPLIANCE_POLICY.
    """
    # scoring
    severity_points: Dict[str, int] = field(default_factory=_default_points)
    category_cap: int = 40
    total_cap: int = 100
    level_breakpoints: Tuple[Tuple[int, str], ...] = ((20, LOW), (50, MEDIUM), (75, HIGH))
    top_level: str = CRITICAL

    # provident fund
    pf_wage_ceiling: Decimal = Decimal("15000")
    pf_employee_rate: Decimal = Decimal("0.12")
    pf_employer_rate: Decimal = Decimal("0.12")
    pf_eps_rate: Decimal = Decimal("0.0833")
    pf_tolerance: Decimal = Decimal("1")
    pf_employer_tolerance: Decimal = Decimal("2")
    pf_avoidance_band: Tuple[Decimal, Decimal] = (Decimal("14000"), Decimal("16000"))
    pf_fluctuation_ratio: Decimal = Decimal("0.2")
    pf_deposit_due_day: int = 15

    # employee state insurance
    esi_wage_ceiling: Decimal = Decimal("21000")
    esi_employee_rate: Decimal = Decimal("0.0075")
    esi_employer_rate: Decimal = Decimal("0.0325")
    esi_employee_tolerance: Decimal = Decimal("2")
    esi_employer_tolerance: Decimal = Decimal("5")
    esi_oscillation_window: int = 3
    esi_deposit_due_day: int = 15

    # professional tax
    pt_tolerance: Decimal = Decimal("1")
    pt_double_factor: Decimal = Decimal("1.5")

    # income tax
    tds_pan_missing_rate: Decimal = Decimal("0.20")
    tds_tolerance: Decimal = Decimal("10")
    tds_proof_gap: Decimal = Decimal("1000")
    tds_annual_threshold: Decimal = Decimal("1000000")
    payroll_tax_regime: Optional[str] = None
    tds_flat_salary_change: Decimal = Decimal("0.05")
    tds_deposit_due_day: int = 7

    # minimum wage
    min_wage_floor: Decimal = Decimal("0")

    # overtime (hours)
    overtime_daily_limit: float = 2.0
    overtime_monthly_warning: Optional[float] = 40.0
    overtime_monthly_limit: float = 50.0

    # attendance integrity
    fraud_devices_per_employee: int = 3
    fraud_device_shared_by: int = 3
    fraud_ip_shared_by: int = 5
    fraud_timestamp_repeats: int = 3
    travel_distance_km: float = 300.0
    travel_window_hours: float = 2.0
    perfect_run_days: int = 5
    perfect_run_rate: float = 0.8

    # salary anomalies
    salary_baseline_size: int = 3
    salary_spike_multiplier: Decimal = Decimal("1.4")
    reimbursement_spike_multiplier: Decimal = Decimal("1.5")
    deduction_drop_ratio: Decimal = Decimal("0.5")
    basic_share_floor: Decimal = Decimal("0.35")

    # data anomaly sweep
    net_swing_ratio: Decimal = Decimal("0.25")

    @classmethod
    def from_overrides(cls, overrides: Optional[Mapping[str, Any]]) -> "RulePolicy":
        base = cls()
        if not overrides:
            return base
        known = {f.name for f in fields(cls)}
        changes: Dict[str, Any] = {}
        for key, value in overrides.items():
            if key not in known:
                log.warning("Ignoring unknown compliance policy key %r", key)
                continue
            current = getattr(base, key)
            if isinstance(current, Decimal) and value is not None:
                value = Decimal(str(value))
            elif key == "severity_points":
                value = {**current, **dict(value)}
            elif key == "level_breakpoints":
                value = tuple((int(limit), str(level)) for limit, level in value)
            elif key == "pf_avoidance_band":
                low, high = value
                value = (Decimal(str(low)), Decimal(str(high)))
            changes[key] = value
        return replace(base, **changes)

    def points(self, severity: str) -> int:
        return int(self.severity_points.get(severity, 0))
