# compliance_api/services/records.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Set

ZERO = Decimal("0")
EPOCH = datetime(1970, 1, 1)

PRESENT_STATUSES = {"present", "late", "halfday", "half day", "half-day"}


@dataclass
class Employee:
    employee_id: str
    name: str
    basic_salary: Decimal = ZERO
    da: Decimal = ZERO
    pan: Optional[str] = None
    state: Optional[str] = None
    job_role: Optional[str] = None
    pf_applicable: bool = False
    esi_applicable: bool = False
    join_date: Optional[datetime] = None
    exit_date: Optional[datetime] = None
    tax_regime: Optional[str] = None
    esi_exit_month: Optional[str] = None
    tds_declaration_amount: Decimal = ZERO
    tds_proof_amount: Decimal = ZERO
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)


@dataclass
class PayrollRecord:
    employee_id: str
    employee_name: Optional[str] = None
    period: Optional[str] = None
    basic: Decimal = ZERO
    da: Decimal = ZERO
    gross: Decimal = ZERO
    allowances: Decimal = ZERO
    deductions: Decimal = ZERO
    net: Decimal = ZERO
    pf: Decimal = ZERO
    pf_wage: Optional[Decimal] = None
    employer_epf: Decimal = ZERO
    employer_eps: Decimal = ZERO
    esi: Decimal = ZERO
    esi_employer: Decimal = ZERO
    pt: Decimal = ZERO
    tds: Decimal = ZERO
    tds_rate: Optional[Decimal] = None
    tds_expected: Decimal = ZERO
    reimbursement: Decimal = ZERO
    tax_regime: Optional[str] = None
    state: Optional[str] = None
    payment_date: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    esi_exit_month: Optional[str] = None
    tds_declaration_amount: Decimal = ZERO
    tds_proof_amount: Decimal = ZERO
    remarks: Optional[str] = None
    index: int = 0
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def sort_date(self) -> datetime:
        stamp = self.payment_date or self.processed_at or self.created_at
        if stamp:
            return stamp
        if self.period:
            return datetime(int(self.period[:4]), int(self.period[5:7]), 1)
        return EPOCH

    @property
    def month_key(self) -> Optional[str]:
        if self.period:
            return self.period
        stamp = self.payment_date or self.processed_at or self.created_at
        return stamp.strftime("%Y-%m") if stamp else None


@dataclass
class AttendanceRecord:
    employee_id: str
    date: str
    status: Optional[str] = None
    overtime_hours: float = 0.0
    device_id: Optional[str] = None
    ip_address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    check_in_time: Optional[datetime] = None
    check_in_raw: Optional[str] = None
    time: Optional[str] = None
    day: Optional[datetime] = None

    @property
    def is_present(self) -> bool:
        return (self.status or "").strip().lower() in PRESENT_STATUSES

    @property
    def moment(self) -> datetime:
        return self.check_in_time or self.day or EPOCH


@dataclass
class AttendanceSummary:
    employee_id: str
    total_days: int = 0
    present_days: int = 0
    leave_days: int = 0
    overtime_hours: float = 0.0
    devices: Set[str] = field(default_factory=set)
    ip_addresses: Set[str] = field(default_factory=set)
    daily: List[AttendanceRecord] = field(default_factory=list)

    @property
    def attendance_rate(self) -> float:
        return self.present_days / self.total_days if self.total_days else 0.0


@dataclass
class StatutoryPayments:
    pf_paid_date: Optional[datetime] = None
    esi_paid_date: Optional[datetime] = None
    tds_paid_date: Optional[datetime] = None
    tds_challan_date: Optional[datetime] = None


@dataclass
class EmployeeSlice:
    """Everything the rules see for one employee in one scan."""
    employee: Employee
    history: List[PayrollRecord] = field(default_factory=list)
    attendance: Optional[AttendanceSummary] = None

    @property
    def current(self) -> Optional[PayrollRecord]:
        return self.history[-1] if self.history else None

    @property
    def baseline(self) -> List[PayrollRecord]:
        return self.history[:-1]


def basic_pay(record: Optional[PayrollRecord], employee: Employee) -> Decimal:
    if record is not None and record.basic > 0:
        return record.basic
    return employee.basic_salary
