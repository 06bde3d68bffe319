# compliance_api/services/schema_adapter.py
"""
Upstream HR and payroll feeds do not agree on field names.

Each record kind has a declarative alias table (canonical field -> ordered
source keys). The adapter resolves a field mapping once per distinct record
shape (its key set) and reuses it for every record of that shape, so rules
only ever see canonical names.

Add a new upstream shape with `register_alias`; rule code stays untouched.
"""
from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

EMPLOYEE_FIELDS: Dict[str, Tuple[str, ...]] = {
    "employee_id": ("employeeId", "empId", "employee_id", "id"),
    "name": ("name", "employeeName", "fullName"),
    "basic_salary": ("basicSalary", "basic", "salary"),
    "da": ("da", "dearnessAllowance"),
    "pan": ("pan", "PAN", "panNumber"),
    "state": ("state", "workState"),
    "job_role": ("jobRole", "role", "designation"),
    "pf_applicable": ("pfApplicable", "pfEnabled", "pfEligible"),
    "esi_applicable": ("esiApplicable", "esiEnabled", "esiEligible"),
    "join_date": ("joinDate", "dateOfJoining", "doj"),
    "exit_date": ("exitDate", "lastWorkingDay", "doe"),
    "tax_regime": ("taxRegime", "regime"),
    "esi_exit_month": ("esiExitMonth",),
    "tds_declaration_amount": ("tdsDeclarationAmount", "declaredInvestments"),
    "tds_proof_amount": ("tdsProofAmount", "provenInvestments"),
}

PAYROLL_FIELDS: Dict[str, Tuple[str, ...]] = {
    "employee_id": ("employeeId", "empId", "employee_id", "id"),
    "employee_name": ("employeeName", "name"),
    "period": ("period", "month", "monthKey"),
    "basic": ("basic", "basicSalary"),
    "da": ("da", "dearnessAllowance"),
    "gross": ("gross", "monthlyGross", "totalEarnings", "earnings"),
    "allowances": ("allowances", "specialAllowance", "otherAllowances"),
    "deductions": ("deductions", "totalDeductions"),
    "net": ("net", "netSalary", "netPay"),
    "pf": ("pf", "pfDeduction", "pfEmployeeContribution", "epf", "epfEmployee", "pfEmployee"),
    "pf_wage": ("pfWage", "pfWages"),
    "employer_epf": ("employerEpf", "epfEmployer", "employerPf"),
    "employer_eps": ("employerEps", "epsEmployer", "employerPension", "eps", "pfPension"),
    "esi": ("esi", "esiDeduction", "esiEmployee", "esiEmployeeContribution"),
    "esi_employer": ("esiEmployer", "esiEmployerContribution", "esiEmployerShare"),
    "pt": ("pt", "ptDeduction", "professionalTax"),
    "tds": ("tds", "tdsDeduction", "incomeTax"),
    "tds_rate": ("tdsRate",),
    "tds_expected": ("tdsExpected", "expectedTds"),
    "reimbursement": ("reimbursement", "reimbursements"),
    "tax_regime": ("taxRegime", "regime"),
    "state": ("state", "workState"),
    "payment_date": ("paymentDate", "paidOn"),
    "processed_at": ("processedAt",),
    "created_at": ("createdAt",),
    "esi_exit_month": ("esiExitMonth",),
    "tds_declaration_amount": ("tdsDeclarationAmount",),
    "tds_proof_amount": ("tdsProofAmount",),
    "remarks": ("remarks", "revisionReason", "adjustmentNote"),
}

ATTENDANCE_FIELDS: Dict[str, Tuple[str, ...]] = {
    "employee_id": ("employeeId", "empId", "employee_id"),
    "date": ("date", "dateKey", "workDate"),
    "status": ("status",),
    "overtime_hours": ("overtimeHours", "otHours"),
    "device_id": ("deviceId", "device"),
    "ip_address": ("ipAddress", "ip"),
    "location": ("location", "geo"),
    "latitude": ("latitude", "lat"),
    "longitude": ("longitude", "lng", "lon"),
    "check_in_time": ("checkInTime", "timestamp", "checkIn"),
    "time": ("time", "punchTime"),
}

DEPOSIT_FIELDS: Dict[str, Tuple[str, ...]] = {
    "pf_paid_date": ("pfPaidDate", "pfDepositDate"),
    "esi_paid_date": ("esiPaidDate", "esiDepositDate"),
    "tds_paid_date": ("tdsPaidDate", "tdsDepositDate"),
    "tds_challan_date": ("tdsChallanDate", "challanDate"),
}


class SchemaAdapter:
    def __init__(self, fields: Mapping[str, Sequence[str]]):
        self._fields: Dict[str, Tuple[str, ...]] = {k: tuple(v) for k, v in fields.items()}
        self._cache: Dict[frozenset, Dict[str, Optional[str]]] = {}

    @property
    def fields(self) -> Tuple[str, ...]:
        return tuple(self._fields)

    def register_alias(self, field: str, alias: str, first: bool = False) -> None:
        """Teach the adapter a new source key for `field` (appended unless `first`)."""
        current = self._fields.get(field, ())
        if alias in current:
            return
        self._fields[field] = (alias,) + current if first else current + (alias,)
        self._cache.clear()

    def mapping_for(self, record: Mapping[str, Any]) -> Dict[str, Optional[str]]:
        shape = frozenset(record.keys())
        mapping = self._cache.get(shape)
        if mapping is None:
            mapping = {
                field: next((a for a in aliases if a in shape), None)
                for field, aliases in self._fields.items()
            }
            self._cache[shape] = mapping
        return mapping

    def read(self, record: Mapping[str, Any]) -> Dict[str, Any]:
        mapping = self.mapping_for(record)
        return {field: (record.get(src) if src else None) for field, src in mapping.items()}


class Adapters:
    """One adapter per record kind; build a fresh set per scan."""

    def __init__(self, employee: SchemaAdapter | None = None,
                 payroll: SchemaAdapter | None = None,
                 attendance: SchemaAdapter | None = None,
                 deposits: SchemaAdapter | None = None):
        self.employee = employee or SchemaAdapter(EMPLOYEE_FIELDS)
        self.payroll = payroll or SchemaAdapter(PAYROLL_FIELDS)
        self.attendance = attendance or SchemaAdapter(ATTENDANCE_FIELDS)
        self.deposits = deposits or SchemaAdapter(DEPOSIT_FIELDS)

    def register_alias(self, kind: str, field: str, alias: str, first: bool = False) -> None:
        adapter = getattr(self, kind, None)
        if not isinstance(adapter, SchemaAdapter):
            raise ValueError(f"unknown record kind {kind!r}")
        adapter.register_alias(field, alias, first=first)
