# compliance_api/services/normalizer.py
from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from datetime import date, datetime, time, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from compliance_api.services.records import ZERO, Employee, PayrollRecord, StatutoryPayments
from compliance_api.services.schema_adapter import Adapters, SchemaAdapter

log = logging.getLogger(__name__)

MONTH_RE = re.compile(r"^\s*(\d{4})-(\d{1,2})(?:-\d{1,2})?")

# keys whose values are carried from a payroll run onto its child rows
RUN_LEVEL_KEYS = ("paymentDate", "processedAt", "createdAt", "period")
RUN_ROW_KEYS = ("payrollData", "records")

_TRUE = {"1", "true", "yes", "y", "on", "enabled"}


# ---------------- coercion ----------------

def to_decimal(value: Any, default: Decimal = ZERO) -> Decimal:
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, Decimal):
        return value if value.is_finite() else default
    if isinstance(value, (int, float)):
        d = Decimal(str(value))
        return d if d.is_finite() else default
    s = str(value).replace(",", "").replace("₹", "").strip()
    if not s:
        return default
    try:
        d = Decimal(s)
    except (InvalidOperation, ValueError):
        return default
    return d if d.is_finite() else default


def to_optional_decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    d = to_decimal(value, default=Decimal("NaN"))
    return None if d.is_nan() else d


def to_float(value: Any, default: float = 0.0) -> float:
    d = to_decimal(value, default=Decimal("NaN"))
    return default if d.is_nan() else float(d)


def to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float, Decimal)):
        return value != 0
    if value is None:
        return False
    return str(value).strip().lower() in _TRUE


def to_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def parse_datetime(value: Any) -> Optional[datetime]:
    """Accept datetimes, dates, ISO strings and epoch seconds/millis; return naive UTC."""
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime.combine(value, time.min)
    elif isinstance(value, (int, float, Decimal)):
        ts = float(value)
        if ts > 1e11:
            ts /= 1000.0
        try:
            dt = datetime.fromtimestamp(ts, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    else:
        s = str(value).strip()
        if not s:
            return None
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(s)
        except ValueError:
            return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def month_key(value: Any) -> Optional[str]:
    """'2025-9', '2025-09-14', datetime -> '2025-09'; None when not a month."""
    if value is None:
        return None
    if isinstance(value, (datetime, date)):
        return f"{value.year:04d}-{value.month:02d}"
    m = MONTH_RE.match(str(value))
    if not m:
        return None
    year, month = int(m.group(1)), int(m.group(2))
    if not 1 <= month <= 12:
        return None
    return f"{year:04d}-{month:02d}"


def month_bounds(key: str) -> Tuple[datetime, datetime]:
    year, month = int(key[:4]), int(key[5:7])
    start = datetime(year, month, 1)
    end = datetime(year + 1, 1, 1) if month == 12 else datetime(year, month + 1, 1)
    return start, end


def iter_records(raw: Any) -> Iterator[Tuple[Optional[str], Any]]:
    """Yield (key, record) from either a list of records or a keyed mapping."""
    if raw is None:
        return
    if isinstance(raw, Mapping):
        for key, value in raw.items():
            yield str(key), value
    elif isinstance(raw, (list, tuple)):
        for item in raw:
            yield None, item
    else:
        log.warning("Ignoring collection of unsupported type %s", type(raw).__name__)


# ---------------- employees ----------------

def normalize_employees(raw: Any, adapter: SchemaAdapter | None = None
                        ) -> Tuple[List[Employee], List[Dict[str, Any]]]:
    """Returns (employees, excluded). Records without an identifier are excluded."""
    adapter = adapter or Adapters().employee
    employees: List[Employee] = []
    excluded: List[Dict[str, Any]] = []
    seen = set()

    for pos, (key, record) in enumerate(iter_records(raw)):
        if not isinstance(record, Mapping):
            excluded.append({"position": pos, "key": key, "reason": "not an object"})
            log.warning("Excluding employee entry %s: not an object", key or pos)
            continue
        f = adapter.read(record)
        emp_id = to_text(f["employee_id"]) or to_text(key)
        if not emp_id:
            excluded.append({"position": pos, "key": key, "reason": "missing employee identifier"})
            log.warning("Excluding employee record at position %s: missing identifier", pos)
            continue
        if emp_id in seen:
            excluded.append({"position": pos, "key": emp_id, "reason": "duplicate employee identifier"})
            log.warning("Excluding duplicate employee record %s", emp_id)
            continue
        seen.add(emp_id)

        employees.append(Employee(
            employee_id=emp_id,
            name=to_text(f["name"]) or "Unknown Employee",
            basic_salary=to_decimal(f["basic_salary"]),
            da=to_decimal(f["da"]),
            pan=to_text(f["pan"]),
            state=to_text(f["state"]),
            job_role=to_text(f["job_role"]),
            pf_applicable=to_bool(f["pf_applicable"]),
            esi_applicable=to_bool(f["esi_applicable"]),
            join_date=parse_datetime(f["join_date"]),
            exit_date=parse_datetime(f["exit_date"]),
            tax_regime=to_text(f["tax_regime"]),
            esi_exit_month=month_key(f["esi_exit_month"]),
            tds_declaration_amount=to_decimal(f["tds_declaration_amount"]),
            tds_proof_amount=to_decimal(f["tds_proof_amount"]),
            raw=dict(record),
        ))
    return employees, excluded


def employed_during(employee: Employee, key: str) -> bool:
    """Joined on/before month end and not exited before month start."""
    start, end = month_bounds(key)
    if employee.join_date and employee.join_date >= end:
        return False
    if employee.exit_date and employee.exit_date < start:
        return False
    return True


def duplicate_pans(employees: Iterable[Employee]) -> Dict[str, List[str]]:
    """PAN -> employee ids, for PANs held by more than one employee. Case and spacing are ignored."""
    holders: Dict[str, List[str]] = {}
    for emp in employees:
        pan = re.sub(r"\s+", "", emp.pan or "").upper()
        if pan:
            holders.setdefault(pan, []).append(emp.employee_id)
    return {pan: ids for pan, ids in holders.items() if len(ids) > 1}


# ---------------- payroll ----------------

def _run_period(run: Mapping) -> Optional[str]:
    period = month_key(run.get("period"))
    if period:
        return period
    month, year = run.get("month"), run.get("year")
    if year is not None and month is not None:
        return month_key(f"{year}-{month}")
    return month_key(month)


def _flatten_payroll(raw: Any) -> Iterator[Tuple[Optional[str], Any]]:
    """Payroll may arrive as flat rows or as runs carrying `payrollData` / `records` rows."""
    for key, item in iter_records(raw):
        rows = None
        if isinstance(item, Mapping):
            rows = next((item[k] for k in RUN_ROW_KEYS if isinstance(item.get(k), (list, tuple))), None)
        if isinstance(rows, (list, tuple)):
            inherited = {k: item[k] for k in RUN_LEVEL_KEYS if item.get(k) is not None}
            period = _run_period(item)
            if period and "period" not in inherited:
                inherited["period"] = period
            for row in rows:
                if isinstance(row, Mapping):
                    merged = dict(inherited)
                    merged.update({k: v for k, v in row.items() if v is not None})
                    yield None, merged
                else:
                    yield None, row
        else:
            yield key, item


def normalize_payroll(raw: Any, adapter: SchemaAdapter | None = None
                      ) -> Tuple[List[PayrollRecord], int]:
    """Returns (records, skipped_count)."""
    adapter = adapter or Adapters().payroll
    records: List[PayrollRecord] = []
    skipped = 0

    for index, (key, row) in enumerate(_flatten_payroll(raw)):
        if not isinstance(row, Mapping):
            skipped += 1
            continue
        f = adapter.read(row)
        emp_id = to_text(f["employee_id"])
        if not emp_id:
            skipped += 1
            log.warning("Skipping payroll record %s without employee identifier", key or index)
            continue

        basic = to_decimal(f["basic"])
        allowances = to_decimal(f["allowances"])
        gross = to_decimal(f["gross"])
        if gross == 0:
            gross = basic + allowances

        records.append(PayrollRecord(
            employee_id=emp_id,
            employee_name=to_text(f["employee_name"]),
            period=month_key(f["period"]),
            basic=basic,
            da=to_decimal(f["da"]),
            gross=gross,
            allowances=allowances,
            deductions=to_decimal(f["deductions"]),
            net=to_decimal(f["net"]),
            pf=to_decimal(f["pf"]),
            pf_wage=to_optional_decimal(f["pf_wage"]),
            employer_epf=to_decimal(f["employer_epf"]),
            employer_eps=to_decimal(f["employer_eps"]),
            esi=to_decimal(f["esi"]),
            esi_employer=to_decimal(f["esi_employer"]),
            pt=to_decimal(f["pt"]),
            tds=to_decimal(f["tds"]),
            tds_rate=to_optional_decimal(f["tds_rate"]),
            tds_expected=to_decimal(f["tds_expected"]),
            reimbursement=to_decimal(f["reimbursement"]),
            tax_regime=to_text(f["tax_regime"]),
            state=to_text(f["state"]),
            payment_date=parse_datetime(f["payment_date"]),
            processed_at=parse_datetime(f["processed_at"]),
            created_at=parse_datetime(f["created_at"]),
            esi_exit_month=month_key(f["esi_exit_month"]),
            tds_declaration_amount=to_decimal(f["tds_declaration_amount"]),
            tds_proof_amount=to_decimal(f["tds_proof_amount"]),
            remarks=to_text(f["remarks"]),
            index=index,
            raw=dict(row),
        ))
    return records, skipped


def build_payroll_history(records: Iterable[PayrollRecord]) -> Dict[str, List[PayrollRecord]]:
    """Group by employee, oldest first. Undated records sort as epoch; ties keep input order."""
    history: Dict[str, List[PayrollRecord]] = {}
    for rec in records:
        history.setdefault(rec.employee_id, []).append(rec)
    for rows in history.values():
        rows.sort(key=lambda r: (r.sort_date, r.index))
    return history


# ---------------- statutory deposits ----------------

def normalize_statutory_payments(raw: Any, adapter: SchemaAdapter | None = None
                                 ) -> Optional[StatutoryPayments]:
    """
    The month's deposit register (PF/ESI/TDS paid dates, TDS challan date).
    Returns None when no register was supplied, so deposit checks stay off.
    """
    if raw is None:
        return None
    if not isinstance(raw, Mapping):
        log.warning("Ignoring statutory payments of type %s", type(raw).__name__)
        return None
    f = (adapter or Adapters().deposits).read(raw)
    return StatutoryPayments(
        pf_paid_date=parse_datetime(f["pf_paid_date"]),
        esi_paid_date=parse_datetime(f["esi_paid_date"]),
        tds_paid_date=parse_datetime(f["tds_paid_date"]),
        tds_challan_date=parse_datetime(f["tds_challan_date"]),
    )
