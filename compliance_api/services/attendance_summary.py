# compliance_api/services/attendance_summary.py
from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Mapping
from typing import Any, Dict, Iterator, List, Optional, Tuple

from compliance_api.services.normalizer import (
    month_key as to_month_key, parse_datetime, to_float, to_text,
)
from compliance_api.services.records import AttendanceRecord, AttendanceSummary
from compliance_api.services.schema_adapter import Adapters, SchemaAdapter

log = logging.getLogger(__name__)

LEAVE_STATUSES = {"leave", "on leave", "paid leave", "sick leave", "casual leave"}


def iter_attendance_days(raw: Any, adapter: SchemaAdapter | None = None) -> Iterator[Tuple[str, Optional[List[Tuple[str, Any]]]]]:
    """
    Yield (date_key, entries) where entries is a list of (employee_key, record).
    Accepts {date: {employeeId: record}} or a flat list of rows carrying
    employeeId + date. A day whose value is not a mapping yields entries=None.
    """
    if raw is None:
        return
    if isinstance(raw, Mapping):
        for day, value in raw.items():
            if isinstance(value, Mapping):
                yield str(day), [(str(k), v) for k, v in value.items()]
            else:
                yield str(day), None
        return
    if isinstance(raw, (list, tuple)):
        adapter = adapter or Adapters().attendance
        grouped: Dict[str, List[Tuple[str, Any]]] = {}
        for row in raw:
            if not isinstance(row, Mapping):
                continue
            f = adapter.read(row)
            day = to_text(f["date"]) or ""
            emp = to_text(f["employee_id"]) or ""
            grouped.setdefault(day, []).append((emp, row))
        for day, entries in grouped.items():
            yield day, entries
        return
    log.warning("Ignoring attendance collection of type %s", type(raw).__name__)


def _coords(fields: Dict[str, Any]) -> Tuple[Optional[float], Optional[float]]:
    loc = fields.get("location")
    lat = lng = None
    if isinstance(loc, Mapping):
        lat = loc.get("lat", loc.get("latitude"))
        lng = loc.get("lng", loc.get("longitude", loc.get("lon")))
    elif isinstance(loc, str) and "," in loc:
        lat, lng = loc.split(",", 1)
    if lat is None:
        lat, lng = fields.get("latitude"), fields.get("longitude")
    if lat is None or lng is None:
        return None, None
    return to_float(lat, default=None), to_float(lng, default=None)


def iter_attendance(raw: Any, adapter: SchemaAdapter | None = None) -> Iterator[AttendanceRecord]:
    adapter = adapter or Adapters().attendance
    for day, entries in iter_attendance_days(raw, adapter):
        if entries is None:
            continue
        day_dt = parse_datetime(day)
        for emp_key, record in entries:
            record = record if isinstance(record, Mapping) else {}
            f = adapter.read(record)
            emp_id = to_text(f["employee_id"]) or to_text(emp_key)
            if not emp_id:
                continue
            check_in_raw = to_text(f["check_in_time"])
            punch = to_text(f["time"])
            check_in = parse_datetime(check_in_raw)
            if check_in is None and punch and day_dt is not None:
                check_in = parse_datetime(f"{day_dt.date().isoformat()}T{punch}")
            lat, lng = _coords(f)
            yield AttendanceRecord(
                employee_id=emp_id,
                date=day,
                status=to_text(f["status"]),
                overtime_hours=to_float(f["overtime_hours"]),
                device_id=to_text(f["device_id"]),
                ip_address=to_text(f["ip_address"]),
                latitude=lat,
                longitude=lng,
                check_in_time=check_in,
                check_in_raw=check_in_raw,
                time=punch,
                day=day_dt,
            )


def summarize_attendance(raw: Any, month: Optional[str] = None,
                         adapter: SchemaAdapter | None = None) -> Dict[str, AttendanceSummary]:
    """Per-employee monthly aggregate. Days outside `month` are ignored when it is given."""
    summaries: Dict[str, AttendanceSummary] = {}
    for rec in iter_attendance(raw, adapter):
        if month is not None and to_month_key(rec.date) != month:
            continue
        s = summaries.get(rec.employee_id)
        if s is None:
            s = summaries[rec.employee_id] = AttendanceSummary(employee_id=rec.employee_id)
        s.total_days += 1
        if rec.is_present:
            s.present_days += 1
        elif (rec.status or "").strip().lower() in LEAVE_STATUSES:
            s.leave_days += 1
        s.overtime_hours += rec.overtime_hours
        if rec.device_id:
            s.devices.add(rec.device_id)
        if rec.ip_address:
            s.ip_addresses.add(rec.ip_address)
        s.daily.append(rec)
    return summaries


def shared_usage(summaries: Mapping[str, AttendanceSummary]) -> Tuple[Dict[str, int], Dict[str, int]]:
    """How many distinct employees used each device id / IP address."""
    devices: Counter = Counter()
    ips: Counter = Counter()
    for s in summaries.values():
        devices.update(s.devices)
        ips.update(s.ip_addresses)
    return dict(devices), dict(ips)
