# compliance_api/services/rules/attendance_fraud.py
from __future__ import annotations

import math
from collections import Counter
from itertools import pairwise
from typing import TYPE_CHECKING, List

from compliance_api.services.geofence import GeofenceService
from compliance_api.services.records import EmployeeSlice
from compliance_api.services.rules.base import HIGH, LOW, MEDIUM, Violation

if TYPE_CHECKING:
    from compliance_api.services.compliance_engine import EngineContext

CATEGORY = "ATTENDANCE"


def evaluate(ctx: "EngineContext", sl: EmployeeSlice) -> List[Violation]:
    s = sl.attendance
    if s is None or not s.daily:
        return []
    p = ctx.policy
    out: List[Violation] = []

    if len(s.devices) >= p.fraud_devices_per_employee:
        out.append(Violation(
            type="Attendance Device Cloning",
            severity=MEDIUM,
            message=f"Attendance was marked from {len(s.devices)} different devices this month.",
            recommended_fix="Bind the employee to a registered device and verify the extra devices.",
            category=CATEGORY,
            rule_id="ATT-DEVICES",
        ))

    shared_devices = sorted(d for d in s.devices if ctx.device_usage.get(d, 0) >= p.fraud_device_shared_by)
    shared_ips = sorted(ip for ip in s.ip_addresses if ctx.ip_usage.get(ip, 0) >= p.fraud_ip_shared_by)
    if shared_devices or shared_ips:
        parts = []
        if shared_devices:
            parts.append("device(s) " + ", ".join(shared_devices))
        if shared_ips:
            parts.append("IP(s) " + ", ".join(shared_ips))
        out.append(Violation(
            type="Shared Device/IP",
            severity=MEDIUM,
            message="Attendance shares " + " and ".join(parts) + " with other employees.",
            recommended_fix="Investigate proxy attendance and enforce one device per employee.",
            category=CATEGORY,
            rule_id="ATT-SHARED",
        ))

    stamps = Counter(r.check_in_raw for r in s.daily if r.check_in_raw)
    reused = sorted(ts for ts, n in stamps.items() if n >= p.fraud_timestamp_repeats)
    if reused:
        out.append(Violation(
            type="Attendance Timestamp Reuse",
            severity=MEDIUM,
            message=f"Check-in timestamp {reused[0]} was recorded {stamps[reused[0]]} times.",
            recommended_fix="Audit the attendance source for copied or scripted entries.",
            category=CATEGORY,
            rule_id="ATT-TIMESTAMP",
        ))

    ordered = sorted(s.daily, key=lambda r: r.moment)
    for prev, cur in pairwise(ordered):
        if prev.check_in_time is None or cur.check_in_time is None:
            continue
        hours = (cur.check_in_time - prev.check_in_time).total_seconds() / 3600.0
        if hours >= p.travel_window_hours:
            continue
        km = GeofenceService.calculate_distance_km(prev.latitude, prev.longitude, cur.latitude, cur.longitude)
        if math.isfinite(km) and km > p.travel_distance_km:
            speed = GeofenceService.travel_speed_kmh(km, hours)
            out.append(Violation(
                type="Impossible Travel",
                severity=HIGH,
                message=(f"Check-ins {km:.0f} km apart within {hours:.1f}h "
                         f"(~{speed:.0f} km/h) on {prev.date} and {cur.date}."),
                recommended_fix="Verify the geo-tags of these check-ins and block location spoofing.",
                category=CATEGORY,
                rule_id="ATT-TRAVEL",
            ))
            break

    recent = ordered[-p.perfect_run_days:]
    if (len(recent) >= p.perfect_run_days and all(r.is_present for r in recent)
            and s.attendance_rate < p.perfect_run_rate):
        out.append(Violation(
            type="Suspicious Attendance Pattern",
            severity=LOW,
            message=(f"Last {p.perfect_run_days} days are all present while the monthly rate is "
                     f"{s.attendance_rate * 100:.0f}%."),
            recommended_fix="Review recent attendance entries for back-filled records.",
            category=CATEGORY,
            rule_id="ATT-PATTERN",
        ))

    return out
