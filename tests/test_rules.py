from datetime import datetime
from decimal import Decimal

import pytest

from compliance_api.services.compliance_engine import build_context
from compliance_api.services.records import AttendanceRecord, AttendanceSummary, Employee, EmployeeSlice
from compliance_api.services.rules import (
    attendance_fraud, esi, min_wage, overtime, pf, pt, salary_anomaly, tds,
)
from compliance_api.services.rules.base import HIGH, LOW, MEDIUM
from compliance_api.services.rules.policy import RulePolicy

GEN = datetime(2025, 10, 1, 9, 0)

MH_RULES = {
    "ptSlabs": {
        "MH": [
            {"min": 0, "max": 7500, "amount": 0},
            {"min": 7501, "max": 10000, "amount": 175},
            {"min": 10001, "amount": 200},
        ]
    }
}

PUNE = (18.5204, 73.8567)
HYDERABAD = (17.3850, 78.4867)


def _ctx(employees, payroll=(), attendance=None, state_rules=None, policy=None, month="2025-09",
         statutory=None):
    dataset = {"employees": list(employees), "payroll": list(payroll), "attendance": attendance or {}}
    if statutory is not None:
        dataset["statutoryPayments"] = statutory
    return build_context(dataset, month, state_rules=state_rules or {}, policy=policy, generated_at=GEN)


def _slice(ctx, emp_id="E1"):
    emp = next(e for e in ctx.employees if e.employee_id == emp_id)
    return ctx.slice_for(emp)


def _run(rule, employees, payroll=(), **kw):
    ctx = _ctx(employees, payroll, **kw)
    return rule.evaluate(ctx, _slice(ctx))


def _ids(violations):
    return [v.rule_id for v in violations]


def _pay(**fields):
    row = {"employeeId": "E1", "period": "2025-09"}
    row.update(fields)
    return row


EMP = {"employeeId": "E1", "name": "Asha", "state": "MH", "pan": "ABCDE1234F"}


# ---------------- PF ----------------

def test_pf_eligible_without_deduction_is_single_high_finding():
    out = _run(pf, [dict(EMP, basicSalary=12000)], [_pay(basic=12000, gross=12000, pf=0)])
    assert len(out) == 1
    assert out[0].type == "PF Eligibility"
    assert out[0].severity == HIGH
    assert out[0].category == "PF"


def test_pf_correct_split_passes():
    out = _run(pf, [EMP], [_pay(basic=15000, gross=15000, pf=1800, employerEpf=550.5, employerEps=1249.5)])
    assert out == []


def test_pf_eps_above_cap():
    out = _run(pf, [EMP], [_pay(basic=15000, gross=15000, pf=1800, employerEpf=300, employerEps=1500)])
    assert _ids(out) == ["PF-EPS-CAP"]


def test_pf_reported_wage_mismatch():
    out = _run(pf, [EMP], [_pay(basic=10000, da=2000, pfWage=10000, gross=12000, pf=1200)])
    assert _ids(out) == ["PF-WAGE"]


def test_pf_employee_share_mismatch():
    out = _run(pf, [EMP], [_pay(basic=12000, gross=12000, pf=1000)])
    assert _ids(out) == ["PF-EMPLOYEE-SHARE"]
    assert out[0].severity == HIGH


def test_pf_not_eligible_above_ceiling():
    assert _run(pf, [EMP], [_pay(basic=30000, gross=40000, pf=0)]) == []


def test_pf_flagged_employee_above_ceiling_is_eligible():
    out = _run(pf, [dict(EMP, pfApplicable=True)], [_pay(basic=30000, gross=40000, pf=0)])
    assert _ids(out) == ["PF-ELIGIBILITY"]


def test_pf_former_member_attending_without_deduction():
    rows = [_pay(period="2025-08", basic=20000, gross=20000, pf=2400, employerEpf=1150.5, employerEps=1249.5),
            _pay(basic=20000, gross=20000, pf=0)]
    att = {"2025-09-01": {"E1": {"status": "Present"}}}
    out = _run(pf, [EMP], rows, attendance=att)
    assert _ids(out) == ["PF-ATTENDANCE"]
    assert out[0].severity == HIGH

    assert _run(pf, [EMP], rows) == []


def test_pf_gross_parked_around_ceiling():
    out = _run(pf, [EMP], [_pay(basic=15500, gross=15500, pf=0)])
    assert _ids(out) == ["PF-AVOIDANCE"]
    assert out[0].severity == MEDIUM

    assert _run(pf, [EMP], [_pay(basic=16500, gross=16500, pf=0)]) == []


def test_pf_swing_without_revision():
    rows = [_pay(period="2025-08", basic=10000, gross=10000, pf=1200),
            _pay(basic=14000, gross=14000, pf=1680)]
    assert _ids(_run(pf, [EMP], rows)) == ["PF-FLUCTUATION"]

    rows[-1]["remarks"] = "Annual increment"
    assert _run(pf, [EMP], rows) == []


@pytest.mark.parametrize("paid,expected", [
    ("2025-10-15", []),
    ("2025-10-16", ["PF-DEPOSIT-LATE"]),
])
def test_pf_deposit_due_on_fifteenth_of_next_month(paid, expected):
    row = _pay(basic=15000, gross=15000, pf=1800, employerEpf=550.5, employerEps=1249.5)
    out = _run(pf, [EMP], [row], statutory={"pfPaidDate": paid})
    assert _ids(out) == expected


def test_pf_messages_follow_policy_rate():
    policy = RulePolicy(pf_employee_rate=Decimal("0.10"))
    out = _run(pf, [dict(EMP, basicSalary=12000)], [_pay(basic=12000, gross=12000, pf=0)], policy=policy)
    assert "deduct 10% of the PF wage" in out[0].recommended_fix



# ---------------- ESI ----------------

def test_esi_eligible_without_deduction():
    out = _run(esi, [EMP], [_pay(gross=20000)])
    assert len(out) == 1
    assert out[0].severity == HIGH
    assert out[0].rule_id == "ESI-ELIGIBILITY"


def test_esi_not_applicable_above_ceiling():
    assert _run(esi, [EMP], [_pay(gross=22000)]) == []


def test_esi_employee_share_mismatch():
    out = _run(esi, [EMP], [_pay(gross=20000, esi=100)])
    assert _ids(out) == ["ESI-EMPLOYEE-SHARE"]
    assert out[0].severity == MEDIUM


def test_esi_correct_shares_pass():
    assert _run(esi, [EMP], [_pay(gross=20000, esi=150, esiEmployer=650)]) == []


def test_esi_exit_required_after_crossing_ceiling():
    out = _run(esi, [EMP], [_pay(gross=22000, esi=165)])
    assert _ids(out) == ["ESI-EXIT"]

    recorded = _run(esi, [dict(EMP, esiExitMonth="2025-09")], [_pay(gross=22000, esi=165)])
    assert recorded == []


def test_esi_share_message_shows_rate():
    out = _run(esi, [EMP], [_pay(gross=20000, esi=100)])
    assert "0.75% of gross" in out[0].message


def test_esi_deducted_without_attendance():
    emps = [EMP, {"employeeId": "E2", "name": "Ravi"}]
    att = {"2025-09-01": {"E1": {"status": "Absent"}, "E2": {"status": "Present"}}}
    out = _run(esi, emps, [_pay(gross=20000, esi=150, esiEmployer=650)], attendance=att)
    assert _ids(out) == ["ESI-NO-ATTENDANCE"]
    assert out[0].severity == LOW


def test_esi_gross_oscillating_across_ceiling():
    shares = {"esi": 150, "esiEmployer": 650}
    rows = [_pay(period="2025-07", gross=20000, **shares),
            _pay(period="2025-08", gross=22000, esi=165),
            _pay(gross=20000, **shares)]
    out = _run(esi, [EMP], rows)
    assert _ids(out) == ["ESI-OSCILLATION"]

    steady = [_pay(period=p, gross=20000, **shares) for p in ("2025-07", "2025-08", "2025-09")]
    assert _run(esi, [EMP], steady) == []


@pytest.mark.parametrize("paid,expected", [
    ("2025-10-15", []),
    ("2025-10-20", ["ESI-DEPOSIT-LATE"]),
])
def test_esi_deposit_due_on_fifteenth_of_next_month(paid, expected):
    out = _run(esi, [EMP], [_pay(gross=20000, esi=150, esiEmployer=650)], statutory={"esiPaidDate": paid})
    assert _ids(out) == expected



# ---------------- PT ----------------

@pytest.mark.parametrize("gross,deducted,expected", [
    (20000, 200, []),
    (20000, 0, ["PT-MISSING"]),
    (20000, 400, ["PT-DOUBLE"]),
    (20000, 175, ["PT-SLAB"]),
    (9000, 175, []),
    (5000, 0, []),
])
def test_pt_slabs(gross, deducted, expected):
    out = _run(pt, [EMP], [_pay(gross=gross, pt=deducted)], state_rules=MH_RULES)
    assert _ids(out) == expected


def test_pt_missing_is_high():
    out = _run(pt, [EMP], [_pay(gross=20000, pt=0)], state_rules=MH_RULES)
    assert out[0].severity == HIGH


def test_pt_deducted_in_state_without_slabs():
    out = _run(pt, [dict(EMP, state="KA")], [_pay(gross=20000, pt=200)], state_rules=MH_RULES)
    assert [v.type for v in out] == ["PT Deduction Invalid State"]


def test_pt_default_slabs_apply_to_unknown_state():
    rules = {"ptSlabs": {"default": [{"min": 0, "amount": 150}]}}
    out = _run(pt, [dict(EMP, state="GJ")], [_pay(gross=20000, pt=150)], state_rules=rules)
    assert out == []


def test_match_slab_rejects_gross_past_last_bound():
    slabs = [{"min": 0, "max": 7500, "amount": 0}, {"min": 7501, "max": 10000, "amount": 175}]
    assert pt.match_slab(slabs, 10000)["amount"] == 175
    assert pt.match_slab(slabs, 10001) is None


def test_pt_double_message_follows_policy():
    policy = RulePolicy(pt_double_factor=Decimal("2"))
    out = _run(pt, [EMP], [_pay(gross=20000, pt=500)], state_rules=MH_RULES, policy=policy)
    assert _ids(out) == ["PT-DOUBLE"]
    assert "more than 2x" in out[0].message



# ---------------- TDS ----------------

def test_tds_without_pan_below_twenty_percent():
    emp = {"employeeId": "E1", "name": "Asha"}
    out = _run(tds, [emp], [_pay(gross=50000, tds=0)])
    assert _ids(out) == ["TDS-PAN"]
    assert out[0].severity == HIGH


def test_tds_without_pan_at_twenty_percent_rate_passes():
    emp = {"employeeId": "E1", "name": "Asha"}
    assert _run(tds, [emp], [_pay(gross=50000, tds=10000, tdsRate=20)]) == []


def test_tds_with_pan_passes():
    assert _run(tds, [EMP], [_pay(gross=50000, tds=5000)]) == []


def test_tds_regime_mismatch():
    out = _run(tds, [dict(EMP, taxRegime="New Regime")], [_pay(gross=50000, tds=5000, taxRegime="old")])
    assert _ids(out) == ["TDS-REGIME"]

    same = _run(tds, [dict(EMP, taxRegime="new_regime")], [_pay(gross=50000, tds=5000, taxRegime="NEW")])
    assert same == []


def test_tds_regime_from_policy():
    policy = RulePolicy(payroll_tax_regime="old")
    out = _run(tds, [dict(EMP, taxRegime="new")], [_pay(gross=50000, tds=5000)], policy=policy)
    assert _ids(out) == ["TDS-REGIME"]


def test_tds_projection_mismatch():
    assert _ids(_run(tds, [EMP], [_pay(gross=50000, tds=5000, tdsExpected=5500)])) == ["TDS-PROJECTION"]
    assert _run(tds, [EMP], [_pay(gross=50000, tds=5000, tdsExpected=5005)]) == []


def test_tds_proof_shortfall():
    emp = dict(EMP, tdsDeclarationAmount=150000, tdsProofAmount=100000)
    out = _run(tds, [emp], [_pay(gross=50000, tds=5000)])
    assert _ids(out) == ["TDS-PROOF"]
    assert out[0].severity == LOW


def test_tds_rate_of_one_means_one_percent():
    emp = {"employeeId": "E1", "name": "Asha"}
    out = _run(tds, [emp], [_pay(gross=50000, tds=500, tdsRate=1)])
    assert _ids(out) == ["TDS-PAN"]
    assert "1.00%" in out[0].message
    assert "at least 20%" in out[0].message


def test_tds_pan_message_follows_policy():
    emp = {"employeeId": "E1", "name": "Asha"}
    policy = RulePolicy(tds_pan_missing_rate=Decimal("0.30"))
    out = _run(tds, [emp], [_pay(gross=50000, tds=10000, tdsRate=20)], policy=policy)
    assert "at least 30%" in out[0].message


def test_tds_pan_shared_between_employees():
    emps = [EMP, {"employeeId": "E2", "name": "Ravi", "pan": "abcde 1234f"}]
    ctx = _ctx(emps, [_pay(gross=50000, tds=5000)])
    e1 = tds.evaluate(ctx, _slice(ctx))
    assert _ids(e1) == ["TDS-DUPLICATE-PAN"]
    assert "E2" in e1[0].message
    # no payroll this month, the shared PAN is still reported
    assert _ids(tds.evaluate(ctx, _slice(ctx, "E2"))) == ["TDS-DUPLICATE-PAN"]


def test_tds_not_revised_after_salary_change():
    rows = [_pay(period="2025-08", gross=50000, tds=5000), _pay(gross=60000, tds=5000)]
    out = _run(tds, [EMP], rows)
    assert _ids(out) == ["TDS-NOT-REVISED"]
    assert out[0].severity == MEDIUM

    small = [_pay(period="2025-08", gross=50000, tds=5000), _pay(gross=51000, tds=5000)]
    assert _run(tds, [EMP], small) == []


@pytest.mark.parametrize("register,expected", [
    (None, []),
    ({"pfPaidDate": "2025-10-10"}, ["TDS-DEPOSIT-MISSING"]),
    ({"tdsChallanDate": "2025-10-07"}, []),
    ({"tdsPaidDate": "2025-10-09"}, ["TDS-DEPOSIT-LATE"]),
])
def test_tds_deposit_register(register, expected):
    out = _run(tds, [EMP], [_pay(gross=50000, tds=5000)], statutory=register)
    assert _ids(out) == expected
    if expected:
        assert out[0].severity == HIGH


def test_tds_deposit_checks_need_a_deduction():
    assert _run(tds, [EMP], [_pay(gross=50000, tds=0)], statutory={}) == []



# ---------------- minimum wage ----------------

WAGES = {"minWages": {"Welder": 16000, "MH": 12000, "default": 9000}}


@pytest.mark.parametrize("emp,expected", [
    ({"jobRole": "Welder", "state": "MH", "basicSalary": 15000}, ["WAGE-MINIMUM"]),
    ({"state": "MH", "basicSalary": 11000}, ["WAGE-MINIMUM"]),
    ({"state": "MH", "basicSalary": 12500}, []),
    ({"state": "KA", "basicSalary": 8000}, ["WAGE-MINIMUM"]),
    ({"state": "KA", "basicSalary": 0}, []),
])
def test_minimum_wage_lookup(emp, expected):
    out = _run(min_wage, [dict(emp, employeeId="E1", name="Asha")], state_rules=WAGES)
    assert _ids(out) == expected


def test_minimum_wage_uses_current_basic_and_policy_floor():
    policy = RulePolicy.from_overrides({"min_wage_floor": 10000})
    out = _run(min_wage, [dict(EMP, basicSalary=20000)], [_pay(basic=9000, gross=9000)], policy=policy)
    assert _ids(out) == ["WAGE-MINIMUM"]
    assert out[0].category == "WAGE"


# ---------------- overtime ----------------

def _ot_slice(hours):
    daily = [
        AttendanceRecord(employee_id="E1", date=f"2025-09-{i + 1:02d}", status="Present", overtime_hours=h)
        for i, h in enumerate(hours)
    ]
    summary = AttendanceSummary(employee_id="E1", total_days=len(daily), present_days=len(daily),
                                overtime_hours=sum(hours), daily=daily)
    return EmployeeSlice(employee=Employee(employee_id="E1", name="Asha"), attendance=summary)


@pytest.mark.parametrize("hours,expected,severity", [
    ([2.0] * 28, ["OT-MONTHLY"], HIGH),
    ([1.5] * 30, ["OT-WARNING"], MEDIUM),
    ([1.0] * 10, [], None),
])
def test_monthly_overtime(hours, expected, severity):
    out = overtime.evaluate(_ctx([]), _ot_slice(hours))
    assert _ids(out) == expected
    if severity:
        assert out[0].severity == severity




def test_overtime_warning_starts_at_forty_hours():
    out = overtime.evaluate(_ctx([]), _ot_slice([2.0] * 20))
    assert _ids(out) == ["OT-WARNING"]
    assert overtime.evaluate(_ctx([]), _ot_slice([2.0] * 19)) == []



def test_overtime_warning_can_be_disabled():
    ctx = _ctx([], policy=RulePolicy(overtime_monthly_warning=None))
    assert overtime.evaluate(ctx, _ot_slice([1.5] * 30)) == []


def test_daily_overtime_limit():
    out = overtime.evaluate(_ctx([]), _ot_slice([3.0, 1.0, 1.0, 1.0, 1.0, 1.0]))
    assert _ids(out) == ["OT-DAILY"]


def test_overtime_without_attendance():
    assert overtime.evaluate(_ctx([]), EmployeeSlice(employee=Employee(employee_id="E1", name="A"))) == []


# ---------------- attendance integrity ----------------

def _punches(gap_hours):
    second = datetime(2025, 9, 1, 9, 0).replace(hour=9 + gap_hours)
    return [
        {"employeeId": "E1", "date": "2025-09-01", "status": "Present",
         "checkInTime": "2025-09-01T09:00:00", "latitude": PUNE[0], "longitude": PUNE[1]},
        {"employeeId": "E1", "date": "2025-09-01", "status": "Present",
         "checkInTime": second.isoformat(), "latitude": HYDERABAD[0], "longitude": HYDERABAD[1]},
    ]


def test_impossible_travel():
    out = _run(attendance_fraud, [EMP], attendance=_punches(1))
    assert _ids(out) == ["ATT-TRAVEL"]
    assert out[0].type == "Impossible Travel"
    assert out[0].severity == HIGH


def test_travel_over_longer_window_is_fine():
    assert _run(attendance_fraud, [EMP], attendance=_punches(10)) == []


def test_travel_ignores_records_without_check_in_time():
    rows = _punches(1)
    for r in rows:
        del r["checkInTime"]
    assert _run(attendance_fraud, [EMP], attendance=rows) == []


def test_device_cloning():
    att = {f"2025-09-0{i}": {"E1": {"status": "Present", "deviceId": f"D{i}"}} for i in (1, 2, 3)}
    assert _ids(_run(attendance_fraud, [EMP], attendance=att)) == ["ATT-DEVICES"]


def test_device_shared_across_employees():
    emps = [{"employeeId": e, "name": e} for e in ("E1", "E2", "E3")]
    att = {"2025-09-01": {e["employeeId"]: {"status": "Present", "deviceId": "D9"} for e in emps}}
    ctx = _ctx(emps, attendance=att)
    for e in ("E1", "E2", "E3"):
        out = attendance_fraud.evaluate(ctx, _slice(ctx, e))
        assert [v.type for v in out] == ["Shared Device/IP"]


def test_ip_shared_needs_five_employees():
    def build(n):
        emps = [{"employeeId": f"E{i}", "name": f"E{i}"} for i in range(1, n + 1)]
        att = {"2025-09-01": {e["employeeId"]: {"status": "Present", "ipAddress": "10.1.1.1"} for e in emps}}
        ctx = _ctx(emps, attendance=att)
        return attendance_fraud.evaluate(ctx, _slice(ctx))

    assert build(4) == []
    assert _ids(build(5)) == ["ATT-SHARED"]


def test_timestamp_reuse():
    att = {f"2025-09-0{i}": {"E1": {"status": "Present", "checkInTime": "2025-09-01T09:00:00"}}
           for i in (1, 2, 3)}
    out = _run(attendance_fraud, [EMP], attendance=att)
    assert [v.type for v in out] == ["Attendance Timestamp Reuse"]


def test_suspicious_attendance_pattern():
    att = {f"2025-09-{d:02d}": {"E1": {"status": "Absent" if d <= 5 else "Present"}} for d in range(1, 11)}
    out = _run(attendance_fraud, [EMP], attendance=att)
    assert _ids(out) == ["ATT-PATTERN"]
    assert out[0].severity == LOW

    steady = {f"2025-09-{d:02d}": {"E1": {"status": "Present"}} for d in range(1, 11)}
    assert _run(attendance_fraud, [EMP], attendance=steady) == []


# ---------------- salary anomalies ----------------

def _history(current, **baseline):
    rows = [_pay(period=p, gross=50000, **baseline) for p in ("2025-06", "2025-07", "2025-08")]
    rows.append(_pay(**current))
    return rows


def test_salary_spike_over_recent_average():
    emp = dict(EMP, basicSalary=30000)
    out = _run(salary_anomaly, [emp], _history({"gross": 80000}))
    assert _ids(out) == ["SAL-SPIKE"]
    assert out[0].severity == HIGH

    assert _run(salary_anomaly, [emp], _history({"gross": 55000})) == []


def test_reimbursement_spike():
    emp = dict(EMP, basicSalary=30000)
    out = _run(salary_anomaly, [emp], _history({"gross": 50000, "reimbursement": 2000}, reimbursement=1000))
    assert _ids(out) == ["SAL-REIMBURSEMENT"]


def test_deduction_drop():
    emp = dict(EMP, basicSalary=30000)
    out = _run(salary_anomaly, [emp], _history({"gross": 50000, "deductions": 1000}, deductions=4000))
    assert [v.type for v in out] == ["Deduction Drop"]


def test_structure_checked_without_history():
    out = _run(salary_anomaly, [EMP], [_pay(basic=20000, gross=100000)])
    assert _ids(out) == ["SAL-STRUCTURE"]


def test_first_month_has_no_spike():
    assert _run(salary_anomaly, [dict(EMP, basicSalary=60000)], [_pay(gross=100000)]) == []


def test_later_months_do_not_count_as_current():
    emp = dict(EMP, basicSalary=30000)
    rows = _history({"gross": 50000}) + [_pay(period="2025-10", gross=90000)]
    assert _run(salary_anomaly, [emp], rows) == []


def test_salary_messages_follow_policy():
    emp = dict(EMP, basicSalary=30000)
    default = _run(salary_anomaly, [emp], _history({"gross": 80000}))
    assert "1.4x" in default[0].message

    policy = RulePolicy(salary_spike_multiplier=Decimal("1.3"))
    out = _run(salary_anomaly, [emp], _history({"gross": 70000}), policy=policy)
    assert _ids(out) == ["SAL-SPIKE"]
    assert "1.3x" in out[0].message
    assert "1.4x" not in out[0].message


def test_structure_message_shows_floor():
    out = _run(salary_anomaly, [EMP], [_pay(basic=20000, gross=100000)])
    assert "under 35% of gross" in out[0].message
