import copy
import os
from io import BytesIO

import pytest
from flask_jwt_extended import create_access_token
from openpyxl import load_workbook

from compliance_api import create_app
from compliance_api.extensions import db
from compliance_api.models.compliance import ComplianceScan, EmployeeRiskReport

BASE = "/api/v1/compliance-risk"

DATASET = {
    "employees": [
        {"employeeId": "E1", "name": "Asha", "state": "MH", "pan": "ABCDE1234F", "basicSalary": 12000},
        {"employeeId": "E2", "name": "Ravi", "state": "MH", "pan": "FGHIJ5678K", "basicSalary": 30000},
        {"name": "No Id"},
    ],
    "payroll": [
        {"employeeId": "E1", "period": "2025-09", "basic": 12000, "gross": 12000, "pt": 200},
        {"employeeId": "E2", "period": "2025-09", "basic": 30000, "gross": 60000, "pt": 200, "tds": 6000},
    ],
    "attendance": {
        "2025-09-01": {"E1": {"status": "Present", "time": "09:00"}, "E2": {"status": "Present", "time": "09:10"}},
    },
    "stateRules": {
        "ptSlabs": {"MH": [{"min": 0, "max": 7500, "amount": 0}, {"min": 7501, "amount": 200}]},
    },
}

PT_SLABS = {"slabs": [{"min": 0, "max": 7500, "amount": 0}, {"min": 7501, "amount": 200}]}


@pytest.fixture(scope="function")
def app():
    os.environ["DATABASE_URL"] = "sqlite:///:memory:"
    os.environ["COMPLIANCE_SCAN_DEBOUNCE_SECONDS"] = "0.01"
    app = create_app()
    with app.app_context():
        db.create_all()
        yield app
        app.extensions["compliance_scans"].cancel()
        app.extensions["compliance_scans"].wait_idle(5)


@pytest.fixture(scope="function")
def client(app):
    return app.test_client()


def _auth(perms=("compliance.risk.read", "compliance.risk.write"), roles=()):
    token = create_access_token(identity="tester",
                                additional_claims={"perms": list(perms), "roles": list(roles)})
    return {"Authorization": f"Bearer {token}"}


def _put_dataset(client, scope="2025-09", payload=None, scan=False):
    url = f"{BASE}/datasets/{scope}" + ("" if scan else "?no_scan=1")
    return client.put(url, json=copy.deepcopy(payload or DATASET), headers=_auth())


def _scan(client, scope="2025-09"):
    return client.post(f"{BASE}/scans", json={"scope": scope, "wait": True}, headers=_auth())


# ---------------- auth ----------------

def test_health_is_public(client):
    assert client.get("/api/v1/health").status_code == 200


def test_token_required(client):
    assert client.get(f"{BASE}/reports?scope=2025-09").status_code == 401


def test_missing_permission_is_forbidden(client):
    r = client.get(f"{BASE}/reports?scope=2025-09", headers=_auth(perms=["payroll.read"]))
    assert r.status_code == 403
    assert r.get_json()["error"]["code"] == "FORBIDDEN"


def test_read_permission_cannot_write(client):
    r = client.post(f"{BASE}/scans", json={"scope": "2025-09"}, headers=_auth(perms=["compliance.risk.read"]))
    assert r.status_code == 403


def test_admin_and_wildcard_pass(client):
    assert client.get(f"{BASE}/reports?scope=2025-09", headers=_auth(perms=[], roles=["admin"])).status_code == 200
    assert client.get(f"{BASE}/reports?scope=2025-09", headers=_auth(perms=["compliance.*"])).status_code == 200


# ---------------- datasets ----------------

def test_dataset_store_and_fetch(client):
    r = _put_dataset(client)
    assert r.status_code == 200
    body = r.get_json()["data"]
    assert body["scope"] == "2025-09"
    assert body["counts"] == {"employees": 3, "payroll": 2, "attendance_days": 1}
    assert body["scan"] is None

    r = client.get(f"{BASE}/datasets/2025-9", headers=_auth())
    assert r.status_code == 200
    assert r.get_json()["data"]["counts"]["employees"] == 3

    assert client.get(f"{BASE}/datasets/2025-10", headers=_auth()).status_code == 404


def test_dataset_validation(client):
    r = _put_dataset(client, scope="september")
    assert r.status_code == 422
    assert r.get_json()["error"]["code"] == "BAD_SCOPE"

    r = client.put(f"{BASE}/datasets/2025-09", json={"employees": "oops"}, headers=_auth())
    assert r.status_code == 422

    r = client.put(f"{BASE}/datasets/2025-09", json=dict(DATASET, statutoryPayments="late"), headers=_auth())
    assert r.status_code == 422


def test_dataset_update_schedules_scan(app, client):
    r = _put_dataset(client, scan=True)
    assert r.get_json()["data"]["scan"] == "scheduled"
    assert app.extensions["compliance_scans"].wait_idle(5)
    assert EmployeeRiskReport.query.count() == 2


# ---------------- scans & reports ----------------

def test_scan_and_read_reports(client):
    _put_dataset(client)
    r = _scan(client)
    assert r.status_code == 200
    meta = r.get_json()["data"]
    assert meta["status"] == "completed"
    assert meta["employeeCount"] == 2
    assert meta["excludedCount"] == 1
    assert meta["riskLevels"]["High"] == 1

    r = client.get(f"{BASE}/reports?scope=2025-09", headers=_auth())
    body = r.get_json()
    assert body["meta"]["count"] == 2
    assert [x["employeeId"] for x in body["data"]] == ["E1", "E2"]
    assert body["data"][0]["riskScore"] == 60

    r = client.get(f"{BASE}/reports?scope=2025-09&level=high", headers=_auth())
    assert [x["employeeId"] for x in r.get_json()["data"]] == ["E1"]
    assert client.get(f"{BASE}/reports?scope=2025-09&level=severe", headers=_auth()).status_code == 422

    r = client.get(f"{BASE}/reports/2025-09/E1", headers=_auth())
    detail = r.get_json()["data"]
    assert [v["ruleId"] for v in detail["violations"]] == ["PF-ELIGIBILITY", "ESI-ELIGIBILITY"]
    assert detail["violations"][0]["recommendedFix"]
    assert client.get(f"{BASE}/reports/2025-09/E9", headers=_auth()).status_code == 404


def test_scan_history_and_suggestions(client):
    _put_dataset(client)
    _scan(client)
    _scan(client)

    r = client.get(f"{BASE}/scans?scope=2025-09", headers=_auth())
    assert r.get_json()["meta"]["count"] == 2

    r = client.get(f"{BASE}/scans/2025-09", headers=_auth())
    latest = r.get_json()["data"]
    assert latest["employeeCount"] == 2
    assert [a["type"] for a in latest["anomalies"]] == ["Invalid Employee ID"]

    r = client.get(f"{BASE}/suggestions?scope=2025-09", headers=_auth())
    tips = r.get_json()["data"]
    assert {t["category"] for t in tips} == {"PF", "ESI"}

    assert client.get(f"{BASE}/scans/2025-10", headers=_auth()).status_code == 404


def test_unresolved_scope(client):
    r = _scan(client, scope="RUN-404")
    assert r.status_code == 422
    assert r.get_json()["error"]["code"] == "SCOPE_UNRESOLVED"
    assert client.post(f"{BASE}/scans", json={}, headers=_auth()).status_code == 422


def test_background_scan(app, client):
    _put_dataset(client)
    r = client.post(f"{BASE}/scans", json={"scope": "2025-09", "reason": "nightly"}, headers=_auth())
    assert r.status_code == 202
    assert r.get_json()["data"]["status"] == "scheduled"

    assert app.extensions["compliance_scans"].wait_idle(5)
    scan = ComplianceScan.query.one()
    assert scan.reasons == ["nightly"]

    status = client.get(f"{BASE}/scans/status", headers=_auth()).get_json()["data"]
    assert status["running"] is False
    assert status["runs"] == 1


def test_payroll_run_completed_scans_its_month(app, client):
    _put_dataset(client, payload=dict(DATASET, runId="RUN-9"))
    r = client.post(f"{BASE}/payroll-runs/RUN-9/completed", headers=_auth())
    assert r.status_code == 202

    assert app.extensions["compliance_scans"].wait_idle(5)
    scan = ComplianceScan.query.one()
    assert scan.scope_key == "2025-09"
    assert scan.run_id == "RUN-9"
    assert scan.reasons == ["payroll-run-completed"]


# ---------------- preview & export ----------------

def test_preview_does_not_persist(client):
    r = client.post(f"{BASE}/preview", json=dict(DATASET, month="2025-09"), headers=_auth())
    assert r.status_code == 200
    data = r.get_json()["data"]
    assert [x["employeeId"] for x in data["reports"]] == ["E1", "E2"]
    assert data["reasons"] == ["preview"]
    assert len(data["excluded"]) == 1
    assert data["suggestions"]
    assert ComplianceScan.query.count() == 0

    r = client.post(f"{BASE}/preview", json={"employees": []}, headers=_auth())
    assert r.status_code == 422


def test_export_workbook(client):
    _put_dataset(client)
    _scan(client)

    r = client.get(f"{BASE}/export?scope=2025-09", headers=_auth())
    assert r.status_code == 200
    wb = load_workbook(BytesIO(r.data))
    assert wb.sheetnames == ["SUMMARY", "VIOLATIONS", "ANOMALIES"]
    assert wb["SUMMARY"]["B4"].value == "E1"
    assert wb["VIOLATIONS"].max_row == 3
    assert wb["ANOMALIES"]["D2"].value == "Invalid Employee ID"

    assert client.get(f"{BASE}/export?scope=2025-09&format=csv", headers=_auth()).status_code == 422


# ---------------- statutory configs ----------------

def test_config_create_overlap_and_resolve(client):
    url = f"{BASE}/configs"
    body = {"type": "PT", "state": "mh", "effective_from": "2025-04-01", "value": PT_SLABS}
    r = client.post(url, json=body, headers=_auth())
    assert r.status_code == 201
    assert r.get_json()["data"]["scope_state"] == "MH"

    assert client.post(url, json=body, headers=_auth()).status_code == 409

    for role in ("Helper", "Welder"):
        r = client.post(url, json={"type": "MIN_WAGE", "state": "MH", "effective_from": "2025-04-01",
                                   "value": {"amount": 11000, "role": role}}, headers=_auth())
        assert r.status_code == 201

    r = client.get(f"{url}/state-rules?on=2025-09-01", headers=_auth())
    rules = r.get_json()["data"]
    assert rules["ptSlabs"]["MH"] == PT_SLABS["slabs"]
    assert rules["minWages"] == {"Helper": 11000, "Welder": 11000}

    r = client.get(f"{url}?type=PT&state=MH&on=2025-09-01", headers=_auth())
    assert r.get_json()["meta"]["count"] == 1


def test_config_validation(client):
    url = f"{BASE}/configs"
    assert client.post(url, json={"type": "PF", "effective_from": "2025-04-01", "value": {}},
                       headers=_auth()).status_code == 422
    assert client.post(url, json={"type": "PT", "effective_from": "2025-04-01", "value": {"slabs": []}},
                       headers=_auth()).status_code == 422
    assert client.post(url, json={"type": "MIN_WAGE", "value": {"amount": 1}},
                       headers=_auth()).status_code == 422


def test_config_close_and_replace(client):
    url = f"{BASE}/configs"
    r = client.post(url, json={"type": "MIN_WAGE", "state": "KA", "effective_from": "2025-04-01",
                               "value": {"amount": 10000}}, headers=_auth())
    cfg_id = r.get_json()["data"]["id"]

    r = client.put(f"{url}/{cfg_id}/close", json={"new_from": "2025-01-01"}, headers=_auth())
    assert r.status_code == 422

    r = client.put(f"{url}/{cfg_id}/close", json={"new_from": "2026-04-01", "new_value": {"amount": 11500}},
                   headers=_auth())
    assert r.status_code == 200
    new_id = r.get_json()["data"]["new_id"]

    rows = {c["id"]: c for c in client.get(f"{url}?type=MIN_WAGE", headers=_auth()).get_json()["data"]}
    assert rows[cfg_id]["effective_to"] == "2026-03-31"
    assert rows[new_id]["value_json"] == {"amount": 11500}

    r = client.get(f"{url}/state-rules?on=2026-05-01", headers=_auth())
    assert r.get_json()["data"]["minWages"] == {"KA": 11500}


def test_preview_checks_deposit_register(client):
    payload = dict(DATASET, month="2025-09", statutoryPayments={"tdsPaidDate": "2025-10-20"})
    r = client.post(f"{BASE}/preview", json=payload, headers=_auth())
    assert r.status_code == 200
    reports = {x["employeeId"]: x for x in r.get_json()["data"]["reports"]}
    assert [v["ruleId"] for v in reports["E2"]["violations"]] == ["TDS-DEPOSIT-LATE"]
    assert "TDS-DEPOSIT-LATE" not in [v["ruleId"] for v in reports["E1"]["violations"]]
