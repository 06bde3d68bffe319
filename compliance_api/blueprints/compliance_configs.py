from __future__ import annotations
from datetime import date, timedelta
from typing import Optional

from flask import Blueprint, request, jsonify
from sqlalchemy import or_

from compliance_api.extensions import db
from compliance_api.common.auth import requires_perms
from compliance_api.models.stat_config import StatConfig
from compliance_api.services.compliance_scope import resolve_configs, resolve_state_rules

bp = Blueprint("compliance_configs", __name__, url_prefix="/api/v1/compliance-risk/configs")

TYPES = ("PT", "MIN_WAGE")


# ---------- tiny helpers ----------
def _ok(data=None, status=200, **meta):
    payload = {"success": True, "data": data}
    if meta: payload["meta"] = meta
    return jsonify(payload), status

def _fail(message, status=400, code=None, extra=None):
    payload = {"success": False, "error": {"message": message}}
    if code: payload["error"]["code"] = code
    if extra is not None: payload["error"]["extra"] = extra
    return jsonify(payload), status

def _d(s) -> Optional[date]:
    if not s: return None
    try: return date.fromisoformat(str(s))
    except ValueError: return None


def _validate_value(tp: str, value) -> Optional[str]:
    if not isinstance(value, dict):
        return "value (JSON object) is required"
    if tp == "PT":
        slabs = value.get("slabs")
        if not isinstance(slabs, list) or not slabs:
            return "PT value needs a non-empty 'slabs' list"
        for s in slabs:
            if not isinstance(s, dict) or "min" not in s or "amount" not in s:
                return "each PT slab needs 'min' and 'amount'"
    if tp == "MIN_WAGE" and value.get("amount") is None:
        return "MIN_WAGE value needs 'amount'"
    return None


@bp.get("")
@requires_perms("compliance.risk.read")
def list_configs():
    tp = (request.args.get("type") or "").strip().upper() or None
    if tp and tp not in TYPES:
        return _fail("type must be one of PT, MIN_WAGE", 422)
    state = (request.args.get("state") or "").strip().upper() or None
    on = _d(request.args.get("on"))

    if on and tp:
        rows = resolve_configs(tp, state, on)
    else:
        q = StatConfig.query
        if tp: q = q.filter(StatConfig.type == tp)
        if state: q = q.filter(StatConfig.scope_state == state)
        rows = q.order_by(StatConfig.type.asc(), StatConfig.priority.asc(),
                          StatConfig.effective_from.desc(), StatConfig.id.desc()).all()
    return _ok([r.to_dict() for r in rows], count=len(rows))


@bp.get("/state-rules")
@requires_perms("compliance.risk.read")
def state_rules():
    on = _d(request.args.get("on")) or date.today()
    return _ok(resolve_state_rules(on), on=on.isoformat())


@bp.post("")
@requires_perms("compliance.risk.write")
def create_config():
    j = request.get_json(silent=True) or {}

    tp = (j.get("type") or "").strip().upper()
    if tp not in TYPES:
        return _fail("type must be one of PT, MIN_WAGE", 422)
    eff_from = _d(j.get("effective_from"))
    if not eff_from:
        return _fail("effective_from is required (YYYY-MM-DD)", 422)
    eff_to = _d(j.get("effective_to"))
    if eff_to and eff_to < eff_from:
        return _fail("effective_to must be >= effective_from", 422)
    st = j.get("scope_state", j.get("state"))
    st = (str(st).strip().upper() or None) if st else None
    prio = j.get("priority")
    try:
        prio = int(prio) if prio is not None and str(prio).strip() != "" else 100
    except (TypeError, ValueError):
        return _fail("priority must be integer", 422)
    value = j.get("value")
    problem = _validate_value(tp, value)
    if problem:
        return _fail(problem, 422)

    # Overlap: type + state + (role for MIN_WAGE) + window
    q = (StatConfig.query
         .filter(StatConfig.type == tp)
         .filter(StatConfig.closed_at.is_(None))
         .filter(StatConfig.effective_from <= (eff_to or date.max))
         .filter(or_(StatConfig.effective_to.is_(None), StatConfig.effective_to >= eff_from)))
    q = q.filter(StatConfig.scope_state == st) if st else q.filter(StatConfig.scope_state.is_(None))
    role = value.get("role") if tp == "MIN_WAGE" else None
    if any((c.value_json or {}).get("role") == role for c in q.all()):
        return _fail("Overlapping config period for the same type/scope", 409)

    rec = StatConfig(
        type=tp,
        scope_state=st,
        priority=prio,
        effective_from=eff_from,
        effective_to=eff_to,
        value_json=value,
        key=(j.get("key") or j.get("code") or f"STATCFG_{tp}"),
    )
    db.session.add(rec)
    db.session.commit()
    return _ok(rec.to_dict(), 201)


@bp.put("/<int:config_id>/close")
@requires_perms("compliance.risk.write")
def close_config(config_id: int):
    cur = db.get_or_404(StatConfig, config_id)
    j = request.get_json(silent=True) or {}
    new_from = _d(j.get("new_from"))
    if not new_from: return _fail("new_from is required (YYYY-MM-DD)", 422)
    if cur.effective_from and new_from <= cur.effective_from:
        return _fail("new_from must be after current effective_from", 422)

    if "new_value" in j:
        problem = _validate_value(cur.type, j.get("new_value"))
        if problem:
            return _fail(problem, 422)

    cur.effective_to = new_from - timedelta(days=1)
    new_rec = None
    if "new_value" in j:
        new_rec = StatConfig(
            type=cur.type,
            key=cur.key,
            scope_state=cur.scope_state,
            priority=cur.priority,
            value_json=j.get("new_value"),
            effective_from=new_from,
        )
        db.session.add(new_rec)

    db.session.commit()
    return _ok({"closed_id": cur.id, "new_id": new_rec.id if new_rec else None})
