from __future__ import annotations
from datetime import date, datetime, time
from typing import Any, Dict, List

from compliance_api.models.stat_config import StatConfig


def _effective(cfg_type: str, on_date: date):
    on_dt = datetime.combine(on_date, time.min)
    return (
        StatConfig.query
        .filter(StatConfig.type == cfg_type)
        .filter(StatConfig.effective_from <= on_date)
        .filter((StatConfig.effective_to.is_(None)) | (StatConfig.effective_to >= on_date))
        .filter((StatConfig.closed_at.is_(None)) | (StatConfig.closed_at > on_dt))
    )


def _ordered(q):
    return q.order_by(StatConfig.priority.asc(), StatConfig.effective_from.desc(), StatConfig.id.desc()).all()


def resolve_configs(cfg_type: str, state: str | None, on_date: date) -> List[StatConfig]:
    """
    Return StatConfig records of a given type that are effective on `on_date`, ordered by resolution:
    1) state-scoped
    2) global (no scope)

    Within each tier, lower `priority` wins; tie-breaker is most-recent `effective_from`.
    """
    q = _effective(cfg_type, on_date)
    out: List[StatConfig] = []
    if state:
        out.extend(_ordered(q.filter(StatConfig.scope_state == state.upper())))
    out.extend(_ordered(q.filter(StatConfig.scope_state.is_(None))))
    return out


def resolve_state_rules(on_date: date) -> Dict[str, Any]:
    """
    Build the rules tables the engine reads, as of `on_date`:
      {"ptSlabs": {"MH": [...], "default": [...]}, "minWages": {"Helper": 11000, "MH": 12000, "default": 10000}}
    The winning config per key is the first in priority order.
    """
    pt: Dict[str, Any] = {}
    for cfg in _ordered(_effective("PT", on_date)):
        key = cfg.scope_state or "default"
        slabs = (cfg.value_json or {}).get("slabs")
        if key not in pt and isinstance(slabs, list):
            pt[key] = slabs

    wages: Dict[str, Any] = {}
    for cfg in _ordered(_effective("MIN_WAGE", on_date)):
        val = cfg.value_json or {}
        key = val.get("role") or cfg.scope_state or "default"
        if key not in wages and val.get("amount") is not None:
            wages[key] = val["amount"]

    return {"ptSlabs": pt, "minWages": wages}
