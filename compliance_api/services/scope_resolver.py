from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Optional

from compliance_api.services.normalizer import month_key

_MONTH_OR_DATE = re.compile(r"^\d{4}-\d{1,2}(-\d{1,2})?$")


class ScopeResolutionError(ValueError):
    pass


@dataclass(frozen=True)
class Scope:
    scope_key: str
    month_key: str
    run_id: Optional[str] = None


def resolve_scope(identifier, lookup_run: Optional[Callable[[str], Optional[str]]] = None) -> Scope:
    """
    '2025-09' / '2025-09-30' -> month scope. Anything else is treated as a
    payroll run id and resolved to its month through `lookup_run`.
    """
    s = str(identifier or "").strip()
    if not s:
        raise ScopeResolutionError("scope identifier is empty")

    if _MONTH_OR_DATE.match(s):
        key = month_key(s)
        if key:
            return Scope(scope_key=key, month_key=key)
        raise ScopeResolutionError(f"{s!r} is not a valid month")

    if lookup_run is not None:
        key = month_key(lookup_run(s))
        if key:
            return Scope(scope_key=key, month_key=key, run_id=s)

    raise ScopeResolutionError(f"no month or payroll run found for scope {s!r}")
