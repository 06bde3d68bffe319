# compliance_api/services/rules/base.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Optional

LOW = "Low"
MEDIUM = "Medium"
HIGH = "High"
CRITICAL = "Critical"
SEVERITIES = (LOW, MEDIUM, HIGH, CRITICAL)

CATEGORIES = ("PF", "ESI", "PT", "TDS", "WAGE", "OVERTIME", "ATTENDANCE", "SALARY", "DATA")

Q2 = Decimal("0.01")


@dataclass(frozen=True)
class Violation:
    type: str
    severity: str
    message: str
    recommended_fix: str
    category: str
    rule_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "severity": self.severity,
            "message": self.message,
            "recommendedFix": self.recommended_fix,
            "category": self.category,
            "ruleId": self.rule_id,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Violation":
        return cls(
            type=d.get("type") or "",
            severity=d.get("severity") or LOW,
            message=d.get("message") or "",
            recommended_fix=d.get("recommendedFix") or "",
            category=d.get("category") or "",
            rule_id=d.get("ruleId"),
        )


def dec(x: Any) -> Decimal:
    return x if isinstance(x, Decimal) else Decimal(str(x))


def within_tolerance(actual: Any, expected: Any, tolerance: Any) -> bool:
    return abs(dec(actual) - dec(expected)) <= dec(tolerance)


def money(x: Any) -> str:
    """₹ with thousands separators; paise only when non-zero."""
    d = dec(x).quantize(Q2)
    if d == d.to_integral_value():
        return f"₹{d:,.0f}"
    return f"₹{d:,.2f}"


def pct(rate: Any) -> str:
    """0.0833 -> '8.33%'."""
    return f"{(dec(rate) * 100).normalize():f}%"


def factor(x: Any) -> str:
    """1.40 -> '1.4x'."""
    return f"{dec(x).normalize():f}x"


def deposit_due(month_key: Optional[str], day: int) -> Optional[date]:
    """Statutory deposits for a wage month fall due on `day` of the following month."""
    if not month_key:
        return None
    year, month = int(month_key[:4]), int(month_key[5:7])
    year, month = (year + 1, 1) if month == 12 else (year, month + 1)
    return date(year, month, day)
