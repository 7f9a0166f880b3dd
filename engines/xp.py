"""XP sanitizing and ledger arithmetic.

Normal play can only ever add between 0 and 100 XP and never drives the
total below zero. Behavior violations can never add XP; they subtract at
most 100 and are allowed to take the total negative so that disciplinary
history stays visible in the ledger.
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Any

MAX_AWARD = 100
MAX_PENALTY = 100


class Severity(str, Enum):
    NORMAL = "normal"
    BEHAVIOR_VIOLATION = "behavior_violation"


def coerce_severity(value: Any) -> Severity:
    """Parse ``value`` into a :class:`Severity`; raises ``ValueError`` when unknown."""

    if isinstance(value, Severity):
        return value
    try:
        return Severity(str(value).strip().lower())
    except ValueError as exc:
        raise ValueError(f"Unknown severity: {value!r}") from exc


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def sanitize(raw_delta: Any, severity: Any = Severity.NORMAL) -> int:
    """Clamp a raw XP delta according to its severity class."""

    level = coerce_severity(severity)
    try:
        numeric = float(raw_delta)
    except (TypeError, ValueError):
        numeric = 0.0
    if math.isnan(numeric):
        numeric = 0.0

    if level is Severity.BEHAVIOR_VIOLATION:
        if numeric > 0:
            return 0
        return max(-MAX_PENALTY, min(0, _round_half_up(max(numeric, -MAX_PENALTY))))

    return max(0, min(MAX_AWARD, _round_half_up(min(max(numeric, 0.0), MAX_AWARD))))


def apply(current_total: int, safe_delta: int, severity: Any = Severity.NORMAL) -> int:
    """Return the new ledger total; only normal severity is floored at zero."""

    level = coerce_severity(severity)
    total = int(current_total) + int(safe_delta)
    if level is Severity.NORMAL:
        return max(0, total)
    return total
