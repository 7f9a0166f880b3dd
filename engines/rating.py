"""Time-decayed rolling skill ratings.

Unpracticed skills revert exponentially toward ``BASELINE`` (half-life of
30 days) and each new observation is blended in with a fixed weight
``ALPHA`` so that twelve consecutive observations carry half of the total
weight. ``now`` is always supplied by the caller; nothing in this module
reads a clock.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Sequence

_LOGGER = logging.getLogger(__name__)

BASELINE = 60.0
ALPHA = 1 - math.pow(0.5, 1 / 12)
LAMBDA = math.log(2) / 30

MIN_SCORE = 0.0
MAX_SCORE = 100.0
SECONDS_PER_DAY = 24 * 60 * 60

SKILLS: Sequence[str] = (
    "empathy",
    "listening",
    "trust",
    "follow_up",
    "closing",
    "relationship",
)


@dataclass(frozen=True)
class Rating:
    """Stored per-skill rating."""

    score: float
    last_updated: Optional[datetime]


def clamp_score(value: float, low: float = MIN_SCORE, high: float = MAX_SCORE) -> float:
    return min(high, max(low, value))


def _finite(value: Any, fallback: float) -> float:
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return fallback
    if math.isnan(numeric) or math.isinf(numeric):
        return fallback
    return numeric


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def clamp_ratings(ratings: Optional[Mapping[str, Any]]) -> Dict[str, float]:
    """Return one clamped observation per skill.

    Missing or non-numeric skills fall back to ``BASELINE``; values outside
    ``[0, 100]`` are clamped.
    """

    source = ratings or {}
    clean: Dict[str, float] = {}
    for skill in SKILLS:
        raw = source.get(skill)
        value = clamp_score(_finite(raw, BASELINE))
        if raw is not None and value != raw:
            _LOGGER.debug("Observation for %s adjusted from %r to %s", skill, raw, value)
        clean[skill] = value
    return clean


def elapsed_days(last_updated: Optional[datetime], now: datetime) -> float:
    """Days since ``last_updated``; floored at zero, zero when unknown."""

    now_utc = _as_utc(now)
    previous = _as_utc(last_updated) or now_utc
    delta = (now_utc - previous).total_seconds() / SECONDS_PER_DAY
    return max(0.0, delta)


def drift(score: float, days: float) -> float:
    """Exponential reversion of ``score`` toward the baseline."""

    return BASELINE + (score - BASELINE) * math.exp(-LAMBDA * max(0.0, days))


def blend(drifted: float, observed: float, alpha: float = ALPHA) -> float:
    return clamp_score((1 - alpha) * drifted + alpha * observed)


def update(old: Optional[Rating], observed: float, now: datetime) -> Rating:
    """Decay ``old`` to ``now`` and blend in ``observed``.

    A missing record starts at the baseline with no elapsed time.
    """

    current = clamp_score(_finite(old.score, BASELINE)) if old is not None else BASELINE
    last_updated = old.last_updated if old is not None else None
    drifted = drift(current, elapsed_days(last_updated, now))
    observation = clamp_score(_finite(observed, BASELINE))
    return Rating(score=blend(drifted, observation), last_updated=_as_utc(now))


def calibrate(observed: float, now: datetime) -> Rating:
    """Baseline assessment: set the rating directly to ``observed``."""

    return Rating(score=clamp_score(_finite(observed, BASELINE)), last_updated=_as_utc(now))


def project(old: Optional[Rating], now: datetime) -> float:
    """Preview the decayed score at ``now`` without an observation."""

    if old is None:
        return BASELINE
    current = clamp_score(_finite(old.score, BASELINE))
    return clamp_score(drift(current, elapsed_days(old.last_updated, now)))
