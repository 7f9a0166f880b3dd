import pytest

from engines import xp
from engines.xp import Severity


@pytest.mark.parametrize(
    "raw, expected",
    [(42, 42), (42.5, 43), (42.4, 42), (-30, 0), (250, 100), (None, 0), ("abc", 0), (float("nan"), 0)],
)
def test_normal_deltas_are_rounded_and_clamped(raw, expected):
    assert xp.sanitize(raw, Severity.NORMAL) == expected


@pytest.mark.parametrize("raw, expected", [(500, 0), (5, 0), (-40, -40), (-500, -100), (-12.5, -12)])
def test_violation_deltas_never_award(raw, expected):
    assert xp.sanitize(raw, "behavior_violation") == expected


def test_unknown_severity_is_rejected():
    with pytest.raises(ValueError):
        xp.sanitize(10, "catastrophic")


def test_coerce_severity_is_case_insensitive():
    assert xp.coerce_severity(" Behavior_Violation ") is Severity.BEHAVIOR_VIOLATION


def test_normal_total_is_floored_at_zero():
    assert xp.apply(0, 0, Severity.NORMAL) == 0
    assert xp.apply(-20, 0, Severity.NORMAL) == 0
    assert xp.apply(10, 90, Severity.NORMAL) == 100


def test_violation_may_take_total_negative():
    assert xp.apply(30, -100, Severity.BEHAVIOR_VIOLATION) == -70
    # The next normal entry floors the running total again.
    assert xp.apply(-70, 20, Severity.NORMAL) == 0
