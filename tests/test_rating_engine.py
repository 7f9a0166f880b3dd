import math
from datetime import datetime, timedelta, timezone

import pytest

from engines import rating
from engines.rating import ALPHA, BASELINE, Rating

NOW = datetime(2025, 3, 14, 12, 0, tzinfo=timezone.utc)


def test_constants():
    assert BASELINE == 60
    assert (1 - ALPHA) ** 12 == pytest.approx(0.5)
    assert math.exp(-rating.LAMBDA * 30) == pytest.approx(0.5)


def test_first_observation_blends_from_baseline():
    result = rating.update(None, 90, NOW)
    assert result.score == pytest.approx(60 * (1 - ALPHA) + 90 * ALPHA)
    assert 60 < result.score < 90
    assert result.last_updated == NOW


def test_twelve_observations_carry_half_the_weight():
    current = None
    for _ in range(12):
        current = rating.update(current, 100, NOW)
    assert current.score == pytest.approx(80.0)


def test_unpracticed_skill_decays_toward_baseline():
    old = Rating(score=90.0, last_updated=NOW - timedelta(days=30))
    assert rating.project(old, NOW) == pytest.approx(75.0)

    low = Rating(score=20.0, last_updated=NOW - timedelta(days=60))
    assert rating.project(low, NOW) == pytest.approx(50.0)


def test_zero_elapsed_leaves_score_unchanged():
    old = Rating(score=72.5, last_updated=NOW)
    assert rating.project(old, NOW) == pytest.approx(72.5)
    assert rating.update(old, 72.5, NOW).score == pytest.approx(72.5)


def test_future_timestamp_counts_as_zero_elapsed():
    old = Rating(score=88.0, last_updated=NOW + timedelta(days=3))
    assert rating.elapsed_days(old.last_updated, NOW) == 0.0
    assert rating.project(old, NOW) == pytest.approx(88.0)


def test_naive_datetimes_are_treated_as_utc():
    naive = datetime(2025, 3, 13, 12, 0)
    assert rating.elapsed_days(naive, NOW) == pytest.approx(1.0)


def test_scores_stay_in_range():
    high = rating.update(Rating(score=100.0, last_updated=NOW), 250, NOW)
    low = rating.update(Rating(score=0.0, last_updated=NOW), -40, NOW)
    assert high.score == pytest.approx(100.0)
    assert low.score == pytest.approx(0.0)


def test_clamp_ratings_fills_and_clamps():
    clean = rating.clamp_ratings({"empathy": 150, "trust": -5, "listening": float("nan")})
    assert set(clean) == set(rating.SKILLS)
    assert clean["empathy"] == 100.0
    assert clean["trust"] == 0.0
    assert clean["listening"] == BASELINE
    assert clean["closing"] == BASELINE


def test_clamp_ratings_accepts_none():
    assert rating.clamp_ratings(None) == {skill: BASELINE for skill in rating.SKILLS}


def test_calibrate_sets_score_directly():
    assert rating.calibrate(95, NOW).score == 95.0
    assert rating.calibrate(130, NOW).score == 100.0
    assert rating.calibrate("n/a", NOW).score == BASELINE
