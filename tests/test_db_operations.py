"""Test cases for db operations."""

from datetime import datetime, timezone

import pytest

import db
from engines.ladder import BaseLadderProgress
from engines.rating import Rating
from errors import NotFoundError, ValidationError

WHEN = datetime(2025, 3, 14, 8, 0, tzinfo=timezone.utc)


def test_create_learner_with_organizations(temp_db):
    record = db.create_learner("alice", "Alice", "Sales Consultant", ["dealer-1", "dealer-2"])
    assert record["role"] == "Sales Consultant"
    assert record["xp_total"] == 0
    assert record["version"] == 0
    assert db.list_memberships("alice") == ["dealer-1", "dealer-2"]

    with pytest.raises(ValidationError):
        db.create_learner("alice")
    with pytest.raises(ValidationError):
        db.create_learner("  ")


def test_set_learner_role(temp_db):
    db.create_learner("peter")
    db.set_learner_role("peter", "Service Writer")
    assert db.get_learner("peter")["role"] == "Service Writer"
    with pytest.raises(NotFoundError):
        db.set_learner_role("ghost", "sales")


def test_membership_requires_learner(temp_db):
    with pytest.raises(NotFoundError):
        db.add_membership("ghost", "dealer-1")
    assert db.list_memberships("ghost") == []


def test_ratings_round_trip_timestamps(temp_db):
    db.create_learner("alice")
    with db.transaction() as con:
        db.write_ratings(con, "alice", {"empathy": Rating(72.5, WHEN), "trust": Rating(60.0, None)})
    stored = db.get_ratings("alice")
    assert stored["empathy"] == Rating(72.5, WHEN)
    assert stored["trust"].last_updated is None


def test_ladder_progress_is_serialized(temp_db):
    db.create_learner("alice")
    assert db.get_ladder_progress("base", "alice") is None
    with db.transaction() as con:
        db.write_ladder_progress(
            con,
            "base",
            "alice",
            BaseLadderProgress(
                current_level=2,
                lessons_passed={"lvl1": ["a", "b"]},
                daily_pass_date="2025-03-14",
                daily_pass_count=2,
            ).to_record(),
            WHEN,
        )
    record = db.get_ladder_progress("base", "alice")
    assert record["current_level"] == 2
    assert record["lessons_passed"] == {"lvl1": ["a", "b"]}
    assert record["certified"] is False
    assert record["daily_pass_count"] == 2

    with pytest.raises(ValidationError):
        db.get_ladder_progress("gold", "alice")


def test_badges_are_granted_once(temp_db):
    db.create_learner("alice")
    with db.transaction() as con:
        assert db.grant_badge(con, "alice", "first-drive", WHEN)
        assert not db.grant_badge(con, "alice", "first-drive", WHEN)
    assert [row["badge_id"] for row in db.list_badges("alice")] == ["first-drive"]


def test_exercise_log_and_counts(temp_db):
    db.create_learner("alice")
    with db.transaction() as con:
        db.append_exercise_log(con, "alice", "baseline", "baseline_assessment", "normal", {"empathy": 80}, 0, WHEN)
        db.append_exercise_log(con, "alice", "ex-1", "standard", "normal", {"empathy": 70}, 20, WHEN)
        assert db.count_exercises(con, "alice") == 2
        assert db.count_exercises(con, "alice", mode="standard") == 1
    latest = db.list_exercise_log("alice")[0]
    assert latest["exercise_id"] == "ex-1"
    assert latest["scores"] == {"empathy": 70}


def test_failed_transaction_rolls_back(temp_db):
    db.create_learner("alice")
    with pytest.raises(RuntimeError):
        with db.transaction() as con:
            db.append_xp_entry(con, "alice", 50, "normal", "exercise:ex-1", 50, WHEN)
            raise RuntimeError("boom")
    assert db.list_xp_ledger("alice") == []
