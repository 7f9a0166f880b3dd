import threading

import pytest

import db
import ladder_catalog
from coordinator import MutationCoordinator
from errors import ConflictRetryable


def test_parallel_passes_for_one_learner_all_land(learner, now):
    coordinator = MutationCoordinator(daily_pass_limit=20, max_attempts=50, retry_backoff=0.02)
    lesson_ids = ladder_catalog.lesson_ids_for_level(1)[:8]
    errors = []
    barrier = threading.Barrier(len(lesson_ids))

    def worker(lesson_id):
        try:
            barrier.wait()
            coordinator.pass_lesson(learner, 1, lesson_id, now=now)
        except Exception as exc:  # pragma: no cover - reported below
            errors.append(exc)

    threads = [threading.Thread(target=worker, args=(lesson_id,)) for lesson_id in lesson_ids]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    progress = db.get_ladder_progress("base", learner)
    assert sorted(progress["lessons_passed"]["lvl1"]) == sorted(lesson_ids)
    assert progress["daily_pass_count"] == len(lesson_ids)
    assert db.get_learner(learner)["xp_total"] == len(lesson_ids) * ladder_catalog.lesson_xp(1)
    assert len(db.list_xp_ledger(learner)) == len(lesson_ids)


def test_version_conflict_is_retried(monkeypatch, coordinator, learner, now):
    original = db.commit_learner
    calls = []

    def flaky(con, learner_id, expected_version, **kwargs):
        calls.append(expected_version)
        if len(calls) == 1:
            raise ConflictRetryable("simulated concurrent writer")
        return original(con, learner_id, expected_version, **kwargs)

    monkeypatch.setattr(db, "commit_learner", flaky)
    lesson_id = ladder_catalog.lesson_ids_for_level(1)[0]
    result = coordinator.pass_lesson(learner, 1, lesson_id, now=now)

    assert len(calls) == 2
    assert result.xp_total == ladder_catalog.lesson_xp(1)
    # The first attempt was rolled back entirely.
    assert len(db.list_xp_ledger(learner)) == 1
    assert db.get_learner(learner)["version"] == 1


def test_persistent_conflict_surfaces_and_writes_nothing(monkeypatch, learner, now):
    coordinator = MutationCoordinator(max_attempts=3, retry_backoff=0)

    def always_conflict(con, learner_id, expected_version, **kwargs):
        raise ConflictRetryable("simulated concurrent writer")

    monkeypatch.setattr(db, "commit_learner", always_conflict)
    with pytest.raises(ConflictRetryable):
        coordinator.submit_exercise_result(learner, "ex-1", {"empathy": 90}, xp_hint=50, now=now)

    assert db.list_xp_ledger(learner) == []
    assert db.list_exercise_log(learner) == []
    assert db.get_ratings(learner) == {}
    assert db.get_learner(learner)["xp_total"] == 0


def test_stale_version_is_rejected(learner):
    with db.transaction() as con:
        version = db.load_learner(con, learner)["version"]
        db.commit_learner(con, learner, version, xp_total=5)
    with pytest.raises(ConflictRetryable):
        with db.transaction() as con:
            db.commit_learner(con, learner, version, xp_total=10)
    assert db.get_learner(learner)["xp_total"] == 5
