import pytest

import access
import db
import ladder_catalog
from errors import AccessDeniedError, ValidationError


def test_learner_without_organizations_has_no_access(temp_db):
    db.create_learner("solo", "Solo")
    assert not access.has_access("solo", "base")
    assert not access.has_access("solo", "channel")


def test_any_enabled_organization_grants_access(temp_db):
    db.create_learner("marco", "Marco", "General Manager", ["dealer-1", "dealer-2"])
    db.set_ladder_access("dealer-1", "base", False)
    db.set_ladder_access("dealer-2", "base", True)

    assert access.has_access("marco", "base")
    assert not access.has_access("marco", "channel")

    db.remove_membership("marco", "dealer-2")
    assert not access.has_access("marco", "base")


def test_flags_are_per_ladder(temp_db):
    db.create_learner("lena", "Lena", "sales", ["saas"])
    db.set_ladder_access("saas", "channel", True)
    assert access.has_access("lena", "channel")
    assert not access.has_access("lena", "base")


def test_unknown_ladder_is_a_validation_error(temp_db):
    db.create_learner("lena", "Lena")
    with pytest.raises(ValidationError):
        access.has_access("lena", "gold")
    with pytest.raises(ValidationError):
        db.set_ladder_access("saas", "gold", True)


def test_revocation_takes_effect_between_calls(coordinator, learner, now):
    lesson_ids = ladder_catalog.lesson_ids_for_level(1)
    coordinator.pass_lesson(learner, 1, lesson_ids[0], now=now)

    db.set_ladder_access("dealer-1", "base", False)
    before = coordinator.get_snapshot(learner, now=now)

    with pytest.raises(AccessDeniedError) as info:
        coordinator.pass_lesson(learner, 1, lesson_ids[1], now=now)
    assert info.value.learner_id == learner
    assert info.value.ladder == "base"

    after = coordinator.get_snapshot(learner, now=now)
    assert after == before
    assert after.base_ladder.lessons_passed["lvl1"] == [lesson_ids[0]]


def test_require_access_reads_fresh_flags(learner):
    with db.transaction() as con:
        access.require_access(con, learner, "channel")
    db.set_ladder_access("dealer-1", "channel", False)
    with db.transaction() as con:
        with pytest.raises(AccessDeniedError):
            access.require_access(con, learner, "channel")
