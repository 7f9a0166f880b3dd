import pytest

import channel_catalog
import ladder_catalog


def test_every_base_level_has_fourteen_lessons():
    for level in range(ladder_catalog.LEVEL_MIN, ladder_catalog.LEVEL_MAX + 1):
        lessons = ladder_catalog.lessons_for_level(level, "sales")
        assert len(lessons) == 14
        assert [lesson.lesson_id for lesson in lessons] == list(ladder_catalog.lesson_ids_for_level(level))
        assert len({lesson.lesson_id for lesson in lessons}) == 14
        assert all(lesson.lesson_id.startswith(f"ladder-l{level}-") for lesson in lessons)


def test_lesson_ids_do_not_depend_on_role():
    sales = [lesson.lesson_id for lesson in ladder_catalog.lessons_for_level(3, "sales")]
    parts = [lesson.lesson_id for lesson in ladder_catalog.lessons_for_level(3, "Parts Manager")]
    assert sales == parts


def test_role_context_aliases():
    assert ladder_catalog.role_context("Service Writer") == "service"
    assert ladder_catalog.role_context("GM") == "gm"
    assert ladder_catalog.role_context("astronaut") == "manager"
    assert ladder_catalog.role_context(None) == "manager"


def test_scenario_mentions_role_context():
    lesson = ladder_catalog.lessons_for_level(1, "finance")[0]
    assert "Role context: finance." in lesson.scenario


def test_xp_rewards_increase_with_level_and_fit_the_award_cap():
    rewards = [ladder_catalog.lesson_xp(level) for level in range(1, 11)]
    assert rewards == sorted(set(rewards))
    assert all(0 < reward <= 100 for reward in rewards)
    assert ladder_catalog.level_xp(1) == 100
    assert ladder_catalog.level_xp(10) == 235


@pytest.mark.parametrize("raw, expected", [(0, 1), (11, 10), ("4", 4), (3.6, 4), (None, 1), (float("nan"), 1)])
def test_clamp_level(raw, expected):
    assert ladder_catalog.clamp_level(raw) == expected


def test_base_badges():
    assert ladder_catalog.level_badge(4, certified=False) == "ladder-lvl-4"
    assert ladder_catalog.level_badge(10, certified=True) == ladder_catalog.TERMINAL_BADGE


def test_channel_branch_level_is_empty_until_channel_selected():
    assert channel_catalog.lessons_for_level(2) == []
    assert channel_catalog.lessons_for_level(2, primary_channel="cold_email", phase="secondary") == []
    assert channel_catalog.lessons_for_level(2, primary_channel="not-a-channel") == []


def test_channel_branch_lesson_ids_embed_phase_and_channel():
    primary = channel_catalog.lessons_for_level(2, primary_channel="cold_calling")
    assert len(primary) == len(channel_catalog.PRIMARY_LESSONS)
    assert all(lesson.lesson_id.startswith("channel-l2-primary-cold_calling-") for lesson in primary)

    secondary = channel_catalog.lessons_for_level(
        2, primary_channel="cold_calling", secondary_channel="referrals", phase="secondary"
    )
    assert len(secondary) == len(channel_catalog.SECONDARY_LESSONS)
    assert all(lesson.lesson_id.startswith("channel-l2-secondary-referrals-") for lesson in secondary)


def test_channel_linear_levels():
    for level in (1, 3, 4, 5):
        lessons = channel_catalog.lessons_for_level(level)
        assert lessons
        assert all(lesson.lesson_id.startswith(f"channel-l{level}-") for lesson in lessons)


def test_channel_level_keys():
    assert channel_catalog.level_key(1) == "lvl1"
    assert channel_catalog.level_key(2) == "lvl2-primary"
    assert channel_catalog.level_key(2, "secondary") == "lvl2-secondary"
    assert channel_catalog.level_key(2, "bogus") == "lvl2-primary"


def test_channel_lesson_xp():
    assert channel_catalog.lesson_xp(1, 5) == 28
    assert channel_catalog.lesson_xp(2, 5, "primary") == 52
    assert channel_catalog.lesson_xp(2, 3, "secondary") == 40
    assert channel_catalog.lesson_xp(5, 4) == 160


def test_channel_badges_and_labels():
    assert channel_catalog.level_badge(3) == "channel-ladder-lvl-3"
    assert channel_catalog.level_badge(5, "2025-01-01T00:00:00+00:00") == channel_catalog.TERMINAL_BADGE
    assert channel_catalog.channel_label("linkedin_outreach") == "LinkedIn outreach"
    assert channel_catalog.channel_label(None) == "Not selected"
    assert channel_catalog.sanitize_channel(" referrals ") == "referrals"


def test_full_level_sums_close_to_level_xp():
    for level in range(1, 11):
        total = ladder_catalog.lesson_xp(level) * ladder_catalog.lesson_count(level)
        assert abs(total - ladder_catalog.level_xp(level)) <= ladder_catalog.lesson_count(level) // 2
