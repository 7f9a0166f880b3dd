import badges
import channel_catalog
import ladder_catalog


def test_catalog_contains_terminal_badges():
    assert ladder_catalog.TERMINAL_BADGE in badges.BADGES
    assert channel_catalog.TERMINAL_BADGE in badges.BADGES
    assert badges.BADGES["first-drive"].name == "First Drive"


def test_first_exercise_and_xp_thresholds():
    earned = badges.milestone_badges(prior_exercises=0, xp_before=950, xp_after=1050, scores={"empathy": 70})
    assert earned == ["first-drive", "xp-1000"]

    crossing_two = badges.milestone_badges(prior_exercises=3, xp_before=4990, xp_after=10000, scores={})
    assert crossing_two == ["xp-5000", "xp-10000"]


def test_score_thresholds():
    near = badges.milestone_badges(prior_exercises=1, xp_before=0, xp_after=0, scores={"a": 95, "b": 96})
    assert near == ["top-performer"]

    perfect = badges.milestone_badges(prior_exercises=1, xp_before=0, xp_after=0, scores={"a": 100, "b": 100})
    assert perfect == ["top-performer", "perfectionist"]

    below = badges.milestone_badges(prior_exercises=1, xp_before=0, xp_after=0, scores={"a": 94.9})
    assert below == []


def test_new_badges_skips_granted_and_duplicates():
    assert badges.new_badges(["first-drive", "xp-1000", "xp-1000"], {"first-drive"}) == ["xp-1000"]


def test_xp_milestones_from_any_source():
    assert badges.xp_milestone_badges(995, 1002) == ["xp-1000"]
    assert badges.xp_milestone_badges(1000, 1100) == []
    assert badges.xp_milestone_badges(900, 999) == []
