"""Badge catalog and the milestone rules evaluated on exercise completion."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Set

import channel_catalog
import ladder_catalog


@dataclass(frozen=True)
class Badge:
    id: str
    name: str
    description: str


BADGES: Dict[str, Badge] = {
    badge.id: badge
    for badge in (
        Badge("first-drive", "First Drive", "Complete your first exercise."),
        Badge("xp-1000", "Roadster", "Reach 1,000 total XP."),
        Badge("xp-5000", "GT Cruiser", "Reach 5,000 total XP."),
        Badge("xp-10000", "Supercar Status", "Reach 10,000 total XP."),
        Badge("top-performer", "Top Performer", "Score 95% or higher in a single exercise."),
        Badge("perfectionist", "Perfectionist", "Score a perfect 100% in an exercise."),
        Badge(ladder_catalog.TERMINAL_BADGE, "Institutional Mastery",
              "Certify on all ten levels of the ladder."),
        Badge(channel_catalog.TERMINAL_BADGE, "Channel Ladder Certified",
              "Complete all five levels of the channel ladder."),
    )
}

XP_MILESTONES = (1000, 5000, 10000)
TOP_PERFORMER_THRESHOLD = 95.0


def xp_milestone_badges(xp_before: int, xp_after: int) -> List[str]:
    """XP thresholds crossed by one ledger change, from any source."""

    return [f"xp-{threshold}" for threshold in XP_MILESTONES if xp_before < threshold <= xp_after]


def milestone_badges(
    *,
    prior_exercises: int,
    xp_before: int,
    xp_after: int,
    scores: Mapping[str, float],
) -> List[str]:
    """Badges earned by one exercise completion, before de-duplication."""

    earned: List[str] = []
    if prior_exercises == 0:
        earned.append("first-drive")
    earned.extend(xp_milestone_badges(xp_before, xp_after))
    if scores:
        average = sum(scores.values()) / len(scores)
        if average >= TOP_PERFORMER_THRESHOLD:
            earned.append("top-performer")
        if average == 100:
            earned.append("perfectionist")
    return earned


def new_badges(candidates: Iterable[str], already_granted: Set[str]) -> List[str]:
    out: List[str] = []
    for badge_id in candidates:
        if badge_id not in already_granted and badge_id not in out:
            out.append(badge_id)
    return out
