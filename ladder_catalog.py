"""Base ladder catalog: ten levels of seven coaching stages.

Every function here is pure. Lesson ids are deterministic
(``ladder-l{level}-{stage}-{n}``) and do not depend on the learner's role;
the role context only changes the scenario copy.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, List, Sequence, Tuple

LEVEL_MIN = 1
LEVEL_MAX = 10
DAILY_PASS_LIMIT = 5
BASE_XP = 100
TIER_INCREMENT_XP = 15

TERMINAL_BADGE = "ladder-lvl-10-black-gold"

ROLE_CONTEXTS: Tuple[str, ...] = ("sales", "service", "parts", "finance", "manager", "gm")

LEVEL_TITLES: Dict[int, str] = {
    1: "Regulation Foundations",
    2: "Structured Discovery",
    3: "Alignment Precision",
    4: "Objection Stability",
    5: "Negotiation Control",
    6: "Decision Leadership",
    7: "Emotional Intelligence Under Pressure",
    8: "Cross-Department Mastery",
    9: "Strategic Profit Protection",
    10: "Institutional Mastery",
}


@dataclass(frozen=True)
class Stage:
    id: str
    title: str
    short_title: str
    skills: Tuple[str, ...]


@dataclass(frozen=True)
class LessonTemplate:
    """One lesson in a level. Content generation happens elsewhere."""

    lesson_id: str
    level: int
    level_title: str
    stage_id: str
    stage_title: str
    skill: str
    title: str
    sequence: int
    scenario: str


STAGES: Tuple[Stage, ...] = (
    Stage(
        "arrival_safety",
        "Arrival - Safety",
        "Arrival",
        (
            "Set emotional safety and time expectations in the first 30 seconds.",
            "Establish a clear, collaborative agenda before advancing the conversation.",
        ),
    ),
    Stage(
        "discovery_understanding",
        "Discovery - Understanding",
        "Discovery",
        (
            "Use layered discovery questions to uncover both practical and emotional needs.",
            "Summarize customer priorities and confirm understanding before proposing direction.",
        ),
    ),
    Stage(
        "alignment_precision",
        "Alignment - Precision",
        "Alignment",
        (
            "Map recommendations directly to stated priorities without overexplaining.",
            "Gain explicit alignment checkpoints before transitioning to the next step.",
        ),
    ),
    Stage(
        "experience_excitement",
        "Experience - Excitement",
        "Experience",
        (
            "Create controlled excitement while preserving pacing and customer confidence.",
            "Use silence and confirmation prompts to reinforce customer ownership.",
        ),
    ),
    Stage(
        "commitment_confirmation",
        "Commitment - Confirmation before numbers",
        "Commitment",
        (
            "Secure decision criteria and commitment intent before discussing pricing.",
            "Confirm readiness and risk concerns before entering the numbers stage.",
        ),
    ),
    Stage(
        "numbers_regulation",
        "Numbers - Regulation under pricing",
        "Numbers",
        (
            "Maintain verbal certainty and pacing control through pricing pressure.",
            "Regulate objections by clarifying, confirming, and advancing without defensiveness.",
        ),
    ),
    Stage(
        "delivery_pride",
        "Delivery - Pride and reinforcement",
        "Delivery",
        (
            "Reinforce purchase confidence with pride-based delivery language.",
            "Set follow-through expectations that protect trust after handoff.",
        ),
    ),
)

ROLE_STAGE_CONTEXT: Dict[str, Dict[str, str]] = {
    "sales": {
        "arrival_safety": "customer arriving to review vehicle options",
        "discovery_understanding": "vehicle fit and budget tradeoff discussion",
        "alignment_precision": "matching vehicle/trim/package to stated priorities",
        "experience_excitement": "walkaround and product demonstration",
        "commitment_confirmation": "confirming purchase intent before quote details",
        "numbers_regulation": "pricing, trade, and monthly payment negotiation",
        "delivery_pride": "vehicle delivery and ownership confidence reinforcement",
    },
    "service": {
        "arrival_safety": "service lane write-up and concern intake",
        "discovery_understanding": "clarifying concern, urgency, and usage impact",
        "alignment_precision": "aligning recommended work to customer priorities",
        "experience_excitement": "building confidence in the repair plan and timeline",
        "commitment_confirmation": "confirming authorization readiness before estimate details",
        "numbers_regulation": "estimate approval and scope/value objections",
        "delivery_pride": "post-repair handoff with confidence and follow-up clarity",
    },
    "parts": {
        "arrival_safety": "parts counter intake and order context setup",
        "discovery_understanding": "fitment, availability, and urgency discovery",
        "alignment_precision": "aligning parts recommendation to use case and timeline",
        "experience_excitement": "building confidence in part choice and compatibility",
        "commitment_confirmation": "confirming intent before quoting final totals",
        "numbers_regulation": "price/lead-time objections and alternatives discussion",
        "delivery_pride": "order confirmation and pickup/delivery expectation reset",
    },
    "finance": {
        "arrival_safety": "finance office handoff and expectation framing",
        "discovery_understanding": "coverage priorities and risk tolerance discovery",
        "alignment_precision": "aligning menu path to stated ownership priorities",
        "experience_excitement": "maintaining confidence while reviewing protections",
        "commitment_confirmation": "confirming decision framing before final numbers",
        "numbers_regulation": "payment and value objections under time pressure",
        "delivery_pride": "agreement completion and long-term confidence reinforcement",
    },
    "manager": {
        "arrival_safety": "desk/coaching intervention during an active customer situation",
        "discovery_understanding": "coaching discovery quality and team decision logic",
        "alignment_precision": "aligning consultant actions with customer priorities",
        "experience_excitement": "maintaining momentum while stabilizing team execution",
        "commitment_confirmation": "coaching commitment checkpoints before pricing",
        "numbers_regulation": "supporting objection regulation under desk pressure",
        "delivery_pride": "reinforcing consultant behavior and customer confidence post-close",
    },
    "gm": {
        "arrival_safety": "executive-level escalation and customer confidence recovery",
        "discovery_understanding": "cross-department discovery and strategic context",
        "alignment_precision": "ensuring precision alignment across teams and process",
        "experience_excitement": "sustaining controlled confidence across the full journey",
        "commitment_confirmation": "institutional confirmation checkpoints before financial terms",
        "numbers_regulation": "high-stakes pricing regulation across stakeholders",
        "delivery_pride": "institutional reinforcement, advocacy, and long-term retention framing",
    },
}

_ROLE_ALIASES: Dict[str, str] = {
    "sales consultant": "sales",
    "service writer": "service",
    "service manager": "service",
    "parts consultant": "parts",
    "parts manager": "parts",
    "finance manager": "finance",
    "manager": "manager",
    "general manager": "gm",
    "owner": "gm",
    "trainer": "gm",
    "admin": "gm",
    "developer": "gm",
}


def role_context(role: Any) -> str:
    """Map a job role (or a role context) to one of :data:`ROLE_CONTEXTS`."""

    if not isinstance(role, str):
        return "manager"
    key = role.strip().lower()
    if key in ROLE_CONTEXTS:
        return key
    return _ROLE_ALIASES.get(key, "manager")


def clamp_level(level: Any) -> int:
    try:
        numeric = float(level)
    except (TypeError, ValueError):
        return LEVEL_MIN
    if math.isnan(numeric) or math.isinf(numeric):
        return LEVEL_MIN
    rounded = int(math.floor(numeric + 0.5))
    return max(LEVEL_MIN, min(LEVEL_MAX, rounded))


def level_title(level: Any) -> str:
    return LEVEL_TITLES[clamp_level(level)]


def level_key(level: Any) -> str:
    return f"lvl{clamp_level(level)}"


def next_level(level: Any) -> int:
    return min(LEVEL_MAX, clamp_level(level) + 1)


def level_xp(level: Any) -> int:
    """Total XP reward for a level; strictly increasing with the level."""

    return BASE_XP + (clamp_level(level) - 1) * TIER_INCREMENT_XP


def lesson_xp(level: Any) -> int:
    """Per-lesson share of :func:`level_xp`.

    Passing every lesson of a level adds up to roughly ``level_xp(level)``.
    """

    count = lesson_count(level)
    return max(1, int(math.floor(level_xp(level) / max(1, count) + 0.5)))


def complexity_descriptor(level: Any) -> str:
    safe = clamp_level(level)
    if safe <= 2:
        return "base-complexity, cooperative customer behavior"
    if safe <= 4:
        return "moderate complexity with mild resistance"
    if safe <= 6:
        return "high complexity with layered objections"
    if safe <= 8:
        return "cross-functional complexity and time pressure"
    return "executive complexity with strategic and emotional pressure"


def lesson_id(level: Any, stage_id: str, index: int) -> str:
    return f"ladder-l{clamp_level(level)}-{stage_id}-{index}"


def lessons_for_level(level: Any, role: Any = None) -> List[LessonTemplate]:
    """Return the ordered lesson set for ``level`` in the learner's role context."""

    safe = clamp_level(level)
    title = LEVEL_TITLES[safe]
    context = role_context(role)
    complexity = complexity_descriptor(safe)

    lessons: List[LessonTemplate] = []
    sequence = 0
    for stage in STAGES:
        for index, skill in enumerate(stage.skills, start=1):
            sequence += 1
            lessons.append(
                LessonTemplate(
                    lesson_id=lesson_id(safe, stage.id, index),
                    level=safe,
                    level_title=title,
                    stage_id=stage.id,
                    stage_title=stage.title,
                    skill=skill,
                    title=f"{stage.short_title}: {skill}",
                    sequence=sequence,
                    scenario=" ".join(
                        [
                            f"Ladder {title}.",
                            f"Role context: {context}.",
                            f"Stage context: {ROLE_STAGE_CONTEXT[context][stage.id]}.",
                            f"Complexity: {complexity}.",
                        ]
                    ),
                )
            )
    return lessons


def lesson_ids_for_level(level: Any) -> Sequence[str]:
    return tuple(
        lesson_id(level, stage.id, index)
        for stage in STAGES
        for index in range(1, len(stage.skills) + 1)
    )


def lesson_count(level: Any) -> int:
    return sum(len(stage.skills) for stage in STAGES)


def level_badge(level: Any, certified: bool) -> str:
    if certified:
        return TERMINAL_BADGE
    return f"ladder-lvl-{clamp_level(level)}"
