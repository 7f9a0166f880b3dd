"""Channel-branching ladder catalog: five levels, level 2 split by lead channel.

Level 2 runs a ``primary`` phase and then a ``secondary`` phase. Each phase
only shows lessons once the learner has chosen the channel for it, and the
lesson ids embed both phase and channel.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

LEVEL_MIN = 1
LEVEL_MAX = 5
BRANCH_LEVEL = 2

PRIMARY = "primary"
SECONDARY = "secondary"
PHASES: Tuple[str, ...] = (PRIMARY, SECONDARY)

LEVEL_XP: Dict[int, int] = {1: 140, 2: 260, 3: 360, 4: 480, 5: 640}
SECONDARY_BONUS_XP = 120

TERMINAL_BADGE = "channel-ladder-lvl-5-certified"

LEVEL_TITLES: Dict[int, str] = {
    1: "Regulated Authority",
    2: "Strategic Lead Generation",
    3: "Strategic Diagnosis",
    4: "Precision Alignment",
    5: "Pricing Stability & Objection Regulation",
}

CHANNEL_LABELS: Dict[str, str] = {
    "cold_calling": "Cold calling",
    "cold_email": "Cold email",
    "linkedin_outreach": "LinkedIn outreach",
    "content_inbound": "Content-driven inbound",
    "referrals": "Referrals",
    "not_sure": "Not sure yet",
}

CHANNEL_CONTEXT: Dict[str, str] = {
    "cold_calling": "live call opening and objection handling",
    "cold_email": "first-touch email and follow-up sequencing",
    "linkedin_outreach": "LinkedIn connection and DM progression",
    "content_inbound": "inbound lead triage and consultative response",
    "referrals": "warm intro conversion and trust transfer",
    "not_sure": "multi-channel testing and baseline outreach practice",
}


@dataclass(frozen=True)
class BaseLesson:
    id: str
    title: str
    objective: str


@dataclass(frozen=True)
class ChannelLessonTemplate:
    lesson_id: str
    level: int
    level_title: str
    title: str
    objective: str
    sequence: int
    scenario: str
    phase: Optional[str] = None
    channel: Optional[str] = None


LEVEL_LESSONS: Dict[int, Tuple[BaseLesson, ...]] = {
    1: (
        BaseLesson("l1-authority-frame", "Authority Frame Setup",
                   "Set clear ownership of the conversation without sounding rigid."),
        BaseLesson("l1-regulated-language", "Regulated Language",
                   "Use concise phrasing that keeps confidence and compliance aligned."),
        BaseLesson("l1-pace-control", "Pace Control",
                   "Control tempo under pressure and avoid rushing into pitch mode."),
        BaseLesson("l1-curiosity-balance", "Curiosity Balance",
                   "Stay curious without losing structure or sounding scripted."),
        BaseLesson("l1-stability-close", "Stability Close",
                   "End interactions with calm authority and a clear next step."),
    ),
    3: (
        BaseLesson("l3-diagnosis-depth", "Diagnosis Depth",
                   "Uncover operational pain and business impact with layered questioning."),
        BaseLesson("l3-risk-surface", "Risk Surface",
                   "Identify emotional and organizational risk blockers early."),
        BaseLesson("l3-priority-order", "Priority Order",
                   "Sequence problems by urgency, ownership, and business impact."),
        BaseLesson("l3-confirmation-loop", "Confirmation Loop",
                   "Confirm diagnosis in customer language before solution framing."),
    ),
    4: (
        BaseLesson("l4-outcome-alignment", "Outcome Alignment",
                   "Map product capabilities directly to diagnosis outcomes."),
        BaseLesson("l4-stakeholder-fit", "Stakeholder Fit",
                   "Align message to technical, financial, and executive stakeholders."),
        BaseLesson("l4-proof-selection", "Proof Selection",
                   "Use only proof points that reinforce stated buying criteria."),
        BaseLesson("l4-next-step-contract", "Next-Step Contract",
                   "Lock precise next actions with timing and owner confirmation."),
    ),
    5: (
        BaseLesson("l5-pricing-frame", "Pricing Frame Stability",
                   "Present pricing with certainty and without defensive language."),
        BaseLesson("l5-objection-regulation", "Objection Regulation",
                   "Regulate objections through clarification and alignment, not pressure."),
        BaseLesson("l5-discount-discipline", "Discount Discipline",
                   "Protect value and avoid premature concessions."),
        BaseLesson("l5-close-under-pressure", "Close Under Pressure",
                   "Maintain composure and decision leadership in final negotiations."),
    ),
}

PRIMARY_LESSONS: Tuple[BaseLesson, ...] = (
    BaseLesson("l2-tone-control", "Tone Control",
               "Use calm, credible tone that creates authority and safety."),
    BaseLesson("l2-curiosity-outreach", "Curiosity-Driven Outreach",
               "Lead with diagnosis curiosity instead of pitch language."),
    BaseLesson("l2-no-premature-pitch", "No Premature Pitch",
               "Avoid product pitching before clear qualification."),
    BaseLesson("l2-followup-pacing", "Follow-up Pacing",
               "Sequence follow-ups with intent, spacing, and relevance."),
    BaseLesson("l2-rejection-regulation", "Rejection Regulation",
               "Regulate emotional response and maintain composure on rejection."),
)

SECONDARY_LESSONS: Tuple[BaseLesson, ...] = (
    BaseLesson("l2-secondary-open", "Secondary Channel Open",
               "Establish channel-appropriate opening with authority."),
    BaseLesson("l2-secondary-qualification", "Secondary Qualification",
               "Qualify quickly while preserving trust and pacing."),
    BaseLesson("l2-secondary-stability", "Secondary Stability",
               "Maintain consistency under objections and low-response conditions."),
)


def clamp_level(level: Any) -> int:
    try:
        numeric = float(level)
    except (TypeError, ValueError):
        return LEVEL_MIN
    if math.isnan(numeric) or math.isinf(numeric):
        return LEVEL_MIN
    return max(LEVEL_MIN, min(LEVEL_MAX, int(math.floor(numeric + 0.5))))


def level_title(level: Any) -> str:
    return LEVEL_TITLES[clamp_level(level)]


def next_level(level: Any) -> int:
    return min(LEVEL_MAX, clamp_level(level) + 1)


def sanitize_phase(value: Any) -> str:
    return SECONDARY if value == SECONDARY else PRIMARY


def sanitize_channel(value: Any) -> Optional[str]:
    """Return ``value`` if it names a known lead channel, else ``None``."""

    if not isinstance(value, str):
        return None
    candidate = value.strip()
    return candidate if candidate in CHANNEL_LABELS else None


def channel_label(channel: Optional[str]) -> str:
    if not channel:
        return "Not selected"
    return CHANNEL_LABELS.get(channel, "Not selected")


def level_key(level: Any, phase: str = PRIMARY) -> str:
    safe = clamp_level(level)
    if safe == BRANCH_LEVEL:
        return f"lvl{BRANCH_LEVEL}-{sanitize_phase(phase)}"
    return f"lvl{safe}"


def lessons_for_level(
    level: Any,
    *,
    primary_channel: Optional[str] = None,
    secondary_channel: Optional[str] = None,
    phase: str = PRIMARY,
) -> List[ChannelLessonTemplate]:
    """Return the visible lessons for ``level``.

    On the branch level the set is empty until the channel for ``phase`` has
    been selected.
    """

    safe = clamp_level(level)
    title = LEVEL_TITLES[safe]

    if safe == BRANCH_LEVEL:
        active_phase = sanitize_phase(phase)
        channel = sanitize_channel(
            primary_channel if active_phase == PRIMARY else secondary_channel
        )
        if channel is None:
            return []
        lesson_set = PRIMARY_LESSONS if active_phase == PRIMARY else SECONDARY_LESSONS
        return [
            ChannelLessonTemplate(
                lesson_id=f"channel-l2-{active_phase}-{channel}-{lesson.id}",
                level=safe,
                level_title=title,
                title=lesson.title,
                objective=lesson.objective,
                sequence=index,
                scenario=" ".join(
                    [
                        f"Channel ladder {title}.",
                        f"Channel: {channel_label(channel)}.",
                        f"Context: {CHANNEL_CONTEXT[channel]}.",
                    ]
                ),
                phase=active_phase,
                channel=channel,
            )
            for index, lesson in enumerate(lesson_set, start=1)
        ]

    return [
        ChannelLessonTemplate(
            lesson_id=f"channel-l{safe}-{lesson.id}",
            level=safe,
            level_title=title,
            title=lesson.title,
            objective=lesson.objective,
            sequence=index,
            scenario=f"Channel ladder {title}. Objective: {lesson.objective}",
        )
        for index, lesson in enumerate(LEVEL_LESSONS[safe], start=1)
    ]


def level_xp(level: Any) -> int:
    return LEVEL_XP[clamp_level(level)]


def lesson_xp(level: Any, lesson_count: int, phase: Optional[str] = None) -> int:
    """Even share of the level pool.

    The secondary phase of the branch level draws from the flat
    ``SECONDARY_BONUS_XP`` pool instead of the level's own reward.
    """

    safe = clamp_level(level)
    count = max(1, int(round(lesson_count)))
    if safe == BRANCH_LEVEL and phase == SECONDARY:
        pool = SECONDARY_BONUS_XP
    else:
        pool = level_xp(safe)
    return max(1, int(math.floor(pool / count + 0.5)))


def level_badge(level: Any, certified_timestamp: Optional[str] = None) -> str:
    if certified_timestamp:
        return TERMINAL_BADGE
    return f"channel-ladder-lvl-{clamp_level(level)}"
