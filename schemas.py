"""Pydantic schemas for submissions coming in and results going back to callers."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from engines.rating import SKILLS

__all__ = [
    "RatingSubmission",
    "SkillDelta",
    "RatingView",
    "BaseLadderView",
    "ChannelLadderView",
    "LearnerSnapshot",
    "ExerciseResult",
    "LessonPassResult",
    "ChannelSelectionResult",
    "normalize_skill_key",
]

_SKILL_ALIASES = {
    "followup": "follow_up",
    "follow-up": "follow_up",
    "relationshipbuilding": "relationship",
    "relationship_building": "relationship",
}


def normalize_skill_key(key: str) -> str:
    candidate = str(key).strip()
    lowered = candidate.lower()
    if lowered in SKILLS:
        return lowered
    return _SKILL_ALIASES.get(lowered, candidate)


class RatingSubmission(BaseModel):
    """One finished interactive exercise as reported by the exercise flow."""

    learner_id: str = Field(min_length=1)
    exercise_id: str = Field(min_length=1)
    ratings: Dict[str, float] = Field(
        default_factory=dict,
        description="Observed score per skill on a 0-100 scale; out-of-range values are clamped.",
    )
    severity: Literal["normal", "behavior_violation"] = "normal"
    xp_hint: float = Field(default=0.0, description="Raw XP suggested by the exercise flow.")
    mode: Literal["standard", "baseline_assessment"] = Field(
        default="standard",
        description="baseline_assessment sets ratings directly instead of decay-blending them.",
    )

    @field_validator("ratings", mode="before")
    @classmethod
    def _known_skills(cls, value: Any) -> Dict[str, Any]:
        if value is None:
            return {}
        if not isinstance(value, dict):
            raise ValueError("ratings must be a mapping of skill to score")
        out: Dict[str, Any] = {}
        for key, score in value.items():
            skill = normalize_skill_key(key)
            if skill not in SKILLS:
                raise ValueError(f"unknown skill: {key}")
            out[skill] = score
        return out


class SkillDelta(BaseModel):
    before: float
    after: float
    delta: float


class RatingView(BaseModel):
    score: float
    last_updated: Optional[datetime] = None


class BaseLadderView(BaseModel):
    ladder: Literal["base"] = "base"
    current_level: int
    level_title: str
    lessons_passed: Dict[str, List[str]]
    progress_percentage: int
    certified: bool
    badge: str
    daily_pass_date: str
    daily_pass_count: int
    daily_pass_limit: Optional[int] = None
    daily_pass_remaining: Optional[int] = None
    daily_limit_reached: bool = False
    abandonment_counter: int
    current_level_lesson_count: int
    current_level_passed_count: int


class ChannelLadderView(BaseModel):
    ladder: Literal["channel"] = "channel"
    current_level: int
    level_title: str
    level_completed: int
    lessons_passed: Dict[str, List[str]]
    progress_percentage: int
    primary_channel: Optional[str] = None
    secondary_channel: Optional[str] = None
    l2_phase: Literal["primary", "secondary"] = "primary"
    certified_timestamp: Optional[str] = None
    certified: bool
    badge: str
    abandonment_counter: int
    current_level_lesson_count: int
    current_level_passed_count: int


class LearnerSnapshot(BaseModel):
    learner_id: str
    role: str
    xp_total: int
    ratings: Dict[str, RatingView]
    badges: List[str] = Field(default_factory=list)
    base_ladder: Optional[BaseLadderView] = None
    channel_ladder: Optional[ChannelLadderView] = None


class ExerciseResult(BaseModel):
    learner_id: str
    exercise_id: str
    mode: Literal["standard", "baseline_assessment"]
    severity: Literal["normal", "behavior_violation"]
    skills: Dict[str, SkillDelta]
    xp_awarded: int
    xp_total: int
    badges_awarded: List[str] = Field(default_factory=list)
    snapshot: LearnerSnapshot


class LessonPassResult(BaseModel):
    learner_id: str
    ladder: Literal["base", "channel"]
    level: int
    lesson_id: str
    already_passed: bool
    xp_awarded: int
    xp_total: int
    level_advanced: bool = False
    phase_advanced: bool = False
    certified: bool = False
    badges_awarded: List[str] = Field(default_factory=list)
    snapshot: LearnerSnapshot


class ChannelSelectionResult(BaseModel):
    learner_id: str
    phase: Literal["primary", "secondary"]
    channel: str
    changed: bool
    snapshot: LearnerSnapshot
