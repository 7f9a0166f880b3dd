"""Gated ladder progression.

One state machine drives both curricula. A :class:`LadderStrategy` supplies
the catalog lookups and what happens when the active lesson set is
complete; :class:`GatedLadder` owns the shared rules: lessons belong to the
learner's current level, re-passing is an idempotent no-op, the optional
daily cap is keyed by UTC calendar date, and every rejection happens before
the returned state differs from the input.

All functions are pure. State objects are copied, never mutated in place.
"""

from __future__ import annotations

import copy
import logging
import math
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, time, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import channel_catalog
import ladder_catalog
from errors import RateLimitedError, ValidationError

_LOGGER = logging.getLogger(__name__)

BASE_LADDER = "base"
CHANNEL_LADDER = "channel"
LADDERS: Tuple[str, ...] = (BASE_LADDER, CHANNEL_LADDER)


def utc_date_key(now: datetime) -> str:
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc).date().isoformat()


def next_utc_midnight(now: datetime) -> datetime:
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    today = now.astimezone(timezone.utc).date()
    return datetime.combine(today + timedelta(days=1), time(0, 0), tzinfo=timezone.utc)


def _clamp_percent(value: Any) -> int:
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return 0
    if math.isnan(numeric) or math.isinf(numeric):
        return 0
    return max(0, min(100, int(math.floor(numeric + 0.5))))


def _non_negative_int(value: Any) -> int:
    try:
        numeric = float(value or 0)
    except (TypeError, ValueError):
        return 0
    if math.isnan(numeric) or math.isinf(numeric):
        return 0
    return max(0, int(math.floor(numeric + 0.5)))


def normalize_lessons_passed(raw: Any) -> Dict[str, List[str]]:
    """Drop malformed entries, trim ids and de-duplicate while keeping order."""

    if not isinstance(raw, Mapping):
        return {}
    out: Dict[str, List[str]] = {}
    for key, value in raw.items():
        if not isinstance(value, (list, tuple)):
            continue
        seen: List[str] = []
        for entry in value:
            if isinstance(entry, str) and entry.strip() and entry.strip() not in seen:
                seen.append(entry.strip())
        out[str(key)] = seen
    return out


@dataclass
class LadderProgress:
    """Fields shared by every ladder variant."""

    current_level: int = 1
    lessons_passed: Dict[str, List[str]] = field(default_factory=dict)
    progress_percentage: int = 0
    daily_pass_date: str = ""
    daily_pass_count: int = 0
    abandonment_counter: int = 0

    def passed_for(self, key: str) -> List[str]:
        return list(self.lessons_passed.get(key, []))

    def daily_count_on(self, date_key: str) -> int:
        return self.daily_pass_count if self.daily_pass_date == date_key else 0

    def to_record(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BaseLadderProgress(LadderProgress):
    certified: bool = False

    @classmethod
    def from_record(cls, record: Optional[Mapping[str, Any]]) -> "BaseLadderProgress":
        record = record or {}
        state = cls(
            current_level=ladder_catalog.clamp_level(record.get("current_level", 1)),
            lessons_passed=normalize_lessons_passed(record.get("lessons_passed")),
            progress_percentage=_clamp_percent(record.get("progress_percentage")),
            daily_pass_date=str(record.get("daily_pass_date") or ""),
            daily_pass_count=_non_negative_int(record.get("daily_pass_count")),
            abandonment_counter=_non_negative_int(record.get("abandonment_counter")),
            certified=bool(record.get("certified")),
        )
        state.lessons_passed.setdefault(ladder_catalog.level_key(state.current_level), [])
        return state


@dataclass
class ChannelLadderProgress(LadderProgress):
    level_completed: int = 0
    primary_channel: Optional[str] = None
    secondary_channel: Optional[str] = None
    l2_phase: str = channel_catalog.PRIMARY
    certified_timestamp: Optional[str] = None

    @property
    def certified(self) -> bool:
        return bool(self.certified_timestamp)

    @classmethod
    def from_record(cls, record: Optional[Mapping[str, Any]]) -> "ChannelLadderProgress":
        record = record or {}
        certified_timestamp = record.get("certified_timestamp") or None
        if not isinstance(certified_timestamp, str):
            certified_timestamp = None
        level_completed = min(
            channel_catalog.LEVEL_MAX, _non_negative_int(record.get("level_completed"))
        )
        if certified_timestamp:
            level_completed = channel_catalog.LEVEL_MAX
            current_level = channel_catalog.LEVEL_MAX
        elif record.get("current_level") is not None:
            current_level = channel_catalog.clamp_level(record.get("current_level"))
        else:
            current_level = channel_catalog.clamp_level(level_completed + 1)
        state = cls(
            current_level=current_level,
            lessons_passed=normalize_lessons_passed(record.get("lessons_passed")),
            progress_percentage=_clamp_percent(record.get("progress_percentage")),
            daily_pass_date=str(record.get("daily_pass_date") or ""),
            daily_pass_count=_non_negative_int(record.get("daily_pass_count")),
            abandonment_counter=_non_negative_int(record.get("abandonment_counter")),
            level_completed=level_completed,
            primary_channel=channel_catalog.sanitize_channel(record.get("primary_channel")),
            secondary_channel=channel_catalog.sanitize_channel(record.get("secondary_channel")),
            l2_phase=channel_catalog.sanitize_phase(record.get("l2_phase")),
            certified_timestamp=certified_timestamp,
        )
        return state


@dataclass(frozen=True)
class Transition:
    level_advanced: bool = False
    phase_advanced: bool = False
    certified: bool = False


@dataclass
class PassOutcome:
    """Result of :meth:`GatedLadder.pass_lesson`; ``state`` is a new object."""

    state: LadderProgress
    lesson_id: str
    level: int
    already_passed: bool
    xp_reward: int
    level_advanced: bool = False
    phase_advanced: bool = False
    certified: bool = False


class LadderStrategy:
    """Catalog and phase-transition hooks for one ladder variant."""

    name: str = ""

    def new_state(self) -> LadderProgress:
        raise NotImplementedError

    def from_record(self, record: Optional[Mapping[str, Any]]) -> LadderProgress:
        raise NotImplementedError

    def active_key(self, state: LadderProgress) -> str:
        raise NotImplementedError

    def lessons(self, state: LadderProgress, role: Any = None) -> Sequence[Any]:
        raise NotImplementedError

    def lesson_xp(self, state: LadderProgress, lesson_count: int) -> int:
        raise NotImplementedError

    def require_unlocked(self, state: LadderProgress) -> None:
        """Raise :class:`ValidationError` when the active lessons are not yet visible."""

    def complete(self, state: LadderProgress, now: datetime) -> Transition:
        """Mutate ``state`` (already a private copy) after its active set is complete."""

        raise NotImplementedError

    def is_certified(self, state: LadderProgress) -> bool:
        raise NotImplementedError

    def badge(self, state: LadderProgress) -> str:
        raise NotImplementedError

    def terminal_badge(self) -> str:
        raise NotImplementedError


class BaseLadderStrategy(LadderStrategy):
    name = BASE_LADDER

    def new_state(self) -> BaseLadderProgress:
        return BaseLadderProgress.from_record(None)

    def from_record(self, record):
        return BaseLadderProgress.from_record(record)

    def active_key(self, state):
        return ladder_catalog.level_key(state.current_level)

    def lessons(self, state, role=None):
        return ladder_catalog.lessons_for_level(state.current_level, role)

    def lesson_xp(self, state, lesson_count):
        return ladder_catalog.lesson_xp(state.current_level)

    def complete(self, state, now):
        if state.current_level >= ladder_catalog.LEVEL_MAX:
            state.certified = True
            state.progress_percentage = 100
            return Transition(certified=True)
        state.current_level = ladder_catalog.next_level(state.current_level)
        state.progress_percentage = 0
        state.lessons_passed.setdefault(ladder_catalog.level_key(state.current_level), [])
        return Transition(level_advanced=True)

    def is_certified(self, state):
        return bool(state.certified)

    def badge(self, state):
        return ladder_catalog.level_badge(state.current_level, state.certified)

    def terminal_badge(self):
        return ladder_catalog.TERMINAL_BADGE


class ChannelLadderStrategy(LadderStrategy):
    """Five-level ladder whose level 2 branches into primary/secondary channels."""

    name = CHANNEL_LADDER

    def new_state(self) -> ChannelLadderProgress:
        return ChannelLadderProgress.from_record(None)

    def from_record(self, record):
        return ChannelLadderProgress.from_record(record)

    def _phase(self, state: ChannelLadderProgress) -> str:
        if state.current_level == channel_catalog.BRANCH_LEVEL:
            return state.l2_phase
        return channel_catalog.PRIMARY

    def active_key(self, state):
        return channel_catalog.level_key(state.current_level, self._phase(state))

    def lessons(self, state, role=None):
        return channel_catalog.lessons_for_level(
            state.current_level,
            primary_channel=state.primary_channel,
            secondary_channel=state.secondary_channel,
            phase=self._phase(state),
        )

    def lesson_xp(self, state, lesson_count):
        phase = self._phase(state) if state.current_level == channel_catalog.BRANCH_LEVEL else None
        return channel_catalog.lesson_xp(state.current_level, lesson_count, phase)

    def require_unlocked(self, state):
        if state.current_level != channel_catalog.BRANCH_LEVEL:
            return
        phase = state.l2_phase
        channel = state.primary_channel if phase == channel_catalog.PRIMARY else state.secondary_channel
        if not channel:
            raise ValidationError(f"Select a {phase} channel before starting level 2 lessons")

    def complete(self, state, now):
        level = state.current_level
        if level == channel_catalog.BRANCH_LEVEL and state.l2_phase == channel_catalog.PRIMARY:
            state.l2_phase = channel_catalog.SECONDARY
            state.progress_percentage = 0
            state.lessons_passed.setdefault(
                channel_catalog.level_key(level, channel_catalog.SECONDARY), []
            )
            return Transition(phase_advanced=True)

        state.level_completed = max(state.level_completed, level)
        if level >= channel_catalog.LEVEL_MAX:
            stamp = now if now.tzinfo is not None else now.replace(tzinfo=timezone.utc)
            state.certified_timestamp = stamp.astimezone(timezone.utc).isoformat()
            state.current_level = channel_catalog.LEVEL_MAX
            state.progress_percentage = 100
            return Transition(certified=True)

        state.current_level = channel_catalog.next_level(level)
        state.progress_percentage = 0
        state.lessons_passed.setdefault(self.active_key(state), [])
        return Transition(level_advanced=True)

    def is_certified(self, state):
        return state.certified

    def badge(self, state):
        return channel_catalog.level_badge(state.current_level, state.certified_timestamp)

    def terminal_badge(self):
        return channel_catalog.TERMINAL_BADGE


class GatedLadder:
    """Shared pass-lesson rules on top of a :class:`LadderStrategy`.

    Parameters
    ----------
    strategy:
        Catalog and transition hooks for the ladder variant.
    daily_limit:
        Maximum new passes per UTC calendar day, or ``None`` for no cap.
    """

    def __init__(self, strategy: LadderStrategy, daily_limit: Optional[int] = None) -> None:
        if daily_limit is not None and daily_limit <= 0:
            raise ValueError("daily_limit must be positive")
        self.strategy = strategy
        self.daily_limit = daily_limit

    @property
    def name(self) -> str:
        return self.strategy.name

    def new_state(self) -> LadderProgress:
        return self.strategy.new_state()

    def from_record(self, record: Optional[Mapping[str, Any]]) -> LadderProgress:
        return self.strategy.from_record(record)

    def visible_lessons(self, state: LadderProgress, role: Any = None) -> List[Any]:
        return list(self.strategy.lessons(state, role))

    def pass_lesson(
        self,
        state: LadderProgress,
        level: Any,
        lesson_id: str,
        now: datetime,
        role: Any = None,
    ) -> PassOutcome:
        """Record ``lesson_id`` as passed at ``level``.

        Raises :class:`ValidationError` for a wrong level, a lesson outside the
        active set or a locked branch, and :class:`RateLimitedError` when
        today's cap is used up. Re-passing returns ``already_passed=True`` with
        zero XP and an unchanged state.
        """

        try:
            requested = int(level)
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"Invalid level: {level!r}") from exc
        if requested != state.current_level:
            raise ValidationError(
                f"Lesson level {requested} does not match current level {state.current_level}"
            )

        self.strategy.require_unlocked(state)
        lessons = self.visible_lessons(state, role)
        lesson_ids = [lesson.lesson_id for lesson in lessons]
        if lesson_id not in lesson_ids:
            raise ValidationError(f"Lesson {lesson_id!r} is not part of level {requested}")

        key = self.strategy.active_key(state)
        if lesson_id in state.lessons_passed.get(key, []):
            return PassOutcome(
                state=copy.deepcopy(state),
                lesson_id=lesson_id,
                level=requested,
                already_passed=True,
                xp_reward=0,
                certified=self.strategy.is_certified(state),
            )

        today = utc_date_key(now)
        count_today = state.daily_count_on(today)
        if self.daily_limit is not None and count_today >= self.daily_limit:
            _LOGGER.warning("%s ladder daily pass limit of %d reached", self.name, self.daily_limit)
            raise RateLimitedError(self.daily_limit, next_utc_midnight(now))

        xp_reward = self.strategy.lesson_xp(state, len(lessons))

        updated = copy.deepcopy(state)
        passed = updated.lessons_passed.setdefault(key, [])
        passed.append(lesson_id)
        updated.daily_pass_date = today
        updated.daily_pass_count = count_today + 1

        passed_set = set(passed)
        passed_count = sum(1 for candidate in lesson_ids if candidate in passed_set)
        updated.progress_percentage = _clamp_percent(passed_count / len(lesson_ids) * 100)

        transition = Transition()
        if passed_count == len(lesson_ids):
            transition = self.strategy.complete(updated, now)
            if transition.level_advanced:
                _LOGGER.debug("%s ladder advanced to level %s", self.name, updated.current_level)

        return PassOutcome(
            state=updated,
            lesson_id=lesson_id,
            level=requested,
            already_passed=False,
            xp_reward=xp_reward,
            level_advanced=transition.level_advanced,
            phase_advanced=transition.phase_advanced,
            certified=self.strategy.is_certified(updated),
        )

    def record_abandonment(self, state: LadderProgress) -> LadderProgress:
        return replace(
            copy.deepcopy(state), abandonment_counter=state.abandonment_counter + 1
        )

    def describe(self, state: LadderProgress, now: datetime, role: Any = None) -> Dict[str, Any]:
        """Normalized progress view used for display snapshots."""

        lessons = self.visible_lessons(state, role)
        passed = set(state.lessons_passed.get(self.strategy.active_key(state), []))
        view: Dict[str, Any] = dict(state.to_record())
        view.update(
            {
                "ladder": self.name,
                "badge": self.strategy.badge(state),
                "certified": self.strategy.is_certified(state),
                "current_level_lesson_count": len(lessons),
                "current_level_passed_count": sum(
                    1 for lesson in lessons if lesson.lesson_id in passed
                ),
            }
        )
        if self.daily_limit is not None:
            count_today = state.daily_count_on(utc_date_key(now))
            remaining = max(0, self.daily_limit - count_today)
            view.update(
                {
                    "daily_pass_count": count_today,
                    "daily_pass_limit": self.daily_limit,
                    "daily_pass_remaining": remaining,
                    "daily_limit_reached": remaining == 0,
                }
            )
        return view


def select_channel(
    state: ChannelLadderProgress, phase: str, channel: Any
) -> Tuple[ChannelLadderProgress, bool]:
    """Choose the lead channel for a level-2 phase.

    Returns ``(new_state, changed)``. Re-selecting the current value is a
    no-op even once the phase is locked; a different value is rejected as
    soon as any lesson of that phase has been passed.
    """

    if phase not in channel_catalog.PHASES:
        raise ValidationError(f"Unknown phase: {phase!r}")
    clean = channel_catalog.sanitize_channel(channel)
    if clean is None:
        raise ValidationError(f"Unknown lead channel: {channel!r}")

    current = state.primary_channel if phase == channel_catalog.PRIMARY else state.secondary_channel
    if current == clean:
        return copy.deepcopy(state), False

    key = channel_catalog.level_key(channel_catalog.BRANCH_LEVEL, phase)
    if state.lessons_passed.get(key):
        raise ValidationError(f"The {phase} channel is locked once a {phase} lesson has been passed")

    updated = copy.deepcopy(state)
    if phase == channel_catalog.PRIMARY:
        if state.secondary_channel == clean:
            raise ValidationError("Primary and secondary channels must differ")
        updated.primary_channel = clean
    else:
        if not state.primary_channel:
            raise ValidationError("Select a primary channel before the secondary channel")
        if state.primary_channel == clean:
            raise ValidationError("Secondary channel must differ from the primary channel")
        updated.secondary_channel = clean
    return updated, True


def build_ladder(name: str, *, daily_limit: Optional[int] = None) -> GatedLadder:
    if name == BASE_LADDER:
        return GatedLadder(BaseLadderStrategy(), daily_limit=daily_limit)
    if name == CHANNEL_LADDER:
        return GatedLadder(ChannelLadderStrategy(), daily_limit=daily_limit)
    raise ValidationError(f"Unknown ladder: {name!r}")
