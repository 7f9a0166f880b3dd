"""Transactional entry points for rating, XP and ladder mutations.

Every operation follows the same shape: open a transaction, re-read the
learner aggregate and (for ladder operations) the organization access flag
inside it, validate, compute the new state with the pure engines, write all
affected rows and finish with a compare-and-swap on the learner version.
A concurrent writer makes the swap (or sqlite's snapshot upgrade) fail with
:class:`ConflictRetryable`; the coordinator then retries the whole
operation a bounded number of times.
"""

from __future__ import annotations

import logging
import random
import sqlite3
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, TypeVar

from pydantic import ValidationError as SchemaValidationError

import access
import badges
import channel_catalog
import db
import ladder_catalog
from engines import rating as rating_engine
from engines import xp as xp_engine
from engines.ladder import (
    BASE_LADDER,
    CHANNEL_LADDER,
    GatedLadder,
    LadderProgress,
    build_ladder,
    select_channel,
)
from env_validation import get_env_int
from errors import ConflictRetryable, NotFoundError, ValidationError
from schemas import (
    BaseLadderView,
    ChannelLadderView,
    ChannelSelectionResult,
    ExerciseResult,
    LearnerSnapshot,
    LessonPassResult,
    RatingSubmission,
    RatingView,
    SkillDelta,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

STANDARD = "standard"
BASELINE_ASSESSMENT = "baseline_assessment"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MutationCoordinator:
    """Atomic, retrying mutation operations over one learner aggregate.

    Parameters
    ----------
    daily_pass_limit:
        New base-ladder passes allowed per UTC day. Defaults to
        ``LADDER_DAILY_PASS_LIMIT`` or 5.
    max_attempts:
        Attempts per operation before a write conflict is surfaced.
        Defaults to ``LADDER_MAX_TX_ATTEMPTS`` or 5.
    clock:
        Callable returning the current UTC time; used only when an
        operation is called without ``now``.
    retry_backoff:
        Upper bound, in seconds, of the randomized pause per retry attempt.
    """

    def __init__(
        self,
        *,
        daily_pass_limit: Optional[int] = None,
        max_attempts: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None,
        retry_backoff: float = 0.01,
    ) -> None:
        if daily_pass_limit is None:
            daily_pass_limit = get_env_int("LADDER_DAILY_PASS_LIMIT", ladder_catalog.DAILY_PASS_LIMIT)
        if max_attempts is None:
            max_attempts = get_env_int("LADDER_MAX_TX_ATTEMPTS", 5)
        self.daily_pass_limit = daily_pass_limit
        self.max_attempts = max_attempts
        if self.daily_pass_limit <= 0:
            raise ValueError("daily_pass_limit must be positive")
        if self.max_attempts <= 0:
            raise ValueError("max_attempts must be positive")
        self._clock = clock or _utcnow
        self.retry_backoff = max(0.0, float(retry_backoff))
        self.ladders: Dict[str, GatedLadder] = {
            BASE_LADDER: build_ladder(BASE_LADDER, daily_limit=self.daily_pass_limit),
            CHANNEL_LADDER: build_ladder(CHANNEL_LADDER),
        }

    # ----- plumbing ------------------------------------------------------
    def _now(self, now: Optional[datetime]) -> datetime:
        value = now if now is not None else self._clock()
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def _ladder(self, name: str) -> GatedLadder:
        try:
            return self.ladders[name]
        except KeyError as exc:
            raise ValidationError(f"Unknown ladder: {name!r}") from exc

    def _run(self, operation: str, learner_id: str, body: Callable[[sqlite3.Connection], T]) -> T:
        for attempt in range(1, self.max_attempts + 1):
            try:
                with db.transaction() as con:
                    return body(con)
            except ConflictRetryable:
                if attempt >= self.max_attempts:
                    logger.error(
                        "%s for learner %s still conflicting after %d attempts",
                        operation,
                        learner_id,
                        attempt,
                    )
                    raise
                logger.warning(
                    "Write conflict in %s for learner %s (attempt %d/%d); retrying",
                    operation,
                    learner_id,
                    attempt,
                    self.max_attempts,
                )
                if self.retry_backoff:
                    time.sleep(random.uniform(0, self.retry_backoff * attempt))
        raise ConflictRetryable(f"{operation} for learner {learner_id} was not attempted")

    def _load_state(
        self, con: sqlite3.Connection, ladder: GatedLadder, learner_id: str
    ) -> tuple[LadderProgress, bool]:
        record = db.read_ladder_progress(con, ladder.name, learner_id)
        if record is None:
            return ladder.new_state(), True
        return ladder.from_record(record), False

    def _view(self, ladder: GatedLadder, state: LadderProgress, now: datetime, role: Any):
        view = ladder.describe(state, now, role)
        if ladder.name == BASE_LADDER:
            view["level_title"] = ladder_catalog.level_title(state.current_level)
            return BaseLadderView(**view)
        view["level_title"] = channel_catalog.level_title(state.current_level)
        return ChannelLadderView(**view)

    def _snapshot(self, con: sqlite3.Connection, learner_id: str, now: datetime) -> LearnerSnapshot:
        learner = db.load_learner(con, learner_id)
        stored = db.read_ratings(con, learner_id)
        ratings = {
            skill: RatingView(
                score=stored[skill].score if skill in stored else rating_engine.BASELINE,
                last_updated=stored[skill].last_updated if skill in stored else None,
            )
            for skill in rating_engine.SKILLS
        }
        views: Dict[str, Any] = {}
        for name, ladder in self.ladders.items():
            record = db.read_ladder_progress(con, name, learner_id)
            views[name] = (
                None
                if record is None
                else self._view(ladder, ladder.from_record(record), now, learner["role"])
            )
        return LearnerSnapshot(
            learner_id=learner_id,
            role=learner["role"],
            xp_total=int(learner["xp_total"]),
            ratings=ratings,
            badges=sorted(db.read_badges(con, learner_id)),
            base_ladder=views[BASE_LADDER],
            channel_ladder=views[CHANNEL_LADDER],
        )

    def _grant(self, con: sqlite3.Connection, learner_id: str, candidates: List[str], now: datetime) -> List[str]:
        granted = []
        for badge_id in badges.new_badges(candidates, db.read_badges(con, learner_id)):
            if db.grant_badge(con, learner_id, badge_id, now):
                granted.append(badge_id)
        if granted:
            logger.info("Learner %s earned badge(s): %s", learner_id, ", ".join(granted))
        return granted

    # ----- exercises -----------------------------------------------------
    def submit(self, submission: RatingSubmission, now: Optional[datetime] = None) -> ExerciseResult:
        """Apply one finished exercise: ratings, XP ledger and milestone badges."""

        moment = self._now(now)
        severity = xp_engine.coerce_severity(submission.severity)
        baseline = submission.mode == BASELINE_ASSESSMENT
        learner_id = submission.learner_id
        observations = rating_engine.clamp_ratings(submission.ratings)

        def body(con: sqlite3.Connection) -> ExerciseResult:
            learner = db.load_learner(con, learner_id)
            if baseline and learner["baseline_assessed_at"]:
                raise ValidationError(f"Learner {learner_id} already completed the baseline assessment")

            stored = db.read_ratings(con, learner_id)
            updated: Dict[str, rating_engine.Rating] = {}
            deltas: Dict[str, SkillDelta] = {}
            for skill in rating_engine.SKILLS:
                old = stored.get(skill)
                before = old.score if old is not None else rating_engine.BASELINE
                if baseline:
                    new = rating_engine.calibrate(observations[skill], moment)
                else:
                    new = rating_engine.update(old, observations[skill], moment)
                updated[skill] = new
                deltas[skill] = SkillDelta(before=before, after=new.score, delta=new.score - before)

            xp_before = int(learner["xp_total"])
            safe_delta = 0 if baseline else xp_engine.sanitize(submission.xp_hint, severity)
            xp_after = xp_engine.apply(xp_before, safe_delta, severity)
            if safe_delta or severity is xp_engine.Severity.BEHAVIOR_VIOLATION:
                db.append_xp_entry(
                    con,
                    learner_id,
                    safe_delta,
                    severity.value,
                    f"exercise:{submission.exercise_id}",
                    xp_after,
                    moment,
                )

            earned: List[str] = []
            if not baseline and severity is xp_engine.Severity.NORMAL:
                earned = self._grant(
                    con,
                    learner_id,
                    badges.milestone_badges(
                        prior_exercises=db.count_exercises(con, learner_id, mode=STANDARD),
                        xp_before=xp_before,
                        xp_after=xp_after,
                        scores=observations,
                    ),
                    moment,
                )

            db.write_ratings(con, learner_id, updated)
            db.append_exercise_log(
                con,
                learner_id,
                submission.exercise_id,
                submission.mode,
                severity.value,
                observations,
                safe_delta,
                moment,
            )
            db.commit_learner(
                con,
                learner_id,
                learner["version"],
                xp_total=xp_after,
                baseline_assessed_at=db.isoformat(moment) if baseline else None,
            )
            if baseline:
                logger.info("Baseline assessment recorded for learner %s", learner_id)

            return ExerciseResult(
                learner_id=learner_id,
                exercise_id=submission.exercise_id,
                mode=submission.mode,
                severity=severity.value,
                skills=deltas,
                xp_awarded=safe_delta,
                xp_total=xp_after,
                badges_awarded=earned,
                snapshot=self._snapshot(con, learner_id, moment),
            )

        return self._run("submit_exercise_result", learner_id, body)

    def submit_exercise_result(
        self,
        learner_id: str,
        exercise_id: str,
        ratings: Mapping[str, Any],
        severity: str = "normal",
        xp_hint: Any = 0,
        mode: str = STANDARD,
        now: Optional[datetime] = None,
    ) -> ExerciseResult:
        try:
            submission = RatingSubmission(
                learner_id=learner_id,
                exercise_id=exercise_id,
                ratings=dict(ratings or {}),
                severity=severity,
                xp_hint=xp_hint if xp_hint is not None else 0,
                mode=mode,
            )
        except SchemaValidationError as exc:
            raise ValidationError(f"Invalid exercise submission: {exc}") from exc
        return self.submit(submission, now=now)

    complete_exercise = submit_exercise_result

    # ----- ladders -------------------------------------------------------
    def _pass(
        self, ladder_name: str, learner_id: str, level: Any, lesson_id: str, now: Optional[datetime]
    ) -> LessonPassResult:
        moment = self._now(now)
        ladder = self._ladder(ladder_name)

        def body(con: sqlite3.Connection) -> LessonPassResult:
            learner = db.load_learner(con, learner_id)
            access.require_access(con, learner_id, ladder_name)
            state, _ = self._load_state(con, ladder, learner_id)
            outcome = ladder.pass_lesson(state, level, lesson_id, moment, role=learner["role"])

            xp_total = int(learner["xp_total"])
            if outcome.already_passed:
                return LessonPassResult(
                    learner_id=learner_id,
                    ladder=ladder_name,
                    level=outcome.level,
                    lesson_id=lesson_id,
                    already_passed=True,
                    xp_awarded=0,
                    xp_total=xp_total,
                    certified=outcome.certified,
                    snapshot=self._snapshot(con, learner_id, moment),
                )

            safe_delta = xp_engine.sanitize(outcome.xp_reward, xp_engine.Severity.NORMAL)
            xp_after = xp_engine.apply(xp_total, safe_delta, xp_engine.Severity.NORMAL)
            db.write_ladder_progress(con, ladder_name, learner_id, outcome.state.to_record(), moment)
            db.append_xp_entry(
                con,
                learner_id,
                safe_delta,
                xp_engine.Severity.NORMAL.value,
                f"{ladder_name}-ladder:{lesson_id}",
                xp_after,
                moment,
            )
            candidates = badges.xp_milestone_badges(xp_total, xp_after)
            if outcome.certified:
                candidates.append(ladder.strategy.terminal_badge())
            earned = self._grant(con, learner_id, candidates, moment)
            db.commit_learner(con, learner_id, learner["version"], xp_total=xp_after)

            if outcome.level_advanced:
                logger.info(
                    "Learner %s advanced to %s ladder level %s",
                    learner_id,
                    ladder_name,
                    outcome.state.current_level,
                )
            if outcome.phase_advanced:
                logger.info("Learner %s moved to the secondary channel phase", learner_id)
            if outcome.certified:
                logger.info("Learner %s certified on the %s ladder", learner_id, ladder_name)

            return LessonPassResult(
                learner_id=learner_id,
                ladder=ladder_name,
                level=outcome.level,
                lesson_id=lesson_id,
                already_passed=False,
                xp_awarded=safe_delta,
                xp_total=xp_after,
                level_advanced=outcome.level_advanced,
                phase_advanced=outcome.phase_advanced,
                certified=outcome.certified,
                badges_awarded=earned,
                snapshot=self._snapshot(con, learner_id, moment),
            )

        return self._run(f"pass_{ladder_name}_lesson", learner_id, body)

    def pass_lesson(
        self, learner_id: str, level: Any, lesson_id: str, now: Optional[datetime] = None
    ) -> LessonPassResult:
        """Pass a base-ladder lesson."""

        return self._pass(BASE_LADDER, learner_id, level, lesson_id, now)

    pass_ledger_lesson = pass_lesson

    def pass_channel_lesson(
        self, learner_id: str, level: Any, lesson_id: str, now: Optional[datetime] = None
    ) -> LessonPassResult:
        """Pass a channel-ladder lesson."""

        return self._pass(CHANNEL_LADDER, learner_id, level, lesson_id, now)

    def _select(self, phase: str, learner_id: str, channel: Any, now: Optional[datetime]) -> ChannelSelectionResult:
        moment = self._now(now)
        ladder = self._ladder(CHANNEL_LADDER)

        def body(con: sqlite3.Connection) -> ChannelSelectionResult:
            learner = db.load_learner(con, learner_id)
            access.require_access(con, learner_id, CHANNEL_LADDER)
            state, created = self._load_state(con, ladder, learner_id)
            updated, changed = select_channel(state, phase, channel)
            if changed or created:
                db.write_ladder_progress(con, CHANNEL_LADDER, learner_id, updated.to_record(), moment)
                db.commit_learner(con, learner_id, learner["version"])
            if changed:
                logger.info("Learner %s selected %s channel %s", learner_id, phase, channel)
            return ChannelSelectionResult(
                learner_id=learner_id,
                phase=phase,
                channel=str(channel),
                changed=changed,
                snapshot=self._snapshot(con, learner_id, moment),
            )

        return self._run(f"set_{phase}_channel", learner_id, body)

    def set_primary_channel(
        self, learner_id: str, channel: Any, now: Optional[datetime] = None
    ) -> ChannelSelectionResult:
        return self._select(channel_catalog.PRIMARY, learner_id, channel, now)

    def set_secondary_channel(
        self, learner_id: str, channel: Any, now: Optional[datetime] = None
    ) -> ChannelSelectionResult:
        return self._select(channel_catalog.SECONDARY, learner_id, channel, now)

    def record_abandonment(
        self, learner_id: str, ladder_name: str, now: Optional[datetime] = None
    ) -> LearnerSnapshot:
        """Count a started-but-abandoned ladder lesson."""

        moment = self._now(now)
        ladder = self._ladder(ladder_name)

        def body(con: sqlite3.Connection) -> LearnerSnapshot:
            learner = db.load_learner(con, learner_id)
            access.require_access(con, learner_id, ladder_name)
            state, _ = self._load_state(con, ladder, learner_id)
            updated = ladder.record_abandonment(state)
            db.write_ladder_progress(con, ladder_name, learner_id, updated.to_record(), moment)
            db.commit_learner(con, learner_id, learner["version"])
            return self._snapshot(con, learner_id, moment)

        return self._run("record_abandonment", learner_id, body)

    # ----- reads ---------------------------------------------------------
    def get_snapshot(self, learner_id: str, now: Optional[datetime] = None) -> LearnerSnapshot:
        moment = self._now(now)
        return self._run("get_snapshot", learner_id, lambda con: self._snapshot(con, learner_id, moment))

    def lessons_for_learner(self, learner_id: str, ladder_name: str) -> List[Any]:
        """Lessons currently visible to the learner; no transaction, no gate."""

        ladder = self._ladder(ladder_name)
        learner = db.get_learner(learner_id)
        if learner is None:
            raise NotFoundError(f"Learner {learner_id} not found")
        record = db.get_ladder_progress(ladder_name, learner_id)
        state = ladder.new_state() if record is None else ladder.from_record(record)
        return ladder.visible_lessons(state, learner["role"])

    def has_access(self, learner_id: str, ladder_name: str) -> bool:
        return access.has_access(learner_id, ladder_name)
