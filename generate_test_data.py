"""Seed a database with demo learners and simulated ladder activity."""
import argparse
import logging
import random
from datetime import datetime, timedelta, timezone

import db
import ladder_catalog
from coordinator import MutationCoordinator
from engines.rating import SKILLS
from errors import RateLimitedError

logger = logging.getLogger(__name__)

ORGANIZATIONS = {
    "north-motors": {"base": True, "channel": False},
    "saas-co": {"base": False, "channel": True},
}

USERS = {
    "alice": {"role": "Sales Consultant", "orgs": ["north-motors"], "skill": 78},
    "peter": {"role": "Service Writer", "orgs": ["north-motors"], "skill": 64},
    "marco": {"role": "General Manager", "orgs": ["north-motors", "saas-co"], "skill": 85},
    "lena": {"role": "Sales Consultant", "orgs": ["saas-co"], "skill": 70},
}

CHANNELS = ["cold_calling", "cold_email", "linkedin_outreach", "content_inbound", "referrals"]


def _scores(center: float, rng: random.Random) -> dict:
    return {skill: max(0, min(100, rng.gauss(center, 8))) for skill in SKILLS}


def seed(days: int = 14, seed_value: int = 7) -> None:
    rng = random.Random(seed_value)
    coordinator = MutationCoordinator()
    start = datetime.now(timezone.utc) - timedelta(days=days)

    for org_id, flags in ORGANIZATIONS.items():
        db.upsert_organization(org_id)
        for ladder, enabled in flags.items():
            db.set_ladder_access(org_id, ladder, enabled)

    for user_id, profile in USERS.items():
        if db.get_learner(user_id) is not None:
            continue
        db.create_learner(user_id, user_id.title(), profile["role"], profile["orgs"])
        coordinator.submit_exercise_result(
            user_id, "baseline", _scores(profile["skill"], rng),
            mode="baseline_assessment", now=start,
        )

    for day in range(days):
        moment = start + timedelta(days=day, hours=9)
        for user_id, profile in USERS.items():
            coordinator.submit_exercise_result(
                user_id,
                f"exercise-{day}",
                _scores(profile["skill"], rng),
                xp_hint=rng.randint(10, 100),
                now=moment,
            )
            if coordinator.has_access(user_id, "base"):
                _play_base(coordinator, user_id, moment, rng)
            if coordinator.has_access(user_id, "channel"):
                _play_channel(coordinator, user_id, moment, rng)
        logger.info("Simulated day %d/%d", day + 1, days)


def _pending(coordinator, user_id, ladder, moment):
    snapshot = coordinator.get_snapshot(user_id, now=moment)
    view = snapshot.base_ladder if ladder == "base" else snapshot.channel_ladder
    passed = set()
    level = 1
    if view is not None:
        level = view.current_level
        for ids in view.lessons_passed.values():
            passed.update(ids)
    lessons = coordinator.lessons_for_learner(user_id, ladder)
    return level, [lesson.lesson_id for lesson in lessons if lesson.lesson_id not in passed]


def _play_base(coordinator, user_id, moment, rng):
    for _ in range(rng.randint(1, ladder_catalog.DAILY_PASS_LIMIT + 1)):
        level, pending = _pending(coordinator, user_id, "base", moment)
        if not pending:
            return
        try:
            coordinator.pass_lesson(user_id, level, pending[0], now=moment)
        except RateLimitedError:
            return


def _play_channel(coordinator, user_id, moment, rng):
    state = coordinator.get_snapshot(user_id, now=moment).channel_ladder
    if state is None or not state.primary_channel:
        primary = rng.choice(CHANNELS)
        coordinator.set_primary_channel(user_id, primary, now=moment)
        coordinator.set_secondary_channel(
            user_id, rng.choice([c for c in CHANNELS if c != primary]), now=moment
        )
    for _ in range(2):
        level, pending = _pending(coordinator, user_id, "channel", moment)
        if not pending:
            return
        coordinator.pass_channel_lesson(user_id, level, pending[0], now=moment)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--days", type=int, default=14)
    parser.add_argument("--seed", type=int, default=7)
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO)
    db.init()
    seed(days=args.days, seed_value=args.seed)
