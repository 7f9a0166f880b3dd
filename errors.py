"""Error taxonomy shared by the rating, XP and ladder operations."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

__all__ = [
    "LadderError",
    "ValidationError",
    "AccessDeniedError",
    "RateLimitedError",
    "NotFoundError",
    "ConflictRetryable",
]


class LadderError(Exception):
    """Base class for every error raised by the progression engine."""


class ValidationError(LadderError, ValueError):
    """Invalid level, lesson, channel or submission. No mutation occurred."""


class AccessDeniedError(LadderError):
    """The ladder is not enabled for any of the learner's organizations."""

    def __init__(self, learner_id: str, ladder: str) -> None:
        super().__init__(f"Ladder '{ladder}' is not enabled for learner {learner_id}")
        self.learner_id = learner_id
        self.ladder = ladder


class RateLimitedError(LadderError):
    """Daily pass cap reached; ``reset_at`` is the next UTC midnight."""

    def __init__(self, limit: int, reset_at: datetime, message: Optional[str] = None) -> None:
        super().__init__(
            message or f"Daily pass limit of {limit} reached; resets at {reset_at.isoformat()}"
        )
        self.limit = limit
        self.reset_at = reset_at


class NotFoundError(LadderError, LookupError):
    """The learner record does not exist."""


class ConflictRetryable(LadderError):
    """A concurrent writer changed the learner aggregate before commit."""
