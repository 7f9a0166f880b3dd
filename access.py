"""Organization-level access gate for the ladders.

The flag is resolved on the caller's connection so that mutating ladder
operations check it inside their own transaction. Results are never cached:
an organization may switch a ladder off between two calls.
"""

from __future__ import annotations

import logging
import sqlite3

import db
from engines.ladder import LADDERS
from errors import AccessDeniedError, ValidationError

logger = logging.getLogger(__name__)


def resolve_access(con: sqlite3.Connection, learner_id: str, ladder: str) -> bool:
    """Return ``True`` if any of the learner's organizations enables ``ladder``."""

    if ladder not in LADDERS:
        raise ValidationError(f"Unknown ladder: {ladder!r}")
    rows = db.ladder_flags(con, learner_id, ladder)
    return any(bool(row["enabled"]) for row in rows)


def require_access(con: sqlite3.Connection, learner_id: str, ladder: str) -> None:
    if not resolve_access(con, learner_id, ladder):
        logger.warning("Access denied to %s ladder for learner %s", ladder, learner_id)
        raise AccessDeniedError(learner_id, ladder)


def has_access(learner_id: str, ladder: str) -> bool:
    """Read-only check for previews; mutations use :func:`require_access`."""

    with db._conn() as con:
        return resolve_access(con, learner_id, ladder)
