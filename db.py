import json
import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, Mapping, Optional, Sequence

from db_pool import SQLiteConnectionPool
from engines.rating import Rating
from env_validation import get_env_float, get_env_int
from errors import ConflictRetryable, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

DB_PATH = os.getenv("DB_PATH", "ladder.db")
DB_TIMEOUT = get_env_float("LADDER_DB_TIMEOUT", 5.0)
DB_MAX_CONNECTIONS = get_env_int("LADDER_DB_MAX_CONNECTIONS", 10)

# Initialize connection pool
_pool = SQLiteConnectionPool(DB_PATH, max_connections=DB_MAX_CONNECTIONS, timeout=DB_TIMEOUT)

_LADDER_TABLES: Dict[str, tuple[str, Sequence[str]]] = {
    "base": (
        "base_ladder_progress",
        (
            "current_level",
            "lessons_passed",
            "progress_percentage",
            "certified",
            "daily_pass_date",
            "daily_pass_count",
            "abandonment_counter",
        ),
    ),
    "channel": (
        "channel_ladder_progress",
        (
            "current_level",
            "level_completed",
            "lessons_passed",
            "progress_percentage",
            "primary_channel",
            "secondary_channel",
            "l2_phase",
            "certified_timestamp",
            "daily_pass_date",
            "daily_pass_count",
            "abandonment_counter",
        ),
    ),
}

_JSON_COLUMNS = {"lessons_passed"}
_BOOL_COLUMNS = {"certified"}


def _conn():
    """Return a context manager for acquiring a pooled SQLite connection."""
    return _pool.get_connection()


def _exec(sql: str, params: Iterable = ()):
    with _pool.get_connection() as con:
        cur = con.execute(sql, tuple(params))
        return cur


def _query(sql: str, params: Iterable = ()) -> list[sqlite3.Row]:
    with _pool.get_connection() as con:
        cur = con.execute(sql, tuple(params))
        return cur.fetchall()


def _is_conflict(exc: sqlite3.OperationalError) -> bool:
    message = str(exc).lower()
    return "locked" in message or "busy" in message


def isoformat(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _decode_json_field(value: Optional[str]) -> Any:
    if value is None or value == "":
        return None
    try:
        return json.loads(value)
    except (TypeError, json.JSONDecodeError):
        return None


def init():
    Path(DB_PATH).parent.mkdir(parents=True, exist_ok=True)
    with _conn() as con:
        con.executescript(
            """
            PRAGMA foreign_keys = ON;
            PRAGMA journal_mode=WAL;

            CREATE TABLE IF NOT EXISTS learners (
              learner_id            TEXT PRIMARY KEY,
              display_name          TEXT,
              role                  TEXT NOT NULL DEFAULT 'sales',
              xp_total              INTEGER NOT NULL DEFAULT 0,
              version               INTEGER NOT NULL DEFAULT 0,
              baseline_assessed_at  TEXT,
              created_at            TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
              updated_at            TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS organizations (
              org_id      TEXT PRIMARY KEY,
              name        TEXT,
              created_at  TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS learner_organizations (
              learner_id  TEXT NOT NULL,
              org_id      TEXT NOT NULL,
              PRIMARY KEY (learner_id, org_id),
              FOREIGN KEY(learner_id) REFERENCES learners(learner_id) ON DELETE CASCADE,
              FOREIGN KEY(org_id) REFERENCES organizations(org_id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS organization_ladder_access (
              org_id      TEXT NOT NULL,
              ladder      TEXT NOT NULL,
              enabled     INTEGER NOT NULL DEFAULT 0,
              updated_at  TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
              PRIMARY KEY (org_id, ladder),
              FOREIGN KEY(org_id) REFERENCES organizations(org_id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS ratings (
              learner_id    TEXT NOT NULL,
              skill         TEXT NOT NULL,
              score         REAL NOT NULL,
              last_updated  TEXT,
              PRIMARY KEY (learner_id, skill),
              FOREIGN KEY(learner_id) REFERENCES learners(learner_id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS xp_ledger (
              id           INTEGER PRIMARY KEY AUTOINCREMENT,
              learner_id   TEXT NOT NULL,
              delta        INTEGER NOT NULL,
              severity     TEXT NOT NULL,
              reason       TEXT NOT NULL,
              total_after  INTEGER NOT NULL,
              created_at   TEXT NOT NULL,
              FOREIGN KEY(learner_id) REFERENCES learners(learner_id) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_xp_ledger_learner ON xp_ledger(learner_id, id);

            CREATE TABLE IF NOT EXISTS base_ladder_progress (
              learner_id           TEXT PRIMARY KEY,
              current_level        INTEGER NOT NULL DEFAULT 1,
              lessons_passed       TEXT NOT NULL DEFAULT '{}',
              progress_percentage  INTEGER NOT NULL DEFAULT 0,
              certified            INTEGER NOT NULL DEFAULT 0,
              daily_pass_date      TEXT NOT NULL DEFAULT '',
              daily_pass_count     INTEGER NOT NULL DEFAULT 0,
              abandonment_counter  INTEGER NOT NULL DEFAULT 0,
              updated_at           TEXT,
              FOREIGN KEY(learner_id) REFERENCES learners(learner_id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS channel_ladder_progress (
              learner_id           TEXT PRIMARY KEY,
              current_level        INTEGER NOT NULL DEFAULT 1,
              level_completed      INTEGER NOT NULL DEFAULT 0,
              lessons_passed       TEXT NOT NULL DEFAULT '{}',
              progress_percentage  INTEGER NOT NULL DEFAULT 0,
              primary_channel      TEXT,
              secondary_channel    TEXT,
              l2_phase             TEXT NOT NULL DEFAULT 'primary',
              certified_timestamp  TEXT,
              daily_pass_date      TEXT NOT NULL DEFAULT '',
              daily_pass_count     INTEGER NOT NULL DEFAULT 0,
              abandonment_counter  INTEGER NOT NULL DEFAULT 0,
              updated_at           TEXT,
              FOREIGN KEY(learner_id) REFERENCES learners(learner_id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS earned_badges (
              learner_id  TEXT NOT NULL,
              badge_id    TEXT NOT NULL,
              granted_at  TEXT NOT NULL,
              PRIMARY KEY (learner_id, badge_id),
              FOREIGN KEY(learner_id) REFERENCES learners(learner_id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS exercise_log (
              id           INTEGER PRIMARY KEY AUTOINCREMENT,
              learner_id   TEXT NOT NULL,
              exercise_id  TEXT NOT NULL,
              mode         TEXT NOT NULL,
              severity     TEXT NOT NULL,
              scores       TEXT NOT NULL,
              xp_awarded   INTEGER NOT NULL,
              created_at   TEXT NOT NULL,
              FOREIGN KEY(learner_id) REFERENCES learners(learner_id) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_exercise_log_learner ON exercise_log(learner_id, id);
            """
        )


@contextmanager
def transaction() -> Iterator[sqlite3.Connection]:
    """Run a read-check-write sequence atomically.

    The transaction is deferred: reads see a consistent snapshot and the
    write lock is only taken at the first write. If another writer commits
    in between, sqlite refuses the upgrade and :class:`ConflictRetryable`
    is raised after rolling back. Any other exception also rolls back.
    """

    with _conn() as con:
        try:
            con.execute("BEGIN")
        except sqlite3.OperationalError as exc:
            if _is_conflict(exc):
                raise ConflictRetryable(str(exc)) from exc
            raise
        try:
            yield con
            con.execute("COMMIT")
        except sqlite3.OperationalError as exc:
            if con.in_transaction:
                con.execute("ROLLBACK")
            logger.debug("Rolled back transaction: %s", exc)
            if _is_conflict(exc):
                raise ConflictRetryable(str(exc)) from exc
            raise
        except BaseException:
            if con.in_transaction:
                con.execute("ROLLBACK")
            raise


# -------------- learners & organizations --------------
def create_learner(
    learner_id: str,
    display_name: Optional[str] = None,
    role: str = "sales",
    org_ids: Sequence[str] = (),
) -> Dict[str, Any]:
    if not learner_id or not str(learner_id).strip():
        raise ValidationError("learner_id required")
    with transaction() as con:
        existing = con.execute(
            "SELECT 1 FROM learners WHERE learner_id = ?", (learner_id,)
        ).fetchone()
        if existing:
            raise ValidationError(f"Learner {learner_id} already exists")
        con.execute(
            "INSERT INTO learners(learner_id, display_name, role) VALUES (?,?,?)",
            (learner_id, display_name, role),
        )
        for org_id in org_ids:
            _ensure_organization(con, org_id)
            con.execute(
                "INSERT OR IGNORE INTO learner_organizations(learner_id, org_id) VALUES (?,?)",
                (learner_id, org_id),
            )
    logger.info("Created learner %s (%s) in %d organization(s)", learner_id, role, len(org_ids))
    return get_learner(learner_id) or {}


def get_learner(learner_id: str) -> Optional[Dict[str, Any]]:
    rows = _query(
        """
        SELECT learner_id, display_name, role, xp_total, version, baseline_assessed_at,
               created_at, updated_at
        FROM learners WHERE learner_id = ?
        """,
        (learner_id,),
    )
    return dict(rows[0]) if rows else None


def set_learner_role(learner_id: str, role: str) -> None:
    cur = _exec(
        "UPDATE learners SET role = ?, updated_at = CURRENT_TIMESTAMP WHERE learner_id = ?",
        (role, learner_id),
    )
    if cur.rowcount == 0:
        raise NotFoundError(f"Learner {learner_id} not found")


def _ensure_organization(con: sqlite3.Connection, org_id: str, name: Optional[str] = None) -> None:
    con.execute(
        """
        INSERT INTO organizations(org_id, name) VALUES (?, ?)
        ON CONFLICT(org_id) DO UPDATE SET name = COALESCE(excluded.name, organizations.name)
        """,
        (org_id, name),
    )


def upsert_organization(org_id: str, name: Optional[str] = None) -> None:
    with _conn() as con:
        _ensure_organization(con, org_id, name)


def add_membership(learner_id: str, org_id: str) -> None:
    with transaction() as con:
        load_learner(con, learner_id)
        _ensure_organization(con, org_id)
        con.execute(
            "INSERT OR IGNORE INTO learner_organizations(learner_id, org_id) VALUES (?,?)",
            (learner_id, org_id),
        )


def remove_membership(learner_id: str, org_id: str) -> None:
    _exec(
        "DELETE FROM learner_organizations WHERE learner_id = ? AND org_id = ?",
        (learner_id, org_id),
    )


def list_memberships(learner_id: str) -> list[str]:
    rows = _query(
        "SELECT org_id FROM learner_organizations WHERE learner_id = ? ORDER BY org_id",
        (learner_id,),
    )
    return [row["org_id"] for row in rows]


def set_ladder_access(org_id: str, ladder: str, enabled: bool) -> None:
    if ladder not in _LADDER_TABLES:
        raise ValidationError(f"Unknown ladder: {ladder!r}")
    with _conn() as con:
        _ensure_organization(con, org_id)
        con.execute(
            """
            INSERT INTO organization_ladder_access(org_id, ladder, enabled, updated_at)
            VALUES (?, ?, ?, CURRENT_TIMESTAMP)
            ON CONFLICT(org_id, ladder) DO UPDATE SET
              enabled = excluded.enabled,
              updated_at = CURRENT_TIMESTAMP
            """,
            (org_id, ladder, 1 if enabled else 0),
        )
    logger.info("Ladder %s %s for organization %s", ladder, "enabled" if enabled else "disabled", org_id)


def ladder_flags(con: sqlite3.Connection, learner_id: str, ladder: str) -> list[sqlite3.Row]:
    """Return ``(org_id, enabled)`` rows for every organization of the learner."""
    return con.execute(
        """
        SELECT m.org_id AS org_id, COALESCE(a.enabled, 0) AS enabled
        FROM learner_organizations AS m
        LEFT JOIN organization_ladder_access AS a
          ON a.org_id = m.org_id AND a.ladder = ?
        WHERE m.learner_id = ?
        ORDER BY m.org_id
        """,
        (ladder, learner_id),
    ).fetchall()


# -------------- in-transaction accessors --------------
def load_learner(con: sqlite3.Connection, learner_id: str) -> Dict[str, Any]:
    row = con.execute(
        """
        SELECT learner_id, display_name, role, xp_total, version, baseline_assessed_at
        FROM learners WHERE learner_id = ?
        """,
        (learner_id,),
    ).fetchone()
    if row is None:
        raise NotFoundError(f"Learner {learner_id} not found")
    return dict(row)


def commit_learner(
    con: sqlite3.Connection,
    learner_id: str,
    expected_version: int,
    *,
    xp_total: Optional[int] = None,
    baseline_assessed_at: Optional[str] = None,
) -> int:
    """Compare-and-swap the learner version; returns the new version."""

    cur = con.execute(
        """
        UPDATE learners SET
          version = version + 1,
          xp_total = COALESCE(?, xp_total),
          baseline_assessed_at = COALESCE(?, baseline_assessed_at),
          updated_at = CURRENT_TIMESTAMP
        WHERE learner_id = ? AND version = ?
        """,
        (xp_total, baseline_assessed_at, learner_id, int(expected_version)),
    )
    if cur.rowcount != 1:
        raise ConflictRetryable(f"Learner {learner_id} changed concurrently")
    return int(expected_version) + 1


def read_ratings(con: sqlite3.Connection, learner_id: str) -> Dict[str, Rating]:
    rows = con.execute(
        "SELECT skill, score, last_updated FROM ratings WHERE learner_id = ?",
        (learner_id,),
    ).fetchall()
    return {
        row["skill"]: Rating(score=float(row["score"]), last_updated=_parse_timestamp(row["last_updated"]))
        for row in rows
    }


def write_ratings(con: sqlite3.Connection, learner_id: str, ratings: Mapping[str, Rating]) -> None:
    con.executemany(
        """
        INSERT INTO ratings(learner_id, skill, score, last_updated) VALUES (?,?,?,?)
        ON CONFLICT(learner_id, skill) DO UPDATE SET
          score = excluded.score,
          last_updated = excluded.last_updated
        """,
        [
            (
                learner_id,
                skill,
                float(rating.score),
                isoformat(rating.last_updated) if rating.last_updated else None,
            )
            for skill, rating in ratings.items()
        ],
    )


def append_xp_entry(
    con: sqlite3.Connection,
    learner_id: str,
    delta: int,
    severity: str,
    reason: str,
    total_after: int,
    created_at: datetime,
) -> None:
    con.execute(
        """
        INSERT INTO xp_ledger(learner_id, delta, severity, reason, total_after, created_at)
        VALUES (?,?,?,?,?,?)
        """,
        (learner_id, int(delta), severity, reason, int(total_after), isoformat(created_at)),
    )


def read_ladder_progress(
    con: sqlite3.Connection, ladder: str, learner_id: str
) -> Optional[Dict[str, Any]]:
    table, columns = _ladder_table(ladder)
    row = con.execute(
        f"SELECT {', '.join(columns)} FROM {table} WHERE learner_id = ?",
        (learner_id,),
    ).fetchone()
    if row is None:
        return None
    record: Dict[str, Any] = {}
    for column in columns:
        value = row[column]
        if column in _JSON_COLUMNS:
            value = _decode_json_field(value) or {}
        elif column in _BOOL_COLUMNS:
            value = bool(value)
        record[column] = value
    return record


def write_ladder_progress(
    con: sqlite3.Connection,
    ladder: str,
    learner_id: str,
    record: Mapping[str, Any],
    updated_at: datetime,
) -> None:
    table, columns = _ladder_table(ladder)
    values = []
    for column in columns:
        value = record.get(column)
        if column in _JSON_COLUMNS:
            value = json.dumps(value or {}, sort_keys=True)
        elif column in _BOOL_COLUMNS:
            value = 1 if value else 0
        values.append(value)
    assignments = ", ".join(f"{column} = excluded.{column}" for column in columns)
    con.execute(
        f"""
        INSERT INTO {table}(learner_id, {', '.join(columns)}, updated_at)
        VALUES (?, {', '.join('?' for _ in columns)}, ?)
        ON CONFLICT(learner_id) DO UPDATE SET {assignments}, updated_at = excluded.updated_at
        """,
        (learner_id, *values, isoformat(updated_at)),
    )


def read_badges(con: sqlite3.Connection, learner_id: str) -> set[str]:
    rows = con.execute(
        "SELECT badge_id FROM earned_badges WHERE learner_id = ?", (learner_id,)
    ).fetchall()
    return {row["badge_id"] for row in rows}


def grant_badge(con: sqlite3.Connection, learner_id: str, badge_id: str, granted_at: datetime) -> bool:
    """Insert the badge unless already granted; returns ``True`` when newly granted."""
    cur = con.execute(
        "INSERT OR IGNORE INTO earned_badges(learner_id, badge_id, granted_at) VALUES (?,?,?)",
        (learner_id, badge_id, isoformat(granted_at)),
    )
    return cur.rowcount == 1


def append_exercise_log(
    con: sqlite3.Connection,
    learner_id: str,
    exercise_id: str,
    mode: str,
    severity: str,
    scores: Mapping[str, float],
    xp_awarded: int,
    created_at: datetime,
) -> None:
    con.execute(
        """
        INSERT INTO exercise_log(learner_id, exercise_id, mode, severity, scores, xp_awarded, created_at)
        VALUES (?,?,?,?,?,?,?)
        """,
        (
            learner_id,
            exercise_id,
            mode,
            severity,
            json.dumps(dict(scores), sort_keys=True),
            int(xp_awarded),
            isoformat(created_at),
        ),
    )


def count_exercises(con: sqlite3.Connection, learner_id: str, mode: Optional[str] = None) -> int:
    if mode is None:
        row = con.execute(
            "SELECT COUNT(*) AS n FROM exercise_log WHERE learner_id = ?", (learner_id,)
        ).fetchone()
    else:
        row = con.execute(
            "SELECT COUNT(*) AS n FROM exercise_log WHERE learner_id = ? AND mode = ?",
            (learner_id, mode),
        ).fetchone()
    return int(row["n"]) if row else 0


def _ladder_table(ladder: str) -> tuple[str, Sequence[str]]:
    try:
        return _LADDER_TABLES[ladder]
    except KeyError as exc:
        raise ValidationError(f"Unknown ladder: {ladder!r}") from exc


# -------------- read-only listings --------------
def get_ratings(learner_id: str) -> Dict[str, Rating]:
    with _conn() as con:
        return read_ratings(con, learner_id)


def get_ladder_progress(ladder: str, learner_id: str) -> Optional[Dict[str, Any]]:
    with _conn() as con:
        return read_ladder_progress(con, ladder, learner_id)


def list_xp_ledger(learner_id: str, limit: int = 100) -> list[Dict[str, Any]]:
    rows = _query(
        """
        SELECT id, learner_id, delta, severity, reason, total_after, created_at
        FROM xp_ledger WHERE learner_id = ? ORDER BY id DESC LIMIT ?
        """,
        (learner_id, int(limit)),
    )
    return [dict(row) for row in rows]


def list_badges(learner_id: str) -> list[Dict[str, Any]]:
    rows = _query(
        "SELECT badge_id, granted_at FROM earned_badges WHERE learner_id = ? ORDER BY granted_at, badge_id",
        (learner_id,),
    )
    return [dict(row) for row in rows]


def list_exercise_log(learner_id: str, limit: int = 100) -> list[Dict[str, Any]]:
    rows = _query(
        """
        SELECT id, learner_id, exercise_id, mode, severity, scores, xp_awarded, created_at
        FROM exercise_log WHERE learner_id = ? ORDER BY id DESC LIMIT ?
        """,
        (learner_id, int(limit)),
    )
    entries = []
    for row in rows:
        entry = dict(row)
        entry["scores"] = _decode_json_field(entry.get("scores")) or {}
        entries.append(entry)
    return entries
