import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture
def temp_db(monkeypatch, tmp_path):
    import db

    db_path = tmp_path / "test.db"
    monkeypatch.setattr(db, "DB_PATH", str(db_path))

    # Reset the connection pool for each test
    previous = db._pool
    db._pool = db.SQLiteConnectionPool(str(db_path), max_connections=10)
    db.init()
    yield str(db_path)
    db._pool.close_all()
    db._pool = previous


@pytest.fixture
def now():
    return datetime(2025, 3, 14, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
def coordinator(temp_db):
    from coordinator import MutationCoordinator

    return MutationCoordinator(daily_pass_limit=5, max_attempts=5, retry_backoff=0)


@pytest.fixture
def learner(temp_db):
    """A sales learner whose single organization has both ladders enabled."""
    import db

    db.create_learner("alice", "Alice", "Sales Consultant", ["dealer-1"])
    db.set_ladder_access("dealer-1", "base", True)
    db.set_ladder_access("dealer-1", "channel", True)
    return "alice"
