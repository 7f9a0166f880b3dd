import json

import pytest

import db
from scripts import ladder_admin


@pytest.fixture
def admin_env(temp_db, monkeypatch):
    for name in ("LADDER_DAILY_PASS_LIMIT", "LADDER_MAX_TX_ATTEMPTS", "LADDER_DB_TIMEOUT", "LADDER_DB_MAX_CONNECTIONS"):
        monkeypatch.setenv(name, "")
    monkeypatch.setenv("DB_PATH", temp_db)
    return temp_db


def test_add_learner_and_show(admin_env, capsys):
    assert ladder_admin.main(["add-learner", "alice", "--name", "Alice", "--org", "dealer-1"]) == 0
    created = json.loads(capsys.readouterr().out)
    assert created["learner_id"] == "alice"
    assert db.list_memberships("alice") == ["dealer-1"]

    assert ladder_admin.main(["show", "alice"]) == 0
    snapshot = json.loads(capsys.readouterr().out)
    assert snapshot["xp_total"] == 0
    assert snapshot["base_ladder"] is None
    assert set(snapshot["ratings"]) == {"empathy", "listening", "trust", "follow_up", "closing", "relationship"}


def test_set_access_and_membership(admin_env, capsys):
    ladder_admin.main(["add-learner", "marco", "--role", "General Manager"])
    assert ladder_admin.main(["add-member", "marco", "saas"]) == 0
    assert ladder_admin.main(["set-access", "saas", "channel", "--enable"]) == 0
    assert "channel ladder enabled for saas" in capsys.readouterr().out

    from access import has_access

    assert has_access("marco", "channel")
    ladder_admin.main(["set-access", "saas", "channel", "--disable"])
    assert not has_access("marco", "channel")


def test_errors_return_non_zero(admin_env, caplog):
    assert ladder_admin.main(["show", "ghost"]) == 1
    assert "ghost" in caplog.text

    ladder_admin.main(["add-learner", "alice"])
    assert ladder_admin.main(["add-learner", "alice"]) == 1


def test_unknown_ladder_is_rejected_by_parser(admin_env):
    with pytest.raises(SystemExit):
        ladder_admin.main(["set-access", "saas", "gold", "--enable"])
