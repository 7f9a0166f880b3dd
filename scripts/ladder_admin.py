"""Administer learners, organizations and ladder access flags."""
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import db  # noqa: E402
from coordinator import MutationCoordinator  # noqa: E402
from engines.ladder import LADDERS  # noqa: E402
from env_validation import validate_environment  # noqa: E402
from errors import LadderError  # noqa: E402

logger = logging.getLogger("ladder.admin")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init", help="Create the database schema")

    learner = sub.add_parser("add-learner", help="Create a learner")
    learner.add_argument("learner_id")
    learner.add_argument("--name", default=None, help="Display name")
    learner.add_argument("--role", default="sales", help="Job role (default: sales)")
    learner.add_argument("--org", action="append", default=[], help="Organization id (repeatable)")

    member = sub.add_parser("add-member", help="Add a learner to an organization")
    member.add_argument("learner_id")
    member.add_argument("org_id")

    access = sub.add_parser("set-access", help="Enable or disable a ladder for an organization")
    access.add_argument("org_id")
    access.add_argument("ladder", choices=LADDERS)
    state = access.add_mutually_exclusive_group(required=True)
    state.add_argument("--enable", dest="enabled", action="store_true")
    state.add_argument("--disable", dest="enabled", action="store_false")

    show = sub.add_parser("show", help="Print a learner snapshot as JSON")
    show.add_argument("learner_id")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    validate_environment()
    db.init()

    try:
        if args.command == "init":
            print(f"Initialized {db.DB_PATH}")
        elif args.command == "add-learner":
            record = db.create_learner(args.learner_id, args.name, args.role, args.org)
            print(json.dumps(record, indent=2, default=str))
        elif args.command == "add-member":
            db.add_membership(args.learner_id, args.org_id)
            print(f"{args.learner_id} added to {args.org_id}")
        elif args.command == "set-access":
            db.set_ladder_access(args.org_id, args.ladder, args.enabled)
            print(f"{args.ladder} ladder {'enabled' if args.enabled else 'disabled'} for {args.org_id}")
        elif args.command == "show":
            snapshot = MutationCoordinator().get_snapshot(args.learner_id)
            print(snapshot.model_dump_json(indent=2))
    except LadderError as exc:
        logger.error("%s", exc)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
