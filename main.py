#!/usr/bin/env python3
"""
Grade book -- operator commands for the session/user store.

Usage:
  python main.py init-db
  python main.py new-admin
  python main.py new-admin --login-name alice --display-name "Alice Smith"
  python main.py purge-sessions

Environment variables:
  DATABASE_URL  Required. SQLAlchemy URL of the store, e.g.
                sqlite:///gradebook.db or postgresql://user:pw@host/db
"""

import argparse
import getpass
import logging
import sys
from typing import Optional

from auth.credentials import create_user
from auth.models import Role
from auth.results import Err, error_message
from auth.store import SessionStore, UserStore, create_schema
from auth.resolver import utc_now
from core.config import get_settings
from core.database import Database

logger = logging.getLogger("gradebook.cli")

_PASSWORD_MIN_LENGTH = 8
_PASSWORD_MAX_LENGTH = 64


def _prompt(label: str, value: Optional[str]) -> str:
    if value:
        return value
    return input(f"{label}: ").strip()


def _prompt_password() -> Optional[str]:
    """Ask for the password twice. Returns None if the entries differ or break the length rules."""
    password = getpass.getpass("Password for admin: ")
    confirm = getpass.getpass("Repeat password: ")
    if password != confirm:
        print("  [!] Passwords do not match.")
        return None
    if not _PASSWORD_MIN_LENGTH <= len(password) <= _PASSWORD_MAX_LENGTH:
        print(f"  [!] Password must be {_PASSWORD_MIN_LENGTH}-{_PASSWORD_MAX_LENGTH} characters.")
        return None
    return password


def cmd_init_db(db: Database, args: argparse.Namespace) -> int:
    create_schema(db.engine)
    print("  Schema ready (users, sessions).")
    return 0


def cmd_new_admin(db: Database, args: argparse.Namespace) -> int:
    login_name = _prompt("User name for admin", args.login_name)
    display_name = _prompt("Full name for admin", args.display_name)
    if not login_name or not display_name:
        print("  [!] User name and full name are required.")
        return 1
    password = _prompt_password()
    if password is None:
        return 1

    create_schema(db.engine)
    with db.transaction() as conn:
        result = create_user(UserStore(conn), login_name, display_name, password, Role.admin)
    if isinstance(result, Err):
        print(f"  [!] {error_message(result.error)}")
        return 1
    print(f"  Admin '{login_name}' created.")
    return 0


def cmd_purge_sessions(db: Database, args: argparse.Namespace) -> int:
    with db.transaction() as conn:
        removed = SessionStore(conn).purge_expired(utc_now())
    logger.info("purge-sessions removed %d row(s)", removed)
    print(f"  Removed {removed} expired session(s).")
    return 0


_COMMANDS = {
    "init-db": cmd_init_db,
    "new-admin": cmd_new_admin,
    "purge-sessions": cmd_purge_sessions,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gradebook",
        description="Grade book store administration.",
    )
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("init-db", help="Create tables and indexes (safe to re-run).")
    new_admin = sub.add_parser("new-admin", help="Create an admin account.")
    new_admin.add_argument("--login-name", help="Login name (prompted if omitted).")
    new_admin.add_argument("--display-name", help="Full name (prompted if omitted).")
    sub.add_parser("purge-sessions", help="Delete expired sessions now.")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    db = Database(settings.database_url)
    try:
        return _COMMANDS[args.command](db, args)
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
