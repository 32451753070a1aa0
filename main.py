#!/usr/bin/env python3
"""
BookMarket auth service -- operator commands.

The HTTP service itself runs under uvicorn (uvicorn api.main:app). This CLI
covers the few tasks that must not be reachable over HTTP.

Usage:
  python main.py create-admin ops@example.com --first-name Ops --last-name Team
  python main.py sweep-sessions

create-admin reads the password from ADMIN_PASSWORD if set, otherwise it
prompts for it (never pass a password on the command line).

Environment variables:
  DATABASE_URL   SQLAlchemy URL of the auth database (default: sqlite file in the repo root)
  JWT_SECRET     Required unless DEBUG=true
"""

import argparse
import getpass
import os
import sys

from auth.errors import AuthError
from auth.hashing import MAX_PASSWORD_BYTES, hash_password, password_too_long
from auth.metrics import NullMetrics
from auth.models import User, UserRole
from auth.service import AuthenticationService
from auth.sessions import SessionStore
from auth.store import UserStore
from core.config import get_settings

MIN_PASSWORD_LENGTH = 8


def _read_password() -> str:
    password = os.environ.get("ADMIN_PASSWORD")
    if password:
        return password
    password = getpass.getpass("Password: ")
    if password != getpass.getpass("Repeat password: "):
        print("  [!] Passwords do not match.")
        sys.exit(1)
    return password


def create_admin(users: UserStore, service: AuthenticationService, args: argparse.Namespace) -> int:
    """Insert an administrator directly; self-registration cannot grant the role."""
    password = _read_password()
    if len(password) < MIN_PASSWORD_LENGTH:
        print(f"  [!] Password must be at least {MIN_PASSWORD_LENGTH} characters.")
        return 1
    if password_too_long(password):
        print(f"  [!] Password must be at most {MAX_PASSWORD_BYTES} bytes.")
        return 1
    if users.get_by_email(args.email) is not None:
        print(f"  [!] A user with e-mail {args.email} already exists.")
        return 1
    user_id = users.create_user(
        User(
            email=args.email,
            password_hash=hash_password(password, get_settings().bcrypt_cost),
            first_name=args.first_name,
            last_name=args.last_name,
            role=UserRole.admin,
        )
    )
    print(f"  Created admin {args.email} (id={user_id}).")
    return 0


def sweep_sessions(users: UserStore, service: AuthenticationService, args: argparse.Namespace) -> int:
    try:
        removed = service.sweep_expired_sessions()
    except AuthError as exc:
        print(f"  [!] Sweep failed: {exc.message}")
        return 1
    print(f"  Removed {removed} expired session(s); {service.active_session_count()} still active.")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="bookmarket-auth",
        description="Operator commands for the BookMarket auth service.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-admin ops@example.com --first-name Ops --last-name Team
  ADMIN_PASSWORD=... python main.py create-admin ops@example.com
  python main.py sweep-sessions
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    admin = sub.add_parser("create-admin", help="Create an administrator account")
    admin.add_argument("email", help="E-mail address of the new administrator")
    admin.add_argument("--first-name", default=None, metavar="NAME")
    admin.add_argument("--last-name", default=None, metavar="NAME")
    admin.set_defaults(handler=create_admin)

    sweep = sub.add_parser("sweep-sessions", help="Delete expired sessions now")
    sweep.set_defaults(handler=sweep_sessions)

    args = parser.parse_args()
    if args.command is None:
        parser.print_help()
        return

    settings = get_settings()
    users = UserStore(settings.database_url)
    sessions = SessionStore(
        settings.database_url,
        access_ttl=settings.jwt_expiration,
        refresh_ttl=settings.refresh_token_expiration,
    )
    service = AuthenticationService(users, sessions, settings, NullMetrics())
    try:
        code = args.handler(users, service, args)
    finally:
        sessions.close()
        users.close()
    sys.exit(code)


if __name__ == "__main__":
    main()
