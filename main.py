#!/usr/bin/env python3
"""
Keyward -- account administration from the command line.

Works directly against the configured database; the API server does not need
to be running.

Usage:
  python main.py seed
  python main.py create-admin admin admin@example.com
  python main.py unlock alice
  python main.py list-users

Environment variables:
  DATABASE_URL  SQLAlchemy URL of the account database (default: sqlite:///keyward.db)
  JWT_SECRET    Base64 signing key, at least 32 decoded bytes. Required unless DEBUG=true.
"""

import argparse
import getpass
import logging
import sys

from auth.errors import AuthError
from auth.seed import create_admin_user, seed_default_roles
from auth.service import AuthService, build_auth_service
from auth.store import create_store_engine
from core.config import get_settings

logger = logging.getLogger("keyward.cli")


def _read_password() -> str:
    """Prompt twice without echo. Returns an empty string on mismatch."""
    first = getpass.getpass("Password: ")
    second = getpass.getpass("Confirm password: ")
    if first != second:
        print("  [!] Passwords do not match.")
        return ""
    return first


def _cmd_seed(service: AuthService, args: argparse.Namespace) -> int:
    created = seed_default_roles(service.roles)
    if created:
        print(f"  Created {len(created)} role(s): {', '.join(r.name for r in created)}")
    else:
        print("  Default roles already present.")
    return 0


def _cmd_create_admin(service: AuthService, args: argparse.Namespace) -> int:
    password = _read_password()
    if not password:
        return 1
    user = create_admin_user(service, args.username, args.email, password)
    if user is None:
        print(f"  [!] User '{args.username}' already exists.")
        return 1
    print(f"  Admin '{user.username}' created (id {user.id}).")
    return 0


def _cmd_unlock(service: AuthService, args: argparse.Namespace) -> int:
    user = service.unlock_account(args.username)
    print(f"  '{user.username}' unlocked (status {user.status.value}).")
    return 0


def _cmd_list_users(service: AuthService, args: argparse.Namespace) -> int:
    users = service.list_users()
    if not users:
        print("  No users.")
        return 0
    print(f"  {'ID':>4}  {'USERNAME':<20} {'STATUS':<9} {'FAILS':>5}  ROLES")
    for u in users:
        roles = ",".join(sorted(u.roles)) or "-"
        print(f"  {u.id:>4}  {u.username:<20} {u.status.value:<9} {u.failed_login_attempts:>5}  {roles}")
    return 0


_COMMANDS = {
    "seed": _cmd_seed,
    "create-admin": _cmd_create_admin,
    "unlock": _cmd_unlock,
    "list-users": _cmd_list_users,
}


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="keyward",
        description="Account administration for the Keyward authentication engine.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py seed
  python main.py create-admin admin admin@example.com
  python main.py unlock alice
  DATABASE_URL=sqlite:////srv/keyward.db python main.py list-users
        """,
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log engine activity to stderr",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")
    sub.add_parser("seed", help="Create the default ADMIN, USER and MODERATOR roles if missing")
    admin = sub.add_parser("create-admin", help="Create an active account holding the ADMIN role")
    admin.add_argument("username")
    admin.add_argument("email")
    unlock = sub.add_parser("unlock", help="Reset the failed-attempt counter and lift a lockout")
    unlock.add_argument("username")
    sub.add_parser("list-users", help="Print every account with status and roles")
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    settings = get_settings()
    engine = create_store_engine(settings.database_url)
    try:
        service = build_auth_service(settings, engine)
        return _COMMANDS[args.command](service, args)
    except AuthError as e:
        print(f"  [!] {e.message}")
        logger.info("Command %s failed: %s", args.command, e.message)
        return 1
    finally:
        engine.dispose()


if __name__ == "__main__":
    sys.exit(main())
