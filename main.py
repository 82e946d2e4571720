#!/usr/bin/env python3
"""
SessionGate -- operator command line.

The HTTP API is started with uvicorn (see api/main.py). This script covers
the jobs that must work without an admin session:

Usage:
  python main.py create-admin --username root --email root@example.com
  python main.py set-role 42 moderator
  python main.py purge

Environment variables:
  DATABASE_URL          SQLAlchemy URL of the account database.
  ACCESS_TOKEN_SECRET   Required unless DEBUG=true (see core/config.py).
  REFRESH_TOKEN_SECRET  Required unless DEBUG=true.
"""

import argparse
import getpass
import sys
from typing import Optional

from auth.errors import AuthError
from auth.models import Role
from auth.service import AuthService
from auth.store import AccountStore
from core.config import get_settings
from notify.email import EmailSender


def _build_service() -> AuthService:
    settings = get_settings()
    store = AccountStore(settings.database_url)
    return AuthService.from_settings(settings, store, EmailSender.from_settings(settings))


def _prompt_password() -> Optional[str]:
    """Ask for the password twice without echo. Returns None on mismatch."""
    first = getpass.getpass("  Password: ")
    second = getpass.getpass("  Repeat password: ")
    if first != second:
        print("  [!] Passwords do not match.")
        return None
    return first


def cmd_create_admin(service: AuthService, args: argparse.Namespace) -> int:
    password = args.password or _prompt_password()
    if password is None:
        return 1
    account = service.bootstrap_admin(args.username, args.email, password)
    print(f"  Admin account '{account.username}' created (id {account.id}).")
    return 0


def cmd_set_role(service: AuthService, args: argparse.Namespace) -> int:
    account = service.assign_role(args.user_id, Role(args.role))
    print(f"  Account {account.id} ({account.email}) now has role '{account.role.value}'.")
    return 0


def cmd_purge(service: AuthService, args: argparse.Namespace) -> int:
    removed = service.purge_expired()
    print(f"  Removed {removed['otps']} expired OTP(s) and {removed['revocations']} expired revocation entr(ies).")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sessiongate",
        description="Maintenance commands for the SessionGate account database.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-admin --username root --email root@example.com
  python main.py set-role 42 admin
  python main.py purge
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    create = sub.add_parser("create-admin", help="Create a verified administrator account")
    create.add_argument("--username", required=True, help="Username for the new admin")
    create.add_argument("--email", required=True, help="Email address for the new admin")
    create.add_argument(
        "--password",
        default=None,
        help="Password (prompted without echo when omitted; avoid passing it on shared hosts)",
    )
    create.set_defaults(handler=cmd_create_admin)

    set_role = sub.add_parser("set-role", help="Change the role of an existing account")
    set_role.add_argument("user_id", type=int, help="Account ID")
    set_role.add_argument("role", choices=[r.value for r in Role], help="New role")
    set_role.set_defaults(handler=cmd_set_role)

    purge = sub.add_parser("purge", help="Delete expired OTPs and revocation entries")
    purge.set_defaults(handler=cmd_purge)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    service = _build_service()
    try:
        return args.handler(service, args)
    except AuthError as e:
        print(f"  [!] {e.message}")
        return 1
    finally:
        service.store.close()


if __name__ == "__main__":
    sys.exit(main())
