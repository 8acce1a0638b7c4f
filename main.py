#!/usr/bin/env python3
"""
Deal Room auth -- out-of-band provisioning for the three sign-in realms.

Identities are never created by the sign-in flow itself. An operator adds
them here (or the business application does), and can switch them off
without deleting them.

Usage:
  python main.py admin-create --email ops@example.com --name "Ops Team"
  python main.py supervisor-create --email lead@example.com
  python main.py user-create --email buyer@example.com
  python main.py deactivate --realm admin --email ops@example.com
  python main.py activate --realm admin --email ops@example.com
  python main.py purge-tokens

Environment variables:
  DATABASE_URL  SQLAlchemy URL of the auth database (default: SQLite beside auth/).
  SECRET_KEY    Required unless DEBUG=true; see core/config.py.
"""

import argparse
import sys

from sqlalchemy.exc import IntegrityError

from auth.errors import TransientStoreError
from auth.identity import build_providers, normalize_email
from auth.ledger import TokenLedger
from auth.magic_link import EMAIL_RE
from auth.realms import ADMIN, REALMS, SUPERVISOR, USER
from auth.store import AuthDatabase

# Command name -> realm it provisions into.
_CREATE_COMMANDS = {
    "admin-create": ADMIN,
    "supervisor-create": SUPERVISOR,
    "user-create": USER,
}


def create_identity(db: AuthDatabase, realm_name: str, email: str, name: str | None = None) -> int:
    """Provision one identity. Returns a process exit code.

    Idempotent: an email that already exists in the realm is reported, not
    an error. The same address may hold accounts in several realms.
    """
    email = normalize_email(email)
    if not EMAIL_RE.match(email):
        print(f"  [!] '{email}' is not a valid email address.")
        return 2

    label = REALMS[realm_name].label.lower()
    provider = build_providers(db)[realm_name]
    existing = provider.get_by_email(email)
    if existing is not None:
        state = "active" if existing.is_active else "inactive"
        print(f"  {label} {email} already exists (id={existing.id}, {state}).")
        return 0

    try:
        identity = provider.create(email, name=name)
    except IntegrityError:
        # Created concurrently between the lookup and the insert.
        print(f"  {label} {email} already exists.")
        return 0
    print(f"  Created {label} {identity.email} (id={identity.id}).")
    return 0


def set_active(db: AuthDatabase, realm_name: str, email: str, is_active: bool) -> int:
    """Flip the active flag. Returns a process exit code."""
    provider = build_providers(db)[realm_name]
    if not provider.set_active(email, is_active):
        print(f"  [!] No {realm_name} account for '{normalize_email(email)}'.")
        return 1
    verb = "Activated" if is_active else "Deactivated"
    print(f"  {verb} {realm_name} {normalize_email(email)}.")
    return 0


def purge_tokens(db: AuthDatabase) -> int:
    removed = TokenLedger(db).purge_expired()
    print(f"  Removed {removed} expired sign-in token(s).")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dealroom-auth",
        description="Provision and manage Deal Room sign-in accounts.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py admin-create --email ops@example.com --name "Ops Team"
  python main.py supervisor-create --email lead@example.com
  python main.py deactivate --realm supervisor --email lead@example.com
  DATABASE_URL=sqlite:///prod.db python main.py purge-tokens
        """,
    )
    parser.add_argument(
        "--database-url",
        metavar="URL",
        default=None,
        help="Override DATABASE_URL for this invocation",
    )
    commands = parser.add_subparsers(dest="command", required=True, metavar="COMMAND")

    for command, realm in _CREATE_COMMANDS.items():
        sub = commands.add_parser(command, help=f"Create a {realm.label.lower()} account")
        sub.add_argument("--email", required=True, help="Sign-in email address")
        sub.add_argument("--name", default=None, help="Display name (optional)")

    for command in ("activate", "deactivate"):
        sub = commands.add_parser(command, help=f"{command.capitalize()} an existing account")
        sub.add_argument("--realm", required=True, choices=sorted(REALMS), help="Realm of the account")
        sub.add_argument("--email", required=True, help="Sign-in email address")

    commands.add_parser("purge-tokens", help="Delete expired magic-link tokens")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    db = AuthDatabase(args.database_url)
    try:
        if args.command in _CREATE_COMMANDS:
            return create_identity(db, _CREATE_COMMANDS[args.command].name, args.email, args.name)
        if args.command in ("activate", "deactivate"):
            return set_active(db, args.realm, args.email, args.command == "activate")
        return purge_tokens(db)
    except TransientStoreError:
        print("  [!] The auth database is unavailable. Try again shortly.")
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
