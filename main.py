#!/usr/bin/env python3
"""
PKM Prototype -- credential maintenance commands.

These run outside the request path, against the database configured by
DATABASE_URL (same .env as the server).

Usage:
  python main.py reset-admin                  # prompts for the new password
  python main.py reset-admin --password admin
  python main.py reset-admin --username root --password s3cret!
  python main.py migrate-passwords            # hash legacy plaintext passwords
  python main.py migrate-passwords --dry-run
"""

import argparse
import getpass
import sys
from typing import Optional

from auth.errors import AuthError
from auth.models import ROLE_ADMIN
from auth.passwords import hash_password
from auth.store import UserStore
from core.config import get_settings


def reset_admin(store: UserStore, password: str, username: str = "admin") -> str:
    """Create the admin account, or reset its password and role if it exists.

    Returns "created" or "updated".
    """
    password_hash = hash_password(password)
    existing = store.find_by_username(username)
    if existing is None:
        store.create(username, password_hash, role=ROLE_ADMIN)
        return "created"
    store.update(existing.id, password_hash=password_hash, role=ROLE_ADMIN)
    return "updated"


def migrate_plaintext_passwords(store: UserStore, dry_run: bool = False) -> list[str]:
    """Hash every password column value that is not already a bcrypt hash.

    This replaces guessing from string shape at login time: it is run once,
    explicitly, after importing legacy data. Returns the affected usernames.
    """
    migrated: list[str] = []
    for user in store.find_unhashed():
        if not dry_run:
            store.update(user.id, password_hash=hash_password(user.hashed_password or ""))
        migrated.append(user.username)
    return migrated


def _prompt_password() -> Optional[str]:
    first = getpass.getpass("New admin password: ")
    if first != getpass.getpass("Repeat password: "):
        print("  [!] Passwords do not match.")
        return None
    return first


def main() -> int:
    parser = argparse.ArgumentParser(
        prog="pkm-admin",
        description="Credential maintenance for the PKM Prototype.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py reset-admin --password admin
  python main.py migrate-passwords --dry-run
  DATABASE_URL=mysql+pymysql://root@localhost/pkm_demo python main.py migrate-passwords
        """,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    reset = sub.add_parser("reset-admin", help="Create or reset the admin account")
    reset.add_argument("--username", default="admin", help="Admin username (default: admin)")
    reset.add_argument("--password", help="New password (prompted when omitted)")

    migrate = sub.add_parser("migrate-passwords", help="Hash legacy plaintext passwords")
    migrate.add_argument("--dry-run", action="store_true", help="List affected users without writing")

    args = parser.parse_args()

    settings = get_settings()
    store = UserStore(settings.database_url, connect_timeout=settings.init_timeout_seconds)
    try:
        store.initialize()
        if args.command == "reset-admin":
            password = args.password if args.password is not None else _prompt_password()
            if not password:
                print("  [!] A non-empty password is required.")
                return 1
            outcome = reset_admin(store, password, username=args.username)
            print(f"  Admin user '{args.username}' {outcome}.")
        else:
            migrated = migrate_plaintext_passwords(store, dry_run=args.dry_run)
            verb = "Would hash" if args.dry_run else "Hashed"
            print(f"  {verb} {len(migrated)} password(s).")
            for username in migrated:
                print(f"    - {username}")
    except AuthError as exc:
        print(f"  [!] {exc.message}" + (f" ({exc.detail})" if exc.detail else ""))
        return 1
    finally:
        store.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
