#!/usr/bin/env python3
"""
lockgate -- maintenance commands.

Usage:
  python main.py cleanup-tokens
  python main.py create-admin admin@example.com

cleanup-tokens removes expired rows from the token revocation ledger, both
single-token revocations and per-user revoke-all markers. Run it from cron
during low-traffic hours, e.g.:

  0 2 * * * cd /srv/lockgate && python main.py cleanup-tokens

The API process also sweeps on its own timer
(REVOCATION_CLEANUP_INTERVAL_SECONDS); this command is for deployments that
prefer an external scheduler.

Environment variables:
  DATABASE_URL         SQLAlchemy URL. Defaults to the SQLite file in auth/.
  DB_TIMEOUT_SECONDS   Upper bound on waiting for a database lock.
"""

import argparse
import getpass
import logging
import sys
import time
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.models import Account
from auth.revocation import RevocationService, RevocationStore
from auth.store import DEFAULT_DB_URL, AccountStore
from core.config import get_storage_settings

logger = logging.getLogger("lockgate.cli")


def _db_url(explicit: Optional[str]) -> str:
    return explicit or get_storage_settings().database_url or DEFAULT_DB_URL


def cleanup_tokens(db_url: str, timeout_seconds: float) -> int:
    """Run one cleanup sweep and report it. Returns the process exit code."""
    start = time.perf_counter()
    print("\n  Cleaning up expired token revocation records...")
    store = RevocationStore(db_url, timeout_seconds=timeout_seconds)
    try:
        removed = RevocationService(store).cleanup_expired()
    except SQLAlchemyError as e:
        print(f"  [!] Cleanup failed: {e}", file=sys.stderr)
        return 1
    finally:
        store.close()
    elapsed = time.perf_counter() - start
    print(f"  Expired entries removed: {removed}")
    print(f"  Execution time: {elapsed:.2f} seconds")
    print(f"  Completed at: {datetime.now(timezone.utc).isoformat()}\n")
    return 0


def create_admin(db_url: str, timeout_seconds: float, email: str, password: Optional[str] = None) -> int:
    """Create an admin account. Prompts for the password when none is given.

    auth.tokens loads the full Settings, which requires SECRET_KEY. It is
    imported here so cleanup-tokens runs without one.
    """
    from auth.tokens import hash_password

    if password is None:
        password = getpass.getpass("  Password: ")
        if password != getpass.getpass("  Repeat password: "):
            print("  [!] Passwords do not match.", file=sys.stderr)
            return 1
    if len(password) < 8:
        print("  [!] Password must be at least 8 characters.", file=sys.stderr)
        return 1

    store = AccountStore(db_url, timeout_seconds=timeout_seconds)
    try:
        account_id = store.create_account(Account(email=email, role="admin", hashed_password=hash_password(password)))
    except IntegrityError:
        print(f"  [!] An account for '{email}' already exists.", file=sys.stderr)
        return 1
    finally:
        store.close()
    print(f"  Created admin account {email} (id={account_id})")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="lockgate",
        description="lockgate maintenance commands.",
    )
    parser.add_argument("--database-url", metavar="URL", help="Override DATABASE_URL")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("cleanup-tokens", help="Delete expired token revocation records")

    admin_parser = subparsers.add_parser("create-admin", help="Create an admin account")
    admin_parser.add_argument("email", help="Email address of the new admin")

    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)-5s %(name)s %(message)s")

    db_url = _db_url(args.database_url)
    timeout_seconds = get_storage_settings().db_timeout_seconds

    if args.command == "cleanup-tokens":
        return cleanup_tokens(db_url, timeout_seconds)
    return create_admin(db_url, timeout_seconds, args.email)


if __name__ == "__main__":
    sys.exit(main())
