"""Operator commands for login lockouts.

Usage:
  stageworks-lockouts clear EMAIL
  stageworks-lockouts cleanup    (also drops expired sessions and codes)
  stageworks-lockouts show EMAIL

The database comes from DATABASE_URL (see stageworks.config).
"""

from __future__ import annotations

import argparse
import sys
from collections.abc import Sequence

from stageworks.auth.session import cleanup_expired_sessions
from stageworks.config import get_settings
from stageworks.core import AppError, get_logger, setup_logging
from stageworks.core.time import utcnow
from stageworks.db import get_session_factory
from stageworks.db.repositories import purge_expired_codes
from stageworks.security import (
    LockoutPolicy,
    LoginSecurityService,
    SqlAttemptStore,
    format_time_remaining,
    normalize_identity,
)

logger = get_logger(__name__)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Stageworks login lockout management")
    parser.add_argument("--quiet", action="store_true")
    subparsers = parser.add_subparsers(dest="command", required=True)

    clear = subparsers.add_parser("clear", help="Remove the lockout record for an account")
    clear.add_argument("email")

    subparsers.add_parser("cleanup", help="Delete expired lockouts, stale attempts, sessions and codes")

    show = subparsers.add_parser("show", help="Print the stored record for an account")
    show.add_argument("email")
    return parser.parse_args(argv)


def _show(store: SqlAttemptStore, policy: LockoutPolicy, email: str) -> None:
    identity = normalize_identity(email)
    record = store.get(identity)
    if record is None:
        print(f"{identity}: no failed attempts on record")
        return

    now = utcnow()
    print(f"identity:        {record.identity}")
    print(f"failed_attempts: {record.failed_attempts}/{policy.max_attempts}")
    print(f"last_attempt_at: {record.last_attempt_at.isoformat()}")
    print(f"ip_address:      {record.ip_address or '-'}")
    if record.lockout_until is None:
        state = "stale (resets on next check)" if policy.is_expired(record, now) else "not locked"
    elif now < record.lockout_until:
        remaining_ms = int((record.lockout_until - now).total_seconds() * 1000)
        state = f"locked for {format_time_remaining(remaining_ms)}"
    else:
        state = "lockout expired (cleared on next check)"
    print(f"lockout_until:   {record.lockout_until.isoformat() if record.lockout_until else '-'}")
    print(f"state:           {state}")


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    settings = get_settings()
    setup_logging(level="WARNING" if args.quiet else settings.log_level)

    policy = LockoutPolicy.from_settings(settings)
    db = get_session_factory()()
    try:
        store = SqlAttemptStore(db)
        service = LoginSecurityService(store, policy)
        if args.command == "clear":
            service.clear_lockout(args.email)
            if not args.quiet:
                print(f"Cleared lockout for {normalize_identity(args.email)}")
        elif args.command == "cleanup":
            result = service.cleanup_expired_records()
            sessions = cleanup_expired_sessions(db)
            codes = purge_expired_codes(db)
            if not args.quiet:
                print(
                    f"Cleared {result.lockouts_cleared} expired lockouts and "
                    f"reset {result.attempts_reset} stale attempt records"
                )
                print(f"Removed {sessions} expired sessions and {codes} used or expired codes")
        else:
            _show(store, policy, args.email)
    except AppError as exc:
        print(f"Error: {exc.message}", file=sys.stderr)
        return 1
    finally:
        db.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
