"""
auth/lockout.py -- Account lockout policy engine.

Decides, from an account's failure counters and the LockoutConfig, whether a
login may proceed, and drives the counter mutations that follow a failed or
successful attempt.

State per account:
  Unlocked(count) --failure--> Unlocked(count + 1)      while count + 1 < max_attempts
  Unlocked(count) --failure--> Locked(now + duration)   once count + 1 >= max_attempts
  any state       --success--> Unlocked(0)               when reset_on_success is on

A lock whose locked_until has passed behaves as Unlocked(count) with the
counter it had when it locked. Expiry alone never zeroes the counter, so a
user coming out of a lock re-locks on the next failure. Keep it that way
until product decides otherwise.

Concurrency: no in-process locking. The store applies increments atomically
in the database (see AccountStore.increment_failed_attempts).

Security events go to the "lockgate.security" logger at WARNING.

Layer rule: no imports from api/. The config is passed in, never read here.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Protocol

from auth.models import Account

if TYPE_CHECKING:
    from core.config import LockoutConfig

security_logger = logging.getLogger("lockgate.security")

LOCKED_STATUS_CODE = 423  # HTTP 423 Locked (RFC 4918)


class AccountMutator(Protocol):
    """The credential-store operations the policy is allowed to call."""

    def increment_failed_attempts(self, account: Account, now: datetime | None = None) -> Account: ...

    def lock_account(self, account: Account, minutes: int, now: datetime | None = None) -> Account: ...

    def reset_failed_attempts(self, account: Account) -> Account: ...


@dataclass(frozen=True)
class LockoutStatus:
    is_locked: bool
    remaining_minutes: int = 0
    locked_until: datetime | None = None


@dataclass(frozen=True)
class FailedLoginResult:
    account_locked: bool
    failed_attempts: int
    attempts_remaining: int
    locked_until: datetime | None = None


@dataclass(frozen=True)
class LockedResponse:
    status_code: int
    body: dict[str, Any] = field(default_factory=dict)


_UNLOCKED = LockoutStatus(is_locked=False)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def remaining_lockout_minutes(locked_until: datetime | None, now: datetime) -> int:
    """Whole minutes left on a lock, rounded up. 0 once the lock has passed or if unset."""
    if locked_until is None:
        return 0
    remaining = (locked_until - now).total_seconds()
    if remaining <= 0:
        return 0
    return math.ceil(remaining / 60)


class LockoutPolicy:
    """Account lockout decisions over a LockoutConfig and an AccountMutator.

    Usage:
        policy = LockoutPolicy(get_lockout_config(), account_store)
        status = policy.check_lockout(account)
        if status.is_locked:
            return policy.locked_response(status)
    """

    def __init__(
        self,
        config: LockoutConfig,
        store: AccountMutator,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config
        self._store = store
        self._clock = clock or _utcnow

    def check_lockout(self, account: Account | None) -> LockoutStatus:
        """Report whether the account is locked right now.

        No account, or lockout disabled, is always unlocked.
        """
        if account is None or not self.config.enabled:
            return _UNLOCKED
        now = self._clock()
        if account.locked_until is None or account.locked_until <= now:
            return _UNLOCKED
        return LockoutStatus(
            is_locked=True,
            remaining_minutes=remaining_lockout_minutes(account.locked_until, now),
            locked_until=account.locked_until,
        )

    def handle_failed_login(self, account: Account | None, source_address: str | None = None) -> FailedLoginResult:
        """Record one failed login and lock the account once the threshold is reached.

        With lockout disabled nothing is written, and attempts_remaining is
        reported as max_attempts regardless of what the stored counter says.

        Raises ValueError if account is None -- a caller bug, never defaulted.
        """
        if account is None:
            raise ValueError("account is required for handle_failed_login")

        max_attempts = self.config.max_attempts
        if not self.config.enabled:
            return FailedLoginResult(
                account_locked=False,
                failed_attempts=account.failed_attempt_count or 0,
                attempts_remaining=max_attempts,
            )

        now = self._clock()
        self._store.increment_failed_attempts(account, now)
        failed_attempts = account.failed_attempt_count

        if failed_attempts >= max_attempts:
            self._store.lock_account(account, self.config.lock_duration_minutes, now)
            security_logger.warning(
                "SECURITY: account locked after failed login attempts "
                "account_id=%s email=%s failed_attempts=%d locked_until=%s source=%s timestamp=%s",
                account.id,
                account.email,
                failed_attempts,
                account.locked_until.isoformat() if account.locked_until else None,
                source_address or "unknown",
                now.isoformat(),
            )
            return FailedLoginResult(
                account_locked=True,
                failed_attempts=failed_attempts,
                attempts_remaining=0,
                locked_until=account.locked_until,
            )

        return FailedLoginResult(
            account_locked=False,
            failed_attempts=failed_attempts,
            attempts_remaining=max(0, max_attempts - failed_attempts),
        )

    def handle_successful_login(self, account: Account | None, source_address: str | None = None) -> None:
        """Zero the failure counter after a successful login.

        A true no-op (no write, no log) when lockout or reset-on-success is
        off, or when the counter is already 0.

        Raises ValueError if account is None.
        """
        if account is None:
            raise ValueError("account is required for handle_successful_login")
        if not self.config.enabled or not self.config.reset_on_success:
            return
        previous_failures = account.failed_attempt_count or 0
        if previous_failures == 0:
            return

        was_locked = account.locked_until is not None
        self._store.reset_failed_attempts(account)
        security_logger.warning(
            "SECURITY: successful login after failed attempts "
            "account_id=%s email=%s previous_failed_attempts=%d was_locked=%s source=%s timestamp=%s",
            account.id,
            account.email,
            previous_failures,
            was_locked,
            source_address or "unknown",
            self._clock().isoformat(),
        )

    def locked_response(self, status: LockoutStatus) -> LockedResponse:
        """Render the 423 payload the login route returns for a locked account."""
        return locked_response(status)


def locked_response(status: LockoutStatus) -> LockedResponse:
    minutes = status.remaining_minutes
    unit = "minute" if minutes == 1 else "minutes"
    return LockedResponse(
        status_code=LOCKED_STATUS_CODE,
        body={
            "success": False,
            "error": "Account is temporarily locked due to too many failed login attempts",
            "locked": True,
            "remainingMinutes": minutes,
            "message": f"Please try again in {minutes} {unit}",
        },
    )
