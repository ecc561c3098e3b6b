"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and the policy
engine do the work; these only own the shape.

All instants are timezone-aware UTC datetimes. The stores convert to and from
the naive UTC values SQLite persists.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class RevocationReason(str, Enum):
    """Why a credential was revoked. Stored verbatim in token_revocations.reason."""

    logout = "logout"
    credential_change = "credential_change"
    admin_action = "admin_action"
    security_incident = "security_incident"


@dataclass
class Account:
    """A login identity plus its lockout counters.

    failed_attempt_count, locked_until and last_failed_attempt are only ever
    changed through AccountStore.increment_failed_attempts(), lock_account()
    and reset_failed_attempts(). A lock that has expired leaves the counter
    untouched; only an explicit reset zeroes it.
    """

    email: str
    role: str = "user"  # "admin" or "user"
    id: int | None = None
    hashed_password: str | None = None
    is_active: bool = True
    failed_attempt_count: int = 0
    locked_until: datetime | None = None
    last_failed_attempt: datetime | None = None
    created_at: str | None = None
    last_login: str | None = None


@dataclass
class RevocationRecord:
    """One row of the revocation ledger.

    token_id is either the jti of a single revoked token or a per-user marker
    id (see auth.revocation.marker_id). For a marker, revoked_at is the cutoff:
    every token for owner_user_id issued strictly before it is invalid.

    expires_at is the retention horizon. Past it the row means nothing and
    the cleanup sweep deletes it.
    """

    token_id: str
    owner_user_id: int
    revoked_at: datetime
    expires_at: datetime
    reason: str
    id: int | None = None
