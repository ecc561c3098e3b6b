"""
auth/revocation.py -- Token revocation ledger and the per-request revocation check.

Two kinds of rows share the token_revocations table:

  Individual revocation: token_id is the jti of one token (logout). The row
      lives until the token's own expiry -- after that the token is invalid
      anyway.

  User marker: token_id is "user_<id>_revoke_all" and revoked_at is a cutoff.
      Every token for that user issued strictly before the cutoff is
      revoked; tokens issued at or after it stay valid. There is at most one
      marker per user. A new revoke-all replaces the old row (delete then
      insert) because the latest cutoff dominates every earlier one.

Failure policy is deliberately asymmetric:

  Writes (revoke, revoke_all_for_user, cleanup_expired) propagate storage
      errors unchanged. A logout that silently failed to revoke would leave a
      usable token behind, so the caller must see the failure.

  The read (is_revoked) never raises. A storage error is logged and answered
      "not revoked". It runs on every authenticated request; failing closed
      would turn a database hiccup into a login outage for every user.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy import Column, DateTime, Index, Integer, MetaData, String, Table, delete, func, select
from sqlalchemy.engine import Engine

from auth.models import RevocationReason, RevocationRecord
from auth.store import DEFAULT_DB_URL, from_db_time, make_engine, to_db_time, utcnow

logger = logging.getLogger("lockgate.revocation")

# Longer than any token this service issues, and independent of token TTLs.
MARKER_RETENTION = timedelta(days=7)

REVOKE_ALL_REASONS = frozenset(
    {
        RevocationReason.credential_change,
        RevocationReason.admin_action,
        RevocationReason.security_incident,
    }
)

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_revocations = Table(
    "token_revocations",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("token_id", String(128), nullable=False, unique=True),
    Column("owner_user_id", Integer, nullable=False),
    Column("revoked_at", DateTime, nullable=False),
    Column("expires_at", DateTime, nullable=False),
    Column("reason", String(30), nullable=False),
    Index("ix_token_revocations_expires_at", "expires_at"),
    Index("ix_token_revocations_token_owner", "token_id", "owner_user_id"),
)


def marker_id(user_id: int) -> str:
    """The synthetic token_id of a user's revoke-all marker."""
    return f"user_{user_id}_revoke_all"


def _reason_value(reason: RevocationReason | str) -> str:
    return reason.value if isinstance(reason, RevocationReason) else str(reason)


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


class RevocationStore:
    """Repository for RevocationRecord rows.

    Every lookup is an exact match on the unique token_id index, optionally
    narrowed by owner. "Active" means expires_at is still in the future.
    """

    def __init__(self, db_url: str = DEFAULT_DB_URL, timeout_seconds: float = 5.0) -> None:
        self.engine: Engine = make_engine(db_url, timeout_seconds)
        _metadata.create_all(self.engine)

    def insert(self, record: RevocationRecord) -> int:
        """Insert one record and return its ID.

        Raises sqlalchemy.exc.IntegrityError if token_id is already present.
        """
        with self.engine.begin() as conn:
            result = conn.execute(_revocations.insert().values(**_record_values(record)))
            return result.inserted_primary_key[0]

    def find_active_by_token(self, token_id: str, now: datetime) -> RevocationRecord | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _revocations.select().where(
                    (_revocations.c.token_id == token_id) & (_revocations.c.expires_at > to_db_time(now))
                )
            ).fetchone()
        return _row_to_record(row) if row is not None else None

    def find_active_marker(self, marker: str, user_id: int, now: datetime) -> RevocationRecord | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _revocations.select().where(
                    (_revocations.c.token_id == marker)
                    & (_revocations.c.owner_user_id == user_id)
                    & (_revocations.c.expires_at > to_db_time(now))
                )
            ).fetchone()
        return _row_to_record(row) if row is not None else None

    def replace_marker(self, record: RevocationRecord) -> int:
        """Delete the owner's existing marker (if any) and insert record in its place.

        Both statements run in one transaction, so a reader sees either the
        old marker or the new one.
        """
        with self.engine.begin() as conn:
            conn.execute(
                delete(_revocations).where(
                    (_revocations.c.token_id == record.token_id)
                    & (_revocations.c.owner_user_id == record.owner_user_id)
                )
            )
            result = conn.execute(_revocations.insert().values(**_record_values(record)))
            return result.inserted_primary_key[0]

    def delete_expired(self, now: datetime) -> int:
        """Delete every row whose expires_at has passed. Returns the number removed."""
        with self.engine.begin() as conn:
            result = conn.execute(delete(_revocations).where(_revocations.c.expires_at < to_db_time(now)))
        return result.rowcount

    def count(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(_revocations)).scalar() or 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Revocation service
# ---------------------------------------------------------------------------


class RevocationService:
    """Revoke tokens and answer "is this token still valid?".

    Usage:
        revocations = RevocationService(RevocationStore())
        revocations.revoke(jti, user_id, expires_at, RevocationReason.logout)
        revocations.revoke_all_for_user(user_id, RevocationReason.credential_change)
        if revocations.is_revoked(jti, user_id, issued_at):
            ...  # reject as 401
        removed = revocations.cleanup_expired()
    """

    def __init__(
        self,
        store: RevocationStore,
        marker_retention: timedelta = MARKER_RETENTION,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.marker_retention = marker_retention
        self._clock = clock or utcnow

    def revoke(
        self,
        token_id: str,
        user_id: int,
        expires_at: datetime,
        reason: RevocationReason | str,
    ) -> RevocationRecord:
        """Record a single revoked token. Storage errors propagate."""
        record = RevocationRecord(
            token_id=token_id,
            owner_user_id=user_id,
            revoked_at=self._clock(),
            expires_at=expires_at,
            reason=_reason_value(reason),
        )
        record.id = self.store.insert(record)
        return record

    def is_revoked(self, token_id: str, user_id: int | None = None, issued_at: datetime | None = None) -> bool:
        """True if the token was revoked individually or predates its owner's marker.

        The marker is only consulted when both user_id and issued_at are
        given. Never raises: on any storage error the token is treated as
        not revoked and the error is logged. A naive issued_at is taken
        to be UTC.
        """
        issued_at = from_db_time(to_db_time(issued_at))
        try:
            now = self._clock()
            if self.store.find_active_by_token(token_id, now) is not None:
                return True
            if user_id is None or issued_at is None:
                return False
            marker = self.store.find_active_marker(marker_id(user_id), user_id, now)
            return marker is not None and issued_at < marker.revoked_at
        except Exception:
            logger.exception("Revocation lookup failed for token %s -- treating as not revoked", token_id)
            return False

    def revoke_all_for_user(self, user_id: int, reason: RevocationReason | str) -> RevocationRecord:
        """Invalidate every token the user holds that was issued before now.

        reason must be credential_change, admin_action or security_incident;
        a plain logout never revokes everything. Raises ValueError for any
        other reason before touching storage. Storage errors propagate.
        """
        try:
            parsed = RevocationReason(_reason_value(reason))
        except ValueError:
            parsed = None
        if parsed not in REVOKE_ALL_REASONS:
            raise ValueError(f"{_reason_value(reason)!r} is not a valid reason to revoke all tokens")

        now = self._clock()
        record = RevocationRecord(
            token_id=marker_id(user_id),
            owner_user_id=user_id,
            revoked_at=now,
            expires_at=now + self.marker_retention,
            reason=parsed.value,
        )
        record.id = self.store.replace_marker(record)
        logger.info("Revoked all tokens for user %s (reason=%s)", user_id, parsed.value)
        return record

    def cleanup_expired(self) -> int:
        """Delete every expired record, individual or marker. Storage errors propagate."""
        removed = self.store.delete_expired(self._clock())
        logger.info("Cleaned up %d expired token revocation records", removed)
        return removed


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _record_values(record: RevocationRecord) -> dict:
    return {
        "token_id": record.token_id,
        "owner_user_id": record.owner_user_id,
        "revoked_at": to_db_time(record.revoked_at),
        "expires_at": to_db_time(record.expires_at),
        "reason": record.reason,
    }


def _row_to_record(row) -> RevocationRecord:
    return RevocationRecord(
        id=row.id,
        token_id=row.token_id,
        owner_user_id=row.owner_user_id,
        revoked_at=from_db_time(row.revoked_at),
        expires_at=from_db_time(row.expires_at),
        reason=row.reason,
    )
