"""
auth/store.py -- SQLAlchemy Core persistence layer for accounts.

Pattern: Repository + Data Mapper. AccountStore is the repository;
_row_to_account is the mapper. Route and policy code never touches SQL.

AccountStore is also the credential-store collaborator the lockout policy
mutates through. The three counter mutators are single UPDATE statements that
compute the new value in SQL (failed_attempt_count = failed_attempt_count + 1),
so concurrent failed logins against the same account serialize in the
database instead of losing updates in Python. Each mutator writes the stored
result back onto the Account object it was given.

Security:
  All queries use bound parameters. No f-strings in SQL.

Instants: SQLite has no timezone-aware type. Everything is written as naive
UTC (to_db_time) and read back as aware UTC (from_db_time).

DB path: auth/lockgate_auth.db unless DATABASE_URL is set.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

from sqlalchemy import (
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Engine

from auth.models import Account

DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'lockgate_auth.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text),
    Column("role", String(30), nullable=False, server_default="user"),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("failed_attempt_count", Integer, nullable=False, server_default="0"),
    Column("locked_until", DateTime),
    Column("last_failed_attempt", DateTime),
    Column("created_at", String(32), nullable=False),
    Column("last_login", String(32)),
)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked by writers.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str, timeout_seconds: float = 5.0) -> Engine:
    """Create an engine with a bounded lock wait.

    For SQLite the timeout is the busy timeout: a call that cannot get the
    database lock within timeout_seconds raises OperationalError instead of
    waiting forever.
    """
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = timeout_seconds
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_db_time(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def from_db_time(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc)


def _normalize_email(email: str) -> str:
    return email.strip().lower()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for Account entities.

    Usage:
        store = AccountStore()
        account_id = store.create_account(Account(email="a@example.com", hashed_password=hash_password("pw")))
        account = store.get_by_email("a@example.com")
        store.increment_failed_attempts(account)
        store.close()
    """

    def __init__(self, db_url: str = DEFAULT_DB_URL, timeout_seconds: float = 5.0) -> None:
        self.engine: Engine = make_engine(db_url, timeout_seconds)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Account queries
    # ------------------------------------------------------------------

    def has_accounts(self) -> bool:
        """Return True if at least one account exists."""
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_accounts)).scalar()
        return (result or 0) > 0

    def create_account(self, account: Account) -> int:
        """Insert a new account and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _accounts.insert().values(
                    email=_normalize_email(account.email),
                    hashed_password=account.hashed_password,
                    role=account.role,
                    is_active=1 if account.is_active else 0,
                    failed_attempt_count=account.failed_attempt_count,
                    locked_until=to_db_time(account.locked_until),
                    last_failed_attempt=to_db_time(account.last_failed_attempt),
                    created_at=utcnow().isoformat(),
                )
            )
            return result.inserted_primary_key[0]

    def get_by_email(self, email: str) -> Account | None:
        """Look up an account by email (case-insensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.email == _normalize_email(email))).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_by_id(self, account_id: int) -> Account | None:
        """Look up an account by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.id == account_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    def update_password(self, account_id: int, hashed_password: str) -> bool:
        """Replace the stored password hash. Returns False if the account does not exist."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _accounts.update().where(_accounts.c.id == account_id).values(hashed_password=hashed_password)
            )
        return result.rowcount > 0

    def update_last_login(self, account_id: int) -> None:
        """Stamp the current UTC timestamp as last_login."""
        with self.engine.begin() as conn:
            conn.execute(_accounts.update().where(_accounts.c.id == account_id).values(last_login=utcnow().isoformat()))

    # ------------------------------------------------------------------
    # Lockout counter mutators
    # ------------------------------------------------------------------

    def increment_failed_attempts(self, account: Account, now: datetime | None = None) -> Account:
        """Add exactly one failure to the stored counter and stamp last_failed_attempt.

        The increment happens in SQL and the new value is read back inside the
        same transaction, so account.failed_attempt_count reflects every
        concurrent increment that committed before this one.

        now defaults to the wall clock; the lockout policy passes its own.
        """
        now = now or utcnow()
        with self.engine.begin() as conn:
            conn.execute(
                _accounts.update()
                .where(_accounts.c.id == account.id)
                .values(
                    failed_attempt_count=_accounts.c.failed_attempt_count + 1,
                    last_failed_attempt=to_db_time(now),
                )
            )
            count = conn.execute(
                select(_accounts.c.failed_attempt_count).where(_accounts.c.id == account.id)
            ).scalar_one()
        account.failed_attempt_count = count
        account.last_failed_attempt = now
        return account

    def lock_account(self, account: Account, minutes: int, now: datetime | None = None) -> Account:
        """Set locked_until to now + minutes. The counter is left as is."""
        locked_until = (now or utcnow()) + timedelta(minutes=minutes)
        with self.engine.begin() as conn:
            conn.execute(
                _accounts.update().where(_accounts.c.id == account.id).values(locked_until=to_db_time(locked_until))
            )
        account.locked_until = locked_until
        return account

    def reset_failed_attempts(self, account: Account) -> Account:
        """Zero the counter and clear locked_until and last_failed_attempt."""
        with self.engine.begin() as conn:
            conn.execute(
                _accounts.update()
                .where(_accounts.c.id == account.id)
                .values(failed_attempt_count=0, locked_until=None, last_failed_attempt=None)
            )
        account.failed_attempt_count = 0
        account.locked_until = None
        account.last_failed_attempt = None
        return account

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        email=row.email,
        hashed_password=row.hashed_password,
        role=row.role,
        is_active=bool(row.is_active),
        failed_attempt_count=row.failed_attempt_count,
        locked_until=from_db_time(row.locked_until),
        last_failed_attempt=from_db_time(row.last_failed_attempt),
        created_at=row.created_at,
        last_login=row.last_login,
    )
