"""Tests for auth/store.py -- AccountStore persistence and counter mutators."""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from auth.models import Account
from auth.store import AccountStore, from_db_time, to_db_time, utcnow
from conftest import make_account


class TestAccountStore:
    def test_has_accounts(self, account_store: AccountStore) -> None:
        assert account_store.has_accounts() is False
        make_account(account_store, "first@example.com")
        assert account_store.has_accounts() is True

    def test_create_and_read_back(self, account_store: AccountStore) -> None:
        account = make_account(account_store, "  New@Example.com ", role="admin")
        assert account.id is not None
        assert account.email == "new@example.com"
        assert account.role == "admin"
        assert account.is_active is True
        assert account.failed_attempt_count == 0
        assert account.locked_until is None
        assert account.created_at
        assert account_store.get_by_email("NEW@example.com").id == account.id

    def test_duplicate_email_raises(self, account_store: AccountStore) -> None:
        make_account(account_store, "twice@example.com")
        with pytest.raises(IntegrityError):
            account_store.create_account(Account(email="Twice@example.com", hashed_password="x"))

    def test_missing_lookups_return_none(self, account_store: AccountStore) -> None:
        assert account_store.get_by_email("ghost@example.com") is None
        assert account_store.get_by_id(12345) is None

    def test_update_password(self, account_store: AccountStore) -> None:
        account = make_account(account_store, "pw@example.com")
        assert account_store.update_password(account.id, "new-hash") is True
        assert account_store.get_by_id(account.id).hashed_password == "new-hash"
        assert account_store.update_password(99999, "new-hash") is False

    def test_update_last_login(self, account_store: AccountStore) -> None:
        account = make_account(account_store, "seen@example.com")
        assert account.last_login is None
        account_store.update_last_login(account.id)
        assert account_store.get_by_id(account.id).last_login is not None


class TestCounterMutators:
    def test_increment_is_applied_in_sql(self, account_store: AccountStore) -> None:
        """Two stale copies of the same account must not lose an increment."""
        stored = make_account(account_store, "race@example.com")
        copy_a = account_store.get_by_id(stored.id)
        copy_b = account_store.get_by_id(stored.id)

        account_store.increment_failed_attempts(copy_a)
        account_store.increment_failed_attempts(copy_b)

        assert copy_a.failed_attempt_count == 1
        assert copy_b.failed_attempt_count == 2
        assert account_store.get_by_id(stored.id).failed_attempt_count == 2

    def test_increment_stamps_last_failed_attempt(self, account_store: AccountStore) -> None:
        account = make_account(account_store, "stamp@example.com")
        account_store.increment_failed_attempts(account)
        stored = account_store.get_by_id(account.id)
        assert stored.last_failed_attempt is not None
        assert stored.last_failed_attempt.tzinfo is not None

    def test_lock_keeps_counter(self, account_store: AccountStore) -> None:
        account = make_account(account_store, "lock@example.com")
        account_store.increment_failed_attempts(account)
        before = utcnow()
        account_store.lock_account(account, 15)
        stored = account_store.get_by_id(account.id)
        assert stored.failed_attempt_count == 1
        assert stored.locked_until >= before + timedelta(minutes=15)
        assert stored.locked_until == account.locked_until

    def test_reset_clears_everything(self, account_store: AccountStore) -> None:
        account = make_account(account_store, "clear@example.com")
        account_store.increment_failed_attempts(account)
        account_store.lock_account(account, 15)
        account_store.reset_failed_attempts(account)
        stored = account_store.get_by_id(account.id)
        assert stored.failed_attempt_count == 0
        assert stored.locked_until is None
        assert stored.last_failed_attempt is None
        assert account.failed_attempt_count == 0


def test_db_time_round_trip_is_utc() -> None:
    now = utcnow()
    naive = to_db_time(now)
    assert naive.tzinfo is None
    assert from_db_time(naive) == now
    assert to_db_time(None) is None
    assert from_db_time(None) is None
