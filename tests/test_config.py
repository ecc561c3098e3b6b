"""Unit tests for core/config.py -- lockout configuration parsing.

Covers:
- Documented defaults when nothing is set
- Valid environment values are honored
- Unparseable and non-positive values fall back to defaults with a warning
- Empty values fall back silently
- The config is immutable and parsed once
"""

import logging

import pytest
from pydantic import ValidationError

from core.config import LockoutConfig, get_lockout_config

_ENV_VARS = (
    "ACCOUNT_LOCKOUT_ENABLED",
    "ACCOUNT_LOCKOUT_MAX_ATTEMPTS",
    "ACCOUNT_LOCKOUT_DURATION_MINUTES",
    "ACCOUNT_LOCKOUT_RESET_ON_SUCCESS",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    get_lockout_config.cache_clear()
    yield
    get_lockout_config.cache_clear()


class TestDefaults:
    def test_defaults_when_unset(self) -> None:
        config = LockoutConfig()
        assert config.enabled is True
        assert config.max_attempts == 5
        assert config.lock_duration_minutes == 15
        assert config.reset_on_success is True

    def test_empty_values_use_defaults_without_warning(self, monkeypatch, caplog) -> None:
        monkeypatch.setenv("ACCOUNT_LOCKOUT_MAX_ATTEMPTS", "")
        monkeypatch.setenv("ACCOUNT_LOCKOUT_ENABLED", "")
        with caplog.at_level(logging.WARNING, logger="lockgate.config"):
            config = LockoutConfig()
        assert config.max_attempts == 5
        assert config.enabled is True
        assert caplog.records == []


class TestEnvironmentValues:
    def test_reads_all_four_variables(self, monkeypatch) -> None:
        monkeypatch.setenv("ACCOUNT_LOCKOUT_ENABLED", "false")
        monkeypatch.setenv("ACCOUNT_LOCKOUT_MAX_ATTEMPTS", "3")
        monkeypatch.setenv("ACCOUNT_LOCKOUT_DURATION_MINUTES", "30")
        monkeypatch.setenv("ACCOUNT_LOCKOUT_RESET_ON_SUCCESS", "no")
        config = LockoutConfig()
        assert config.enabled is False
        assert config.max_attempts == 3
        assert config.lock_duration_minutes == 30
        assert config.reset_on_success is False

    @pytest.mark.parametrize("raw,expected", [("TRUE", True), (" yes ", True), ("1", True), ("0", False), ("No", False)])
    def test_boolean_spellings(self, monkeypatch, raw: str, expected: bool) -> None:
        monkeypatch.setenv("ACCOUNT_LOCKOUT_ENABLED", raw)
        assert LockoutConfig().enabled is expected

    def test_keyword_arguments_override_environment(self, monkeypatch) -> None:
        monkeypatch.setenv("ACCOUNT_LOCKOUT_MAX_ATTEMPTS", "9")
        config = LockoutConfig(max_attempts=2, lock_duration_minutes=1)
        assert config.max_attempts == 2
        assert config.lock_duration_minutes == 1


class TestInvalidValues:
    @pytest.mark.parametrize("raw", ["abc", "0", "-4", "2.5"])
    def test_bad_max_attempts_falls_back_with_warning(self, monkeypatch, caplog, raw: str) -> None:
        monkeypatch.setenv("ACCOUNT_LOCKOUT_MAX_ATTEMPTS", raw)
        with caplog.at_level(logging.WARNING, logger="lockgate.config"):
            config = LockoutConfig()
        assert config.max_attempts == 5
        assert any("ACCOUNT_LOCKOUT_MAX_ATTEMPTS" in r.getMessage() for r in caplog.records)

    def test_bad_duration_falls_back_with_warning(self, monkeypatch, caplog) -> None:
        monkeypatch.setenv("ACCOUNT_LOCKOUT_DURATION_MINUTES", "-1")
        with caplog.at_level(logging.WARNING, logger="lockgate.config"):
            config = LockoutConfig()
        assert config.lock_duration_minutes == 15
        assert any("ACCOUNT_LOCKOUT_DURATION_MINUTES" in r.getMessage() for r in caplog.records)

    def test_nonsense_boolean_falls_back_with_warning(self, monkeypatch, caplog) -> None:
        monkeypatch.setenv("ACCOUNT_LOCKOUT_RESET_ON_SUCCESS", "maybe")
        with caplog.at_level(logging.WARNING, logger="lockgate.config"):
            config = LockoutConfig()
        assert config.reset_on_success is True
        assert any("ACCOUNT_LOCKOUT_RESET_ON_SUCCESS" in r.getMessage() for r in caplog.records)

    def test_bad_value_does_not_affect_other_fields(self, monkeypatch) -> None:
        monkeypatch.setenv("ACCOUNT_LOCKOUT_MAX_ATTEMPTS", "zero")
        monkeypatch.setenv("ACCOUNT_LOCKOUT_DURATION_MINUTES", "45")
        config = LockoutConfig()
        assert config.max_attempts == 5
        assert config.lock_duration_minutes == 45


class TestImmutability:
    def test_assignment_raises(self) -> None:
        config = LockoutConfig()
        with pytest.raises(ValidationError):
            config.max_attempts = 100

    def test_get_lockout_config_parses_once(self, monkeypatch) -> None:
        monkeypatch.setenv("ACCOUNT_LOCKOUT_MAX_ATTEMPTS", "7")
        first = get_lockout_config()
        monkeypatch.setenv("ACCOUNT_LOCKOUT_MAX_ATTEMPTS", "2")
        second = get_lockout_config()
        assert first is second
        assert second.max_attempts == 7
