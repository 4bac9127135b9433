"""Regression: DB tests skip without DATABASE_TEST_URL, and schema reset only touches *_test databases."""

import pytest

from tests._db_bootstrap import _assert_schema_reset_safe, parse_db_name, postgres_reachable


def test_requires_db_skipped_when_database_test_url_missing(monkeypatch):
    """When DATABASE_TEST_URL is unset, _db_available_for_tests returns False -> requires_db skips."""
    monkeypatch.delenv("DATABASE_TEST_URL", raising=False)

    from tests.conftest import _db_available_for_tests

    assert _db_available_for_tests() is False


def test_non_postgres_url_is_never_reachable():
    assert postgres_reachable(None) is False
    assert postgres_reachable("sqlite://") is False


def test_parse_db_name():
    assert parse_db_name("postgresql://u:p@localhost:5432/eav_test") == "eav_test"
    assert parse_db_name("postgresql://localhost") == ""


def test_schema_reset_blocked_for_non_test_db(monkeypatch):
    monkeypatch.delenv("ALLOW_TEST_DB_RESET", raising=False)
    with pytest.raises(RuntimeError, match="Schema reset blocked"):
        _assert_schema_reset_safe("postgresql://u:p@localhost:5432/eav")
    _assert_schema_reset_safe("postgresql://u:p@localhost:5432/eav_test")


def test_schema_reset_override(monkeypatch):
    monkeypatch.setenv("ALLOW_TEST_DB_RESET", "true")
    _assert_schema_reset_safe("postgresql://u:p@localhost:5432/eav")
