"""Pytest fixtures: in-memory SQLite for registry/catalog/store tests, Postgres for migrator tests."""

import os
import uuid

import pytest
from sqlalchemy.orm import Session, sessionmaker

from apps.eav.db import ensure_tables, make_engine
from apps.eav.models import OWNER_MODELS, StorageLayout
from apps.eav.services import catalog, registry
from apps.eav.services.codec import DeclaredType
from apps.eav.services.owners import Owner, OwnerKind
from apps.eav.services.value_store import ENTITY, GENERIC, value_store_for
from tests._db_bootstrap import postgres_reachable, reset_public_schema

os.environ.setdefault("ENV", "test")
os.environ.setdefault("PYTEST_RUNNING", "1")


def _db_available_for_tests() -> bool:
    """True if DATABASE_TEST_URL is set and Postgres is reachable (short timeout)."""
    return postgres_reachable(os.environ.get("DATABASE_TEST_URL"))


# Marker for DB tests: skip if DATABASE_TEST_URL not set or Postgres not reachable
requires_db = pytest.mark.skipif(
    not _db_available_for_tests(),
    reason="DATABASE_TEST_URL not set or Postgres not reachable",
)


def _sqlite_engine(layout: StorageLayout):
    eng = make_engine("sqlite://")
    ensure_tables(eng, layout=layout)
    return eng


@pytest.fixture
def engine():
    """Fresh in-memory SQLite with the normalized layout."""
    eng = _sqlite_engine(StorageLayout.NORMALIZED)
    yield eng
    eng.dispose()


@pytest.fixture
def legacy_engine():
    """Fresh in-memory SQLite with the legacy (pre-normalization) layout."""
    eng = _sqlite_engine(StorageLayout.LEGACY)
    yield eng
    eng.dispose()


def _session(eng) -> Session:
    return sessionmaker(bind=eng, autocommit=False, autoflush=False, expire_on_commit=False)()


@pytest.fixture
def session(engine):
    s = _session(engine)
    yield s
    s.rollback()
    s.close()


@pytest.fixture
def legacy_session(legacy_engine):
    s = _session(legacy_engine)
    yield s
    s.rollback()
    s.close()


@pytest.fixture(params=[GENERIC, ENTITY])
def form(request) -> str:
    """Both store forms must behave the same for callers."""
    return request.param


def make_owner(session: Session, kind: OwnerKind, name: str | None = None) -> Owner:
    """Insert an owning row (users/roles/facilities/...) and return its Owner."""
    model = OWNER_MODELS[kind]
    row = model(id=uuid.uuid4(), name=name)
    session.add(row)
    session.flush()
    return Owner(kind, row.id)


@pytest.fixture
def role_schema(session) -> dict[str, uuid.UUID]:
    """Role entity type with a boolean permission flag, a required string and a multi-valued string."""
    et = registry.register(session, "Role", "roles", "User roles")
    return {
        "entity_type_id": et,
        "can_manage_courses": catalog.define(session, et, "can_manage_courses", DeclaredType.BOOLEAN),
        "code": catalog.define(session, et, "code", DeclaredType.STRING, is_required=True, sort_order=1),
        "max_students": catalog.define(session, et, "max_students", DeclaredType.INTEGER, sort_order=2),
        "aliases": catalog.define(session, et, "aliases", DeclaredType.STRING, is_multi_valued=True, sort_order=3),
    }


@pytest.fixture
def store(session, form):
    return value_store_for(session, OwnerKind.ROLE, form=form)


@pytest.fixture
def pg_engine():
    """Postgres engine on an empty public schema (schema reset is guarded to *_test databases)."""
    url = os.environ["DATABASE_TEST_URL"]
    reset_public_schema(url)
    eng = make_engine(url)
    yield eng
    eng.dispose()
