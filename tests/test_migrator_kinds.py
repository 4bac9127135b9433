"""Per-kind migrator runs on SQLite: a kind without a step touches only that kind's entity step."""

import pytest
from sqlalchemy.orm import sessionmaker

from apps.eav.config import config
from apps.eav.db import make_engine
from apps.eav.migrations import introspect
from apps.eav.migrations.runner import SchemaMigrator
from apps.eav.migrations.steps import MigrationStep
from apps.eav.models import StorageLayout
from apps.eav.services import catalog, registry
from apps.eav.services.codec import DeclaredType
from apps.eav.services.owners import OwnerKind
from apps.eav.services.value_store import EntityValueStore, GenericValueStore
from tests.conftest import make_owner


@pytest.fixture
def sqlite_engine():
    eng = make_engine("sqlite://")
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(sqlite_engine):
    return sessionmaker(bind=sqlite_engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def seeded(sqlite_engine, session_factory, monkeypatch) -> dict:
    """Bootstrapped legacy layout with one Facility value and one unrelated User value."""
    monkeypatch.setattr(config, "SCHEMA_LAYOUT", "auto")
    migrator = SchemaMigrator(sqlite_engine, kinds=["Facility", "Role"])
    migrator.upgrade(step="bootstrap")
    with session_factory() as s:
        facility_type = registry.register(s, "Facility", "facilities")
        catalog.define(s, facility_type, "capacity", DeclaredType.INTEGER)
        user_type = registry.register(s, "User", "users")
        catalog.define(s, user_type, "nickname", DeclaredType.STRING)
        facility = make_owner(s, OwnerKind.FACILITY, "Lab A")
        user = make_owner(s, OwnerKind.USER, "ada")
        store = GenericValueStore(s)
        assert store.layout is StorageLayout.LEGACY
        store.set_by_name(facility, "capacity", 12)
        store.set_by_name(user, "nickname", "ada")
        s.commit()
    return {"migrator": migrator, "facility": facility, "user": user}


def _tables(sqlite_engine) -> set[str]:
    names = ("attribute_values", "facility_attribute_values", "role_attribute_values")
    with sqlite_engine.connect() as conn:
        return {name for name in names if introspect.table_exists(conn, name)}


def test_upgrade_with_kind_runs_only_that_entity_step(seeded, sqlite_engine, session_factory) -> None:
    migrator = seeded["migrator"]
    reports = migrator.upgrade(kind="Facility")
    assert [(r.step, r.applied) for r in reports] == [("entity_facility", True)]
    assert [s.step for s in migrator.status()] == ["bootstrap", "entity_facility"]
    assert _tables(sqlite_engine) == {"attribute_values", "facility_attribute_values"}
    with sqlite_engine.connect() as conn:
        assert introspect.current_layout(conn) is StorageLayout.LEGACY

    with session_factory() as s:
        entity = EntityValueStore(s, kinds=["Facility"])
        assert entity.get(seeded["facility"]) == {"capacity": [12]}


def test_downgrade_with_kind_keeps_generic_table(seeded, sqlite_engine, session_factory) -> None:
    migrator = seeded["migrator"]
    migrator.upgrade(kind="Facility")

    reports = migrator.downgrade(kind="Facility")
    assert [r.step for r in reports] == ["entity_facility"]
    assert reports[0].details["dropped_table"] is True
    assert _tables(sqlite_engine) == {"attribute_values"}
    assert [s.step for s in migrator.status()] == ["bootstrap"]

    with session_factory() as s:
        generic = GenericValueStore(s)
        assert generic.get(seeded["user"]) == {"nickname": ["ada"]}
        assert generic.get(seeded["facility"]) == {"capacity": [12]}


def test_migration_step_base_is_abstract() -> None:
    with pytest.raises(TypeError):
        MigrationStep()

    class UpgradeOnly(MigrationStep):
        name = "upgrade_only"

        def upgrade(self, conn, applied):
            return {}

    with pytest.raises(TypeError):
        UpgradeOnly()
