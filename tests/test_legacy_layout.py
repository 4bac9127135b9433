"""Stores addressing the pre-normalization layout (declared_type column, <entity>_id owner column)."""

import pytest
from sqlalchemy import select, text

from apps.eav.models import StorageLayout, entity_values_table, generic_values_table
from apps.eav.services import catalog, registry
from apps.eav.services.codec import VALUE_COLUMNS, DeclaredType
from apps.eav.services.owners import OwnerKind
from apps.eav.services.value_store import ENTITY, GENERIC, value_store_for
from tests.conftest import make_owner


@pytest.fixture
def facility_attrs(legacy_session):
    et = registry.register(legacy_session, "Facility", "facilities")
    return {
        "capacity": catalog.define(legacy_session, et, "capacity", DeclaredType.INTEGER),
        "opened_on": catalog.define(legacy_session, et, "opened_on", DeclaredType.DATE),
    }


def test_legacy_tables_carry_declared_type_and_named_owner_column() -> None:
    generic = generic_values_table(StorageLayout.LEGACY)
    entity = entity_values_table(OwnerKind.FACILITY, StorageLayout.LEGACY)
    assert "declared_type" in generic.c
    assert "declared_type" in entity.c
    assert "facility_id" in entity.c
    assert "owner_id" not in entity.c
    assert not any(c.name.startswith("ck_") for c in generic.constraints if c.name)


def test_normalized_tables_drop_declared_type() -> None:
    entity = entity_values_table(OwnerKind.FACILITY, StorageLayout.NORMALIZED)
    assert "declared_type" not in entity.c
    assert "owner_id" in entity.c


@pytest.mark.parametrize("form", [GENERIC, ENTITY])
def test_writes_fill_declared_type(legacy_session, facility_attrs, form) -> None:
    store = value_store_for(legacy_session, OwnerKind.FACILITY, form=form, layout=StorageLayout.LEGACY)
    facility = make_owner(legacy_session, OwnerKind.FACILITY, "Lab A")
    store.upsert(facility, facility_attrs["capacity"], 24)
    store.upsert(facility, facility_attrs["capacity"], 25)

    assert store.get(facility, flatten=True) == {"capacity": 25}
    table = store.table_for(OwnerKind.FACILITY)
    rows = legacy_session.execute(select(table)).all()
    assert len(rows) == 1
    row = rows[0]._mapping
    assert row["declared_type"] == "integer"
    assert row[store.owner_column(OwnerKind.FACILITY)] == facility.id
    assert [c for c in VALUE_COLUMNS if row[c] is not None] == ["value_integer"]


def test_entity_store_uses_legacy_owner_column(legacy_session, facility_attrs) -> None:
    store = value_store_for(legacy_session, OwnerKind.FACILITY, form=ENTITY, layout=StorageLayout.LEGACY)
    assert store.owner_column(OwnerKind.FACILITY) == "facility_id"
    facility = make_owner(legacy_session, OwnerKind.FACILITY)
    store.upsert(facility, facility_attrs["capacity"], 3)
    assert store.query_by_value(facility_attrs["capacity"], 3) == [facility]


@pytest.mark.parametrize("form", [GENERIC, ENTITY])
def test_unused_json_slot_is_sql_null(legacy_session, facility_attrs, form) -> None:
    store = value_store_for(legacy_session, OwnerKind.FACILITY, form=form, layout=StorageLayout.LEGACY)
    facility = make_owner(legacy_session, OwnerKind.FACILITY)
    store.upsert(facility, facility_attrs["capacity"], 24)
    legacy_session.flush()

    table = store.table_for(OwnerKind.FACILITY)
    # JSON 'null' would decode to None in Python, so check in SQL
    row = legacy_session.execute(
        text(f"SELECT value_integer, value_json IS NULL AS json_is_null FROM {table.name}")
    ).one()
    assert row.value_integer == 24
    assert row.json_is_null == 1
