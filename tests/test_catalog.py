"""Attribute definition catalog."""

import logging
import uuid

import pytest

from apps.eav.services import catalog, registry
from apps.eav.services.codec import DeclaredType
from apps.eav.services.errors import TypeMismatch, UnknownAttribute, UnknownEntityType


@pytest.fixture
def facility_type(session) -> uuid.UUID:
    return registry.register(session, "Facility", "facilities")


def test_define_is_idempotent_and_never_overwrites(session, facility_type, caplog) -> None:
    first = catalog.define(session, facility_type, "capacity", DeclaredType.INTEGER, description="Seats")
    with caplog.at_level(logging.WARNING, logger="apps.eav.services.catalog"):
        second = catalog.define(session, facility_type, "capacity", DeclaredType.STRING, description="changed")
    assert first == second
    definition = catalog.get_definition(session, first)
    assert definition.declared_type == "integer"
    assert definition.description == "Seats"
    assert "already defined as integer" in caplog.text


def test_define_defaults(session, facility_type) -> None:
    attr_id = catalog.define(session, facility_type, "nickname")
    definition = catalog.get_definition(session, attr_id)
    assert definition.declared_type == "string"
    assert definition.display_name == "nickname"
    assert definition.is_multi_valued is False
    assert definition.is_required is False
    assert definition.is_active is True


def test_define_unknown_entity_type(session) -> None:
    with pytest.raises(UnknownEntityType):
        catalog.define(session, uuid.uuid4(), "capacity")


def test_define_rejects_unknown_declared_type(session, facility_type) -> None:
    with pytest.raises(ValueError, match="Unknown declared type"):
        catalog.define(session, facility_type, "capacity", "money")


def test_define_rejects_default_that_does_not_parse(session, facility_type) -> None:
    with pytest.raises(TypeMismatch):
        catalog.define(session, facility_type, "capacity", DeclaredType.INTEGER, default_value="lots")
    assert catalog.define(session, facility_type, "capacity", DeclaredType.INTEGER, default_value="30")


def test_same_name_on_different_entity_types(session, facility_type) -> None:
    role_type = registry.register(session, "Role")
    a = catalog.define(session, facility_type, "code")
    b = catalog.define(session, role_type, "code")
    assert a != b


def test_list_definitions_orders_by_sort_order_then_name(session, facility_type) -> None:
    catalog.define(session, facility_type, "zeta", sort_order=0)
    catalog.define(session, facility_type, "beta", sort_order=1)
    catalog.define(session, facility_type, "alpha", sort_order=1)
    hidden = catalog.define(session, facility_type, "hidden", sort_order=0)
    catalog.deactivate(session, hidden)

    assert [d.name for d in catalog.list_definitions(session, facility_type)] == ["zeta", "alpha", "beta"]
    assert [d.name for d in catalog.list_definitions(session, facility_type, include_inactive=True)] == [
        "hidden",
        "zeta",
        "alpha",
        "beta",
    ]


def test_resolve(session, facility_type) -> None:
    attr_id = catalog.define(session, facility_type, "capacity", DeclaredType.INTEGER)
    assert catalog.resolve(session, facility_type, "capacity").id == attr_id
    with pytest.raises(UnknownAttribute):
        catalog.resolve(session, facility_type, "seats")


def test_resolve_many_lists_every_missing_name(session, facility_type) -> None:
    catalog.define(session, facility_type, "capacity", DeclaredType.INTEGER)
    with pytest.raises(UnknownAttribute) as exc:
        catalog.resolve_many(session, facility_type, ["capacity", "seats", "floor"], entity_type="Facility")
    assert exc.value.refs == ["seats", "floor"]
    assert "Facility" in str(exc.value)


def test_deactivated_definition_is_not_resolvable_for_writes(session, facility_type) -> None:
    attr_id = catalog.define(session, facility_type, "capacity", DeclaredType.INTEGER)
    catalog.deactivate(session, attr_id)
    with pytest.raises(UnknownAttribute):
        catalog.get_definition(session, attr_id)
    with pytest.raises(UnknownAttribute):
        catalog.resolve_many(session, facility_type, ["capacity"])
    # Deactivation is not deletion: define() still finds the row.
    assert catalog.define(session, facility_type, "capacity", DeclaredType.INTEGER) == attr_id


def test_soft_delete_frees_the_name(session, facility_type) -> None:
    old_id = catalog.define(session, facility_type, "capacity", DeclaredType.INTEGER)
    catalog.soft_delete(session, old_id)
    with pytest.raises(UnknownAttribute):
        catalog.soft_delete(session, old_id)
    new_id = catalog.define(session, facility_type, "capacity", DeclaredType.DECIMAL)
    assert new_id != old_id
    assert catalog.get_definition(session, new_id).declared_type == "decimal"


def test_rename(session, facility_type) -> None:
    attr_id = catalog.define(session, facility_type, "seats", DeclaredType.INTEGER)
    catalog.rename(session, attr_id, "capacity")
    assert catalog.resolve(session, facility_type, "capacity").id == attr_id
    with pytest.raises(ValueError):
        catalog.rename(session, attr_id, " ")
