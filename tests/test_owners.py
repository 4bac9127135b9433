import uuid

import pytest

from apps.eav.services.owners import Owner, OwnerKind, owner


def test_from_tag_accepts_tag_enum_name_and_case() -> None:
    assert OwnerKind.from_tag("Facility") is OwnerKind.FACILITY
    assert OwnerKind.from_tag("facility") is OwnerKind.FACILITY
    assert OwnerKind.from_tag("FACILITY") is OwnerKind.FACILITY
    assert OwnerKind.from_tag(OwnerKind.ROLE) is OwnerKind.ROLE


def test_from_tag_rejects_unknown() -> None:
    with pytest.raises(ValueError, match="Unknown owner kind"):
        OwnerKind.from_tag("Course")


def test_kind_tables() -> None:
    assert OwnerKind.INSTRUCTOR.owner_table == "instructors"
    assert OwnerKind.INSTRUCTOR.value_table == "instructor_attribute_values"
    assert OwnerKind.INSTRUCTOR.legacy_owner_column == "instructor_id"


def test_owner_coerces_kind_and_id() -> None:
    oid = uuid.uuid4()
    o = owner("role", str(oid))
    assert o == Owner(OwnerKind.ROLE, oid)
    assert o.tag == "Role"
    assert str(o) == f"Role:{oid}"


def test_owner_is_hashable() -> None:
    oid = uuid.uuid4()
    assert len({owner("User", oid), owner("user", oid)}) == 1
