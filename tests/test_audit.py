"""Audit log rows written by both store forms."""

from datetime import date
from decimal import Decimal

from apps.eav.config import config
from apps.eav.services import audit, catalog
from apps.eav.services.codec import DeclaredType
from apps.eav.services.groups import add_group, remove_group
from apps.eav.services.owners import OwnerKind
from apps.eav.services.value_store import GenericValueStore
from tests.conftest import make_owner


def test_create_then_update_is_audited(session, store, role_schema) -> None:
    role = make_owner(session, OwnerKind.ROLE)
    store.upsert(role, role_schema["max_students"], 30, changed_by="admin@example.com")
    store.upsert(role, role_schema["max_students"], 40, change_reason="term change")

    entries = audit.list_audit(session, role)
    assert [e.action for e in entries] == ["update", "create"]
    update, create = entries
    assert (create.old_value, create.new_value, create.changed_by) == (None, 30, "admin@example.com")
    assert (update.old_value, update.new_value, update.change_reason) == (30, 40, "term change")
    assert all(e.entity_type == "Role" and e.entity_id == role.id for e in entries)


def test_generic_remove_is_audited_as_delete(session, role_schema) -> None:
    store = GenericValueStore(session)
    role = make_owner(session, OwnerKind.ROLE)
    store.upsert(role, role_schema["code"], "TA")
    store.remove(role, role_schema["code"], changed_by="ops")
    latest = audit.list_audit(session, role, attribute_name="code")[0]
    assert (latest.action, latest.old_value, latest.new_value, latest.changed_by) == ("delete", "TA", None, "ops")


def test_group_removal_is_audited(session, store, role_schema) -> None:
    catalog.define(session, role_schema["entity_type_id"], "group_id", DeclaredType.STRING, is_multi_valued=True)
    role = make_owner(session, OwnerKind.ROLE)
    group = add_group(store, role, "group_id", {"aliases": "lead"})
    remove_group(store, role, "group_id", group.group_id, ["aliases"])
    deletes = [e for e in audit.list_audit(session, role) if e.action == "delete"]
    assert sorted(e.attribute_name for e in deletes) == ["aliases", "group_id"]


def test_values_are_stored_as_json(session, store, role_schema) -> None:
    et = role_schema["entity_type_id"]
    catalog.define(session, et, "budget", DeclaredType.DECIMAL)
    catalog.define(session, et, "since", DeclaredType.DATE)
    role = make_owner(session, OwnerKind.ROLE)
    store.bulk_upsert(role, {"budget": Decimal("12.50"), "since": date(2024, 9, 1)})
    by_name = {e.attribute_name: e.new_value for e in audit.list_audit(session, role)}
    assert by_name == {"budget": "12.50", "since": "2024-09-01"}


def test_audit_can_be_disabled(session, store, role_schema, monkeypatch) -> None:
    monkeypatch.setattr(config, "AUDIT_ENABLED", False)
    role = make_owner(session, OwnerKind.ROLE)
    store.upsert(role, role_schema["code"], "TA")
    assert audit.list_audit(session, role) == []
