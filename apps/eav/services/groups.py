"""Value groups: several multi-valued attributes of one owner bound together at one sort_order.

A group is identified by a ValueGroupId stored in a correlator attribute (e.g. equipment_group_id).
Every member row of the group shares the correlator row's sort_order, so a facility's equipment
item "Microscope, 2, good" is three rows (name, quantity, condition) plus the correlator row, all
at the same sort_order. The store itself knows nothing about groups.
"""

import uuid
from dataclasses import dataclass, field
from typing import Any, NewType

from sqlalchemy.orm import Session

from apps.eav.services import catalog, registry
from apps.eav.services.codec import DeclaredType
from apps.eav.services.owners import Owner
from apps.eav.services.value_store import ValueStore

ValueGroupId = NewType("ValueGroupId", uuid.UUID)


def new_group_id() -> ValueGroupId:
    return ValueGroupId(uuid.uuid4())


@dataclass
class ValueGroup:
    group_id: ValueGroupId
    sort_order: int
    values: dict[str, Any] = field(default_factory=dict)


def _group_definitions(session: Session, owner: Owner, correlator: str, members: list[str]) -> dict:
    entity_type_id = registry.resolve(session, owner.tag)
    definitions = catalog.resolve_many(session, entity_type_id, [correlator, *members], entity_type=owner.tag)
    if definitions[correlator].declared_type != DeclaredType.STRING.value:
        raise ValueError(f"Group correlator {correlator!r} must be declared as string")
    single = [n for n, d in definitions.items() if not d.is_multi_valued]
    if single:
        raise ValueError(f"Group attributes must be multi-valued: {', '.join(sorted(single))}")
    return definitions


def add_group(
    store: ValueStore,
    owner: Owner,
    correlator: str,
    values: dict[str, Any],
    group_id: ValueGroupId | None = None,
) -> ValueGroup:
    """Write one group: correlator plus every member value, at the next free sort_order of owner."""
    definitions = _group_definitions(store.session, owner, correlator, list(values))
    group_id = group_id or new_group_id()
    sort_order = store.next_sort_order(owner, definitions[correlator].id)
    store.bulk_upsert(owner, {correlator: str(group_id), **values}, sort_order=sort_order)
    return ValueGroup(group_id=group_id, sort_order=sort_order, values=dict(values))


def get_groups(store: ValueStore, owner: Owner, correlator: str, members: list[str]) -> list[ValueGroup]:
    """Groups of owner ordered by sort_order. Member attributes without a value read as None."""
    rows = store.get_with_metadata(owner, names=[correlator, *members])
    by_order: dict[int, dict[str, Any]] = {}
    for row in rows:
        by_order.setdefault(row.sort_order, {})[row.attribute_name] = row.value
    groups = []
    for sort_order in sorted(by_order):
        found = by_order[sort_order]
        raw_id = found.get(correlator)
        if raw_id is None:
            continue
        groups.append(
            ValueGroup(
                group_id=ValueGroupId(uuid.UUID(str(raw_id))),
                sort_order=sort_order,
                values={name: found.get(name) for name in members},
            )
        )
    return groups


def find_group(store: ValueStore, owner: Owner, correlator: str, group_id: ValueGroupId, members: list[str]) -> ValueGroup | None:
    for group in get_groups(store, owner, correlator, members):
        if group.group_id == group_id:
            return group
    return None


def remove_group(store: ValueStore, owner: Owner, correlator: str, group_id: ValueGroupId, members: list[str]) -> bool:
    """Delete the rows of one group. Returns False when owner has no such group."""
    group = find_group(store, owner, correlator, group_id, members)
    if group is None:
        return False
    definitions = _group_definitions(store.session, owner, correlator, members)
    store.discard_group_rows(owner, [d.id for d in definitions.values()], group.sort_order)
    return True


__all__ = ["ValueGroup", "ValueGroupId", "add_group", "find_group", "get_groups", "new_group_id", "remove_group"]
