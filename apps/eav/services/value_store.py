"""Value stores: the generic polymorphic store and the entity-specific stores.

Both forms expose the same operations keyed by Owner (kind + id) and attribute id or name.
They differ only in physical layout:
  - GenericValueStore writes attribute_values (owner_type_tag + owner_id, soft delete).
  - EntityValueStore writes <entity>_attribute_values (FK to the owning table, cascade delete).

Every write runs in the caller's session transaction and goes through the codec. Concurrent
writers of the same (owner, attribute, sort_order) are serialized by INSERT ... ON CONFLICT
DO UPDATE on the unique key of the table.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Table, and_, func, select, update
from sqlalchemy.orm import Session

from apps.eav.config import config
from apps.eav.migrations import introspect
from apps.eav.models.attribute_definition import AttributeDefinition
from apps.eav.models.attribute_value import (
    StorageLayout,
    entity_owner_column,
    entity_values_table,
    generic_values_table,
)
from apps.eav.repositories.value_filters import (
    SlotPredicate,
    active_value_where,
    owner_where,
    select_values_for_owner,
    slot_condition,
    upsert_insert,
)
from apps.eav.schemas.definitions import AttributeValueOut
from apps.eav.services import audit, catalog, registry
from apps.eav.services.codec import VALUE_COLUMNS, DeclaredType, decode, encode
from apps.eav.services.errors import RequiredValueMissing, UnknownAttribute, UnsupportedOwnerKind
from apps.eav.services.owners import Owner, OwnerKind

logger = logging.getLogger(__name__)

GENERIC = "generic"
ENTITY = "entity"


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value == "")


class ValueStore(ABC):
    """Operations shared by both store forms. Subclasses supply the table and conflict target."""

    form = ""

    def __init__(self, session: Session, layout: StorageLayout | str | None = None):
        self.session = session
        if layout is None:
            layout = StorageLayout.from_config() or introspect.resolve_layout(session.connection())
        self.layout = StorageLayout(layout)

    # -- layout hooks --------------------------------------------------------

    @abstractmethod
    def table_for(self, kind: OwnerKind) -> Table:
        ...

    def owner_column(self, kind: OwnerKind) -> str:
        return "owner_id"

    @abstractmethod
    def _identity(self, owner: Owner, attribute_id: uuid.UUID, sort_order: int) -> dict[str, Any]:
        ...

    @abstractmethod
    def _conflict_target(self, table: Table, kind: OwnerKind) -> dict[str, Any]:
        ...

    def check_owner(self, owner: Owner) -> Owner:
        if not isinstance(owner, Owner):
            raise TypeError(f"expected Owner, got {type(owner).__name__}")
        return owner

    # -- writes --------------------------------------------------------------

    def upsert(
        self,
        owner: Owner,
        attribute_id: uuid.UUID,
        value: Any,
        sort_order: int = 0,
        *,
        changed_by: str | None = None,
        change_reason: str | None = None,
    ) -> None:
        """Write or replace the value of (owner, attribute_id, sort_order).

        Raises UnknownAttribute, RequiredValueMissing or TypeMismatch before anything is written.
        Single-valued attributes always use sort_order 0.
        """
        owner = self.check_owner(owner)
        definition = self._definition_for(owner, attribute_id)
        self._write(owner, definition, value, sort_order, changed_by, change_reason)

    def set_by_name(
        self,
        owner: Owner,
        name: str,
        value: Any,
        sort_order: int = 0,
        *,
        changed_by: str | None = None,
        change_reason: str | None = None,
    ) -> None:
        """upsert() addressed by attribute name within the owner's entity type."""
        owner = self.check_owner(owner)
        entity_type_id = registry.resolve(self.session, owner.tag)
        definition = catalog.resolve_many(self.session, entity_type_id, [name], entity_type=owner.tag)[name]
        self._write(owner, definition, value, sort_order, changed_by, change_reason)

    def bulk_upsert(
        self,
        owner: Owner,
        values: dict[str, Any],
        sort_order: int = 0,
        *,
        changed_by: str | None = None,
        change_reason: str | None = None,
    ) -> int:
        """Write several attributes by name in the current transaction.

        All names are resolved and all values encoded before the first write, so an unknown name
        (UnknownAttribute lists every missing one) or a bad value leaves nothing written.
        """
        owner = self.check_owner(owner)
        if not values:
            return 0
        entity_type_id = registry.resolve(self.session, owner.tag)
        definitions = catalog.resolve_many(self.session, entity_type_id, values.keys(), entity_type=owner.tag)
        for name, value in values.items():
            self._validate(definitions[name], value)
        for name, value in values.items():
            self._write(owner, definitions[name], value, sort_order, changed_by, change_reason)
        return len(values)

    @abstractmethod
    def remove(
        self,
        owner: Owner,
        attribute_id: uuid.UUID,
        *,
        changed_by: str | None = None,
        change_reason: str | None = None,
    ) -> int:
        """Remove the values of (owner, attribute_id). Returns the number of rows affected."""

    @abstractmethod
    def discard_group_rows(self, owner: Owner, attribute_ids: list[uuid.UUID], sort_order: int) -> int:
        """Drop the rows at sort_order of the given attributes (one value group)."""

    # -- reads ---------------------------------------------------------------

    def get(
        self,
        owner: Owner,
        *,
        names: list[str] | None = None,
        prefix: str | None = None,
        include_inactive: bool = False,
        flatten: bool = False,
    ) -> dict[str, Any]:
        """Attribute name -> decoded values of owner, ordered by definition then value sort_order.

        flatten=True returns the single value (not a list) for single-valued attributes.
        """
        out: dict[str, Any] = {}
        multi: dict[str, bool] = {}
        for row in self._read(owner, names=names, prefix=prefix, include_inactive=include_inactive):
            name = row["attribute_name"]
            out.setdefault(name, []).append(decode(row["definition_declared_type"], row))
            multi[name] = bool(row["is_multi_valued"])
        if flatten:
            return {name: (vals if multi[name] else vals[0]) for name, vals in out.items()}
        return out

    def get_with_metadata(
        self,
        owner: Owner,
        *,
        names: list[str] | None = None,
        prefix: str | None = None,
        include_inactive: bool = False,
    ) -> list[AttributeValueOut]:
        """Decoded values together with their definition metadata."""
        return [
            AttributeValueOut(
                attribute_id=row["attribute_id"],
                attribute_name=row["attribute_name"],
                display_name=row["display_name"],
                description=row["description"],
                declared_type=DeclaredType(row["definition_declared_type"]),
                is_required=row["is_required"],
                is_multi_valued=row["is_multi_valued"],
                validation_rules=row["validation_rules"],
                default_value=row["default_value"],
                value=decode(row["definition_declared_type"], row),
                sort_order=row["sort_order"],
            )
            for row in self._read(owner, names=names, prefix=prefix, include_inactive=include_inactive)
        ]

    def query_by_value(self, attribute_id: uuid.UUID, predicate: "SlotPredicate | Any") -> list[Owner]:
        """Owners having a value of attribute_id that satisfies predicate (a bare value means equality)."""
        definition = catalog.get_definition(self.session, attribute_id)
        kind = self._kind_of(definition)
        table = self.table_for(kind)
        owner_col = table.c[self.owner_column(kind)]
        stmt = (
            select(owner_col)
            .where(table.c.attribute_id == definition.id)
            .where(slot_condition(table, definition.declared_type, predicate))
            .where(active_value_where(table))
            .distinct()
            .order_by(owner_col)
        )
        if "owner_type_tag" in table.c:
            stmt = stmt.where(table.c.owner_type_tag == kind.tag)
        return [Owner(kind, owner_id) for owner_id in self.session.scalars(stmt)]

    def next_sort_order(self, owner: Owner, attribute_id: uuid.UUID) -> int:
        """max(sort_order) + 1 over owner's rows of attribute_id; 0 when there are none."""
        table = self.table_for(owner.kind)
        stmt = (
            select(func.max(table.c.sort_order))
            .where(owner_where(table, owner, self.owner_column(owner.kind)))
            .where(table.c.attribute_id == attribute_id)
            .where(active_value_where(table))
        )
        current = self.session.scalar(stmt)
        return 0 if current is None else int(current) + 1

    # -- internals -----------------------------------------------------------

    def _read(self, owner: Owner, **filters: Any) -> list:
        owner = self.check_owner(owner)
        table = self.table_for(owner.kind)
        self.session.flush()
        stmt = select_values_for_owner(table, owner, self.owner_column(owner.kind), **filters)
        return [row._mapping for row in self.session.execute(stmt)]

    def _kind_of(self, definition: AttributeDefinition) -> OwnerKind:
        tag = definition.entity_type.name
        try:
            return OwnerKind.from_tag(tag)
        except ValueError:
            raise UnsupportedOwnerKind(f"Entity type {tag!r} is not an owner kind") from None

    def _definition_for(self, owner: Owner, attribute_id: uuid.UUID) -> AttributeDefinition:
        definition = catalog.get_definition(self.session, attribute_id)
        if definition.entity_type.name != owner.tag:
            raise UnknownAttribute(attribute_id, entity_type=owner.tag)
        return definition

    def _validate(self, definition: AttributeDefinition, value: Any):
        if definition.is_required and _is_blank(value):
            raise RequiredValueMissing(definition.name)
        return encode(definition.declared_type, value)

    def _current(self, table: Table, owner: Owner, attribute_id: uuid.UUID, sort_order: int):
        stmt = (
            select(*(table.c[c] for c in VALUE_COLUMNS))
            .where(owner_where(table, owner, self.owner_column(owner.kind)))
            .where(table.c.attribute_id == attribute_id)
            .where(table.c.sort_order == sort_order)
            .where(active_value_where(table))
        )
        row = self.session.execute(stmt).first()
        return row._mapping if row is not None else None

    def _insert(self, table: Table):
        return upsert_insert(self.session.get_bind().dialect.name, table)

    def _write(
        self,
        owner: Owner,
        definition: AttributeDefinition,
        value: Any,
        sort_order: int,
        changed_by: str | None,
        change_reason: str | None,
    ) -> None:
        encoded = self._validate(definition, value)
        if not definition.is_multi_valued:
            sort_order = 0
        table = self.table_for(owner.kind)
        self.session.flush()
        old = self._current(table, owner, definition.id, sort_order)

        row = {
            **self._identity(owner, definition.id, sort_order),
            **encoded.columns(),
            "updated_at": datetime.now(timezone.utc),
        }
        if self.layout == StorageLayout.LEGACY:
            row["declared_type"] = definition.declared_type
        stmt = self._insert(table).values(**row)
        changed = [c for c in (*VALUE_COLUMNS, "updated_at", "declared_type") if c in row]
        stmt = stmt.on_conflict_do_update(
            **self._conflict_target(table, owner.kind),
            set_={c: stmt.excluded[c] for c in changed},
        )
        self.session.execute(stmt)

        audit.record(
            self.session,
            owner,
            definition.name,
            "update" if old is not None else "create",
            old_value=decode(definition.declared_type, old) if old is not None else None,
            new_value=encoded.value,
            changed_by=changed_by,
            change_reason=change_reason,
        )
        logger.debug("%s store wrote %s.%s[%d] for %s", self.form, owner.tag, definition.name, sort_order, owner)


class GenericValueStore(ValueStore):
    """attribute_values: any owner kind, soft delete."""

    form = GENERIC

    def table_for(self, kind: OwnerKind) -> Table:
        return generic_values_table(self.layout)

    def _identity(self, owner: Owner, attribute_id: uuid.UUID, sort_order: int) -> dict[str, Any]:
        return {
            "id": uuid.uuid4(),
            "attribute_id": attribute_id,
            "owner_type_tag": owner.tag,
            "owner_id": owner.id,
            "sort_order": sort_order,
        }

    def _conflict_target(self, table: Table, kind: OwnerKind) -> dict[str, Any]:
        return {
            "index_elements": [table.c.owner_type_tag, table.c.owner_id, table.c.attribute_id, table.c.sort_order],
            "index_where": table.c.deleted_at.is_(None),
        }

    def _soft_delete(self, owner: Owner, where, attribute_names: dict[uuid.UUID, str], audit_kwargs: dict) -> int:
        table = self.table_for(owner.kind)
        self.session.flush()
        cond = and_(owner_where(table, owner), table.c.deleted_at.is_(None), where)
        doomed = self.session.execute(select(table).where(cond)).all()
        if not doomed:
            return 0
        now = datetime.now(timezone.utc)
        self.session.execute(update(table).where(cond).values(deleted_at=now, updated_at=now))
        for row in doomed:
            m = row._mapping
            audit.record(
                self.session,
                owner,
                attribute_names[m["attribute_id"]],
                "delete",
                old_value=self._decoded(m),
                **audit_kwargs,
            )
        return len(doomed)

    def _decoded(self, row) -> Any:
        definition = self.session.get(AttributeDefinition, row["attribute_id"])
        return decode(definition.declared_type, row)

    def remove(
        self,
        owner: Owner,
        attribute_id: uuid.UUID,
        *,
        changed_by: str | None = None,
        change_reason: str | None = None,
    ) -> int:
        """Soft-delete every active row of (owner, attribute_id) by setting deleted_at."""
        owner = self.check_owner(owner)
        definition = self._definition_for(owner, attribute_id)
        table = self.table_for(owner.kind)
        return self._soft_delete(
            owner,
            table.c.attribute_id == definition.id,
            {definition.id: definition.name},
            {"changed_by": changed_by, "change_reason": change_reason},
        )

    def discard_group_rows(self, owner: Owner, attribute_ids: list[uuid.UUID], sort_order: int) -> int:
        owner = self.check_owner(owner)
        table = self.table_for(owner.kind)
        names = {d.id: d.name for d in (catalog.get_definition(self.session, a) for a in attribute_ids)}
        return self._soft_delete(
            owner,
            and_(table.c.attribute_id.in_(list(names)), table.c.sort_order == sort_order),
            names,
            {},
        )


class EntityValueStore(ValueStore):
    """<entity>_attribute_values: FK + cascade to the owning table, no independent delete."""

    form = ENTITY

    def __init__(
        self,
        session: Session,
        layout: StorageLayout | str | None = None,
        kinds: "list[OwnerKind | str] | None" = None,
    ):
        super().__init__(session, layout)
        served = kinds if kinds is not None else config.ENTITY_SPECIFIC_KINDS
        self.kinds = frozenset(OwnerKind.from_tag(k) for k in served)

    def check_owner(self, owner: Owner) -> Owner:
        owner = super().check_owner(owner)
        if owner.kind not in self.kinds:
            raise UnsupportedOwnerKind(f"Owner kind {owner.tag} has no entity-specific store here")
        return owner

    def table_for(self, kind: OwnerKind) -> Table:
        if kind not in self.kinds:
            raise UnsupportedOwnerKind(f"Owner kind {kind.tag} has no entity-specific store here")
        return entity_values_table(kind, self.layout)

    def owner_column(self, kind: OwnerKind) -> str:
        return entity_owner_column(kind, self.layout)

    def _identity(self, owner: Owner, attribute_id: uuid.UUID, sort_order: int) -> dict[str, Any]:
        return {
            self.owner_column(owner.kind): owner.id,
            "attribute_id": attribute_id,
            "sort_order": sort_order,
        }

    def _conflict_target(self, table: Table, kind: OwnerKind) -> dict[str, Any]:
        return {"index_elements": [table.c[self.owner_column(kind)], table.c.attribute_id, table.c.sort_order]}

    def remove(
        self,
        owner: Owner,
        attribute_id: uuid.UUID,
        *,
        changed_by: str | None = None,
        change_reason: str | None = None,
    ) -> int:
        """No-op: entity-specific rows go away only when the owner row is deleted (cascade)."""
        owner = self.check_owner(owner)
        self._definition_for(owner, attribute_id)
        logger.info("remove() ignored for %s: entity-specific values are deleted with their owner", owner)
        return 0

    def discard_group_rows(self, owner: Owner, attribute_ids: list[uuid.UUID], sort_order: int) -> int:
        """Hard-delete one value group's rows; single values have no delete primitive."""
        owner = self.check_owner(owner)
        table = self.table_for(owner.kind)
        definitions = [catalog.get_definition(self.session, a) for a in attribute_ids]
        self.session.flush()
        cond = and_(
            owner_where(table, owner, self.owner_column(owner.kind)),
            table.c.attribute_id.in_([d.id for d in definitions]),
            table.c.sort_order == sort_order,
        )
        doomed = self.session.execute(select(table).where(cond)).all()
        if not doomed:
            return 0
        by_id = {d.id: d for d in definitions}
        self.session.execute(table.delete().where(cond))
        for row in doomed:
            m = row._mapping
            definition = by_id[m["attribute_id"]]
            audit.record(self.session, owner, definition.name, "delete", old_value=decode(definition.declared_type, m))
        return len(doomed)


def value_store_for(
    session: Session,
    kind: "OwnerKind | str",
    form: str | None = None,
    layout: StorageLayout | str | None = None,
) -> ValueStore:
    """Store serving kind: the entity-specific form when kind is configured for it, else generic."""
    kind = OwnerKind.from_tag(kind)
    if form is None:
        form = ENTITY if kind.tag in {OwnerKind.from_tag(k).tag for k in config.ENTITY_SPECIFIC_KINDS} else GENERIC
    if form == GENERIC:
        return GenericValueStore(session, layout)
    if form == ENTITY:
        return EntityValueStore(session, layout, kinds=[kind])
    raise ValueError(f"Unknown store form {form!r}; expected {GENERIC!r} or {ENTITY!r}")


__all__ = [
    "ENTITY",
    "EntityValueStore",
    "GENERIC",
    "GenericValueStore",
    "ValueStore",
    "value_store_for",
]
