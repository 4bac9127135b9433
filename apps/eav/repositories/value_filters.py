"""SQL helpers for value tables. Every read of a value table goes through these.

Provides:
  - definition_where(include_inactive): WHERE for usable attribute definitions
  - owner_where(table, owner, owner_column): WHERE for one owner's rows in either store form
  - active_value_where(table): WHERE deleted_at IS NULL when the table soft-deletes
  - select_values_for_owner(...): value rows joined to their definitions, in read order
  - SlotPredicate / slot_condition(...): typed predicate on the slot of an attribute's declared type
  - upsert_insert(dialect_name, table): dialect INSERT with ON CONFLICT support
"""

from dataclasses import dataclass
from typing import Any

from sqlalchemy import ColumnElement, Select, Table, and_, select, true
from sqlalchemy.dialects import postgresql, sqlite

from apps.eav.models.attribute_definition import AttributeDefinition
from apps.eav.services.codec import DeclaredType, encode, slot_for
from apps.eav.services.owners import Owner

# Definition columns carried along with every value row read.
DEFINITION_COLUMNS = (
    AttributeDefinition.name.label("attribute_name"),
    AttributeDefinition.declared_type.label("definition_declared_type"),
    AttributeDefinition.display_name,
    AttributeDefinition.description,
    AttributeDefinition.is_required,
    AttributeDefinition.is_multi_valued,
    AttributeDefinition.validation_rules,
    AttributeDefinition.default_value,
    AttributeDefinition.sort_order.label("definition_sort_order"),
)


def definition_where(include_inactive: bool = False) -> ColumnElement[bool]:
    """Deleted definitions are never visible; inactive ones only on request."""
    cond = AttributeDefinition.deleted_at.is_(None)
    if not include_inactive:
        cond = and_(cond, AttributeDefinition.is_active.is_(True))
    return cond


def active_value_where(table: Table) -> ColumnElement[bool]:
    """deleted_at IS NULL for the generic table; always true for entity-specific tables."""
    if "deleted_at" in table.c:
        return table.c.deleted_at.is_(None)
    return true()


def owner_where(table: Table, owner: Owner, owner_column: str = "owner_id") -> ColumnElement[bool]:
    """Rows of owner. The generic table also filters on owner_type_tag."""
    cond = table.c[owner_column] == owner.id
    if "owner_type_tag" in table.c:
        cond = and_(table.c.owner_type_tag == owner.tag, cond)
    return cond


def select_values_for_owner(
    table: Table,
    owner: Owner,
    owner_column: str = "owner_id",
    *,
    names: list[str] | None = None,
    prefix: str | None = None,
    include_inactive: bool = False,
) -> Select:
    """Value rows of owner with their definition columns, ordered by definition then value sort_order."""
    stmt = (
        select(table, *DEFINITION_COLUMNS)
        .join(AttributeDefinition, AttributeDefinition.id == table.c.attribute_id)
        .where(owner_where(table, owner, owner_column))
        .where(active_value_where(table))
        .where(definition_where(include_inactive))
    )
    if names is not None:
        stmt = stmt.where(AttributeDefinition.name.in_(list(names)))
    if prefix:
        stmt = stmt.where(AttributeDefinition.name.startswith(prefix, autoescape=True))
    return stmt.order_by(AttributeDefinition.sort_order, AttributeDefinition.name, table.c.sort_order)


_OPERATORS = ("eq", "ne", "lt", "le", "gt", "ge", "in", "like", "is_null")


@dataclass(frozen=True)
class SlotPredicate:
    """Predicate on the typed slot of one attribute. value is a logical value (encoded before use)."""

    op: str = "eq"
    value: Any = None

    def __post_init__(self) -> None:
        if self.op not in _OPERATORS:
            raise ValueError(f"Unknown slot operator {self.op!r}; expected one of: {', '.join(_OPERATORS)}")


def slot_condition(table: Table, declared_type: "str | DeclaredType", predicate: "SlotPredicate | Any") -> ColumnElement[bool]:
    """Build WHERE on the slot of declared_type. A bare value means equality.

    Operands are encoded with the codec, so a value of the wrong type raises TypeMismatch.
    """
    if not isinstance(predicate, SlotPredicate):
        predicate = SlotPredicate("eq", predicate)
    col = table.c[slot_for(declared_type)]
    op = predicate.op
    if op == "is_null":
        return col.is_(None)
    if op == "in":
        values = [encode(declared_type, v).value for v in predicate.value]
        return col.in_(values)
    if op == "like":
        if not isinstance(predicate.value, str):
            raise ValueError("like requires a string pattern")
        return col.like(predicate.value)
    operand = encode(declared_type, predicate.value).value
    if operand is None:
        return col.is_(None) if op == "eq" else col.is_not(None)
    if op == "eq":
        return col == operand
    if op == "ne":
        return col != operand
    if op == "lt":
        return col < operand
    if op == "le":
        return col <= operand
    if op == "gt":
        return col > operand
    return col >= operand


def upsert_insert(dialect_name: str, table: Table):
    """INSERT supporting on_conflict_do_update for the engines the stores run on."""
    if dialect_name == "postgresql":
        return postgresql.insert(table)
    if dialect_name == "sqlite":
        return sqlite.insert(table)
    raise NotImplementedError(f"upsert is not supported on {dialect_name}")
