"""Value tables: generic attribute_values and the entity-specific <entity>_attribute_values tables.

Both exist in two physical layouts:
  - legacy: value rows carry a denormalized declared_type column; entity-specific tables name their
    owner column after the owning table (role_id, facility_id, ...); no single-slot CHECK.
  - normalized: declared_type is dropped (resolved via join to attribute_definitions), every
    entity-specific owner column is owner_id, and CHECK (at most one value_* populated) is present.

The schema migrator moves a database from one layout to the other; the value stores address
whichever layout they are configured for. Tables are SQLAlchemy Core, one MetaData per layout.
"""

from enum import Enum

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Numeric,
    PrimaryKeyConstraint,
    String,
    Table,
    Text,
    Uuid,
    text,
)
from sqlalchemy.sql import func

from apps.eav.config import config
from apps.eav.models.attribute_definition import AttributeDefinition
from apps.eav.models.base import JSONType
from apps.eav.models.owner import OWNER_MODELS
from apps.eav.services.codec import DECIMAL_PRECISION, DECIMAL_SCALE, VALUE_COLUMNS
from apps.eav.services.owners import OwnerKind

GENERIC_TABLE = "attribute_values"


AUTO_LAYOUT = "auto"


class StorageLayout(str, Enum):
    LEGACY = "legacy"
    NORMALIZED = "normalized"

    @classmethod
    def from_config(cls) -> "StorageLayout | None":
        """EAV_SCHEMA_LAYOUT, or None when it is 'auto' (the layout is read from the database)."""
        if config.SCHEMA_LAYOUT == AUTO_LAYOUT:
            return None
        return cls(config.SCHEMA_LAYOUT)


_METADATA: dict[StorageLayout, MetaData] = {layout: MetaData() for layout in StorageLayout}


def single_slot_check_sql() -> str:
    """SQL for 'at most one value_* column is non-null'."""
    terms = " + ".join(f"CASE WHEN {c} IS NOT NULL THEN 1 ELSE 0 END" for c in VALUE_COLUMNS)
    return f"({terms}) <= 1"


def _value_columns() -> list[Column]:
    return [
        Column("value_string", String(config.STRING_MAX_LENGTH), nullable=True),
        Column("value_integer", BigInteger, nullable=True),
        Column("value_decimal", Numeric(DECIMAL_PRECISION, DECIMAL_SCALE), nullable=True),
        Column("value_boolean", Boolean, nullable=True),
        Column("value_date", Date, nullable=True),
        Column("value_datetime", DateTime(timezone=True), nullable=True),
        Column("value_text", Text, nullable=True),
        Column("value_json", JSONType, nullable=True),
    ]


def _timestamps() -> list[Column]:
    return [
        Column("created_at", DateTime(timezone=True), server_default=func.now(), nullable=True),
        Column("updated_at", DateTime(timezone=True), server_default=func.now(), nullable=True),
    ]


def _attribute_fk() -> ForeignKey:
    return ForeignKey(AttributeDefinition.__table__.c.id, ondelete="CASCADE", name="fk_attr_values_attribute")


def generic_values_table(layout: StorageLayout = StorageLayout.NORMALIZED) -> Table:
    """Generic polymorphic value table (owner_type_tag + owner_id) for layout."""
    layout = StorageLayout(layout)
    md = _METADATA[layout]
    if GENERIC_TABLE in md.tables:
        return md.tables[GENERIC_TABLE]

    active = text("deleted_at IS NULL")
    cols: list = [
        Column("id", Uuid, primary_key=True),
        Column("attribute_id", Uuid, _attribute_fk(), nullable=False),
        Column("owner_type_tag", String(100), nullable=False),
        Column("owner_id", Uuid, nullable=False),
    ]
    if layout == StorageLayout.LEGACY:
        cols.append(Column("declared_type", String(16), nullable=False))
    cols += _value_columns()
    cols += [
        Column("sort_order", Integer, nullable=False, server_default=text("0")),
        *_timestamps(),
        Column("deleted_at", DateTime(timezone=True), nullable=True),
        Index("ix_attr_values_owner", "owner_type_tag", "owner_id"),
        Index("ix_attr_values_attribute_id", "attribute_id"),
        Index("ix_attr_values_value_string", "value_string"),
        Index("ix_attr_values_value_boolean", "value_boolean"),
        Index("ix_attr_values_deleted_at", "deleted_at"),
        Index(
            "uq_attr_values_owner_attribute_active",
            "owner_type_tag",
            "owner_id",
            "attribute_id",
            "sort_order",
            unique=True,
            postgresql_where=active,
            sqlite_where=active,
        ),
    ]
    if layout == StorageLayout.NORMALIZED:
        cols.append(CheckConstraint(single_slot_check_sql(), name="ck_attr_values_single_value"))
    return Table(GENERIC_TABLE, md, *cols)


def entity_owner_column(kind: OwnerKind, layout: StorageLayout) -> str:
    """Owner FK column name of kind's entity-specific table in layout."""
    return "owner_id" if layout == StorageLayout.NORMALIZED else kind.legacy_owner_column


def entity_prefix(kind: OwnerKind) -> str:
    return kind.name.lower()


def entity_values_table(kind: OwnerKind, layout: StorageLayout = StorageLayout.NORMALIZED) -> Table:
    """Entity-specific value table for kind: FK + cascade to the owning table, PK (owner, attribute, sort_order).

    sort_order is part of the key so multi-valued attributes hold several rows per owner. Uniqueness of
    single-valued attributes per (owner, attribute) relies on ValueStore._write forcing sort_order to 0.
    """
    layout = StorageLayout(layout)
    md = _METADATA[layout]
    if kind.value_table in md.tables:
        return md.tables[kind.value_table]

    prefix = entity_prefix(kind)
    owner_col = entity_owner_column(kind, layout)
    owner_table = OWNER_MODELS[kind].__table__
    cols: list = [
        Column(
            owner_col,
            Uuid,
            ForeignKey(owner_table.c.id, ondelete="CASCADE", name=f"fk_{prefix}_attr_values_owner"),
            nullable=False,
        ),
        Column(
            "attribute_id",
            Uuid,
            ForeignKey(AttributeDefinition.__table__.c.id, ondelete="CASCADE", name=f"fk_{prefix}_attr_values_attribute"),
            nullable=False,
        ),
    ]
    if layout == StorageLayout.LEGACY:
        cols.append(Column("declared_type", String(16), nullable=False))
    cols += _value_columns()
    cols += [
        Column("sort_order", Integer, nullable=False, server_default=text("0")),
        *_timestamps(),
        PrimaryKeyConstraint(owner_col, "attribute_id", "sort_order", name=f"pk_{prefix}_attr_values"),
        Index(f"ix_{prefix}_attr_values_owner", owner_col),
        Index(f"ix_{prefix}_attr_values_attribute_id", "attribute_id"),
        Index(f"ix_{prefix}_attr_values_value_string", "value_string"),
        Index(f"ix_{prefix}_attr_values_value_boolean", "value_boolean"),
    ]
    if layout == StorageLayout.NORMALIZED:
        cols.append(CheckConstraint(single_slot_check_sql(), name=f"ck_{prefix}_attr_values_single_value"))
    return Table(kind.value_table, md, *cols)


def layout_metadata(layout: StorageLayout) -> MetaData:
    """MetaData holding every value table of layout (tables are built on first use)."""
    layout = StorageLayout(layout)
    generic_values_table(layout)
    for kind in OwnerKind:
        entity_values_table(kind, layout)
    return _METADATA[layout]


__all__ = [
    "AUTO_LAYOUT",
    "GENERIC_TABLE",
    "StorageLayout",
    "entity_owner_column",
    "entity_prefix",
    "entity_values_table",
    "generic_values_table",
    "layout_metadata",
    "single_slot_check_sql",
]
