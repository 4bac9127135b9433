"""Schema migrator steps. Each step is named, versioned and has an explicit inverse.

  bootstrap        (1)        generic attribute_values table + indexes
  entity_<kind>    (100 + n)  <entity>_attribute_values table, backfilled from the generic table
  normalize        (200)      drop declared_type, owner_id naming, single-slot CHECK, retire generic rows

Steps only issue statements on the connection they are given; the runner (or an Alembic
revision) owns the transaction, so a failing step rolls back as a whole.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any

from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import Column, String, and_, column, exists, func, or_, select, table, update
from sqlalchemy.engine import Connection

from apps.eav.migrations import introspect
from apps.eav.models import OWNER_MODELS, AttributeDefinition, Base
from apps.eav.models.attribute_value import (
    GENERIC_TABLE,
    StorageLayout,
    entity_owner_column,
    entity_prefix,
    entity_values_table,
    generic_values_table,
    single_slot_check_sql,
)
from apps.eav.repositories.value_filters import upsert_insert
from apps.eav.schemas.migration import EntityMigrationReport, OrphanedValue
from apps.eav.services.codec import VALUE_COLUMNS
from apps.eav.services.owners import OwnerKind

logger = logging.getLogger(__name__)

BOOTSTRAP = "bootstrap"
NORMALIZE = "normalize"

BOOTSTRAP_VERSION = 1
ENTITY_VERSION_BASE = 100
NORMALIZE_VERSION = 200

GENERIC_CHECK = "ck_attr_values_single_value"
ORPHAN_REPORT_LIMIT = 100


def entity_step_name(kind: "OwnerKind | str") -> str:
    return f"entity_{OwnerKind.from_tag(kind).name.lower()}"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _ts(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def _ops(conn: Connection) -> Operations:
    return Operations(MigrationContext.configure(conn))


def _require_layout(conn: Connection) -> StorageLayout:
    layout = introspect.current_layout(conn)
    if layout is None:
        raise RuntimeError(f"{GENERIC_TABLE} does not exist; run the bootstrap step first")
    return layout


def migration_marks(applied: dict[str, dict], kind: OwnerKind) -> list[datetime]:
    """deleted_at stamps the migrator itself put on kind's generic rows (step 2 / step 3)."""
    marks = []
    entity_details = applied.get(entity_step_name(kind)) or {}
    if entity_details.get("soft_deleted_at"):
        marks.append(_ts(entity_details["soft_deleted_at"]))
    normalize_details = applied.get(NORMALIZE) or {}
    if normalize_details.get("retired_at") and kind.tag in normalize_details.get("kinds", []):
        marks.append(_ts(normalize_details["retired_at"]))
    return marks


def entity_migration_report(
    conn: Connection, kind: OwnerKind, marks: list[datetime] | None = None
) -> EntityMigrationReport:
    """Compare kind's generic rows with its entity-specific table.

    Generic rows count when active, or when soft-deleted by the migrator (marks). Orphans are generic
    rows whose owner row no longer exists.
    """
    layout = introspect.current_layout(conn)
    if layout is None:
        return EntityMigrationReport(kind=kind.tag, generic_rows=0, migrated_rows=0, orphaned_rows=0)
    generic = generic_values_table(layout)
    owner_table = OWNER_MODELS[kind].__table__

    visible = generic.c.deleted_at.is_(None)
    if marks:
        visible = or_(visible, generic.c.deleted_at.in_(marks))
    scope = and_(generic.c.owner_type_tag == kind.tag, visible)
    owner_missing = ~exists().where(owner_table.c.id == generic.c.owner_id)

    generic_rows = conn.scalar(select(func.count()).select_from(generic).where(scope)) or 0
    orphaned_rows = conn.scalar(select(func.count()).select_from(generic).where(scope, owner_missing)) or 0
    orphans = [
        OrphanedValue(
            value_id=row.id,
            owner_type_tag=row.owner_type_tag,
            owner_id=row.owner_id,
            attribute_id=row.attribute_id,
        )
        for row in conn.execute(
            select(generic.c.id, generic.c.owner_type_tag, generic.c.owner_id, generic.c.attribute_id)
            .where(scope, owner_missing)
            .order_by(generic.c.owner_id, generic.c.attribute_id)
            .limit(ORPHAN_REPORT_LIMIT)
        )
    ]
    migrated_rows = 0
    if introspect.table_exists(conn, kind.value_table):
        entity = entity_values_table(kind, layout)
        migrated_rows = conn.scalar(select(func.count()).select_from(entity)) or 0
    return EntityMigrationReport(
        kind=kind.tag,
        generic_rows=generic_rows,
        migrated_rows=migrated_rows,
        orphaned_rows=orphaned_rows,
        orphans=orphans,
    )


class MigrationStep(ABC):
    """One named, versioned, reversible schema change."""

    name = ""
    version = 0

    def check_upgrade(self, applied: dict[str, dict]) -> None:
        pass

    def check_downgrade(self, applied: dict[str, dict]) -> None:
        pass

    @abstractmethod
    def upgrade(self, conn: Connection, applied: dict[str, dict]) -> dict[str, Any]:
        """Apply the change on conn; returns the details recorded in eav_schema_versions."""

    @abstractmethod
    def downgrade(self, conn: Connection, details: dict[str, Any], applied: dict[str, dict]) -> dict[str, Any]:
        """Revert the change on conn, given the details recorded when it was applied."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name} v{self.version}>"


class BootstrapStep(MigrationStep):
    """Create the generic value table and its indexes (plus registry/catalog tables) if missing."""

    name = BOOTSTRAP
    version = BOOTSTRAP_VERSION

    def check_downgrade(self, applied: dict[str, dict]) -> None:
        later = sorted(name for name in applied if name != BOOTSTRAP)
        if later:
            raise RuntimeError(f"bootstrap cannot be reverted while later steps are applied: {', '.join(later)}")

    def upgrade(self, conn: Connection, applied: dict[str, dict]) -> dict[str, Any]:
        Base.metadata.create_all(conn, checkfirst=True)
        layout = introspect.current_layout(conn)
        created = layout is None
        layout = layout or StorageLayout.LEGACY
        generic = generic_values_table(layout)
        if created:
            generic.create(conn, checkfirst=True)
            logger.info("Created %s (%s layout)", GENERIC_TABLE, layout.value)
        indexes_created = []
        for index in sorted(generic.indexes, key=lambda ix: ix.name):
            if not introspect.index_exists(conn, GENERIC_TABLE, index.name):
                index.create(conn)
                indexes_created.append(index.name)
        if not created and not indexes_created:
            logger.info("%s already exists; nothing to do", GENERIC_TABLE)
        return {"created_table": created, "layout": layout.value, "indexes_created": indexes_created}

    def downgrade(self, conn: Connection, details: dict[str, Any], applied: dict[str, dict]) -> dict[str, Any]:
        layout = introspect.current_layout(conn)
        if layout is None:
            return {"dropped_table": False}
        generic_values_table(layout).drop(conn)
        logger.info("Dropped %s", GENERIC_TABLE)
        return {"dropped_table": True}


class EntityIntroductionStep(MigrationStep):
    """Create kind's entity-specific value table and copy kind's generic rows whose owner exists.

    Generic rows stay in place (both forms coexist) unless soft_delete_migrated is set. Orphans are
    counted and logged, never copied. Re-running upserts on the primary key, so the copy is idempotent.
    """

    def __init__(self, kind: "OwnerKind | str", soft_delete_migrated: bool = False):
        self.kind = OwnerKind.from_tag(kind)
        self.soft_delete_migrated = soft_delete_migrated
        self.name = entity_step_name(self.kind)
        self.version = ENTITY_VERSION_BASE + self.kind.ordinal

    def check_upgrade(self, applied: dict[str, dict]) -> None:
        if BOOTSTRAP not in applied:
            raise RuntimeError("bootstrap step is not applied")

    def check_downgrade(self, applied: dict[str, dict]) -> None:
        normalized = (applied.get(NORMALIZE) or {}).get("kinds", [])
        if NORMALIZE in applied and self.kind.tag in normalized:
            raise RuntimeError(f"{self.name} cannot be reverted while normalize is applied; revert normalize first")

    def _copy_columns(self, layout: StorageLayout) -> list[str]:
        cols = ["attribute_id"]
        if layout == StorageLayout.LEGACY:
            cols.append("declared_type")
        return [*cols, *VALUE_COLUMNS, "sort_order", "created_at", "updated_at"]

    def upgrade(self, conn: Connection, applied: dict[str, dict]) -> dict[str, Any]:
        kind = self.kind
        layout = _require_layout(conn)
        generic = generic_values_table(layout)
        entity = entity_values_table(kind, layout)
        owner_table = OWNER_MODELS[kind].__table__
        owner_col = entity_owner_column(kind, layout)

        created = not introspect.table_exists(conn, entity.name)
        if created:
            entity.create(conn)
            logger.info("Created %s (%s layout)", entity.name, layout.value)

        copy_cols = self._copy_columns(layout)
        source = (
            select(generic.c.owner_id, *(generic.c[c] for c in copy_cols))
            .join(owner_table, owner_table.c.id == generic.c.owner_id)
            .where(generic.c.owner_type_tag == kind.tag)
            .where(generic.c.deleted_at.is_(None))
        )
        stmt = upsert_insert(conn.dialect.name, entity).from_select([owner_col, *copy_cols], source)
        refreshed = [c for c in copy_cols if c not in ("attribute_id", "sort_order", "created_at")]
        stmt = stmt.on_conflict_do_update(
            index_elements=[entity.c[owner_col], entity.c.attribute_id, entity.c.sort_order],
            set_={c: stmt.excluded[c] for c in refreshed},
        )
        conn.execute(stmt)

        # every non-orphaned active generic row must now have its counterpart
        counterpart = exists().where(
            entity.c[owner_col] == generic.c.owner_id,
            entity.c.attribute_id == generic.c.attribute_id,
            entity.c.sort_order == generic.c.sort_order,
        )
        missing = conn.scalar(
            select(func.count())
            .select_from(generic)
            .join(owner_table, owner_table.c.id == generic.c.owner_id)
            .where(generic.c.owner_type_tag == kind.tag, generic.c.deleted_at.is_(None), ~counterpart)
        )
        if missing:
            raise RuntimeError(f"{missing} {kind.tag} rows were not copied into {entity.name}")

        report = entity_migration_report(conn, kind)
        if report.orphaned_rows:
            logger.warning(
                "%s: %d orphaned generic rows (owner missing) left in %s for manual cleanup",
                kind.tag,
                report.orphaned_rows,
                GENERIC_TABLE,
            )
        logger.info(
            "%s: %d generic rows, %d rows in %s, %d orphans",
            kind.tag,
            report.generic_rows,
            report.migrated_rows,
            entity.name,
            report.orphaned_rows,
        )

        details: dict[str, Any] = {
            "kind": kind.tag,
            "layout": layout.value,
            "created_table": created,
            "generic_rows": report.generic_rows,
            "migrated_rows": report.migrated_rows,
            "orphaned_rows": report.orphaned_rows,
            "soft_deleted_at": None,
            "soft_deleted_rows": 0,
        }
        if self.soft_delete_migrated:
            stamp = _now()
            result = conn.execute(
                update(generic)
                .where(generic.c.owner_type_tag == kind.tag)
                .where(generic.c.deleted_at.is_(None))
                .where(exists().where(owner_table.c.id == generic.c.owner_id))
                .values(deleted_at=stamp)
            )
            details["soft_deleted_at"] = stamp.isoformat()
            details["soft_deleted_rows"] = result.rowcount
            logger.info("%s: soft-deleted %d migrated generic rows", kind.tag, result.rowcount)
        return details

    def downgrade(self, conn: Connection, details: dict[str, Any], applied: dict[str, dict]) -> dict[str, Any]:
        kind = self.kind
        layout = _require_layout(conn)
        out: dict[str, Any] = {"kind": kind.tag, "removed_rows": 0, "dropped_table": False, "restored_rows": 0}
        if introspect.table_exists(conn, kind.value_table):
            entity = entity_values_table(kind, layout)
            out["removed_rows"] = conn.execute(entity.delete()).rowcount
            if details.get("created_table", True):
                entity.drop(conn)
                out["dropped_table"] = True
        stamp = _ts(details.get("soft_deleted_at"))
        if stamp is not None:
            generic = generic_values_table(layout)
            result = conn.execute(
                update(generic)
                .where(generic.c.owner_type_tag == kind.tag)
                .where(generic.c.deleted_at == stamp)
                .values(deleted_at=None)
            )
            out["restored_rows"] = result.rowcount
        logger.info(
            "%s: removed %d entity-specific rows, restored %d generic rows",
            kind.tag,
            out["removed_rows"],
            out["restored_rows"],
        )
        return out


def _lightweight(table_name: str):
    return table(table_name, column("attribute_id"), column("declared_type"))


class NormalizationStep(MigrationStep):
    """Retire the denormalized layout once every introduced kind's entity-specific table matches.

    Drops declared_type (resolved via attribute_definitions), renames <entity>_id owner columns to
    owner_id, adds the single-slot CHECK, and soft-deletes the generic rows of migrated kinds.
    """

    name = NORMALIZE
    version = NORMALIZE_VERSION

    def check_upgrade(self, applied: dict[str, dict]) -> None:
        if BOOTSTRAP not in applied:
            raise RuntimeError("bootstrap step is not applied")

    def upgrade(self, conn: Connection, applied: dict[str, dict]) -> dict[str, Any]:
        _require_layout(conn)
        kinds = [kind for kind in OwnerKind if entity_step_name(kind) in applied]
        for kind in kinds:
            report = entity_migration_report(conn, kind, migration_marks(applied, kind))
            if not report.matches:
                raise RuntimeError(
                    f"{kind.tag} is not fully migrated: {report.migrated_rows} entity-specific rows, "
                    f"{report.generic_rows} generic rows, {report.orphaned_rows} orphans"
                )

        ops = _ops(conn)
        self._normalize_table(conn, ops, GENERIC_TABLE, GENERIC_CHECK)
        for kind in OwnerKind:
            if not introspect.table_exists(conn, kind.value_table):
                continue
            if introspect.column_exists(conn, kind.value_table, kind.legacy_owner_column) and not introspect.column_exists(
                conn, kind.value_table, "owner_id"
            ):
                ops.alter_column(kind.value_table, kind.legacy_owner_column, new_column_name="owner_id")
            self._normalize_table(conn, ops, kind.value_table, f"ck_{entity_prefix(kind)}_attr_values_single_value")

        stamp = _now()
        generic = generic_values_table(StorageLayout.NORMALIZED)
        retired = 0
        for kind in kinds:
            owner_table = OWNER_MODELS[kind].__table__
            result = conn.execute(
                update(generic)
                .where(generic.c.owner_type_tag == kind.tag)
                .where(generic.c.deleted_at.is_(None))
                .where(exists().where(owner_table.c.id == generic.c.owner_id))
                .values(deleted_at=stamp)
            )
            retired += result.rowcount
        logger.info("Normalized value tables; retired %d generic rows of %s", retired, [k.tag for k in kinds])
        return {"kinds": [k.tag for k in kinds], "retired_at": stamp.isoformat(), "retired_rows": retired}

    def _normalize_table(self, conn: Connection, ops: Operations, table_name: str, check_name: str) -> None:
        if introspect.column_exists(conn, table_name, "declared_type"):
            ops.drop_column(table_name, "declared_type")
        if not introspect.check_constraint_exists(conn, table_name, check_name):
            ops.create_check_constraint(check_name, table_name, single_slot_check_sql())

    def downgrade(self, conn: Connection, details: dict[str, Any], applied: dict[str, dict]) -> dict[str, Any]:
        restored = 0
        stamp = _ts(details.get("retired_at"))
        kinds = details.get("kinds", [])
        if stamp is not None and kinds:
            generic = generic_values_table(StorageLayout.NORMALIZED)
            result = conn.execute(
                update(generic)
                .where(generic.c.owner_type_tag.in_(kinds))
                .where(generic.c.deleted_at == stamp)
                .values(deleted_at=None)
            )
            restored = result.rowcount

        ops = _ops(conn)
        self._denormalize_table(conn, ops, GENERIC_TABLE, GENERIC_CHECK)
        for kind in OwnerKind:
            if not introspect.table_exists(conn, kind.value_table):
                continue
            if introspect.column_exists(conn, kind.value_table, "owner_id") and not introspect.column_exists(
                conn, kind.value_table, kind.legacy_owner_column
            ):
                ops.alter_column(kind.value_table, "owner_id", new_column_name=kind.legacy_owner_column)
            self._denormalize_table(conn, ops, kind.value_table, f"ck_{entity_prefix(kind)}_attr_values_single_value")
        logger.info("Restored legacy value layout; un-retired %d generic rows", restored)
        return {"restored_rows": restored}

    def _denormalize_table(self, conn: Connection, ops: Operations, table_name: str, check_name: str) -> None:
        if introspect.check_constraint_exists(conn, table_name, check_name):
            ops.drop_constraint(check_name, table_name, type_="check")
        if introspect.column_exists(conn, table_name, "declared_type"):
            return
        ops.add_column(table_name, Column("declared_type", String(16), nullable=True))
        target = _lightweight(table_name)
        conn.execute(
            update(target).values(
                declared_type=select(AttributeDefinition.declared_type)
                .where(AttributeDefinition.id == target.c.attribute_id)
                .scalar_subquery()
            )
        )
        ops.alter_column(table_name, "declared_type", nullable=False, existing_type=String(16))


def default_steps(kinds: "list[OwnerKind | str]", soft_delete_migrated: bool = False) -> list[MigrationStep]:
    """All steps in version order for the given entity-specific kinds."""
    entity_steps = sorted(
        (EntityIntroductionStep(k, soft_delete_migrated=soft_delete_migrated) for k in kinds),
        key=lambda s: s.version,
    )
    return [BootstrapStep(), *entity_steps, NormalizationStep()]


__all__ = [
    "BOOTSTRAP",
    "BootstrapStep",
    "EntityIntroductionStep",
    "MigrationStep",
    "NORMALIZE",
    "NormalizationStep",
    "default_steps",
    "entity_migration_report",
    "entity_step_name",
    "migration_marks",
]
