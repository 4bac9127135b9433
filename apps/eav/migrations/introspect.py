"""Schema existence checks. Every create/alter in a migration step checks first, so steps re-run cleanly."""

from sqlalchemy import inspect
from sqlalchemy.engine import Connection

from apps.eav.models.attribute_value import GENERIC_TABLE, StorageLayout


def table_exists(conn: Connection, table: str) -> bool:
    return inspect(conn).has_table(table)


def column_names(conn: Connection, table: str) -> set[str]:
    if not table_exists(conn, table):
        return set()
    return {c["name"] for c in inspect(conn).get_columns(table)}


def column_exists(conn: Connection, table: str, column: str) -> bool:
    return column in column_names(conn, table)


def index_exists(conn: Connection, table: str, index: str) -> bool:
    if not table_exists(conn, table):
        return False
    return any(ix["name"] == index for ix in inspect(conn).get_indexes(table))


def check_constraint_exists(conn: Connection, table: str, name: str) -> bool:
    if not table_exists(conn, table):
        return False
    return any(ck.get("name") == name for ck in inspect(conn).get_check_constraints(table))


def current_layout(conn: Connection) -> StorageLayout | None:
    """Physical layout of the value tables, read from the generic table. None before bootstrap."""
    cols = column_names(conn, GENERIC_TABLE)
    if not cols:
        return None
    return StorageLayout.LEGACY if "declared_type" in cols else StorageLayout.NORMALIZED


def resolve_layout(conn: Connection, layout: "StorageLayout | str | None" = None) -> StorageLayout:
    """Explicit layout, else EAV_SCHEMA_LAYOUT, else (auto) the layout found in the database.

    A database without value tables yet resolves to normalized.
    """
    if layout is not None:
        return StorageLayout(layout)
    configured = StorageLayout.from_config()
    if configured is not None:
        return configured
    return current_layout(conn) or StorageLayout.NORMALIZED
