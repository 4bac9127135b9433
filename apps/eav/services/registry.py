"""Entity type registry: business object kinds eligible for dynamic attributes.

register() is idempotent by name among non-deleted rows. Soft delete only, so a name can be
registered again after deactivate() and definitions of the old row stay valid for audit.
"""

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from apps.eav.models.entity_type import EntityType
from apps.eav.services.errors import UnknownEntityType

logger = logging.getLogger(__name__)


def _clean_name(name: str) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValueError("entity type name must be non-empty")
    return cleaned


def _active_by_name(session: Session, name: str) -> EntityType | None:
    stmt = select(EntityType).where(EntityType.name == name).where(EntityType.deleted_at.is_(None))
    return session.scalars(stmt).first()


def register(
    session: Session,
    name: str,
    backing_table_name: str | None = None,
    description: str | None = None,
) -> uuid.UUID:
    """Return the id of the non-deleted entity type name, creating it if absent.

    An existing row is returned unchanged. A concurrent register of the same name loses on the
    partial unique index and re-reads the winner.
    """
    name = _clean_name(name)
    existing = _active_by_name(session, name)
    if existing is not None:
        return existing.id

    row = EntityType(name=name, backing_table_name=backing_table_name, description=description, is_active=True)
    try:
        with session.begin_nested():
            session.add(row)
            session.flush()
    except IntegrityError:
        existing = _active_by_name(session, name)
        if existing is None:
            raise
        return existing.id
    logger.info("Registered entity type %s (%s)", name, row.id)
    return row.id


def get(session: Session, name: str) -> EntityType:
    """Non-deleted entity type by name. Raises UnknownEntityType."""
    row = _active_by_name(session, _clean_name(name))
    if row is None:
        raise UnknownEntityType(name)
    return row


def get_by_id(session: Session, entity_type_id: uuid.UUID) -> EntityType:
    """Non-deleted entity type by id. Raises UnknownEntityType."""
    row = session.get(EntityType, entity_type_id)
    if row is None or row.deleted_at is not None:
        raise UnknownEntityType(entity_type_id)
    return row


def resolve(session: Session, name: str) -> uuid.UUID:
    """Id of the non-deleted entity type name. Raises UnknownEntityType."""
    return get(session, name).id


def list_entity_types(session: Session, include_inactive: bool = False) -> list[EntityType]:
    """Non-deleted entity types ordered by name."""
    stmt = select(EntityType).where(EntityType.deleted_at.is_(None))
    if not include_inactive:
        stmt = stmt.where(EntityType.is_active.is_(True))
    return list(session.scalars(stmt.order_by(EntityType.name)))


def rename(session: Session, name: str, new_name: str) -> EntityType:
    """Rename a non-deleted entity type. The unique index rejects a name already in use."""
    row = get(session, name)
    row.name = _clean_name(new_name)
    session.flush()
    return row


def set_active(session: Session, name: str, active: bool) -> EntityType:
    """Toggle is_active without deleting."""
    row = get(session, name)
    row.is_active = active
    session.flush()
    return row


def deactivate(session: Session, name: str) -> uuid.UUID:
    """Soft-delete the entity type. Its attribute definitions are left in place.

    Raises UnknownEntityType when no non-deleted row has that name.
    """
    row = get(session, name)
    row.is_active = False
    row.deleted_at = datetime.now(timezone.utc)
    session.flush()
    logger.info("Deactivated entity type %s (%s)", row.name, row.id)
    return row.id


__all__ = [
    "deactivate",
    "get",
    "get_by_id",
    "list_entity_types",
    "register",
    "rename",
    "resolve",
    "set_active",
]
