"""Attribute definition catalog: per-entity-type declarations of dynamic attributes."""

import logging
import uuid
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from apps.eav.models.attribute_definition import AttributeDefinition
from apps.eav.schemas.definitions import AttributeDefinitionCreate
from apps.eav.services import registry
from apps.eav.services.codec import DeclaredType, declared_type_of, parse_text
from apps.eav.services.errors import UnknownAttribute

logger = logging.getLogger(__name__)


def _by_name(session: Session, entity_type_id: uuid.UUID, name: str) -> AttributeDefinition | None:
    stmt = (
        select(AttributeDefinition)
        .where(AttributeDefinition.entity_type_id == entity_type_id)
        .where(AttributeDefinition.name == name)
        .where(AttributeDefinition.deleted_at.is_(None))
    )
    return session.scalars(stmt).first()


def define(
    session: Session,
    entity_type_id: uuid.UUID,
    name: str,
    declared_type: "str | DeclaredType" = DeclaredType.STRING,
    *,
    is_multi_valued: bool = False,
    validation_rules: dict[str, Any] | None = None,
    sort_order: int = 0,
    is_required: bool = False,
    default_value: str | None = None,
    display_name: str | None = None,
    description: str | None = None,
) -> uuid.UUID:
    """Return the id of the non-deleted definition (entity_type_id, name), creating it if absent.

    An existing definition is returned without modification, even when the arguments differ.
    default_value is text and must parse as declared_type (TypeMismatch otherwise).
    Raises UnknownEntityType when entity_type_id is missing or deleted.
    """
    registry.get_by_id(session, entity_type_id)
    payload = AttributeDefinitionCreate(
        name=name,
        declared_type=declared_type_of(declared_type),
        display_name=display_name,
        description=description,
        is_required=is_required,
        is_multi_valued=is_multi_valued,
        default_value=default_value,
        validation_rules=validation_rules,
        sort_order=sort_order,
    )
    return define_from(session, entity_type_id, payload)


def define_from(session: Session, entity_type_id: uuid.UUID, payload: AttributeDefinitionCreate) -> uuid.UUID:
    """define() from a validated payload."""
    existing = _by_name(session, entity_type_id, payload.name)
    if existing is not None:
        if existing.declared_type != payload.declared_type.value:
            logger.warning(
                "Attribute %s already defined as %s; requested %s ignored",
                payload.name,
                existing.declared_type,
                payload.declared_type.value,
            )
        return existing.id

    if payload.default_value is not None:
        parse_text(payload.declared_type, payload.default_value)

    row = AttributeDefinition(
        entity_type_id=entity_type_id,
        name=payload.name,
        display_name=payload.display_name or payload.name,
        description=payload.description,
        declared_type=payload.declared_type.value,
        is_required=payload.is_required,
        is_multi_valued=payload.is_multi_valued,
        default_value=payload.default_value,
        validation_rules=payload.validation_rules,
        sort_order=payload.sort_order,
        is_active=True,
    )
    try:
        with session.begin_nested():
            session.add(row)
            session.flush()
    except IntegrityError:
        existing = _by_name(session, entity_type_id, payload.name)
        if existing is None:
            raise
        return existing.id
    logger.info("Defined attribute %s (%s) on entity type %s", row.name, row.declared_type, entity_type_id)
    return row.id


def list_definitions(
    session: Session, entity_type_id: uuid.UUID, include_inactive: bool = False
) -> list[AttributeDefinition]:
    """Non-deleted definitions of entity_type_id ordered by sort_order, then name."""
    stmt = (
        select(AttributeDefinition)
        .where(AttributeDefinition.entity_type_id == entity_type_id)
        .where(AttributeDefinition.deleted_at.is_(None))
    )
    if not include_inactive:
        stmt = stmt.where(AttributeDefinition.is_active.is_(True))
    stmt = stmt.order_by(AttributeDefinition.sort_order, AttributeDefinition.name)
    return list(session.scalars(stmt))


def resolve(session: Session, entity_type_id: uuid.UUID, name: str) -> AttributeDefinition:
    """Non-deleted definition by (entity_type_id, name). Raises UnknownAttribute."""
    row = _by_name(session, entity_type_id, (name or "").strip())
    if row is None:
        raise UnknownAttribute(name)
    return row


def resolve_many(
    session: Session, entity_type_id: uuid.UUID, names: Iterable[str], entity_type: str | None = None
) -> dict[str, AttributeDefinition]:
    """Resolve every name to an active definition. Raises UnknownAttribute listing all names that are missing."""
    wanted = list(dict.fromkeys(names))
    if not wanted:
        return {}
    stmt = (
        select(AttributeDefinition)
        .where(AttributeDefinition.entity_type_id == entity_type_id)
        .where(AttributeDefinition.name.in_(wanted))
        .where(AttributeDefinition.deleted_at.is_(None))
        .where(AttributeDefinition.is_active.is_(True))
    )
    found = {row.name: row for row in session.scalars(stmt)}
    missing = [n for n in wanted if n not in found]
    if missing:
        raise UnknownAttribute(missing, entity_type=entity_type)
    return found


def get_definition(session: Session, attribute_id: uuid.UUID) -> AttributeDefinition:
    """Non-deleted, active definition by id. Raises UnknownAttribute."""
    row = session.get(AttributeDefinition, attribute_id)
    if row is None or row.deleted_at is not None or not row.is_active:
        raise UnknownAttribute(attribute_id)
    return row


def rename(session: Session, attribute_id: uuid.UUID, new_name: str) -> AttributeDefinition:
    row = get_definition(session, attribute_id)
    new_name = (new_name or "").strip()
    if not new_name:
        raise ValueError("attribute name must be non-empty")
    row.name = new_name
    session.flush()
    return row


def deactivate(session: Session, attribute_id: uuid.UUID) -> AttributeDefinition:
    """Hide the definition from reads and reject writes; values are kept."""
    row = get_definition(session, attribute_id)
    row.is_active = False
    session.flush()
    logger.info("Deactivated attribute %s (%s)", row.name, row.id)
    return row


def soft_delete(session: Session, attribute_id: uuid.UUID) -> AttributeDefinition:
    """Set deleted_at; the name becomes free for a new definition."""
    row = session.get(AttributeDefinition, attribute_id)
    if row is None or row.deleted_at is not None:
        raise UnknownAttribute(attribute_id)
    row.is_active = False
    row.deleted_at = datetime.now(timezone.utc)
    session.flush()
    logger.info("Deleted attribute %s (%s)", row.name, row.id)
    return row


__all__ = [
    "deactivate",
    "define",
    "define_from",
    "get_definition",
    "list_definitions",
    "rename",
    "resolve",
    "resolve_many",
    "soft_delete",
]
