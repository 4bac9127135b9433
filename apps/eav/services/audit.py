"""Append-only audit log of attribute value changes (eav_audit_logs)."""

import json
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from apps.eav.config import config
from apps.eav.models.audit_log import EavAuditLog
from apps.eav.services.owners import Owner

ACTIONS = ("create", "update", "delete")


def _jsonable(value: Any) -> Any:
    """Audit columns are JSON: dates as ISO strings, decimals as strings."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return json.loads(json.dumps(value, default=str))


def record(
    session: Session,
    owner: Owner,
    attribute_name: str,
    action: str,
    old_value: Any = None,
    new_value: Any = None,
    changed_by: str | None = None,
    change_reason: str | None = None,
) -> EavAuditLog | None:
    """Add one audit row in the caller's transaction. Returns None when auditing is disabled."""
    if action not in ACTIONS:
        raise ValueError(f"Unknown audit action {action!r}")
    if not config.AUDIT_ENABLED:
        return None
    row = EavAuditLog(
        entity_type=owner.tag,
        entity_id=owner.id,
        attribute_name=attribute_name,
        action=action,
        old_value=_jsonable(old_value),
        new_value=_jsonable(new_value),
        changed_by=changed_by,
        change_reason=change_reason,
        created_at=datetime.now(timezone.utc),
    )
    session.add(row)
    return row


def list_audit(session: Session, owner: Owner, attribute_name: str | None = None, limit: int = 100) -> list[EavAuditLog]:
    """Audit rows of owner, newest first."""
    session.flush()
    stmt = (
        select(EavAuditLog)
        .where(EavAuditLog.entity_type == owner.tag)
        .where(EavAuditLog.entity_id == owner.id)
    )
    if attribute_name is not None:
        stmt = stmt.where(EavAuditLog.attribute_name == attribute_name)
    stmt = stmt.order_by(EavAuditLog.created_at.desc(), EavAuditLog.id).limit(limit)
    return list(session.scalars(stmt))
