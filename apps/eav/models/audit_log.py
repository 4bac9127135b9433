"""eav_audit_logs table. Append-only history of attribute value changes, for both store forms."""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import CheckConstraint, DateTime, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from apps.eav.models.base import Base, JSONType


class EavAuditLog(Base):
    """Audit entry: create, update, delete of one attribute value of one owner."""

    __tablename__ = "eav_audit_logs"
    __table_args__ = (
        Index("ix_eav_audit_logs_entity", "entity_type", "entity_id"),
        Index("ix_eav_audit_logs_created_at", "created_at"),
        CheckConstraint("action IN ('create', 'update', 'delete')", name="ck_eav_audit_logs_action"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    entity_type: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    attribute_name: Mapped[str] = mapped_column(String(100), nullable=False)
    action: Mapped[str] = mapped_column(String(16), nullable=False)
    old_value: Mapped[Any] = mapped_column(JSONType, nullable=True)
    new_value: Mapped[Any] = mapped_column(JSONType, nullable=True)
    changed_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    change_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
