"""attribute_definitions table. Per-entity-type schema declarations for dynamic attributes."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from apps.eav.models.base import Base, JSONType


class AttributeDefinition(Base):
    """Attribute definition. (entity_type_id, name) is unique among non-deleted rows.

    validation_rules (min/max/pattern/enum) is opaque metadata for callers; storage enforces only
    that values land in the slot of declared_type.
    """

    __tablename__ = "attribute_definitions"
    __table_args__ = (
        Index(
            "uq_attribute_definitions_entity_type_name_active",
            "entity_type_id",
            "name",
            unique=True,
            postgresql_where=text("deleted_at IS NULL"),
            sqlite_where=text("deleted_at IS NULL"),
        ),
        Index("ix_attribute_definitions_entity_type_id", "entity_type_id"),
        Index("ix_attribute_definitions_declared_type", "declared_type"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    entity_type_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("entity_types.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    declared_type: Mapped[str] = mapped_column(String(16), nullable=False, default="string")
    is_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    is_multi_valued: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    default_value: Mapped[str | None] = mapped_column(Text, nullable=True)  # textual, parsed by the codec
    validation_rules: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=True
    )

    entity_type = relationship("EntityType", back_populates="attribute_definitions")
