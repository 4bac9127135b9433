"""Pydantic schemas for the entity type registry, attribute catalog and value reads."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from apps.eav.services.codec import DeclaredType


# ---------------------------------------------------------------------------
# Create schemas
# ---------------------------------------------------------------------------


class AttributeDefinitionCreate(BaseModel):
    """Payload for define(). Cardinality is is_multi_valued."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, max_length=100)
    declared_type: DeclaredType = DeclaredType.STRING
    display_name: str | None = None
    description: str | None = None
    is_required: bool = False
    is_multi_valued: bool = False
    default_value: str | None = None
    validation_rules: dict[str, Any] | None = None
    sort_order: int = 0

    @field_validator("name")
    @classmethod
    def _strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name must be non-empty")
        return v


class EntityTypeSeed(BaseModel):
    """Bootstrap file entry: one entity type and the attributes to define on it."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, max_length=100)
    backing_table_name: str | None = None
    description: str | None = None
    attributes: list[AttributeDefinitionCreate] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Output schemas
# ---------------------------------------------------------------------------


class EntityTypeOut(BaseModel):
    """Entity type output. JSON-serializable."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    backing_table_name: str | None
    description: str | None
    is_active: bool
    deleted_at: datetime | None = None


class AttributeDefinitionOut(BaseModel):
    """Attribute definition output. JSON-serializable."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    entity_type_id: UUID
    name: str
    display_name: str | None
    description: str | None
    declared_type: DeclaredType
    is_required: bool
    is_multi_valued: bool
    default_value: str | None
    validation_rules: dict[str, Any] | None
    sort_order: int
    is_active: bool
    deleted_at: datetime | None = None


class AttributeValueOut(BaseModel):
    """One decoded value with its definition metadata (get_with_metadata)."""

    attribute_id: UUID
    attribute_name: str
    display_name: str | None
    description: str | None
    declared_type: DeclaredType
    is_required: bool
    is_multi_valued: bool
    validation_rules: dict[str, Any] | None
    default_value: str | None
    value: Any
    sort_order: int
