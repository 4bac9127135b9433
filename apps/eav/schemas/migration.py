"""Pydantic schemas for migrator reports. Operator-facing only."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class OrphanedValue(BaseModel):
    """A generic value row whose owner no longer exists. Reported, never migrated."""

    model_config = ConfigDict(frozen=True)

    value_id: UUID
    owner_type_tag: str
    owner_id: UUID
    attribute_id: UUID


class EntityMigrationReport(BaseModel):
    """Row counts for one owner kind: generic rows vs rows in its entity-specific table."""

    kind: str
    generic_rows: int
    migrated_rows: int
    orphaned_rows: int
    orphans: list[OrphanedValue] = Field(default_factory=list)

    @property
    def matches(self) -> bool:
        """True when every non-orphaned generic row has a counterpart in the entity-specific table."""
        return self.migrated_rows == self.generic_rows - self.orphaned_rows


class StepReport(BaseModel):
    """Outcome of running one migrator step in one direction."""

    step: str
    version: int
    direction: str
    applied: bool
    dry_run: bool = False
    details: dict[str, Any] = Field(default_factory=dict)


class AppliedStep(BaseModel):
    """Row of eav_schema_versions."""

    model_config = ConfigDict(from_attributes=True)

    step: str
    version: int
    applied_at: datetime
    details: dict[str, Any] | None
