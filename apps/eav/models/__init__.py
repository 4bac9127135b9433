"""SQLAlchemy models. Value tables are Core tables built per storage layout (see attribute_value)."""

from apps.eav.models.attribute_definition import AttributeDefinition
from apps.eav.models.attribute_value import (
    GENERIC_TABLE,
    StorageLayout,
    entity_values_table,
    generic_values_table,
    layout_metadata,
)
from apps.eav.models.audit_log import EavAuditLog
from apps.eav.models.base import Base
from apps.eav.models.entity_type import EntityType
from apps.eav.models.owner import OWNER_MODELS, Assessment, Facility, Instructor, Role, User
from apps.eav.models.schema_version import EavSchemaVersion

__all__ = [
    "Assessment",
    "AttributeDefinition",
    "Base",
    "EavAuditLog",
    "EavSchemaVersion",
    "EntityType",
    "Facility",
    "GENERIC_TABLE",
    "Instructor",
    "OWNER_MODELS",
    "Role",
    "StorageLayout",
    "User",
    "entity_values_table",
    "generic_values_table",
    "layout_metadata",
]
