"""Owner kinds: the closed set of business objects that carry dynamic attributes.

An Owner is (kind, id). The kind fixes the entity-type tag used by the generic store,
the owning table, and the dedicated value table used by the entity-specific store.
"""

import uuid
from dataclasses import dataclass
from enum import Enum


class OwnerKind(Enum):
    """(entity type tag, owning table, entity-specific value table, owner column before normalization)."""

    USER = ("User", "users", "user_attribute_values", "user_id")
    ROLE = ("Role", "roles", "role_attribute_values", "role_id")
    FACILITY = ("Facility", "facilities", "facility_attribute_values", "facility_id")
    INSTRUCTOR = ("Instructor", "instructors", "instructor_attribute_values", "instructor_id")
    ASSESSMENT = ("Assessment", "assessments", "assessment_attribute_values", "assessment_id")

    def __init__(self, tag: str, owner_table: str, value_table: str, legacy_owner_column: str):
        self.tag = tag
        self.owner_table = owner_table
        self.value_table = value_table
        self.legacy_owner_column = legacy_owner_column

    @property
    def ordinal(self) -> int:
        return list(OwnerKind).index(self)

    @classmethod
    def from_tag(cls, tag: "str | OwnerKind") -> "OwnerKind":
        """Resolve an entity-type tag (case-insensitive). Raises ValueError for unregistered tags."""
        if isinstance(tag, OwnerKind):
            return tag
        wanted = str(tag or "").strip().lower()
        for kind in cls:
            if kind.tag.lower() == wanted or kind.name.lower() == wanted:
                return kind
        raise ValueError(f"Unknown owner kind {tag!r}; expected one of: {', '.join(k.tag for k in cls)}")


@dataclass(frozen=True)
class Owner:
    """One concrete entity instance that attribute values are attached to."""

    kind: OwnerKind
    id: uuid.UUID

    def __post_init__(self) -> None:
        if not isinstance(self.kind, OwnerKind):
            object.__setattr__(self, "kind", OwnerKind.from_tag(self.kind))
        if not isinstance(self.id, uuid.UUID):
            object.__setattr__(self, "id", uuid.UUID(str(self.id)))

    @property
    def tag(self) -> str:
        return self.kind.tag

    def __str__(self) -> str:
        return f"{self.kind.tag}:{self.id}"


def owner(kind: "str | OwnerKind", owner_id: "uuid.UUID | str") -> Owner:
    """Shorthand: owner("Role", role_id)."""
    return Owner(OwnerKind.from_tag(kind), owner_id)


__all__ = ["Owner", "OwnerKind", "owner"]
