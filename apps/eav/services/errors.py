"""EAV error types. Validation errors are recoverable by the caller; migration failures are operator-facing."""

from typing import Any


class EavError(Exception):
    """Base class for all EAV errors."""

    pass


class UnknownEntityType(EavError, LookupError):
    """Raised when an entity type name or id does not resolve to an active, non-deleted row."""

    def __init__(self, ref: Any):
        self.ref = ref
        super().__init__(f"Entity type {ref!r} not found")


class UnknownAttribute(EavError, LookupError):
    """Raised when one or more attribute references do not resolve to a non-deleted definition."""

    def __init__(self, refs: Any, entity_type: str | None = None):
        self.refs = list(refs) if isinstance(refs, (list, tuple, set, frozenset)) else [refs]
        self.entity_type = entity_type
        names = ", ".join(str(r) for r in self.refs)
        scope = f" for entity type {entity_type!r}" if entity_type else ""
        super().__init__(f"Attribute(s) not found{scope}: {names}")


class TypeMismatch(EavError, ValueError):
    """Raised when a value does not encode into the slot of its declared type."""

    def __init__(self, declared_type: str, value: Any, reason: str | None = None):
        self.declared_type = declared_type
        self.value = value
        detail = f": {reason}" if reason else ""
        super().__init__(
            f"Value {value!r} ({type(value).__name__}) does not match declared type {declared_type!r}{detail}"
        )


class RequiredValueMissing(EavError, ValueError):
    """Raised when None or an empty string is written to a required attribute."""

    def __init__(self, attribute_name: str):
        self.attribute_name = attribute_name
        super().__init__(f"Attribute {attribute_name!r} is required")


class UnsupportedOwnerKind(EavError, ValueError):
    """Raised when a store is addressed with an owner kind it does not serve."""

    pass


class MigrationStepFailure(EavError, RuntimeError):
    """Raised when a migration step fails. The step's transaction has been rolled back."""

    def __init__(self, step: str, direction: str, reason: str):
        self.step = step
        self.direction = direction
        super().__init__(f"Migration step {step!r} ({direction}) failed: {reason}")


__all__ = [
    "EavError",
    "MigrationStepFailure",
    "RequiredValueMissing",
    "TypeMismatch",
    "UnknownAttribute",
    "UnknownEntityType",
    "UnsupportedOwnerKind",
]
