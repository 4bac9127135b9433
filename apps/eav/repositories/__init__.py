"""Repository layer: value table queries and helpers."""

from apps.eav.repositories.value_filters import (
    DEFINITION_COLUMNS,
    SlotPredicate,
    active_value_where,
    definition_where,
    owner_where,
    select_values_for_owner,
    slot_condition,
    upsert_insert,
)

__all__ = [
    "DEFINITION_COLUMNS",
    "SlotPredicate",
    "active_value_where",
    "definition_where",
    "owner_where",
    "select_values_for_owner",
    "slot_condition",
    "upsert_insert",
]
