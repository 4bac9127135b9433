"""Value codec: the only place that knows how a declared type maps onto the 8 typed value slots.

encode(declared_type, value) -> EncodedValue holding at most one (slot, physical value) pair.
decode(declared_type, row) -> logical value read back from the slot of the declared type.

Every value store and every migration step goes through this module; none of them picks
a value_* column by itself.
"""

import json
import math
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from apps.eav.config import config
from apps.eav.services.errors import TypeMismatch


class DeclaredType(str, Enum):
    """Declared type of an attribute definition."""

    STRING = "string"
    INTEGER = "integer"
    DECIMAL = "decimal"
    BOOLEAN = "boolean"
    DATE = "date"
    DATETIME = "datetime"
    TEXT = "text"
    JSON = "json"


SLOT_COLUMNS: dict[DeclaredType, str] = {
    DeclaredType.STRING: "value_string",
    DeclaredType.INTEGER: "value_integer",
    DeclaredType.DECIMAL: "value_decimal",
    DeclaredType.BOOLEAN: "value_boolean",
    DeclaredType.DATE: "value_date",
    DeclaredType.DATETIME: "value_datetime",
    DeclaredType.TEXT: "value_text",
    DeclaredType.JSON: "value_json",
}

VALUE_COLUMNS: tuple[str, ...] = tuple(SLOT_COLUMNS.values())

# Physical limits of the slots (BIGINT, NUMERIC(18, 6)).
INTEGER_MIN = -(2**63)
INTEGER_MAX = 2**63 - 1
DECIMAL_PRECISION = 18
DECIMAL_SCALE = 6


def declared_type_of(value: "str | DeclaredType") -> DeclaredType:
    """Coerce a declared type name. Raises ValueError for names outside the closed set."""
    if isinstance(value, DeclaredType):
        return value
    try:
        return DeclaredType(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(t.value for t in DeclaredType)
        raise ValueError(f"Unknown declared type {value!r}; expected one of: {allowed}") from None


def slot_for(declared_type: "str | DeclaredType") -> str:
    """Return the value_* column name that holds values of declared_type."""
    return SLOT_COLUMNS[declared_type_of(declared_type)]


@dataclass(frozen=True)
class EncodedValue:
    """Physical form of one logical value: a single (slot, value) pair, or no slot for None."""

    declared_type: DeclaredType
    slot: str | None
    value: Any

    def columns(self) -> dict[str, Any]:
        """All 8 value columns: the populated slot set, the other 7 explicitly None."""
        cols: dict[str, Any] = {c: None for c in VALUE_COLUMNS}
        if self.slot is not None:
            cols[self.slot] = self.value
        return cols


def _encode_string(value: Any) -> str:
    if not isinstance(value, str):
        raise TypeMismatch(DeclaredType.STRING.value, value)
    if len(value) > config.STRING_MAX_LENGTH:
        raise TypeMismatch(
            DeclaredType.STRING.value,
            value[:40] + "...",
            f"longer than {config.STRING_MAX_LENGTH} characters; declare the attribute as 'text'",
        )
    return value


def _encode_integer(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeMismatch(DeclaredType.INTEGER.value, value)
    if value < INTEGER_MIN or value > INTEGER_MAX:
        raise TypeMismatch(DeclaredType.INTEGER.value, value, "outside 64-bit integer range")
    return value


def _encode_decimal(value: Any) -> Decimal:
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        raise TypeMismatch(DeclaredType.DECIMAL.value, value)
    if isinstance(value, float):
        if not math.isfinite(value):
            raise TypeMismatch(DeclaredType.DECIMAL.value, value, "not a finite number")
        dec = Decimal(repr(value))
    else:
        dec = Decimal(value)
    if not dec.is_finite():
        raise TypeMismatch(DeclaredType.DECIMAL.value, value, "not a finite number")
    try:
        quantized = dec.quantize(Decimal(1).scaleb(-DECIMAL_SCALE))
    except InvalidOperation:
        raise TypeMismatch(DeclaredType.DECIMAL.value, value, "too many digits") from None
    if quantized != dec:
        raise TypeMismatch(DeclaredType.DECIMAL.value, value, f"more than {DECIMAL_SCALE} fractional digits")
    integer_digits = len(quantized.as_tuple().digits) - DECIMAL_SCALE
    if integer_digits > DECIMAL_PRECISION - DECIMAL_SCALE:
        raise TypeMismatch(
            DeclaredType.DECIMAL.value,
            value,
            f"more than {DECIMAL_PRECISION - DECIMAL_SCALE} integer digits",
        )
    return dec


def _encode_boolean(value: Any) -> bool:
    if not isinstance(value, bool):
        raise TypeMismatch(DeclaredType.BOOLEAN.value, value)
    return value


def _encode_date(value: Any) -> date:
    # datetime is a subclass of date; a datetime written to a date slot would silently lose its time.
    if isinstance(value, datetime) or not isinstance(value, date):
        raise TypeMismatch(DeclaredType.DATE.value, value)
    return value


def _encode_datetime(value: Any) -> datetime:
    if not isinstance(value, datetime):
        raise TypeMismatch(DeclaredType.DATETIME.value, value)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _encode_text(value: Any) -> str:
    if not isinstance(value, str):
        raise TypeMismatch(DeclaredType.TEXT.value, value)
    return value


def _encode_json(value: Any) -> Any:
    try:
        json.dumps(value, allow_nan=False)
    except (TypeError, ValueError) as e:
        raise TypeMismatch(DeclaredType.JSON.value, value, str(e)) from None
    return value


_ENCODERS = {
    DeclaredType.STRING: _encode_string,
    DeclaredType.INTEGER: _encode_integer,
    DeclaredType.DECIMAL: _encode_decimal,
    DeclaredType.BOOLEAN: _encode_boolean,
    DeclaredType.DATE: _encode_date,
    DeclaredType.DATETIME: _encode_datetime,
    DeclaredType.TEXT: _encode_text,
    DeclaredType.JSON: _encode_json,
}


def encode(declared_type: "str | DeclaredType", value: Any) -> EncodedValue:
    """Encode a logical value for declared_type. Raises TypeMismatch when it does not fit the slot.

    None encodes to no populated slot at all.
    """
    dt = declared_type_of(declared_type)
    if value is None:
        return EncodedValue(declared_type=dt, slot=None, value=None)
    return EncodedValue(declared_type=dt, slot=SLOT_COLUMNS[dt], value=_ENCODERS[dt](value))


def populated_slots(row: Mapping[str, Any]) -> list[str]:
    """Return the value_* columns that are non-null in row."""
    return [c for c in VALUE_COLUMNS if row.get(c) is not None]


def _decode_physical(dt: DeclaredType, raw: Any) -> Any:
    if dt is DeclaredType.INTEGER:
        return int(raw)
    if dt is DeclaredType.DECIMAL:
        if isinstance(raw, Decimal):
            return raw
        return Decimal(str(raw))
    if dt is DeclaredType.BOOLEAN:
        return bool(raw)
    if dt is DeclaredType.DATE:
        if isinstance(raw, datetime):
            return raw.date()
        if isinstance(raw, str):
            return date.fromisoformat(raw)
        return raw
    if dt is DeclaredType.DATETIME:
        if isinstance(raw, str):
            raw = datetime.fromisoformat(raw)
        # Some engines (SQLite) drop the offset; values are always written in UTC.
        if raw.tzinfo is None:
            return raw.replace(tzinfo=timezone.utc)
        return raw
    if dt is DeclaredType.JSON and isinstance(raw, (bytes, bytearray)):
        return json.loads(raw)
    return raw


def decode(declared_type: "str | DeclaredType", row: Mapping[str, Any]) -> Any:
    """Decode the logical value of a value row for declared_type.

    Raises TypeMismatch when the row populates a slot other than the one declared_type maps to.
    """
    dt = declared_type_of(declared_type)
    slot = SLOT_COLUMNS[dt]
    populated = populated_slots(row)
    stray = [c for c in populated if c != slot]
    if stray:
        raise TypeMismatch(dt.value, {c: row.get(c) for c in populated}, f"row populates {', '.join(stray)}")
    raw = row.get(slot)
    if raw is None:
        return None
    return _decode_physical(dt, raw)


def parse_text(declared_type: "str | DeclaredType", raw: str | None) -> Any:
    """Parse a textual representation (e.g. a definition's default_value) into a logical value.

    Raises TypeMismatch when raw cannot be read as declared_type.
    """
    dt = declared_type_of(declared_type)
    if raw is None:
        return None
    try:
        if dt in (DeclaredType.STRING, DeclaredType.TEXT):
            value: Any = raw
        elif dt is DeclaredType.INTEGER:
            value = int(raw.strip())
        elif dt is DeclaredType.DECIMAL:
            value = Decimal(raw.strip())
        elif dt is DeclaredType.BOOLEAN:
            lowered = raw.strip().lower()
            if lowered not in ("true", "false", "1", "0", "yes", "no"):
                raise ValueError(f"not a boolean: {raw!r}")
            value = lowered in ("true", "1", "yes")
        elif dt is DeclaredType.DATE:
            value = date.fromisoformat(raw.strip())
        elif dt is DeclaredType.DATETIME:
            value = datetime.fromisoformat(raw.strip())
        else:
            value = json.loads(raw)
    except (ValueError, InvalidOperation) as e:
        raise TypeMismatch(dt.value, raw, str(e)) from None
    return encode(dt, value).value if value is not None else None


def format_text(declared_type: "str | DeclaredType", value: Any) -> str | None:
    """Inverse of parse_text for storing defaults as text."""
    dt = declared_type_of(declared_type)
    encoded = encode(dt, value)
    if encoded.slot is None:
        return None
    v = encoded.value
    if dt is DeclaredType.BOOLEAN:
        return "true" if v else "false"
    if dt in (DeclaredType.DATE, DeclaredType.DATETIME):
        return v.isoformat()
    if dt is DeclaredType.JSON:
        return json.dumps(v, sort_keys=True)
    return str(v)


__all__ = [
    "DECIMAL_PRECISION",
    "DECIMAL_SCALE",
    "DeclaredType",
    "EncodedValue",
    "INTEGER_MAX",
    "INTEGER_MIN",
    "SLOT_COLUMNS",
    "VALUE_COLUMNS",
    "declared_type_of",
    "decode",
    "encode",
    "format_text",
    "parse_text",
    "populated_slots",
    "slot_for",
]
