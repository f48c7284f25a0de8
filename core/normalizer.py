"""
Table normalizer: heterogeneous records → one header-plus-rows table.

Every source reduces a raw cell to a tagged ``FieldValue`` and a single
total function, ``coerce``, turns that into the stored cell.  Precedence
when classifying a raw value:

  1. None / missing            → Null        → ""
  2. object with LookupValue   → Lookup      → that value
  3. object with Email         → Person      → that value
  4. list / tuple              → Multi       → elements joined with "; "
  5. ISO-8601 date-time string → DateTime    → "M/D/YYYY, h:mm:ss AM"
  6. anything else             → Scalar      → str(value) or the primitive
"""

from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Iterable, List, Mapping, Optional, Sequence, Union

Cell = Union[str, int, float, bool]

MULTI_VALUE_SEPARATOR = "; "
_ISO_DATETIME_PREFIX = re.compile(r"^\d{4}-\d{2}-\d{2}T")


class FieldKind(str, Enum):
    NULL = "null"
    SCALAR = "scalar"
    LOOKUP = "lookup"
    PERSON = "person"
    MULTI = "multi"
    DATETIME = "datetime"


@dataclass(frozen=True)
class FieldValue:
    kind: FieldKind
    value: Any = None

    @classmethod
    def null(cls) -> "FieldValue":
        return cls(FieldKind.NULL)

    @classmethod
    def scalar(cls, value: Cell) -> "FieldValue":
        return cls(FieldKind.SCALAR, value)

    @classmethod
    def lookup(cls, value: str) -> "FieldValue":
        return cls(FieldKind.LOOKUP, value)

    @classmethod
    def person(cls, email: str) -> "FieldValue":
        return cls(FieldKind.PERSON, email)

    @classmethod
    def multi(cls, values: Sequence[Any]) -> "FieldValue":
        return cls(FieldKind.MULTI, tuple(values))

    @classmethod
    def datetime(cls, iso: str) -> "FieldValue":
        return cls(FieldKind.DATETIME, iso)


def format_datetime(iso: str) -> str:
    """
    Render an ISO-8601 date-time the way an en-US locale display would:
    ``2024-01-05T10:00:00`` → ``1/5/2024, 10:00:00 AM``.  Aware values are
    shown in server-local time.  Unparseable input is returned unchanged.
    """
    text = iso.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        return iso
    if dt.tzinfo is not None:
        dt = dt.astimezone()
    hour12 = dt.hour % 12 or 12
    meridiem = "AM" if dt.hour < 12 else "PM"
    return f"{dt.month}/{dt.day}/{dt.year}, {hour12}:{dt.minute:02d}:{dt.second:02d} {meridiem}"


def _unwrap_numpy(value: Any) -> Any:
    # numpy / pandas scalars expose .item() to get the Python primitive
    if hasattr(value, "item") and not isinstance(value, (str, bytes, list, tuple, dict, date)):
        try:
            return value.item()
        except (TypeError, ValueError):
            return value
    return value


def classify(value: Any, *, stringify: bool = True) -> FieldValue:
    """
    Tag a raw value.  ``stringify=False`` keeps numbers and booleans as
    primitives (relational, dump and spreadsheet sources); Graph list
    fields are always stringified.
    """
    value = _unwrap_numpy(value)

    if value is None or (isinstance(value, float) and math.isnan(value)):
        return FieldValue.null()

    if isinstance(value, Mapping):
        if value.get("LookupValue"):
            return FieldValue.lookup(value["LookupValue"])
        if value.get("Email"):
            return FieldValue.person(value["Email"])
        return FieldValue.scalar(json.dumps(value, default=str))

    if isinstance(value, (list, tuple)):
        return FieldValue.multi([classify(item, stringify=stringify) for item in value])

    if isinstance(value, datetime):
        return FieldValue.datetime(value.isoformat())

    if isinstance(value, str):
        if _ISO_DATETIME_PREFIX.match(value):
            return FieldValue.datetime(value)
        return FieldValue.scalar(value)

    if stringify:
        if isinstance(value, bool):
            # lowercase, as the dashboards expect
            return FieldValue.scalar("true" if value else "false")
        return FieldValue.scalar(str(value))

    if isinstance(value, (bool, int, float)):
        return FieldValue.scalar(value)
    if isinstance(value, Decimal):
        return FieldValue.scalar(float(value) if value.is_finite() else str(value))
    if isinstance(value, date):
        return FieldValue.scalar(value.isoformat())
    if isinstance(value, (bytes, bytearray, memoryview)):
        return FieldValue.scalar(bytes(value).decode("utf-8", errors="replace"))
    return FieldValue.scalar(str(value))


def coerce(field_value: FieldValue) -> Cell:
    """The one coercion from a tagged value to a stored cell."""
    kind = field_value.kind
    if kind is FieldKind.NULL:
        return ""
    if kind in (FieldKind.LOOKUP, FieldKind.PERSON):
        return str(field_value.value)
    if kind is FieldKind.MULTI:
        return MULTI_VALUE_SEPARATOR.join(str(coerce(item)) for item in field_value.value)
    if kind is FieldKind.DATETIME:
        return format_datetime(field_value.value)
    return field_value.value


def graph_field(value: Any) -> FieldValue:
    return classify(value, stringify=True)


def primitive_field(value: Any) -> FieldValue:
    return classify(value, stringify=False)


FieldExtractor = Callable[[Any], FieldValue]


# ── Table shape ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ColumnSpec:
    name: str
    display_name: Optional[str] = None
    type: Optional[str] = None
    required: bool = False

    @property
    def header(self) -> str:
        return self.display_name or self.name

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "displayName": self.display_name,
            "type": self.type,
            "required": self.required,
        }


@dataclass
class NormalizedTable:
    headers: List[str]
    rows: List[List[Cell]] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.rows)

    @property
    def column_count(self) -> int:
        return len(self.headers)

    @property
    def is_empty(self) -> bool:
        return not self.rows

    def as_array(self) -> List[List[Cell]]:
        """Header row first, then data rows: the persisted representation."""
        return [list(self.headers), *self.rows]


def normalize_table(
    items: Iterable[Mapping[str, Any]],
    columns: Sequence[ColumnSpec],
    extractor: FieldExtractor = graph_field,
) -> NormalizedTable:
    """
    Project every item onto *columns*.  Each output row has exactly
    ``len(columns)`` cells; fields an item lacks become "".
    """
    headers = [col.header for col in columns]
    names = [col.name for col in columns]
    rows = [[coerce(extractor(item.get(name))) for name in names] for item in items]
    return NormalizedTable(headers=headers, rows=rows)


def positional_columns(header_row: Sequence[Any], width: int) -> List[ColumnSpec]:
    """
    Columns for array-shaped sources (spreadsheets, dumps): machine name is
    the position, display name the header cell or ``ColumnN`` when blank.
    """
    columns = []
    for i in range(width):
        label = header_row[i] if i < len(header_row) else None
        label = "" if label is None else str(label).strip()
        columns.append(ColumnSpec(name=str(i), display_name=label or f"Column{i + 1}"))
    return columns


def rows_to_items(rows: Iterable[Sequence[Any]]) -> List[dict]:
    """Key each positional row by column index for ``normalize_table``."""
    return [{str(i): cell for i, cell in enumerate(row)} for row in rows]
