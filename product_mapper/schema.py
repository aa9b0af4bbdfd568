"""
Product schema and data models.

Defines the closed attribute domains (tagged variants with an explicit
``UNKNOWN``), the semantic fields a supplier column can carry, and the typed
structures that flow through the conversion pipeline.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Type


# ---------------------------------------------------------------------------
# Semantic fields
# ---------------------------------------------------------------------------

class FieldType(str, Enum):
    """
    Every semantic field a supplier column (or extraction rule) can target.

    ``IGNORE`` is the sentinel returned for unmapped columns and may be mapped
    to any number of columns.
    """

    CODE = "code"
    NAME = "name"
    BRAND = "brand"
    CONCENTRATION = "concentration"
    FORM = "form"
    AUDIENCE = "audience"
    SIZE = "size"
    UNIT = "unit"
    LIL_FREE = "lil_free"
    COUNTRY_OF_ORIGIN = "country_of_origin"
    REMARKS = "remarks"
    ORIGINAL_SOURCE = "original_source"
    CONFIRMED = "confirmed"
    IGNORE = "ignore"


# Loose spellings accepted in layout / rule JSON files
_FIELD_ALIASES: Dict[str, FieldType] = {
    "type": FieldType.FORM,
    "gender": FieldType.AUDIENCE,
    "units": FieldType.UNIT,
    "country": FieldType.COUNTRY_OF_ORIGIN,
    "li_free": FieldType.LIL_FREE,
    "lilfree": FieldType.LIL_FREE,
    "source": FieldType.ORIGINAL_SOURCE,
    "none": FieldType.IGNORE,
}


def field_lookup(name: str) -> Optional[FieldType]:
    """Case-insensitive lookup of a ``FieldType`` by value, name or alias."""
    key = name.strip().lower().replace("-", "_").replace(" ", "_")
    for f in FieldType:
        if f.value == key:
            return f
    return _FIELD_ALIASES.get(key)


# ---------------------------------------------------------------------------
# Closed attribute domains
# ---------------------------------------------------------------------------

class Concentration(str, Enum):
    EDT = "EDT"
    EDP = "EDP"
    PARFUM = "Parfum"
    EDC = "EDC"
    EDF = "EDF"
    UNKNOWN = "Unknown"


class ProductForm(str, Enum):
    SPRAY = "Spray"
    COLOGNE = "Cologne"
    ROLLETTE = "Rollette"
    SPLASH = "Splash"
    SOLID = "Solid"
    OIL = "Oil"
    UNKNOWN = "Unknown"


class Audience(str, Enum):
    UNISEX = "Unisex"
    MALE = "Male"
    FEMALE = "Female"
    UNKNOWN = "Unknown"


class Unit(str, Enum):
    ML = "ml"
    OZ = "oz"
    G = "g"
    UNKNOWN = "unknown"


# Fields whose value is one of the closed domains above
VARIANT_TYPES: Dict[FieldType, Type[Enum]] = {
    FieldType.CONCENTRATION: Concentration,
    FieldType.FORM: ProductForm,
    FieldType.AUDIENCE: Audience,
    FieldType.UNIT: Unit,
}


def parse_variant(enum_cls: Type[Enum], text: Any) -> Optional[Enum]:
    """Resolve *text* to a member of *enum_cls* by value or member name.

    Returns ``None`` instead of raising when nothing matches, and never
    returns the ``UNKNOWN`` member for an unrecognised string.
    """
    if isinstance(text, enum_cls):
        return text
    if text is None:
        return None
    key = str(text).strip().lower()
    if not key:
        return None
    for member in enum_cls:  # type: ignore[attr-defined]
        if member.value.lower() == key or member.name.lower() == key:
            return member
    return None


# ---------------------------------------------------------------------------
# Data models
# ---------------------------------------------------------------------------

# FieldType -> Record attribute
_RECORD_ATTRS: Dict[FieldType, str] = {
    FieldType.CODE: "code",
    FieldType.NAME: "name",
    FieldType.BRAND: "brand_name",
    FieldType.CONCENTRATION: "concentration",
    FieldType.FORM: "form",
    FieldType.AUDIENCE: "audience",
    FieldType.SIZE: "size",
    FieldType.UNIT: "unit",
    FieldType.LIL_FREE: "lil_free",
    FieldType.COUNTRY_OF_ORIGIN: "country_of_origin",
    FieldType.ORIGINAL_SOURCE: "original_source",
    FieldType.CONFIRMED: "confirmed",
}


@dataclass
class Record:
    """One product assembled from one source row."""

    code: str = ""
    name: str = ""
    brand_id: Optional[int] = None
    brand_name: str = ""
    concentration: Concentration = Concentration.UNKNOWN
    form: ProductForm = ProductForm.UNKNOWN
    audience: Audience = Audience.UNKNOWN
    size: float = 0.0
    unit: Unit = Unit.ML
    lil_free: bool = False
    country_of_origin: str = ""
    confirmed: bool = False
    remarks: List[str] = field(default_factory=list)
    original_source: str = ""

    # Bookkeeping filled in while the record is assembled
    field_confidence: Dict[str, float] = field(default_factory=dict)
    assigned: Set[str] = field(default_factory=set)

    @property
    def is_complete(self) -> bool:
        """A record is kept only when both code and name are present."""
        return bool(self.code.strip()) and bool(self.name.strip())

    def is_set(self, field_name: Any) -> bool:
        return _field_key(field_name) in self.assigned

    def mark(self, field_name: Any, confidence: float) -> None:
        key = _field_key(field_name)
        self.assigned.add(key)
        self.field_confidence[key] = confidence

    def assign(self, target: FieldType, value: Any, confidence: float) -> None:
        """Set the attribute behind *target* and record its confidence."""
        attr = _RECORD_ATTRS.get(target)
        if attr is None:
            if target is FieldType.REMARKS:
                self.add_remark(str(value))
            return
        setattr(self, attr, value)
        self.mark(target.value, confidence)

    def add_remark(self, remark: str) -> None:
        if remark and remark not in self.remarks:
            self.remarks.append(remark)

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "name": self.name,
            "brand_id": self.brand_id,
            "brand_name": self.brand_name,
            "concentration": self.concentration.value,
            "form": self.form.value,
            "audience": self.audience.value,
            "size": self.size,
            "unit": self.unit.value,
            "lil_free": self.lil_free,
            "country_of_origin": self.country_of_origin,
            "confirmed": self.confirmed,
            "remarks": list(self.remarks),
            "original_source": self.original_source,
            "field_confidence": {
                k: round(v, 2) for k, v in sorted(self.field_confidence.items())
            },
        }


@dataclass
class RowError:
    """Diagnostic for one failed row. Never turned into a record."""

    row_number: int
    field: str
    value: str
    message: str
    raw_line: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "row": self.row_number,
            "field": self.field,
            "value": self.value,
            "message": self.message,
            "raw_line": self.raw_line,
        }


@dataclass
class ConversionResult:
    """Aggregated outcome of converting one supplier file."""

    valid_records: List[Record] = field(default_factory=list)
    errors: List[RowError] = field(default_factory=list)
    total_processed: int = 0

    # Inner title rows skipped by the heuristic
    skipped_rows: int = 0

    # Records dropped for missing code or name (not errors)
    dropped_records: int = 0

    interactive_decisions: int = 0
    learned_examples: int = 0
    cancelled: bool = False

    @property
    def valid_count(self) -> int:
        return len(self.valid_records)

    @property
    def error_count(self) -> int:
        return len(self.errors)

    def summary(self) -> str:
        text = (
            f"Processed {self.total_processed} row(s): "
            f"{self.valid_count} valid, {self.error_count} error(s), "
            f"{self.dropped_records} dropped, {self.skipped_rows} title row(s) skipped"
        )
        if self.interactive_decisions:
            text += (
                f"; {self.interactive_decisions} decision(s), "
                f"{self.learned_examples} learned"
            )
        if self.cancelled:
            text += " [cancelled]"
        return text

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid_records": [r.to_dict() for r in self.valid_records],
            "errors": [e.to_dict() for e in self.errors],
            "total_processed": self.total_processed,
            "valid_count": self.valid_count,
            "error_count": self.error_count,
            "skipped_rows": self.skipped_rows,
            "dropped_records": self.dropped_records,
            "interactive_decisions": self.interactive_decisions,
            "learned_examples": self.learned_examples,
            "cancelled": self.cancelled,
        }


def _field_key(field_name: Any) -> str:
    # str-mixin enums hash by member name, so bookkeeping keys use the value
    return field_name.value if isinstance(field_name, FieldType) else str(field_name)
