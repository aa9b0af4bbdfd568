"""
Result serialisation.

Turns a ``ConversionResult`` into the text formats the CLI writes: the full
JSON document, a CSV of valid records, and a CSV of per-row diagnostics that
points a user at the exact source lines to fix.
"""

from __future__ import annotations

import csv
import json
from io import StringIO

from product_mapper.schema import ConversionResult

_RECORD_COLUMNS = [
    "code", "name", "brand_id", "brand_name", "concentration", "form",
    "audience", "size", "unit", "lil_free", "country_of_origin",
    "confirmed", "remarks",
]

_ERROR_COLUMNS = ["row", "field", "value", "message", "raw_line"]


def to_json(result: ConversionResult, indent: int = 2) -> str:
    """Serialise the whole result to a JSON string."""
    return json.dumps(result.to_dict(), indent=indent, ensure_ascii=False)


def records_to_csv(result: ConversionResult) -> str:
    """Valid records as CSV text (errors excluded)."""
    buf = StringIO()
    writer = csv.writer(buf)
    writer.writerow(_RECORD_COLUMNS)
    for record in result.valid_records:
        data = record.to_dict()
        data["remarks"] = "; ".join(record.remarks)
        data["brand_id"] = "" if record.brand_id is None else record.brand_id
        writer.writerow([data[c] for c in _RECORD_COLUMNS])
    return buf.getvalue()


def errors_to_csv(result: ConversionResult) -> str:
    """Per-row diagnostics as CSV text."""
    buf = StringIO()
    writer = csv.writer(buf)
    writer.writerow(_ERROR_COLUMNS)
    for error in result.errors:
        data = error.to_dict()
        writer.writerow([data[c] for c in _ERROR_COLUMNS])
    return buf.getvalue()
