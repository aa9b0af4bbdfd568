"""
Exception taxonomy.

Configuration and read errors are fatal and escalate out of the pipeline
before (or instead of) row processing. Row-scoped errors are caught by the
pipeline and aggregated into ``ConversionResult.errors``.
"""

from __future__ import annotations

from typing import Optional


class ProductMapperError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(ProductMapperError):
    """Invalid file layout, parser configuration or malformed config source."""


class ExternalReadError(ProductMapperError):
    """The tabular source could not be opened or yielded no rows."""


class RowParseError(ProductMapperError):
    """A single row could not be converted. Never aborts the batch."""

    def __init__(
        self,
        message: str,
        row_number: int,
        field: str = "",
        value: str = "",
        raw_line: str = "",
    ) -> None:
        super().__init__(message)
        self.message = message
        self.row_number = row_number
        self.field = field
        self.value = value
        self.raw_line = raw_line


class FieldNormalizationError(ProductMapperError):
    """A raw cell could not be typed. Converted into a typed default."""

    def __init__(self, field: str, raw: object, reason: str = "") -> None:
        detail = f": {reason}" if reason else ""
        super().__init__(f"Cannot normalise {field} from {raw!r}{detail}")
        self.field = field
        self.raw = raw


class AmbiguityUnresolved(ProductMapperError):
    """No resolver is configured, or the resolver chose to skip."""

    def __init__(self, field: str, row_number: Optional[int] = None) -> None:
        where = f" (row {row_number})" if row_number is not None else ""
        super().__init__(f"Ambiguous value for '{field}' left at default{where}")
        self.field = field
        self.row_number = row_number
