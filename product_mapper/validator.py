"""
Validation Layer.

Post-assembly checks on a single ``Record`` before it is accepted as valid.
Records without code or name never reach this layer: the pipeline drops them
as a deliberate policy.

Checks performed
----------------
1. **Lengths**: code and name within the configured limits.
2. **Size sanity**: finite and not negative; optionally strictly positive.
3. **Code shape**: no embedded whitespace left after cleaning.
"""

from __future__ import annotations

import math

from product_mapper.config import ValidationConfig
from product_mapper.logging_setup import get_logger
from product_mapper.schema import FieldType, Record

logger = get_logger("validator")


class ValidationReport:
    """Accumulates ``(field, message)`` errors and plain warnings."""

    def __init__(self) -> None:
        self.errors: list[tuple[str, str]] = []
        self.warnings: list[str] = []

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, field_name: str, msg: str) -> None:
        self.errors.append((field_name, msg))
        logger.debug("Validation ERROR [%s]: %s", field_name, msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)
        logger.debug("Validation WARNING: %s", msg)


class RecordValidator:
    """Validates assembled records.

    Parameters
    ----------
    config:
        Limits and behaviour flags.
    """

    def __init__(self, config: ValidationConfig) -> None:
        self._config = config

    def validate(self, record: Record) -> ValidationReport:
        """Run all checks and return a ``ValidationReport``."""
        report = ValidationReport()
        self._check_lengths(record, report)
        self._check_code(record, report)
        self._check_size(record, report)
        return report

    # ------------------------------------------------------------------ #
    # Individual checks
    # ------------------------------------------------------------------ #

    def _check_lengths(self, record: Record, report: ValidationReport) -> None:
        if len(record.code) > self._config.max_code_length:
            report.add_error(
                FieldType.CODE.value,
                f"Code longer than {self._config.max_code_length} characters",
            )
        if len(record.name) > self._config.max_name_length:
            report.add_error(
                FieldType.NAME.value,
                f"Name longer than {self._config.max_name_length} characters",
            )

    def _check_code(self, record: Record, report: ValidationReport) -> None:
        if any(ch.isspace() for ch in record.code.strip()):
            report.add_warning(f"Code {record.code!r} contains whitespace")

    def _check_size(self, record: Record, report: ValidationReport) -> None:
        size = record.size
        if math.isnan(size) or math.isinf(size):
            report.add_error(FieldType.SIZE.value, f"Size is not finite: {size}")
            return
        if size < 0:
            report.add_error(FieldType.SIZE.value, f"Size cannot be negative: {size}")
        elif size == 0 and self._config.require_positive_size:
            report.add_error(FieldType.SIZE.value, "Size is missing")
