"""
Unit tests for the RecordValidator.
"""

from __future__ import annotations

import math

import pytest

from product_mapper.config import ValidationConfig
from product_mapper.schema import Record
from product_mapper.validator import RecordValidator


def _make_record(code: str = "12345", name: str = "Blu Mediterraneo", **kwargs) -> Record:
    return Record(code=code, name=name, **kwargs)


@pytest.fixture
def validator() -> RecordValidator:
    return RecordValidator(config=ValidationConfig())


@pytest.fixture
def strict_validator() -> RecordValidator:
    return RecordValidator(config=ValidationConfig(
        max_code_length=10,
        require_positive_size=True,
    ))


# ======================================================================
# Lengths
# ======================================================================

class TestLengths:
    def test_clean_record(self, validator: RecordValidator) -> None:
        report = validator.validate(_make_record(size=30.0))
        assert report.is_valid
        assert report.warnings == []

    def test_code_too_long(self, strict_validator: RecordValidator) -> None:
        report = strict_validator.validate(_make_record(code="X" * 11, size=30.0))
        assert not report.is_valid
        assert report.errors[0][0] == "code"

    def test_name_too_long(self, validator: RecordValidator) -> None:
        report = validator.validate(_make_record(name="N" * 201))
        assert [f for f, _ in report.errors] == ["name"]


# ======================================================================
# Code shape
# ======================================================================

class TestCode:
    def test_whitespace_is_warning(self, validator: RecordValidator) -> None:
        report = validator.validate(_make_record(code="123 456"))
        assert report.is_valid
        assert len(report.warnings) == 1


# ======================================================================
# Size
# ======================================================================

class TestSize:
    def test_negative_size(self, validator: RecordValidator) -> None:
        report = validator.validate(_make_record(size=-1.0))
        assert report.errors == [("size", "Size cannot be negative: -1.0")]

    def test_nan_size(self, validator: RecordValidator) -> None:
        report = validator.validate(_make_record(size=math.nan))
        assert not report.is_valid

    def test_infinite_size(self, validator: RecordValidator) -> None:
        report = validator.validate(_make_record(size=math.inf))
        assert not report.is_valid

    def test_zero_size_allowed_by_default(self, validator: RecordValidator) -> None:
        assert validator.validate(_make_record(size=0.0)).is_valid

    def test_zero_size_rejected_when_required(
        self, strict_validator: RecordValidator
    ) -> None:
        report = strict_validator.validate(_make_record(size=0.0))
        assert report.errors == [("size", "Size is missing")]
