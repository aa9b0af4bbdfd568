"""
Unit tests for the FieldNormalizer.
"""

from __future__ import annotations

import pytest

from product_mapper.normalizer import FieldNormalizer
from product_mapper.schema import (
    Audience,
    Concentration,
    FieldType,
    ProductForm,
    Unit,
)


@pytest.fixture
def normalizer() -> FieldNormalizer:
    return FieldNormalizer()


# ======================================================================
# Size
# ======================================================================

class TestNormalizeSize:
    def test_plain_number(self, normalizer: FieldNormalizer) -> None:
        assert normalizer.normalize_size("100") == (100.0, [])

    def test_number_with_unit(self, normalizer: FieldNormalizer) -> None:
        value, warnings = normalizer.normalize_size("30ml")
        assert value == 30.0
        assert warnings == []

    def test_decimal_comma(self, normalizer: FieldNormalizer) -> None:
        value, _ = normalizer.normalize_size("1,7 oz")
        assert value == pytest.approx(1.7)

    def test_numeric_input(self, normalizer: FieldNormalizer) -> None:
        assert normalizer.normalize_size(50)[0] == 50.0

    def test_no_number_defaults_to_zero(self, normalizer: FieldNormalizer) -> None:
        value, warnings = normalizer.normalize_size("n/a")
        assert value == 0.0
        assert len(warnings) == 1

    def test_blank_defaults_to_zero(self, normalizer: FieldNormalizer) -> None:
        value, warnings = normalizer.normalize_size("")
        assert value == 0.0
        assert warnings

    def test_negative_number_rejected(self, normalizer: FieldNormalizer) -> None:
        value, warnings = normalizer.normalize_size(-5)
        assert value == 0.0
        assert "negative" in warnings[0]

    def test_boolean_rejected(self, normalizer: FieldNormalizer) -> None:
        value, warnings = normalizer.normalize_size(True)
        assert value == 0.0
        assert warnings


# ======================================================================
# Unit inference
# ======================================================================

class TestInferUnit:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("30ML", Unit.ML),
            ("100 ml", Unit.ML),
            ("1.7oz", Unit.OZ),
            ("3.4 FL OZ", Unit.OZ),
            ("1 fluid ounce", Unit.OZ),
            ("50g", Unit.G),
            ("75 grams", Unit.G),
        ],
    )
    def test_markers(self, normalizer: FieldNormalizer, raw: str, expected: Unit) -> None:
        assert normalizer.infer_unit(raw)[0] is expected

    def test_ounce_beats_milliliter(self, normalizer: FieldNormalizer) -> None:
        # "1.7 oz / 50 ml": ounce markers are checked first
        assert normalizer.infer_unit("1.7 oz / 50 ml")[0] is Unit.OZ

    def test_marker_inside_word_ignored(self, normalizer: FieldNormalizer) -> None:
        # "gold" contains "g" and "html" contains "ml", neither is a unit
        unit, warnings = normalizer.infer_unit("gold html edition")
        assert unit is Unit.ML
        assert warnings

    def test_default_is_ml(self, normalizer: FieldNormalizer) -> None:
        assert normalizer.infer_unit("100")[0] is Unit.ML

    def test_has_unit_marker(self, normalizer: FieldNormalizer) -> None:
        assert normalizer.has_unit_marker("30ml")
        assert not normalizer.has_unit_marker("30")


# ======================================================================
# Tagged variants
# ======================================================================

class TestVariants:
    @pytest.mark.parametrize(
        "raw", ["EDT", "edt", "Eau de Toilette", "EAU  DE  TOILETTE"]
    )
    def test_edt_spellings(self, normalizer: FieldNormalizer, raw: str) -> None:
        value, warnings = normalizer.normalize_concentration(raw)
        assert value is Concentration.EDT
        assert warnings == []

    def test_adp_is_parfum(self, normalizer: FieldNormalizer) -> None:
        assert normalizer.normalize_concentration("ADP")[0] is Concentration.PARFUM

    def test_keyword_inside_text(self, normalizer: FieldNormalizer) -> None:
        assert normalizer.normalize_concentration("Blue EDP limited")[0] is Concentration.EDP

    def test_unknown_concentration(self, normalizer: FieldNormalizer) -> None:
        value, warnings = normalizer.normalize_concentration("XYZ")
        assert value is Concentration.UNKNOWN
        assert "Unrecognised" in warnings[0]

    def test_blank_is_unknown_without_warning(self, normalizer: FieldNormalizer) -> None:
        assert normalizer.normalize_concentration("") == (Concentration.UNKNOWN, [])

    def test_form(self, normalizer: FieldNormalizer) -> None:
        assert normalizer.normalize_form("vapo")[0] is ProductForm.SPRAY
        assert normalizer.normalize_form("Roll-on")[0] is ProductForm.ROLLETTE

    def test_audience(self, normalizer: FieldNormalizer) -> None:
        assert normalizer.normalize_audience("Pour Homme")[0] is Audience.MALE
        assert normalizer.normalize_audience("W")[0] is Audience.FEMALE
        assert normalizer.normalize_audience("unisex")[0] is Audience.UNISEX

    def test_enum_value_accepted(self, normalizer: FieldNormalizer) -> None:
        assert normalizer.normalize_audience("Female")[0] is Audience.FEMALE


# ======================================================================
# Text and flags
# ======================================================================

class TestTextFields:
    def test_clean_code_strips_quotes(self, normalizer: FieldNormalizer) -> None:
        assert normalizer.clean_code("'12345'")[0] == "12345"

    def test_clean_code_excel_float(self, normalizer: FieldNormalizer) -> None:
        assert normalizer.clean_code("8011003.0")[0] == "8011003"

    def test_empty_code_warns(self, normalizer: FieldNormalizer) -> None:
        code, warnings = normalizer.clean_code("  ")
        assert code == ""
        assert warnings

    def test_split_simple_code(self, normalizer: FieldNormalizer) -> None:
        assert normalizer.split_code("ABC123") == ("ABC123", "")

    def test_split_complex_code_picks_barcode(self, normalizer: FieldNormalizer) -> None:
        code, rest = normalizer.split_code("ACQ 8028713570018 BLU MEDITERRANEO EDT")
        assert code == "8028713570018"
        assert rest == "ACQ BLU MEDITERRANEO EDT"

    def test_split_complex_code_first_word(self, normalizer: FieldNormalizer) -> None:
        code, rest = normalizer.split_code("ACQ-01 BLU MEDITERRANEO EDT 30")
        assert code == "ACQ-01"
        assert rest == "BLU MEDITERRANEO EDT 30"

    def test_clean_name_collapses_spaces(self, normalizer: FieldNormalizer) -> None:
        assert normalizer.clean_name('  "Blu   Mediterraneo" ')[0] == "Blu Mediterraneo"

    @pytest.mark.parametrize(
        "raw, expected",
        [("yes", True), ("Lilial free", True), ("x", True), ("no", False), ("", False)],
    )
    def test_flag(self, normalizer: FieldNormalizer, raw: str, expected: bool) -> None:
        assert normalizer.normalize_flag(raw)[0] is expected


# ======================================================================
# Dispatch
# ======================================================================

class TestNormalizeField:
    def test_dispatches_by_field(self, normalizer: FieldNormalizer) -> None:
        assert normalizer.normalize_field(FieldType.SIZE, "75ml")[0] == 75.0
        assert normalizer.normalize_field(FieldType.UNIT, "oz")[0] is Unit.OZ
        assert normalizer.normalize_field(FieldType.CONCENTRATION, "EDP")[0] is Concentration.EDP
        assert normalizer.normalize_field(FieldType.LIL_FREE, "yes")[0] is True
        assert normalizer.normalize_field(FieldType.COUNTRY_OF_ORIGIN, " Italy ")[0] == "Italy"
