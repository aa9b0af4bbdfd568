"""
Unit tests for the FileConfiguration column-mapping layer.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from product_mapper.errors import ConfigurationError
from product_mapper.file_config import (
    NO_HEADER,
    FileConfiguration,
    load_file_configuration,
)
from product_mapper.schema import FieldType


@pytest.fixture
def layout() -> FileConfiguration:
    return FileConfiguration(
        header_row=0,
        start_row=1,
        column_mapping={
            0: FieldType.CODE,
            1: FieldType.NAME,
            2: FieldType.IGNORE,
            3: FieldType.SIZE,
        },
        description_columns={4},
        ignored_columns={5},
    )


# ======================================================================
# Validation
# ======================================================================

class TestValidate:
    def test_valid_layout_passes(self, layout: FileConfiguration) -> None:
        layout.validate()

    def test_default_layout_is_valid(self) -> None:
        FileConfiguration.create_default().validate()

    def test_empty_mapping_raises(self) -> None:
        with pytest.raises(ConfigurationError, match="cannot be empty"):
            FileConfiguration().validate()

    def test_missing_code_column_raises(self) -> None:
        cfg = FileConfiguration(column_mapping={0: FieldType.NAME, 1: FieldType.SIZE})
        with pytest.raises(ConfigurationError, match="'code'"):
            cfg.validate()

    def test_duplicate_field_raises(self) -> None:
        cfg = FileConfiguration(
            column_mapping={0: FieldType.CODE, 1: FieldType.NAME, 2: FieldType.NAME}
        )
        with pytest.raises(ConfigurationError, match="name"):
            cfg.validate()

    def test_ignore_may_repeat(self) -> None:
        cfg = FileConfiguration(
            column_mapping={0: FieldType.CODE, 1: FieldType.IGNORE, 2: FieldType.IGNORE}
        )
        cfg.validate()

    def test_start_not_after_header_raises(self) -> None:
        cfg = FileConfiguration(header_row=2, start_row=2, column_mapping={0: FieldType.CODE})
        with pytest.raises(ConfigurationError, match="start_row"):
            cfg.validate()

    def test_no_header_allows_start_zero(self) -> None:
        cfg = FileConfiguration(
            header_row=NO_HEADER, start_row=0, column_mapping={0: FieldType.CODE}
        )
        cfg.validate()

    def test_end_before_start_raises(self) -> None:
        cfg = FileConfiguration(start_row=5, end_row=5, column_mapping={0: FieldType.CODE})
        with pytest.raises(ConfigurationError, match="end_row"):
            cfg.validate()

    def test_negative_column_raises(self) -> None:
        cfg = FileConfiguration(column_mapping={-1: FieldType.CODE})
        with pytest.raises(ConfigurationError, match="Negative"):
            cfg.validate()

    def test_negative_min_columns_raises(self) -> None:
        cfg = FileConfiguration(column_mapping={0: FieldType.CODE}, min_columns=-1)
        with pytest.raises(ConfigurationError, match="min_columns"):
            cfg.validate()


# ======================================================================
# Lookups
# ======================================================================

class TestLookups:
    def test_field_for_mapped(self, layout: FileConfiguration) -> None:
        assert layout.field_for(0) is FieldType.CODE
        assert layout.field_for(3) is FieldType.SIZE

    def test_field_for_unmapped_is_ignore(self, layout: FileConfiguration) -> None:
        assert layout.field_for(42) is FieldType.IGNORE

    def test_is_ignored_by_set(self, layout: FileConfiguration) -> None:
        assert layout.is_ignored(5)

    def test_is_ignored_by_mapping(self, layout: FileConfiguration) -> None:
        assert layout.is_ignored(2)

    def test_mapped_column_not_ignored(self, layout: FileConfiguration) -> None:
        assert not layout.is_ignored(0)

    def test_is_description(self, layout: FileConfiguration) -> None:
        assert layout.is_description(4)
        assert not layout.is_description(0)

    def test_column_for(self, layout: FileConfiguration) -> None:
        assert layout.column_for(FieldType.SIZE) == 3
        assert layout.column_for(FieldType.BRAND) is None


# ======================================================================
# Default layout
# ======================================================================

class TestDefaultLayout:
    def test_thirteen_columns(self) -> None:
        cfg = FileConfiguration.create_default()
        assert cfg.min_columns == 13
        assert cfg.format_name == "SimpleConfig"

    def test_column_positions(self) -> None:
        cfg = FileConfiguration.create_default()
        assert cfg.field_for(0) is FieldType.CODE
        assert cfg.field_for(1) is FieldType.NAME
        assert cfg.field_for(6) is FieldType.SIZE
        assert cfg.field_for(8) is FieldType.COUNTRY_OF_ORIGIN
        assert cfg.description_columns == {10}
        assert cfg.is_ignored(11) and cfg.is_ignored(12)


# ======================================================================
# Serialisation
# ======================================================================

class TestSerialisation:
    def test_round_trip(self, layout: FileConfiguration) -> None:
        rebuilt = FileConfiguration.from_dict(layout.to_dict())
        assert rebuilt.column_mapping == layout.column_mapping
        assert rebuilt.description_columns == layout.description_columns
        assert rebuilt.ignored_columns == layout.ignored_columns

    def test_from_dict_accepts_aliases(self) -> None:
        cfg = FileConfiguration.from_dict(
            {"column_mapping": {"0": "code", "1": "gender", "2": "type"}}
        )
        assert cfg.field_for(1) is FieldType.AUDIENCE
        assert cfg.field_for(2) is FieldType.FORM

    def test_from_dict_unknown_field(self) -> None:
        with pytest.raises(ConfigurationError, match="Unknown field"):
            FileConfiguration.from_dict({"column_mapping": {"0": "colour"}})

    def test_from_dict_bad_column(self) -> None:
        with pytest.raises(ConfigurationError, match="integer"):
            FileConfiguration.from_dict({"column_mapping": {"first": "code"}})

    def test_from_dict_not_object(self) -> None:
        with pytest.raises(ConfigurationError):
            FileConfiguration.from_dict(["code"])  # type: ignore[arg-type]

    def test_load_from_file(self, tmp_path: Path, layout: FileConfiguration) -> None:
        path = tmp_path / "layout.json"
        path.write_text(json.dumps(layout.to_dict()), encoding="utf-8")
        loaded = load_file_configuration(path)
        assert loaded.field_for(0) is FieldType.CODE

    def test_load_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="not found"):
            load_file_configuration(tmp_path / "nope.json")

    def test_load_invalid_json(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="Invalid JSON"):
            load_file_configuration(path)
