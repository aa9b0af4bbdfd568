"""
Column Mapping Engine.

A ``FileConfiguration`` describes one supplier file layout: where the header
sits, which rows hold data, which column carries which semantic field and
which columns hold free-text descriptions for the extraction engine.

All row and column indices are 0-based grid indices. Row numbers reported
in ``RowError`` are 1-based (the spreadsheet line a user sees).
"""

from __future__ import annotations

import json
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Union

from product_mapper.errors import ConfigurationError
from product_mapper.logging_setup import get_logger
from product_mapper.schema import FieldType, field_lookup

logger = get_logger("file_config")

NO_HEADER = -1


@dataclass
class FileConfiguration:
    """Layout of one supplier file.

    Parameters
    ----------
    header_row:
        Index of the header row, or ``NO_HEADER`` (-1) when there is none.
    start_row:
        First data row index.
    end_row:
        Last data row index (inclusive); ``None`` means the grid's last row.
    column_mapping:
        Column index to semantic field.
    description_columns:
        Columns whose text is run through the extraction engine.
    ignored_columns:
        Columns skipped entirely.
    min_columns:
        Rows shorter than this produce a single ``RowError``.
    has_inner_titles:
        Enables skipping of repeated header / section title rows.
    inner_title_threshold:
        Number of header keywords a row must contain to count as a title.
    header_keywords:
        Keywords for the title heuristic; defaults to the header row cells.
    """

    header_row: int = 0
    start_row: int = 1
    end_row: Optional[int] = None
    column_mapping: Dict[int, FieldType] = field(default_factory=dict)
    description_columns: Set[int] = field(default_factory=set)
    ignored_columns: Set[int] = field(default_factory=set)
    min_columns: int = 0
    has_inner_titles: bool = False
    inner_title_threshold: int = 3
    header_keywords: List[str] = field(default_factory=list)
    format_name: str = "Default"

    # ------------------------------------------------------------------ #
    # Contract
    # ------------------------------------------------------------------ #

    def validate(self) -> None:
        """Raise ``ConfigurationError`` when the layout is unusable.

        Checked: non-empty mapping, a ``code`` column, no non-ignore field
        mapped to two columns, and header < start < end row ordering.
        """
        if not self.column_mapping:
            raise ConfigurationError("Column mapping cannot be empty")

        if FieldType.CODE not in self.column_mapping.values():
            raise ConfigurationError(
                "Column mapping must include a column for 'code'"
            )

        counts = Counter(
            f for f in self.column_mapping.values() if f is not FieldType.IGNORE
        )
        duplicates = sorted(f.value for f, n in counts.items() if n > 1)
        if duplicates:
            raise ConfigurationError(
                f"Fields mapped to more than one column: {', '.join(duplicates)}"
            )

        negative = [c for c in self.column_mapping if c < 0]
        if negative:
            raise ConfigurationError(f"Negative column index in mapping: {negative}")

        if self.header_row != NO_HEADER and self.header_row < 0:
            raise ConfigurationError(
                f"header_row must be >= 0 or {NO_HEADER}, got {self.header_row}"
            )

        if self.header_row >= 0 and self.start_row <= self.header_row:
            raise ConfigurationError(
                f"start_row ({self.start_row}) must be greater than "
                f"header_row ({self.header_row})"
            )

        if self.start_row < 0:
            raise ConfigurationError(f"start_row must be >= 0, got {self.start_row}")

        if self.end_row is not None and self.end_row <= self.start_row:
            raise ConfigurationError(
                f"end_row ({self.end_row}) must be greater than "
                f"start_row ({self.start_row})"
            )

        if self.min_columns < 0:
            raise ConfigurationError("min_columns cannot be negative")

        if self.inner_title_threshold < 1:
            raise ConfigurationError("inner_title_threshold must be at least 1")

    # ------------------------------------------------------------------ #
    # Lookups
    # ------------------------------------------------------------------ #

    def field_for(self, column: int) -> FieldType:
        """Mapped field for *column*, or ``FieldType.IGNORE`` when unmapped."""
        return self.column_mapping.get(column, FieldType.IGNORE)

    def is_ignored(self, column: int) -> bool:
        return (
            column in self.ignored_columns
            or self.column_mapping.get(column) is FieldType.IGNORE
        )

    def is_description(self, column: int) -> bool:
        return column in self.description_columns and column not in self.ignored_columns

    def column_for(self, target: FieldType) -> Optional[int]:
        for column, mapped in self.column_mapping.items():
            if mapped is target:
                return column
        return None

    # ------------------------------------------------------------------ #
    # Construction / serialisation
    # ------------------------------------------------------------------ #

    @classmethod
    def create_default(cls) -> "FileConfiguration":
        """The common 13-column supplier layout.

        Column 9 is unused, 10 holds the free-text description and the
        trailing two columns are empty in practice.
        """
        return cls(
            header_row=0,
            start_row=1,
            format_name="SimpleConfig",
            min_columns=13,
            column_mapping={
                0: FieldType.CODE,
                1: FieldType.NAME,
                2: FieldType.BRAND,
                3: FieldType.CONCENTRATION,
                4: FieldType.FORM,
                5: FieldType.AUDIENCE,
                6: FieldType.SIZE,
                7: FieldType.LIL_FREE,
                8: FieldType.COUNTRY_OF_ORIGIN,
            },
            description_columns={10},
            ignored_columns={11, 12},
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FileConfiguration":
        """Build a configuration from its JSON representation.

        ``column_mapping`` keys may be ints or numeric strings; values are
        field names (``"code"``, ``"type"``, ``"gender"``...).
        """
        if not isinstance(data, dict):
            raise ConfigurationError(
                f"File configuration must be a JSON object, got {type(data).__name__}"
            )

        mapping: Dict[int, FieldType] = {}
        for raw_col, raw_field in (data.get("column_mapping") or {}).items():
            try:
                col = int(raw_col)
            except (TypeError, ValueError) as exc:
                raise ConfigurationError(
                    f"Column index must be an integer, got {raw_col!r}"
                ) from exc
            target = field_lookup(str(raw_field))
            if target is None:
                raise ConfigurationError(
                    f"Unknown field {raw_field!r} for column {col}"
                )
            mapping[col] = target

        try:
            end_row = data.get("end_row")
            return cls(
                header_row=int(data.get("header_row", 0)),
                start_row=int(data.get("start_row", 1)),
                end_row=None if end_row in (None, -1) else int(end_row),
                column_mapping=mapping,
                description_columns={int(c) for c in data.get("description_columns", [])},
                ignored_columns={int(c) for c in data.get("ignored_columns", [])},
                min_columns=int(data.get("min_columns", 0)),
                has_inner_titles=bool(data.get("has_inner_titles", False)),
                inner_title_threshold=int(data.get("inner_title_threshold", 3)),
                header_keywords=[str(k) for k in data.get("header_keywords", [])],
                format_name=str(data.get("format_name", "Default")),
            )
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Malformed file configuration: {exc}") from exc

    def to_dict(self) -> Dict[str, Any]:
        return {
            "format_name": self.format_name,
            "header_row": self.header_row,
            "start_row": self.start_row,
            "end_row": self.end_row,
            "column_mapping": {
                str(c): f.value for c, f in sorted(self.column_mapping.items())
            },
            "description_columns": sorted(self.description_columns),
            "ignored_columns": sorted(self.ignored_columns),
            "min_columns": self.min_columns,
            "has_inner_titles": self.has_inner_titles,
            "inner_title_threshold": self.inner_title_threshold,
            "header_keywords": list(self.header_keywords),
        }


def load_file_configuration(source: Union[str, Path]) -> FileConfiguration:
    """Load a ``FileConfiguration`` from a JSON file.

    Raises
    ------
    ConfigurationError
        The file is missing, is not valid JSON or has the wrong shape.
    """
    path = Path(source)
    try:
        with open(path, encoding="utf-8") as fh:
            data = json.load(fh)
    except FileNotFoundError as exc:
        raise ConfigurationError(f"File configuration not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Invalid JSON in {path}: {exc}") from exc

    config = FileConfiguration.from_dict(data)
    logger.info(
        "Loaded layout %r from %s (%d mapped columns)",
        config.format_name,
        path,
        len(config.column_mapping),
    )
    return config
