"""
Tabular Reader.

Reads supplier files into a rectangular-ish ``Grid`` of string cells:

* delimited text (``.csv``, ``.tsv``, ``.txt``) with encoding fallback and
  ``csv.Sniffer`` delimiter detection,
* Excel workbooks (``.xlsx``, ``.xlsm``) through ``openpyxl``, first sheet
  only, cached formula values,
* pandas DataFrames via ``TabularReader.from_dataframe``.

Every failure surfaces as ``ExternalReadError``: the conversion cannot go on
without rows, so nothing is isolated per row here.
"""

from __future__ import annotations

import csv
import io
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import IO, Any, List, Optional, Union

import openpyxl

from product_mapper.errors import ExternalReadError
from product_mapper.logging_setup import get_logger

logger = get_logger("reader")

_TEXT_EXTENSIONS = {".csv", ".tsv", ".txt"}
_EXCEL_EXTENSIONS = {".xlsx", ".xlsm"}

_ENCODINGS = ["utf-8-sig", "utf-8", "cp1252", "latin-1"]
_DELIMITERS = ",;\t|"

Source = Union[str, Path, IO[bytes], IO[str]]


@dataclass
class Grid:
    """Raw string cells, one list per source row."""

    rows: List[List[str]] = field(default_factory=list)
    source_name: str = ""

    @property
    def row_count(self) -> int:
        return len(self.rows)

    @property
    def column_count(self) -> int:
        return max((len(r) for r in self.rows), default=0)

    def row(self, index: int) -> List[str]:
        return self.rows[index] if 0 <= index < len(self.rows) else []

    def header(self, index: int) -> List[str]:
        """Cells of the header row at *index*; empty for ``-1``."""
        return self.row(index) if index >= 0 else []

    def raw_line(self, index: int) -> str:
        return ",".join(self.row(index))


class TabularReader:
    """Format-dispatching file reader."""

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def read(self, source: Source, extension: Optional[str] = None) -> Grid:
        """Read *source* into a ``Grid``.

        Parameters
        ----------
        source:
            File path, or a binary / text stream.
        extension:
            Format hint such as ``".xlsx"``; required for streams that are
            not CSV.

        Raises
        ------
        ExternalReadError
            File not found, unsupported format, unreadable or empty content.
        """
        name = self._source_name(source)
        ext = (extension or Path(name).suffix or ".csv").lower()
        if not ext.startswith("."):
            ext = "." + ext

        if isinstance(source, (str, Path)) and not Path(source).exists():
            raise ExternalReadError(f"File not found: {source}")

        if ext in _EXCEL_EXTENSIONS:
            rows = self._read_excel(source)
        elif ext in _TEXT_EXTENSIONS:
            rows = self._read_delimited(source, tab=ext == ".tsv")
        else:
            raise ExternalReadError(f"Unsupported file format: {ext!r} ({name})")

        if not any(any(cell.strip() for cell in row) for row in rows):
            raise ExternalReadError(f"No data found in {name}")

        grid = Grid(rows=rows, source_name=name)
        logger.info(
            "Read %s: %d rows x %d columns", name, grid.row_count, grid.column_count
        )
        return grid

    @staticmethod
    def from_dataframe(df: Any, include_header: bool = True) -> Grid:
        """Build a ``Grid`` from a pandas DataFrame.

        With *include_header* the column labels become row 0, matching the
        default ``header_row=0`` layout.
        """
        import pandas as pd  # lazy, optional dependency

        if not isinstance(df, pd.DataFrame):
            raise TypeError(f"Expected a pandas DataFrame, got {type(df).__name__}")

        rows: List[List[str]] = []
        if include_header:
            rows.append([_cell_to_text(c) for c in df.columns])
        for values in df.itertuples(index=False, name=None):
            rows.append(["" if pd.isna(v) else _cell_to_text(v) for v in values])
        return Grid(rows=rows, source_name="<dataframe>")

    # ------------------------------------------------------------------ #
    # Formats
    # ------------------------------------------------------------------ #

    def _read_delimited(self, source: Source, tab: bool = False) -> List[List[str]]:
        text = self._decode(source)
        if not text.strip():
            return []

        if tab:
            delimiter = "\t"
        else:
            sample = "\n".join(text.splitlines()[:10])
            try:
                delimiter = csv.Sniffer().sniff(sample, delimiters=_DELIMITERS).delimiter
            except csv.Error:
                delimiter = ","
                logger.debug("Delimiter sniffing failed; using ','")

        try:
            return [
                [cell.strip() for cell in row]
                for row in csv.reader(io.StringIO(text), delimiter=delimiter)
            ]
        except csv.Error as exc:
            raise ExternalReadError(f"Malformed delimited file: {exc}") from exc

    def _decode(self, source: Source) -> str:
        if isinstance(source, (str, Path)):
            try:
                data: Union[bytes, str] = Path(source).read_bytes()
            except OSError as exc:
                raise ExternalReadError(f"Cannot open {source}: {exc}") from exc
        else:
            data = source.read()

        if isinstance(data, str):
            return data
        for encoding in _ENCODINGS:
            try:
                return data.decode(encoding)
            except UnicodeDecodeError:
                continue
        raise ExternalReadError("Could not decode file with any supported encoding")

    def _read_excel(self, source: Source) -> List[List[str]]:
        try:
            wb = openpyxl.load_workbook(source, data_only=True, read_only=True)
        except Exception as exc:  # openpyxl raises assorted zip / xml errors
            raise ExternalReadError(f"Cannot open workbook: {exc}") from exc

        try:
            ws = wb.worksheets[0] if wb.worksheets else None
            if ws is None:
                return []
            logger.debug("Reading sheet %r", ws.title)
            return [
                [_cell_to_text(v) for v in row]
                for row in ws.iter_rows(values_only=True)
            ]
        finally:
            wb.close()

    @staticmethod
    def _source_name(source: Source) -> str:
        if isinstance(source, (str, Path)):
            return str(source)
        return str(getattr(source, "name", "<stream>"))


def _cell_to_text(value: Any) -> str:
    """Render a spreadsheet cell the way a user sees it."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value).strip()
