"""
Field Normalization Layer.

Turns raw supplier cells into typed values. Every public method is
deterministic and returns ``(value, warnings)``; blank or unrecognised input
yields an explicit default and a warning, never an exception.

Unit inference precedence (a contract, not an accident):

1. ounce markers: ``fl oz``, ``fluid ounce(s)``, ``ounce(s)``, ``oz``
2. milliliter markers: ``ml``, ``milliliter(s)``, ``millilitre(s)``
3. gram markers: ``g``, ``gr``, ``gram(s)``

A marker only counts when it is not glued to other letters, so ``30ML``
and ``1.7oz`` match while ``html`` or ``gold`` do not. Default is ``ml``.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any, List, Optional, Tuple, Type

from product_mapper.dictionaries import KeywordDictionary, ParserConfiguration
from product_mapper.errors import FieldNormalizationError
from product_mapper.logging_setup import get_logger
from product_mapper.schema import (
    Audience,
    Concentration,
    FieldType,
    ProductForm,
    Unit,
    parse_variant,
)

logger = get_logger("normalizer")


def _marker(alternatives: str) -> re.Pattern:
    return re.compile(rf"(?<![a-z])(?:{alternatives})(?![a-z])")


# Ordered: first hit wins
_UNIT_MARKERS: List[Tuple[Unit, re.Pattern]] = [
    (Unit.OZ, _marker(r"fl\.?\s*oz|fluid\s+ounces?|ounces?|oz")),
    (Unit.ML, _marker(r"ml|millilit(?:er|re)s?")),
    (Unit.G, _marker(r"grams?|gr|g")),
]

_NUMBER_RE = re.compile(r"\d+(?:[.,]\d+)?")
_QUOTES_RE = re.compile(r"[\"'`‘’“”]")
_MULTI_SPACE_RE = re.compile(r"\s+")
_EXCEL_INT_RE = re.compile(r"^(\d+)\.0+$")

_TRUE_TOKENS = {"yes", "y", "true", "1", "none", "x"}

# Codes longer than this that contain spaces carry description text too
_COMPLEX_CODE_LENGTH = 20
_BARCODE_MIN_DIGITS = 6


class FieldNormalizer:
    """Stateless per-field normaliser.

    Parameters
    ----------
    parser_config:
        Supplies the concentration / form / audience keyword dictionaries.
        The built-in defaults are used when omitted.
    """

    def __init__(self, parser_config: Optional[ParserConfiguration] = None) -> None:
        self._parser_config = parser_config or ParserConfiguration.create_default()

    # ------------------------------------------------------------------ #
    # Numeric
    # ------------------------------------------------------------------ #

    def normalize_size(self, raw: Any) -> Tuple[float, List[str]]:
        """Leading numeric token of *raw*, or ``0.0``."""
        warnings: List[str] = []
        try:
            return self._parse_number(raw), warnings
        except FieldNormalizationError as exc:
            warnings.append(str(exc))
            logger.debug("normalize_size: %s; defaulting to 0", exc)
            return 0.0, warnings

    def infer_unit(self, raw: Any) -> Tuple[Unit, List[str]]:
        """Unit of measure by marker precedence, defaulting to ``ml``."""
        warnings: List[str] = []
        text = _text(raw).lower()
        for unit, pattern in _UNIT_MARKERS:
            if pattern.search(text):
                return unit, warnings
        if text:
            warnings.append(f"No unit marker in {text!r}; assuming ml")
        return Unit.ML, warnings

    def has_unit_marker(self, raw: Any) -> bool:
        text = _text(raw).lower()
        return any(p.search(text) for _, p in _UNIT_MARKERS)

    # ------------------------------------------------------------------ #
    # Tagged variants
    # ------------------------------------------------------------------ #

    def normalize_concentration(self, raw: Any) -> Tuple[Concentration, List[str]]:
        return self._variant(  # type: ignore[return-value]
            raw, self._parser_config.concentrations, Concentration
        )

    def normalize_form(self, raw: Any) -> Tuple[ProductForm, List[str]]:
        return self._variant(  # type: ignore[return-value]
            raw, self._parser_config.forms, ProductForm
        )

    def normalize_audience(self, raw: Any) -> Tuple[Audience, List[str]]:
        return self._variant(  # type: ignore[return-value]
            raw, self._parser_config.audiences, Audience
        )

    # ------------------------------------------------------------------ #
    # Text / flags
    # ------------------------------------------------------------------ #

    def clean_code(self, raw: Any) -> Tuple[str, List[str]]:
        text = _QUOTES_RE.sub("", _text(raw)).strip()
        m = _EXCEL_INT_RE.match(text)
        if m:
            text = m.group(1)
        return text, [] if text else ["Code is empty"]

    def split_code(self, raw: Any) -> Tuple[str, str]:
        """Separate a code from description text sharing the same cell.

        Long cells with spaces keep the first word of six or more digits
        (a barcode) as the code, else the first word. The remaining words
        are returned as description text.
        """
        text, _ = self.clean_code(raw)
        if " " not in text or len(text) <= _COMPLEX_CODE_LENGTH:
            return text, ""

        words = text.split()
        chosen = next(
            (w for w in words if w.isdigit() and len(w) >= _BARCODE_MIN_DIGITS),
            words[0],
        )
        rest = list(words)
        rest.remove(chosen)
        return chosen, " ".join(rest)

    def clean_name(self, raw: Any) -> Tuple[str, List[str]]:
        text = _QUOTES_RE.sub("", _text(raw))
        text = _MULTI_SPACE_RE.sub(" ", text).strip()
        return text, [] if text else ["Name is empty"]

    def clean_country(self, raw: Any) -> Tuple[str, List[str]]:
        return _MULTI_SPACE_RE.sub(" ", _text(raw)).strip(), []

    def normalize_flag(self, raw: Any) -> Tuple[bool, List[str]]:
        """``True`` for yes-like tokens, or any text mentioning ``free``."""
        text = _text(raw).lower()
        if not text:
            return False, []
        return ("free" in text or text in _TRUE_TOKENS), []

    # ------------------------------------------------------------------ #
    # Dispatch
    # ------------------------------------------------------------------ #

    def normalize_field(self, target: FieldType, raw: Any) -> Tuple[Any, List[str]]:
        """Normalise *raw* for *target* using the matching per-field method."""
        if target is FieldType.CODE:
            return self.clean_code(raw)
        if target is FieldType.NAME:
            return self.clean_name(raw)
        if target is FieldType.BRAND:
            return self.clean_name(raw)
        if target is FieldType.CONCENTRATION:
            return self.normalize_concentration(raw)
        if target is FieldType.FORM:
            return self.normalize_form(raw)
        if target is FieldType.AUDIENCE:
            return self.normalize_audience(raw)
        if target is FieldType.SIZE:
            return self.normalize_size(raw)
        if target is FieldType.UNIT:
            return self.infer_unit(raw)
        if target in (FieldType.LIL_FREE, FieldType.CONFIRMED):
            return self.normalize_flag(raw)
        if target is FieldType.COUNTRY_OF_ORIGIN:
            return self.clean_country(raw)
        return _text(raw).strip(), []

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    @staticmethod
    def _parse_number(raw: Any) -> float:
        if isinstance(raw, bool):
            raise FieldNormalizationError("size", raw, "boolean is not a size")
        if isinstance(raw, (int, float)):
            if raw < 0:
                raise FieldNormalizationError("size", raw, "negative size")
            return float(raw)
        text = _text(raw)
        m = _NUMBER_RE.search(text)
        if not m:
            raise FieldNormalizationError("size", raw, "no numeric token")
        return float(m.group(0).replace(",", "."))

    @staticmethod
    def _variant(
        raw: Any, dictionary: KeywordDictionary, enum_cls: Type[Enum]
    ) -> Tuple[Enum, List[str]]:
        unknown = enum_cls["UNKNOWN"]  # type: ignore[misc]
        text = _text(raw).strip()
        if not text:
            return unknown, []

        hit = dictionary.lookup(text)
        if hit is None:
            hit = parse_variant(enum_cls, text)
        if hit is None:
            found = dictionary.search(text)
            hit = found[1] if found else None
        if hit is None or hit is unknown:
            logger.debug("No %s keyword in %r", enum_cls.__name__, text)
            return unknown, [f"Unrecognised {enum_cls.__name__.lower()}: {text!r}"]
        return hit, []


def _text(raw: Any) -> str:
    if raw is None:
        return ""
    return str(raw)

