"""
Rule / Dictionary Extraction Engine.

Parses unstructured description text ("ADP BLU MEDITERRANEO 30ML EDT SPRAY
29.6ml") into structured attributes.

Algorithm
---------
1. Strip every ignore-pattern match from a working copy of the text.
2. Walk the rules in ascending priority. A rule is skipped when its field is
   locked (set from a mapped column), closed by an earlier ``stop_on_match``
   rule, or already set by an earlier rule and the rule lacks
   ``allow_override``. The first regex match is used; each extracted token is
   looked up in the knowledge store first, then in the field's dictionary.
3. Fields still unset, or holding only a raw token, are filled from a
   whole-word dictionary scan. When
   no size survived the ignore patterns, the size rules are retried on the
   raw text at medium confidence.
4. Every field is scored: dictionary or learned hit HIGH, raw token MEDIUM,
   unresolved LOW. LOW fields, plus expected fields that are still missing,
   are reported for the ambiguity step.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple

from product_mapper.config import ExtractionConfig
from product_mapper.dictionaries import ParserConfiguration, ParsingRule
from product_mapper.knowledge import KnowledgeStore
from product_mapper.logging_setup import get_logger
from product_mapper.schema import (
    VARIANT_TYPES,
    FieldType,
    Record,
    Unit,
    field_lookup,
    parse_variant,
)

logger = get_logger("extraction")

_MULTI_SPACE_RE = re.compile(r"\s+")

# Fields the dictionary scan may fill after the rules ran
_SCAN_FIELDS: Tuple[FieldType, ...] = (
    FieldType.CONCENTRATION,
    FieldType.FORM,
    FieldType.AUDIENCE,
    FieldType.BRAND,
)


@dataclass
class FieldExtraction:
    """The value extracted for one field, and how it was obtained."""

    field: FieldType
    value: Any
    confidence: float
    token: str = ""
    source: str = ""  # dictionary | learned | raw | scan | unresolved
    rule: str = ""
    ref_id: Optional[int] = None  # brand id for brand / product-name hits


@dataclass
class ExtractionResult:
    """Everything the engine learned from one piece of text."""

    original_text: str = ""
    cleaned_text: str = ""
    fields: Dict[FieldType, FieldExtraction] = field(default_factory=dict)
    low_confidence: List[FieldType] = field(default_factory=list)
    matched_rules: List[str] = field(default_factory=list)
    applied_knowledge: List[str] = field(default_factory=list)

    def get(self, target: FieldType, default: Any = None) -> Any:
        found = self.fields.get(target)
        return found.value if found is not None else default

    def confidence(self, target: FieldType) -> float:
        found = self.fields.get(target)
        return found.confidence if found is not None else 0.0

    def apply_to(self, record: Record) -> List[FieldType]:
        """Merge into *record* without touching fields it already has.

        Unresolved values are not written; the record keeps its default.
        Returns the fields written.
        """
        written: List[FieldType] = []
        for target, found in self.fields.items():
            if found.source == "unresolved" or record.is_set(target):
                continue
            record.assign(target, found.value, found.confidence)
            if found.ref_id is not None and record.brand_id is None:
                record.brand_id = found.ref_id
            written.append(target)
        return written


class ExtractionEngine:
    """Priority-ordered rule and dictionary extraction.

    Parameters
    ----------
    parser_config:
        Dictionaries, rules and ignore patterns. Held by reference; compiled
        patterns are refreshed whenever its ``version`` changes.
    knowledge:
        Optional learning store consulted before the dictionaries.
    config:
        Confidence levels and the expected-field list.
    """

    def __init__(
        self,
        parser_config: ParserConfiguration,
        knowledge: Optional[KnowledgeStore] = None,
        config: Optional[ExtractionConfig] = None,
    ) -> None:
        self._parser_config = parser_config
        self._knowledge = knowledge
        self._config = config or ExtractionConfig()
        self._compiled_version = -1
        self._rules: List[Tuple[ParsingRule, re.Pattern]] = []
        self._ignore: List[re.Pattern] = []
        self._expected: List[FieldType] = [
            f for f in (field_lookup(name) for name in self._config.expected_fields) if f
        ]

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def clean(self, text: str) -> str:
        """Remove ignore-pattern matches and collapse whitespace."""
        self._ensure_compiled()
        cleaned = _MULTI_SPACE_RE.sub(" ", text or "").strip()
        for pattern in self._ignore:
            cleaned = pattern.sub(" ", cleaned)
            cleaned = _MULTI_SPACE_RE.sub(" ", cleaned).strip()
        return cleaned

    def extract(
        self,
        text: str,
        locked: Iterable[FieldType] = frozenset(),
        only_fields: Optional[Iterable[FieldType]] = None,
    ) -> ExtractionResult:
        """Extract attributes from *text*.

        Parameters
        ----------
        text:
            Free-text description.
        locked:
            Fields already set from mapped columns; never extracted.
        only_fields:
            When given, restrict extraction to these fields.
        """
        result = ExtractionResult(original_text=text or "")
        if not text or not text.strip():
            return result

        locked_set: FrozenSet[FieldType] = frozenset(locked)
        allowed: Optional[FrozenSet[FieldType]] = (
            frozenset(only_fields) if only_fields is not None else None
        )

        def eligible(target: FieldType) -> bool:
            return target not in locked_set and (allowed is None or target in allowed)

        def resolved(target: FieldType) -> bool:
            found = result.fields.get(target)
            return found is not None and found.source != "unresolved"

        result.cleaned_text = self.clean(text)
        closed: set = set()

        # --- Step 2: rules in priority order ------------------------------
        for rule, regex in self._rules:
            target = rule.field
            if not eligible(target) or target in closed:
                continue
            if resolved(target) and not rule.allow_override:
                continue

            m = regex.search(result.cleaned_text)
            if not m:
                continue

            result.matched_rules.append(rule.name)
            for found in self._resolve_match(rule, m, result):
                if found.field is not target and (
                    not eligible(found.field)
                    or (resolved(found.field) and not rule.allow_override)
                ):
                    continue
                result.fields[found.field] = found
                logger.debug(
                    "Rule %s: %s = %r from %r [%s, %.2f]",
                    rule.name,
                    found.field.value,
                    found.value,
                    found.token,
                    found.source,
                    found.confidence,
                )

            if rule.stop_on_match:
                closed.add(target)

        # --- Step 3: dictionary scan for still-unset fields ---------------
        # A raw token (e.g. the first word taken as brand) is only a
        # fallback: a dictionary hit anywhere in the text replaces it.
        for target in _SCAN_FIELDS:
            current = result.fields.get(target)
            if current is not None and current.source not in ("raw", "unresolved"):
                continue
            if eligible(target) and target not in closed:
                found = self._scan(target, result.cleaned_text)
                if found is not None:
                    result.fields[target] = found

        # --- Step 4: size recovery from the raw text ----------------------
        # An ignore pattern may have removed the only size token.
        if eligible(FieldType.SIZE) and FieldType.SIZE not in result.fields:
            self._recover_size(text, result, eligible)

        # --- Step 5: low-confidence report --------------------------------
        threshold = self._config.ambiguity_threshold
        result.low_confidence = [
            f for f, found in result.fields.items() if found.confidence < threshold
        ]
        for target in self._expected:
            if (
                eligible(target)
                and target not in result.fields
                and target not in result.low_confidence
            ):
                result.low_confidence.append(target)

        return result

    # ------------------------------------------------------------------ #
    # Token resolution
    # ------------------------------------------------------------------ #

    def _resolve_match(
        self, rule: ParsingRule, m: re.Match, result: ExtractionResult
    ) -> List[FieldExtraction]:
        tokens = [
            m.group(g).strip()
            for g in rule.groups
            if 0 < g <= (m.re.groups or 0) and m.group(g)
        ]
        if not tokens and (m.re.groups or 0) == 0:
            tokens = [m.group(0).strip()]
        if not tokens:
            return []

        if rule.field is FieldType.SIZE:
            return self._resolve_size(rule, tokens, result)

        token = " ".join(tokens)
        return [self._resolve_token(rule.field, token, rule.name, result)]

    def _resolve_token(
        self,
        target: FieldType,
        token: str,
        rule_name: str,
        result: ExtractionResult,
    ) -> FieldExtraction:
        cfg = self._config
        value, source, entry_id = self._lookup(target, token)
        if entry_id:
            result.applied_knowledge.append(entry_id)

        enum_cls = VARIANT_TYPES.get(target)
        if enum_cls is not None:
            if value is None:
                return FieldExtraction(
                    target, enum_cls["UNKNOWN"], cfg.low_confidence, token, "unresolved", rule_name
                )
            return FieldExtraction(target, value, cfg.high_confidence, token, source, rule_name)

        if target is FieldType.BRAND:
            name = str(value) if source == "learned" else token
            brand_id = self._parser_config.brands.lookup(name)
            if source == "learned" or brand_id is not None:
                return FieldExtraction(
                    target, name, cfg.high_confidence, token, source or "dictionary",
                    rule_name, ref_id=brand_id,
                )
            return FieldExtraction(target, token, cfg.medium_confidence, token, "raw", rule_name)

        if target is FieldType.NAME:
            brand_id = self._parser_config.products.lookup(token)
            if brand_id is not None:
                return FieldExtraction(
                    target, token, cfg.high_confidence, token, "dictionary", rule_name,
                    ref_id=brand_id,
                )

        if source == "learned":
            return FieldExtraction(target, str(value), cfg.high_confidence, token, source, rule_name)
        return FieldExtraction(target, token, cfg.medium_confidence, token, "raw", rule_name)

    def _resolve_size(
        self, rule: ParsingRule, tokens: List[str], result: ExtractionResult
    ) -> List[FieldExtraction]:
        cfg = self._config
        number = tokens[0].replace(",", ".")
        try:
            size = float(number)
        except ValueError:
            return [
                FieldExtraction(
                    FieldType.SIZE, 0.0, cfg.low_confidence, tokens[0], "unresolved", rule.name
                )
            ]

        out: List[FieldExtraction] = []
        unit: Optional[Unit] = None
        if len(tokens) > 1:
            value, source, entry_id = self._lookup(FieldType.UNIT, tokens[1])
            if entry_id:
                result.applied_knowledge.append(entry_id)
            if value is not None:
                unit = value
                out.append(
                    FieldExtraction(
                        FieldType.UNIT, value, cfg.high_confidence, tokens[1], source, rule.name
                    )
                )

        # a number backed by a known unit is a dictionary-grade hit
        confidence = cfg.high_confidence if unit is not None else cfg.medium_confidence
        out.insert(
            0,
            FieldExtraction(
                FieldType.SIZE,
                size,
                confidence,
                " ".join(tokens),
                "dictionary" if unit is not None else "raw",
                rule.name,
            ),
        )
        return out

    def _lookup(self, target: FieldType, token: str) -> Tuple[Any, str, Optional[str]]:
        """Learned action first, static dictionary second.

        Returns ``(value, source, knowledge_entry_id)``; value is ``None``
        on a miss.
        """
        if self._knowledge is not None:
            hit = self._knowledge.best_action(target.value, token)
            if hit is not None:
                entry, action = hit
                value = self._coerce_action(target, action)
                if value is not None:
                    logger.info(
                        "Learned %s: %r -> %r (entry %s, score=%.2f)",
                        target.value,
                        token,
                        action,
                        entry.id,
                        entry.score,
                    )
                    return value, "learned", entry.id

        dictionary = self._parser_config.dictionary_for(target)
        if dictionary is not None and target not in (FieldType.BRAND, FieldType.NAME):
            value = dictionary.lookup(token)
            if value is not None:
                return value, "dictionary", None
        return None, "", None

    @staticmethod
    def _coerce_action(target: FieldType, action: str) -> Any:
        enum_cls = VARIANT_TYPES.get(target)
        if enum_cls is None:
            return action
        return parse_variant(enum_cls, action)

    # ------------------------------------------------------------------ #
    # Fallbacks
    # ------------------------------------------------------------------ #

    def _scan(self, target: FieldType, text: str) -> Optional[FieldExtraction]:
        dictionary = self._parser_config.dictionary_for(target)
        if dictionary is None:
            return None
        found = dictionary.search(text)
        if found is None:
            return None
        keyword, value = found
        high = self._config.high_confidence
        if target is FieldType.BRAND:
            return FieldExtraction(target, keyword, high, keyword, "scan", ref_id=value)
        return FieldExtraction(target, value, high, keyword, "scan")

    def _recover_size(
        self,
        text: str,
        result: ExtractionResult,
        eligible: Callable[[FieldType], bool],
    ) -> None:
        raw = _MULTI_SPACE_RE.sub(" ", text).strip()
        for rule, regex in self._rules:
            if rule.field is not FieldType.SIZE:
                continue
            m = regex.search(raw)
            if not m:
                continue
            for found in self._resolve_match(rule, m, result):
                if found.field in result.fields or not eligible(found.field):
                    continue
                # came from text an ignore pattern marked as noise
                found.confidence = min(found.confidence, self._config.medium_confidence)
                found.source = "raw"
                result.fields[found.field] = found
            result.matched_rules.append(rule.name)
            return

    # ------------------------------------------------------------------ #
    # Compilation
    # ------------------------------------------------------------------ #

    def _ensure_compiled(self) -> None:
        version = self._parser_config.version
        if version == self._compiled_version:
            return
        case_sensitive = self._parser_config.case_sensitive
        self._rules = [(r, r.compile(case_sensitive)) for r in self._parser_config.rules]
        self._ignore = [
            re.compile(p, 0 if case_sensitive else re.IGNORECASE)
            for p in self._parser_config.ignore_patterns
        ]
        self._compiled_version = version
        logger.debug(
            "Compiled %d rule(s) and %d ignore pattern(s) (config v%d)",
            len(self._rules),
            len(self._ignore),
            version,
        )
