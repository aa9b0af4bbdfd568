"""
Ambiguity Resolution Boundary.

The pipeline hands low-confidence fields to an injected ``AmbiguityResolver``
together with a ranked candidate list. A resolver returns the chosen
``Candidate`` or ``None`` (skip: keep the default). Resolvers keep no
record-to-record state; the only thing they hold is a reference to the
knowledge store so ``record_decision`` can persist accepted corrections.

Implementations
---------------
* ``AutoDefaultResolver``: never blocks, always skips. Use for batch runs.
* ``ConsoleAmbiguityResolver``: human in the loop on a terminal. Only asks
  when the field's confidence is below its threshold.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from product_mapper.dictionaries import ParserConfiguration
from product_mapper.fuzzy_matcher import Candidate, CandidateRanker
from product_mapper.knowledge import KnowledgeEntry, KnowledgeStore
from product_mapper.logging_setup import get_logger
from product_mapper.schema import (
    VARIANT_TYPES,
    FieldType,
    Record,
    Unit,
    parse_variant,
)

logger = get_logger("resolver")

_SIZE_RE = re.compile(r"(\d+(?:[.,]\d+)?)\s*(fl\.?\s*oz|ml|oz|g)\b", re.IGNORECASE)


@dataclass(frozen=True)
class SizeInfo:
    """Value type for size candidates."""

    size: float
    unit: Unit

    def __str__(self) -> str:
        return f"{self.size:g}{self.unit.value}"


@dataclass
class AmbiguityContext:
    """What the resolver sees. ``record`` is the partially built record."""

    row_number: int
    original_text: str
    field: FieldType
    record: Record
    confidence: float
    raw_row: str = ""
    token: str = ""

    @property
    def learn_key(self) -> str:
        """Text a learned correction is keyed on."""
        return self.token or self.original_text


# ---------------------------------------------------------------------------
# Action encoding
# ---------------------------------------------------------------------------

def encode_action(value: Any) -> str:
    """String form of a chosen value, as stored in the knowledge store."""
    if isinstance(value, SizeInfo):
        return str(value)
    return str(getattr(value, "value", value))


def decode_action(target: FieldType, action: str) -> Any:
    """Inverse of ``encode_action`` for *target*. ``None`` when unusable."""
    enum_cls = VARIANT_TYPES.get(target)
    if enum_cls is not None:
        return parse_variant(enum_cls, action)
    if target is FieldType.SIZE:
        m = _SIZE_RE.search(action)
        if not m:
            return None
        unit = parse_variant(Unit, m.group(2)) or (
            Unit.OZ if "oz" in m.group(2).lower() else Unit.ML
        )
        return SizeInfo(float(m.group(1).replace(",", ".")), unit)
    action = str(action).strip()
    return action or None


# ---------------------------------------------------------------------------
# Candidate construction
# ---------------------------------------------------------------------------

def build_candidates(
    target: FieldType,
    token: str,
    text: str,
    parser_config: ParserConfiguration,
    ranker: Optional[CandidateRanker] = None,
) -> List[Candidate]:
    """Ranked options for *target*, best first."""
    ranker = ranker or CandidateRanker()

    if target is FieldType.SIZE:
        return size_candidates(text)

    if target is FieldType.BRAND:
        probe = token or (text.split()[0] if text.split() else "")
        return ranker.rank(probe, parser_config.brands.keys(), reason="brand name like")

    enum_cls = VARIANT_TYPES.get(target)
    if enum_cls is None:
        return []

    dictionary = parser_config.dictionary_for(target)
    ranked: List[Candidate] = []
    if token and dictionary is not None:
        ranked = ranker.rank(token, dictionary.keys(), resolve=dictionary.lookup)
    if ranked:
        return ranked

    # nothing to rank against: offer every known variant
    return [
        Candidate(value=member, score=0.0, reason="available option")
        for member in enum_cls  # type: ignore[attr-defined]
        if member.name != "UNKNOWN"
    ]


def size_candidates(text: str) -> List[Candidate]:
    """Every ``<number><unit>`` occurrence in *text*, in reading order."""
    seen: List[SizeInfo] = []
    for m in _SIZE_RE.finditer(text or ""):
        unit_token = m.group(2).lower()
        unit = Unit.OZ if "oz" in unit_token else (parse_variant(Unit, unit_token) or Unit.ML)
        info = SizeInfo(float(m.group(1).replace(",", ".")), unit)
        if info not in seen:
            seen.append(info)
    return [
        Candidate(
            value=info,
            score=round(1.0 / (i + 1), 3),
            reason="size found in text",
            label=str(info),
        )
        for i, info in enumerate(seen)
    ]


# ---------------------------------------------------------------------------
# Resolver interface
# ---------------------------------------------------------------------------

class AmbiguityResolver(ABC):
    """Strategy interface for low-confidence fields."""

    def __init__(self) -> None:
        self._knowledge: Optional[KnowledgeStore] = None

    def attach_knowledge_store(self, store: Optional[KnowledgeStore]) -> None:
        self._knowledge = store

    @property
    def interactive(self) -> bool:
        """True when calls may block waiting for a human."""
        return False

    def resolve(
        self, context: AmbiguityContext, candidates: List[Candidate]
    ) -> Optional[Candidate]:
        """Dispatch to the capability matching ``context.field``."""
        if context.field is FieldType.BRAND:
            return self.resolve_brand(context, candidates)
        if context.field is FieldType.CONCENTRATION:
            return self.resolve_concentration(context, candidates)
        if context.field is FieldType.SIZE:
            return self.resolve_size(context, candidates)
        return self.resolve_general(context, candidates)

    @abstractmethod
    def resolve_brand(
        self, context: AmbiguityContext, candidates: List[Candidate]
    ) -> Optional[Candidate]:
        ...

    @abstractmethod
    def resolve_concentration(
        self, context: AmbiguityContext, candidates: List[Candidate]
    ) -> Optional[Candidate]:
        ...

    @abstractmethod
    def resolve_size(
        self, context: AmbiguityContext, candidates: List[Candidate]
    ) -> Optional[Candidate]:
        ...

    @abstractmethod
    def resolve_general(
        self, context: AmbiguityContext, candidates: List[Candidate]
    ) -> Optional[Candidate]:
        ...

    @abstractmethod
    def should_learn(self, context: AmbiguityContext, chosen: Candidate) -> bool:
        ...

    def record_decision(
        self, context: AmbiguityContext, chosen: Candidate
    ) -> Optional[KnowledgeEntry]:
        """Write *chosen* to the knowledge store when ``should_learn`` agrees."""
        if self._knowledge is None or not context.learn_key.strip():
            return None
        if not self.should_learn(context, chosen):
            return None
        return self._knowledge.learn_from_correction(
            context.field.value,
            context.learn_key,
            encode_action(chosen.value),
            author=type(self).__name__,
        )


class AutoDefaultResolver(AmbiguityResolver):
    """Never asks, never learns: every ambiguous field keeps its default."""

    def resolve_brand(self, context, candidates):  # type: ignore[override]
        return None

    def resolve_concentration(self, context, candidates):  # type: ignore[override]
        return None

    def resolve_size(self, context, candidates):  # type: ignore[override]
        return None

    def resolve_general(self, context, candidates):  # type: ignore[override]
        return None

    def should_learn(self, context, chosen):  # type: ignore[override]
        return False


class ConsoleAmbiguityResolver(AmbiguityResolver):
    """Asks a human on the terminal.

    Parameters
    ----------
    confidence_threshold:
        Fields at or above this confidence are not asked about.
    input_fn / output_fn:
        Injected I/O, ``input`` and ``print`` by default.
    """

    def __init__(
        self,
        confidence_threshold: float = 0.7,
        input_fn: Callable[[str], str] = input,
        output_fn: Callable[[str], None] = print,
    ) -> None:
        super().__init__()
        self._threshold = confidence_threshold
        self._input = input_fn
        self._output = output_fn

    @property
    def interactive(self) -> bool:
        return True

    # ------------------------------------------------------------------ #
    # Capabilities
    # ------------------------------------------------------------------ #

    def resolve_brand(self, context, candidates):  # type: ignore[override]
        return self._choose(
            context, candidates, "Brand recognition uncertainty",
            manual_prompt="Enter brand name", manual_parse=lambda s: s.strip() or None,
        )

    def resolve_concentration(self, context, candidates):  # type: ignore[override]
        return self._choose(context, candidates, "Concentration recognition uncertainty")

    def resolve_size(self, context, candidates):  # type: ignore[override]
        return self._choose(
            context, candidates, "Size recognition uncertainty",
            manual_prompt="Enter size (e.g. 30ml)",
            manual_parse=lambda s: decode_action(FieldType.SIZE, s),
        )

    def resolve_general(self, context, candidates):  # type: ignore[override]
        return self._choose(
            context, candidates, f"Uncertain {context.field.value.replace('_', ' ')}"
        )

    def should_learn(self, context, chosen):  # type: ignore[override]
        answer = self._ask(
            f"Learn '{context.learn_key}' -> '{encode_action(chosen.value)}' "
            f"for future rows? (y/n): "
        )
        return answer.strip().lower().startswith("y")

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _choose(
        self,
        context: AmbiguityContext,
        candidates: List[Candidate],
        title: str,
        manual_prompt: str = "",
        manual_parse: Optional[Callable[[str], Any]] = None,
    ) -> Optional[Candidate]:
        if context.confidence >= self._threshold:
            return None

        out = self._output
        out("")
        out(title)
        out("=" * max(len(title), 40))
        out(f"Row {context.row_number}: {context.original_text}")
        out(f"Field: {context.field.value}  Confidence: {context.confidence:.0%}")
        out("0. Skip (keep default)")
        for i, c in enumerate(candidates, start=1):
            out(f"{i}. {c.label}  [{c.score:.0%}] {c.reason}".rstrip())
        manual_index = len(candidates) + 1
        if manual_parse is not None:
            out(f"{manual_index}. {manual_prompt}")

        upper = manual_index if manual_parse is not None else len(candidates)
        answer = self._ask(f"Choice (0-{upper}): ").strip()
        if not answer.isdigit():
            return None
        index = int(answer)
        if 1 <= index <= len(candidates):
            return candidates[index - 1]
        if manual_parse is not None and index == manual_index:
            value = manual_parse(self._ask(f"{manual_prompt}: "))
            if value is not None:
                return Candidate(value=value, score=1.0, reason="entered manually")
        return None

    def _ask(self, prompt: str) -> str:
        try:
            return self._input(prompt)
        except EOFError:
            logger.warning("Console input closed; skipping decision")
            return ""
