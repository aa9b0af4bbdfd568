"""
Keyword Dictionary Engine and Parser Configuration.

Curated, configurable mappings from commonly-seen supplier spellings to the
canonical tagged variants, plus the priority-ordered regex rules and the
ignore patterns used by the extraction engine.

Design decisions
----------------
* Keys are stored **normalised** (uppercase, single-spaced) so one pass over
  the input is enough for lookup; lookups are case-insensitive by default.
* ``lookup`` returns ``None`` on a miss instead of raising.
* The ``ParserConfiguration`` is an explicit object owned by the pipeline and
  passed by reference into the engines. It is mutated only through its own
  methods, each of which bumps ``version`` so the extraction engine knows to
  recompile.
* Users can extend at runtime (``add_mapping``, ``add_rule``,
  ``add_ignore_pattern``) or from a JSON file (``load_parser_configuration``).
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Generic, Iterator, List, Optional, Tuple, TypeVar, Union

from product_mapper.errors import ConfigurationError
from product_mapper.logging_setup import get_logger
from product_mapper.schema import (
    VARIANT_TYPES,
    Audience,
    Concentration,
    FieldType,
    ProductForm,
    Unit,
    field_lookup,
    parse_variant,
)

logger = get_logger("dictionaries")

V = TypeVar("V")

_MULTI_SPACE_RE = re.compile(r"\s+")


# ---------------------------------------------------------------------------
# Built-in dictionaries
# ---------------------------------------------------------------------------

_BUILTIN_CONCENTRATIONS: Dict[str, Concentration] = {
    # --- Abbreviations ---
    "EDT": Concentration.EDT,
    "EDP": Concentration.EDP,
    "EDC": Concentration.EDC,
    "EDF": Concentration.EDF,
    "ADP": Concentration.PARFUM,
    "PARFUM": Concentration.PARFUM,
    "COLOGNE": Concentration.EDC,

    # --- Full names ---
    "EAU DE TOILETTE": Concentration.EDT,
    "EAU DE PARFUM": Concentration.EDP,
    "EAU DE COLOGNE": Concentration.EDC,
    "EAU DE FRAICHE": Concentration.EDF,
    "PARFUM INTENSE": Concentration.PARFUM,
    "EXTRAIT DE PARFUM": Concentration.PARFUM,
    "ELIXIR": Concentration.PARFUM,
}

_BUILTIN_FORMS: Dict[str, ProductForm] = {
    "SPRAY": ProductForm.SPRAY,
    "SP": ProductForm.SPRAY,
    "VAPO": ProductForm.SPRAY,
    "COLOGNE": ProductForm.COLOGNE,
    "SPLASH": ProductForm.SPLASH,
    "FL": ProductForm.SPLASH,
    "OIL": ProductForm.OIL,
    "SOLID": ProductForm.SOLID,
    "ROLLETTE": ProductForm.ROLLETTE,
    "ROLL-ON": ProductForm.ROLLETTE,
    "ROLLERBALL": ProductForm.ROLLETTE,
}

_BUILTIN_AUDIENCES: Dict[str, Audience] = {
    "M": Audience.MALE,
    "MALE": Audience.MALE,
    "MEN": Audience.MALE,
    "MAN": Audience.MALE,
    "HOMME": Audience.MALE,
    "POUR HOMME": Audience.MALE,
    "W": Audience.FEMALE,
    "F": Audience.FEMALE,
    "FEMALE": Audience.FEMALE,
    "WOMEN": Audience.FEMALE,
    "WOMAN": Audience.FEMALE,
    "FEMME": Audience.FEMALE,
    "POUR FEMME": Audience.FEMALE,
    "U": Audience.UNISEX,
    "UNISEX": Audience.UNISEX,
}

_BUILTIN_UNITS: Dict[str, Unit] = {
    "ML": Unit.ML,
    "MILLILITER": Unit.ML,
    "MILLILITERS": Unit.ML,
    "MILLILITRE": Unit.ML,
    "MILLILITRES": Unit.ML,
    "OZ": Unit.OZ,
    "FL OZ": Unit.OZ,
    "FL. OZ": Unit.OZ,
    "FLUID OUNCE": Unit.OZ,
    "FLUID OUNCES": Unit.OZ,
    "G": Unit.G,
    "GR": Unit.G,
    "GRAM": Unit.G,
    "GRAMS": Unit.G,
}

_BUILTIN_IGNORE_PATTERNS: List[str] = [
    r"\d+\.\d+\s*ML\b",  # trailing alternate size, e.g. "29.6ml"
    r"\d+\.\d+\s*OZ\b",  # trailing alternate size, e.g. "1.7oz"
    r"^\d+$",            # bare numbers
    r"\bNEW\b",
    r"\bORIGINAL\b",
    r"\bAUTHENTIC\b",
    r"\bTESTER\b",
]


# ---------------------------------------------------------------------------
# Keyword dictionary
# ---------------------------------------------------------------------------

class KeywordDictionary(Generic[V]):
    """Keyword to canonical value lookup for one field scope.

    Parameters
    ----------
    entries:
        Initial ``{keyword: value}`` pairs.
    case_sensitive:
        When False (default) keys are folded to uppercase.
    """

    def __init__(
        self,
        entries: Optional[Dict[str, V]] = None,
        case_sensitive: bool = False,
    ) -> None:
        self._case_sensitive = case_sensitive
        self._entries: Dict[str, V] = {}
        self._scanner: Optional[re.Pattern] = None
        if entries:
            for keyword, value in entries.items():
                self.add(keyword, value)

    def _key(self, keyword: str) -> str:
        key = _MULTI_SPACE_RE.sub(" ", str(keyword)).strip()
        return key if self._case_sensitive else key.upper()

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def lookup(self, keyword: str) -> Optional[V]:
        """Exact (normalised) lookup. ``None`` on a miss."""
        if keyword is None:
            return None
        return self._entries.get(self._key(keyword))

    def search(self, text: str) -> Optional[Tuple[str, V]]:
        """Find the first keyword occurring as a whole word inside *text*.

        Longer keywords win over their own prefixes ("EAU DE PARFUM" beats
        "PARFUM" at the same position).
        """
        if not text or not self._entries:
            return None
        if self._scanner is None:
            keys = sorted(self._entries, key=len, reverse=True)
            alternation = "|".join(re.escape(k) for k in keys)
            flags = 0 if self._case_sensitive else re.IGNORECASE
            self._scanner = re.compile(
                rf"(?<![A-Za-z0-9])(?:{alternation})(?![A-Za-z0-9])", flags
            )
        m = self._scanner.search(_MULTI_SPACE_RE.sub(" ", text))
        if not m:
            return None
        key = self._key(m.group(0))
        return key, self._entries[key]

    def add(self, keyword: str, value: V) -> None:
        key = self._key(keyword)
        if not key:
            raise ValueError("Dictionary keyword cannot be empty")
        self._entries[key] = value
        self._scanner = None

    def remove(self, keyword: str) -> bool:
        removed = self._entries.pop(self._key(keyword), None) is not None
        if removed:
            self._scanner = None
        return removed

    def keys(self) -> List[str]:
        return list(self._entries)

    def items(self) -> List[Tuple[str, V]]:
        return list(self._entries.items())

    def __contains__(self, keyword: object) -> bool:
        return isinstance(keyword, str) and self._key(keyword) in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def to_dict(self) -> Dict[str, Any]:
        return {
            k: (v.value if isinstance(v, Enum) else v)
            for k, v in self._entries.items()
        }


# ---------------------------------------------------------------------------
# Parsing rules
# ---------------------------------------------------------------------------

@dataclass
class ParsingRule:
    """A priority-ordered regex extractor for one field.

    ``priority`` ascending means higher precedence. ``groups`` lists the
    1-based capture groups to extract (size rules use two: number and unit).
    ``allow_override`` lets the rule replace a value set by an earlier rule;
    it never replaces values that came from a mapped column.
    """

    name: str
    pattern: str
    field: FieldType
    priority: int = 10
    groups: List[int] = field(default_factory=lambda: [1])
    case_sensitive: bool = False
    stop_on_match: bool = False
    allow_override: bool = False
    description: str = ""

    def compile(self, case_sensitive: bool = False) -> re.Pattern:
        flags = 0 if (self.case_sensitive or case_sensitive) else re.IGNORECASE
        try:
            return re.compile(self.pattern, flags)
        except re.error as exc:
            raise ConfigurationError(
                f"Invalid regex pattern in rule '{self.name}': {self.pattern!r} ({exc})"
            ) from exc

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "pattern": self.pattern,
            "field": self.field.value,
            "priority": self.priority,
            "groups": list(self.groups),
            "case_sensitive": self.case_sensitive,
            "stop_on_match": self.stop_on_match,
            "allow_override": self.allow_override,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ParsingRule":
        try:
            target = field_lookup(str(data["field"]))
            if target is None or target is FieldType.IGNORE:
                raise ConfigurationError(
                    f"Rule {data.get('name')!r} targets unknown field {data['field']!r}"
                )
            return cls(
                name=str(data["name"]),
                pattern=str(data["pattern"]),
                field=target,
                priority=int(data.get("priority", 10)),
                groups=[int(g) for g in data.get("groups", [1])],
                case_sensitive=bool(data.get("case_sensitive", False)),
                stop_on_match=bool(data.get("stop_on_match", False)),
                allow_override=bool(data.get("allow_override", False)),
                description=str(data.get("description", "")),
            )
        except KeyError as exc:
            raise ConfigurationError(f"Parsing rule missing key {exc}") from exc
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Malformed parsing rule {data!r}: {exc}") from exc


def _default_rules() -> List[ParsingRule]:
    return [
        ParsingRule(
            name="ExtractSizeWithUnits",
            pattern=r"\b(\d+(?:\.\d+)?)\s*(ML|FL\.?\s*OZ|OZ|G)\b",
            field=FieldType.SIZE,
            priority=1,
            groups=[1, 2],
            description="Size like '30ML', '1.7OZ', '50G'",
        ),
        ParsingRule(
            name="ExtractConcentration",
            pattern=(
                r"\b(EAU DE TOILETTE|EAU DE PARFUM|EAU DE COLOGNE|EAU DE FRAICHE|"
                r"PARFUM INTENSE|EXTRAIT DE PARFUM|EDT|EDP|EDC|EDF|ADP|PARFUM|ELIXIR)\b"
            ),
            field=FieldType.CONCENTRATION,
            priority=2,
            description="Concentration abbreviations and full names",
        ),
        ParsingRule(
            name="ExtractForm",
            pattern=r"\b(SPRAY|VAPO|SP|SPLASH|FL(?!\.?\s*OZ\b)|OIL|SOLID|ROLLETTE|ROLL-ON|ROLLERBALL)\b",
            field=FieldType.FORM,
            priority=3,
            description="Physical form",
        ),
        ParsingRule(
            name="ExtractAudience",
            pattern=r"\b(POUR HOMME|POUR FEMME|MEN|MAN|MALE|WOMEN|WOMAN|FEMALE|UNISEX)\b",
            field=FieldType.AUDIENCE,
            priority=4,
            description="Target audience words",
        ),
        ParsingRule(
            name="ExtractBrandAtStart",
            pattern=r"^(\w+)\s+",
            field=FieldType.BRAND,
            priority=5,
            description="Potential brand name at the beginning",
        ),
    ]


# ---------------------------------------------------------------------------
# Parser configuration
# ---------------------------------------------------------------------------

# JSON section name -> FieldType served by that dictionary
_DICTIONARY_SECTIONS: Dict[str, FieldType] = {
    "concentration": FieldType.CONCENTRATION,
    "form": FieldType.FORM,
    "audience": FieldType.AUDIENCE,
    "unit": FieldType.UNIT,
    "brand": FieldType.BRAND,
    "product": FieldType.NAME,
}


class ParserConfiguration:
    """Dictionaries, rules and ignore patterns for the extraction engine.

    Parameters
    ----------
    case_sensitive:
        Applies to dictionary keys and, unless a rule says otherwise, to
        rule patterns.
    """

    def __init__(self, case_sensitive: bool = False) -> None:
        self.case_sensitive = case_sensitive
        self.concentrations: KeywordDictionary[Concentration] = KeywordDictionary(
            case_sensitive=case_sensitive
        )
        self.forms: KeywordDictionary[ProductForm] = KeywordDictionary(
            case_sensitive=case_sensitive
        )
        self.audiences: KeywordDictionary[Audience] = KeywordDictionary(
            case_sensitive=case_sensitive
        )
        self.units: KeywordDictionary[Unit] = KeywordDictionary(case_sensitive=case_sensitive)
        # brand name -> brand id
        self.brands: KeywordDictionary[int] = KeywordDictionary(case_sensitive=case_sensitive)
        # product name -> brand id, for names that imply their brand
        self.products: KeywordDictionary[int] = KeywordDictionary(
            case_sensitive=case_sensitive
        )
        self._rules: List[ParsingRule] = []
        self._ignore_patterns: List[str] = []
        self._version = 0

    @classmethod
    def create_default(cls) -> "ParserConfiguration":
        """Configuration seeded with common fragrance-industry terms."""
        config = cls()
        for keyword, c in _BUILTIN_CONCENTRATIONS.items():
            config.concentrations.add(keyword, c)
        for keyword, f in _BUILTIN_FORMS.items():
            config.forms.add(keyword, f)
        for keyword, a in _BUILTIN_AUDIENCES.items():
            config.audiences.add(keyword, a)
        for keyword, u in _BUILTIN_UNITS.items():
            config.units.add(keyword, u)
        for rule in _default_rules():
            config.add_rule(rule)
        for pattern in _BUILTIN_IGNORE_PATTERNS:
            config.add_ignore_pattern(pattern)
        logger.debug("Default parser configuration: %s", config.statistics())
        return config

    # ------------------------------------------------------------------ #
    # Read access
    # ------------------------------------------------------------------ #

    @property
    def version(self) -> int:
        """Incremented on every mutation."""
        return self._version

    @property
    def rules(self) -> List[ParsingRule]:
        """Rules in ascending priority order (stable for equal priorities)."""
        return list(self._rules)

    @property
    def ignore_patterns(self) -> List[str]:
        return list(self._ignore_patterns)

    def dictionary_for(self, target: FieldType) -> Optional[KeywordDictionary]:
        return {
            FieldType.CONCENTRATION: self.concentrations,
            FieldType.FORM: self.forms,
            FieldType.AUDIENCE: self.audiences,
            FieldType.UNIT: self.units,
            FieldType.BRAND: self.brands,
            FieldType.NAME: self.products,
        }.get(target)

    # ------------------------------------------------------------------ #
    # Mutation
    # ------------------------------------------------------------------ #

    def add_mapping(self, target: FieldType, keyword: str, value: Any) -> None:
        """Add or replace one dictionary entry.

        For the tagged-variant fields *value* may be the enum member or its
        string form ("Parfum", "EDT"); brand / product dictionaries take ints.
        """
        dictionary = self.dictionary_for(target)
        if dictionary is None:
            raise ValueError(f"No dictionary for field '{target.value}'")
        dictionary.add(keyword, _coerce_value(target, value))
        self._version += 1
        logger.info("Dictionary[%s]: %r -> %r", target.value, keyword, value)

    def remove_mapping(self, target: FieldType, keyword: str) -> bool:
        dictionary = self.dictionary_for(target)
        if dictionary is None or not dictionary.remove(keyword):
            return False
        self._version += 1
        return True

    def add_rule(self, rule: ParsingRule) -> None:
        """Append *rule* and re-sort by priority. Invalid regex raises."""
        rule.compile(self.case_sensitive)
        self._rules.append(rule)
        # list.sort is stable: equal priorities keep insertion order
        self._rules.sort(key=lambda r: r.priority)
        self._version += 1

    def remove_rule(self, name: str) -> bool:
        before = len(self._rules)
        self._rules = [r for r in self._rules if r.name != name]
        if len(self._rules) == before:
            return False
        self._version += 1
        return True

    def add_ignore_pattern(self, pattern: str) -> None:
        try:
            re.compile(pattern)
        except re.error as exc:
            raise ConfigurationError(f"Invalid ignore pattern {pattern!r}: {exc}") from exc
        if pattern not in self._ignore_patterns:
            self._ignore_patterns.append(pattern)
            self._version += 1

    def remove_ignore_pattern(self, pattern: str) -> bool:
        if pattern not in self._ignore_patterns:
            return False
        self._ignore_patterns.remove(pattern)
        self._version += 1
        return True

    # ------------------------------------------------------------------ #
    # Diagnostics
    # ------------------------------------------------------------------ #

    def validate(self) -> List[str]:
        """Return a list of problems; empty when the configuration is usable."""
        problems: List[str] = []
        seen: Dict[str, int] = {}
        for rule in self._rules:
            seen[rule.name] = seen.get(rule.name, 0) + 1
            try:
                compiled = rule.compile(self.case_sensitive)
            except ConfigurationError as exc:
                problems.append(str(exc))
                continue
            if max(rule.groups, default=0) > compiled.groups:
                problems.append(
                    f"Rule '{rule.name}' extracts group {max(rule.groups)} "
                    f"but its pattern has {compiled.groups}"
                )
        problems.extend(
            f"Duplicate rule name '{name}'" for name, n in seen.items() if n > 1
        )
        return problems

    def statistics(self) -> Dict[str, int]:
        return {
            "concentration_mappings": len(self.concentrations),
            "form_mappings": len(self.forms),
            "audience_mappings": len(self.audiences),
            "unit_mappings": len(self.units),
            "brand_mappings": len(self.brands),
            "product_mappings": len(self.products),
            "parsing_rules": len(self._rules),
            "ignore_patterns": len(self._ignore_patterns),
        }

    # ------------------------------------------------------------------ #
    # Serialisation
    # ------------------------------------------------------------------ #

    def to_dict(self) -> Dict[str, Any]:
        dictionaries = {
            section: self.dictionary_for(target).to_dict()  # type: ignore[union-attr]
            for section, target in _DICTIONARY_SECTIONS.items()
        }
        return {
            "case_sensitive": self.case_sensitive,
            "dictionaries": dictionaries,
            "rules": [r.to_dict() for r in self._rules],
            "ignore_patterns": list(self._ignore_patterns),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ParserConfiguration":
        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Parser configuration must be a JSON object, got {type(data).__name__}"
            )
        config = cls(case_sensitive=bool(data.get("case_sensitive", False)))

        for section, entries in (data.get("dictionaries") or {}).items():
            target = _DICTIONARY_SECTIONS.get(section)
            if target is None:
                raise ConfigurationError(f"Unknown dictionary section {section!r}")
            if not isinstance(entries, dict):
                raise ConfigurationError(f"Dictionary {section!r} must be an object")
            for keyword, value in entries.items():
                try:
                    config.add_mapping(target, keyword, value)
                except (TypeError, ValueError) as exc:
                    raise ConfigurationError(
                        f"Bad entry {keyword!r} in dictionary {section!r}: {exc}"
                    ) from exc

        for raw_rule in data.get("rules", []):
            if not isinstance(raw_rule, dict):
                raise ConfigurationError(f"Parsing rule must be an object: {raw_rule!r}")
            config.add_rule(ParsingRule.from_dict(raw_rule))

        for pattern in data.get("ignore_patterns", []):
            config.add_ignore_pattern(str(pattern))

        return config

    def save(self, path: Union[str, Path]) -> None:
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "w", encoding="utf-8") as fh:
            json.dump(self.to_dict(), fh, indent=2, ensure_ascii=False)
        logger.info("Saved parser configuration to %s", target)


def load_parser_configuration(path: Union[str, Path]) -> ParserConfiguration:
    """Load a ``ParserConfiguration`` from JSON.

    Raises
    ------
    ConfigurationError
        Missing file, invalid JSON, unknown sections or invalid regexes.
    """
    source = Path(path)
    try:
        with open(source, encoding="utf-8") as fh:
            data = json.load(fh)
    except FileNotFoundError as exc:
        raise ConfigurationError(f"Parser configuration not found: {source}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Invalid JSON in {source}: {exc}") from exc

    config = ParserConfiguration.from_dict(data)
    logger.info("Loaded parser configuration from %s: %s", source, config.statistics())
    return config


def _coerce_value(target: FieldType, value: Any) -> Any:
    enum_cls = VARIANT_TYPES.get(target)
    if enum_cls is None:
        if isinstance(value, bool):
            raise ValueError(f"Expected an integer id, got {value!r}")
        return int(value)
    member = parse_variant(enum_cls, value)
    if member is None:
        raise ValueError(f"{value!r} is not a valid {enum_cls.__name__}")
    return member

