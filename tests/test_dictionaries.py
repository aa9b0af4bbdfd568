"""
Unit tests for KeywordDictionary and ParserConfiguration.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from product_mapper.dictionaries import (
    KeywordDictionary,
    ParserConfiguration,
    ParsingRule,
    load_parser_configuration,
)
from product_mapper.errors import ConfigurationError
from product_mapper.schema import Concentration, FieldType, ProductForm, Unit


@pytest.fixture
def config() -> ParserConfiguration:
    return ParserConfiguration.create_default()


# ======================================================================
# KeywordDictionary
# ======================================================================

class TestKeywordDictionary:
    def test_lookup_is_case_insensitive(self) -> None:
        d = KeywordDictionary({"Eau de Toilette": Concentration.EDT})
        assert d.lookup("EAU DE TOILETTE") is Concentration.EDT
        assert d.lookup("eau  de   toilette") is Concentration.EDT

    def test_lookup_miss_returns_none(self) -> None:
        d = KeywordDictionary({"EDT": Concentration.EDT})
        assert d.lookup("XYZ") is None

    def test_case_sensitive(self) -> None:
        d = KeywordDictionary({"Edt": Concentration.EDT}, case_sensitive=True)
        assert d.lookup("Edt") is Concentration.EDT
        assert d.lookup("EDT") is None

    def test_search_whole_word(self) -> None:
        d = KeywordDictionary({"SP": ProductForm.SPRAY})
        assert d.search("SPECIAL EDITION") is None
        assert d.search("BLUE SP 30ML") == ("SP", ProductForm.SPRAY)

    def test_search_prefers_longer_keyword(self) -> None:
        d = KeywordDictionary(
            {"PARFUM": Concentration.PARFUM, "EAU DE PARFUM": Concentration.EDP}
        )
        assert d.search("ROSE EAU DE PARFUM 50ML") == ("EAU DE PARFUM", Concentration.EDP)

    def test_add_invalidates_scanner(self) -> None:
        d: KeywordDictionary[int] = KeywordDictionary()
        assert d.search("ACQUA DI PARMA") is None
        d.add("ACQUA DI PARMA", 7)
        assert d.search("acqua di parma blu") == ("ACQUA DI PARMA", 7)

    def test_add_empty_key_raises(self) -> None:
        with pytest.raises(ValueError):
            KeywordDictionary().add("   ", 1)

    def test_remove(self) -> None:
        d = KeywordDictionary({"EDT": Concentration.EDT})
        assert d.remove("edt")
        assert not d.remove("edt")
        assert len(d) == 0

    def test_contains(self) -> None:
        d = KeywordDictionary({"EDT": Concentration.EDT})
        assert "edt" in d
        assert 5 not in d


# ======================================================================
# Default configuration
# ======================================================================

class TestDefaults:
    def test_synonym_equivalence(self, config: ParserConfiguration) -> None:
        assert config.concentrations.lookup("EDT") is config.concentrations.lookup(
            "Eau de Toilette"
        )

    def test_adp_maps_to_parfum(self, config: ParserConfiguration) -> None:
        assert config.concentrations.lookup("ADP") is Concentration.PARFUM

    def test_units(self, config: ParserConfiguration) -> None:
        assert config.units.lookup("fl oz") is Unit.OZ
        assert config.units.lookup("GR") is Unit.G

    def test_rules_sorted_by_priority(self, config: ParserConfiguration) -> None:
        priorities = [r.priority for r in config.rules]
        assert priorities == sorted(priorities)
        assert config.rules[0].name == "ExtractSizeWithUnits"

    def test_default_validates_clean(self, config: ParserConfiguration) -> None:
        assert config.validate() == []

    def test_statistics(self, config: ParserConfiguration) -> None:
        stats = config.statistics()
        assert stats["parsing_rules"] == 5
        assert stats["ignore_patterns"] == 7
        assert stats["brand_mappings"] == 0


# ======================================================================
# Mutation
# ======================================================================

class TestMutation:
    def test_add_mapping_bumps_version(self, config: ParserConfiguration) -> None:
        before = config.version
        config.add_mapping(FieldType.CONCENTRATION, "EXTRAIT", "Parfum")
        assert config.version == before + 1
        assert config.concentrations.lookup("extrait") is Concentration.PARFUM

    def test_add_brand_mapping(self, config: ParserConfiguration) -> None:
        config.add_mapping(FieldType.BRAND, "Acqua di Parma", 42)
        assert config.brands.lookup("ACQUA DI PARMA") == 42

    def test_add_mapping_bad_value(self, config: ParserConfiguration) -> None:
        with pytest.raises(ValueError):
            config.add_mapping(FieldType.CONCENTRATION, "FOO", "Perfume Oil")

    def test_add_mapping_no_dictionary(self, config: ParserConfiguration) -> None:
        with pytest.raises(ValueError, match="No dictionary"):
            config.add_mapping(FieldType.CODE, "X", 1)

    def test_add_rule_keeps_stable_order(self) -> None:
        config = ParserConfiguration()
        config.add_rule(ParsingRule("B", r"(b)", FieldType.BRAND, priority=2))
        config.add_rule(ParsingRule("A", r"(a)", FieldType.BRAND, priority=1))
        config.add_rule(ParsingRule("C", r"(c)", FieldType.BRAND, priority=2))
        assert [r.name for r in config.rules] == ["A", "B", "C"]

    def test_add_rule_invalid_regex(self, config: ParserConfiguration) -> None:
        with pytest.raises(ConfigurationError, match="Invalid regex"):
            config.add_rule(ParsingRule("Bad", r"(unclosed", FieldType.SIZE))

    def test_remove_rule(self, config: ParserConfiguration) -> None:
        assert config.remove_rule("ExtractBrandAtStart")
        assert not config.remove_rule("ExtractBrandAtStart")
        assert "ExtractBrandAtStart" not in [r.name for r in config.rules]

    def test_add_ignore_pattern_invalid(self, config: ParserConfiguration) -> None:
        with pytest.raises(ConfigurationError):
            config.add_ignore_pattern("[")

    def test_add_ignore_pattern_deduplicates(self, config: ParserConfiguration) -> None:
        count = len(config.ignore_patterns)
        config.add_ignore_pattern(r"\bTESTER\b")
        assert len(config.ignore_patterns) == count

    def test_validate_reports_bad_group(self) -> None:
        config = ParserConfiguration()
        config.add_rule(ParsingRule("NoGroup", r"\d+", FieldType.SIZE, groups=[2]))
        problems = config.validate()
        assert any("group 2" in p for p in problems)


# ======================================================================
# Serialisation
# ======================================================================

class TestSerialisation:
    def test_round_trip(self, config: ParserConfiguration) -> None:
        config.add_mapping(FieldType.BRAND, "Acqua di Parma", 42)
        rebuilt = ParserConfiguration.from_dict(config.to_dict())
        assert rebuilt.statistics() == config.statistics()
        assert rebuilt.concentrations.lookup("ADP") is Concentration.PARFUM
        assert rebuilt.brands.lookup("acqua di parma") == 42

    def test_rule_from_dict_alias_field(self) -> None:
        rule = ParsingRule.from_dict({"name": "G", "pattern": r"(\w+)", "field": "gender"})
        assert rule.field is FieldType.AUDIENCE
        assert rule.priority == 10

    def test_rule_from_dict_missing_key(self) -> None:
        with pytest.raises(ConfigurationError, match="missing key"):
            ParsingRule.from_dict({"name": "X", "field": "size"})

    def test_unknown_section(self) -> None:
        with pytest.raises(ConfigurationError, match="Unknown dictionary"):
            ParserConfiguration.from_dict({"dictionaries": {"colour": {}}})

    def test_save_and_load(self, tmp_path: Path, config: ParserConfiguration) -> None:
        path = tmp_path / "parser.json"
        config.save(path)
        loaded = load_parser_configuration(path)
        assert [r.name for r in loaded.rules] == [r.name for r in config.rules]
        assert loaded.ignore_patterns == config.ignore_patterns

    def test_load_missing(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="not found"):
            load_parser_configuration(tmp_path / "missing.json")
