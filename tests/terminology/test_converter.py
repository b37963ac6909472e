"""Tests for the legacy/canonical terminology converter."""

import pytest

from lexspine.core.enums import PriorityLevel, SafetyLevel, TermCategory
from lexspine.core.errors import ConfigError
from lexspine.terminology import TERMINOLOGY_MAPPINGS, ConversionOptions, TerminologyConverter, TermMapping
from lexspine.terminology.converter import migration_priority, migration_safety


@pytest.fixture
def converter():
    return TerminologyConverter()


class TestSingleTerms:
    """Lookups for individual terms."""

    @pytest.mark.parametrize(
        ("legacy", "canonical"),
        [
            ("io", "prima-persona"),
            ("loro", "terza-persona"),
            ("plural", "plurale"),
            ("auxiliary-avere", "avere-auxiliary"),
            ("gerund", "gerundio"),
        ],
    )
    def test_to_canonical(self, converter, legacy, canonical):
        assert converter.to_canonical(legacy) == canonical

    def test_unknown_terms(self, converter):
        assert converter.to_canonical("presente") is None
        assert converter.from_canonical("presente") is None
        assert converter.category("presente") is None

    def test_reverse_mapping_prefers_first_registered(self, converter):
        assert converter.from_canonical("terza-persona") == "lui"
        assert converter.from_canonical("prima-persona") == "io"
        assert converter.legacy_equivalents("terza-persona") == ["lui", "lei", "loro"]

    def test_round_trip_for_one_to_one_mappings(self, converter):
        canonical_counts = {}
        for mapping in TERMINOLOGY_MAPPINGS:
            canonical_counts[mapping.canonical] = canonical_counts.get(mapping.canonical, 0) + 1
        for mapping in TERMINOLOGY_MAPPINGS:
            if canonical_counts[mapping.canonical] == 1:
                assert converter.from_canonical(converter.to_canonical(mapping.legacy)) == mapping.legacy

    def test_classification(self, converter):
        assert converter.is_legacy("tu")
        assert not converter.is_canonical("tu")
        assert converter.is_canonical("seconda-persona")
        assert converter.category("singolare") == TermCategory.NUMBER
        assert converter.category("auxiliary-stare") == TermCategory.AUXILIARY

    def test_canonical_terms_by_category(self, converter):
        assert converter.canonical_terms(TermCategory.PERSON) == [
            "prima-persona",
            "seconda-persona",
            "terza-persona",
        ]
        assert "plurale" in converter.canonical_terms()


class TestConfiguration:
    def test_duplicate_legacy_term_rejected(self):
        mappings = (
            TermMapping("io", "prima-persona", TermCategory.PERSON),
            TermMapping("io", "seconda-persona", TermCategory.PERSON),
        )
        with pytest.raises(ConfigError, match="registered twice"):
            TerminologyConverter(mappings)

    def test_term_both_legacy_and_canonical_rejected(self):
        mappings = (
            TermMapping("a", "b", TermCategory.MOOD),
            TermMapping("b", "c", TermCategory.MOOD),
        )
        with pytest.raises(ConfigError, match="both legacy and canonical"):
            TerminologyConverter(mappings)


class TestConvertTagSet:
    """Tag set conversion in full and transition modes."""

    def test_full_migration(self, converter):
        result = converter.convert_tag_set(["io", "singolare", "presente"])
        assert result.tags == ("prima-persona", "singolare", "presente")
        assert result.conversions == (("io", "prima-persona"),)
        assert result.changed
        assert result.warnings == ()

    def test_transition_mode_keeps_legacy(self, converter):
        result = converter.convert_tag_set(["io", "singular"], ConversionOptions(preserve_legacy=True))
        assert result.tags == ("io", "prima-persona", "singular", "singolare")

    def test_no_duplicates_when_canonical_already_present(self, converter):
        result = converter.convert_tag_set(["io", "prima-persona", "singolare"])
        assert result.tags == ("prima-persona", "singolare")

    def test_idempotent(self, converter):
        once = converter.convert_tag_set(["lei", "plural", "auxiliary-essere", "passato-prossimo"])
        twice = converter.convert_tag_set(once.tags)
        assert twice.tags == once.tags
        assert not twice.changed

    def test_unknown_tags_pass_through(self, converter):
        assert converter.convert_tag_set(["freq-top100"]).tags == ("freq-top100",)

    def test_consistency_check_can_be_disabled(self, converter):
        result = converter.convert_tag_set(["io"], ConversionOptions(check_consistency=False))
        assert result.warnings == ()

    def test_to_legacy_tags(self, converter):
        assert converter.to_legacy_tags(["terza-persona", "plurale", "presente"]) == ("lui", "plural", "presente")


class TestCheckConsistency:
    def test_consistent_set_has_no_warnings(self, converter):
        assert converter.check_consistency(["prima-persona", "singolare", "presente"]) == []

    def test_two_person_terms_warn(self, converter):
        warnings = converter.check_consistency(["prima-persona", "seconda-persona", "singolare"])
        assert [w.code for w in warnings] == ["multiple-person-terms"]
        assert warnings[0].terms == ("prima-persona", "seconda-persona")

    def test_legacy_and_canonical_of_same_category_count_separately(self, converter):
        warnings = converter.check_consistency(["io", "prima-persona", "singolare"])
        assert [w.code for w in warnings] == ["multiple-person-terms"]

    def test_person_without_number(self, converter):
        codes = [w.code for w in converter.check_consistency(["terza-persona"])]
        assert codes == ["person-without-number"]

    def test_number_without_person(self, converter):
        codes = [w.code for w in converter.check_consistency(["plurale"])]
        assert codes == ["number-without-person"]


class TestAnalyzeTags:
    def test_classifies_tags(self, converter):
        analysis = converter.analyze_tags(["io", "prima-persona", "singular", "third-person", "presente"])
        assert analysis.legacy_terms == ["io", "singular"]
        assert analysis.canonical_terms == ["prima-persona"]
        assert analysis.unknown_terms == ["third-person"]
        assert analysis.conflicts == ["Both io and prima-persona present"]
        assert analysis.recommendations == ["Convert singular → singolare"]


class TestAnalyzeSystem:
    """System-wide usage counts and mixed-usage detection."""

    def test_counts_from_tag_sets(self, converter):
        analysis = converter.analyze_system(
            [{"io", "singular"}, {"prima-persona", "singolare"}, {"io", "singolare"}]
        )
        legacy = {usage.term: usage.usage_count for usage in analysis.legacy_terms}
        canonical = {usage.term: usage.usage_count for usage in analysis.canonical_terms}
        assert legacy == {"io": 2, "singular": 1}
        assert canonical == {"prima-persona": 1, "singolare": 2}
        assert {(m.legacy, m.canonical) for m in analysis.mixed_usage} == {
            ("io", "prima-persona"),
            ("singular", "singolare"),
        }
        assert analysis.total_terms == 4

    def test_canonical_shared_by_several_legacy_terms_listed_once(self, converter):
        analysis = converter.analyze_system([{"terza-persona"}, {"terza-persona"}])
        assert [(u.term, u.usage_count) for u in analysis.canonical_terms] == [("terza-persona", 2)]

    def test_frequencies_override_and_priorities(self, converter):
        analysis = converter.analyze_system(
            [],
            frequencies={"io": 40, "prima-persona": 20, "auxiliary-avere": 6, "avere-auxiliary": 6, "gerund": 1},
        )
        priorities = {m.legacy: m.priority for m in analysis.mixed_usage}
        assert priorities == {"io": PriorityLevel.HIGH, "auxiliary-avere": PriorityLevel.HIGH}

    def test_threshold(self, converter):
        analysis = converter.analyze_system([], frequencies={"io": 3, "prima-persona": 3}, mixed_usage_threshold=3)
        assert analysis.mixed_usage == []

    def test_migrations_preview_statement(self, converter):
        analysis = converter.analyze_system([], frequencies={"gerund": 5, "gerundio": 30})
        migration = analysis.migrations[0]
        assert migration.from_term == "gerund"
        assert migration.affected_records == 35
        assert migration.safety_level == SafetyLevel.CAUTION
        assert migration.sql_preview == (
            "UPDATE word_forms SET tags = array_replace(tags, 'gerund', 'gerundio') "
            "WHERE tags @> ARRAY['gerund']"
        )

    def test_by_category(self, converter):
        analysis = converter.analyze_system([{"io", "prima-persona", "plurale"}])
        grouped = analysis.by_category()
        assert [u.term for u in grouped[TermCategory.PERSON]["legacy"]] == ["io"]
        assert len(grouped[TermCategory.PERSON]["mixed"]) == 1
        assert [u.term for u in grouped[TermCategory.NUMBER]["canonical"]] == ["plurale"]


class TestPriorityHelpers:
    @pytest.mark.parametrize(
        ("category", "count", "expected"),
        [
            (TermCategory.PERSON, 51, PriorityLevel.HIGH),
            (TermCategory.PERSON, 50, PriorityLevel.MEDIUM),
            (TermCategory.AUXILIARY, 11, PriorityLevel.HIGH),
            (TermCategory.AUXILIARY, 10, PriorityLevel.LOW),
            (TermCategory.NUMBER, 21, PriorityLevel.MEDIUM),
            (TermCategory.MOOD, 20, PriorityLevel.LOW),
        ],
    )
    def test_migration_priority(self, category, count, expected):
        assert migration_priority(category, count) == expected

    def test_migration_safety(self):
        assert migration_safety(TermCategory.PERSON) == SafetyLevel.SAFE
        assert migration_safety(TermCategory.NUMBER) == SafetyLevel.CAUTION
