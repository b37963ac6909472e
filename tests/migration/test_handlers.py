"""Tests for the rule id → recommendation handlers."""

import pytest

from conftest import ApplyingMutationStore

from lexspine.compliance.reports import ComplianceIssue
from lexspine.compliance.validator import ComplianceValidator
from lexspine.core.enums import MigrationCategory, SafetyLevel, Severity, ValidationLayer
from lexspine.core.models import Entity, EntityBundle, Form
from lexspine.core.statements import audit_statement
from lexspine.migration.handlers import (
    DEFAULT_HANDLERS,
    MANUAL_RULE_IDS,
    HandlerContext,
    HandlerRegistry,
    infer_auxiliary,
)
from lexspine.terminology.converter import TerminologyConverter


@pytest.fixture
def context():
    return HandlerContext(entity_id=2, entity_text="andare", converter=TerminologyConverter())


@pytest.fixture
def legacy_issues(legacy_bundle):
    report = ComplianceValidator().validate_entity(legacy_bundle)
    return {issue.rule_id: issue for issue in report.issues}


def _issue(rule_id, **kwargs):
    kwargs.setdefault("severity", Severity.CRITICAL)
    kwargs.setdefault("layer", ValidationLayer.FORM)
    return ComplianceIssue(rule_id=rule_id, message="message", **kwargs)


class TestRegistry:
    def test_register_and_get(self):
        registry = HandlerRegistry()

        @registry.register("rule-a", "rule-b")
        def handler(issue, ctx):
            return None

        assert registry.list() == ["rule-a", "rule-b"]
        assert registry.get("rule-b") is handler
        assert "rule-a" in registry

    def test_duplicate_registration(self):
        registry = HandlerRegistry()
        registry.register("rule-a")(lambda issue, ctx: None)
        with pytest.raises(ValueError, match="already registered"):
            registry.register("rule-a")(lambda issue, ctx: None)

    def test_get_unknown_lists_available(self):
        with pytest.raises(KeyError, match="Available"):
            DEFAULT_HANDLERS.get("no-such-rule")

    def test_handle_unknown_returns_none(self, context):
        assert DEFAULT_HANDLERS.handle(_issue("no-such-rule"), context) is None

    def test_default_coverage(self):
        for rule_id in (
            "legacy-person-terms",
            "legacy-number-terms",
            "legacy-mood-terms",
            "legacy-auxiliary-format",
            "missing-conjugation-class",
            "missing-auxiliary-assignment",
            "missing-auxiliary-tag",
            "missing-building-block-tag",
            "auxiliary-consistency-mismatch",
            "broken-form-reference",
            *MANUAL_RULE_IDS,
        ):
            assert rule_id in DEFAULT_HANDLERS


class TestLegacyTerminology:
    """Legacy person/number/mood terms are appended-then-removed."""

    def test_statements_and_rollback(self, legacy_issues, context):
        rec = DEFAULT_HANDLERS.handle(legacy_issues["legacy-person-terms"], context)
        assert rec.id == "rec-2-legacy-person-terms-201"
        assert rec.category == MigrationCategory.TERMINOLOGY
        assert rec.safety_level == SafetyLevel.SAFE
        assert rec.priority == 9
        assert rec.statements == (
            "UPDATE word_forms SET tags = array_append(tags, 'prima-persona') "
            "WHERE id = 201 AND NOT (tags @> ARRAY['prima-persona'])",
            "UPDATE word_forms SET tags = array_remove(tags, 'io') WHERE id = 201 AND tags @> ARRAY['io']",
        )
        assert rec.rollback_statements == (
            "UPDATE word_forms SET tags = array_append(tags, 'io') WHERE id = 201 AND NOT (tags @> ARRAY['io'])",
            "UPDATE word_forms SET tags = array_remove(tags, 'prima-persona') "
            "WHERE id = 201 AND tags @> ARRAY['prima-persona']",
        )
        assert rec.pre_validation_checks == ("statements-present", "rollback-available")
        assert rec.post_validation_checks == ()
        assert rec.requires_validation is False
        assert rec.affected_tables == ("word_forms",)

    def test_unmappable_terms_become_manual(self, context):
        rec = DEFAULT_HANDLERS.handle(_issue("legacy-mood-terms", current_value=["???"], record_id=5), context)
        assert rec.is_manual
        assert rec.statements == ()

    def test_canonical_already_present_is_not_touched(self, context):
        issue = _issue(
            "legacy-person-terms", current_value=["lui"], already_present=("terza-persona",), record_id=7
        )
        rec = DEFAULT_HANDLERS.handle(issue, context)
        assert rec.statements == (
            "UPDATE word_forms SET tags = array_remove(tags, 'lui') WHERE id = 7 AND tags @> ARRAY['lui']",
        )
        assert rec.rollback_statements == (
            "UPDATE word_forms SET tags = array_append(tags, 'lui') WHERE id = 7 AND NOT (tags @> ARRAY['lui'])",
        )

    def test_shared_canonical_is_appended_once(self, context):
        issue = _issue("legacy-person-terms", current_value=["lui", "lei"], record_id=7)
        rec = DEFAULT_HANDLERS.handle(issue, context)
        assert [s.split(" WHERE ")[0] for s in rec.statements] == [
            "UPDATE word_forms SET tags = array_append(tags, 'terza-persona')",
            "UPDATE word_forms SET tags = array_remove(tags, 'lui')",
            "UPDATE word_forms SET tags = array_remove(tags, 'lei')",
        ]
        assert [s.split(" WHERE ")[0] for s in rec.rollback_statements] == [
            "UPDATE word_forms SET tags = array_append(tags, 'lei')",
            "UPDATE word_forms SET tags = array_append(tags, 'lui')",
            "UPDATE word_forms SET tags = array_remove(tags, 'terza-persona')",
        ]


class TestTagHandlers:
    def test_legacy_auxiliary_format(self, context):
        issue = _issue("legacy-auxiliary-format", current_value=["auxiliary-avere"], record_id=7)
        rec = DEFAULT_HANDLERS.handle(issue, context)
        assert rec.statements == (
            "UPDATE word_forms SET tags = array_append(tags, 'avere-auxiliary') "
            "WHERE id = 7 AND NOT (tags @> ARRAY['avere-auxiliary'])",
            "UPDATE word_forms SET tags = array_remove(tags, 'auxiliary-avere') "
            "WHERE id = 7 AND tags @> ARRAY['auxiliary-avere']",
        )
        assert rec.rollback_statements == (
            "UPDATE word_forms SET tags = array_append(tags, 'auxiliary-avere') "
            "WHERE id = 7 AND NOT (tags @> ARRAY['auxiliary-avere'])",
            "UPDATE word_forms SET tags = array_remove(tags, 'avere-auxiliary') "
            "WHERE id = 7 AND tags @> ARRAY['avere-auxiliary']",
        )
        assert rec.category == MigrationCategory.TAGS

    def test_building_block_tag(self, legacy_issues, context):
        rec = DEFAULT_HANDLERS.handle(legacy_issues["missing-building-block-tag"], context)
        assert rec.priority == 6
        assert rec.statements == (
            "UPDATE word_forms SET tags = array_append(tags, 'building-block') "
            "WHERE id = 202 AND NOT (tags @> ARRAY['building-block'])",
        )

    def test_auxiliary_tag(self, context):
        issue = _issue("missing-auxiliary-tag", expected_value="essere-auxiliary", record_id=8)
        rec = DEFAULT_HANDLERS.handle(issue, context)
        assert rec.priority == 7
        assert "array_append(tags, 'essere-auxiliary')" in rec.statements[0]

    def test_conjugation_class_with_suggestion(self, context):
        issue = _issue(
            "missing-conjugation-class",
            expected_value="are-conjugation",
            auto_fix='Add "are-conjugation" tag',
            record_id=2,
        )
        rec = DEFAULT_HANDLERS.handle(issue, context)
        assert rec.affected_tables == ("dictionary",)
        assert rec.statements == (
            "UPDATE dictionary SET tags = array_append(tags, 'are-conjugation') "
            "WHERE id = 2 AND NOT (tags @> ARRAY['are-conjugation'])",
        )
        assert rec.priority == 8

    def test_conjugation_class_without_suggestion_is_manual(self, context):
        issue = _issue("missing-conjugation-class", expected_value=("are-conjugation", "ere-conjugation"))
        assert DEFAULT_HANDLERS.handle(issue, context).is_manual


class TestAuxiliaryHandlers:
    @pytest.mark.parametrize(
        ("text", "auxiliary"),
        [("andare", "essere"), ("Essere", "essere"), ("lavarsi", "essere"), ("parlare", "avere")],
    )
    def test_infer_auxiliary(self, text, auxiliary):
        assert infer_auxiliary(text) == auxiliary

    def test_auxiliary_assignment(self, legacy_issues, context):
        rec = DEFAULT_HANDLERS.handle(legacy_issues["missing-auxiliary-assignment"], context)
        assert rec.category == MigrationCategory.AUXILIARY
        assert rec.safety_level == SafetyLevel.CAUTION
        assert rec.priority == 10
        assert rec.requires_validation is True
        assert rec.post_validation_checks == ("rows-affected",)
        assert rec.statements == (
            "UPDATE word_translations SET context_metadata = "
            "COALESCE(context_metadata, '{}'::jsonb) || '{\"auxiliary\": \"essere\"}'::jsonb "
            "WHERE id = 250 AND (context_metadata ->> 'auxiliary') IS NULL",
        )
        assert rec.rollback_statements == (
            "UPDATE word_translations SET context_metadata = context_metadata - 'auxiliary' "
            "WHERE id = 250 AND (context_metadata ->> 'auxiliary') = 'essere'",
        )

    def test_invalid_auxiliary_is_overwritten_on_its_current_value(self, context):
        issue = _issue(
            "missing-auxiliary-assignment",
            layer=ValidationLayer.TRANSLATION,
            current_value="stare",
            expected_value=("avere", "essere"),
            record_id=250,
        )
        rec = DEFAULT_HANDLERS.handle(issue, context)
        assert rec.statements == (
            "UPDATE word_translations SET context_metadata = "
            "COALESCE(context_metadata, '{}'::jsonb) || '{\"auxiliary\": \"essere\"}'::jsonb "
            "WHERE id = 250 AND (context_metadata ->> 'auxiliary') = 'stare'",
        )
        assert rec.rollback_statements == (
            "UPDATE word_translations SET context_metadata = "
            "COALESCE(context_metadata, '{}'::jsonb) || '{\"auxiliary\": \"stare\"}'::jsonb "
            "WHERE id = 250 AND (context_metadata ->> 'auxiliary') = 'essere'",
        )
        assert rec.description == "Replace auxiliary 'stare' with essere on translation 250"

    def test_miscased_auxiliary_is_normalized(self, context):
        issue = _issue("missing-auxiliary-assignment", current_value="Avere", record_id=250)
        rec = DEFAULT_HANDLERS.handle(issue, context)
        assert "'{\"auxiliary\": \"avere\"}'::jsonb" in rec.statements[0]
        assert rec.statements[0].endswith("(context_metadata ->> 'auxiliary') = 'Avere'")

    def test_non_string_auxiliary_is_manual(self, context):
        issue = _issue("missing-auxiliary-assignment", current_value=3, record_id=250)
        assert DEFAULT_HANDLERS.handle(issue, context).is_manual

    def test_consistency_mismatch(self, context):
        issue = _issue(
            "auxiliary-consistency-mismatch",
            current_value=["essere-auxiliary"],
            expected_value="avere-auxiliary",
            record_id=9,
        )
        rec = DEFAULT_HANDLERS.handle(issue, context)
        assert rec.category == MigrationCategory.CROSS_REFERENCE
        assert rec.estimated_minutes == 5
        assert [s.split(" WHERE ")[0] for s in rec.statements] == [
            "UPDATE word_forms SET tags = array_remove(tags, 'essere-auxiliary')",
            "UPDATE word_forms SET tags = array_append(tags, 'avere-auxiliary')",
        ]
        assert [s.split(" WHERE ")[0] for s in rec.rollback_statements] == [
            "UPDATE word_forms SET tags = array_remove(tags, 'avere-auxiliary')",
            "UPDATE word_forms SET tags = array_append(tags, 'essere-auxiliary')",
        ]


class TestCrossReferenceHandlers:
    def test_broken_form_reference(self, legacy_issues, context):
        rec = DEFAULT_HANDLERS.handle(legacy_issues["broken-form-reference"], context)
        assert rec.id == "rec-2-broken-form-reference-250"
        assert rec.safety_level == SafetyLevel.CAUTION
        assert rec.statements == (
            "UPDATE word_translations SET form_ids = array_remove(form_ids, 999) "
            "WHERE id = 250 AND form_ids @> ARRAY[999]",
        )
        assert rec.rollback_statements == (
            "UPDATE word_translations SET form_ids = array_append(form_ids, 999) "
            "WHERE id = 250 AND NOT (form_ids @> ARRAY[999])",
        )


class TestManualReview:
    @pytest.mark.parametrize(
        ("severity", "priority"),
        [(Severity.CRITICAL, 6), (Severity.HIGH, 4), (Severity.MEDIUM, 2), (Severity.LOW, 2)],
    )
    def test_priority_by_severity(self, context, severity, priority):
        rec = DEFAULT_HANDLERS.handle(_issue("missing-mood-tag", severity=severity, record_id=3), context)
        assert rec.priority == priority
        assert rec.estimated_minutes == 15
        assert rec.safety_level == SafetyLevel.MANUAL_REVIEW
        assert rec.pre_validation_checks == ()

    def test_carries_manual_steps(self, legacy_issues, context):
        rec = DEFAULT_HANDLERS.handle(legacy_issues["missing-transitivity"], context)
        assert rec.manual_steps == ("Set context_metadata.transitivity to one of: transitive, intransitive",)
        assert rec.id == "rec-2-missing-transitivity-250"


def test_all_generated_statements_pass_audit(legacy_issues, context):
    for issue in legacy_issues.values():
        rec = DEFAULT_HANDLERS.handle(issue, context)
        for statement in (*rec.statements, *rec.rollback_statements):
            audit_statement(statement)


ROUND_TRIPS = [
    pytest.param(
        "legacy-person-terms", "word_forms", 7, "tags", ["io", "singolare"],
        {"current_value": ["io"]}, ["prima-persona", "singolare"],
        id="legacy-person",
    ),
    pytest.param(
        "legacy-person-terms", "word_forms", 7, "tags", ["lui", "terza-persona", "singolare"],
        {"current_value": ["lui"], "already_present": ("terza-persona",)}, ["singolare", "terza-persona"],
        id="legacy-person-transition",
    ),
    pytest.param(
        "legacy-person-terms", "word_forms", 7, "tags", ["lei", "lui"],
        {"current_value": ["lui", "lei"]}, ["terza-persona"],
        id="legacy-person-many-to-one",
    ),
    pytest.param(
        "legacy-number-terms", "word_forms", 7, "tags", ["plural", "terza-persona"],
        {"current_value": ["plural"]}, ["plurale", "terza-persona"],
        id="legacy-number",
    ),
    pytest.param(
        "legacy-mood-terms", "word_forms", 7, "tags", ["gerund"],
        {"current_value": ["gerund"]}, ["gerundio"],
        id="legacy-mood",
    ),
    pytest.param(
        "legacy-auxiliary-format", "word_forms", 7, "tags", ["auxiliary-avere"],
        {"current_value": ["auxiliary-avere"]}, ["avere-auxiliary"],
        id="legacy-auxiliary",
    ),
    pytest.param(
        "legacy-auxiliary-format", "word_forms", 7, "tags", ["auxiliary-avere", "avere-auxiliary"],
        {"current_value": ["auxiliary-avere"], "already_present": ("avere-auxiliary",)}, ["avere-auxiliary"],
        id="legacy-auxiliary-transition",
    ),
    pytest.param(
        "missing-conjugation-class", "dictionary", 2, "tags", ["always-intransitive"],
        {"expected_value": "are-conjugation", "auto_fix": "Add tag"}, ["always-intransitive", "are-conjugation"],
        id="conjugation-class",
    ),
    pytest.param(
        "missing-auxiliary-tag", "word_forms", 7, "tags", ["passato-prossimo"],
        {"expected_value": "essere-auxiliary"}, ["essere-auxiliary", "passato-prossimo"],
        id="auxiliary-tag",
    ),
    pytest.param(
        "missing-building-block-tag", "word_forms", 7, "tags", ["participio-passato"],
        {"expected_value": "building-block"}, ["building-block", "participio-passato"],
        id="building-block",
    ),
    pytest.param(
        "auxiliary-consistency-mismatch", "word_forms", 7, "tags", ["essere-auxiliary", "passato-prossimo"],
        {"current_value": ["essere-auxiliary"], "expected_value": "avere-auxiliary"},
        ["avere-auxiliary", "passato-prossimo"],
        id="auxiliary-consistency",
    ),
    pytest.param(
        "broken-form-reference", "word_translations", 250, "form_ids", [201, 999],
        {"current_value": 999}, [201],
        id="broken-form-reference",
    ),
    pytest.param(
        "missing-auxiliary-assignment", "word_translations", 250, "context_metadata",
        {"transitivity": "intransitive"},
        {"expected_value": ("avere", "essere")}, {"auxiliary": "essere", "transitivity": "intransitive"},
        id="auxiliary-missing",
    ),
    pytest.param(
        "missing-auxiliary-assignment", "word_translations", 250, "context_metadata",
        {"auxiliary": "stare", "usage": "common"},
        {"current_value": "stare", "expected_value": ("avere", "essere")},
        {"auxiliary": "essere", "usage": "common"},
        id="auxiliary-invalid",
    ),
    pytest.param(
        "missing-auxiliary-assignment", "word_translations", 250, "context_metadata",
        {"auxiliary": "Avere"},
        {"current_value": "Avere", "expected_value": ("avere", "essere")}, {"auxiliary": "avere"},
        id="auxiliary-miscased",
    ),
]


class TestRoundTrip:
    """Forward statements reach the fixed state; rollback restores the original row exactly."""

    @pytest.mark.parametrize(("rule_id", "table", "record_id", "column", "before", "fields", "after"), ROUND_TRIPS)
    def test_forward_then_rollback(self, context, rule_id, table, record_id, column, before, fields, after):
        store = ApplyingMutationStore({table: {record_id: {column: before}, 99: {column: before}}})
        original = store.state()
        rec = DEFAULT_HANDLERS.handle(_issue(rule_id, record_id=record_id, **fields), context)
        assert not rec.is_manual

        store.apply(rec.statements)
        fixed = store.rows[table][record_id][column]
        if isinstance(after, list):
            assert sorted(fixed, key=str) == after
            assert len(fixed) == len(set(fixed))
        else:
            assert fixed == after
        assert store.state()[table][99] == original[table][99]

        store.apply(rec.rollback_statements)
        assert store.state() == original

    def test_forward_statements_are_idempotent(self, context):
        store = ApplyingMutationStore({"word_forms": {7: {"tags": ["lei", "lui"]}}})
        rec = DEFAULT_HANDLERS.handle(_issue("legacy-person-terms", current_value=["lui", "lei"], record_id=7), context)
        store.apply(rec.statements)
        fixed = store.state()
        store.apply(rec.statements)
        assert store.state() == fixed

    def test_validator_issue_round_trips_transition_form(self, context):
        form = Form(7, 2, "va", {"indicativo", "presente", "lui", "terza-persona", "singolare"})
        bundle = EntityBundle(entity=Entity(2, "andare", tags={"are-conjugation"}), forms=[form])
        store = ApplyingMutationStore.from_bundles(bundle)
        original = store.state()
        issues = [
            issue
            for issue in ComplianceValidator().validate_entity(bundle).issues
            if issue.rule_id == "legacy-person-terms"
        ]
        assert [issue.already_present for issue in issues] == [("terza-persona",)]

        rec = DEFAULT_HANDLERS.handle(issues[0], context)
        store.apply(rec.statements)
        assert sorted(store.tags("word_forms", 7)) == ["indicativo", "presente", "singolare", "terza-persona"]
        store.apply(rec.rollback_statements)
        assert store.state() == original
