"""
Compliance validator - audits entity bundles against the rule catalog.

Manifesto:
    Migration is only safe when we know exactly what is wrong with the data
    before touching it. The validator turns an entity bundle (entity,
    translations, forms, links) into structured, immutable issues and a
    score, so every later stage (recommendations, batching, execution) is
    driven by the same evidence.

    - **Catalog-driven:** Required tags and metadata come from RuleCatalog
    - **State-free:** Only a transient results buffer, reset per system run
    - **Non-fatal per entity:** A broken entity is recorded and skipped
    - **Explainable:** Every issue has a rule id, severity and fix hint

Architecture:
    ::

        ┌────────────────────────────────────────────────────────────────┐
        │                    ComplianceValidator                          │
        └────────────────────────────────────────────────────────────────┘

        validate_entity(bundle)
            1. entity checks        entity_requirements (conjugation, transitivity)
            2. translation checks   no-translations | metadata | form_ids
            3. form checks          no-forms | mood/tense | legacy terms |
                                    compound auxiliary tag | building-block tag
            4. cross-reference      dangling refs | auxiliary consistency | coverage
            5. building blocks      required base forms + tense/person grid
            6. deprecated content   counted, never issues
            7. scoring              score / status / readiness / fix time

        validate_system(reader)
            list_entities → load_bundle (LookupCache) → validate_entity
                → SystemComplianceReport (distribution, top issues, verdict)

Examples:
    >>> validator = ComplianceValidator()
    >>> report = validator.validate_entity(bundle)
    >>> report.status
    <ComplianceStatus.BLOCKS_MIGRATION: 'blocks-migration'>

Tags:
    compliance, validation, rules, scoring, lexspine

Doc-Types:
    api-reference
"""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass
from typing import Any, Literal

from lexspine.compliance.reports import (
    ComplianceIssue,
    EntityComplianceReport,
    SystemComplianceReport,
    TopIssue,
    ValidationFailure,
)
from lexspine.compliance.rules import (
    DEFAULT_RULE_CATALOG,
    HIGH_PRIORITY_FILTER_TAGS,
    RuleCatalog,
    TagRequirement,
)
from lexspine.core.cache import LookupCache, cache_key
from lexspine.core.enums import ComplianceStatus, PriorityLevel, Severity, TermCategory, ValidationLayer
from lexspine.core.errors import NoEntitiesError
from lexspine.core.logging import StructuredLogger, get_logger
from lexspine.core.models import Entity, EntityBundle, Form, RecordId
from lexspine.core.protocols import EntityReader
from lexspine.core.settings import LexSpineSettings
from lexspine.terminology.converter import ConversionOptions, TerminologyAnalysis, TerminologyConverter


@dataclass(frozen=True)
class ValidationOptions:
    category: str = "VERB"
    include_cross_reference: bool = True
    include_deprecated_check: bool = True
    include_terminology: bool = True
    max_entities: int = 50
    priority_filter: Literal["all", "high-only"] = "all"
    issue_budget: int = 20
    readiness_threshold: int = 95

    @classmethod
    def from_settings(cls, settings: LexSpineSettings, **overrides: Any) -> ValidationOptions:
        values: dict[str, Any] = {
            "max_entities": settings.max_entities,
            "issue_budget": settings.max_issue_budget,
            "readiness_threshold": settings.readiness_threshold,
        }
        values.update(overrides)
        return cls(**values)


class ComplianceValidator:
    """Evaluates the rule catalog against entity bundles."""

    def __init__(
        self,
        catalog: RuleCatalog = DEFAULT_RULE_CATALOG,
        converter: TerminologyConverter | None = None,
        *,
        logger: StructuredLogger | None = None,
    ):
        self.catalog = catalog
        self.converter = converter or TerminologyConverter()
        self._log = logger or get_logger(__name__)
        self._results: list[EntityComplianceReport] = []
        self._failures: list[ValidationFailure] = []
        self._auxiliary_tags = frozenset(self.converter.canonical_terms(TermCategory.AUXILIARY))

    # ------------------------------------------------------------------ #
    # Per entity
    # ------------------------------------------------------------------ #

    def validate_entity(self, bundle: EntityBundle, options: ValidationOptions | None = None) -> EntityComplianceReport:
        options = options or ValidationOptions()
        entity = bundle.entity
        report = EntityComplianceReport(
            entity_id=entity.id,
            entity_text=entity.text,
            entity_issues=self._check_entity(entity),
            translation_issues=self._check_translations(bundle),
            form_issues=self._check_forms(bundle, options),
            cross_reference_issues=(
                self._check_cross_references(bundle) if options.include_cross_reference else []
            ),
            missing_building_blocks=self._missing_building_blocks(bundle),
            deprecated_content=(
                self._deprecated_content(bundle) if options.include_deprecated_check else []
            ),
            priority_level=self._priority_level(entity),
        )
        report.finalize(options.issue_budget)
        self._log.debug(
            "validation.entity.complete",
            entity_id=entity.id,
            score=report.score,
            status=report.status.value,
            issues=len(report.issues),
        )
        return report

    def _check_entity(self, entity: Entity) -> list[ComplianceIssue]:
        issues = []
        for requirement in self.catalog.entity_requirements:
            issue = self._tag_requirement_issue(
                requirement, entity.tags, ValidationLayer.ENTITY, entity.id, subject=entity.text,
            )
            if issue is not None:
                issues.append(issue)
        return issues

    def _tag_requirement_issue(
        self,
        requirement: TagRequirement,
        tags: frozenset[str],
        layer: ValidationLayer,
        record_id: RecordId,
        *,
        subject: str,
    ) -> ComplianceIssue | None:
        present = sorted(tags.intersection(requirement.tags))
        if len(present) == 1:
            return None
        if present:
            return ComplianceIssue(
                rule_id=requirement.multiple_rule_id,
                severity=requirement.multiple_severity,
                message=f'"{subject}" has {len(present)} {requirement.name} tags, expected exactly one',
                layer=layer,
                current_value=present,
                expected_value=requirement.tags,
                manual_steps=(f"Keep exactly one of: {', '.join(present)}",),
                context=requirement.description or None,
                record_id=record_id,
            )
        suggestion = requirement.suggest(subject) if layer == ValidationLayer.ENTITY else None
        return ComplianceIssue(
            rule_id=requirement.rule_id,
            severity=requirement.severity,
            message=f'"{subject}" is missing a {requirement.name} tag',
            layer=layer,
            current_value=sorted(tags),
            expected_value=suggestion or requirement.tags,
            auto_fix=f'Add "{suggestion}" tag' if suggestion else None,
            manual_steps=() if suggestion else (f"Add one of: {', '.join(requirement.tags)}",),
            context=requirement.description or None,
            record_id=record_id,
        )

    def _check_translations(self, bundle: EntityBundle) -> list[ComplianceIssue]:
        if not bundle.translations:
            return [
                ComplianceIssue(
                    rule_id="no-translations",
                    severity=Severity.CRITICAL,
                    message=f'"{bundle.entity.text}" has no translations',
                    layer=ValidationLayer.TRANSLATION,
                    current_value=0,
                    expected_value="at least 1",
                    manual_steps=("Add at least one translation with context metadata",),
                    record_id=bundle.entity.id,
                )
            ]

        issues = []
        for translation in bundle.translations:
            for requirement in self.catalog.translation_requirements:
                value = translation.context.get(requirement.key)
                if value in requirement.allowed_values:
                    continue
                issues.append(
                    ComplianceIssue(
                        rule_id=requirement.rule_id,
                        severity=requirement.severity,
                        message=f'Translation "{translation.meaning}" has no valid {requirement.key}',
                        layer=ValidationLayer.TRANSLATION,
                        current_value=value,
                        expected_value=requirement.allowed_values,
                        auto_fix=requirement.auto_fix,
                        manual_steps=() if requirement.auto_fix else (
                            f"Set context_metadata.{requirement.key} to one of: "
                            f"{', '.join(requirement.allowed_values)}",
                        ),
                        context=requirement.description or None,
                        record_id=translation.id,
                    )
                )
            if self.catalog.require_form_references and not translation.form_ids:
                issues.append(
                    ComplianceIssue(
                        rule_id=self.catalog.form_references_rule_id,
                        severity=self.catalog.form_references_severity,
                        message=f'Translation "{translation.meaning}" does not reference any forms',
                        layer=ValidationLayer.TRANSLATION,
                        current_value=translation.form_ids,
                        expected_value="non-empty list of form ids",
                        manual_steps=("List the form ids this translation uses in form_ids",),
                        record_id=translation.id,
                    )
                )
        return issues

    def _check_forms(self, bundle: EntityBundle, options: ValidationOptions) -> list[ComplianceIssue]:
        if not bundle.forms:
            return [
                ComplianceIssue(
                    rule_id="no-forms",
                    severity=Severity.CRITICAL,
                    message=f'"{bundle.entity.text}" has no forms',
                    layer=ValidationLayer.FORM,
                    current_value=0,
                    expected_value="at least 1",
                    manual_steps=("Generate or import the conjugation forms",),
                    record_id=bundle.entity.id,
                )
            ]

        issues = []
        for form in bundle.forms:
            for requirement in self.catalog.form_requirements:
                issue = self._tag_requirement_issue(
                    requirement, form.tags, ValidationLayer.FORM, form.id, subject=form.text,
                )
                if issue is not None:
                    issues.append(issue)
            if options.include_terminology:
                issues.extend(self._legacy_terminology_issues(form))
            issue = self._compound_auxiliary_issue(form)
            if issue is not None:
                issues.append(issue)
            issue = self._building_block_issue(form)
            if issue is not None:
                issues.append(issue)
        return issues

    def _legacy_terminology_issues(self, form: Form) -> list[ComplianceIssue]:
        by_category: dict[TermCategory, list[str]] = {}
        for tag in sorted(form.tags):
            if self.converter.is_legacy(tag):
                by_category.setdefault(self.converter.category(tag), []).append(tag)

        issues = []
        for category, terms in by_category.items():
            replacements = [self.converter.to_canonical(term) for term in terms]
            pairs = ", ".join(f"{term} → {canonical}" for term, canonical in zip(terms, replacements))
            issues.append(
                ComplianceIssue(
                    rule_id=self.catalog.legacy_rule_id(category),
                    severity=Severity.CRITICAL,
                    message=f'Form "{form.text}" uses legacy {category.value} terminology: {", ".join(terms)}',
                    layer=ValidationLayer.FORM,
                    current_value=terms,
                    expected_value=replacements,
                    auto_fix=f"Replace with canonical terms: {pairs}",
                    record_id=form.id,
                    already_present=tuple(c for c in dict.fromkeys(replacements) if c in form.tags),
                )
            )
        return issues

    def _role_tags(self, form: Form) -> list[str]:
        """Auxiliary-role tags of a form, in canonical spelling."""
        roles = []
        for tag in sorted(form.tags):
            canonical = self.converter.to_canonical(tag) or tag
            if canonical in self._auxiliary_tags and canonical not in roles:
                roles.append(canonical)
        return roles

    def _compound_auxiliary_issue(self, form: Form) -> ComplianceIssue | None:
        auxiliary = self.catalog.compound_auxiliary(form.text)
        if auxiliary is None or self._role_tags(form):
            return None
        expected = f"{auxiliary}-auxiliary"
        return ComplianceIssue(
            rule_id="missing-auxiliary-tag",
            severity=Severity.CRITICAL,
            message=f'Compound form "{form.text}" has no auxiliary tag',
            layer=ValidationLayer.FORM,
            current_value=sorted(form.tags),
            expected_value=expected,
            auto_fix=f'Add "{expected}" tag',
            record_id=form.id,
        )

    def _building_block_issue(self, form: Form) -> ComplianceIssue | None:
        marker = self.catalog.building_block_tag
        bases = sorted(form.tags.intersection(self.catalog.building_block_base_tags))
        if not bases or marker in form.tags:
            return None
        return ComplianceIssue(
            rule_id="missing-building-block-tag",
            severity=Severity.CRITICAL,
            message=f'Building-block form "{form.text}" ({bases[0]}) is not marked "{marker}"',
            layer=ValidationLayer.FORM,
            current_value=sorted(form.tags),
            expected_value=marker,
            auto_fix=f'Add "{marker}" tag',
            record_id=form.id,
        )

    def _check_cross_references(self, bundle: EntityBundle) -> list[ComplianceIssue]:
        issues = []
        form_ids = bundle.form_ids
        translation_ids = bundle.translation_ids

        for translation in bundle.translations:
            for form_id in translation.form_ids or ():
                if form_id not in form_ids:
                    issues.append(
                        ComplianceIssue(
                            rule_id="broken-form-reference",
                            severity=Severity.CRITICAL,
                            message=f'Translation "{translation.meaning}" references missing form {form_id}',
                            layer=ValidationLayer.CROSS_REFERENCE,
                            current_value=form_id,
                            expected_value=sorted(form_ids, key=str),
                            auto_fix=f"Remove form id {form_id} from form_ids",
                            record_id=translation.id,
                        )
                    )

        for link in bundle.links:
            if link.form_id not in form_ids or link.translation_id not in translation_ids:
                issues.append(
                    ComplianceIssue(
                        rule_id="broken-form-translation-reference",
                        severity=Severity.CRITICAL,
                        message=(
                            f"Form-translation link ({link.form_id}, {link.translation_id}) "
                            "points at a missing record"
                        ),
                        layer=ValidationLayer.CROSS_REFERENCE,
                        current_value=(link.form_id, link.translation_id),
                        manual_steps=("Delete or repoint the dangling form_translations row",),
                        record_id=link.form_id,
                    )
                )

        issues.extend(self._auxiliary_consistency_issues(bundle))
        issues.extend(self._coverage_issues(bundle))
        return issues

    def _auxiliary_consistency_issues(self, bundle: EntityBundle) -> list[ComplianceIssue]:
        issues = []
        reported: set[RecordId] = set()
        for translation in bundle.translations:
            auxiliary = translation.context.auxiliary
            if auxiliary not in self.catalog.compound_patterns:
                continue
            expected = f"{auxiliary}-auxiliary"
            referenced = [*(translation.form_ids or ()), *bundle.linked_form_ids(translation.id)]
            for form_id in dict.fromkeys(referenced):
                form = bundle.form(form_id)
                if form is None or form.id in reported:
                    continue
                detected = self.catalog.compound_auxiliary(form.text)
                # progressive forms carry stare-auxiliary regardless of the translation
                if detected is None or detected == "stare":
                    continue
                roles = self._role_tags(form)
                if not roles or expected in roles:
                    continue
                reported.add(form.id)
                issues.append(
                    ComplianceIssue(
                        rule_id="auxiliary-consistency-mismatch",
                        severity=Severity.CRITICAL,
                        message=(
                            f'Form "{form.text}" is tagged {", ".join(roles)} but translation '
                            f'"{translation.meaning}" declares {auxiliary}'
                        ),
                        layer=ValidationLayer.CROSS_REFERENCE,
                        current_value=roles,
                        expected_value=expected,
                        auto_fix=f'Replace {", ".join(roles)} with "{expected}"',
                        context=f"translation {translation.id}",
                        record_id=form.id,
                    )
                )
        return issues

    def _coverage_issues(self, bundle: EntityBundle) -> list[ComplianceIssue]:
        if not bundle.links or not bundle.forms:
            return []
        issues = []
        form_ids = bundle.form_ids
        for translation in bundle.translations:
            linked = set(bundle.linked_form_ids(translation.id)) & form_ids
            if not linked:
                issues.append(
                    ComplianceIssue(
                        rule_id="translation-no-forms",
                        severity=Severity.CRITICAL,
                        message=f'Translation "{translation.meaning}" is not linked to any form',
                        layer=ValidationLayer.CROSS_REFERENCE,
                        current_value=0,
                        expected_value=len(form_ids),
                        manual_steps=("Assign forms to this translation in form_translations",),
                        record_id=translation.id,
                    )
                )
                continue
            coverage = len(linked) / len(form_ids)
            if coverage < self.catalog.coverage_threshold:
                issues.append(
                    ComplianceIssue(
                        rule_id="translation-incomplete-coverage",
                        severity=self.catalog.coverage_severity,
                        message=(
                            f'Translation "{translation.meaning}" covers {len(linked)} of '
                            f"{len(form_ids)} forms"
                        ),
                        layer=ValidationLayer.CROSS_REFERENCE,
                        current_value=round(coverage, 2),
                        expected_value=self.catalog.coverage_threshold,
                        manual_steps=("Review form assignments for this translation",),
                        record_id=translation.id,
                    )
                )
        return issues

    def _missing_building_blocks(self, bundle: EntityBundle) -> list[str]:
        options = ConversionOptions(check_consistency=False)
        tag_sets = [
            frozenset(self.converter.convert_tag_set(form.tags, options).tags) for form in bundle.forms
        ]
        missing = [
            base.name
            for base in self.catalog.required_base_forms
            if not any(tags.issuperset(base.tags) for tags in tag_sets)
        ]
        missing.extend(
            " ".join(combination)
            for combination in self.catalog.required_combinations
            if not any(tags.issuperset(combination) for tags in tag_sets)
        )
        return missing

    def _deprecated_content(self, bundle: EntityBundle) -> list[str]:
        found = []
        for pattern in self.catalog.deprecated_patterns:
            compiled = [re.compile(p, re.IGNORECASE) for p in pattern.text_patterns]
            count = sum(
                1
                for form in bundle.forms
                if form.tags.intersection(pattern.tags)
                or any(regex.search(form.text.strip()) for regex in compiled)
            )
            if count:
                found.append(f"{count} {pattern.label} (out of scope)")
        return found

    def _priority_level(self, entity: Entity) -> PriorityLevel:
        if entity.tags.intersection(self.catalog.high_priority_tags):
            return PriorityLevel.HIGH
        if entity.tags.intersection(self.catalog.medium_priority_tags):
            return PriorityLevel.MEDIUM
        return PriorityLevel.LOW

    # ------------------------------------------------------------------ #
    # System-wide
    # ------------------------------------------------------------------ #

    def validate_system(
        self,
        reader: EntityReader,
        options: ValidationOptions | None = None,
        *,
        cache: LookupCache | None = None,
    ) -> SystemComplianceReport:
        """Validate every selected entity and aggregate a system report.

        Raises:
            NoEntitiesError: If the reader returns no entities at all.
        """
        options = options or ValidationOptions()
        cache = cache if cache is not None else LookupCache()
        self._results = []
        self._failures = []

        tags_any = HIGH_PRIORITY_FILTER_TAGS if options.priority_filter == "high-only" else None
        entities = reader.list_entities(options.category, tags_any=tags_any, limit=options.max_entities)
        if not entities:
            raise NoEntitiesError(f"No {options.category} entities found to validate")

        self._log.info("validation.system.start", entities=len(entities), category=options.category)
        for entity in entities:
            try:
                bundle = cache.get_or_load(
                    cache_key("bundle", entity.id), lambda: reader.load_bundle(entity.id)
                )
                self._results.append(self.validate_entity(bundle, options))
            except Exception as exc:
                self._failures.append(ValidationFailure(entity.id, str(exc), type(exc).__name__))
                self._log.warning(
                    "validation.entity_failed",
                    entity_id=entity.id,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )

        report = self._build_system_report(len(entities), options)
        self._log.info(
            "validation.system.complete",
            analyzed=report.analyzed_entities,
            failed=len(report.validation_errors),
            overall_score=report.overall_score,
            ready=report.ready_for_migration,
        )
        return report

    def analyze_terminology(self, reader: EntityReader, *, mixed_usage_threshold: int = 0) -> TerminologyAnalysis:
        """Run the system-wide terminology analysis over every form tag set."""
        return self.converter.analyze_system(reader.form_tag_sets(), mixed_usage_threshold=mixed_usage_threshold)

    def _build_system_report(self, total: int, options: ValidationOptions) -> SystemComplianceReport:
        reports = list(self._results)
        report = SystemComplianceReport(
            total_entities=total,
            analyzed_entities=len(reports),
            entity_reports=reports,
            validation_errors=list(self._failures),
        )
        if not reports:
            return report

        for entity_report in reports:
            report.distribution[entity_report.status] += 1

        def percent(count: int) -> int:
            return round(100 * count / len(reports))

        report.overall_score = round(sum(r.score for r in reports) / len(reports))

        counter: Counter[str] = Counter()
        severities: dict[str, Severity] = {}
        for entity_report in reports:
            for issue in entity_report.issues:
                counter[issue.rule_id] += 1
                severities.setdefault(issue.rule_id, issue.severity)
        report.top_issues = [
            TopIssue(rule_id, count, severities[rule_id], self.catalog.impact(rule_id))
            for rule_id, count in counter.most_common(10)
        ]

        report.auto_fixable_count = sum(len(r.auto_fixable) for r in reports)
        report.estimated_work_minutes = sum(r.estimated_fix_minutes for r in reports)

        blocking = report.distribution[ComplianceStatus.BLOCKS_MIGRATION]
        warnings = (
            report.distribution[ComplianceStatus.NEEDS_WORK]
            + report.distribution[ComplianceStatus.CRITICAL_ISSUES]
        )
        missing_blocks = sum(1 for r in reports if r.missing_building_blocks)

        report.ready_for_migration = report.overall_score >= options.readiness_threshold and blocking == 0
        if blocking:
            report.blockers.append(f"{blocking} entities have critical migration-blocking issues")
        if missing_blocks:
            report.blockers.append(f"{missing_blocks} entities missing essential building blocks")

        if blocking:
            report.recommendations.append("Address migration-blocking issues immediately")
        if warnings > 10:
            report.recommendations.append("Implement batch remediation for common issues")
        if report.auto_fixable_count:
            report.recommendations.append(
                f"Run automated fixes for {report.auto_fixable_count} auto-fixable issues"
            )
        if report.overall_score < 80:
            report.recommendations.append("Focus on high-priority entities first (freq-top100, CEFR-A1)")

        report.architectural_readiness = percent(sum(1 for r in reports if r.migration_readiness))
        report.data_quality = percent(
            sum(
                1
                for r in reports
                if r.status in (ComplianceStatus.COMPLIANT, ComplianceStatus.NEEDS_WORK)
            )
        )
        report.structural_completeness = percent(
            sum(1 for r in reports if not r.missing_building_blocks and not r.deprecated_content)
        )
        return report


__all__ = ["ValidationOptions", "ComplianceValidator"]
