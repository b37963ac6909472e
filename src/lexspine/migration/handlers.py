"""
Recommendation handlers - one pure function per compliance rule id.

Manifesto:
    Turning an issue into SQL is the riskiest step in the pipeline, so it
    is kept small and inspectable: every rule id maps to exactly one
    handler, every handler is a pure function of the issue and the owning
    entity, and every statement comes from the statement builder. Handlers
    never read the store and never execute anything.

    - **Registry, not switch:** rule ids are registered with a decorator
    - **Reversible:** every forward statement has a rollback statement
    - **Honest:** anything needing linguistic judgment becomes manual-review

Architecture:
    ::

        ComplianceIssue ──► HandlerRegistry.handle(issue, context)
                               │
                               ├── registered rule id ─► handler(issue, ctx)
                               │                           └─► MigrationRecommendation | None
                               └── unknown rule id ────► None (logged)

Examples:
    >>> registry = HandlerRegistry()
    >>> @registry.register("missing-foo")
    ... def handle_foo(issue, ctx):
    ...     return None
    >>> registry.list()
    ['missing-foo']

Tags:
    migration, handlers, registry, recommendations, rollback, lexspine

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from lexspine.compliance.reports import ComplianceIssue
from lexspine.compliance.rules import DEFAULT_RULE_CATALOG, RuleCatalog
from lexspine.core.enums import MigrationCategory, SafetyLevel, Severity
from lexspine.core.logging import get_logger
from lexspine.core.models import RecordId
from lexspine.core.statements import (
    Where,
    array_append,
    array_remove,
    metadata_merge,
    metadata_remove,
)
from lexspine.migration.checks import ROLLBACK_AVAILABLE, ROWS_AFFECTED, STATEMENTS_PRESENT
from lexspine.migration.models import MigrationRecommendation
from lexspine.terminology.converter import TerminologyConverter

logger = get_logger(__name__)

FORMS = "word_forms"
ENTITIES = "dictionary"
TRANSLATIONS = "word_translations"

SAFE_CHECKS = (STATEMENTS_PRESENT, ROLLBACK_AVAILABLE)

# Verbs conjugated with essere besides reflexives.
ESSERE_VERBS = frozenset({"essere", "andare"})


@dataclass(frozen=True)
class HandlerContext:
    """What a handler may know besides the issue itself."""

    entity_id: RecordId
    entity_text: str
    converter: TerminologyConverter
    catalog: RuleCatalog = DEFAULT_RULE_CATALOG


Handler = Callable[[ComplianceIssue, HandlerContext], MigrationRecommendation | None]


class HandlerRegistry:
    """Rule id → handler dispatch table."""

    def __init__(self) -> None:
        self._handlers: dict[str, Handler] = {}

    def register(self, *rule_ids: str) -> Callable[[Handler], Handler]:
        """Decorator registering ``handler`` for each of ``rule_ids``."""

        def decorator(handler: Handler) -> Handler:
            for rule_id in rule_ids:
                if rule_id in self._handlers:
                    raise ValueError(f"Handler for '{rule_id}' is already registered")
                self._handlers[rule_id] = handler
                logger.debug("handler_registered", rule_id=rule_id, handler=handler.__name__)
            return handler

        return decorator

    def get(self, rule_id: str) -> Handler:
        if rule_id not in self._handlers:
            available = ", ".join(sorted(self._handlers))
            raise KeyError(f"Handler '{rule_id}' not found. Available: {available}")
        return self._handlers[rule_id]

    def list(self) -> list[str]:
        return sorted(self._handlers)

    def __contains__(self, rule_id: object) -> bool:
        return rule_id in self._handlers

    def handle(self, issue: ComplianceIssue, context: HandlerContext) -> MigrationRecommendation | None:
        handler = self._handlers.get(issue.rule_id)
        if handler is None:
            logger.warning("handler_missing", rule_id=issue.rule_id, entity_id=context.entity_id)
            return None
        return handler(issue, context)


def _recommendation(
    issue: ComplianceIssue,
    ctx: HandlerContext,
    *,
    category: MigrationCategory,
    safety: SafetyLevel,
    priority: int,
    minutes: int,
    statements: Iterable[str] = (),
    rollback: Iterable[str] = (),
    tables: Iterable[str] = (),
    description: str | None = None,
) -> MigrationRecommendation:
    statements = tuple(statements)
    caution = safety == SafetyLevel.CAUTION
    record = issue.record_id if issue.record_id is not None else ctx.entity_id
    return MigrationRecommendation(
        id=f"rec-{ctx.entity_id}-{issue.rule_id}-{record}",
        rule_id=issue.rule_id,
        entity_id=ctx.entity_id,
        entity_text=ctx.entity_text,
        description=description or issue.message,
        severity=issue.severity,
        category=category,
        safety_level=safety,
        statements=statements,
        rollback_statements=tuple(rollback),
        priority=priority,
        pre_validation_checks=SAFE_CHECKS if statements else (),
        post_validation_checks=(ROWS_AFFECTED,) if caution and statements else (),
        requires_validation=caution,
        estimated_minutes=minutes,
        affected_tables=tuple(tables),
        manual_steps=issue.manual_steps,
        record_id=issue.record_id,
    )


def manual_review(issue: ComplianceIssue, ctx: HandlerContext) -> MigrationRecommendation:
    """Recommendation without statements, carrying the issue's manual steps."""
    priority = {Severity.CRITICAL: 6, Severity.HIGH: 4}.get(issue.severity, 2)
    return _recommendation(
        issue,
        ctx,
        category=MigrationCategory.TAGS,
        safety=SafetyLevel.MANUAL_REVIEW,
        priority=priority,
        minutes=15,
    )


def _as_terms(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return [str(v) for v in value]


def _term_swap(issue: ComplianceIssue, ctx: HandlerContext) -> tuple[list[str], list[str]]:
    """Forward and rollback statements replacing legacy terms on one form.

    Canonical terms the form already carried are neither appended nor
    removed on rollback, and a canonical term shared by several legacy
    terms is appended once.
    """
    forward: list[str] = []
    rollback: list[str] = []
    appended = set(issue.already_present)
    for term in _as_terms(issue.current_value):
        canonical = ctx.converter.to_canonical(term)
        if canonical is None:
            continue
        if canonical not in appended:
            appended.add(canonical)
            forward.append(
                array_append(FORMS, "tags", canonical, Where(FORMS).id(issue.record_id).lacks("tags", canonical))
            )
            rollback.insert(
                0, array_remove(FORMS, "tags", canonical, Where(FORMS).id(issue.record_id).contains("tags", canonical))
            )
        forward.append(array_remove(FORMS, "tags", term, Where(FORMS).id(issue.record_id).contains("tags", term)))
        rollback.insert(0, array_append(FORMS, "tags", term, Where(FORMS).id(issue.record_id).lacks("tags", term)))
    return forward, rollback


DEFAULT_HANDLERS = HandlerRegistry()


@DEFAULT_HANDLERS.register("legacy-person-terms", "legacy-number-terms", "legacy-mood-terms")
def legacy_terminology(issue: ComplianceIssue, ctx: HandlerContext) -> MigrationRecommendation | None:
    """Append the canonical term, then drop the legacy one."""
    if issue.record_id is None:
        return manual_review(issue, ctx)
    forward, rollback = _term_swap(issue, ctx)
    if not forward:
        return manual_review(issue, ctx)
    return _recommendation(
        issue,
        ctx,
        category=MigrationCategory.TERMINOLOGY,
        safety=SafetyLevel.SAFE,
        priority=9,
        minutes=2,
        statements=forward,
        rollback=rollback,
        tables=(FORMS,),
        description=issue.auto_fix,
    )


@DEFAULT_HANDLERS.register("legacy-auxiliary-format")
def legacy_auxiliary_format(issue: ComplianceIssue, ctx: HandlerContext) -> MigrationRecommendation | None:
    if issue.record_id is None:
        return manual_review(issue, ctx)
    forward, rollback = _term_swap(issue, ctx)
    if not forward:
        return manual_review(issue, ctx)
    return _recommendation(
        issue,
        ctx,
        category=MigrationCategory.TAGS,
        safety=SafetyLevel.SAFE,
        priority=7,
        minutes=1,
        statements=forward,
        rollback=rollback,
        tables=(FORMS,),
        description=issue.auto_fix,
    )


@DEFAULT_HANDLERS.register("missing-conjugation-class")
def suggested_entity_tag(issue: ComplianceIssue, ctx: HandlerContext) -> MigrationRecommendation | None:
    """Add the suffix-derived tag to the entity; manual when nothing was suggested."""
    tag = issue.expected_value
    if not issue.auto_fixable or not isinstance(tag, str):
        return manual_review(issue, ctx)
    return _recommendation(
        issue,
        ctx,
        category=MigrationCategory.TAGS,
        safety=SafetyLevel.SAFE,
        priority=8,
        minutes=1,
        statements=[array_append(ENTITIES, "tags", tag, Where(ENTITIES).id(ctx.entity_id).lacks("tags", tag))],
        rollback=[array_remove(ENTITIES, "tags", tag, Where(ENTITIES).id(ctx.entity_id).contains("tags", tag))],
        tables=(ENTITIES,),
        description=f'Add "{tag}" to {ctx.entity_text}',
    )


def infer_auxiliary(text: str) -> str:
    """essere for essere/andare and reflexive (``-si``) verbs, avere otherwise."""
    lowered = text.strip().lower()
    if lowered in ESSERE_VERBS or lowered.endswith("si"):
        return "essere"
    return "avere"


@DEFAULT_HANDLERS.register("missing-auxiliary-assignment")
def auxiliary_assignment(issue: ComplianceIssue, ctx: HandlerContext) -> MigrationRecommendation | None:
    """Fill a missing auxiliary, or overwrite an invalid one guarded on its current value."""
    current = issue.current_value
    if issue.record_id is None or (current is not None and not isinstance(current, str)):
        return manual_review(issue, ctx)
    column = "context_metadata"
    if current is None:
        auxiliary = infer_auxiliary(ctx.entity_text)
        statements = [
            metadata_merge(
                TRANSLATIONS, column, {"auxiliary": auxiliary},
                Where(TRANSLATIONS).id(issue.record_id).key_missing(column, "auxiliary"),
            )
        ]
        rollback = [
            metadata_remove(
                TRANSLATIONS, column, ["auxiliary"],
                Where(TRANSLATIONS).id(issue.record_id).key_equals(column, "auxiliary", auxiliary),
            )
        ]
        description = f"Assign auxiliary {auxiliary} to translation {issue.record_id}"
    else:
        allowed = issue.expected_value if isinstance(issue.expected_value, (tuple, list)) else ("avere", "essere")
        normalized = current.strip().lower()
        auxiliary = normalized if normalized in allowed else infer_auxiliary(ctx.entity_text)
        statements = [
            metadata_merge(
                TRANSLATIONS, column, {"auxiliary": auxiliary},
                Where(TRANSLATIONS).id(issue.record_id).key_equals(column, "auxiliary", current),
            )
        ]
        rollback = [
            metadata_merge(
                TRANSLATIONS, column, {"auxiliary": current},
                Where(TRANSLATIONS).id(issue.record_id).key_equals(column, "auxiliary", auxiliary),
            )
        ]
        description = f"Replace auxiliary {current!r} with {auxiliary} on translation {issue.record_id}"
    return _recommendation(
        issue,
        ctx,
        category=MigrationCategory.AUXILIARY,
        safety=SafetyLevel.CAUTION,
        priority=10,
        minutes=3,
        statements=statements,
        rollback=rollback,
        tables=(TRANSLATIONS,),
        description=description,
    )


@DEFAULT_HANDLERS.register("missing-auxiliary-tag", "missing-building-block-tag")
def append_form_tag(issue: ComplianceIssue, ctx: HandlerContext) -> MigrationRecommendation | None:
    """Append the expected role or marker tag to the form."""
    tag = issue.expected_value
    if not isinstance(tag, str) or issue.record_id is None:
        return manual_review(issue, ctx)
    building_block = issue.rule_id == "missing-building-block-tag"
    return _recommendation(
        issue,
        ctx,
        category=MigrationCategory.TAGS,
        safety=SafetyLevel.SAFE,
        priority=6 if building_block else 7,
        minutes=1,
        statements=[array_append(FORMS, "tags", tag, Where(FORMS).id(issue.record_id).lacks("tags", tag))],
        rollback=[array_remove(FORMS, "tags", tag, Where(FORMS).id(issue.record_id).contains("tags", tag))],
        tables=(FORMS,),
        description=issue.auto_fix,
    )


@DEFAULT_HANDLERS.register("auxiliary-consistency-mismatch")
def auxiliary_consistency(issue: ComplianceIssue, ctx: HandlerContext) -> MigrationRecommendation | None:
    expected = issue.expected_value
    if not isinstance(expected, str) or issue.record_id is None:
        return manual_review(issue, ctx)
    wrong = [tag for tag in _as_terms(issue.current_value) if tag != expected]
    forward = [
        array_remove(FORMS, "tags", tag, Where(FORMS).id(issue.record_id).contains("tags", tag)) for tag in wrong
    ]
    forward.append(array_append(FORMS, "tags", expected, Where(FORMS).id(issue.record_id).lacks("tags", expected)))
    rollback = [array_remove(FORMS, "tags", expected, Where(FORMS).id(issue.record_id).contains("tags", expected))]
    rollback.extend(
        array_append(FORMS, "tags", tag, Where(FORMS).id(issue.record_id).lacks("tags", tag)) for tag in reversed(wrong)
    )
    return _recommendation(
        issue,
        ctx,
        category=MigrationCategory.CROSS_REFERENCE,
        safety=SafetyLevel.CAUTION,
        priority=8,
        minutes=5,
        statements=forward,
        rollback=rollback,
        tables=(FORMS,),
        description=issue.auto_fix,
    )


@DEFAULT_HANDLERS.register("broken-form-reference")
def broken_form_reference(issue: ComplianceIssue, ctx: HandlerContext) -> MigrationRecommendation | None:
    """Drop the dangling id from the translation's ``form_ids``."""
    form_id = issue.current_value
    if form_id is None or issue.record_id is None:
        return manual_review(issue, ctx)
    return _recommendation(
        issue,
        ctx,
        category=MigrationCategory.CROSS_REFERENCE,
        safety=SafetyLevel.CAUTION,
        priority=7,
        minutes=2,
        statements=[
            array_remove(
                TRANSLATIONS, "form_ids", form_id,
                Where(TRANSLATIONS).id(issue.record_id).contains("form_ids", form_id),
            )
        ],
        rollback=[
            array_append(
                TRANSLATIONS, "form_ids", form_id,
                Where(TRANSLATIONS).id(issue.record_id).lacks("form_ids", form_id),
            )
        ],
        tables=(TRANSLATIONS,),
        description=issue.auto_fix,
    )


MANUAL_RULE_IDS = (
    "missing-mood-tag",
    "missing-tense-tag",
    "multiple-mood-tags",
    "multiple-tense-tags",
    "multiple-conjugation-class-tags",
    "multiple-transitivity-potential-tags",
    "missing-transitivity",
    "missing-transitivity-potential",
    "missing-form-ids-array",
    "no-translations",
    "no-forms",
    "broken-form-translation-reference",
    "translation-no-forms",
    "translation-incomplete-coverage",
)

DEFAULT_HANDLERS.register(*MANUAL_RULE_IDS)(manual_review)


__all__ = [
    "HandlerContext",
    "Handler",
    "HandlerRegistry",
    "DEFAULT_HANDLERS",
    "MANUAL_RULE_IDS",
    "manual_review",
    "infer_auxiliary",
]
