"""
Recommendation engine - compliance reports in, migration plans out.

Manifesto:
    A report says what is wrong; a plan says what to run, in which order,
    and how to undo it. The engine is the pure translation between the two:
    it dispatches each issue to its handler, partitions the resulting
    recommendations into a fixed sequence of batches with declared
    dependencies, and sizes up the risk. It never touches the store.

Architecture:
    ::

        SystemComplianceReport / EntityComplianceReport
              │ generate_recommendations  (HandlerRegistry dispatch)
              ▼
        list[MigrationRecommendation]
              │ create_batches
              ▼
        batch-1-terminology ─┐
        batch-2-auxiliary ───┼──► batch-4-cross-reference
        batch-3-tags ────────┘    (batch-3 depends on batch-1)
        batch-5-manual            (no dependencies)
              │ generate_plan (+ assess_risk, checks, success criteria)
              ▼
        MigrationPlan

Examples:
    >>> engine = RecommendationEngine()
    >>> plan = engine.generate_plan(system_report)
    >>> [batch.id for batch in plan.batches]
    ['batch-1-terminology', 'batch-3-tags', 'batch-5-manual']

Tags:
    migration, recommendations, batching, planning, risk, lexspine

Doc-Types:
    api-reference
"""

from __future__ import annotations

import dataclasses
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from lexspine.compliance.reports import EntityComplianceReport, SystemComplianceReport, format_duration
from lexspine.compliance.rules import DEFAULT_RULE_CATALOG, RuleCatalog
from lexspine.core.enums import MigrationCategory, RiskLevel, SafetyLevel, Severity
from lexspine.core.logging import StructuredLogger, get_logger
from lexspine.core.protocols import EntityReader
from lexspine.migration.checks import DEFAULT_PRE_EXECUTION_CHECKS, DEFAULT_SUCCESS_CRITERIA
from lexspine.migration.custom_rules import CustomRuleDefinition, compile_rules
from lexspine.migration.handlers import DEFAULT_HANDLERS, HandlerContext, HandlerRegistry
from lexspine.migration.models import MigrationBatch, MigrationPlan, MigrationRecommendation, new_id
from lexspine.terminology.converter import TerminologyConverter


@dataclass(frozen=True)
class BatchSpec:
    """One slot of the fixed batch sequence."""

    id: str
    name: str
    description: str
    accepts: Callable[[MigrationRecommendation], bool]
    dependencies: tuple[str, ...] = ()


def _is(category: MigrationCategory, *safety: SafetyLevel) -> Callable[[MigrationRecommendation], bool]:
    return lambda r: r.category == category and r.safety_level in safety


BATCH_SEQUENCE: tuple[BatchSpec, ...] = (
    BatchSpec(
        "batch-1-terminology",
        "Terminology migration",
        "Replace legacy terminology with canonical terms",
        _is(MigrationCategory.TERMINOLOGY, SafetyLevel.SAFE),
    ),
    BatchSpec(
        "batch-2-auxiliary",
        "Auxiliary assignment",
        "Assign auxiliaries to translations",
        _is(MigrationCategory.AUXILIARY, SafetyLevel.SAFE, SafetyLevel.CAUTION),
    ),
    BatchSpec(
        "batch-3-tags",
        "Tag standardization",
        "Add missing classification, role and marker tags",
        lambda r: r.category in (MigrationCategory.TAGS, MigrationCategory.CLEANUP)
        and r.safety_level == SafetyLevel.SAFE,
        dependencies=("batch-1-terminology",),
    ),
    BatchSpec(
        "batch-4-cross-reference",
        "Cross-reference fixes",
        "Repair dangling references and auxiliary mismatches",
        _is(MigrationCategory.CROSS_REFERENCE, SafetyLevel.SAFE, SafetyLevel.CAUTION),
        dependencies=("batch-2-auxiliary", "batch-3-tags"),
    ),
    BatchSpec(
        "batch-5-manual",
        "Manual review",
        "Changes requiring human judgment",
        lambda r: True,
    ),
)


def assess_risk(critical: int, manual: int) -> RiskLevel:
    if critical > 5 or manual > 3:
        return RiskLevel.HIGH
    if critical > 2 or manual > 1:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


class RecommendationEngine:
    """Builds recommendations, batches and plans from compliance reports."""

    def __init__(
        self,
        handlers: HandlerRegistry = DEFAULT_HANDLERS,
        converter: TerminologyConverter | None = None,
        catalog: RuleCatalog = DEFAULT_RULE_CATALOG,
        *,
        logger: StructuredLogger | None = None,
    ):
        self.handlers = handlers
        self.converter = converter or TerminologyConverter()
        self.catalog = catalog
        self._log = logger or get_logger(__name__)

    def generate_recommendations(
        self, report: SystemComplianceReport | EntityComplianceReport
    ) -> list[MigrationRecommendation]:
        """One recommendation per handled issue, in report order."""
        entity_reports = report.entity_reports if isinstance(report, SystemComplianceReport) else [report]
        recommendations: list[MigrationRecommendation] = []
        seen: dict[str, int] = {}
        unhandled = 0

        for entity_report in entity_reports:
            context = HandlerContext(
                entity_id=entity_report.entity_id,
                entity_text=entity_report.entity_text,
                converter=self.converter,
                catalog=self.catalog,
            )
            for issue in entity_report.issues:
                recommendation = self.handlers.handle(issue, context)
                if recommendation is None:
                    unhandled += 1
                    continue
                count = seen.get(recommendation.id, 0)
                seen[recommendation.id] = count + 1
                if count:
                    recommendation = dataclasses.replace(recommendation, id=f"{recommendation.id}-{count + 1}")
                recommendations.append(recommendation)

        self._log.info(
            "recommendations.generated",
            entities=len(entity_reports),
            recommendations=len(recommendations),
            unhandled=unhandled,
        )
        return recommendations

    def create_batches(self, recommendations: Iterable[MigrationRecommendation]) -> list[MigrationBatch]:
        """Partition into the fixed batch sequence; empty batches are omitted."""
        buckets: dict[str, list[MigrationRecommendation]] = {spec.id: [] for spec in BATCH_SEQUENCE}
        for recommendation in recommendations:
            for spec in BATCH_SEQUENCE:
                if spec.accepts(recommendation):
                    buckets[spec.id].append(recommendation)
                    break

        present = {batch_id for batch_id, items in buckets.items() if items}
        batches = []
        for order, spec in enumerate(BATCH_SEQUENCE, start=1):
            items = buckets[spec.id]
            if not items:
                continue
            batches.append(
                MigrationBatch(
                    id=spec.id,
                    name=spec.name,
                    description=spec.description,
                    recommendations=sorted(items, key=lambda r: -r.priority),
                    dependencies=tuple(dep for dep in spec.dependencies if dep in present),
                    execution_order=order,
                )
            )
        return batches

    def generate_plan(self, report: SystemComplianceReport | EntityComplianceReport) -> MigrationPlan:
        return self._plan(self.generate_recommendations(report))

    def plan_from_custom_rules(
        self,
        rules: Iterable[CustomRuleDefinition],
        reader: EntityReader | None = None,
        *,
        category: str = "VERB",
    ) -> MigrationPlan:
        """Compile enabled custom rules into a plan.

        With a ``reader`` the rules are compiled against a snapshot of the
        rows they touch, which gives them exact rollback statements.
        """
        recommendations = compile_rules(rules, reader, category=category)
        return self._plan(recommendations)

    def _plan(self, recommendations: list[MigrationRecommendation]) -> MigrationPlan:
        batches = self.create_batches(recommendations)
        critical = sum(1 for r in recommendations if r.severity == Severity.CRITICAL)
        manual = sum(1 for r in recommendations if r.is_manual)
        plan = MigrationPlan(
            id=new_id("plan"),
            batches=batches,
            total_recommendations=len(recommendations),
            critical_count=critical,
            auto_executable_count=sum(1 for r in recommendations if r.auto_executable),
            manual_review_count=manual,
            estimated_total_minutes=sum(r.estimated_minutes for r in recommendations),
            risk_level=assess_risk(critical, manual),
            pre_execution_checks=DEFAULT_PRE_EXECUTION_CHECKS,
            success_criteria=DEFAULT_SUCCESS_CRITERIA,
        )
        self._log.info(
            "plan.generated",
            plan_id=plan.id,
            batches=len(batches),
            recommendations=plan.total_recommendations,
            risk_level=plan.risk_level.value,
            estimated=format_duration(plan.estimated_total_minutes),
        )
        return plan


__all__ = ["BatchSpec", "BATCH_SEQUENCE", "assess_risk", "RecommendationEngine", "format_duration"]
