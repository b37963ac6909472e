"""Compliance issues, reports and scoring.

Issues and reports are created fresh on every validation run and never
persisted. Scoring is a pure function of the issue counts:

    score = max(0, round(100 * (budget - (4*critical + 2*high + medium)) / budget))

Status: any critical → blocks-migration; more than two high →
critical-issues; any issue → needs-work; else compliant.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from lexspine.core.enums import ComplianceStatus, PriorityLevel, Severity, ValidationLayer
from lexspine.core.models import RecordId

SEVERITY_WEIGHTS: dict[Severity, int] = {
    Severity.CRITICAL: 4,
    Severity.HIGH: 2,
    Severity.MEDIUM: 1,
    Severity.LOW: 0,
}

AUTO_FIX_MINUTES = 2
MANUAL_FIX_MINUTES = 15


def utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(UTC)


def calculate_score(critical: int, high: int, medium: int, budget: int = 20) -> int:
    weighted = (
        SEVERITY_WEIGHTS[Severity.CRITICAL] * critical
        + SEVERITY_WEIGHTS[Severity.HIGH] * high
        + SEVERITY_WEIGHTS[Severity.MEDIUM] * medium
    )
    return max(0, round(100 * (budget - weighted) / budget))


def determine_status(critical: int, high: int, medium: int, low: int = 0) -> ComplianceStatus:
    if critical > 0:
        return ComplianceStatus.BLOCKS_MIGRATION
    if high > 2:
        return ComplianceStatus.CRITICAL_ISSUES
    if high + medium + low > 0:
        return ComplianceStatus.NEEDS_WORK
    return ComplianceStatus.COMPLIANT


def migration_readiness(critical: int, high: int) -> bool:
    return critical == 0 and high <= 1


def format_duration(minutes: int) -> str:
    """``"N minutes"`` below an hour, ``"N hours"`` below a day, else ``"N days"``."""
    if minutes < 60:
        return f"{minutes} minutes"
    if minutes < 1440:
        return f"{round(minutes / 60)} hours"
    return f"{round(minutes / 1440)} days"


def _freeze(value: Any) -> Any:
    if isinstance(value, (list, set, frozenset)):
        return tuple(sorted(value) if isinstance(value, (set, frozenset)) else value)
    return value


@dataclass(frozen=True)
class ComplianceIssue:
    """A single rule violation. Immutable once created."""

    rule_id: str
    severity: Severity
    message: str
    layer: ValidationLayer
    current_value: Any = None
    expected_value: Any = None
    auto_fix: str | None = None
    manual_steps: tuple[str, ...] = ()
    context: str | None = None
    record_id: RecordId | None = None
    # target values the record already carries alongside the offending ones
    already_present: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "current_value", _freeze(self.current_value))
        object.__setattr__(self, "already_present", tuple(self.already_present))
        object.__setattr__(self, "expected_value", _freeze(self.expected_value))
        object.__setattr__(self, "manual_steps", tuple(self.manual_steps))

    @property
    def auto_fixable(self) -> bool:
        return self.auto_fix is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "severity": self.severity.value,
            "message": self.message,
            "layer": self.layer.value,
            "current_value": self.current_value,
            "expected_value": self.expected_value,
            "auto_fix": self.auto_fix,
            "manual_steps": list(self.manual_steps),
            "context": self.context,
            "record_id": self.record_id,
            "already_present": list(self.already_present),
        }


@dataclass
class EntityComplianceReport:
    """Issues for one entity across the four layers, with derived verdicts."""

    entity_id: RecordId
    entity_text: str
    entity_issues: list[ComplianceIssue] = field(default_factory=list)
    translation_issues: list[ComplianceIssue] = field(default_factory=list)
    form_issues: list[ComplianceIssue] = field(default_factory=list)
    cross_reference_issues: list[ComplianceIssue] = field(default_factory=list)
    missing_building_blocks: list[str] = field(default_factory=list)
    deprecated_content: list[str] = field(default_factory=list)
    priority_level: PriorityLevel = PriorityLevel.LOW
    score: int = 100
    status: ComplianceStatus = ComplianceStatus.COMPLIANT
    migration_readiness: bool = True
    estimated_fix_minutes: int = 0

    @property
    def issues(self) -> list[ComplianceIssue]:
        return [
            *self.entity_issues,
            *self.translation_issues,
            *self.form_issues,
            *self.cross_reference_issues,
        ]

    @property
    def auto_fixable(self) -> list[ComplianceIssue]:
        return [issue for issue in self.issues if issue.auto_fixable]

    @property
    def manual_only(self) -> list[ComplianceIssue]:
        return [issue for issue in self.issues if not issue.auto_fixable]

    def count(self, severity: Severity) -> int:
        return sum(1 for issue in self.issues if issue.severity == severity)

    def finalize(self, budget: int = 20) -> EntityComplianceReport:
        """Compute score, status, readiness and fix time from the issue lists."""
        critical = self.count(Severity.CRITICAL)
        high = self.count(Severity.HIGH)
        medium = self.count(Severity.MEDIUM)
        low = self.count(Severity.LOW)
        self.score = calculate_score(critical, high, medium, budget)
        self.status = determine_status(critical, high, medium, low)
        self.migration_readiness = migration_readiness(critical, high)
        self.estimated_fix_minutes = (
            len(self.auto_fixable) * AUTO_FIX_MINUTES + len(self.manual_only) * MANUAL_FIX_MINUTES
        )
        return self

    @property
    def estimated_fix_time(self) -> str:
        return format_duration(self.estimated_fix_minutes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_id": self.entity_id,
            "entity_text": self.entity_text,
            "score": self.score,
            "status": self.status.value,
            "migration_readiness": self.migration_readiness,
            "priority_level": self.priority_level.value,
            "estimated_fix_time": self.estimated_fix_time,
            "issues": [issue.to_dict() for issue in self.issues],
            "missing_building_blocks": list(self.missing_building_blocks),
            "deprecated_content": list(self.deprecated_content),
        }


@dataclass(frozen=True)
class TopIssue:
    rule_id: str
    count: int
    severity: Severity
    impact: str


@dataclass(frozen=True)
class ValidationFailure:
    """An entity that could not be validated; analysis continued without it."""

    entity_id: RecordId
    message: str
    error_type: str


@dataclass
class SystemComplianceReport:
    total_entities: int = 0
    analyzed_entities: int = 0
    distribution: dict[ComplianceStatus, int] = field(
        default_factory=lambda: {status: 0 for status in ComplianceStatus}
    )
    overall_score: int = 0
    top_issues: list[TopIssue] = field(default_factory=list)
    auto_fixable_count: int = 0
    ready_for_migration: bool = False
    blockers: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    estimated_work_minutes: int = 0
    architectural_readiness: int = 0
    data_quality: int = 0
    structural_completeness: int = 0
    entity_reports: list[EntityComplianceReport] = field(default_factory=list)
    validation_errors: list[ValidationFailure] = field(default_factory=list)
    generated_at: datetime = field(default_factory=utcnow)

    @property
    def estimated_work(self) -> str:
        return format_duration(self.estimated_work_minutes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_entities": self.total_entities,
            "analyzed_entities": self.analyzed_entities,
            "distribution": {status.value: count for status, count in self.distribution.items()},
            "overall_score": self.overall_score,
            "top_issues": [
                {"rule_id": t.rule_id, "count": t.count, "severity": t.severity.value, "impact": t.impact}
                for t in self.top_issues
            ],
            "auto_fixable_count": self.auto_fixable_count,
            "ready_for_migration": self.ready_for_migration,
            "blockers": list(self.blockers),
            "recommendations": list(self.recommendations),
            "estimated_work": self.estimated_work,
            "alignment": {
                "architectural_readiness": self.architectural_readiness,
                "data_quality": self.data_quality,
                "structural_completeness": self.structural_completeness,
            },
            "validation_errors": [
                {"entity_id": e.entity_id, "message": e.message, "error_type": e.error_type}
                for e in self.validation_errors
            ],
            "generated_at": self.generated_at.isoformat(),
        }


__all__ = [
    "SEVERITY_WEIGHTS",
    "calculate_score",
    "determine_status",
    "migration_readiness",
    "format_duration",
    "ComplianceIssue",
    "EntityComplianceReport",
    "TopIssue",
    "ValidationFailure",
    "SystemComplianceReport",
]
