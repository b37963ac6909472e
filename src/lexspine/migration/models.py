"""Migration domain models.

Defines the data structures shared by the recommendation engine and the
executor:
- MigrationRecommendation: one reversible, statement-level fix for one issue
- MigrationBatch / MigrationPlan: dependency-ordered grouping of recommendations
- MigrationExecution: runtime status of one recommendation in a plan run
- ExecutionResult: runtime status of a whole plan run

Recommendations, batches and plans are produced by the engine and never
mutated afterwards. Executions and results are mutated only through their
``mark_*`` / ``transition_to`` helpers, which enforce the state machines
below.
"""

from __future__ import annotations

import heapq
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from lexspine.core.enums import ExecutionPhase, MigrationCategory, RiskLevel, SafetyLevel, Severity
from lexspine.core.errors import (
    ErrorCategory,
    InvalidTransitionError,
    LexSpineError,
    PlanError,
    categorize_error,
    is_recoverable,
)
from lexspine.core.models import RecordId


def utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(UTC)


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


class ExecutionStatus(str, Enum):
    """Status of a plan run.

    Valid transition graph::

        PENDING  → RUNNING | FAILED
        RUNNING  → COMPLETED | COMPLETED_WITH_WARNINGS | FAILED | ROLLED_BACK
        COMPLETED, COMPLETED_WITH_WARNINGS, FAILED, ROLLED_BACK → (terminal)
    """

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    COMPLETED_WITH_WARNINGS = "completed-with-warnings"
    FAILED = "failed"
    ROLLED_BACK = "rolled-back"


EXECUTION_VALID_TRANSITIONS: dict[ExecutionStatus, frozenset[ExecutionStatus]] = {
    ExecutionStatus.PENDING: frozenset({
        ExecutionStatus.RUNNING,
        ExecutionStatus.FAILED,  # plan could not be ordered
    }),
    ExecutionStatus.RUNNING: frozenset({
        ExecutionStatus.COMPLETED,
        ExecutionStatus.COMPLETED_WITH_WARNINGS,
        ExecutionStatus.FAILED,
        ExecutionStatus.ROLLED_BACK,
    }),
    ExecutionStatus.COMPLETED: frozenset(),  # terminal
    ExecutionStatus.COMPLETED_WITH_WARNINGS: frozenset(),  # terminal
    ExecutionStatus.FAILED: frozenset(),  # terminal
    ExecutionStatus.ROLLED_BACK: frozenset(),  # terminal
}


def validate_execution_transition(current: ExecutionStatus, target: ExecutionStatus) -> None:
    """Raise :class:`InvalidTransitionError` if *current → target* is illegal."""
    allowed = EXECUTION_VALID_TRANSITIONS.get(current, frozenset())
    if target not in allowed:
        raise InvalidTransitionError(current.value, target.value, "ExecutionStatus")


class MigrationStatus(str, Enum):
    """Status of one recommendation within a plan run.

    Valid transition graph::

        PENDING   → RUNNING | SKIPPED
        RUNNING   → COMPLETED | FAILED | SKIPPED
        COMPLETED → ROLLED_BACK
        FAILED, SKIPPED, ROLLED_BACK → (terminal)
    """

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    ROLLED_BACK = "rolled-back"


MIGRATION_VALID_TRANSITIONS: dict[MigrationStatus, frozenset[MigrationStatus]] = {
    MigrationStatus.PENDING: frozenset({MigrationStatus.RUNNING, MigrationStatus.SKIPPED}),
    MigrationStatus.RUNNING: frozenset({
        MigrationStatus.COMPLETED,
        MigrationStatus.FAILED,
        MigrationStatus.SKIPPED,
    }),
    MigrationStatus.COMPLETED: frozenset({MigrationStatus.ROLLED_BACK}),
    MigrationStatus.FAILED: frozenset(),  # terminal
    MigrationStatus.SKIPPED: frozenset(),  # terminal
    MigrationStatus.ROLLED_BACK: frozenset(),  # terminal
}


def validate_migration_transition(current: MigrationStatus, target: MigrationStatus) -> None:
    """Raise :class:`InvalidTransitionError` if *current → target* is illegal."""
    allowed = MIGRATION_VALID_TRANSITIONS.get(current, frozenset())
    if target not in allowed:
        raise InvalidTransitionError(current.value, target.value, "MigrationStatus")


# =============================================================================
# PLANNING
# =============================================================================


@dataclass(frozen=True)
class MigrationRecommendation:
    """A statement-level fix for one compliance issue."""

    id: str
    rule_id: str
    entity_id: RecordId
    entity_text: str
    description: str
    severity: Severity
    category: MigrationCategory
    safety_level: SafetyLevel
    statements: tuple[str, ...] = ()
    rollback_statements: tuple[str, ...] = ()
    priority: int = 5
    pre_validation_checks: tuple[str, ...] = ()
    post_validation_checks: tuple[str, ...] = ()
    requires_validation: bool = False
    estimated_minutes: int = 1
    affected_tables: tuple[str, ...] = ()
    manual_steps: tuple[str, ...] = ()
    record_id: RecordId | None = None

    def __post_init__(self) -> None:
        for name in ("statements", "rollback_statements", "pre_validation_checks",
                     "post_validation_checks", "affected_tables", "manual_steps"):
            object.__setattr__(self, name, tuple(getattr(self, name)))

    @property
    def is_manual(self) -> bool:
        return self.safety_level == SafetyLevel.MANUAL_REVIEW

    @property
    def auto_executable(self) -> bool:
        return not self.is_manual and bool(self.statements)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "rule_id": self.rule_id,
            "entity_id": self.entity_id,
            "entity_text": self.entity_text,
            "description": self.description,
            "severity": self.severity.value,
            "category": self.category.value,
            "safety_level": self.safety_level.value,
            "statements": list(self.statements),
            "rollback_statements": list(self.rollback_statements),
            "priority": self.priority,
            "pre_validation_checks": list(self.pre_validation_checks),
            "post_validation_checks": list(self.post_validation_checks),
            "requires_validation": self.requires_validation,
            "estimated_minutes": self.estimated_minutes,
            "affected_tables": list(self.affected_tables),
            "manual_steps": list(self.manual_steps),
            "record_id": self.record_id,
        }


@dataclass
class MigrationBatch:
    """Recommendations executed together, after every batch they depend on."""

    id: str
    name: str
    description: str
    recommendations: list[MigrationRecommendation] = field(default_factory=list)
    dependencies: tuple[str, ...] = ()
    execution_order: int = 0
    can_run_in_parallel: bool = False

    @property
    def estimated_minutes(self) -> int:
        return sum(r.estimated_minutes for r in self.recommendations)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "dependencies": list(self.dependencies),
            "execution_order": self.execution_order,
            "estimated_minutes": self.estimated_minutes,
            "can_run_in_parallel": self.can_run_in_parallel,
            "recommendations": [r.to_dict() for r in self.recommendations],
        }


@dataclass
class MigrationPlan:
    """Ordered batches plus the checks that gate and confirm a run."""

    id: str
    batches: list[MigrationBatch] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    total_recommendations: int = 0
    critical_count: int = 0
    auto_executable_count: int = 0
    manual_review_count: int = 0
    estimated_total_minutes: int = 0
    risk_level: RiskLevel = RiskLevel.LOW
    pre_execution_checks: tuple[str, ...] = ()
    success_criteria: tuple[str, ...] = ()

    @property
    def recommendations(self) -> list[MigrationRecommendation]:
        return [r for batch in self.batches for r in batch.recommendations]

    @property
    def affected_tables(self) -> list[str]:
        tables: list[str] = []
        for recommendation in self.recommendations:
            for table in recommendation.affected_tables:
                if table not in tables:
                    tables.append(table)
        return tables

    def batch(self, batch_id: str) -> MigrationBatch | None:
        for batch in self.batches:
            if batch.id == batch_id:
                return batch
        return None

    def execution_sequence(self) -> list[MigrationBatch]:
        """Return batches in dependency order (Kahn's algorithm).

        Among batches whose dependencies are satisfied, the lowest
        ``execution_order`` runs first, then declaration order.

        Raises:
            PlanError: On a duplicate batch id, an unknown dependency or a cycle.
        """
        by_id: dict[str, MigrationBatch] = {}
        position: dict[str, int] = {}
        for index, batch in enumerate(self.batches):
            if batch.id in by_id:
                raise PlanError(f"Duplicate batch id: {batch.id}").with_context(plan_id=self.id)
            by_id[batch.id] = batch
            position[batch.id] = index

        adjacency: dict[str, list[str]] = defaultdict(list)
        in_degree: dict[str, int] = {batch_id: 0 for batch_id in by_id}
        for batch in self.batches:
            for dep in batch.dependencies:
                if dep not in by_id:
                    raise PlanError(
                        f"Batch '{batch.id}' depends on unknown batch: '{dep}'"
                    ).with_context(plan_id=self.id, batch_id=batch.id)
                adjacency[dep].append(batch.id)
                in_degree[batch.id] += 1

        def key(batch_id: str) -> tuple[int, int, str]:
            return (by_id[batch_id].execution_order, position[batch_id], batch_id)

        ready = [key(batch_id) for batch_id, degree in in_degree.items() if degree == 0]
        heapq.heapify(ready)
        ordered: list[MigrationBatch] = []
        while ready:
            *_, batch_id = heapq.heappop(ready)
            ordered.append(by_id[batch_id])
            for neighbor in adjacency[batch_id]:
                in_degree[neighbor] -= 1
                if in_degree[neighbor] == 0:
                    heapq.heappush(ready, key(neighbor))

        if len(ordered) != len(self.batches):
            cycle = sorted(batch_id for batch_id, degree in in_degree.items() if degree > 0)
            raise PlanError(f"Dependency cycle detected among batches: {cycle}").with_context(plan_id=self.id)
        return ordered

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "created_at": self.created_at.isoformat(),
            "total_recommendations": self.total_recommendations,
            "critical_count": self.critical_count,
            "auto_executable_count": self.auto_executable_count,
            "manual_review_count": self.manual_review_count,
            "estimated_total_minutes": self.estimated_total_minutes,
            "risk_level": self.risk_level.value,
            "pre_execution_checks": list(self.pre_execution_checks),
            "success_criteria": list(self.success_criteria),
            "batches": [b.to_dict() for b in self.batches],
        }


# =============================================================================
# EXECUTION
# =============================================================================


@dataclass(frozen=True)
class ExecutionError:
    """An error recorded during a plan run."""

    phase: ExecutionPhase
    message: str
    error_type: str = "LexSpineError"
    recommendation_id: str | None = None
    batch_id: str | None = None
    statement: str | None = None
    recoverable: bool = True
    category: ErrorCategory = ErrorCategory.UNKNOWN
    timestamp: datetime = field(default_factory=utcnow)

    @classmethod
    def from_exception(
        cls,
        exc: Exception,
        phase: ExecutionPhase,
        *,
        recommendation_id: str | None = None,
        batch_id: str | None = None,
        statement: str | None = None,
    ) -> ExecutionError:
        if isinstance(exc, LexSpineError):
            statement = statement or exc.context.statement
        return cls(
            phase=phase,
            message=str(exc),
            error_type=type(exc).__name__,
            recommendation_id=recommendation_id,
            batch_id=batch_id,
            statement=statement,
            recoverable=is_recoverable(exc),
            category=categorize_error(exc),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase.value,
            "message": self.message,
            "error_type": self.error_type,
            "recommendation_id": self.recommendation_id,
            "batch_id": self.batch_id,
            "statement": self.statement,
            "recoverable": self.recoverable,
            "category": self.category.value,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class BackupInfo:
    """Row counts of the affected tables, taken before the first mutation."""

    tables: tuple[str, ...]
    row_counts: dict[str, int]
    taken_at: datetime = field(default_factory=utcnow)


@dataclass
class MigrationExecution:
    """Runtime status of one recommendation."""

    recommendation_id: str
    batch_id: str
    status: MigrationStatus = MigrationStatus.PENDING
    started_at: datetime | None = None
    completed_at: datetime | None = None
    statements_executed: int = 0
    rows_affected: int = 0
    error: str | None = None

    def _transition_to(self, target: MigrationStatus) -> None:
        validate_migration_transition(self.status, target)
        self.status = target

    def mark_running(self) -> None:
        self._transition_to(MigrationStatus.RUNNING)
        self.started_at = utcnow()

    def mark_completed(self) -> None:
        self._transition_to(MigrationStatus.COMPLETED)
        self.completed_at = utcnow()

    def mark_failed(self, error: str) -> None:
        self._transition_to(MigrationStatus.FAILED)
        self.error = error
        self.completed_at = utcnow()

    def mark_skipped(self, reason: str | None = None) -> None:
        self._transition_to(MigrationStatus.SKIPPED)
        self.error = reason
        self.completed_at = utcnow()

    def mark_rolled_back(self) -> None:
        self._transition_to(MigrationStatus.ROLLED_BACK)

    def to_dict(self) -> dict[str, Any]:
        return {
            "recommendation_id": self.recommendation_id,
            "batch_id": self.batch_id,
            "status": self.status.value,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "statements_executed": self.statements_executed,
            "rows_affected": self.rows_affected,
            "error": self.error,
        }


@dataclass
class ExecutionResult:
    """Runtime status of a whole plan run."""

    plan_id: str
    execution_id: str = field(default_factory=lambda: new_id("exec"))
    dry_run: bool = False
    status: ExecutionStatus = ExecutionStatus.PENDING
    started_at: datetime = field(default_factory=utcnow)
    completed_at: datetime | None = None
    batch_order: list[str] = field(default_factory=list)
    executions: dict[str, MigrationExecution] = field(default_factory=dict)
    errors: list[ExecutionError] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    backup: BackupInfo | None = None
    rollback_performed: bool = False
    rollback_successful: bool | None = None
    rolled_back: list[str] = field(default_factory=list)

    def transition_to(self, target: ExecutionStatus) -> None:
        validate_execution_transition(self.status, target)
        self.status = target
        if target != ExecutionStatus.RUNNING:
            self.completed_at = utcnow()

    def _count(self, status: MigrationStatus) -> int:
        return sum(1 for e in self.executions.values() if e.status == status)

    @property
    def completed_count(self) -> int:
        return self._count(MigrationStatus.COMPLETED)

    @property
    def failed_count(self) -> int:
        return self._count(MigrationStatus.FAILED)

    @property
    def skipped_count(self) -> int:
        return self._count(MigrationStatus.SKIPPED)

    @property
    def rolled_back_count(self) -> int:
        return self._count(MigrationStatus.ROLLED_BACK)

    @property
    def duration_seconds(self) -> float | None:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()

    def status_of(self, recommendation_id: str) -> MigrationStatus | None:
        execution = self.executions.get(recommendation_id)
        return execution.status if execution else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "execution_id": self.execution_id,
            "plan_id": self.plan_id,
            "dry_run": self.dry_run,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "batch_order": list(self.batch_order),
            "completed": self.completed_count,
            "failed": self.failed_count,
            "skipped": self.skipped_count,
            "rolled_back": list(self.rolled_back),
            "rollback_performed": self.rollback_performed,
            "rollback_successful": self.rollback_successful,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": list(self.warnings),
            "executions": {k: v.to_dict() for k, v in self.executions.items()},
        }


__all__ = [
    "utcnow",
    "new_id",
    "ExecutionStatus",
    "EXECUTION_VALID_TRANSITIONS",
    "validate_execution_transition",
    "MigrationStatus",
    "MIGRATION_VALID_TRANSITIONS",
    "validate_migration_transition",
    "MigrationRecommendation",
    "MigrationBatch",
    "MigrationPlan",
    "ExecutionError",
    "BackupInfo",
    "MigrationExecution",
    "ExecutionResult",
]
