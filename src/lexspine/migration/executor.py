"""
Migration executor - runs a plan against a mutation store.

Manifesto:
    A plan run must never leave the store in a state nobody can explain.
    Every phase is sequential, every mutation is one audited statement,
    every outcome is recorded on the ExecutionResult, and a failed run
    replays the inverse statements of what already succeeded.

    - **Gate first:** pre-validation failures abort before any mutation
    - **Baseline:** row counts are captured before the first statement
    - **Declared order:** batches run in dependency order, not list order
    - **Best-effort undo:** rollback is replay, not a transaction
    - **Never raises:** errors become ExecutionError entries on the result

Architecture:
    ::

        execute_plan(plan, options)
            │
            0. order      plan.execution_sequence()      PlanError → failed
            1. pre        plan.pre_execution_checks       (skip_validation skips)
            2. backup     count_rows(affected tables)     (not in dry run)
            3. batches    per recommendation:
            │               pre-checks → statements → post-checks
            │               failure + stop_on_error → abort
            │                   └─ rollback: reverse replay of successes
            4. post       plan.success_criteria → warnings only
            ▼
        ExecutionResult  (history / last_execution)

    State machine per run::

        pending → running → completed | completed-with-warnings | failed | rolled-back

Examples:
    >>> executor = MigrationExecutor(store, sleep=lambda _: None)
    >>> result = executor.execute_plan(plan, ExecutionOptions(dry_run=True))
    >>> result.status
    <ExecutionStatus.COMPLETED: 'completed'>

Tags:
    migration, executor, rollback, batches, dry-run, lexspine

Doc-Types:
    api-reference
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from lexspine.core.enums import ExecutionPhase
from lexspine.core.errors import (
    ErrorCategory,
    LexSpineError,
    MigrationExecutionError,
    PlanError,
    PreValidationError,
    RollbackError,
    StoreError,
    categorize_error,
    is_recoverable,
)
from lexspine.core.logging import LogContext, StructuredLogger, get_logger
from lexspine.core.protocols import MutationStore
from lexspine.core.settings import LexSpineSettings
from lexspine.migration.checks import DEFAULT_CHECKS, CheckContext, CheckRegistry
from lexspine.migration.models import (
    BackupInfo,
    ExecutionError,
    ExecutionResult,
    ExecutionStatus,
    MigrationBatch,
    MigrationExecution,
    MigrationPlan,
    MigrationRecommendation,
    MigrationStatus,
)


@dataclass(frozen=True)
class ExecutionOptions:
    dry_run: bool = False
    stop_on_error: bool = True
    skip_validation: bool = False
    batch_delay_seconds: float = 1.0

    @classmethod
    def from_settings(cls, settings: LexSpineSettings, **overrides: Any) -> ExecutionOptions:
        values: dict[str, Any] = {
            "stop_on_error": settings.stop_on_error,
            "batch_delay_seconds": settings.batch_delay_seconds,
        }
        values.update(overrides)
        return cls(**values)


class MigrationExecutor:
    """Executes migration plans sequentially with checks and rollback."""

    def __init__(
        self,
        store: MutationStore,
        *,
        checks: CheckRegistry | None = None,
        logger: StructuredLogger | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.checks = checks or DEFAULT_CHECKS
        self._log = logger or get_logger(__name__)
        self._sleep = sleep
        self.history: list[ExecutionResult] = []
        self.current_execution: ExecutionResult | None = None
        self.last_execution: ExecutionResult | None = None

    def execute_plan(self, plan: MigrationPlan, options: ExecutionOptions | None = None) -> ExecutionResult:
        """Run ``plan`` and return its result. Never raises for plan or store failures."""
        options = options or ExecutionOptions()
        result = ExecutionResult(plan_id=plan.id, dry_run=options.dry_run)
        for batch in plan.batches:
            for recommendation in batch.recommendations:
                result.executions[recommendation.id] = MigrationExecution(recommendation.id, batch.id)

        self.history.append(result)
        self.current_execution = result
        try:
            with LogContext(execution_id=result.execution_id, plan_id=plan.id):
                self._log.info(
                    "migration.execution.start",
                    dry_run=options.dry_run,
                    stop_on_error=options.stop_on_error,
                    skip_validation=options.skip_validation,
                    recommendations=len(result.executions),
                )
                self._run(plan, options, result)
                self._log.info(
                    "migration.execution.complete",
                    status=result.status.value,
                    completed=result.completed_count,
                    failed=result.failed_count,
                    skipped=result.skipped_count,
                    rolled_back=result.rolled_back_count,
                )
        finally:
            self.current_execution = None
            self.last_execution = result
        return result

    # ------------------------------------------------------------------ #
    # Phases
    # ------------------------------------------------------------------ #

    def _run(self, plan: MigrationPlan, options: ExecutionOptions, result: ExecutionResult) -> None:
        try:
            ordered = plan.execution_sequence()
        except PlanError as exc:
            self._record(result, exc, ExecutionPhase.PLANNING)
            result.transition_to(ExecutionStatus.FAILED)
            return

        result.batch_order = [batch.id for batch in ordered]
        result.transition_to(ExecutionStatus.RUNNING)

        if not options.skip_validation and not self._pre_validate(plan, result):
            result.transition_to(ExecutionStatus.FAILED)
            return

        if not options.dry_run and not self._backup(plan, result):
            result.transition_to(ExecutionStatus.FAILED)
            return

        succeeded: list[MigrationRecommendation] = []
        aborted = self._execute_batches(plan, ordered, options, result, succeeded)

        if aborted:
            self._skip_remaining(result)
            if options.dry_run:
                result.transition_to(ExecutionStatus.FAILED)
            elif self._rollback(succeeded, result):
                result.transition_to(ExecutionStatus.ROLLED_BACK)
            else:
                result.transition_to(ExecutionStatus.FAILED)
            return

        if not options.skip_validation:
            self._post_validate(plan, result)

        if result.failed_count or result.warnings:
            result.transition_to(ExecutionStatus.COMPLETED_WITH_WARNINGS)
        else:
            result.transition_to(ExecutionStatus.COMPLETED)

    def _pre_validate(self, plan: MigrationPlan, result: ExecutionResult) -> bool:
        context = CheckContext(plan=plan, store=self.store, result=result)
        for name in plan.pre_execution_checks:
            check = self.checks.run(name, context)
            if not check.passed:
                error = PreValidationError(f"Pre-execution check '{name}' failed: {check.message}")
                self._record(result, error, ExecutionPhase.PRE_VALIDATION)
                self._log.error("migration.pre_validation.failed", check=name, message=check.message)
                return False
            self._log.debug("migration.pre_validation.passed", check=name, message=check.message)
        return True

    def _backup(self, plan: MigrationPlan, result: ExecutionResult) -> bool:
        tables = tuple(plan.affected_tables)
        try:
            counts = {table: self.store.count_rows(table) for table in tables}
        except StoreError as exc:
            self._record(result, exc, ExecutionPhase.BACKUP)
            self._log.error("migration.backup.failed", error=str(exc))
            return False
        result.backup = BackupInfo(tables=tables, row_counts=counts)
        self._log.info("migration.backup.complete", row_counts=counts)
        return True

    def _execute_batches(
        self,
        plan: MigrationPlan,
        ordered: list[MigrationBatch],
        options: ExecutionOptions,
        result: ExecutionResult,
        succeeded: list[MigrationRecommendation],
    ) -> bool:
        """Run batches in order. Returns True when the run was aborted."""
        for index, batch in enumerate(ordered):
            if index > 0 and options.batch_delay_seconds > 0:
                self._sleep(options.batch_delay_seconds)

            self._log.info(
                "migration.batch.start",
                batch_id=batch.id,
                recommendations=len(batch.recommendations),
            )
            for recommendation in batch.recommendations:
                ok = self._execute_recommendation(plan, batch, recommendation, options, result)
                if result.status_of(recommendation.id) == MigrationStatus.COMPLETED:
                    succeeded.append(recommendation)
                if not ok and options.stop_on_error:
                    self._log.warning("migration.batch.aborted", batch_id=batch.id, recommendation_id=recommendation.id)
                    return True
            self._log.info("migration.batch.complete", batch_id=batch.id)
        return False

    def _execute_recommendation(
        self,
        plan: MigrationPlan,
        batch: MigrationBatch,
        recommendation: MigrationRecommendation,
        options: ExecutionOptions,
        result: ExecutionResult,
    ) -> bool:
        execution = result.executions[recommendation.id]
        if not recommendation.statements:
            reason = "manual review required" if recommendation.is_manual else "no statements"
            execution.mark_skipped(reason)
            self._log.info("migration.recommendation.skipped", recommendation_id=recommendation.id, reason=reason)
            return True

        execution.mark_running()
        context = CheckContext(plan=plan, store=self.store, result=result, recommendation=recommendation)

        if recommendation.requires_validation or not options.skip_validation:
            for name in recommendation.pre_validation_checks:
                check = self.checks.run(name, context)
                if not check.passed:
                    error = MigrationExecutionError(f"Pre-check '{name}' failed: {check.message}")
                    self._fail(result, execution, error)
                    return False

        for statement in recommendation.statements:
            if options.dry_run:
                self._log.info("migration.statement.dry_run", recommendation_id=recommendation.id, statement=statement)
                continue
            try:
                outcome = self.store.execute(statement)
            except LexSpineError as exc:
                self._fail(result, execution, exc, statement=statement)
                return False
            except Exception as exc:
                wrapper = StoreError if categorize_error(exc) == ErrorCategory.STORE else MigrationExecutionError
                error = wrapper(f"Statement failed: {exc}", cause=exc)
                self._fail(result, execution, error, statement=statement)
                return False
            execution.statements_executed += 1
            execution.rows_affected += outcome.rows_affected

        if not options.dry_run:
            context.rows_affected = execution.rows_affected
            for name in recommendation.post_validation_checks:
                check = self.checks.run(name, context)
                if not check.passed:
                    error = MigrationExecutionError(f"Post-check '{name}' failed: {check.message}")
                    self._fail(result, execution, error)
                    return False

        execution.mark_completed()
        self._log.debug(
            "migration.recommendation.complete",
            recommendation_id=recommendation.id,
            batch_id=batch.id,
            rows_affected=execution.rows_affected,
        )
        return True

    def _post_validate(self, plan: MigrationPlan, result: ExecutionResult) -> None:
        context = CheckContext(plan=plan, store=self.store, result=result)
        for name in plan.success_criteria:
            check = self.checks.run(name, context)
            if not check.passed:
                result.warnings.append(f"{name}: {check.message}")
                self._log.warning("migration.post_validation.warning", check=name, message=check.message)

    def _rollback(self, succeeded: list[MigrationRecommendation], result: ExecutionResult) -> bool:
        """Replay rollback statements of ``succeeded`` in reverse order."""
        result.rollback_performed = True
        self._log.warning("migration.rollback.start", recommendations=len(succeeded))

        for recommendation in reversed(succeeded):
            execution = result.executions[recommendation.id]
            if not recommendation.rollback_statements:
                result.warnings.append(f"{recommendation.id}: no rollback statements, left applied")
                continue
            for statement in recommendation.rollback_statements:
                try:
                    self.store.execute(statement)
                except Exception as exc:
                    error = RollbackError(f"Rollback of {recommendation.id} failed: {exc}", cause=exc)
                    error.with_context(recommendation_id=recommendation.id, statement=statement)
                    result.errors.append(
                        ExecutionError.from_exception(
                            error,
                            ExecutionPhase.ROLLBACK,
                            recommendation_id=recommendation.id,
                            batch_id=execution.batch_id,
                            statement=statement,
                        )
                    )
                    result.rollback_successful = False
                    self._log.error(
                        "migration.rollback.failed",
                        recommendation_id=recommendation.id,
                        statement=statement,
                        error=str(exc),
                    )
                    return False
            execution.mark_rolled_back()
            result.rolled_back.append(recommendation.id)

        result.rollback_successful = True
        self._log.info("migration.rollback.complete", rolled_back=len(result.rolled_back))
        return True

    # ------------------------------------------------------------------ #
    # Bookkeeping
    # ------------------------------------------------------------------ #

    def _skip_remaining(self, result: ExecutionResult) -> None:
        for execution in result.executions.values():
            if execution.status == MigrationStatus.PENDING:
                execution.mark_skipped("run aborted")

    def _fail(
        self,
        result: ExecutionResult,
        execution: MigrationExecution,
        error: Exception,
        *,
        statement: str | None = None,
    ) -> None:
        execution.mark_failed(str(error))
        result.errors.append(
            ExecutionError.from_exception(
                error,
                ExecutionPhase.EXECUTION,
                recommendation_id=execution.recommendation_id,
                batch_id=execution.batch_id,
                statement=statement,
            )
        )
        self._log.error(
            "migration.recommendation.failed",
            recommendation_id=execution.recommendation_id,
            batch_id=execution.batch_id,
            error=str(error),
            error_type=type(error).__name__,
            error_category=categorize_error(error).value,
            recoverable=is_recoverable(error),
        )

    def _record(self, result: ExecutionResult, error: Exception, phase: ExecutionPhase) -> None:
        result.errors.append(ExecutionError.from_exception(error, phase))


__all__ = ["ExecutionOptions", "MigrationExecutor"]
