"""Tests for migration models and their state machines."""

import pytest

from lexspine.core.enums import ExecutionPhase, MigrationCategory, SafetyLevel, Severity
from lexspine.core.errors import ErrorCategory, InvalidTransitionError, PlanError, RollbackError, StoreError
from lexspine.migration.models import (
    EXECUTION_VALID_TRANSITIONS,
    MIGRATION_VALID_TRANSITIONS,
    ExecutionError,
    ExecutionResult,
    ExecutionStatus,
    MigrationBatch,
    MigrationExecution,
    MigrationPlan,
    MigrationRecommendation,
    MigrationStatus,
    new_id,
    validate_execution_transition,
    validate_migration_transition,
)


def _rec(rec_id, *, statements=("UPDATE word_forms SET tags = '{}' WHERE id = 1",), safety=SafetyLevel.SAFE,
         minutes=1, tables=("word_forms",)):
    return MigrationRecommendation(
        id=rec_id,
        rule_id="rule",
        entity_id=1,
        entity_text="parlare",
        description="desc",
        severity=Severity.HIGH,
        category=MigrationCategory.TAGS,
        safety_level=safety,
        statements=statements,
        estimated_minutes=minutes,
        affected_tables=tables,
    )


def _batch(batch_id, *, deps=(), order=0, recs=()):
    return MigrationBatch(batch_id, batch_id, "", recommendations=list(recs), dependencies=deps, execution_order=order)


class TestExecutionStatusTransitions:
    """Plan-run state machine."""

    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (ExecutionStatus.PENDING, ExecutionStatus.RUNNING),
            (ExecutionStatus.PENDING, ExecutionStatus.FAILED),
            (ExecutionStatus.RUNNING, ExecutionStatus.COMPLETED),
            (ExecutionStatus.RUNNING, ExecutionStatus.COMPLETED_WITH_WARNINGS),
            (ExecutionStatus.RUNNING, ExecutionStatus.ROLLED_BACK),
        ],
    )
    def test_valid(self, current, target):
        validate_execution_transition(current, target)

    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (ExecutionStatus.PENDING, ExecutionStatus.COMPLETED),
            (ExecutionStatus.COMPLETED, ExecutionStatus.RUNNING),
            (ExecutionStatus.ROLLED_BACK, ExecutionStatus.FAILED),
        ],
    )
    def test_invalid(self, current, target):
        with pytest.raises(InvalidTransitionError):
            validate_execution_transition(current, target)

    def test_terminal_states_have_no_exits(self):
        for status in (
            ExecutionStatus.COMPLETED,
            ExecutionStatus.COMPLETED_WITH_WARNINGS,
            ExecutionStatus.FAILED,
            ExecutionStatus.ROLLED_BACK,
        ):
            assert EXECUTION_VALID_TRANSITIONS[status] == frozenset()


class TestMigrationStatusTransitions:
    def test_every_status_in_table(self):
        assert set(MIGRATION_VALID_TRANSITIONS) == set(MigrationStatus)

    def test_only_completed_can_roll_back(self):
        validate_migration_transition(MigrationStatus.COMPLETED, MigrationStatus.ROLLED_BACK)
        with pytest.raises(InvalidTransitionError):
            validate_migration_transition(MigrationStatus.FAILED, MigrationStatus.ROLLED_BACK)

    def test_execution_lifecycle(self):
        execution = MigrationExecution("rec-1", "batch-1")
        execution.mark_running()
        assert execution.started_at is not None
        execution.mark_completed()
        execution.mark_rolled_back()
        assert execution.status == MigrationStatus.ROLLED_BACK
        with pytest.raises(InvalidTransitionError):
            execution.mark_running()

    def test_skip_records_reason(self):
        execution = MigrationExecution("rec-1", "batch-1")
        execution.mark_skipped("run aborted")
        assert execution.error == "run aborted"
        assert execution.to_dict()["status"] == "skipped"


class TestMigrationRecommendation:
    def test_auto_executable(self):
        assert _rec("a").auto_executable
        assert not _rec("b", statements=()).auto_executable
        manual = _rec("c", safety=SafetyLevel.MANUAL_REVIEW)
        assert manual.is_manual
        assert not manual.auto_executable

    def test_sequences_become_tuples(self):
        rec = _rec("a", statements=["UPDATE word_forms SET tags = '{}' WHERE id = 1"])
        assert isinstance(rec.statements, tuple)
        assert rec.to_dict()["statements"] == ["UPDATE word_forms SET tags = '{}' WHERE id = 1"]


class TestMigrationPlan:
    """Dependency ordering and aggregate views."""

    def test_execution_sequence_respects_dependencies(self):
        plan = MigrationPlan(
            id="plan-1",
            batches=[
                _batch("batch-4", deps=("batch-2", "batch-3"), order=4),
                _batch("batch-3", deps=("batch-1",), order=3),
                _batch("batch-2", order=2),
                _batch("batch-1", order=1),
            ],
        )
        assert [b.id for b in plan.execution_sequence()] == ["batch-1", "batch-2", "batch-3", "batch-4"]

    def test_ties_broken_by_declaration_order(self):
        plan = MigrationPlan(id="plan-1", batches=[_batch("b"), _batch("a")])
        assert [b.id for b in plan.execution_sequence()] == ["b", "a"]

    def test_unknown_dependency(self):
        plan = MigrationPlan(id="plan-1", batches=[_batch("a", deps=("ghost",))])
        with pytest.raises(PlanError, match="unknown batch"):
            plan.execution_sequence()

    def test_cycle(self):
        plan = MigrationPlan(id="plan-1", batches=[_batch("a", deps=("b",)), _batch("b", deps=("a",))])
        with pytest.raises(PlanError, match="cycle") as exc_info:
            plan.execution_sequence()
        assert exc_info.value.context.plan_id == "plan-1"

    def test_duplicate_batch_id(self):
        plan = MigrationPlan(id="plan-1", batches=[_batch("a"), _batch("a")])
        with pytest.raises(PlanError, match="Duplicate"):
            plan.execution_sequence()

    def test_aggregates(self):
        plan = MigrationPlan(
            id="plan-1",
            batches=[
                _batch("a", recs=[_rec("r1", minutes=2), _rec("r2", tables=("dictionary", "word_forms"))]),
                _batch("b", recs=[_rec("r3", minutes=3, tables=("word_translations",))]),
            ],
        )
        assert [r.id for r in plan.recommendations] == ["r1", "r2", "r3"]
        assert plan.affected_tables == ["word_forms", "dictionary", "word_translations"]
        assert plan.batch("a").estimated_minutes == 3
        assert plan.batch("missing") is None
        assert plan.to_dict()["batches"][1]["estimated_minutes"] == 3


class TestExecutionResult:
    def test_transition_sets_completed_at(self):
        result = ExecutionResult(plan_id="plan-1")
        assert result.execution_id.startswith("exec-")
        result.transition_to(ExecutionStatus.RUNNING)
        assert result.completed_at is None
        result.transition_to(ExecutionStatus.COMPLETED)
        assert result.duration_seconds is not None
        with pytest.raises(InvalidTransitionError):
            result.transition_to(ExecutionStatus.FAILED)

    def test_counts(self):
        result = ExecutionResult(plan_id="plan-1")
        done = MigrationExecution("r1", "a")
        done.mark_running()
        done.mark_completed()
        skipped = MigrationExecution("r2", "a")
        skipped.mark_skipped()
        result.executions = {"r1": done, "r2": skipped, "r3": MigrationExecution("r3", "a")}
        assert result.completed_count == 1
        assert result.skipped_count == 1
        assert result.failed_count == 0
        assert result.status_of("r3") == MigrationStatus.PENDING
        assert result.status_of("nope") is None
        assert result.to_dict()["completed"] == 1


class TestExecutionError:
    def test_from_lexspine_error(self):
        exc = StoreError("rejected").with_context(statement="UPDATE x SET y = 1 WHERE id = 1")
        error = ExecutionError.from_exception(exc, ExecutionPhase.EXECUTION, recommendation_id="r1")
        assert error.error_type == "StoreError"
        assert error.recoverable is True
        assert error.statement == "UPDATE x SET y = 1 WHERE id = 1"
        assert error.to_dict()["phase"] == "execution"
        assert error.category == ErrorCategory.STORE
        assert error.to_dict()["category"] == "STORE"

    def test_from_foreign_exception(self):
        error = ExecutionError.from_exception(RuntimeError("boom"), ExecutionPhase.ROLLBACK)
        assert error.recoverable is False
        assert error.error_type == "RuntimeError"
        assert error.category == ErrorCategory.UNKNOWN

    def test_foreign_exception_is_categorized(self):
        error = ExecutionError.from_exception(ConnectionError("reset by peer"), ExecutionPhase.EXECUTION)
        assert error.category == ErrorCategory.STORE
        assert error.recoverable is False

    def test_rollback_error_is_terminal(self):
        error = ExecutionError.from_exception(RollbackError("replay failed"), ExecutionPhase.ROLLBACK)
        assert error.category == ErrorCategory.ROLLBACK
        assert error.recoverable is False


def test_new_id_prefix():
    assert new_id("plan").startswith("plan-")
    assert new_id("plan") != new_id("plan")
