"""Named validation checks run by the migration executor.

Plans and recommendations refer to checks by name only. The executor looks
each name up in a ``CheckRegistry`` and runs it against a ``CheckContext``:

- plan-level checks gate the run (pre-execution) or confirm it (success
  criteria);
- item-level checks run around a single recommendation.

An unknown check name fails; a check that raises fails with the exception
message. Checks only read: they never mutate the store.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from lexspine.core.errors import LexSpineError, PlanError, StatementError, StoreError
from lexspine.core.logging import get_logger
from lexspine.core.protocols import MutationStore
from lexspine.core.statements import audit_statement
from lexspine.migration.models import ExecutionResult, MigrationPlan, MigrationRecommendation

logger = get_logger(__name__)

# Plan-level, before any mutation
STORE_REACHABLE = "store-reachable"
PLAN_DEPENDENCIES_RESOLVABLE = "plan-dependencies-resolvable"
ROLLBACK_STATEMENTS_PRESENT = "rollback-statements-present"
STATEMENTS_AUDITED = "statements-audited"

# Plan-level, after execution
NO_FAILED_MIGRATIONS = "no-failed-migrations"
ROW_COUNTS_STABLE = "row-counts-stable"

# Item-level
STATEMENTS_PRESENT = "statements-present"
ROLLBACK_AVAILABLE = "rollback-available"
ROWS_AFFECTED = "rows-affected"

DEFAULT_PRE_EXECUTION_CHECKS = (
    STORE_REACHABLE,
    PLAN_DEPENDENCIES_RESOLVABLE,
    ROLLBACK_STATEMENTS_PRESENT,
    STATEMENTS_AUDITED,
)
DEFAULT_SUCCESS_CRITERIA = (NO_FAILED_MIGRATIONS, ROW_COUNTS_STABLE)


@dataclass
class CheckContext:
    """Everything a check may inspect."""

    plan: MigrationPlan
    store: MutationStore
    result: ExecutionResult
    recommendation: MigrationRecommendation | None = None
    rows_affected: int | None = None

    @property
    def dry_run(self) -> bool:
        return self.result.dry_run


@dataclass(frozen=True)
class CheckResult:
    name: str
    passed: bool
    message: str = ""


Check = Callable[[CheckContext], CheckResult]


class CheckRegistry:
    """Check name → check function."""

    def __init__(self) -> None:
        self._checks: dict[str, Check] = {}

    def register(self, name: str) -> Callable[[Check], Check]:
        def decorator(check: Check) -> Check:
            if name in self._checks:
                raise ValueError(f"Check '{name}' is already registered")
            self._checks[name] = check
            logger.debug("check_registered", name=name, check=check.__name__)
            return check

        return decorator

    def get(self, name: str) -> Check | None:
        return self._checks.get(name)

    def list(self) -> list[str]:
        return sorted(self._checks)

    def __contains__(self, name: object) -> bool:
        return name in self._checks

    def copy(self) -> CheckRegistry:
        registry = CheckRegistry()
        registry._checks = dict(self._checks)
        return registry

    def run(self, name: str, context: CheckContext) -> CheckResult:
        check = self._checks.get(name)
        if check is None:
            return CheckResult(name, False, f"Unknown check: {name}")
        try:
            return check(context)
        except (LexSpineError, ValueError, KeyError) as exc:
            logger.warning("check.raised", check=name, error=str(exc), error_type=type(exc).__name__)
            return CheckResult(name, False, f"{type(exc).__name__}: {exc}")


DEFAULT_CHECKS = CheckRegistry()


# ── Plan-level ───────────────────────────────────────────────


@DEFAULT_CHECKS.register(STORE_REACHABLE)
def store_reachable(ctx: CheckContext) -> CheckResult:
    tables = ctx.plan.affected_tables or ["dictionary"]
    try:
        for table in tables:
            ctx.store.count_rows(table)
    except StoreError as exc:
        return CheckResult(STORE_REACHABLE, False, str(exc))
    return CheckResult(STORE_REACHABLE, True, f"{len(tables)} tables reachable")


@DEFAULT_CHECKS.register(PLAN_DEPENDENCIES_RESOLVABLE)
def plan_dependencies_resolvable(ctx: CheckContext) -> CheckResult:
    try:
        ordered = ctx.plan.execution_sequence()
    except PlanError as exc:
        return CheckResult(PLAN_DEPENDENCIES_RESOLVABLE, False, exc.message)
    return CheckResult(PLAN_DEPENDENCIES_RESOLVABLE, True, " → ".join(b.id for b in ordered))


@DEFAULT_CHECKS.register(ROLLBACK_STATEMENTS_PRESENT)
def rollback_statements_present(ctx: CheckContext) -> CheckResult:
    missing = [r.id for r in ctx.plan.recommendations if r.statements and not r.rollback_statements]
    if missing:
        return CheckResult(ROLLBACK_STATEMENTS_PRESENT, False, f"No rollback for: {', '.join(missing)}")
    return CheckResult(ROLLBACK_STATEMENTS_PRESENT, True)


@DEFAULT_CHECKS.register(STATEMENTS_AUDITED)
def statements_audited(ctx: CheckContext) -> CheckResult:
    for recommendation in ctx.plan.recommendations:
        for statement in (*recommendation.statements, *recommendation.rollback_statements):
            try:
                audit_statement(statement)
            except StatementError as exc:
                return CheckResult(STATEMENTS_AUDITED, False, f"{recommendation.id}: {exc.message}")
    return CheckResult(STATEMENTS_AUDITED, True)


@DEFAULT_CHECKS.register(NO_FAILED_MIGRATIONS)
def no_failed_migrations(ctx: CheckContext) -> CheckResult:
    failed = ctx.result.failed_count
    if failed:
        return CheckResult(NO_FAILED_MIGRATIONS, False, f"{failed} recommendations failed")
    return CheckResult(NO_FAILED_MIGRATIONS, True)


@DEFAULT_CHECKS.register(ROW_COUNTS_STABLE)
def row_counts_stable(ctx: CheckContext) -> CheckResult:
    backup = ctx.result.backup
    if backup is None:
        return CheckResult(ROW_COUNTS_STABLE, True, "No baseline taken")
    changed = []
    for table, before in backup.row_counts.items():
        after = ctx.store.count_rows(table)
        if after != before:
            changed.append(f"{table}: {before} → {after}")
    if changed:
        return CheckResult(ROW_COUNTS_STABLE, False, "; ".join(changed))
    return CheckResult(ROW_COUNTS_STABLE, True)


# ── Item-level ───────────────────────────────────────────────


@DEFAULT_CHECKS.register(STATEMENTS_PRESENT)
def statements_present(ctx: CheckContext) -> CheckResult:
    if ctx.recommendation is None or not ctx.recommendation.statements:
        return CheckResult(STATEMENTS_PRESENT, False, "Recommendation has no statements")
    return CheckResult(STATEMENTS_PRESENT, True)


@DEFAULT_CHECKS.register(ROLLBACK_AVAILABLE)
def rollback_available(ctx: CheckContext) -> CheckResult:
    if ctx.recommendation is None or not ctx.recommendation.rollback_statements:
        return CheckResult(ROLLBACK_AVAILABLE, False, "Recommendation has no rollback statements")
    return CheckResult(ROLLBACK_AVAILABLE, True)


@DEFAULT_CHECKS.register(ROWS_AFFECTED)
def rows_affected(ctx: CheckContext) -> CheckResult:
    if not ctx.rows_affected:
        return CheckResult(ROWS_AFFECTED, False, "No rows were affected")
    return CheckResult(ROWS_AFFECTED, True, f"{ctx.rows_affected} rows affected")


__all__ = [
    "CheckContext",
    "CheckResult",
    "Check",
    "CheckRegistry",
    "DEFAULT_CHECKS",
    "DEFAULT_PRE_EXECUTION_CHECKS",
    "DEFAULT_SUCCESS_CRITERIA",
    "STORE_REACHABLE",
    "PLAN_DEPENDENCIES_RESOLVABLE",
    "ROLLBACK_STATEMENTS_PRESENT",
    "STATEMENTS_AUDITED",
    "NO_FAILED_MIGRATIONS",
    "ROW_COUNTS_STABLE",
    "STATEMENTS_PRESENT",
    "ROLLBACK_AVAILABLE",
    "ROWS_AFFECTED",
]
