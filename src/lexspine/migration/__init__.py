"""Migration planning and execution.

Recommendation handlers turn compliance issues into reversible statements,
the engine groups them into dependency-ordered batches, and the executor
runs a plan with validation checkpoints and rollback.
"""

from lexspine.migration.checks import (
    DEFAULT_CHECKS,
    DEFAULT_PRE_EXECUTION_CHECKS,
    DEFAULT_SUCCESS_CRITERIA,
    CheckContext,
    CheckRegistry,
    CheckResult,
)
from lexspine.migration.custom_rules import (
    CustomRuleDefinition,
    JsonRuleRepository,
    RulePattern,
    RuleTransformation,
    TransformationType,
    compile_rule,
    compile_rules,
    default_custom_rules,
    snapshot_column,
)
from lexspine.migration.engine import BATCH_SEQUENCE, RecommendationEngine, assess_risk
from lexspine.migration.executor import ExecutionOptions, MigrationExecutor
from lexspine.migration.handlers import DEFAULT_HANDLERS, HandlerContext, HandlerRegistry
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

__all__ = [
    # Engine
    "RecommendationEngine",
    "BATCH_SEQUENCE",
    "assess_risk",
    # Handlers
    "HandlerRegistry",
    "HandlerContext",
    "DEFAULT_HANDLERS",
    # Executor
    "MigrationExecutor",
    "ExecutionOptions",
    # Checks
    "CheckRegistry",
    "CheckContext",
    "CheckResult",
    "DEFAULT_CHECKS",
    "DEFAULT_PRE_EXECUTION_CHECKS",
    "DEFAULT_SUCCESS_CRITERIA",
    # Custom rules
    "CustomRuleDefinition",
    "RulePattern",
    "RuleTransformation",
    "TransformationType",
    "JsonRuleRepository",
    "compile_rule",
    "compile_rules",
    "snapshot_column",
    "default_custom_rules",
    # Models
    "MigrationRecommendation",
    "MigrationBatch",
    "MigrationPlan",
    "MigrationExecution",
    "MigrationStatus",
    "ExecutionResult",
    "ExecutionStatus",
    "ExecutionError",
    "BackupInfo",
]
