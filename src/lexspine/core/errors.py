"""
Structured error types for lexspine.

Every failure the compliance and migration pipeline can raise is a
LexSpineError. Errors carry a category, a recoverable flag and a structured
context so the executor can record them on an ExecutionResult and the
logging layer can emit them as structured fields.

Manifesto:
    - **Typed Error Hierarchy:** Validation, execution and rollback failures
      are different things and are handled at different places
    - **Explicit Recovery Semantics:** Each error knows whether the operator
      can still act on it automatically
    - **Rich Context:** Errors carry entity, batch and recommendation ids
    - **Error Chaining:** Store exceptions are preserved as cause

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                       LexSpineError                              │
        │  (category, recoverable, context, cause)                         │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  EntityValidationError   PlanError          ConfigError          │
        │  (VALIDATION)            (PLAN)             (CONFIG)             │
        │       │                                                          │
        │  NoEntitiesError         StatementError     StoreError           │
        │                          (STATEMENT)        (STORE)              │
        │                                                                  │
        │  PreValidationError      MigrationExecutionError  RollbackError  │
        │  (PRE_VALIDATION)        (EXECUTION)              (ROLLBACK,     │
        │                                                   unrecoverable) │
        └─────────────────────────────────────────────────────────────────┘

Examples:
    >>> error = StoreError("connection refused")
    >>> error.with_context(batch_id="batch-1-terminology").context.batch_id
    'batch-1-terminology'
    >>> RollbackError("undo failed").recoverable
    False

Tags:
    errors, exceptions, error-handling, migration, rollback, lexspine

Doc-Types:
    api-reference
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Error categories used for routing and reporting."""

    VALIDATION = "VALIDATION"
    CONFIG = "CONFIG"
    STATEMENT = "STATEMENT"
    STORE = "STORE"
    PLAN = "PLAN"
    PRE_VALIDATION = "PRE_VALIDATION"
    EXECUTION = "EXECUTION"
    ROLLBACK = "ROLLBACK"
    INTERNAL = "INTERNAL"
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Only non-None fields are serialized; anything without a dedicated field
    goes into ``metadata``.
    """

    entity_id: str | None = None
    execution_id: str | None = None
    plan_id: str | None = None
    batch_id: str | None = None
    recommendation_id: str | None = None
    phase: str | None = None
    statement: str | None = None
    table: str | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["entity_id", "execution_id", "plan_id", "batch_id",
                    "recommendation_id", "phase", "statement", "table"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class LexSpineError(Exception):
    """
    Base exception for all lexspine errors.

    Subclasses set ``default_category`` and ``default_recoverable`` so call
    sites only pass a message and, where useful, a cause.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_recoverable: bool = True

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        recoverable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.recoverable = recoverable if recoverable is not None else self.default_recoverable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> LexSpineError:
        """
        Add context to this error (fluent API).

        Usage:
            raise StoreError("update failed").with_context(
                recommendation_id="rec-12",
                statement="UPDATE word_forms ...",
            )
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "recoverable": self.recoverable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# VALIDATION ERRORS (non-fatal per entity)
# =============================================================================


class EntityValidationError(LexSpineError):
    """
    A single entity could not be validated.

    Collected into the system report's error list; analysis continues.
    """

    default_category = ErrorCategory.VALIDATION

    def __init__(self, message: str, *, entity_id: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        if entity_id is not None:
            self.context.entity_id = entity_id


class NoEntitiesError(EntityValidationError):
    """The store returned nothing to validate."""

    default_recoverable = False


class ConfigError(LexSpineError):
    """Invalid settings or rule catalog."""

    default_category = ErrorCategory.CONFIG
    default_recoverable = False


# =============================================================================
# PLANNING ERRORS
# =============================================================================


class StatementError(LexSpineError):
    """A mutation statement could not be built or failed the audit."""

    default_category = ErrorCategory.STATEMENT
    default_recoverable = False


class PlanError(LexSpineError):
    """Batch dependencies are unknown or cyclic."""

    default_category = ErrorCategory.PLAN
    default_recoverable = False


# =============================================================================
# EXECUTION ERRORS
# =============================================================================


class StoreError(LexSpineError):
    """The backing store rejected a statement or a read."""

    default_category = ErrorCategory.STORE


class PreValidationError(LexSpineError):
    """A pre-execution check failed; nothing was mutated."""

    default_category = ErrorCategory.PRE_VALIDATION


class MigrationExecutionError(LexSpineError):
    """A recommendation failed inside a batch."""

    default_category = ErrorCategory.EXECUTION


class RollbackError(LexSpineError):
    """
    Rollback replay failed.

    Terminal: recorded with recoverable=False and surfaced to the operator.
    """

    default_category = ErrorCategory.ROLLBACK
    default_recoverable = False


class InvalidTransitionError(ValueError):
    """Raised when a status transition is not allowed by the state machine.

    If a legitimate transition is blocked, add it to the transition table
    explicitly; never remove the guard.
    """

    def __init__(self, current: str, target: str, enum_name: str = "Status") -> None:
        self.current = current
        self.target = target
        super().__init__(f"Invalid {enum_name} transition: {current} → {target}")


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_recoverable(error: Exception) -> bool:
    """Check if an error leaves room for automated recovery."""
    if isinstance(error, LexSpineError):
        return error.recoverable
    return False


def categorize_error(error: Exception) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, LexSpineError):
        return error.category
    if isinstance(error, InvalidTransitionError):
        return ErrorCategory.INTERNAL
    if isinstance(error, (ConnectionError, OSError)):
        return ErrorCategory.STORE
    if isinstance(error, ValueError):
        return ErrorCategory.VALIDATION
    return ErrorCategory.UNKNOWN


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "LexSpineError",
    "EntityValidationError",
    "NoEntitiesError",
    "ConfigError",
    "StatementError",
    "PlanError",
    "StoreError",
    "PreValidationError",
    "MigrationExecutionError",
    "RollbackError",
    "InvalidTransitionError",
    "is_recoverable",
    "categorize_error",
]
