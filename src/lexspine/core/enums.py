"""
Shared domain enums for lexspine.

Enums in this module are used by more than one subpackage (terminology,
compliance, migration). Import from here to avoid cross-package coupling.

STDLIB ONLY - NO PYDANTIC.
"""

from enum import Enum


class TermCategory(str, Enum):
    """Grammatical concept a terminology mapping belongs to."""

    PERSON = "person"
    NUMBER = "number"
    AUXILIARY = "auxiliary"
    MOOD = "mood"


class Severity(str, Enum):
    """Severity of a compliance issue, most severe first."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ValidationLayer(str, Enum):
    """Layer of an entity bundle an issue was found in."""

    ENTITY = "entity"
    TRANSLATION = "translation"
    FORM = "form"
    CROSS_REFERENCE = "cross-reference"


class ComplianceStatus(str, Enum):
    """
    Compliance status of one entity.

    Derived from issue counts: any critical issue blocks migration, more than
    two high issues are critical, any remaining issue needs work.
    """

    COMPLIANT = "compliant"
    NEEDS_WORK = "needs-work"
    CRITICAL_ISSUES = "critical-issues"
    BLOCKS_MIGRATION = "blocks-migration"


class PriorityLevel(str, Enum):
    """Coarse priority used for entities and mixed-usage migrations."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class SafetyLevel(str, Enum):
    """How much human attention a migration recommendation needs."""

    SAFE = "safe"
    CAUTION = "caution"
    MANUAL_REVIEW = "manual-review"


class MigrationCategory(str, Enum):
    """What a migration recommendation changes."""

    TERMINOLOGY = "terminology"
    AUXILIARY = "auxiliary"
    TAGS = "tags"
    CROSS_REFERENCE = "cross-reference"
    CLEANUP = "cleanup"


class RiskLevel(str, Enum):
    """Risk of running a migration plan unattended."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ExecutionPhase(str, Enum):
    """Phase of a plan run an error was recorded in."""

    PLANNING = "planning"
    PRE_VALIDATION = "pre-validation"
    BACKUP = "backup"
    EXECUTION = "execution"
    POST_VALIDATION = "post-validation"
    ROLLBACK = "rollback"


__all__ = [
    "TermCategory",
    "Severity",
    "ValidationLayer",
    "ComplianceStatus",
    "PriorityLevel",
    "SafetyLevel",
    "MigrationCategory",
    "RiskLevel",
    "ExecutionPhase",
]
