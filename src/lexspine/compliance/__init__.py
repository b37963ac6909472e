"""Compliance auditing: rule catalog, issues, scoring and the validator."""

from lexspine.compliance.reports import (
    ComplianceIssue,
    EntityComplianceReport,
    SystemComplianceReport,
    TopIssue,
    ValidationFailure,
    calculate_score,
    determine_status,
    format_duration,
    migration_readiness,
)
from lexspine.compliance.rules import (
    DEFAULT_RULE_CATALOG,
    DeprecatedPattern,
    MetadataRequirement,
    RequiredBaseForm,
    RuleCatalog,
    TagRequirement,
    load_rule_catalog,
)
from lexspine.compliance.validator import ComplianceValidator, ValidationOptions

__all__ = [
    # Validator
    "ComplianceValidator",
    "ValidationOptions",
    # Catalog
    "RuleCatalog",
    "TagRequirement",
    "MetadataRequirement",
    "RequiredBaseForm",
    "DeprecatedPattern",
    "DEFAULT_RULE_CATALOG",
    "load_rule_catalog",
    # Reports
    "ComplianceIssue",
    "EntityComplianceReport",
    "SystemComplianceReport",
    "TopIssue",
    "ValidationFailure",
    "calculate_score",
    "determine_status",
    "migration_readiness",
    "format_duration",
]
