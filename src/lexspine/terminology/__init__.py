"""Legacy/canonical terminology mapping and usage analysis."""

from lexspine.terminology.converter import (
    ConsistencyWarning,
    ConversionOptions,
    ConversionResult,
    MixedUsage,
    TerminologyAnalysis,
    TerminologyConverter,
    TerminologyMigration,
    TermUsage,
)
from lexspine.terminology.mappings import TERMINOLOGY_MAPPINGS, TermMapping

__all__ = [
    "TERMINOLOGY_MAPPINGS",
    "TermMapping",
    "TerminologyConverter",
    "ConversionOptions",
    "ConversionResult",
    "ConsistencyWarning",
    "TerminologyAnalysis",
    "TermUsage",
    "MixedUsage",
    "TerminologyMigration",
]
