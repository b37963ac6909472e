"""
lexspine - Compliance auditing and data migration for a tagged lexical dataset.

Subpackages:
- lexspine.core: errors, logging, settings, models, stores
- lexspine.terminology: legacy/canonical terminology conversion
- lexspine.compliance: rule catalog and compliance validator
- lexspine.migration: recommendations, plans, execution and rollback
"""

__version__ = "0.1.0"
