"""lexspine core -- shared building blocks for the compliance and migration layers.

Manifesto:
    The validator, recommendation engine and executor all need the same
    foundations: one error hierarchy, one logger configuration, one set of
    settings, typed models of the lexical tables, and the store contracts.
    Keeping them here means the three layers never import each other for
    plumbing.

Architecture::

    Layer 1 -- Types & Errors
        errors.py          LexSpineError hierarchy (validation, execution, rollback)
        enums.py           Shared enums (Severity, SafetyLevel, ComplianceStatus, ...)
        models.py          Entity, Translation, Form, FormTranslationLink, EntityBundle

    Layer 2 -- Storage
        protocols.py       EntityReader / MutationStore contracts
        statements.py      Mutation statement builder + audit
        store.py           SQLAlchemy and in-memory stores

    Layer 3 -- Runtime
        logging.py         structlog configuration, LogContext
        settings.py        LexSpineSettings (pydantic-settings)
        cache.py           Session-scoped LookupCache

Tags:
    lexspine, core, foundation

Doc-Types:
    package-overview
"""
