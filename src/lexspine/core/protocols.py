"""
Store protocols for lexspine.

The compliance and migration layers never talk to a database directly.
They depend on two structural contracts defined here: a read side
(``EntityReader``) and a write side (``MutationStore``).

Architecture:
    ::

        EntityReader                              MutationStore
        ┌──────────────────────────────────┐      ┌───────────────────────────────┐
        │ list_entities(category, ...)     │      │ execute(statement)            │
        │ load_bundle(entity_id)           │      │   → MutationResult            │
        │ form_tag_sets()                  │      │ count_rows(table) → int       │
        └──────────────────────────────────┘      └───────────────────────────────┘

        Implementations (lexspine.core.store):
            InMemoryEntityStore       : headless runs and tests (both sides)
            SqlEntityStore            : SQLAlchemy read side
            SqlMutationStore          : SQLAlchemy write side

Guardrails:
    ❌ DON'T: Issue reads inside a mutation statement beyond its WHERE clause
    ✅ DO: Pre-generate every statement so it can be audited before execution

Tags:
    protocol, store, reader, mutation, lexspine, contracts

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from lexspine.core.models import Entity, EntityBundle, RecordId


@dataclass(frozen=True)
class MutationResult:
    """Outcome of one mutation statement."""

    rows_affected: int = 0


@runtime_checkable
class EntityReader(Protocol):
    """Read-only access to the lexical store."""

    def list_entities(
        self,
        category: str,
        *,
        tags_any: Iterable[str] | None = None,
        limit: int | None = None,
    ) -> list[Entity]:
        """Return entities of ``category``, optionally containing any of ``tags_any``."""
        ...

    def load_bundle(self, entity_id: RecordId) -> EntityBundle:
        """Return the entity with its translations, forms and links."""
        ...

    def form_tag_sets(self) -> list[frozenset[str]]:
        """Return the tag set of every form (terminology analysis input)."""
        ...


@runtime_checkable
class MutationStore(Protocol):
    """
    Write access to the lexical store.

    The store is assumed atomic per statement; nothing here groups
    statements into a transaction.
    """

    def execute(self, statement: str) -> MutationResult:
        """Run one self-contained mutation statement.

        Raises:
            StoreError: If the store rejects the statement.
        """
        ...

    def count_rows(self, table: str) -> int:
        """Return the number of rows in ``table``."""
        ...


__all__ = ["MutationResult", "EntityReader", "MutationStore"]
