"""Store implementations: SQLAlchemy-backed and in-memory.

Manifesto:
    Validation and migration code only sees ``EntityReader`` and
    ``MutationStore``. This module provides the implementations:

    * ``create_store_engine``  -- SQLAlchemy engine with sane defaults.
    * ``SqlEntityStore``       -- reads the four lexical tables.
    * ``SqlMutationStore``     -- runs pre-generated mutation statements.
    * ``InMemoryEntityStore``  -- bundles held in memory (headless runs, tests).

    Tag and id arrays may come back as native arrays (PostgreSQL) or JSON
    text (SQLite); both are accepted.

Tags:
    lexspine, store, sqlalchemy, engine, reader, mutation

Doc-Types:
    api-reference
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any

from sqlalchemy import create_engine as _sa_create_engine
from sqlalchemy import event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from lexspine.core.errors import StoreError
from lexspine.core.logging import get_logger
from lexspine.core.models import (
    ContextMetadata,
    Entity,
    EntityBundle,
    Form,
    FormTranslationLink,
    RecordId,
    Translation,
)
from lexspine.core.protocols import MutationResult
from lexspine.core.statements import validate_identifier

logger = get_logger(__name__)

LEXICAL_TABLES = ("dictionary", "word_translations", "word_forms", "form_translations")


def create_store_engine(url: str = "sqlite:///lexspine.db", *, echo: bool = False, **kwargs: Any) -> Engine:
    """Create a SQLAlchemy engine for the lexical store.

    In-memory SQLite URLs share one connection so every session sees the
    same database.
    """
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs.setdefault("poolclass", StaticPool)
        engine = _sa_create_engine(url, echo=echo, **kwargs)

        @event.listens_for(engine, "connect")
        def _set_sqlite_pragma(dbapi_connection: Any, _rec: Any) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine
    return _sa_create_engine(url, echo=echo, **kwargs)


# ---------------------------------------------------------------------------
# Column decoding
# ---------------------------------------------------------------------------


def _decode_array(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, str):
        value = json.loads(value) if value.strip() else []
    return list(value)


def _decode_optional_array(value: Any) -> list[Any] | None:
    if value is None:
        return None
    return _decode_array(value)


def _decode_mapping(value: Any) -> dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, str):
        return json.loads(value) if value.strip() else {}
    return dict(value)


def _decode_datetime(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


# ---------------------------------------------------------------------------
# SQLAlchemy read side
# ---------------------------------------------------------------------------


class SqlEntityStore:
    """``EntityReader`` over the ``dictionary`` / ``word_*`` / ``form_translations`` tables."""

    def __init__(self, engine: Engine):
        self._engine = engine

    def list_entities(
        self,
        category: str,
        *,
        tags_any: Iterable[str] | None = None,
        limit: int | None = None,
    ) -> list[Entity]:
        wanted = frozenset(tags_any or ())
        sql = (
            "SELECT id, italian, word_type, tags, created_at FROM dictionary "
            "WHERE word_type = :category ORDER BY italian"
        )
        params: dict[str, Any] = {"category": category}
        if limit is not None and not wanted:
            sql += " LIMIT :limit"
            params["limit"] = limit
        rows = self._fetch(sql, params)
        entities = [
            Entity(
                id=row.id,
                text=row.italian,
                category=row.word_type,
                tags=_decode_array(row.tags),
                created_at=_decode_datetime(row.created_at),
            )
            for row in rows
        ]
        if wanted:
            entities = [entity for entity in entities if entity.tags & wanted]
            if limit is not None:
                entities = entities[:limit]
        return entities

    def load_bundle(self, entity_id: RecordId) -> EntityBundle:
        params = {"entity_id": entity_id}
        entity_rows = self._fetch(
            "SELECT id, italian, word_type, tags, created_at FROM dictionary WHERE id = :entity_id",
            params,
        )
        if not entity_rows:
            raise StoreError(f"Entity {entity_id} not found").with_context(
                entity_id=str(entity_id), table="dictionary"
            )
        row = entity_rows[0]
        entity = Entity(
            id=row.id,
            text=row.italian,
            category=row.word_type,
            tags=_decode_array(row.tags),
            created_at=_decode_datetime(row.created_at),
        )
        translations = [
            Translation(
                id=t.id,
                entity_id=entity_id,
                meaning=t.translation,
                context=ContextMetadata.from_mapping(_decode_mapping(t.context_metadata)),
                display_priority=t.display_priority or 1,
                form_ids=_decode_optional_array(t.form_ids),
            )
            for t in self._fetch(
                "SELECT id, translation, context_metadata, display_priority, form_ids "
                "FROM word_translations WHERE word_id = :entity_id ORDER BY display_priority",
                params,
            )
        ]
        forms = [
            Form(
                id=f.id,
                entity_id=entity_id,
                text=f.form_text,
                tags=_decode_array(f.tags),
                phonetic=f.phonetic_form,
                ipa=f.ipa,
            )
            for f in self._fetch(
                "SELECT id, form_text, tags, phonetic_form, ipa FROM word_forms "
                "WHERE word_id = :entity_id ORDER BY id",
                params,
            )
        ]
        links = [
            FormTranslationLink(form_id=link.form_id, translation_id=link.word_translation_id)
            for link in self._fetch(
                "SELECT ft.form_id, ft.word_translation_id FROM form_translations ft "
                "JOIN word_forms wf ON wf.id = ft.form_id WHERE wf.word_id = :entity_id",
                params,
            )
        ]
        return EntityBundle(entity=entity, translations=translations, forms=forms, links=links)

    def form_tag_sets(self) -> list[frozenset[str]]:
        return [frozenset(_decode_array(row.tags)) for row in self._fetch("SELECT tags FROM word_forms", {})]

    def _fetch(self, sql: str, params: Mapping[str, Any]) -> list[Any]:
        try:
            with self._engine.connect() as conn:
                return list(conn.execute(text(sql), dict(params)))
        except SQLAlchemyError as exc:
            raise StoreError(f"Read failed: {exc}", cause=exc) from exc


# ---------------------------------------------------------------------------
# SQLAlchemy write side
# ---------------------------------------------------------------------------


class SqlMutationStore:
    """``MutationStore`` that runs each statement in its own transaction."""

    def __init__(self, engine: Engine):
        self._engine = engine

    def execute(self, statement: str) -> MutationResult:
        # Colons are escaped so literals and ::casts are never read as bind params.
        clause = text(statement.replace(":", "\\:"))
        try:
            with self._engine.begin() as conn:
                result = conn.execute(clause)
                rows = result.rowcount if result.rowcount is not None and result.rowcount >= 0 else 0
        except SQLAlchemyError as exc:
            raise StoreError(f"Statement failed: {exc}", cause=exc).with_context(
                statement=statement
            ) from exc
        logger.debug("store.execute", rows_affected=rows)
        return MutationResult(rows_affected=rows)

    def count_rows(self, table: str) -> int:
        table = validate_identifier(table)
        try:
            with self._engine.connect() as conn:
                return int(conn.execute(text(f"SELECT COUNT(*) FROM {table}")).scalar_one())
        except SQLAlchemyError as exc:
            raise StoreError(f"Row count failed for {table}: {exc}", cause=exc).with_context(
                table=table
            ) from exc


# ---------------------------------------------------------------------------
# In-memory read side
# ---------------------------------------------------------------------------


class InMemoryEntityStore:
    """``EntityReader`` over bundles held in memory.

    Also answers ``count_rows`` for the four lexical tables, which makes it
    usable as the read half of a dry run.
    """

    def __init__(self, bundles: Iterable[EntityBundle] = ()):
        self._bundles: dict[RecordId, EntityBundle] = {}
        for bundle in bundles:
            self.add(bundle)

    def add(self, bundle: EntityBundle) -> None:
        self._bundles[bundle.entity.id] = bundle

    def list_entities(
        self,
        category: str,
        *,
        tags_any: Iterable[str] | None = None,
        limit: int | None = None,
    ) -> list[Entity]:
        wanted = frozenset(tags_any or ())
        entities = sorted(
            (b.entity for b in self._bundles.values() if b.entity.category == category),
            key=lambda entity: entity.text,
        )
        if wanted:
            entities = [entity for entity in entities if entity.tags & wanted]
        return entities[:limit] if limit is not None else entities

    def load_bundle(self, entity_id: RecordId) -> EntityBundle:
        try:
            return self._bundles[entity_id]
        except KeyError:
            raise StoreError(f"Entity {entity_id} not found").with_context(
                entity_id=str(entity_id), table="dictionary"
            ) from None

    def form_tag_sets(self) -> list[frozenset[str]]:
        return [form.tags for bundle in self._bundles.values() for form in bundle.forms]

    def count_rows(self, table: str) -> int:
        bundles = self._bundles.values()
        counts = {
            "dictionary": len(self._bundles),
            "word_translations": sum(len(b.translations) for b in bundles),
            "word_forms": sum(len(b.forms) for b in bundles),
            "form_translations": sum(len(b.links) for b in bundles),
        }
        if table not in counts:
            raise StoreError(f"Unknown table: {table}").with_context(table=table)
        return counts[table]


__all__ = [
    "LEXICAL_TABLES",
    "create_store_engine",
    "SqlEntityStore",
    "SqlMutationStore",
    "InMemoryEntityStore",
]
