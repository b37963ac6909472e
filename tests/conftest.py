"""
Shared pytest fixtures for lexspine tests.

This module provides:
- Sample entity bundles (fully compliant and legacy-tagged)
- An in-memory entity store preloaded with those bundles
- A recording mutation store that captures every statement
- An applying mutation store that runs generated statements on in-memory rows

Usage:
    Fixtures are auto-discovered by pytest:

        def test_something(compliant_bundle, recording_store):
            ...
"""

import copy
import json
import re
import sys
from pathlib import Path

import pytest

# Ensure lexspine package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from lexspine.core.errors import StoreError
from lexspine.core.models import Entity, EntityBundle, Form, Translation
from lexspine.core.protocols import MutationResult
from lexspine.core.store import InMemoryEntityStore


# =============================================================================
# Test doubles
# =============================================================================


class RecordingMutationStore:
    """MutationStore that records statements instead of running them.

    Statements containing any of ``fail_on`` raise StoreError.
    """

    def __init__(self, *, fail_on=(), rows_affected=1, row_counts=None):
        self.statements: list[str] = []
        self.fail_on = tuple(fail_on)
        self.rows_affected = rows_affected
        self.row_counts = dict(row_counts or {})
        self.count_calls: list[str] = []

    def execute(self, statement: str) -> MutationResult:
        if any(marker in statement for marker in self.fail_on):
            raise StoreError(f"rejected: {statement[:40]}").with_context(statement=statement)
        self.statements.append(statement)
        return MutationResult(rows_affected=self.rows_affected)

    def count_rows(self, table: str) -> int:
        self.count_calls.append(table)
        return self.row_counts.get(table, 10)


_LITERAL = r"'(?:[^']|'')*'|-?\d+(?:\.\d+)?"
_UPDATE = re.compile(r"UPDATE (\w+) SET (\w+) = (.+?) WHERE (.+)", re.DOTALL)


def _literal(text):
    if text.startswith("'"):
        return text[1:-1].replace("''", "'")
    return float(text) if "." in text else int(text)


def _json_text(metadata, key):
    """``column ->> key`` on a dict-valued column."""
    value = (metadata or {}).get(key)
    if value is None or isinstance(value, str):
        return value
    return json.dumps(value)


def _condition(text):
    if m := re.fullmatch(rf"NOT \((\w+) @> ARRAY\[({_LITERAL})\]\)", text):
        column, value = m.group(1), _literal(m.group(2))
        return lambda record_id, row: value not in (row.get(column) or [])
    if m := re.fullmatch(rf"(\w+) @> ARRAY\[({_LITERAL})\]", text):
        column, value = m.group(1), _literal(m.group(2))
        return lambda record_id, row: value in (row.get(column) or [])
    if m := re.fullmatch(rf"\((\w+) ->> ({_LITERAL})\) IS NULL", text):
        column, key = m.group(1), _literal(m.group(2))
        return lambda record_id, row: _json_text(row.get(column), key) is None
    if m := re.fullmatch(rf"\((\w+) ->> ({_LITERAL})\) IS NOT NULL", text):
        column, key = m.group(1), _literal(m.group(2))
        return lambda record_id, row: _json_text(row.get(column), key) is not None
    if m := re.fullmatch(rf"\((\w+) ->> ({_LITERAL})\) = ({_LITERAL})", text):
        column, key, value = m.group(1), _literal(m.group(2)), _literal(m.group(3))
        return lambda record_id, row: _json_text(row.get(column), key) == value
    if m := re.fullmatch(rf"(\w+) = ({_LITERAL})", text):
        column, value = m.group(1), _literal(m.group(2))
        return lambda record_id, row: (record_id if column == "id" else row.get(column)) == value
    raise StoreError(f"unsupported condition: {text}")


def _evaluate(expression, column, current):
    col = re.escape(column)
    if m := re.fullmatch(rf"array_append\({col}, ({_LITERAL})\)", expression):
        return list(current or []) + [_literal(m.group(1))]
    if m := re.fullmatch(rf"array_remove\({col}, ({_LITERAL})\)", expression):
        value = _literal(m.group(1))
        return [item for item in current or [] if item != value]
    if m := re.fullmatch(rf"array_replace\({col}, ({_LITERAL}), ({_LITERAL})\)", expression):
        old, new = _literal(m.group(1)), _literal(m.group(2))
        return [new if item == old else item for item in current or []]
    if m := re.fullmatch(rf"COALESCE\({col}, '\{{\}}'::jsonb\) \|\| ({_LITERAL})::jsonb", expression):
        return {**(current or {}), **json.loads(_literal(m.group(1)))}
    if m := re.fullmatch(rf"{col}((?: - (?:{_LITERAL}))+)", expression):
        keys = [_literal(key) for key in re.findall(_LITERAL, m.group(1))]
        return {key: value for key, value in (current or {}).items() if key not in keys}
    raise StoreError(f"unsupported expression: {expression}")


class ApplyingMutationStore:
    """MutationStore that applies builder-generated statements to in-memory rows.

    ``rows`` maps table → record id → column → value. Tag and id arrays are
    lists (so duplicates stay visible); metadata columns are dicts.
    """

    def __init__(self, rows=None):
        self.rows = {
            table: {record_id: copy.deepcopy(dict(columns)) for record_id, columns in records.items()}
            for table, records in (rows or {}).items()
        }
        self.statements: list[str] = []

    @classmethod
    def from_bundles(cls, *bundles):
        rows = {"dictionary": {}, "word_forms": {}, "word_translations": {}}
        for bundle in bundles:
            rows["dictionary"][bundle.entity.id] = {"tags": sorted(bundle.entity.tags)}
            for form in bundle.forms:
                rows["word_forms"][form.id] = {"word_id": bundle.entity.id, "tags": sorted(form.tags)}
            for translation in bundle.translations:
                rows["word_translations"][translation.id] = {
                    "word_id": bundle.entity.id,
                    "context_metadata": translation.context.to_dict(),
                    "form_ids": None if translation.form_ids is None else list(translation.form_ids),
                }
        return cls(rows)

    def execute(self, statement: str) -> MutationResult:
        match = _UPDATE.fullmatch(statement)
        if match is None:
            raise StoreError(f"unsupported statement: {statement[:60]}")
        table, column, expression, where = match.groups()
        conditions = [_condition(part) for part in where.split(" AND ")]
        affected = 0
        for record_id, row in self.rows.get(table, {}).items():
            if all(test(record_id, row) for test in conditions):
                row[column] = _evaluate(expression, column, row.get(column))
                affected += 1
        self.statements.append(statement)
        return MutationResult(rows_affected=affected)

    def count_rows(self, table: str) -> int:
        return len(self.rows.get(table, {}))

    def apply(self, statements):
        for statement in statements:
            self.execute(statement)

    def state(self):
        """Copy of all rows with arrays sorted, for order-insensitive comparison."""
        return {
            table: {
                record_id: {
                    column: sorted(value, key=str) if isinstance(value, list) else copy.deepcopy(value)
                    for column, value in row.items()
                }
                for record_id, row in records.items()
            }
            for table, records in self.rows.items()
        }

    def tags(self, table, record_id):
        return self.rows[table][record_id]["tags"]


# =============================================================================
# Bundle factories
# =============================================================================


def make_compliant_bundle(entity_id=1) -> EntityBundle:
    """A verb that passes every default catalog rule."""
    base = entity_id * 100
    entity = Entity(entity_id, "parlare", tags={"are-conjugation", "always-transitive", "freq-top100"})
    present = [
        ("parlo", "prima-persona", "singolare"),
        ("parli", "seconda-persona", "singolare"),
        ("parla", "terza-persona", "singolare"),
        ("parliamo", "prima-persona", "plurale"),
        ("parlate", "seconda-persona", "plurale"),
        ("parlano", "terza-persona", "plurale"),
    ]
    forms = [
        Form(base + i, entity_id, text, {"indicativo", "presente", person, number})
        for i, (text, person, number) in enumerate(present)
    ]
    forms += [
        Form(base + 6, entity_id, "parlato", {"participio", "participio-passato", "building-block"}),
        Form(base + 7, entity_id, "parlando", {"gerundio", "gerundio-presente", "building-block"}),
        Form(base + 8, entity_id, "parlare", {"infinito", "infinito-presente"}),
        Form(
            base + 9,
            entity_id,
            "ho parlato",
            {"indicativo", "passato-prossimo", "prima-persona", "singolare", "avere-auxiliary"},
        ),
    ]
    translation = Translation(
        id=base + 50,
        entity_id=entity_id,
        meaning="to speak",
        context={"auxiliary": "avere", "transitivity": "transitive"},
        form_ids=[form.id for form in forms],
    )
    return EntityBundle(entity=entity, translations=[translation], forms=forms)


def make_legacy_bundle(entity_id=2) -> EntityBundle:
    """A verb with legacy tags, missing metadata and a dangling form reference."""
    base = entity_id * 100
    entity = Entity(entity_id, "andare", tags={"are-conjugation", "always-intransitive"})
    forms = [
        Form(base + 1, entity_id, "vado", {"indicativo", "presente", "io", "singular"}),
        Form(base + 2, entity_id, "andato", {"participio", "participio-passato"}),
    ]
    translation = Translation(
        id=base + 50,
        entity_id=entity_id,
        meaning="to go",
        context={},
        form_ids=[base + 1, 999],
    )
    return EntityBundle(entity=entity, translations=[translation], forms=forms)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def compliant_bundle() -> EntityBundle:
    return make_compliant_bundle()


@pytest.fixture
def legacy_bundle() -> EntityBundle:
    return make_legacy_bundle()


@pytest.fixture
def entity_store(compliant_bundle, legacy_bundle) -> InMemoryEntityStore:
    return InMemoryEntityStore([compliant_bundle, legacy_bundle])


@pytest.fixture
def recording_store() -> RecordingMutationStore:
    return RecordingMutationStore()


@pytest.fixture
def no_sleep():
    """Sleep replacement that records requested delays."""
    delays: list[float] = []

    def sleep(seconds: float) -> None:
        delays.append(seconds)

    sleep.delays = delays
    return sleep


@pytest.fixture
def bundle_factory():
    """Factories for building extra bundles with chosen ids."""
    return {"compliant": make_compliant_bundle, "legacy": make_legacy_bundle}
