"""Operator-authored migration rules, persisted as JSON.

A custom rule describes a bulk tag or metadata transformation on one table
column. Rules are validated with pydantic on load and compiled into
ordinary ``MigrationRecommendation`` objects, so they run through the same
batching, checks and rollback as generated recommendations.

Rollback statements are derived from a snapshot of the column taken when
the plan is built: every changed row gets statements guarded on its id and
an inverse that restores exactly the snapshotted value. A rule compiled
without a snapshot has forward statements only.

Example rule file::

    [
      {
        "id": "canonical-person",
        "name": "Canonical person terms",
        "pattern": {"table": "word_forms", "column": "tags", "target_tags": ["io"]},
        "transformation": {"type": "array-replace", "mappings": {"io": "prima-persona"}}
      }
    ]
"""

from __future__ import annotations

import json
from collections.abc import Callable, Iterable, Mapping
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator, model_validator

from lexspine.core.enums import MigrationCategory, SafetyLevel, Severity, TermCategory
from lexspine.core.errors import ConfigError, StatementError
from lexspine.core.logging import get_logger
from lexspine.core.models import EntityBundle, RecordId
from lexspine.core.protocols import EntityReader
from lexspine.core.statements import (
    Where,
    array_append,
    array_remove,
    metadata_merge,
    metadata_remove,
    validate_identifier,
)
from lexspine.migration.checks import ROLLBACK_AVAILABLE, STATEMENTS_PRESENT
from lexspine.migration.models import MigrationRecommendation
from lexspine.terminology.mappings import TERMINOLOGY_MAPPINGS

logger = get_logger(__name__)


class TransformationType(str, Enum):
    ARRAY_REPLACE = "array-replace"
    ARRAY_ADD = "array-add"
    ARRAY_REMOVE = "array-remove"
    METADATA_MERGE = "metadata-merge"
    METADATA_REMOVE = "metadata-remove"


class RulePattern(BaseModel):
    """Which rows a custom rule targets."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    table: str
    column: str
    target_tags: tuple[str, ...] = ()
    target_ids: tuple[str | int, ...] = ()

    @field_validator("table", "column")
    @classmethod
    def _identifier(cls, value: str) -> str:
        try:
            return validate_identifier(value)
        except StatementError as exc:
            raise ValueError(exc.message) from exc


class RuleTransformation(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    type: TransformationType
    mappings: dict[str, str] = Field(default_factory=dict)
    tags_to_add: tuple[str, ...] = ()
    tags_to_remove: tuple[str, ...] = ()
    metadata: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _has_payload(self) -> RuleTransformation:
        required = {
            TransformationType.ARRAY_REPLACE: self.mappings,
            TransformationType.ARRAY_ADD: self.tags_to_add,
            TransformationType.ARRAY_REMOVE: self.tags_to_remove,
            TransformationType.METADATA_MERGE: self.metadata,
            TransformationType.METADATA_REMOVE: self.tags_to_remove,
        }[self.type]
        if not required:
            raise ValueError(f"{self.type.value} transformation has nothing to apply")
        chained = set(self.mappings) & set(self.mappings.values())
        if chained:
            raise ValueError(f"Mappings are chained through: {', '.join(sorted(chained))}")
        return self


class CustomRuleDefinition(BaseModel):
    """A persisted, operator-authored migration rule."""

    model_config = ConfigDict(extra="forbid")

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    description: str = ""
    pattern: RulePattern
    transformation: RuleTransformation
    safety_checks: tuple[str, ...] = (STATEMENTS_PRESENT, ROLLBACK_AVAILABLE)
    rollback_strategy: str = "reverse-transformation"
    safety_level: SafetyLevel = SafetyLevel.CAUTION
    category: MigrationCategory = MigrationCategory.CLEANUP
    enabled: bool = True


_RULE_LIST = TypeAdapter(list[CustomRuleDefinition])

# Columns a snapshot can be read for, and how to read them from a bundle.
_SNAPSHOT_READERS: dict[tuple[str, str], Callable[[EntityBundle], Iterable[tuple[RecordId, Any]]]] = {
    ("dictionary", "tags"): lambda bundle: [(bundle.entity.id, bundle.entity.tags)],
    ("word_forms", "tags"): lambda bundle: [(form.id, form.tags) for form in bundle.forms],
    ("word_translations", "context_metadata"): lambda bundle: [
        (translation.id, translation.context.to_dict()) for translation in bundle.translations
    ],
    ("word_translations", "form_ids"): lambda bundle: [
        (translation.id, translation.form_ids or ()) for translation in bundle.translations
    ],
}

Snapshot = dict[RecordId, Any]


def snapshot_column(reader: EntityReader, table: str, column: str, *, category: str = "VERB") -> Snapshot:
    """Current value of ``table.column`` for every row owned by ``category`` entities.

    Raises:
        ConfigError: If the column cannot be read through ``reader``.
    """
    read = _SNAPSHOT_READERS.get((table, column))
    if read is None:
        supported = ", ".join(f"{t}.{c}" for t, c in _SNAPSHOT_READERS)
        raise ConfigError(f"Cannot snapshot {table}.{column}. Supported: {supported}")
    snapshot: Snapshot = {}
    for entity in reader.list_entities(category):
        for record_id, value in read(reader.load_bundle(entity.id)):
            snapshot[record_id] = value
    logger.debug("custom_rules.snapshot", table=table, column=column, rows=len(snapshot))
    return snapshot


def _is_metadata(t: RuleTransformation) -> bool:
    return t.type in (TransformationType.METADATA_MERGE, TransformationType.METADATA_REMOVE)


def _transform(rule: CustomRuleDefinition, current: Any) -> Any:
    """Value of one row after ``rule``, or None when the row is not matched."""
    t = rule.transformation
    if _is_metadata(t):
        values = dict(current or {})
        if t.type == TransformationType.METADATA_MERGE:
            values.update({key: value for key, value in t.metadata.items() if values.get(key) is None})
        else:
            for key in t.tags_to_remove:
                values.pop(key, None)
        return values

    values = set(current or ())
    if t.type == TransformationType.ARRAY_REPLACE:
        present = [old for old in t.mappings if old in values]
        return (values - set(present)) | {t.mappings[old] for old in present}
    if t.type == TransformationType.ARRAY_ADD:
        if rule.pattern.target_tags and values.isdisjoint(rule.pattern.target_tags):
            return None
        return values | set(t.tags_to_add)
    return values - set(t.tags_to_remove)


def _row_statements(
    rule: CustomRuleDefinition, record_id: RecordId, current: Any, updated: Any
) -> tuple[list[str], list[str]]:
    table, column = rule.pattern.table, rule.pattern.column

    def where() -> Where:
        return Where(table).id(record_id)

    forward: list[str] = []
    rollback: list[str] = []
    if _is_metadata(rule.transformation):
        before, after = dict(current or {}), updated
        added = {key: after[key] for key in sorted(after) if before.get(key) is None and after[key] is not None}
        removed = {key: before[key] for key in sorted(before) if key not in after}
        if added:
            guarded = where()
            for key in added:
                guarded.key_missing(column, key)
            forward.append(metadata_merge(table, column, added, guarded))
            absent = [key for key in added if key not in before]
            if absent:
                guarded = where()
                for key in absent:
                    guarded.key_present(column, key)
                rollback.append(metadata_remove(table, column, absent, guarded))
            nulls = {key: None for key in added if key in before}
            if nulls:
                rollback.append(metadata_merge(table, column, nulls, where()))
        if removed:
            forward.append(metadata_remove(table, column, list(removed), where()))
            guarded = where()
            for key in removed:
                guarded.key_missing(column, key)
            rollback.append(metadata_merge(table, column, removed, guarded))
        return forward, rollback

    before = set(current or ())
    for value in sorted(before - updated, key=str):
        forward.append(array_remove(table, column, value, where().contains(column, value)))
        rollback.append(array_append(table, column, value, where().lacks(column, value)))
    for value in sorted(updated - before, key=str):
        forward.append(array_append(table, column, value, where().lacks(column, value)))
        rollback.insert(0, array_remove(table, column, value, where().contains(column, value)))
    return forward, rollback


def _bulk_statements(rule: CustomRuleDefinition, record_id: RecordId | None) -> list[str]:
    """Forward-only statements matching rows by their current content."""
    table, column = rule.pattern.table, rule.pattern.column
    t = rule.transformation

    def where() -> Where:
        guarded = Where(table)
        if record_id is not None:
            guarded.id(record_id)
        return guarded

    forward: list[str] = []
    if t.type == TransformationType.ARRAY_REPLACE:
        for old, new in t.mappings.items():
            forward.append(array_append(table, column, new, where().contains(column, old).lacks(column, new)))
            forward.append(array_remove(table, column, old, where().contains(column, old)))
    elif t.type == TransformationType.ARRAY_ADD:
        for tag in t.tags_to_add:
            for target in rule.pattern.target_tags or (None,):
                guarded = where() if target is None else where().contains(column, target)
                forward.append(array_append(table, column, tag, guarded.lacks(column, tag)))
    elif t.type == TransformationType.ARRAY_REMOVE:
        for tag in t.tags_to_remove:
            forward.append(array_remove(table, column, tag, where().contains(column, tag)))
    elif t.type == TransformationType.METADATA_MERGE:
        for key in sorted(t.metadata):
            forward.append(metadata_merge(table, column, {key: t.metadata[key]}, where().key_missing(column, key)))
    else:
        for key in t.tags_to_remove:
            forward.append(metadata_remove(table, column, [key], where().key_present(column, key)))
    return forward


def compile_rule(
    rule: CustomRuleDefinition, snapshot: Mapping[RecordId, Any] | None = None
) -> MigrationRecommendation:
    """Turn a custom rule into a recommendation.

    With a ``snapshot`` of the column (record id → current value) every
    changed row gets its own guarded statements and an exact rollback that
    restores the snapshotted value. Without one the statements match rows
    by content and carry no rollback, so the default plan checks refuse
    to run them.
    """
    forward, rollback, _ = _compile(rule, snapshot)
    return _recommendation(rule, forward, rollback)


def _compile(
    rule: CustomRuleDefinition, snapshot: Mapping[RecordId, Any] | None
) -> tuple[list[str], list[str], Snapshot | None]:
    targets = {str(record_id) for record_id in rule.pattern.target_ids}
    forward: list[str] = []
    rollback: list[str] = []
    if snapshot is None:
        for record_id in rule.pattern.target_ids or (None,):
            forward.extend(_bulk_statements(rule, record_id))
        logger.warning("custom_rules.not_reversible", rule_id=rule.id, statements=len(forward))
        return forward, rollback, None

    updated_snapshot = dict(snapshot)
    for record_id, current in snapshot.items():
        if targets and str(record_id) not in targets:
            continue
        updated = _transform(rule, current)
        if updated is None:
            continue
        row_forward, row_rollback = _row_statements(rule, record_id, current, updated)
        if row_forward:
            forward.extend(row_forward)
            rollback[:0] = row_rollback
            updated_snapshot[record_id] = updated
    logger.debug("custom_rules.compiled", rule_id=rule.id, statements=len(forward))
    return forward, rollback, updated_snapshot


def _recommendation(rule: CustomRuleDefinition, forward: list[str], rollback: list[str]) -> MigrationRecommendation:
    return MigrationRecommendation(
        id=f"custom-{rule.id}",
        rule_id=f"custom:{rule.id}",
        entity_id="*",
        entity_text=rule.name,
        description=rule.description or rule.name,
        severity=Severity.MEDIUM,
        category=rule.category,
        safety_level=rule.safety_level,
        statements=forward,
        rollback_statements=rollback,
        priority=5,
        pre_validation_checks=rule.safety_checks,
        requires_validation=rule.safety_level != SafetyLevel.SAFE,
        estimated_minutes=max(1, len(forward)),
        affected_tables=(rule.pattern.table,),
    )


def compile_rules(
    rules: Iterable[CustomRuleDefinition], reader: EntityReader | None = None, *, category: str = "VERB"
) -> list[MigrationRecommendation]:
    """Compile enabled rules in order, each against the state the previous ones leave.

    Without a ``reader`` every rule compiles to forward-only statements.
    Rules that change nothing are dropped.
    """
    snapshots: dict[tuple[str, str], Snapshot] = {}
    recommendations = []
    for rule in rules:
        if not rule.enabled:
            continue
        key = (rule.pattern.table, rule.pattern.column)
        snapshot = None
        if reader is not None:
            if key not in snapshots:
                snapshots[key] = snapshot_column(reader, *key, category=category)
            snapshot = snapshots[key]
        forward, rollback, updated = _compile(rule, snapshot)
        if updated is not None:
            snapshots[key] = updated
        if not forward:
            logger.info("custom_rules.no_changes", rule_id=rule.id)
            continue
        recommendations.append(_recommendation(rule, forward, rollback))
    return recommendations


def default_custom_rules() -> list[CustomRuleDefinition]:
    """Built-in rule set: canonical terminology and deprecated English tag cleanup."""
    person_and_number = {
        m.legacy: m.canonical
        for m in TERMINOLOGY_MAPPINGS
        if m.category in (TermCategory.PERSON, TermCategory.NUMBER)
    }
    english_mood = {m.legacy: m.canonical for m in TERMINOLOGY_MAPPINGS if m.category == TermCategory.MOOD}
    return [
        CustomRuleDefinition(
            id="canonical-terminology",
            name="Canonical terminology migration",
            description="Replace legacy person and number tags with canonical terms",
            pattern=RulePattern(table="word_forms", column="tags", target_tags=tuple(person_and_number)),
            transformation=RuleTransformation(type=TransformationType.ARRAY_REPLACE, mappings=person_and_number),
            safety_level=SafetyLevel.SAFE,
            category=MigrationCategory.TERMINOLOGY,
        ),
        CustomRuleDefinition(
            id="deprecated-english-tags",
            name="Deprecated English tag cleanup",
            description="Replace English mood tags with their Italian equivalents",
            pattern=RulePattern(table="word_forms", column="tags", target_tags=tuple(english_mood)),
            transformation=RuleTransformation(type=TransformationType.ARRAY_REPLACE, mappings=english_mood),
            safety_level=SafetyLevel.SAFE,
            category=MigrationCategory.CLEANUP,
        ),
    ]


class JsonRuleRepository:
    """Custom rules persisted as a JSON list in a single file."""

    def __init__(self, path: str | Path):
        self.path = Path(path).expanduser()

    def list(self, *, enabled_only: bool = False) -> list[CustomRuleDefinition]:
        if not self.path.exists():
            return []
        try:
            rules = _RULE_LIST.validate_json(self.path.read_bytes())
        except ValidationError as exc:
            raise ConfigError(f"Invalid custom rules file {self.path}: {exc}", cause=exc) from exc
        except OSError as exc:
            raise ConfigError(f"Cannot read custom rules file {self.path}: {exc}", cause=exc) from exc
        if enabled_only:
            rules = [rule for rule in rules if rule.enabled]
        return rules

    def get(self, rule_id: str) -> CustomRuleDefinition | None:
        for rule in self.list():
            if rule.id == rule_id:
                return rule
        return None

    def save(self, rule: CustomRuleDefinition) -> None:
        """Insert or replace the rule with the same id."""
        rules = [existing for existing in self.list() if existing.id != rule.id]
        rules.append(rule)
        self._write(rules)
        logger.info("custom_rules.saved", rule_id=rule.id, path=str(self.path))

    def delete(self, rule_id: str) -> bool:
        rules = self.list()
        remaining = [rule for rule in rules if rule.id != rule_id]
        if len(remaining) == len(rules):
            return False
        self._write(remaining)
        logger.info("custom_rules.deleted", rule_id=rule_id, path=str(self.path))
        return True

    def _write(self, rules: list[CustomRuleDefinition]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = [rule.model_dump(mode="json") for rule in rules]
        self.path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")


__all__ = [
    "TransformationType",
    "RulePattern",
    "RuleTransformation",
    "CustomRuleDefinition",
    "snapshot_column",
    "compile_rule",
    "compile_rules",
    "default_custom_rules",
    "JsonRuleRepository",
]
