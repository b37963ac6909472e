"""
Mutation statement builder.

Manifesto:
    Migration statements are plain SQL strings on purpose: an operator can
    read every statement in a plan before anything runs. Building those
    strings ad hoc in every handler invites quoting bugs and injection, so
    every mutation type has exactly one template here:

    - **array_append / array_remove / array_replace:** tag array edits
    - **metadata_merge / metadata_remove:** jsonb context metadata edits

    Identifiers are checked against a strict pattern, literals are quoted,
    and ``audit_statement`` rejects anything that is not a single UPDATE.

Architecture:
    ::

        Where("word_forms").id(42).contains("tags", "io").lacks("tags", "prima-persona")
            ↓
        array_append("word_forms", "tags", "prima-persona", where)
            ↓
        UPDATE word_forms SET tags = array_append(tags, 'prima-persona')
        WHERE id = 42 AND tags @> ARRAY['io'] AND NOT (tags @> ARRAY['prima-persona'])

Examples:
    >>> array_replace("word_forms", "tags", "io", "prima-persona",
    ...               Where("word_forms").contains("tags", "io"))
    "UPDATE word_forms SET tags = array_replace(tags, 'io', 'prima-persona') WHERE tags @> ARRAY['io']"

Tags:
    sql, statements, builder, migration, quoting, lexspine

Doc-Types:
    api-reference
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterable, Mapping
from typing import Any

from lexspine.core.errors import StatementError

_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_]*$")


def validate_identifier(name: str) -> str:
    """Return ``name`` if it is a safe lower-case SQL identifier."""
    if not isinstance(name, str) or not _IDENTIFIER.match(name):
        raise StatementError(f"Invalid SQL identifier: {name!r}")
    return name


def quote_literal(value: Any) -> str:
    """Render a Python value as a SQL literal.

    Strings are single-quoted with embedded quotes doubled; ints and floats
    are rendered bare. Booleans and anything else are rejected.
    """
    if isinstance(value, bool):
        raise StatementError(f"Unsupported literal type: {type(value).__name__}")
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, str):
        if "\x00" in value:
            raise StatementError("NUL byte in string literal")
        return "'" + value.replace("'", "''") + "'"
    raise StatementError(f"Unsupported literal type: {type(value).__name__}")


def json_literal(data: Mapping[str, Any]) -> str:
    """Render a mapping as a ``jsonb`` literal."""
    try:
        encoded = json.dumps(dict(data), sort_keys=True, ensure_ascii=False)
    except TypeError as exc:
        raise StatementError(f"Metadata is not JSON serializable: {exc}", cause=exc) from exc
    return f"{quote_literal(encoded)}::jsonb"


class Where:
    """WHERE clause targeting for a single table.

    Conditions are AND-ed in the order they are added.
    """

    def __init__(self, table: str):
        self.table = validate_identifier(table)
        self._conditions: list[str] = []

    def id(self, record_id: Any, column: str = "id") -> Where:
        self._conditions.append(f"{validate_identifier(column)} = {quote_literal(record_id)}")
        return self

    def owned_by(self, entity_id: Any, column: str = "word_id") -> Where:
        return self.id(entity_id, column)

    def contains(self, column: str, value: Any) -> Where:
        column = validate_identifier(column)
        self._conditions.append(f"{column} @> ARRAY[{quote_literal(value)}]")
        return self

    def lacks(self, column: str, value: Any) -> Where:
        column = validate_identifier(column)
        self._conditions.append(f"NOT ({column} @> ARRAY[{quote_literal(value)}])")
        return self

    def key_missing(self, column: str, key: str) -> Where:
        column = validate_identifier(column)
        self._conditions.append(f"({column} ->> {quote_literal(key)}) IS NULL")
        return self

    def key_present(self, column: str, key: str) -> Where:
        column = validate_identifier(column)
        self._conditions.append(f"({column} ->> {quote_literal(key)}) IS NOT NULL")
        return self

    def key_equals(self, column: str, key: str, value: Any) -> Where:
        column = validate_identifier(column)
        self._conditions.append(
            f"({column} ->> {quote_literal(key)}) = {quote_literal(str(value))}"
        )
        return self

    def render(self) -> str:
        if not self._conditions:
            raise StatementError(f"Refusing to build an untargeted statement on {self.table}")
        return " AND ".join(self._conditions)


def _update(table: str, column: str, expression: str, where: Where) -> str:
    table = validate_identifier(table)
    if where.table != table:
        raise StatementError(f"WHERE clause targets {where.table}, statement targets {table}")
    return f"UPDATE {table} SET {column} = {expression} WHERE {where.render()}"


def array_append(table: str, column: str, value: Any, where: Where) -> str:
    column = validate_identifier(column)
    return _update(table, column, f"array_append({column}, {quote_literal(value)})", where)


def array_remove(table: str, column: str, value: Any, where: Where) -> str:
    column = validate_identifier(column)
    return _update(table, column, f"array_remove({column}, {quote_literal(value)})", where)


def array_replace(table: str, column: str, old: Any, new: Any, where: Where) -> str:
    column = validate_identifier(column)
    expression = f"array_replace({column}, {quote_literal(old)}, {quote_literal(new)})"
    return _update(table, column, expression, where)


def metadata_merge(table: str, column: str, data: Mapping[str, Any], where: Where) -> str:
    """Merge keys into a jsonb column (``COALESCE(col, '{}') || patch``)."""
    if not data:
        raise StatementError("Metadata merge needs at least one key")
    column = validate_identifier(column)
    expression = f"COALESCE({column}, '{{}}'::jsonb) || {json_literal(data)}"
    return _update(table, column, expression, where)


def metadata_remove(table: str, column: str, keys: Iterable[str], where: Where) -> str:
    """Drop keys from a jsonb column."""
    column = validate_identifier(column)
    keys = list(keys)
    if not keys:
        raise StatementError("Metadata removal needs at least one key")
    expression = column
    for key in keys:
        expression = f"{expression} - {quote_literal(key)}"
    return _update(table, column, expression, where)


def audit_statement(statement: str) -> None:
    """Reject anything that is not one targeted UPDATE statement.

    Raises:
        StatementError: If the statement is empty, not an UPDATE, has no
            WHERE clause or contains a statement separator outside literals.
    """
    stripped = statement.strip()
    if not stripped.upper().startswith("UPDATE "):
        raise StatementError(f"Only UPDATE statements are allowed: {stripped[:60]!r}")
    if " WHERE " not in stripped.upper():
        raise StatementError(f"Statement has no WHERE clause: {stripped[:60]!r}")
    outside_literals = re.sub(r"'(?:[^']|'')*'", "''", stripped)
    if ";" in outside_literals.rstrip(";") or "--" in outside_literals:
        raise StatementError(f"Statement separators are not allowed: {stripped[:60]!r}")


__all__ = [
    "Where",
    "validate_identifier",
    "quote_literal",
    "json_literal",
    "array_append",
    "array_remove",
    "array_replace",
    "metadata_merge",
    "metadata_remove",
    "audit_statement",
]
