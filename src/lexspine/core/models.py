"""Lexical dataset models (dictionary, word_translations, word_forms, form_translations).

Manifesto:
    The compliance and migration layers read entities, translations, forms
    and links as typed objects rather than raw rows. Rows are owned by the
    store; these objects are read-only snapshots and are only ever changed
    through generated mutation statements.

Models for the four tables of the lexical store, plus ``EntityBundle``,
the unit the validator evaluates (one entity with everything it owns).

Tags:
    lexspine, models, dataclasses, pydantic, schema-mapping

Doc-Types:
    api-reference, data-model
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict

RecordId = str | int


def _freeze_tags(tags: Iterable[str] | None) -> frozenset[str]:
    return frozenset(tags or ())


# ---------------------------------------------------------------------------
# Context metadata
# ---------------------------------------------------------------------------


class ContextMetadata(BaseModel):
    """Context metadata of a translation (``word_translations.context_metadata``).

    Known keys are typed fields; anything else is kept as an extra so
    unrecognised keys survive a read/validate cycle untouched.
    """

    model_config = ConfigDict(extra="allow", frozen=True)

    auxiliary: str | None = None
    transitivity: str | None = None
    usage: str | None = None
    plurality: str | None = None
    gender_usage: str | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> ContextMetadata:
        return cls.model_validate(dict(data or {}))

    def get(self, key: str, default: Any = None) -> Any:
        """Read a known or extra key."""
        if key in type(self).model_fields:
            value = getattr(self, key)
            return default if value is None else value
        return (self.model_extra or {}).get(key, default)

    def extras(self) -> dict[str, Any]:
        return dict(self.model_extra or {})

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


# ---------------------------------------------------------------------------
# dictionary
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Entity:
    """A lexical item (``dictionary`` row)."""

    id: RecordId
    text: str
    category: str = "VERB"
    tags: frozenset[str] = field(default_factory=frozenset)
    created_at: datetime | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "tags", _freeze_tags(self.tags))


# ---------------------------------------------------------------------------
# word_translations
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Translation:
    """One meaning of an entity (``word_translations`` row)."""

    id: RecordId
    entity_id: RecordId
    meaning: str
    context: ContextMetadata = field(default_factory=ContextMetadata)
    display_priority: int = 1
    form_ids: tuple[RecordId, ...] | None = None

    def __post_init__(self) -> None:
        if isinstance(self.context, Mapping):
            object.__setattr__(self, "context", ContextMetadata.from_mapping(self.context))
        if self.form_ids is not None:
            object.__setattr__(self, "form_ids", tuple(self.form_ids))


# ---------------------------------------------------------------------------
# word_forms
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Form:
    """A realized grammatical variant of an entity (``word_forms`` row)."""

    id: RecordId
    entity_id: RecordId
    text: str
    tags: frozenset[str] = field(default_factory=frozenset)
    phonetic: str | None = None
    ipa: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "tags", _freeze_tags(self.tags))


# ---------------------------------------------------------------------------
# form_translations
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FormTranslationLink:
    """Join row between a form and a translation (``form_translations``)."""

    form_id: RecordId
    translation_id: RecordId


@dataclass(frozen=True)
class EntityBundle:
    """An entity with the translations, forms and links it owns."""

    entity: Entity
    translations: tuple[Translation, ...] = ()
    forms: tuple[Form, ...] = ()
    links: tuple[FormTranslationLink, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "translations", tuple(self.translations))
        object.__setattr__(self, "forms", tuple(self.forms))
        object.__setattr__(self, "links", tuple(self.links))

    @property
    def form_ids(self) -> frozenset[RecordId]:
        return frozenset(form.id for form in self.forms)

    @property
    def translation_ids(self) -> frozenset[RecordId]:
        return frozenset(translation.id for translation in self.translations)

    def form(self, form_id: RecordId) -> Form | None:
        for form in self.forms:
            if form.id == form_id:
                return form
        return None

    def linked_form_ids(self, translation_id: RecordId) -> list[RecordId]:
        return [link.form_id for link in self.links if link.translation_id == translation_id]


__all__ = [
    "RecordId",
    "ContextMetadata",
    "Entity",
    "Translation",
    "Form",
    "FormTranslationLink",
    "EntityBundle",
]
