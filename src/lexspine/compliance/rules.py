"""Versioned rule catalog consumed by the compliance validator.

The catalog lists what each layer of an entity bundle must carry: required
tag sets per entity and form, required context-metadata keys per
translation, the compound and building-block patterns, the structural
checklist, and the static impact table used by the system report. The
validator iterates these lists; swapping the catalog (``load_rule_catalog``)
changes what is checked without touching the validator's control flow.

Catalogs load from YAML or JSON::

    version: "2024.2"
    entity_requirements:
      - name: conjugation-class
        rule_id: missing-conjugation-class
        tags: [are-conjugation, ere-conjugation, ire-conjugation, ire-isc-conjugation]
        severity: critical
        suffix_hints: {are: are-conjugation, ere: ere-conjugation}
"""

from __future__ import annotations

import json
import re
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from lexspine.core.enums import Severity, TermCategory
from lexspine.core.errors import ConfigError


def _check_regex(pattern: str) -> None:
    try:
        re.compile(pattern)
    except re.error as exc:
        raise ValueError(f"Invalid regex {pattern!r}: {exc}") from exc


class TagRequirement(BaseModel):
    """Exactly one tag of ``tags`` is required on a record."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str = Field(..., min_length=1)
    rule_id: str = Field(..., min_length=1)
    tags: tuple[str, ...] = Field(..., min_length=1)
    severity: Severity = Severity.CRITICAL
    multiple_severity: Severity = Severity.HIGH
    description: str = ""
    # Suffix of the entity text -> suggested tag, checked in order.
    suffix_hints: dict[str, str] = Field(default_factory=dict)

    @property
    def multiple_rule_id(self) -> str:
        return f"multiple-{self.name}-tags"

    def suggest(self, text: str) -> str | None:
        lowered = text.lower()
        for suffix, tag in self.suffix_hints.items():
            if lowered.endswith(suffix):
                return tag
        return None


class MetadataRequirement(BaseModel):
    """A context-metadata key that must hold one of ``allowed_values``."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    key: str = Field(..., min_length=1)
    rule_id: str = Field(..., min_length=1)
    allowed_values: tuple[str, ...] = Field(..., min_length=1)
    severity: Severity = Severity.CRITICAL
    description: str = ""
    auto_fix: str | None = None


class RequiredBaseForm(BaseModel):
    """A base form every entity must have (matched by carrying all ``tags``)."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str
    tags: tuple[str, ...] = Field(..., min_length=1)
    impact: str = ""


class DeprecatedPattern(BaseModel):
    """Out-of-scope content, matched on form text or tags and only counted."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str
    label: str
    text_patterns: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()

    @field_validator("text_patterns")
    @classmethod
    def _compiles(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        for pattern in value:
            _check_regex(pattern)
        return value


class RuleCatalog(BaseModel):
    """Static, versioned table of compliance requirements."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    version: str = "1"
    entity_requirements: tuple[TagRequirement, ...] = ()
    translation_requirements: tuple[MetadataRequirement, ...] = ()
    require_form_references: bool = True
    form_references_rule_id: str = "missing-form-ids-array"
    form_references_severity: Severity = Severity.CRITICAL
    form_requirements: tuple[TagRequirement, ...] = ()
    legacy_rule_ids: dict[TermCategory, str] = Field(default_factory=dict)
    # auxiliary -> regex matched against the form text
    compound_patterns: dict[str, str] = Field(default_factory=dict)
    building_block_tag: str = "building-block"
    building_block_base_tags: tuple[str, ...] = ()
    required_base_forms: tuple[RequiredBaseForm, ...] = ()
    # each combination is matched by carrying all of its tags
    required_combinations: tuple[tuple[str, ...], ...] = ()
    deprecated_patterns: tuple[DeprecatedPattern, ...] = ()
    issue_impacts: dict[str, str] = Field(default_factory=dict)
    default_impact: str = "Affects data consistency and architectural compliance"
    coverage_threshold: float = Field(default=0.8, ge=0, le=1)
    coverage_severity: Severity = Severity.MEDIUM
    high_priority_tags: tuple[str, ...] = ()
    medium_priority_tags: tuple[str, ...] = ()

    @field_validator("compound_patterns")
    @classmethod
    def _patterns_compile(cls, value: dict[str, str]) -> dict[str, str]:
        for pattern in value.values():
            _check_regex(pattern)
        return value

    def impact(self, rule_id: str) -> str:
        return self.issue_impacts.get(rule_id, self.default_impact)

    def legacy_rule_id(self, category: TermCategory) -> str:
        return self.legacy_rule_ids.get(category, f"legacy-{category.value}-terms")

    def compound_auxiliary(self, text: str) -> str | None:
        """Auxiliary of a compound form text, or None if the text is not compound."""
        for auxiliary, pattern in self.compound_patterns.items():
            if re.match(pattern, text.strip(), re.IGNORECASE):
                return auxiliary
        return None


MOODS = ("indicativo", "congiuntivo", "condizionale", "imperativo", "infinito", "participio", "gerundio")

TENSES = (
    "presente", "imperfetto", "passato-remoto", "futuro-semplice",
    "passato-prossimo", "trapassato-prossimo", "futuro-anteriore", "trapassato-remoto",
    "congiuntivo-presente", "congiuntivo-imperfetto", "congiuntivo-passato", "congiuntivo-trapassato",
    "condizionale-presente", "condizionale-passato",
    "imperativo-presente", "imperativo-passato",
    "infinito-presente", "infinito-passato",
    "participio-presente", "participio-passato",
    "gerundio-presente", "gerundio-passato",
    "presente-progressivo", "passato-progressivo", "futuro-progressivo",
    "congiuntivo-presente-progressivo", "condizionale-presente-progressivo",
)

DEFAULT_RULE_CATALOG = RuleCatalog(
    version="2024.1",
    entity_requirements=(
        TagRequirement(
            name="conjugation-class",
            rule_id="missing-conjugation-class",
            tags=("are-conjugation", "ere-conjugation", "ire-conjugation", "ire-isc-conjugation"),
            severity=Severity.CRITICAL,
            description="Conjugation class drives form generation",
            suffix_hints={"arsi": "are-conjugation", "ersi": "ere-conjugation", "irsi": "ire-conjugation",
                          "are": "are-conjugation", "ere": "ere-conjugation", "ire": "ire-conjugation"},
        ),
        TagRequirement(
            name="transitivity-potential",
            rule_id="missing-transitivity-potential",
            tags=("always-transitive", "always-intransitive", "both-possible"),
            severity=Severity.HIGH,
            description="Transitivity potential of the verb",
        ),
    ),
    translation_requirements=(
        MetadataRequirement(
            key="auxiliary",
            rule_id="missing-auxiliary-assignment",
            allowed_values=("avere", "essere"),
            severity=Severity.CRITICAL,
            description="Each translation declares the auxiliary of its compound forms",
            auto_fix="Assign auxiliary from the verb pattern (essere for essere/andare and reflexives, else avere)",
        ),
        MetadataRequirement(
            key="transitivity",
            rule_id="missing-transitivity",
            allowed_values=("transitive", "intransitive"),
            severity=Severity.HIGH,
            description="Each translation declares its transitivity",
        ),
    ),
    form_requirements=(
        TagRequirement(name="mood", rule_id="missing-mood-tag", tags=MOODS, severity=Severity.CRITICAL),
        TagRequirement(name="tense", rule_id="missing-tense-tag", tags=TENSES, severity=Severity.CRITICAL),
    ),
    legacy_rule_ids={
        TermCategory.PERSON: "legacy-person-terms",
        TermCategory.NUMBER: "legacy-number-terms",
        TermCategory.AUXILIARY: "legacy-auxiliary-format",
        TermCategory.MOOD: "legacy-mood-terms",
    },
    compound_patterns={
        "avere": r"^(ho|hai|ha|abbiamo|avete|hanno)\s+\w+$",
        "essere": r"^(sono|sei|è|siamo|siete)\s+\w+$",
        "stare": r"^(sto|stai|sta|stiamo|state|stanno)\s+\w+$",
    },
    building_block_tag="building-block",
    building_block_base_tags=("participio-passato", "gerundio-presente"),
    required_base_forms=(
        RequiredBaseForm(
            name="participio-passato",
            tags=("participio", "participio-passato"),
            impact="Cannot generate compound perfect tenses",
        ),
        RequiredBaseForm(
            name="gerundio-presente",
            tags=("gerundio", "gerundio-presente"),
            impact="Cannot generate progressive tenses",
        ),
        RequiredBaseForm(
            name="infinito-presente",
            tags=("infinito", "infinito-presente"),
            impact="Cannot generate negative imperatives",
        ),
    ),
    required_combinations=tuple(
        ("indicativo", "presente", person, number)
        for number in ("singolare", "plurale")
        for person in ("prima-persona", "seconda-persona", "terza-persona")
    ),
    deprecated_patterns=(
        DeprecatedPattern(
            name="negative",
            label="negative forms",
            text_patterns=(r"^non\s",),
            tags=("negative",),
        ),
        DeprecatedPattern(
            name="complex-clitic",
            label="complex clitic forms",
            text_patterns=(
                r"^(me|te|se|ce|ve|glie)\s*(lo|la|li|le|ne)\s+\w+",
                r"\w+(me|te|ce|ve|se)(lo|la|li|le|ne)$",
                r"\w+glie(lo|la|li|le|ne)$",
            ),
        ),
    ),
    issue_impacts={
        "missing-conjugation-class": "Blocks form generation and categorization",
        "missing-auxiliary-assignment": "Prevents compound tense materialization",
        "missing-form-ids-array": "Breaks translation-to-form relationship architecture",
        "legacy-person-terms": "Prevents multi-language expansion",
        "missing-auxiliary-tag": "Requires runtime inference, degrades performance",
        "broken-form-reference": "Causes runtime errors in new system",
    },
    high_priority_tags=("freq-top100", "CEFR-A1"),
    medium_priority_tags=("freq-top500", "CEFR-A2", "CEFR-B1"),
)

# Tags selecting entities for a "high-only" validation run.
HIGH_PRIORITY_FILTER_TAGS = ("freq-top100", "freq-top200", "freq-top500", "CEFR-A1", "CEFR-A2")


def load_rule_catalog(path: str | Path) -> RuleCatalog:
    """Load and validate a rule catalog from a ``.yaml``/``.yml`` or ``.json`` file.

    Raises:
        ConfigError: If the file cannot be parsed or does not match the schema.
    """
    path = Path(path)
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Cannot read rule catalog {path}: {exc}", cause=exc) from exc

    try:
        if path.suffix.lower() in (".yaml", ".yml"):
            data = yaml.safe_load(content)
        else:
            data = json.loads(content)
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise ConfigError(f"Invalid rule catalog {path}: {exc}", cause=exc) from exc

    try:
        return RuleCatalog.model_validate(data or {})
    except ValidationError as exc:
        raise ConfigError(f"Rule catalog {path} does not match schema: {exc}", cause=exc) from exc


__all__ = [
    "TagRequirement",
    "MetadataRequirement",
    "RequiredBaseForm",
    "DeprecatedPattern",
    "RuleCatalog",
    "DEFAULT_RULE_CATALOG",
    "HIGH_PRIORITY_FILTER_TAGS",
    "MOODS",
    "TENSES",
    "load_rule_catalog",
]
