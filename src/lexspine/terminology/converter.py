"""
Bidirectional terminology conversion.

Manifesto:
    The dataset carries two vocabularies for the same grammatical concepts:
    legacy pronoun/English tags (``io``, ``auxiliary-avere``, ``gerund``) and
    the canonical Italian tags (``prima-persona``, ``avere-auxiliary``,
    ``gerundio``). The converter is the single place that knows how they
    relate. It is pure and stateless: the same input always yields the same
    output, and nothing is cached between calls.

Architecture:
    ::

        TERMINOLOGY_MAPPINGS ──► TerminologyConverter
                                   ├── to_canonical / from_canonical
                                   ├── convert_tag_set   (full or transition mode)
                                   ├── check_consistency (warnings, never errors)
                                   ├── analyze_tags      (one tag set)
                                   └── analyze_system    (all form tag sets)

    Reverse mapping policy: when several legacy terms share a canonical
    term, the first registered one wins (``terza-persona`` → ``lui``).

Examples:
    >>> converter = TerminologyConverter()
    >>> converter.to_canonical("io")
    'prima-persona'
    >>> converter.convert_tag_set(["io", "singolare", "presente"]).tags
    ('prima-persona', 'singolare', 'presente')

Tags:
    terminology, conversion, mapping, consistency, lexspine

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from lexspine.core.enums import PriorityLevel, SafetyLevel, TermCategory
from lexspine.core.errors import ConfigError
from lexspine.core.logging import StructuredLogger, get_logger
from lexspine.core.statements import Where, array_replace
from lexspine.terminology.mappings import TERMINOLOGY_MAPPINGS, TERMINOLOGY_PATTERNS, TermMapping

ANALYZED_TABLES: tuple[str, ...] = ("word_forms",)


@dataclass(frozen=True)
class ConversionOptions:
    """Options for :meth:`TerminologyConverter.convert_tag_set`.

    ``preserve_legacy`` selects transition mode (keep the legacy tag next to
    its canonical replacement) instead of full migration.
    """

    preserve_legacy: bool = False
    check_consistency: bool = True


@dataclass(frozen=True)
class ConsistencyWarning:
    code: str
    message: str
    terms: tuple[str, ...] = ()


@dataclass(frozen=True)
class ConversionResult:
    tags: tuple[str, ...]
    conversions: tuple[tuple[str, str], ...] = ()
    warnings: tuple[ConsistencyWarning, ...] = ()

    @property
    def changed(self) -> bool:
        return bool(self.conversions)


@dataclass
class TagTerminologyAnalysis:
    legacy_terms: list[str] = field(default_factory=list)
    canonical_terms: list[str] = field(default_factory=list)
    unknown_terms: list[str] = field(default_factory=list)
    conflicts: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class TermUsage:
    term: str
    category: TermCategory
    usage_count: int
    tables: tuple[str, ...] = ANALYZED_TABLES
    canonical: str | None = None


@dataclass(frozen=True)
class MixedUsage:
    """A legacy term and its canonical term both in use."""

    legacy: str
    canonical: str
    category: TermCategory
    legacy_count: int
    canonical_count: int
    priority: PriorityLevel

    @property
    def total_count(self) -> int:
        return self.legacy_count + self.canonical_count

    @property
    def description(self) -> str:
        return f"Both {self.legacy} and {self.canonical} are in use"


@dataclass(frozen=True)
class TerminologyMigration:
    from_term: str
    to_term: str
    category: TermCategory
    affected_records: int
    safety_level: SafetyLevel
    sql_preview: str


@dataclass
class TerminologyAnalysis:
    legacy_terms: list[TermUsage] = field(default_factory=list)
    canonical_terms: list[TermUsage] = field(default_factory=list)
    mixed_usage: list[MixedUsage] = field(default_factory=list)
    migrations: list[TerminologyMigration] = field(default_factory=list)

    @property
    def total_terms(self) -> int:
        return len(self.legacy_terms) + len(self.canonical_terms)

    def by_category(self) -> dict[TermCategory, dict[str, list[Any]]]:
        """Group legacy, canonical and mixed entries per category."""
        grouped: dict[TermCategory, dict[str, list[Any]]] = {
            category: {"legacy": [], "canonical": [], "mixed": []} for category in TermCategory
        }
        for usage in self.legacy_terms:
            grouped[usage.category]["legacy"].append(usage)
        for usage in self.canonical_terms:
            grouped[usage.category]["canonical"].append(usage)
        for mixed in self.mixed_usage:
            grouped[mixed.category]["mixed"].append(mixed)
        return grouped


def migration_priority(category: TermCategory, usage_count: int) -> PriorityLevel:
    """Priority of migrating a mixed-usage pair with ``usage_count`` total uses."""
    if category == TermCategory.PERSON and usage_count > 50:
        return PriorityLevel.HIGH
    if category == TermCategory.AUXILIARY and usage_count > 10:
        return PriorityLevel.HIGH
    if usage_count > 20:
        return PriorityLevel.MEDIUM
    return PriorityLevel.LOW


def migration_safety(category: TermCategory) -> SafetyLevel:
    if category in (TermCategory.PERSON, TermCategory.AUXILIARY):
        return SafetyLevel.SAFE
    return SafetyLevel.CAUTION


class TerminologyConverter:
    """Maps tags between the legacy and canonical vocabularies."""

    def __init__(
        self, mappings: Iterable[TermMapping] = TERMINOLOGY_MAPPINGS, *, logger: StructuredLogger | None = None
    ):
        self._log = logger or get_logger(__name__)
        self._mappings: tuple[TermMapping, ...] = tuple(mappings)
        self._forward: dict[str, TermMapping] = {}
        self._reverse: dict[str, str] = {}
        self._categories: dict[str, TermCategory] = {}

        for mapping in self._mappings:
            if mapping.legacy in self._forward:
                raise ConfigError(f"Legacy term registered twice: {mapping.legacy}")
            self._forward[mapping.legacy] = mapping
            # first registered legacy term is the reverse default
            self._reverse.setdefault(mapping.canonical, mapping.legacy)
            self._categories[mapping.legacy] = mapping.category
            self._categories[mapping.canonical] = mapping.category

        overlap = set(self._forward) & set(self._reverse)
        if overlap:
            raise ConfigError(f"Terms are both legacy and canonical: {sorted(overlap)}")

    @property
    def mappings(self) -> tuple[TermMapping, ...]:
        return self._mappings

    # ── Single terms ─────────────────────────────────────────────

    def to_canonical(self, term: str) -> str | None:
        mapping = self._forward.get(term)
        return mapping.canonical if mapping else None

    def from_canonical(self, term: str) -> str | None:
        return self._reverse.get(term)

    def is_legacy(self, term: str) -> bool:
        return term in self._forward

    def is_canonical(self, term: str) -> bool:
        return term in self._reverse

    def category(self, term: str) -> TermCategory | None:
        return self._categories.get(term)

    def legacy_equivalents(self, canonical: str) -> list[str]:
        """All legacy terms mapping to ``canonical``, in registration order."""
        return [m.legacy for m in self._mappings if m.canonical == canonical]

    def canonical_terms(self, category: TermCategory | None = None) -> list[str]:
        terms: list[str] = []
        for mapping in self._mappings:
            if category is not None and mapping.category != category:
                continue
            if mapping.canonical not in terms:
                terms.append(mapping.canonical)
        return terms

    # ── Tag sets ─────────────────────────────────────────────────

    def convert_tag_set(self, tags: Iterable[str], options: ConversionOptions | None = None) -> ConversionResult:
        """Convert legacy tags to canonical ones.

        Unknown tags pass through unchanged; the output keeps first-seen
        order without duplicates.
        """
        options = options or ConversionOptions()
        converted: list[str] = []
        conversions: list[tuple[str, str]] = []

        def add(tag: str) -> None:
            if tag not in converted:
                converted.append(tag)

        for tag in tags:
            canonical = self.to_canonical(tag)
            if canonical is None:
                add(tag)
                continue
            conversions.append((tag, canonical))
            if options.preserve_legacy:
                add(tag)
            add(canonical)

        warnings: list[ConsistencyWarning] = []
        if options.check_consistency:
            warnings = self.check_consistency(converted)
            for warning in warnings:
                self._log.debug("terminology.consistency_warning", code=warning.code, terms=list(warning.terms))

        return ConversionResult(tuple(converted), tuple(conversions), tuple(warnings))

    def to_legacy_tags(self, tags: Iterable[str]) -> tuple[str, ...]:
        """Replace canonical tags with their default legacy term."""
        result: list[str] = []
        for tag in tags:
            legacy = self.from_canonical(tag) or tag
            if legacy not in result:
                result.append(legacy)
        return tuple(result)

    def check_consistency(self, tags: Iterable[str]) -> list[ConsistencyWarning]:
        """Flag same-category duplicates and person/number mismatches."""
        by_category: dict[TermCategory, list[str]] = {}
        for tag in dict.fromkeys(tags):
            category = self.category(tag)
            if category is not None:
                by_category.setdefault(category, []).append(tag)

        warnings = [
            ConsistencyWarning(
                code=f"multiple-{category.value}-terms",
                message=f"Multiple {category.value} terms found: {', '.join(terms)}",
                terms=tuple(terms),
            )
            for category, terms in by_category.items()
            if len(terms) > 1
        ]

        person = by_category.get(TermCategory.PERSON, [])
        number = by_category.get(TermCategory.NUMBER, [])
        if person and not number:
            warnings.append(
                ConsistencyWarning("person-without-number", "Person specified without number", tuple(person))
            )
        if number and not person:
            warnings.append(
                ConsistencyWarning("number-without-person", "Number specified without person", tuple(number))
            )
        return warnings

    def analyze_tags(self, tags: Iterable[str]) -> TagTerminologyAnalysis:
        tags = list(tags)
        analysis = TagTerminologyAnalysis()
        for tag in tags:
            if self.is_legacy(tag):
                analysis.legacy_terms.append(tag)
                canonical = self.to_canonical(tag)
                if canonical in tags:
                    analysis.conflicts.append(f"Both {tag} and {canonical} present")
                else:
                    analysis.recommendations.append(f"Convert {tag} → {canonical}")
            elif self.is_canonical(tag):
                analysis.canonical_terms.append(tag)
            elif any(pattern.match(tag) for pattern in TERMINOLOGY_PATTERNS):
                analysis.unknown_terms.append(tag)
        return analysis

    # ── System-wide ──────────────────────────────────────────────

    def analyze_system(
        self,
        tag_sets: Iterable[Iterable[str]],
        *,
        frequencies: Mapping[str, int] | None = None,
        mixed_usage_threshold: int = 0,
    ) -> TerminologyAnalysis:
        """Summarize terminology usage across all tag sets.

        ``frequencies`` overrides the counts derived from ``tag_sets``. A pair
        is mixed usage when both its legacy and canonical counts exceed
        ``mixed_usage_threshold``.
        """
        counts: Mapping[str, int] = frequencies if frequencies is not None else Counter(
            tag for tags in tag_sets for tag in tags
        )
        analysis = TerminologyAnalysis()
        seen_canonical: set[str] = set()

        for mapping in self._mappings:
            legacy_count = counts.get(mapping.legacy, 0)
            canonical_count = counts.get(mapping.canonical, 0)

            if legacy_count > 0:
                analysis.legacy_terms.append(
                    TermUsage(mapping.legacy, mapping.category, legacy_count, canonical=mapping.canonical)
                )
            if canonical_count > 0 and mapping.canonical not in seen_canonical:
                seen_canonical.add(mapping.canonical)
                analysis.canonical_terms.append(TermUsage(mapping.canonical, mapping.category, canonical_count))

            if legacy_count > mixed_usage_threshold and canonical_count > mixed_usage_threshold:
                total = legacy_count + canonical_count
                analysis.mixed_usage.append(
                    MixedUsage(
                        legacy=mapping.legacy,
                        canonical=mapping.canonical,
                        category=mapping.category,
                        legacy_count=legacy_count,
                        canonical_count=canonical_count,
                        priority=migration_priority(mapping.category, total),
                    )
                )

        for mixed in analysis.mixed_usage:
            analysis.migrations.append(
                TerminologyMigration(
                    from_term=mixed.legacy,
                    to_term=mixed.canonical,
                    category=mixed.category,
                    affected_records=mixed.total_count,
                    safety_level=migration_safety(mixed.category),
                    sql_preview=array_replace(
                        "word_forms",
                        "tags",
                        mixed.legacy,
                        mixed.canonical,
                        Where("word_forms").contains("tags", mixed.legacy),
                    ),
                )
            )

        self._log.info(
            "terminology.analysis.complete",
            legacy_terms=len(analysis.legacy_terms),
            canonical_terms=len(analysis.canonical_terms),
            mixed_usage=len(analysis.mixed_usage),
        )
        return analysis


__all__ = [
    "ConversionOptions",
    "ConsistencyWarning",
    "ConversionResult",
    "TagTerminologyAnalysis",
    "TermUsage",
    "MixedUsage",
    "TerminologyMigration",
    "TerminologyAnalysis",
    "TerminologyConverter",
    "migration_priority",
    "migration_safety",
]
