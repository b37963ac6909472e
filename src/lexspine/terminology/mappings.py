"""Static legacy → canonical terminology table.

Registration order matters: when several legacy terms share one canonical
term (``lui``/``lei``/``loro`` → ``terza-persona``), the first one registered
is the default reverse mapping.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from lexspine.core.enums import TermCategory


@dataclass(frozen=True)
class TermMapping:
    """One legacy term and the canonical term that replaces it."""

    legacy: str
    canonical: str
    category: TermCategory
    description: str = ""
    examples: tuple[str, ...] = field(default_factory=tuple)


TERMINOLOGY_MAPPINGS: tuple[TermMapping, ...] = (
    # ── Person ───────────────────────────────────────────────────
    TermMapping("io", "prima-persona", TermCategory.PERSON, "First person singular", ("io parlo", "io dormo")),
    TermMapping("tu", "seconda-persona", TermCategory.PERSON, "Second person singular", ("tu parli", "tu dormi")),
    TermMapping("lui", "terza-persona", TermCategory.PERSON, "Third person singular masculine", ("lui parla",)),
    TermMapping("lei", "terza-persona", TermCategory.PERSON, "Third person singular feminine", ("lei parla",)),
    TermMapping("noi", "prima-persona", TermCategory.PERSON, "First person plural", ("noi parliamo",)),
    TermMapping("voi", "seconda-persona", TermCategory.PERSON, "Second person plural", ("voi parlate",)),
    TermMapping("loro", "terza-persona", TermCategory.PERSON, "Third person plural", ("loro parlano",)),
    # ── Number ───────────────────────────────────────────────────
    TermMapping("singular", "singolare", TermCategory.NUMBER, "Singular number"),
    TermMapping("plural", "plurale", TermCategory.NUMBER, "Plural number"),
    # ── Auxiliary ────────────────────────────────────────────────
    TermMapping("auxiliary-essere", "essere-auxiliary", TermCategory.AUXILIARY, "Essere auxiliary tag format", ("sono andato",)),
    TermMapping("auxiliary-avere", "avere-auxiliary", TermCategory.AUXILIARY, "Avere auxiliary tag format", ("ho parlato",)),
    TermMapping("auxiliary-stare", "stare-auxiliary", TermCategory.AUXILIARY, "Stare auxiliary tag format", ("sto parlando",)),
    # ── Mood (English grammatical terms) ─────────────────────────
    TermMapping("past-participle", "participio-passato", TermCategory.MOOD, "Past participle form", ("parlato",)),
    TermMapping("gerund", "gerundio", TermCategory.MOOD, "Gerund form", ("parlando",)),
    TermMapping("infinitive", "infinito", TermCategory.MOOD, "Infinitive form", ("parlare",)),
)

# Tags that look like grammatical terminology but are in neither vocabulary.
TERMINOLOGY_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^(first|second|third)-person$"),
    re.compile(r"^(masculine|feminine|neuter)$"),
    re.compile(r"^.*-auxiliary$"),
    re.compile(r"^auxiliary-.*$"),
    re.compile(r"^.*-participle$"),
    re.compile(r"^.*-gerund$"),
    re.compile(r"^.*-persona$"),
)

__all__ = ["TermMapping", "TERMINOLOGY_MAPPINGS", "TERMINOLOGY_PATTERNS"]
