"""Locating the parts of a permit that the specialised passes read.

Each locator is an ordered list of named strategies. A strategy is a regex
plus a minimum length (and optionally a required marker); the locator either
collects the matches of every strategy in order (tables, ELVs) or stops at
the first strategy that yields a usable match (improvements).

Regexes are case-insensitive and non-multiline: ``\\Z`` is the end of the
document, so a section that runs to the end is still captured.

Precedence:

    tables        Table S1.2, S1.3, S1.4, S3.1, S3.2, S3.3, S3.4, then whole
                  Schedules. Exact duplicates dropped, at most 10 sections.
    improvements  Table S1.3, then "Improvement Programme", then the first
                  IC<n> block. Fallback: every "IC<n>"/"Improvement Condition"
                  mention with 500 chars of context, joined.
    elvs          "Schedule 3 - Emissions", then blocks with mg/m3 units, then
                  Table S3.1 with a header row, then "Emission Limit Values"
                  and "Point Source Emissions to air". Overlapping sections
                  dropped, at most 5.
"""

import logging
import re
from dataclasses import dataclass, field

from permit_extractor.core.config import PassConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SectionStrategy:
    """One named way of finding a section."""

    name: str
    pattern: str
    min_chars: int = 100
    must_contain: str | None = None
    _regex: re.Pattern = field(init=False, repr=False, compare=False)
    _marker: re.Pattern | None = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "_regex", re.compile(self.pattern, re.IGNORECASE))
        marker = re.compile(self.must_contain) if self.must_contain else None
        object.__setattr__(self, "_marker", marker)

    def find_all(self, text: str) -> list[str]:
        """Every match, stripped, that is long enough and carries the marker."""
        found = []
        for match in self._regex.finditer(text):
            section = match.group(0).strip()
            if len(section) <= self.min_chars:
                continue
            if self._marker is not None and not self._marker.search(section):
                continue
            found.append(section)
        return found

    def find_first(self, text: str) -> str | None:
        """The first match, if it is long enough."""
        match = self._regex.search(text)
        if match is None:
            return None
        section = match.group(0).strip()
        return section if len(section) > self.min_chars else None


def _table(ref: str) -> SectionStrategy:
    return SectionStrategy(
        name=f"table_{ref.lower().replace('.', '_')}",
        pattern=rf"Table\s+{re.escape(ref)}[\s\S]{{0,10000}}?(?=Table\s+S|Schedule\s+\d|\d+\.\d+\s+[A-Z]|\n\n\n|\Z)",
        min_chars=PassConfig.TABLES_MIN_SECTION_CHARS,
    )


TABLE_STRATEGIES: tuple[SectionStrategy, ...] = (
    *(_table(ref) for ref in ("S1.2", "S1.3", "S1.4", "S3.1", "S3.2", "S3.3", "S3.4")),
    SectionStrategy(
        name="schedule",
        pattern=r"Schedule\s+\d+[\s\S]{0,15000}?(?=Schedule\s+\d|Annex|Appendix|\n\n\n\n|\Z)",
        min_chars=PassConfig.TABLES_MIN_SECTION_CHARS,
    ),
)

IMPROVEMENT_STRATEGIES: tuple[SectionStrategy, ...] = (
    SectionStrategy(
        name="table_s1_3",
        pattern=r"Table\s+S1\.3[\s\S]{0,15000}?(?=Table\s+S1\.[4-9]|Table\s+S3|Schedule|\d+\.\d+\s+[A-Z]|\Z)",
        min_chars=PassConfig.IMPROVEMENTS_MIN_SECTION_CHARS,
    ),
    SectionStrategy(
        name="improvement_programme",
        pattern=r"Improvement\s+Programme[\s\S]{0,15000}?(?=Table\s+S|Schedule\s+\d|\d+\.\d+\s+[A-Z]|\Z)",
        min_chars=PassConfig.IMPROVEMENTS_MIN_SECTION_CHARS,
    ),
    SectionStrategy(
        name="ic_block",
        pattern=r"IC\d+[\s\S]{0,10000}?(?=Schedule|Annex|\d+\.\d+\s+[A-Z]|\Z)",
        min_chars=PassConfig.IMPROVEMENTS_MIN_SECTION_CHARS,
    ),
)

IC_MENTION = re.compile(r"(?:IC\d+|Improvement\s+Condition)[\s\S]{0,500}", re.IGNORECASE)

ELV_STRATEGIES: tuple[SectionStrategy, ...] = (
    SectionStrategy(
        name="schedule_3_emissions",
        pattern=r"Schedule\s+3\s*[–—-]\s*Emissions[\s\S]{0,20000}?"
                r"(?=Schedule\s+4|Schedule\s+5|Schedule\s+6|Schedule\s+7|END OF PERMIT|\Z)",
        min_chars=500,
    ),
    SectionStrategy(
        name="concentration_units",
        pattern=r"(?:Parameter|Emission\s+point)[\s\S]{0,15000}?mg/(?:N)?m[\s\S]{0,10000}?"
                r"(?=Schedule\s+\d|Table\s+S4|END OF PERMIT|\n\n\n\n|\Z)",
        min_chars=100,
        must_contain=r"mg/(?:N)?m",
    ),
    SectionStrategy(
        name="table_s3_1_with_header",
        pattern=r"Table\s+S3\.1[\s\S]*?(?:Parameter|Substance|Emission\s+point|Limit|Unit)[\s\S]{0,15000}?"
                r"(?=Table\s+S3\.[2-9]|Table\s+S4|Schedule\s+4|\n\n\n\n|\Z)",
        min_chars=500,
    ),
    SectionStrategy(
        name="emission_limit_values",
        pattern=r"Emission\s+Limit\s+Values?[\s\S]{0,10000}?(?=Table\s+S|Schedule|\d+\.\d+\s+[A-Z]|\Z)",
        min_chars=PassConfig.ELV_MIN_SECTION_CHARS,
    ),
    SectionStrategy(
        name="point_source_to_air",
        pattern=r"Point\s+Source\s+Emissions?\s+to\s+air[\s\S]{0,15000}?(?=Point\s+Source|Schedule|Table\s+S[4-9]|\Z)",
        min_chars=PassConfig.ELV_MIN_SECTION_CHARS,
    ),
)


def _overlaps(a: str, b: str) -> bool:
    """True if the longer string contains the first half of the shorter one."""
    shorter, longer = (a, b) if len(a) < len(b) else (b, a)
    return shorter[: len(shorter) // 2] in longer


def find_table_sections(text: str, strategies=TABLE_STRATEGIES,
                        max_sections: int = PassConfig.TABLES_MAX_SECTIONS) -> list[str]:
    sections: list[str] = []
    for strategy in strategies:
        sections.extend(strategy.find_all(text))
    unique = list(dict.fromkeys(sections))
    return unique[:max_sections]


def find_improvement_section(text: str, strategies=IMPROVEMENT_STRATEGIES) -> str | None:
    for strategy in strategies:
        section = strategy.find_first(text)
        if section is not None:
            logger.debug("Improvement section via %s (%d chars)", strategy.name, len(section))
            return section

    mentions = [m.group(0) for m in IC_MENTION.finditer(text)]
    if mentions:
        logger.debug("Improvement section via IC mentions (%d)", len(mentions))
        return "\n\n".join(mentions)
    return None


def find_elv_sections(text: str, strategies=ELV_STRATEGIES,
                      max_sections: int = PassConfig.ELV_MAX_SECTIONS) -> list[str]:
    candidates: list[str] = []
    for strategy in strategies:
        candidates.extend(strategy.find_all(text))

    unique: list[str] = []
    for section in candidates:
        if len(section) <= PassConfig.ELV_MIN_SECTION_CHARS:
            continue
        if any(_overlaps(section, kept) for kept in unique):
            continue
        unique.append(section)

    logger.debug("ELV section extraction: %d unique sections", len(unique))
    return unique[:max_sections]
