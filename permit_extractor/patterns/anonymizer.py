"""Anonymization of pattern text before it is shared across customers.

Rules are applied in order; each replaces its matches with a fixed token.
A rule without a placeholder only detects (it never rewrites text), and a
rule flagged ``identifies_company`` makes ``detect_company_terms`` report
the text as company-specific.

The default set targets UK permits. Callers with other jurisdictions pass
their own list to ``Anonymizer``.
"""

import re
from dataclasses import dataclass, field


@dataclass(frozen=True)
class AnonymizationRule:
    """One replacement rule."""

    name: str
    pattern: str
    placeholder: str | None = None
    identifies_company: bool = False
    flags: int = 0
    _regex: re.Pattern = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "_regex", re.compile(self.pattern, self.flags))

    @property
    def regex(self) -> re.Pattern:
        return self._regex


UK_DEFAULT_RULES: tuple[AnonymizationRule, ...] = (
    AnonymizationRule(
        "company_name",
        r"\b(?:[A-Z][a-z]+\s){1,3}(?:Ltd|Limited|plc|PLC|Inc|Corporation|Corp)\b",
        "[COMPANY]",
        identifies_company=True,
    ),
    AnonymizationRule(
        "water_company",
        r"\b(?:Thames|Severn|Anglian|United|Yorkshire|Southern|Northumbrian|Wessex|South West)\s+Water\b",
        "[COMPANY]",
        identifies_company=True,
        flags=re.IGNORECASE,
    ),
    # Detection only: too broad to rewrite ("Sewage Treatment", "Emergency Services")
    AnonymizationRule(
        "company_suffix",
        r"\b(?:Ltd|Limited|plc|PLC|Inc|Corporation|Corp)\b",
        identifies_company=True,
    ),
    AnonymizationRule(
        "utility_name",
        r"\b[A-Z][a-z]+\s+(?:Water|Utilities|Treatment|Services)\b",
        identifies_company=True,
    ),
    AnonymizationRule(
        "site_name",
        r"\b(?:[A-Z][a-z]+\s){1,2}(?:Site|Plant|Facility|Works|Treatment Works)\b",
        "[SITE]",
    ),
    AnonymizationRule("date_dmy", r"\b\d{1,2}[/\-]\d{1,2}[/\-]\d{2,4}\b", "[DATE]"),
    AnonymizationRule("date_iso", r"\b\d{4}[/\-]\d{1,2}[/\-]\d{1,2}\b", "[DATE]"),
    AnonymizationRule(
        "street_address",
        r"\b\d+\s+[A-Z][a-z]+(?:\s+[A-Z][a-z]+)*\s+(?:Street|St|Road|Rd|Avenue|Ave|Drive|Dr|Lane|Ln)\b",
        "[ADDRESS]",
        flags=re.IGNORECASE,
    ),
    AnonymizationRule("postcode", r"\b[A-Z]{1,2}\d{1,2}[A-Z]?\s*\d[A-Z]{2}\b", "[POSTCODE]"),
    AnonymizationRule("email", r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b", "[EMAIL]"),
    AnonymizationRule("phone", r"(?<!\w)(?:\+44|0)[\s-]?\d{3,4}[\s-]?\d{3,4}[\s-]?\d{3,4}\b", "[PHONE]"),
    AnonymizationRule(
        "permit_number",
        r"\b[A-Z]{2,4}[/-]?\d{4,8}[/-]?[A-Z\d]{0,4}\b",
        "[PERMIT_NUMBER]",
    ),
    AnonymizationRule(
        "person_name",
        r"\b(?:Mr|Mrs|Ms|Dr|Professor|Prof)\s+[A-Z][a-z]+\s+[A-Z][a-z]+\b",
        "[PERSON_NAME]",
    ),
    AnonymizationRule("amount", r"[£$€]\s*\d+(?:,\d{3})*(?:\.\d{2})?", "[AMOUNT]"),
)


class Anonymizer:
    """Apply an ordered rule set to free text or regex source."""

    def __init__(self, rules: list[AnonymizationRule] | tuple[AnonymizationRule, ...] = UK_DEFAULT_RULES):
        self.rules = tuple(rules)

    def anonymize(self, text: str | None, as_regex: bool = False) -> str | None:
        """Replace identifying spans with placeholder tokens.

        With ``as_regex`` the text is regex source and the tokens are
        inserted escaped, so the result still compiles.
        """
        if not text:
            return text
        for rule in self.rules:
            if rule.placeholder is None:
                continue
            token = re.escape(rule.placeholder) if as_regex else rule.placeholder
            text = rule.regex.sub(lambda _m, t=token: t, text)
        return text

    def detect_company_terms(self, *texts: str | None) -> list[str]:
        """Names of the company-identifying rules that fire on any of the texts."""
        hits = []
        for rule in self.rules:
            if not rule.identifies_company:
                continue
            if any(t and rule.regex.search(t) for t in texts):
                hits.append(rule.name)
        return hits
