"""Rule-pattern models: the pattern library, matches and promotion candidates.

A RulePattern maps matched text straight to an obligation template, so a
document that matches well never reaches the language model. Patterns are
either seeded by hand or promoted from PatternCandidates mined out of
confirmed model extractions.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from permit_extractor.core.config import MatchThresholds, PromotionDefaults


class MatchingRules(BaseModel):
    """How a pattern recognises text."""

    regex_primary: str
    regex_variants: list[str] = Field(default_factory=list)
    semantic_keywords: list[str] = Field(default_factory=list)
    negative_patterns: list[str] = Field(
        default_factory=list,
        description="Regexes that disqualify a segment (e.g. 'optional', 'may')",
    )
    min_text_length: int | None = None
    max_text_length: int | None = None


class ExtractionTemplate(BaseModel):
    """Obligation fields a matching pattern fills in."""

    category: str
    frequency: str | None = None
    deadline_relative: str | None = None
    is_subjective: bool = False
    subjective_phrases: list[str] = Field(default_factory=list)
    evidence_types: list[str] = Field(default_factory=list)
    condition_type: str = "STANDARD"


class Applicability(BaseModel):
    """Which documents a pattern may be applied to. Empty lists mean any."""

    module_types: list[str] = Field(default_factory=list)
    regulators: list[str] = Field(default_factory=list)
    document_types: list[str] = Field(default_factory=list)
    water_companies: list[str] = Field(default_factory=list)


class PatternPerformance(BaseModel):
    """Usage record. success_rate is always success_count / usage_count."""

    usage_count: int = Field(default=0, ge=0)
    success_count: int = Field(default=0, ge=0)
    success_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    false_positive_count: int = Field(default=0, ge=0)
    correction_count: int = Field(default=0, ge=0)
    last_used_at: datetime | None = None

    @model_validator(mode="after")
    def _check_counts(self) -> PatternPerformance:
        if self.success_count > self.usage_count:
            raise ValueError("success_count cannot exceed usage_count")
        return self

    def record(self, success: bool, at: datetime) -> PatternPerformance:
        """Return the record after one more use."""
        usage = self.usage_count + 1
        successes = self.success_count + (1 if success else 0)
        return self.model_copy(update={
            "usage_count": usage,
            "success_count": successes,
            "success_rate": successes / usage,
            "last_used_at": at,
        })


class RulePattern(BaseModel):
    """A reusable rule in the pattern library."""

    pattern_id: str
    pattern_version: str = "1.0.0"
    priority: int = Field(default=100, description="Lower is tried first")
    display_name: str
    description: str = ""
    matching: MatchingRules
    extraction_template: ExtractionTemplate
    applicability: Applicability = Field(default_factory=Applicability)
    performance: PatternPerformance = Field(default_factory=PatternPerformance)
    is_active: bool = True
    source_candidate_id: str | None = Field(
        default=None,
        description="Candidate this pattern was promoted from, if any",
    )


class MatchType(str, Enum):
    REGEX = "regex"
    COMBINED = "combined"

    def __str__(self) -> str:
        return self.value


class PatternMatch(BaseModel):
    """One (pattern, segment) pair that scored at or above the threshold."""

    model_config = ConfigDict(frozen=True)

    pattern_id: str
    pattern_version: str
    score: float = Field(ge=0.0, le=1.0)
    match_type: MatchType
    matched_text: str
    extracted_data: dict[str, Any] = Field(
        default_factory=dict,
        description="Extraction template instantiated with the matched text",
    )
    confidence_boost: float = MatchThresholds.CONFIDENCE_BOOST


class CandidateStatus(str, Enum):
    PENDING_REVIEW = "PENDING_REVIEW"
    APPROVED = "APPROVED"

    def __str__(self) -> str:
        return self.value


class PatternCandidate(BaseModel):
    """A not-yet-trusted pattern mined from confirmed extractions."""

    candidate_id: str
    suggested_pattern: RulePattern
    source_extraction_ids: list[str] = Field(default_factory=list)
    sample_count: int = Field(default=0, ge=0)
    match_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    status: CandidateStatus = CandidateStatus.PENDING_REVIEW
    created_pattern_id: str | None = None
    created_at: datetime | None = None
    reviewed_at: datetime | None = None

    @property
    def usage_count(self) -> int:
        return self.suggested_pattern.performance.usage_count

    @property
    def success_rate(self) -> float:
        return self.suggested_pattern.performance.success_rate

    @property
    def is_approved(self) -> bool:
        return self.status == CandidateStatus.APPROVED


class PromotionCriteria(BaseModel):
    """Thresholds a candidate must meet to become a shared pattern."""

    min_usage_count: int = PromotionDefaults.MIN_USAGE_COUNT
    min_success_rate: float = PromotionDefaults.MIN_SUCCESS_RATE
    min_match_rate: float = PromotionDefaults.MIN_MATCH_RATE
    exclude_company_specific_terms: bool = PromotionDefaults.EXCLUDE_COMPANY_SPECIFIC_TERMS


class PromotionEligibility(BaseModel):
    """Answer of an eligibility check. Rejections are data, not exceptions."""

    eligible: bool
    reason: str | None = None


class SharedPattern(BaseModel):
    """A promoted, anonymized pattern available to every customer."""

    pattern_id: str
    source_candidate_id: str
    regulator: str | None = None
    document_type: str | None = None
    pattern_template: RulePattern
    usage_count: int = 0
    success_rate: float = 0.0
    is_global: bool = True
