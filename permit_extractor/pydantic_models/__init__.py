"""Pydantic models for the extraction pipeline.

Modules:
- patterns: RulePattern library entries, PatternMatch, PatternCandidate,
  promotion criteria and SharedPattern
- obligations: ExtractedObligation, PassResult, VerificationResult,
  ExtractionContext, ExtractionResult, confirmed-extraction input for discovery
"""

from permit_extractor.pydantic_models.patterns import (
    Applicability,
    CandidateStatus,
    ExtractionTemplate,
    MatchingRules,
    MatchType,
    PatternCandidate,
    PatternMatch,
    PatternPerformance,
    PromotionCriteria,
    PromotionEligibility,
    RulePattern,
    SharedPattern,
)
from permit_extractor.pydantic_models.obligations import (
    ConditionType,
    ConfirmedExtraction,
    ConfirmedObligation,
    ErrorDetail,
    ExtractedObligation,
    ExtractionContext,
    ExtractionResult,
    Frequency,
    Grounding,
    HallucinationRisk,
    ObligationCategory,
    PassResult,
    TokenUsage,
    VerificationResult,
)

__all__ = [
    # Patterns
    "Applicability",
    "CandidateStatus",
    "ExtractionTemplate",
    "MatchingRules",
    "MatchType",
    "PatternCandidate",
    "PatternMatch",
    "PatternPerformance",
    "PromotionCriteria",
    "PromotionEligibility",
    "RulePattern",
    "SharedPattern",
    # Obligations
    "ConditionType",
    "ConfirmedExtraction",
    "ConfirmedObligation",
    "ErrorDetail",
    "ExtractedObligation",
    "ExtractionContext",
    "ExtractionResult",
    "Frequency",
    "Grounding",
    "HallucinationRisk",
    "ObligationCategory",
    "PassResult",
    "TokenUsage",
    "VerificationResult",
]
