"""Rule-pattern library: store, matcher, discovery, promotion and refinement."""

from permit_extractor.patterns.store import CandidateStore, PatternLibrary
from permit_extractor.patterns.matcher import PatternMatcher, compile_pattern, segment_document
from permit_extractor.patterns.anonymizer import UK_DEFAULT_RULES, AnonymizationRule, Anonymizer
from permit_extractor.patterns.discovery import PatternDiscovery
from permit_extractor.patterns.promotion import AutoPromotionReport, PromotionService
from permit_extractor.patterns.refinement import (
    RefinementReport,
    RefinementService,
    analyze_corrections,
    find_declining_patterns,
)

__all__ = [
    "AnonymizationRule",
    "Anonymizer",
    "AutoPromotionReport",
    "CandidateStore",
    "PatternDiscovery",
    "PatternLibrary",
    "PatternMatcher",
    "PromotionService",
    "RefinementReport",
    "RefinementService",
    "UK_DEFAULT_RULES",
    "analyze_corrections",
    "compile_pattern",
    "find_declining_patterns",
    "segment_document",
]
