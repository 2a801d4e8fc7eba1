"""Environmental Permit Obligation Extractor.

Turns the text of a regulatory permit into structured compliance
obligations. A library of rule patterns is tried first (no model cost); when
nothing matches, five model passes run (four in parallel, then a
verification pass) and their output is merged, deduplicated and grounded
against the document.

Architecture:
    core/             - config, errors, logging, credentials, invocation layer,
                        recovery parser, sinks, grounding
    patterns/         - pattern library, matcher, discovery, anonymization, promotion
    passes/           - the five extraction passes and the Multi-Pass Extractor
    prompts/          - system prompts, one module per pass
    pydantic_models/  - obligations, results and pattern models

Usage:
    from permit_extractor import CredentialPool, ExtractionOrchestrator, PatternLibrary

    orchestrator = ExtractionOrchestrator(CredentialPool.from_env(), PatternLibrary.load_seed())
    result = await orchestrator.extract(permit_text)

CLI:
    permit-extract extract permits/site_permit.txt --regulator EA
"""

from permit_extractor.core import CredentialPool, InMemoryProgressSink, LoggingProgressSink
from permit_extractor.orchestrator import ExtractionOrchestrator
from permit_extractor.passes import MultiPassExtractor, PassContext
from permit_extractor.patterns import (
    Anonymizer,
    CandidateStore,
    PatternDiscovery,
    PatternLibrary,
    PatternMatcher,
    PromotionService,
)
from permit_extractor.pydantic_models import (
    # Obligations
    ConditionType,
    ExtractedObligation,
    ExtractionContext,
    ExtractionResult,
    Frequency,
    ObligationCategory,
    PassResult,
    VerificationResult,
    # Patterns
    PatternCandidate,
    PatternMatch,
    PromotionCriteria,
    PromotionEligibility,
    RulePattern,
    SharedPattern,
    # Discovery input
    ConfirmedExtraction,
    ConfirmedObligation,
)

__all__ = [
    # Main entry point
    "ExtractionOrchestrator",
    "CredentialPool",
    "InMemoryProgressSink",
    "LoggingProgressSink",
    # Extraction
    "MultiPassExtractor",
    "PassContext",
    # Pattern library
    "Anonymizer",
    "CandidateStore",
    "PatternDiscovery",
    "PatternLibrary",
    "PatternMatcher",
    "PromotionService",
    # Obligations
    "ConditionType",
    "ExtractedObligation",
    "ExtractionContext",
    "ExtractionResult",
    "Frequency",
    "ObligationCategory",
    "PassResult",
    "VerificationResult",
    # Patterns
    "PatternCandidate",
    "PatternMatch",
    "PromotionCriteria",
    "PromotionEligibility",
    "RulePattern",
    "SharedPattern",
    # Discovery input
    "ConfirmedExtraction",
    "ConfirmedObligation",
]
