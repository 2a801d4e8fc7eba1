"""Centralized configuration for the obligation extraction pipeline.

All magic numbers, thresholds, and configuration constants are documented here.
Each constant includes:
- What it controls
- Where the value comes from
- What changing it affects
"""

import os
from typing import Final


# =============================================================================
# Model Configuration
# =============================================================================
#
# The pipeline talks to the OpenAI API through litellm. Credentials are held
# by core/credentials.py (primary + numbered fallbacks), so the model names
# below carry no provider prefix.
#
# Override the default model with PERMIT_EXTRACTOR_MODEL.
#
# =============================================================================

DEFAULT_MODEL: Final[str] = os.environ.get("PERMIT_EXTRACTOR_MODEL", "gpt-4o-mini")
"""Model used by every extraction pass.

All five passes run on the small model. Pass 1 used to run on gpt-4o but the
larger model roughly doubled latency without a measurable coverage gain on
standard permits.
"""


class LLMConfig:
    """Default parameters for completion requests."""

    TEMPERATURE: Final[float] = 0.2
    """Default sampling temperature when a pass does not set its own."""

    MAX_TOKENS: Final[int] = 4000
    """Default max output tokens when a pass does not set its own."""

    RESPONSE_FORMAT: Final[dict[str, str]] = {"type": "json_object"}
    """Response format enforcing JSON output."""

    CONTEXT_WINDOW_TOKENS: Final[int] = 128_000
    """Prompt plus max output tokens above this may be rejected by the service."""

    TRUNCATED_FINISH_REASON: Final[str] = "length"
    """Finish reason reported when the model ran out of output tokens.

    Not an error: the recovery parser salvages the complete objects.
    """


# Credentials

class CredentialConfig:
    """Environment variables and validation cache for API credentials."""

    PRIMARY_ENV_VAR: Final[str] = "OPENAI_API_KEY"
    """Primary API key. Missing primary key is a fatal startup condition."""

    FALLBACK_ENV_PREFIX: Final[str] = "OPENAI_API_KEY_FALLBACK_"
    """Fallback keys are read as OPENAI_API_KEY_FALLBACK_1, _2, ... until the
    first missing number."""

    VALIDATION_TTL_SECONDS: Final[int] = 24 * 60 * 60
    """How long a validation result is trusted before probing again."""

    PROBE_MODEL: Final[str] = "gpt-4o-mini"
    """Model used by the out-of-band key validation probe."""


# Retry Configuration

class RetryConfig:
    """Configuration for completion retry behavior.

    3 attempts in total (initial + 2 retries), waiting 2s then 4s. Rate limits
    get one extra attempt after a credential rotation, outside this budget.
    """

    TOTAL_ATTEMPTS: Final[int] = 3
    """Initial attempt plus retries."""

    DELAYS_SECONDS: Final[tuple[float, ...]] = (2.0, 4.0)
    """Wait before retry n (1-indexed). The last delay is reused if the
    schedule is shorter than the attempt budget."""


class TimeoutConfig:
    """Per-attempt timeouts chosen from document size.

    - small:  <= 20 pages and <= 5MB
    - large:  >= 50 pages and >= 10MB
    - medium: everything else, and documents of unknown size
    """

    SMALL_SECONDS: Final[float] = 30.0
    MEDIUM_SECONDS: Final[float] = 120.0
    LARGE_SECONDS: Final[float] = 300.0

    SMALL_MAX_PAGES: Final[int] = 20
    SMALL_MAX_BYTES: Final[int] = 5 * 1024 * 1024

    LARGE_MIN_PAGES: Final[int] = 50
    LARGE_MIN_BYTES: Final[int] = 10 * 1024 * 1024


# Pattern Matching

class MatchThresholds:
    """Scoring constants for the rule-pattern matcher.

    Primary regex scores land in [0.85, 1.0], variant regex scores in
    [0.75, 0.90]. The semantic score is only computed for regex scores in the
    uncertain band [0.70, 0.90).

    Used by: patterns/matcher.py
    """

    PRIMARY_BASE: Final[float] = 0.85
    PRIMARY_COVERAGE_WEIGHT: Final[float] = 0.15
    NEGATIVE_PENALTY: Final[float] = 0.15
    """Subtracted from the primary score per triggered negative pattern."""

    VARIANT_BASE: Final[float] = 0.75
    VARIANT_COVERAGE_WEIGHT: Final[float] = 0.15

    SEMANTIC_BAND_LOW: Final[float] = 0.70
    SEMANTIC_BAND_HIGH: Final[float] = 0.90

    SEMANTIC_BASE: Final[float] = 0.5
    SEMANTIC_OVERLAP_WEIGHT: Final[float] = 0.35

    REGEX_WEIGHT: Final[float] = 0.6
    SEMANTIC_WEIGHT: Final[float] = 0.4

    MIN_RETURN_SCORE: Final[float] = 0.90
    """Hard boundary between free (pattern) and paid (model) extraction."""

    CONFIDENCE_BOOST: Final[float] = 0.15
    """Added to the base pattern confidence when building obligations."""

    BASE_PATTERN_CONFIDENCE: Final[float] = 0.85
    """Base confidence of an obligation produced by a pattern match."""


class SegmentConfig:
    """Document segmentation for the matcher."""

    MAX_SEGMENT_CHARS: Final[int] = 1000
    """Sentence-bounded chunks are grouped up to this many characters."""

    SENTENCE_SPLIT: Final[str] = r"[.!?]\s+"


# Extraction Passes

class PassConfig:
    """Per-pass input limits and model parameters.

    Used by: passes/*.py
    """

    CONDITIONS_MAX_CHARS: Final[int] = 50_000
    CONDITIONS_MAX_TOKENS: Final[int] = 16_000
    CONDITIONS_TEMPERATURE: Final[float] = 0.2
    CONDITIONS_CONFIDENCE: Final[float] = 0.8

    TABLES_MAX_SECTIONS: Final[int] = 10
    TABLES_MIN_SECTION_CHARS: Final[int] = 100
    TABLES_MAX_TOKENS: Final[int] = 12_000
    TABLES_TEMPERATURE: Final[float] = 0.1
    TABLES_CONFIDENCE: Final[float] = 0.85

    IMPROVEMENTS_MIN_SECTION_CHARS: Final[int] = 100
    IMPROVEMENTS_MAX_TOKENS: Final[int] = 4_000
    IMPROVEMENTS_TEMPERATURE: Final[float] = 0.2
    IMPROVEMENTS_CONFIDENCE: Final[float] = 0.9

    ELV_MAX_SECTIONS: Final[int] = 5
    ELV_MIN_SECTION_CHARS: Final[int] = 200
    ELV_MAX_TOKENS: Final[int] = 8_000
    ELV_TEMPERATURE: Final[float] = 0.1
    ELV_CONFIDENCE: Final[float] = 0.85
    ELV_ITEM_CONFIDENCE: Final[float] = 0.9
    """Default confidence of an ELV row; the pass as a whole reports 0.85."""

    VERIFICATION_MAX_CHARS: Final[int] = 30_000
    VERIFICATION_MAX_TOKENS: Final[int] = 4_000
    VERIFICATION_TEMPERATURE: Final[float] = 0.3
    VERIFICATION_MAX_REFS: Final[int] = 50
    """Only the first 50 extracted references are listed in the prompt."""

    DEFAULT_COVERAGE: Final[float] = 0.85
    """Coverage estimate when verification fails or omits it."""

    EMPTY_SECTION_CONFIDENCE: Final[float] = 1.0
    """Confidence of a pass that found nothing to extract (no model call)."""

    DEFAULT_OBLIGATION_CONFIDENCE: Final[float] = 0.7
    """Confidence of a model item that carries no usable confidence_score."""


class ConcurrencyConfig:
    """Outbound call limits."""

    MAX_CONCURRENT_PASSES: Final[int] = 4
    """Passes 1-4 share a semaphore of this size per document."""


class DedupConfig:
    """Cross-pass deduplication."""

    DESCRIPTION_PREFIX_CHARS: Final[int] = 100


class ProgressConfig:
    """Progress percentages published to the progress sink."""

    STARTED: Final[int] = 10
    PARALLEL_STARTED: Final[int] = 15
    PER_PASS_STEP: Final[int] = 15
    VERIFYING: Final[int] = 80
    FINALIZING: Final[int] = 95

    DRAIN_TIMEOUT_SECONDS: Final[float] = 5.0
    """Longest a caller waits on scheduled async sink calls; the rest are cancelled."""


# Pattern Discovery & Promotion

class DiscoveryConfig:
    """Mining confirmed extractions into pattern candidates.

    Used by: patterns/discovery.py
    """

    MIN_CLUSTER_SIZE: Final[int] = 3
    LENGTH_TOLERANCE: Final[float] = 0.30
    """Obligations cluster when their text lengths differ by less than 30%."""

    MIN_MATCH_RATE: Final[float] = 0.90
    MIN_PHRASE_WORDS: Final[int] = 2

    CANDIDATE_PRIORITY: Final[int] = 500
    CANDIDATE_VERSION: Final[str] = "1.0.0"
    DEFAULT_MODULE: Final[str] = "M1"
    DEFAULT_REGULATOR: Final[str] = "GENERIC"


class PromotionDefaults:
    """Default promotion criteria for shared patterns."""

    MIN_USAGE_COUNT: Final[int] = 10
    MIN_SUCCESS_RATE: Final[float] = 0.92
    MIN_MATCH_RATE: Final[float] = 0.90
    EXCLUDE_COMPANY_SPECIFIC_TERMS: Final[bool] = True

    CANDIDATE_SCORE_FLOOR: Final[float] = 0.5
    """Candidates below this closeness score are not listed for review."""


class AutoApprovalConfig:
    """Thresholds for the batch auto-approval job (stricter than promotion)."""

    MIN_MATCH_RATE: Final[float] = 0.95
    MIN_SAMPLES: Final[int] = 10
    MAX_CORRECTION_RATE: Final[float] = 0.02
    MAX_FALSE_POSITIVE_RATE: Final[float] = 0.01
    DEFAULT_BATCH_SIZE: Final[int] = 50


class RefinementConfig:
    """Correction analysis, health checks and versioning of library patterns.

    Used by: patterns/refinement.py
    """

    HIGH_CORRECTION_RATE: Final[float] = 0.15
    """Above this share of corrected uses a pattern is deprecated or reworked."""

    MODERATE_CORRECTION_RATE: Final[float] = 0.05

    MIN_USAGE_COUNT: Final[int] = 10
    """Fewer uses than this say nothing about a pattern's health."""

    WARNING_SUCCESS_RATE: Final[float] = 0.90
    CRITICAL_SUCCESS_RATE: Final[float] = 0.85
    MAX_OVERRIDE_RATE: Final[float] = 0.10

    MIN_IMPROVEMENT_RATE: Final[float] = 0.05
    """A draft replaces the active version only if back-testing improves on it by this much."""


class GroundingConfig:
    """Verification of model-quoted source text against the document.

    Used by: core/grounding.py
    """

    FOUND_SCORE: Final[float] = 90.0
    """rapidfuzz partial_ratio at or above this counts as found verbatim."""

    PARTIAL_SCORE: Final[float] = 70.0
    """Between PARTIAL and FOUND the quote is paraphrased: medium risk."""
