"""Tests for permit_extractor.core.config module.

Tests the centralized configuration:
- RetryConfig / TimeoutConfig: invocation budgets
- MatchThresholds: pattern scoring
- PassConfig: per-pass limits and sampling
- ProgressConfig: progress milestones
- PromotionDefaults / AutoApprovalConfig: promotion bars
"""

from permit_extractor.core.config import (
    AutoApprovalConfig,
    ConcurrencyConfig,
    DedupConfig,
    MatchThresholds,
    PassConfig,
    ProgressConfig,
    PromotionDefaults,
    RetryConfig,
    TimeoutConfig,
)


# =============================================================================
# RetryConfig / TimeoutConfig tests
# =============================================================================


class TestRetryConfig:
    """Tests for the invocation retry budget."""

    def test_one_delay_between_each_pair_of_attempts(self):
        assert len(RetryConfig.DELAYS_SECONDS) == RetryConfig.TOTAL_ATTEMPTS - 1

    def test_backoff_grows(self):
        assert list(RetryConfig.DELAYS_SECONDS) == sorted(RetryConfig.DELAYS_SECONDS)


class TestTimeoutConfig:
    """Tests for the document-size timeout classes."""

    def test_timeouts_ordered(self):
        assert TimeoutConfig.SMALL_SECONDS < TimeoutConfig.MEDIUM_SECONDS < TimeoutConfig.LARGE_SECONDS

    def test_small_and_large_bands_do_not_overlap(self):
        assert TimeoutConfig.SMALL_MAX_PAGES < TimeoutConfig.LARGE_MIN_PAGES
        assert TimeoutConfig.SMALL_MAX_BYTES < TimeoutConfig.LARGE_MIN_BYTES


# =============================================================================
# MatchThresholds tests
# =============================================================================


class TestMatchThresholds:
    """Tests for pattern scoring constants."""

    def test_full_primary_coverage_reaches_one(self):
        assert MatchThresholds.PRIMARY_BASE + MatchThresholds.PRIMARY_COVERAGE_WEIGHT == 1.0

    def test_variant_alone_cannot_qualify(self):
        best_variant = MatchThresholds.VARIANT_BASE + MatchThresholds.VARIANT_COVERAGE_WEIGHT
        assert best_variant < MatchThresholds.MIN_RETURN_SCORE

    def test_weights_sum_to_one(self):
        assert MatchThresholds.REGEX_WEIGHT + MatchThresholds.SEMANTIC_WEIGHT == 1.0

    def test_pattern_confidence_capped_at_one(self):
        assert MatchThresholds.BASE_PATTERN_CONFIDENCE + MatchThresholds.CONFIDENCE_BOOST <= 1.0


# =============================================================================
# PassConfig tests
# =============================================================================


class TestPassConfig:
    """Tests for per-pass configuration."""

    def test_conditions_window_larger_than_verification_window(self):
        assert PassConfig.CONDITIONS_MAX_CHARS > PassConfig.VERIFICATION_MAX_CHARS

    def test_temperatures_are_low(self):
        for temperature in (
            PassConfig.CONDITIONS_TEMPERATURE,
            PassConfig.TABLES_TEMPERATURE,
            PassConfig.IMPROVEMENTS_TEMPERATURE,
            PassConfig.ELV_TEMPERATURE,
            PassConfig.VERIFICATION_TEMPERATURE,
        ):
            assert 0.0 <= temperature <= 0.3

    def test_confidences_are_probabilities(self):
        for confidence in (
            PassConfig.CONDITIONS_CONFIDENCE,
            PassConfig.TABLES_CONFIDENCE,
            PassConfig.IMPROVEMENTS_CONFIDENCE,
            PassConfig.ELV_CONFIDENCE,
            PassConfig.ELV_ITEM_CONFIDENCE,
            PassConfig.DEFAULT_COVERAGE,
        ):
            assert 0.0 <= confidence <= 1.0

    def test_section_caps(self):
        assert PassConfig.TABLES_MAX_SECTIONS == 10
        assert PassConfig.ELV_MAX_SECTIONS == 5

    def test_dedup_prefix(self):
        assert DedupConfig.DESCRIPTION_PREFIX_CHARS == 100

    def test_concurrency_bound(self):
        assert ConcurrencyConfig.MAX_CONCURRENT_PASSES >= 1


# =============================================================================
# ProgressConfig tests
# =============================================================================


class TestProgressConfig:
    def test_milestones_increase(self):
        last_parallel = ProgressConfig.PARALLEL_STARTED + 4 * ProgressConfig.PER_PASS_STEP
        assert (ProgressConfig.STARTED < ProgressConfig.PARALLEL_STARTED
                < last_parallel <= ProgressConfig.VERIFYING < ProgressConfig.FINALIZING < 100)


# =============================================================================
# Promotion tests
# =============================================================================


class TestPromotionConfig:
    def test_auto_approval_is_stricter_than_promotion(self):
        assert AutoApprovalConfig.MIN_MATCH_RATE >= PromotionDefaults.MIN_MATCH_RATE
        assert AutoApprovalConfig.MIN_SAMPLES >= PromotionDefaults.MIN_USAGE_COUNT

    def test_promotion_defaults(self):
        assert PromotionDefaults.MIN_USAGE_COUNT == 10
        assert PromotionDefaults.MIN_SUCCESS_RATE == 0.92
        assert PromotionDefaults.MIN_MATCH_RATE == 0.90
