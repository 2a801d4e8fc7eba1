"""Tests for permit_extractor.patterns.promotion module.

Tests candidate promotion:
- Eligibility reasons, in check order
- Anonymized, zeroed shared patterns
- At-most-once promotion (including a lost compare-and-set)
- Batch auto-promotion
"""

from unittest.mock import patch

import pytest

from permit_extractor.core.errors import AlreadyPromotedError, PromotionRejectedError
from permit_extractor.patterns.promotion import PromotionService
from permit_extractor.patterns.store import CandidateStore, PatternLibrary
from permit_extractor.pydantic_models.patterns import (
    CandidateStatus,
    PatternCandidate,
    PatternPerformance,
    PromotionCriteria,
)


@pytest.fixture
def make_candidate(pattern_factory):
    def _make(candidate_id: str = "cand-1", pattern_id: str = "RECORDS_001", usage: int = 20,
              successes: int = 19, success_rate: float = 0.95, match_rate: float = 1.0,
              **pattern_overrides) -> PatternCandidate:
        pattern = pattern_factory(
            pattern_id,
            performance=PatternPerformance(
                usage_count=usage, success_count=successes, success_rate=success_rate,
            ),
            **pattern_overrides,
        )
        return PatternCandidate(
            candidate_id=candidate_id,
            suggested_pattern=pattern,
            sample_count=3,
            match_rate=match_rate,
        )
    return _make


def service(*candidates, library: PatternLibrary | None = None) -> PromotionService:
    return PromotionService(library if library is not None else PatternLibrary(), CandidateStore(list(candidates)))


# =============================================================================
# Eligibility tests
# =============================================================================


class TestEligibility:
    def test_eligible(self, make_candidate):
        result = service(make_candidate()).check_promotion_eligibility("cand-1")
        assert result.eligible
        assert result.reason is None

    def test_insufficient_usage(self, make_candidate):
        svc = service(make_candidate(usage=9, successes=8, success_rate=0.95, match_rate=0.95))

        result = svc.check_promotion_eligibility("cand-1")

        assert not result.eligible
        assert result.reason == "Insufficient cross-customer usage: 9 < 10"

    def test_low_success_rate(self, make_candidate):
        result = service(make_candidate(successes=15, success_rate=0.75)).check_promotion_eligibility("cand-1")
        assert result.reason == "Success rate too low: 75.0% < 92.0%"

    def test_company_terms(self, make_candidate):
        candidate = make_candidate(display_name="Acme Waste Ltd complaints records")
        result = service(candidate).check_promotion_eligibility(candidate)
        assert not result.eligible
        assert result.reason.startswith("Pattern contains company-specific terms that must be anonymized")
        assert "company_name" in result.reason

    def test_company_terms_allowed_by_criteria(self, make_candidate):
        candidate = make_candidate(display_name="Acme Waste Ltd complaints records")
        criteria = PromotionCriteria(exclude_company_specific_terms=False)
        assert service(candidate).check_promotion_eligibility(candidate, criteria).eligible

    def test_low_match_rate(self, make_candidate):
        result = service(make_candidate(match_rate=0.85)).check_promotion_eligibility("cand-1")
        assert result.reason == "Match rate too low: 85.0% < 90.0%"

    def test_usage_checked_before_match_rate(self, make_candidate):
        result = service(make_candidate(usage=2, successes=1, success_rate=0.5, match_rate=0.1)) \
            .check_promotion_eligibility("cand-1")
        assert result.reason.startswith("Insufficient cross-customer usage")

    def test_unknown_candidate(self):
        result = service().check_promotion_eligibility("missing")
        assert result.reason == "Pattern candidate not found"

    def test_already_promoted(self, make_candidate):
        svc = service(make_candidate())
        svc.promote("cand-1")
        assert svc.check_promotion_eligibility("cand-1").reason == "Pattern already promoted"


# =============================================================================
# Promotion tests
# =============================================================================


class TestPromote:
    def test_promote_creates_shared_pattern(self, make_candidate):
        svc = service(make_candidate())

        shared = svc.promote("cand-1")

        assert shared.pattern_id == "RECORDS_001"
        assert shared.source_candidate_id == "cand-1"
        assert shared.is_global
        assert shared.usage_count == 0
        assert shared.success_rate == 0.0

        pattern = svc.library.get("RECORDS_001")
        assert pattern.display_name == "[SHARED] Maintain complaints records"
        assert pattern.performance.usage_count == 0
        assert pattern.is_active
        assert pattern.source_candidate_id == "cand-1"

        candidate = svc.candidates.get("cand-1")
        assert candidate.status == CandidateStatus.APPROVED
        assert candidate.created_pattern_id == "RECORDS_001"

    def test_second_promotion_rejected(self, make_candidate):
        svc = service(make_candidate())
        svc.promote("cand-1")

        with pytest.raises(AlreadyPromotedError):
            svc.promote("cand-1")
        assert len(svc.library) == 1

    def test_ineligible_raises(self, make_candidate):
        svc = service(make_candidate(usage=9, successes=8))
        with pytest.raises(PromotionRejectedError, match="Insufficient cross-customer usage"):
            svc.promote("cand-1")
        assert len(svc.library) == 0
        assert svc.candidates.get("cand-1").status == CandidateStatus.PENDING_REVIEW

    def test_lost_race_rolls_back(self, make_candidate):
        svc = service(make_candidate())

        with patch.object(svc.candidates, "mark_approved", return_value=None):
            with pytest.raises(AlreadyPromotedError):
                svc.promote("cand-1")

        assert "RECORDS_001" not in svc.library

    def test_existing_library_id_rejected(self, make_candidate, pattern_factory):
        library = PatternLibrary([pattern_factory("RECORDS_001")])
        svc = service(make_candidate(), library=library)

        with pytest.raises(AlreadyPromotedError):
            svc.promote("cand-1")
        assert svc.candidates.get("cand-1").status == CandidateStatus.PENDING_REVIEW

    def test_anonymize_candidate_clears_company_terms(self, make_candidate):
        svc = service(make_candidate(display_name="Acme Waste Ltd complaints records"))

        updated = svc.anonymize_candidate("cand-1")

        assert updated.suggested_pattern.display_name == "[COMPANY] complaints records"
        assert svc.check_promotion_eligibility("cand-1").eligible


# =============================================================================
# Query tests
# =============================================================================


class TestQueries:
    def test_shared_patterns_exclude_seeded(self, make_candidate):
        library = PatternLibrary.load_seed()
        svc = service(make_candidate(), library=library)
        svc.promote("cand-1")

        shared = svc.get_shared_patterns()

        assert [s.pattern_id for s in shared] == ["RECORDS_001"]

    def test_promotion_candidates_ranked(self, make_candidate):
        svc = service(
            make_candidate("near", "P1", usage=9, successes=8),
            make_candidate("ready", "P2"),
            make_candidate("far", "P3", usage=0, successes=0, success_rate=0.0, match_rate=0.0),
        )
        assert [c.candidate_id for c in svc.get_promotion_candidates()] == ["ready", "near"]


# =============================================================================
# Auto-promotion tests
# =============================================================================


class TestAutoPromotion:
    def test_dry_run_changes_nothing(self, make_candidate):
        svc = service(make_candidate("cand-1", "P1"), make_candidate("cand-2", "P2", usage=9, successes=8))

        report = svc.run_auto_promotion(dry_run=True)

        assert report.dry_run
        assert report.evaluated == 2
        assert report.would_promote == ["cand-1"]
        assert report.promoted == []
        assert report.skipped == {"cand-2": "Insufficient cross-customer usage: 9 < 10"}
        assert len(svc.library) == 0

    def test_promotes_ready_candidates(self, make_candidate):
        svc = service(make_candidate("cand-1", "P1"), make_candidate("cand-2", "P2", usage=9, successes=8))

        report = svc.run_auto_promotion()

        assert report.promoted == ["P1"]
        assert "P1" in svc.library
        assert svc.candidates.get("cand-1").is_approved

    def test_stricter_match_bar(self, make_candidate):
        svc = service(make_candidate(match_rate=0.92))
        report = svc.run_auto_promotion()
        assert report.promoted == []
        assert "below auto-approval bar" in report.skipped["cand-1"]

    def test_batch_size(self, make_candidate):
        svc = service(make_candidate("cand-1", "P1"), make_candidate("cand-2", "P2"))
        assert svc.run_auto_promotion(batch_size=1).evaluated == 1
