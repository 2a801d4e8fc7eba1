"""Promotion of pattern candidates to shared, anonymized library patterns.

A candidate is promoted once it has proven itself across customers:

    1. not already promoted
    2. usage_count >= 10
    3. success_rate >= 0.92
    4. no company-identifying terms (when the criteria exclude them)
    5. match_rate >= 0.90

Eligibility is answered as data (PromotionEligibility), never raised.
``promote`` re-checks it, anonymizes the pattern, inserts it into the library
with zeroed counters and flips the candidate to APPROVED with a
compare-and-set; a lost race rolls the insert back.
"""

import logging
from dataclasses import dataclass, field

from permit_extractor.core.config import AutoApprovalConfig, PromotionDefaults
from permit_extractor.core.errors import (
    AlreadyPromotedError,
    PatternExistsError,
    PromotionRejectedError,
)
from permit_extractor.patterns.anonymizer import Anonymizer
from permit_extractor.patterns.store import CandidateStore, PatternLibrary
from permit_extractor.pydantic_models.patterns import (
    PatternCandidate,
    PatternPerformance,
    PromotionCriteria,
    PromotionEligibility,
    RulePattern,
    SharedPattern,
)

logger = logging.getLogger(__name__)

SHARED_PREFIX = "[SHARED] "
PROMOTION_NOTE = "Promoted from cross-customer pattern analysis."


@dataclass
class AutoPromotionReport:
    """Summary of one ``run_auto_promotion`` batch."""

    evaluated: int = 0
    promoted: list[str] = field(default_factory=list)
    would_promote: list[str] = field(default_factory=list)
    skipped: dict[str, str] = field(default_factory=dict)
    dry_run: bool = False

    def to_dict(self) -> dict:
        return {
            "evaluated": self.evaluated,
            "promoted": self.promoted,
            "would_promote": self.would_promote,
            "skipped": self.skipped,
            "dry_run": self.dry_run,
        }


class PromotionService:
    """Check, anonymize and promote pattern candidates."""

    def __init__(self, library: PatternLibrary, candidates: CandidateStore,
                 anonymizer: Anonymizer | None = None,
                 criteria: PromotionCriteria | None = None):
        self.library = library
        self.candidates = candidates
        self.anonymizer = anonymizer or Anonymizer()
        self.criteria = criteria or PromotionCriteria()

    # =========================================================================
    # Eligibility
    # =========================================================================

    def check_promotion_eligibility(
        self,
        candidate: PatternCandidate | str,
        criteria: PromotionCriteria | None = None,
    ) -> PromotionEligibility:
        """Check a candidate (or candidate id) against the promotion criteria."""
        criteria = criteria or self.criteria
        if isinstance(candidate, str):
            found = self.candidates.get(candidate)
            if found is None:
                return PromotionEligibility(eligible=False, reason="Pattern candidate not found")
            candidate = found

        if candidate.is_approved:
            return PromotionEligibility(eligible=False, reason="Pattern already promoted")

        usage = candidate.usage_count
        if usage < criteria.min_usage_count:
            return PromotionEligibility(
                eligible=False,
                reason=f"Insufficient cross-customer usage: {usage} < {criteria.min_usage_count}",
            )

        rate = candidate.success_rate
        if rate < criteria.min_success_rate:
            return PromotionEligibility(
                eligible=False,
                reason=f"Success rate too low: {rate:.1%} < {criteria.min_success_rate:.1%}",
            )

        if criteria.exclude_company_specific_terms:
            pattern = candidate.suggested_pattern
            terms = self.anonymizer.detect_company_terms(
                pattern.display_name, pattern.description, pattern.matching.regex_primary,
            )
            if terms:
                return PromotionEligibility(
                    eligible=False,
                    reason="Pattern contains company-specific terms that must be anonymized "
                           f"({', '.join(terms)})",
                )

        if candidate.match_rate < criteria.min_match_rate:
            return PromotionEligibility(
                eligible=False,
                reason=f"Match rate too low: {candidate.match_rate:.1%} < {criteria.min_match_rate:.1%}",
            )

        return PromotionEligibility(eligible=True)

    # =========================================================================
    # Promotion
    # =========================================================================

    def promote(self, candidate_id: str) -> SharedPattern:
        """Promote a candidate to a shared library pattern.

        Raises:
            AlreadyPromotedError: The candidate is (or just became) APPROVED.
            PromotionRejectedError: The candidate does not meet the criteria.
        """
        candidate = self.candidates.get(candidate_id)
        if candidate is None:
            raise PromotionRejectedError("Pattern candidate not found")
        if candidate.is_approved:
            raise AlreadyPromotedError(f"Candidate {candidate_id} already promoted "
                                       f"to {candidate.created_pattern_id}")

        eligibility = self.check_promotion_eligibility(candidate)
        if not eligibility.eligible:
            raise PromotionRejectedError(eligibility.reason or "Not eligible")

        shared = self._shared_pattern(candidate)
        try:
            self.library.add(shared)
        except PatternExistsError as e:
            raise AlreadyPromotedError(f"Pattern {shared.pattern_id} already in library") from e

        if self.candidates.mark_approved(candidate_id, shared.pattern_id) is None:
            self.library.remove(shared.pattern_id)
            raise AlreadyPromotedError(f"Candidate {candidate_id} was promoted concurrently")

        logger.info("Promoted candidate %s to shared pattern %s (usage %d, success %.1f%%)",
                    candidate_id, shared.pattern_id, candidate.usage_count,
                    candidate.success_rate * 100)
        return self.to_shared(shared)

    def anonymize_candidate(self, candidate_id: str) -> PatternCandidate:
        """Rewrite a pending candidate's free text through the anonymizer.

        Lets a reviewer clear the company-terms check without hand edits.
        """
        candidate = self.candidates.get(candidate_id)
        if candidate is None:
            raise KeyError(f"Unknown candidate: {candidate_id}")
        pattern = self._anonymized(candidate.suggested_pattern)
        return self.candidates.replace_pattern(candidate_id, pattern)

    def _anonymized(self, pattern: RulePattern) -> RulePattern:
        anon = self.anonymizer
        matching = pattern.matching.model_copy(update={
            "regex_primary": anon.anonymize(pattern.matching.regex_primary, as_regex=True),
            "regex_variants": [anon.anonymize(v, as_regex=True) for v in pattern.matching.regex_variants],
            "semantic_keywords": [anon.anonymize(k) for k in pattern.matching.semantic_keywords],
        })
        return pattern.model_copy(update={
            "display_name": anon.anonymize(pattern.display_name),
            "description": anon.anonymize(pattern.description),
            "matching": matching,
            "applicability": pattern.applicability.model_copy(update={"water_companies": []}),
        })

    def _shared_pattern(self, candidate: PatternCandidate) -> RulePattern:
        pattern = self._anonymized(candidate.suggested_pattern)
        description = f"{pattern.description}\n\n{PROMOTION_NOTE}" if pattern.description else PROMOTION_NOTE
        return pattern.model_copy(update={
            "display_name": f"{SHARED_PREFIX}{pattern.display_name}",
            "description": description,
            "performance": PatternPerformance(),
            "is_active": True,
            "source_candidate_id": candidate.candidate_id,
        })

    # =========================================================================
    # Queries
    # =========================================================================

    @staticmethod
    def to_shared(pattern: RulePattern) -> SharedPattern:
        rules = pattern.applicability
        return SharedPattern(
            pattern_id=pattern.pattern_id,
            source_candidate_id=pattern.source_candidate_id or "",
            regulator=rules.regulators[0] if rules.regulators else None,
            document_type=rules.document_types[0] if rules.document_types else None,
            pattern_template=pattern,
            usage_count=pattern.performance.usage_count,
            success_rate=pattern.performance.success_rate,
        )

    def get_shared_patterns(self, regulator: str | None = None,
                            document_type: str | None = None) -> list[SharedPattern]:
        """Promoted patterns, most used first. Filters apply when the pattern is scoped."""
        shared = []
        for pattern in self.library.all():
            if pattern.source_candidate_id is None or not pattern.is_active:
                continue
            rules = pattern.applicability
            if regulator and rules.regulators and regulator not in rules.regulators:
                continue
            if document_type and rules.document_types and document_type not in rules.document_types:
                continue
            shared.append(self.to_shared(pattern))
        return sorted(shared, key=lambda s: s.usage_count, reverse=True)

    def closeness(self, candidate: PatternCandidate, criteria: PromotionCriteria | None = None) -> float:
        """How far a candidate is towards promotion, averaged over the three thresholds."""
        criteria = criteria or self.criteria
        usage = min(candidate.usage_count / criteria.min_usage_count, 1.0) if criteria.min_usage_count else 1.0
        success = min(candidate.success_rate / criteria.min_success_rate, 1.0) if criteria.min_success_rate else 1.0
        match = min(candidate.match_rate / criteria.min_match_rate, 1.0) if criteria.min_match_rate else 1.0
        return (usage + success + match) / 3

    def get_promotion_candidates(self, limit: int = 20,
                                 criteria: PromotionCriteria | None = None) -> list[PatternCandidate]:
        """Pending candidates at least halfway to the thresholds, closest first."""
        ranked = [
            (self.closeness(c, criteria), c) for c in self.candidates.pending()
        ]
        ranked = [item for item in ranked if item[0] >= PromotionDefaults.CANDIDATE_SCORE_FLOOR]
        ranked.sort(key=lambda item: item[0], reverse=True)
        return [c for _, c in ranked[:limit]]

    # =========================================================================
    # Batch auto-approval
    # =========================================================================

    def auto_approval_reason(self, candidate: PatternCandidate) -> str | None:
        """Why a candidate fails the stricter auto-approval bar, or None if it passes."""
        perf = candidate.suggested_pattern.performance
        if candidate.match_rate < AutoApprovalConfig.MIN_MATCH_RATE:
            return f"Match rate {candidate.match_rate:.1%} below auto-approval bar"
        if perf.usage_count < AutoApprovalConfig.MIN_SAMPLES:
            return f"Only {perf.usage_count} samples"
        if perf.usage_count and perf.correction_count / perf.usage_count > AutoApprovalConfig.MAX_CORRECTION_RATE:
            return "Correction rate too high"
        if perf.usage_count and perf.false_positive_count / perf.usage_count > AutoApprovalConfig.MAX_FALSE_POSITIVE_RATE:
            return "False positive rate too high"
        return None

    def run_auto_promotion(self, batch_size: int = AutoApprovalConfig.DEFAULT_BATCH_SIZE,
                           dry_run: bool = False) -> AutoPromotionReport:
        """Promote every pending candidate that clears both bars.

        Evaluates at most ``batch_size`` candidates, closest to promotion first.
        """
        report = AutoPromotionReport(dry_run=dry_run)
        batch = sorted(self.candidates.pending(), key=self.closeness, reverse=True)[:batch_size]

        for candidate in batch:
            report.evaluated += 1
            eligibility = self.check_promotion_eligibility(candidate)
            reason = eligibility.reason if not eligibility.eligible else self.auto_approval_reason(candidate)
            if reason:
                report.skipped[candidate.candidate_id] = reason
                continue

            if dry_run:
                report.would_promote.append(candidate.candidate_id)
                continue

            try:
                shared = self.promote(candidate.candidate_id)
            except (AlreadyPromotedError, PromotionRejectedError) as e:
                report.skipped[candidate.candidate_id] = str(e)
                continue
            report.promoted.append(shared.pattern_id)

        logger.info("Auto-promotion: %d evaluated, %d promoted, %d skipped%s",
                    report.evaluated, len(report.promoted), len(report.skipped),
                    " (dry run)" if dry_run else "")
        return report
