"""Pattern discovery: mine confirmed model extractions into pattern candidates.

Only extractions that went through the model and were confirmed by a
reviewer without edits are mined. Their obligations are clustered (same
category, text length within 30% of the cluster anchor). For every cluster of
three or more, the longest word phrase shared by all texts becomes a
word-bounded regex; it is kept only if it matches at least 90% of the
cluster, and is queued as a PENDING_REVIEW candidate.

Candidates then accrue usage through ``shadow_evaluate``: each later
confirmed obligation a pending candidate's regex matches counts as one use,
successful when the categories agree.
"""

import logging
import re
import uuid
from datetime import datetime, timezone

from permit_extractor.core.config import DiscoveryConfig
from permit_extractor.patterns.matcher import compile_pattern
from permit_extractor.patterns.store import CandidateStore
from permit_extractor.pydantic_models.obligations import (
    ConfirmedExtraction,
    ConfirmedObligation,
    ExtractionContext,
)
from permit_extractor.pydantic_models.patterns import (
    Applicability,
    ExtractionTemplate,
    MatchingRules,
    PatternCandidate,
    RulePattern,
)

logger = logging.getLogger(__name__)

_ID_UNSAFE = re.compile(r"[^A-Z0-9]+")


def group_similar(
    obligations: list[ConfirmedObligation],
    tolerance: float = DiscoveryConfig.LENGTH_TOLERANCE,
) -> list[list[ConfirmedObligation]]:
    """Greedy clustering by category and text length.

    Each unassigned obligation anchors a new cluster and pulls in every later
    unassigned obligation of the same category whose length differs from the
    anchor's by less than ``tolerance`` of the anchor length.
    """
    clusters = []
    used: set[int] = set()
    for i, anchor in enumerate(obligations):
        if i in used:
            continue
        used.add(i)
        cluster = [anchor]
        limit = len(anchor.text) * tolerance
        for j in range(i + 1, len(obligations)):
            other = obligations[j]
            if j in used or other.category != anchor.category:
                continue
            if abs(len(other.text) - len(anchor.text)) < limit:
                cluster.append(other)
                used.add(j)
        clusters.append(cluster)
    return clusters


def longest_common_phrase(texts: list[str], min_words: int = DiscoveryConfig.MIN_PHRASE_WORDS) -> str | None:
    """Longest run of whole words present in every text (case-insensitive).

    Longest means most words; ties go to the longer string, then to the
    earliest position in the first text.
    """
    if not texts:
        return None
    tokenized = [t.lower().split() for t in texts]
    haystacks = [f" {' '.join(words)} " for words in tokenized]
    shortest = min(tokenized, key=len)

    for size in range(len(shortest), min_words - 1, -1):
        found = [
            " ".join(shortest[k:k + size])
            for k in range(len(shortest) - size + 1)
        ]
        shared = [p for p in found if all(f" {p} " in h for h in haystacks)]
        if shared:
            return max(shared, key=len)
    return None


def phrase_to_regex(phrase: str) -> str:
    """Escaped, whitespace-tolerant regex for a phrase, bounded at word edges."""
    body = r"\s+".join(re.escape(word) for word in phrase.split())
    start = r"\b" if re.match(r"\w", phrase) else ""
    end = r"\b" if re.search(r"\w$", phrase) else ""
    return f"{start}{body}{end}"


def match_rate(regex: str, texts: list[str]) -> float:
    compiled = compile_pattern(regex)
    if compiled is None or not texts:
        return 0.0
    return sum(1 for t in texts if compiled.search(t)) / len(texts)


def common_template(cluster: list[ConfirmedObligation]) -> ExtractionTemplate:
    """Fields shared by the whole cluster; disagreeing fields fall back to defaults."""
    first = cluster[0]
    same_frequency = all(o.frequency == first.frequency for o in cluster)
    same_subjective = all(o.is_subjective == first.is_subjective for o in cluster)
    return ExtractionTemplate(
        category=first.category.value,
        frequency=first.frequency.value if same_frequency and first.frequency else None,
        is_subjective=first.is_subjective if same_subjective else False,
        evidence_types=list(first.evidence_types),
        condition_type=first.condition_type.value,
    )


def candidate_pattern_id(context: ExtractionContext, category: str) -> str:
    regulator = _ID_UNSAFE.sub("_", (context.regulator or DiscoveryConfig.DEFAULT_REGULATOR).upper()).strip("_")
    module = context.module_types[0] if context.module_types else DiscoveryConfig.DEFAULT_MODULE
    suffix = uuid.uuid4().hex[:6]
    return f"{regulator}_{module}_{category}_{suffix}"


class PatternDiscovery:
    """Queue pattern candidates mined from confirmed extractions.

    Usage:
        discovery = PatternDiscovery(candidate_store)
        new_candidates = discovery.discover(confirmed_extraction)
        discovery.shadow_evaluate(confirmed_extraction.obligations)
    """

    def __init__(self, candidates: CandidateStore,
                 min_cluster_size: int = DiscoveryConfig.MIN_CLUSTER_SIZE,
                 min_match_rate: float = DiscoveryConfig.MIN_MATCH_RATE):
        self.candidates = candidates
        self.min_cluster_size = min_cluster_size
        self.min_match_rate = min_match_rate

    def discover(self, extraction: ConfirmedExtraction) -> list[PatternCandidate]:
        """Mine one confirmed extraction. Returns the newly queued candidates."""
        if not extraction.used_model or not extraction.confirmed_without_edits:
            logger.debug("Skipping discovery for %s: not a confirmed model extraction",
                         extraction.extraction_id)
            return []
        if len(extraction.obligations) < self.min_cluster_size:
            return []

        queued = []
        for cluster in group_similar(extraction.obligations):
            if len(cluster) < self.min_cluster_size:
                continue
            candidate = self.build_candidate(cluster, extraction.context)
            if candidate is None:
                continue
            if self._is_duplicate(candidate.suggested_pattern.matching.regex_primary):
                logger.debug("Candidate regex already queued: %s",
                             candidate.suggested_pattern.matching.regex_primary)
                continue
            self.candidates.add(candidate)
            queued.append(candidate)
            logger.info("Queued pattern candidate %s (%d samples, match rate %.0f%%)",
                        candidate.suggested_pattern.pattern_id, candidate.sample_count,
                        candidate.match_rate * 100)
        return queued

    def build_candidate(self, cluster: list[ConfirmedObligation],
                        context: ExtractionContext) -> PatternCandidate | None:
        """Candidate for one cluster, or None if no phrase generalises."""
        texts = [o.text for o in cluster]
        phrase = longest_common_phrase(texts)
        if phrase is None:
            return None

        regex = phrase_to_regex(phrase)
        rate = match_rate(regex, texts)
        if rate < self.min_match_rate:
            logger.debug("Rejected regex %r: match rate %.2f", regex, rate)
            return None

        template = common_template(cluster)
        pattern = RulePattern(
            pattern_id=candidate_pattern_id(context, template.category),
            pattern_version=DiscoveryConfig.CANDIDATE_VERSION,
            priority=DiscoveryConfig.CANDIDATE_PRIORITY,
            display_name=f"Auto-generated: {template.category}",
            description=f"Pattern discovered from {len(cluster)} successful extractions",
            matching=MatchingRules(regex_primary=regex),
            extraction_template=template,
            applicability=Applicability(
                module_types=list(context.module_types),
                regulators=[context.regulator] if context.regulator else [],
                document_types=[context.document_type] if context.document_type else [],
            ),
        )
        return PatternCandidate(
            candidate_id=str(uuid.uuid4()),
            suggested_pattern=pattern,
            source_extraction_ids=[o.obligation_id for o in cluster],
            sample_count=len(cluster),
            match_rate=rate,
            created_at=datetime.now(timezone.utc),
        )

    def shadow_evaluate(self, obligations: list[ConfirmedObligation]) -> dict[str, int]:
        """Count uses of pending candidates against confirmed obligations.

        Returns:
            candidate_id -> number of uses recorded in this call.
        """
        counts: dict[str, int] = {}
        for candidate in self.candidates.pending():
            pattern = candidate.suggested_pattern
            regex = compile_pattern(pattern.matching.regex_primary)
            if regex is None:
                continue
            for obligation in obligations:
                if not regex.search(obligation.text):
                    continue
                success = obligation.category.value == pattern.extraction_template.category
                self.candidates.record_usage(candidate.candidate_id, success)
                counts[candidate.candidate_id] = counts.get(candidate.candidate_id, 0) + 1
        return counts

    def _is_duplicate(self, regex: str) -> bool:
        return self.candidates.find_by_regex(regex) is not None
