"""Rule-pattern matcher: scores document segments before any model call.

The document is split into sentence-grouped segments of at most 1000
characters. Every applicable pattern is scored against every segment:

    regex score   = 0.85 + 0.15 * coverage - 0.15 * negative hits  (primary)
                  = 0.75 + 0.15 * coverage                        (variant)
    semantic      = 0.5 + 0.35 * keyword hit ratio   (only for 0.70 <= regex < 0.90)
    combined      = 0.6 * regex + 0.4 * semantic

Only scores >= 0.90 are returned. With these weights a combined score tops
out around 0.88, so in practice the combined branch never qualifies; it is
kept so that retuned weights take effect without code changes.
"""

import logging
import re
from functools import lru_cache

from permit_extractor.core.config import MatchThresholds, SegmentConfig
from permit_extractor.core.errors import PipelineErrors, pattern_error
from permit_extractor.patterns.store import PatternLibrary
from permit_extractor.pydantic_models.obligations import ExtractionContext
from permit_extractor.pydantic_models.patterns import MatchType, PatternMatch, RulePattern

logger = logging.getLogger(__name__)

_SENTENCE_SPLIT = re.compile(SegmentConfig.SENTENCE_SPLIT)


@lru_cache(maxsize=1024)
def compile_pattern(expression: str) -> re.Pattern | None:
    """Compile a stored regex case-insensitively. None if it is invalid.

    Cached, so an invalid expression is logged only once per process.
    """
    try:
        return re.compile(expression, re.IGNORECASE)
    except re.error as e:
        logger.warning("Invalid pattern regex %r: %s", expression, e)
        return None


def segment_document(text: str, max_chars: int = SegmentConfig.MAX_SEGMENT_CHARS) -> list[str]:
    """Split on sentence terminators and greedily group into <= max_chars chunks.

    A single sentence longer than ``max_chars`` becomes its own segment.
    """
    if not text or not text.strip():
        return []

    segments: list[str] = []
    current = ""
    for sentence in _SENTENCE_SPLIT.split(text):
        if current and len(current) + len(sentence) > max_chars:
            segments.append(current.strip())
            current = sentence
        else:
            current = f"{current} {sentence}" if current else sentence

    if current.strip():
        segments.append(current.strip())
    return segments


def is_applicable(pattern: RulePattern, context: ExtractionContext) -> bool:
    """Active, module overlap, and regulator / document type when both sides are set."""
    if not pattern.is_active:
        return False

    rules = pattern.applicability
    if rules.module_types and not set(rules.module_types) & set(context.module_types):
        return False
    if context.regulator and rules.regulators and context.regulator not in rules.regulators:
        return False
    if context.document_type and rules.document_types and context.document_type not in rules.document_types:
        return False
    return True


def _coverage(regex: re.Pattern, segment: str) -> float | None:
    """Matched characters / segment characters, or None when nothing matched."""
    matches = list(regex.finditer(segment))
    if not matches:
        return None
    matched = sum(len(m.group(0)) for m in matches)
    return min(matched / len(segment), 1.0) if segment else 0.0


class PatternMatcher:
    """Match document text against the active patterns of a PatternLibrary.

    Usage:
        matcher = PatternMatcher(library)
        matches = matcher.find_matches(text, ExtractionContext(module_types=["MODULE_1"]))
    """

    def __init__(self, library: PatternLibrary, errors: PipelineErrors | None = None):
        self.library = library
        self.errors = errors

    def find_matches(self, document_text: str, context: ExtractionContext | None = None) -> list[PatternMatch]:
        """All (pattern, segment) pairs scoring >= 0.90, best first."""
        context = context or ExtractionContext()
        patterns = [p for p in self.library.active_patterns() if is_applicable(p, context)]
        if not patterns:
            return []

        segments = segment_document(document_text)
        reported: set[str] = set()
        matches: list[PatternMatch] = []

        for segment in segments:
            for pattern in patterns:
                if not self._length_ok(pattern, segment):
                    continue
                match = self.score_segment(pattern, segment, reported)
                if match is not None:
                    matches.append(match)

        matches.sort(key=lambda m: m.score, reverse=True)
        if matches:
            logger.info("Pattern matcher: %d matches across %d segments", len(matches), len(segments))
        return matches

    def score_segment(self, pattern: RulePattern, segment: str,
                      reported: set[str] | None = None) -> PatternMatch | None:
        """Score one pattern against one segment. None below the threshold."""
        regex_score = self.regex_score(pattern, segment, reported)

        if regex_score >= MatchThresholds.MIN_RETURN_SCORE:
            return self._build_match(pattern, segment, regex_score, MatchType.REGEX)

        if MatchThresholds.SEMANTIC_BAND_LOW <= regex_score < MatchThresholds.SEMANTIC_BAND_HIGH:
            semantic = self.semantic_score(pattern, segment)
            combined = (MatchThresholds.REGEX_WEIGHT * regex_score
                        + MatchThresholds.SEMANTIC_WEIGHT * semantic)
            if combined >= MatchThresholds.MIN_RETURN_SCORE:
                return self._build_match(pattern, segment, combined, MatchType.COMBINED)
        return None

    def regex_score(self, pattern: RulePattern, segment: str,
                    reported: set[str] | None = None) -> float:
        rules = pattern.matching

        primary = self._compile(pattern, rules.regex_primary, reported)
        if primary is not None:
            coverage = _coverage(primary, segment)
            if coverage is not None:
                penalty = 0.0
                for negative in rules.negative_patterns:
                    neg = self._compile(pattern, negative, reported)
                    if neg is not None and neg.search(segment):
                        penalty += MatchThresholds.NEGATIVE_PENALTY
                base = MatchThresholds.PRIMARY_BASE + MatchThresholds.PRIMARY_COVERAGE_WEIGHT * coverage
                return max(base - penalty, 0.0)

        for variant in rules.regex_variants:
            regex = self._compile(pattern, variant, reported)
            if regex is None:
                continue
            coverage = _coverage(regex, segment)
            if coverage is not None:
                return MatchThresholds.VARIANT_BASE + MatchThresholds.VARIANT_COVERAGE_WEIGHT * coverage

        return 0.0

    @staticmethod
    def semantic_score(pattern: RulePattern, segment: str) -> float:
        keywords = pattern.matching.semantic_keywords
        if not keywords:
            return 0.0
        lowered = segment.lower()
        hits = sum(1 for k in keywords if k.lower() in lowered)
        return MatchThresholds.SEMANTIC_BASE + MatchThresholds.SEMANTIC_OVERLAP_WEIGHT * (hits / len(keywords))

    @staticmethod
    def _length_ok(pattern: RulePattern, segment: str) -> bool:
        rules = pattern.matching
        if rules.min_text_length is not None and len(segment) < rules.min_text_length:
            return False
        if rules.max_text_length is not None and len(segment) > rules.max_text_length:
            return False
        return True

    def _compile(self, pattern: RulePattern, expression: str,
                 reported: set[str] | None) -> re.Pattern | None:
        regex = compile_pattern(expression)
        if regex is None and self.errors is not None and reported is not None:
            key = f"{pattern.pattern_id}:{expression}"
            if key not in reported:
                reported.add(key)
                self.errors.add(pattern_error("Invalid regex skipped", pattern.pattern_id, expression))
        return regex

    @staticmethod
    def _build_match(pattern: RulePattern, segment: str, score: float,
                     match_type: MatchType) -> PatternMatch:
        template = pattern.extraction_template
        return PatternMatch(
            pattern_id=pattern.pattern_id,
            pattern_version=pattern.pattern_version,
            score=min(score, 1.0),
            match_type=match_type,
            matched_text=segment,
            extracted_data={
                "category": template.category,
                "frequency": template.frequency,
                "deadline_relative": template.deadline_relative,
                "is_subjective": template.is_subjective,
                "evidence_types": list(template.evidence_types),
                "condition_type": template.condition_type,
            },
            confidence_boost=MatchThresholds.CONFIDENCE_BOOST,
        )
