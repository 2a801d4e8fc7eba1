"""Tests for permit_extractor.patterns.matcher module.

Tests the rule-pattern matcher:
- Segmentation
- Applicability filtering
- Regex / variant / negative scoring
- The 0.90 return threshold
"""

import pytest

from permit_extractor.core.errors import PipelineErrors
from permit_extractor.patterns.matcher import (
    PatternMatcher,
    compile_pattern,
    is_applicable,
    segment_document,
)
from permit_extractor.patterns.store import PatternLibrary
from permit_extractor.pydantic_models.obligations import ExtractionContext
from permit_extractor.pydantic_models.patterns import Applicability, MatchingRules, MatchType

MATCHED_SENTENCE = (
    "The operator shall maintain records of all complaints received concerning odour from the installation"
)
MATCHED_REGEX = (
    r"operator\s+shall\s+maintain\s+records\s+of\s+all\s+complaints\s+received"
    r"\s+concerning\s+odour\s+from\s+the\s+installation"
)


def filler(page: int) -> str:
    """One long sentence of unrelated text, so the matched sentence is its own segment."""
    return f"[PAGE:{page}] " + " ".join(["general site description"] * 45)


def three_page_document() -> str:
    return f"{filler(1)}. {MATCHED_SENTENCE}. {filler(2)}. {filler(3)}."


# =============================================================================
# Segmentation tests
# =============================================================================


class TestSegmentDocument:
    def test_empty(self):
        assert segment_document("") == []
        assert segment_document("   ") == []

    def test_short_text_is_one_segment(self):
        assert segment_document("First sentence. Second sentence! Third?") == [
            "First sentence Second sentence Third?"
        ]

    def test_segments_respect_max_chars(self):
        text = ". ".join(f"Sentence number {i} about monitoring" for i in range(200))
        segments = segment_document(text, max_chars=300)
        assert len(segments) > 1
        assert all(len(s) <= 300 for s in segments)

    def test_long_sentence_stands_alone(self):
        segments = segment_document(three_page_document())
        assert MATCHED_SENTENCE in segments


# =============================================================================
# Applicability tests
# =============================================================================


class TestApplicability:
    def test_module_overlap_required(self, pattern_factory):
        pattern = pattern_factory(applicability=Applicability(module_types=["MODULE_2"]))
        assert not is_applicable(pattern, ExtractionContext(module_types=["MODULE_1"]))
        assert is_applicable(pattern, ExtractionContext(module_types=["MODULE_1", "MODULE_2"]))

    def test_regulator_only_when_both_set(self, pattern_factory):
        pattern = pattern_factory(applicability=Applicability(regulators=["EA"]))
        assert is_applicable(pattern, ExtractionContext())
        assert is_applicable(pattern, ExtractionContext(regulator="EA"))
        assert not is_applicable(pattern, ExtractionContext(regulator="SEPA"))

    def test_unscoped_pattern_applies_to_any_regulator(self, pattern_factory):
        pattern = pattern_factory(applicability=Applicability())
        assert is_applicable(pattern, ExtractionContext(regulator="SEPA", document_type="PERMIT"))

    def test_inactive_pattern_never_applies(self, pattern_factory):
        assert not is_applicable(pattern_factory(is_active=False), ExtractionContext())


# =============================================================================
# Scoring tests
# =============================================================================


class TestScoring:
    def test_single_matching_sentence_in_three_pages(self, pattern_factory):
        library = PatternLibrary([pattern_factory("ODOUR_001", regex=MATCHED_REGEX)])

        matches = PatternMatcher(library).find_matches(three_page_document())

        assert len(matches) == 1
        match = matches[0]
        assert match.pattern_id == "ODOUR_001"
        assert match.match_type == MatchType.REGEX
        assert match.matched_text == MATCHED_SENTENCE
        assert 0.90 <= match.score <= 1.0
        assert match.score == pytest.approx(0.85 + 0.15 * (len(MATCHED_SENTENCE) - 4) / len(MATCHED_SENTENCE))

    def test_template_copied_into_match(self, pattern_factory):
        library = PatternLibrary([pattern_factory("ODOUR_001", regex=MATCHED_REGEX, category="RECORD_KEEPING")])
        match = PatternMatcher(library).find_matches(MATCHED_SENTENCE)[0]
        assert match.extracted_data["category"] == "RECORD_KEEPING"
        assert match.extracted_data["evidence_types"] == ["Complaints log"]
        assert match.confidence_boost == 0.15

    def test_negative_pattern_disqualifies(self, pattern_factory):
        pattern = pattern_factory(matching=MatchingRules(
            regex_primary=MATCHED_REGEX,
            negative_patterns=[r"\bodour\b"],
        ))
        assert PatternMatcher(PatternLibrary([pattern])).find_matches(MATCHED_SENTENCE) == []

    def test_variant_alone_never_qualifies(self, pattern_factory):
        pattern = pattern_factory(matching=MatchingRules(
            regex_primary=r"will\s+never\s+match\s+anything",
            regex_variants=[MATCHED_REGEX],
            semantic_keywords=["operator", "records", "complaints", "odour"],
        ))
        matcher = PatternMatcher(PatternLibrary([pattern]))
        assert matcher.regex_score(pattern, MATCHED_SENTENCE) >= 0.75
        assert matcher.find_matches(MATCHED_SENTENCE) == []

    def test_semantic_score(self, pattern_factory):
        pattern = pattern_factory(matching=MatchingRules(
            regex_primary="x", semantic_keywords=["records", "complaints", "noise", "vibration"],
        ))
        assert PatternMatcher.semantic_score(pattern, MATCHED_SENTENCE) == pytest.approx(0.5 + 0.35 * 0.5)

    def test_length_bounds(self, pattern_factory):
        pattern = pattern_factory(matching=MatchingRules(regex_primary=MATCHED_REGEX, max_text_length=50))
        assert PatternMatcher(PatternLibrary([pattern])).find_matches(MATCHED_SENTENCE) == []

    def test_returned_scores_never_below_threshold(self, pattern_factory, permit_text):
        library = PatternLibrary.load_seed()
        library.add(pattern_factory("ODOUR_001", regex=MATCHED_REGEX))
        library.add(pattern_factory("COMPLAINTS_001"))
        text = permit_text + " " + three_page_document()

        matches = PatternMatcher(library).find_matches(text)

        assert matches
        assert all(m.score >= 0.90 for m in matches)
        assert [m.score for m in matches] == sorted((m.score for m in matches), reverse=True)


# =============================================================================
# Invalid regex tests
# =============================================================================


class TestInvalidRegex:
    def test_compile_invalid_returns_none(self):
        assert compile_pattern("([unclosed") is None

    def test_compile_is_case_insensitive(self):
        assert compile_pattern("shall").search("SHALL")

    def test_invalid_primary_falls_back_to_variants_and_is_reported(self, pattern_factory):
        pattern = pattern_factory("BROKEN_001", matching=MatchingRules(
            regex_primary="([unclosed",
            regex_variants=[MATCHED_REGEX],
        ))
        errors = PipelineErrors()
        matcher = PatternMatcher(PatternLibrary([pattern]), errors)

        assert matcher.find_matches(MATCHED_SENTENCE + ". " + MATCHED_SENTENCE) == []
        assert matcher.regex_score(pattern, MATCHED_SENTENCE) >= 0.75
        assert errors.warning_count == 1
        assert errors.warnings[0].context["pattern_id"] == "BROKEN_001"
