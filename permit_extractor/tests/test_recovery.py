"""Tests for permit_extractor.core.recovery module.

Tests the malformed-output recovery parser:
- Direct parse of valid output (idempotent)
- Salvage of complete objects from truncated output
- String/escape handling while scanning
- Never raising, whatever the input
"""

import json

import pytest

from permit_extractor.core.recovery import (
    FAILED_CONFIDENCE,
    MISSING_FIELD_CONFIDENCE,
    RECOVERED_CONFIDENCE,
    recover,
    scan_array_objects,
    strip_code_fences,
)


def obligation(n: int) -> dict:
    return {
        "condition_reference": f"2.{n}",
        "title": f"Obligation {n}",
        "description": f"The operator shall do thing {n}",
        "confidence_score": 0.9,
    }


def truncated_after(complete: int) -> str:
    """An obligations array cut off partway through item ``complete + 1``."""
    head = ", ".join(json.dumps(obligation(n)) for n in range(1, complete + 1))
    return '{"obligations": [' + head + ', {"condition_reference": "2.9", "title": "Cut off", "descr'


# =============================================================================
# Direct parse tests
# =============================================================================


class TestDirectParse:
    def test_valid_output_is_returned_unchanged(self):
        document = {"obligations": [obligation(1), obligation(2)], "metadata": {"total_found": 2}}
        raw = json.dumps(document)

        result = recover(raw)

        assert result.items == json.loads(raw)["obligations"]
        assert result.document == document
        assert not result.recovered
        assert not result.failed

    def test_reported_confidence_becomes_hint(self):
        raw = json.dumps({"obligations": [], "metadata": {"extraction_confidence": 0.82}})
        assert recover(raw).confidence_hint == 0.82

    def test_no_metadata_means_no_hint(self):
        assert recover('{"obligations": []}').confidence_hint is None

    def test_bare_array(self):
        result = recover(json.dumps([obligation(1)]))
        assert result.items == [obligation(1)]
        assert not result.recovered

    def test_other_array_field(self):
        raw = json.dumps({"elvs": [{"parameter": "NOx"}]})
        assert recover(raw, "elvs").items == [{"parameter": "NOx"}]
        assert recover(raw, "obligations").items == []

    def test_code_fences_stripped(self):
        raw = "```json\n" + json.dumps({"obligations": [obligation(1)]}) + "\n```"
        result = recover(raw)
        assert result.items == [obligation(1)]
        assert not result.recovered

    def test_strip_code_fences_leaves_plain_text(self):
        assert strip_code_fences('  {"a": 1}  ') == '{"a": 1}'


# =============================================================================
# Recovery tests
# =============================================================================


class TestRecovery:
    def test_truncated_after_three_of_five(self):
        result = recover(truncated_after(3))

        assert len(result.items) == 3
        assert [item["title"] for item in result.items] == ["Obligation 1", "Obligation 2", "Obligation 3"]
        assert result.recovered
        assert not result.failed
        assert result.confidence_hint == RECOVERED_CONFIDENCE

    def test_braces_inside_strings_do_not_confuse_scanner(self):
        tricky = {"title": "Use {braces} and \"quotes\" }", "description": "ends with a backslash \\"}
        raw = '{"obligations": [' + json.dumps(tricky) + ', {"title": "half'
        result = recover(raw)
        assert result.items == [tricky]

    def test_nested_objects_kept_whole(self):
        nested = {"title": "ELV", "metadata": {"elv_data": {"limit": "500", "unit": "mg/m3"}}}
        raw = '{"obligations": [' + json.dumps(nested) + ', {"ti'
        assert recover(raw).items == [nested]

    def test_unparseable_object_skipped(self):
        raw = '{"obligations": [{"title": "good"}, {"title": bad}, {"title": "also good"}, {"ti'
        result = recover(raw)
        assert result.items == [{"title": "good"}, {"title": "also good"}]

    def test_scan_stops_at_array_end(self):
        text = '[{"a": 1}] trailing {"b": 2}'
        assert scan_array_objects(text, 0) == [{"a": 1}]

    def test_missing_array_field(self):
        result = recover('{"something_else": [{"a": 1}, {"b"')
        assert result.items == []
        assert result.failed
        assert result.confidence_hint == MISSING_FIELD_CONFIDENCE

    def test_array_without_complete_objects(self):
        result = recover('{"obligations": [{"title": "only half')
        assert result.items == []
        assert result.recovered
        assert result.failed
        assert result.confidence_hint == FAILED_CONFIDENCE

    def test_scalar_fields_salvaged_from_truncated_document(self):
        raw = '{"estimated_coverage": 0.9, "missed_obligations": [{"title": "one"}, {"title": "tw'
        result = recover(raw, "missed_obligations")
        assert result.items == [{"title": "one"}]
        assert result.document.get("estimated_coverage") == 0.9
        assert "missed_obligations" not in result.document


# =============================================================================
# Never-raises tests
# =============================================================================


class TestNeverRaises:
    @pytest.mark.parametrize("raw", [
        "",
        "   ",
        None,
        "not json at all",
        "{",
        "[",
        '{"obligations": ',
        '{"obligations": [',
        "}}}]]]",
        '"just a string"',
        "42",
        "```json\n```",
        '{"obligations": [' + "{" * 500,
    ])
    def test_worst_case_is_empty(self, raw):
        result = recover(raw)
        assert isinstance(result.items, list)
        if result.recovered:
            assert result.failed or result.items

    def test_empty_input_flags_failure(self):
        result = recover("")
        assert result.items == []
        assert result.recovered
        assert result.failed

    def test_non_string_input(self):
        result = recover(12345)  # type: ignore[arg-type]
        assert result.items == []
        assert result.failed
