"""Tests for permit_extractor.core.errors module.

Tests the error handling infrastructure:
- Exception hierarchy and retryability
- ExtractionError dataclass
- PipelineErrors accumulator
- Error factory functions and exception classification
"""

from permit_extractor.core.errors import (
    AlreadyPromotedError,
    CompletionTimeoutError,
    EmptyResponseError,
    ErrorCategory,
    ErrorSeverity,
    ExtractionError,
    InvalidCredentialError,
    InvalidRequestError,
    NoValidCredentialError,
    PipelineErrors,
    PromotionRejectedError,
    QuotaExhaustedError,
    RateLimitedError,
    TransportError,
    error_from_exception,
    malformed_output_warning,
    pattern_error,
    timeout_error,
)


# =============================================================================
# Exception hierarchy tests
# =============================================================================


class TestRetryability:
    """Only transport-level failures are worth another attempt."""

    def test_transport_errors_retryable(self):
        assert TransportError("x").retryable
        assert CompletionTimeoutError("x").retryable
        assert EmptyResponseError("x").retryable

    def test_other_completion_errors_not_retryable(self):
        for cls in (InvalidCredentialError, QuotaExhaustedError, RateLimitedError, InvalidRequestError):
            assert not cls("x").retryable

    def test_original_exception_kept(self):
        cause = ConnectionError("reset")
        error = TransportError("Transport error", original=cause)
        assert error.original is cause

    def test_rejection_carries_reason(self):
        error = PromotionRejectedError("Match rate too low")
        assert error.reason == "Match rate too low"
        assert "Match rate too low" in str(error)


# =============================================================================
# ExtractionError tests
# =============================================================================


class TestExtractionError:
    """Tests for ExtractionError dataclass."""

    def test_str_includes_context(self):
        error = ExtractionError(
            category=ErrorCategory.TRANSPORT,
            severity=ErrorSeverity.ERROR,
            message="Connection reset",
            phase="tables",
            document_id="doc-1",
            retry_count=2,
        )
        text = str(error)
        assert "[ERROR] transport: Connection reset" in text
        assert "phase=tables" in text
        assert "document=doc-1" in text
        assert "retries=2" in text

    def test_to_dict_names_error_type(self):
        error = ExtractionError(
            category=ErrorCategory.TIMEOUT,
            severity=ErrorSeverity.ERROR,
            message="timed out",
            phase="conditions",
            original_error=CompletionTimeoutError("timed out"),
        )
        data = error.to_dict()
        assert data["category"] == "timeout"
        assert data["severity"] == "error"
        assert data["error_type"] == "CompletionTimeoutError"


# =============================================================================
# PipelineErrors tests
# =============================================================================


class TestPipelineErrors:
    """Tests for PipelineErrors accumulator."""

    def test_warnings_and_errors_kept_apart(self):
        errors = PipelineErrors()
        errors.add(malformed_output_warning("salvaged 3 items", phase="conditions"))
        errors.add(timeout_error("tables", document_id="doc-1"))

        assert errors.warning_count == 1
        assert errors.error_count == 1
        assert errors.failed_phases == ["tables"]

    def test_failed_phase_listed_once(self):
        errors = PipelineErrors()
        errors.add(timeout_error("tables"))
        errors.add(timeout_error("tables"))
        assert errors.failed_phases == ["tables"]

    def test_summary_counts_by_category(self):
        errors = PipelineErrors()
        errors.add(timeout_error("tables"))
        errors.add(timeout_error("elvs"))
        errors.add(error_from_exception(InvalidCredentialError("bad key"), "conditions"))

        summary = errors.summary()
        assert summary["total_errors"] == 3
        assert summary["failed_phases"] == 3
        assert summary["errors_by_category"] == {"timeout": 2, "credential": 1}

    def test_to_dict(self):
        errors = PipelineErrors()
        errors.add(pattern_error("Invalid regex skipped", "P1", "(["))
        data = errors.to_dict()
        assert data["warnings"][0]["context"] == {"pattern_id": "P1", "expression": "(["}
        assert data["errors"] == []


# =============================================================================
# Factory function tests
# =============================================================================


class TestFactories:
    def test_malformed_output_truncates_raw_response(self):
        warning = malformed_output_warning("recovered", phase="tables", raw_response="x" * 2000)
        assert warning.severity == ErrorSeverity.WARNING
        assert len(warning.context["raw_response"]) == 500

    def test_timeout_message(self):
        assert timeout_error("tables", timeout_seconds=30).message == "Operation timed out after 30s"
        assert timeout_error("tables").message == "Operation timed out"

    def test_pattern_error_is_warning(self):
        assert pattern_error("bad", "P1").severity == ErrorSeverity.WARNING


class TestErrorFromException:
    """Exceptions are classified into categories."""

    def test_timeout(self):
        record = error_from_exception(CompletionTimeoutError("slow"), "tables", "doc-1")
        assert record.category == ErrorCategory.TIMEOUT
        assert record.document_id == "doc-1"

    def test_credential_failures(self):
        for exc in (InvalidCredentialError("x"), QuotaExhaustedError("x"),
                    RateLimitedError("x"), NoValidCredentialError("x")):
            assert error_from_exception(exc, "conditions").category == ErrorCategory.CREDENTIAL

    def test_transport(self):
        record = error_from_exception(EmptyResponseError("empty"), "elvs")
        assert record.category == ErrorCategory.TRANSPORT

    def test_invalid_request_is_validation(self):
        record = error_from_exception(InvalidRequestError("context too long"), "conditions")
        assert record.category == ErrorCategory.VALIDATION

    def test_promotion(self):
        record = error_from_exception(AlreadyPromotedError("done"), "promotion")
        assert record.category == ErrorCategory.PROMOTION

    def test_unknown(self):
        record = error_from_exception(KeyError("obligations"), "pipeline")
        assert record.category == ErrorCategory.UNKNOWN
        assert record.message.startswith("KeyError")
