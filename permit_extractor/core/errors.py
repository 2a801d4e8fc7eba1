"""Structured error types for the extraction pipeline.

Two layers:
- Exceptions, raised across the completion-service boundary and by the
  credential pool / promotion service. ``CompletionError.retryable`` tells the
  invocation layer whether another attempt makes sense.
- ExtractionError records, collected per document in PipelineErrors so a
  failing pass is reported without failing the document.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


# =============================================================================
# Exceptions
# =============================================================================


class PermitExtractorError(Exception):
    """Base class for all pipeline exceptions."""


class CompletionError(PermitExtractorError):
    """A completion request failed."""

    retryable: bool = False

    def __init__(self, message: str, original: Exception | None = None):
        super().__init__(message)
        self.original = original


class InvalidCredentialError(CompletionError):
    """The API key was rejected (invalid, expired or revoked)."""


class QuotaExhaustedError(CompletionError):
    """The account has no remaining quota. Rotating keys will not help."""


class RateLimitedError(CompletionError):
    """Too many requests for the current key. One rotation is attempted."""


class InvalidRequestError(CompletionError):
    """The request itself is malformed (bad params, context too long)."""


class TransportError(CompletionError):
    """Transient network or server-side failure."""

    retryable = True


class CompletionTimeoutError(TransportError):
    """The attempt exceeded its per-call timeout."""


class EmptyResponseError(TransportError):
    """The service answered without any content."""


class MissingCredentialError(PermitExtractorError):
    """No primary credential was configured at startup."""


class NoValidCredentialError(PermitExtractorError):
    """Rotation was requested but no fallback credential is valid."""


class PatternExistsError(PermitExtractorError):
    """A pattern or candidate with this id is already stored."""


class PromotionError(PermitExtractorError):
    """Base class for promotion failures."""


class AlreadyPromotedError(PromotionError):
    """The candidate is already APPROVED and linked to a shared pattern."""


class PromotionRejectedError(PromotionError):
    """The candidate does not meet the promotion criteria."""

    def __init__(self, reason: str):
        super().__init__(f"Pattern does not meet promotion criteria: {reason}")
        self.reason = reason


class ExtractionCancelledError(PermitExtractorError):
    """The caller abandoned the job between passes."""


# =============================================================================
# Structured error records
# =============================================================================


class ErrorSeverity(Enum):
    """Severity levels for extraction errors."""
    WARNING = "warning"   # Non-fatal, extraction continued with defaults
    ERROR = "error"       # Fatal for this pass, pipeline continued
    CRITICAL = "critical" # Pipeline halted


class ErrorCategory(Enum):
    """Categories of extraction errors."""
    CREDENTIAL = "credential"             # Invalid key, quota, rate limit
    TRANSPORT = "transport"               # Network / server errors
    TIMEOUT = "timeout"                   # Per-call timeout
    MALFORMED_OUTPUT = "malformed_output" # Truncated or garbled model JSON
    PATTERN = "pattern"                   # Invalid stored regex
    PROMOTION = "promotion"               # Promotion business rules
    VALIDATION = "validation"             # Pydantic validation errors
    UNKNOWN = "unknown"                   # Unclassified errors


@dataclass
class ExtractionError:
    """Structured extraction error with context."""

    category: ErrorCategory
    severity: ErrorSeverity
    message: str
    phase: str                       # Pass or stage where the error occurred
    document_id: str | None = None
    original_error: Exception | None = None
    retry_count: int = 0
    context: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        parts = [f"[{self.severity.value.upper()}] {self.category.value}: {self.message}"]
        if self.phase:
            parts.append(f"phase={self.phase}")
        if self.document_id:
            parts.append(f"document={self.document_id}")
        if self.retry_count > 0:
            parts.append(f"retries={self.retry_count}")
        return " | ".join(parts)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "category": self.category.value,
            "severity": self.severity.value,
            "message": self.message,
            "phase": self.phase,
            "document_id": self.document_id,
            "error_type": type(self.original_error).__name__ if self.original_error else None,
            "retry_count": self.retry_count,
            "context": self.context,
        }


@dataclass
class PipelineErrors:
    """Aggregate errors across one document run."""

    errors: list[ExtractionError] = field(default_factory=list)
    warnings: list[ExtractionError] = field(default_factory=list)
    failed_phases: list[str] = field(default_factory=list)

    def add(self, error: ExtractionError):
        """Add an error or warning."""
        if error.severity == ErrorSeverity.WARNING:
            self.warnings.append(error)
        else:
            self.errors.append(error)
            if error.phase and error.phase not in self.failed_phases:
                self.failed_phases.append(error.phase)

    @property
    def error_count(self) -> int:
        return len(self.errors)

    @property
    def warning_count(self) -> int:
        return len(self.warnings)

    def summary(self) -> dict:
        """Get summary statistics."""
        by_category = {}
        for error in self.errors:
            cat = error.category.value
            by_category[cat] = by_category.get(cat, 0) + 1

        return {
            "total_errors": self.error_count,
            "total_warnings": self.warning_count,
            "failed_phases": len(self.failed_phases),
            "errors_by_category": by_category,
        }

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
            "failed_phases": self.failed_phases,
            "summary": self.summary(),
        }


# Factory functions for common error types

def credential_error(
    message: str,
    phase: str,
    document_id: str | None = None,
    original: Exception | None = None,
) -> ExtractionError:
    """Create a credential error (invalid key, quota, exhausted rotation)."""
    return ExtractionError(
        category=ErrorCategory.CREDENTIAL,
        severity=ErrorSeverity.ERROR,
        message=message,
        phase=phase,
        document_id=document_id,
        original_error=original,
    )


def transport_error(
    message: str,
    phase: str,
    document_id: str | None = None,
    original: Exception | None = None,
    retry_count: int = 0,
) -> ExtractionError:
    """Create a transport error."""
    return ExtractionError(
        category=ErrorCategory.TRANSPORT,
        severity=ErrorSeverity.ERROR,
        message=message,
        phase=phase,
        document_id=document_id,
        original_error=original,
        retry_count=retry_count,
    )


def timeout_error(
    phase: str,
    document_id: str | None = None,
    timeout_seconds: float | None = None,
    original: Exception | None = None,
) -> ExtractionError:
    """Create a timeout error."""
    return ExtractionError(
        category=ErrorCategory.TIMEOUT,
        severity=ErrorSeverity.ERROR,
        message=f"Operation timed out after {timeout_seconds}s" if timeout_seconds else "Operation timed out",
        phase=phase,
        document_id=document_id,
        original_error=original,
    )


def malformed_output_warning(
    message: str,
    phase: str,
    document_id: str | None = None,
    raw_response: str | None = None,
) -> ExtractionError:
    """Create a warning for model output that needed recovery."""
    return ExtractionError(
        category=ErrorCategory.MALFORMED_OUTPUT,
        severity=ErrorSeverity.WARNING,
        message=message,
        phase=phase,
        document_id=document_id,
        context={"raw_response": raw_response[:500] if raw_response else None},
    )


def oversized_prompt_warning(
    phase: str,
    estimated_tokens: int,
    max_tokens: int,
    document_id: str | None = None,
) -> ExtractionError:
    """Create a warning for a prompt that may not fit the context window."""
    return ExtractionError(
        category=ErrorCategory.VALIDATION,
        severity=ErrorSeverity.WARNING,
        message=f"Prompt of ~{estimated_tokens:,} tokens plus {max_tokens:,} output tokens may exceed the context window",
        phase=phase,
        document_id=document_id,
        context={"estimated_tokens": estimated_tokens, "max_tokens": max_tokens},
    )


def pattern_error(
    message: str,
    pattern_id: str,
    expression: str | None = None,
) -> ExtractionError:
    """Create a warning for an unusable stored pattern."""
    return ExtractionError(
        category=ErrorCategory.PATTERN,
        severity=ErrorSeverity.WARNING,
        message=message,
        phase="pattern_matching",
        context={"pattern_id": pattern_id, "expression": expression},
    )


def error_from_exception(
    exc: BaseException,
    phase: str,
    document_id: str | None = None,
) -> ExtractionError:
    """Classify an exception into a structured error record."""
    if isinstance(exc, CompletionTimeoutError):
        return timeout_error(phase, document_id=document_id, original=exc)
    if isinstance(exc, (InvalidCredentialError, QuotaExhaustedError, RateLimitedError,
                        MissingCredentialError, NoValidCredentialError)):
        return credential_error(str(exc), phase, document_id=document_id, original=exc)
    if isinstance(exc, TransportError):
        return transport_error(str(exc), phase, document_id=document_id, original=exc)
    if isinstance(exc, InvalidRequestError):
        return ExtractionError(
            category=ErrorCategory.VALIDATION,
            severity=ErrorSeverity.ERROR,
            message=str(exc),
            phase=phase,
            document_id=document_id,
            original_error=exc,
        )
    if isinstance(exc, PromotionError):
        return ExtractionError(
            category=ErrorCategory.PROMOTION,
            severity=ErrorSeverity.ERROR,
            message=str(exc),
            phase=phase,
            document_id=document_id,
            original_error=exc,
        )
    return ExtractionError(
        category=ErrorCategory.UNKNOWN,
        severity=ErrorSeverity.ERROR,
        message=f"{type(exc).__name__}: {exc}",
        phase=phase,
        document_id=document_id,
        original_error=exc if isinstance(exc, Exception) else None,
    )
