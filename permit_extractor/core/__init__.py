"""Core utilities for the extraction pipeline."""

from permit_extractor.core.config import (
    DEFAULT_MODEL,
    AutoApprovalConfig,
    ConcurrencyConfig,
    CredentialConfig,
    DedupConfig,
    DiscoveryConfig,
    GroundingConfig,
    LLMConfig,
    MatchThresholds,
    PassConfig,
    ProgressConfig,
    PromotionDefaults,
    RetryConfig,
    SegmentConfig,
    TimeoutConfig,
)
from permit_extractor.core.errors import (
    AlreadyPromotedError,
    CompletionError,
    CompletionTimeoutError,
    EmptyResponseError,
    ErrorCategory,
    ErrorSeverity,
    ExtractionCancelledError,
    ExtractionError,
    InvalidCredentialError,
    InvalidRequestError,
    MissingCredentialError,
    NoValidCredentialError,
    PatternExistsError,
    PermitExtractorError,
    PipelineErrors,
    PromotionError,
    PromotionRejectedError,
    QuotaExhaustedError,
    RateLimitedError,
    TransportError,
    credential_error,
    error_from_exception,
    malformed_output_warning,
    oversized_prompt_warning,
    pattern_error,
    timeout_error,
    transport_error,
)
from permit_extractor.core.cost_tracker import CallUsage, CostTracker, estimate_tokens
from permit_extractor.core.pipeline_logger import PipelineLogger, get_logger, reset_logger
from permit_extractor.core.credentials import Credential, CredentialPool
from permit_extractor.core.llm_client import (
    CompletionRequest,
    CompletionResponse,
    LLMClient,
    RetryPolicy,
    TimeoutClass,
    classify_exception,
    timeout_class_for,
)
from permit_extractor.core.recovery import RecoveryResult, recover, scan_array_objects
from permit_extractor.core.sinks import (
    BestEffortReporter,
    CostLedgerSink,
    InMemoryCostLedger,
    InMemoryProgressSink,
    LoggingProgressSink,
    ProgressSink,
    ProgressUpdate,
)
from permit_extractor.core.grounding import assess, ground_obligations

__all__ = [
    # Configuration
    "DEFAULT_MODEL",
    "AutoApprovalConfig",
    "ConcurrencyConfig",
    "CredentialConfig",
    "DedupConfig",
    "DiscoveryConfig",
    "GroundingConfig",
    "LLMConfig",
    "MatchThresholds",
    "PassConfig",
    "ProgressConfig",
    "PromotionDefaults",
    "RetryConfig",
    "SegmentConfig",
    "TimeoutConfig",
    # Errors
    "AlreadyPromotedError",
    "CompletionError",
    "CompletionTimeoutError",
    "EmptyResponseError",
    "ErrorCategory",
    "ErrorSeverity",
    "ExtractionCancelledError",
    "ExtractionError",
    "InvalidCredentialError",
    "InvalidRequestError",
    "MissingCredentialError",
    "NoValidCredentialError",
    "PatternExistsError",
    "PermitExtractorError",
    "PipelineErrors",
    "PromotionError",
    "PromotionRejectedError",
    "QuotaExhaustedError",
    "RateLimitedError",
    "TransportError",
    "credential_error",
    "error_from_exception",
    "malformed_output_warning",
    "oversized_prompt_warning",
    "pattern_error",
    "timeout_error",
    "transport_error",
    # Cost tracking
    "CallUsage",
    "CostTracker",
    "estimate_tokens",
    # Logging
    "PipelineLogger",
    "get_logger",
    "reset_logger",
    # Credentials + invocation layer
    "Credential",
    "CredentialPool",
    "CompletionRequest",
    "CompletionResponse",
    "LLMClient",
    "RetryPolicy",
    "TimeoutClass",
    "classify_exception",
    "timeout_class_for",
    # Recovery
    "RecoveryResult",
    "recover",
    "scan_array_objects",
    # Sinks
    "BestEffortReporter",
    "CostLedgerSink",
    "InMemoryCostLedger",
    "InMemoryProgressSink",
    "LoggingProgressSink",
    "ProgressSink",
    "ProgressUpdate",
    # Grounding
    "assess",
    "ground_obligations",
]
