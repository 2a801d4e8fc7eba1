"""Obligation models: the unit of output from every extraction strategy.

An ExtractedObligation is created by exactly one strategy (a pass or a
pattern) and is frozen. Deduplication keeps or discards whole records;
later stages such as grounding produce new records with ``model_copy``.
"""

from __future__ import annotations

from datetime import date
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from permit_extractor.pydantic_models.patterns import PatternMatch


class ObligationCategory(str, Enum):
    """Closed set of obligation categories."""

    MONITORING = "MONITORING"
    REPORTING = "REPORTING"
    RECORD_KEEPING = "RECORD_KEEPING"
    OPERATIONAL = "OPERATIONAL"
    MAINTENANCE = "MAINTENANCE"
    NOTIFICATION = "NOTIFICATION"

    def __str__(self) -> str:
        return self.value


class Frequency(str, Enum):
    """Closed set of obligation frequencies (null when none applies)."""

    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    ANNUAL = "ANNUAL"
    BIENNIAL = "BIENNIAL"
    ONE_TIME = "ONE_TIME"
    CONTINUOUS = "CONTINUOUS"
    EVENT_TRIGGERED = "EVENT_TRIGGERED"

    def __str__(self) -> str:
        return self.value


class ConditionType(str, Enum):
    """Kind of permit condition an obligation comes from."""

    STANDARD = "STANDARD"
    SITE_SPECIFIC = "SITE_SPECIFIC"
    IMPROVEMENT = "IMPROVEMENT"
    PRE_OPERATIONAL = "PRE_OPERATIONAL"
    ELV = "ELV"
    MONITORING_REQUIREMENT = "MONITORING_REQUIREMENT"
    REPORTING = "REPORTING"
    NOTIFICATION = "NOTIFICATION"
    RECORD_KEEPING = "RECORD_KEEPING"
    OPERATIONAL = "OPERATIONAL"

    def __str__(self) -> str:
        return self.value


class HallucinationRisk(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class Grounding(BaseModel):
    """Result of checking a model-quoted source text against the document."""

    model_config = ConfigDict(frozen=True)

    text_found: bool
    match_score: float = Field(ge=0.0, le=100.0)
    hallucination_risk: HallucinationRisk


class ExtractedObligation(BaseModel):
    """One compliance obligation with provenance.

    Example (from the conditions pass):
        {
            "condition_reference": "2.3.6.1",
            "title": "Maintain complaints records",
            "description": "The operator shall maintain records of all complaints...",
            "category": "RECORD_KEEPING",
            "frequency": null,
            "confidence_score": 0.9,
            "provenance": "pass:conditions",
            "original_text": "The operator shall maintain records of all complaints received",
            "page_reference": 8
        }
    """

    model_config = ConfigDict(frozen=True, use_enum_values=False)

    condition_reference: str | None = None
    title: str = ""
    description: str = ""
    category: ObligationCategory = ObligationCategory.OPERATIONAL
    frequency: Frequency | None = None
    deadline_date: date | None = None
    deadline_relative: str | None = None
    is_subjective: bool = False
    is_improvement: bool = False
    condition_type: ConditionType = ConditionType.STANDARD
    confidence_score: float = Field(default=0.7, ge=0.0, le=1.0)
    evidence_suggestions: list[str] = Field(default_factory=list)
    provenance: str = Field(description="Which pass or pattern produced this record")
    original_text: str | None = Field(default=None, description="Verbatim quote from the document")
    page_reference: int | None = None
    section_reference: str | None = None
    elv_limit: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    grounding: Grounding | None = None

    def dedup_key(self, prefix_chars: int = 100) -> str:
        """Hash key used for cross-pass deduplication.

        Reference: lower-cased, all whitespace removed.
        Description: first ``prefix_chars`` characters, lower-cased,
        whitespace runs collapsed, stripped.
        """
        ref = "".join((self.condition_reference or "").lower().split())
        desc = " ".join(self.description[:prefix_chars].lower().split())
        return f"{ref}|{desc}"


class PassResult(BaseModel):
    """Output of one extraction pass. Immutable once produced."""

    model_config = ConfigDict(frozen=True)

    pass_name: str
    obligations: list[ExtractedObligation] = Field(default_factory=list)
    confidence: float = 0.0
    elapsed_ms: int = 0
    recovered: bool = False
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    @classmethod
    def failure(cls, pass_name: str, error: BaseException, elapsed_ms: int = 0) -> PassResult:
        """Empty result standing in for a pass that raised."""
        return cls(
            pass_name=pass_name,
            obligations=[],
            confidence=0.0,
            elapsed_ms=elapsed_ms,
            error=f"{type(error).__name__}: {error}",
        )


class VerificationResult(BaseModel):
    """Output of the verification pass."""

    model_config = ConfigDict(frozen=True)

    additional_obligations: list[ExtractedObligation] = Field(default_factory=list)
    estimated_coverage: float = Field(default=0.85, ge=0.0, le=1.0)
    gaps: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    elapsed_ms: int = 0
    recovered: bool = False
    error: str | None = None


class ExtractionContext(BaseModel):
    """Caller-supplied facts about the document being extracted."""

    module_types: list[str] = Field(default_factory=lambda: ["MODULE_1"])
    regulator: str | None = None
    document_type: str | None = None
    page_count: int | None = Field(default=None, ge=0)
    file_size_bytes: int | None = Field(default=None, ge=0)
    permit_reference: str | None = None
    document_id: str | None = None


class TokenUsage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    estimated_cost: float = 0.0
    model: str | None = None


class ErrorDetail(BaseModel):
    """User-visible error attached to a failed ExtractionResult."""

    category: str
    message: str
    failed_passes: list[str] = Field(default_factory=list)


class ExtractionResult(BaseModel):
    """Result of ``ExtractionOrchestrator.extract``.

    Failure is reported here (``error`` set, ``obligations`` empty), never as
    an exception crossing the pipeline boundary.
    """

    obligations: list[ExtractedObligation] = Field(default_factory=list)
    used_model: bool = False
    rule_matches: list[PatternMatch] = Field(default_factory=list)
    timing_ms: int = 0
    token_usage: TokenUsage | None = None
    coverage_score: float | None = None
    pass_results: dict[str, PassResult] = Field(default_factory=dict)
    verification: VerificationResult | None = None
    error: ErrorDetail | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


class ConfirmedExtraction(BaseModel):
    """A reviewed extraction, input to pattern discovery."""

    extraction_id: str
    used_model: bool
    confirmed_without_edits: bool
    context: ExtractionContext = Field(default_factory=ExtractionContext)
    obligations: list[ConfirmedObligation] = Field(default_factory=list)


class ConfirmedObligation(BaseModel):
    """An obligation a human accepted as-is."""

    obligation_id: str
    text: str
    category: ObligationCategory
    frequency: Frequency | None = None
    is_subjective: bool = False
    condition_type: ConditionType = ConditionType.STANDARD
    evidence_types: list[str] = Field(default_factory=list)


ConfirmedExtraction.model_rebuild()
