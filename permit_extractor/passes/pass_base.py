"""Base classes for extraction passes.

A pass picks the part of the permit it understands, sends it to the model
with its own prompt and sampling parameters, salvages whatever the response
holds through the recovery parser, and turns the raw items into
ExtractedObligation records.

PassContext carries what every pass of one document shares: the invocation
layer, retry policy, the concurrency semaphore, the run logger and the
document's error collector. Passes never raise for a bad model answer; they
raise only when the invocation layer gave up, and the Multi-Pass Extractor
turns that into a failed PassResult.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Generic, TypeVar

from permit_extractor.core.config import DEFAULT_MODEL, ConcurrencyConfig, LLMConfig, PassConfig
from permit_extractor.core.cost_tracker import estimate_tokens
from permit_extractor.core.errors import PipelineErrors, malformed_output_warning, oversized_prompt_warning
from permit_extractor.core.llm_client import LLMClient, RetryPolicy
from permit_extractor.core.pipeline_logger import PipelineLogger
from permit_extractor.core.recovery import RecoveryResult, recover
from permit_extractor.pydantic_models.obligations import (
    ConditionType,
    ExtractedObligation,
    Frequency,
    ObligationCategory,
    PassResult,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PassContext:
    """Shared resources for the passes of one document."""

    client: LLMClient
    logger: PipelineLogger
    errors: PipelineErrors = field(default_factory=PipelineErrors)
    semaphore: asyncio.Semaphore = field(
        default_factory=lambda: asyncio.Semaphore(ConcurrencyConfig.MAX_CONCURRENT_PASSES)
    )
    policy: RetryPolicy = field(default_factory=RetryPolicy)
    document_id: str | None = None
    model: str = DEFAULT_MODEL


# =============================================================================
# Normalization helpers
# =============================================================================


def coerce_confidence(value: Any, default: float = PassConfig.DEFAULT_OBLIGATION_CONFIDENCE) -> float:
    """Model-reported confidence as a float in [0, 1]; ``default`` if unusable."""
    if isinstance(value, bool) or value is None:
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if number != number:  # NaN
        return default
    return min(max(number, 0.0), 1.0)


E = TypeVar("E", bound=Enum)


def coerce_enum(enum_cls: type[E], value: Any, default: E | None) -> E | None:
    """Case-insensitive enum lookup; ``default`` for anything outside the set."""
    if isinstance(value, enum_cls):
        return value
    if not isinstance(value, str) or not value.strip():
        return default
    key = value.strip().upper().replace(" ", "_").replace("-", "_")
    try:
        return enum_cls(key)
    except ValueError:
        return default


def coerce_date(value: Any) -> tuple[date | None, str | None]:
    """(ISO date, None), or (None, original text) when the value is not a date."""
    if isinstance(value, date):
        return value, None
    if not isinstance(value, str) or not value.strip():
        return None, None
    text = value.strip()
    try:
        return date.fromisoformat(text[:10]), None
    except ValueError:
        return None, text


def coerce_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def coerce_text(value: Any) -> str | None:
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    return text or None


def coerce_str_list(value: Any) -> list[str]:
    if isinstance(value, str):
        return [value] if value.strip() else []
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v is not None and str(v).strip()]


def build_obligation(
    fields: dict[str, Any],
    provenance: str,
    default_confidence: float = PassConfig.DEFAULT_OBLIGATION_CONFIDENCE,
    default_condition_type: ConditionType = ConditionType.STANDARD,
) -> ExtractedObligation | None:
    """Validate a pass's field mapping into an ExtractedObligation.

    Unknown category becomes OPERATIONAL, unknown frequency becomes null and a
    deadline that is not an ISO date is kept as relative text. Items with
    neither title nor description are dropped (None).
    """
    description = coerce_text(fields.get("description")) or ""
    title = coerce_text(fields.get("title")) or description[:60]
    if not title and not description:
        return None

    deadline_date, unparsed = coerce_date(fields.get("deadline_date"))
    deadline_relative = coerce_text(fields.get("deadline_relative")) or unparsed

    metadata = fields.get("metadata")
    return ExtractedObligation(
        condition_reference=coerce_text(fields.get("condition_reference")),
        title=title,
        description=description,
        category=coerce_enum(ObligationCategory, fields.get("category"), ObligationCategory.OPERATIONAL),
        frequency=coerce_enum(Frequency, fields.get("frequency"), None),
        deadline_date=deadline_date,
        deadline_relative=deadline_relative,
        is_subjective=bool(fields.get("is_subjective")),
        is_improvement=bool(fields.get("is_improvement")),
        condition_type=coerce_enum(ConditionType, fields.get("condition_type"), default_condition_type),
        confidence_score=coerce_confidence(fields.get("confidence_score"), default_confidence),
        evidence_suggestions=coerce_str_list(fields.get("evidence_suggestions")),
        provenance=provenance,
        original_text=coerce_text(fields.get("original_text")),
        page_reference=coerce_int(fields.get("page_reference")),
        section_reference=coerce_text(fields.get("section_reference")),
        elv_limit=coerce_text(fields.get("elv_limit")),
        metadata=metadata if isinstance(metadata, dict) else {},
    )


def normalize_obligation(raw: Any, provenance: str) -> ExtractedObligation | None:
    """Map a generic model item (conditions, tables, verification) to a record."""
    if not isinstance(raw, dict):
        return None
    description = raw.get("description") or raw.get("text") or ""
    fields = dict(raw)
    fields["description"] = description
    fields["title"] = raw.get("title") or raw.get("summary") or str(description)[:60]
    return build_obligation(fields, provenance)


# =============================================================================
# Pass base classes
# =============================================================================


T = TypeVar("T")


class ExtractionPass(ABC, Generic[T]):
    """Base class for the five passes.

    Each pass:
    - Has a name (used for provenance, logging and cost attribution)
    - Selects its input from the document text
    - Makes at most one model call under the shared semaphore
    - Produces a typed result
    """

    name: str = "unnamed"
    array_field: str = "obligations"
    system_prompt: str = ""
    user_prompt: str = "{text}"
    temperature: float = 0.2
    max_tokens: int = 4000

    def __init__(self, context: PassContext):
        self.context = context
        self.logger = context.logger

    @property
    def provenance(self) -> str:
        return f"pass:{self.name}"

    @abstractmethod
    async def run(self, document_text: str) -> T:
        """Execute the pass against the full document text."""

    async def invoke(self, text: str, system_prompt: str | None = None,
                     **prompt_values) -> RecoveryResult:
        """One model call, parsed through the recovery parser.

        Raises whatever the invocation layer raises once its retries are spent.
        """
        system_prompt = system_prompt if system_prompt is not None else self.system_prompt
        user_prompt = self.user_prompt.format(text=text, **prompt_values)
        self.check_prompt_size(system_prompt, user_prompt)
        async with self.context.semaphore:
            response = await self.context.client.complete(
                system_prompt,
                user_prompt,
                policy=self.context.policy,
                agent=self.name,
                model=self.context.model,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )

        parsed = recover(response.content, self.array_field)
        if parsed.recovered:
            what = "nothing salvageable" if parsed.failed else f"salvaged {len(parsed.items)} items"
            self.log(f"Malformed output, {what}", level="warning",
                     finish_reason=response.finish_reason)
            self.context.errors.add(malformed_output_warning(
                f"Recovered malformed output: {what}",
                phase=self.name,
                document_id=self.context.document_id,
                raw_response=response.content,
            ))
        return parsed

    def check_prompt_size(self, system_prompt: str, user_prompt: str) -> int:
        """Estimated prompt tokens; warns when the call may not fit the context window."""
        estimated = estimate_tokens(system_prompt) + estimate_tokens(user_prompt)
        if estimated + self.max_tokens > LLMConfig.CONTEXT_WINDOW_TOKENS:
            self.log("Prompt may not fit the context window", level="warning",
                     estimated_tokens=estimated, max_tokens=self.max_tokens)
            self.context.errors.add(oversized_prompt_warning(
                phase=self.name,
                estimated_tokens=estimated,
                max_tokens=self.max_tokens,
                document_id=self.context.document_id,
            ))
        return estimated

    def log(self, message: str, level: str = "info", **data):
        """Log a message with pass context."""
        if level == "debug":
            self.logger.debug(f"[{self.name}] {message}", **data)
        elif level == "warning":
            self.logger.warning(f"[{self.name}] {message}", **data)
        elif level == "error":
            self.logger.error(f"[{self.name}] {message}", **data)
        else:
            self.logger.info(f"[{self.name}] {message}", **data)


class ObligationPass(ExtractionPass[PassResult]):
    """A pass that yields obligations (passes 1-4).

    Subclasses implement ``select_text`` and ``normalize_item``. When
    ``trust_reported_confidence`` is set, the model's
    ``metadata.extraction_confidence`` becomes the pass confidence.
    """

    default_confidence: float = 0.8
    trust_reported_confidence: bool = True

    @abstractmethod
    def select_text(self, document_text: str) -> str | None:
        """The text this pass sends to the model, or None if nothing applies."""

    @abstractmethod
    def normalize_item(self, raw: Any) -> ExtractedObligation | None:
        """Map one raw array item to an obligation. None drops the item."""

    async def run(self, document_text: str) -> PassResult:
        started = time.monotonic()
        text = self.select_text(document_text)
        if not text:
            self.log("No relevant section, skipping model call", level="debug")
            return PassResult(
                pass_name=self.name,
                confidence=PassConfig.EMPTY_SECTION_CONFIDENCE,
                elapsed_ms=_elapsed_ms(started),
            )

        self.log(f"Sending {len(text):,} chars", level="debug")
        parsed = await self.invoke(text)

        obligations = []
        for raw in parsed.items:
            obligation = self.normalize_item(raw)
            if obligation is not None:
                obligations.append(obligation)
        dropped = len(parsed.items) - len(obligations)
        if dropped:
            logger.debug("[%s] dropped %d unusable items", self.name, dropped)

        return PassResult(
            pass_name=self.name,
            obligations=obligations,
            confidence=self.pass_confidence(parsed),
            elapsed_ms=_elapsed_ms(started),
            recovered=parsed.recovered,
        )

    def pass_confidence(self, parsed: RecoveryResult) -> float:
        """Recovery hints always apply; model metadata only if trusted."""
        hint = parsed.confidence_hint
        if hint is not None and (parsed.recovered or self.trust_reported_confidence):
            return coerce_confidence(hint, self.default_confidence)
        return self.default_confidence


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
