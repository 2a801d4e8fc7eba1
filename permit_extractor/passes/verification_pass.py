"""Pass 5: gap analysis over the merged output of passes 1-4."""

import time
from typing import Any

from permit_extractor.core.config import PassConfig
from permit_extractor.passes.pass_base import (
    ExtractionPass,
    PassContext,
    coerce_confidence,
    coerce_str_list,
    normalize_obligation,
)
from permit_extractor.prompts import VERIFICATION_USER_PROMPT, build_verification_prompt
from permit_extractor.pydantic_models.obligations import ExtractedObligation, VerificationResult


class VerificationPass(ExtractionPass[VerificationResult]):
    """Ask the model which obligations the first four passes missed.

    The prompt lists up to 50 already-found references and the category
    counts; the model sees the first 30k chars of the document.
    """

    name = "verification"
    array_field = "missed_obligations"
    user_prompt = VERIFICATION_USER_PROMPT
    temperature = PassConfig.VERIFICATION_TEMPERATURE
    max_tokens = PassConfig.VERIFICATION_MAX_TOKENS

    def __init__(self, context: PassContext, found: list[ExtractedObligation]):
        super().__init__(context)
        self.found = found

    async def run(self, document_text: str) -> VerificationResult:
        started = time.monotonic()
        system_prompt = build_verification_prompt(self.found, max_refs=PassConfig.VERIFICATION_MAX_REFS)
        parsed = await self.invoke(
            document_text[:PassConfig.VERIFICATION_MAX_CHARS],
            system_prompt=system_prompt,
            count=len(self.found),
        )

        additional = [o for o in (normalize_obligation(raw, self.provenance) for raw in parsed.items)
                      if o is not None]
        document: dict[str, Any] = parsed.document
        coverage = coerce_confidence(document.get("estimated_coverage"), PassConfig.DEFAULT_COVERAGE)

        self.log(f"{len(additional)} missed obligations, coverage {coverage:.0%}")
        return VerificationResult(
            additional_obligations=additional,
            estimated_coverage=coverage,
            gaps=coerce_str_list(document.get("gaps")),
            recommendations=coerce_str_list(document.get("recommendations")),
            elapsed_ms=int((time.monotonic() - started) * 1000),
            recovered=parsed.recovered,
        )
