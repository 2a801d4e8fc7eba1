"""Grounding check for model-extracted obligations.

Every pass asks the model for an ``original_text``: a verbatim quote backing
the obligation. Models paraphrase and occasionally invent quotes, so before
results leave the pipeline each quote is looked up in the document with
rapidfuzz's ``partial_ratio`` (best-matching substring alignment, tolerant of
PDF-to-text whitespace and hyphenation noise).

- score >= 90: quote found, LOW hallucination risk
- 70 <= score < 90: paraphrased, MEDIUM risk
- score < 70 or no quote: HIGH risk
"""

import logging
import re

from rapidfuzz import fuzz

from permit_extractor.core.config import GroundingConfig
from permit_extractor.pydantic_models.obligations import (
    ExtractedObligation,
    Grounding,
    HallucinationRisk,
)

logger = logging.getLogger(__name__)

_WS = re.compile(r"\s+")


def _normalize(text: str) -> str:
    return _WS.sub(" ", text).strip().lower()


def quote_score(quote: str, document_text: str) -> float:
    """0-100 similarity of the quote to its best-matching span in the document."""
    quote_n = _normalize(quote)
    if not quote_n:
        return 0.0
    doc_n = _normalize(document_text)
    if quote_n in doc_n:
        return 100.0
    return float(fuzz.partial_ratio(quote_n, doc_n))


def assess(quote: str | None, document_text: str) -> Grounding:
    """Grounding verdict for a single quote."""
    if not quote or not quote.strip():
        return Grounding(text_found=False, match_score=0.0,
                         hallucination_risk=HallucinationRisk.HIGH)

    score = quote_score(quote, document_text)
    if score >= GroundingConfig.FOUND_SCORE:
        risk = HallucinationRisk.LOW
    elif score >= GroundingConfig.PARTIAL_SCORE:
        risk = HallucinationRisk.MEDIUM
    else:
        risk = HallucinationRisk.HIGH
    return Grounding(
        text_found=score >= GroundingConfig.FOUND_SCORE,
        match_score=round(score, 1),
        hallucination_risk=risk,
    )


def ground_obligations(
    obligations: list[ExtractedObligation], document_text: str,
) -> list[ExtractedObligation]:
    """Return copies of the obligations with their grounding verdict attached."""
    grounded = []
    high_risk = 0
    for obligation in obligations:
        verdict = assess(obligation.original_text, document_text)
        if verdict.hallucination_risk == HallucinationRisk.HIGH:
            high_risk += 1
        grounded.append(obligation.model_copy(update={"grounding": verdict}))

    if high_risk:
        logger.info("Grounding: %d/%d obligations without a verifiable quote",
                    high_risk, len(obligations))
    return grounded
