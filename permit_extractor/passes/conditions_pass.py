"""Pass 1: numbered permit conditions from the start of the document."""

from typing import Any

from permit_extractor.core.config import PassConfig
from permit_extractor.passes.pass_base import ObligationPass, normalize_obligation
from permit_extractor.prompts import CONDITIONS_SYSTEM_PROMPT, CONDITIONS_USER_PROMPT
from permit_extractor.pydantic_models.obligations import ExtractedObligation


class ConditionsPass(ObligationPass):
    """Extract numbered conditions (1.1.1, 2.3.6.1, ...) from the first 50k chars."""

    name = "conditions"
    system_prompt = CONDITIONS_SYSTEM_PROMPT
    user_prompt = CONDITIONS_USER_PROMPT
    temperature = PassConfig.CONDITIONS_TEMPERATURE
    max_tokens = PassConfig.CONDITIONS_MAX_TOKENS
    default_confidence = PassConfig.CONDITIONS_CONFIDENCE

    def select_text(self, document_text: str) -> str | None:
        text = document_text[:PassConfig.CONDITIONS_MAX_CHARS]
        return text if text.strip() else None

    def normalize_item(self, raw: Any) -> ExtractedObligation | None:
        return normalize_obligation(raw, self.provenance)
