"""Pass 2: one obligation per row of the permit's tables."""

from typing import Any

from permit_extractor.core.config import PassConfig
from permit_extractor.passes.pass_base import ObligationPass, normalize_obligation
from permit_extractor.passes.sections import find_table_sections
from permit_extractor.prompts import TABLE_SEPARATOR, TABLES_SYSTEM_PROMPT, TABLES_USER_PROMPT
from permit_extractor.pydantic_models.obligations import ExtractedObligation


class TablesPass(ObligationPass):
    """Extract Table S1.x / S3.x rows and Schedule tables."""

    name = "tables"
    system_prompt = TABLES_SYSTEM_PROMPT
    user_prompt = TABLES_USER_PROMPT
    temperature = PassConfig.TABLES_TEMPERATURE
    max_tokens = PassConfig.TABLES_MAX_TOKENS
    default_confidence = PassConfig.TABLES_CONFIDENCE

    def select_text(self, document_text: str) -> str | None:
        sections = find_table_sections(document_text)
        if not sections:
            return None
        self.log(f"Found {len(sections)} table sections", level="debug")
        return TABLE_SEPARATOR.join(sections)

    def normalize_item(self, raw: Any) -> ExtractedObligation | None:
        return normalize_obligation(raw, self.provenance)
