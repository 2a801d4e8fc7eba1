"""Pass 3: improvement conditions (IC1, IC2, ...).

Improvement conditions are one-off deliverables, so every item maps to
OPERATIONAL / ONE_TIME / IMPROVEMENT regardless of what the model says.
"""

from typing import Any

from permit_extractor.core.config import PassConfig
from permit_extractor.passes.pass_base import ObligationPass, build_obligation
from permit_extractor.passes.sections import find_improvement_section
from permit_extractor.prompts import IMPROVEMENTS_SYSTEM_PROMPT, IMPROVEMENTS_USER_PROMPT
from permit_extractor.pydantic_models.obligations import (
    ConditionType,
    ExtractedObligation,
    Frequency,
    ObligationCategory,
)

DEFAULT_TITLE = "Improvement Condition"


class ImprovementsPass(ObligationPass):
    name = "improvements"
    array_field = "improvement_conditions"
    system_prompt = IMPROVEMENTS_SYSTEM_PROMPT
    user_prompt = IMPROVEMENTS_USER_PROMPT
    temperature = PassConfig.IMPROVEMENTS_TEMPERATURE
    max_tokens = PassConfig.IMPROVEMENTS_MAX_TOKENS
    default_confidence = PassConfig.IMPROVEMENTS_CONFIDENCE
    trust_reported_confidence = False

    def select_text(self, document_text: str) -> str | None:
        return find_improvement_section(document_text)

    def normalize_item(self, raw: Any) -> ExtractedObligation | None:
        if not isinstance(raw, dict):
            return None
        description = raw.get("description") or raw.get("text") or ""
        fields = {
            **raw,
            "condition_reference": raw.get("condition_reference") or raw.get("ic_reference"),
            "title": raw.get("title") or str(description)[:60] or DEFAULT_TITLE,
            "description": description,
            "category": ObligationCategory.OPERATIONAL,
            "frequency": Frequency.ONE_TIME,
            "deadline_relative": raw.get("deadline_text") or raw.get("deadline_relative"),
            "is_improvement": True,
            "is_subjective": False,
            "condition_type": ConditionType.IMPROVEMENT,
            "evidence_suggestions": raw.get("evidence_required") or raw.get("evidence_suggestions"),
        }
        return build_obligation(
            fields,
            self.provenance,
            default_confidence=PassConfig.IMPROVEMENTS_CONFIDENCE,
            default_condition_type=ConditionType.IMPROVEMENT,
        )
