"""Pass 4: emission limit values, one monitoring obligation per parameter."""

from typing import Any

from permit_extractor.core.config import PassConfig
from permit_extractor.passes.pass_base import ObligationPass, build_obligation
from permit_extractor.passes.sections import find_elv_sections
from permit_extractor.prompts import ELV_SECTION_SEPARATOR, ELV_SYSTEM_PROMPT, ELV_USER_PROMPT
from permit_extractor.pydantic_models.obligations import (
    ConditionType,
    ExtractedObligation,
    Frequency,
    ObligationCategory,
)

DEFAULT_ELV_REFERENCE = "S3.1"

# Checked in order; the first keyword found in the averaging period wins
_FREQUENCY_KEYWORDS: tuple[tuple[tuple[str, ...], Frequency], ...] = (
    (("continuous", "15_min", "15 min", "hourly", "hour"), Frequency.CONTINUOUS),
    (("daily", "24"), Frequency.DAILY),
    (("week",), Frequency.WEEKLY),
    (("month",), Frequency.MONTHLY),
    (("quarter",), Frequency.QUARTERLY),
    (("annual", "year"), Frequency.ANNUAL),
)


def infer_monitoring_frequency(averaging_period: Any) -> Frequency:
    """Monitoring frequency implied by an ELV averaging period.

    >>> infer_monitoring_frequency("Daily average")
    <Frequency.DAILY: 'DAILY'>
    >>> infer_monitoring_frequency(None)
    <Frequency.CONTINUOUS: 'CONTINUOUS'>
    """
    if not averaging_period:
        return Frequency.CONTINUOUS
    period = str(averaging_period).lower()
    for keywords, frequency in _FREQUENCY_KEYWORDS:
        if any(k in period for k in keywords):
            return frequency
    return Frequency.CONTINUOUS


def _value(raw: dict, key: str) -> str:
    value = raw.get(key)
    return "" if value is None else str(value)


class ELVPass(ObligationPass):
    """Extract every ELV parameter from Schedule 3 / Table S3.x."""

    name = "elvs"
    array_field = "elvs"
    system_prompt = ELV_SYSTEM_PROMPT
    user_prompt = ELV_USER_PROMPT
    temperature = PassConfig.ELV_TEMPERATURE
    max_tokens = PassConfig.ELV_MAX_TOKENS
    default_confidence = PassConfig.ELV_CONFIDENCE
    trust_reported_confidence = False

    def select_text(self, document_text: str) -> str | None:
        sections = find_elv_sections(document_text)
        if not sections:
            return None
        self.log(f"Found {len(sections)} ELV sections", level="debug")
        return ELV_SECTION_SEPARATOR.join(sections)

    def normalize_item(self, raw: Any) -> ExtractedObligation | None:
        if not isinstance(raw, dict):
            return None
        parameter = _value(raw, "parameter")
        name = _value(raw, "parameter_name") or parameter
        if not name:
            return None

        limit = f"{_value(raw, 'limit_value')} {_value(raw, 'unit')}".strip()
        reference = raw.get("condition_reference") or raw.get("emission_point") or DEFAULT_ELV_REFERENCE
        period = _value(raw, "averaging_period")
        if raw.get("reference_conditions"):
            period = f"{period}, {raw['reference_conditions']}"

        fields = {
            "condition_reference": f"{reference} - {parameter}",
            "title": f"Monitor {name} - {limit}",
            "description": f"Emission limit: {name} shall not exceed {limit} ({period})",
            "category": ObligationCategory.MONITORING,
            "frequency": infer_monitoring_frequency(raw.get("averaging_period")),
            "deadline_date": raw.get("compliance_date"),
            "condition_type": ConditionType.ELV,
            "confidence_score": raw.get("confidence_score"),
            "evidence_suggestions": raw.get("evidence_suggestions"),
            "original_text": raw.get("original_text"),
            "page_reference": raw.get("page_reference"),
            "section_reference": raw.get("section_reference"),
            "elv_limit": limit,
            "metadata": {"elv_data": raw},
        }
        return build_obligation(
            fields,
            self.provenance,
            default_confidence=PassConfig.ELV_ITEM_CONFIDENCE,
            default_condition_type=ConditionType.ELV,
        )
