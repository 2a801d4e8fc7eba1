"""Pytest configuration and shared fixtures.

Provides reusable test fixtures for:
- Mock completion-service responses
- Credential pools with a stubbed validation probe
- Sample permit text (conditions, tables, improvement conditions, ELVs)
- Pattern library entries
"""

import copy
import json
import os
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

# litellm fetches its model-cost map over the network at import time; use the
# bundled copy so the suite imports offline.
os.environ.setdefault("LITELLM_LOCAL_MODEL_COST_MAP", "True")

from permit_extractor.core import CredentialPool, PipelineErrors, get_logger, reset_logger
from permit_extractor.core.llm_client import LLMClient, RetryPolicy
from permit_extractor.passes import PassContext
from permit_extractor.pydantic_models.patterns import (
    Applicability,
    ExtractionTemplate,
    MatchingRules,
    RulePattern,
)


@pytest.fixture(autouse=True)
def _fresh_logger():
    """Every test gets its own pipeline logger."""
    reset_logger()
    yield
    reset_logger()


# =============================================================================
# Mock completion service
# =============================================================================


def make_completion(content: str, prompt_tokens: int = 100, completion_tokens: int = 50,
                    finish_reason: str = "stop"):
    """A litellm-shaped completion response."""
    return MagicMock(
        choices=[MagicMock(message=MagicMock(content=content), finish_reason=finish_reason)],
        usage=MagicMock(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens),
    )


@pytest.fixture
def completion_response():
    """Factory for litellm-shaped completion responses."""
    return make_completion


@pytest.fixture
def mock_acompletion():
    """Patch litellm's acompletion as seen by the invocation layer."""
    with patch("permit_extractor.core.llm_client.acompletion", new_callable=AsyncMock) as mock:
        mock.return_value = make_completion('{"obligations": []}')
        yield mock


# =============================================================================
# Credentials and pass context
# =============================================================================


@pytest.fixture
def probe():
    """Validation probe that accepts every key."""
    return AsyncMock(return_value=True)


@pytest.fixture
def pool(probe):
    return CredentialPool("sk-primary-0001", ["sk-fallback-0002", "sk-fallback-0003"], probe=probe)


@pytest.fixture
def pass_context(pool):
    """PassContext with a single-attempt policy and no backoff sleeps."""
    return PassContext(
        client=LLMClient(pool, sleep=AsyncMock()),
        logger=get_logger(),
        errors=PipelineErrors(),
        policy=RetryPolicy(total_attempts=1),
        document_id="doc-1",
    )


# =============================================================================
# Sample permit text
# =============================================================================


def _filler(label: str, words: int = 40) -> str:
    return " ".join(f"{label}" for _ in range(words))


SAMPLE_CONDITIONS = """[PAGE:1]
Permit EPR/AB1234CD

1 Management

1.1.1 The operator shall manage and operate the activities in accordance with a written management system.

2.3.6.1 The operator shall maintain records of all complaints received concerning emissions from the site.
"""

SAMPLE_TABLES = """
Table S1.2 Operating techniques
Description | Parts | Date received
Application | All sections of the application detailing the operating techniques to be used | 12/05/2020
Response to Schedule 5 notice | Responses to questions 1-7 describing odour control | 01/07/2020

"""

SAMPLE_IMPROVEMENTS = """
Improvement Programme
IC1 The operator shall submit a written noise management plan to the Environment Agency for approval. Completion date: within 6 months of permit issue.
IC2 The operator shall carry out a review of the surface water drainage system and report the findings. Completion date: 31/12/2021.
"""

SAMPLE_ELVS = """
Schedule 3 - Emissions and monitoring
Table S3.1 Point source emissions to air - emission limits and monitoring requirements
Emission point ref. & location | Parameter | Source | Limit (including unit) | Reference period | Monitoring frequency
A1 on site plan | Oxides of nitrogen (NO and NO2 expressed as NO2) | Gas engine exhaust | 500 mg/m3 | Periodic over minimum 1-hour period | Annual
A1 on site plan | Carbon monoxide | Gas engine exhaust | 1400 mg/m3 | Periodic over minimum 1-hour period | Annual
A1 on site plan | Total volatile organic compounds | Gas engine exhaust | 1000 mg/m3 | Periodic over minimum 1-hour period | Annual
Reference conditions: temperature 273K, pressure 101.3kPa, dry gas, 5% oxygen.
""" + _filler("monitoring", 60)


@pytest.fixture
def permit_text():
    """A small permit with every section the specialised passes look for."""
    return SAMPLE_CONDITIONS + SAMPLE_TABLES + SAMPLE_IMPROVEMENTS + SAMPLE_ELVS


@pytest.fixture
def conditions_only_text():
    """A permit with numbered conditions but no tables, ICs or ELVs."""
    return SAMPLE_CONDITIONS


# =============================================================================
# Canned model output per pass
# =============================================================================


CONDITIONS_OUTPUT = {
    "obligations": [
        {
            "condition_reference": "1.1.1",
            "title": "Operate under a written management system",
            "description": "Manage and operate the activities in accordance with a written management system",
            "category": "OPERATIONAL",
            "frequency": "CONTINUOUS",
            "confidence_score": 0.9,
            "original_text": "The operator shall manage and operate the activities in accordance with a written management system",
            "page_reference": 1,
        },
        {
            "condition_reference": "2.3.6.1",
            "title": "Maintain complaints records",
            "description": "Maintain records of all complaints received concerning emissions from the site",
            "category": "RECORD_KEEPING",
            "confidence_score": 0.85,
            "original_text": "The operator shall maintain records of all complaints received",
            "page_reference": 1,
        },
    ],
    "metadata": {"extraction_confidence": 0.88},
}

TABLES_OUTPUT = {
    "obligations": [
        {
            "condition_reference": "Table S1.2",
            "title": "Follow operating techniques in the application",
            "description": "Operate in line with all sections of the application detailing operating techniques",
            "category": "OPERATIONAL",
            "confidence_score": 0.8,
        },
    ],
    "metadata": {"extraction_confidence": 0.82},
}

IMPROVEMENTS_OUTPUT = {
    "improvement_conditions": [
        {
            "ic_reference": "IC1",
            "description": "Submit a written noise management plan to the Environment Agency for approval",
            "deadline_text": "within 6 months of permit issue",
            "evidence_required": ["Noise management plan", "Submission receipt"],
        },
        {
            "ic_reference": "IC2",
            "description": "Review the surface water drainage system and report the findings",
            "deadline_date": "2021-12-31",
        },
    ],
}

ELV_OUTPUT = {
    "elvs": [
        {
            "emission_point": "A1",
            "parameter": "NOx",
            "parameter_name": "Oxides of nitrogen",
            "limit_value": "500",
            "unit": "mg/m3",
            "averaging_period": "Periodic over minimum 1-hour period",
            "reference_conditions": "273K, 101.3kPa, dry, 5% O2",
        },
        {
            "emission_point": "A1",
            "parameter": "CO",
            "parameter_name": "Carbon monoxide",
            "limit_value": "1400",
            "unit": "mg/m3",
            "averaging_period": "Annual",
        },
    ],
}

VERIFICATION_OUTPUT = {
    "missed_obligations": [
        {
            "condition_reference": "4.2.1",
            "title": "Submit annual report",
            "description": "Submit an annual environmental report to the regulator",
            "category": "REPORTING",
            "frequency": "ANNUAL",
            "confidence_score": 0.75,
        },
    ],
    "estimated_coverage": 0.9,
    "gaps": ["Table S3.2 monitoring frequencies"],
    "recommendations": ["Re-extract Table S3.2 row by row"],
}

# Each pass's user prompt opens with a fixed instruction
PASS_PROMPT_PREFIXES = {
    "conditions": "Extract all numbered conditions",
    "tables": "Extract EVERY row",
    "improvements": "Extract all improvement conditions",
    "elvs": "Extract EACH parameter",
    "verification": "Document (first 30k chars)",
}

PASS_OUTPUTS = {
    "conditions": CONDITIONS_OUTPUT,
    "tables": TABLES_OUTPUT,
    "improvements": IMPROVEMENTS_OUTPUT,
    "elvs": ELV_OUTPUT,
    "verification": VERIFICATION_OUTPUT,
}


@pytest.fixture
def pass_outputs():
    """Canned JSON document per pass name."""
    return copy.deepcopy(PASS_OUTPUTS)


def pass_of(call_kwargs: dict) -> str:
    """Which pass made an acompletion call, from its user prompt."""
    user_prompt = call_kwargs["messages"][1]["content"]
    for name, prefix in PASS_PROMPT_PREFIXES.items():
        if user_prompt.startswith(prefix):
            return name
    raise AssertionError(f"Unrecognised prompt: {user_prompt[:60]!r}")


@pytest.fixture
def routed_acompletion(mock_acompletion):
    """acompletion that answers each pass with its canned output.

    ``mock.failures`` maps a pass name to an exception that pass should get.
    """
    failures: dict[str, BaseException] = {}

    async def _respond(**kwargs):
        name = pass_of(kwargs)
        if name in failures:
            raise failures[name]
        return make_completion(json.dumps(PASS_OUTPUTS[name]))

    mock_acompletion.side_effect = _respond
    mock_acompletion.failures = failures
    return mock_acompletion


# =============================================================================
# Patterns
# =============================================================================


def make_pattern(pattern_id: str = "RECORDS_001", regex: str = r"records?\s+of\s+all\s+complaints",
                 category: str = "RECORD_KEEPING", **overrides) -> RulePattern:
    fields = {
        "pattern_id": pattern_id,
        "display_name": "Maintain complaints records",
        "matching": MatchingRules(regex_primary=regex),
        "extraction_template": ExtractionTemplate(category=category, evidence_types=["Complaints log"]),
        "applicability": Applicability(module_types=["MODULE_1"]),
    }
    fields.update(overrides)
    return RulePattern(**fields)


@pytest.fixture
def pattern_factory():
    return make_pattern
