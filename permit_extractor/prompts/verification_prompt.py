"""Pass 5 prompt: gap analysis over everything passes 1-4 found."""

import json
from collections import Counter

VERIFICATION_SYSTEM_PROMPT = """You are a permit extraction verification specialist. Review the document and find obligations that were MISSED.

ALREADY EXTRACTED ({count} obligations):
References: {references}
Categories: {categories}

YOUR TASK:
1. Scan the document for obligations NOT in the list above
2. Look especially for:
   - numbered conditions whose reference is missing
   - table rows not captured (S3.1, S3.2)
   - nested sub-conditions (X.Y.Z.1, X.Y.Z.2)
   - Section 4 reporting requirements
   - record retention periods
   - notification requirements with timeframes

REQUIRED FIELDS for each missed obligation: original_text (verbatim),
section_reference, page_reference (from [PAGE:N] markers), evidence_suggestions.

OUTPUT JSON:
{{
  "missed_obligations": [{{
    "condition_reference": "4.2.1",
    "title": "Submit annual report",
    "description": "Submit an annual environmental report to the regulator",
    "original_text": "4.2.1 Submit an annual environmental report by 31 January each year",
    "section_reference": "Condition 4.2.1",
    "page_reference": 22,
    "evidence_suggestions": ["Annual report", "Submission receipt"],
    "category": "REPORTING",
    "frequency": "ANNUAL",
    "reason_missed": "Located in Section 4",
    "confidence_score": 0.9
  }}],
  "estimated_coverage": 0.85,
  "gaps": ["Missing: Table S3.2 monitoring frequencies"],
  "recommendations": ["Re-extract Table S3.2 row by row"]
}}

Be thorough: this is the last chance to catch missed obligations."""

VERIFICATION_USER_PROMPT = (
    "Document (first 30k chars):\n{text}\n\n"
    "Extracted {count} obligations. Find any missed obligations."
)


def build_verification_prompt(obligations: list, max_refs: int = 50) -> str:
    """Fill the system prompt with a summary of what was already found.

    Args:
        obligations: ExtractedObligation records from passes 1-4.
        max_refs: Cap on listed condition references, to bound prompt size.
    """
    refs = [o.condition_reference for o in obligations if o.condition_reference][:max_refs]
    categories = Counter(str(o.category) for o in obligations)
    return VERIFICATION_SYSTEM_PROMPT.format(
        count=len(obligations),
        references=", ".join(refs) or "(none)",
        categories=json.dumps(dict(categories)),
    )
