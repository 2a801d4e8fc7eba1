"""System and user prompts for the extraction passes.

One module per pass. User prompts are ``str.format`` templates with a
``{text}`` slot for the selected document text.
"""

from permit_extractor.prompts.conditions_prompt import CONDITIONS_SYSTEM_PROMPT, CONDITIONS_USER_PROMPT
from permit_extractor.prompts.tables_prompt import TABLE_SEPARATOR, TABLES_SYSTEM_PROMPT, TABLES_USER_PROMPT
from permit_extractor.prompts.improvements_prompt import IMPROVEMENTS_SYSTEM_PROMPT, IMPROVEMENTS_USER_PROMPT
from permit_extractor.prompts.elv_prompt import ELV_SECTION_SEPARATOR, ELV_SYSTEM_PROMPT, ELV_USER_PROMPT
from permit_extractor.prompts.verification_prompt import (
    VERIFICATION_SYSTEM_PROMPT,
    VERIFICATION_USER_PROMPT,
    build_verification_prompt,
)

__all__ = [
    # Pass 1
    "CONDITIONS_SYSTEM_PROMPT",
    "CONDITIONS_USER_PROMPT",
    # Pass 2
    "TABLES_SYSTEM_PROMPT",
    "TABLES_USER_PROMPT",
    "TABLE_SEPARATOR",
    # Pass 3
    "IMPROVEMENTS_SYSTEM_PROMPT",
    "IMPROVEMENTS_USER_PROMPT",
    # Pass 4
    "ELV_SYSTEM_PROMPT",
    "ELV_USER_PROMPT",
    "ELV_SECTION_SEPARATOR",
    # Pass 5
    "VERIFICATION_SYSTEM_PROMPT",
    "VERIFICATION_USER_PROMPT",
    "build_verification_prompt",
]
