"""Extraction passes and the Multi-Pass Extractor that runs them."""

from permit_extractor.passes.pass_base import (
    ExtractionPass,
    ObligationPass,
    PassContext,
    build_obligation,
    normalize_obligation,
)
from permit_extractor.passes.sections import (
    SectionStrategy,
    find_elv_sections,
    find_improvement_section,
    find_table_sections,
)
from permit_extractor.passes.conditions_pass import ConditionsPass
from permit_extractor.passes.tables_pass import TablesPass
from permit_extractor.passes.improvements_pass import ImprovementsPass
from permit_extractor.passes.elv_pass import ELVPass, infer_monitoring_frequency
from permit_extractor.passes.verification_pass import VerificationPass
from permit_extractor.passes.multi_pass import (
    PARALLEL_PASSES,
    MultiPassExtractor,
    MultiPassResult,
    deduplicate_obligations,
)

__all__ = [
    # Base
    "ExtractionPass",
    "ObligationPass",
    "PassContext",
    "build_obligation",
    "normalize_obligation",
    # Section location
    "SectionStrategy",
    "find_elv_sections",
    "find_improvement_section",
    "find_table_sections",
    # Passes
    "ConditionsPass",
    "TablesPass",
    "ImprovementsPass",
    "ELVPass",
    "VerificationPass",
    "infer_monitoring_frequency",
    # Multi-pass
    "PARALLEL_PASSES",
    "MultiPassExtractor",
    "MultiPassResult",
    "deduplicate_obligations",
]
