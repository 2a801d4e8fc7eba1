"""Multi-Pass Extractor: passes 1-4 in parallel, then verification.

Flow for one document:

    conditions ─┐
    tables     ─┤ concurrent, bounded by the semaphore
    improvements┤ (a failed pass becomes an empty, failed PassResult)
    elvs       ─┘
          │ join (cancellation checked here)
          ▼
    verification (sees the merged list; on failure coverage defaults to 0.85)
          │
          ▼
    deduplicate (condition_reference + description prefix, higher confidence wins)

Progress goes to the best-effort reporter at 10%, 15%, +15% per finished
parallel pass, 80% and 95%.
"""

import asyncio
from dataclasses import dataclass, field

from permit_extractor.core.config import DedupConfig, PassConfig, ProgressConfig
from permit_extractor.core.errors import ExtractionCancelledError, error_from_exception
from permit_extractor.core.sinks import BestEffortReporter
from permit_extractor.passes.conditions_pass import ConditionsPass
from permit_extractor.passes.elv_pass import ELVPass
from permit_extractor.passes.improvements_pass import ImprovementsPass
from permit_extractor.passes.pass_base import ObligationPass, PassContext
from permit_extractor.passes.tables_pass import TablesPass
from permit_extractor.passes.verification_pass import VerificationPass
from permit_extractor.pydantic_models.obligations import (
    ExtractedObligation,
    PassResult,
    VerificationResult,
)

PARALLEL_PASSES: tuple[type[ObligationPass], ...] = (ConditionsPass, TablesPass, ImprovementsPass, ELVPass)


def deduplicate_obligations(
    obligations: list[ExtractedObligation],
    prefix_chars: int = DedupConfig.DESCRIPTION_PREFIX_CHARS,
) -> list[ExtractedObligation]:
    """Collapse records with the same dedup key.

    A later record replaces an earlier one only with strictly higher
    confidence; the survivor keeps the position of the first occurrence.
    """
    seen: dict[str, ExtractedObligation] = {}
    for obligation in obligations:
        key = obligation.dedup_key(prefix_chars)
        current = seen.get(key)
        if current is None or obligation.confidence_score > current.confidence_score:
            seen[key] = obligation
    return list(seen.values())


@dataclass
class MultiPassResult:
    """Joined output of the five passes."""

    obligations: list[ExtractedObligation]
    pass_results: dict[str, PassResult] = field(default_factory=dict)
    verification: VerificationResult | None = None

    @property
    def coverage(self) -> float:
        if self.verification is None:
            return PassConfig.DEFAULT_COVERAGE
        return self.verification.estimated_coverage

    @property
    def parallel_failed(self) -> bool:
        """Every one of passes 1-4 failed."""
        return bool(self.pass_results) and all(r.failed for r in self.pass_results.values())

    @property
    def all_failed(self) -> bool:
        """Nothing was extracted: passes 1-4 failed and verification found nothing."""
        return self.parallel_failed and not self.obligations

    @property
    def failed_passes(self) -> list[str]:
        failed = [name for name, r in self.pass_results.items() if r.failed]
        if self.verification is not None and self.verification.error is not None:
            failed.append("verification")
        return failed


class MultiPassExtractor:
    """Run the five extraction passes for one document.

    Usage:
        context = PassContext(client=client, logger=logger, document_id="doc-1")
        extractor = MultiPassExtractor(context, reporter)
        result = await extractor.extract(text)
    """

    def __init__(self, context: PassContext, reporter: BestEffortReporter | None = None,
                 passes: tuple[type[ObligationPass], ...] = PARALLEL_PASSES):
        self.context = context
        self.reporter = reporter or BestEffortReporter()
        self.passes = passes
        self.logger = context.logger
        self._completed = 0
        self._found = 0

    async def extract(self, document_text: str,
                      cancel_event: asyncio.Event | None = None) -> MultiPassResult:
        """Run passes 1-4 concurrently, then verification.

        Raises:
            ExtractionCancelledError: ``cancel_event`` was set before verification.
        """
        self._completed = 0
        self._found = 0
        self._progress(ProgressConfig.STARTED, "Starting multi-pass extraction...")
        self._check_cancelled(cancel_event)

        runners = [pass_cls(self.context) for pass_cls in self.passes]
        self.logger.start_phase("parallel passes", total=len(runners), model=self.context.model)
        self._progress(ProgressConfig.PARALLEL_STARTED, f"Pass 1-{len(runners)}: Running in parallel...")

        results = await asyncio.gather(
            *(self._run_tracked(runner, document_text) for runner in runners),
            return_exceptions=True,
        )

        pass_results: dict[str, PassResult] = {}
        merged: list[ExtractedObligation] = []
        for runner, result in zip(runners, results):
            if isinstance(result, Exception):
                result = self._record_failure(runner.name, result)
            pass_results[runner.name] = result
            merged.extend(result.obligations)

        failed = [name for name, r in pass_results.items() if r.failed]
        self.logger.phase_result("parallel passes", f"{len(merged)} obligations",
                                 failed=len(failed))
        self.logger.end_phase()

        self._check_cancelled(cancel_event)

        self._progress(ProgressConfig.VERIFYING, "Pass 5: Verification and gap analysis...")
        verification = await self._verify(document_text, merged)

        combined = merged + verification.additional_obligations
        obligations = deduplicate_obligations(combined)
        self.logger.milestone(
            f"{len(obligations)} obligations after dedup",
            raw=len(combined),
            coverage=f"{verification.estimated_coverage:.0%}",
        )
        self._progress(ProgressConfig.FINALIZING, f"Creating {len(obligations)} obligations...",
                       status="creating_obligations", found=len(obligations))

        return MultiPassResult(
            obligations=obligations,
            pass_results=pass_results,
            verification=verification,
        )

    async def _run_tracked(self, runner: ObligationPass, document_text: str) -> PassResult:
        """Run one parallel pass; report progress however it ends."""
        try:
            result = await runner.run(document_text)
        except Exception as e:
            result = self._record_failure(runner.name, e)
        self._completed += 1
        self._found += len(result.obligations)

        status = "failed" if result.failed else f"{len(result.obligations)} obligations"
        self.logger.tick(f"{runner.name}: {status}")
        self._progress(
            ProgressConfig.PARALLEL_STARTED + ProgressConfig.PER_PASS_STEP * self._completed,
            f"Pass {self._completed} complete: {runner.name} ({status})",
        )
        return result

    def _record_failure(self, pass_name: str, error: BaseException) -> PassResult:
        self.logger.error(f"[{pass_name}] Pass failed", exc=error)
        self.context.errors.add(error_from_exception(error, pass_name, self.context.document_id))
        return PassResult.failure(pass_name, error)

    async def _verify(self, document_text: str,
                      found: list[ExtractedObligation]) -> VerificationResult:
        try:
            return await VerificationPass(self.context, found).run(document_text)
        except Exception as e:
            self.logger.error("[verification] Pass failed, using default coverage", exc=e)
            self.context.errors.add(error_from_exception(e, "verification", self.context.document_id))
            return VerificationResult(
                estimated_coverage=PassConfig.DEFAULT_COVERAGE,
                error=f"{type(e).__name__}: {e}",
            )

    def _check_cancelled(self, cancel_event: asyncio.Event | None) -> None:
        if cancel_event is not None and cancel_event.is_set():
            self.logger.warning("Extraction cancelled", document=self.context.document_id)
            raise ExtractionCancelledError(
                f"Extraction of {self.context.document_id or 'document'} cancelled"
            )

    def _progress(self, progress: int, current_pass: str, status: str = "extracting_obligations",
                  found: int | None = None) -> None:
        self.reporter.progress(
            self.context.document_id,
            progress,
            current_pass,
            obligations_found=self._found if found is None else found,
            status=status,
        )
