"""Extraction orchestrator: pattern library first, model passes as fallback.

High-level flow for one document:

    PatternMatcher ──(any match >= 0.90)──► obligations from patterns (free)
          │
          └─(no match)──► MultiPassExtractor ──► grounding ──► obligations (paid)

Either way the caller gets an ExtractionResult. Failures inside the
pipeline (every pass failed, an unexpected bug) come back as a result with
``error`` set and no obligations; the only exceptions that escape are
``MissingCredentialError`` when the credential pool is built and
``ExtractionCancelledError`` when the caller cancels.
"""

import asyncio
import time
from dataclasses import dataclass, field
from pathlib import Path

from permit_extractor.core import (
    BestEffortReporter,
    CostLedgerSink,
    CostTracker,
    CredentialPool,
    ExtractionCancelledError,
    LLMClient,
    PipelineErrors,
    ProgressSink,
    RetryPolicy,
    error_from_exception,
    get_logger,
    ground_obligations,
)
from permit_extractor.core.config import DEFAULT_MODEL, ConcurrencyConfig, MatchThresholds, ProgressConfig
from permit_extractor.passes import MultiPassExtractor, MultiPassResult, PassContext
from permit_extractor.passes.pass_base import coerce_enum
from permit_extractor.patterns import PatternLibrary, PatternMatcher
from permit_extractor.pydantic_models.obligations import (
    ConditionType,
    ErrorDetail,
    ExtractedObligation,
    ExtractionContext,
    ExtractionResult,
    Frequency,
    ObligationCategory,
    TokenUsage,
)
from permit_extractor.pydantic_models.patterns import PatternMatch


class ExtractionOrchestrator:
    """Entry point for extracting obligations from permits.

    The credential pool and pattern library are shared across documents and
    injected by the caller. Everything else (cost tracker, error collector,
    sink reporter, semaphore) is created per ``extract`` call, so one
    orchestrator can serve several documents concurrently.

    Usage:
        pool = CredentialPool.from_env()
        library = PatternLibrary.load_seed()
        orchestrator = ExtractionOrchestrator(pool, library)
        result = await orchestrator.extract(text, ExtractionContext(document_id="doc-1"))
    """

    def __init__(
        self,
        pool: CredentialPool,
        library: PatternLibrary,
        progress_sink: ProgressSink | None = None,
        cost_ledger: CostLedgerSink | None = None,
        model: str = DEFAULT_MODEL,
        max_concurrent: int = ConcurrencyConfig.MAX_CONCURRENT_PASSES,
        verbose: bool = False,
        log_dir: str | Path | None = None,
    ):
        """Initialize the orchestrator.

        Args:
            pool: Shared credential pool (primary + fallbacks).
            library: Shared pattern library, updated with usage counts.
            progress_sink: Optional best-effort progress receiver.
            cost_ledger: Optional best-effort cost receiver.
            model: Model for every pass.
            max_concurrent: Max concurrent model calls for passes 1-4.
            verbose: If True, print detailed logs.
            log_dir: Directory for per-document log files.
        """
        self.pool = pool
        self.library = library
        self.progress_sink = progress_sink
        self.cost_ledger = cost_ledger
        self.model = model
        self.max_concurrent = max_concurrent
        self.logger = get_logger(verbose=verbose, log_dir=log_dir)

        # Snapshot of the most recently finished run, for get_stats / get_errors
        self._last_run = _Run()

    async def extract(
        self,
        document_text: str,
        context: ExtractionContext | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> ExtractionResult:
        """Extract obligations from the text of one permit.

        Sink calls are fire-and-forget: this returns without waiting for
        async progress sinks or cost ledgers to finish.

        Raises:
            ExtractionCancelledError: ``cancel_event`` was set between passes.
        """
        context = context or ExtractionContext()
        started = time.monotonic()
        run = _Run(reporter=BestEffortReporter(self.progress_sink, self.cost_ledger))

        label = context.permit_reference or context.document_id or "document"
        self.logger.start_pipeline(label, chars=len(document_text))

        try:
            result = await self._run(document_text, context, run, cancel_event)
        except ExtractionCancelledError:
            self._last_run = run
            self.logger.end_pipeline(success=False)
            raise
        except Exception as e:
            self.logger.error("Pipeline failed", exc=e)
            record = error_from_exception(e, "pipeline", context.document_id)
            run.errors.add(record)
            result = ExtractionResult(
                used_model=run.cost_tracker.call_count > 0,
                error=ErrorDetail(category=record.category.value, message=record.message),
            )

        usage = run.cost_tracker.token_usage()
        if run.cost_tracker.call_count:
            run.reporter.cost(context.document_id, usage)
        run.result = result.model_copy(update={
            "timing_ms": int((time.monotonic() - started) * 1000),
            "token_usage": TokenUsage(**usage),
        })
        self._last_run = run

        self.logger.end_pipeline(success=run.result.succeeded, stats=run.stats())
        return run.result

    async def _run(
        self,
        document_text: str,
        context: ExtractionContext,
        run: "_Run",
        cancel_event: asyncio.Event | None,
    ) -> ExtractionResult:
        self.logger.start_phase("pattern matching")
        matches = PatternMatcher(self.library, run.errors).find_matches(document_text, context)
        self.logger.phase_result("pattern matching", f"{len(matches)} matches")
        self.logger.end_phase()

        if matches and matches[0].score >= MatchThresholds.MIN_RETURN_SCORE:
            self.logger.milestone("Using pattern library (no model calls)",
                                  patterns=len({m.pattern_id for m in matches}))
            return self._from_patterns(matches)

        self.logger.milestone("No pattern match, running multi-pass extraction", model=self.model)
        pass_context = PassContext(
            client=LLMClient(self.pool, cost_tracker=run.cost_tracker),
            logger=self.logger,
            errors=run.errors,
            semaphore=asyncio.Semaphore(self.max_concurrent),
            policy=RetryPolicy.for_document(context.page_count, context.file_size_bytes),
            document_id=context.document_id,
            model=self.model,
        )
        multi = await MultiPassExtractor(pass_context, run.reporter).extract(document_text, cancel_event)
        return self._from_passes(multi, document_text)

    def _from_patterns(self, matches: list[PatternMatch]) -> ExtractionResult:
        obligations: list[ExtractedObligation] = []
        seen: set[tuple[str, str]] = set()
        for match in matches:
            key = (match.pattern_id, match.matched_text)
            if key in seen:
                continue
            seen.add(key)
            obligations.append(self._obligation_from_match(match))

        for pattern_id in dict.fromkeys(m.pattern_id for m in matches):
            self.library.record_usage(pattern_id, success=True)

        return ExtractionResult(
            obligations=obligations,
            used_model=False,
            rule_matches=matches,
        )

    def _obligation_from_match(self, match: PatternMatch) -> ExtractedObligation:
        data = match.extracted_data
        pattern = self.library.get(match.pattern_id)
        title = pattern.display_name if pattern is not None else match.matched_text[:60]
        return ExtractedObligation(
            title=title,
            description=match.matched_text,
            category=coerce_enum(ObligationCategory, data.get("category"), ObligationCategory.OPERATIONAL),
            frequency=coerce_enum(Frequency, data.get("frequency"), None),
            deadline_relative=data.get("deadline_relative"),
            is_subjective=bool(data.get("is_subjective")),
            condition_type=coerce_enum(ConditionType, data.get("condition_type"), ConditionType.STANDARD),
            confidence_score=min(MatchThresholds.BASE_PATTERN_CONFIDENCE + match.confidence_boost, 1.0),
            evidence_suggestions=list(data.get("evidence_types") or []),
            provenance=f"pattern:{match.pattern_id}",
            original_text=match.matched_text,
            metadata={"pattern_version": match.pattern_version, "match_score": match.score},
        )

    def _from_passes(self, multi: MultiPassResult, document_text: str) -> ExtractionResult:
        if multi.all_failed:
            failed = multi.failed_passes
            self.logger.error(f"All {len(failed)} extraction passes failed")
            return ExtractionResult(
                used_model=True,
                pass_results=multi.pass_results,
                verification=multi.verification,
                error=ErrorDetail(
                    category="all_passes_failed",
                    message="Every extraction pass failed; see failed_passes for details",
                    failed_passes=failed,
                ),
            )
        if multi.parallel_failed:
            self.logger.warning("Only verification produced obligations",
                                failed=multi.failed_passes, found=len(multi.obligations))

        obligations = ground_obligations(multi.obligations, document_text)
        return ExtractionResult(
            obligations=obligations,
            used_model=True,
            coverage_score=multi.coverage,
            pass_results=multi.pass_results,
            verification=multi.verification,
        )

    def get_stats(self) -> dict:
        """Statistics for the most recently finished run."""
        return self._last_run.stats()

    @property
    def cost_tracker(self) -> CostTracker:
        """Token and cost accounting for the most recently finished run."""
        return self._last_run.cost_tracker

    def get_errors(self) -> PipelineErrors:
        """Errors collected during the most recently finished run."""
        return self._last_run.errors

    async def drain_sinks(self, timeout: float = ProgressConfig.DRAIN_TIMEOUT_SECONDS) -> int:
        """Give the last run's async sink calls up to ``timeout`` to finish."""
        return await self._last_run.reporter.drain(timeout)


@dataclass
class _Run:
    """Per-document state of one ``extract`` call."""

    errors: PipelineErrors = field(default_factory=PipelineErrors)
    cost_tracker: CostTracker = field(default_factory=CostTracker)
    reporter: BestEffortReporter = field(default_factory=BestEffortReporter)
    result: ExtractionResult | None = None

    def stats(self) -> dict:
        result = self.result
        stats = {
            "obligations": len(result.obligations) if result else 0,
            "used_model": result.used_model if result else False,
            "pattern_matches": len(result.rule_matches) if result else 0,
            "coverage": result.coverage_score if result else None,
            "api_calls": self.cost_tracker.call_count,
            "cost_usd": round(self.cost_tracker.total_cost, 4),
            "errors": self.errors.summary(),
        }
        if result and result.pass_results:
            stats["passes"] = {
                name: ("failed" if r.failed else f"{len(r.obligations)} obligations")
                for name, r in result.pass_results.items()
            }
        return stats
