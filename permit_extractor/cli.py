"""CLI entrypoint for the permit obligation extractor."""

import argparse
import asyncio
import json
import logging
import os
import sys
import warnings
from pathlib import Path

# Suppress LiteLLM's direct prints (must be before import)
os.environ["LITELLM_LOG"] = "ERROR"

warnings.filterwarnings("ignore", message="Pydantic serializer warnings")
warnings.filterwarnings("ignore", message="Unclosed client session")
warnings.filterwarnings("ignore", category=ResourceWarning)

# Suppress noisy loggers (HTTP clients, LiteLLM internals)
for logger_name in ["httpx", "httpcore", "litellm", "LiteLLM",
                    "LiteLLM Proxy", "LiteLLM Router", "aiohttp", "asyncio"]:
    logging.getLogger(logger_name).setLevel(logging.ERROR)

import litellm  # noqa: E402 - must be after logging config
from dotenv import load_dotenv  # noqa: E402

from permit_extractor.core.config import DEFAULT_MODEL, AutoApprovalConfig, CredentialConfig  # noqa: E402
from permit_extractor.core.errors import MissingCredentialError  # noqa: E402

load_dotenv()
litellm.suppress_debug_info = True


def _load_library(patterns_path: str | None):
    from permit_extractor.patterns import PatternLibrary

    if patterns_path and Path(patterns_path).exists():
        return PatternLibrary.load(patterns_path)
    library = PatternLibrary.load_seed()
    if patterns_path:
        print(f"  Pattern file {patterns_path} not found, starting from the seed library")
    return library


async def extract(
    text_path: str,
    module: str = "MODULE_1",
    regulator: str | None = None,
    document_type: str | None = None,
    pages: int | None = None,
    patterns_path: str | None = None,
    output_dir: str = "outputs",
    model: str = DEFAULT_MODEL,
    verbose: bool = False,
) -> dict | None:
    """Extract obligations from a permit's extracted text.

    Args:
        text_path: Plain-text file (PDF already converted, [PAGE:N] markers kept).
        module: Module type used for pattern applicability.
        regulator: Regulator code (EA, SEPA, NRW, ...).
        document_type: Document type (PERMIT, CONSENT, ...).
        pages: Page count of the source PDF, for the timeout class.
        patterns_path: Pattern library JSON; usage counts are written back.
        output_dir: Directory for output files.
        model: Model for the extraction passes.
        verbose: Verbose output.

    Returns:
        Result dict, or None on failure.
    """
    from permit_extractor.core import CredentialPool, InMemoryCostLedger, LoggingProgressSink
    from permit_extractor.orchestrator import ExtractionOrchestrator
    from permit_extractor.pydantic_models.obligations import ExtractionContext

    text_path = Path(text_path)
    if not text_path.exists():
        print(f"Error: File not found: {text_path}")
        return None

    try:
        pool = CredentialPool.from_env()
    except MissingCredentialError:
        print(f"Error: {CredentialConfig.PRIMARY_ENV_VAR} not set")
        print(f"Set it in .env or export {CredentialConfig.PRIMARY_ENV_VAR}=...")
        return None

    output_dir = Path(output_dir)
    json_dir = output_dir / "json"
    logs_dir = output_dir / "logs"
    json_dir.mkdir(parents=True, exist_ok=True)
    logs_dir.mkdir(parents=True, exist_ok=True)

    document_text = text_path.read_text(encoding="utf-8")
    library = _load_library(patterns_path)

    print(f"\n{'='*50}")
    print(f"Extracting: {text_path.name}")
    print(f"{'='*50}")
    print(f"  Model: {model}")
    print(f"  Module: {module}")
    print(f"  Patterns: {len(library)}")
    print(f"  Fallback keys: {len(pool.fallbacks())}")
    print()

    ledger = InMemoryCostLedger()
    orchestrator = ExtractionOrchestrator(
        pool,
        library,
        progress_sink=LoggingProgressSink() if verbose else None,
        cost_ledger=ledger,
        model=model,
        verbose=verbose,
        log_dir=logs_dir,
    )
    context = ExtractionContext(
        module_types=[module],
        regulator=regulator,
        document_type=document_type,
        page_count=pages,
        file_size_bytes=text_path.stat().st_size,
        document_id=text_path.stem,
    )

    result = await orchestrator.extract(document_text, context)
    await orchestrator.drain_sinks()
    result_dict = result.model_dump(mode="json")

    output_file = json_dir / f"{text_path.stem}.json"
    with open(output_file, "w") as f:
        json.dump(result_dict, f, indent=2, ensure_ascii=False)
    print(f"\n[OUTPUT] {output_file}")

    if patterns_path and not result.used_model:
        library.save(patterns_path)

    if orchestrator.cost_tracker.call_count > 0:
        print(f"\n{orchestrator.cost_tracker.summary()}")

    if not result.succeeded:
        print(f"\n[ERROR] {result.error.category}: {result.error.message}")
        return None
    return result_dict


def discover(confirmed_path: str, candidates_path: str) -> int:
    """Mine a confirmed extraction into pattern candidates."""
    from permit_extractor.patterns import CandidateStore, PatternDiscovery
    from permit_extractor.pydantic_models.obligations import ConfirmedExtraction

    path = Path(confirmed_path)
    if not path.exists():
        print(f"Error: File not found: {path}")
        return 1

    extraction = ConfirmedExtraction.model_validate_json(path.read_text(encoding="utf-8"))
    store = CandidateStore.load(candidates_path)
    discovery = PatternDiscovery(store)

    counts = discovery.shadow_evaluate(extraction.obligations)
    queued = discovery.discover(extraction)
    store.save(candidates_path)

    print(f"Shadow usage recorded for {len(counts)} pending candidates")
    print(f"Queued {len(queued)} new candidates")
    for candidate in queued:
        pattern = candidate.suggested_pattern
        print(f"  {pattern.pattern_id}: {pattern.matching.regex_primary} "
              f"({candidate.sample_count} samples, {candidate.match_rate:.0%} match)")
    return 0


def promote(patterns_path: str, candidates_path: str,
            batch_size: int = AutoApprovalConfig.DEFAULT_BATCH_SIZE,
            dry_run: bool = False) -> int:
    """Run the auto-promotion job over pending candidates."""
    from permit_extractor.patterns import CandidateStore, PromotionService

    library = _load_library(patterns_path)
    store = CandidateStore.load(candidates_path)
    service = PromotionService(library, store)

    report = service.run_auto_promotion(batch_size=batch_size, dry_run=dry_run)
    if not dry_run:
        library.save(patterns_path)
        store.save(candidates_path)

    print(json.dumps(report.to_dict(), indent=2))
    return 0


def main():
    parser = argparse.ArgumentParser(
        description="Environmental Permit Obligation Extractor",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  permit-extract extract permits/site_permit.txt --regulator EA --pages 42
  permit-extract discover reviews/extraction_17.json --candidates candidates.json
  permit-extract promote --patterns patterns.json --candidates candidates.json --dry-run
        """,
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    p_extract = subparsers.add_parser("extract", help="Extract obligations from permit text")
    p_extract.add_argument("text", help="Path to the permit's extracted text")
    p_extract.add_argument("--module", default="MODULE_1", help="Module type (default: MODULE_1)")
    p_extract.add_argument("--regulator", default=None, help="Regulator code, e.g. EA")
    p_extract.add_argument("--document-type", default=None, help="Document type, e.g. PERMIT")
    p_extract.add_argument("--pages", type=int, default=None, help="Page count of the source PDF")
    p_extract.add_argument("--patterns", default=None,
                           help="Pattern library JSON (default: bundled seed patterns)")
    p_extract.add_argument("-o", "--output", default="outputs",
                           help="Output directory (default: outputs)")
    p_extract.add_argument("--model", default=DEFAULT_MODEL,
                           help=f"Model for the extraction passes (default: {DEFAULT_MODEL})")
    p_extract.add_argument("-v", "--verbose", action="store_true",
                           help="Verbose output with DEBUG level logging")

    p_discover = subparsers.add_parser("discover", help="Mine a confirmed extraction into candidates")
    p_discover.add_argument("confirmed", help="ConfirmedExtraction JSON file")
    p_discover.add_argument("--candidates", required=True, help="Candidate store JSON file")

    p_promote = subparsers.add_parser("promote", help="Auto-promote eligible candidates")
    p_promote.add_argument("--patterns", required=True, help="Pattern library JSON file")
    p_promote.add_argument("--candidates", required=True, help="Candidate store JSON file")
    p_promote.add_argument("--batch-size", type=int, default=AutoApprovalConfig.DEFAULT_BATCH_SIZE,
                           help=f"Candidates evaluated per run (default: {AutoApprovalConfig.DEFAULT_BATCH_SIZE})")
    p_promote.add_argument("--dry-run", action="store_true",
                           help="Report what would be promoted without changing anything")

    args = parser.parse_args()

    if args.command == "extract":
        result = asyncio.run(extract(
            text_path=args.text,
            module=args.module,
            regulator=args.regulator,
            document_type=args.document_type,
            pages=args.pages,
            patterns_path=args.patterns,
            output_dir=args.output,
            model=args.model,
            verbose=args.verbose,
        ))
        sys.exit(0 if result else 1)
    elif args.command == "discover":
        sys.exit(discover(args.confirmed, args.candidates))
    else:
        sys.exit(promote(args.patterns, args.candidates, args.batch_size, args.dry_run))


if __name__ == "__main__":
    main()
