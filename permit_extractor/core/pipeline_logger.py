"""Run-level logging for document extractions.

Library modules log through ``logging.getLogger(__name__)``. This logger is
the narrative of one document run: which strategy was chosen, which passes
finished, and the totals at the end. Output goes to stdout and, when a log
directory is configured, to one file per document.

Typical run:

    Starting extraction: site_permit.txt (48,210 chars)
    PATTERN MATCHING
      Done (pattern matching): 0 matches [0.0s]
      -> No pattern match, running multi-pass extraction | model=gpt-4o-mini
    PARALLEL PASSES (4 items, gpt-4o-mini)
      [1/4] improvements: 3 obligations (4.1s)
      ...
    Extraction COMPLETE [41.2s]
"""

import logging
import re
import sys
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

LOGGER_NAME = "permit_extractor.pipeline"

_MAX_VALUE_CHARS = 50
_MAX_LIST_ITEMS = 5


@dataclass
class _Stage:
    name: str
    started: float
    total: int = 0
    done: int = 0

    def elapsed(self) -> float:
        return time.time() - self.started


class PipelineLogger:
    """Narrates one document run at a time."""

    def __init__(self, name: str = LOGGER_NAME, verbose: bool = False,
                 log_dir: str | Path | None = None):
        """
        Args:
            name: Logger name.
            verbose: Show DEBUG records on the console.
            log_dir: Directory for per-document log files. None disables file output.
        """
        self.logger = logging.getLogger(name)
        self.verbose = verbose
        self.log_dir = Path(log_dir) if log_dir else None
        self.log_file: Path | None = None
        self._stage: _Stage | None = None
        self._run_started: float | None = None

        if not any(isinstance(h, _ConsoleHandler) for h in self.logger.handlers):
            self.logger.addHandler(_ConsoleHandler())
        self.logger.setLevel(logging.DEBUG)
        self.logger.propagate = False
        self.set_verbose(verbose)

    def set_verbose(self, verbose: bool):
        self.verbose = verbose
        for handler in self.logger.handlers:
            if isinstance(handler, _ConsoleHandler):
                handler.setLevel(logging.DEBUG if verbose else logging.INFO)

    # =========================================================================
    # Run and stage boundaries
    # =========================================================================

    def start_pipeline(self, document: str, chars: int | None = None):
        """Open a document run; rolls the log file when file output is on."""
        self._run_started = time.time()
        self._stage = None
        if self.log_dir:
            self._open_log_file(document)

        size = f" ({chars:,} chars)" if chars is not None else ""
        self.logger.info(f"Starting extraction: {document}{size}")

    def end_pipeline(self, success: bool = True, stats: dict | None = None):
        if stats:
            self.summary(stats)
        outcome = "COMPLETE" if success else "FAILED"
        self.logger.info(f"Extraction {outcome} [{_duration(self._run_started)}]")
        if self.log_file:
            self.logger.info(f"Log: {self.log_file}")

    def start_phase(self, phase: str, total: int = 0, model: str = ""):
        """Open a stage: pattern matching, parallel passes or verification."""
        self._stage = _Stage(name=phase, started=time.time(), total=total)
        details = []
        if total:
            details.append(f"{total} items")
        if model:
            details.append(model.rsplit("/", 1)[-1])
        header = phase.upper()
        if details:
            header = f"{header} ({', '.join(details)})"
        self.logger.info(header)

    def end_phase(self):
        self._stage = None

    def tick(self, item: str = ""):
        """One item of the current stage finished: ``[3/4] tables: 12 obligations (8.3s)``."""
        stage = self._stage
        if stage is None or not stage.total:
            return
        stage.done += 1
        label = f" {item}" if item else ""
        self.logger.info(f"  [{stage.done}/{stage.total}]{label} ({stage.elapsed():.1f}s)")

    def phase_result(self, phase: str, result: str, **metrics):
        parts = [result]
        if metrics:
            parts.append(", ".join(f"{k}={v}" for k, v in metrics.items()))
        if self._stage is not None:
            parts.append(f"[{self._stage.elapsed():.1f}s]")
        self.logger.info(f"  Done ({phase}): {' | '.join(parts)}")

    def milestone(self, message: str, **data):
        """A decision worth seeing at a glance (strategy chosen, coverage)."""
        self.logger.info(f"  -> {_with_data(message, data)}")

    def summary(self, stats: dict):
        lines = ["SUMMARY"]
        for key, value in stats.items():
            if isinstance(value, dict):
                lines.append(f"  {key}:")
                lines.extend(f"    {k}: {v}" for k, v in value.items())
            else:
                lines.append(f"  {key}: {value}")
        self.logger.info("\n".join(lines))

    # =========================================================================
    # Free-form messages
    # =========================================================================

    def debug(self, message: str, **data):
        self.logger.debug(f"  {_with_data(message, data)}")

    def info(self, message: str, **data):
        self.logger.info(f"  {_with_data(message, data)}")

    def warning(self, message: str, **data):
        self.logger.warning(f"  WARN: {_with_data(message, data)}")

    def error(self, message: str, exc: BaseException | None = None, **data):
        text = _with_data(message, data)
        if exc is not None:
            text = f"{text} | {type(exc).__name__}: {exc}"
        self.logger.error(f"  ERROR: {text}")

    def _open_log_file(self, document: str):
        self.close_files()
        self.log_dir.mkdir(parents=True, exist_ok=True)
        stem = re.sub(r"[^\w.-]+", "_", Path(document).stem) or "document"
        self.log_file = self.log_dir / f"{stem}_{datetime.now():%Y%m%d_%H%M%S}.log"
        handler = logging.FileHandler(self.log_file, encoding="utf-8")
        handler.setFormatter(FileFormatter())
        handler.setLevel(logging.DEBUG)
        self.logger.addHandler(handler)

    def close_files(self):
        for handler in list(self.logger.handlers):
            if isinstance(handler, logging.FileHandler):
                handler.close()
                self.logger.removeHandler(handler)


class ConsoleFormatter(logging.Formatter):
    """Message only."""

    def format(self, record: logging.LogRecord) -> str:
        return record.getMessage()


class FileFormatter(logging.Formatter):
    """Millisecond timestamp and level, for reading runs back later."""

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created).strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]
        return f"{stamp} [{record.levelname:<7}] {record.getMessage()}"


class _ConsoleHandler(logging.StreamHandler):
    def __init__(self):
        super().__init__(sys.stdout)
        self.setFormatter(ConsoleFormatter())


def _duration(started: float | None) -> str:
    if started is None:
        return ""
    elapsed = time.time() - started
    minutes, seconds = divmod(elapsed, 60)
    if minutes:
        return f"{int(minutes)}m {seconds:.0f}s"
    return f"{seconds:.1f}s"


def _with_data(message: str, data: dict[str, Any]) -> str:
    """Append ``key=value`` pairs, shortening long strings and lists."""
    if not data:
        return message
    rendered = []
    for key, value in data.items():
        if isinstance(value, str) and len(value) > _MAX_VALUE_CHARS:
            value = value[:_MAX_VALUE_CHARS - 3] + "..."
        elif isinstance(value, list) and len(value) > _MAX_LIST_ITEMS:
            value = f"[{len(value)} items]"
        rendered.append(f"{key}={value}")
    return f"{message} | {', '.join(rendered)}"


_logger: PipelineLogger | None = None


def get_logger(verbose: bool = False, log_dir: str | Path | None = None) -> PipelineLogger:
    """Shared run logger. ``verbose`` and ``log_dir`` only ever switch things on."""
    global _logger
    if _logger is None:
        _logger = PipelineLogger(verbose=verbose, log_dir=log_dir)
        return _logger
    if verbose and not _logger.verbose:
        _logger.set_verbose(True)
    if log_dir and _logger.log_dir is None:
        _logger.log_dir = Path(log_dir)
    return _logger


def reset_logger():
    """Drop the shared logger and close its files (tests)."""
    global _logger
    if _logger is not None:
        _logger.close_files()
    _logger = None
