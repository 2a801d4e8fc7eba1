"""Best-effort sinks for progress updates and cost records.

Progress and cost ledgers live outside the pipeline (a dashboard, a billing
table). Their contract is simple: they must not throw and must not block.
The pipeline does not trust them to honour it, so every call goes through
BestEffortReporter:

- exceptions raised by a sink are logged and dropped
- a sink that returns an awaitable is scheduled as a task, never awaited
- ``drain()`` lets a caller that wants to (tests, the CLI) wait a bounded
  time for the scheduled tasks; extraction itself never waits on them
"""

import asyncio
import inspect
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol, runtime_checkable

from permit_extractor.core.config import ProgressConfig

logger = logging.getLogger(__name__)

# Strong references for scheduled sink calls; the event loop only keeps weak ones
_background: set[asyncio.Task] = set()


@dataclass(frozen=True)
class ProgressUpdate:
    """One status update for a document."""

    progress: int
    current_pass: str
    obligations_found: int = 0
    status: str = "extracting_obligations"
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@runtime_checkable
class ProgressSink(Protocol):
    def report(self, document_id: str, update: ProgressUpdate) -> Any:
        """Record a progress update. Must not throw, must not block."""


@runtime_checkable
class CostLedgerSink(Protocol):
    def record(self, document_id: str, usage: dict[str, Any]) -> Any:
        """Record token usage and cost for a document."""


class LoggingProgressSink:
    """Progress sink that writes updates to the log."""

    def report(self, document_id: str, update: ProgressUpdate) -> None:
        logger.info("[%s] %d%% %s (%d found)", document_id, update.progress,
                    update.current_pass, update.obligations_found)


class InMemoryProgressSink:
    """Collects updates per document. Handy for the CLI and tests."""

    def __init__(self) -> None:
        self.updates: dict[str, list[ProgressUpdate]] = {}

    def report(self, document_id: str, update: ProgressUpdate) -> None:
        self.updates.setdefault(document_id, []).append(update)


class InMemoryCostLedger:
    """Collects usage records per document."""

    def __init__(self) -> None:
        self.records: dict[str, list[dict[str, Any]]] = {}

    def record(self, document_id: str, usage: dict[str, Any]) -> None:
        self.records.setdefault(document_id, []).append(dict(usage))


class BestEffortReporter:
    """Fire-and-forget wrapper around an optional progress sink and cost ledger."""

    def __init__(self, progress_sink: ProgressSink | None = None,
                 cost_ledger: CostLedgerSink | None = None) -> None:
        self.progress_sink = progress_sink
        self.cost_ledger = cost_ledger
        self._pending: set[asyncio.Task] = set()

    def progress(self, document_id: str | None, progress: int, current_pass: str,
                 obligations_found: int = 0, status: str = "extracting_obligations") -> None:
        if self.progress_sink is None or not document_id:
            return
        update = ProgressUpdate(
            progress=progress,
            current_pass=current_pass,
            obligations_found=obligations_found,
            status=status,
        )
        self._call("progress", self.progress_sink.report, document_id, update)

    def cost(self, document_id: str | None, usage: dict[str, Any]) -> None:
        if self.cost_ledger is None or not document_id:
            return
        self._call("cost ledger", self.cost_ledger.record, document_id, usage)

    def _call(self, what: str, fn, *args) -> None:
        try:
            result = fn(*args)
        except Exception as e:
            logger.warning("Failed to record %s: %s", what, e)
            return
        if inspect.isawaitable(result):
            self._schedule(what, result)

    def _schedule(self, what: str, awaitable) -> None:
        async def _run():
            try:
                await awaitable
            except Exception as e:
                logger.warning("Failed to record %s: %s", what, e)

        try:
            task = asyncio.get_running_loop().create_task(_run())
        except RuntimeError:
            # No running loop: nothing can await it, close coroutines cleanly
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            logger.warning("Dropped async %s update: no running event loop", what)
            return
        for tasks in (self._pending, _background):
            tasks.add(task)
            task.add_done_callback(tasks.discard)

    async def drain(self, timeout: float = ProgressConfig.DRAIN_TIMEOUT_SECONDS) -> int:
        """Wait up to ``timeout`` for scheduled sink calls, then cancel the rest.

        Returns the number of calls cancelled.
        """
        if not self._pending:
            return 0
        _, stuck = await asyncio.wait(list(self._pending), timeout=timeout)
        for task in stuck:
            task.cancel()
        if stuck:
            logger.warning("Cancelled %d sink call(s) still running after %.1fs", len(stuck), timeout)
        return len(stuck)
