"""In-memory stores for the pattern library and pattern candidates.

Both stores are shared by every concurrent document pipeline and by the
background discovery/promotion job, so they are explicit objects injected
into the components that need them, each guarded by one lock. Records are
pydantic models that are replaced wholesale under the lock (read, copy with
update, write back in one critical section), so concurrent counter updates
never lose increments.

Persistence is a JSON file per store (``load`` / ``save``); anything richer
belongs to the external persistence layer.
"""

import json
import logging
import threading
from datetime import datetime, timezone
from importlib import resources
from pathlib import Path

from pydantic import TypeAdapter

from permit_extractor.core.errors import PatternExistsError
from permit_extractor.pydantic_models.patterns import (
    CandidateStatus,
    PatternCandidate,
    RulePattern,
)

logger = logging.getLogger(__name__)

_PATTERN_LIST = TypeAdapter(list[RulePattern])
_CANDIDATE_LIST = TypeAdapter(list[PatternCandidate])

SEED_RESOURCE = "seed_patterns.json"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class PatternLibrary:
    """Thread-safe RulePattern store."""

    def __init__(self, patterns: list[RulePattern] | None = None) -> None:
        self._lock = threading.Lock()
        self._patterns: dict[str, RulePattern] = {}
        for pattern in patterns or []:
            self.add(pattern)

    def __len__(self) -> int:
        with self._lock:
            return len(self._patterns)

    def __contains__(self, pattern_id: str) -> bool:
        with self._lock:
            return pattern_id in self._patterns

    def add(self, pattern: RulePattern) -> RulePattern:
        """Insert a new pattern.

        Raises:
            PatternExistsError: If the id is taken.
        """
        with self._lock:
            if pattern.pattern_id in self._patterns:
                raise PatternExistsError(f"Pattern {pattern.pattern_id} already exists")
            self._patterns[pattern.pattern_id] = pattern
        return pattern

    def get(self, pattern_id: str) -> RulePattern | None:
        with self._lock:
            return self._patterns.get(pattern_id)

    def remove(self, pattern_id: str) -> RulePattern | None:
        with self._lock:
            return self._patterns.pop(pattern_id, None)

    def all(self) -> list[RulePattern]:
        """Every pattern, ordered by priority then id."""
        with self._lock:
            patterns = list(self._patterns.values())
        return sorted(patterns, key=lambda p: (p.priority, p.pattern_id))

    def active_patterns(self) -> list[RulePattern]:
        return [p for p in self.all() if p.is_active]

    def deactivate(self, pattern_id: str) -> RulePattern:
        with self._lock:
            pattern = self._require(pattern_id)
            updated = pattern.model_copy(update={"is_active": False})
            self._patterns[pattern_id] = updated
        logger.info("Deactivated pattern %s", pattern_id)
        return updated

    def replace(self, pattern: RulePattern) -> RulePattern:
        """Swap in another version of an existing pattern; returns the one replaced.

        Raises:
            KeyError: If the pattern does not exist.
        """
        with self._lock:
            previous = self._require(pattern.pattern_id)
            self._patterns[pattern.pattern_id] = pattern
        return previous

    def record_usage(self, pattern_id: str, success: bool = True) -> RulePattern:
        """Count one use of a pattern. Atomic read-modify-write.

        Raises:
            KeyError: If the pattern does not exist.
        """
        with self._lock:
            pattern = self._require(pattern_id)
            updated = pattern.model_copy(
                update={"performance": pattern.performance.record(success, _now())}
            )
            self._patterns[pattern_id] = updated
            return updated

    def record_feedback(self, pattern_id: str, corrected: bool = False,
                        false_positive: bool = False) -> RulePattern:
        """Count a user correction or a false positive against a pattern."""
        with self._lock:
            pattern = self._require(pattern_id)
            perf = pattern.performance
            updated = pattern.model_copy(update={"performance": perf.model_copy(update={
                "correction_count": perf.correction_count + (1 if corrected else 0),
                "false_positive_count": perf.false_positive_count + (1 if false_positive else 0),
            })})
            self._patterns[pattern_id] = updated
            return updated

    def _require(self, pattern_id: str) -> RulePattern:
        try:
            return self._patterns[pattern_id]
        except KeyError:
            raise KeyError(f"Unknown pattern: {pattern_id}") from None

    # -- persistence --

    @classmethod
    def load(cls, path: str | Path) -> "PatternLibrary":
        path = Path(path)
        patterns = _PATTERN_LIST.validate_json(path.read_text(encoding="utf-8"))
        logger.info("Loaded %d patterns from %s", len(patterns), path)
        return cls(patterns)

    @classmethod
    def load_seed(cls) -> "PatternLibrary":
        """Library pre-filled with the bundled starter patterns."""
        raw = resources.files("permit_extractor.patterns").joinpath(SEED_RESOURCE).read_text(encoding="utf-8")
        return cls(_PATTERN_LIST.validate_json(raw))

    def save(self, path: str | Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = _PATTERN_LIST.dump_python(self.all(), mode="json")
        path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")


class CandidateStore:
    """Thread-safe PatternCandidate store.

    Status changes are compare-and-set: ``mark_approved`` only succeeds on a
    PENDING_REVIEW candidate, so two concurrent promotions cannot both win.
    """

    def __init__(self, candidates: list[PatternCandidate] | None = None) -> None:
        self._lock = threading.Lock()
        self._candidates: dict[str, PatternCandidate] = {}
        for candidate in candidates or []:
            self.add(candidate)

    def __len__(self) -> int:
        with self._lock:
            return len(self._candidates)

    def add(self, candidate: PatternCandidate) -> PatternCandidate:
        with self._lock:
            if candidate.candidate_id in self._candidates:
                raise PatternExistsError(f"Candidate {candidate.candidate_id} already exists")
            self._candidates[candidate.candidate_id] = candidate
        return candidate

    def get(self, candidate_id: str) -> PatternCandidate | None:
        with self._lock:
            return self._candidates.get(candidate_id)

    def all(self) -> list[PatternCandidate]:
        with self._lock:
            return list(self._candidates.values())

    def pending(self) -> list[PatternCandidate]:
        return [c for c in self.all() if c.status == CandidateStatus.PENDING_REVIEW]

    def find_by_regex(self, regex: str) -> PatternCandidate | None:
        """Any candidate, pending or approved, with this primary regex."""
        for candidate in self.all():
            if candidate.suggested_pattern.matching.regex_primary == regex:
                return candidate
        return None

    def record_usage(self, candidate_id: str, success: bool) -> PatternCandidate:
        """Count one shadow use of a pending candidate. Atomic."""
        with self._lock:
            candidate = self._require(candidate_id)
            pattern = candidate.suggested_pattern
            updated = candidate.model_copy(update={
                "suggested_pattern": pattern.model_copy(
                    update={"performance": pattern.performance.record(success, _now())}
                ),
            })
            self._candidates[candidate_id] = updated
            return updated

    def replace_pattern(self, candidate_id: str, pattern: RulePattern) -> PatternCandidate:
        """Swap the suggested pattern of a pending candidate (e.g. anonymized).

        Raises:
            ValueError: If the candidate is no longer pending.
        """
        with self._lock:
            candidate = self._require(candidate_id)
            if candidate.status != CandidateStatus.PENDING_REVIEW:
                raise ValueError(f"Candidate {candidate_id} is {candidate.status}, not editable")
            updated = candidate.model_copy(update={"suggested_pattern": pattern})
            self._candidates[candidate_id] = updated
            return updated

    def mark_approved(self, candidate_id: str, pattern_id: str) -> PatternCandidate | None:
        """PENDING_REVIEW -> APPROVED, linked to ``pattern_id``.

        Returns:
            The updated candidate, or None if it was not pending any more.
        """
        with self._lock:
            candidate = self._require(candidate_id)
            if candidate.status != CandidateStatus.PENDING_REVIEW:
                return None
            updated = candidate.model_copy(update={
                "status": CandidateStatus.APPROVED,
                "created_pattern_id": pattern_id,
                "reviewed_at": _now(),
            })
            self._candidates[candidate_id] = updated
            return updated

    def _require(self, candidate_id: str) -> PatternCandidate:
        try:
            return self._candidates[candidate_id]
        except KeyError:
            raise KeyError(f"Unknown candidate: {candidate_id}") from None

    # -- persistence --

    @classmethod
    def load(cls, path: str | Path) -> "CandidateStore":
        path = Path(path)
        if not path.exists():
            return cls()
        candidates = _CANDIDATE_LIST.validate_json(path.read_text(encoding="utf-8"))
        logger.info("Loaded %d pattern candidates from %s", len(candidates), path)
        return cls(candidates)

    def save(self, path: str | Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = _CANDIDATE_LIST.dump_python(self.all(), mode="json")
        path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
