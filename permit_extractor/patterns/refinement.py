"""Upkeep of library patterns after they are in use.

Promotion decides what enters the library; refinement decides what should
leave it or change:

    analyze_corrections       share of uses a reviewer had to correct
    find_declining_patterns   active patterns whose success rate is slipping
    RefinementService         drafts, activation after back-testing, rollback,
                              and batch deactivation of failing patterns

The library holds one version per pattern id. Earlier versions are kept by
the service so a bad activation can be rolled back.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum

from permit_extractor.core.config import RefinementConfig
from permit_extractor.patterns.store import PatternLibrary
from permit_extractor.pydantic_models.patterns import PatternPerformance, RulePattern

logger = logging.getLogger(__name__)


class Recommendation(str, Enum):
    DEPRECATE = "deprecate_or_major_revision"
    MINOR_REVISION = "minor_revision"
    NONE = "none"

    def __str__(self) -> str:
        return self.value


class CorrectionStatus(str, Enum):
    HIGH = "high_correction_rate"
    MODERATE = "moderate_correction_rate"
    ACCEPTABLE = "acceptable"
    NO_CORRECTIONS = "no_corrections"


class HealthStatus(str, Enum):
    CRITICAL = "CRITICAL"
    WARNING = "WARNING"
    HEALTHY = "HEALTHY"


@dataclass(frozen=True)
class CorrectionAnalysis:
    pattern_id: str
    usage_count: int
    correction_rate: float
    primary_correction_type: str
    recommendation: Recommendation
    status: CorrectionStatus


@dataclass(frozen=True)
class PatternHealth:
    pattern_id: str
    pattern_version: str
    usage_count: int
    success_rate: float
    false_positive_count: int
    correction_count: int
    override_rate: float
    health_status: HealthStatus


def analyze_corrections(pattern: RulePattern) -> CorrectionAnalysis:
    """How often reviewers corrected or rejected what this pattern extracted.

    Corrections and false positives both count against the pattern. Above
    HIGH_CORRECTION_RATE it should be deprecated or reworked; above
    MODERATE_CORRECTION_RATE it needs a minor revision.
    """
    perf = pattern.performance
    corrections = perf.correction_count + perf.false_positive_count
    if perf.usage_count == 0 or corrections == 0:
        return CorrectionAnalysis(
            pattern_id=pattern.pattern_id,
            usage_count=perf.usage_count,
            correction_rate=0.0,
            primary_correction_type="unknown",
            recommendation=Recommendation.NONE,
            status=CorrectionStatus.NO_CORRECTIONS,
        )

    rate = corrections / perf.usage_count
    if rate > RefinementConfig.HIGH_CORRECTION_RATE:
        recommendation, status = Recommendation.DEPRECATE, CorrectionStatus.HIGH
    elif rate > RefinementConfig.MODERATE_CORRECTION_RATE:
        recommendation, status = Recommendation.MINOR_REVISION, CorrectionStatus.MODERATE
    else:
        recommendation, status = Recommendation.NONE, CorrectionStatus.ACCEPTABLE

    return CorrectionAnalysis(
        pattern_id=pattern.pattern_id,
        usage_count=perf.usage_count,
        correction_rate=rate,
        primary_correction_type=_primary_correction_type(perf),
        recommendation=recommendation,
        status=status,
    )


def _primary_correction_type(perf: PatternPerformance) -> str:
    if perf.false_positive_count > perf.correction_count:
        return "false_positive"
    return "edited"


def find_declining_patterns(
    library: PatternLibrary,
    min_usage_count: int = RefinementConfig.MIN_USAGE_COUNT,
) -> list[PatternHealth]:
    """Active patterns below the success bar or overridden too often.

    Worst success rate first; ties go to the most corrected pattern.
    """
    declining = []
    for pattern in library.active_patterns():
        perf = pattern.performance
        if perf.usage_count < min_usage_count:
            continue

        override_rate = perf.correction_count / perf.usage_count
        if (perf.success_rate >= RefinementConfig.WARNING_SUCCESS_RATE
                and override_rate <= RefinementConfig.MAX_OVERRIDE_RATE):
            continue

        if perf.success_rate < RefinementConfig.CRITICAL_SUCCESS_RATE:
            health = HealthStatus.CRITICAL
        elif perf.success_rate < RefinementConfig.WARNING_SUCCESS_RATE:
            health = HealthStatus.WARNING
        else:
            health = HealthStatus.HEALTHY

        declining.append(PatternHealth(
            pattern_id=pattern.pattern_id,
            pattern_version=pattern.pattern_version,
            usage_count=perf.usage_count,
            success_rate=perf.success_rate,
            false_positive_count=perf.false_positive_count,
            correction_count=perf.correction_count,
            override_rate=override_rate,
            health_status=health,
        ))

    declining.sort(key=lambda h: (h.success_rate, -h.correction_count))
    return declining


def next_minor_version(version: str) -> str:
    """``1.2.3`` -> ``1.3.0``."""
    parts = version.split(".")
    try:
        major, minor = int(parts[0]), int(parts[1]) if len(parts) > 1 else 0
    except ValueError:
        raise ValueError(f"Not a semantic version: {version!r}") from None
    return f"{major}.{minor + 1}.0"


@dataclass
class RefinementReport:
    """Summary of one ``deactivate_failing`` batch."""

    evaluated: int = 0
    deactivated: dict[str, str] = field(default_factory=dict)
    needs_revision: list[str] = field(default_factory=list)
    dry_run: bool = False

    def to_dict(self) -> dict:
        return {
            "evaluated": self.evaluated,
            "deactivated": self.deactivated,
            "needs_revision": self.needs_revision,
            "dry_run": self.dry_run,
        }


class RefinementService:
    """Versioned changes to library patterns.

    Drafts are held here, not in the library, until back-testing shows they
    improve on the active version.
    """

    def __init__(self, library: PatternLibrary) -> None:
        self.library = library
        self._drafts: dict[str, RulePattern] = {}
        self._history: dict[str, list[RulePattern]] = {}

    def create_draft(self, pattern_id: str, **changes) -> RulePattern:
        """Inactive copy of the pattern with ``changes`` applied and a minor version bump.

        Raises:
            KeyError: If the pattern does not exist.
        """
        current = self.library.get(pattern_id)
        if current is None:
            raise KeyError(f"Unknown pattern: {pattern_id}")

        draft = current.model_copy(update={
            **changes,
            "pattern_version": next_minor_version(current.pattern_version),
            "performance": PatternPerformance(),
            "is_active": False,
        })
        self._drafts[pattern_id] = draft
        logger.info("Drafted %s %s -> %s", pattern_id, current.pattern_version, draft.pattern_version)
        return draft

    def get_draft(self, pattern_id: str) -> RulePattern | None:
        return self._drafts.get(pattern_id)

    def activate_draft(self, pattern_id: str, improvement_rate: float) -> bool:
        """Replace the active version with the draft if back-testing improved on it.

        A draft that does not clear MIN_IMPROVEMENT_RATE is discarded.

        Raises:
            KeyError: If there is no draft for the pattern.
        """
        draft = self._drafts.pop(pattern_id, None)
        if draft is None:
            raise KeyError(f"No draft for pattern: {pattern_id}")

        if improvement_rate < RefinementConfig.MIN_IMPROVEMENT_RATE:
            logger.info("Discarded draft %s %s: improvement %.1f%%",
                        pattern_id, draft.pattern_version, improvement_rate * 100)
            return False

        previous = self.library.replace(draft.model_copy(update={"is_active": True}))
        self._history.setdefault(pattern_id, []).append(previous)
        logger.info("Activated %s %s (was %s), improvement %.1f%%",
                    pattern_id, draft.pattern_version, previous.pattern_version, improvement_rate * 100)
        return True

    def versions(self, pattern_id: str) -> list[str]:
        """Versions that can be rolled back to, oldest first."""
        return [p.pattern_version for p in self._history.get(pattern_id, [])]

    def rollback(self, pattern_id: str, target_version: str, reason: str) -> RulePattern:
        """Make an earlier version the active one again.

        Raises:
            KeyError: If the pattern or the version is unknown.
        """
        history = self._history.get(pattern_id, [])
        for index, pattern in enumerate(history):
            if pattern.pattern_version == target_version:
                break
        else:
            raise KeyError(f"No version {target_version} of pattern {pattern_id}")

        restored = history.pop(index).model_copy(update={"is_active": True})
        replaced = self.library.replace(restored)
        history.append(replaced)
        logger.warning("Rolled back %s %s -> %s: %s",
                       pattern_id, replaced.pattern_version, target_version, reason)
        return restored

    def deactivate_failing(self, min_usage_count: int = RefinementConfig.MIN_USAGE_COUNT,
                           dry_run: bool = False) -> RefinementReport:
        """Deactivate active patterns that are critically unhealthy or heavily corrected.

        Patterns that only need a minor revision stay active and are listed
        in ``needs_revision``.
        """
        report = RefinementReport(dry_run=dry_run)
        critical = {
            h.pattern_id: h for h in find_declining_patterns(self.library, min_usage_count)
            if h.health_status == HealthStatus.CRITICAL
        }

        for pattern in self.library.active_patterns():
            if pattern.performance.usage_count < min_usage_count:
                continue
            report.evaluated += 1
            analysis = analyze_corrections(pattern)

            if pattern.pattern_id in critical:
                reason = f"Success rate {critical[pattern.pattern_id].success_rate:.1%}"
            elif analysis.recommendation == Recommendation.DEPRECATE:
                reason = f"Correction rate {analysis.correction_rate:.1%}"
            else:
                if analysis.recommendation == Recommendation.MINOR_REVISION:
                    report.needs_revision.append(pattern.pattern_id)
                continue

            report.deactivated[pattern.pattern_id] = reason
            if not dry_run:
                self.library.deactivate(pattern.pattern_id)

        logger.info("Refinement: %d evaluated, %d deactivated, %d need revision%s",
                    report.evaluated, len(report.deactivated), len(report.needs_revision),
                    " (dry run)" if dry_run else "")
        return report
