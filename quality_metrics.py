"""
Quality counters for meal plan generation.

One aggregator lives per app and is handed to the pipeline. Each completed
week request bumps the counters exactly once; rates are derived when a
snapshot is read, never stored.
"""

import logging
import os
import threading
from dataclasses import dataclass
from typing import List, Optional

from schemas import DayOutcome, QualityBreakdown, QualityMetrics, QualitySummary

logger = logging.getLogger(__name__)

# Best to worst
OUTCOME_SEVERITY: tuple = ("perfect", "scaled", "regenerated", "out_of_range")


@dataclass(frozen=True)
class QualityThresholds:
    """Alerting thresholds (None disables a check)."""

    min_first_pass_quality: Optional[float] = float(os.getenv("MIN_FIRST_PASS_QUALITY", "0.7"))
    max_out_of_range_rate: Optional[float] = float(os.getenv("MAX_OUT_OF_RANGE_RATE", "0.1"))


def classify_week(summary: QualitySummary) -> DayOutcome:
    """A week is as good as its worst day."""
    worst = "perfect"
    for outcome in OUTCOME_SEVERITY:
        if getattr(summary, outcome) > 0:
            worst = outcome
    return worst


class QualityMetricsAggregator:
    """Thread-safe process-wide quality counters."""

    def __init__(self):
        self._lock = threading.Lock()
        self._metrics = QualityMetrics()

    def record_week(
        self,
        summary: QualitySummary,
        days: int = 7,
        regeneration_attempts: int = 0,
        regeneration_successes: int = 0,
        regeneration_failures: int = 0,
        generation_seconds: float = 0.0,
    ) -> DayOutcome:
        """Count one completed week.

        Args:
            summary: The week's per-day quality summary
            days: Days in the generated plan
            regeneration_attempts: Completion calls spent on regeneration
            regeneration_successes: Meals regeneration brought into range
            regeneration_failures: Meals regeneration could not fix
            generation_seconds: Wall time of the whole request

        Returns:
            The outcome the week was classified under
        """
        outcome = classify_week(summary)
        with self._lock:
            current = self._metrics
            breakdown = current.breakdown.model_copy(
                update={outcome: getattr(current.breakdown, outcome) + 1}
            )
            self._metrics = current.model_copy(
                update={
                    "total_weeks_generated": current.total_weeks_generated + 1,
                    "breakdown": breakdown,
                    "total_days_generated": current.total_days_generated + days,
                    "regeneration_attempts": current.regeneration_attempts + regeneration_attempts,
                    "regeneration_successes": current.regeneration_successes + regeneration_successes,
                    "regeneration_failures": current.regeneration_failures + regeneration_failures,
                    "total_generation_seconds": current.total_generation_seconds + generation_seconds,
                }
            )

        logger.info("📊 Week recorded as %s (%s)", outcome, summary.summary)
        return outcome

    def snapshot(self) -> QualityMetrics:
        with self._lock:
            return self._metrics.model_copy(deep=True)

    def summary(self) -> str:
        metrics = self.snapshot()
        return (
            f"{metrics.total_weeks_generated} week(s): "
            f"{metrics.first_pass_quality:.0%} perfect, {metrics.auto_fix_rate:.0%} scaled, "
            f"{metrics.regeneration_rate:.0%} regenerated, {metrics.out_of_range_rate:.0%} out of range; "
            f"regeneration success {metrics.regeneration_success_rate:.0%} "
            f"({metrics.regeneration_successes}/{metrics.regeneration_attempts} attempts)"
        )

    def quality_violations(self, thresholds: QualityThresholds = QualityThresholds()) -> List[str]:
        """List the thresholds the current rates break. Empty with no data."""
        metrics = self.snapshot()
        if metrics.total_weeks_generated == 0:
            return []

        violations = []
        if (
            thresholds.min_first_pass_quality is not None
            and metrics.first_pass_quality < thresholds.min_first_pass_quality
        ):
            violations.append(
                f"First-pass quality {metrics.first_pass_quality:.2f} is below "
                f"threshold {thresholds.min_first_pass_quality:.2f}"
            )
        if (
            thresholds.max_out_of_range_rate is not None
            and metrics.out_of_range_rate > thresholds.max_out_of_range_rate
        ):
            violations.append(
                f"Out-of-range rate {metrics.out_of_range_rate:.2f} exceeds "
                f"threshold {thresholds.max_out_of_range_rate:.2f}"
            )
        return violations

    def reset(self) -> None:
        with self._lock:
            self._metrics = QualityMetrics()
        logger.info("📊 Quality metrics reset")
