"""Progress tracking for weekly meal plan generation.

Phases only move forward:
    initializing → generating_days → auto_fixing → validating → complete
``error`` can be entered from any phase and is terminal.

Writers mutate under a lock and publish a fresh immutable GenerationStatus
after every change; readers only ever pick up the latest snapshot.
"""

import logging
import threading
import time
from typing import Callable, Dict, List, Optional

from errors import NutritionApiError
from schemas import AutoFixRecord, GenerationError, GenerationStatus, QualitySummary

logger = logging.getLogger(__name__)

PHASE_ORDER = ("initializing", "generating_days", "auto_fixing", "validating", "complete")
TERMINAL_PHASES = frozenset({"complete", "error"})


class InvalidPhaseTransition(Exception):
    """Raised when a tracker is asked to move backwards or out of a terminal phase."""


class ProgressTracker:
    """Lock-guarded progress counters for one generation session."""

    def __init__(self, session_id: str, clock: Callable[[], float] = time.time):
        self.session_id = session_id
        self._clock = clock
        self._lock = threading.Lock()
        self._phase = "initializing"
        self._days_generated = 0
        self._days_auto_fixed = 0
        self._days_regenerated = 0
        self._auto_fix_results: Dict[str, AutoFixRecord] = {}
        self._quality_summary: Optional[QualitySummary] = None
        self._error: Optional[GenerationError] = None
        self._started_at = clock()
        self._ended_at: Optional[float] = None
        self._snapshot = self._build_snapshot()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def status(self) -> GenerationStatus:
        return self._snapshot

    @property
    def phase(self) -> str:
        return self._snapshot.phase

    @property
    def is_terminal(self) -> bool:
        return self._snapshot.is_terminal

    def auto_fix_results(self) -> List[AutoFixRecord]:
        with self._lock:
            return list(self._auto_fix_results.values())

    # ------------------------------------------------------------------
    # Phase transitions
    # ------------------------------------------------------------------

    def advance(self, phase: str) -> None:
        """Move to a later phase.

        Raises:
            InvalidPhaseTransition: unknown phase, a non-forward move, or any
                move out of a terminal phase
        """
        if phase not in PHASE_ORDER:
            raise InvalidPhaseTransition(f"Unknown phase '{phase}'")

        with self._lock:
            if self._phase in TERMINAL_PHASES:
                raise InvalidPhaseTransition(
                    f"Session {self.session_id} is already {self._phase}; cannot move to {phase}"
                )
            if PHASE_ORDER.index(phase) <= PHASE_ORDER.index(self._phase):
                raise InvalidPhaseTransition(f"Cannot move from {self._phase} back to {phase}")

            self._phase = phase
            if phase == "complete":
                self._ended_at = self._clock()
            self._publish()

        logger.debug("📍 %s → %s", self.session_id, phase)

    def start_generating_days(self) -> None:
        self.advance("generating_days")

    def start_auto_fixing(self) -> None:
        self.advance("auto_fixing")

    def start_validating(self) -> None:
        self.advance("validating")

    def complete(self, quality_summary: QualitySummary) -> None:
        with self._lock:
            self._quality_summary = quality_summary
        self.advance("complete")

    def fail(self, error: NutritionApiError) -> None:
        """Enter the error phase. A no-op once the tracker is terminal."""
        with self._lock:
            if self._phase in TERMINAL_PHASES:
                return
            self._phase = "error"
            self._error = GenerationError(code=error.code, message=error.message, retryable=error.retryable)
            self._ended_at = self._clock()
            self._publish()

        logger.warning("❌ Session %s failed: %s (%s)", self.session_id, error.code, error.message)

    # ------------------------------------------------------------------
    # Counters
    # ------------------------------------------------------------------

    def increment_days_generated(self) -> None:
        with self._lock:
            self._days_generated += 1
            self._publish()

    def increment_days_regenerated(self) -> None:
        with self._lock:
            self._days_regenerated += 1
            self._publish()

    def record_day_within_tolerance(self, date: str) -> None:
        with self._lock:
            self._auto_fix_results[date] = AutoFixRecord(date=date, method="none")
            self._publish()

    def record_auto_fix_result(
        self,
        date: str,
        method: str,
        original_out_of_range: int,
        fixed_in_range: int,
        attempt_count: int = 0,
    ) -> None:
        """Record how a day's out-of-range meals were handled.

        The first record of a day counts toward daysAutoFixed; later records
        (a scaled day that also needed regeneration) replace it.
        """
        with self._lock:
            if date not in self._auto_fix_results or self._auto_fix_results[date].method == "none":
                self._days_auto_fixed += 1
            self._auto_fix_results[date] = AutoFixRecord(
                date=date,
                method=method,
                attempt_count=attempt_count,
                original_out_of_range=original_out_of_range,
                fixed_in_range=fixed_in_range,
            )
            self._publish()

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    def _publish(self) -> None:
        # Caller holds the lock
        self._snapshot = self._build_snapshot()

    def _build_snapshot(self) -> GenerationStatus:
        return GenerationStatus(
            session_id=self.session_id,
            phase=self._phase,
            days_generated=self._days_generated,
            days_auto_fixed=self._days_auto_fixed,
            days_regenerated=self._days_regenerated,
            quality_summary=self._quality_summary,
            error=self._error,
            started_at=self._started_at,
            ended_at=self._ended_at,
        )
