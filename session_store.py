"""In-process registry of running and recently finished generation sessions.

The store is injected into the pipeline (one per app), never a module global.
Finished sessions stay pollable for a short grace period and are then
removed; a periodic sweep drops anything older than the max age.
"""

import logging
import os
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from generation_progress import ProgressTracker

logger = logging.getLogger(__name__)

SESSION_MAX_AGE_SECONDS = float(os.getenv("SESSION_MAX_AGE_SECONDS", "3600"))
SESSION_GRACE_PERIOD_SECONDS = float(os.getenv("SESSION_GRACE_PERIOD_SECONDS", "3"))
SESSION_SWEEP_INTERVAL_SECONDS = float(os.getenv("SESSION_SWEEP_INTERVAL_SECONDS", "300"))


@dataclass
class GenerationSession:
    session_id: str
    user_id: str
    week_start_date: str
    tracker: ProgressTracker
    created_at: float
    cancelled: threading.Event = field(default_factory=threading.Event)

    @property
    def is_cancelled(self) -> bool:
        return self.cancelled.is_set()


class SessionStore:
    """Thread-safe sessionId → GenerationSession map."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._lock = threading.Lock()
        self._sessions: Dict[str, GenerationSession] = {}
        self._timers: Dict[str, threading.Timer] = {}

    def create(
        self,
        user_id: str,
        week_start_date: str,
        tracker: Optional[ProgressTracker] = None,
    ) -> GenerationSession:
        """Register a new session under a fresh uuid4 id."""
        session_id = str(uuid.uuid4())
        session = GenerationSession(
            session_id=session_id,
            user_id=user_id,
            week_start_date=week_start_date,
            tracker=tracker or ProgressTracker(session_id, clock=self._clock),
            created_at=self._clock(),
        )
        with self._lock:
            self._sessions[session_id] = session
        logger.info("🆕 Session %s created (user=%s week=%s)", session_id, user_id, week_start_date)
        return session

    def get(self, session_id: str) -> Optional[GenerationSession]:
        with self._lock:
            return self._sessions.get(session_id)

    def remove(self, session_id: str) -> bool:
        with self._lock:
            timer = self._timers.pop(session_id, None)
            removed = self._sessions.pop(session_id, None) is not None
        if timer is not None:
            timer.cancel()
        return removed

    def all_sessions(self) -> List[GenerationSession]:
        with self._lock:
            return list(self._sessions.values())

    def clear(self) -> None:
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
            self._sessions.clear()
        for timer in timers:
            timer.cancel()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def sweep(self, max_age_seconds: float = SESSION_MAX_AGE_SECONDS) -> int:
        """Drop sessions older than ``max_age_seconds``.

        Returns:
            Number of sessions removed
        """
        cutoff = self._clock() - max_age_seconds
        with self._lock:
            stale = [sid for sid, session in self._sessions.items() if session.created_at < cutoff]
        removed = sum(1 for sid in stale if self.remove(sid))
        if removed:
            logger.info("🧹 Swept %d stale generation session(s)", removed)
        return removed

    def schedule_removal(self, session_id: str, delay: float = SESSION_GRACE_PERIOD_SECONDS) -> None:
        """Remove a finished session after ``delay`` seconds so late polls still see it."""
        if delay <= 0:
            self.remove(session_id)
            return

        timer = threading.Timer(delay, self.remove, args=(session_id,))
        timer.daemon = True
        with self._lock:
            if session_id not in self._sessions:
                return
            previous = self._timers.pop(session_id, None)
            self._timers[session_id] = timer
        if previous is not None:
            previous.cancel()
        timer.start()
