"""
Lifecycle sweeper.

Ends sessions whose context has been idle longer than the configured
maximum, then purges run-state records older than the store's max age
(including records whose context was already gone).
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional

from omnichannel.conversation.session_manager import SessionManager
from omnichannel.errors import PersistenceFailureError

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    ended_sessions: list[str] = field(default_factory=list)
    removed_run_states: int = 0
    failures: list[str] = field(default_factory=list)


class LifecycleSweeper:
    """Bulk expiry across the context store and the run-state store."""

    def __init__(
        self,
        sessions: SessionManager,
        idle_max_age_ms: int = 4 * 60 * 60 * 1000,
        run_state_max_age_ms: Optional[int] = None,
        interval_s: float = 3600.0,
    ) -> None:
        self.sessions = sessions
        self.idle_max_age_ms = idle_max_age_ms
        self.run_state_max_age_ms = run_state_max_age_ms
        self.interval_s = interval_s
        self._stopped = asyncio.Event()

    async def sweep(self) -> SweepReport:
        """Run one sweep. A subject that fails to end is reported, not raised."""
        report = SweepReport()
        cutoff = self.sessions.now() - timedelta(milliseconds=self.idle_max_age_ms)

        for subject_id in self.sessions.idle_subjects(cutoff):
            try:
                await self.sessions.end_session(subject_id)
            except PersistenceFailureError as exc:
                logger.warning("Failed to end idle session '%s': %s", subject_id, exc)
                report.failures.append(subject_id)
            else:
                report.ended_sessions.append(subject_id)

        report.removed_run_states = await self.sessions.cleanup_run_states(
            self.run_state_max_age_ms
        )
        logger.info(
            "Sweep finished: %d idle session(s) ended, %d run-state(s) removed",
            len(report.ended_sessions), report.removed_run_states,
        )
        return report

    async def run_forever(self) -> None:
        """Sweep every ``interval_s`` seconds until ``stop()`` is called."""
        logger.info("Lifecycle sweeper started (interval=%.0fs)", self.interval_s)
        while not self._stopped.is_set():
            try:
                await self.sweep()
            except Exception:
                logger.exception("Sweep failed")
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self.interval_s)
            except asyncio.TimeoutError:
                continue
        logger.info("Lifecycle sweeper stopped")

    def stop(self) -> None:
        self._stopped.set()
