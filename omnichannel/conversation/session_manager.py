"""
Session manager: the single access path to both kinds of session state.

- Conversation context lives in memory (``ContextStore``).
- Run-state checkpoints live in a durable ``RunStateStore``.

Nothing outside this class touches either store directly, so locking or
a different storage split can be added here without changing callers.
"""

import logging
from datetime import datetime
from typing import Optional

from omnichannel.conversation.context_store import ContextStore, Now, utc_now
from omnichannel.conversation.events import (
    ConversationEnded,
    ConversationStarted,
    EscalationRaised,
    EventBus,
)
from omnichannel.persistence.base import SLOW_OPERATION_THRESHOLD_MS, RunStateStore, timed_operation
from omnichannel.schemas.context_schema import ConversationContext, SessionInfo

logger = logging.getLogger(__name__)


class SessionManager:
    """Owns conversation contexts and run-state checkpoints per subject."""

    def __init__(
        self,
        run_state_store: RunStateStore,
        context_store: Optional[ContextStore] = None,
        events: Optional[EventBus] = None,
        slow_operation_threshold_ms: int = SLOW_OPERATION_THRESHOLD_MS,
        now: Now = utc_now,
    ) -> None:
        self.run_states = run_state_store
        self.contexts = context_store or ContextStore(now=now)
        self.events = events or EventBus()
        self._slow_ms = slow_operation_threshold_ms
        self._now = now

    def now(self) -> datetime:
        return self._now()

    # --- Context ---

    def has_context(self, subject_id: str) -> bool:
        return subject_id in self.contexts

    def get_context(
        self, subject_id: str, agent_name: str = "", channel: str = "unknown"
    ) -> ConversationContext:
        """Return the subject's context, creating it (and announcing it) if absent."""
        is_new = subject_id not in self.contexts
        context = self.contexts.get(subject_id)
        if is_new:
            self.events.emit(ConversationStarted(subject_id, agent_name, channel))
        return context

    def save_context(self, subject_id: str, context: ConversationContext) -> None:
        self.contexts.save(subject_id, context)

    async def end_session(self, subject_id: str) -> None:
        """Drop the subject's context and run-state.

        Safe on unknown subjects: the end event is still emitted with a
        zero duration and message count.

        Raises:
            PersistenceFailureError: If the run-state could not be deleted.
        """
        context = self.contexts.pop(subject_id)
        duration_ms = 0
        message_count = 0
        if context is not None:
            duration_ms = int((self._now() - context.session_start_time).total_seconds() * 1000)
            message_count = context.message_count

        await self.delete_run_state(subject_id)
        logger.info(
            "Session ended for '%s' (duration=%dms, messages=%d)",
            subject_id, duration_ms, message_count,
        )
        self.events.emit(ConversationEnded(subject_id, duration_ms, message_count))

    def update_escalation_level(self, subject_id: str, level: int, reason: str = "") -> bool:
        """Raise the subject's escalation level. Lower or equal levels are ignored."""
        context = self.contexts.get(subject_id)
        if not context.raise_escalation(level):
            logger.debug(
                "Escalation for '%s' stays at %d (requested %d)",
                subject_id, context.escalation_level, level,
            )
            return False
        self.contexts.save(subject_id, context)
        self.events.emit(EscalationRaised(subject_id, level, reason))
        return True

    def get_session_info(self, subject_id: str) -> Optional[SessionInfo]:
        context = self.contexts.peek(subject_id)
        if context is None:
            return None
        return SessionInfo(
            subject_id=subject_id,
            session_start_time=context.session_start_time,
            last_active_at=context.last_active_at,
            escalation_level=context.escalation_level,
            message_count=context.message_count,
        )

    def idle_subjects(self, cutoff: datetime) -> list[str]:
        return self.contexts.idle_since(cutoff)

    # --- Run-state ---

    async def get_run_state(self, subject_id: str) -> Optional[str]:
        with timed_operation("load_state", subject_id, self._slow_ms):
            return await self.run_states.load_state(subject_id)

    async def save_run_state(self, subject_id: str, serialized: str) -> None:
        with timed_operation("save_state", subject_id, self._slow_ms):
            await self.run_states.save_state(subject_id, serialized)

    async def delete_run_state(self, subject_id: str) -> None:
        with timed_operation("delete_state", subject_id, self._slow_ms):
            await self.run_states.delete_state(subject_id)

    async def cleanup_run_states(self, max_age_ms: Optional[int] = None) -> int:
        with timed_operation("cleanup_old_states", "*", self._slow_ms):
            return await self.run_states.cleanup_old_states(max_age_ms)
