"""In-memory map from subject id to conversation context."""

import logging
from datetime import datetime, timezone
from typing import Callable, Iterator, Optional

from omnichannel.schemas.context_schema import ConversationContext

logger = logging.getLogger(__name__)

Now = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ContextStore:
    """Holds the live ``ConversationContext`` of every active subject.

    Contexts are process-local and do not survive a restart; the
    durable part of a conversation is the run-state.
    """

    def __init__(self, now: Now = utc_now) -> None:
        self._now = now
        self._contexts: dict[str, ConversationContext] = {}

    def get(self, subject_id: str) -> ConversationContext:
        """Return the context for ``subject_id``, creating an empty one if absent."""
        context = self._contexts.get(subject_id)
        if context is None:
            started = self._now()
            context = ConversationContext(
                subject_id=subject_id,
                session_start_time=started,
                last_active_at=started,
            )
            self._contexts[subject_id] = context
            logger.debug("Created context for '%s'", subject_id)
        return context

    def peek(self, subject_id: str) -> Optional[ConversationContext]:
        return self._contexts.get(subject_id)

    def save(self, subject_id: str, context: ConversationContext) -> None:
        context.last_active_at = self._now()
        self._contexts[subject_id] = context

    def pop(self, subject_id: str) -> Optional[ConversationContext]:
        return self._contexts.pop(subject_id, None)

    def idle_since(self, cutoff: datetime) -> list[str]:
        """Subject ids whose context was last saved before ``cutoff``."""
        return [sid for sid, ctx in self._contexts.items() if ctx.last_active_at < cutoff]

    def __contains__(self, subject_id: str) -> bool:
        return subject_id in self._contexts

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._contexts))

    def __len__(self) -> int:
        return len(self._contexts)
