"""
Session lifecycle events.

A small synchronous bus. Listeners subscribe to one event type or to
everything; a failing listener is logged and never breaks the turn that
emitted the event.
"""

import logging
from dataclasses import dataclass
from typing import Callable, ClassVar, Optional, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConversationStarted:
    name: ClassVar[str] = "conversation_start"
    subject_id: str
    agent_name: str
    channel: str = "unknown"


@dataclass(frozen=True)
class ConversationEnded:
    name: ClassVar[str] = "conversation_end"
    subject_id: str
    duration_ms: int = 0
    message_count: int = 0


@dataclass(frozen=True)
class EscalationRaised:
    name: ClassVar[str] = "escalation"
    subject_id: str
    level: int
    reason: str = ""


@dataclass(frozen=True)
class ApprovalRequested:
    name: ClassVar[str] = "approval_requested"
    subject_id: str
    tool_call_ids: tuple[str, ...] = ()


LifecycleEvent = Union[ConversationStarted, ConversationEnded, EscalationRaised, ApprovalRequested]
Listener = Callable[[LifecycleEvent], None]


class EventBus:
    """Dispatches lifecycle events to subscribed listeners."""

    def __init__(self) -> None:
        self._listeners: list[tuple[Optional[str], Listener]] = []

    def subscribe(self, listener: Listener, event_name: Optional[str] = None) -> None:
        """Register ``listener`` for ``event_name``, or for every event if None."""
        self._listeners.append((event_name, listener))

    def unsubscribe(self, listener: Listener) -> None:
        self._listeners = [(n, l) for n, l in self._listeners if l is not listener]

    def emit(self, event: LifecycleEvent) -> None:
        logger.debug("Event %s for '%s'", event.name, event.subject_id)
        for event_name, listener in list(self._listeners):
            if event_name is not None and event_name != event.name:
                continue
            try:
                listener(event)
            except Exception:
                logger.exception("Listener for %s failed", event.name)


def log_event(event: LifecycleEvent) -> None:
    """Default listener: one INFO line per lifecycle event."""
    if isinstance(event, ConversationEnded):
        logger.info(
            "Conversation ended for '%s' after %dms (%d messages)",
            event.subject_id, event.duration_ms, event.message_count,
        )
    elif isinstance(event, EscalationRaised):
        logger.info("Escalation for '%s' raised to level %d", event.subject_id, event.level)
    else:
        logger.info("%s: '%s'", event.name, event.subject_id)
