"""Per-subject conversational context."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


def make_item(role: Role, content: str) -> dict[str, Any]:
    """Build a plain role-tagged conversation item."""
    return {"role": role.value, "content": content}


@dataclass
class ConversationContext:
    """
    Mutable conversation aggregate for one subject.

    Lives in the in-memory context store for the whole session and is
    shared by every channel the customer uses. The orchestrator only
    ever appends to ``conversation_history``.
    """
    subject_id: str
    conversation_history: list[dict[str, Any]] = field(default_factory=list)
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    current_order: Optional[str] = None
    escalation_level: int = 0
    last_agent: Optional[str] = None
    resolved_issues: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    session_start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    last_active_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def message_count(self) -> int:
        return len(self.conversation_history)

    def append_item(self, item: dict[str, Any]) -> None:
        self.conversation_history.append(item)

    def update_customer_facts(
        self,
        name: Optional[str] = None,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        order: Optional[str] = None,
    ) -> None:
        """Apply newly learned customer facts; the latest non-empty value wins."""
        self.customer_name = name or self.customer_name
        self.customer_email = email or self.customer_email
        self.customer_phone = phone or self.customer_phone
        self.current_order = order or self.current_order

    def raise_escalation(self, level: int) -> bool:
        """Raise the escalation level. Returns False if ``level`` is not higher."""
        if level <= self.escalation_level:
            return False
        self.escalation_level = level
        return True

    def message_items(self) -> list[dict[str, Any]]:
        """History reduced to plain ``{role, content}`` items for fresh executor input."""
        return [
            {"role": item["role"], "content": item["content"]}
            for item in self.conversation_history
            if isinstance(item, dict) and item.get("role") and item.get("content")
        ]


@dataclass(frozen=True)
class SessionInfo:
    """Read-only summary of an active session."""
    subject_id: str
    session_start_time: datetime
    last_active_at: datetime
    escalation_level: int
    message_count: int
