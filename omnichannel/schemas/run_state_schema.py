"""Run-state records, tool approvals and turn results."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class RunStateRecord(BaseModel):
    """On-disk wrapper around an opaque executor checkpoint.

    Serialized with the camelCase field names of the persistence format:
    ``{"conversationId", "stateString", "timestamp"}``.
    """

    model_config = ConfigDict(populate_by_name=True)

    conversation_id: str = Field(alias="conversationId")
    state_string: str = Field(alias="stateString")
    timestamp: int

    def is_expired(self, now_ms: int, max_age_ms: int) -> bool:
        return now_ms - self.timestamp > max_age_ms

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class PendingApproval(BaseModel):
    """A tool call that is waiting for a human decision."""
    tool_call_id: str
    tool_name: str = ""
    required: bool = True
    arguments: dict[str, Any] = Field(default_factory=dict)


class ApprovalDecision(BaseModel):
    """One approve/reject decision for a pending tool call."""

    model_config = ConfigDict(populate_by_name=True)

    tool_call_id: str = Field(alias="toolCallId", min_length=1)
    approved: bool


class ApprovalSubmission(BaseModel):
    """Approval payload accepted from the channel/API layer.

    Validation happens here so malformed submissions never reach the
    approval coordinator.
    """

    model_config = ConfigDict(populate_by_name=True)

    subject_id: str = Field(alias="subjectId", min_length=1)
    decisions: list[ApprovalDecision]


class TurnStatus(str, Enum):
    COMPLETED = "completed"
    AWAITING_APPROVALS = "awaiting_approvals"
    FAILED = "failed"
    EMPTY_INPUT = "empty_input"


@dataclass
class TurnResult:
    """Outcome of one conversational turn or approval resumption."""
    status: TurnStatus
    response: Optional[str] = None
    new_items: list[dict[str, Any]] = field(default_factory=list)
    current_agent: Optional[str] = None
    pending_approvals: list[PendingApproval] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def awaiting_approvals(self) -> bool:
        return self.status == TurnStatus.AWAITING_APPROVALS

    @property
    def failed(self) -> bool:
        return self.status == TurnStatus.FAILED
