from omnichannel.schemas.context_schema import ConversationContext, Role, SessionInfo, make_item
from omnichannel.schemas.identity_schema import ExternalId, IdentityProfile
from omnichannel.schemas.run_state_schema import (
    ApprovalDecision,
    ApprovalSubmission,
    PendingApproval,
    RunStateRecord,
    TurnResult,
    TurnStatus,
)

__all__ = [
    "ConversationContext", "Role", "SessionInfo", "make_item",
    "ExternalId", "IdentityProfile",
    "ApprovalDecision", "ApprovalSubmission", "PendingApproval",
    "RunStateRecord", "TurnResult", "TurnStatus",
]
