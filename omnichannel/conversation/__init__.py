from omnichannel.conversation.approvals import ApprovalCoordinator, parse_submission
from omnichannel.conversation.context_store import ContextStore
from omnichannel.conversation.events import EventBus
from omnichannel.conversation.locks import SubjectLocks
from omnichannel.conversation.orchestrator import TurnOptions, TurnOrchestrator
from omnichannel.conversation.session_manager import SessionManager
from omnichannel.conversation.sweeper import LifecycleSweeper, SweepReport

__all__ = [
    "ApprovalCoordinator",
    "parse_submission",
    "ContextStore",
    "EventBus",
    "SubjectLocks",
    "TurnOptions",
    "TurnOrchestrator",
    "SessionManager",
    "LifecycleSweeper",
    "SweepReport",
]
