"""
Boundary to the external agent executor.

The session manager never generates text itself. It hands an agent, an
input and the conversation context to an executor and gets back output
text, new conversation items and any tool calls awaiting approval.

Run-state strings are opaque here. Only the executor that produced one
can restore it.
"""

from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Optional, Protocol, Union, runtime_checkable

from omnichannel.agents.registry import AgentSpec
from omnichannel.schemas.context_schema import ConversationContext
from omnichannel.schemas.run_state_schema import ApprovalDecision, PendingApproval

# Fresh input is a list of {role, content} items; resumed input is
# whatever ``restore_state`` returned.
RunInput = Union[list[dict[str, Any]], Any]


@dataclass
class ExecutorResult:
    """Everything one executor run produced."""
    final_output: Optional[str] = None
    new_items: list[dict[str, Any]] = field(default_factory=list)
    pending_approvals: list[PendingApproval] = field(default_factory=list)
    serialized_state: Optional[str] = None
    current_agent: Optional[str] = None

    @property
    def interrupted(self) -> bool:
        return bool(self.pending_approvals)


class AgentExecutor(Protocol):
    """Capability the orchestrator and approval coordinator drive."""

    async def run(
        self,
        agent: AgentSpec,
        run_input: RunInput,
        context: ConversationContext,
        *,
        max_turns: int = 10,
    ) -> ExecutorResult:
        """Run ``agent`` until it finishes or pauses for tool approvals.

        An interrupted result must carry ``serialized_state``.
        """
        ...

    def restore_state(self, agent: AgentSpec, serialized: str) -> Any:
        """Rebuild a resumable state from a stored string.

        Raises:
            ValueError: If ``serialized`` cannot be restored.
        """
        ...

    def apply_decision(self, state: Any, decision: ApprovalDecision) -> None:
        """Record one approve/reject decision on a restored state.

        Decisions for tool calls the state does not know are ignored.
        """
        ...


# A streamed run yields text fragments, then its ExecutorResult last.
StreamEvent = Union[str, ExecutorResult]


@runtime_checkable
class StreamingAgentExecutor(AgentExecutor, Protocol):
    """Executor that can also stream output text while it runs."""

    def run_streamed(
        self,
        agent: AgentSpec,
        run_input: RunInput,
        context: ConversationContext,
        *,
        max_turns: int = 10,
    ) -> AsyncIterator[StreamEvent]:
        """Like ``run``, but yield output text fragments as they are produced.

        The final item must be the run's ``ExecutorResult``.
        """
        ...
