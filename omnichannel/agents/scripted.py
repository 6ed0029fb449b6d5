"""
Offline scripted executor.

A deterministic stand-in for an LLM-backed executor, used by the console
demo and the tests. It recognises a handful of intents by keyword:

- "refund"               -> pauses on a ``process_refund`` tool approval
- "human", "manager"...  -> hands off to the escalation agent
- an order number known  -> reports the order status
- anything else          -> a generic helpful reply

Its run-state is a small JSON document, so corrupting the stored string
behaves like corrupting a real checkpoint.
"""

import asyncio
import logging
import re
from typing import Any, AsyncIterator, Optional

from pydantic import BaseModel, Field

from omnichannel.agents.executor import ExecutorResult, RunInput, StreamEvent
from omnichannel.agents.prompts import DEFAULT_GREETING
from omnichannel.agents.registry import AgentSpec
from omnichannel.schemas.context_schema import ConversationContext, Role, make_item
from omnichannel.schemas.run_state_schema import ApprovalDecision, PendingApproval

logger = logging.getLogger(__name__)

ESCALATION_KEYWORDS = ("human", "manager", "representative", "real person", "supervisor")


class ScriptedRunState(BaseModel):
    """Checkpoint of a scripted run paused on tool approvals."""
    agent: str
    user_text: str
    pending: list[PendingApproval]
    decisions: dict[str, bool] = Field(default_factory=dict)

    def undecided(self) -> list[PendingApproval]:
        return [p for p in self.pending if p.tool_call_id not in self.decisions]


class ScriptedExecutor:
    """Keyword-driven executor with real approval interruptions."""

    def __init__(
        self,
        latency_s: float = 0.0,
        fail_on: Optional[str] = None,
        fragment_delay_s: float = 0.0,
    ) -> None:
        """
        Args:
            latency_s: Artificial delay before every run, for timeout demos
            fail_on: Raise RuntimeError when the user text contains this
            fragment_delay_s: Delay between streamed words
        """
        self.latency_s = latency_s
        self.fail_on = fail_on
        self.fragment_delay_s = fragment_delay_s
        self.run_count = 0
        self.last_max_turns: Optional[int] = None

    async def run(
        self,
        agent: AgentSpec,
        run_input: RunInput,
        context: ConversationContext,
        *,
        max_turns: int = 10,
    ) -> ExecutorResult:
        self.run_count += 1
        self.last_max_turns = max_turns
        if self.latency_s:
            await asyncio.sleep(self.latency_s)

        if isinstance(run_input, ScriptedRunState):
            return self._resume(run_input)
        return self._respond(agent, run_input, context)

    async def run_streamed(
        self,
        agent: AgentSpec,
        run_input: RunInput,
        context: ConversationContext,
        *,
        max_turns: int = 10,
    ) -> AsyncIterator[StreamEvent]:
        """Run, then yield the reply word by word before the result."""
        result = await self.run(agent, run_input, context, max_turns=max_turns)
        if result.final_output:
            for word in re.findall(r"\S+\s*", result.final_output):
                yield word
                await asyncio.sleep(self.fragment_delay_s)
        yield result

    def restore_state(self, agent: AgentSpec, serialized: str) -> ScriptedRunState:
        # pydantic's ValidationError is a ValueError
        state = ScriptedRunState.model_validate_json(serialized)
        if not state.pending:
            raise ValueError("run-state has no pending tool calls")
        return state

    def apply_decision(self, state: ScriptedRunState, decision: ApprovalDecision) -> None:
        known = {p.tool_call_id for p in state.pending}
        if decision.tool_call_id not in known:
            logger.warning("Ignoring decision for unknown tool call %s", decision.tool_call_id)
            return
        state.decisions[decision.tool_call_id] = decision.approved

    def _respond(
        self,
        agent: AgentSpec,
        items: list[dict[str, Any]],
        context: ConversationContext,
    ) -> ExecutorResult:
        last = items[-1] if items else {}
        if last.get("role") == Role.SYSTEM.value:
            return _reply(DEFAULT_GREETING, agent.name)

        text = str(last.get("content", ""))
        if self.fail_on and self.fail_on in text:
            raise RuntimeError(f"scripted failure on {self.fail_on!r}")
        lower = text.lower()

        if "refund" in lower and agent.needs_approval("process_refund"):
            order = context.current_order or "unknown"
            pending = PendingApproval(
                tool_call_id=f"call_refund_{self.run_count}",
                tool_name="process_refund",
                arguments={"order_id": order},
            )
            state = ScriptedRunState(agent=agent.name, user_text=text, pending=[pending])
            logger.debug("Refund for order %s needs approval", order)
            return ExecutorResult(
                pending_approvals=[pending],
                serialized_state=state.model_dump_json(),
                current_agent=agent.name,
            )

        if any(keyword in lower for keyword in ESCALATION_KEYWORDS):
            return _reply(
                "I'm connecting you with a human specialist who will follow up shortly.",
                "escalation",
            )

        if context.current_order:
            return _reply(
                f"Order {context.current_order} has shipped and should arrive "
                "within 3 business days.",
                agent.name,
            )

        return _reply(
            "Thanks for reaching out. Could you share your order number so I can help?",
            agent.name,
        )

    def _resume(self, state: ScriptedRunState) -> ExecutorResult:
        undecided = state.undecided()
        if undecided:
            return ExecutorResult(
                pending_approvals=undecided,
                serialized_state=state.model_dump_json(),
                current_agent=state.agent,
            )

        lines = []
        for call in state.pending:
            order = call.arguments.get("order_id", "unknown")
            if state.decisions[call.tool_call_id]:
                lines.append(f"Your refund for order {order} has been processed.")
            else:
                lines.append(f"The refund for order {order} was not processed.")
        return _reply(" ".join(lines), state.agent)


def _reply(text: str, agent_name: str) -> ExecutorResult:
    return ExecutorResult(
        final_output=text,
        new_items=[make_item(Role.ASSISTANT, text)],
        current_agent=agent_name,
    )
