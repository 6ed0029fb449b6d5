"""
Turn orchestrator.

Drives one conversational turn for a subject:

    load context -> append user message -> load run-state
        -> run executor -> pending approvals?  -> persist run-state, pause
                        -> completed?          -> append items, drop run-state

The user's message is kept even when the executor fails, so the next
attempt sees it in the history. Executor errors become a FAILED result;
persistence write errors propagate.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from omnichannel.agents.executor import (
    AgentExecutor,
    ExecutorResult,
    RunInput,
    StreamingAgentExecutor,
)
from omnichannel.agents.registry import DEFAULT_AGENT, AgentSpec, get_agent
from omnichannel.conversation.enrichment import build_fresh_input
from omnichannel.conversation.events import ApprovalRequested
from omnichannel.conversation.extraction import extract_customer_info
from omnichannel.conversation.locks import SubjectLocks
from omnichannel.conversation.session_manager import SessionManager
from omnichannel.errors import ExecutorFailureError
from omnichannel.logging_context import get_session_logger, set_subject_id
from omnichannel.schemas.context_schema import ConversationContext, Role, make_item
from omnichannel.schemas.run_state_schema import TurnResult, TurnStatus

logger = get_session_logger(__name__)

EMPTY_INPUT_RESPONSE = "I didn't catch that. Could you please repeat your question?"
FALLBACK_RESPONSE = "I apologize, but I'm having trouble processing your request right now."
EXECUTOR_ERROR_RESPONSE = (
    "I apologize, but I'm experiencing technical difficulties. "
    "Please try again or contact support."
)
ESCALATION_AGENT = "escalation"

# Receives output text while a streamed run is still in progress.
FragmentSink = Callable[[str], Awaitable[None]]


@dataclass
class TurnOptions:
    """Per-turn budgets and channel metadata."""
    timeout_s: Optional[float] = 30.0
    max_turns: int = 10
    channel: str = "unknown"
    metadata: dict[str, Any] = field(default_factory=dict)


class TurnOrchestrator:
    """Runs turns against an executor on behalf of the session manager."""

    def __init__(
        self,
        sessions: SessionManager,
        executor: AgentExecutor,
        locks: Optional[SubjectLocks] = None,
        default_agent: str = DEFAULT_AGENT,
        default_options: Optional[TurnOptions] = None,
    ) -> None:
        self.sessions = sessions
        self.executor = executor
        self.locks = locks or SubjectLocks()
        self.default_agent = default_agent
        self.default_options = default_options or TurnOptions()

    async def process_turn(
        self,
        subject_id: str,
        user_text: str,
        agent: Optional[AgentSpec] = None,
        options: Optional[TurnOptions] = None,
        on_fragment: Optional[FragmentSink] = None,
    ) -> TurnResult:
        """Process one user message for ``subject_id``.

        When ``on_fragment`` is given and the executor can stream, output
        text is passed to it as it is produced, before the turn completes.

        Raises:
            PersistenceFailureError: If the run-state could not be written.
        """
        if not user_text or not user_text.strip():
            return TurnResult(status=TurnStatus.EMPTY_INPUT, response=EMPTY_INPUT_RESPONSE)

        options = options or self.default_options
        agent = agent or get_agent(self.default_agent, options.channel)
        set_subject_id(subject_id)

        async with self.locks.hold(subject_id):
            return await self._run_turn(
                subject_id, user_text.strip(), agent, options, on_fragment
            )

    async def _run_turn(
        self,
        subject_id: str,
        user_text: str,
        agent: AgentSpec,
        options: TurnOptions,
        on_fragment: Optional[FragmentSink] = None,
    ) -> TurnResult:
        context = self.sessions.get_context(subject_id, agent.name, options.channel)
        context.metadata.update(options.metadata)

        facts = extract_customer_info(user_text)
        if facts:
            context.update_customer_facts(email=facts.email, order=facts.order, phone=facts.phone)
        context.append_item(make_item(Role.USER, user_text))

        run_input = await self._prepare_input(subject_id, agent, context)

        try:
            result = await run_executor(
                self.executor, agent, run_input, context, options, on_fragment
            )
        except ExecutorFailureError as exc:
            logger.error("Turn failed for '%s': %s", subject_id, exc)
            self.sessions.save_context(subject_id, context)
            return TurnResult(
                status=TurnStatus.FAILED,
                response=EXECUTOR_ERROR_RESPONSE,
                current_agent=context.last_agent,
                error=str(exc),
            )

        if result.interrupted:
            self.sessions.save_context(subject_id, context)
            await self.sessions.save_run_state(subject_id, result.serialized_state)
            call_ids = tuple(p.tool_call_id for p in result.pending_approvals)
            logger.info("Turn for '%s' paused on %d approval(s)", subject_id, len(call_ids))
            self.sessions.events.emit(ApprovalRequested(subject_id, call_ids))
            return TurnResult(
                status=TurnStatus.AWAITING_APPROVALS,
                current_agent=result.current_agent or agent.name,
                pending_approvals=list(result.pending_approvals),
            )

        return await complete_turn(self.sessions, subject_id, context, result, agent)

    async def _prepare_input(
        self, subject_id: str, agent: AgentSpec, context: ConversationContext
    ) -> RunInput:
        serialized = await self.sessions.get_run_state(subject_id)
        if serialized is not None:
            try:
                state = self.executor.restore_state(agent, serialized)
            except ValueError as exc:
                logger.warning(
                    "Corrupted run-state for '%s', starting fresh: %s", subject_id, exc
                )
                await self.sessions.delete_run_state(subject_id)
            else:
                logger.info("Resuming saved run-state for '%s'", subject_id)
                return state
        return build_fresh_input(context)


async def run_executor(
    executor: AgentExecutor,
    agent: AgentSpec,
    run_input: RunInput,
    context: ConversationContext,
    options: TurnOptions,
    on_fragment: Optional[FragmentSink] = None,
) -> ExecutorResult:
    """Invoke the executor under the turn's time budget.

    Raises:
        ExecutorFailureError: On any executor error or timeout.
    """
    try:
        if on_fragment is not None and isinstance(executor, StreamingAgentExecutor):
            call = _consume_stream(
                executor, agent, run_input, context, options.max_turns, on_fragment
            )
        else:
            call = executor.run(agent, run_input, context, max_turns=options.max_turns)
        if options.timeout_s:
            result = await asyncio.wait_for(call, timeout=options.timeout_s)
        else:
            result = await call
    except asyncio.TimeoutError as exc:
        raise ExecutorFailureError(
            f"Executor timed out after {options.timeout_s}s"
        ) from exc
    except ExecutorFailureError:
        raise
    except Exception as exc:
        raise ExecutorFailureError(f"Executor failed: {exc}") from exc

    if result.interrupted and not result.serialized_state:
        raise ExecutorFailureError("Executor paused for approvals without a run-state")
    return result


async def _consume_stream(
    executor: StreamingAgentExecutor,
    agent: AgentSpec,
    run_input: RunInput,
    context: ConversationContext,
    max_turns: int,
    on_fragment: FragmentSink,
) -> ExecutorResult:
    result = None
    async for event in executor.run_streamed(agent, run_input, context, max_turns=max_turns):
        if isinstance(event, ExecutorResult):
            result = event
        elif event:
            await on_fragment(event)
    if result is None:
        raise ExecutorFailureError("Streamed run ended without a result")
    return result


async def complete_turn(
    sessions: SessionManager,
    subject_id: str,
    context: ConversationContext,
    result: ExecutorResult,
    agent: AgentSpec,
) -> TurnResult:
    """Record a finished run: append its items, save context, drop the run-state."""
    for item in result.new_items:
        context.append_item(item)
    current_agent = result.current_agent or agent.name
    context.last_agent = current_agent
    sessions.save_context(subject_id, context)
    await sessions.delete_run_state(subject_id)

    if current_agent == ESCALATION_AGENT and context.escalation_level == 0:
        sessions.update_escalation_level(subject_id, 1, reason="handoff to escalation agent")

    response = result.final_output or FALLBACK_RESPONSE
    logger.debug("Turn for '%s' completed by %s", subject_id, current_agent)
    return TurnResult(
        status=TurnStatus.COMPLETED,
        response=response,
        new_items=list(result.new_items),
        current_agent=current_agent,
    )
