"""
Approval coordinator.

Resumes a turn that paused on tool approvals. A rejection of any tool
call ends that branch of execution: the run-state is deleted and the
executor is not invoked again.
"""

import logging
from typing import Any, Optional, Sequence

from pydantic import ValidationError

from omnichannel.agents.executor import AgentExecutor
from omnichannel.agents.registry import DEFAULT_AGENT, AgentSpec, get_agent
from omnichannel.conversation.locks import SubjectLocks
from omnichannel.conversation.orchestrator import TurnOptions, complete_turn, run_executor
from omnichannel.conversation.session_manager import SessionManager
from omnichannel.errors import CorruptedStateError, ExecutorFailureError, NoPendingStateError
from omnichannel.logging_context import set_subject_id
from omnichannel.schemas.run_state_schema import (
    ApprovalDecision,
    ApprovalSubmission,
    TurnResult,
    TurnStatus,
)

logger = logging.getLogger(__name__)

REJECTED_RESPONSE = (
    "I understand you don't want me to proceed with those actions. "
    "How else can I help you?"
)
RESUME_ERROR_RESPONSE = (
    "I encountered an error while processing the approved actions. "
    "Please try your request again."
)


def parse_submission(payload: Any) -> ApprovalSubmission:
    """Validate a raw ``{subjectId, decisions: [...]}`` payload.

    Raises:
        pydantic.ValidationError: If the payload does not match the contract.
    """
    return ApprovalSubmission.model_validate(payload)


class ApprovalCoordinator:
    """Applies approve/reject decisions to a paused run and resumes it."""

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

    async def handle_submission(self, payload: Any) -> TurnResult:
        """Validate an external approval payload and handle it.

        Raises:
            pydantic.ValidationError: If the payload is malformed.
            NoPendingStateError: If nothing is waiting for approval.
            CorruptedStateError: If the stored run-state was unusable.
        """
        try:
            submission = parse_submission(payload)
        except ValidationError:
            logger.warning("Rejected malformed approval submission")
            raise
        return await self.handle_approvals(submission.subject_id, submission.decisions)

    async def handle_approvals(
        self,
        subject_id: str,
        decisions: Sequence[ApprovalDecision],
        agent: Optional[AgentSpec] = None,
        options: Optional[TurnOptions] = None,
    ) -> TurnResult:
        """Resume ``subject_id``'s paused run with ``decisions``.

        Raises:
            NoPendingStateError: If the subject has no stored run-state.
            CorruptedStateError: If the run-state could not be restored.
            PersistenceFailureError: If the run-state could not be updated.
        """
        options = options or self.default_options
        agent = agent or get_agent(self.default_agent, options.channel)
        set_subject_id(subject_id)

        async with self.locks.hold(subject_id):
            serialized = await self.sessions.get_run_state(subject_id)
            if serialized is None:
                logger.info("Approvals for '%s' with no pending run-state", subject_id)
                raise NoPendingStateError(subject_id)

            try:
                state = self.executor.restore_state(agent, serialized)
            except ValueError as exc:
                logger.error("Cannot restore run-state for '%s': %s", subject_id, exc)
                await self.sessions.delete_run_state(subject_id)
                raise CorruptedStateError(subject_id) from exc

            if any(not d.approved for d in decisions):
                rejected = [d.tool_call_id for d in decisions if not d.approved]
                logger.info("Tool call(s) rejected for '%s': %s", subject_id, rejected)
                await self.sessions.delete_run_state(subject_id)
                return TurnResult(status=TurnStatus.COMPLETED, response=REJECTED_RESPONSE)

            for decision in decisions:
                self.executor.apply_decision(state, decision)

            context = self.sessions.get_context(subject_id, agent.name, options.channel)
            try:
                result = await run_executor(self.executor, agent, state, context, options)
            except ExecutorFailureError as exc:
                logger.error("Resuming approved run failed for '%s': %s", subject_id, exc)
                await self.sessions.delete_run_state(subject_id)
                return TurnResult(
                    status=TurnStatus.FAILED,
                    response=RESUME_ERROR_RESPONSE,
                    error=str(exc),
                )

            if result.interrupted:
                await self.sessions.save_run_state(subject_id, result.serialized_state)
                logger.info(
                    "Run for '%s' still waiting on %d approval(s)",
                    subject_id, len(result.pending_approvals),
                )
                return TurnResult(
                    status=TurnStatus.AWAITING_APPROVALS,
                    current_agent=result.current_agent or agent.name,
                    pending_approvals=list(result.pending_approvals),
                )

            return await complete_turn(self.sessions, subject_id, context, result, agent)
