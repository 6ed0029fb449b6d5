"""Tests for turn orchestration."""

import asyncio

import pytest

from omnichannel.agents.scripted import ScriptedExecutor
from omnichannel.conversation.events import ApprovalRequested
from omnichannel.conversation.locks import SubjectLocks
from omnichannel.conversation.orchestrator import (
    EMPTY_INPUT_RESPONSE,
    EXECUTOR_ERROR_RESPONSE,
    FALLBACK_RESPONSE,
    TurnOrchestrator,
)
from omnichannel.schemas.run_state_schema import TurnStatus

from tests.conftest import SUBJECT, make_options, make_pending, make_result


class StubExecutor:
    """Returns queued results and records what it was given."""

    def __init__(self, *results, delay_s: float = 0.0) -> None:
        self.results = list(results)
        self.delay_s = delay_s
        self.inputs: list = []
        self.active = 0
        self.max_active = 0

    async def run(self, agent, run_input, context, *, max_turns=10):
        self.inputs.append(run_input)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay_s:
                await asyncio.sleep(self.delay_s)
            return self.results.pop(0) if self.results else make_result()
        finally:
            self.active -= 1

    def restore_state(self, agent, serialized):
        return {"restored": serialized}

    def apply_decision(self, state, decision):
        pass


def _orchestrator(sessions, executor, **options) -> TurnOrchestrator:
    return TurnOrchestrator(sessions, executor, default_options=make_options(**options))


class TestEmptyInput:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["", "   ", "\n\t"])
    async def test_blank_message_short_circuits(self, orchestrator, sessions, executor, text):
        result = await orchestrator.process_turn(SUBJECT, text)
        assert result.status == TurnStatus.EMPTY_INPUT
        assert result.response == EMPTY_INPUT_RESPONSE
        assert executor.run_count == 0
        assert sessions.has_context(SUBJECT) is False


class TestCompletedTurn:
    @pytest.mark.asyncio
    async def test_order_status_turn(self, orchestrator, sessions):
        result = await orchestrator.process_turn(SUBJECT, "Hi, where is my order 1234567?")

        assert result.status == TurnStatus.COMPLETED
        assert "1234567" in result.response
        context = sessions.get_context(SUBJECT)
        assert context.current_order == "1234567"
        assert [item["role"] for item in context.conversation_history] == ["user", "assistant"]
        assert context.last_agent == "customer-support"
        assert await sessions.get_run_state(SUBJECT) is None

    @pytest.mark.asyncio
    async def test_history_accumulates_across_turns(self, orchestrator, sessions):
        await orchestrator.process_turn(SUBJECT, "Hello")
        await orchestrator.process_turn(SUBJECT, "My order is 1234567")
        assert sessions.get_context(SUBJECT).message_count == 4

    @pytest.mark.asyncio
    async def test_fresh_input_contains_history(self, sessions):
        executor = StubExecutor()
        orchestrator = _orchestrator(sessions, executor)
        await orchestrator.process_turn(SUBJECT, "first")
        await orchestrator.process_turn(SUBJECT, "second")
        assert executor.inputs[1] == [
            {"role": "user", "content": "first"},
            {"role": "assistant", "content": "Done."},
            {"role": "user", "content": "second"},
        ]

    @pytest.mark.asyncio
    async def test_email_is_extracted(self, orchestrator, sessions):
        await orchestrator.process_turn(SUBJECT, "you can reach me at jane@example.com")
        assert sessions.get_context(SUBJECT).customer_email == "jane@example.com"

    @pytest.mark.asyncio
    async def test_missing_output_uses_fallback(self, sessions):
        orchestrator = _orchestrator(sessions, StubExecutor(make_result(text=None)))
        result = await orchestrator.process_turn(SUBJECT, "hello")
        assert result.status == TurnStatus.COMPLETED
        assert result.response == FALLBACK_RESPONSE

    @pytest.mark.asyncio
    async def test_max_turns_is_forwarded(self, sessions, executor):
        orchestrator = _orchestrator(sessions, executor, max_turns=3)
        await orchestrator.process_turn(SUBJECT, "hello")
        assert executor.last_max_turns == 3

    @pytest.mark.asyncio
    async def test_handoff_to_escalation_agent_raises_level(self, orchestrator, sessions, listener):
        result = await orchestrator.process_turn(SUBJECT, "Can I talk to a manager?")
        assert result.current_agent == "escalation"
        assert sessions.get_context(SUBJECT).escalation_level == 1
        assert "escalation" in listener.names()


class TestApprovalPause:
    @pytest.mark.asyncio
    async def test_refund_pauses_and_persists_state(self, orchestrator, sessions, listener):
        result = await orchestrator.process_turn(SUBJECT, "I need a refund for order 7654321")

        assert result.status == TurnStatus.AWAITING_APPROVALS
        assert result.awaiting_approvals is True
        assert [p.tool_name for p in result.pending_approvals] == ["process_refund"]
        assert result.pending_approvals[0].arguments == {"order_id": "7654321"}
        assert await sessions.get_run_state(SUBJECT) is not None
        assert listener.events[-1] == ApprovalRequested(SUBJECT, ("call_refund_1",))

    @pytest.mark.asyncio
    async def test_paused_turn_keeps_only_user_message(self, orchestrator, sessions):
        await orchestrator.process_turn(SUBJECT, "refund please")
        history = sessions.get_context(SUBJECT).conversation_history
        assert history == [{"role": "user", "content": "refund please"}]

    @pytest.mark.asyncio
    async def test_next_turn_resumes_saved_state(self, memory_store, sessions):
        executor = StubExecutor()
        orchestrator = _orchestrator(sessions, executor)
        await sessions.save_run_state(SUBJECT, "checkpoint")
        await orchestrator.process_turn(SUBJECT, "hello again")
        assert executor.inputs[0] == {"restored": "checkpoint"}
        assert await memory_store.load_state(SUBJECT) is None

    @pytest.mark.asyncio
    async def test_interrupt_without_state_is_a_failure(self, sessions):
        executor = StubExecutor(make_result(text=None, pending=[make_pending()], state=None))
        result = await _orchestrator(sessions, executor).process_turn(SUBJECT, "refund")
        assert result.status == TurnStatus.FAILED
        assert await sessions.get_run_state(SUBJECT) is None


class TestExecutorFailure:
    @pytest.mark.asyncio
    async def test_exception_becomes_failed_result(self, sessions):
        orchestrator = _orchestrator(sessions, ScriptedExecutor(fail_on="boom"))
        result = await orchestrator.process_turn(SUBJECT, "boom goes the model")

        assert result.status == TurnStatus.FAILED
        assert result.response == EXECUTOR_ERROR_RESPONSE
        assert "boom" in result.error

    @pytest.mark.asyncio
    async def test_user_message_survives_failure(self, sessions):
        orchestrator = _orchestrator(sessions, ScriptedExecutor(fail_on="boom"))
        await orchestrator.process_turn(SUBJECT, "boom")
        history = sessions.get_context(SUBJECT).conversation_history
        assert history == [{"role": "user", "content": "boom"}]

    @pytest.mark.asyncio
    async def test_timeout_becomes_failed_result(self, sessions):
        orchestrator = _orchestrator(sessions, ScriptedExecutor(latency_s=1.0), timeout_s=0.05)
        result = await orchestrator.process_turn(SUBJECT, "hello")
        assert result.status == TurnStatus.FAILED
        assert "timed out" in result.error
        assert sessions.get_context(SUBJECT).message_count == 1

    @pytest.mark.asyncio
    async def test_corrupt_state_is_discarded(self, orchestrator, sessions, executor):
        await sessions.save_run_state(SUBJECT, "{definitely not a checkpoint")
        result = await orchestrator.process_turn(SUBJECT, "hello")
        assert result.status == TurnStatus.COMPLETED
        assert executor.run_count == 1
        assert await sessions.get_run_state(SUBJECT) is None


class TestProfileEnrichment:
    @pytest.mark.asyncio
    async def test_profile_leads_fresh_input(self, sessions):
        executor = StubExecutor()
        orchestrator = _orchestrator(sessions, executor)
        profile = {"is_existing_customer": True, "first_name": "Jane", "customer_tier": "gold"}
        options = make_options(metadata={"customer_profile": profile})

        await orchestrator.process_turn(SUBJECT, "hello", options=options)

        first, second = executor.inputs[0]
        assert first["role"] == "system"
        assert first["content"].startswith("Customer Profile:")
        assert "- Name: Jane" in first["content"]
        assert "- Customer Tier: gold" in first["content"]
        assert second == {"role": "user", "content": "hello"}

    @pytest.mark.asyncio
    async def test_profile_is_not_stored_in_history(self, sessions):
        orchestrator = _orchestrator(sessions, StubExecutor())
        options = make_options(metadata={"customer_profile": {"is_existing_customer": True}})
        await orchestrator.process_turn(SUBJECT, "hello", options=options)
        roles = [item["role"] for item in sessions.get_context(SUBJECT).conversation_history]
        assert "system" not in roles


class TestSerialization:
    @pytest.mark.asyncio
    async def test_turns_for_one_subject_do_not_overlap(self, sessions):
        executor = StubExecutor(delay_s=0.02)
        orchestrator = _orchestrator(sessions, executor)
        await asyncio.gather(
            orchestrator.process_turn(SUBJECT, "one"),
            orchestrator.process_turn(SUBJECT, "two"),
        )
        assert executor.max_active == 1
        assert sessions.get_context(SUBJECT).message_count == 4

    @pytest.mark.asyncio
    async def test_different_subjects_run_concurrently(self, sessions):
        executor = StubExecutor(delay_s=0.02)
        orchestrator = _orchestrator(sessions, executor)
        await asyncio.gather(
            orchestrator.process_turn("phone_+1", "one"),
            orchestrator.process_turn("phone_+2", "two"),
        )
        assert executor.max_active == 2

    @pytest.mark.asyncio
    async def test_disabled_locks_allow_overlap(self, sessions):
        executor = StubExecutor(delay_s=0.02)
        orchestrator = TurnOrchestrator(
            sessions, executor, locks=SubjectLocks(enabled=False), default_options=make_options()
        )
        await asyncio.gather(
            orchestrator.process_turn(SUBJECT, "one"),
            orchestrator.process_turn(SUBJECT, "two"),
        )
        assert executor.max_active == 2


class TestStreamedTurn:
    @pytest.mark.asyncio
    async def test_fragments_reach_sink_before_completion(self, orchestrator, sessions):
        fragments = []

        async def sink(text):
            fragments.append(text)
            assert sessions.get_context(SUBJECT).message_count == 1

        result = await orchestrator.process_turn(
            SUBJECT, "where is my order 1234567?", on_fragment=sink
        )

        assert result.status == TurnStatus.COMPLETED
        assert len(fragments) > 1
        assert "".join(fragments) == result.response
        assert sessions.get_context(SUBJECT).message_count == 2

    @pytest.mark.asyncio
    async def test_non_streaming_executor_ignores_sink(self, sessions):
        fragments = []

        async def sink(text):
            fragments.append(text)

        orchestrator = _orchestrator(sessions, StubExecutor(make_result("done")))
        result = await orchestrator.process_turn(SUBJECT, "hi", on_fragment=sink)
        assert result.response == "done"
        assert fragments == []

    @pytest.mark.asyncio
    async def test_interrupted_stream_pauses_without_text(self, orchestrator, sessions):
        fragments = []

        async def sink(text):
            fragments.append(text)

        result = await orchestrator.process_turn(SUBJECT, "refund order 7654321", on_fragment=sink)
        assert result.status == TurnStatus.AWAITING_APPROVALS
        assert fragments == []
        assert await sessions.get_run_state(SUBJECT) is not None

    @pytest.mark.asyncio
    async def test_stream_without_result_fails_turn(self, sessions):
        class ResultlessExecutor(StubExecutor):
            async def run_streamed(self, agent, run_input, context, *, max_turns=10):
                yield "partial "

        async def sink(text):
            pass

        orchestrator = _orchestrator(sessions, ResultlessExecutor())
        result = await orchestrator.process_turn(SUBJECT, "hi", on_fragment=sink)
        assert result.status == TurnStatus.FAILED
        assert result.response == EXECUTOR_ERROR_RESPONSE
