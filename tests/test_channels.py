"""Tests for the SMS and voice channel adapters."""

import asyncio

import pytest

from omnichannel.agents.prompts import DEFAULT_GREETING
from omnichannel.agents.scripted import ScriptedExecutor
from omnichannel.channels.base import (
    APPROVAL_PENDING_RESPONSE,
    EMPTY_MESSAGE_RESPONSE,
    TECHNICAL_DIFFICULTIES_RESPONSE,
    UNIDENTIFIED_RESPONSE,
    ChannelReply,
    is_goodbye_message,
)
from omnichannel.channels.sms import SmsChannel
from omnichannel.channels.voice import VOICE_EMPTY_PROMPT_RESPONSE, VoiceSession
from omnichannel.conversation.orchestrator import TurnOrchestrator
from omnichannel.errors import PersistenceFailureError
from omnichannel.identity.base import SubjectResolver
from omnichannel.identity.phone_resolver import PhoneSubjectResolver

from tests.conftest import SUBJECT, make_options, make_result


class ExplodingResolver(SubjectResolver):
    async def resolve(self, metadata):
        raise RuntimeError("identity graph unreachable")


class GatedStreamingExecutor(ScriptedExecutor):
    """Streams one sentence, then waits for ``release`` before finishing."""

    def __init__(self) -> None:
        super().__init__()
        self.release = asyncio.Event()
        self.finished = False

    async def run_streamed(self, agent, run_input, context, *, max_turns=10):
        yield "Your order has shipped today. "
        await self.release.wait()
        yield "It arrives on Friday."
        self.finished = True
        yield make_result("Your order has shipped today. It arrives on Friday.")


@pytest.fixture
def sms(phone_resolver, orchestrator):
    return SmsChannel(phone_resolver, orchestrator)


def _voice(phone_resolver, orchestrator, caller="+1 415-555-0100") -> VoiceSession:
    setup = {"from": caller, "to": "+18005550199", "callSid": "CA123"}
    return VoiceSession(phone_resolver, orchestrator, setup)


async def _spoken(chunks) -> str:
    parts = []
    async for chunk in chunks:
        if chunk.last:
            break
        parts.append(chunk.text)
    return " ".join(parts)


class TestGoodbye:
    @pytest.mark.parametrize("text", [
        "bye", "Goodbye!", "thank you, bye", "see you later", "have a great day",
        "that's all", "I'm done", "end chat",
    ])
    def test_goodbyes(self, text):
        assert is_goodbye_message(text) is True

    @pytest.mark.parametrize("text", ["where is my order?", "maybe", "buy more"])
    def test_not_goodbyes(self, text):
        assert is_goodbye_message(text) is False


class TestSmsChannel:
    @pytest.mark.asyncio
    async def test_webhook_round_trip(self, sms):
        segments = await sms.handle_webhook(
            {"From": "(415) 555-0100", "To": "+18005550199", "Body": "where is order 1234567?"}
        )
        assert segments == [
            "Order 1234567 has shipped and should arrive within 3 business days."
        ]

    @pytest.mark.asyncio
    async def test_empty_body(self, sms, sessions):
        reply = await sms.process_request({"From": "4155550100", "Body": "  "})
        assert reply.text == EMPTY_MESSAGE_RESPONSE
        assert len(sessions.contexts) == 0

    @pytest.mark.asyncio
    async def test_missing_sender(self, sms):
        reply = await sms.process_request({"Body": "hello"})
        assert reply.text == UNIDENTIFIED_RESPONSE
        assert reply.subject_id is None

    @pytest.mark.asyncio
    async def test_resolver_crash_is_hidden(self, orchestrator):
        channel = SmsChannel(ExplodingResolver(), orchestrator)
        reply = await channel.process_request({"From": "4155550100", "Body": "hello"})
        assert reply.text == TECHNICAL_DIFFICULTIES_RESPONSE

    @pytest.mark.asyncio
    async def test_turn_crash_is_hidden(self, sms, sessions, monkeypatch):
        async def broken_save(subject_id, serialized):
            raise PersistenceFailureError("disk full")

        monkeypatch.setattr(sessions, "save_run_state", broken_save)
        reply = await sms.process_request({"From": "4155550100", "Body": "refund please"})
        assert reply.text == TECHNICAL_DIFFICULTIES_RESPONSE
        assert reply.subject_id == SUBJECT

    @pytest.mark.asyncio
    async def test_approval_notice(self, sms):
        reply = await sms.process_request({"From": "4155550100", "Body": "refund order 7654321"})
        assert reply.text == APPROVAL_PENDING_RESPONSE
        assert reply.result.awaiting_approvals is True

    @pytest.mark.asyncio
    async def test_goodbye_ends_session(self, sms, sessions, listener):
        await sms.process_request({"From": "4155550100", "Body": "hello"})
        reply = await sms.process_request({"From": "4155550100", "Body": "thanks, bye"})
        assert reply.session_ended is True
        assert sessions.has_context(SUBJECT) is False
        assert listener.names()[-1] == "conversation_end"

    @pytest.mark.asyncio
    async def test_turn_runs_with_sms_channel(self, sms, sessions, listener):
        await sms.process_request({"From": "4155550100", "Body": "hello"})
        assert listener.events[0].channel == "sms"

    @pytest.mark.asyncio
    async def test_long_reply_is_segmented(self, sms):
        segments = sms.frame(ChannelReply(text="word " * 100))
        assert len(segments) > 1
        assert segments[0].startswith("Part 1/")


class TestVoiceSession:
    @pytest.mark.asyncio
    async def test_greeting(self, phone_resolver, orchestrator):
        session = _voice(phone_resolver, orchestrator)
        spoken = await _spoken(session.start())
        assert spoken == DEFAULT_GREETING
        assert session.subject_id == SUBJECT

    @pytest.mark.asyncio
    async def test_greeting_for_unknown_caller(self, phone_resolver, orchestrator):
        session = _voice(phone_resolver, orchestrator, caller="")
        assert await _spoken(session.start()) == DEFAULT_GREETING
        assert session.subject_id is None

    @pytest.mark.asyncio
    async def test_prompt_speaks_reply(self, phone_resolver, orchestrator, sessions):
        session = _voice(phone_resolver, orchestrator)
        await _spoken(session.start())
        spoken = await _spoken(session.prompt("status of order 1234567"))
        assert "1234567" in spoken
        assert sessions.get_context(SUBJECT).message_count == 2

    @pytest.mark.asyncio
    async def test_empty_prompt(self, phone_resolver, orchestrator):
        session = _voice(phone_resolver, orchestrator)
        assert await _spoken(session.prompt("")) == VOICE_EMPTY_PROMPT_RESPONSE

    @pytest.mark.asyncio
    async def test_close_ends_session_once(self, phone_resolver, orchestrator, sessions, listener):
        session = _voice(phone_resolver, orchestrator)
        await _spoken(session.start())
        await session.close()
        await session.close()
        assert sessions.has_context(SUBJECT) is False
        assert listener.names().count("conversation_end") == 1

    @pytest.mark.asyncio
    async def test_close_before_start_is_noop(self, phone_resolver, orchestrator, listener):
        session = _voice(phone_resolver, orchestrator)
        await session.close()
        assert listener.events == []

    @pytest.mark.asyncio
    async def test_greeting_when_subject_map_cannot_be_written(self, tmp_path, orchestrator):
        blocker = tmp_path / "blocker"
        blocker.write_text("a file, not a directory", encoding="utf-8")
        resolver = PhoneSubjectResolver(map_file=str(blocker / "subject-map.json"))
        session = _voice(resolver, orchestrator)

        assert await _spoken(session.start()) == DEFAULT_GREETING
        assert session.subject_id is None

    @pytest.mark.asyncio
    async def test_greeting_when_resolver_crashes(self, orchestrator, listener):
        session = _voice(ExplodingResolver(), orchestrator)
        assert await _spoken(session.start()) == DEFAULT_GREETING
        assert session.subject_id is None
        await session.close()
        assert listener.events == []

    @pytest.mark.asyncio
    async def test_first_chunk_spoken_while_reply_still_streaming(
        self, phone_resolver, sessions, locks
    ):
        executor = GatedStreamingExecutor()
        orchestrator = TurnOrchestrator(
            sessions, executor, locks=locks, default_options=make_options()
        )
        session = _voice(phone_resolver, orchestrator)
        chunks = session.prompt("where is my order?")

        first = await chunks.__anext__()
        assert first.text == "Your order has shipped today."
        assert executor.finished is False

        executor.release.set()
        assert await _spoken(chunks) == "It arrives on Friday."
        assert executor.finished is True
        assert sessions.get_context(SUBJECT).message_count == 2

    @pytest.mark.asyncio
    async def test_failed_turn_speaks_apology(self, phone_resolver, sessions, locks):
        orchestrator = TurnOrchestrator(
            sessions, ScriptedExecutor(fail_on="boom"), locks=locks,
            default_options=make_options(),
        )
        session = _voice(phone_resolver, orchestrator)
        spoken = await _spoken(session.prompt("boom"))
        assert spoken.startswith("I apologize")

    @pytest.mark.asyncio
    async def test_approval_notice_is_spoken(self, phone_resolver, orchestrator):
        session = _voice(phone_resolver, orchestrator)
        spoken = await _spoken(session.prompt("refund order 7654321"))
        assert spoken.startswith("Some of the actions")


class TestCrossChannel:
    @pytest.mark.asyncio
    async def test_sms_then_voice_share_context(self, sms, phone_resolver, orchestrator, sessions):
        await sms.process_request({"From": "(415) 555-0100", "Body": "my order is #ORD1234567"})

        session = _voice(phone_resolver, orchestrator, caller="4155550100")
        await _spoken(session.start())
        spoken = await _spoken(session.prompt("any update?"))

        assert session.subject_id == SUBJECT
        assert "ORD1234567" in spoken
        context = sessions.get_context(SUBJECT)
        assert [item["content"] for item in context.conversation_history if item["role"] == "user"] == [
            "my order is #ORD1234567", "any update?",
        ]

    @pytest.mark.asyncio
    async def test_sms_approval_resolved_by_subject_id(self, sms, approvals):
        reply = await sms.process_request({"From": "4155550100", "Body": "refund order 7654321"})
        call_id = reply.result.pending_approvals[0].tool_call_id

        result = await approvals.handle_submission(
            {"subjectId": reply.subject_id, "decisions": [{"toolCallId": call_id, "approved": True}]}
        )

        assert result.response == "Your refund for order 7654321 has been processed."
