"""
Voice channel.

A ``VoiceSession`` lives for one call. The transport hands it the call
setup message once, then one ``voicePrompt`` per caller utterance, and
streams the returned ``VoiceChunk`` objects to text-to-speech. Replies
from a streaming executor are paced out while the turn is still
running. Closing the call ends the session on a best-effort basis; a
turn still in flight is not cancelled.
"""

import asyncio
from typing import Any, AsyncIterator, Optional

from omnichannel.agents.prompts import DEFAULT_GREETING, GREETING_PROMPT
from omnichannel.agents.registry import get_agent
from omnichannel.channels.base import ChannelAdapter, ChannelReply
from omnichannel.channels.framing import Fragments, VoiceChunk, pace_voice_chunks
from omnichannel.config import FramingConfig
from omnichannel.conversation.orchestrator import TurnOptions, TurnOrchestrator, run_executor
from omnichannel.errors import ExecutorFailureError, IdentifierNotFoundError
from omnichannel.identity.base import SubjectResolver
from omnichannel.logging_context import get_session_logger, set_subject_id
from omnichannel.schemas.context_schema import Role, make_item
from omnichannel.schemas.run_state_schema import TurnStatus

logger = get_session_logger(__name__)

VOICE_EMPTY_PROMPT_RESPONSE = "I didn't catch that. Could you please repeat your question?"


class VoiceChannel(ChannelAdapter):
    """Maps voice transport messages onto the shared request cycle."""

    channel = "voice"
    empty_message_response = VOICE_EMPTY_PROMPT_RESPONSE

    def get_user_message(self, request: dict[str, Any]) -> str:
        return str(request.get("voicePrompt") or "")

    def get_subject_metadata(self, request: dict[str, Any]) -> dict[str, Any]:
        metadata = {
            "from": request.get("from"),
            "to": request.get("to"),
            "callSid": request.get("callSid"),
            "channel": self.channel,
        }
        return {k: v for k, v in metadata.items() if v}


class VoiceSession:
    """One phone call: greeting, prompts, paced replies, close."""

    def __init__(
        self,
        resolver: SubjectResolver,
        orchestrator: TurnOrchestrator,
        setup: dict[str, Any],
        framing: Optional[FramingConfig] = None,
        greeting_timeout_s: float = 10.0,
        options: Optional[TurnOptions] = None,
    ) -> None:
        self.adapter = VoiceChannel(resolver, orchestrator, options)
        self.setup = setup
        self.framing = framing or FramingConfig()
        self.greeting_timeout_s = greeting_timeout_s
        self.subject_id: Optional[str] = None
        self.closed = False

    async def start(self) -> AsyncIterator[VoiceChunk]:
        """Resolve the caller and speak the greeting.

        A caller that cannot be resolved still hears the default greeting.
        """
        metadata = self.adapter.get_subject_metadata(self.setup)
        try:
            self.subject_id = await self.adapter.resolver.resolve(metadata)
        except IdentifierNotFoundError as exc:
            logger.warning("Voice caller could not be identified: %s", exc)
        except Exception:
            logger.exception("Subject resolution failed on voice call setup")
        if self.subject_id:
            set_subject_id(self.subject_id)
            logger.info("Voice call started (callSid=%s)", self.setup.get("callSid", "unknown"))

        greeting = await self._generate_greeting()
        async for chunk in self._speak([greeting]):
            yield chunk

    async def prompt(self, text: str) -> AsyncIterator[VoiceChunk]:
        """Run one caller utterance through the turn cycle and speak the reply."""
        request = dict(self.setup, voicePrompt=text)
        fragments: asyncio.Queue = asyncio.Queue()

        async def run_turn() -> ChannelReply:
            try:
                return await self.adapter.process_request(request, on_fragment=fragments.put)
            finally:
                fragments.put_nowait(None)

        turn = asyncio.create_task(run_turn())
        try:
            async for chunk in self._speak(self._reply_fragments(fragments, turn)):
                yield chunk
        finally:
            if not turn.done():
                turn.cancel()

    async def close(self) -> None:
        """End the session when the call drops. Failures are logged only."""
        if self.closed:
            return
        self.closed = True
        if self.subject_id is None:
            return
        await self.adapter.end_session(self.subject_id)

    async def _reply_fragments(
        self, fragments: asyncio.Queue, turn: "asyncio.Task[ChannelReply]"
    ) -> AsyncIterator[str]:
        """Streamed text as it arrives, then whatever the finished reply adds."""
        streamed = False
        while True:
            fragment = await fragments.get()
            if fragment is None:
                break
            streamed = True
            yield fragment

        reply = await turn
        if reply.subject_id:
            self.subject_id = reply.subject_id
        completed = reply.result is not None and reply.result.status == TurnStatus.COMPLETED
        if streamed and completed:
            return
        # Nothing streamed, or the turn failed partway: speak the reply text.
        yield f" {reply.text}" if streamed else reply.text

    async def _generate_greeting(self) -> str:
        if self.subject_id is None:
            return DEFAULT_GREETING

        orchestrator = self.adapter.orchestrator
        agent = get_agent(orchestrator.default_agent, self.adapter.channel)
        context = orchestrator.sessions.get_context(
            self.subject_id, agent.name, self.adapter.channel
        )
        options = TurnOptions(
            timeout_s=self.greeting_timeout_s, max_turns=1, channel=self.adapter.channel
        )
        try:
            result = await run_executor(
                orchestrator.executor,
                agent,
                [make_item(Role.SYSTEM, GREETING_PROMPT)],
                context,
                options,
            )
        except ExecutorFailureError as exc:
            logger.warning("Greeting generation failed, using default: %s", exc)
            return DEFAULT_GREETING
        return result.final_output or DEFAULT_GREETING

    async def _speak(self, fragments: Fragments) -> AsyncIterator[VoiceChunk]:
        async for chunk in pace_voice_chunks(
            fragments,
            min_chunk=self.framing.voice_min_chunk,
            max_chunk=self.framing.voice_max_chunk,
            chunk_interval_ms=self.framing.voice_chunk_interval_ms,
            max_chunk_delay_ms=self.framing.voice_max_chunk_delay_ms,
        ):
            yield chunk
