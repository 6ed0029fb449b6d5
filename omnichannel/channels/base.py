"""
Shared request cycle for channel adapters.

Every channel goes through the same steps:

    extract message + metadata -> resolve subject -> run turn
        -> reply text (or approval notice) -> end session on goodbye

Transport parsing stays in the subclasses, which only say where the
message text and identity metadata live in their payloads. Internal
errors never reach the customer; they get a plain apology instead.
"""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Any, Optional

from omnichannel.conversation.orchestrator import FragmentSink, TurnOptions, TurnOrchestrator
from omnichannel.errors import IdentifierNotFoundError, SessionManagerError
from omnichannel.identity.base import SubjectResolver
from omnichannel.logging_context import set_subject_id
from omnichannel.schemas.run_state_schema import TurnResult

logger = logging.getLogger(__name__)

EMPTY_MESSAGE_RESPONSE = "I didn't receive any message. Could you please try again?"
UNIDENTIFIED_RESPONSE = (
    "Sorry, I couldn't identify your conversation. Please try again in a moment."
)
TECHNICAL_DIFFICULTIES_RESPONSE = (
    "I apologize, but I'm experiencing technical difficulties. "
    "Please try again or contact support."
)
APPROVAL_PENDING_RESPONSE = (
    "Some of the actions needed for your request require approval. "
    "I'll follow up as soon as they have been reviewed."
)

GOODBYE_PATTERNS = [
    re.compile(p) for p in (
        r"^bye\b",
        r"^goodbye\b",
        r"^good\s*bye\b",
        r"\bthank\s*you\b.*\bbye\b",
        r"^thanks?\b.*\bbye\b",
        r"\bsee\s*you\b",
        r"\bhave\s*a\s*(good|great|nice)\s*(day|night)\b",
        r"^that'?s\s*all\b",
        r"^i'?m\s*(done|finished|good)\b",
        r"^end\s*(chat|conversation|session)\b",
        r"^quit\b",
        r"^exit\b",
    )
]


def is_goodbye_message(message: str) -> bool:
    lower = message.lower().strip()
    return any(pattern.search(lower) for pattern in GOODBYE_PATTERNS)


@dataclass
class ChannelReply:
    """What a channel should say back after one inbound message."""
    text: str
    subject_id: Optional[str] = None
    result: Optional[TurnResult] = None
    session_ended: bool = False


class ChannelAdapter(ABC):
    """Base adapter: resolve the subject, run the turn, shape the reply."""

    channel = "unknown"
    empty_message_response = EMPTY_MESSAGE_RESPONSE

    def __init__(
        self,
        resolver: SubjectResolver,
        orchestrator: TurnOrchestrator,
        options: Optional[TurnOptions] = None,
    ) -> None:
        self.resolver = resolver
        self.orchestrator = orchestrator
        self.options = options or orchestrator.default_options

    @property
    def sessions(self):
        return self.orchestrator.sessions

    @abstractmethod
    def get_user_message(self, request: dict[str, Any]) -> str:
        """Text the customer sent, or an empty string."""

    @abstractmethod
    def get_subject_metadata(self, request: dict[str, Any]) -> dict[str, Any]:
        """Identity metadata for the subject resolver."""

    async def process_request(
        self,
        request: dict[str, Any],
        on_fragment: Optional[FragmentSink] = None,
    ) -> ChannelReply:
        message = (self.get_user_message(request) or "").strip()
        if not message:
            logger.warning("Empty %s message received", self.channel)
            return ChannelReply(text=self.empty_message_response)

        metadata = self.get_subject_metadata(request)
        try:
            subject_id = await self.resolver.resolve(metadata)
        except IdentifierNotFoundError as exc:
            logger.warning("Could not resolve %s subject: %s", self.channel, exc)
            return ChannelReply(text=UNIDENTIFIED_RESPONSE)
        except Exception:
            logger.exception("Subject resolution failed on %s", self.channel)
            return ChannelReply(text=TECHNICAL_DIFFICULTIES_RESPONSE)

        set_subject_id(subject_id)
        logger.info("Processing %s message (%d chars)", self.channel, len(message))
        try:
            result = await self.orchestrator.process_turn(
                subject_id, message, options=self.turn_options(metadata), on_fragment=on_fragment
            )
        except Exception:
            logger.exception("Turn processing failed for '%s'", subject_id)
            return ChannelReply(text=TECHNICAL_DIFFICULTIES_RESPONSE, subject_id=subject_id)

        if result.awaiting_approvals:
            return ChannelReply(
                text=APPROVAL_PENDING_RESPONSE, subject_id=subject_id, result=result
            )

        reply = ChannelReply(text=result.response or "", subject_id=subject_id, result=result)
        if is_goodbye_message(message):
            reply.session_ended = await self.end_session(subject_id)
        return reply

    def turn_options(self, metadata: dict[str, Any]) -> TurnOptions:
        extra = {}
        if metadata.get("customer_profile"):
            extra["customer_profile"] = metadata["customer_profile"]
        return replace(self.options, channel=self.channel, metadata=extra)

    async def end_session(self, subject_id: str) -> bool:
        """Best-effort end of a session. Returns False if it could not be ended."""
        try:
            await self.sessions.end_session(subject_id)
        except SessionManagerError as exc:
            logger.error("Failed to end %s session '%s': %s", self.channel, subject_id, exc)
            return False
        logger.info("Session '%s' ended by %s", subject_id, self.channel)
        return True
