"""SMS channel: Twilio-style webhook fields in, numbered segments out."""

import logging
from typing import Any, Optional

from omnichannel.channels.base import ChannelAdapter, ChannelReply
from omnichannel.channels.framing import SMS_MULTIPART_LIMIT, SMS_SEGMENT_LIMIT, segment_sms
from omnichannel.conversation.orchestrator import TurnOptions, TurnOrchestrator
from omnichannel.identity.base import SubjectResolver

logger = logging.getLogger(__name__)


class SmsChannel(ChannelAdapter):
    """Handles inbound SMS webhooks (``From``, ``To``, ``Body``, ``MessageSid``)."""

    channel = "sms"

    def __init__(
        self,
        resolver: SubjectResolver,
        orchestrator: TurnOrchestrator,
        options: Optional[TurnOptions] = None,
        segment_limit: int = SMS_SEGMENT_LIMIT,
        multipart_limit: int = SMS_MULTIPART_LIMIT,
    ) -> None:
        super().__init__(resolver, orchestrator, options)
        self.segment_limit = segment_limit
        self.multipart_limit = multipart_limit

    def get_user_message(self, request: dict[str, Any]) -> str:
        return str(request.get("Body") or "")

    def get_subject_metadata(self, request: dict[str, Any]) -> dict[str, Any]:
        metadata = {
            "From": request.get("From"),
            "To": request.get("To"),
            "messageSid": request.get("MessageSid"),
            "channel": self.channel,
        }
        return {k: v for k, v in metadata.items() if v}

    async def handle_webhook(self, form: dict[str, Any]) -> list[str]:
        """Process one inbound SMS and return the outbound message bodies."""
        reply = await self.process_request(form)
        return self.frame(reply)

    def frame(self, reply: ChannelReply) -> list[str]:
        segments = segment_sms(
            reply.text,
            single_limit=self.segment_limit,
            multipart_limit=self.multipart_limit,
        )
        if len(segments) > 1:
            logger.debug("Reply split into %d SMS segments", len(segments))
        return segments
