from omnichannel.channels.base import ChannelAdapter, ChannelReply, is_goodbye_message
from omnichannel.channels.framing import (
    VoiceChunk,
    collect_sms_segments,
    pace_voice_chunks,
    segment_sms,
)
from omnichannel.channels.sms import SmsChannel
from omnichannel.channels.voice import VoiceChannel, VoiceSession

__all__ = [
    "ChannelAdapter",
    "ChannelReply",
    "is_goodbye_message",
    "VoiceChunk",
    "collect_sms_segments",
    "pace_voice_chunks",
    "segment_sms",
    "SmsChannel",
    "VoiceChannel",
    "VoiceSession",
]
