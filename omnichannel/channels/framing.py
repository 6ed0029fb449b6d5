"""
Output framing for SMS and voice.

SMS has no latency budget, so the whole response is collected and split
into numbered segments that each fit one message:

    "Part 1/3: Your refund for order ..."

Voice is latency bound. Fragments are turned into TTS-sized chunks as
they arrive and emitted no faster than the pacing interval; the stream
ends with an empty chunk flagged ``last``.
"""

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from typing import AsyncIterable, AsyncIterator, Awaitable, Callable, Iterable, Union

logger = logging.getLogger(__name__)

SMS_SEGMENT_LIMIT = 160
SMS_MULTIPART_LIMIT = 153
SMS_BREAK_WINDOW = 30
VOICE_BREAK_WINDOW = 20
BREAK_PUNCTUATION = ".,!?;:"

Fragments = Union[AsyncIterable[str], Iterable[str]]


# --- SMS ---

def sms_prefix(part: int, total: int) -> str:
    return f"Part {part}/{total}: "


def segment_sms(
    text: str,
    single_limit: int = SMS_SEGMENT_LIMIT,
    multipart_limit: int = SMS_MULTIPART_LIMIT,
    window: int = SMS_BREAK_WINDOW,
) -> list[str]:
    """Split ``text`` into SMS segments.

    Text that fits one message is returned unprefixed. Longer text is
    split greedily, preferring a whitespace or punctuation break in the
    last ``window`` characters of each segment, and every part gets a
    ``"Part i/n: "`` prefix. Joining the payloads reproduces the text up
    to whitespace runs.

    Examples:
        >>> segment_sms("Hi there")
        ['Hi there']
        >>> len(segment_sms("A" * 500))
        4
    """
    text = text.strip()
    if not text:
        return []
    if len(text) <= single_limit:
        return [text]

    total = math.ceil(len(text) / multipart_limit)
    while True:
        payloads = _split_payloads(text, total, single_limit, window)
        if len(payloads) <= total:
            break
        # Longer numbering means longer prefixes; re-split with the real count.
        total = len(payloads)

    total = len(payloads)
    return [sms_prefix(i, total) + payload for i, payload in enumerate(payloads, 1)]


def _split_payloads(text: str, total: int, limit: int, window: int) -> list[str]:
    payloads = []
    rest = text
    part = 1
    while rest:
        budget = limit - len(sms_prefix(part, total))
        if len(rest) <= budget:
            payloads.append(rest)
            break
        cut = _sms_break(rest, budget, window)
        payloads.append(rest[:cut])
        rest = rest[cut:].lstrip()
        part += 1
    return payloads


def _sms_break(rest: str, budget: int, window: int) -> int:
    """Index to cut ``rest`` at so the payload keeps any boundary whitespace."""
    for i in range(budget - 1, max(budget - window, 0) - 1, -1):
        ch = rest[i]
        if ch.isspace():
            return i + 1
        if ch in BREAK_PUNCTUATION:
            if not rest[i + 1].isspace():
                return i + 1
            if i + 2 <= budget:
                return i + 2
    # No boundary in the window: cut mid-word, never right before whitespace.
    if rest[budget].isspace() and budget > 1:
        return budget - 1
    return budget


async def collect_sms_segments(fragments: Fragments, **limits) -> list[str]:
    """Concatenate a fragment stream and segment the result."""
    parts = [fragment async for fragment in _aiter(fragments)]
    return segment_sms("".join(parts), **limits)


# --- Voice ---

@dataclass(frozen=True)
class VoiceChunk:
    """One TTS-ready piece of a spoken response."""
    text: str
    last: bool = False


def _voice_break(buffer: str, max_chunk: int) -> int:
    for i in range(max_chunk - 1, max(max_chunk - VOICE_BREAK_WINDOW, 0) - 1, -1):
        if buffer[i].isspace() or buffer[i] in BREAK_PUNCTUATION:
            return i + 1
    return max_chunk


async def pace_voice_chunks(
    fragments: Fragments,
    min_chunk: int = 10,
    max_chunk: int = 100,
    chunk_interval_ms: int = 100,
    max_chunk_delay_ms: int = 400,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> AsyncIterator[VoiceChunk]:
    """Turn a stream of text fragments into paced voice chunks.

    Chunks are emitted once at least ``min_chunk`` characters are
    buffered (or the stream ends), at most ``max_chunk`` characters each.
    Consecutive chunks are spaced by ``min(chunk_interval_ms,
    max_chunk_delay_ms)``; a chunk that was already late goes out
    immediately. The final item is always ``VoiceChunk("", last=True)``.
    """
    interval_s = min(chunk_interval_ms, max_chunk_delay_ms) / 1000
    max_delay_s = max_chunk_delay_ms / 1000
    last_emit = None
    buffer = ""

    async def emit(text: str) -> AsyncIterator[VoiceChunk]:
        nonlocal last_emit
        if last_emit is not None:
            elapsed = clock() - last_emit
            if elapsed < interval_s:
                await sleep(interval_s - elapsed)
            elif elapsed > max_delay_s:
                logger.warning(
                    "Voice chunk gap of %.0fms exceeds %dms budget",
                    elapsed * 1000, max_chunk_delay_ms,
                )
        last_emit = clock()
        yield VoiceChunk(text)

    async for fragment in _aiter(fragments):
        buffer += fragment
        while len(buffer) >= min_chunk:
            cut = len(buffer) if len(buffer) <= max_chunk else _voice_break(buffer, max_chunk)
            text, buffer = buffer[:cut].strip(), buffer[cut:]
            if text:
                async for chunk in emit(text):
                    yield chunk

    while buffer.strip():
        cut = len(buffer) if len(buffer) <= max_chunk else _voice_break(buffer, max_chunk)
        text, buffer = buffer[:cut].strip(), buffer[cut:]
        if text:
            async for chunk in emit(text):
                yield chunk

    yield VoiceChunk("", last=True)


async def _aiter(fragments: Fragments) -> AsyncIterator[str]:
    if isinstance(fragments, AsyncIterable):
        async for fragment in fragments:
            yield fragment
    else:
        for fragment in fragments:
            yield fragment
