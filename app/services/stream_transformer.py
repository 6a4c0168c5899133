"""
UPSTREAM STREAM TRANSFORMER
===========================

Reads the raw SSE body coming back from the completion provider and re-emits a
clean SSE stream for the browser/terminal client:

  upstream:  data: {"choices":[{"delta":{"content":"Hel"}}]}\n\n
  relayed:   data: Hel\n\n

HOW IT WORKS:
  - One incremental UTF-8 decoder lives for the whole stream, so a multi-byte
    character split across two reads is decoded correctly.
  - Decoded text is appended to a carry-over buffer and split on "\n"; the last
    piece (possibly a partial line) is kept for the next read.
  - Each complete line is framed independently. Bad lines (no "data: " prefix,
    invalid JSON) are logged and skipped; they never abort the stream.
  - Upstream EOF ends the stream. A trailing partial line is discarded.
  - The upstream response is released exactly once, whatever happens.
"""

import codecs
import json
import logging
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional

import httpx

from app.exceptions import FrameParseError
from app.utils.sanitize import sanitize_content


logger = logging.getLogger("RelayChat")

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"


def format_event(payload: str) -> bytes:
    """Frame payload as one SSE event."""
    return f"{DATA_PREFIX}{payload}\n\n".encode("utf-8")


DONE_EVENT = format_event(DONE_SENTINEL)


def extract_delta(payload: str) -> str:
    """
    Return choices[0].delta.content from a JSON payload ("" when absent).

    Raises FrameParseError if the payload is not JSON or the content is not text.
    """
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        raise FrameParseError(f"Invalid JSON payload: {e}", payload) from e

    if not isinstance(data, dict):
        return ""
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return ""
    delta = choices[0].get("delta")
    if not isinstance(delta, dict):
        return ""
    content = delta.get("content")
    if content is None:
        return ""
    if not isinstance(content, str):
        raise FrameParseError(f"Delta content is {type(content).__name__}, expected text", payload)
    return content


class TransformerState(str, Enum):
    AWAITING_BYTES = "awaiting_bytes"
    HAVE_PARTIAL_LINE = "have_partial_line"
    TERMINATED = "terminated"


class StreamTransformer:
    """
    Re-frames one upstream SSE body. Iterate it (async for) to get the output bytes.

    chunks is any async iterator of raw bytes; release is awaited once when the
    stream ends, fails, or is abandoned by the consumer.
    """

    def __init__(
        self,
        chunks: AsyncIterator[bytes],
        release: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        self._chunks = chunks
        self._release = release
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="strict")
        self._carry = ""
        self._done_sent = False
        self._released = False
        self.state = TransformerState.AWAITING_BYTES
        self.stats: Dict[str, int] = {
            "events_emitted": 0,
            "lines_skipped": 0,
            "decode_recoveries": 0,
        }

    @classmethod
    def from_response(cls, response: httpx.Response) -> "StreamTransformer":
        """Wrap an open streaming httpx response; closing it is the transformer's job."""
        return cls(response.aiter_bytes(), response.aclose)

    @property
    def released(self) -> bool:
        return self._released

    # ------------------------------------------------------------------------------
    # DECODING AND LINE SPLITTING
    # ------------------------------------------------------------------------------

    def _decode(self, chunk: bytes) -> str:
        try:
            return self._decoder.decode(chunk)
        except UnicodeDecodeError as e:
            logger.warning("Decode error, retrying without the first byte: %s", e)
            self.stats["decode_recoveries"] += 1
        try:
            return self._decoder.decode(chunk[1:])
        except UnicodeDecodeError as e:
            logger.warning("Ignoring invalid bytes in chunk of %d bytes: %s", len(chunk), e)

        # Drop only the invalid bytes; pending and trailing partial sequences carry over.
        lenient = codecs.getincrementaldecoder("utf-8")(errors="ignore")
        lenient.setstate(self._decoder.getstate())
        text = lenient.decode(chunk)
        self._decoder.setstate(lenient.getstate())
        return text

    def feed(self, text: str) -> List[bytes]:
        """Add decoded text and return the events for every line it completes."""
        lines = (self._carry + text).split("\n")
        self._carry = lines.pop()
        self.state = (
            TransformerState.HAVE_PARTIAL_LINE if self._carry else TransformerState.AWAITING_BYTES
        )

        events = []
        for line in lines:
            event = self.process_line(line)
            if event is not None:
                events.append(event)
        self.stats["events_emitted"] += len(events)
        return events

    # ------------------------------------------------------------------------------
    # FRAMING
    # ------------------------------------------------------------------------------

    def process_line(self, line: str) -> Optional[bytes]:
        """Turn one complete upstream line into an output event, or None to skip it."""
        line = line.rstrip("\r")
        if not line.strip():
            return None
        if not line.startswith(DATA_PREFIX):
            logger.warning("Unexpected line format: %r", line)
            self.stats["lines_skipped"] += 1
            return None

        payload = line[len(DATA_PREFIX):]
        if payload == DONE_SENTINEL:
            if self._done_sent:
                return None
            self._done_sent = True
            return DONE_EVENT

        try:
            content = sanitize_content(extract_delta(payload))
        except FrameParseError as e:
            logger.warning("Failed to parse or process SSE message %r: %s", e.line, e)
            self.stats["lines_skipped"] += 1
            return None

        if not content:
            return None
        return format_event(content)

    # ------------------------------------------------------------------------------
    # STREAM
    # ------------------------------------------------------------------------------

    async def release(self) -> None:
        """Release the upstream response. Safe to call more than once."""
        if self._released:
            return
        self._released = True
        self.state = TransformerState.TERMINATED
        if self._release is not None:
            await self._release()

    async def stream(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in self._chunks:
                if not chunk:
                    continue
                for event in self.feed(self._decode(chunk)):
                    yield event
            if self._carry:
                logger.debug("Discarding unterminated trailing line: %r", self._carry)
                self._carry = ""
        except Exception as e:
            logger.error("Stream processing error: %s", e, exc_info=True)
            raise
        finally:
            await self.release()

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self.stream()
