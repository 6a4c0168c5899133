"""
DOWNSTREAM STREAM CONSUMER
==========================

Client side of the relay: reads the SSE stream returned by POST /api/chat and
rebuilds the assistant's text as it arrives, publishing every change to a
rendering callback.

TOKEN JOIN:
  The model sometimes streams word fragments without the space between them.
  When the buffer ends in [A-Za-z0-9] and the next fragment starts with
  [A-Za-z0-9], one space is inserted. Nothing is ever inserted around
  punctuation, so "end." + "Next" gives "end.Next". This rule is a fixed
  contract; the terminal client and the tests depend on it.

OWNERSHIP:
  Only one response may fill the reconstruction buffer at a time. begin() hands
  out a fresh buffer tagged with a request id; a newer begin() supersedes the
  older one, and the older consumer stops at its next chunk.
"""

import codecs
import logging
import re
import threading
import uuid
from typing import Callable, Optional

import requests


logger = logging.getLogger("RelayChat")

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"

_ALNUM = re.compile(r"[A-Za-z0-9]")

UpdateCallback = Callable[[str], None]


def join_token(text: str, fragment: str) -> str:
    """Append fragment to text, inserting one space between two alphanumeric characters."""
    needs_space = (
        len(text) > 0
        and len(fragment) > 0
        and _ALNUM.fullmatch(text[-1]) is not None
        and _ALNUM.fullmatch(fragment[0]) is not None
    )
    return text + (" " if needs_space else "") + fragment


class ReconstructionBuffer:
    """Accumulated text of one in-flight response."""

    def __init__(self, request_id: str):
        self.request_id = request_id
        self.text = ""

    def append(self, fragment: str) -> str:
        self.text = join_token(self.text, fragment)
        return self.text

    def clear(self) -> None:
        self.text = ""


class StreamConsumer:
    """Reads relayed SSE responses into a single reconstruction buffer."""

    def __init__(self, on_update: Optional[UpdateCallback] = None):
        self.on_update = on_update
        self._lock = threading.Lock()
        self._buffer: Optional[ReconstructionBuffer] = None

    # ------------------------------------------------------------------------------
    # OWNERSHIP
    # ------------------------------------------------------------------------------

    @property
    def active_request_id(self) -> Optional[str]:
        with self._lock:
            return self._buffer.request_id if self._buffer else None

    def begin(self, request_id: Optional[str] = None) -> ReconstructionBuffer:
        """Start a new response, superseding any response still in flight."""
        buffer = ReconstructionBuffer(request_id or str(uuid.uuid4()))
        with self._lock:
            previous = self._buffer
            self._buffer = buffer
        if previous is not None:
            logger.info("Request %s superseded by %s", previous.request_id, buffer.request_id)
        return buffer

    def owns(self, buffer: ReconstructionBuffer) -> bool:
        with self._lock:
            return self._buffer is buffer

    def _publish(self, buffer: ReconstructionBuffer) -> None:
        if self.on_update is not None and self.owns(buffer):
            self.on_update(buffer.text)

    def finish(self, buffer: ReconstructionBuffer) -> str:
        """Clear the buffer, release ownership and return the text it held."""
        text = buffer.text
        buffer.clear()
        with self._lock:
            owned = self._buffer is buffer
            if owned:
                self._buffer = None
        if owned and self.on_update is not None:
            try:
                self.on_update(buffer.text)
            except Exception as e:
                logger.error("Renderer failed while clearing %s: %s", buffer.request_id, e, exc_info=True)
        return text

    # ------------------------------------------------------------------------------
    # READING
    # ------------------------------------------------------------------------------

    def apply_line(self, buffer: ReconstructionBuffer, line: str) -> None:
        """Apply one SSE line to buffer; non-data lines and [DONE] have no effect."""
        line = line.rstrip("\r")
        if not line.startswith(DATA_PREFIX):
            return
        content = line[len(DATA_PREFIX):]
        if content == DONE_SENTINEL:
            return
        buffer.append(content)
        self._publish(buffer)

    def consume(self, response: requests.Response, request_id: Optional[str] = None) -> str:
        """
        Read response to the end and return the reconstructed text.

        Read errors and renderer failures are logged and end the loop; whatever
        was accumulated so far is returned and ownership is always released.
        A non-OK response is logged and yields "".
        """
        if not response.ok:
            logger.error("Stream response error: %s %s", response.status_code, response.reason)
            response.close()
            return ""

        buffer = self.begin(request_id)
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        carry = ""

        try:
            self._publish(buffer)
            for chunk in response.iter_content(chunk_size=None):
                if not self.owns(buffer):
                    logger.info("Stopping superseded request %s", buffer.request_id)
                    break
                if not chunk:
                    continue
                lines = (carry + decoder.decode(chunk)).split("\n")
                carry = lines.pop()
                for line in lines:
                    self.apply_line(buffer, line)
        except requests.exceptions.RequestException as e:
            logger.error("Error reading stream: %s", e)
        except Exception as e:
            logger.error("Error rendering stream %s: %s", buffer.request_id, e, exc_info=True)
        finally:
            response.close()
            text = self.finish(buffer)

        return text
