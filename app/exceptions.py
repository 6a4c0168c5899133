"""
EXCEPTIONS MODULE
=================

Error types raised by the relay. The API layer (app.main) turns every
RelayError that escapes before streaming starts into the JSON error envelope;
FrameParseError never leaves the stream transformer.

  ConfigurationError      - An API key is missing. Raised before any network I/O.
  MessageValidationError  - The request body or one of its messages is malformed.
  UpstreamConnectionError - Search or completion provider unreachable after retries.
  UpstreamStatusError     - Provider answered with a non-2xx status.
  RetryCancelledError     - Caller cancelled while a retry was waiting.
  FrameParseError         - One SSE line could not be parsed (skipped, not fatal).
"""

from typing import Optional


class RelayError(Exception):
    """Base class for all relay errors."""


class ConfigurationError(RelayError):
    """Required configuration (API keys) is missing."""


class MessageValidationError(RelayError):
    """Request body or messages failed validation."""


class UpstreamConnectionError(RelayError):
    """An upstream provider could not be reached."""


class UpstreamStatusError(UpstreamConnectionError):
    """The transport worked but the provider returned a failure status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RetryCancelledError(UpstreamConnectionError):
    """Retries were abandoned because the caller cancelled."""


class FrameParseError(RelayError):
    """A single SSE line or its JSON payload is malformed."""

    def __init__(self, message: str, line: str = ""):
        super().__init__(message)
        self.line = line
