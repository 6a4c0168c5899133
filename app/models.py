"""
DATA MODELS MODULE
==================

Pydantic models for the chat request, the conversation messages and the error
envelope returned when a request fails before streaming starts.

MODELS:
  ChatMessage    - One message (role + non-empty, trimmed content).
  ChatRequest    - Body of POST /api/chat: a non-empty list of ChatMessage.
  ErrorDetails   - Exception name and (development only) stack trace.
  ErrorResponse  - { error, timestamp, details? } error envelope.

parse_chat_request() validates a raw decoded JSON body and raises
MessageValidationError with a message naming the offending index.
"""

from typing import Any, List, Literal, Optional

from pydantic import BaseModel, Field, StrictStr, ValidationError, field_validator

from app.exceptions import MessageValidationError

Role = Literal["user", "assistant", "system"]
ROLES = ("user", "assistant", "system")


# ==============================================================================
# MESSAGE AND REQUEST MODELS
# ==============================================================================

class ChatMessage(BaseModel):
    """
    A single message in a conversation.
    At most one "system" message is allowed and it always sits at index 0.
    """
    role: Role
    content: StrictStr

    @field_validator("content")
    @classmethod
    def content_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("content must be a non-empty string")
        return value


class ChatRequest(BaseModel):
    """Request body for POST /api/chat."""
    messages: List[ChatMessage] = Field(..., min_length=1)


class ErrorDetails(BaseModel):
    name: str
    stack: Optional[str] = None


class ErrorResponse(BaseModel):
    """Body returned with HTTP 500 for any failure detected before streaming."""
    error: str
    timestamp: str
    details: Optional[ErrorDetails] = None


# ==============================================================================
# VALIDATION
# ==============================================================================

def _validate_message(index: int, raw: Any) -> ChatMessage:
    if not isinstance(raw, dict):
        raise MessageValidationError(f"Invalid message at index {index}: expected an object")
    role = raw.get("role")
    if not isinstance(role, str) or not role:
        raise MessageValidationError(f"Invalid message at index {index}: role must be a non-empty string")
    content = raw.get("content")
    if not isinstance(content, str) or not content.strip():
        raise MessageValidationError(f"Invalid message at index {index}: content must be a non-empty string")
    if role not in ROLES:
        raise MessageValidationError(
            f"Invalid message at index {index}: role must be 'user', 'assistant', or 'system'"
        )
    try:
        return ChatMessage(role=role, content=content)
    except ValidationError as e:
        raise MessageValidationError(f"Invalid message at index {index}: {e}") from e


def parse_chat_request(body: Any) -> ChatRequest:
    """Validate a decoded JSON body; raise MessageValidationError on the first problem."""
    if not isinstance(body, dict):
        raise MessageValidationError("Invalid request body: expected an object")
    raw_messages = body.get("messages")
    if not isinstance(raw_messages, list):
        raise MessageValidationError("Invalid request body: messages must be an array")

    messages = [_validate_message(i, raw) for i, raw in enumerate(raw_messages)]
    if not messages:
        raise MessageValidationError("No valid messages provided")
    return ChatRequest(messages=messages)
