"""
RELAY CHAT SERVICE MODULE
=========================

Turns a validated ChatRequest into a live re-framed SSE stream.

FLOW:
  1. search(latest user message) via SearchService (Tavily, with retries).
  2. Replace the system message with one carrying the search results.
  3. Sanitize every message and build the Together completion payload.
  4. Open the upstream stream with fetch_with_retry (bounded backoff).
  5. Wrap the open response in a StreamTransformer; the API layer streams it.

Any failure in steps 1-4 raises before a single byte is sent to the client.
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

import httpx

from app.models import ChatMessage, ChatRequest
from app.services.search_service import SearchService
from app.services.stream_transformer import StreamTransformer
from app.utils.retry import fetch_with_retry
from app.utils.sanitize import sanitize_content
from config import SEARCH_SYSTEM_PROMPT, RelaySettings


logger = logging.getLogger("RelayChat")


def latest_user_message(messages: List[ChatMessage]) -> ChatMessage:
    """Last message with role "user"; falls back to the last message of any role."""
    for message in reversed(messages):
        if message.role == "user":
            return message
    return messages[-1]


def inject_system_message(messages: List[ChatMessage], content: str) -> List[ChatMessage]:
    """Return a new list with exactly one system message, at index 0, holding content."""
    rest = [m for m in messages if m.role != "system"]
    return [ChatMessage(role="system", content=content), *rest]


class RelayChatService:
    """
    One instance per request is fine; it holds no per-stream state.
    http_client must outlive the returned stream.
    """

    def __init__(
        self,
        settings: RelaySettings,
        http_client: httpx.AsyncClient,
        search_service: Optional[SearchService] = None,
    ):
        self.settings = settings
        self.http_client = http_client
        self.search_service = search_service or SearchService(settings)

    def build_system_prompt(self, search_results: Any) -> str:
        return SEARCH_SYSTEM_PROMPT.format(search_results=json.dumps(search_results, indent=2))

    def build_payload(self, messages: List[ChatMessage]) -> Dict[str, Any]:
        return {
            "model": self.settings.model,
            "messages": [
                {"role": m.role, "content": sanitize_content(m.content)} for m in messages
            ],
            "temperature": self.settings.temperature,
            "top_p": self.settings.top_p,
            "top_k": self.settings.top_k,
            "stream": True,
        }

    def build_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.settings.together_api_key}",
            "Content-Type": "application/json",
        }

    async def prepare_messages(self, request: ChatRequest) -> List[ChatMessage]:
        query = latest_user_message(request.messages).content
        logger.info("Searching Tavily for: %s", query)
        search_results = await self.search_service.search(query)
        return inject_system_message(request.messages, self.build_system_prompt(search_results))

    async def open_stream(
        self,
        request: ChatRequest,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> StreamTransformer:
        """Run search, open the completion stream and return its transformer."""
        messages = await self.prepare_messages(request)

        logger.info("Sending request to Together API (%s, %d messages)", self.settings.model, len(messages))
        response = await fetch_with_retry(
            self.http_client,
            self.settings.together_api_url,
            headers=self.build_headers(),
            json=self.build_payload(messages),
            max_retries=self.settings.max_retries,
            initial_delay=self.settings.initial_retry_delay,
            cancel_event=cancel_event,
            deadline=self.settings.retry_deadline,
        )
        return StreamTransformer.from_response(response)
