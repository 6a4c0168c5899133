"""
SEARCH SERVICE MODULE
=====================

Runs a Tavily web search for the user's latest message. The raw result document
is returned untouched; RelayChatService pretty-prints it into the system message.

Unlike a "best effort" search, a failure here is fatal for the request: after
the retries are used up we raise UpstreamConnectionError and no stream starts.
"""

import logging
from typing import Any, Dict, Optional

from fastapi.concurrency import run_in_threadpool
from tavily import TavilyClient

from app.exceptions import UpstreamConnectionError
from app.utils.retry import with_retry
from config import RelaySettings


logger = logging.getLogger("RelayChat")


class SearchService:
    """Thin wrapper over TavilyClient with retries. client can be injected for tests."""

    def __init__(self, settings: RelaySettings, client: Optional[Any] = None):
        self.settings = settings
        self.client = client if client is not None else TavilyClient(api_key=settings.tavily_api_key)

    async def search(self, query: str) -> Dict[str, Any]:
        """Return Tavily's result document for query."""

        async def tavily_search():
            # TavilyClient is blocking; keep it off the event loop.
            return await run_in_threadpool(
                self.client.search,
                query,
                search_depth=self.settings.search_depth,
                max_results=self.settings.search_max_results,
            )

        try:
            response = await with_retry(
                tavily_search,
                max_retries=self.settings.max_retries,
                initial_delay=self.settings.initial_retry_delay,
                deadline=self.settings.retry_deadline,
            )
        except UpstreamConnectionError:
            raise
        except Exception as e:
            logger.error("Tavily search failed for %r: %s", query, e)
            raise UpstreamConnectionError(f"Search provider unavailable: {e}") from e

        logger.info("Tavily search completed for query: %s (%d results)",
                    query, len(response.get("results", [])) if isinstance(response, dict) else 0)
        return response
