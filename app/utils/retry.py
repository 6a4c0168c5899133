"""
RETRY UTILITY
=============

Awaits a coroutine factory and, if it raises, retries with exponential backoff.
Used for the Tavily search and for opening the Together completion stream, so
temporary rate limits or network blips don't immediately fail the request.

The loop is bounded: max_retries counts retries after the first attempt, so
max_retries=3 means at most 4 attempts. Waits double each time (1s, 2s, 4s, ...)
with no jitter. Callers may pass a cancel_event to abandon the retry while it
is waiting, and a deadline (seconds) to cap the total time spent retrying.

Example:
  response = await fetch_with_retry(client, url, json=payload, headers=headers)
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

import httpx

from app.exceptions import RetryCancelledError, UpstreamConnectionError, UpstreamStatusError


logger = logging.getLogger("RelayChat")

# Type variable: with_retry returns whatever the awaited callable returns.
T = TypeVar("T")


async def _wait(delay: float, cancel_event: Optional[asyncio.Event]) -> None:
    """Sleep for delay seconds; raise RetryCancelledError if cancel_event fires first."""
    if cancel_event is None:
        await asyncio.sleep(delay)
        return
    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=delay)
    except asyncio.TimeoutError:
        return
    raise RetryCancelledError("Retry cancelled by caller")


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    initial_delay: float = 1.0,
    cancel_event: Optional[asyncio.Event] = None,
    deadline: Optional[float] = None,
) -> T:
    """
    Await fn(). If it raises, wait initial_delay seconds and try again; delay doubles each retry.
    After max_retries retries, re-raise the last exception unchanged.
    """
    attempts = max_retries + 1
    delay = initial_delay
    started = time.monotonic()
    name = getattr(fn, "__name__", "call")

    for attempt in range(1, attempts + 1):
        if cancel_event is not None and cancel_event.is_set():
            raise RetryCancelledError("Retry cancelled by caller")
        try:
            return await fn()
        except RetryCancelledError:
            raise
        except Exception as e:
            if attempt == attempts:
                raise
            if deadline is not None and (time.monotonic() - started) + delay > deadline:
                logger.warning(
                    "Attempt %s/%s failed (%s). Retry window of %.1fs exhausted: %s",
                    attempt, attempts, name, deadline, e,
                )
                raise
            logger.warning(
                "Attempt %s/%s failed (%s). Retrying in %.1fs: %s",
                attempt, attempts, name, delay, e,
            )
            try:
                await _wait(delay, cancel_event)
            except RetryCancelledError as cancelled:
                raise cancelled from e
            delay *= 2  # Exponential backoff: 1s, 2s, 4s, ...

    # Unreachable: the last attempt either returns or raises.
    raise AssertionError("retry loop exited without a result")


async def fetch_with_retry(
    client: httpx.AsyncClient,
    url: str,
    *,
    method: str = "POST",
    headers: Optional[Dict[str, str]] = None,
    json: Any = None,
    max_retries: int = 3,
    initial_delay: float = 1.0,
    cancel_event: Optional[asyncio.Event] = None,
    deadline: Optional[float] = None,
) -> httpx.Response:
    """
    Open a streaming HTTP response, retrying transport failures and non-2xx statuses.

    The returned response is still open; whoever consumes its body must close it.
    """

    async def open_stream() -> httpx.Response:
        request = client.build_request(method, url, headers=headers, json=json)
        try:
            response = await client.send(request, stream=True)
        except httpx.TransportError as e:
            raise UpstreamConnectionError(f"Could not reach {url}: {e}") from e
        if not response.is_success:
            await response.aclose()
            raise UpstreamStatusError(
                f"HTTP error! status: {response.status_code}",
                status_code=response.status_code,
            )
        return response

    return await with_retry(
        open_stream,
        max_retries=max_retries,
        initial_delay=initial_delay,
        cancel_event=cancel_event,
        deadline=deadline,
    )
