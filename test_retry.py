#!/usr/bin/env python3
"""
Tests for with_retry() and fetch_with_retry().
"""

import asyncio
import time

import httpx
import pytest

from app.exceptions import RetryCancelledError, UpstreamConnectionError, UpstreamStatusError
from app.utils import retry


class Flaky:
    """Fails `failures` times, then returns "ok"."""

    def __init__(self, failures):
        self.failures = failures
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError(f"failure {self.calls}")
        return "ok"


@pytest.fixture
def recorded_waits(monkeypatch):
    """Replace the backoff wait with a recorder so tests don't sleep."""
    waits = []

    async def fake_wait(delay, cancel_event):
        waits.append(delay)

    monkeypatch.setattr(retry, "_wait", fake_wait)
    return waits


class TestWithRetry:

    @pytest.mark.asyncio
    async def test_success_first_try(self, recorded_waits):
        fn = Flaky(0)
        assert await retry.with_retry(fn) == "ok"
        assert fn.calls == 1
        assert recorded_waits == []

    @pytest.mark.asyncio
    async def test_fails_twice_then_succeeds(self, recorded_waits):
        fn = Flaky(2)
        assert await retry.with_retry(fn, max_retries=3, initial_delay=1.0) == "ok"
        assert fn.calls == 3
        assert recorded_waits == [1.0, 2.0]
        assert sum(recorded_waits) >= 3.0

    @pytest.mark.asyncio
    async def test_always_failing_makes_four_attempts(self, recorded_waits):
        fn = Flaky(100)
        with pytest.raises(ConnectionError, match="failure 4"):
            await retry.with_retry(fn, max_retries=3, initial_delay=1.0)
        assert fn.calls == 4
        assert recorded_waits == [1.0, 2.0, 4.0]

    @pytest.mark.asyncio
    async def test_last_error_propagates_unchanged(self, recorded_waits):
        error = UpstreamStatusError("HTTP error! status: 500", status_code=500)

        async def failing():
            raise error

        with pytest.raises(UpstreamStatusError) as exc_info:
            await retry.with_retry(failing, max_retries=1)
        assert exc_info.value is error

    @pytest.mark.asyncio
    async def test_zero_retries(self, recorded_waits):
        fn = Flaky(1)
        with pytest.raises(ConnectionError):
            await retry.with_retry(fn, max_retries=0)
        assert fn.calls == 1

    @pytest.mark.asyncio
    async def test_deadline_stops_retrying(self, recorded_waits):
        fn = Flaky(100)
        with pytest.raises(ConnectionError, match="failure 2"):
            # The recorded waits take no time, so the second wait (2s) is the
            # first one that would end past the 1.5s deadline.
            await retry.with_retry(fn, max_retries=3, initial_delay=1.0, deadline=1.5)
        assert fn.calls == 2
        assert recorded_waits == [1.0]


class TestRealWaits:
    """These use the real _wait with very short delays."""

    @pytest.mark.asyncio
    async def test_backoff_actually_waits(self):
        fn = Flaky(2)
        started = time.monotonic()
        assert await retry.with_retry(fn, max_retries=3, initial_delay=0.05) == "ok"
        # 0.05 + 0.10, with a little slack for timer granularity
        assert time.monotonic() - started >= 0.14

    @pytest.mark.asyncio
    async def test_cancel_event_interrupts_wait(self):
        fn = Flaky(100)
        cancel = asyncio.Event()
        asyncio.get_running_loop().call_later(0.05, cancel.set)

        started = time.monotonic()
        with pytest.raises(RetryCancelledError):
            await retry.with_retry(fn, max_retries=3, initial_delay=10.0, cancel_event=cancel)
        assert time.monotonic() - started < 5.0
        assert fn.calls == 1

    @pytest.mark.asyncio
    async def test_cancel_event_already_set(self):
        fn = Flaky(0)
        cancel = asyncio.Event()
        cancel.set()
        with pytest.raises(RetryCancelledError):
            await retry.with_retry(fn, cancel_event=cancel)
        assert fn.calls == 0


class TestFetchWithRetry:

    @staticmethod
    def client_for(handler):
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    @pytest.mark.asyncio
    async def test_error_status_is_retried(self, recorded_waits):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) < 3:
                return httpx.Response(503, text="busy")
            return httpx.Response(200, content=b"data: [DONE]\n\n")

        async with self.client_for(handler) as client:
            response = await retry.fetch_with_retry(client, "https://upstream.test/v1", json={"a": 1})
            body = await response.aread()
            await response.aclose()

        assert body == b"data: [DONE]\n\n"
        assert len(calls) == 3
        assert recorded_waits == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_status_error_after_all_attempts(self, recorded_waits):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500)

        async with self.client_for(handler) as client:
            with pytest.raises(UpstreamStatusError) as exc_info:
                await retry.fetch_with_retry(client, "https://upstream.test/v1")

        assert exc_info.value.status_code == 500
        assert "status: 500" in str(exc_info.value)
        assert len(calls) == 4

    @pytest.mark.asyncio
    async def test_transport_error_becomes_connection_error(self, recorded_waits):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        async with self.client_for(handler) as client:
            with pytest.raises(UpstreamConnectionError, match="Could not reach"):
                await retry.fetch_with_retry(client, "https://upstream.test/v1", max_retries=1)

    @pytest.mark.asyncio
    async def test_sends_method_headers_and_json(self, recorded_waits):
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["auth"] = request.headers.get("authorization")
            seen["body"] = request.content
            return httpx.Response(200)

        async with self.client_for(handler) as client:
            response = await retry.fetch_with_retry(
                client,
                "https://upstream.test/v1",
                headers={"Authorization": "Bearer k"},
                json={"stream": True},
            )
            await response.aclose()

        assert seen["method"] == "POST"
        assert seen["auth"] == "Bearer k"
        assert seen["body"] == b'{"stream": true}' or seen["body"] == b'{"stream":true}'
