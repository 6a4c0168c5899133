#!/usr/bin/env python3
"""
Tests for the client-side stream consumer and its token-join heuristic.
"""

import pytest
import requests

from app.client.stream_consumer import ReconstructionBuffer, StreamConsumer, join_token


class FakeResponse:
    """Stands in for a streaming requests.Response."""

    def __init__(self, chunks, status_code=200, error=None, on_chunk=None):
        self.chunks = [c.encode("utf-8") if isinstance(c, str) else c for c in chunks]
        self.status_code = status_code
        self.reason = "OK" if status_code == 200 else "Internal Server Error"
        self.error = error
        self.on_chunk = on_chunk
        self.closed = False

    @property
    def ok(self):
        return self.status_code < 400

    def iter_content(self, chunk_size=None):
        for i, chunk in enumerate(self.chunks):
            if self.on_chunk is not None:
                self.on_chunk(i)
            yield chunk
        if self.error is not None:
            raise self.error

    def close(self):
        self.closed = True


class TestJoinToken:
    """The join rule is a fixed contract, including its punctuation quirks."""

    def test_alnum_boundary_gets_space(self):
        assert join_token("abc", "def") == "abc def"

    def test_punctuation_fragment_no_space(self):
        assert join_token("abc", "!") == "abc!"

    def test_empty_buffer(self):
        assert join_token("", "def") == "def"

    def test_no_space_after_sentence_punctuation(self):
        # "." is not alphanumeric, so no space is inserted.
        assert join_token("end.", "Next") == "end.Next"

    def test_fragment_with_leading_space(self):
        assert join_token("Hello", " world") == "Hello world"

    def test_digits_count_as_alnum(self):
        assert join_token("v2", "0") == "v2 0"

    def test_non_ascii_letters_do_not_trigger(self):
        assert join_token("caf", "é") == "café"

    def test_empty_fragment(self):
        assert join_token("abc", "") == "abc"


class TestStreamConsumer:

    def test_reconstructs_relayed_stream(self):
        updates = []
        consumer = StreamConsumer(on_update=updates.append)
        response = FakeResponse(["data: Hel\n\n", "data: lo\n\n", "data: [DONE]\n\n"])

        text = consumer.consume(response)

        # Both fragments end/start with letters, so the heuristic separates them.
        assert text == "Hel lo"
        assert updates == ["", "Hel", "Hel lo", ""]
        assert response.closed
        assert consumer.active_request_id is None

    def test_spaces_carried_by_payload(self):
        consumer = StreamConsumer()
        response = FakeResponse(["data: Hello\n\ndata: ,\n\ndata:  world\n\ndata: !\n\n"])
        assert consumer.consume(response) == "Hello, world!"

    def test_done_has_no_textual_effect(self):
        consumer = StreamConsumer()
        assert consumer.consume(FakeResponse(["data: [DONE]\n\n"])) == ""

    def test_line_split_across_chunks(self):
        consumer = StreamConsumer()
        response = FakeResponse(["data: Hel", "lo\n\ndata: [DO", "NE]\n\n"])
        assert consumer.consume(response) == "Hello"

    def test_multibyte_split_across_chunks(self):
        raw = "data: naïve\n\n".encode("utf-8")
        cut = raw.index(b"\xc3") + 1
        consumer = StreamConsumer()
        assert consumer.consume(FakeResponse([raw[:cut], raw[cut:]])) == "naïve"

    def test_read_error_keeps_accumulated_text(self):
        updates = []
        consumer = StreamConsumer(on_update=updates.append)
        response = FakeResponse(
            ["data: partial\n\n"],
            error=requests.exceptions.ChunkedEncodingError("connection broken"),
        )

        assert consumer.consume(response) == "partial"
        assert updates[-1] == ""
        assert response.closed

    def test_renderer_failure_keeps_text_and_releases(self):
        def renderer(text):
            if text:
                raise RuntimeError("terminal gone")

        consumer = StreamConsumer(on_update=renderer)
        response = FakeResponse(["data: Hel\n\n", "data: lo\n\n"])

        assert consumer.consume(response, request_id="r1") == "Hel"
        assert response.closed
        assert consumer.active_request_id is None

    def test_renderer_failing_on_clear_still_releases(self):
        def renderer(text):
            raise RuntimeError("terminal gone")

        consumer = StreamConsumer(on_update=renderer)
        response = FakeResponse(["data: Hel\n\n"])

        assert consumer.consume(response) == ""
        assert response.closed
        assert consumer.active_request_id is None

    def test_interrupt_still_releases_ownership(self):
        consumer = StreamConsumer()
        response = FakeResponse(["data: Hel\n\n"], error=KeyboardInterrupt())

        with pytest.raises(KeyboardInterrupt):
            consumer.consume(response)
        assert response.closed
        assert consumer.active_request_id is None

    def test_error_response_is_not_consumed(self):
        updates = []
        consumer = StreamConsumer(on_update=updates.append)
        response = FakeResponse(['{"error": "boom"}'], status_code=500)

        assert consumer.consume(response) == ""
        assert updates == []
        assert response.closed

    def test_new_request_supersedes_old_one(self):
        consumer = StreamConsumer()
        second = {}

        def start_second_request(index):
            if index == 1:
                second["buffer"] = consumer.begin("second")

        response = FakeResponse(
            ["data: first\n\n", "data: ignored\n\n", "data: more\n\n"],
            on_chunk=start_second_request,
        )

        assert consumer.consume(response, request_id="first") == "first"
        assert consumer.active_request_id == "second"
        assert second["buffer"].text == ""

    def test_superseded_consumer_stops_publishing(self):
        updates = []
        consumer = StreamConsumer(on_update=updates.append)
        old = consumer.begin("old")
        consumer.begin("new")

        consumer.apply_line(old, "data: stale")

        assert old.text == "stale"
        assert updates == []

    def test_begin_generates_request_ids(self):
        consumer = StreamConsumer()
        a = consumer.begin()
        b = consumer.begin()
        assert a.request_id != b.request_id
        assert consumer.owns(b) and not consumer.owns(a)


class TestReconstructionBuffer:

    def test_append_and_clear(self):
        buffer = ReconstructionBuffer("r1")
        assert buffer.append("one") == "one"
        assert buffer.append("two") == "one two"
        buffer.clear()
        assert buffer.text == ""
