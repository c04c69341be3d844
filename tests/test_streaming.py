"""Tests for keepkey_ollama.streaming - NDJSON decoding and abortable streams."""

import asyncio
import logging

import pytest

from keepkey_ollama.errors import IncompleteStreamError, StreamAbortedError, StreamError
from keepkey_ollama.streaming import (
    AbortController,
    AbortableAsyncIterator,
    StreamState,
    is_complete,
    parse_json_lines,
)
from tests.conftest import MOCK_GENERATE_CHUNKS, MOCK_PULL_CHUNKS, aiter_chunks, ndjson


async def collect(chunks: list[bytes]) -> list:
    return [value async for value in parse_json_lines(aiter_chunks(chunks))]


def split_every(data: bytes, size: int) -> list[bytes]:
    return [data[i:i + size] for i in range(0, len(data), size)]


async def items(values: list):
    for value in values:
        yield value


def make_stream(values: list, done_callback=None) -> AbortableAsyncIterator:
    return AbortableAsyncIterator(AbortController(), items(values), done_callback)


# ─────────────────────────────────────────────────────────────────────
# parse_json_lines()
# ─────────────────────────────────────────────────────────────────────

class TestParseJsonLines:
    """Tests for the line-delimited JSON decoder."""

    @pytest.mark.asyncio
    async def test_one_chunk_per_line(self):
        chunks = [ndjson([item]) for item in MOCK_GENERATE_CHUNKS]
        assert await collect(chunks) == MOCK_GENERATE_CHUNKS

    @pytest.mark.asyncio
    @pytest.mark.parametrize("size", [1, 2, 3, 7, 64])
    async def test_chunk_boundaries_do_not_matter(self, size):
        body = ndjson(MOCK_PULL_CHUNKS)
        assert await collect(split_every(body, size)) == MOCK_PULL_CHUNKS

    @pytest.mark.asyncio
    async def test_multibyte_character_split_across_chunks(self):
        body = ndjson([{"response": "héllo 🌍"}, {"response": "日本", "done": True}])
        # Split inside the 4-byte emoji
        cut = body.index("🌍".encode("utf-8")) + 2

        values = await collect([body[:cut], body[cut:]])

        assert values == [{"response": "héllo 🌍"}, {"response": "日本", "done": True}]

    @pytest.mark.asyncio
    async def test_final_line_without_newline(self):
        body = b'{"a": 1}\n{"b": 2}'
        assert await collect([body]) == [{"a": 1}, {"b": 2}]

    @pytest.mark.asyncio
    async def test_residual_buffer_with_several_lines(self):
        """Lines left in the buffer at stream end are all emitted."""
        assert await collect([b'{"a": 1}', b"\n", b'{"b": 2}']) == [{"a": 1}, {"b": 2}]

    @pytest.mark.asyncio
    async def test_malformed_lines_skipped_and_logged(self, caplog):
        body = b'{"a": 1}\nnot json\n{"b": 2}\n{"broken": \n{"c": 3}\n'

        with caplog.at_level(logging.WARNING, logger="keepkey_ollama.streaming"):
            values = await collect(split_every(body, 5))

        assert values == [{"a": 1}, {"b": 2}, {"c": 3}]
        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert len(warnings) == 2
        assert "invalid json" in warnings[0].getMessage()

    @pytest.mark.asyncio
    async def test_empty_stream(self):
        assert await collect([]) == []

    @pytest.mark.asyncio
    async def test_order_preserved(self):
        values = [{"i": i} for i in range(100)]
        assert await collect(split_every(ndjson(values), 13)) == values


# ─────────────────────────────────────────────────────────────────────
# is_complete()
# ─────────────────────────────────────────────────────────────────────

class TestIsComplete:

    @pytest.mark.parametrize("item,expected", [
        ({"done": True}, True),
        ({"done": False}, False),
        ({"status": "success"}, True),
        ({"status": "pulling manifest"}, False),
        ({}, False),
        ([1, 2], False),
    ])
    def test_completion_signal(self, item, expected):
        assert is_complete(item) is expected


# ─────────────────────────────────────────────────────────────────────
# AbortableAsyncIterator
# ─────────────────────────────────────────────────────────────────────

class TestAbortableAsyncIterator:
    """Tests for termination, error and abort behavior."""

    @pytest.mark.asyncio
    async def test_yields_items_until_done(self):
        calls = []
        stream = make_stream(MOCK_GENERATE_CHUNKS, lambda: calls.append(1))

        received = [item async for item in stream]

        assert received == MOCK_GENERATE_CHUNKS
        assert calls == [1]
        assert stream.state is StreamState.COMPLETED

    @pytest.mark.asyncio
    async def test_status_success_completes(self):
        stream = make_stream(MOCK_PULL_CHUNKS)
        received = [item async for item in stream]
        assert received[-1] == {"status": "success"}

    @pytest.mark.asyncio
    async def test_items_after_done_are_not_produced(self):
        calls = []
        stream = make_stream([{"done": True}, {"extra": 1}], lambda: calls.append(1))

        received = [item async for item in stream]

        assert received == [{"done": True}]
        # Iterating again after completion produces nothing and does not re-fire
        assert [item async for item in stream] == []
        assert calls == [1]

    @pytest.mark.asyncio
    async def test_no_completion_raises(self):
        calls = []
        stream = make_stream([{"done": False}, {"done": False}], lambda: calls.append(1))

        received = []
        with pytest.raises(IncompleteStreamError, match="Did not receive done or success"):
            async for item in stream:
                received.append(item)

        assert len(received) == 2
        assert calls == []
        assert stream.state is StreamState.ERRORED

    @pytest.mark.asyncio
    async def test_empty_stream_raises(self):
        with pytest.raises(IncompleteStreamError):
            async for _ in make_stream([]):
                pass

    @pytest.mark.asyncio
    async def test_error_item_raises_server_message(self):
        stream = make_stream([
            {"status": "pulling manifest"},
            {"error": "pull model manifest: file does not exist"},
            {"status": "success"},
        ])

        received = []
        with pytest.raises(StreamError, match="file does not exist"):
            async for item in stream:
                received.append(item)

        assert received == [{"status": "pulling manifest"}]
        assert stream.state is StreamState.ERRORED
        # No further items after an error
        assert [item async for item in stream] == []

    @pytest.mark.asyncio
    async def test_abort_before_iteration(self):
        stream = make_stream(MOCK_GENERATE_CHUNKS)
        stream.abort()

        with pytest.raises(StreamAbortedError):
            await stream.__anext__()
        assert stream.state is StreamState.ABORTED

    @pytest.mark.asyncio
    async def test_abort_mid_stream_is_sticky(self):
        stream = make_stream(MOCK_GENERATE_CHUNKS)
        first = await stream.__anext__()
        stream.abort()

        assert first == MOCK_GENERATE_CHUNKS[0]
        for _ in range(2):
            with pytest.raises(StreamAbortedError):
                await stream.__anext__()

    @pytest.mark.asyncio
    async def test_abort_preempts_blocked_read(self):
        closed = []

        async def blocked():
            try:
                yield {"done": False}
                await asyncio.Event().wait()
                yield {"done": True}
            finally:
                closed.append(True)

        stream = AbortableAsyncIterator(AbortController(), blocked())
        await stream.__anext__()

        pending = asyncio.create_task(stream.__anext__())
        await asyncio.sleep(0.01)
        assert not pending.done()

        stream.abort()
        with pytest.raises(StreamAbortedError):
            await asyncio.wait_for(pending, timeout=1)
        assert closed == [True]

    @pytest.mark.asyncio
    async def test_abort_one_leaves_others_alone(self):
        a = make_stream(MOCK_GENERATE_CHUNKS)
        b = make_stream(MOCK_GENERATE_CHUNKS)

        a.abort()

        assert [item async for item in b] == MOCK_GENERATE_CHUNKS
        with pytest.raises(StreamAbortedError):
            await a.__anext__()

    @pytest.mark.asyncio
    async def test_abort_after_completion_keeps_completed(self):
        stream = make_stream([{"done": True}])
        [item async for item in stream]

        stream.abort()

        assert stream.state is StreamState.COMPLETED

    @pytest.mark.asyncio
    async def test_on_close_called_on_completion(self):
        closed = []

        async def on_close():
            closed.append(True)

        stream = AbortableAsyncIterator(
            AbortController(), items([{"done": True}]), on_close=on_close
        )
        [item async for item in stream]

        assert closed == [True]

    @pytest.mark.asyncio
    async def test_abort_without_pending_read_releases_response(self):
        closed = asyncio.Event()

        async def on_close():
            closed.set()

        stream = AbortableAsyncIterator(
            AbortController(), items(MOCK_GENERATE_CHUNKS), on_close=on_close
        )
        await stream.__anext__()

        stream.abort()

        await asyncio.wait_for(closed.wait(), timeout=1)
        with pytest.raises(StreamAbortedError):
            await stream.__anext__()

    @pytest.mark.asyncio
    async def test_close_runs_once(self):
        calls = []

        async def on_close():
            calls.append(True)

        stream = AbortableAsyncIterator(
            AbortController(), items(MOCK_GENERATE_CHUNKS), on_close=on_close
        )
        stream.abort()
        with pytest.raises(StreamAbortedError):
            await stream.__anext__()
        await stream.aclose()

        assert calls == [True]

    @pytest.mark.asyncio
    async def test_timed_out_pull_aborts_stream(self):
        closed = []

        async def slow():
            try:
                yield {"done": False}
                await asyncio.Event().wait()
                yield {"done": True}
            finally:
                closed.append(True)

        stream = AbortableAsyncIterator(AbortController(), slow())
        await stream.__anext__()

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(stream.__anext__(), timeout=0.01)

        assert stream.state is StreamState.ABORTED
        assert closed == [True]
        with pytest.raises(StreamAbortedError):
            await stream.__anext__()

    @pytest.mark.asyncio
    async def test_done_callback_runs_when_close_fails(self):
        done = []

        async def on_close():
            raise ConnectionResetError("close failed")

        stream = AbortableAsyncIterator(
            AbortController(), items([{"done": True}]), lambda: done.append(True), on_close
        )

        with pytest.raises(ConnectionResetError):
            await stream.__anext__()
        assert done == [True]
        assert stream.state is StreamState.COMPLETED

    @pytest.mark.asyncio
    async def test_transport_error_propagates(self):
        async def failing():
            yield {"done": False}
            raise ConnectionResetError("peer went away")

        stream = AbortableAsyncIterator(AbortController(), failing())

        with pytest.raises(ConnectionResetError):
            async for _ in stream:
                pass
        assert stream.state is StreamState.ERRORED

    @pytest.mark.asyncio
    async def test_decoded_stream_end_to_end(self):
        body = ndjson(MOCK_GENERATE_CHUNKS)
        stream = AbortableAsyncIterator(
            AbortController(), parse_json_lines(aiter_chunks(split_every(body, 4)))
        )

        text = "".join([part["response"] async for part in stream])

        assert text == "The sky is blue."
