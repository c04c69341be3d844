"""
Streamed responses: newline-delimited JSON decoding and abortable iteration.

The server answers streaming requests with one JSON object per line:

    {"model": "llama3", "response": "The", "done": false}
    {"model": "llama3", "response": " sky", "done": false}
    {"model": "llama3", "response": "", "done": true}

Progress endpoints (pull/push/create) end with {"status": "success"} instead
of "done", and any line may be {"error": "..."}.
"""

import asyncio
import codecs
import json
import logging
from enum import Enum
from typing import Any, AsyncIterable, AsyncIterator, Awaitable, Callable, Iterator, Optional

from keepkey_ollama.errors import (
    IncompleteStreamError,
    StreamAbortedError,
    StreamError,
)

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────
# LINE-DELIMITED JSON DECODER
# ─────────────────────────────────────────────────────────────────────

def _decode_lines(lines: list[str]) -> Iterator[Any]:
    for line in lines:
        try:
            yield json.loads(line)
        except json.JSONDecodeError:
            logger.warning("invalid json: %r", line)


async def parse_json_lines(chunks: AsyncIterable[bytes]) -> AsyncIterator[Any]:
    """
    Decode a byte stream into one JSON value per line.

    Chunk boundaries may fall anywhere, including inside a line or inside a
    multi-byte UTF-8 character. A line that is not valid JSON is logged and
    skipped; it does not end the stream.
    """
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    buffer = ""

    async for chunk in chunks:
        buffer += decoder.decode(chunk)
        parts = buffer.split("\n")
        buffer = parts.pop()
        for value in _decode_lines(parts):
            yield value

    buffer += decoder.decode(b"", final=True)
    for value in _decode_lines([p for p in buffer.split("\n") if p != ""]):
        yield value


# ─────────────────────────────────────────────────────────────────────
# CANCELLATION
# ─────────────────────────────────────────────────────────────────────

class AbortController:
    """Cancellation token shared between a stream and whoever may abort it."""

    def __init__(self):
        self._event = asyncio.Event()

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    def abort(self) -> None:
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


# ─────────────────────────────────────────────────────────────────────
# ABORTABLE STREAM
# ─────────────────────────────────────────────────────────────────────

class StreamState(Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    COMPLETED = "completed"
    ERRORED = "errored"
    ABORTED = "aborted"


def is_complete(item: Any) -> bool:
    """True when a payload marks the end of its stream."""
    if not isinstance(item, dict):
        return False
    return bool(item.get("done")) or item.get("status") == "success"


class AbortableAsyncIterator:
    """
    Single-pass async iterator over a streamed response.

    - An {"error": ...} item raises StreamError and ends the stream.
    - The item carrying the completion signal is returned, then the stream
      closes and `done_callback` runs exactly once.
    - Running out of items before completion raises IncompleteStreamError.
    - abort() pre-empts a pending read; that pull and every later one
      raise StreamAbortedError. With no read pending, abort() releases the
      HTTP response right away on the running loop.
    - Cancelling a pending pull (e.g. asyncio.wait_for timing out) aborts
      the stream the same way.

    Usage:
        stream = await client.generate(model="llama3", prompt="Hi", stream=True)
        async for part in stream:
            print(part["response"], end="")
    """

    def __init__(
        self,
        controller: AbortController,
        itr: AsyncIterator[Any],
        done_callback: Optional[Callable[[], None]] = None,
        on_close: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        self._controller = controller
        self._itr = itr
        self._done_callback = done_callback
        self._on_close = on_close
        self._state = StreamState.IDLE
        self._reading = False
        self._close_task: Optional[asyncio.Task] = None

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def aborted(self) -> bool:
        return self._controller.aborted

    def abort(self) -> None:
        """Abort the stream. Safe to call at any time, from any state."""
        self._controller.abort()
        if self._state not in (StreamState.IDLE, StreamState.STREAMING):
            return
        self._state = StreamState.ABORTED
        # A pending read is cancelled and closed by _pull()
        if not self._reading and self._close_task is None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                logger.debug("No running loop; stream closes on next pull or aclose()")
                return
            self._close_task = loop.create_task(self._close())
            self._close_task.add_done_callback(_log_close_failure)

    def __aiter__(self) -> "AbortableAsyncIterator":
        return self

    async def __anext__(self) -> Any:
        if self._state in (StreamState.COMPLETED, StreamState.ERRORED):
            raise StopAsyncIteration
        if self._state is StreamState.ABORTED or self._controller.aborted:
            await self._fail_aborted()

        self._state = StreamState.STREAMING

        try:
            item = await self._pull()
        except StopAsyncIteration:
            self._state = StreamState.ERRORED
            await self.aclose()
            raise IncompleteStreamError(
                "Did not receive done or success response in stream."
            ) from None
        except StreamAbortedError:
            raise
        except Exception:
            self._state = StreamState.ERRORED
            await self.aclose()
            raise

        if isinstance(item, dict) and "error" in item:
            self._state = StreamState.ERRORED
            await self.aclose()
            raise StreamError(str(item["error"]))

        if is_complete(item):
            self._state = StreamState.COMPLETED
            try:
                await self.aclose()
            finally:
                if self._done_callback is not None:
                    self._done_callback()

        return item

    async def _pull(self) -> Any:
        """Read the next item, racing the read against abort()."""
        self._reading = True
        try:
            read = asyncio.create_task(self._read_next())
            abort_wait = asyncio.create_task(self._controller.wait())
            try:
                done, _ = await asyncio.wait(
                    {read, abort_wait}, return_when=asyncio.FIRST_COMPLETED
                )
            except asyncio.CancelledError:
                # The caller gave up on this pull; the stream cannot resume
                read.cancel()
                abort_wait.cancel()
                await asyncio.gather(read, abort_wait, return_exceptions=True)
                self._controller.abort()
                self._state = StreamState.ABORTED
                await self.aclose()
                raise

            if abort_wait not in done and not self._controller.aborted:
                abort_wait.cancel()
                return read.result()

            # Aborted while waiting on the transport
            abort_wait.cancel()
            read.cancel()
            await asyncio.gather(read, return_exceptions=True)
        finally:
            self._reading = False
        await self._fail_aborted()

    async def _read_next(self) -> Any:
        return await self._itr.__anext__()

    async def _fail_aborted(self) -> None:
        self._state = StreamState.ABORTED
        await self.aclose()
        raise StreamAbortedError("Stream was aborted")

    async def aclose(self) -> None:
        """Close the item iterator and release the HTTP response (once)."""
        if self._close_task is None:
            self._close_task = asyncio.create_task(self._close())
        await asyncio.shield(self._close_task)

    async def _close(self) -> None:
        aclose = getattr(self._itr, "aclose", None)
        try:
            if aclose is not None:
                await aclose()
        finally:
            if self._on_close is not None:
                await self._on_close()


def _log_close_failure(task: "asyncio.Task") -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.warning("Failed to close aborted stream: %s", task.exception())
