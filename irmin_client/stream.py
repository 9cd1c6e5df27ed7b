"""
Streaming reply decoder.

Irmin answers streaming commands (watch, iter, ...) with one long-lived
JSON array:

    [{"stream": "start"}, {"version": "..."},
     {"error": "", "result": ...}, ..., {"stream": "end"}]

decode_stream() checks the leading sentinels, then hands the rest of the
body to a background task that pushes StreamReply values into a bounded
queue. The caller pulls them from the returned ReplyStream.

The HTTP response is shared by two holders, the background decoder and
the consumer. It is closed once both have let go, whichever goes first:

- the decoder lets go when the array ends, the peer closes the connection,
  or decoding fails;
- the consumer lets go when it reaches the end of the sequence, calls
  aclose(), or drops the handle. Letting go early also cancels the
  decoder, since a watch may block on the socket forever.
"""

from __future__ import annotations

import asyncio
import json
import logging
import weakref
from collections import deque
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from typing import Any

import aiohttp

from .config import DEFAULT_QUEUE_SIZE
from .exceptions import (
    FramingError,
    IrminConnectionError,
    IrminError,
    ServerError,
    StreamDecodeError,
    ValueDecodeError,
)
from .logging_utils import StreamLoggerAdapter
from .value import decode_value, value_to_str

logger = logging.getLogger(__name__)

DECODER = "decoder"
CONSUMER = "consumer"

_WHITESPACE = frozenset(b" \t\r\n")
_QUOTE = ord('"')
_BACKSLASH = ord("\\")
_COMMA = ord(",")
_OPEN_ARRAY = ord("[")
_CLOSE_ARRAY = ord("]")
_OPENERS = frozenset(b"[{")
_CLOSERS = frozenset(b"]}")


class JsonArrayFramer:
    """Split an incrementally received JSON array into its elements.

    feed() accepts chunks cut at any byte and returns the raw bytes of
    every element completed so far. Objects, arrays and strings are
    returned as soon as their closing byte arrives; other scalars need
    the following delimiter. Elements are not validated here, json.loads
    does that. Bytes after the closing ']' are ignored.
    """

    _BEFORE_ARRAY = 0
    _BEFORE_VALUE = 1
    _IN_VALUE = 2
    _AFTER_VALUE = 3
    _DONE = 4

    def __init__(self) -> None:
        self._state = self._BEFORE_ARRAY
        self._first = True
        self._element = bytearray()
        self._depth = 0
        self._in_string = False
        self._escape = False
        self.error: FramingError | None = None

    @property
    def opened(self) -> bool:
        return self._state != self._BEFORE_ARRAY

    @property
    def finished(self) -> bool:
        """The outer array has been closed."""
        return self._state == self._DONE

    @property
    def in_element(self) -> bool:
        return self._state == self._IN_VALUE

    def feed(self, chunk: bytes) -> list[bytes]:
        """Consume a chunk and return the elements it completed.

        When a chunk completes some elements before hitting bad framing,
        those elements are returned and the error is raised by the next
        call, so the outcome does not depend on where chunks are cut.

        Raises:
            FramingError: If the bytes do not form a JSON array
        """
        if self.error is not None:
            raise self.error
        elements: list[bytes] = []
        try:
            self._scan(chunk, elements)
        except FramingError as e:
            self.error = e
            if not elements:
                raise
        return elements

    def _scan(self, chunk: bytes, elements: list[bytes]) -> None:
        for byte in chunk:
            state = self._state
            if state == self._DONE:
                break

            if state == self._BEFORE_ARRAY:
                if byte in _WHITESPACE:
                    continue
                if byte != _OPEN_ARRAY:
                    raise FramingError(f"expected '[', got {chr(byte)!r}")
                self._state = self._BEFORE_VALUE
                continue

            if state == self._BEFORE_VALUE:
                if byte in _WHITESPACE:
                    continue
                if byte == _CLOSE_ARRAY and self._first:
                    self._state = self._DONE
                    continue
                if byte == _COMMA or byte in _CLOSERS:
                    raise FramingError(f"expected a value, got {chr(byte)!r}")
                self._start_value(byte)
                continue

            if state == self._AFTER_VALUE:
                self._after_value(byte)
                continue

            # Inside a value
            if self._in_string:
                self._element.append(byte)
                if self._escape:
                    self._escape = False
                elif byte == _BACKSLASH:
                    self._escape = True
                elif byte == _QUOTE:
                    self._in_string = False
                    if self._depth == 0:
                        elements.append(self._emit())
                continue

            if self._depth == 0:
                # Bare scalar, ended by whitespace or a delimiter
                if byte in _WHITESPACE or byte == _COMMA or byte == _CLOSE_ARRAY:
                    elements.append(self._emit())
                    self._after_value(byte)
                else:
                    self._element.append(byte)
                continue

            self._element.append(byte)
            if byte == _QUOTE:
                self._in_string = True
            elif byte in _OPENERS:
                self._depth += 1
            elif byte in _CLOSERS:
                self._depth -= 1
                if self._depth == 0:
                    elements.append(self._emit())

    def _start_value(self, byte: int) -> None:
        self._state = self._IN_VALUE
        self._element.append(byte)
        if byte == _QUOTE:
            self._in_string = True
        elif byte in _OPENERS:
            self._depth = 1

    def _after_value(self, byte: int) -> None:
        if byte in _WHITESPACE:
            return
        if byte == _COMMA:
            self._state = self._BEFORE_VALUE
        elif byte == _CLOSE_ARRAY:
            self._state = self._DONE
        else:
            raise FramingError(f"expected ',' or ']', got {chr(byte)!r}")

    def _emit(self) -> bytes:
        element = bytes(self._element)
        self._element.clear()
        self._depth = 0
        self._first = False
        self._state = self._AFTER_VALUE
        return element


@dataclass(frozen=True)
class StreamReply:
    """One reply read from a stream.

    Attributes:
        error: Error value sent with the reply, None when empty
        result: Decoded JSON of the result member, not yet interpreted
    """

    error: bytes | None
    result: Any


@dataclass(frozen=True)
class _Terminal:
    error: IrminError | None = None


class _ReleaseGate:
    """Run a close callback once every holder has released.

    Each holder may release once; repeated releases are ignored.
    """

    def __init__(self, close: Callable[[], None], *holders: str) -> None:
        self._close = close
        self._held = set(holders)
        self.closed = False

    def holds(self, holder: str) -> bool:
        return holder in self._held

    def release(self, holder: str) -> bool:
        """Release one holder. Returns False if it had already released."""
        if holder not in self._held:
            return False
        self._held.discard(holder)
        if not self._held and not self.closed:
            self.closed = True
            self._close()
        return True


class _ElementReader:
    """Pull complete array elements out of a response body."""

    def __init__(self, chunks: AsyncIterator[bytes]) -> None:
        self._chunks = chunks
        self._framer = JsonArrayFramer()
        self._pending: deque[bytes] = deque()
        self._eof = False
        self.head = bytearray()  # bytes received before the array opened

    @property
    def opened(self) -> bool:
        return self._framer.opened

    async def next(self) -> bytes | None:
        """Return the next element, or None when the array or body ends.

        Elements completed before a framing error are returned first.

        Raises:
            FramingError: If the body is not a JSON array
            StreamDecodeError: If the body ends inside an element
        """
        while not self._pending:
            if self._framer.error is not None:
                raise self._framer.error
            if self._framer.finished or self._eof:
                return None
            try:
                chunk = await self._chunks.__anext__()
            except StopAsyncIteration:
                self._eof = True
                if self._framer.in_element:
                    raise StreamDecodeError("connection closed inside an element") from None
                return None
            if not self._framer.opened:
                self.head.extend(chunk)
            self._pending.extend(self._framer.feed(chunk))
        return self._pending.popleft()

    async def read_rest(self) -> bytes:
        rest = bytearray(self.head)
        async for chunk in self._chunks:
            rest.extend(chunk)
        return bytes(rest)


def _loads(raw: bytes) -> Any:
    try:
        return json.loads(raw)
    except ValueError as e:
        raise StreamDecodeError(f"invalid JSON element {raw[:80]!r}", e) from e


def _decode_error(obj: Any) -> bytes | None:
    if obj is None or obj == "":
        return None
    try:
        error = decode_value(obj)
    except ValueDecodeError:
        error = json.dumps(obj).encode("utf-8")
    return error or None


def _sentinel(obj: Any, key: str) -> bytes | None:
    if not isinstance(obj, dict) or key not in obj:
        return None
    try:
        return decode_value(obj[key])
    except ValueDecodeError:
        return None


def _interpret(obj: Any, url: str) -> StreamReply | None:
    """Turn a decoded element into a reply, or None for the end marker.

    Only an element without a ``result`` member is a control object. An
    explicit ``"result": null`` is delivered like any other reply.
    """
    if not isinstance(obj, dict):
        raise StreamDecodeError(f"reply is not an object: {obj!r}")

    error = _decode_error(obj.get("error"))
    if "result" in obj:
        return StreamReply(error=error, result=obj["result"])

    if error is not None:
        raise ServerError(value_to_str(error), url)
    if _sentinel(obj, "stream") == b"end":
        return None
    raise FramingError(f"unexpected element {obj!r}", url)


async def _pump(
    reader: _ElementReader,
    queue: asyncio.Queue[StreamReply | _Terminal],
    gate: _ReleaseGate,
    url: str,
    log: logging.LoggerAdapter,
) -> None:
    """Background decoder: move replies from the body into the queue.

    Must not reference the ReplyStream it feeds, otherwise a dropped
    stream is never collected and its finalizer never runs.
    """
    terminal = _Terminal()
    try:
        try:
            while True:
                raw = await reader.next()
                if raw is None:
                    log.debug("stream body ended")
                    break
                reply = _interpret(_loads(raw), url)
                if reply is None:
                    log.debug("stream end marker received")
                    break
                await queue.put(reply)
        except IrminError as e:
            terminal = _Terminal(e)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            terminal = _Terminal(IrminConnectionError(url, e))
        except Exception as e:
            log.exception("unexpected failure in stream decoder")
            terminal = _Terminal(StreamDecodeError(f"unexpected failure: {e}", e))

        if terminal.error is not None:
            log.warning(f"stream terminated with error: {terminal.error}")
        await queue.put(terminal)
    finally:
        gate.release(DECODER)


def _closer(response: Any, log: logging.LoggerAdapter) -> Callable[[], None]:
    def close() -> None:
        log.debug("closing stream connection")
        response.close()

    return close


def _abandon(task: asyncio.Task, gate: _ReleaseGate) -> None:
    """Finalizer for a ReplyStream dropped without aclose()."""
    if not gate.holds(CONSUMER):
        return
    logger.debug("stream handle dropped without aclose(), releasing")
    if not task.done() and not task.get_loop().is_closed():
        task.cancel()
    gate.release(CONSUMER)


class ReplyStream:
    """Consumer handle for an open stream.

    Iterate with ``async for``; the iteration ends at the end marker or
    when the connection closes. A terminal decode or connection error is
    raised once from ``__anext__`` and kept in ``error``.

    Release the stream with aclose() or ``async with``. A handle dropped
    without either is released when it is garbage collected.

    Example:
        >>> async with await decode_stream(response) as replies:
        ...     async for reply in replies:
        ...         print(reply.result)
    """

    def __init__(
        self,
        response: Any,
        reader: _ElementReader,
        version: bytes,
        url: str,
        queue_size: int = DEFAULT_QUEUE_SIZE,
    ) -> None:
        self.version = version
        self.url = url
        self.error: IrminError | None = None
        self._queue: asyncio.Queue[StreamReply | _Terminal] = asyncio.Queue(maxsize=queue_size)
        log = StreamLoggerAdapter(logger, url)
        self._gate = _ReleaseGate(_closer(response, log), DECODER, CONSUMER)
        self._exhausted = False
        self._task = asyncio.create_task(_pump(reader, self._queue, self._gate, url, log))
        self._finalizer = weakref.finalize(self, _abandon, self._task, self._gate)

    @property
    def closed(self) -> bool:
        """The underlying connection has been closed."""
        return self._gate.closed

    def __aiter__(self) -> ReplyStream:
        return self

    async def __anext__(self) -> StreamReply:
        if self._exhausted:
            raise StopAsyncIteration

        item = await self._queue.get()
        if isinstance(item, _Terminal):
            self._exhausted = True
            self._finalizer.detach()
            self._gate.release(CONSUMER)
            if item.error is not None:
                self.error = item.error
                raise item.error
            raise StopAsyncIteration
        return item

    async def aclose(self) -> None:
        """Stop consuming and release the connection. Safe to call twice.

        A task waiting in ``__anext__`` on this stream wakes up and sees the
        end of the sequence.
        """
        if not self._gate.holds(CONSUMER):
            return
        self._exhausted = True
        self._finalizer.detach()
        if not self._task.done():
            self._task.cancel()
            await asyncio.wait({self._task})

        # Undelivered replies are dropped; the end marker wakes a waiting reader
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(_Terminal())
        self._gate.release(CONSUMER)

    async def __aenter__(self) -> ReplyStream:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()


async def decode_stream(
    response: Any,
    queue_size: int = DEFAULT_QUEUE_SIZE,
) -> ReplyStream:
    """Check the stream handshake and start decoding in the background.

    Args:
        response: An open aiohttp response whose body is unread
        queue_size: Replies buffered before the decoder waits for the consumer

    Returns:
        ReplyStream yielding StreamReply values in arrival order

    Raises:
        FramingError: If the start sentinel or version is missing
        ServerError: If the server answered with an error object instead of a stream
        StreamDecodeError: If a handshake element is not valid JSON
        IrminConnectionError: If the connection fails during the handshake
    """
    url = str(response.url)
    reader = _ElementReader(response.content.iter_any().__aiter__())
    try:
        try:
            start = await reader.next()
        except FramingError as e:
            if reader.opened:
                raise
            server_error = await _error_outside_stream(reader, url)
            if server_error is None:
                raise
            raise server_error from e
        if start is None or _sentinel(_loads(start), "stream") != b"start":
            raise FramingError("missing stream start marker", url)

        raw_version = await reader.next()
        version_obj = _loads(raw_version) if raw_version is not None else None
        version = _sentinel(version_obj, "version")
        if version is None:
            raise FramingError("missing version announcement", url)
    except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
        response.close()
        raise IrminConnectionError(url, e) from e
    except BaseException:
        response.close()
        raise

    logger.debug(f"stream opened: {url} (server version {value_to_str(version)})")
    return ReplyStream(response, reader, version, url, queue_size=queue_size)


async def _error_outside_stream(reader: _ElementReader, url: str) -> ServerError | None:
    """The server may answer with a bare error object instead of an array."""
    body = await reader.read_rest()
    try:
        obj = json.loads(body)
    except ValueError:
        return None
    error = _decode_error(obj.get("error")) if isinstance(obj, dict) else None
    if error is None:
        return None
    return ServerError(value_to_str(error), url)
