"""
Change notifications for a key or a subtree.

Both watch flavours sit on a ReplyStream and share one lifecycle:

    OPENING -> STREAMING -> CLOSED_NORMAL | CLOSED_ERROR

They differ in how they treat bad data:

- KeyWatch skips a malformed (commit, value) entry, logs it and keeps the
  watch open. Each entry carries the full value, so a dropped one is
  superseded by the next.
- PathWatch stops at the first malformed entry. It delivers one final
  WatchPathCommit with ``error`` set and closes, since a dropped change
  would leave the caller with a wrong picture of the subtree.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypeVar

from .exceptions import IrminError, ServerError, ValueDecodeError
from .logging_utils import StreamLoggerAdapter
from .path import Path
from .stream import ReplyStream, StreamReply
from .value import decode_commit, decode_value, encode_commit, value_to_str

logger = logging.getLogger(__name__)

W = TypeVar("W", bound="_BaseWatch")


class WatchState(Enum):
    """Lifecycle of a watch."""

    OPENING = "opening"
    STREAMING = "streaming"
    CLOSED_NORMAL = "closed_normal"
    CLOSED_ERROR = "closed_error"


class ChangeKind(Enum):
    """Kind of change reported by a subtree watch."""

    CREATED = "+"
    UPDATED = "*"
    DELETED = "-"


@dataclass(frozen=True)
class CommitValuePair:
    """Value of a watched key at a commit."""

    commit: bytes
    value: bytes

    @property
    def commit_hex(self) -> str:
        return encode_commit(self.commit)


@dataclass(frozen=True)
class PathChange:
    """One changed key below a watched path."""

    change: ChangeKind
    key: Path


@dataclass(frozen=True)
class WatchPathCommit:
    """Changes under a watched subtree introduced by one commit.

    A record with ``error`` set is the last one a watch produces. Its
    commit and changes hold whatever was decoded before the failure.
    """

    commit: bytes
    changes: tuple[PathChange, ...] = field(default_factory=tuple)
    error: IrminError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def commit_hex(self) -> str:
        return encode_commit(self.commit)


def decode_commit_value_pair(entry: Any) -> CommitValuePair:
    """Decode one ``[commitHex, value]`` entry.

    Raises:
        ValueDecodeError: If the entry is malformed
    """
    if not isinstance(entry, list) or len(entry) != 2:
        raise ValueDecodeError("expected [commit, value]", entry)
    return CommitValuePair(commit=decode_commit(entry[0]), value=decode_value(entry[1]))


def decode_path_change(entry: Any) -> PathChange:
    """Decode one ``[changeKind, path]`` entry.

    Raises:
        ValueDecodeError: If the entry is malformed
    """
    if not isinstance(entry, list) or len(entry) != 2:
        raise ValueDecodeError("expected [change, path]", entry)
    try:
        kind = ChangeKind(entry[0])
    except ValueError as e:
        raise ValueDecodeError(f"unknown change kind {entry[0]!r}", entry) from e
    return PathChange(change=kind, key=Path.from_json(entry[1]))


def decode_watch_path_commit(result: Any) -> WatchPathCommit:
    """Decode a ``[commitHex, [[changeKind, path], ...]]`` payload.

    Never raises: a failure is reported in the returned record's error.
    """
    commit = b""
    changes: list[PathChange] = []
    try:
        if not isinstance(result, list) or len(result) != 2:
            raise ValueDecodeError("expected [commit, changes]", result)
        commit = decode_commit(result[0])
        if not isinstance(result[1], list):
            raise ValueDecodeError("change list is not a list", result[1])
        for entry in result[1]:
            changes.append(decode_path_change(entry))
    except ValueDecodeError as e:
        return WatchPathCommit(commit=commit, changes=tuple(changes), error=e)
    return WatchPathCommit(commit=commit, changes=tuple(changes))


class _BaseWatch:
    """Lifecycle shared by key and subtree watches."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self.state = WatchState.OPENING
        self.error: IrminError | None = None
        self._replies: ReplyStream | None = None
        self._log: logging.LoggerAdapter = logging.LoggerAdapter(logger, {"path": str(path)})

    async def start(self: W, opener: Callable[[], Awaitable[ReplyStream]]) -> W:
        """Open the underlying stream.

        Raises:
            IrminError: If the request or the stream handshake fails
        """
        try:
            self._replies = await opener()
        except IrminError as e:
            self.state = WatchState.CLOSED_ERROR
            self.error = e
            raise
        self._log = StreamLoggerAdapter(logger, self._replies.url, path=str(self.path))
        self.state = WatchState.STREAMING
        self._log.debug("watch streaming")
        return self

    @property
    def closed(self) -> bool:
        return self.state in (WatchState.CLOSED_NORMAL, WatchState.CLOSED_ERROR)

    async def _next_reply(self) -> StreamReply:
        assert self._replies is not None
        return await self._replies.__anext__()

    async def _close_stream(self) -> None:
        if self._replies is not None:
            await self._replies.aclose()

    async def aclose(self) -> None:
        """Stop watching and release the connection. Safe to call twice."""
        if self.state == WatchState.STREAMING:
            self.state = WatchState.CLOSED_NORMAL
            self._log.debug("watch closed by consumer")
        await self._close_stream()

    def __aiter__(self: W) -> W:
        return self

    async def __aenter__(self: W) -> W:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()


class KeyWatch(_BaseWatch):
    """Watch a single key, yielding CommitValuePair values.

    A message may batch several updates; they are yielded in the order
    received. When the stream fails the iteration simply ends; the cause
    is kept in ``error``.

    Example:
        >>> async with await client.watch(Path.parse("/a/b")) as watch:
        ...     async for update in watch:
        ...         print(update.commit_hex, update.value)
    """

    def __init__(self, path: Path) -> None:
        super().__init__(path)
        self._pending: deque[CommitValuePair] = deque()

    async def __anext__(self) -> CommitValuePair:
        while not self._pending:
            if self.state != WatchState.STREAMING:
                raise StopAsyncIteration
            try:
                reply = await self._next_reply()
            except StopAsyncIteration:
                self.state = WatchState.CLOSED_NORMAL
                raise
            except IrminError as e:
                self.state = WatchState.CLOSED_ERROR
                self.error = e
                self._log.warning(f"watch stream failed: {e}")
                raise StopAsyncIteration from None
            self._pending.extend(self._decode(reply))
        return self._pending.popleft()

    def _decode(self, reply: StreamReply) -> list[CommitValuePair]:
        if reply.error is not None:
            self._log.warning(f"skipping watch message with error: {value_to_str(reply.error)}")
            return []
        if not isinstance(reply.result, list):
            self._log.warning(f"skipping malformed watch message: {reply.result!r}")
            return []

        pairs = []
        for index, entry in enumerate(reply.result):
            try:
                pairs.append(decode_commit_value_pair(entry))
            except ValueDecodeError as e:
                self._log.warning(f"skipping malformed watch entry {index}: {e}")
        return pairs

    async def aclose(self) -> None:
        self._pending.clear()
        await super().aclose()


class PathWatch(_BaseWatch):
    """Watch a subtree, yielding one WatchPathCommit per commit.

    The last record of a failed watch has ``error`` set; check it to tell
    a clean end of stream from an abnormal one.
    """

    async def __anext__(self) -> WatchPathCommit:
        if self.state != WatchState.STREAMING:
            raise StopAsyncIteration
        try:
            reply = await self._next_reply()
        except StopAsyncIteration:
            self.state = WatchState.CLOSED_NORMAL
            raise
        except IrminError as e:
            return await self._terminate(WatchPathCommit(commit=b"", error=e))

        if reply.error is not None:
            error = ServerError(value_to_str(reply.error), self._replies.url)
            return await self._terminate(WatchPathCommit(commit=b"", error=error))

        record = decode_watch_path_commit(reply.result)
        if record.error is not None:
            return await self._terminate(record)
        return record

    async def _terminate(self, record: WatchPathCommit) -> WatchPathCommit:
        self.state = WatchState.CLOSED_ERROR
        self.error = record.error
        self._log.warning(f"subtree watch terminated: {record.error}")
        await self._close_stream()
        return record
