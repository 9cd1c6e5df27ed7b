"""
Irmin REST client.

Builds command URLs, sends mutating commands with their Task, and opens
the streaming commands (watch, watch-rec, iter) through decode_stream().
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Iterable
from typing import Any
from urllib.parse import quote_plus

import aiohttp

from .config import DEFAULT_QUEUE_SIZE, DEFAULT_TASK_OWNER, ClientConfig
from .exceptions import ProtocolError, ServerError, ValueDecodeError
from .logging_utils import configure_structured_logging
from .path import ROOT, Path, as_path
from .stream import ReplyStream, decode_stream
from .task import Task, request_body
from .transport import HttpTransport
from .value import decode_commit, decode_value, encode_commit, encode_value, value_to_str
from .views import View
from .watch import KeyWatch, PathWatch

logger = logging.getLogger(__name__)

PathLike = Path | str | Iterable[bytes] | None


class PathIterator:
    """Keys streamed by an ``iter`` command.

    A malformed entry or an in-band error is raised from ``__anext__``
    and ends the iteration.
    """

    def __init__(self, replies: ReplyStream) -> None:
        self._replies = replies

    def __aiter__(self) -> PathIterator:
        return self

    async def __anext__(self) -> Path:
        reply = await self._replies.__anext__()
        try:
            if reply.error is not None:
                raise ServerError(value_to_str(reply.error), self._replies.url)
            return Path.from_json(reply.result)
        except (ServerError, ValueDecodeError):
            await self._replies.aclose()
            raise

    async def aclose(self) -> None:
        await self._replies.aclose()

    async def __aenter__(self) -> PathIterator:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()


def _commit_param(commit: bytes | str) -> str:
    if isinstance(commit, str):
        commit = decode_commit(commit)
    return encode_commit(commit)


class IrminClient:
    """Connection to an Irmin REST server.

    Example:
        >>> async with IrminClient("http://127.0.0.1:8080", "alice") as client:
        ...     await client.update(client.new_task("set a"), "/a", b"hello")
        ...     async with await client.watch("/a") as watch:
        ...         async for update in watch:
        ...             print(update.commit_hex, update.value)
    """

    def __init__(
        self,
        base_url: str,
        task_owner: str = DEFAULT_TASK_OWNER,
        tree: str = "",
        transport: HttpTransport | None = None,
        queue_size: int = DEFAULT_QUEUE_SIZE,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Root URL of the Irmin REST server
            task_owner: Commit author used by new_task()
            tree: Branch, tag or commit to run tree commands against; empty is the default branch
            transport: HTTP transport; a private one is created when omitted
            queue_size: Replies buffered per open stream
        """
        self.base_url = base_url.rstrip("/")
        self.task_owner = task_owner
        self.tree = tree
        self.queue_size = queue_size
        self._owns_transport = transport is None
        self.transport = transport or HttpTransport()

    @classmethod
    def from_config(
        cls,
        config: ClientConfig,
        session: aiohttp.ClientSession | None = None,
    ) -> IrminClient:
        """Create a client from a ClientConfig, optionally on a shared session."""
        config.validate()
        client = cls(
            base_url=config.base_url,
            task_owner=config.task_owner,
            tree=config.tree,
            transport=HttpTransport(session, connect_timeout=config.connect_timeout),
            queue_size=config.queue_size,
        )
        if config.log_level:
            configure_structured_logging(config.log_level)
        # Closing the transport leaves a borrowed session open
        client._owns_transport = True
        return client

    def from_tree(self, tree: str) -> IrminClient:
        """Return a client bound to another tree. The transport is shared."""
        other = copy.copy(self)
        other.tree = tree
        other._owns_transport = False
        return other

    def new_task(self, message: str) -> Task:
        return Task.new(self.task_owner, message)

    def make_call_url(self, command: str, path: PathLike = None, tree_scoped: bool = True) -> str:
        """Build the URL for a command.

        Tree-scoped commands are prefixed with ``/tree/<tree>`` when a tree
        is set.
        """
        suffix = f"/{command}{as_path(path).url()}"
        if tree_scoped and self.tree:
            suffix = f"/tree/{quote_plus(self.tree, safe='')}{suffix}"
        return self.base_url + suffix

    async def call(self, url: str, body: Any = None) -> Any:
        """Run a unary command and return the ``result`` member of the reply.

        Raises:
            ServerError: If the reply carries an error value
        """
        reply = await self._call_reply(url, body)
        return reply.get("result")

    async def _call_reply(self, url: str, body: Any = None) -> dict[str, Any]:
        reply = await self.transport.call(url, body)
        if not isinstance(reply, dict):
            raise ProtocolError(f"Unexpected reply from {url}", {"reply": repr(reply)})
        error = reply.get("error")
        if error:
            try:
                message = value_to_str(decode_value(error))
            except ValueDecodeError:
                message = repr(error)
            raise ServerError(message, url)
        return reply

    async def call_stream(self, url: str, body: Any = None) -> ReplyStream:
        """Run a streaming command and return its open ReplyStream."""
        response = await self.transport.open(url, body)
        return await decode_stream(response, queue_size=self.queue_size)

    async def _call_string(self, command: str, path: PathLike, body: Any) -> str:
        url = self.make_call_url(command, path)
        result = await self.call(url, body)
        return value_to_str(decode_value(result)) if result is not None else ""

    # Streaming commands

    async def watch(
        self,
        path: PathLike,
        resume_commit: bytes | str | None = None,
        last_value: bytes | None = None,
    ) -> KeyWatch:
        """Watch a single key.

        Args:
            path: Key to watch
            resume_commit: Replay changes since this commit
            last_value: Value last seen at resume_commit, if known

        Returns:
            KeyWatch yielding CommitValuePair values
        """
        key = as_path(path)
        body = None
        if resume_commit is not None:
            body = [_commit_param(resume_commit), encode_value(last_value or b"")]
        url = self.make_call_url("watch", key)
        return await KeyWatch(key).start(lambda: self.call_stream(url, body))

    async def watch_path(
        self,
        path: PathLike,
        resume_commit: bytes | str | None = None,
    ) -> PathWatch:
        """Watch every key below a path.

        Returns:
            PathWatch yielding one WatchPathCommit per commit
        """
        key = as_path(path)
        body = [_commit_param(resume_commit)] if resume_commit is not None else None
        url = self.make_call_url("watch-rec", key)
        return await PathWatch(key).start(lambda: self.call_stream(url, body))

    async def iter(self) -> PathIterator:
        """Stream every key in the tree."""
        return PathIterator(await self.call_stream(self.make_call_url("iter", ROOT)))

    # Server information

    async def available_commands(self) -> list[str]:
        """Names of the commands the server accepts for the current tree."""
        reply = await self._call_reply(self.make_call_url(""))
        result = reply.get("result")
        if not isinstance(result, list):
            raise ProtocolError("command list is not a list", {"result": repr(result)})
        return [value_to_str(decode_value(name)) for name in result]

    async def version(self) -> str:
        """Version string announced by the server, empty if it sends none."""
        reply = await self._call_reply(self.make_call_url(""))
        version = reply.get("version")
        return value_to_str(decode_value(version)) if version is not None else ""

    # Mutating commands

    async def update(self, task: Task, path: PathLike, contents: bytes) -> str:
        """Set a key. Returns the new commit hash as hex."""
        result = await self._call_string("update", path, request_body(task, encode_value(contents)))
        if not result:
            raise ProtocolError(f"update of {as_path(path)} did not return a hash")
        return result

    async def compare_and_set(
        self,
        task: Task,
        path: PathLike,
        old: bytes | None,
        new: bytes | None,
    ) -> str:
        """Set a key only if its current value is ``old``. None means absent."""
        params = [
            [encode_value(old) if old is not None else None],
            [encode_value(new) if new is not None else None],
        ]
        result = await self._call_string("compare-and-set", path, request_body(task, params))
        if not result:
            raise ProtocolError(f"compare-and-set of {as_path(path)} did not return a hash")
        return result

    async def remove(self, task: Task, path: PathLike) -> None:
        await self._call_string("remove", path, request_body(task))

    async def remove_rec(self, task: Task, path: PathLike) -> None:
        """Remove a key and everything below it."""
        result = await self._call_string("remove-rec", path, request_body(task))
        if not result:
            raise ProtocolError(f"remove-rec of {as_path(path)} returned an empty result")

    async def clone(self, task: Task, name: str, force: bool = False) -> None:
        """Tag the current tree as ``name``. force overwrites an existing tag."""
        command = "clone-force" if force else "clone"
        result = await self._call_string(command, Path.of(name), request_body(task))
        if result != "ok":
            raise ServerError(result or f"{command} {name} failed", self.make_call_url(command, Path.of(name)))

    async def create_view(self, task: Task, path: PathLike) -> View:
        """Create a view (detached working copy) of a path."""
        return await View.create(self, task, as_path(path))

    async def close(self) -> None:
        if self._owns_transport:
            await self.transport.close()

    async def __aenter__(self) -> IrminClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
