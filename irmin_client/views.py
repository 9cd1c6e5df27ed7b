"""
Views: detached working copies.

A view is created from a path, updated on its own, then merged or written
back into a tree. Each update moves the view to a new node.
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from urllib.parse import quote_plus

from .exceptions import ProtocolError
from .path import ROOT, Path
from .task import Task, request_body
from .value import decode_value, encode_value, value_to_str

if TYPE_CHECKING:
    from .client import IrminClient, PathIterator


def _escape(text: str) -> str:
    return quote_plus(text, safe="")


class View:
    """A view (transaction) on an Irmin tree.

    Attributes:
        head: Commit the view was created from
        node: Current node of the view, advanced by update()
        path: Path the view was created from
    """

    def __init__(self, client: IrminClient, head: str, node: str, path: Path) -> None:
        self.client = client
        self.head = head
        self.node = node
        self.path = path

    @classmethod
    async def create(cls, client: IrminClient, task: Task, path: Path) -> View:
        """Create a view of ``path`` in the client's tree.

        Raises:
            ProtocolError: If the reply is not ``<head>-<node>``
        """
        # The server registers the command with a doubled name
        url = client.make_call_url("view/create/create", path)
        result = await client.call(url, request_body(task))
        if not result:
            raise ProtocolError(f"view create on {path} returned an empty result")
        parts = value_to_str(decode_value(result)).split("-")
        if len(parts) != 2:
            raise ProtocolError(f"invalid view reference: {result!r}")
        return cls(client, head=parts[0], node=parts[1], path=path)

    @property
    def tree(self) -> str:
        return self.client.tree

    def new_task(self, message: str) -> Task:
        return self.client.new_task(message)

    def _url(self, command: str, path: Path, tree: str | None = None) -> str:
        command = f"view/{_escape(self.node)}/{command}"
        if tree is not None:
            command = f"tree/{_escape(tree)}/{command}"
        return self.client.make_call_url(command, path, tree_scoped=False)

    async def update(self, task: Task, path: Path, contents: bytes) -> str:
        """Set a key inside the view and return the view's new node."""
        result = await self.client.call(
            self._url("update", path), request_body(task, encode_value(contents))
        )
        node = value_to_str(decode_value(result)) if result is not None else ""
        if not node:
            raise ProtocolError(f"view update of {path} did not return a node")
        self.node = node
        return node

    async def iter(self) -> PathIterator:
        """Stream every key in the view."""
        from .client import PathIterator

        return PathIterator(await self.client.call_stream(self._url("iter", ROOT)))

    async def merge_path(self, task: Task, tree: str, path: Path) -> None:
        """Merge the view into ``path`` of ``tree``."""
        body = request_body(task, encode_value(self.head.encode("utf-8")))
        await self.client.call(self._url("merge-path", path, tree), body)

    async def update_path(self, task: Task, tree: str, path: Path) -> None:
        """Write the view into ``path`` of ``tree``, overwriting existing values."""
        result = await self.client.call(self._url("update-path", path, tree), request_body(task))
        if not result:
            raise ProtocolError(f"update-path of {path} returned an empty result")
