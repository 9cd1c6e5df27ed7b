"""
Irmin HTTP Client

Async client for the Irmin versioned key/value store REST interface.

Provides:
- Streaming reply decoding for long-lived JSON array responses
- Watches on single keys and on subtrees
- Mutating commands (update, remove, clone, views) with commit tasks

Usage:

    >>> from irmin_client import IrminClient, Path
    >>> async with IrminClient("http://127.0.0.1:8080", "alice") as client:
    ...     await client.update(client.new_task("set greeting"), Path.parse("/greeting"), b"hi")
    ...
    ...     # Single key: one CommitValuePair per change
    ...     async with await client.watch("/greeting") as watch:
    ...         async for update in watch:
    ...             print(update.commit_hex, update.value)
    ...
    ...     # Subtree: one WatchPathCommit per commit
    ...     async with await client.watch_path("/") as watch:
    ...         async for commit in watch:
    ...             if commit.error:
    ...                 raise commit.error
    ...             for change in commit.changes:
    ...                 print(change.change, change.key)

Configuration:

    # From IRMIN_URL, IRMIN_TASK_OWNER, ...
    client = IrminClient.from_config(ClientConfig.from_env())

    # From the irmin: section of a YAML file
    client = IrminClient.from_config(ClientConfig.from_file("irmin.yaml"))
"""

from .client import IrminClient, PathIterator
from .config import ClientConfig

# Exceptions
from .exceptions import (
    ConfigurationError,
    FramingError,
    IrminConnectionError,
    IrminError,
    IrminHTTPError,
    PathParseError,
    ProtocolError,
    ServerError,
    StreamDecodeError,
    ValueDecodeError,
)
from .path import ROOT, Path
from .stream import JsonArrayFramer, ReplyStream, StreamReply, decode_stream
from .task import Task
from .transport import HttpTransport
from .value import decode_commit, decode_value, encode_commit, encode_value
from .views import View
from .watch import (
    ChangeKind,
    CommitValuePair,
    KeyWatch,
    PathChange,
    PathWatch,
    WatchPathCommit,
    WatchState,
)

__all__ = [
    # Client
    "IrminClient",
    "ClientConfig",
    "HttpTransport",
    "PathIterator",
    "View",
    # Data model
    "Path",
    "ROOT",
    "Task",
    "encode_value",
    "decode_value",
    "encode_commit",
    "decode_commit",
    # Streams
    "decode_stream",
    "ReplyStream",
    "StreamReply",
    "JsonArrayFramer",
    # Watches
    "KeyWatch",
    "PathWatch",
    "WatchState",
    "CommitValuePair",
    "WatchPathCommit",
    "PathChange",
    "ChangeKind",
    # Exceptions
    "IrminError",
    "ConfigurationError",
    "IrminConnectionError",
    "IrminHTTPError",
    "ServerError",
    "ProtocolError",
    "FramingError",
    "StreamDecodeError",
    "ValueDecodeError",
    "PathParseError",
]

__version__ = "0.1.0"
