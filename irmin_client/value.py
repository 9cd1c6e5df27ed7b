"""
Value codec.

Irmin stores opaque byte strings. On the wire a value is a JSON string when
the bytes are valid UTF-8 and an object ``{"hex": "..."}`` otherwise.
Commit hashes travel as lowercase hex strings and are kept as raw bytes.
"""

from __future__ import annotations

import binascii
from typing import Any

from .exceptions import ValueDecodeError

Value = bytes


def encode_value(data: bytes) -> str | dict[str, str]:
    """Encode bytes as their JSON wire form."""
    try:
        return bytes(data).decode("utf-8")
    except UnicodeDecodeError:
        return {"hex": bytes(data).hex()}


def decode_value(obj: Any) -> bytes:
    """Decode a JSON wire value into bytes.

    Raises:
        ValueDecodeError: If obj is neither a string nor a hex object
    """
    if isinstance(obj, str):
        try:
            return obj.encode("utf-8")
        except UnicodeEncodeError as e:
            # Lone surrogates from \ud800-style escapes
            raise ValueDecodeError("string not valid utf8", obj) from e

    if isinstance(obj, dict) and "hex" in obj:
        raw = obj["hex"]
        if not isinstance(raw, str):
            raise ValueDecodeError("hex field is not a string", obj)
        try:
            return bytes.fromhex(raw)
        except ValueError as e:
            raise ValueDecodeError(f"invalid hex: {e}", obj) from e

    raise ValueDecodeError("expected string or hex object", obj)


def value_to_str(data: bytes) -> str:
    """Display form of a value. Never fails."""
    return bytes(data).decode("utf-8", errors="replace")


def encode_commit(commit: bytes) -> str:
    return binascii.hexlify(commit).decode("ascii")


def decode_commit(obj: Any) -> bytes:
    """Decode a hex commit hash into raw bytes.

    Raises:
        ValueDecodeError: If obj is not a valid hex string
    """
    if not isinstance(obj, str):
        raise ValueDecodeError("commit is not a string", obj)
    try:
        return binascii.unhexlify(obj)
    except (binascii.Error, ValueError) as e:
        raise ValueDecodeError(f"invalid commit hash: {e}", obj) from e
