"""
Hierarchical keys.

A Path is an ordered sequence of opaque byte segments. The empty path is
the root of the tree. In URLs each segment is query-escaped, so a segment
may itself contain the '/' delimiter.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote_plus, unquote_to_bytes

from .exceptions import PathParseError, ValueDecodeError
from .value import decode_value, encode_value, value_to_str

DELIMITER = "/"

_BAD_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")


def _split(text: str) -> list[str]:
    trimmed = text.strip(" " + DELIMITER)
    if not trimmed:
        return []
    return trimmed.split(DELIMITER)


@dataclass(frozen=True)
class Path:
    """A key in an Irmin tree.

    Attributes:
        segments: Raw segment values, root first
    """

    segments: tuple[bytes, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "segments", tuple(bytes(s) for s in self.segments))

    @classmethod
    def of(cls, *segments: bytes | str) -> Path:
        """Build a path from segments, encoding str segments as UTF-8."""
        return cls(tuple(s.encode("utf-8") if isinstance(s, str) else s for s in segments))

    @classmethod
    def parse(cls, text: str) -> Path:
        """Parse a '/' separated string. Segments are taken literally."""
        return cls(tuple(seg.encode("utf-8") for seg in _split(text)))

    @classmethod
    def parse_encoded(cls, text: str) -> Path:
        """Parse a '/' separated string whose segments are query-escaped.

        Raises:
            PathParseError: If a segment contains an invalid escape
        """
        segments = []
        for seg in _split(text):
            if _BAD_ESCAPE.search(seg):
                raise PathParseError(text, f"invalid escape in segment {seg!r}")
            segments.append(unquote_to_bytes(seg.replace("+", " ")))
        return cls(tuple(segments))

    @classmethod
    def from_json(cls, obj: Any) -> Path:
        """Decode the wire form of a path.

        The server sends a list of Value-encoded segments; a plain
        '/' separated string is accepted as well.

        Raises:
            ValueDecodeError: If obj is not a valid path payload
        """
        if isinstance(obj, str):
            return cls.parse(obj)
        if not isinstance(obj, list):
            raise ValueDecodeError("path is not a list", obj)
        return cls(tuple(decode_value(seg) for seg in obj))

    def to_json(self) -> list[Any]:
        return [encode_value(seg) for seg in self.segments]

    def url(self) -> str:
        """Relative URL form, empty for the root."""
        return "".join(DELIMITER + quote_plus(seg, safe="") for seg in self.segments)

    def child(self, *segments: bytes | str) -> Path:
        return Path(self.segments + Path.of(*segments).segments)

    def __truediv__(self, segment: bytes | str) -> Path:
        return self.child(segment)

    @property
    def is_root(self) -> bool:
        return not self.segments

    def __iter__(self) -> Iterator[bytes]:
        return iter(self.segments)

    def __len__(self) -> int:
        return len(self.segments)

    def __str__(self) -> str:
        return "".join(DELIMITER + value_to_str(seg) for seg in self.segments)


ROOT = Path()


def as_path(path: Path | str | Iterable[bytes] | None) -> Path:
    """Coerce the path-like arguments accepted by the client."""
    if path is None:
        return ROOT
    if isinstance(path, Path):
        return path
    if isinstance(path, str):
        return Path.parse(path)
    return Path(tuple(path))
