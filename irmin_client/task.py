"""Commit metadata attached to every mutating request."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

from .value import encode_value


@dataclass(frozen=True)
class Task:
    """A commit message as stored by Irmin.

    Attributes:
        date: Unix timestamp as a decimal string
        uid: Task identifier, "0" for client-created tasks
        owner: Commit author
        messages: Free-text commit messages
    """

    date: str
    uid: str
    owner: bytes
    messages: tuple[bytes, ...] = field(default_factory=tuple)

    @classmethod
    def new(cls, owner: str | bytes, message: str | bytes) -> Task:
        """Create a task stamped with the current time."""
        return cls(
            date=str(int(time.time())),
            uid="0",
            owner=owner.encode("utf-8") if isinstance(owner, str) else owner,
            messages=(message.encode("utf-8") if isinstance(message, str) else message,),
        )

    def to_json(self) -> dict[str, Any]:
        return {
            "date": self.date,
            "uid": self.uid,
            "owner": encode_value(self.owner),
            "messages": [encode_value(m) for m in self.messages],
        }


def request_body(task: Task, params: Any = None) -> dict[str, Any]:
    """Build the POST body for a mutating command."""
    body: dict[str, Any] = {"task": task.to_json()}
    if params is not None:
        body["params"] = params
    return body
