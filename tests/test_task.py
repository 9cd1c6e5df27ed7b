"""Tests for commit tasks."""

from __future__ import annotations

import time

from irmin_client.task import Task, request_body


def test_new_task():
    before = int(time.time())
    task = Task.new("alice", "update key")
    assert before <= int(task.date) <= int(time.time())
    assert task.uid == "0"
    assert task.owner == b"alice"
    assert task.messages == (b"update key",)


def test_to_json_uses_value_encoding():
    task = Task(date="10", uid="0", owner=b"\xff", messages=(b"one", b"two"))
    assert task.to_json() == {
        "date": "10",
        "uid": "0",
        "owner": {"hex": "ff"},
        "messages": ["one", "two"],
    }


def test_request_body_omits_missing_params():
    task = Task.new("alice", "remove")
    assert request_body(task) == {"task": task.to_json()}
    assert request_body(task, "v")["params"] == "v"
