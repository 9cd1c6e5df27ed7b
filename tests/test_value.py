"""Tests for the value codec."""

from __future__ import annotations

import json

import pytest

from irmin_client.exceptions import ValueDecodeError
from irmin_client.value import (
    decode_commit,
    decode_value,
    encode_commit,
    encode_value,
    value_to_str,
)


class TestEncodeValue:
    def test_utf8_is_string(self):
        assert encode_value(b"Hello \"world") == 'Hello "world'

    def test_non_utf8_is_hex_object(self):
        assert encode_value(b"\xff\x00\xfe") == {"hex": "ff00fe"}

    def test_empty(self):
        assert encode_value(b"") == ""

    def test_encoded_value_is_json_serializable(self):
        data = json.dumps([encode_value(b"caf\xc3\xa9"), encode_value(b"\x80")])
        assert json.loads(data) == ["café", {"hex": "80"}]


class TestDecodeValue:
    def test_utf8_round_trip(self):
        original = "snowman ☃ and quotes \"'".encode()
        assert decode_value(encode_value(original)) == original

    def test_invalid_utf8_round_trip(self):
        original = bytes(range(256))
        encoded = encode_value(original)
        assert isinstance(encoded, dict)
        assert decode_value(encoded) == original

    def test_uppercase_hex_accepted(self):
        assert decode_value({"hex": "ABCD"}) == b"\xab\xcd"

    @pytest.mark.parametrize(
        "payload",
        [42, None, ["a"], {"nothex": "00"}, {"hex": "zz"}, {"hex": "abc"}, {"hex": 12}],
    )
    def test_rejects_malformed(self, payload):
        with pytest.raises(ValueDecodeError):
            decode_value(payload)

    def test_lone_surrogate_rejected(self):
        with pytest.raises(ValueDecodeError):
            decode_value(json.loads('"\\ud800"'))


class TestCommit:
    def test_decode(self):
        assert decode_commit("ab12") == bytes([0xAB, 0x12])

    def test_encode_is_lowercase_hex(self):
        assert encode_commit(b"\xab\x12") == "ab12"

    @pytest.mark.parametrize("payload", ["xyz1", "abc", 1234, None, "ab 12", "é1"])
    def test_rejects_malformed(self, payload):
        with pytest.raises(ValueDecodeError):
            decode_commit(payload)


def test_value_to_str_never_fails():
    assert value_to_str(b"ok") == "ok"
    assert value_to_str(b"\xff") == "�"
