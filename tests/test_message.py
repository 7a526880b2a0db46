"""Tests for message payloads and repeat suppression."""

import base64

import pytest

from nearwave.core.errors import DecodeMismatch
from nearwave.core.message import (
    MessageFilter,
    NearbyMessage,
    decode_payload,
    encode_payload,
    json_serializer,
)


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


class TestNearbyMessage:
    """Tests for NearbyMessage."""

    def test_to_dict_omits_unset(self):
        """Test optional fields are left out when unset."""
        message = NearbyMessage(url="https://example.com")

        assert message.to_dict() == {"url": "https://example.com", "name": None}

    def test_to_dict_full(self):
        message = NearbyMessage(url="u", name="n", picture="p", title="t")

        assert message.to_dict() == {"url": "u", "name": "n", "picture": "p", "title": "t"}

    def test_from_dict(self):
        """Test building from a decoded dictionary."""
        message = NearbyMessage.from_dict({"url": "u", "title": "t", "extra": 1})

        assert message == NearbyMessage(url="u", title="t")

    @pytest.mark.parametrize("data", [{}, {"name": "n"}, "https://example.com", None])
    def test_from_dict_requires_url(self, data):
        """Test values without a url are rejected."""
        with pytest.raises(ValueError):
            NearbyMessage.from_dict(data)


class TestPayload:
    """Tests for payload encoding."""

    def test_compact_json(self):
        """Test serialization has no whitespace and keeps non-ASCII text."""
        assert json_serializer({"url": "x", "name": "Zoë"}) == '{"url":"x","name":"Zoë"}'

    def test_serializes_nearby_message(self):
        assert json_serializer(NearbyMessage(url="x", name="A")) == '{"url":"x","name":"A"}'

    def test_payload_is_base64(self):
        """Test the payload is base64 of the UTF-8 text."""
        payload = encode_payload({"url": "https://example.com"})

        assert base64.b64decode(payload) == b'{"url":"https://example.com"}'
        assert payload.isascii()

    def test_round_trip(self):
        value = {"url": "https://example.com/ü", "name": "José", "n": [1, 2]}

        assert decode_payload(encode_payload(value)) == value

    def test_custom_serializer(self):
        """Test plain strings pass through custom codecs."""
        payload = encode_payload("hello", serializer=str)

        assert decode_payload(payload, deserializer=str) == "hello"

    @pytest.mark.parametrize("payload", [
        b"!!!!",
        base64.b64encode(b"\xff\xfe"),
        base64.b64encode(b"{not json"),
    ])
    def test_malformed_payload(self, payload):
        """Test bad base64, UTF-8 or JSON raise DecodeMismatch."""
        with pytest.raises(DecodeMismatch):
            decode_payload(payload)


class TestMessageFilter:
    """Tests for MessageFilter."""

    def test_repeat_suppressed(self):
        """Test the same message is only new once within the window."""
        seen = MessageFilter(window_seconds=30, clock=FakeClock())

        assert seen.is_new({"url": "a"})
        assert not seen.is_new({"url": "a"})
        assert seen.is_new({"url": "b"})

    def test_key_order_ignored(self):
        seen = MessageFilter(clock=FakeClock())

        assert seen.is_new({"url": "a", "name": "n"})
        assert not seen.is_new({"name": "n", "url": "a"})
        assert not seen.is_new(NearbyMessage(url="a", name="n"))

    def test_window_expiry(self):
        """Test a message is new again once the window has passed."""
        clock = FakeClock()
        seen = MessageFilter(window_seconds=30, clock=clock)

        assert seen.is_new("hello")
        clock.now += 29
        assert not seen.is_new("hello")
        clock.now += 2
        assert seen.is_new("hello")

    def test_max_entries(self):
        """Test the oldest entries are forgotten past capacity."""
        seen = MessageFilter(max_entries=2, clock=FakeClock())

        for text in ("a", "b", "c"):
            assert seen.is_new(text)

        assert seen.is_new("a")
        assert not seen.is_new("c")

    def test_clear(self):
        seen = MessageFilter(clock=FakeClock())
        seen.is_new("a")
        seen.clear()

        assert seen.is_new("a")
