"""
Message payloads for nearwave.
Structured announcements and their text/byte encoding.
"""

import base64
import binascii
import json
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from nearwave.core.errors import DecodeMismatch

Serializer = Callable[[Any], str]
Deserializer = Callable[[str], Any]


@dataclass
class NearbyMessage:
    """A link announced to nearby devices."""
    url: str
    name: Optional[str] = None
    picture: Optional[str] = None
    title: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the wire dictionary, omitting unset fields."""
        data = {"url": self.url, "name": self.name}
        if self.picture:
            data["picture"] = self.picture
        if self.title:
            data["title"] = self.title
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NearbyMessage":
        """
        Build a message from a decoded dictionary.

        Raises:
            ValueError: If the dictionary carries no url
        """
        if not isinstance(data, dict) or not data.get("url"):
            raise ValueError("Message has no url")
        return cls(
            url=data["url"],
            name=data.get("name"),
            picture=data.get("picture"),
            title=data.get("title"),
        )


def json_serializer(value: Any) -> str:
    """Serialize a value to compact JSON text."""
    if isinstance(value, NearbyMessage):
        value = value.to_dict()
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def json_deserializer(text: str) -> Any:
    return json.loads(text)


def encode_payload(value: Any, serializer: Serializer = json_serializer) -> bytes:
    """
    Turn a value into frame payload bytes.

    The serialized text is UTF-8 encoded and then base64 encoded, so the
    payload is always printable ASCII.
    """
    return base64.b64encode(serializer(value).encode("utf-8"))


def decode_payload(payload: bytes, deserializer: Deserializer = json_deserializer) -> Any:
    """
    Inverse of encode_payload.

    Raises:
        DecodeMismatch: If the payload is not base64, UTF-8 or valid for the deserializer
    """
    try:
        text = base64.b64decode(payload, validate=True).decode("utf-8")
        return deserializer(text)
    except (binascii.Error, ValueError) as e:
        raise DecodeMismatch(f"Malformed payload: {e}") from e


class MessageFilter:
    """
    Suppresses repeats of recently seen messages.

    A message is identified by its serialized text. Entries expire after
    `window_seconds` and at most `max_entries` are remembered.
    """

    def __init__(
        self,
        window_seconds: float = 30.0,
        max_entries: int = 64,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.window_seconds = window_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._seen: "OrderedDict[str, float]" = OrderedDict()
        self._lock = threading.Lock()

    def _expire(self, now: float) -> None:
        while self._seen:
            key, seen_at = next(iter(self._seen.items()))
            if now - seen_at < self.window_seconds:
                break
            del self._seen[key]

    def is_new(self, value: Any) -> bool:
        """
        Record a message and report whether it was not seen recently.

        Args:
            value: Message value or its serialized text
        """
        key = value if isinstance(value, str) else json.dumps(
            value.to_dict() if isinstance(value, NearbyMessage) else value,
            sort_keys=True,
        )
        with self._lock:
            now = self._clock()
            self._expire(now)
            if key in self._seen:
                return False
            self._seen[key] = now
            while len(self._seen) > self.max_entries:
                self._seen.popitem(last=False)
            return True

    def clear(self) -> None:
        with self._lock:
            self._seen.clear()
