"""
Frame layout for nearwave.

A frame on the wire is::

    [preamble: preamble_repeats x preamble_byte]
    [length:   16 bits, high byte then low byte]
    [payload:  length bytes]

Every byte is sent least-significant bit first.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence

from nearwave.core.config import ModemConfig
from nearwave.core.errors import PayloadTooLarge

MAX_PAYLOAD_BYTES = 0xFFFF
LENGTH_BITS = 16


def byte_to_bits(value: int) -> List[int]:
    """Split a byte into 8 bits, LSB first."""
    return [(value >> i) & 1 for i in range(8)]


def bits_to_byte(bits: Sequence[int]) -> int:
    value = 0
    for i, bit in enumerate(bits[:8]):
        value |= (bit & 1) << i
    return value


def bits_to_bytes(bits: Sequence[int]) -> bytes:
    """Pack LSB-first bits into bytes. A trailing partial byte is ignored."""
    return bytes(
        bits_to_byte(bits[i:i + 8])
        for i in range(0, len(bits) - 7, 8)
    )


class FrameStatus(Enum):
    """Outcome of decoding a frame at a buffer offset."""
    OK = "ok"
    NEED_MORE_DATA = "need_more_data"
    MISMATCH = "mismatch"
    LENGTH_OUT_OF_RANGE = "length_out_of_range"


@dataclass
class FrameResult:
    """Result of FrameCodec.decode."""
    status: FrameStatus
    payload: Optional[bytes] = None
    length: Optional[int] = None
    end: Optional[int] = None  # buffer index just past the frame

    @property
    def ok(self) -> bool:
        return self.status is FrameStatus.OK


class FrameCodec:
    """
    Builds and parses the bit-level frame layout.

    The codec treats the payload as an opaque byte blob; text encoding is
    the caller's concern.
    """

    def __init__(self, config: Optional[ModemConfig] = None):
        """
        Initialize the codec.

        Args:
            config: Modem configuration. Uses defaults if None.
        """
        self.config = config or ModemConfig()
        self._preamble = byte_to_bits(self.config.preamble_byte) * self.config.preamble_repeats

    @property
    def preamble(self) -> List[int]:
        """Expected preamble bits."""
        return list(self._preamble)

    def frame_bits(self, length: int) -> int:
        """Total bit count of a frame carrying `length` payload bytes."""
        return self.config.header_bits + length * 8

    def encode(self, payload: bytes) -> List[int]:
        """
        Encode a payload into frame bits.

        Args:
            payload: Payload bytes (at most 65535)

        Returns:
            Frame bits
        """
        length = len(payload)
        if length > MAX_PAYLOAD_BYTES:
            raise PayloadTooLarge(
                f"Payload is {length} bytes, frames carry at most {MAX_PAYLOAD_BYTES}"
            )

        bits = list(self._preamble)
        bits.extend(byte_to_bits((length >> 8) & 0xFF))
        bits.extend(byte_to_bits(length & 0xFF))
        for byte in payload:
            bits.extend(byte_to_bits(byte))
        return bits

    def matches_preamble(
        self,
        bits: Sequence[int],
        offset: int = 0,
        partial: bool = False,
    ) -> bool:
        """
        Check the preamble at offset.

        Args:
            bits: Bit buffer
            offset: Index where the preamble is expected
            partial: Accept a matching prefix cut off by the end of the buffer
        """
        expected = self._preamble
        available = len(bits) - offset
        if available < len(expected):
            if not partial:
                return False
            expected = expected[:max(0, available)]
        window = bits[offset:offset + len(expected)]
        if not isinstance(window, list):
            window = list(window)
        return window == expected

    def decode(self, bits: Sequence[int], offset: int = 0) -> FrameResult:
        """
        Decode a frame starting at offset.

        Data problems are reported through the result status, never raised.

        Args:
            bits: Bit buffer
            offset: Index where the preamble is expected

        Returns:
            FrameResult
        """
        header_end = offset + self.config.header_bits
        if header_end > len(bits):
            if self.matches_preamble(bits, offset, partial=True):
                return FrameResult(FrameStatus.NEED_MORE_DATA)
            return FrameResult(FrameStatus.MISMATCH)

        if not self.matches_preamble(bits, offset):
            return FrameResult(FrameStatus.MISMATCH)

        length_start = offset + self.config.preamble_bits
        high = bits_to_byte(bits[length_start:length_start + 8])
        low = bits_to_byte(bits[length_start + 8:length_start + 16])
        length = (high << 8) | low

        needed = self.frame_bits(length)
        if needed > self.config.max_buffer_bits:
            return FrameResult(FrameStatus.LENGTH_OUT_OF_RANGE, length=length)

        end = offset + needed
        if end > len(bits):
            return FrameResult(FrameStatus.NEED_MORE_DATA, length=length)

        payload = bits_to_bytes(bits[header_end:end])
        return FrameResult(FrameStatus.OK, payload=payload, length=length, end=end)
