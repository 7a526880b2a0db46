"""
Stream synchronization for nearwave.
Locates frames in the rolling bit history of a listening session.
"""

import logging
import threading
from enum import Enum
from typing import Any, Callable, List, Optional

from nearwave.core.config import ModemConfig
from nearwave.core.errors import DecodeMismatch
from nearwave.protocol.frame import FrameCodec, FrameStatus

logger = logging.getLogger(__name__)


class RollingBuffer:
    """
    Thread-safe bounded bit history.

    Appending past capacity drops the oldest bits first.
    """

    def __init__(self, max_bits: int = 8192):
        """
        Initialize rolling buffer.

        Args:
            max_bits: Maximum number of bits retained
        """
        self.max_bits = max_bits
        self._bits: List[int] = []
        self._evicted = 0
        self._lock = threading.Lock()

    def append(self, bit: int) -> None:
        """Append a bit, evicting the oldest excess bits."""
        with self._lock:
            self._bits.append(1 if bit else 0)
            excess = len(self._bits) - self.max_bits
            if excess > 0:
                del self._bits[:excess]
                self._evicted += excess
                logger.debug("Rolling buffer full, evicted %d bit(s)", excess)

    def extend(self, bits: List[int]) -> None:
        for bit in bits:
            self.append(bit)

    def truncate(self, count: int) -> None:
        """Drop the first `count` bits."""
        with self._lock:
            del self._bits[:count]

    def snapshot(self) -> List[int]:
        """Copy of the buffered bits."""
        with self._lock:
            return list(self._bits)

    def clear(self) -> None:
        with self._lock:
            self._bits.clear()

    @property
    def evicted(self) -> int:
        """Total number of bits dropped by capacity eviction."""
        return self._evicted

    def __len__(self) -> int:
        with self._lock:
            return len(self._bits)


class SyncState(Enum):
    """Synchronizer state within a tick."""
    SCANNING = "scanning"
    HEADER_FOUND = "header_found"


class Synchronizer:
    """
    Finds, extracts and decodes frames in a rolling buffer.

    Each call to `process` rescans the whole buffer from its start. No state
    other than the buffer itself carries over between calls.
    """

    def __init__(
        self,
        config: Optional[ModemConfig] = None,
        decode_payload: Optional[Callable[[bytes], Any]] = None,
        on_message: Optional[Callable[[Any], None]] = None,
    ):
        """
        Initialize the synchronizer.

        Args:
            config: Modem configuration. Uses defaults if None.
            decode_payload: Turns frame payload bytes into a message; raises
                DecodeMismatch (or ValueError) for malformed payloads
            on_message: Called with each decoded message
        """
        self.config = config or ModemConfig()
        self.codec = FrameCodec(self.config)
        self.decode_payload = decode_payload or bytes
        self.on_message = on_message
        self.state = SyncState.SCANNING
        self.pending_length: Optional[int] = None

    def _scan(self, bits: List[int]) -> Optional[tuple]:
        """
        Find the first complete, decodable frame.

        Returns:
            Tuple of (message, frame end index) or None
        """
        # Candidate offsets come from a substring search over the bits.
        haystack = bytes(bits)
        needle = bytes(self.codec.preamble)
        last_shift = len(bits) - self.config.header_bits
        shift = haystack.find(needle)
        while 0 <= shift <= last_shift:
            result = self.codec.decode(bits, shift)

            if result.status is FrameStatus.MISMATCH:
                shift = haystack.find(needle, shift + 1)
                continue

            self.state = SyncState.HEADER_FOUND
            if result.status is FrameStatus.LENGTH_OUT_OF_RANGE:
                logger.debug("Length %s at bit %d exceeds buffer capacity", result.length, shift)
            elif result.status is FrameStatus.NEED_MORE_DATA:
                if self.pending_length is None:
                    logger.debug("Preamble at bit %d, waiting for payload", shift)
                    self.pending_length = result.length
            else:
                try:
                    message = self.decode_payload(result.payload)
                except (DecodeMismatch, ValueError) as e:
                    logger.debug("False preamble at bit %d: %s", shift, e)
                else:
                    return message, result.end
            shift = haystack.find(needle, shift + 1)
        return None

    def process(self, buffer: RollingBuffer) -> int:
        """
        Scan the buffer and deliver a complete frame if one is present.

        On success the buffer is truncated past the frame. Only one frame is
        delivered per call unless `drain_backlog` is enabled.

        Args:
            buffer: Rolling bit buffer of the listening session

        Returns:
            Number of messages delivered
        """
        delivered = 0
        while True:
            self.state = SyncState.SCANNING
            self.pending_length = None
            found = self._scan(buffer.snapshot())
            if found is None:
                break

            message, end = found
            buffer.truncate(end)
            delivered += 1
            logger.debug("Decoded frame ending at bit %d", end)
            if self.on_message:
                self.on_message(message)

            if not self.config.drain_backlog:
                break
        return delivered
