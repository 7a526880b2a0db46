"""
Simulated audio paths for nearwave.

LoopbackChannel is a noiseless acoustic channel on a virtual clock: tones
scheduled on its output sink appear in the spectra read from its input
sources. RecordedInputSource replays recorded samples one analysis window
at a time.
"""

import heapq
import itertools
import threading
from typing import Callable, List, Optional, Tuple

import numpy as np

from nearwave.audio.fsk import magnitude_spectrum
from nearwave.core.errors import HardwareUnavailable


class LoopbackChannel:
    """Noiseless channel connecting loopback sinks and sources."""

    def __init__(
        self,
        sample_rate: int = 44100,
        fft_size: int = 2048,
        start_time: float = 0.0,
    ):
        """
        Initialize the channel.

        Args:
            sample_rate: Sample rate reported by input sources
            fft_size: Spectrum length (bins = fft_size // 2)
            start_time: Initial virtual clock value in seconds
        """
        self.sample_rate = sample_rate
        self.fft_size = fft_size
        self.clock = start_time
        self._tones: List[Tuple[float, float, float, float]] = []
        self._pending: list = []
        self._seq = itertools.count()
        self._lock = threading.Lock()

    def output_sink(self) -> "LoopbackOutputSink":
        return LoopbackOutputSink(self)

    def input_source(self, error: Optional[Exception] = None) -> "LoopbackInputSource":
        """
        Create an input source listening to this channel.

        Args:
            error: If given, opening the source fails with this error
        """
        return LoopbackInputSource(self, error)

    def add_tone(self, frequency: float, start: float, stop: float, gain: float) -> None:
        with self._lock:
            self._tones.append((frequency, start, stop, gain))

    def call_at(self, due: float, callback: Callable[[], None]) -> None:
        with self._lock:
            heapq.heappush(self._pending, (due, next(self._seq), callback))

    def advance(self, seconds: float) -> None:
        """Move the clock forward, running callbacks that fall due."""
        with self._lock:
            self.clock += seconds
            due = []
            while self._pending and self._pending[0][0] <= self.clock:
                due.append(heapq.heappop(self._pending)[2])
        for callback in due:
            callback()

    def active_tones(self, at: Optional[float] = None) -> List[Tuple[float, float]]:
        """(frequency, gain) of tones sounding at a time (default: now)."""
        t = self.clock if at is None else at
        with self._lock:
            return [(f, g) for f, start, stop, g in self._tones if start <= t < stop]

    def spectrum(self) -> np.ndarray:
        """Ideal magnitude spectrum of the tones sounding now."""
        bins = np.zeros(self.fft_size // 2, dtype=np.float32)
        bin_width = self.sample_rate / self.fft_size
        for frequency, gain in self.active_tones():
            index = int(round(frequency / bin_width))
            if index < len(bins):
                bins[index] += gain
        return bins


class LoopbackOutputSink:
    """Output sink writing tones into a LoopbackChannel."""

    def __init__(self, channel: LoopbackChannel):
        self.channel = channel
        self.opened = False

    def open(self) -> None:
        self.opened = True

    def current_time(self) -> float:
        return self.channel.clock

    def schedule_tone(self, frequency: float, start: float, stop: float, gain: float) -> None:
        self.channel.add_tone(frequency, start, stop, gain)

    def call_later(self, delay: float, callback: Callable[[], None]) -> None:
        self.channel.call_at(self.channel.clock + delay, callback)

    def close(self) -> None:
        self.opened = False


class LoopbackInputSource:
    """Input source reading spectra from a LoopbackChannel."""

    def __init__(self, channel: LoopbackChannel, error: Optional[Exception] = None):
        self.channel = channel
        self.sample_rate = channel.sample_rate
        self.fft_size = channel.fft_size
        self._error = error
        self.opened = False

    def open(self) -> None:
        if isinstance(self._error, HardwareUnavailable):
            raise self._error
        if self._error is not None:
            raise HardwareUnavailable(str(self._error)) from self._error
        self.opened = True

    def read_spectrum(self) -> np.ndarray:
        return self.channel.spectrum()

    def close(self) -> None:
        self.opened = False


class RecordedInputSource:
    """
    Input source stepping through recorded samples.

    Each `read_spectrum` analyses the `fft_size` samples ending at the
    current position and then advances by `hop` samples.
    """

    def __init__(
        self,
        samples: np.ndarray,
        sample_rate: int,
        fft_size: int = 2048,
        hop: int = 3087,
        offset: Optional[int] = None,
    ):
        """
        Initialize recorded source.

        Args:
            samples: Mono samples
            sample_rate: Sample rate of the recording
            fft_size: Analysis window length
            hop: Samples between reads (one symbol)
            offset: Sample the first window is centred on (default mid-symbol)
        """
        self.samples = np.asarray(samples, dtype=np.float32).flatten()
        self.sample_rate = sample_rate
        self.fft_size = fft_size
        self.hop = hop
        centre = hop // 2 if offset is None else offset
        self.position = centre + fft_size // 2

    def open(self) -> None:
        pass

    @property
    def exhausted(self) -> bool:
        """True once the window centre has passed the end of the recording."""
        return self.position - self.fft_size // 2 >= len(self.samples)

    def read_spectrum(self) -> np.ndarray:
        window = self.samples[max(0, self.position - self.fft_size):self.position]
        self.position += self.hop
        return magnitude_spectrum(window, self.fft_size)

    def close(self) -> None:
        pass
