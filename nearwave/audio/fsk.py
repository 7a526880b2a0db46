"""
Binary FSK (Frequency-Shift Keying) modulation for nearwave.
Provides tone scheduling, sample rendering and per-symbol bit decisions.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from nearwave.core.config import ModemConfig

logger = logging.getLogger(__name__)

# Fraction of a symbol slot during which the tone sounds; the rest of the
# slot is silent.
TONE_FRACTION = 0.95


@dataclass(frozen=True)
class Symbol:
    """One modulation slot."""
    bit: int
    frequency: float
    start_time: float
    stop_time: float


def magnitude_spectrum(samples: np.ndarray, fft_size: int) -> np.ndarray:
    """
    Compute a magnitude spectrum the way an audio analyser node does.

    The last `fft_size` samples are Blackman-windowed and transformed;
    shorter input is zero-padded at the front.

    Args:
        samples: Audio samples (mono)
        fft_size: FFT length (power of two)

    Returns:
        `fft_size // 2` magnitudes
    """
    frame = np.zeros(fft_size, dtype=np.float32)
    tail = np.asarray(samples, dtype=np.float32)[-fft_size:]
    if len(tail):
        frame[-len(tail):] = tail
    window = np.blackman(fft_size)
    spectrum = np.abs(np.fft.rfft(frame * window)) / fft_size
    return spectrum[:fft_size // 2]


class FSKModulator:
    """
    FSK modulator for encoding bits into tones.

    A 1 bit is sent as `freq1_hz` and a 0 bit as `freq0_hz`, one bit per
    symbol slot of `symbol_duration_ms`.
    """

    def __init__(self, config: Optional[ModemConfig] = None):
        """
        Initialize the FSK modulator.

        Args:
            config: Modem configuration. Uses defaults if None.
        """
        self.config = config or ModemConfig()

    def frequency_for(self, bit: int) -> float:
        return self.config.freq1_hz if bit else self.config.freq0_hz

    def duration(self, bit_count: int) -> float:
        """Airtime in seconds of `bit_count` symbols."""
        return bit_count * self.config.symbol_duration_s

    def schedule(self, bits: Sequence[int], start_time: float = 0.0) -> List[Symbol]:
        """
        Lay out symbols on a timeline.

        Args:
            bits: Bits to send
            start_time: Time of the first symbol, in sink-clock seconds

        Returns:
            Symbols in transmission order
        """
        symbol_s = self.config.symbol_duration_s
        symbols = []
        for i, bit in enumerate(bits):
            start = start_time + i * symbol_s
            symbols.append(Symbol(
                bit=1 if bit else 0,
                frequency=self.frequency_for(bit),
                start_time=start,
                stop_time=start + TONE_FRACTION * symbol_s,
            ))
        return symbols

    def play(
        self,
        bits: Sequence[int],
        sink,
        start_time: float,
        gain: Optional[float] = None,
    ) -> float:
        """
        Schedule the tones for `bits` on an output sink.

        Args:
            bits: Bits to send
            sink: Output sink accepting `schedule_tone`
            start_time: Sink-clock time of the first symbol
            gain: Tone amplitude (fraction of full scale)

        Returns:
            Sink-clock time at which the last symbol slot ends
        """
        gain = self.config.gain if gain is None else gain
        symbols = self.schedule(bits, start_time)
        for symbol in symbols:
            sink.schedule_tone(symbol.frequency, symbol.start_time, symbol.stop_time, gain)
        logger.debug(
            "Scheduled %d symbols (freq0=%s, freq1=%s, symbol=%sms)",
            len(symbols), self.config.freq0_hz, self.config.freq1_hz,
            self.config.symbol_duration_ms,
        )
        return start_time + self.duration(len(bits))

    def _generate_tone(
        self,
        frequency: float,
        num_samples: int,
        gain: float,
        fade_ms: float = 2.0,
    ) -> np.ndarray:
        """
        Generate a sine tone with short fades at both ends.

        Args:
            frequency: Frequency in Hz
            num_samples: Length in samples
            gain: Amplitude
            fade_ms: Fade in/out duration in milliseconds

        Returns:
            Audio samples as numpy array
        """
        t = np.arange(num_samples) / self.config.sample_rate
        signal = np.sin(2 * np.pi * frequency * t) * gain

        fade_samples = int(self.config.sample_rate * fade_ms / 1000)
        if 0 < fade_samples < num_samples // 2:
            signal[:fade_samples] *= np.linspace(0, 1, fade_samples)
            signal[-fade_samples:] *= np.linspace(1, 0, fade_samples)

        return signal.astype(np.float32)

    def render(self, bits: Sequence[int], gain: Optional[float] = None) -> np.ndarray:
        """
        Render the symbol schedule for `bits` to audio samples.

        Args:
            bits: Bits to send
            gain: Tone amplitude (fraction of full scale)

        Returns:
            float32 mono samples at the configured sample rate
        """
        gain = self.config.gain if gain is None else gain
        rate = self.config.sample_rate
        total = int(round(self.duration(len(bits)) * rate))
        samples = np.zeros(total, dtype=np.float32)
        for symbol in self.schedule(bits):
            begin = int(round(symbol.start_time * rate))
            end = min(total, int(round(symbol.stop_time * rate)))
            if end > begin:
                samples[begin:end] = self._generate_tone(symbol.frequency, end - begin, gain)
        return samples


class FSKDemodulator:
    """
    FSK demodulator deciding one bit per spectrum snapshot.

    Compares the magnitude at the two tone bins; no amplitude threshold is
    applied, so silence decodes as a stream of zeros.
    """

    def __init__(self, config: Optional[ModemConfig] = None):
        """
        Initialize the FSK demodulator.

        Args:
            config: Modem configuration. Uses defaults if None.
        """
        self.config = config or ModemConfig()

    def bin_indices(self, sample_rate: Optional[float] = None) -> Tuple[int, int]:
        """
        Spectrum bins of the 0 and 1 tones.

        Args:
            sample_rate: Rate of the analysed signal. Uses the config rate if None.
        """
        if sample_rate:
            bin_width = sample_rate / self.config.fft_size
        else:
            bin_width = self.config.bin_width
        return (
            int(round(self.config.freq0_hz / bin_width)),
            int(round(self.config.freq1_hz / bin_width)),
        )

    def decide(self, spectrum: Sequence[float], sample_rate: Optional[float] = None) -> int:
        """
        Decide a bit from one magnitude spectrum.

        Returns 1 only when the 1-tone bin is strictly louder; equal
        magnitudes decide 0. Bins outside the spectrum read as 0.
        """
        bin0, bin1 = self.bin_indices(sample_rate)
        mag0 = float(spectrum[bin0]) if bin0 < len(spectrum) else 0.0
        mag1 = float(spectrum[bin1]) if bin1 < len(spectrum) else 0.0
        return 1 if mag1 > mag0 else 0

    def sample(self, source, buffer) -> int:
        """
        Read one spectrum from an input source and append the decided bit.

        Args:
            source: Input source providing `read_spectrum()` and `sample_rate`
            buffer: Rolling bit buffer

        Returns:
            The decided bit
        """
        spectrum = source.read_spectrum()
        bit = self.decide(spectrum, getattr(source, "sample_rate", None))
        buffer.append(bit)
        logger.debug("Appended bit %d (%d buffered)", bit, len(buffer))
        return bit
