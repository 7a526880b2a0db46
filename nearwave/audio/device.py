"""
Audio device management for nearwave.
Speaker output sink and microphone input source backed by sounddevice.
"""

import logging
import threading
from typing import Callable, List, Optional, Tuple

import numpy as np

from nearwave.audio.fsk import magnitude_spectrum
from nearwave.core.errors import HardwareUnavailable

# Try to import sounddevice, handle gracefully if not available
try:
    import sounddevice as sd
    SOUNDDEVICE_AVAILABLE = True
except (ImportError, OSError):
    SOUNDDEVICE_AVAILABLE = False
    sd = None

logger = logging.getLogger(__name__)


def _require_sounddevice() -> None:
    if not SOUNDDEVICE_AVAILABLE:
        raise HardwareUnavailable(
            "sounddevice is not available. "
            "Please install it with: pip install sounddevice"
        )


def list_devices() -> List[dict]:
    """List available audio devices."""
    if not SOUNDDEVICE_AVAILABLE:
        return []

    devices = sd.query_devices()
    return [
        {
            "index": i,
            "name": d["name"],
            "inputs": d["max_input_channels"],
            "outputs": d["max_output_channels"],
            "default_samplerate": d["default_samplerate"],
        }
        for i, d in enumerate(devices)
    ]


class SoundDeviceOutputSink:
    """
    Speaker output that plays tones at scheduled stream-clock times.

    Tones are mixed into the output stream callback, so scheduling returns
    immediately and playback happens on the audio thread.
    """

    def __init__(
        self,
        sample_rate: int = 44100,
        blocksize: int = 512,
        device: Optional[int] = None,
        fade_ms: float = 2.0,
    ):
        """
        Initialize output sink.

        Args:
            sample_rate: Audio sample rate in Hz
            blocksize: Frames per stream callback
            device: Output device index (None for default)
            fade_ms: Fade in/out applied to each tone
        """
        self.sample_rate = sample_rate
        self.blocksize = blocksize
        self.device = device
        self.fade_s = fade_ms / 1000.0
        self._stream = None
        self._tones: List[Tuple[float, float, float, float]] = []
        self._lock = threading.Lock()

    def open(self) -> None:
        """Open and start the output stream."""
        if self._stream is not None:
            return
        _require_sounddevice()
        try:
            stream = sd.OutputStream(
                samplerate=self.sample_rate,
                channels=1,
                dtype=np.float32,
                blocksize=self.blocksize,
                device=self.device,
                callback=self._callback,
            )
            stream.start()
        except Exception as e:
            raise HardwareUnavailable(f"Cannot open audio output: {e}") from e
        self._stream = stream

    def current_time(self) -> float:
        """Current stream-clock time in seconds."""
        if self._stream is None:
            raise HardwareUnavailable("Audio output is not open")
        try:
            return self._stream.time
        except Exception as e:
            raise HardwareUnavailable(f"Cannot read output stream time: {e}") from e

    def schedule_tone(self, frequency: float, start: float, stop: float, gain: float) -> None:
        """Play a sine tone between two stream-clock times."""
        with self._lock:
            self._tones.append((frequency, start, stop, gain))

    def call_later(self, delay: float, callback: Callable[[], None]) -> threading.Timer:
        """Run callback after `delay` seconds of stream time."""
        timer = threading.Timer(max(0.0, delay), callback)
        timer.daemon = True
        timer.start()
        return timer

    def _callback(self, outdata, frames, time_info, status):
        if status:
            logger.debug("Output stream status: %s", status)
        t0 = time_info.outputBufferDacTime
        t = t0 + np.arange(frames) / self.sample_rate
        out = np.zeros(frames, dtype=np.float32)
        with self._lock:
            self._tones = [tone for tone in self._tones if tone[2] > t0]
            tones = list(self._tones)
        for frequency, start, stop, gain in tones:
            active = (t >= start) & (t < stop)
            if not active.any():
                continue
            elapsed = t[active] - start
            envelope = np.minimum(1.0, np.minimum(elapsed, stop - t[active]) / self.fade_s)
            out[active] += (np.sin(2 * np.pi * frequency * elapsed) * gain * envelope).astype(np.float32)
        outdata[:, 0] = np.clip(out, -1.0, 1.0)

    def close(self) -> None:
        """Stop and close the output stream."""
        if self._stream is not None:
            self._stream.stop()
            self._stream.close()
            self._stream = None
        with self._lock:
            self._tones.clear()


class SoundDeviceInputSource:
    """
    Microphone input that exposes the spectrum of the most recent samples.
    """

    def __init__(
        self,
        sample_rate: int = 44100,
        fft_size: int = 2048,
        blocksize: int = 512,
        device: Optional[int] = None,
    ):
        """
        Initialize input source.

        Args:
            sample_rate: Audio sample rate in Hz
            fft_size: Analysis window length in samples
            blocksize: Frames per stream callback
            device: Input device index (None for default)
        """
        self.sample_rate = sample_rate
        self.fft_size = fft_size
        self.blocksize = blocksize
        self.device = device
        self._stream = None
        self._window = np.zeros(fft_size, dtype=np.float32)
        self._lock = threading.Lock()

    def open(self) -> None:
        """Open the microphone stream. Raises HardwareUnavailable on failure."""
        if self._stream is not None:
            return
        _require_sounddevice()
        try:
            stream = sd.InputStream(
                samplerate=self.sample_rate,
                channels=1,
                dtype=np.float32,
                blocksize=self.blocksize,
                device=self.device,
                callback=self._callback,
            )
            stream.start()
        except Exception as e:
            raise HardwareUnavailable(f"Cannot open audio input: {e}") from e
        self._stream = stream

    def _callback(self, indata, frames, time_info, status):
        if status:
            logger.debug("Input stream status: %s", status)
        samples = indata[:, 0]
        with self._lock:
            if len(samples) >= self.fft_size:
                self._window[:] = samples[-self.fft_size:]
            else:
                self._window = np.concatenate([self._window[len(samples):], samples])

    def read_spectrum(self) -> np.ndarray:
        """Magnitude spectrum of the latest `fft_size` samples."""
        with self._lock:
            window = self._window.copy()
        return magnitude_spectrum(window, self.fft_size)

    def close(self) -> None:
        """Stop and close the microphone stream."""
        if self._stream is not None:
            self._stream.stop()
            self._stream.close()
            self._stream = None
        with self._lock:
            self._window[:] = 0
