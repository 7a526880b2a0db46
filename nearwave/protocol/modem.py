"""
Acoustic modem for nearwave.
Composes framing, FSK modulation and synchronization into transmit and
listen operations over an audio output sink and input source.
"""

import logging
import threading
import uuid
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from dataclasses import fields, replace
from typing import Any, Callable, Dict, List, Optional, Sequence

import numpy as np

from nearwave.audio.fsk import FSKDemodulator, FSKModulator
from nearwave.audio.loopback import RecordedInputSource
from nearwave.core.config import ModemConfig
from nearwave.core.errors import HardwareUnavailable, ModemError
from nearwave.core.logger import SessionLogger
from nearwave.core.message import (
    Deserializer,
    Serializer,
    decode_payload,
    encode_payload,
    json_deserializer,
    json_serializer,
)
from nearwave.protocol.frame import FrameCodec
from nearwave.protocol.synchronizer import RollingBuffer, Synchronizer

logger = logging.getLogger(__name__)

Callback = Optional[Callable[[Optional[BaseException]], None]]

TRANSMIT_OPTIONS = ("symbol_duration_ms", "gain")


class RepeatingTimer:
    """
    Calls a function every `interval` seconds on a daemon thread.

    Cancelling stops future calls; a call already running finishes.
    """

    def __init__(self, interval: float, function: Callable[[], Any]):
        self.interval = interval
        self.function = function
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval):
            try:
                self.function()
            except Exception:
                logger.exception("Timer callback failed")

    def cancel(self) -> None:
        self._stop_event.set()
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout=1.0)

    @property
    def active(self) -> bool:
        return self._thread is not None and not self._stop_event.is_set()


def _apply_options(config: ModemConfig, options: Optional[Dict[str, Any]], allowed=None) -> ModemConfig:
    """Return config with per-call option overrides applied."""
    if not options:
        return config
    names = allowed or [f.name for f in fields(ModemConfig)]
    overrides = {k: options[k] for k in names if options.get(k) is not None}
    return replace(config, **overrides) if overrides else config


class Modem:
    """
    Acoustic modem session.

    Owns the audio output sink and input source and exposes `transmit`,
    `start_listening` and `stop_listening`. All rolling buffer mutation
    happens inside `tick`, under the session lock.
    """

    def __init__(
        self,
        config: Optional[ModemConfig] = None,
        output_sink=None,
        input_source=None,
        serializer: Serializer = json_serializer,
        deserializer: Deserializer = json_deserializer,
        timer_factory: Callable[[float, Callable[[], Any]], Any] = RepeatingTimer,
        session_logger: Optional[SessionLogger] = None,
        audio_config: Optional[Dict[str, Any]] = None,
    ):
        """
        Initialize the modem.

        Args:
            config: Modem configuration. Uses defaults if None.
            output_sink: Audio output sink (sounddevice speaker if None)
            input_source: Audio input source (sounddevice microphone if None)
            serializer: Turns a message value into text
            deserializer: Turns received text into a message value
            timer_factory: Creates the repeating tick timer from (interval, function)
            session_logger: Optional event log
            audio_config: `audio` config section used for default devices
        """
        self.config = config or ModemConfig()
        self.session_id = uuid.uuid4().hex
        self.serializer = serializer
        self.deserializer = deserializer
        self._timer_factory = timer_factory
        self._session_logger = session_logger
        self._audio_config = audio_config or {}

        self._output_sink = output_sink
        self._input_source = input_source
        self._owns_input = input_source is None

        self._lock = threading.RLock()
        self._state_lock = threading.Lock()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._listening = False
        self._acquiring: Optional[Future] = None
        self._active_source = None
        self._timer = None
        self._buffer: Optional[RollingBuffer] = None
        self._sync: Optional[Synchronizer] = None
        self._demodulator: Optional[FSKDemodulator] = None
        self._on_message: Optional[Callable[[Any], None]] = None

    def _get_output_sink(self):
        """Get or create the output sink."""
        if self._output_sink is None:
            from nearwave.audio.device import SoundDeviceOutputSink
            self._output_sink = SoundDeviceOutputSink(
                sample_rate=self.config.sample_rate,
                blocksize=self._audio_config.get("blocksize", 512),
                device=self._audio_config.get("output_device"),
            )
        return self._output_sink

    def _get_input_source(self, config: ModemConfig):
        """Get the input source, creating one that matches the session analyser settings."""
        source = self._input_source
        if not self._owns_input:
            return source
        if source is not None and (
            source.fft_size != config.fft_size or source.sample_rate != config.sample_rate
        ):
            source.close()
            source = None
        if source is None:
            from nearwave.audio.device import SoundDeviceInputSource
            self._input_source = SoundDeviceInputSource(
                sample_rate=config.sample_rate,
                fft_size=config.fft_size,
                blocksize=self._audio_config.get("blocksize", 512),
                device=self._audio_config.get("input_device"),
            )
        return self._input_source

    def _log(self, method: str, *args) -> None:
        if self._session_logger is not None:
            getattr(self._session_logger, method)(self.session_id, *args)

    # Transmit

    def transmit(
        self,
        payload: Any,
        options: Optional[Dict[str, Any]] = None,
        callback: Callback = None,
    ) -> Future:
        """
        Send a message as an FSK tone sequence.

        Returns immediately; completion is reported once the last symbol has
        played.

        Args:
            payload: Message value, serialized with the modem's serializer
            options: Per-call overrides (`symbol_duration_ms`, `gain`)
            callback: Called with None on completion, or with the error

        Returns:
            Future resolving to None when transmission completes
        """
        future: Future = Future()
        future.set_running_or_notify_cancel()

        def finish(error: Optional[BaseException] = None) -> None:
            if error is None:
                future.set_result(None)
            else:
                future.set_exception(error)
            if callback:
                callback(error)

        try:
            config = _apply_options(self.config, options, TRANSMIT_OPTIONS)
            bits = FrameCodec(config).encode(encode_payload(payload, self.serializer))
            sink = self._get_output_sink()
            sink.open()
            start_time = sink.current_time() + config.start_delay_s
            self._log("log_transmission_start", len(bits))
            end_time = FSKModulator(config).play(bits, sink, start_time, config.gain)
            delay = end_time - sink.current_time() + config.completion_margin_ms / 1000.0
        except (ModemError, TypeError, ValueError) as e:
            logger.warning("Transmit failed: %s", e)
            self._log("log_error", f"Transmit failed: {e}")
            finish(e)
            return future

        duration_ms = (end_time - start_time) * 1000.0
        text = self.serializer(payload)

        def on_complete() -> None:
            self._log("log_transmission_complete", duration_ms)
            self._log("log_message_sent", text, {"bits": len(bits)})
            finish(None)

        sink.call_later(delay, on_complete)
        return future

    # Listen

    def start_listening(
        self,
        on_message: Callable[[Any], None],
        options: Optional[Dict[str, Any]] = None,
        callback: Callback = None,
    ) -> Future:
        """
        Start decoding messages from the input source.

        Opening the input happens on a worker thread. Calling this while a
        session is already listening only replaces `on_message` and succeeds
        immediately.

        Args:
            on_message: Called with each decoded message value
            options: ModemConfig field overrides for this session
            callback: Called with None once listening, or with the error

        Returns:
            Future resolving to None once listening; cancelling it while the
            input is still opening abandons the session
        """
        ready: Optional[Future] = None
        with self._state_lock:
            self._on_message = on_message
            if self._listening:
                ready = Future()
                ready.set_result(None)
            elif self._acquiring is not None:
                ready = self._acquiring
            else:
                try:
                    config = _apply_options(self.config, options)
                except ValueError as e:
                    ready = Future()
                    ready.set_exception(e)
                else:
                    if self._executor is None:
                        self._executor = ThreadPoolExecutor(
                            max_workers=1, thread_name_prefix="nearwave-input",
                        )
                    public: Future = Future()
                    self._acquiring = public
                    opening = self._executor.submit(self._open_input, config)

        if ready is not None:
            if callback:
                ready.add_done_callback(lambda f: callback(_future_error(f)))
            return ready

        public.add_done_callback(self._on_acquisition_cancelled)
        if callback:
            public.add_done_callback(lambda f: callback(_future_error(f)))
        opening.add_done_callback(lambda f: self._on_input_opened(f, public, config))
        return public

    def _open_input(self, config: ModemConfig):
        source = self._get_input_source(config)
        source.open()
        return source

    def _on_acquisition_cancelled(self, public: Future) -> None:
        if public.cancelled():
            with self._state_lock:
                if self._acquiring is public:
                    self._acquiring = None

    def _on_input_opened(self, opening: Future, public: Future, config: ModemConfig) -> None:
        error = opening.exception()
        if error is None:
            source = opening.result()
            # Session lock before state lock, the order tick() takes them in.
            with self._lock, self._state_lock:
                abandoned = self._acquiring is not public
                if not abandoned:
                    self._acquiring = None
                    self._start_session(source, config)
            if abandoned:
                source.close()
                if not public.done():
                    public.cancel()
                return
            if public.set_running_or_notify_cancel():
                public.set_result(None)
            return

        with self._state_lock:
            if self._acquiring is public:
                self._acquiring = None
        if not isinstance(error, ModemError):
            error = HardwareUnavailable(str(error))
        logger.warning("Cannot start listening: %s", error)
        self._log("log_error", f"Cannot start listening: {error}")
        if public.set_running_or_notify_cancel():
            public.set_exception(error)

    def _start_session(self, source, config: ModemConfig) -> None:
        """Create session state and start ticking. Caller holds both locks."""
        self._active_source = source
        self._buffer = RollingBuffer(config.max_buffer_bits)
        self._demodulator = FSKDemodulator(config)
        self._sync = Synchronizer(
            config,
            decode_payload=lambda data: decode_payload(data, self.deserializer),
            on_message=self._deliver,
        )
        self._listening = True
        self._timer = self._timer_factory(config.symbol_duration_s, self.tick)
        self._timer.start()
        logger.info("Listening (symbol=%sms)", config.symbol_duration_ms)
        self._log("log_listening_start")

    def _deliver(self, message: Any) -> None:
        self._log("log_message_received", self.serializer(message))
        handler = self._on_message
        if handler is not None:
            handler(message)

    def tick(self) -> int:
        """
        Run one sampling and synchronization step.

        Returns:
            Number of messages delivered during this tick
        """
        with self._lock:
            if self._buffer is None:
                return 0
            self._demodulator.sample(self._active_source, self._buffer)
            return self._sync.process(self._buffer)

    def stop_listening(self) -> None:
        """Stop listening and release the input. Safe to call when idle."""
        with self._state_lock:
            pending, self._acquiring = self._acquiring, None
            timer, self._timer = self._timer, None
            was_listening, self._listening = self._listening, False

        if pending is not None and not pending.done():
            pending.cancel()
        if timer is not None:
            timer.cancel()

        with self._lock:
            source, self._active_source = self._active_source, None
            self._buffer = None
            self._sync = None
            self._demodulator = None
        if source is not None:
            source.close()

        if was_listening:
            logger.info("Stopped listening")
            self._log("log_listening_stop")

    def is_listening(self) -> bool:
        return self._listening

    @property
    def buffered_bits(self) -> int:
        """Number of bits currently held by the rolling buffer."""
        with self._lock:
            return len(self._buffer) if self._buffer is not None else 0

    def close(self) -> None:
        """Stop listening and release all audio resources."""
        self.stop_listening()
        if self._output_sink is not None:
            self._output_sink.close()
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None


def _future_error(future: Future) -> Optional[BaseException]:
    if future.cancelled():
        return CancelledError()
    return future.exception()


def encode_recording(
    payload: Any,
    config: Optional[ModemConfig] = None,
    serializer: Serializer = json_serializer,
    padding_symbols: int = 4,
) -> np.ndarray:
    """
    Render a message to audio samples.

    Args:
        payload: Message value
        config: Modem configuration. Uses defaults if None.
        serializer: Turns the message into text
        padding_symbols: Symbol slots of silence added before and after the tones

    Returns:
        float32 mono samples at `config.sample_rate`
    """
    config = config or ModemConfig()
    bits = FrameCodec(config).encode(encode_payload(payload, serializer))
    tones = FSKModulator(config).render(bits)
    symbol_samples = int(round(config.symbol_duration_s * config.sample_rate))
    silence = np.zeros(symbol_samples * padding_symbols, dtype=np.float32)
    return np.concatenate([silence, tones, silence])


def decode_recording(
    samples: np.ndarray,
    sample_rate: int,
    config: Optional[ModemConfig] = None,
    deserializer: Deserializer = json_deserializer,
    phases: Sequence[float] = (0.5, 0.25, 0.75, 0.0),
) -> List[Any]:
    """
    Decode all messages in recorded audio.

    The recording is sampled once per symbol at each phase (fraction of a
    symbol). The phase that decodes the most messages wins; on a tie the
    earlier phase in `phases` is kept.

    Args:
        samples: Mono samples
        sample_rate: Sample rate of the recording
        config: Modem configuration. Uses defaults if None.
        deserializer: Turns received text into a message value
        phases: Sampling offsets to try, as fractions of a symbol

    Returns:
        Decoded message values in order
    """
    config = replace(config or ModemConfig(), sample_rate=sample_rate, drain_backlog=True)
    hop = max(1, int(round(config.symbol_duration_s * sample_rate)))
    best: List[Any] = []
    best_phase = None
    for phase in phases:
        messages = _decode_at_phase(samples, config, deserializer, hop, phase)
        if len(messages) > len(best):
            best, best_phase = messages, phase
    if best:
        logger.debug("Decoded %d message(s) at phase %.2f", len(best), best_phase)
    return best


def _decode_at_phase(
    samples: np.ndarray,
    config: ModemConfig,
    deserializer: Deserializer,
    hop: int,
    phase: float,
) -> List[Any]:
    """Sample the recording every `hop` samples starting `phase` into a symbol."""
    messages: List[Any] = []
    source = RecordedInputSource(
        samples, config.sample_rate, config.fft_size, hop, offset=int(hop * phase),
    )
    buffer = RollingBuffer(config.max_buffer_bits)
    demodulator = FSKDemodulator(config)
    sync = Synchronizer(
        config,
        decode_payload=lambda data: decode_payload(data, deserializer),
        on_message=messages.append,
    )
    while not source.exhausted:
        demodulator.sample(source, buffer)
        sync.process(buffer)
    return messages
