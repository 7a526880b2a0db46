"""Tests for the sounddevice-backed sink and source."""

from types import SimpleNamespace
from unittest.mock import MagicMock, PropertyMock, patch

import numpy as np
import pytest

from nearwave.audio.fsk import magnitude_spectrum
from nearwave.audio.device import SoundDeviceInputSource, SoundDeviceOutputSink, list_devices
from nearwave.core.errors import HardwareUnavailable
from nearwave.protocol.modem import Modem


class TestUnavailable:
    """Tests for missing or failing audio hardware."""

    @patch("nearwave.audio.device.SOUNDDEVICE_AVAILABLE", False)
    def test_input_without_sounddevice(self):
        """Test opening the microphone without sounddevice fails cleanly."""
        with pytest.raises(HardwareUnavailable):
            SoundDeviceInputSource().open()

    @patch("nearwave.audio.device.SOUNDDEVICE_AVAILABLE", False)
    def test_output_without_sounddevice(self):
        with pytest.raises(HardwareUnavailable):
            SoundDeviceOutputSink().open()

    @patch("nearwave.audio.device.SOUNDDEVICE_AVAILABLE", True)
    @patch("nearwave.audio.device.sd")
    def test_stream_error(self, mock_sd):
        """Test a PortAudio error while opening is reported as HardwareUnavailable."""
        mock_sd.InputStream.side_effect = Exception("Error querying device -1")

        with pytest.raises(HardwareUnavailable, match="device -1"):
            SoundDeviceInputSource().open()

    @patch("nearwave.audio.device.SOUNDDEVICE_AVAILABLE", False)
    def test_modem_listen_without_sounddevice(self):
        """Test the modem reports a missing microphone through its future."""
        modem = Modem()
        try:
            with pytest.raises(HardwareUnavailable):
                modem.start_listening(lambda m: None).result(timeout=5)
            assert not modem.is_listening()
        finally:
            modem.close()

    @patch("nearwave.audio.device.SOUNDDEVICE_AVAILABLE", False)
    def test_modem_transmit_without_sounddevice(self):
        errors = []
        Modem().transmit({"url": "u"}, callback=errors.append)

        assert isinstance(errors[0], HardwareUnavailable)

    def test_current_time_requires_open(self):
        with pytest.raises(HardwareUnavailable):
            SoundDeviceOutputSink().current_time()

    @patch("nearwave.audio.device.SOUNDDEVICE_AVAILABLE", True)
    @patch("nearwave.audio.device.sd")
    def test_stream_time_error(self, mock_sd):
        """Test a failing stream clock is reported as HardwareUnavailable."""
        stream = MagicMock()
        type(stream).time = PropertyMock(side_effect=Exception("PortAudio not initialized"))
        mock_sd.OutputStream.return_value = stream
        sink = SoundDeviceOutputSink()
        sink.open()

        with pytest.raises(HardwareUnavailable, match="not initialized"):
            sink.current_time()

    @patch("nearwave.audio.device.SOUNDDEVICE_AVAILABLE", True)
    @patch("nearwave.audio.device.sd")
    def test_modem_transmit_stream_time_error(self, mock_sd):
        """Test transmit reports a failing stream clock through callback and future."""
        stream = MagicMock()
        type(stream).time = PropertyMock(side_effect=Exception("PortAudio not initialized"))
        mock_sd.OutputStream.return_value = stream
        errors = []

        modem = Modem(output_sink=SoundDeviceOutputSink())
        future = modem.transmit({"url": "u"}, callback=errors.append)

        assert isinstance(errors[0], HardwareUnavailable)
        with pytest.raises(HardwareUnavailable):
            future.result(timeout=1)

    @patch("nearwave.audio.device.SOUNDDEVICE_AVAILABLE", False)
    def test_list_devices_without_sounddevice(self):
        assert list_devices() == []


class TestStreams:
    """Tests for the stream callbacks with a mocked sounddevice."""

    @patch("nearwave.audio.device.SOUNDDEVICE_AVAILABLE", True)
    @patch("nearwave.audio.device.sd")
    def test_open_and_close(self, mock_sd):
        """Test the stream is started on open and released on close."""
        stream = MagicMock()
        mock_sd.InputStream.return_value = stream
        source = SoundDeviceInputSource(sample_rate=48000, fft_size=1024)

        source.open()
        source.open()
        source.close()

        mock_sd.InputStream.assert_called_once()
        assert mock_sd.InputStream.call_args.kwargs["samplerate"] == 48000
        stream.start.assert_called_once()
        stream.close.assert_called_once()

    @patch("nearwave.audio.device.SOUNDDEVICE_AVAILABLE", True)
    @patch("nearwave.audio.device.sd")
    def test_list_devices(self, mock_sd):
        mock_sd.query_devices.return_value = [{
            "name": "Mic",
            "max_input_channels": 1,
            "max_output_channels": 0,
            "default_samplerate": 44100.0,
        }]

        assert list_devices() == [{
            "index": 0,
            "name": "Mic",
            "inputs": 1,
            "outputs": 0,
            "default_samplerate": 44100.0,
        }]

    def test_input_window(self):
        """Test the spectrum reflects the most recent microphone blocks."""
        source = SoundDeviceInputSource(fft_size=2048)
        t = np.arange(512) / 44100
        for block in range(4):
            tone = np.sin(2 * np.pi * 2200 * (t + block * 512 / 44100)).astype(np.float32)
            source._callback(tone.reshape(-1, 1), 512, None, None)

        spectrum = source.read_spectrum()

        assert len(spectrum) == 1024
        assert int(np.argmax(spectrum)) == 102

    def test_output_mixes_scheduled_tones(self):
        """Test scheduled tones are rendered at their stream-clock times."""
        sink = SoundDeviceOutputSink()
        sink.schedule_tone(1500, 1.0, 2.0, 0.25)
        outdata = np.zeros((2048, 1), dtype=np.float32)

        sink._callback(outdata, 2048, SimpleNamespace(outputBufferDacTime=0.5), None)
        assert np.all(outdata == 0)

        sink._callback(outdata, 2048, SimpleNamespace(outputBufferDacTime=1.2), None)
        assert np.max(np.abs(outdata)) <= 0.25 + 1e-6
        assert int(np.argmax(magnitude_spectrum(outdata[:, 0], 2048))) == 70

    def test_output_drops_finished_tones(self):
        sink = SoundDeviceOutputSink()
        sink.schedule_tone(1500, 0.0, 0.1, 0.25)
        outdata = np.zeros((512, 1), dtype=np.float32)

        sink._callback(outdata, 512, SimpleNamespace(outputBufferDacTime=0.5), None)

        assert sink._tones == []
        assert np.all(outdata == 0)

    @patch("nearwave.audio.device.SOUNDDEVICE_AVAILABLE", True)
    @patch("nearwave.audio.device.sd")
    def test_modem_input_follows_session_fft_size(self, mock_sd, timers):
        """Test a restarted session analyses with its own fft_size."""
        modem = Modem(timer_factory=timers)
        try:
            modem.start_listening(lambda m: None).result(timeout=5)
            modem.stop_listening()
            modem.start_listening(lambda m: None, options={"fft_size": 4096}).result(timeout=5)

            source = modem._active_source
            assert isinstance(source, SoundDeviceInputSource)
            assert source.fft_size == 4096
            assert mock_sd.InputStream.call_count == 2

            t = np.arange(4096) / 44100
            tone = np.sin(2 * np.pi * 2200 * t).astype(np.float32)
            source._callback(tone.reshape(-1, 1), 4096, None, None)
            timers.last.fire()

            assert modem._buffer.snapshot() == [1]
        finally:
            modem.close()

    @patch("nearwave.audio.device.SOUNDDEVICE_AVAILABLE", True)
    @patch("nearwave.audio.device.sd")
    def test_injected_input_kept(self, mock_sd, timers, channel):
        """Test an input source passed to the modem is used for every session."""
        source = channel.input_source()
        modem = Modem(input_source=source, timer_factory=timers)
        try:
            modem.start_listening(lambda m: None).result(timeout=5)
            modem.stop_listening()
            modem.start_listening(lambda m: None, options={"fft_size": 4096}).result(timeout=5)

            assert modem._active_source is source
            mock_sd.InputStream.assert_not_called()
        finally:
            modem.close()
