"""
Command-line interface for nearwave.
"""

import json
import logging
import threading
from typing import Any, Optional

import click
import numpy as np
from scipy.io import wavfile

from nearwave import __version__
from nearwave.core.config import Config, ModemConfig
from nearwave.core.errors import ModemError
from nearwave.core.logger import SessionLogger
from nearwave.core.message import MessageFilter, NearbyMessage
from nearwave.protocol.modem import Modem, decode_recording, encode_recording
from nearwave.ui.interface import create_interface


def _load_config(path: Optional[str]) -> Config:
    try:
        return Config(path) if path else Config()
    except FileNotFoundError:
        return Config()


def _parse_value(text: str) -> Any:
    """Parse TEXT as JSON, falling back to the plain string."""
    try:
        return json.loads(text)
    except ValueError:
        return text


def _read_wav(path: str):
    """Read a WAV file as float32 mono samples in [-1.0, 1.0]."""
    sample_rate, audio_data = wavfile.read(path)
    if audio_data.dtype == np.int16:
        samples = audio_data.astype(np.float32) / 32767.0
    elif audio_data.dtype == np.int32:
        samples = audio_data.astype(np.float32) / 2147483647.0
    elif audio_data.dtype == np.uint8:
        samples = (audio_data.astype(np.float32) - 128) / 128.0
    else:
        samples = audio_data.astype(np.float32)
    if samples.ndim > 1:
        samples = samples[:, 0]
    return sample_rate, samples


def _write_wav(path: str, sample_rate: int, samples: np.ndarray) -> None:
    wavfile.write(path, sample_rate, (np.clip(samples, -1.0, 1.0) * 32767).astype(np.int16))


@click.group()
@click.version_option(version=__version__)
@click.option('--verbose', '-v', is_flag=True, help='Enable debug logging')
def main(verbose: bool):
    """nearwave - share links with nearby devices over sound."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@main.command()
@click.option('--url', '-u', type=str, required=True, help='Link to announce')
@click.option('--name', '-n', type=str, default=None, help='Sender name (defaults to profile.name)')
@click.option('--title', '-t', type=str, default=None, help='Page title')
@click.option('--picture', type=str, default=None, help='Sender picture URL')
@click.option('--config', '-c', type=str, default=None, help='Path to configuration file')
@click.option('--symbol-duration', type=float, default=None, help='Symbol duration in milliseconds')
@click.option('--gain', '-g', type=float, default=None, help='Tone amplitude (0.0 to 1.0)')
@click.option('--wav', 'wav_path', type=click.Path(dir_okay=False), default=None,
              help='Write the tones to a WAV file instead of playing them')
def send(url: str, name: Optional[str], title: Optional[str], picture: Optional[str],
         config: Optional[str], symbol_duration: Optional[float], gain: Optional[float],
         wav_path: Optional[str]):
    """Announce a link through the speaker."""
    cfg = _load_config(config)
    ui = create_interface(cfg.ui)
    message = NearbyMessage(
        url=url,
        name=name or cfg.profile.get("name"),
        picture=picture or cfg.profile.get("picture"),
        title=title,
    )

    try:
        modem_config = ModemConfig.from_config(cfg, symbol_duration_ms=symbol_duration, gain=gain)
    except ValueError as e:
        ui.print_error(str(e))
        raise SystemExit(1)

    if wav_path:
        samples = encode_recording(message, modem_config)
        _write_wav(wav_path, modem_config.sample_rate, samples)
        ui.print_success(f"Wrote {len(samples) / modem_config.sample_rate:.2f}s of audio to {wav_path}")
        return

    modem = Modem(
        modem_config,
        session_logger=SessionLogger.from_config(cfg.logging_config),
        audio_config=cfg.audio,
    )
    ui.print_info(f"Sending {url}")
    try:
        modem.transmit(message).result()
    except (ModemError, ValueError) as e:
        ui.print_error(f"Failed to send: {e}")
        raise SystemExit(1)
    finally:
        modem.close()
    ui.print_success("Sent")


@main.command()
@click.option('--config', '-c', type=str, default=None, help='Path to configuration file')
@click.option('--once', is_flag=True, help='Exit after the first message')
@click.option('--timeout', '-t', type=float, default=None, help='Stop after this many seconds')
def listen(config: Optional[str], once: bool, timeout: Optional[float]):
    """Listen on the microphone for announcements."""
    cfg = _load_config(config)
    ui = create_interface(cfg.ui)
    seen = MessageFilter(window_seconds=cfg.ui.get("suppress_repeats_s", 30))
    done = threading.Event()

    def on_message(value: Any) -> None:
        if not seen.is_new(value):
            return
        ui.show_message(value)
        if once:
            done.set()

    modem = Modem(
        ModemConfig.from_config(cfg),
        session_logger=SessionLogger.from_config(cfg.logging_config),
        audio_config=cfg.audio,
    )
    try:
        modem.start_listening(on_message).result()
    except ModemError as e:
        ui.print_error(f"Cannot listen: {e}")
        raise SystemExit(1)

    ui.print_info("Listening... (Ctrl+C to stop)")
    try:
        if not done.wait(timeout) and once:
            ui.print_warning("No message received")
    except KeyboardInterrupt:
        pass
    finally:
        modem.close()
    ui.print_info("Stopped listening")


@main.command()
@click.argument('text')
@click.argument('output', type=click.Path(dir_okay=False))
@click.option('--config', '-c', type=str, default=None, help='Path to configuration file')
@click.option('--symbol-duration', type=float, default=None, help='Symbol duration in milliseconds')
def encode(text: str, output: str, config: Optional[str], symbol_duration: Optional[float]):
    """Encode TEXT (JSON, or a plain string) into a WAV file."""
    cfg = _load_config(config)
    ui = create_interface(cfg.ui)
    modem_config = ModemConfig.from_config(cfg, symbol_duration_ms=symbol_duration)
    try:
        samples = encode_recording(_parse_value(text), modem_config)
    except ModemError as e:
        ui.print_error(str(e))
        raise SystemExit(1)
    _write_wav(output, modem_config.sample_rate, samples)
    ui.print_success(f"Sound wave saved to: {output}")
    ui.print_info(f"Duration: {len(samples) / modem_config.sample_rate:.2f} seconds")


@main.command()
@click.argument('input_file', type=click.Path(exists=True, dir_okay=False))
@click.option('--config', '-c', type=str, default=None, help='Path to configuration file')
@click.option('--symbol-duration', type=float, default=None, help='Symbol duration in milliseconds')
def decode(input_file: str, config: Optional[str], symbol_duration: Optional[float]):
    """Decode messages from a WAV file and print them as JSON."""
    cfg = _load_config(config)
    ui = create_interface(cfg.ui)
    try:
        sample_rate, samples = _read_wav(input_file)
    except (OSError, ValueError) as e:
        ui.print_error(f"Failed to read WAV file: {e}")
        raise SystemExit(1)

    modem_config = ModemConfig.from_config(cfg, symbol_duration_ms=symbol_duration)
    messages = decode_recording(samples, sample_rate, modem_config)
    if not messages:
        ui.print_error("No message found")
        raise SystemExit(1)
    for message in messages:
        click.echo(json.dumps(message, ensure_ascii=False))


@main.command('config')
@click.option('--config', '-c', 'config_path', type=str, default=None, help='Path to configuration file')
@click.option('--init', 'init_path', type=click.Path(dir_okay=False), default=None,
              help='Write the current configuration to this file')
def show_config(config_path: Optional[str], init_path: Optional[str]):
    """Show the effective configuration, or write it to a file."""
    cfg = _load_config(config_path)
    ui = create_interface(cfg.ui)
    if init_path:
        cfg.save(init_path)
        ui.print_success(f"Configuration saved to {init_path}")
        return
    ui.show_settings("modem", cfg.modem)
    ui.show_settings("audio", cfg.audio)


@main.command()
def devices():
    """List available audio devices."""
    from nearwave.audio.device import list_devices

    found = list_devices()
    if not found:
        click.echo("No audio devices found (sounddevice may not be available)")
        return

    for d in found:
        inputs = f"{d['inputs']} in" if d['inputs'] > 0 else ""
        outputs = f"{d['outputs']} out" if d['outputs'] > 0 else ""
        channels = ", ".join(filter(None, [inputs, outputs]))
        click.echo(f"  [{d['index']}] {d['name']}")
        click.echo(f"      {channels}, {int(d['default_samplerate'])} Hz")


if __name__ == "__main__":
    main()
