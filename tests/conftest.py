"""Shared fixtures for nearwave tests."""

import pytest

from nearwave.audio.loopback import LoopbackChannel
from nearwave.core.config import ModemConfig


class ManualTimer:
    """Stand-in for RepeatingTimer that only ticks when fired."""

    def __init__(self, interval, function):
        self.interval = interval
        self.function = function
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if self.started and not self.cancelled:
            return self.function()
        return 0


class TimerFactory:
    """Records every ManualTimer it creates."""

    def __init__(self):
        self.timers = []

    def __call__(self, interval, function):
        timer = ManualTimer(interval, function)
        self.timers.append(timer)
        return timer

    @property
    def last(self):
        return self.timers[-1]


def run_symbols(channel, timer, config, count):
    """
    Tick a listener once per symbol, sampling in the middle of each slot.

    The first tick lands half a symbol after the transmit start delay.
    """
    symbol_s = config.symbol_duration_s
    channel.advance(config.start_delay_s + symbol_s / 2)
    for _ in range(count):
        timer.fire()
        channel.advance(symbol_s)


@pytest.fixture
def modem_config():
    return ModemConfig()


@pytest.fixture
def channel(modem_config):
    return LoopbackChannel(
        sample_rate=modem_config.sample_rate,
        fft_size=modem_config.fft_size,
    )


@pytest.fixture
def timers():
    return TimerFactory()
