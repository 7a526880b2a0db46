"""
nearwave - Share links with nearby devices over sound
Two-tone FSK acoustic modem
"""

__version__ = "0.2.0"
__author__ = "nearwave contributors"

from nearwave.core.config import Config, ModemConfig
from nearwave.core.errors import HardwareUnavailable, ModemError
from nearwave.core.message import NearbyMessage
from nearwave.protocol.frame import FrameCodec
from nearwave.protocol.modem import Modem

__all__ = [
    "Config",
    "ModemConfig",
    "Modem",
    "FrameCodec",
    "NearbyMessage",
    "ModemError",
    "HardwareUnavailable",
    "__version__",
]
