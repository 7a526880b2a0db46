"""
Error types for nearwave.
"""


class ModemError(Exception):
    """Base exception for nearwave modem errors."""
    pass


class HardwareUnavailable(ModemError):
    """No usable audio device, or access to it was denied."""
    pass


class PayloadTooLarge(ModemError, ValueError):
    """Payload does not fit in the 16-bit frame length field."""
    pass


class DecodeMismatch(ModemError):
    """A framed payload could not be decoded into a message."""
    pass
