"""
Exception types for sereplay.

Only ResponseTimeoutError is recoverable: the engine logs it and moves on to
the next packet. Every other error aborts the run.
"""

from typing import Any


class ReplayError(Exception):
    """Base class for all sereplay errors."""


class ConfigError(ReplayError):
    """Invalid run parameter (negative duration, bad repeat count...)."""


class MalformedPacketError(ReplayError):
    """A script line is not a valid whitespace-insensitive hex string."""

    def __init__(self, line_no: int, text: str, reason: str = "invalid hex"):
        self.line_no = line_no
        self.text = text
        self.reason = reason
        super().__init__(f"line {line_no}: {reason}: {text!r}")


class ResponseTimeoutError(ReplayError):
    """No frame was assembled within the response timeout."""

    def __init__(self, packet: Any, timeout: float):
        self.packet = packet
        self.timeout = timeout
        super().__init__("timeout")


class SinkWriteError(ReplayError):
    """The traffic log sink failed."""


class TransportError(ReplayError):
    """Base class for transport failures."""


class TransportOpenError(TransportError):
    """The device could not be opened."""


class TransportWriteError(TransportError):
    """A write to the device failed."""


class TransportClosedError(TransportError):
    """The transport closed while packets were still pending."""
