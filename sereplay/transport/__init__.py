"""
Transports for sereplay.

This module exports the transport interface and the serial implementation.
"""

from sereplay.transport.base import Transport
from sereplay.transport.serial_transport import SerialTransport

__all__ = [
    'Transport',
    'SerialTransport',
]
