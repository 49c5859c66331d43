"""
Serial port transport.

Reads are driven by the event loop: the port is opened non-blocking and its
file descriptor is watched with loop.add_reader, so no reader thread exists.
This needs an event loop with reader support (any POSIX selector loop).
"""

import asyncio
import logging
from typing import Optional

import serial

from sereplay.config import DEFAULT_BAUDRATE
from sereplay.errors import TransportOpenError, TransportWriteError
from sereplay.transport.base import Transport


class SerialTransport(Transport):
    """Transport over a pyserial port."""

    def __init__(
        self,
        device: str,
        baudrate: int = DEFAULT_BAUDRATE,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        debug: bool = False,
    ):
        """
        Initialize the serial transport.

        Args:
            device: Serial device path (e.g. /dev/ttyUSB0)
            baudrate: Line speed
            loop: Event loop watching the port (defaults to the running loop)
            debug: Enable debug logging
        """
        super().__init__()
        self.device = device
        self.baudrate = baudrate
        self._loop = loop
        self._serial: Optional[serial.Serial] = None
        self._fd: Optional[int] = None

        self.logger = logging.getLogger("sereplay.transport.serial")
        if debug:
            self.logger.setLevel(logging.DEBUG)

    @property
    def name(self) -> str:
        return self.device

    @property
    def is_open(self) -> bool:
        return self._serial is not None and self._serial.is_open

    def open(self) -> None:
        """
        Open the port and start watching it for input.

        Raises:
            TransportOpenError: If the port cannot be opened
        """
        try:
            self._serial = serial.Serial(port=self.device, baudrate=self.baudrate, timeout=0)
        except (serial.SerialException, ValueError) as e:
            raise TransportOpenError(f"Error opening {self.device}: {e}") from e

        try:
            loop = self._loop or asyncio.get_running_loop()
            fd = self._serial.fileno()
            loop.add_reader(fd, self._on_readable)
        except (OSError, NotImplementedError, RuntimeError, ValueError) as e:
            # Port is open but cannot be watched (e.g. a loop without reader support)
            self._serial.close()
            self._serial = None
            raise TransportOpenError(f"Error opening {self.device}: {e}") from e
        self._loop = loop
        self._fd = fd
        self.logger.info(f"Opened {self.device} at {self.baudrate} baud")

    def _on_readable(self) -> None:
        try:
            data = self._serial.read(self._serial.in_waiting or 1)
        except serial.SerialException as e:
            # pyserial raises when the device disappears (readable but no data)
            self.logger.error(f"Read error on {self.device}: {e}")
            self.close()
            return
        self._emit_data(data)

    def write(self, data: bytes) -> None:
        if not self.is_open:
            raise TransportWriteError(f"{self.device} is not open")
        try:
            self._serial.write(data)
        except serial.SerialException as e:
            raise TransportWriteError(f"Error writing to {self.device}: {e}") from e

    def close(self) -> None:
        if self._serial is None:
            return
        if self._fd is not None and self._loop is not None:
            self._loop.remove_reader(self._fd)
            self._fd = None
        try:
            self._serial.close()
        except serial.SerialException as e:
            self.logger.warning(f"Error closing {self.device}: {e}")
        self._serial = None
        self.logger.info(f"Closed {self.device}")
        self._emit_closed()
