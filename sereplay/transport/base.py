"""
Base transport interface.

This module defines the abstract base class for byte-stream transports the
replay engine writes packets to and reads responses from.
"""

from abc import ABC, abstractmethod
from typing import Callable, Optional

DataHandler = Callable[[bytes], None]
CloseHandler = Callable[[], None]


class Transport(ABC):
    """Abstract base class for transports."""

    def __init__(self):
        self._data_handler: Optional[DataHandler] = None
        self._close_handler: Optional[CloseHandler] = None
        self._closed_notified = False

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable name of the underlying device."""

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """Whether the transport is currently open."""

    @abstractmethod
    def open(self) -> None:
        """
        Open the transport.

        Raises:
            TransportOpenError: If the device is unavailable
        """

    @abstractmethod
    def write(self, data: bytes) -> None:
        """
        Write bytes to the device.

        Raises:
            TransportWriteError: If the write fails
        """

    @abstractmethod
    def close(self) -> None:
        """Close the transport. Closing twice is a no-op."""

    def set_data_handler(self, handler: Optional[DataHandler]) -> None:
        """Register the callback receiving every chunk read from the device."""
        self._data_handler = handler

    def set_close_handler(self, handler: Optional[CloseHandler]) -> None:
        """Register the callback run once when the transport closes."""
        self._close_handler = handler

    def _emit_data(self, data: bytes) -> None:
        if data and self._data_handler is not None:
            self._data_handler(data)

    def _emit_closed(self) -> None:
        if self._closed_notified:
            return
        self._closed_notified = True
        if self._close_handler is not None:
            self._close_handler()
