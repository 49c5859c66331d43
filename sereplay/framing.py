"""
Response frame assembly.

Serial reads arrive in arbitrary chunks. Bytes arriving within the
inter-frame quiet interval of each other belong to the same frame; a frame
is complete once the line has been silent for that long.
"""

import asyncio
import logging
from typing import Callable, Optional

FrameHandler = Callable[[bytes], None]


class FrameAssembler:
    """Coalesces raw read chunks into frames delimited by silence."""

    def __init__(
        self,
        quiet_interval: float,
        on_frame: FrameHandler,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        """
        Initialize the assembler.

        Args:
            quiet_interval: Silence (in seconds) that ends a frame
            on_frame: Called with each completed frame
            loop: Event loop running the quiet timer (defaults to the
                running loop at the first chunk)
        """
        if quiet_interval < 0:
            raise ValueError(f"quiet interval must be non-negative: {quiet_interval}")
        self.logger = logging.getLogger("sereplay.framing")
        self.quiet_interval = quiet_interval
        self.on_frame = on_frame
        self._loop = loop
        self._buffer = bytearray()
        self._timer: Optional[asyncio.TimerHandle] = None
        self._closed = False

    @property
    def pending(self) -> int:
        """Number of bytes accumulated for the frame in progress."""
        return len(self._buffer)

    def on_bytes(self, chunk: bytes) -> None:
        """Append a chunk and restart the quiet timer."""
        if self._closed or not chunk:
            return
        self._buffer += chunk
        if self._timer is not None:
            self._timer.cancel()
        loop = self._loop or asyncio.get_running_loop()
        self._timer = loop.call_later(self.quiet_interval, self._flush)

    def _flush(self) -> None:
        self._timer = None
        if not self._buffer:
            return
        frame = bytes(self._buffer)
        self._buffer.clear()
        self.logger.debug(f"Assembled frame of {len(frame)} bytes")
        self.on_frame(frame)

    def close(self) -> None:
        """Stop the timer and discard any partial frame."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._buffer:
            self.logger.debug(f"Discarding {len(self._buffer)} bytes of incomplete frame")
            self._buffer.clear()
        self._closed = True
