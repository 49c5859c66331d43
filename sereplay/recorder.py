"""
Traffic log recording.

Every packet sent and every response received is appended to a log sink as

    <timestamp> <direction> <length> <hex bytes>

The sink may push back (write returns False); lines are then queued and
flushed in order once the sink signals drain. No line is ever dropped.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import deque
from datetime import datetime
from typing import Callable, Deque, List, Optional

from sereplay.errors import SinkWriteError

SEND = ">"
RECEIVE = "<"

DEFAULT_HIGH_WATER = 16384
DEFAULT_MAX_PENDING = 1024


def timestamp(now: Optional[datetime] = None) -> str:
    """Format a local time as 2024-01-31T12:00:00.123+0100."""
    if now is None:
        now = datetime.now()
    if now.tzinfo is None:
        now = now.astimezone()
    return f"{now:%Y-%m-%dT%H:%M:%S}.{now.microsecond // 1000:03d}{now:%z}"


def format_traffic_line(direction: str, data: bytes, now: Optional[datetime] = None) -> str:
    return f"{timestamp(now)} {direction} {len(data)} {data.hex()}\n"


class LogSink(ABC):
    """Destination for traffic log lines."""

    def __init__(self):
        self._drain_callbacks: List[Callable[[], None]] = []
        self._error_callbacks: List[Callable[[Exception], None]] = []

    @abstractmethod
    def write(self, line: str) -> bool:
        """
        Accept one line.

        Returns:
            False if the caller should wait for drain before writing more
        """

    @abstractmethod
    def close(self) -> None:
        """Flush and release the sink."""

    def on_drain(self, callback: Callable[[], None]) -> None:
        self._drain_callbacks.append(callback)

    def on_error(self, callback: Callable[[Exception], None]) -> None:
        self._error_callbacks.append(callback)

    def _emit_drain(self) -> None:
        for callback in list(self._drain_callbacks):
            callback()

    def _emit_error(self, error: Exception) -> None:
        for callback in list(self._error_callbacks):
            callback(error)


class FileLogSink(LogSink):
    """Text file sink that asks for a pause once too much is buffered."""

    def __init__(
        self,
        path: str,
        high_water: int = DEFAULT_HIGH_WATER,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        """
        Open the log file.

        Args:
            path: File to (over)write
            high_water: Buffered characters after which write() returns False
            loop: Event loop running the deferred flush

        Raises:
            SinkWriteError: If the file cannot be opened
        """
        super().__init__()
        self.logger = logging.getLogger("sereplay.recorder.file")
        self.path = path
        self.high_water = high_water
        self._loop = loop
        self._pending = 0
        self._flush_scheduled = False
        self._failed = False
        try:
            self._file = open(path, "w", encoding="utf-8")
        except OSError as e:
            raise SinkWriteError(f"Cannot open log file {path}: {e}") from e

    def write(self, line: str) -> bool:
        if self._failed or self._file.closed:
            return False
        try:
            self._file.write(line)
        except OSError as e:
            self._fail(e)
            return False

        self._pending += len(line)
        if self._pending < self.high_water:
            return True
        if not self._flush_scheduled:
            self._flush_scheduled = True
            loop = self._loop or asyncio.get_running_loop()
            loop.call_soon(self._flush)
        return False

    def _flush(self) -> None:
        self._flush_scheduled = False
        if self._failed or self._file.closed:
            return
        try:
            self._file.flush()
        except OSError as e:
            self._fail(e)
            return
        self._pending = 0
        self._emit_drain()

    def _fail(self, error: OSError) -> None:
        self._failed = True
        self.logger.error(f"Error writing log file {self.path}: {error}")
        self._emit_error(error)

    def close(self) -> None:
        if self._file.closed:
            return
        try:
            self._file.close()
        except OSError as e:
            raise SinkWriteError(f"Error closing log file {self.path}: {e}") from e


class TrafficRecorder:
    """Formats traffic events and feeds them to a sink in call order."""

    def __init__(self, sink: LogSink, max_pending: int = DEFAULT_MAX_PENDING):
        """
        Initialize the recorder.

        Args:
            sink: Where formatted lines go
            max_pending: Queued lines above which wait_for_room() blocks
        """
        self.logger = logging.getLogger("sereplay.recorder")
        self.sink = sink
        self.max_pending = max_pending
        self.error: Optional[SinkWriteError] = None
        self._queue: Deque[str] = deque()
        self._waiting = False
        self._failure_handler: Optional[Callable[[SinkWriteError], None]] = None
        self._room: Optional[asyncio.Event] = None
        self._idle: Optional[asyncio.Event] = None

        sink.on_drain(self._on_drain)
        sink.on_error(self._on_error)

    @property
    def pending(self) -> int:
        return len(self._queue)

    def set_failure_handler(self, handler: Optional[Callable[[SinkWriteError], None]]) -> None:
        """Register a callback run once if the sink fails."""
        self._failure_handler = handler

    def record(self, direction: str, data: bytes) -> None:
        """
        Queue one traffic line and flush as much as the sink accepts.

        Raises:
            SinkWriteError: If the sink has already failed
        """
        if self.error is not None:
            raise self.error
        self._queue.append(format_traffic_line(direction, data))
        self._flush()

    def _flush(self) -> None:
        while self._queue and not self._waiting and self.error is None:
            line = self._queue.popleft()
            if not self.sink.write(line):
                self._waiting = True
                self.logger.debug(f"Log sink busy, {len(self._queue)} lines queued")
        self._signal()

    def _signal(self) -> None:
        if self._room is not None and len(self._queue) < self.max_pending:
            self._room.set()
        if self._idle is not None and self.idle:
            self._idle.set()

    @property
    def idle(self) -> bool:
        return self.error is not None or (not self._queue and not self._waiting)

    def _on_drain(self) -> None:
        self._waiting = False
        self._flush()

    def _on_error(self, error: Exception) -> None:
        if self.error is not None:
            return
        self.error = SinkWriteError(f"Traffic log write failed: {error}")
        self.error.__cause__ = error
        self._signal()
        if self._failure_handler is not None:
            self._failure_handler(self.error)

    async def wait_for_room(self) -> None:
        """Wait until the queue is below max_pending."""
        while len(self._queue) >= self.max_pending and self.error is None:
            self._room = asyncio.Event()
            await self._room.wait()
        self._room = None

    async def close(self) -> None:
        """
        Flush every queued line and close the sink.

        Raises:
            SinkWriteError: If the sink failed before everything was written
        """
        while not self.idle:
            self._idle = asyncio.Event()
            await self._idle.wait()
        self._idle = None
        if self.error is not None:
            raise self.error
        self.sink.close()
