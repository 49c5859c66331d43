"""
Packet replay engine.

Sends packets one at a time: write the packet, wait for the next assembled
response frame or the response timeout, pause for the send delay, move on.
Exactly one packet is outstanding at any time. A response is whatever frame
arrives while a packet is awaiting one; there is no content matching.
"""

import asyncio
import enum
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Iterable, List, Optional

from sereplay.config import ReplayConfig
from sereplay.errors import ResponseTimeoutError, TransportClosedError
from sereplay.framing import FrameAssembler
from sereplay.packets import END_MARKER, Packet, QueueItem
from sereplay.recorder import RECEIVE, SEND, TrafficRecorder
from sereplay.transport.base import Transport


class ReplayState(enum.Enum):
    IDLE = "idle"
    SENDING = "sending"
    AWAITING_RESPONSE = "awaiting_response"
    DELAYING = "delaying"
    COMPLETE = "complete"


@dataclass
class ReplayStats:
    """Counters collected during one run."""

    sent: int = 0
    responses: int = 0
    timeouts: int = 0
    stray_frames: int = 0
    bytes_sent: int = 0
    bytes_received: int = 0
    timeout_errors: List[ResponseTimeoutError] = field(default_factory=list, repr=False)


class PacketQueue:
    """
    Single-consumer FIFO of pending packets.

    The producer may append while the consumer drains. The consumer only
    looks at the head; head() suspends until the queue becomes non-empty.
    """

    def __init__(self):
        self._items: Deque[QueueItem] = deque()
        self._nonempty = asyncio.Event()

    def __len__(self) -> int:
        return len(self._items)

    def push(self, item: QueueItem) -> None:
        was_empty = not self._items
        self._items.append(item)
        if was_empty:
            self._nonempty.set()

    async def head(self) -> QueueItem:
        while not self._items:
            await self._nonempty.wait()
        return self._items[0]

    def pop(self) -> QueueItem:
        item = self._items.popleft()
        if not self._items:
            self._nonempty.clear()
        return item


class ReplayEngine:
    """Drives a replay run over a transport."""

    def __init__(
        self,
        transport: Transport,
        config: ReplayConfig,
        recorder: Optional[TrafficRecorder] = None,
        reporter=None,
        debug: bool = False,
    ):
        """
        Initialize the replay engine.

        Args:
            transport: Device the packets are written to
            config: Run parameters
            recorder: Traffic log recorder (optional)
            reporter: Console reporter (optional)
            debug: Enable debug logging
        """
        self.transport = transport
        self.config = config
        self.recorder = recorder
        self.reporter = reporter
        self.stats = ReplayStats()

        self.logger = logging.getLogger("sereplay.engine")
        if debug:
            self.logger.setLevel(logging.DEBUG)

        self.assembler: Optional[FrameAssembler] = None
        self._state = ReplayState.IDLE
        self._queue: Optional[PacketQueue] = None
        self._response: Optional[asyncio.Future] = None
        self._halt: Optional[asyncio.Event] = None
        self._fatal: Optional[Exception] = None
        self._closing = False

    @property
    def state(self) -> ReplayState:
        return self._state

    def _set_state(self, state: ReplayState) -> None:
        if state is not self._state:
            self.logger.debug(f"{self._state.value} -> {state.value}")
            self._state = state

    async def run(self, packets: Iterable[QueueItem]) -> ReplayStats:
        """
        Replay a packet sequence.

        The transport is opened first and closed when END_MARKER is reached
        (one is appended if the sequence lacks it) or when the run fails.

        Args:
            packets: Packets to send, normally from PacketSource.parse()

        Returns:
            Counters for the run

        Raises:
            TransportOpenError: If the transport cannot be opened
            TransportWriteError: If a write fails
            TransportClosedError: If the transport closes mid-run
            SinkWriteError: If the traffic log fails
            MalformedPacketError: If a lazily parsed script turns out invalid
        """
        self.stats = ReplayStats()
        self._queue = PacketQueue()
        self._halt = asyncio.Event()
        self._fatal = None
        self._closing = False
        self._set_state(ReplayState.IDLE)
        self.assembler = FrameAssembler(self.config.inter_frame_timeout_s, self._on_frame)

        self.transport.set_data_handler(self.assembler.on_bytes)
        self.transport.set_close_handler(self._on_transport_closed)
        if self.recorder is not None:
            self.recorder.set_failure_handler(self._abort)

        self.transport.open()
        self.logger.info(f"Replaying to {self.transport.name}")

        feeder = asyncio.ensure_future(self._feed(packets))
        try:
            await self._drive()
        finally:
            feeder.cancel()
            await asyncio.gather(feeder, return_exceptions=True)
            self.assembler.close()
            self._closing = True
            self.transport.close()
            if self._state is not ReplayState.COMPLETE:
                self._set_state(ReplayState.IDLE)

        if self._fatal is not None:
            raise self._fatal
        self.logger.info(
            f"Replay complete: {self.stats.sent} sent, {self.stats.responses} answered, "
            f"{self.stats.timeouts} timed out"
        )
        return self.stats

    async def _feed(self, packets: Iterable[QueueItem]) -> None:
        try:
            for item in packets:
                self._queue.push(item)
                if item is END_MARKER:
                    return
                # let the sender start on the head while the rest streams in
                await asyncio.sleep(0)
            self._queue.push(END_MARKER)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._abort(e)

    async def _drive(self) -> None:
        while True:
            packet = await self._interruptible(self._queue.head())
            if packet is END_MARKER:
                self._queue.pop()
                self._closing = True
                self._set_state(ReplayState.COMPLETE)
                return

            self._send(packet)
            await self._await_response(packet)

            self._set_state(ReplayState.DELAYING)
            await self._interruptible(asyncio.sleep(self.config.send_delay_s))
            if self.recorder is not None:
                await self._interruptible(self.recorder.wait_for_room())
            self._queue.pop()
            self._set_state(ReplayState.IDLE)

    def _send(self, packet: Packet) -> None:
        self._set_state(ReplayState.SENDING)
        if self.reporter is not None:
            self.reporter.packet_sent(packet)
        self.transport.write(packet.data)
        self.stats.sent += 1
        self.stats.bytes_sent += len(packet.data)
        if self.recorder is not None:
            self.recorder.record(SEND, packet.data)

    async def _await_response(self, packet: Packet) -> Optional[bytes]:
        self._response = asyncio.get_running_loop().create_future()
        self._set_state(ReplayState.AWAITING_RESPONSE)
        try:
            frame = await self._interruptible(self._response, timeout=self.config.resp_timeout_s)
        except asyncio.TimeoutError:
            error = ResponseTimeoutError(packet, self.config.resp_timeout)
            self.logger.warning(
                f"No response to packet {packet.index} within {self.config.resp_timeout:g} ms"
            )
            self.stats.timeouts += 1
            self.stats.timeout_errors.append(error)
            if self.reporter is not None:
                self.reporter.response_timeout(error)
            return None
        finally:
            self._response = None

        self.stats.responses += 1
        self.stats.bytes_received += len(frame)
        if self.reporter is not None:
            self.reporter.response_received(frame)
        if self.recorder is not None:
            self.recorder.record(RECEIVE, frame)
        return frame

    async def _interruptible(self, awaitable, timeout: Optional[float] = None):
        """
        Await something unless the run is halted first.

        Raises:
            asyncio.TimeoutError: If timeout elapses first
            The halting error: If the run was halted
        """
        if self._halt.is_set():
            raise self._fatal
        task = asyncio.ensure_future(awaitable)
        halt = asyncio.ensure_future(self._halt.wait())
        try:
            done, _ = await asyncio.wait(
                {task, halt}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            halt.cancel()
            if not task.done():
                task.cancel()
        if self._halt.is_set():
            raise self._fatal
        if task in done:
            return task.result()
        raise asyncio.TimeoutError()

    def _on_frame(self, frame: bytes) -> None:
        response = self._response
        if (
            self._state is ReplayState.AWAITING_RESPONSE
            and response is not None
            and not response.done()
        ):
            response.set_result(frame)
            return
        self.stats.stray_frames += 1
        self.logger.debug(f"Dropping {len(frame)}-byte frame received while {self._state.value}")

    def _on_transport_closed(self) -> None:
        if self._closing:
            return
        self._abort(TransportClosedError(f"{self.transport.name} closed while replaying"))

    def _abort(self, error: Exception) -> None:
        if self._fatal is not None:
            return
        self._fatal = error
        self.logger.error(f"Replay aborted: {error}")
        if self._halt is not None:
            self._halt.set()
