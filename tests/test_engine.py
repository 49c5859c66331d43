"""Tests for the ReplayEngine state machine."""

import asyncio
import unittest
from unittest.mock import Mock

from sereplay.config import ReplayConfig
from sereplay.engine import PacketQueue, ReplayEngine, ReplayState
from sereplay.errors import (
    MalformedPacketError,
    ResponseTimeoutError,
    SinkWriteError,
    TransportClosedError,
    TransportOpenError,
    TransportWriteError,
)
from sereplay.packets import END_MARKER, Packet, PacketSource
from sereplay.recorder import TrafficRecorder

from transport_fakes import FakeTransport, MemorySink, echo, silent

# allowance for timers firing marginally early
SLACK = 0.005


def packets(*hex_lines, repeat=1):
    return PacketSource(repeat=repeat).parse(hex_lines)


class TestPacketQueue(unittest.IsolatedAsyncioTestCase):
    """Test the engine's packet queue."""

    async def test_fifo(self):
        """Test that items come out in push order."""
        queue = PacketQueue()
        queue.push(1)
        queue.push(2)
        self.assertEqual(await queue.head(), 1)
        self.assertEqual(queue.pop(), 1)
        self.assertEqual(await queue.head(), 2)
        self.assertEqual(len(queue), 1)

    async def test_head_waits_until_non_empty(self):
        """Test that head() resumes when the queue becomes non-empty."""
        queue = PacketQueue()
        waiter = asyncio.ensure_future(queue.head())
        await asyncio.sleep(0.01)
        self.assertFalse(waiter.done())
        queue.push("x")
        self.assertEqual(await asyncio.wait_for(waiter, 1), "x")


class TestReplayEngine(unittest.IsolatedAsyncioTestCase):
    """Test the send / await response / delay cycle."""

    def make_engine(self, transport, **overrides):
        params = dict(resp_timeout=500, inter_frame_timeout=5, send_delay=0)
        params.update(overrides)
        recorder = params.pop("recorder", None)
        return ReplayEngine(transport, ReplayConfig(**params), recorder=recorder)

    async def test_end_to_end(self):
        """Test that a two packet script is sent in order and the transport closed."""
        transport = FakeTransport(echo)
        engine = self.make_engine(transport)

        stats = await engine.run(PacketSource().parse("ab cd\n01\n".splitlines()))

        self.assertEqual(transport.written, [b"\xab\xcd", b"\x01"])
        self.assertFalse(transport.is_open)
        self.assertEqual(engine.state, ReplayState.COMPLETE)
        self.assertEqual(stats.sent, 2)
        self.assertEqual(stats.responses, 2)
        self.assertEqual(stats.timeouts, 0)
        self.assertEqual(stats.bytes_sent, 3)
        self.assertEqual(stats.bytes_received, 3)

    async def test_timeout_is_recoverable(self):
        """Test that every unanswered packet times out once and the run goes on."""
        transport = FakeTransport(silent)
        engine = self.make_engine(transport, resp_timeout=30)

        stats = await engine.run(packets("01", "02", "03"))

        self.assertEqual(transport.written, [b"\x01", b"\x02", b"\x03"])
        self.assertEqual(stats.timeouts, 3)
        self.assertEqual(stats.responses, 0)
        self.assertEqual(len(stats.timeout_errors), 3)
        self.assertIsInstance(stats.timeout_errors[0], ResponseTimeoutError)
        self.assertEqual(stats.timeout_errors[1].packet.index, 1)
        times = [t for t, _ in transport.writes]
        for earlier, later in zip(times, times[1:]):
            self.assertGreaterEqual(later - earlier, 0.030 - SLACK)

    async def test_sends_are_sequential(self):
        """Test that the next send waits for the response and the send delay."""
        transport = FakeTransport(lambda data: [(0.02, b"\xaa")])
        engine = self.make_engine(transport, send_delay=10)

        await engine.run(packets("01", "02", "03"))

        times = [t for t, _ in transport.writes]
        for earlier, later in zip(times, times[1:]):
            # response latency + quiet interval + send delay
            self.assertGreaterEqual(later - earlier, 0.020 + 0.005 + 0.010 - SLACK)

    async def test_fragmented_response(self):
        """Test that chunks within the quiet interval form a single response."""
        transport = FakeTransport(lambda data: [(0.001, b"\x01"), (0.003, b"\x02\x03")])
        engine = self.make_engine(transport, inter_frame_timeout=20)
        frames = []
        engine.reporter = Mock()
        engine.reporter.response_received.side_effect = frames.append

        stats = await engine.run(packets("10"))

        self.assertEqual(frames, [b"\x01\x02\x03"])
        self.assertEqual(stats.responses, 1)
        self.assertEqual(stats.stray_frames, 0)

    async def test_frame_outside_response_window_is_stray(self):
        """Test that a frame arriving during the send delay is not a response."""
        transport = FakeTransport(lambda data: [(0.001, b"\x01"), (0.03, b"\x02")])
        engine = self.make_engine(transport, send_delay=100)

        stats = await engine.run(packets("10"))

        self.assertEqual(stats.responses, 1)
        self.assertEqual(stats.stray_frames, 1)
        self.assertEqual(stats.bytes_received, 1)

    async def test_late_response_is_not_misattributed(self):
        """Test that a reply arriving after its timeout is dropped, not used for the next packet."""
        transport = FakeTransport(lambda data: [(0.04, b"\xee")] if data == b"\x01" else [])
        engine = self.make_engine(transport, resp_timeout=20, send_delay=50)

        stats = await engine.run(packets("01", "02"))

        self.assertEqual(stats.responses, 0)
        self.assertEqual(stats.timeouts, 2)
        self.assertEqual(stats.stray_frames, 1)

    async def test_repeat(self):
        """Test that a repeated script is sent repeat times."""
        transport = FakeTransport(echo)
        engine = self.make_engine(transport)

        await engine.run(packets("01", "02", repeat=3))

        self.assertEqual(transport.written, [b"\x01", b"\x02"] * 3)

    async def test_sequence_without_end_marker(self):
        """Test that a plain packet list still completes."""
        transport = FakeTransport(echo)
        engine = self.make_engine(transport)

        await engine.run([Packet(b"\x05")])

        self.assertEqual(transport.written, [b"\x05"])
        self.assertEqual(engine.state, ReplayState.COMPLETE)

    async def test_nothing_after_end_marker(self):
        """Test that packets queued after END_MARKER are never sent."""
        transport = FakeTransport(echo)
        engine = self.make_engine(transport)

        await engine.run([Packet(b"\x01"), END_MARKER, Packet(b"\x02")])

        self.assertEqual(transport.written, [b"\x01"])

    async def test_empty_script(self):
        """Test that an empty script opens and closes the transport without sending."""
        transport = FakeTransport(echo)
        engine = self.make_engine(transport)

        stats = await engine.run(packets())

        self.assertTrue(transport.opened)
        self.assertFalse(transport.is_open)
        self.assertEqual(stats.sent, 0)

    async def test_transport_close_aborts_run(self):
        """Test that closing the transport mid-wait stops the sequence."""
        transport = FakeTransport(silent)
        engine = self.make_engine(transport, resp_timeout=1000)

        def close_soon(data):
            transport.schedule_close(0.01)
            return []

        transport.responder = close_soon
        with self.assertRaises(TransportClosedError):
            await engine.run(packets("01", "02", "03"))

        self.assertEqual(transport.written, [b"\x01"])
        self.assertNotEqual(engine.state, ReplayState.COMPLETE)

    async def test_open_failure(self):
        """Test that an open failure propagates before anything is sent."""
        transport = FakeTransport(open_error=True)
        engine = self.make_engine(transport)

        with self.assertRaises(TransportOpenError):
            await engine.run(packets("01"))
        self.assertEqual(transport.writes, [])

    async def test_write_failure_is_fatal(self):
        """Test that a write error aborts the run and closes the transport."""
        transport = FakeTransport(write_error=True)
        engine = self.make_engine(transport)

        with self.assertRaises(TransportWriteError):
            await engine.run(packets("01", "02"))
        self.assertFalse(transport.is_open)

    async def test_malformed_script_fails_before_sending(self):
        """Test that an invalid first line fails the run without any write."""
        transport = FakeTransport(echo)
        engine = self.make_engine(transport)

        with self.assertRaises(MalformedPacketError):
            await engine.run(packets("zz"))
        self.assertEqual(transport.writes, [])

    async def test_traffic_is_recorded(self):
        """Test that sends and responses reach the traffic log in order."""
        sink = MemorySink()
        transport = FakeTransport(lambda data: [(0.001, b"\x99\x98")])
        engine = self.make_engine(transport, recorder=TrafficRecorder(sink))

        await engine.run(packets("0102"))

        self.assertEqual(len(sink.lines), 2)
        self.assertTrue(sink.lines[0].endswith(" > 2 0102\n"))
        self.assertTrue(sink.lines[1].endswith(" < 2 9998\n"))

    async def test_sink_error_aborts_run(self):
        """Test that a failing traffic log stops the replay."""
        sink = MemorySink()
        transport = FakeTransport(silent)
        engine = self.make_engine(transport, resp_timeout=1000, recorder=TrafficRecorder(sink))

        def fail_soon(data):
            asyncio.get_running_loop().call_later(0.01, sink.fail, OSError("disk full"))
            return []

        transport.responder = fail_soon
        with self.assertRaises(SinkWriteError):
            await engine.run(packets("01", "02"))
        self.assertEqual(transport.written, [b"\x01"])
        self.assertFalse(transport.is_open)

    async def test_reporter_notified(self):
        """Test the reporter hooks for sends, responses and timeouts."""
        transport = FakeTransport(lambda data: [(0.001, b"\x01")] if data == b"\x01" else [])
        engine = self.make_engine(transport, resp_timeout=20)
        engine.reporter = Mock()

        await engine.run(packets("01", "02"))

        self.assertEqual(engine.reporter.packet_sent.call_count, 2)
        engine.reporter.response_received.assert_called_once_with(b"\x01")
        engine.reporter.response_timeout.assert_called_once()

    async def test_engine_can_run_twice(self):
        """Test that a second run starts from fresh state."""
        first = FakeTransport(echo)
        engine = self.make_engine(first)
        await engine.run(packets("01"))

        second = FakeTransport(echo)
        engine.transport = second
        stats = await engine.run(packets("02", "03"))

        self.assertEqual(second.written, [b"\x02", b"\x03"])
        self.assertEqual(stats.sent, 2)


if __name__ == "__main__":
    unittest.main()
