"""
sereplay: replay packet scripts to serial devices.

Packets from a hex script are sent one at a time; each waits for a response
frame (delimited by line silence) or a timeout before the next is sent.
"""

__version__ = "0.1.0"

from sereplay.config import ReplayConfig
from sereplay.engine import ReplayEngine, ReplayState, ReplayStats
from sereplay.framing import FrameAssembler
from sereplay.packets import END_MARKER, Packet, PacketSource
from sereplay.selector import PacketSelector, parse_selector
from sereplay.recorder import FileLogSink, LogSink, TrafficRecorder

__all__ = [
    'ReplayConfig',
    'ReplayEngine',
    'ReplayState',
    'ReplayStats',
    'FrameAssembler',
    'END_MARKER',
    'Packet',
    'PacketSource',
    'PacketSelector',
    'parse_selector',
    'FileLogSink',
    'LogSink',
    'TrafficRecorder',
]
