"""
Packet script parsing.

A script holds one packet per line as a hex string (whitespace is ignored).
Lines starting with '#' are comments; consecutive comments become the doc
text of the next packet. Blank lines are skipped.
"""

import logging
import re
from dataclasses import dataclass
from typing import Container, Iterable, Iterator, List, Optional, Union

from sereplay.config import DEFAULT_REPEAT
from sereplay.errors import ConfigError, MalformedPacketError

_WHITESPACE = re.compile(r"\s+")
_HEX = re.compile(r"[0-9a-fA-F]*")


@dataclass(frozen=True)
class Packet:
    """
    One packet of a replay script.

    Attributes:
        data: Bytes written to the device
        doc: Comment lines that preceded the packet in the script, if any
        index: 0-based position among the script's packet lines
    """

    data: bytes
    doc: Optional[str] = None
    index: int = 0

    def __len__(self) -> int:
        return len(self.data)


class _EndMarker:
    """Sentinel closing a packet sequence."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "END_MARKER"


END_MARKER = _EndMarker()

QueueItem = Union[Packet, _EndMarker]


def decode_packet(text: str, line_no: int) -> bytes:
    """
    Decode one script line into bytes.

    Raises:
        MalformedPacketError: If the line has non-hex characters or an odd
            number of hex digits
    """
    digits = _WHITESPACE.sub("", text)
    if not _HEX.fullmatch(digits):
        raise MalformedPacketError(line_no, text, "non-hex character")
    if len(digits) % 2:
        raise MalformedPacketError(line_no, text, "odd number of hex digits")
    return bytes.fromhex(digits)


class PacketSource:
    """Turns script lines into the ordered packet sequence of a run."""

    def __init__(self, selector: Optional[Container[int]] = None, repeat: int = DEFAULT_REPEAT):
        """
        Initialize the packet source.

        Args:
            selector: Original indices to keep (a PacketSelector or any
                container of ints), or None/empty for all
            repeat: Number of times the selected packets are played
        """
        self.logger = logging.getLogger("sereplay.packets")
        if repeat < 1:
            raise ConfigError(f"invalid repeat value: {repeat!r}")
        self.selector = selector or None
        self.repeat = repeat

    @classmethod
    def from_config(cls, config) -> "PacketSource":
        return cls(selector=config.selector, repeat=config.repeat)

    def parse(self, lines: Iterable[str]) -> Iterator[QueueItem]:
        """
        Lazily parse script lines.

        Selected packets are yielded as soon as their line is read. Once the
        input is exhausted the selected packets are yielded repeat - 1 more
        times, followed by exactly one END_MARKER.

        Args:
            lines: Script lines (with or without line endings)

        Yields:
            Packet objects, then END_MARKER

        Raises:
            MalformedPacketError: On the first line that is not valid hex
        """
        selected: List[Packet] = []
        doc: Optional[str] = None
        index = 0

        for line_no, raw in enumerate(lines, start=1):
            line = raw.strip()
            if not line:
                continue
            if line.startswith("#"):
                doc = line + "\n" if doc is None else doc + line + "\n"
                continue

            data = decode_packet(line, line_no)
            if self.selector is None or index in self.selector:
                packet = Packet(data=data, doc=doc, index=index)
                selected.append(packet)
                yield packet
            else:
                self.logger.debug(f"Skipping packet {index} (not selected)")
            doc = None
            index += 1

        self.logger.debug(f"Parsed {index} packets, {len(selected)} selected")
        for _ in range(self.repeat - 1):
            yield from selected
        yield END_MARKER

    def load(self, path: str) -> List[QueueItem]:
        """
        Parse a whole script file up front.

        Args:
            path: Path to the script

        Returns:
            The complete sequence, END_MARKER included

        Raises:
            FileNotFoundError: If the script does not exist
            MalformedPacketError: If any line is not valid hex
        """
        with open(path, "r", encoding="utf-8") as f:
            return list(self.parse(f))
