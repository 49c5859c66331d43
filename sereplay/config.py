"""
Run parameters for a replay session.

ReplayConfig is built once from the command line and handed to every
component by reference; it never changes during a run.
"""

import math
from dataclasses import dataclass
from typing import Optional

from sereplay.errors import ConfigError
from sereplay.selector import PacketSelector

DEFAULT_RESP_TIMEOUT = 5000
DEFAULT_INTER_FRAME_TIMEOUT = 200
DEFAULT_SEND_DELAY = 50
DEFAULT_REPEAT = 1
DEFAULT_BAUDRATE = 115200


def _duration(name: str, value) -> float:
    try:
        ms = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"bad option value for {name}: {value!r}")
    if math.isnan(ms) or math.isinf(ms) or ms < 0:
        raise ConfigError(f"bad option value for {name}: {value!r}")
    return ms


def _repeat(value) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"invalid repeat value: {value!r}")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"invalid repeat value: {value!r}")
    if math.isnan(number) or math.isinf(number) or number < 1 or int(number) != number:
        raise ConfigError(f"invalid repeat value: {value!r}")
    return int(number)


@dataclass(frozen=True)
class ReplayConfig:
    """
    Immutable replay parameters.

    Durations are in milliseconds. Raw values (strings, ints, floats) are
    normalised and validated on construction.

    Attributes:
        resp_timeout: Maximum wait for a response to each packet
        inter_frame_timeout: Silence that closes a response frame
        send_delay: Pause after each packet before sending the next one
        repeat: Number of times the selected packets are replayed
        selector: Original packet indices to replay, or None for all
    """

    resp_timeout: float = DEFAULT_RESP_TIMEOUT
    inter_frame_timeout: float = DEFAULT_INTER_FRAME_TIMEOUT
    send_delay: float = DEFAULT_SEND_DELAY
    repeat: int = DEFAULT_REPEAT
    selector: Optional[PacketSelector] = None

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """
        Normalise and check every field.

        Raises:
            ConfigError: If a duration is negative or not a number, or if
                repeat is not an integer >= 1
        """
        # frozen dataclass: normalised values go through object.__setattr__
        object.__setattr__(self, "resp_timeout", _duration("resp-timeout", self.resp_timeout))
        object.__setattr__(
            self, "inter_frame_timeout", _duration("inter-frame-timeout", self.inter_frame_timeout)
        )
        object.__setattr__(self, "send_delay", _duration("send-delay", self.send_delay))
        object.__setattr__(self, "repeat", _repeat(self.repeat))
        if self.selector is not None:
            selector = self.selector
            if not isinstance(selector, PacketSelector):
                selector = PacketSelector(indices=selector)
            object.__setattr__(self, "selector", selector or None)

    @property
    def resp_timeout_s(self) -> float:
        return self.resp_timeout / 1000.0

    @property
    def inter_frame_timeout_s(self) -> float:
        return self.inter_frame_timeout / 1000.0

    @property
    def send_delay_s(self) -> float:
        return self.send_delay / 1000.0
