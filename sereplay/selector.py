"""
Packet selection by original script index.

A selector such as "1-3,5" is kept as single indices plus inclusive ranges,
so a wide range costs no more than a narrow one.
"""

import logging
import re
from typing import FrozenSet, Iterable, Optional, Tuple

from sereplay.errors import ConfigError

_INDEX = re.compile(r"[0-9]+")


def _check_index(value) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ConfigError(f"invalid packet index: {value!r}")
    return value


class PacketSelector:
    """Immutable set of packet indices made of single indices and ranges."""

    def __init__(
        self,
        text: Optional[str] = None,
        indices: Iterable[int] = (),
        ranges: Iterable[Tuple[int, int]] = (),
    ):
        """
        Build a selector.

        Args:
            text: Selector syntax, e.g. "3", "1-3" or "1-3,5"; tokens that
                cannot be parsed are skipped with a warning
            indices: Additional single indices
            ranges: Additional inclusive (first, last) ranges

        Raises:
            ConfigError: If an explicit index or range is invalid
        """
        self.logger = logging.getLogger("sereplay.selector")

        singles = {_check_index(i) for i in indices}
        spans = []
        for first, last in ranges:
            first, last = _check_index(first), _check_index(last)
            if first > last:
                raise ConfigError(f"invalid packet range: {first}-{last}")
            spans.append((first, last))

        if text:
            for token in text.split(","):
                self._parse_token(token.strip(), singles, spans)

        self._indices: FrozenSet[int] = frozenset(singles)
        self._ranges: Tuple[Tuple[int, int], ...] = tuple(sorted(spans))

    def _parse_token(self, token: str, singles: set, spans: list) -> None:
        if not token:
            return
        if _INDEX.fullmatch(token):
            singles.add(int(token))
            return

        bounds = token.split("-")
        if len(bounds) != 2 or not all(_INDEX.fullmatch(b.strip()) for b in bounds):
            self.logger.warning(f"Ignoring invalid selector token: {token!r}")
            return
        first, last = (int(b.strip()) for b in bounds)
        if first > last:
            self.logger.warning(f"Ignoring empty selector range: {token!r}")
            return
        spans.append((first, last))

    @property
    def indices(self) -> FrozenSet[int]:
        return self._indices

    @property
    def ranges(self) -> Tuple[Tuple[int, int], ...]:
        return self._ranges

    def __contains__(self, index) -> bool:
        if index in self._indices:
            return True
        return any(first <= index <= last for first, last in self._ranges)

    def __bool__(self) -> bool:
        return bool(self._indices or self._ranges)

    def __eq__(self, other) -> bool:
        if not isinstance(other, PacketSelector):
            return NotImplemented
        return self._indices == other._indices and self._ranges == other._ranges

    def __hash__(self) -> int:
        return hash((self._indices, self._ranges))

    def __repr__(self) -> str:
        parts = [str(i) for i in sorted(self._indices)]
        parts += [f"{first}-{last}" for first, last in self._ranges]
        return f"PacketSelector({','.join(parts)!r})"


def parse_selector(text: Optional[str]) -> Optional[PacketSelector]:
    """
    Parse a packet selector such as "3", "1-3" or "1-3,5".

    Tokens are comma-separated; each is a non-negative index or an inclusive
    "from-to" range. Tokens that cannot be parsed are skipped with a warning.

    Args:
        text: Selector text, or None

    Returns:
        The selector, or None when nothing usable was given (meaning every
        packet is selected)
    """
    if not text:
        return None
    return PacketSelector(text) or None
