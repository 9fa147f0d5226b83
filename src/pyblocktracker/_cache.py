"""Internal cache for the latest tracked block number."""

from __future__ import annotations

import asyncio
import logging
import re
import time
from collections.abc import Callable

from pydantic import BaseModel, ConfigDict, Field

from pyblocktracker.events import SyncEvent

_logger = logging.getLogger(__name__)

_HEX_RE = re.compile(r"0[xX][0-9a-fA-F]+")
_DEC_RE = re.compile(r"[0-9]+")


def normalize_block_number(value: str) -> str:
    """Strip surrounding whitespace and check the block number notation.

    Only ``0x``-prefixed hexadecimal or plain decimal digits are accepted;
    signs, underscores and empty digit runs raise :class:`ValueError`.
    """
    if not isinstance(value, str):
        raise ValueError(f"block number must be a string, got {type(value).__name__}")
    text = value.strip()
    if not (_HEX_RE.fullmatch(text) or _DEC_RE.fullmatch(text)):
        raise ValueError(f"invalid block number {value!r}")
    return text


def parse_block_number(value: str) -> int:
    """Parse a numeric-string block number (``"0x1a"`` or ``"26"``)."""
    text = normalize_block_number(value)
    if text[:2].lower() == "0x":
        return int(text[2:], 16)
    return int(text, 10)


class TrackedValue(BaseModel):
    """A confirmed block number and when it was recorded.

    Parameters
    ----------
    value : str
        The block number as the provider returned it, without surrounding
        whitespace.
    number : int
        ``value`` parsed to an integer; used for ordering.
    updated_at : float
        Monotonic timestamp (``time.monotonic()``) of the write.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    value: str
    number: int
    updated_at: float = Field(default_factory=time.monotonic)

    @classmethod
    def parse(cls, value: str) -> TrackedValue:
        text = normalize_block_number(value)
        return cls(value=text, number=parse_block_number(text))

    @property
    def age(self) -> float:
        """Seconds since the value was recorded."""
        return time.monotonic() - self.updated_at


class BlockNumberCache:
    """Holds the last known block number and its pending eviction timer.

    The cache never suspends and owns no task of its own; the eviction
    timer is a plain ``loop.call_later`` handle.
    """

    def __init__(self) -> None:
        self._current: TrackedValue | None = None
        self._eviction: asyncio.TimerHandle | None = None

    def read(self) -> TrackedValue | None:
        return self._current

    @property
    def value(self) -> str | None:
        current = self._current
        return current.value if current is not None else None

    def write(self, value: str) -> SyncEvent | None:
        """Store *value* if the cache is empty or it is strictly greater.

        Returns the resulting transition, or ``None`` when the cache was
        left unchanged.
        """
        candidate = TrackedValue.parse(value)
        previous = self._current
        if previous is not None and candidate.number <= previous.number:
            return None
        self._current = candidate
        return SyncEvent(
            old_value=previous.value if previous is not None else None,
            new_value=candidate.value,
        )

    def clear(self) -> None:
        self._current = None

    @property
    def eviction_pending(self) -> bool:
        return self._eviction is not None

    def schedule_eviction(self, duration: float, should_evict: Callable[[], bool]) -> None:
        """Clear the cache after *duration* seconds if *should_evict* still agrees."""
        self.cancel_eviction()
        loop = asyncio.get_running_loop()
        self._eviction = loop.call_later(duration, self._evict, should_evict)

    def cancel_eviction(self) -> None:
        handle = self._eviction
        self._eviction = None
        if handle is not None:
            handle.cancel()

    def _evict(self, should_evict: Callable[[], bool]) -> None:
        self._eviction = None
        if not should_evict():
            return
        _logger.debug("Evicting cached block number %s", self.value)
        self.clear()
