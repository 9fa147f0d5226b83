"""The poll loop: fetch, compare, update, emit, sleep, repeat."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from pyblocktracker._cache import BlockNumberCache, normalize_block_number
from pyblocktracker._ledger import SubscriptionLedger
from pyblocktracker.events import TrackerEvent
from pyblocktracker.exceptions import BlockFetchError
from pyblocktracker.provider import BlockNumberProvider

_logger = logging.getLogger(__name__)


def _wake(waiter: asyncio.Future[None]) -> None:
    if not waiter.done():
        waiter.set_result(None)


class PollLoop:
    """Runs poll iterations under a run-token handed out by the controller.

    Also owns the fetch primitive shared with the on-demand API: while a
    fetch is in flight every caller awaits the same provider call.
    """

    def __init__(
        self,
        *,
        provider: BlockNumberProvider,
        cache: BlockNumberCache,
        ledger: SubscriptionLedger,
        polling_interval: float,
        retry_timeout: float,
        skip_cache: bool = False,
    ) -> None:
        self._provider = provider
        self._cache = cache
        self._ledger = ledger
        self._polling_interval = polling_interval
        self._retry_timeout = retry_timeout
        self._skip_cache = skip_cache
        self._inflight: asyncio.Future[str] | None = None
        self._sleepers: dict[int, asyncio.Future[None]] = {}

    @property
    def fetch_in_flight(self) -> bool:
        return self._inflight is not None

    async def fetch(self) -> str:
        """Fetch the current block number, joining an in-flight fetch if any."""
        inflight = self._inflight
        if inflight is None:
            inflight = asyncio.ensure_future(self._fetch_once())
            self._inflight = inflight
            inflight.add_done_callback(self._fetch_done)
        return await asyncio.shield(inflight)

    async def _fetch_once(self) -> str:
        _logger.debug("Fetching latest block skip_cache=%s", self._skip_cache)
        value = await self._provider.fetch_block_number(skip_cache=self._skip_cache)
        return normalize_block_number(value)

    def _fetch_done(self, future: asyncio.Future[str]) -> None:
        if self._inflight is future:
            self._inflight = None
        # Mark the outcome retrieved even if every waiter went away.
        if not future.cancelled():
            future.exception()

    def apply(self, value: str) -> bool:
        """Write *value* to the cache and notify listeners if it moved forward."""
        change = self._cache.write(value)
        if change is None:
            _logger.debug("Ignoring block %s (not newer than %s)", value, self._cache.value)
            return False
        _logger.debug("Latest block %s -> %s", change.old_value, change.new_value)
        self._ledger.emit(TrackerEvent.SYNC, change)
        self._ledger.emit(TrackerEvent.LATEST, change.new_value)
        return True

    async def refresh(self) -> str:
        """One fetch-and-update cycle; fetch errors propagate to the caller."""
        value = await self.fetch()
        self.apply(value)
        return value

    async def run(self, token: int, is_current: Callable[[int], bool]) -> None:
        while is_current(token):
            try:
                value = await self.fetch()
            except Exception as exc:
                if not is_current(token):
                    break
                error = BlockFetchError.from_cause(exc)
                if not self._ledger.emit(TrackerEvent.ERROR, error):
                    _logger.warning("Block fetch failed, retrying in %ss: %s", self._retry_timeout, exc)
                delay = self._retry_timeout
            else:
                if not is_current(token):
                    break
                self.apply(value)
                if not is_current(token):
                    break
                self._ledger.emit(TrackerEvent.WAITING_FOR_NEXT_ITERATION)
                delay = self._polling_interval
            if not is_current(token):
                break
            await self._sleep(token, delay)
        _logger.debug("Poll loop token=%s exited", token)

    async def _sleep(self, token: int, delay: float) -> None:
        loop = asyncio.get_running_loop()
        waiter: asyncio.Future[None] = loop.create_future()
        handle = loop.call_later(delay, _wake, waiter)
        self._sleepers[token] = waiter
        try:
            await waiter
        finally:
            handle.cancel()
            if self._sleepers.get(token) is waiter:
                del self._sleepers[token]

    def wake(self, token: int) -> None:
        """End the sleep of loop *token* early, if it is sleeping."""
        waiter = self._sleepers.get(token)
        if waiter is not None:
            _wake(waiter)
