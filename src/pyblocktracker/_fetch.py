"""On-demand access to the latest block: ``get_latest`` and ``force_refresh``.

Both go through the same primitives as the standing loop: ``get_latest``
waits on an ordinary one-shot ``latest`` listener (so the controller starts
and stops the loop as usual) and ``force_refresh`` runs one shared fetch
followed by the loop's own compare-and-update step.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from pyblocktracker._cache import BlockNumberCache
from pyblocktracker._ledger import ListenerHandle, SubscriptionLedger
from pyblocktracker._poll import PollLoop
from pyblocktracker.events import TrackerEvent

_logger = logging.getLogger(__name__)


class FetchGate:
    def __init__(
        self,
        *,
        cache: BlockNumberCache,
        ledger: SubscriptionLedger,
        poll_loop: PollLoop,
    ) -> None:
        self._cache = cache
        self._ledger = ledger
        self._poll_loop = poll_loop
        self._waiters: set[asyncio.Future[str]] = set()

    async def get_latest(self, *, raise_on_error: bool = False) -> str:
        current = self._cache.value
        if current is not None:
            return current

        waiter: asyncio.Future[str] = asyncio.get_running_loop().create_future()

        def _on_latest(value: str) -> None:
            if not waiter.done():
                waiter.set_result(value)

        def _on_error(error: Any) -> None:
            if not waiter.done():
                waiter.set_exception(error)

        self._waiters.add(waiter)
        error_handle: ListenerHandle | None = None
        if raise_on_error:
            error_handle = self._ledger.subscribe(TrackerEvent.ERROR, _on_error, once=True)
        latest_handle = self._ledger.subscribe(TrackerEvent.LATEST, _on_latest, once=True)
        try:
            return await waiter
        finally:
            self._waiters.discard(waiter)
            # No-ops when the one-shot listeners already removed themselves.
            self._ledger.unsubscribe(TrackerEvent.LATEST, latest_handle)
            if error_handle is not None:
                self._ledger.unsubscribe(TrackerEvent.ERROR, error_handle)

    async def force_refresh(self) -> str:
        value = await self._poll_loop.refresh()
        current = self._cache.value
        return current if current is not None else value

    def cancel_waiters(self) -> None:
        """Cancel pending ``get_latest`` calls so callers don't hang."""
        for waiter in list(self._waiters):
            if not waiter.done():
                waiter.cancel()
        self._waiters.clear()
