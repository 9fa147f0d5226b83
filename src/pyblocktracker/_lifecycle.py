"""Lifecycle controller: starts and stops the poll loop.

The controller is the only writer of the loop state, the run-token and
the cache eviction schedule.  Transitions are synchronous; only
:meth:`LifecycleController.shutdown` awaits.
"""

from __future__ import annotations

import asyncio
import logging
from enum import StrEnum

from pyblocktracker._cache import BlockNumberCache
from pyblocktracker._ledger import SubscriptionLedger
from pyblocktracker._poll import PollLoop
from pyblocktracker.events import TrackerEvent

_logger = logging.getLogger(__name__)


class TrackerState(StrEnum):
    STOPPED = "stopped"
    RUNNING = "running"


class LifecycleController:
    def __init__(
        self,
        *,
        cache: BlockNumberCache,
        ledger: SubscriptionLedger,
        poll_loop: PollLoop,
        eviction_duration: float | None,
        keep_process_alive: bool = True,
    ) -> None:
        self._cache = cache
        self._ledger = ledger
        self._poll_loop = poll_loop
        self._eviction_duration = eviction_duration
        self._keep_process_alive = keep_process_alive
        self._state = TrackerState.STOPPED
        self._generation = 0
        self._active_token: int | None = None
        self._tasks: dict[int, asyncio.Task[None]] = {}

    @property
    def state(self) -> TrackerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is TrackerState.RUNNING

    def is_current(self, token: int) -> bool:
        """Whether *token* belongs to the loop instance that should be running."""
        return self._active_token is not None and token == self._active_token

    def on_driving_change(self, before: int, after: int) -> None:
        """Ledger hook: evaluate start/stop after a driving-count change."""
        if after > 0 and not self.is_running:
            self._start()
        elif after == 0 and self.is_running:
            self._stop()

    def _start(self) -> None:
        loop = asyncio.get_running_loop()
        self._cache.cancel_eviction()
        self._generation += 1
        token = self._generation
        self._active_token = token
        self._state = TrackerState.RUNNING
        _logger.debug("Starting poll loop token=%s", token)
        task = loop.create_task(self._poll_loop.run(token, self.is_current))
        self._tasks[token] = task
        task.add_done_callback(lambda _t: self._tasks.pop(token, None))
        self._ledger.emit(TrackerEvent.STARTED)

    def _stop(self) -> None:
        token = self._active_token
        self._active_token = None
        self._state = TrackerState.STOPPED
        _logger.debug("Stopping poll loop token=%s", token)
        if token is not None and not self._keep_process_alive:
            self._poll_loop.wake(token)
        self._ledger.emit(TrackerEvent.ENDED)
        if self._eviction_duration is not None:
            self._cache.schedule_eviction(self._eviction_duration, self._should_evict)

    def _should_evict(self) -> bool:
        return self._state is TrackerState.STOPPED

    async def shutdown(self) -> None:
        """Force the loop to stop and wait until no loop task remains.

        Eviction is handled exactly like a normal stop: a running loop arms
        the eviction timer, an already stopped one leaves it untouched.
        """
        if self.is_running:
            self._stop()
        tasks = list(self._tasks.items())
        for token, _task in tasks:
            self._poll_loop.wake(token)
        if tasks:
            await asyncio.gather(*(task for _token, task in tasks))
