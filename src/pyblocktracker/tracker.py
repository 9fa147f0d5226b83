"""High-level async block tracker."""

from __future__ import annotations

import dataclasses
import logging
from typing import Any

from pyblocktracker._cache import BlockNumberCache, TrackedValue
from pyblocktracker._fetch import FetchGate
from pyblocktracker._ledger import Listener, ListenerHandle, SubscriptionLedger
from pyblocktracker._lifecycle import LifecycleController, TrackerState
from pyblocktracker._poll import PollLoop
from pyblocktracker.config import TrackerConfig
from pyblocktracker.exceptions import BlockTrackerConfigError
from pyblocktracker.provider import BlockNumberProvider

_logger = logging.getLogger(__name__)


class BlockTracker:
    """Keeps track of a node's latest block number while anyone is listening.

    Subscribing to ``latest`` or ``sync`` starts a background poll loop on
    the running event loop; removing the last such listener stops it.  The
    last value stays cached for ``eviction_duration`` seconds afterwards.

    Usage::

        async with JsonRpcProvider(url) as provider, BlockTracker(provider) as tracker:
            tracker.subscribe("latest", print)
            number = await tracker.get_latest()

    Parameters
    ----------
    provider : BlockNumberProvider
        The query capability used to fetch the current block number.
    config : TrackerConfig or None
        Tracker options.  Keyword overrides are applied on top of it.
    """

    def __init__(
        self,
        provider: BlockNumberProvider | None,
        config: TrackerConfig | None = None,
        **overrides: Any,
    ) -> None:
        if provider is None:
            raise BlockTrackerConfigError("BlockTracker - no provider specified.")
        if config is None:
            config = TrackerConfig(**overrides)
        elif overrides:
            config = dataclasses.replace(config, **overrides)
        self._config = config
        self._provider = provider

        self._cache = BlockNumberCache()
        self._ledger = SubscriptionLedger(on_driving_change=self._on_driving_change)
        self._poll_loop = PollLoop(
            provider=provider,
            cache=self._cache,
            ledger=self._ledger,
            polling_interval=config.polling_interval,
            retry_timeout=config.effective_retry_timeout,
            skip_cache=config.bypass_cache_on_fetch,
        )
        self._controller = LifecycleController(
            cache=self._cache,
            ledger=self._ledger,
            poll_loop=self._poll_loop,
            eviction_duration=config.effective_eviction_duration,
            keep_process_alive=config.keep_process_alive,
        )
        self._gate = FetchGate(cache=self._cache, ledger=self._ledger, poll_loop=self._poll_loop)

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> BlockTracker:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.shutdown()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def config(self) -> TrackerConfig:
        return self._config

    @property
    def is_running(self) -> bool:
        """Whether the poll loop is currently running."""
        return self._controller.is_running

    @property
    def state(self) -> TrackerState:
        return self._controller.state

    def get_current(self) -> str | None:
        """The cached block number, or ``None`` if unknown or evicted. Never fetches."""
        return self._cache.value

    def get_tracked(self) -> TrackedValue | None:
        """The cached block number with its parsed value and update time."""
        return self._cache.read()

    # ------------------------------------------------------------------
    # On-demand fetches
    # ------------------------------------------------------------------

    async def get_latest(self, *, raise_on_error: bool = False) -> str:
        """Return the latest block number, waiting for a fetch if none is cached.

        While waiting the poll loop runs as if a ``latest`` listener had
        been added, and stops again once the value arrives.  Fetch failures
        are emitted as ``error`` events and the wait continues, unless
        *raise_on_error* is set, in which case the first failure is raised.
        """
        return await self._gate.get_latest(raise_on_error=raise_on_error)

    async def force_refresh(self) -> str:
        """Fetch the block number now, bypassing the cached value.

        Joins the poll loop's fetch if one is in flight.  Provider errors are
        raised to the caller and not emitted as ``error`` events on its
        behalf; a failed fetch shared with the running poll loop is still
        reported once by that loop's own iteration.
        """
        return await self._gate.force_refresh()

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, kind: str, listener: Listener, *, once: bool = False) -> ListenerHandle:
        """Register *listener* for *kind* and return a handle for removal.

        Must be called from a running event loop, since adding the first
        ``latest``/``sync`` listener starts the poll loop task.
        """
        return self._ledger.subscribe(kind, listener, once=once)

    def unsubscribe(self, kind: str, handle: ListenerHandle) -> bool:
        return self._ledger.unsubscribe(kind, handle)

    def unsubscribe_all(self, kind: str | None = None) -> None:
        self._ledger.unsubscribe_all(kind)

    def listener_count(self, kind: str) -> int:
        return self._ledger.listener_count(kind)

    def _on_driving_change(self, before: int, after: int) -> None:
        self._controller.on_driving_change(before, after)

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def shutdown(self) -> None:
        """Remove every listener and wait until the poll loop has fully stopped.

        A value cached while listeners existed stays available for one
        eviction window, as after an ordinary last unsubscribe.
        """
        _logger.debug("Shutting down block tracker")
        self._gate.cancel_waiters()
        self._ledger.unsubscribe_all()
        await self._controller.shutdown()

