"""Subscription ledger: listeners per event kind and their dispatch.

Owns:
- the ordered listener set of every event kind
- reporting driving-count transitions (``latest`` + ``sync``) to the
  lifecycle controller, synchronously, on every add/remove
- delivering events, with listener failures re-raised out-of-band on the
  event loop's exception handler
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from itertools import count
from typing import Any

from pyblocktracker.events import DRIVING_EVENTS

_logger = logging.getLogger(__name__)

Listener = Callable[[Any], Any]

_handle_ids = count(1)


def _require_loop() -> None:
    # Driving-count changes start or stop the poll task; fail before
    # touching any state when there is no loop to do that on.
    asyncio.get_running_loop()


@dataclass(slots=True, eq=False)
class ListenerHandle:
    """A registered listener.

    Handles compare by identity, so the same callback can be registered
    several times and each registration removed on its own.
    """

    kind: str
    listener: Listener
    once: bool = False
    id: int = field(default_factory=lambda: next(_handle_ids))


class SubscriptionLedger:
    def __init__(self, *, on_driving_change: Callable[[int, int], None]) -> None:
        self._on_driving_change = on_driving_change
        self._listeners: dict[str, list[ListenerHandle]] = {}
        self._pending: set[asyncio.Future[Any]] = set()

    def listener_count(self, kind: str) -> int:
        return len(self._listeners.get(kind, ()))

    def driving_count(self) -> int:
        return sum(self.listener_count(kind) for kind in DRIVING_EVENTS)

    def subscribe(self, kind: str, listener: Listener, *, once: bool = False) -> ListenerHandle:
        if not callable(listener):
            raise TypeError(f"listener must be callable, got {type(listener).__name__}")
        handle = ListenerHandle(kind=str(kind), listener=listener, once=once)
        if handle.kind in DRIVING_EVENTS:
            _require_loop()
        before = self.driving_count()
        self._listeners.setdefault(handle.kind, []).append(handle)
        if handle.kind in DRIVING_EVENTS:
            self._on_driving_change(before, before + 1)
        return handle

    def unsubscribe(self, kind: str, handle: ListenerHandle) -> bool:
        """Remove *handle*; return ``False`` if it was not registered."""
        handles = self._listeners.get(str(kind))
        if not handles or handle not in handles:
            return False
        if handle.kind in DRIVING_EVENTS:
            _require_loop()
        before = self.driving_count()
        handles.remove(handle)
        if not handles:
            del self._listeners[handle.kind]
        if handle.kind in DRIVING_EVENTS:
            self._on_driving_change(before, before - 1)
        return True

    def unsubscribe_all(self, kind: str | None = None) -> None:
        """Remove every listener of *kind*, or of every kind.

        Triggers a single driving-count evaluation however many kinds
        were cleared.
        """
        before = self.driving_count()
        cleared = DRIVING_EVENTS if kind is None else {str(kind)} & DRIVING_EVENTS
        if any(self.listener_count(name) for name in cleared):
            _require_loop()
        if kind is None:
            self._listeners.clear()
        else:
            self._listeners.pop(str(kind), None)
        after = self.driving_count()
        if before != after:
            self._on_driving_change(before, after)

    def emit(self, kind: str, payload: Any = None) -> bool:
        """Deliver *payload* to every listener of *kind*.

        Returns ``True`` if at least one listener was registered.  A
        listener that raises never interrupts delivery to the others.
        """
        handles = list(self._listeners.get(str(kind), ()))
        for handle in handles:
            if handle.once:
                # Same removal path as a manual unsubscribe.
                self.unsubscribe(handle.kind, handle)
            self._invoke(handle, payload)
        return bool(handles)

    def _invoke(self, handle: ListenerHandle, payload: Any) -> None:
        try:
            result = handle.listener(payload)
        except Exception as exc:
            self._report(handle, exc)
            return
        if inspect.isawaitable(result):
            future = asyncio.ensure_future(result)
            self._pending.add(future)
            future.add_done_callback(lambda fut: self._listener_done(handle, fut))

    def _listener_done(self, handle: ListenerHandle, future: asyncio.Future[Any]) -> None:
        self._pending.discard(future)
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            self._report(handle, exc)

    def _report(self, handle: ListenerHandle, exc: BaseException) -> None:
        """Re-raise a listener failure on the next tick of the event loop."""
        _logger.debug("Listener for %r raised", handle.kind, exc_info=exc)
        loop = asyncio.get_running_loop()
        loop.call_soon(
            loop.call_exception_handler,
            {
                "message": f"Unhandled exception in block tracker {handle.kind!r} listener",
                "exception": exc,
            },
        )
