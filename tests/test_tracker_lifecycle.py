from __future__ import annotations

import asyncio
import logging
from typing import Any

import pytest

from pyblocktracker import BlockFetchError, BlockTracker, BlockTrackerConfigError, SyncEvent, TrackerEvent


class _FakeProvider:
    """Returns the queued responses in order, repeating the last one forever."""

    def __init__(self, *responses: str | BaseException, delay: float = 0.0) -> None:
        self._responses = list(responses)
        self._delay = delay
        self.calls: list[bool] = []

    async def fetch_block_number(self, *, skip_cache: bool = False) -> str:
        self.calls.append(skip_cache)
        await asyncio.sleep(self._delay)
        item = self._responses.pop(0) if len(self._responses) > 1 else self._responses[0]
        if isinstance(item, BaseException):
            raise item
        return item


async def _next_event(tracker: BlockTracker, kind: str, timeout: float = 2.0) -> Any:
    future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
    handle = tracker.subscribe(kind, lambda value: future.done() or future.set_result(value))
    try:
        return await asyncio.wait_for(future, timeout)
    finally:
        tracker.unsubscribe(kind, handle)


def test_constructor_requires_provider() -> None:
    with pytest.raises(BlockTrackerConfigError, match="no provider specified"):
        BlockTracker(None)


@pytest.mark.asyncio
async def test_new_tracker_is_not_running() -> None:
    async with BlockTracker(_FakeProvider("0x0")) as tracker:
        assert tracker.is_running is False
        assert tracker.get_current() is None


@pytest.mark.asyncio
async def test_latest_listener_starts_tracker_and_is_called_periodically() -> None:
    provider = _FakeProvider("0x0", "0x1")
    received: list[tuple[str, float]] = []
    done = asyncio.Event()
    loop = asyncio.get_running_loop()

    def on_latest(value: str) -> None:
        received.append((value, loop.time()))
        if len(received) == 2:
            done.set()

    async with BlockTracker(provider, polling_interval=0.1) as tracker:
        tracker.subscribe("latest", on_latest)
        assert tracker.is_running is True

        await asyncio.wait_for(done.wait(), 2.0)

    assert [value for value, _ in received] == ["0x0", "0x1"]
    assert received[1][1] - received[0][1] >= 0.09


@pytest.mark.asyncio
async def test_sync_is_emitted_before_latest() -> None:
    provider = _FakeProvider("0x0", "0x1")
    events: list[tuple[str, Any]] = []
    done = asyncio.Event()

    async with BlockTracker(provider, polling_interval=0.02) as tracker:
        tracker.subscribe("sync", lambda payload: events.append(("sync", payload)))

        def on_latest(value: str) -> None:
            events.append(("latest", value))
            if value == "0x1":
                done.set()

        tracker.subscribe("latest", on_latest)
        await asyncio.wait_for(done.wait(), 2.0)

    assert events == [
        ("sync", SyncEvent(old_value=None, new_value="0x0")),
        ("latest", "0x0"),
        ("sync", SyncEvent(old_value="0x0", new_value="0x1")),
        ("latest", "0x1"),
    ]


@pytest.mark.asyncio
async def test_smaller_block_number_is_ignored() -> None:
    provider = _FakeProvider("0x2", "0x1", "0x3")
    received: list[str] = []
    done = asyncio.Event()

    def on_latest(value: str) -> None:
        received.append(value)
        if value == "0x3":
            done.set()

    async with BlockTracker(provider, polling_interval=0.02) as tracker:
        tracker.subscribe("latest", on_latest)
        await asyncio.wait_for(done.wait(), 2.0)
        assert tracker.get_current() == "0x3"

    assert received == ["0x2", "0x3"]
    assert len(provider.calls) >= 3


@pytest.mark.asyncio
async def test_other_events_do_not_start_tracker() -> None:
    async with BlockTracker(_FakeProvider("0x0"), polling_interval=0.02) as tracker:
        tracker.subscribe("error", lambda _error: None)
        tracker.subscribe("somethingElse", lambda _value: None)
        assert tracker.is_running is False

        await asyncio.sleep(0.05)
        assert tracker.get_current() is None


@pytest.mark.asyncio
async def test_removing_last_driving_listener_stops_tracker() -> None:
    async with BlockTracker(_FakeProvider("0x0"), polling_interval=0.05) as tracker:
        latest = tracker.subscribe("latest", lambda _value: None)
        sync = tracker.subscribe("sync", lambda _payload: None)
        other = tracker.subscribe("somethingElse", lambda _value: None)

        tracker.unsubscribe("latest", latest)
        assert tracker.is_running is True
        tracker.unsubscribe("somethingElse", other)
        assert tracker.is_running is True
        tracker.unsubscribe("sync", sync)
        assert tracker.is_running is False


@pytest.mark.asyncio
async def test_unsubscribe_all_stops_tracker() -> None:
    async with BlockTracker(_FakeProvider("0x0"), polling_interval=0.05) as tracker:
        tracker.subscribe("latest", lambda _value: None)
        tracker.subscribe("sync", lambda _payload: None)

        tracker.unsubscribe_all("latest")
        assert tracker.is_running is True
        tracker.unsubscribe_all()
        assert tracker.is_running is False


def test_driving_subscribe_outside_event_loop_leaves_tracker_untouched() -> None:
    tracker = BlockTracker(_FakeProvider("0x0"), polling_interval=0.05)

    with pytest.raises(RuntimeError):
        tracker.subscribe("latest", lambda _value: None)

    assert tracker.is_running is False
    assert tracker.listener_count("latest") == 0

    # Non-driving kinds never need the loop.
    tracker.subscribe("error", lambda _error: None)
    tracker.unsubscribe_all("error")

    async def first_block() -> Any:
        try:
            return await _next_event(tracker, "latest")
        finally:
            await tracker.shutdown()

    assert asyncio.run(first_block()) == "0x0"


@pytest.mark.asyncio
async def test_restart_during_fetch_retires_previous_loop() -> None:
    provider = _FakeProvider("0x1", "0x2", delay=0.05)
    retired: list[str] = []
    received: list[str] = []
    done = asyncio.Event()

    def on_latest(value: str) -> None:
        received.append(value)
        if value == "0x2":
            done.set()

    async with BlockTracker(provider, polling_interval=0.1) as tracker:
        handle = tracker.subscribe("latest", retired.append)
        await asyncio.sleep(0.02)
        assert tracker._poll_loop.fetch_in_flight  # type: ignore[attr-defined]

        tracker.unsubscribe("latest", handle)
        tracker.subscribe("latest", on_latest)
        await asyncio.wait_for(done.wait(), 2.0)

        assert len(tracker._controller._tasks) == 1  # type: ignore[attr-defined]

    assert retired == []
    assert received == ["0x1", "0x2"]


@pytest.mark.asyncio
async def test_restart_during_sleep_retires_previous_loop() -> None:
    provider = _FakeProvider("0x1", "0x2", "0x3")
    received: list[str] = []
    done = asyncio.Event()

    def on_latest(value: str) -> None:
        received.append(value)
        if value == "0x3":
            done.set()

    async with BlockTracker(provider, polling_interval=0.1) as tracker:
        handle = tracker.subscribe("latest", received.append)
        await _next_event(tracker, TrackerEvent.WAITING_FOR_NEXT_ITERATION)

        tracker.unsubscribe("latest", handle)
        tracker.subscribe("latest", on_latest)
        await asyncio.wait_for(done.wait(), 2.0)
        await asyncio.sleep(0)

        assert len(tracker._controller._tasks) == 1  # type: ignore[attr-defined]

    assert received == ["0x1", "0x2", "0x3"]


@pytest.mark.asyncio
async def test_cached_value_is_evicted_after_last_listener_leaves() -> None:
    async with BlockTracker(_FakeProvider("0x0"), polling_interval=0.1, eviction_duration=0.3) as tracker:
        handle = tracker.subscribe("latest", lambda _value: None)
        await _next_event(tracker, TrackerEvent.WAITING_FOR_NEXT_ITERATION)
        assert tracker.get_current() == "0x0"

        tracker.unsubscribe("latest", handle)
        await asyncio.sleep(0.15)
        assert tracker.get_current() == "0x0"

        await asyncio.sleep(0.3)
        assert tracker.get_current() is None


@pytest.mark.asyncio
async def test_new_listener_cancels_pending_eviction() -> None:
    async with BlockTracker(_FakeProvider("0x0"), polling_interval=0.05, eviction_duration=0.1) as tracker:
        handle = tracker.subscribe("sync", lambda _payload: None)
        await _next_event(tracker, TrackerEvent.WAITING_FOR_NEXT_ITERATION)

        tracker.unsubscribe("sync", handle)
        tracker.subscribe("latest", lambda _value: None)

        await asyncio.sleep(0.25)
        assert tracker.is_running is True
        assert tracker.get_current() == "0x0"


@pytest.mark.asyncio
async def test_zero_eviction_duration_keeps_value_forever() -> None:
    async with BlockTracker(_FakeProvider("0x0"), polling_interval=0.02, eviction_duration=0) as tracker:
        handle = tracker.subscribe("latest", lambda _value: None)
        await _next_event(tracker, TrackerEvent.WAITING_FOR_NEXT_ITERATION)
        tracker.unsubscribe("latest", handle)

        await asyncio.sleep(0.1)
        assert tracker.get_current() == "0x0"


@pytest.mark.asyncio
async def test_once_listener_starts_and_stops_tracker() -> None:
    received: list[str] = []

    async with BlockTracker(_FakeProvider("0x0"), polling_interval=0.05, eviction_duration=0.1) as tracker:
        ended = asyncio.Event()
        tracker.subscribe(TrackerEvent.ENDED, lambda _payload: ended.set())
        tracker.subscribe("latest", received.append, once=True)
        assert tracker.is_running is True

        await asyncio.wait_for(ended.wait(), 2.0)
        assert tracker.is_running is False
        assert tracker.listener_count("latest") == 0
        assert tracker.get_current() == "0x0"

        await asyncio.sleep(0.2)
        assert tracker.get_current() is None

    assert received == ["0x0"]


@pytest.mark.asyncio
async def test_fetch_error_is_emitted_and_loop_retries_after_retry_timeout() -> None:
    cause = RuntimeError("node unreachable")
    provider = _FakeProvider(cause, "0x5")
    errors: list[Any] = []

    async with BlockTracker(provider, polling_interval=10.0, retry_timeout=0.05) as tracker:
        tracker.subscribe("error", errors.append)
        tracker.subscribe("latest", lambda _value: None)

        value = await _next_event(tracker, "latest", timeout=1.0)
        assert value == "0x5"
        assert tracker.is_running is True

    assert len(errors) == 1
    assert isinstance(errors[0], BlockFetchError)
    assert errors[0].__cause__ is cause
    assert "encountered an error while attempting to update latest block" in str(errors[0])
    assert "node unreachable" in str(errors[0])


@pytest.mark.asyncio
async def test_invalid_block_number_is_treated_as_fetch_error() -> None:
    provider = _FakeProvider("not-a-number", "0x1")
    errors: list[Any] = []

    async with BlockTracker(provider, polling_interval=10.0, retry_timeout=0.02) as tracker:
        tracker.subscribe("error", errors.append)
        tracker.subscribe("latest", lambda _value: None)
        assert await _next_event(tracker, "latest") == "0x1"

    assert len(errors) == 1
    assert isinstance(errors[0].__cause__, ValueError)


@pytest.mark.asyncio
async def test_unobserved_fetch_error_is_logged(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.WARNING, logger="pyblocktracker")
    provider = _FakeProvider(RuntimeError("boom"), "0x1")

    async with BlockTracker(provider, polling_interval=10.0, retry_timeout=0.02) as tracker:
        tracker.subscribe("latest", lambda _value: None)
        await _next_event(tracker, "latest")

    assert "Block fetch failed" in caplog.text
    assert "boom" in caplog.text


@pytest.mark.asyncio
async def test_listener_error_is_reraised_out_of_band() -> None:
    loop = asyncio.get_running_loop()
    contexts: list[dict[str, Any]] = []
    previous_handler = loop.get_exception_handler()
    loop.set_exception_handler(lambda _loop, context: contexts.append(context))

    def failing_listener(_value: str) -> None:
        raise ValueError("listener bug")

    try:
        async with BlockTracker(_FakeProvider("0x0"), polling_interval=0.05) as tracker:
            tracker.subscribe("latest", failing_listener)
            assert await _next_event(tracker, "latest") == "0x0"

            await asyncio.sleep(0.01)
            assert tracker.is_running is True
    finally:
        loop.set_exception_handler(previous_handler)

    assert len(contexts) == 1
    assert isinstance(contexts[0]["exception"], ValueError)


@pytest.mark.asyncio
async def test_coroutine_listener_is_awaited() -> None:
    received: list[str] = []
    done = asyncio.Event()

    async def on_latest(value: str) -> None:
        await asyncio.sleep(0)
        received.append(value)
        done.set()

    async with BlockTracker(_FakeProvider("0x0"), polling_interval=0.05) as tracker:
        tracker.subscribe("latest", on_latest)
        await asyncio.wait_for(done.wait(), 2.0)

    assert received == ["0x0"]


@pytest.mark.asyncio
async def test_bypass_cache_flag_is_passed_to_provider() -> None:
    provider = _FakeProvider("0x0")

    async with BlockTracker(provider, polling_interval=0.05, bypass_cache_on_fetch=True) as tracker:
        tracker.subscribe("latest", lambda _value: None)
        await _next_event(tracker, "_waiting_for_next_iteration")

    assert provider.calls
    assert all(provider.calls)


@pytest.mark.asyncio
async def test_shutdown_stops_tracker_without_clearing_cache() -> None:
    tracker = BlockTracker(_FakeProvider("0x0"), polling_interval=0.1, eviction_duration=0.2)
    tracker.subscribe("latest", lambda _value: None)
    tracker.subscribe("sync", lambda _payload: None)
    await _next_event(tracker, TrackerEvent.WAITING_FOR_NEXT_ITERATION)

    await tracker.shutdown()

    assert tracker.is_running is False
    assert tracker.listener_count("latest") == 0
    assert not tracker._controller._tasks  # type: ignore[attr-defined]
    assert tracker.get_current() == "0x0"

    await asyncio.sleep(0.3)
    assert tracker.get_current() is None


@pytest.mark.asyncio
async def test_stopped_loop_finishes_its_sleep_when_keeping_process_alive() -> None:
    tracker = BlockTracker(_FakeProvider("0x0"), polling_interval=10.0, keep_process_alive=True)
    handle = tracker.subscribe("latest", lambda _value: None)
    await _next_event(tracker, TrackerEvent.WAITING_FOR_NEXT_ITERATION)
    await asyncio.sleep(0.01)

    tracker.unsubscribe("latest", handle)
    await asyncio.sleep(0.05)
    assert tracker._controller._tasks  # type: ignore[attr-defined]

    # Shutdown still wakes the sleeping loop instead of waiting it out.
    await asyncio.wait_for(tracker.shutdown(), 1.0)
    assert not tracker._controller._tasks  # type: ignore[attr-defined]


@pytest.mark.asyncio
async def test_stopped_loop_releases_its_sleep_when_not_keeping_process_alive() -> None:
    tracker = BlockTracker(_FakeProvider("0x0"), polling_interval=10.0, keep_process_alive=False)
    handle = tracker.subscribe("latest", lambda _value: None)
    await _next_event(tracker, TrackerEvent.WAITING_FOR_NEXT_ITERATION)
    await asyncio.sleep(0.01)

    tracker.unsubscribe("latest", handle)
    await asyncio.sleep(0.05)
    assert not tracker._controller._tasks  # type: ignore[attr-defined]
    await tracker.shutdown()
