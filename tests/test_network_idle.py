"""
Tests for the network quiescence detector.
"""

import asyncio

import pytest

from marionette.core.network_idle import NetworkActivityCounter, NetworkIdleDetector


def make_detector(provider, clock) -> NetworkIdleDetector:
    return NetworkIdleDetector(provider, clock=clock, sleep=clock.sleep)


class TestNetworkActivityCounter:
    def test_start_and_settle_stamp_activity(self):
        counter = NetworkActivityCounter(inflight=0, last_activity_ms=0)

        counter.started(now_ms=100)
        counter.started(now_ms=150)
        counter.settled(now_ms=300)

        assert counter.inflight == 1
        assert counter.last_activity_ms == 300

    def test_inflight_never_negative(self):
        counter = NetworkActivityCounter(inflight=0, last_activity_ms=0)

        counter.settled(now_ms=50)

        assert counter.inflight == 0
        assert counter.last_activity_ms == 50

    def test_idle_predicate(self):
        counter = NetworkActivityCounter(inflight=1, last_activity_ms=1_000)

        assert counter.is_idle(1_500, idle_time_ms=500, max_inflight_requests=0) is False
        assert counter.is_idle(1_499, idle_time_ms=500, max_inflight_requests=1) is False
        assert counter.is_idle(1_500, idle_time_ms=500, max_inflight_requests=1) is True


@pytest.mark.asyncio
class TestWaitForNetworkIdle:
    """Tests for NetworkIdleDetector.wait_for_network_idle."""

    async def test_requests_finishing_then_quiet_period(self, provider, clock):
        """Two requests open at 0 and finish at 200; idle is declared at 700."""
        clock.schedule(0, lambda: provider.emit("request"))
        clock.schedule(0, lambda: provider.emit("request"))
        clock.schedule(200, lambda: provider.emit("requestfinished"))
        clock.schedule(200, lambda: provider.emit("requestfinished"))
        detector = make_detector(provider, clock)

        idle = await detector.wait_for_network_idle(timeout_ms=2_000, idle_time_ms=500, max_inflight_requests=0)

        assert idle is True
        assert clock.now_ms == 700
        assert provider.listener_count() == 0

    async def test_quiet_page_is_idle_after_idle_time(self, provider, clock):
        detector = make_detector(provider, clock)

        idle = await detector.wait_for_network_idle(idle_time_ms=500)

        assert idle is True
        assert clock.now_ms == 500

    async def test_request_that_never_finishes_times_out(self, provider, clock):
        clock.schedule(50, lambda: provider.emit("request"))
        detector = make_detector(provider, clock)

        idle = await detector.wait_for_network_idle(timeout_ms=1_000, idle_time_ms=500)

        assert idle is False
        assert clock.now_ms == 1_100
        assert provider.listener_count() == 0

    async def test_failed_request_counts_as_settled(self, provider, clock):
        clock.schedule(0, lambda: provider.emit("request"))
        clock.schedule(100, lambda: provider.emit("requestfailed"))
        detector = make_detector(provider, clock)

        idle = await detector.wait_for_network_idle(timeout_ms=2_000, idle_time_ms=300)

        assert idle is True
        assert clock.now_ms == 400

    async def test_allowed_inflight_requests(self, provider, clock):
        """A long-poll connection does not block idleness when one request is allowed."""
        clock.schedule(0, lambda: provider.emit("request"))
        detector = make_detector(provider, clock)

        idle = await detector.wait_for_network_idle(timeout_ms=2_000, idle_time_ms=500, max_inflight_requests=1)

        assert idle is True
        assert clock.now_ms == 500

    async def test_steady_traffic_never_idles(self, provider, clock):
        for at_ms in range(0, 3_000, 200):
            clock.schedule(at_ms, lambda: provider.emit("request"))
            clock.schedule(at_ms + 50, lambda: provider.emit("requestfinished"))
        detector = make_detector(provider, clock)

        idle = await detector.wait_for_network_idle(timeout_ms=2_000, idle_time_ms=500)

        assert idle is False

    async def test_listeners_removed_when_check_fails(self, provider, clock):
        async def broken_sleep(seconds: float) -> None:
            assert provider.listener_count() == 3
            raise RuntimeError("event loop is shutting down")

        detector = NetworkIdleDetector(provider, clock=clock, sleep=broken_sleep)

        with pytest.raises(RuntimeError):
            await detector.wait_for_network_idle()

        assert provider.listener_count() == 0

    async def test_repeated_calls_do_not_accumulate_listeners(self, provider, clock):
        detector = make_detector(provider, clock)

        for _ in range(3):
            await detector.wait_for_network_idle(idle_time_ms=100)

        assert provider.listener_count() == 0

    async def test_listeners_removed_when_cancelled(self, provider):
        never = asyncio.Event()

        async def blocking_sleep(seconds: float) -> None:
            await never.wait()

        detector = NetworkIdleDetector(provider, sleep=blocking_sleep)
        task = asyncio.ensure_future(detector.wait_for_network_idle())
        await asyncio.sleep(0)
        assert provider.listener_count() == 3

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert provider.listener_count() == 0
