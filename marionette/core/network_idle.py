from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from marionette.core.polling import Clock, Sleep, monotonic_ms
from marionette.core.provider import Unsubscribe

logger = logging.getLogger("marionette.network_idle")


@dataclass
class NetworkActivityCounter:
    inflight: int
    last_activity_ms: float

    def started(self, now_ms: float) -> None:
        self.inflight += 1
        self.last_activity_ms = now_ms

    def settled(self, now_ms: float) -> None:
        # Requests that began before subscribing still count as activity.
        self.inflight = max(0, self.inflight - 1)
        self.last_activity_ms = now_ms

    def is_idle(self, now_ms: float, idle_time_ms: int, max_inflight_requests: int) -> bool:
        return self.inflight <= max_inflight_requests and now_ms - self.last_activity_ms >= idle_time_ms


class NetworkIdleDetector:
    """Declares the network idle by reconciling request events with a periodic check.

    Request listeners exist only for the duration of one
    :meth:`wait_for_network_idle` call and are removed on every exit path,
    since the page they are attached to outlives the call.
    """

    CHECK_INTERVAL_MS = 100

    def __init__(
        self,
        provider: Any,
        clock: Clock = monotonic_ms,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._provider = provider
        self._clock = clock
        self._sleep = sleep

    async def wait_for_network_idle(
        self,
        timeout_ms: int = 30_000,
        idle_time_ms: int = 500,
        max_inflight_requests: int = 0,
    ) -> bool:
        start = self._clock()
        counter = NetworkActivityCounter(inflight=0, last_activity_ms=start)

        def on_started(_request: Any) -> None:
            counter.started(self._clock())

        def on_settled(_request: Any) -> None:
            counter.settled(self._clock())

        unsubscribers: list[Unsubscribe] = []
        try:
            unsubscribers.append(self._provider.on_request_started(on_started))
            unsubscribers.append(self._provider.on_request_finished(on_settled))
            unsubscribers.append(self._provider.on_request_failed(on_settled))

            while True:
                await self._sleep(self.CHECK_INTERVAL_MS / 1000.0)
                now = self._clock()
                if now - start > timeout_ms:
                    logger.info(
                        f"[NetworkIdle] Timed out after {timeout_ms}ms with {counter.inflight} request(s) in flight"
                    )
                    return False
                if counter.is_idle(now, idle_time_ms, max_inflight_requests):
                    logger.debug(f"[NetworkIdle] Idle after {now - start:.0f}ms")
                    return True
        finally:
            for unsubscribe in unsubscribers:
                unsubscribe()
