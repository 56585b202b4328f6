from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from playwright.async_api import ElementHandle

from marionette.core.criteria import QueryMode, Rect, WaitCondition, WaitState
from marionette.core.polling import Clock, PollPolicy, Sleep, monotonic_ms, poll_until
from marionette.core.provider import is_visible, text_content

logger = logging.getLogger("marionette.waiter")


class WaitStatus(str, Enum):
    SATISFIED = "satisfied"
    CONFIRMED_HIDDEN = "confirmed_hidden"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class WaitOutcome:
    condition: WaitCondition
    status: WaitStatus
    element: Optional[ElementHandle] = None
    attempts: int = 0
    elapsed_ms: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status is not WaitStatus.TIMED_OUT


@dataclass
class StabilityState:
    last_rect: Rect | None = None
    stable_count: int = 0

    def observe(self, rect: Rect, epsilon: float) -> int:
        if self.last_rect is not None:
            if rect.moved_beyond(self.last_rect, epsilon):
                self.stable_count = 0
            else:
                self.stable_count += 1
        self.last_rect = rect
        return self.stable_count

    def reset(self) -> None:
        self.stable_count = 0


# Sentinel value for a satisfied HIDDEN wait; it never leaves this module.
_HIDDEN = object()


class ConditionWaiter:
    def __init__(
        self,
        provider: Any,
        policy: PollPolicy | None = None,
        clock: Clock = monotonic_ms,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._provider = provider
        self._policy = policy or PollPolicy(timeout_ms=30_000)
        self._clock = clock
        self._sleep = sleep

    async def wait_for(
        self,
        selector: str,
        query_mode: QueryMode = QueryMode.CSS,
        condition: WaitCondition | None = None,
        timeout_ms: int = 30_000,
        poll_interval_ms: int = 100,
    ) -> WaitOutcome:
        condition = condition or WaitCondition.visible()
        policy = PollPolicy(
            timeout_ms=timeout_ms,
            interval_ms=poll_interval_ms,
            fail_fast_on_invalid_query=self._policy.fail_fast_on_invalid_query,
            provider_failure_markers=self._policy.provider_failure_markers,
            invalid_query_markers=self._policy.invalid_query_markers,
        )
        stability = StabilityState()

        async def probe() -> tuple[bool, Any]:
            elements = await self._provider.query_all(selector, query_mode)
            if condition.state == WaitState.HIDDEN:
                return await self._check_hidden(elements)
            if condition.state == WaitState.PRESENT:
                return await self._check_present(elements, condition)
            if condition.state == WaitState.STABLE:
                return await self._check_stable(elements, condition, stability)
            return await self._check_visible(elements, condition)

        result = await poll_until(probe, policy, query=selector, clock=self._clock, sleep=self._sleep)

        if not result.satisfied:
            logger.info(
                f"[Waiter] Timed out waiting for '{selector}' to be {condition.state.value} "
                f"after {result.attempts} attempts"
            )
            return WaitOutcome(
                condition=condition,
                status=WaitStatus.TIMED_OUT,
                attempts=result.attempts,
                elapsed_ms=result.elapsed_ms,
            )

        if result.value is _HIDDEN:
            return WaitOutcome(
                condition=condition,
                status=WaitStatus.CONFIRMED_HIDDEN,
                attempts=result.attempts,
                elapsed_ms=result.elapsed_ms,
            )

        logger.debug(f"[Waiter] '{selector}' is {condition.state.value} after {result.elapsed_ms:.0f}ms")
        return WaitOutcome(
            condition=condition,
            status=WaitStatus.SATISFIED,
            element=result.value,
            attempts=result.attempts,
            elapsed_ms=result.elapsed_ms,
        )

    async def _check_hidden(self, elements: list[ElementHandle]) -> tuple[bool, Any]:
        for element in elements:
            if await is_visible(self._provider, element):
                return False, None
        return True, _HIDDEN

    async def _check_present(self, elements: list[ElementHandle], condition: WaitCondition) -> tuple[bool, Any]:
        if not elements:
            return False, None
        if condition.text is None:
            return True, elements[0]
        for element in elements:
            if condition.text_matches(await text_content(self._provider, element)):
                return True, element
        return False, None

    async def _check_visible(self, elements: list[ElementHandle], condition: WaitCondition) -> tuple[bool, Any]:
        for element in elements:
            if not await is_visible(self._provider, element):
                continue
            if condition.text is None:
                return True, element
            if condition.text_matches(await text_content(self._provider, element)):
                return True, element
        return False, None

    async def _check_stable(
        self,
        elements: list[ElementHandle],
        condition: WaitCondition,
        stability: StabilityState,
    ) -> tuple[bool, Any]:
        if not elements:
            return False, None
        element = elements[0]

        if condition.text is not None and not condition.text_matches(await text_content(self._provider, element)):
            stability.reset()
            return False, None

        rect = await self._provider.bounding_box(element)
        if rect is None:
            return False, None

        if stability.observe(rect, condition.epsilon) >= condition.stability_threshold:
            return True, element
        return False, None
