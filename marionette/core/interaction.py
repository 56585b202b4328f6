from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass

from playwright.async_api import ElementHandle, Page

from marionette.core.criteria import Rect
from marionette.core.polling import Sleep

logger = logging.getLogger("marionette.interaction")


@dataclass(frozen=True)
class TimingProfile:
    """Delay ranges in milliseconds, inclusive on both ends."""

    keystroke_ms: tuple[int, int] = (50, 150)
    long_pause_probability: float = 0.05
    long_pause_ms: tuple[int, int] = (100, 400)
    post_typing_ms: tuple[int, int] = (200, 500)
    pre_click_ms: tuple[int, int] = (200, 700)
    click_hold_ms: tuple[int, int] = (50, 150)
    pre_hover_ms: tuple[int, int] = (50, 250)
    hover_jitter_px: float = 3.0
    mouse_steps: int = 10
    post_navigation_ms: tuple[int, int] = (500, 1500)
    post_submit_ms: tuple[int, int] = (1000, 1000)


class DelayStrategy:
    def delay_ms(self, bounds: tuple[int, int]) -> int:
        raise NotImplementedError

    def chance(self, probability: float) -> bool:
        raise NotImplementedError

    def offset(self, magnitude: float) -> float:
        raise NotImplementedError


class NoDelayStrategy(DelayStrategy):
    def delay_ms(self, bounds: tuple[int, int]) -> int:
        return 0

    def chance(self, probability: float) -> bool:
        return False

    def offset(self, magnitude: float) -> float:
        return 0.0


class RandomDelayStrategy(DelayStrategy):
    def __init__(self, seed: int | None = None) -> None:
        self._rng = random.Random(seed)

    def delay_ms(self, bounds: tuple[int, int]) -> int:
        low, high = bounds
        if high <= low:
            return max(0, low)
        return self._rng.randint(low, high)

    def chance(self, probability: float) -> bool:
        if probability <= 0.0:
            return False
        return self._rng.random() < probability

    def offset(self, magnitude: float) -> float:
        return self._rng.uniform(-magnitude, magnitude)


class HumanInteraction:
    """Wraps primitive page actions with human-like timing.

    Has no retry logic of its own: it acts on handles that the resolver
    already found.
    """

    def __init__(
        self,
        page: Page,
        strategy: DelayStrategy | None = None,
        profile: TimingProfile | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._page = page
        self._strategy = strategy or RandomDelayStrategy()
        self._profile = profile or TimingProfile()
        self._sleep = sleep

    @property
    def profile(self) -> TimingProfile:
        return self._profile

    async def _pause(self, bounds: tuple[int, int]) -> int:
        delay_ms = self._strategy.delay_ms(bounds)
        if delay_ms > 0:
            await self._sleep(delay_ms / 1000.0)
        return delay_ms

    async def type_text(
        self,
        handle: ElementHandle,
        text: str,
        clear_first: bool = True,
        delay_ms: int | None = None,
    ) -> None:
        await handle.focus()

        if clear_first:
            await handle.click(click_count=3)
            await self._page.keyboard.press("Backspace")

        for char in text:
            keystroke_ms = delay_ms if delay_ms is not None else self._strategy.delay_ms(self._profile.keystroke_ms)
            await self._page.keyboard.type(char, delay=keystroke_ms)
            if self._strategy.chance(self._profile.long_pause_probability):
                await self._pause(self._profile.long_pause_ms)

        await self._pause(self._profile.post_typing_ms)

    async def click(
        self,
        handle: ElementHandle,
        button: str = "left",
        click_count: int = 1,
        delay_ms: int | None = None,
    ) -> None:
        await self._pause(self._profile.pre_click_ms)
        hold_ms = delay_ms if delay_ms is not None else self._strategy.delay_ms(self._profile.click_hold_ms)
        logger.debug(f"[Interaction] {button} click x{click_count}, hold {hold_ms}ms")
        await handle.click(button=button, click_count=click_count, delay=hold_ms)

    async def hover(self, handle: ElementHandle) -> None:
        await self._pause(self._profile.pre_hover_ms)
        box = await handle.bounding_box()
        if not box:
            await handle.hover()
            return

        center_x, center_y = Rect.from_box(box).center
        jitter = self._profile.hover_jitter_px
        await self._page.mouse.move(
            center_x + self._strategy.offset(jitter),
            center_y + self._strategy.offset(jitter),
            steps=self._profile.mouse_steps,
        )

    async def pause_after_navigation(self) -> int:
        return await self._pause(self._profile.post_navigation_ms)

    async def pause_after_submit(self) -> int:
        return await self._pause(self._profile.post_submit_ms)
