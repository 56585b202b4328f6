"""
Tests for the interaction simulator and its delay strategies.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock, call

from marionette.core.interaction import (
    HumanInteraction,
    NoDelayStrategy,
    RandomDelayStrategy,
    TimingProfile,
)


class SleepRecorder:
    def __init__(self) -> None:
        self.delays_ms: list[int] = []

    async def __call__(self, seconds: float) -> None:
        self.delays_ms.append(round(seconds * 1000))


@pytest.fixture
def page():
    page = MagicMock()
    page.keyboard = MagicMock()
    page.keyboard.type = AsyncMock()
    page.keyboard.press = AsyncMock()
    page.mouse = MagicMock()
    page.mouse.move = AsyncMock()
    return page


@pytest.fixture
def handle():
    handle = MagicMock()
    handle.focus = AsyncMock()
    handle.click = AsyncMock()
    handle.hover = AsyncMock()
    handle.bounding_box = AsyncMock(return_value={"x": 100, "y": 200, "width": 40, "height": 20})
    return handle


class TestRandomDelayStrategy:
    def test_same_seed_same_sequence(self):
        a = RandomDelayStrategy(seed=7)
        b = RandomDelayStrategy(seed=7)

        assert [a.delay_ms((50, 150)) for _ in range(20)] == [b.delay_ms((50, 150)) for _ in range(20)]

    def test_delays_stay_in_range(self):
        strategy = RandomDelayStrategy(seed=1)

        draws = [strategy.delay_ms((200, 700)) for _ in range(500)]

        assert min(draws) >= 200
        assert max(draws) <= 700

    def test_degenerate_range(self):
        strategy = RandomDelayStrategy(seed=1)

        assert strategy.delay_ms((1000, 1000)) == 1000

    def test_chance_extremes(self):
        strategy = RandomDelayStrategy(seed=3)

        assert not any(strategy.chance(0.0) for _ in range(100))
        assert all(strategy.chance(1.0) for _ in range(100))

    def test_offset_bounded(self):
        strategy = RandomDelayStrategy(seed=3)

        assert all(abs(strategy.offset(3.0)) <= 3.0 for _ in range(200))


@pytest.mark.asyncio
class TestHumanInteraction:
    """Tests for HumanInteraction."""

    async def test_type_text_clears_and_types_each_character(self, page, handle):
        sleep = SleepRecorder()
        interaction = HumanInteraction(page, strategy=RandomDelayStrategy(seed=11), sleep=sleep)

        await interaction.type_text(handle, "hello")

        handle.focus.assert_awaited_once()
        handle.click.assert_awaited_once_with(click_count=3)
        page.keyboard.press.assert_awaited_once_with("Backspace")
        typed = [c.args[0] for c in page.keyboard.type.await_args_list]
        assert typed == list("hello")
        for c in page.keyboard.type.await_args_list:
            assert 50 <= c.kwargs["delay"] <= 150
        assert 200 <= sleep.delays_ms[-1] <= 500

    async def test_type_text_with_fixed_delay_and_no_clear(self, page, handle):
        interaction = HumanInteraction(page, strategy=NoDelayStrategy(), sleep=SleepRecorder())

        await interaction.type_text(handle, "ab", clear_first=False, delay_ms=25)

        handle.click.assert_not_awaited()
        assert page.keyboard.type.await_args_list == [call("a", delay=25), call("b", delay=25)]

    async def test_occasional_long_pauses(self, page, handle):
        sleep = SleepRecorder()
        profile = TimingProfile(long_pause_probability=1.0, post_typing_ms=(0, 0))
        interaction = HumanInteraction(page, strategy=RandomDelayStrategy(seed=5), profile=profile, sleep=sleep)

        await interaction.type_text(handle, "abc", clear_first=False)

        assert len(sleep.delays_ms) == 3
        assert all(100 <= delay <= 400 for delay in sleep.delays_ms)

    async def test_click_waits_before_pressing(self, page, handle):
        sleep = SleepRecorder()
        interaction = HumanInteraction(page, strategy=RandomDelayStrategy(seed=2), sleep=sleep)

        await interaction.click(handle, button="right", click_count=2)

        assert len(sleep.delays_ms) == 1
        assert 200 <= sleep.delays_ms[0] <= 700
        kwargs = handle.click.await_args.kwargs
        assert kwargs["button"] == "right"
        assert kwargs["click_count"] == 2
        assert 50 <= kwargs["delay"] <= 150

    async def test_hover_moves_near_center(self, page, handle):
        interaction = HumanInteraction(page, strategy=RandomDelayStrategy(seed=9), sleep=SleepRecorder())

        await interaction.hover(handle)

        x, y = page.mouse.move.await_args.args
        assert abs(x - 120) <= 3
        assert abs(y - 210) <= 3
        assert page.mouse.move.await_args.kwargs["steps"] == 10
        handle.hover.assert_not_awaited()

    async def test_hover_without_box_falls_back(self, page, handle):
        handle.bounding_box = AsyncMock(return_value=None)
        interaction = HumanInteraction(page, strategy=NoDelayStrategy(), sleep=SleepRecorder())

        await interaction.hover(handle)

        handle.hover.assert_awaited_once()
        page.mouse.move.assert_not_awaited()

    async def test_no_delay_strategy_never_sleeps(self, page, handle):
        sleep = SleepRecorder()
        interaction = HumanInteraction(page, strategy=NoDelayStrategy(), sleep=sleep)

        await interaction.type_text(handle, "text")
        await interaction.click(handle)
        await interaction.pause_after_navigation()

        assert sleep.delays_ms == []

    async def test_navigation_pause_range(self, page):
        sleep = SleepRecorder()
        interaction = HumanInteraction(page, strategy=RandomDelayStrategy(seed=4), sleep=sleep)

        waited = await interaction.pause_after_navigation()

        assert 500 <= waited <= 1500
        assert sleep.delays_ms == [waited]
