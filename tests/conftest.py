"""
Shared fakes for engine tests.

FakeClock counts integer milliseconds; its sleep() advances time and fires
any events scheduled up to the new time, so polling loops run
deterministically without real waiting. FakeProvider answers the in-page
scripts from plain Python element records.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Union

import pytest

from marionette.core.criteria import QueryMode, Rect
from marionette.core.provider import (
    ATTRIBUTE_SCRIPT,
    DESCRIBE_SCRIPT,
    EDITABLE_SCRIPT,
    ELEMENT_INFO_SCRIPT,
    SELECT_BY_TEXT_SCRIPT,
    TAG_NAME_SCRIPT,
    TEXT_CONTENT_SCRIPT,
    VISIBILITY_SCRIPT,
)


class FakeClock:
    def __init__(self) -> None:
        self.now_ms = 0
        self.sleeps: list[float] = []
        self._scheduled: list[tuple[int, int, Callable[[], None]]] = []
        self._seq = 0

    def __call__(self) -> float:
        return float(self.now_ms)

    def schedule(self, at_ms: int, callback: Callable[[], None]) -> None:
        self._seq += 1
        self._scheduled.append((at_ms, self._seq, callback))
        self._scheduled.sort()

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        target = self.now_ms + round(seconds * 1000)
        while self._scheduled and self._scheduled[0][0] <= target:
            at_ms, _, callback = self._scheduled.pop(0)
            self.now_ms = max(self.now_ms, at_ms)
            callback()
        self.now_ms = target
        await asyncio.sleep(0)


RectSource = Union[Rect, None, Callable[[float], Optional[Rect]]]


@dataclass(eq=False)
class FakeElement:
    name: str
    tag: str = "div"
    text: Optional[str] = ""
    attrs: dict[str, str] = field(default_factory=dict)
    visible: bool = True
    rect: RectSource = None

    def __repr__(self) -> str:
        return f"FakeElement({self.name})"


class FakeProvider:
    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.queries: list[tuple[str, QueryMode]] = []
        self._results: dict[str, Any] = {}
        self._listeners: dict[str, list[Callable[[Any], None]]] = {
            "request": [],
            "requestfinished": [],
            "requestfailed": [],
        }

    def set(self, selector: str, result: Any) -> None:
        """``result`` is a list, an exception, or a callable of the current time."""
        self._results[selector] = result

    async def query_all(self, selector: str, mode: QueryMode = QueryMode.CSS) -> list[FakeElement]:
        self.queries.append((selector, mode))
        result = self._results.get(selector, [])
        if isinstance(result, BaseException):
            raise result
        if callable(result):
            result = result(self.clock())
            if isinstance(result, BaseException):
                raise result
        return list(result)

    async def evaluate(self, script: str, handle: FakeElement, arg: Any = None) -> Any:
        if script == VISIBILITY_SCRIPT:
            return handle.visible
        if script == TEXT_CONTENT_SCRIPT:
            return handle.text
        if script == TAG_NAME_SCRIPT:
            return handle.tag.upper()
        if script == ATTRIBUTE_SCRIPT:
            return handle.attrs.get(arg)
        if script == EDITABLE_SCRIPT:
            return handle.tag in ("input", "textarea")
        if script == DESCRIBE_SCRIPT:
            return {"tag": handle.tag, "id": handle.attrs.get("id", ""), "className": "", "text": handle.text or ""}
        if script == ELEMENT_INFO_SCRIPT:
            return {"tagName": handle.tag, "id": handle.attrs.get("id", ""), "textContent": handle.text or ""}
        if script == SELECT_BY_TEXT_SCRIPT:
            options = handle.attrs.get("options", "").split("|")
            return arg if arg in options else None
        raise AssertionError(f"Unexpected script: {script}")

    async def bounding_box(self, handle: FakeElement) -> Optional[Rect]:
        if callable(handle.rect):
            return handle.rect(self.clock())
        return handle.rect

    def _subscribe(self, event: str, callback: Callable[[Any], None]) -> Callable[[], None]:
        self._listeners[event].append(callback)

        def unsubscribe() -> None:
            self._listeners[event].remove(callback)

        return unsubscribe

    def on_request_started(self, callback: Callable[[Any], None]) -> Callable[[], None]:
        return self._subscribe("request", callback)

    def on_request_finished(self, callback: Callable[[Any], None]) -> Callable[[], None]:
        return self._subscribe("requestfinished", callback)

    def on_request_failed(self, callback: Callable[[Any], None]) -> Callable[[], None]:
        return self._subscribe("requestfailed", callback)

    def emit(self, event: str, request: Any = None) -> None:
        for callback in list(self._listeners[event]):
            callback(request)

    def listener_count(self) -> int:
        return sum(len(callbacks) for callbacks in self._listeners.values())


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def provider(clock: FakeClock) -> FakeProvider:
    return FakeProvider(clock)


@pytest.fixture
def make_element() -> Callable[..., FakeElement]:
    return FakeElement
