"""
Tool handlers.

Each handler turns one tool call into engine calls on the shared
BrowserSession and renders the outcome as MCP content. Lookup failures and
timeouts come back as error results rather than exceptions, so one failed
call never takes the session down.
"""

from __future__ import annotations

import base64
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from mcp.types import ImageContent, TextContent
from playwright.async_api import ElementHandle

from marionette.core.criteria import Criteria, PositionFilter, QueryMode, TextFilter, WaitCondition
from marionette.core.provider import (
    ELEMENT_INFO_SCRIPT,
    SELECT_BY_TEXT_SCRIPT,
    describe_element,
    is_editable,
    tag_name,
)
from marionette.core.session import BrowserSession
from marionette.core.waiter import WaitStatus

logger = logging.getLogger("marionette.tools")

Content = TextContent | ImageContent

# Puppeteer-style wait names are accepted alongside Playwright's own.
NAVIGATION_WAIT_STATES = {
    "load": "load",
    "domcontentloaded": "domcontentloaded",
    "commit": "commit",
    "networkidle": "networkidle",
    "networkidle0": "networkidle",
    "networkidle2": "networkidle",
}

MOUSE_BUTTONS = ("left", "right", "middle")


@dataclass
class ToolResult:
    content: list[Content] = field(default_factory=list)
    is_error: bool = False

    @classmethod
    def text(cls, text: str, is_error: bool = False) -> "ToolResult":
        return cls(content=[TextContent(type="text", text=text)], is_error=is_error)

    @classmethod
    def error(cls, text: str) -> "ToolResult":
        return cls.text(text, is_error=True)

    @property
    def first_text(self) -> str:
        for item in self.content:
            if isinstance(item, TextContent):
                return item.text
        return ""


class ToolHandlers:
    def __init__(
        self,
        session: BrowserSession,
        on_resources_changed: Optional[Callable[[], Awaitable[None]]] = None,
    ) -> None:
        self._session = session
        self._on_resources_changed = on_resources_changed
        self._handlers: dict[str, Callable[[dict[str, Any]], Awaitable[ToolResult]]] = {
            "browser_navigate": self.navigate,
            "browser_screenshot": self.screenshot,
            "browser_click": self.click,
            "browser_fill": self.fill,
            "browser_select": self.select,
            "browser_hover": self.hover,
            "browser_wait_for_element": self.wait_for_element,
            "browser_wait_for_network_idle": self.wait_for_network_idle,
            "browser_find_element": self.find_element,
            "browser_evaluate": self.evaluate,
        }

    @property
    def names(self) -> list[str]:
        return list(self._handlers)

    async def call(self, name: str, arguments: dict[str, Any] | None) -> ToolResult:
        handler = self._handlers.get(name)
        if handler is None:
            return ToolResult.error(f"Unknown tool: {name}")

        try:
            await self._session.ensure_page()
            return await handler(arguments or {})
        except Exception as exc:
            logger.exception(f"[Tools] Error in tool {name}: {exc}")
            return ToolResult.error(f"Error executing {name}: {exc}")

    async def _notify_resources_changed(self) -> None:
        if self._on_resources_changed is not None:
            await self._on_resources_changed()

    async def _resolve_target(self, arguments: dict[str, Any], visible: bool) -> Optional[ElementHandle]:
        text = arguments.get("text")
        criteria = Criteria(
            selector=arguments["selector"],
            query_mode=QueryMode.from_flag(arguments.get("isXPath")),
            text=TextFilter(value=text) if text else None,
            position=PositionFilter(index=int(arguments.get("index") or 0), visible=visible),
            timeout_ms=int(arguments.get("timeout") or 10_000),
        )
        return await self._session.resolver.resolve(criteria)

    async def _store_screenshot(self, name: str, image: bytes) -> str:
        encoded = base64.b64encode(image).decode("utf-8")
        self._session.screenshots[name] = encoded
        await self._notify_resources_changed()
        return encoded

    async def navigate(self, arguments: dict[str, Any]) -> ToolResult:
        url = arguments["url"]
        wait_option = arguments.get("waitUntil") or arguments.get("waitOptions") or "networkidle2"
        wait_until = NAVIGATION_WAIT_STATES.get(wait_option)
        if wait_until is None:
            return ToolResult.error(f"Unsupported wait strategy: {wait_option}")
        timeout = int(arguments.get("timeout") or self._session.config.navigation_timeout_ms)

        await self._session.page.goto(url, wait_until=wait_until, timeout=timeout)
        await self._session.interaction.pause_after_navigation()
        return ToolResult.text(f"Navigated to {url} (waited for {wait_option})")

    async def screenshot(self, arguments: dict[str, Any]) -> ToolResult:
        name = arguments["name"]
        width = int(arguments.get("width") or 1366)
        height = int(arguments.get("height") or 768)
        page = self._session.page
        await page.set_viewport_size({"width": width, "height": height})

        selector = arguments.get("selector")
        if selector:
            mode = QueryMode.from_flag(arguments.get("isXPath"))
            elements = await self._session.provider.query_all(selector, mode)
            if not elements:
                return ToolResult.error(f"Element not found: {selector}")
            image = await elements[0].screenshot()
            target = f"{'XPath' if mode == QueryMode.XPATH else 'CSS'}: {selector}"
        else:
            image = await page.screenshot(full_page=bool(arguments.get("fullPage")))
            target = "page"

        encoded = await self._store_screenshot(name, image)
        return ToolResult(
            content=[
                TextContent(type="text", text=f"Screenshot '{name}' taken of {target} at {width}x{height}"),
                ImageContent(type="image", data=encoded, mimeType="image/png"),
            ]
        )

    async def click(self, arguments: dict[str, Any]) -> ToolResult:
        selector = arguments["selector"]
        element = await self._resolve_target(arguments, visible=arguments.get("forceVisible", True) is not False)
        if element is None:
            suffix = f' with text "{arguments["text"]}"' if arguments.get("text") else ""
            return ToolResult.error(f"Element not found: {selector}{suffix} (index {arguments.get('index') or 0})")

        button = arguments.get("button") if arguments.get("button") in MOUSE_BUTTONS else "left"
        click_options = arguments.get("clickOptions") or {}
        click_count = int(click_options.get("clickCount") or 1)
        hold_ms = click_options.get("delay")
        interaction = self._session.interaction

        if arguments.get("waitForNavigation"):
            async with self._session.page.expect_navigation(wait_until="networkidle", timeout=30_000):
                await interaction.click(element, button=button, click_count=click_count, delay_ms=hold_ms)
        else:
            await interaction.click(element, button=button, click_count=click_count, delay_ms=hold_ms)

        description = await describe_element(self._session.provider, element)
        return ToolResult.text(f"Clicked: {description} using button: {button}")

    async def fill(self, arguments: dict[str, Any]) -> ToolResult:
        selector = arguments["selector"]
        value = str(arguments["value"])
        element = await self._resolve_target(arguments, visible=False)
        if element is None:
            return ToolResult.error(f"Input element not found: {selector}")

        if not await is_editable(self._session.provider, element):
            return ToolResult.error(f"Element is not an input or textarea: {selector}")

        delay = arguments.get("delay")
        await self._session.interaction.type_text(
            element,
            value,
            clear_first=arguments.get("clearFirst", True) is not False,
            delay_ms=int(delay) if delay is not None else None,
        )

        submitted = bool(arguments.get("submitAfter"))
        if submitted:
            await self._session.page.keyboard.press("Enter")
            await self._session.interaction.pause_after_submit()

        return ToolResult.text(f"Filled {selector} with: {value}{' and pressed Enter' if submitted else ''}")

    async def select(self, arguments: dict[str, Any]) -> ToolResult:
        selector = arguments["selector"]
        value = str(arguments["value"])
        element = await self._resolve_target(arguments, visible=False)
        if element is None:
            return ToolResult.error(f"Select element not found: {selector}")

        if (await tag_name(self._session.provider, element)).lower() != "select":
            return ToolResult.error(f"Element is not a select: {selector}")

        if arguments.get("byText"):
            selected = await self._session.provider.evaluate(SELECT_BY_TEXT_SCRIPT, element, value)
            if selected is None:
                return ToolResult.error(f'Option with text "{value}" not found in select')
            return ToolResult.text(f'Selected option with text "{value}" in {selector}')

        await element.select_option(value=value)
        return ToolResult.text(f'Selected option with value "{value}" in {selector}')

    async def hover(self, arguments: dict[str, Any]) -> ToolResult:
        selector = arguments["selector"]
        element = await self._resolve_target(arguments, visible=False)
        if element is None:
            return ToolResult.error(f"Element not found: {selector}")

        await self._session.interaction.hover(element)
        description = await describe_element(self._session.provider, element)
        return ToolResult.text(f"Hovered over: {description}")

    async def wait_for_element(self, arguments: dict[str, Any]) -> ToolResult:
        selector = arguments["selector"]
        text = arguments.get("text") or None
        condition = WaitCondition.parse(arguments.get("waitFor"), text=text)

        outcome = await self._session.waiter.wait_for(
            selector,
            QueryMode.from_flag(arguments.get("isXPath")),
            condition,
            timeout_ms=int(arguments.get("timeout") or 30_000),
            poll_interval_ms=int(arguments.get("pollInterval") or 100),
        )

        if outcome.status == WaitStatus.TIMED_OUT:
            suffix = f' with text "{text}"' if text else ""
            return ToolResult.error(
                f"Timeout waiting for element to be {condition.state.value}: {selector}{suffix}"
            )
        if outcome.status == WaitStatus.CONFIRMED_HIDDEN:
            return ToolResult.text(f"Element is now hidden: {selector}")

        description = await describe_element(self._session.provider, outcome.element)
        return ToolResult.text(f"Element is now {condition.state.value}: {description}")

    async def wait_for_network_idle(self, arguments: dict[str, Any]) -> ToolResult:
        max_inflight = arguments.get("maxInflightRequests")
        idle = await self._session.network.wait_for_network_idle(
            timeout_ms=int(arguments.get("timeout") or 30_000),
            idle_time_ms=int(arguments.get("idleTime") or 500),
            max_inflight_requests=int(max_inflight) if max_inflight is not None else 0,
        )
        if not idle:
            return ToolResult.error("Timeout waiting for network to become idle")
        return ToolResult.text("Network is now idle")

    async def find_element(self, arguments: dict[str, Any]) -> ToolResult:
        criteria = Criteria.from_arguments(arguments)
        element = await self._session.resolver.resolve(criteria)
        if element is None:
            return ToolResult.error(f"Element not found with the specified criteria: {criteria.describe()}")

        info = await self._session.provider.evaluate(ELEMENT_INFO_SCRIPT, element)
        label = info["tagName"] + (f"#{info['id']}" if info.get("id") else "")
        content: list[Content] = [
            TextContent(type="text", text=f"Element found: {label}\n\nDetails:\n{json.dumps(info, indent=2)}")
        ]

        if arguments.get("takeScreenshot"):
            name = arguments.get("screenshotName") or f"element-{int(time.time() * 1000)}"
            encoded = await self._store_screenshot(name, await element.screenshot())
            content.append(ImageContent(type="image", data=encoded, mimeType="image/png"))

        return ToolResult(content=content)

    async def evaluate(self, arguments: dict[str, Any]) -> ToolResult:
        script = arguments["script"]
        values = [_decode_argument(raw) for raw in arguments.get("args") or []]
        console_seq = self._session.console_log.sequence

        names = ", ".join(f"arg{i}" for i in range(len(values)))
        wrapper = "async (__args) => { const [" + names + "] = __args; " + script + "\n}"
        result = await self._session.page.evaluate(wrapper, values)

        console_output = "\n".join(self._session.console_log.lines_since(console_seq))
        return ToolResult.text(
            f"Execution result:\n{json.dumps(result, indent=2, default=str)}\n\nConsole output:\n{console_output}"
        )


def _decode_argument(raw: Any) -> Any:
    if not isinstance(raw, str):
        return raw
    try:
        return json.loads(raw)
    except ValueError:
        return raw
