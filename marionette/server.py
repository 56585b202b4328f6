"""
Marionette - MCP Server Entry Point

Exposes a Playwright-driven browser as Model Context Protocol tools. Element
lookups go through the resolver and condition waiter, so every tool that
targets an element retries until its timeout instead of failing on the first
miss.

Tools exposed:
- browser_navigate, browser_screenshot
- browser_click, browser_fill, browser_select, browser_hover
- browser_wait_for_element, browser_wait_for_network_idle
- browser_find_element, browser_evaluate

Resources exposed:
- console://logs
- screenshot://<name>
"""

from __future__ import annotations

import asyncio
import base64
import logging
import os
import sys
from typing import Any, Iterable
from urllib.parse import quote, unquote

from mcp.server import NotificationOptions, Server
from mcp.server.lowlevel.helper_types import ReadResourceContents
from mcp.server.session import ServerSession
from mcp.server.stdio import stdio_server
from mcp.types import ImageContent, Resource, TextContent, Tool
from pydantic import AnyUrl

from marionette.core.session import BrowserSession, SessionConfig
from marionette.tools import ToolHandlers

logger = logging.getLogger("marionette.server")

CONSOLE_URI = "console://logs"
SCREENSHOT_SCHEME = "screenshot://"


class ToolCallError(Exception):
    """Raised so the MCP layer reports the call with ``isError`` set."""


def configure_logging(level: str | None = None) -> None:
    # stdout carries the MCP stream, so logs go to stderr.
    logging.basicConfig(
        level=(level or os.getenv("MARIONETTE_LOG_LEVEL", "INFO")).upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )


_SELECTOR = {"type": "string", "description": "CSS selector or XPath expression"}
_IS_XPATH = {"type": "boolean", "description": "Treat the selector as XPath instead of CSS"}
_INDEX = {"type": "number", "description": "Index among matching elements (0-based, default: 0)"}


def _timeout(default_ms: int) -> dict[str, Any]:
    return {"type": "number", "description": f"Timeout in milliseconds (default: {default_ms})"}


TOOLS: list[Tool] = [
    Tool(
        name="browser_navigate",
        description="Navigate to a URL and wait for the page to load",
        inputSchema={
            "type": "object",
            "properties": {
                "url": {"type": "string"},
                "waitUntil": {
                    "type": "string",
                    "description": "Wait strategy: 'load', 'domcontentloaded', 'networkidle0' or 'networkidle2' (default)",
                    "default": "networkidle2",
                },
                "timeout": _timeout(60_000),
            },
            "required": ["url"],
        },
    ),
    Tool(
        name="browser_screenshot",
        description="Take a screenshot of the current page or of one element",
        inputSchema={
            "type": "object",
            "properties": {
                "name": {"type": "string", "description": "Name to store the screenshot under"},
                "selector": _SELECTOR,
                "isXPath": _IS_XPATH,
                "width": {"type": "number", "description": "Viewport width in pixels (default: 1366)"},
                "height": {"type": "number", "description": "Viewport height in pixels (default: 768)"},
                "fullPage": {"type": "boolean", "description": "Capture the full scrollable page"},
            },
            "required": ["name"],
        },
    ),
    Tool(
        name="browser_click",
        description="Click an element, optionally matched by its text, with human-like timing",
        inputSchema={
            "type": "object",
            "properties": {
                "selector": _SELECTOR,
                "text": {"type": "string", "description": "Text the element should contain"},
                "isXPath": _IS_XPATH,
                "timeout": _timeout(10_000),
                "waitForNavigation": {"type": "boolean", "description": "Wait for a navigation after clicking"},
                "forceVisible": {"type": "boolean", "description": "Only click visible elements (default: true)"},
                "index": _INDEX,
                "button": {"type": "string", "enum": ["left", "right", "middle"], "default": "left"},
                "clickOptions": {
                    "type": "object",
                    "properties": {
                        "clickCount": {"type": "number", "description": "Number of clicks (default: 1)"},
                        "delay": {"type": "number", "description": "Delay between mousedown and mouseup in ms"},
                    },
                },
            },
            "required": ["selector"],
        },
    ),
    Tool(
        name="browser_fill",
        description="Type a value into an input, textarea or contenteditable element",
        inputSchema={
            "type": "object",
            "properties": {
                "selector": _SELECTOR,
                "value": {"type": "string", "description": "Value to type"},
                "isXPath": _IS_XPATH,
                "timeout": _timeout(10_000),
                "delay": {"type": "number", "description": "Delay between keystrokes in ms (default: random 50-150)"},
                "clearFirst": {"type": "boolean", "description": "Clear the field before typing (default: true)"},
                "submitAfter": {"type": "boolean", "description": "Press Enter after typing"},
                "index": _INDEX,
            },
            "required": ["selector", "value"],
        },
    ),
    Tool(
        name="browser_select",
        description="Select an option of a <select> element by value or by visible text",
        inputSchema={
            "type": "object",
            "properties": {
                "selector": _SELECTOR,
                "value": {"type": "string", "description": "Option value, or option text when byText is set"},
                "isXPath": _IS_XPATH,
                "timeout": _timeout(10_000),
                "byText": {"type": "boolean", "description": "Match the option's visible text"},
                "index": _INDEX,
            },
            "required": ["selector", "value"],
        },
    ),
    Tool(
        name="browser_hover",
        description="Move the mouse over an element",
        inputSchema={
            "type": "object",
            "properties": {
                "selector": _SELECTOR,
                "isXPath": _IS_XPATH,
                "timeout": _timeout(10_000),
                "index": _INDEX,
            },
            "required": ["selector"],
        },
    ),
    Tool(
        name="browser_wait_for_element",
        description="Wait until an element is visible, hidden, present or stable (not moving)",
        inputSchema={
            "type": "object",
            "properties": {
                "selector": _SELECTOR,
                "isXPath": _IS_XPATH,
                "timeout": _timeout(30_000),
                "waitFor": {
                    "type": "string",
                    "enum": ["visible", "hidden", "present", "stable"],
                    "default": "visible",
                },
                "text": {"type": "string", "description": "Text the element should contain"},
                "pollInterval": {"type": "number", "description": "Check interval in milliseconds (default: 100)"},
            },
            "required": ["selector"],
        },
    ),
    Tool(
        name="browser_wait_for_network_idle",
        description="Wait until no more than maxInflightRequests requests are open for idleTime ms",
        inputSchema={
            "type": "object",
            "properties": {
                "timeout": _timeout(30_000),
                "idleTime": {"type": "number", "description": "Quiet period in milliseconds (default: 500)"},
                "maxInflightRequests": {"type": "number", "description": "Requests allowed in flight (default: 0)"},
            },
        },
    ),
    Tool(
        name="browser_find_element",
        description="Find an element using several criteria at once and describe it",
        inputSchema={
            "type": "object",
            "properties": {
                "selector": {"type": "string", "description": "CSS selector or XPath (optional with other criteria)"},
                "isXPath": _IS_XPATH,
                "text": {"type": "string", "description": "Text the element should contain"},
                "textExact": {"type": "boolean", "description": "Require an exact text match (default: false)"},
                "tagName": {"type": "string", "description": "HTML tag name, e.g. 'button'"},
                "attributes": {"type": "object", "description": "Attribute name/value pairs that must all match"},
                "position": {
                    "type": "object",
                    "properties": {
                        "index": _INDEX,
                        "visible": {"type": "boolean", "description": "Element must be visible (default: true)"},
                    },
                },
                "timeout": _timeout(10_000),
                "takeScreenshot": {"type": "boolean", "description": "Screenshot the element"},
                "screenshotName": {"type": "string", "description": "Name for the element screenshot"},
            },
        },
    ),
    Tool(
        name="browser_evaluate",
        description="Run JavaScript in the page as the body of an async function (args are arg0, arg1, ...)",
        inputSchema={
            "type": "object",
            "properties": {
                "script": {"type": "string", "description": "JavaScript function body"},
                "args": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Arguments; JSON strings are decoded",
                },
            },
            "required": ["script"],
        },
    ),
]


def list_session_resources(session: BrowserSession) -> list[Resource]:
    resources = [Resource(uri=CONSOLE_URI, name="Browser console logs", mimeType="text/plain")]
    for name in session.screenshots:
        resources.append(
            Resource(uri=f"{SCREENSHOT_SCHEME}{quote(name, safe='')}", name=f"Screenshot: {name}", mimeType="image/png")
        )
    return resources


def read_session_resource(session: BrowserSession, uri: str) -> list[ReadResourceContents]:
    uri = uri.rstrip("/")
    if uri == CONSOLE_URI:
        return [ReadResourceContents(content=session.console_log.text(), mime_type="text/plain")]

    if uri.startswith(SCREENSHOT_SCHEME):
        name = unquote(uri[len(SCREENSHOT_SCHEME):])
        encoded = session.screenshots.get(name)
        if encoded is not None:
            return [ReadResourceContents(content=base64.b64decode(encoded), mime_type="image/png")]

    raise ValueError(f"Resource not found: {uri}")


def create_server(session: BrowserSession) -> Server:
    server = Server("marionette")
    # Page events arrive outside any request, so keep the last client seen.
    clients: dict[str, ServerSession] = {}
    pending: set[asyncio.Task] = set()

    def current_client() -> ServerSession | None:
        try:
            clients["last"] = server.request_context.session
        except LookupError:
            pass
        return clients.get("last")

    async def notify_resources_changed() -> None:
        client = current_client()
        if client is None:
            logger.debug("[Server] No client yet; skipped resource list notification")
            return
        await client.send_resource_list_changed()

    async def notify_console_updated() -> None:
        client = current_client()
        if client is None:
            return
        try:
            await client.send_resource_updated(AnyUrl(CONSOLE_URI))
        except Exception as exc:
            logger.warning(f"[Server] Failed to send console log update: {exc}")

    def on_console_line() -> None:
        task = asyncio.ensure_future(notify_console_updated())
        pending.add(task)
        task.add_done_callback(pending.discard)

    session.add_console_listener(on_console_line)
    handlers = ToolHandlers(session, on_resources_changed=notify_resources_changed)

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        return TOOLS

    @server.list_resources()
    async def list_resources() -> list[Resource]:
        return list_session_resources(session)

    @server.read_resource()
    async def read_resource(uri: Any) -> Iterable[ReadResourceContents]:
        return read_session_resource(session, str(uri))

    @server.call_tool()
    async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent | ImageContent]:
        logger.info(f"[Server] Tool called: {name}")
        current_client()
        result = await handlers.call(name, arguments)
        if result.is_error:
            raise ToolCallError(result.first_text)
        return result.content

    return server


async def main() -> None:
    configure_logging()
    session = BrowserSession(SessionConfig.from_env())
    server = create_server(session)
    logger.info("[Server] Starting Marionette MCP Server...")

    try:
        async with stdio_server() as (read_stream, write_stream):
            await server.run(
                read_stream,
                write_stream,
                server.create_initialization_options(
                    notification_options=NotificationOptions(resources_changed=True),
                ),
            )
    finally:
        await session.close()


def run() -> None:
    """Synchronous entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
