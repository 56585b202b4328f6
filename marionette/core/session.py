"""
Browser session lifecycle.

A single BrowserSession owns the Playwright driver, the browser, one context
and its page. It is created lazily on the first tool call and reused by every
call after that. Anything the session attaches to the page (console capture,
navigation tracking) is recorded in its Subscriptions list and released on
close().
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Callable, Optional

from playwright.async_api import (
    Browser,
    BrowserContext,
    ConsoleMessage,
    Frame,
    Page,
    Playwright,
    async_playwright,
)

from marionette.core.interaction import DelayStrategy, HumanInteraction, RandomDelayStrategy, TimingProfile
from marionette.core.network_idle import NetworkIdleDetector
from marionette.core.polling import PollPolicy
from marionette.core.provider import PlaywrightQueryProvider, Unsubscribe
from marionette.core.resolver import Resolver
from marionette.core.waiter import ConditionWaiter

logger = logging.getLogger("marionette.session")


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class SessionConfig:
    headless: bool = False
    viewport_width: int = 1366
    viewport_height: int = 768
    user_agent: Optional[str] = None
    stealth_mode: bool = True
    docker: bool = False
    navigation_timeout_ms: int = 60_000
    console_log_limit: int = 1_000
    typing_seed: Optional[int] = None

    @classmethod
    def from_env(cls) -> "SessionConfig":
        """Read configuration from MARIONETTE_* environment variables."""
        docker = bool(os.getenv("DOCKER_CONTAINER"))
        seed = os.getenv("MARIONETTE_TYPING_SEED")
        return cls(
            headless=_env_flag("MARIONETTE_HEADLESS", docker),
            viewport_width=int(os.getenv("MARIONETTE_VIEWPORT_WIDTH", "1366")),
            viewport_height=int(os.getenv("MARIONETTE_VIEWPORT_HEIGHT", "768")),
            user_agent=os.getenv("MARIONETTE_USER_AGENT"),
            stealth_mode=_env_flag("MARIONETTE_STEALTH", True),
            docker=docker,
            navigation_timeout_ms=int(os.getenv("MARIONETTE_NAVIGATION_TIMEOUT_MS", "60000")),
            console_log_limit=int(os.getenv("MARIONETTE_CONSOLE_LOG_LIMIT", "1000")),
            typing_seed=int(seed) if seed else None,
        )

    def launch_args(self) -> list[str]:
        if not self.docker:
            return []
        return [
            "--no-sandbox",
            "--disable-dev-shm-usage",
            "--disable-setuid-sandbox",
            "--single-process",
            "--no-zygote",
        ]


class Subscriptions:
    """Unsubscribe handles owned by one session or one call."""

    def __init__(self) -> None:
        self._handles: list[Unsubscribe] = []

    def __len__(self) -> int:
        return len(self._handles)

    def add(self, unsubscribe: Unsubscribe) -> Unsubscribe:
        self._handles.append(unsubscribe)
        return unsubscribe

    def release_all(self) -> None:
        handles, self._handles = self._handles, []
        for unsubscribe in reversed(handles):
            try:
                unsubscribe()
            except Exception as exc:
                logger.warning(f"[Session] Failed to remove listener: {exc}")


@dataclass(frozen=True)
class ConsoleEntry:
    seq: int
    ts: str
    line: str


class ConsoleLog:
    def __init__(self, max_entries: int = 1_000) -> None:
        self._entries: list[ConsoleEntry] = []
        self._max_entries = max_entries
        self._seq = 0

    @property
    def sequence(self) -> int:
        return self._seq

    def push(self, line: str) -> None:
        self._seq += 1
        self._entries.append(ConsoleEntry(seq=self._seq, ts=datetime.now(tz=timezone.utc).isoformat(), line=line))
        if len(self._entries) > self._max_entries:
            self._entries = self._entries[-self._max_entries :]

    def lines_since(self, seq: int) -> list[str]:
        return [entry.line for entry in self._entries if entry.seq > seq]

    def text(self) -> str:
        return "\n".join(entry.line for entry in self._entries)


class BrowserSession:
    DEFAULT_USER_AGENT = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )

    STEALTH_HEADERS = {
        "Accept-Language": "en-US,en;q=0.9",
        "Upgrade-Insecure-Requests": "1",
    }

    STEALTH_SCRIPT = """
    Object.defineProperty(navigator, 'webdriver', {get: () => undefined});
    Object.defineProperty(navigator, 'languages', {get: () => ['en-US', 'en']});
    Object.defineProperty(navigator, 'plugins', {get: () => [1, 2, 3, 4, 5]});
    window.chrome = window.chrome || {runtime: {}};
    """

    def __init__(
        self,
        config: SessionConfig | None = None,
        delay_strategy: DelayStrategy | None = None,
        timing: TimingProfile | None = None,
    ) -> None:
        self.config = config or SessionConfig()
        self._delay_strategy = delay_strategy
        self._timing = timing

        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None

        self.provider: Optional[PlaywrightQueryProvider] = None
        self.resolver: Optional[Resolver] = None
        self.waiter: Optional[ConditionWaiter] = None
        self.network: Optional[NetworkIdleDetector] = None
        self.interaction: Optional[HumanInteraction] = None

        self.subscriptions = Subscriptions()
        self.console_log = ConsoleLog(max_entries=self.config.console_log_limit)
        self.screenshots: dict[str, str] = {}
        self._console_listeners: list[Callable[[], Any]] = []

    @property
    def initialized(self) -> bool:
        return self._page is not None

    @property
    def page(self) -> Page:
        if not self._page:
            raise RuntimeError("Browser session not initialized")
        return self._page

    async def init(self) -> None:
        if self._page is not None:
            return

        logger.info("[Session] Launching browser...")
        self._playwright = await async_playwright().start()
        try:
            self._browser = await self._playwright.chromium.launch(
                headless=self.config.headless,
                args=self.config.launch_args(),
            )

            context_options: dict[str, Any] = {
                "viewport": {"width": self.config.viewport_width, "height": self.config.viewport_height},
            }
            if self.config.stealth_mode:
                context_options["user_agent"] = self.config.user_agent or self.DEFAULT_USER_AGENT
                context_options["extra_http_headers"] = self.STEALTH_HEADERS
            elif self.config.user_agent:
                context_options["user_agent"] = self.config.user_agent
            self._context = await self._browser.new_context(**context_options)

            if self.config.stealth_mode:
                await self._context.add_init_script(self.STEALTH_SCRIPT)

            page = await self._context.new_page()
            self.attach(page)
        except BaseException:
            logger.error("[Session] Browser launch failed; stopping driver")
            await self.close()
            raise
        logger.info("[Session] Browser ready")

    def attach(self, page: Page) -> None:
        """Bind engine components and session listeners to ``page``."""
        self._page = page
        self.provider = PlaywrightQueryProvider(page)
        self.resolver = Resolver(self.provider, PollPolicy())
        self.waiter = ConditionWaiter(self.provider)
        self.network = NetworkIdleDetector(self.provider)
        self.interaction = HumanInteraction(
            page,
            strategy=self._delay_strategy or RandomDelayStrategy(self.config.typing_seed),
            profile=self._timing,
        )

        self.subscriptions.add(self.provider.subscribe("console", self._on_console))
        self.subscriptions.add(self.provider.subscribe("framenavigated", self._on_frame_navigated))

    async def ensure_page(self) -> Page:
        if self._page is None:
            await self.init()
        return self.page

    def add_console_listener(self, callback: Callable[[], Any]) -> None:
        """Run ``callback`` after every line appended to the console log."""
        self._console_listeners.append(callback)

    def _log_line(self, line: str) -> None:
        self.console_log.push(line)
        for callback in self._console_listeners:
            callback()

    def _on_console(self, message: ConsoleMessage) -> None:
        self._log_line(f"[{message.type}] {message.text}")

    def _on_frame_navigated(self, frame: Frame) -> None:
        if self._page is not None and frame == self._page.main_frame:
            self._log_line(f"[navigation] Navigated to: {frame.url}")

    async def close(self) -> None:
        if self._page is None and self._browser is None and self._playwright is None:
            return

        logger.info("[Session] Closing browser...")
        self.subscriptions.release_all()

        try:
            if self._context:
                await self._context.close()
            if self._browser:
                await self._browser.close()
        finally:
            if self._playwright:
                await self._playwright.stop()
            self._playwright = None
            self._browser = None
            self._context = None
            self._page = None
            self.provider = None
            self.resolver = None
            self.waiter = None
            self.network = None
            self.interaction = None
        logger.info("[Session] Browser closed")

    @asynccontextmanager
    async def running(self) -> AsyncGenerator["BrowserSession", None]:
        await self.init()
        try:
            yield self
        finally:
            await self.close()
