from __future__ import annotations

from typing import Any, Callable, Optional

from playwright.async_api import ElementHandle, Page, Request

from marionette.core.criteria import QueryMode, Rect

Unsubscribe = Callable[[], None]
RequestCallback = Callable[[Request], None]


VISIBILITY_SCRIPT = """
el => {
    const style = window.getComputedStyle(el);
    return style.display !== 'none' &&
           style.visibility !== 'hidden' &&
           style.opacity !== '0' &&
           el.offsetWidth > 0 &&
           el.offsetHeight > 0;
}
"""

TEXT_CONTENT_SCRIPT = "el => el.textContent"

TAG_NAME_SCRIPT = "el => el.tagName"

ATTRIBUTE_SCRIPT = "(el, name) => el.getAttribute(name)"

EDITABLE_SCRIPT = """
el => {
    const tagName = el.tagName.toLowerCase();
    return tagName === 'input' || tagName === 'textarea' || el.isContentEditable;
}
"""

DESCRIBE_SCRIPT = """
el => {
    const text = (el.textContent || '').trim();
    return {
        tag: el.tagName.toLowerCase(),
        id: el.id,
        className: typeof el.className === 'string' ? el.className : '',
        text: text.length > 50 ? text.substring(0, 50) + '...' : text
    };
}
"""

ELEMENT_INFO_SCRIPT = """
el => {
    const rect = el.getBoundingClientRect();
    const style = window.getComputedStyle(el);
    const attr = (name) => el.hasAttribute(name) ? el.getAttribute(name) : null;
    const text = (el.textContent || '').trim();
    return {
        tagName: el.tagName.toLowerCase(),
        id: el.id,
        className: typeof el.className === 'string' ? el.className : '',
        name: attr('name'),
        type: attr('type'),
        value: attr('value'),
        textContent: text.length > 100 ? text.substring(0, 100) + '...' : text,
        attributes: Array.from(el.attributes).map(a => `${a.name}="${a.value}"`),
        boundingBox: {x: rect.x, y: rect.y, width: rect.width, height: rect.height},
        isVisible: style.display !== 'none' &&
                   style.visibility !== 'hidden' &&
                   style.opacity !== '0' &&
                   rect.width > 0 &&
                   rect.height > 0,
        css: {
            display: style.display,
            visibility: style.visibility,
            position: style.position,
            zIndex: style.zIndex
        }
    };
}
"""

SELECT_BY_TEXT_SCRIPT = """
(el, optionText) => {
    for (const option of Array.from(el.options)) {
        if ((option.textContent || '').trim() === optionText) {
            el.value = option.value;
            el.dispatchEvent(new Event('change', {bubbles: true}));
            return option.value;
        }
    }
    return null;
}
"""


class PlaywrightQueryProvider:
    """DOM query provider backed by a Playwright page."""

    def __init__(self, page: Page) -> None:
        self._page = page

    @property
    def page(self) -> Page:
        return self._page

    async def query_all(self, selector: str, mode: QueryMode = QueryMode.CSS) -> list[ElementHandle]:
        if mode == QueryMode.XPATH:
            return await self._page.query_selector_all(f"xpath={selector}")
        return await self._page.query_selector_all(selector)

    async def evaluate(self, script: str, handle: ElementHandle, arg: Any = None) -> Any:
        return await handle.evaluate(script, arg)

    async def bounding_box(self, handle: ElementHandle) -> Optional[Rect]:
        box = await handle.bounding_box()
        if box is None:
            return None
        return Rect.from_box(box)

    def subscribe(self, event: str, callback: Callable[..., Any]) -> Unsubscribe:
        self._page.on(event, callback)

        def unsubscribe() -> None:
            self._page.remove_listener(event, callback)

        return unsubscribe

    def on_request_started(self, callback: RequestCallback) -> Unsubscribe:
        return self.subscribe("request", callback)

    def on_request_finished(self, callback: RequestCallback) -> Unsubscribe:
        return self.subscribe("requestfinished", callback)

    def on_request_failed(self, callback: RequestCallback) -> Unsubscribe:
        return self.subscribe("requestfailed", callback)


async def is_visible(provider: Any, handle: ElementHandle) -> bool:
    return bool(await provider.evaluate(VISIBILITY_SCRIPT, handle))


async def text_content(provider: Any, handle: ElementHandle) -> str | None:
    return await provider.evaluate(TEXT_CONTENT_SCRIPT, handle)


async def tag_name(provider: Any, handle: ElementHandle) -> str:
    return str(await provider.evaluate(TAG_NAME_SCRIPT, handle) or "")


async def get_attribute(provider: Any, handle: ElementHandle, name: str) -> str | None:
    return await provider.evaluate(ATTRIBUTE_SCRIPT, handle, name)


async def is_editable(provider: Any, handle: ElementHandle) -> bool:
    return bool(await provider.evaluate(EDITABLE_SCRIPT, handle))


async def describe_element(provider: Any, handle: ElementHandle) -> str:
    """Short human-readable label such as ``button#submit with text "Send"``."""
    info = await provider.evaluate(DESCRIBE_SCRIPT, handle)
    label = info.get("tag", "element")
    if info.get("id"):
        label = f"{label}#{info['id']}"
    return f'{label} with text "{info.get("text", "")}"'
