from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from playwright.async_api import ElementHandle

from marionette.core.criteria import Criteria
from marionette.core.polling import Clock, PollPolicy, Sleep, monotonic_ms, poll_until
from marionette.core.provider import get_attribute, is_visible, tag_name, text_content

logger = logging.getLogger("marionette.resolver")


class Resolver:
    """Finds one element matching a multi-criteria query, retrying until a deadline.

    Each poll re-queries the document and applies the filters in a fixed
    order: text, tag, attributes, visibility. The element at
    ``criteria.position.index`` of what survives is the match. Candidate
    order can change between polls when the document mutates.
    """

    def __init__(
        self,
        provider: Any,
        policy: PollPolicy | None = None,
        clock: Clock = monotonic_ms,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._provider = provider
        self._policy = policy or PollPolicy()
        self._clock = clock
        self._sleep = sleep

    async def candidates(self, criteria: Criteria) -> list[ElementHandle]:
        """One poll iteration: query plus every filter, in order."""
        selector, mode = criteria.query
        elements = await self._provider.query_all(selector, mode)

        if criteria.text and elements:
            elements = [el for el in elements if criteria.text.matches(await text_content(self._provider, el))]

        if criteria.filters_by_tag:
            wanted = criteria.tag_name.lower()
            elements = [el for el in elements if (await tag_name(self._provider, el)).lower() == wanted]

        if criteria.attributes:
            elements = [el for el in elements if await self._attributes_match(el, criteria)]

        if criteria.position.visible:
            elements = [el for el in elements if await is_visible(self._provider, el)]

        return elements

    async def _attributes_match(self, element: ElementHandle, criteria: Criteria) -> bool:
        for name, expected in criteria.attributes.items():
            if await get_attribute(self._provider, element, name) != expected:
                return False
        return True

    async def resolve(self, criteria: Criteria) -> Optional[ElementHandle]:
        """Return the matching element, or ``None`` once ``criteria.timeout_ms`` elapses."""
        index = criteria.position.index

        async def probe() -> tuple[bool, Optional[ElementHandle]]:
            elements = await self.candidates(criteria)
            if len(elements) > index:
                return True, elements[index]
            return False, None

        result = await poll_until(
            probe,
            self._policy.with_timeout(criteria.timeout_ms),
            query=criteria.query[0],
            clock=self._clock,
            sleep=self._sleep,
        )
        if result.satisfied:
            logger.debug(f"[Resolver] Resolved {criteria.describe()} after {result.attempts} attempt(s)")
            return result.value

        logger.info(
            f"[Resolver] Not found: {criteria.describe()} "
            f"({result.attempts} attempts, {result.elapsed_ms:.0f}ms, last error: {result.last_error})"
        )
        return None
