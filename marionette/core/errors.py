from __future__ import annotations


class MarionetteError(Exception):
    """Base class for engine errors that reach the tool layer."""


class ProviderError(MarionetteError):
    """The browser driver is unreachable or has been closed."""


class InvalidQueryError(MarionetteError):
    """The selector or XPath expression can never match (malformed query)."""

    def __init__(self, selector: str, detail: str = "") -> None:
        self.selector = selector
        self.detail = detail
        message = f"Invalid query '{selector}'"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
