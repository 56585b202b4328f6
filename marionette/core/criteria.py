from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping


class QueryMode(str, Enum):
    CSS = "css"
    XPATH = "xpath"

    @classmethod
    def from_flag(cls, is_xpath: bool | None) -> "QueryMode":
        return cls.XPATH if is_xpath else cls.CSS


class WaitState(str, Enum):
    VISIBLE = "visible"
    HIDDEN = "hidden"
    PRESENT = "present"
    STABLE = "stable"


@dataclass(frozen=True)
class TextFilter:
    value: str
    exact: bool = False

    def matches(self, text_content: str | None) -> bool:
        if not text_content:
            return False
        trimmed = text_content.strip()
        if self.exact:
            return trimmed == self.value
        return self.value in trimmed


@dataclass(frozen=True)
class PositionFilter:
    index: int = 0
    visible: bool = True


@dataclass(frozen=True)
class Criteria:
    """What the resolver should find on the page.

    Candidates come from ``selector`` when given, otherwise from ``tag_name``
    used as a selector, otherwise from every element in the document. The
    remaining fields narrow that candidate list, and ``position.index`` picks
    one element from whatever survives.
    """

    selector: str | None = None
    query_mode: QueryMode = QueryMode.CSS
    text: TextFilter | None = None
    tag_name: str | None = None
    attributes: Mapping[str, str] = field(default_factory=dict)
    position: PositionFilter = field(default_factory=PositionFilter)
    timeout_ms: int = 10_000

    def __post_init__(self) -> None:
        if self.position.index < 0:
            raise ValueError(f"position.index must be >= 0, got {self.position.index}")
        if self.timeout_ms <= 0:
            raise ValueError(f"timeout_ms must be > 0, got {self.timeout_ms}")

    @property
    def query(self) -> tuple[str, QueryMode]:
        if self.selector:
            return self.selector, self.query_mode
        if self.tag_name:
            return self.tag_name, QueryMode.CSS
        return "*", QueryMode.CSS

    @property
    def filters_by_tag(self) -> bool:
        return bool(self.selector and self.tag_name)

    def describe(self) -> str:
        parts: list[str] = []
        if self.selector:
            parts.append(f"{self.query_mode.value}={self.selector}")
        if self.tag_name:
            parts.append(f"tag={self.tag_name}")
        if self.text:
            parts.append(f"text{'==' if self.text.exact else '~='}{self.text.value!r}")
        for name, value in self.attributes.items():
            parts.append(f"[{name}={value!r}]")
        parts.append(f"index={self.position.index}")
        if self.position.visible:
            parts.append("visible")
        return " ".join(parts)

    @classmethod
    def from_arguments(cls, arguments: dict[str, Any], default_timeout_ms: int = 10_000) -> "Criteria":
        """Build criteria from tool-call arguments (camelCase keys)."""
        text = arguments.get("text")
        position = arguments.get("position") or {}
        return cls(
            selector=arguments.get("selector") or None,
            query_mode=QueryMode.from_flag(arguments.get("isXPath")),
            text=TextFilter(value=text, exact=bool(arguments.get("textExact"))) if text else None,
            tag_name=arguments.get("tagName") or None,
            attributes=dict(arguments.get("attributes") or {}),
            position=PositionFilter(
                index=int(position.get("index", 0)),
                visible=bool(position.get("visible", True)),
            ),
            timeout_ms=int(arguments.get("timeout") or default_timeout_ms),
        )


@dataclass(frozen=True)
class WaitCondition:
    state: WaitState = WaitState.VISIBLE
    text: str | None = None
    stability_threshold: int = 5
    epsilon: float = 1.0

    def __post_init__(self) -> None:
        if self.stability_threshold < 1:
            raise ValueError("stability_threshold must be >= 1")
        if self.epsilon < 0:
            raise ValueError("epsilon must be >= 0")

    def text_matches(self, text_content: str | None) -> bool:
        if self.text is None:
            return True
        return bool(text_content) and self.text in text_content

    @classmethod
    def visible(cls, text: str | None = None) -> "WaitCondition":
        return cls(state=WaitState.VISIBLE, text=text)

    @classmethod
    def hidden(cls) -> "WaitCondition":
        return cls(state=WaitState.HIDDEN)

    @classmethod
    def present(cls, text: str | None = None) -> "WaitCondition":
        return cls(state=WaitState.PRESENT, text=text)

    @classmethod
    def stable(
        cls,
        text: str | None = None,
        stability_threshold: int = 5,
        epsilon: float = 1.0,
    ) -> "WaitCondition":
        return cls(
            state=WaitState.STABLE,
            text=text,
            stability_threshold=stability_threshold,
            epsilon=epsilon,
        )

    @classmethod
    def parse(cls, name: str | None, text: str | None = None) -> "WaitCondition":
        state = WaitState((name or WaitState.VISIBLE.value).lower())
        return cls(state=state, text=text)


@dataclass(frozen=True)
class Rect:
    x: float
    y: float
    width: float
    height: float

    @classmethod
    def from_box(cls, box: Mapping[str, float]) -> "Rect":
        return cls(x=box["x"], y=box["y"], width=box["width"], height=box["height"])

    @property
    def center(self) -> tuple[float, float]:
        return self.x + self.width / 2, self.y + self.height / 2

    def moved_beyond(self, other: "Rect", epsilon: float) -> bool:
        return (
            abs(self.x - other.x) > epsilon
            or abs(self.y - other.y) > epsilon
            or abs(self.width - other.width) > epsilon
            or abs(self.height - other.height) > epsilon
        )
