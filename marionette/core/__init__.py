"""Element resolution, condition waits, network idle detection and timed interaction."""

from marionette.core.criteria import (
    Criteria,
    PositionFilter,
    QueryMode,
    Rect,
    TextFilter,
    WaitCondition,
    WaitState,
)
from marionette.core.errors import InvalidQueryError, MarionetteError, ProviderError
from marionette.core.interaction import (
    DelayStrategy,
    HumanInteraction,
    NoDelayStrategy,
    RandomDelayStrategy,
    TimingProfile,
)
from marionette.core.network_idle import NetworkActivityCounter, NetworkIdleDetector
from marionette.core.polling import FailureKind, PollPolicy, PollResult, poll_until
from marionette.core.provider import PlaywrightQueryProvider
from marionette.core.resolver import Resolver
from marionette.core.session import BrowserSession, SessionConfig, Subscriptions
from marionette.core.waiter import ConditionWaiter, StabilityState, WaitOutcome, WaitStatus

__all__ = [
    "BrowserSession",
    "ConditionWaiter",
    "Criteria",
    "DelayStrategy",
    "FailureKind",
    "HumanInteraction",
    "InvalidQueryError",
    "MarionetteError",
    "NetworkActivityCounter",
    "NetworkIdleDetector",
    "NoDelayStrategy",
    "PlaywrightQueryProvider",
    "PollPolicy",
    "PollResult",
    "PositionFilter",
    "ProviderError",
    "QueryMode",
    "RandomDelayStrategy",
    "Rect",
    "Resolver",
    "SessionConfig",
    "StabilityState",
    "Subscriptions",
    "TextFilter",
    "TimingProfile",
    "WaitCondition",
    "WaitOutcome",
    "WaitState",
    "WaitStatus",
    "poll_until",
]
