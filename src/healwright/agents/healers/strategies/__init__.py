"""Rule-based fix strategies, one per failure category."""

from __future__ import annotations

from healwright.agents.healers.strategies.assertion import AssertionStrategy
from healwright.agents.healers.strategies.auth import AuthStrategy
from healwright.agents.healers.strategies.base import (
    CaseSource,
    FixStrategy,
    ProposedFix,
    count_disallowed_waits,
    count_exclusion_markers,
)
from healwright.agents.healers.strategies.isolation import IsolationStrategy
from healwright.agents.healers.strategies.selector import SelectorStrategy
from healwright.agents.healers.strategies.timing import TimingStrategy
from healwright.models.healing import FailureCategory

STRATEGIES: dict[FailureCategory, FixStrategy | None] = {
    FailureCategory.SELECTOR_MISMATCH: SelectorStrategy(),
    FailureCategory.TIMING_RACE: TimingStrategy(),
    FailureCategory.STATE_ISOLATION: IsolationStrategy(),
    FailureCategory.ASSERTION_MISMATCH: AssertionStrategy(),
    FailureCategory.ENVIRONMENT_OR_AUTH: AuthStrategy(),
    FailureCategory.UNKNOWN: None,
}


def strategy_for(category: FailureCategory) -> FixStrategy | None:
    """Return the strategy for *category* (``None`` for ``UNKNOWN``)."""
    return STRATEGIES.get(category)


__all__ = [
    "STRATEGIES",
    "AssertionStrategy",
    "AuthStrategy",
    "CaseSource",
    "FixStrategy",
    "IsolationStrategy",
    "ProposedFix",
    "SelectorStrategy",
    "TimingStrategy",
    "count_disallowed_waits",
    "count_exclusion_markers",
    "strategy_for",
]
