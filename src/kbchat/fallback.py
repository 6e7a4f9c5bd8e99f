"""Try an ordered list of strategies and keep the first one that works."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Generic, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True)
class StrategyOutcome(Generic[T]):
    """Result of :func:`first_success`.

    ``value`` holds the winning strategy's return value, ``strategy`` its
    name; ``failures`` records every strategy that raised before it, in
    order.
    """

    value: T | None = None
    strategy: str | None = None
    failures: list[tuple[str, Exception]] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.strategy is not None


def first_success(
    strategies: Sequence[tuple[str, Callable[[], T]]],
    *,
    catch: tuple[type[Exception], ...] = (Exception,),
) -> StrategyOutcome[T]:
    outcome: StrategyOutcome[T] = StrategyOutcome()
    for name, strategy in strategies:
        try:
            outcome.value = strategy()
        except catch as exc:
            logger.warning("fallback.strategy.failed strategy=%s error=%s", name, exc)
            outcome.failures.append((name, exc))
            continue
        outcome.strategy = name
        if outcome.failures:
            logger.info("fallback.strategy.recovered strategy=%s failed=%s", name, len(outcome.failures))
        return outcome
    return outcome


__all__ = ["StrategyOutcome", "first_success"]
