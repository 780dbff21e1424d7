from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Awaitable, Callable, Optional, Sequence

from sanic.log import logger as logr

from .abcs import DataModel


class Confidence(IntEnum):
    SEEDED = 0
    HEURISTIC = 1
    DERIVED = 2
    AUTHORITATIVE = 3


@dataclass(frozen=True)
class Strategy:
    name: str
    fetch: Callable[[], Awaitable[Any]]
    confidence: Confidence = Confidence.DERIVED


@dataclass(frozen=True)
class Resolution:
    value: Any
    source: str
    confidence: Confidence

    @property
    def seeded(self):
        return self.confidence == Confidence.SEEDED


def always_plausible(value):
    return value is not None


class FallbackChainResolver(DataModel):
    """
    Tries each strategy in order and returns the first plausible answer.

    A strategy that raises, or answers with something the plausibility check
    rejects, is logged and skipped.  When every strategy is exhausted the
    seeded default comes back instead, so a resolve never raises
    (cancellation aside).
    """

    def __init__(self, label: str, strategies: Sequence[Strategy], default: Any,
                 plausible: Optional[Callable[[Any], bool]] = None):
        self.label = label
        self.strategies = list(strategies)
        self.default = default
        self.plausible = plausible or always_plausible

    async def resolve(self) -> Resolution:

        for strategy in self.strategies:

            try:
                value = await strategy.fetch()
            except Exception as e:
                logr.warning(f"{self.label}: strategy '{strategy.name}' failed, falling through: {e}")
                continue

            if not self.plausible(value):
                logr.info(f"{self.label}: strategy '{strategy.name}' gave implausible {value!r}, falling through")
                continue

            return Resolution(value, strategy.name, strategy.confidence)

        logr.warning(f"{self.label}: all {len(self.strategies)} strategies exhausted, using seeded default {self.default!r}")

        return Resolution(self.default, 'seeded_default', Confidence.SEEDED)
