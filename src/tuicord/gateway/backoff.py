from __future__ import annotations

import random
from collections.abc import Callable
from dataclasses import dataclass, field


@dataclass(slots=True)
class Backoff:
    """Exponential reconnect delays with jitter, clamped to `cap`.

    The jitter only ever stretches a delay by up to `jitter` of itself, and
    the doubling step dominates that stretch, so consecutive delays never
    decrease.
    """

    base: float = 1.0
    cap: float = 60.0
    jitter: float = 0.25
    rng: Callable[[], float] = field(default=random.random, repr=False)

    def __post_init__(self) -> None:
        if self.base < 0 or self.cap < self.base:
            raise ValueError("backoff needs 0 <= base <= cap")
        if not 0.0 <= self.jitter <= 1.0:
            raise ValueError("backoff jitter must be within [0, 1]")

    def raw(self, attempt: int) -> float:
        if attempt < 0:
            raise ValueError("attempt must be non-negative")
        # 2**64 * base is already past any sane cap
        return min(self.cap, self.base * (2 ** min(attempt, 64)))

    def delay(self, attempt: int) -> float:
        raw = self.raw(attempt)
        return min(self.cap, raw * (1.0 + self.jitter * self.rng()))
