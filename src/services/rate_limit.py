"""
Channel-scoped pacing. Each channel remembers when it last fired and how long the next
call has to wait; channels never share state.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable

LOGGER = logging.getLogger(__name__)

# Summarizer budget used to turn token usage into the next allowed AI call.
AI_TOKENS_PER_MINUTE = 30000


def rest(seconds: float, sleep: Callable[[float], None] = time.sleep) -> None:
    if seconds <= 0:
        return
    if seconds >= 1:
        LOGGER.info("resting %.0fs...", seconds)
    sleep(seconds)


@dataclass
class Throttle:
    name: str
    delay: float = 0.0
    increment: float = 0.0
    max_delay: float | None = None
    last: float = 0.0
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def remaining(self) -> float:
        if not self.last:
            return 0.0
        return max(0.0, self.last + self.delay - self.clock())

    def wait(self) -> None:
        """Block until the channel may fire, then record the call and grow the delay."""
        rest(self.remaining(), self.sleep)
        self.last = self.clock()
        if self.increment:
            grown = self.delay + self.increment
            self.delay = min(grown, self.max_delay) if self.max_delay is not None else grown

    def set_delay(self, seconds: float) -> None:
        self.delay = max(0.0, seconds)


def delay_for_tokens(total_tokens: int | None) -> float:
    return (total_tokens or 0) / AI_TOKENS_PER_MINUTE * 60.0


@dataclass
class Throttles:
    url_decode: Throttle
    ai: Throttle
    verify: Throttle
    news_search: Throttle

    @classmethod
    def default(
        cls,
        news_search_delay: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> "Throttles":
        return cls(
            url_decode=Throttle("url_decode", delay=30.0, increment=1.0, max_delay=120.0, clock=clock, sleep=sleep),
            ai=Throttle("ai", delay=0.0, clock=clock, sleep=sleep),
            verify=Throttle("verify", delay=1.0, clock=clock, sleep=sleep),
            news_search=Throttle("news_search", delay=news_search_delay, clock=clock, sleep=sleep),
        )
