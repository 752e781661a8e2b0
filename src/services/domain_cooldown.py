"""
Per-host backoff bookkeeping so a rate-limited publisher is not hit again until its
cooldown expires.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

from src.services.source_levels import hostname

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class Cooldown:
    host: str
    until: float
    remaining_ms: int = 0
    reason: str = ""


class DomainCooldownTracker:
    """In-memory map of host -> absolute expiry (seconds since epoch)."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._cooldowns: dict[str, float] = {}

    def is_in_cooldown(self, url: str | None) -> Cooldown | None:
        host = hostname(url)
        if not host:
            return None
        until = self._cooldowns.get(host)
        if until is None:
            return None
        now = self._clock()
        if now >= until:
            del self._cooldowns[host]
            return None
        return Cooldown(host=host, until=until, remaining_ms=int((until - now) * 1000))

    def set_cooldown(self, url: str | None, ms: int | float, reason: str | int = "") -> Cooldown | None:
        host = hostname(url)
        if not host or not ms or ms <= 0:
            return None
        until = self._clock() + ms / 1000.0
        existing = self._cooldowns.get(host, 0.0)
        if until > existing:
            self._cooldowns[host] = until
        LOGGER.info("domain cooldown set %s %ss %s", host, -(-int(ms) // 1000), reason or "")
        return Cooldown(host=host, until=max(until, existing), reason=str(reason or ""))

    def clear(self) -> None:
        self._cooldowns.clear()
