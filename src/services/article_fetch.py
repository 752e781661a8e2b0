"""
Direct article retrieval with escalating fallbacks (readability proxy, archive mirrors,
wayback snapshot) for publishers that block or rate-limit plain requests.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Callable
from urllib.parse import quote, urlparse

import requests

from src.services.domain_cooldown import DomainCooldownTracker

LOGGER = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept-Language": "en-US,en;q=0.9",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
}

FETCH_ATTEMPTS = 2
FETCH_TIMEOUT = 10
BLOCKED_STATUSES = frozenset({401, 403, 429})
ERROR_COOLDOWN_MS = 2 * 60 * 1000
COOLDOWN_MS_BY_STATUS = {
    401: 10 * 60 * 1000,
    403: 10 * 60 * 1000,
    429: 15 * 60 * 1000,
    500: 2 * 60 * 1000,
    502: 2 * 60 * 1000,
    503: 2 * 60 * 1000,
    504: 2 * 60 * 1000,
}
ARCHIVE_HOSTS = ("archive.ph", "archive.is", "archive.today")
WAYBACK_ENDPOINT = "https://archive.org/wayback/available"
PROXY_PREFIX = "https://r.jina.ai/"


def retry_after_ms(headers: Any, now: datetime | None = None) -> int:
    """Parse `Retry-After` as delta-seconds or an HTTP date; 0 when absent or past."""
    value = headers.get("retry-after") if headers is not None else None
    if not value:
        return 0
    value = str(value).strip()
    try:
        seconds = float(value)
    except ValueError:
        seconds = None
    if seconds is not None:
        return int(seconds * 1000) if seconds > 0 else 0
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return 0
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    delta = when - (now or datetime.now(timezone.utc))
    ms = int(delta.total_seconds() * 1000)
    return ms if ms > 0 else 0


def build_archive_urls(url: str) -> list[str]:
    stripped = url.split("?")[0]
    return [f"https://{host}/{stripped}" for host in ARCHIVE_HOSTS]


def build_proxy_url(url: str) -> str:
    parsed = urlparse(url)
    query = f"?{parsed.query}" if parsed.query else ""
    return f"{PROXY_PREFIX}{parsed.scheme}://{parsed.netloc}{parsed.path}{query}"


class ArticleFetcher:
    """Fetch raw article HTML; returns None instead of raising on every failure path."""

    def __init__(
        self,
        cooldowns: DomainCooldownTracker | None = None,
        session: requests.Session | None = None,
        timeout: int = FETCH_TIMEOUT,
        attempts: int = FETCH_ATTEMPTS,
        archive_delay_ms: int = 5000,
        archive_cooldown_ms: int = 10 * 60 * 1000,
        log_alt_fetch: bool = False,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.cooldowns = cooldowns or DomainCooldownTracker(clock=clock)
        self.session = session or requests.Session()
        self.timeout = timeout
        self.attempts = max(1, attempts)
        self.archive_delay_ms = archive_delay_ms
        self.archive_cooldown_ms = archive_cooldown_ms
        self.log_alt_fetch = log_alt_fetch
        self._clock = clock
        self._sleep = sleep
        self._archive_cooldown_until = 0.0
        self._last_archive_attempt = 0.0

    def fetch_direct(self, url: str) -> str | None:
        cooldown = self.cooldowns.is_in_cooldown(url)
        if cooldown:
            LOGGER.info(
                "domain cooldown active %s %ss", cooldown.host, -(-cooldown.remaining_ms // 1000)
            )
            return None
        for attempt in range(1, self.attempts + 1):
            try:
                response = self.session.get(url, headers=DEFAULT_HEADERS, timeout=self.timeout)
            except requests.RequestException as exc:
                LOGGER.warning("article fetch failed (%s/%s) %s: %s", attempt, self.attempts, url, exc)
                self.cooldowns.set_cooldown(url, ERROR_COOLDOWN_MS, "error")
                continue
            if response.ok:
                return response.text
            status = response.status_code
            cooldown_ms = retry_after_ms(response.headers) or COOLDOWN_MS_BY_STATUS.get(status, 0)
            if cooldown_ms:
                self.cooldowns.set_cooldown(url, cooldown_ms, status)
            if status in BLOCKED_STATUSES:
                alt_text = (
                    self._try_fetch(build_proxy_url(url), "proxy")
                    or self._try_archives(url)
                    or self._try_wayback(url)
                )
                if alt_text:
                    return alt_text
            LOGGER.info("article fetch failed %s %s", status, response.reason)
        return None

    def _get(self, url: str, label: str, accept: str | None = None) -> requests.Response | None:
        headers = dict(DEFAULT_HEADERS)
        if accept:
            headers["Accept"] = accept
        try:
            response = self.session.get(url, headers=headers, timeout=self.timeout)
        except requests.RequestException as exc:
            LOGGER.info("article alt fetch failed %s %s", label, exc)
            return None
        if not response.ok:
            LOGGER.info("article alt fetch failed %s %s %s", label, response.status_code, response.reason)
        elif self.log_alt_fetch:
            LOGGER.info("article alt fetch ok %s %s %s", label, response.status_code, len(response.text))
        return response

    def _try_fetch(self, url: str, label: str) -> str | None:
        response = self._get(url, label)
        if response is None or not response.ok:
            return None
        return response.text or None

    def _try_archives(self, url: str) -> str | None:
        now = self._clock()
        if now < self._archive_cooldown_until:
            LOGGER.info("archive cooldown active %ss", int(self._archive_cooldown_until - now))
            return None
        for archive_url in build_archive_urls(url):
            wait = self.archive_delay_ms / 1000.0 - (self._clock() - self._last_archive_attempt)
            if wait > 0:
                self._sleep(wait)
            self._last_archive_attempt = self._clock()
            label = f"archive:{urlparse(archive_url).hostname}"
            response = self._get(archive_url, label)
            if response is None:
                continue
            if response.ok and response.text:
                return response.text
            if response.status_code == 429:
                self._archive_cooldown_until = self._clock() + self.archive_cooldown_ms / 1000.0
                LOGGER.info("archive cooldown set %ss", self.archive_cooldown_ms // 1000)
                break
        return None

    def _try_wayback(self, url: str) -> str | None:
        response = self._get(
            f"{WAYBACK_ENDPOINT}?url={quote(url, safe='')}",
            "wayback-meta",
            accept="application/json,text/plain;q=0.9,*/*;q=0.8",
        )
        if response is None or not response.ok:
            return None
        try:
            payload = response.json()
        except ValueError:
            LOGGER.debug("wayback returned non-JSON payload for %s", url)
            return None
        snapshot = (((payload or {}).get("archived_snapshots") or {}).get("closest") or {}).get("url")
        if not snapshot:
            LOGGER.info("wayback no snapshot")
            return None
        return self._try_fetch(snapshot, "wayback") or self._try_fetch(build_proxy_url(snapshot), "wayback-proxy")
