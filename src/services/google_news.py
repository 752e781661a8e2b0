"""
Google News adapter: RSS search, related-article parsing, redirect decoding, and the
metadata backfill helpers built on top of them.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from email.utils import parsedate_to_datetime
from typing import Callable, List, Optional
from urllib.parse import quote_plus, urlparse

import feedparser
import requests
from bs4 import BeautifulSoup

from src.services.external_search import ExternalSearch
from src.services.fetch_log import FetchLog
from src.services.models import Candidate, Event, is_blank, title_for
from src.services.rate_limit import Throttle
from src.services.source_levels import (
    extract_search_terms_from_url,
    hostname,
    normalize_source,
    normalize_title_for_search,
    normalize_title_key,
    source_from_url,
)

LOGGER = logging.getLogger(__name__)

GOOGLE_NEWS_DEFAULTS = "hl=en-US&gl=US&ceid=US:en"
SEARCH_ENDPOINT = "https://news.google.com/rss/search"
ARTICLE_ENDPOINT = "https://news.google.com/articles/"
BATCH_EXECUTE_ENDPOINT = "https://news.google.com/_/DotsSplashUi/data/batchexecute"
DECODE_ATTEMPTS = 5
MAX_FALLBACK_QUERIES = 3
BACKFILL_RESULTS_PER_QUERY = 6
GOOD_ENOUGH_SCORE = 3
USER_AGENT = "Mozilla/5.0 (compatible; news-resolver/1.0)"


@dataclass
class AggregatorItem:
    title_en: str
    gn_url: str
    source: str
    date: datetime | None = None
    articles: list[Candidate] = field(default_factory=list)


def parse_related_articles(description: str | None) -> list[Candidate]:
    """Read the `<ol><li><a href>title</a><font>source</font></li></ol>` block of an item."""
    if not description:
        return []
    soup = BeautifulSoup(description, "html.parser")
    related: list[Candidate] = []
    for item in soup.find_all("li"):
        anchor = item.find("a")
        font = item.find("font")
        href = anchor.get("href") if anchor else ""
        source = font.get_text(strip=True) if font else ""
        if not href or not source:
            continue
        related.append(
            Candidate(
                title_en=anchor.get_text(strip=True),
                gn_url=str(href).strip(),
                source=source,
            )
        )
    return related


def _parse_date(raw: str | None) -> datetime | None:
    if not raw:
        return None
    try:
        return parsedate_to_datetime(raw)
    except (TypeError, ValueError):
        return None


def parse_google_news_feed(xml: str | bytes) -> list[AggregatorItem]:
    if not xml:
        return []
    feed = feedparser.parse(xml)
    items: list[AggregatorItem] = []
    for entry in feed.entries:
        gn_url = (entry.get("link") or "").strip()
        if not gn_url:
            continue
        source_meta = entry.get("source") or {}
        source = source_meta.get("title", "") if hasattr(source_meta, "get") else ""
        items.append(
            AggregatorItem(
                title_en=(entry.get("title") or "").strip(),
                gn_url=gn_url,
                source=(source or "").strip(),
                date=_parse_date(entry.get("published")),
                articles=parse_related_articles(entry.get("description") or entry.get("summary")),
            )
        )
    return items


def build_search_query(event: Event) -> str:
    title = normalize_title_for_search(event.title_en) or normalize_title_for_search(event.title_ru)
    if title:
        return f'"{title}"'
    if is_blank(event.url):
        return ""
    parsed = urlparse(event.url)
    if not parsed.hostname:
        return event.url
    slug = next((part for part in reversed(parsed.path.split("/")) if part), "")
    terms = slug.replace("-", " ").replace("_", " ").strip()
    host = hostname(event.url)
    return f"site:{host} {terms}" if terms else f"site:{host}"


def _dedupe_queries(queries: List[str]) -> List[str]:
    seen: set[str] = set()
    unique: List[str] = []
    for query in queries:
        if not query:
            continue
        key = query.lower()
        if key in seen:
            continue
        seen.add(key)
        unique.append(query)
    return unique


def build_fallback_search_queries(event: Event) -> List[str]:
    title = normalize_title_for_search(event.title_en) or normalize_title_for_search(event.title_ru)
    queries: List[str] = []
    if title:
        queries.append(f'"{title}"')
        queries.append(title)
        short = " ".join(title.split()[:10])
        if short and short != title:
            queries.append(short)
    if not queries and not is_blank(event.url):
        queries.append(extract_search_terms_from_url(event.url) or event.url)
    return _dedupe_queries(queries)[:MAX_FALLBACK_QUERIES]


def score_candidate(event: Event, item: AggregatorItem | Candidate) -> int:
    target_title = normalize_title_key(title_for(event))
    target_source = normalize_source(event.source) or normalize_source(source_from_url(event.url))
    candidate_title = normalize_title_key(item.title_en)
    candidate_source = normalize_source(item.source)
    score = 0
    if target_title and candidate_title:
        if target_title == candidate_title:
            score += 3
        elif target_title in candidate_title or candidate_title in target_title:
            score += 1
    if target_source and candidate_source and target_source == candidate_source:
        score += 2
    return score


class GoogleNewsClient:
    def __init__(
        self,
        throttle: Throttle | None = None,
        session: requests.Session | None = None,
        timeout: int = 10,
    ) -> None:
        self.throttle = throttle
        self.session = session or requests.Session()
        self.timeout = timeout

    def search(self, query: str) -> list[AggregatorItem]:
        if not query:
            return []
        if self.throttle is not None:
            self.throttle.wait()
        url = f"{SEARCH_ENDPOINT}?q={quote_plus(query)}&{GOOGLE_NEWS_DEFAULTS}"
        try:
            response = self.session.get(url, headers={"User-Agent": USER_AGENT}, timeout=self.timeout)
        except requests.RequestException as exc:
            LOGGER.warning("Google News search failed for %r: %s", query, exc)
            return []
        if not response.ok:
            LOGGER.warning("Google News search failed %s %s", response.status_code, response.reason)
            return []
        try:
            return parse_google_news_feed(response.content)
        except Exception:  # noqa: BLE001
            LOGGER.warning("Failed to parse Google News feed for %r", query, exc_info=True)
            return []

    def decode_url(self, gn_url: str) -> Optional[str]:
        """Resolve a news.google.com wrapper to the publisher URL via batchexecute."""
        if not gn_url:
            return None
        article_id = urlparse(gn_url).path.rstrip("/").split("/")[-1]
        if not article_id:
            return None
        for attempt in range(1, DECODE_ATTEMPTS + 1):
            try:
                response = self.session.get(
                    f"{ARTICLE_ENDPOINT}{article_id}",
                    headers={"User-Agent": USER_AGENT},
                    timeout=self.timeout,
                )
                if response.status_code == 429:
                    LOGGER.warning("Google News decode rate limited (429) for %s", gn_url)
                    return None
                if not response.ok:
                    LOGGER.info("Google News article fetch failed %s %s", response.status_code, response.reason)
                signature, timestamp = self._read_signature(response.text)
                resolved = self._batch_execute(article_id, signature, timestamp)
                if resolved:
                    return resolved
            except Exception:  # noqa: BLE001
                LOGGER.debug("Google News decode attempt %s/%s failed", attempt, DECODE_ATTEMPTS, exc_info=True)
        return None

    @staticmethod
    def _read_signature(html: str) -> tuple[str, str]:
        soup = BeautifulSoup(html, "html.parser")
        node = soup.select_one("c-wiz > div[jscontroller]")
        if node is None:
            raise ValueError("article page has no signature node")
        return str(node.get("data-n-a-sg") or ""), str(node.get("data-n-a-ts") or "")

    def _batch_execute(self, article_id: str, signature: str, timestamp: str) -> Optional[str]:
        request_payload = (
            '["garturlreq",[["X","X",["X","X"],null,null,1,1,"US:en",null,1,null,null,null,null,null,0,1],'
            f'"X","X",1,[1,1,1],1,1,null,0,0,null,0],"{article_id}",{timestamp},"{signature}"]'
        )
        response = self.session.post(
            BATCH_EXECUTE_ENDPOINT,
            headers={
                "Content-Type": "application/x-www-form-urlencoded;charset=UTF-8",
                "User-Agent": USER_AGENT,
            },
            data={"f.req": json.dumps([[["Fbv4je", request_payload]]])},
            timeout=self.timeout,
        )
        response.raise_for_status()
        # Body is an XSSI prefix, a blank line, then the envelope.
        parts = response.text.split("\n\n", 1)
        envelope = json.loads(parts[1] if len(parts) > 1 else parts[0].replace(")]}'", ""))
        inner = json.loads(envelope[0][2])
        resolved = inner[1] if isinstance(inner, list) and len(inner) > 1 else None
        if isinstance(resolved, str) and resolved.startswith("http"):
            return resolved
        return None


def _backfill_queries(event: Event) -> List[str]:
    queries = build_fallback_search_queries(event)
    short_title = normalize_title_for_search(title_for(event))
    if short_title and event.source:
        queries.insert(0, f'"{short_title}" {event.source}')
    if short_title and event.url:
        host = hostname(event.url)
        if host:
            queries.insert(0, f"site:{host} {short_title}")
    return _dedupe_queries(queries)


def _external_backfill_queries(event: Event) -> List[str]:
    short_title = normalize_title_for_search(title_for(event))
    queries: List[str] = []
    if short_title:
        queries.append(f'site:news.google.com "{short_title}"')
        if event.source:
            queries.append(f'site:news.google.com "{short_title}" {event.source}')
    terms = extract_search_terms_from_url(event.url)
    if terms:
        queries.append(f"site:news.google.com {terms}")
    return queries[:MAX_FALLBACK_QUERIES]


def backfill_gn_url(
    event: Event,
    client: GoogleNewsClient,
    external: ExternalSearch | None = None,
    fetch_log: FetchLog | None = None,
) -> bool:
    """Find a missing aggregator link for the event; True when any field was filled."""
    if not is_blank(event.gn_url):
        return False
    queries = _backfill_queries(event)
    if not queries:
        return False
    best: AggregatorItem | None = None
    best_score = -1
    used_query = ""
    for query in queries:
        results = client.search(query)
        if not results:
            continue
        used_query = query
        for item in results[:BACKFILL_RESULTS_PER_QUERY]:
            score = score_candidate(event, item)
            if score > best_score:
                best, best_score = item, score
        if best_score >= GOOD_ENOUGH_SCORE:
            break

    if best is None:
        if external is not None and external.active:
            for query in _external_backfill_queries(event):
                hit = next((item for item in external.search(query) if item.gn_url), None)
                if hit is None:
                    continue
                event.gn_url = hit.gn_url
                if is_blank(event.title_en) and hit.title_en:
                    event.title_en = hit.title_en
                if is_blank(event.source) and hit.source:
                    event.source = hit.source
                if fetch_log:
                    fetch_log.record(event, "gn_backfill_external", "ok", query=query, source=hit.source)
                return True
        if fetch_log:
            fetch_log.record(
                event,
                "gn_backfill",
                "empty",
                f"#{event.id} google news link not found",
                level="warn",
                queries=queries,
            )
        return False

    changed = False
    if is_blank(event.title_en) and best.title_en:
        event.title_en = best.title_en
        changed = True
    if is_blank(event.source) and best.source:
        event.source = best.source
        changed = True
    if best.gn_url:
        event.gn_url = best.gn_url
        changed = True
    if changed and fetch_log:
        fetch_log.record(event, "gn_backfill", "ok", query=used_query or queries[0], source=best.source)
    return changed


def hydrate_from_google_news(
    event: Event,
    client: GoogleNewsClient,
    decode_url: Callable[[str], Optional[str]] | None = None,
    fetch_log: FetchLog | None = None,
) -> bool:
    """Fill missing title/source/link/candidates from the best search hit."""
    has_meta = not is_blank(event.title_en) and not is_blank(event.source) and not is_blank(event.gn_url)
    has_articles = bool(event.articles)
    if has_meta and has_articles:
        return False
    query = build_search_query(event)
    results = client.search(query)
    if not results:
        return False

    best = results[0]
    if is_blank(event.title_en) and best.title_en:
        event.title_en = best.title_en
    if is_blank(event.source) and best.source:
        event.source = best.source
    if is_blank(event.gn_url) and best.gn_url:
        event.gn_url = best.gn_url

    if not has_articles:
        articles = best.articles or [
            Candidate(title_en=item.title_en, gn_url=item.gn_url, source=item.source)
            for item in results
            if item.gn_url and item.source
        ]
        if articles:
            event.articles = list(articles)

    if is_blank(event.url) and not is_blank(event.gn_url) and decode_url is not None:
        event.url = decode_url(event.gn_url) or ""

    if fetch_log:
        fetch_log.record(event, "gn_search", "ok", f"#{event.id} google news metadata filled", query=query)
    return True


def search_candidates(client: GoogleNewsClient, queries: List[str]) -> list[Candidate]:
    """Flatten search hits and their related articles into candidates."""
    candidates: list[Candidate] = []
    for query in queries:
        for item in client.search(query):
            candidates.append(Candidate(title_en=item.title_en, gn_url=item.gn_url, source=item.source))
            candidates.extend(item.articles)
    return candidates

