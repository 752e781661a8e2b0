"""
Ranking of related-article candidates used when an event's own source cannot be read.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Sequence

from src.services.models import Candidate, Event
from src.services.source_levels import normalize_source

LOGGER = logging.getLogger(__name__)

NO_TITLE_KEY = "__no_title__"


@dataclass(frozen=True)
class PoolEntry:
    source: str
    level: int


def event_link(event: Event) -> str:
    return (event.gn_url or event.url or "").strip()


def _rank_key(candidate: Candidate) -> tuple[int, int]:
    return (-candidate.level, 0 if candidate.has_direct_url else 1)


def _filter_candidates(
    event: Event,
    candidates: Iterable[Candidate],
    min_level: int | None = None,
) -> list[Candidate]:
    current_source = normalize_source(event.source)
    current_link = event_link(event)
    seen_titles: set[tuple[str, str]] = set()
    seen_links: set[tuple[str, str]] = {(current_source, current_link)} if current_link else set()
    filtered: list[Candidate] = []
    for candidate in candidates:
        if not candidate.usable:
            continue
        source_key = candidate.normalized_source
        if not source_key:
            continue
        link = candidate.link
        if current_source and source_key == current_source:
            # Same outlet only counts as an alternative when it is a different article.
            if not current_link or link == current_link:
                continue
        if min_level is not None and candidate.level < min_level:
            continue
        title_key = (source_key, candidate.normalized_title or NO_TITLE_KEY)
        link_key = (source_key, link)
        if title_key in seen_titles or link_key in seen_links:
            continue
        seen_titles.add(title_key)
        seen_links.add(link_key)
        filtered.append(candidate)
    return sorted(filtered, key=_rank_key)


def get_alternatives(event: Event, min_level: int, fallback_min_level: int) -> list[Candidate]:
    primary = _filter_candidates(event, event.articles, min_level)
    if primary:
        return primary
    if fallback_min_level < min_level:
        return _filter_candidates(event, event.articles, fallback_min_level)
    return []


def build_external_alternatives(event: Event, results: Sequence[Candidate]) -> list[Candidate]:
    if not results:
        return []
    return _filter_candidates(event, results)


def should_expand(event: Event, alternatives: Sequence[Candidate]) -> bool:
    if not alternatives:
        return True
    current_source = normalize_source(event.source)
    if not current_source:
        return True
    return all(item.normalized_source == current_source for item in alternatives)


def should_search_external(alternatives: Sequence[Candidate]) -> bool:
    if not alternatives:
        return True
    return all(not item.has_direct_url for item in alternatives)


def get_alternative_pool(event: Event) -> list[PoolEntry]:
    """Coarse one-per-source view of every usable candidate, for diagnostics only."""
    seen: set[str] = set()
    pool: list[PoolEntry] = []
    for candidate in event.articles:
        if not candidate.usable:
            continue
        key = candidate.normalized_source
        if not key or key in seen:
            continue
        seen.add(key)
        pool.append(PoolEntry(source=candidate.source, level=candidate.level))
    return sorted(pool, key=lambda entry: -entry.level)


def merge_articles(event: Event, candidates: Sequence[Candidate]) -> int:
    """Append unseen candidates (by source + link) to the event; return how many were added."""
    if not candidates:
        return 0
    seen = {
        (item.normalized_source, item.link)
        for item in event.articles
        if item.usable
    }
    added = 0
    for candidate in candidates:
        if not candidate.usable:
            continue
        key = (candidate.normalized_source, candidate.link)
        if key in seen:
            continue
        seen.add(key)
        event.articles.append(candidate)
        added += 1
    if added:
        LOGGER.debug("Merged %s new candidates into event #%s", added, event.id)
    return added
