"""
Publisher trust levels and the text normalization shared by candidate ranking and
search query construction.
"""

from __future__ import annotations

import html
import re
from urllib.parse import urlparse

DEFAULT_TRUST_LEVEL = 2

# Higher is more trusted; unknown outlets get DEFAULT_TRUST_LEVEL.
TRUST_LEVELS: dict[str, int] = {
    "Reuters": 5,
    "Associated Press": 5,
    "AP News": 5,
    "Bloomberg": 5,
    "BBC": 4,
    "BBC News": 4,
    "Financial Times": 4,
    "The Wall Street Journal": 4,
    "The New York Times": 4,
    "The Washington Post": 4,
    "The Economist": 4,
    "NPR": 4,
    "Politico": 4,
    "Axios": 4,
    "CNBC": 4,
    "The Guardian": 3,
    "CNN": 3,
    "Fox News": 3,
    "NBC News": 3,
    "CBS News": 3,
    "ABC News": 3,
    "The Hill": 3,
    "Al Jazeera English": 3,
    "Deutsche Welle": 3,
    "DW": 3,
    "France 24": 3,
    "The Times of Israel": 3,
    "Kyiv Independent": 3,
    "The Telegraph": 3,
    "Newsweek": 2,
    "New York Post": 2,
    "Daily Mail": 1,
    "MSN": 1,
    "Yahoo": 1,
    "Yahoo News": 1,
}

# Hosts whose publisher name is not derivable from the domain.
SOURCE_OVERRIDES: dict[str, str] = {
    "cnn.com": "CNN",
    "nytimes.com": "The New York Times",
    "washingtonpost.com": "The Washington Post",
    "wsj.com": "The Wall Street Journal",
    "ft.com": "Financial Times",
    "bbc.com": "BBC",
    "bbc.co.uk": "BBC",
    "reuters.com": "Reuters",
    "bloomberg.com": "Bloomberg",
    "foxnews.com": "Fox News",
    "cnbc.com": "CNBC",
    "politico.com": "Politico",
    "thehill.com": "The Hill",
    "axios.com": "Axios",
    "npr.org": "NPR",
    "apnews.com": "AP News",
    "tradingview.com": "TradingView",
}

TITLE_PREFIX_PATTERN = re.compile(r"^(live updates:|analysis:|opinion:)\s+", re.IGNORECASE)


def normalize_key(value: str | None) -> str:
    if not value:
        return ""
    cleaned = value.lower()
    cleaned = re.sub(r"[’'\"`.]", "", cleaned)
    cleaned = re.sub(r"[–—-]", " ", cleaned)
    cleaned = re.sub(r"^the\s+", "", cleaned)
    cleaned = re.sub(r"\s+", " ", cleaned)
    return cleaned.strip()


_NORMALIZED_LEVELS = {normalize_key(name): level for name, level in TRUST_LEVELS.items()}


def normalize_source(source: str | None) -> str:
    return normalize_key(source)


def get_trust_level(source: str | None) -> int:
    return _NORMALIZED_LEVELS.get(normalize_source(source), DEFAULT_TRUST_LEVEL)


def hostname(url: str | None) -> str:
    """Return the lowercase host of `url` without a leading `www.`."""
    if not url:
        return ""
    try:
        host = urlparse(url.strip()).hostname or ""
    except ValueError:
        return ""
    return re.sub(r"^www\.", "", host.lower())


def is_google_news_url(url: str | None) -> bool:
    return hostname(url) == "news.google.com"


def source_from_url(url: str | None) -> str:
    host = hostname(url)
    if not host:
        return ""
    for domain, name in SOURCE_OVERRIDES.items():
        if host == domain or host.endswith(f".{domain}"):
            return name
    parts = host.split(".")
    base = parts[-2] if len(parts) >= 2 else host
    base = re.sub(r"[-_]+", " ", base)
    return re.sub(r"\b\w", lambda match: match.group(0).upper(), base)


def normalize_title_for_search(title: str | None) -> str:
    if not title:
        return ""
    cleaned = html.unescape(title)
    cleaned = re.sub(r"[“”„«»]", '"', cleaned)
    cleaned = re.sub(r"[‘’]", "'", cleaned)
    cleaned = cleaned.replace('"', "")
    cleaned = re.sub(r"\s+\|\s+.*$", "", cleaned)
    cleaned = re.sub(r"\s+-\s+[^-]+$", "", cleaned)
    return cleaned.strip()


def normalize_title_key(title: str | None) -> str:
    cleaned = normalize_title_for_search(title)
    if not cleaned:
        return ""
    cleaned = TITLE_PREFIX_PATTERN.sub("", cleaned)
    return normalize_key(cleaned)


def extract_search_terms_from_url(url: str | None) -> str:
    """Turn the last path segment of an article URL into search words."""
    if not url:
        return ""
    try:
        path = urlparse(url.strip()).path
    except ValueError:
        return ""
    segments = [segment for segment in path.split("/") if segment]
    slug = segments[-1] if segments else ""
    if not slug:
        return ""
    if "newsml_" in slug:
        idx = slug.rfind(":0-")
        if idx != -1:
            slug = slug[idx + 3 :]
        slug = re.sub(r"newsml_[^:-]+[:\d-]*", "", slug, flags=re.IGNORECASE)
    slug = re.sub(r"^[^a-z0-9]+", "", slug, flags=re.IGNORECASE)
    terms = re.sub(r"[-_]", " ", slug)
    return re.sub(r"\s+", " ", terms).strip()
