"""
Article body extraction from arbitrary HTML.

Stages run in order and the first one producing more than `MIN_TEXT_LENGTH`
characters wins: plain-text passthrough, JSON-LD `articleBody`-style fields, known
article-body containers, and finally a whole-document HTML to text conversion.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Iterable

from bs4 import BeautifulSoup

LOGGER = logging.getLogger(__name__)

MIN_TEXT_LENGTH = 400
JSON_LD_MAX_DEPTH = 32

# Most specific first.
JSON_LD_KEYS = ("articleBody", "text", "description")

ARTICLE_SELECTORS = (
    '[itemprop="articleBody"]',
    "article",
    ".article-body",
    ".article__body",
    ".article-content",
    ".article__content",
    ".story-body",
    ".story-content",
    ".post-content",
    ".entry-content",
    ".content-body",
    "#article-body",
    ".body",
    "main",
)

SKIP_TAGS = ["script", "style", "noscript", "template", "nav", "aside", "footer", "img", "hr", "svg", "iframe"]
BLOCK_TAGS = [
    "p",
    "div",
    "section",
    "article",
    "main",
    "header",
    "blockquote",
    "pre",
    "ul",
    "ol",
    "li",
    "table",
    "tr",
    "h1",
    "h2",
    "h3",
    "h4",
    "h5",
    "h6",
    "figure",
    "figcaption",
]

STYLE_PATTERN = re.compile(r"<style\b[^>]*>.*?</style\s*>", re.IGNORECASE | re.DOTALL)
TAG_PATTERN = re.compile(r"</?[a-zA-Z!][\w:-]*(?:\s[^>]*)?/?>")


def strip_style_blocks(markup: str) -> str:
    return STYLE_PATTERN.sub("", markup or "")


def _accept(text: str | None) -> str | None:
    if not text:
        return None
    text = text.strip()
    return text if len(text) > MIN_TEXT_LENGTH else None


def html_to_text(markup: str) -> str:
    """Convert markup to plain text; link text is kept without hrefs, headings keep case."""
    soup = BeautifulSoup(strip_style_blocks(markup), "html.parser")
    for tag in soup(SKIP_TAGS):
        tag.decompose()
    for br in soup.find_all("br"):
        br.replace_with("\n")
    for tag in soup.find_all(BLOCK_TAGS):
        tag.insert_before("\n\n")
        tag.insert_after("\n\n")
    raw = soup.get_text()
    lines = [re.sub(r"[ \t\r\f\v\xa0]+", " ", line).strip() for line in raw.split("\n")]
    text = "\n".join(lines)
    return re.sub(r"\n{3,}", "\n\n", text).strip()


def _iter_json_ld(soup: BeautifulSoup) -> Iterable[Any]:
    for script in soup.find_all("script", attrs={"type": re.compile(r"ld\+json", re.IGNORECASE)}):
        payload = script.string or script.get_text() or ""
        payload = payload.strip()
        if not payload:
            continue
        try:
            yield json.loads(payload)
        except json.JSONDecodeError:
            LOGGER.debug("Skipping malformed JSON-LD block (%s chars)", len(payload))


def collect_json_ld_strings(data: Any, keys: Iterable[str] = JSON_LD_KEYS) -> dict[str, list[str]]:
    """Walk a JSON tree iteratively and collect string values stored under `keys`."""
    wanted = tuple(keys)
    buckets: dict[str, list[str]] = {key: [] for key in wanted}
    stack: list[tuple[Any, int]] = [(data, 0)]
    visited: set[int] = set()
    while stack:
        node, depth = stack.pop()
        if depth > JSON_LD_MAX_DEPTH:
            continue
        if isinstance(node, (dict, list)):
            if id(node) in visited:
                continue
            visited.add(id(node))
        if isinstance(node, dict):
            for key, value in node.items():
                if key in buckets and isinstance(value, str):
                    buckets[key].append(value)
                elif isinstance(value, (dict, list)):
                    stack.append((value, depth + 1))
        elif isinstance(node, list):
            for item in node:
                if isinstance(item, (dict, list)):
                    stack.append((item, depth + 1))
    return buckets


def extract_from_json_ld(soup: BeautifulSoup) -> str | None:
    buckets: dict[str, list[str]] = {key: [] for key in JSON_LD_KEYS}
    for block in _iter_json_ld(soup):
        for key, values in collect_json_ld_strings(block).items():
            buckets[key].extend(values)
    for key in JSON_LD_KEYS:
        qualifying = []
        for value in buckets[key]:
            # Some publishers embed markup inside articleBody.
            text = html_to_text(value) if TAG_PATTERN.search(value) else value.strip()
            if _accept(text):
                qualifying.append(text)
        if qualifying:
            return max(qualifying, key=len)
    return None


def extract_from_selectors(soup: BeautifulSoup) -> str | None:
    best: str | None = None
    for selector in ARTICLE_SELECTORS:
        for node in soup.select(selector):
            text = _accept(html_to_text(node.decode_contents()))
            if text and (best is None or len(text) > len(best)):
                best = text
    return best


def extract_text(markup: str | None) -> str | None:
    if not markup:
        return None
    cleaned = strip_style_blocks(markup)
    if not TAG_PATTERN.search(cleaned):
        return _accept(cleaned)
    soup = BeautifulSoup(cleaned, "html.parser")
    text = extract_from_json_ld(soup)
    if text:
        return text
    text = extract_from_selectors(soup)
    if text:
        return text
    return _accept(html_to_text(cleaned))
