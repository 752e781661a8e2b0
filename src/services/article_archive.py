"""
On-disk archive of fetched articles: `{id}.html` keeps the raw page behind a leading
URL comment and `{id}.txt` keeps the title, a blank line, then the extracted text.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

from bs4 import BeautifulSoup

from src.services.models import Event, is_blank, title_for
from src.services.source_levels import is_google_news_url, source_from_url

LOGGER = logging.getLogger(__name__)

URL_COMMENT_PATTERN = re.compile(r"^<!--\s*(.*?)\s*-->", re.DOTALL)
TITLE_META = (
    {"property": "og:title"},
    {"name": "og:title"},
    {"property": "twitter:title"},
    {"name": "twitter:title"},
    {"name": "title"},
)


def extract_title_from_html(html: str | None) -> str:
    if not html:
        return ""
    soup = BeautifulSoup(html, "html.parser")
    for attrs in TITLE_META:
        node = soup.find("meta", attrs=attrs)
        content = node.get("content") if node else None
        if content and str(content).strip():
            return str(content).strip()
    if soup.title and soup.title.string:
        return soup.title.string.strip()
    return ""


def _infer_source(event: Event) -> bool:
    if not is_blank(event.source) or is_blank(event.url) or is_google_news_url(event.url):
        return False
    inferred = source_from_url(event.url)
    if not inferred:
        return False
    event.source = inferred
    return True


class ArticleArchive:
    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def html_path(self, event: Event) -> Path:
        return self.root / f"{event.id}.html"

    def text_path(self, event: Event) -> Path:
        return self.root / f"{event.id}.txt"

    def save(self, event: Event, html: str | None, text: str) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        self.html_path(event).write_text(f"<!--\n{event.url}\n-->\n{html or ''}", encoding="utf-8")
        if is_blank(event.title_en) and html:
            extracted = extract_title_from_html(html)
            if extracted:
                event.title_en = extracted
        _infer_source(event)
        event.set_text(text)
        self.text_path(event).write_text(f"{title_for(event)}\n\n{event.text}", encoding="utf-8")
        LOGGER.debug("Archived article #%s to %s", event.id, self.root)

    def backfill_meta(self, event: Event) -> bool:
        """Restore url/title/source from a previously archived page."""
        path = self.html_path(event)
        if not path.exists():
            return _infer_source(event)
        html = path.read_text(encoding="utf-8")
        changed = False
        match = URL_COMMENT_PATTERN.match(html)
        if match and match.group(1).strip() and is_blank(event.url):
            event.url = match.group(1).strip()
            changed = True
        if is_blank(event.title_en):
            extracted = extract_title_from_html(html)
            if extracted:
                event.title_en = extracted
                changed = True
        return _infer_source(event) or changed

    def backfill_text(self, event: Event) -> bool:
        if event.text:
            return False
        path = self.text_path(event)
        if not path.exists():
            return False
        raw = path.read_text(encoding="utf-8")
        if not raw:
            return False
        parts = raw.split("\n\n", 1)
        text = (parts[1] if len(parts) > 1 else raw).strip()
        if not text:
            return False
        event.set_text(text)
        return True
