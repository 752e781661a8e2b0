"""
Event and candidate records processed by the resolution pipeline, plus the row mapping
used by the row store.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from src.services.source_levels import (
    get_trust_level,
    normalize_source,
    normalize_title_key,
)

LOGGER = logging.getLogger(__name__)

MAX_TEXT_CHARS = 30000

VERIFY_STATUSES = ("ok", "unverified", "skipped", "mismatch", "error", "")

REQUIRED_FIELDS = (
    "gnUrl",
    "url",
    "source",
    "titleEn",
    "titleRu",
    "summary",
    "topic",
    "priority",
)

# Row column -> Event attribute.
COLUMN_MAP = {
    "id": "id",
    "sqk": "sqk",
    "date": "date",
    "topic": "topic",
    "priority": "priority",
    "titleEn": "title_en",
    "titleRu": "title_ru",
    "source": "source",
    "gnUrl": "gn_url",
    "url": "url",
    "summary": "summary",
    "text": "text",
    "aiTopic": "ai_topic",
    "aiPriority": "ai_priority",
    "manual": "manual",
    "verifyStatus": "verify_status",
}


def _clean(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _optional_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def is_blank(value: Any) -> bool:
    return value is None or not str(value).strip()


@dataclass
class Candidate:
    """A related article offered as an alternative source for an event."""

    title_en: str = ""
    source: str = ""
    gn_url: str = ""
    url: str = ""

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "Candidate":
        return cls(
            title_en=_clean(payload.get("titleEn") or payload.get("title_en") or payload.get("titleRu")),
            source=_clean(payload.get("source")),
            gn_url=_clean(payload.get("gnUrl") or payload.get("gn_url")),
            url=_clean(payload.get("url")),
        )

    def to_dict(self) -> dict[str, str]:
        return {
            "titleEn": self.title_en,
            "gnUrl": self.gn_url,
            "url": self.url,
            "source": self.source,
        }

    @property
    def link(self) -> str:
        return (self.gn_url or self.url or "").strip()

    @property
    def usable(self) -> bool:
        return bool(self.link) and bool(self.source)

    @property
    def has_direct_url(self) -> bool:
        return bool(self.url)

    @property
    def level(self) -> int:
        return get_trust_level(self.source)

    @property
    def normalized_source(self) -> str:
        return normalize_source(self.source)

    @property
    def normalized_title(self) -> str:
        return normalize_title_key(self.title_en)


def parse_articles_value(value: Any) -> list[Candidate]:
    """Accept a list or a JSON string of candidate dicts; anything else yields []."""
    if not value:
        return []
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            LOGGER.debug("Ignoring malformed articles cell: %.80s", value)
            return []
    if not isinstance(value, list):
        return []
    candidates: list[Candidate] = []
    for item in value:
        if isinstance(item, Candidate):
            candidates.append(item)
        elif isinstance(item, dict):
            candidates.append(Candidate.from_dict(item))
    return candidates


@dataclass
class ResolutionState:
    """Per-run bookkeeping that is never written back to the row store."""

    gn_expanded: bool = False
    external_expanded: bool = False
    last_phase: str = ""
    last_status: str = ""
    last_method: str = ""
    last_reason: str = ""
    last_page_summary: str = ""


@dataclass
class Event:
    id: int | None = None
    title_en: str = ""
    title_ru: str = ""
    source: str = ""
    gn_url: str = ""
    url: str = ""
    text: str = ""
    topic: str = ""
    priority: int | None = None
    summary: str = ""
    articles: list[Candidate] = field(default_factory=list)
    verify_status: str = ""
    date: str = ""
    sqk: int | None = None
    ai_topic: str = ""
    ai_priority: int | None = None
    manual: str = ""
    extra: dict[str, Any] = field(default_factory=dict)
    state: ResolutionState = field(default_factory=ResolutionState, repr=False, compare=False)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Event":
        event = cls()
        for column, value in row.items():
            if column == "articles":
                event.articles = parse_articles_value(value)
                continue
            attr = COLUMN_MAP.get(column)
            if attr is None:
                event.extra[column] = value
                continue
            if attr in {"id", "sqk", "priority", "ai_priority"}:
                setattr(event, attr, _optional_int(value))
            else:
                setattr(event, attr, _clean(value))
        return event

    def to_row(self) -> dict[str, Any]:
        row: dict[str, Any] = dict(self.extra)
        for column, attr in COLUMN_MAP.items():
            value = getattr(self, attr)
            row[column] = "" if value is None else value
        row["articles"] = json.dumps([item.to_dict() for item in self.articles], ensure_ascii=False) if self.articles else ""
        return row

    def set_text(self, text: str) -> None:
        self.text = (text or "")[:MAX_TEXT_CHARS]


def title_for(event: Event) -> str:
    return event.title_en or event.title_ru or ""


def missing_fields(event: Event) -> list[str]:
    row = event.to_row()
    return [name for name in REQUIRED_FIELDS if is_blank(row.get(name))]


def is_complete(event: Event) -> bool:
    return not missing_fields(event)


@dataclass
class FetchAttempt:
    """Outcome of one fetch/extract/verify pass over a single URL."""

    ok: bool
    html: str = ""
    text: str = ""
    verify: Any = None
    mismatch: bool = False
