"""Editorial topic taxonomy: display order and slide budget per topic."""

from __future__ import annotations

from dataclasses import dataclass

# Order of the rundown in the final table; unknown topics sort after all of these.
UNKNOWN_TOPIC_ID = 99


@dataclass(frozen=True)
class Topic:
    name: str
    id: int
    max_slides: int


TOPICS: dict[str, Topic] = {
    topic.name: topic
    for topic in (
        Topic("Big picture", 1, 12),
        Topic("America", 2, 30),
        Topic("Left Is losing it", 3, 6),
        Topic("Ukraine", 4, 24),
        Topic("Гадание на кофе", 5, 9),
        Topic("World news", 6, 24),
        Topic("Маразм крепчал", 7, 6),
        Topic("Tech News", 8, 6),
        Topic("Crazy news", 9, 6),
    )
}

_BY_LOWER = {name.lower(): name for name in TOPICS}


def map_topic(label: str | None) -> str:
    """Map a model-provided label onto a known topic name; unknown labels map to ""."""
    if not label:
        return ""
    cleaned = label.strip()
    if cleaned in TOPICS:
        return cleaned
    return _BY_LOWER.get(cleaned.lower(), "")


def topic_id(name: str | None) -> int:
    topic = TOPICS.get(name or "")
    return topic.id if topic else UNKNOWN_TOPIC_ID
