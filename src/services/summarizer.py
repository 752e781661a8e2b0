"""
Per-event summarization: topic, priority, Russian headline and a short summary.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from src.services.ai_backends import ChatBackend, extract_json_object
from src.services.models import Event, title_for
from src.services.rate_limit import delay_for_tokens
from src.services.topics import map_topic

LOGGER = logging.getLogger(__name__)

DEFAULT_INSTRUCTIONS = "You are a news summarizer. Return concise results."
SUMMARY_ATTEMPTS = 3
RETRY_PAUSE_SECONDS = 30.0

SUMMARY_SCHEMA: dict[str, Any] = {
    "name": "news_summary",
    "schema": {
        "type": "object",
        "additionalProperties": False,
        "properties": {
            "topic": {"type": "string"},
            "priority": {"type": ["string", "number"]},
            "titleRu": {"type": "string"},
            "summary": {"type": "string"},
        },
        "required": ["topic", "priority", "summary", "titleRu"],
    },
    "strict": True,
}


class SummaryPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    topic: str = ""
    priority: int | None = None
    title_ru: str = Field(default="", alias="titleRu")
    summary: str

    @field_validator("priority", mode="before")
    @classmethod
    def _coerce_priority(cls, value: Any) -> Any:
        if value is None or value == "":
            return None
        try:
            return int(float(value))
        except (TypeError, ValueError):
            return None

    @field_validator("summary")
    @classmethod
    def _require_summary(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("summary is empty")
        return value.strip()


@dataclass
class SummaryResult:
    topic: str
    priority: int | None
    title_ru: str
    summary: str
    tokens: int | None = None
    delay: float = 0.0


def load_instructions(path: Path | None) -> str:
    if path is None or not path.exists():
        if path is not None:
            LOGGER.warning("AI instructions file is missing: %s", path)
        return DEFAULT_INSTRUCTIONS
    text = path.read_text(encoding="utf-8").strip()
    return text or DEFAULT_INSTRUCTIONS


class Summarizer:
    def __init__(
        self,
        backend: ChatBackend,
        instructions: str = DEFAULT_INSTRUCTIONS,
        attempts: int = SUMMARY_ATTEMPTS,
        retry_pause: float = RETRY_PAUSE_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.backend = backend
        self.instructions = instructions
        self.attempts = attempts
        self.retry_pause = retry_pause
        self._sleep = sleep

    def _system_prompt(self) -> str:
        return "\n".join(
            [
                self.instructions,
                "Return ONLY JSON with keys: topic, priority, titleRu, summary.",
                "Use topic values that exist in the provided taxonomy when possible.",
            ]
        )

    def summarize(self, event: Event) -> SummaryResult | None:
        user = "\n".join(
            [
                f"Title: {title_for(event)}",
                f"Source: {event.source or ''}",
                f"URL: {event.url or ''}",
                "Text:",
                event.text or "",
            ]
        )
        for attempt in range(1, self.attempts + 1):
            try:
                completion = self.backend.complete(
                    self._system_prompt(), user, temperature=0.2, json_schema=SUMMARY_SCHEMA
                )
                payload = SummaryPayload.model_validate(extract_json_object(completion.content))
            except ValidationError as exc:
                LOGGER.warning("AI reply rejected (%s/%s): %s", attempt, self.attempts, exc.errors()[:1])
            except Exception:  # noqa: BLE001
                LOGGER.warning("AI fail (%s/%s)", attempt, self.attempts, exc_info=True)
            else:
                LOGGER.info("got %s chars, %s tokens used", len(payload.summary), completion.total_tokens)
                return SummaryResult(
                    topic=map_topic(payload.topic),
                    priority=payload.priority,
                    title_ru=payload.title_ru,
                    summary=payload.summary,
                    tokens=completion.total_tokens,
                    delay=delay_for_tokens(completion.total_tokens),
                )
            if attempt < self.attempts:
                self._sleep(self.retry_pause)
        return None


def apply_summary(event: Event, result: SummaryResult) -> None:
    """Editorial fields are only filled when blank; model fields are always replaced."""
    if not event.topic and result.topic:
        event.topic = result.topic
    if event.priority is None and result.priority is not None:
        event.priority = result.priority
    if not event.title_ru and result.title_ru:
        event.title_ru = result.title_ru
    event.summary = result.summary
    event.ai_topic = result.topic
    event.ai_priority = result.priority
