import json
from pathlib import Path

import pytest

from src.services.ai_backends import Completion
from src.services.models import Event
from src.services.summarizer import (
    DEFAULT_INSTRUCTIONS,
    SummaryResult,
    Summarizer,
    apply_summary,
    load_instructions,
)
from src.services.topics import UNKNOWN_TOPIC_ID, map_topic, topic_id


class ScriptedBackend:
    name = "scripted"

    def __init__(self, replies: list) -> None:
        self.replies = list(replies)
        self.prompts: list[tuple[str, str]] = []

    def complete(self, system, user, temperature=0.0, json_schema=None):
        self.prompts.append((system, user))
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


def reply(payload: dict, tokens: int = 3000) -> Completion:
    return Completion(content=json.dumps(payload, ensure_ascii=False), total_tokens=tokens)


def test_summarize_maps_topic_and_coerces_priority() -> None:
    backend = ScriptedBackend(
        [reply({"topic": "ukraine", "priority": "2", "titleRu": "Заголовок", "summary": " Short summary. "})]
    )
    event = Event(id=1, title_en="Front line shifts", source="Reuters", text="Body text")

    result = Summarizer(backend, sleep=lambda _: None).summarize(event)

    assert (result.topic, result.priority, result.title_ru, result.summary) == (
        "Ukraine",
        2,
        "Заголовок",
        "Short summary.",
    )
    assert result.tokens == 3000
    assert result.delay == pytest.approx(6.0)
    assert "Title: Front line shifts" in backend.prompts[0][1]
    assert backend.prompts[0][1].endswith("Text:\nBody text")


def test_summarize_retries_after_failures() -> None:
    pauses: list[float] = []
    backend = ScriptedBackend(
        [
            RuntimeError("rate limited"),
            Completion(content="not json"),
            reply({"topic": "Tech News", "priority": 3, "titleRu": "", "summary": "Done."}),
        ]
    )

    result = Summarizer(backend, retry_pause=30, sleep=pauses.append).summarize(Event(title_en="Chips"))

    assert result is not None
    assert result.summary == "Done."
    assert pauses == [30, 30]


def test_summarize_gives_up_after_attempts() -> None:
    pauses: list[float] = []
    backend = ScriptedBackend([RuntimeError("down")] * 3)

    assert Summarizer(backend, sleep=pauses.append).summarize(Event(title_en="X")) is None
    assert len(pauses) == 2


def test_apply_summary_keeps_editorial_fields() -> None:
    event = Event(topic="America", priority=1, title_ru="Свой заголовок")
    result = SummaryResult(topic="World news", priority=4, title_ru="Другой", summary="Summary.")

    apply_summary(event, result)

    assert event.topic == "America"
    assert event.priority == 1
    assert event.title_ru == "Свой заголовок"
    assert event.summary == "Summary."
    assert event.ai_topic == "World news"
    assert event.ai_priority == 4


def test_apply_summary_fills_blank_fields() -> None:
    event = Event()

    apply_summary(event, SummaryResult(topic="Crazy news", priority=5, title_ru="Новость", summary="S."))

    assert (event.topic, event.priority, event.title_ru) == ("Crazy news", 5, "Новость")


def test_topic_lookup() -> None:
    assert map_topic(" big picture ") == "Big picture"
    assert map_topic("Sports") == ""
    assert topic_id("Ukraine") == 4
    assert topic_id("") == UNKNOWN_TOPIC_ID


def test_load_instructions(tmp_path: Path) -> None:
    path = tmp_path / "instructions.txt"
    path.write_text("Be brief.\n", encoding="utf-8")

    assert load_instructions(path) == "Be brief."
    assert load_instructions(tmp_path / "missing.txt") == DEFAULT_INSTRUCTIONS
    assert load_instructions(None) == DEFAULT_INSTRUCTIONS
