import json
from pathlib import Path

import pytest

from src.services.models import Candidate, Event
from src.services.row_store import (
    EventTable,
    JsonlRowStore,
    OversizeCellError,
    RowStore,
    SQLiteRowStore,
)


class MemoryStore(RowStore):
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.saves: list[tuple[list, list]] = []
        self.row_saves: list[tuple[int, dict]] = []

    def load_rows(self):
        return [], []

    def save_row(self, index, headers, row):
        if self.fail:
            raise OSError("disk full")
        self.row_saves.append((index, row))

    def save_all_rows(self, headers, rows):
        if self.fail:
            raise OSError("disk full")
        self.saves.append((list(headers), list(rows)))


def test_sqlite_store_round_trip(tmp_path: Path) -> None:
    store = SQLiteRowStore(tmp_path / "rows.sqlite")
    headers = ["id", "titleEn", "articles"]
    rows = [
        {"id": 1, "titleEn": "First", "articles": json.dumps([{"source": "CNN"}])},
        {"id": 2, "titleEn": "Second", "ignored": "x"},
    ]

    store.save_all_rows(headers, rows)
    loaded_headers, loaded = store.load_rows()

    assert loaded_headers == headers
    assert loaded[0]["titleEn"] == "First"
    assert loaded[1] == {"id": 2, "titleEn": "Second", "articles": ""}


def test_sqlite_save_row_replaces_single_position(tmp_path: Path) -> None:
    store = SQLiteRowStore(tmp_path / "rows.sqlite")
    store.save_all_rows(["id", "summary"], [{"id": 1}, {"id": 2}])

    store.save_row(1, ["id", "summary"], {"id": 2, "summary": "done"})

    _, rows = store.load_rows()
    assert rows[1]["summary"] == "done"
    assert rows[0]["summary"] == ""


def test_oversize_cells_raise_unless_dropped(tmp_path: Path) -> None:
    strict = SQLiteRowStore(tmp_path / "strict.sqlite", max_cell_chars=10)
    with pytest.raises(OversizeCellError):
        strict.save_all_rows(["id", "text"], [{"id": 1, "text": "x" * 11}])

    lenient = SQLiteRowStore(tmp_path / "lenient.sqlite", max_cell_chars=10, drop_oversize=True)
    lenient.save_all_rows(["id", "text"], [{"id": 1, "text": "x" * 11}])
    _, rows = lenient.load_rows()
    assert rows[0]["text"] == ""


def test_jsonl_store_loads_rows_and_union_of_headers(tmp_path: Path) -> None:
    path = tmp_path / "news.jsonl"
    path.write_text(
        "\n".join(
            [
                json.dumps({"titleEn": "A", "gnUrl": "https://news.google.com/a", "articles": [{"source": "CNN"}]}),
                "{not json",
                json.dumps({"titleEn": "B", "source": "BBC"}),
                "",
            ]
        ),
        encoding="utf-8",
    )

    headers, rows = JsonlRowStore(path).load_rows()

    assert headers == ["titleEn", "gnUrl", "articles", "source"]
    assert len(rows) == 2
    assert json.loads(rows[0]["articles"]) == [{"source": "CNN"}]


def test_event_row_mapping_round_trip() -> None:
    event = Event(
        id=4,
        title_en="Title",
        priority=2,
        articles=[Candidate(title_en="A", source="CNN", gn_url="https://news.google.com/a")],
        extra={"custom": "kept"},
    )

    restored = Event.from_row(event.to_row())

    assert restored.id == 4
    assert restored.priority == 2
    assert restored.articles == event.articles
    assert restored.extra["custom"] == "kept"


def test_paused_table_only_saves_on_resume() -> None:
    store = MemoryStore()
    table = EventTable(store, [Event(id=1, title_en="A")], save_debounce_ms=60_000)

    table.pause_auto_save()
    table.mark_dirty()
    assert not table.flush()
    assert store.saves == []

    table.resume_auto_save(flush=True)

    assert len(store.saves) == 1
    headers, rows = store.saves[0]
    assert "titleEn" in headers
    assert rows[0]["titleEn"] == "A"


def test_flush_without_changes_is_noop_unless_forced() -> None:
    store = MemoryStore()
    table = EventTable(store, [Event(id=1)])

    assert not table.flush()
    assert table.flush(force=True)
    assert len(store.saves) == 1


def test_save_failures_are_not_raised() -> None:
    table = EventTable(MemoryStore(fail=True), [Event(id=1)])
    table.pause_auto_save()
    table.mark_dirty()

    table.resume_auto_save(flush=True)
    table.save()


def test_save_event_writes_only_its_row() -> None:
    store = MemoryStore()
    first, second = Event(id=1, title_en="A"), Event(id=2, title_en="B")
    table = EventTable(store, [first, second])
    table.pause_auto_save()

    second.summary = "Done."
    table.save_event(second)

    assert store.saves == []
    assert len(store.row_saves) == 1
    index, row = store.row_saves[0]
    assert index == 1
    assert row["summary"] == "Done."


def test_save_event_skips_events_outside_the_table() -> None:
    store = MemoryStore()
    table = EventTable(store, [Event(id=1)])

    table.save_event(Event(id=1))

    assert store.row_saves == []


def test_save_event_failures_are_not_raised() -> None:
    event = Event(id=1)
    table = EventTable(MemoryStore(fail=True), [event])

    table.save_event(event)


def test_ensure_header_and_next_id() -> None:
    table = EventTable(MemoryStore(), [Event(id=3), Event(id=8)], headers=["id"])

    assert table.ensure_header("verifyStatus")
    assert not table.ensure_header("verifyStatus")
    assert table.headers == ["id", "verifyStatus"]
    assert table.next_id() == 9


def test_load_builds_events_from_store(tmp_path: Path) -> None:
    store = SQLiteRowStore(tmp_path / "rows.sqlite")
    store.save_all_rows(["id", "titleEn", "priority"], [{"id": 1, "titleEn": "A", "priority": "3"}])

    table = EventTable.load(store)

    assert len(table) == 1
    assert table.events[0].priority == 3
    assert table.headers == ["id", "titleEn", "priority"]
