from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from src.api.main import app, get_store
from src.services.models import Event
from src.services.row_store import DEFAULT_COLUMNS, SQLiteRowStore


@pytest.fixture
def client(tmp_path: Path):
    store = SQLiteRowStore(tmp_path / "rows.sqlite")
    complete = Event(
        id=1,
        topic="Ukraine",
        priority=2,
        title_en="Front shifts",
        title_ru="Фронт",
        source="Reuters",
        gn_url="https://news.google.com/rss/articles/A",
        url="https://www.reuters.com/a",
        summary="Summary.",
        verify_status="ok",
    )
    partial = Event(id=2, topic="America", title_en="Pending story", source="CNN")
    store.save_all_rows(DEFAULT_COLUMNS, [partial.to_row(), complete.to_row()])
    app.dependency_overrides[get_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client: TestClient) -> None:
    assert client.get("/health").json() == {"status": "ok"}


def test_rows_are_sorted_and_report_missing_fields(client: TestClient) -> None:
    rows = client.get("/api/rows").json()

    assert [row["id"] for row in rows] == [2, 1]
    assert rows[0]["complete"] is False
    assert "summary" in rows[0]["missing"]
    assert rows[1]["complete"] is True
    assert rows[1]["verifyStatus"] == "ok"


def test_rows_filter_on_completeness(client: TestClient) -> None:
    rows = client.get("/api/rows", params={"complete": "true"}).json()

    assert [row["id"] for row in rows] == [1]


def test_single_row_lookup(client: TestClient) -> None:
    assert client.get("/api/rows/1").json()["titleRu"] == "Фронт"
    assert client.get("/api/rows/42").status_code == 404
