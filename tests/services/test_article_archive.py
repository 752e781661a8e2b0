from pathlib import Path

from src.services.article_archive import ArticleArchive, extract_title_from_html
from src.services.models import MAX_TEXT_CHARS, Event


def test_archive_round_trip_restores_url_and_text(tmp_path: Path) -> None:
    archive = ArticleArchive(tmp_path)
    text = "First paragraph.\n\nSecond paragraph with more detail."
    event = Event(id=7, title_en="X raises rates", source="Reuters", url="https://www.reuters.com/markets/x-raises-rates")
    archive.save(event, "<html><body><p>body</p></body></html>", text)

    shell = Event(id=7)
    assert archive.backfill_meta(shell)
    assert archive.backfill_text(shell)

    assert shell.url == event.url
    assert shell.text == text
    assert (tmp_path / "7.html").read_text(encoding="utf-8").startswith(f"<!--\n{event.url}\n-->\n")


def test_archive_caps_text(tmp_path: Path) -> None:
    archive = ArticleArchive(tmp_path)
    event = Event(id=3, title_en="Long", url="https://example.com/long")
    archive.save(event, "", "z" * (MAX_TEXT_CHARS + 500))

    shell = Event(id=3)
    archive.backfill_text(shell)

    assert len(shell.text) == MAX_TEXT_CHARS


def test_save_fills_missing_title_and_source(tmp_path: Path) -> None:
    archive = ArticleArchive(tmp_path)
    event = Event(id=5, url="https://www.cnn.com/2024/01/01/world/story")
    html = '<html><head><meta property="og:title" content="Storm hits coast"><title>ignored</title></head></html>'

    archive.save(event, html, "text")

    assert event.title_en == "Storm hits coast"
    assert event.source == "CNN"
    assert (tmp_path / "5.txt").read_text(encoding="utf-8") == "Storm hits coast\n\ntext"


def test_backfill_meta_keeps_existing_fields(tmp_path: Path) -> None:
    archive = ArticleArchive(tmp_path)
    archive.save(Event(id=9, title_en="Old", url="https://example.com/a"), "<title>Page</title>", "body")

    event = Event(id=9, title_en="Kept", url="https://example.com/kept", source="Example")

    assert not archive.backfill_meta(event)
    assert event.url == "https://example.com/kept"
    assert event.title_en == "Kept"


def test_backfill_without_artifacts(tmp_path: Path) -> None:
    archive = ArticleArchive(tmp_path)
    event = Event(id=1, url="https://news.google.com/rss/articles/abc")

    assert not archive.backfill_meta(event)
    assert not archive.backfill_text(event)
    assert event.source == ""


def test_extract_title_prefers_meta_over_title_tag() -> None:
    assert extract_title_from_html('<meta name="twitter:title" content="Meta title"><title>Tag</title>') == "Meta title"
    assert extract_title_from_html("<html><title> Tag title </title></html>") == "Tag title"
    assert extract_title_from_html("") == ""
