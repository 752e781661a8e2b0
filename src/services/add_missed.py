"""
Manually add articles the feed missed, either from CLI URLs or from rows marked
`manual = "add"` in the row store.
"""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import dataclass
from datetime import date
from typing import List, Optional, Sequence

from src.services.models import Event, is_blank
from src.services.resolution import ResolutionOrchestrator, build_orchestrator, open_table
from src.services.row_store import EventTable
from src.services.settings import Settings
from src.services.source_levels import hostname, is_google_news_url
from src.services.summarizer import apply_summary
from src.services.text_extraction import extract_text
from src.services.topics import TOPICS, map_topic

LOGGER = logging.getLogger(__name__)

MANUAL_PENDING = "add"
MANUAL_DONE = "done"


@dataclass
class ManualOverrides:
    topic: str | None = None
    priority: int | None = None
    title: str | None = None


def _find_existing(table: EventTable, url: str, input_url: str) -> Event | None:
    for event in table.events:
        if event.url == url or (event.gn_url and event.gn_url == input_url):
            return event
    return None


def add_missed(
    table: EventTable,
    orchestrator: ResolutionOrchestrator,
    input_url: str,
    overrides: ManualOverrides | None = None,
    existing: Event | None = None,
) -> Optional[Event]:
    overrides = overrides or ManualOverrides()
    LOGGER.info("Processing: %s", input_url)

    url: Optional[str] = input_url
    if is_google_news_url(input_url):
        url = orchestrator.decode_url(input_url)
        if not url:
            LOGGER.warning("Failed to decode Google News URL %s", input_url)
            return None
        LOGGER.info("Decoded to: %s", url)

    existing = existing or _find_existing(table, url, input_url)
    if existing is not None:
        LOGGER.info("Article already exists in the table (id: %s)", existing.id)
        if existing.summary:
            LOGGER.info("Already has summary, skipping...")
            return existing

    html = orchestrator.fetcher.fetch_direct(url)
    if not html and orchestrator.browser is not None:
        html = orchestrator.browser.browse(url)
    if not html:
        LOGGER.warning("Failed to fetch article %s", url)
        return None
    text = extract_text(html)
    if not text:
        LOGGER.warning("Text too short for summarization (%s)", url)
        return None

    event = existing or Event(
        id=table.next_id(),
        gn_url=input_url if is_google_news_url(input_url) else "",
        date=date.today().isoformat(),
        source=hostname(url),
        manual=MANUAL_PENDING,
    )
    event.url = url
    if overrides.title and is_blank(event.title_ru):
        event.title_ru = overrides.title
    orchestrator.archive.save(event, html, text)

    if orchestrator.summarizer is None:
        LOGGER.warning("No summarizer configured; cannot summarize %s", url)
        return None
    result = orchestrator.summarizer.summarize(event)
    if result is None:
        LOGGER.warning("AI summarization failed for %s", url)
        return None
    apply_summary(event, result)
    if overrides.topic:
        event.topic = map_topic(overrides.topic) or overrides.topic
    if overrides.priority is not None:
        event.priority = overrides.priority
    if overrides.title:
        event.title_ru = overrides.title
    LOGGER.info("Topic: %s | Priority: %s | Title: %s", event.topic, event.priority, event.title_ru)

    if existing is None:
        table.append(event)
    else:
        table.mark_dirty()
    return event


def process_manual_rows(table: EventTable, orchestrator: ResolutionOrchestrator) -> List[Event]:
    pending = [event for event in table.events if event.manual == MANUAL_PENDING and not event.summary]
    if not pending:
        LOGGER.info("No rows marked for manual processing")
        return []
    LOGGER.info("Found %s rows marked for manual processing", len(pending))
    processed: List[Event] = []
    for event in pending:
        link = event.gn_url or event.url
        if not link:
            LOGGER.info("Skipping row without URL: %s", event.id)
            continue
        overrides = ManualOverrides(topic=event.topic or None, priority=event.priority, title=event.title_ru or None)
        result = add_missed(table, orchestrator, link, overrides, existing=event)
        if result is not None:
            result.manual = MANUAL_DONE
            table.save_event(result)
            processed.append(result)
    return processed


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Add articles the feed missed (Google News or direct URLs).",
        epilog=f"Topics: {', '.join(TOPICS)}. Rows with manual='add' are processed when no URL is given.",
    )
    parser.add_argument("urls", nargs="*", help="Article URLs (Google News or direct).")
    parser.add_argument("--url", "-u", dest="extra_urls", action="append", default=[], help="Article URL.")
    parser.add_argument("--topic", "-t", default=None, help="Force topic (overrides AI choice).")
    parser.add_argument("--priority", "-p", type=int, default=None, help="Force priority 0-9.")
    parser.add_argument("--title", default=None, help="Custom headline.")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity.",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stdout,
        force=True,
    )

    settings = Settings.from_env()
    table = open_table(settings)
    orchestrator = build_orchestrator(settings)
    urls = [*args.urls, *args.extra_urls]
    processed: List[Event] = []
    try:
        if urls:
            overrides = ManualOverrides(topic=args.topic, priority=args.priority, title=args.title)
            for url in urls:
                event = add_missed(table, orchestrator, url, overrides)
                if event is not None:
                    processed.append(event)
        else:
            processed = process_manual_rows(table, orchestrator)
    finally:
        if orchestrator.browser is not None:
            orchestrator.browser.close()
        table.close()

    if processed:
        LOGGER.info("Successfully processed %s article(s):", len(processed))
        for event in processed:
            LOGGER.info("  #%s [%s] %s", event.id, event.topic, event.title_ru or event.title_en)
    else:
        LOGGER.info("No articles were processed.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
