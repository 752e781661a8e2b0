"""
Resolve news events to readable article text, summarize them, and keep the row table in
rundown order.

Each event moves through:
    needs-url -> fetch-primary -> verify-primary -> resolved
                                                 -> need-alternatives -> expand-candidates
                                                    -> try-alternatives -> resolved | failed
An event gets at most one aggregator-search expansion and one external-escalation
expansion per run.
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Sequence

from src.services.ai_backends import build_backend
from src.services.alternatives import (
    build_external_alternatives,
    get_alternative_pool,
    get_alternatives,
    merge_articles,
    should_expand,
    should_search_external,
)
from src.services.article_archive import ArticleArchive
from src.services.article_fetch import ArticleFetcher
from src.services.browse_article import BrowserFetcher
from src.services.domain_cooldown import DomainCooldownTracker
from src.services.external_search import ExternalSearch
from src.services.fetch_log import FailureDigest, FetchLog
from src.services.google_news import (
    GoogleNewsClient,
    backfill_gn_url,
    build_fallback_search_queries,
    hydrate_from_google_news,
    search_candidates,
)
from src.services.models import Candidate, Event, FetchAttempt, is_blank, title_for
from src.services.rate_limit import Throttles, rest
from src.services.row_store import EventTable, JsonlRowStore, SQLiteRowStore
from src.services.settings import VERIFY_MODES, Settings
from src.services.summarizer import Summarizer, apply_summary, load_instructions
from src.services.text_extraction import MIN_TEXT_LENGTH, extract_text
from src.services.topics import topic_id
from src.services.verification import ArticleVerifier, VerifyResult, should_verify

LOGGER = logging.getLogger(__name__)

FETCH_ATTEMPTS = 2
DECODE_ATTEMPTS = 2
SKIPPED_TOPIC = "other"
ACCEPTED_VERIFY_STATUSES = ("ok", "unverified", "skipped")


@dataclass
class RunStats:
    ok: int = 0
    fail: int = 0
    skipped: int = 0


def order_key(event: Event) -> int:
    """Rundown order: sequence key, then topic, then priority."""
    return (event.sqk or 999) * 1000 + topic_id(event.topic) * 10 + (event.priority or 10)


def apply_verify_status(event: Event, verify: VerifyResult | None) -> None:
    if verify is not None and verify.status in ACCEPTED_VERIFY_STATUSES:
        event.verify_status = verify.status


def _truncate(text: str, limit: int = 220) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


class ResolutionOrchestrator:
    def __init__(
        self,
        settings: Settings,
        fetcher: ArticleFetcher,
        browser: BrowserFetcher | None,
        verifier: ArticleVerifier | None,
        summarizer: Summarizer | None,
        google_news: GoogleNewsClient,
        archive: ArticleArchive,
        throttles: Throttles,
        external: ExternalSearch | None = None,
        fetch_log: FetchLog | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings
        self.fetcher = fetcher
        self.browser = browser
        self.verifier = verifier
        self.summarizer = summarizer
        self.google_news = google_news
        self.archive = archive
        self.throttles = throttles
        self.external = external
        self.fetch_log = fetch_log or FetchLog()
        self._sleep = sleep

    def _record(self, event: Event, phase: str, status: str, message: str = "", level: str = "info", **data) -> None:
        self.fetch_log.record(event, phase, status, message, level, **data)

    # URL decoding

    def decode_url(self, gn_url: str) -> Optional[str]:
        if is_blank(gn_url):
            return None
        self.throttles.url_decode.wait()
        LOGGER.info("Decoding URL...")
        return self.google_news.decode_url(gn_url)

    def decode_with_retry(self, event: Event) -> bool:
        """Decode the primary link; one paused retry before giving up on it."""
        for attempt in range(1, DECODE_ATTEMPTS + 1):
            url = self.decode_url(event.gn_url)
            if url:
                event.url = url
                self._record(event, "decode_url", "ok", f"#{event.id} url decoded", "ok", url=url, attempt=attempt)
                return True
            self._record(
                event,
                "decode_url",
                "fail",
                f"#{event.id} url decode failed ({attempt}/{DECODE_ATTEMPTS})",
                "warn",
                attempt=attempt,
            )
            if attempt < DECODE_ATTEMPTS:
                rest(self.settings.decode_failure_pause, self._sleep)
        return False

    # Fetch / verify

    def verify_text(
        self,
        event: Event,
        url: str,
        text: str,
        is_fallback: bool,
        method: str,
        attempt: int,
    ) -> VerifyResult:
        settings = self.settings
        if self.verifier is None or not should_verify(
            settings.verify_mode, is_fallback, len(text), settings.verify_short_threshold
        ):
            self._record(
                event,
                "verify",
                "skipped",
                f"#{event.id} verify skipped ({method})",
                method=method,
                attempt=attempt,
                textLength=len(text),
            )
            return VerifyResult.skipped()
        self.throttles.verify.wait()
        result = self.verifier.verify(
            title=title_for(event),
            source=event.source,
            url=url,
            text=text,
            min_confidence=settings.verify_min_confidence,
            fail_open=settings.verify_fail_open,
        )
        snippet = f" | {_truncate(result.page_summary)}" if result.page_summary else ""
        label = "unverified (gpt unavailable)" if result.status == "unverified" else result.status
        self._record(
            event,
            "verify",
            result.status,
            f"#{event.id} verify {label} ({method}){snippet}",
            "ok" if result.ok else "warn",
            method=method,
            attempt=attempt,
            textLength=len(text),
            confidence=result.confidence,
            reason=result.reason,
            page_summary=result.page_summary,
            verified=result.verified,
            error=result.error,
            tokens=result.tokens,
        )
        return result

    def _fetch_html(self, method: str, url: str) -> Optional[str]:
        if method == "fetch":
            return self.fetcher.fetch_direct(url)
        if self.browser is None:
            return None
        return self.browser.browse(url)

    def fetch_text_with_retry(self, event: Event, url: str, is_fallback: bool = False) -> Optional[FetchAttempt]:
        """Direct fetch then browser, twice; stops at the first verified text or hard mismatch."""
        found_text = False
        for attempt in range(1, FETCH_ATTEMPTS + 1):
            for method in ("fetch", "browse"):
                html = self._fetch_html(method, url)
                text = extract_text(html)
                if not text:
                    self._record(
                        event,
                        "fetch",
                        "no_text",
                        f"#{event.id} {method} no text ({attempt}/{FETCH_ATTEMPTS})",
                        "warn",
                        method=method,
                        attempt=attempt,
                    )
                    continue
                found_text = True
                self._record(
                    event,
                    "fetch",
                    "ok",
                    f"#{event.id} {method} ok ({attempt}/{FETCH_ATTEMPTS})",
                    "ok",
                    method=method,
                    attempt=attempt,
                    textLength=len(text),
                )
                verify = self.verify_text(event, url, text, is_fallback, method, attempt)
                if verify.ok:
                    return FetchAttempt(ok=True, html=html or "", text=text, verify=verify)
                if verify.status == "mismatch":
                    return FetchAttempt(ok=False, mismatch=True, verify=verify)
            LOGGER.info("article text missing (%s/%s)", attempt, FETCH_ATTEMPTS)
        if not found_text:
            self._record(
                event,
                "fetch",
                "no_text",
                f"#{event.id} no text after {FETCH_ATTEMPTS} attempts",
                "warn",
                attempts=FETCH_ATTEMPTS,
            )
        return None

    def _accept(self, event: Event, result: FetchAttempt) -> None:
        LOGGER.info("got %s chars", len(result.text))
        self.archive.save(event, result.html, result.text)
        apply_verify_status(event, result.verify)

    # Alternatives

    def expand_candidates(self, event: Event, escalate: bool = False) -> int:
        """Search for more candidates; returns how many new ones were merged in."""
        state = event.state
        added = 0
        queries = build_fallback_search_queries(event)
        if not state.gn_expanded:
            state.gn_expanded = True
            found = search_candidates(self.google_news, queries)
            added += merge_articles(event, found)
            self._record(
                event,
                "gn_expand",
                "ok" if added else "empty",
                f"#{event.id} aggregator search added {added} candidates",
                queries=queries,
            )
        if escalate and not state.external_expanded:
            state.external_expanded = True
            alternatives = get_alternatives(
                event, self.settings.min_trust_level, self.settings.fallback_min_trust_level
            )
            if self.external is not None and self.external.active and should_search_external(alternatives):
                external_added = 0
                for query in queries:
                    results = self.external.search(query)
                    external_added += merge_articles(event, build_external_alternatives(event, results))
                added += external_added
                self._record(
                    event,
                    "external_expand",
                    "ok" if external_added else "empty",
                    f"#{event.id} external search added {external_added} candidates",
                    queries=queries,
                )
        return added

    def _candidate_url(self, event: Event, candidate: Candidate) -> Optional[str]:
        if candidate.has_direct_url:
            return candidate.url
        url = self.decode_url(candidate.gn_url)
        if not url:
            self._record(
                event,
                "fallback_decode",
                "fail",
                f"#{event.id} fallback decode failed ({candidate.source})",
                "warn",
                candidateSource=candidate.source,
                trustLevel=candidate.level,
            )
            return None
        self._record(
            event,
            "fallback_decode",
            "ok",
            f"#{event.id} fallback url decoded ({candidate.source})",
            "ok",
            candidateSource=candidate.source,
            trustLevel=candidate.level,
            url=url,
        )
        return url

    def try_alternatives(self, event: Event, tried: set[str]) -> bool:
        settings = self.settings
        alternatives = get_alternatives(event, settings.min_trust_level, settings.fallback_min_trust_level)
        if should_expand(event, alternatives) and not event.state.gn_expanded:
            self.expand_candidates(event)
            alternatives = get_alternatives(event, settings.min_trust_level, settings.fallback_min_trust_level)
        pending = [candidate for candidate in alternatives if candidate.link not in tried]
        if pending:
            self._record(
                event,
                "fallback_candidates",
                "ok",
                f"#{event.id} fallback candidates: "
                + ", ".join(f"{item.source}({item.level})" for item in pending),
                candidates=[{"source": item.source, "level": item.level} for item in pending],
            )
        else:
            self._record(event, "fallback_candidates", "empty", f"#{event.id} no fallback candidates", "warn")
        for candidate in pending:
            tried.add(candidate.link)
            LOGGER.info("Trying alternative source %s (level %s)...", candidate.source, candidate.level)
            url = self._candidate_url(event, candidate)
            if not url:
                continue
            result = self.fetch_text_with_retry(event, url, is_fallback=True)
            if result is None:
                continue
            if result.ok:
                event.source = candidate.source
                event.gn_url = candidate.gn_url
                event.url = url
                self._accept(event, result)
                self._record(
                    event,
                    "fallback_selected",
                    "ok",
                    f"#{event.id} fallback selected {candidate.source}",
                    "ok",
                    candidateSource=candidate.source,
                    trustLevel=candidate.level,
                )
                return True
            verify = result.verify
            self._record(
                event,
                "fallback_verify_mismatch",
                "fail",
                f"#{event.id} fallback text mismatch ({candidate.source})",
                "warn",
                candidateSource=candidate.source,
                trustLevel=candidate.level,
                page_summary=getattr(verify, "page_summary", ""),
                reason=getattr(verify, "reason", ""),
            )
        return False

    # Per-event pipeline

    def prepare(self, event: Event) -> bool:
        """Restore archived metadata/text; True when the event already has usable text."""
        self.archive.backfill_meta(event)
        self.archive.backfill_text(event)
        if len(event.text) > MIN_TEXT_LENGTH:
            self._record(event, "fetch", "cached", method="archive", textLength=len(event.text))
            return True
        if is_blank(event.gn_url) and is_blank(event.url):
            backfill_gn_url(event, self.google_news, self.external, self.fetch_log)
        if is_blank(event.title_en) or is_blank(event.source) or is_blank(event.gn_url) or not event.articles:
            hydrate_from_google_news(event, self.google_news, self.decode_url, self.fetch_log)
        return False

    def resolve(self, event: Event) -> bool:
        if self.prepare(event):
            return True
        if is_blank(event.url) and not is_blank(event.gn_url):
            self.decode_with_retry(event)
        if not is_blank(event.url):
            LOGGER.info("Fetching %s article...", event.source or "")
            result = self.fetch_text_with_retry(event, event.url)
            if result is not None and result.ok:
                self._accept(event, result)
                return True
            if result is not None and result.mismatch:
                self._record(
                    event,
                    "verify_mismatch",
                    "fail",
                    f"#{event.id} text mismatch, switching to fallback",
                    "warn",
                    page_summary=result.verify.page_summary,
                    reason=result.verify.reason,
                )
        tried: set[str] = set()
        if self.try_alternatives(event, tried):
            return True
        if not event.state.external_expanded:
            self.expand_candidates(event, escalate=True)
            if self.try_alternatives(event, tried):
                return True
        pool = get_alternative_pool(event)
        self._record(
            event,
            "fallback_failed",
            "fail",
            f"#{event.id} fallback exhausted; pool: "
            + (", ".join(f"{entry.source}({entry.level})" for entry in pool) or "empty"),
            "warn",
            pool=[{"source": entry.source, "level": entry.level} for entry in pool],
        )
        return False

    def summarize(self, event: Event) -> bool:
        if self.summarizer is None or len(event.text) <= MIN_TEXT_LENGTH:
            return False
        self.throttles.ai.wait()
        LOGGER.info("Summarizing %s chars...", len(event.text))
        result = self.summarizer.summarize(event)
        if result is None:
            return False
        self.throttles.ai.set_delay(result.delay)
        apply_summary(event, result)
        return True

    def process(self, event: Event) -> bool:
        self.resolve(event)
        self.summarize(event)
        if not event.summary:
            self._record(event, "summary", "missing", f"#{event.id} summary missing", "warn")
            return False
        return True

    def run(self, table: EventTable, limit: int | None = None) -> RunStats:
        for position, event in enumerate(table.events, start=1):
            if event.id is None:
                event.id = position
        table.ensure_header("verifyStatus")
        table.ensure_header("articles")

        pending = [event for event in table.events if not event.summary and event.topic != SKIPPED_TOPIC]
        if limit:
            pending = pending[:limit]
        stats = RunStats(skipped=len(table.events) - len(pending))
        digest = FailureDigest(limit=self.settings.failure_digest_limit)

        table.pause_auto_save()
        try:
            for position, event in enumerate(pending, start=1):
                LOGGER.info("#%s [%s/%s] %s", event.id, position, len(pending), title_for(event))
                try:
                    ok = self.process(event)
                except Exception:  # noqa: BLE001
                    LOGGER.exception("Event #%s failed with an unexpected error", event.id)
                    self._record(event, "error", "fail", level="error")
                    ok = False
                table.mark_dirty()
                if ok:
                    stats.ok += 1
                else:
                    stats.fail += 1
                    digest.add(event)
            table.sort(key=order_key)
        finally:
            if self.browser is not None:
                self.browser.close()
            table.resume_auto_save(flush=True)

        digest.log()
        LOGGER.info("Resolution finished: %s ok, %s failed, %s skipped", stats.ok, stats.fail, stats.skipped)
        return stats


def build_orchestrator(settings: Settings) -> ResolutionOrchestrator:
    throttles = Throttles.default(news_search_delay=settings.news_search_delay)
    cooldowns = DomainCooldownTracker()
    backend = build_backend(settings.ai_backend, settings.ai_model)
    verifier = None
    if settings.verify_mode in VERIFY_MODES and settings.verify_mode != "off":
        verifier = ArticleVerifier(
            backend,
            max_chars=settings.verify_max_chars,
            summary_max_chars=settings.verify_summary_max_chars,
        )
    return ResolutionOrchestrator(
        settings=settings,
        fetcher=ArticleFetcher(
            cooldowns=cooldowns,
            archive_delay_ms=settings.archive_delay_ms,
            archive_cooldown_ms=settings.archive_cooldown_ms,
            log_alt_fetch=settings.log_alt_fetch,
        ),
        browser=BrowserFetcher(enabled=settings.browser_enabled),
        verifier=verifier,
        summarizer=Summarizer(backend, instructions=load_instructions(settings.ai_instructions_file)),
        google_news=GoogleNewsClient(throttle=throttles.news_search),
        archive=ArticleArchive(settings.articles_dir),
        throttles=throttles,
        external=ExternalSearch(settings.external_search),
        fetch_log=FetchLog(settings.fetch_log_file, settings.log_max_string_length),
    )


def open_table(settings: Settings) -> EventTable:
    store = SQLiteRowStore(
        settings.rows_db,
        max_cell_chars=settings.max_cell_chars,
        drop_oversize=settings.drop_oversize,
    )
    return EventTable.load(store, save_debounce_ms=settings.save_debounce_ms)


def import_jsonl(table: EventTable, path: Path) -> int:
    """Append rows from an ingestion JSONL file, skipping links already in the table."""
    headers, rows = JsonlRowStore(path).load_rows()
    for header in headers:
        table.ensure_header(header)
    known = {(event.gn_url or event.url) for event in table.events if event.gn_url or event.url}
    added = 0
    for row in rows:
        event = Event.from_row(row)
        link = event.gn_url or event.url
        if link and link in known:
            continue
        if event.id is None:
            event.id = table.next_id()
        table.append(event)
        known.add(link)
        added += 1
    LOGGER.info("Imported %s rows from %s", added, path)
    return added


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Resolve, verify and summarize pending news events in the row store."
    )
    parser.add_argument("--rows-db", type=Path, default=None, help="SQLite row store (default: ROWS_DB).")
    parser.add_argument("--articles-dir", type=Path, default=None, help="Article archive directory.")
    parser.add_argument("--import-jsonl", type=Path, default=None, help="Append rows from a JSONL file first.")
    parser.add_argument("--limit", type=int, default=None, help="Process at most this many pending events.")
    parser.add_argument("--verify-mode", choices=VERIFY_MODES, default=None)
    parser.add_argument("--min-trust-level", type=int, default=None)
    parser.add_argument("--fallback-min-trust-level", type=int, default=None)
    parser.add_argument("--fetch-log-file", type=Path, default=None, help="Append JSON fetch log lines here.")
    parser.add_argument("--no-browser", action="store_true", help="Disable the headless browser fallback.")
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
    if args.rows_db:
        settings.rows_db = args.rows_db
    if args.articles_dir:
        settings.articles_dir = args.articles_dir
    if args.verify_mode:
        settings.verify_mode = args.verify_mode
    if args.min_trust_level is not None:
        settings.min_trust_level = args.min_trust_level
    if args.fallback_min_trust_level is not None:
        settings.fallback_min_trust_level = args.fallback_min_trust_level
    if args.fetch_log_file:
        settings.fetch_log_file = args.fetch_log_file
    if args.no_browser:
        settings.browser_enabled = False

    table = open_table(settings)
    if args.import_jsonl:
        import_jsonl(table, args.import_jsonl)
    orchestrator = build_orchestrator(settings)
    stats = orchestrator.run(table, limit=args.limit)
    table.close()
    return 0 if stats.fail == 0 else 1


if __name__ == "__main__":
    raise SystemExit(main())
