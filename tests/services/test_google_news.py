import json

from src.services.google_news import (
    AggregatorItem,
    GoogleNewsClient,
    backfill_gn_url,
    build_fallback_search_queries,
    build_search_query,
    hydrate_from_google_news,
    parse_google_news_feed,
    parse_related_articles,
    score_candidate,
)
from src.services.models import Candidate, Event

RSS = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0"><channel><title>Search</title>
<item>
  <title>X raises rates - Reuters</title>
  <link>https://news.google.com/rss/articles/AAA?oc=5</link>
  <pubDate>Tue, 02 Jan 2024 10:00:00 GMT</pubDate>
  <description>&lt;ol&gt;&lt;li&gt;&lt;a href="https://news.google.com/rss/articles/BBB"&gt;X lifts rates again&lt;/a&gt;&amp;nbsp;&amp;nbsp;&lt;font color="#6f6f6f"&gt;CNN&lt;/font&gt;&lt;/li&gt;&lt;li&gt;&lt;a href="https://news.google.com/rss/articles/CCC"&gt;Rates climb&lt;/a&gt;&amp;nbsp;&amp;nbsp;&lt;font color="#6f6f6f"&gt;BBC&lt;/font&gt;&lt;/li&gt;&lt;/ol&gt;</description>
  <source url="https://www.reuters.com">Reuters</source>
</item>
<item>
  <title>No link item</title>
</item>
</channel></rss>
"""


class FakeResponse:
    def __init__(self, status_code: int = 200, text: str = "") -> None:
        self.status_code = status_code
        self.text = text
        self.content = text.encode("utf-8")
        self.reason = "OK"

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def raise_for_status(self) -> None:
        if not self.ok:
            raise RuntimeError(self.status_code)


class FakeSession:
    def __init__(self, get_responses: list, post_responses: list | None = None) -> None:
        self.get_responses = list(get_responses)
        self.post_responses = list(post_responses or [])
        self.get_calls: list[str] = []
        self.post_calls: list[dict] = []

    def get(self, url, headers=None, timeout=None):
        self.get_calls.append(url)
        return self.get_responses.pop(0)

    def post(self, url, headers=None, data=None, timeout=None):
        self.post_calls.append(data)
        return self.post_responses.pop(0)


class FakeClient:
    def __init__(self, results: dict[str, list[AggregatorItem]]) -> None:
        self.results = results
        self.queries: list[str] = []

    def search(self, query: str) -> list[AggregatorItem]:
        self.queries.append(query)
        return self.results.get(query, [])


def test_parse_feed_reads_items_and_related_articles() -> None:
    items = parse_google_news_feed(RSS)

    assert len(items) == 1
    item = items[0]
    assert item.title_en == "X raises rates - Reuters"
    assert item.gn_url == "https://news.google.com/rss/articles/AAA?oc=5"
    assert item.source == "Reuters"
    assert item.date is not None and item.date.year == 2024
    assert [(a.source, a.title_en) for a in item.articles] == [("CNN", "X lifts rates again"), ("BBC", "Rates climb")]


def test_related_articles_require_link_and_source() -> None:
    html = '<ol><li><a href="https://news.google.com/x">A</a></li><li><font>CNN</font></li></ol>'

    assert parse_related_articles(html) == []
    assert parse_related_articles("") == []


def test_search_queries_from_title() -> None:
    event = Event(title_en="Fed raises rates by a quarter point as inflation stays stubborn in key sectors - Reuters")

    queries = build_fallback_search_queries(event)

    assert queries[0] == '"Fed raises rates by a quarter point as inflation stays stubborn in key sectors"'
    assert queries[1] == "Fed raises rates by a quarter point as inflation stays stubborn in key sectors"
    assert queries[2] == "Fed raises rates by a quarter point as inflation stays"
    assert build_search_query(event) == queries[0]


def test_search_queries_fall_back_to_url_terms() -> None:
    event = Event(url="https://www.example.com/world/fed-raises-rates")

    assert build_fallback_search_queries(event) == ["fed raises rates"]
    assert build_search_query(event) == "site:example.com fed raises rates"
    assert build_fallback_search_queries(Event()) == []


def test_short_title_produces_deduplicated_queries() -> None:
    queries = build_fallback_search_queries(Event(title_en="Rates up"))

    assert queries == ['"Rates up"', "Rates up"]


def test_score_candidate() -> None:
    event = Event(title_en="X raises rates", source="Reuters")

    assert score_candidate(event, Candidate(title_en="X raises rates", source="Reuters")) == 5
    assert score_candidate(event, Candidate(title_en="Live: X raises rates today", source="CNN")) == 1
    assert score_candidate(event, Candidate(title_en="Unrelated", source="Reuters")) == 2


def test_search_returns_empty_on_http_error() -> None:
    client = GoogleNewsClient(session=FakeSession([FakeResponse(503)]))

    assert client.search("anything") == []
    assert client.search("") == []


def test_search_parses_feed() -> None:
    session = FakeSession([FakeResponse(200, RSS)])
    client = GoogleNewsClient(session=session)

    items = client.search('"X raises rates"')

    assert len(items) == 1
    assert "q=%22X+raises+rates%22" in session.get_calls[0]
    assert session.get_calls[0].endswith("hl=en-US&gl=US&ceid=US:en")


def test_decode_url_uses_batchexecute_signature() -> None:
    page = '<html><c-wiz><div jscontroller="x" data-n-a-sg="SIG" data-n-a-ts="1700000000"></div></c-wiz></html>'
    inner = json.dumps(["garturlres", "https://www.reuters.com/markets/x", 1])
    envelope = json.dumps([["wrb.fr", "Fbv4je", inner, None]])
    session = FakeSession([FakeResponse(200, page)], [FakeResponse(200, ")]}'\n\n" + envelope)])
    client = GoogleNewsClient(session=session)

    resolved = client.decode_url("https://news.google.com/rss/articles/CBMiABC?oc=5")

    assert resolved == "https://www.reuters.com/markets/x"
    assert session.get_calls == ["https://news.google.com/articles/CBMiABC"]
    request = session.post_calls[0]["f.req"]
    assert '\\"CBMiABC\\",1700000000,\\"SIG\\"' in request


def test_decode_url_aborts_on_429() -> None:
    session = FakeSession([FakeResponse(429)])
    client = GoogleNewsClient(session=session)

    assert client.decode_url("https://news.google.com/rss/articles/CBMiABC") is None
    assert len(session.get_calls) == 1


def test_decode_url_gives_up_after_five_attempts() -> None:
    session = FakeSession([FakeResponse(200, "<html></html>") for _ in range(5)])
    client = GoogleNewsClient(session=session)

    assert client.decode_url("https://news.google.com/rss/articles/CBMiABC") is None
    assert len(session.get_calls) == 5


def test_backfill_gn_url_prefers_best_scoring_hit() -> None:
    event = Event(id=3, title_en="X raises rates", source="Reuters", url="https://www.reuters.com/markets/x")
    client = FakeClient(
        {
            'site:reuters.com X raises rates': [
                AggregatorItem(title_en="Something else", gn_url="https://news.google.com/rss/articles/OTHER", source="CNN"),
                AggregatorItem(title_en="X raises rates", gn_url="https://news.google.com/rss/articles/BEST", source="Reuters"),
            ]
        }
    )

    assert backfill_gn_url(event, client)
    assert event.gn_url == "https://news.google.com/rss/articles/BEST"
    assert client.queries == ["site:reuters.com X raises rates"]


def test_backfill_gn_url_uses_external_search_when_aggregator_is_empty() -> None:
    class FakeExternal:
        active = True

        def search(self, query):
            return [Candidate(title_en="X raises rates", gn_url="https://news.google.com/rss/articles/EXT", source="Reuters")]

    event = Event(id=3, title_en="X raises rates")

    assert backfill_gn_url(event, FakeClient({}), FakeExternal())
    assert event.gn_url == "https://news.google.com/rss/articles/EXT"
    assert event.source == "Reuters"


def test_hydrate_fills_missing_fields_and_candidates() -> None:
    item = parse_google_news_feed(RSS)[0]
    event = Event(id=4, title_en="X raises rates")
    client = FakeClient({'"X raises rates"': [item]})

    assert hydrate_from_google_news(event, client, decode_url=lambda gn: "https://www.reuters.com/markets/x")
    assert event.source == "Reuters"
    assert event.gn_url == item.gn_url
    assert event.url == "https://www.reuters.com/markets/x"
    assert [a.source for a in event.articles] == ["CNN", "BBC"]


def test_hydrate_skips_complete_events() -> None:
    event = Event(
        title_en="X",
        source="Reuters",
        gn_url="https://news.google.com/rss/articles/A",
        articles=[Candidate(source="CNN", gn_url="https://news.google.com/rss/articles/B")],
    )
    client = FakeClient({})

    assert not hydrate_from_google_news(event, client)
    assert client.queries == []
