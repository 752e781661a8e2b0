import pytest
import requests

from src.services import external_search
from src.services.external_search import ExternalSearch, normalize_result
from src.services.settings import ExternalSearchSettings


class FakeResponse:
    def __init__(self, payload: dict, status_code: int = 200) -> None:
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code}")

    def json(self) -> dict:
        return self.payload


@pytest.fixture
def calls(monkeypatch: pytest.MonkeyPatch) -> list:
    recorded: list = []

    def fake_get(url, params=None, headers=None, timeout=None):
        recorded.append(("GET", url, params, headers))
        if "brave" in url:
            return FakeResponse({"web": {"results": [{"title": "Brave hit", "url": "https://www.bbc.com/news/a"}]}})
        return FakeResponse(
            {
                "organic_results": [
                    {"title": "SerpApi hit", "link": "https://www.reuters.com/world/x", "source": "Reuters"},
                    {"title": "Aggregator hit", "link": "https://news.google.com/rss/articles/ABC"},
                    "junk",
                ]
            }
        )

    def fake_post(url, json=None, headers=None, timeout=None):
        recorded.append(("POST", url, json, headers))
        return FakeResponse({"organic": [{"title": "Serper hit", "link": "https://edition.cnn.com/2024/x"}]})

    monkeypatch.setattr(external_search.requests, "get", fake_get)
    monkeypatch.setattr(external_search.requests, "post", fake_post)
    return recorded


def make_search(provider: str, api_key: str = "key", enabled: bool = True) -> ExternalSearch:
    return ExternalSearch(ExternalSearchSettings(enabled=enabled, provider=provider, api_key=api_key, max_results=4))


def test_serpapi_results_are_normalized(calls: list) -> None:
    results = make_search("serpapi").search("X raises rates")

    assert [(r.title_en, r.url, r.gn_url, r.source) for r in results] == [
        ("SerpApi hit", "https://www.reuters.com/world/x", "", "Reuters"),
        ("Aggregator hit", "", "https://news.google.com/rss/articles/ABC", "Google"),
    ]
    assert calls[0][2]["api_key"] == "key"
    assert calls[0][2]["num"] == 4


def test_serper_infers_source_from_url(calls: list) -> None:
    results = make_search("serper").search("query")

    assert results[0].source == "CNN"
    assert calls[0][0] == "POST"
    assert calls[0][3]["X-API-KEY"] == "key"


def test_brave_reads_web_results(calls: list) -> None:
    results = make_search("brave").search("query")

    assert [r.source for r in results] == ["BBC"]
    assert calls[0][3]["X-Subscription-Token"] == "key"


def test_disabled_without_api_key_or_when_turned_off(calls: list) -> None:
    assert make_search("serpapi", api_key="").search("query") == []
    assert make_search("serpapi", enabled=False).search("query") == []
    assert not make_search("serpapi", api_key="").active
    assert calls == []


def test_unsupported_provider_returns_empty(calls: list) -> None:
    assert make_search("altavista").search("query") == []
    assert calls == []


def test_provider_errors_are_swallowed(monkeypatch: pytest.MonkeyPatch) -> None:
    def failing_get(*args, **kwargs):
        raise requests.ConnectionError("offline")

    monkeypatch.setattr(external_search.requests, "get", failing_get)

    assert make_search("serpapi").search("query") == []


def test_normalize_result_requires_url() -> None:
    assert normalize_result("title", None) is None
    assert normalize_result("title", "https://apnews.com/article/x").source == "AP News"


@pytest.mark.parametrize("payload", [["unexpected", "shape"], None, {"web": ["not", "a", "dict"]}])
def test_non_object_payloads_return_empty(monkeypatch: pytest.MonkeyPatch, payload) -> None:
    monkeypatch.setattr(external_search.requests, "get", lambda *args, **kwargs: FakeResponse(payload))

    assert make_search("serpapi").search("query") == []
    assert make_search("brave").search("query") == []
