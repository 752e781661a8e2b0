"""
Paid web-search providers used to surface direct article links when the aggregator
offers none. Each provider implements the same query contract.
"""

from __future__ import annotations

import logging
from typing import Any, List

import requests

from src.services.models import Candidate
from src.services.settings import ExternalSearchSettings
from src.services.source_levels import is_google_news_url, source_from_url

LOGGER = logging.getLogger(__name__)


def normalize_result(title: str | None, url: str | None, source: str | None = None) -> Candidate | None:
    """Map a provider hit to a candidate; aggregator links land in `gn_url`."""
    if not url:
        return None
    gn_url = ""
    if is_google_news_url(url):
        gn_url, url = url, ""
    return Candidate(
        title_en=(title or "").strip(),
        url=url,
        gn_url=gn_url,
        source=(source or source_from_url(url or gn_url) or "").strip(),
    )


def _json_object(response: requests.Response) -> dict[str, Any]:
    payload = response.json()
    if not isinstance(payload, dict):
        LOGGER.warning("external search returned %s instead of an object", type(payload).__name__)
        return {}
    return payload


class BaseSearchProvider:
    """Abstract interface for concrete search providers."""

    name: str

    def search(self, query: str, api_key: str, max_results: int, timeout: float) -> List[Candidate]:
        raise NotImplementedError

    @staticmethod
    def _collect(items: Any, url_key: str) -> List[Candidate]:
        if not isinstance(items, list):
            return []
        results: List[Candidate] = []
        for item in items:
            if not isinstance(item, dict):
                continue
            source = item.get("source")
            candidate = normalize_result(
                item.get("title"),
                item.get(url_key),
                source if isinstance(source, str) else None,
            )
            if candidate:
                results.append(candidate)
        return results


class SerperProvider(BaseSearchProvider):
    endpoint = "https://google.serper.dev/search"

    def __init__(self) -> None:
        self.name = "serper"

    def search(self, query: str, api_key: str, max_results: int, timeout: float) -> List[Candidate]:
        response = requests.post(
            self.endpoint,
            json={"q": query, "num": max_results},
            headers={"Content-Type": "application/json", "X-API-KEY": api_key},
            timeout=timeout,
        )
        response.raise_for_status()
        return self._collect(_json_object(response).get("organic"), "link")


class BraveProvider(BaseSearchProvider):
    endpoint = "https://api.search.brave.com/res/v1/web/search"

    def __init__(self) -> None:
        self.name = "brave"

    def search(self, query: str, api_key: str, max_results: int, timeout: float) -> List[Candidate]:
        response = requests.get(
            self.endpoint,
            params={"q": query, "count": max_results},
            headers={"Accept": "application/json", "X-Subscription-Token": api_key},
            timeout=timeout,
        )
        response.raise_for_status()
        web = _json_object(response).get("web")
        if not isinstance(web, dict):
            return []
        return self._collect(web.get("results"), "url")


class SerpApiProvider(BaseSearchProvider):
    endpoint = "https://serpapi.com/search.json"

    def __init__(self) -> None:
        self.name = "serpapi"

    def search(self, query: str, api_key: str, max_results: int, timeout: float) -> List[Candidate]:
        response = requests.get(
            self.endpoint,
            params={"q": query, "engine": "google", "num": max_results, "api_key": api_key},
            timeout=timeout,
        )
        response.raise_for_status()
        return self._collect(_json_object(response).get("organic_results"), "link")


PROVIDERS: dict[str, BaseSearchProvider] = {
    provider.name: provider for provider in (SerperProvider(), BraveProvider(), SerpApiProvider())
}


class ExternalSearch:
    def __init__(self, settings: ExternalSearchSettings) -> None:
        self.settings = settings

    @property
    def active(self) -> bool:
        return self.settings.active

    def search(self, query: str) -> List[Candidate]:
        if not self.settings.enabled or not query:
            return []
        if not self.settings.api_key:
            LOGGER.debug("Skipping external search because SEARCH_API_KEY is not configured.")
            return []
        provider = PROVIDERS.get(self.settings.provider)
        if provider is None:
            LOGGER.warning("external search unsupported provider %s", self.settings.provider)
            return []
        try:
            return provider.search(
                query,
                api_key=self.settings.api_key,
                max_results=self.settings.max_results or 5,
                timeout=self.settings.timeout or 10,
            )
        except (requests.RequestException, ValueError) as exc:
            LOGGER.warning("external search failed %s: %s", provider.name, exc)
            return []
