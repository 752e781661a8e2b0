import json

import pytest

from src.services.ai_backends import Completion, extract_json_object
from src.services.verification import ArticleVerifier, should_verify


class FakeBackend:
    def __init__(self, content: str = "", error: Exception | None = None, tokens: int = 120) -> None:
        self.content = content
        self.error = error
        self.tokens = tokens
        self.calls: list[tuple[str, str]] = []

    def complete(self, system, user, temperature=0.0, json_schema=None):
        self.calls.append((system, user))
        if self.error:
            raise self.error
        return Completion(content=self.content, total_tokens=self.tokens)


@pytest.mark.parametrize(
    ("mode", "expected"),
    [("short", True), ("fallback", False), ("always", True), ("off", False), ("bogus", False)],
)
def test_should_verify_table(mode: str, expected: bool) -> None:
    assert should_verify(mode, is_fallback=False, text_length=100, short_threshold=400) is expected


def test_fallback_mode_verifies_fallback_fetches() -> None:
    assert should_verify("fallback", is_fallback=True, text_length=5000, short_threshold=400)
    assert not should_verify("short", is_fallback=True, text_length=5000, short_threshold=400)


def verify(backend: FakeBackend, fail_open: bool = True):
    verifier = ArticleVerifier(backend, max_chars=50)
    return verifier.verify(
        title="X raises rates",
        source="Reuters",
        url="https://reuters.com/x",
        text="Y" * 500,
        min_confidence=0.6,
        fail_open=fail_open,
    )


def test_confident_match_is_ok_and_text_is_truncated() -> None:
    backend = FakeBackend(
        json.dumps({"match": True, "confidence": 0.9, "reason": "same story", "page_summary": "Rates up"})
    )

    result = verify(backend)

    assert result.ok
    assert result.status == "ok"
    assert result.verified
    assert result.page_summary == "Rates up"
    assert result.tokens == 120
    assert "Y" * 51 not in backend.calls[0][1]


def test_low_confidence_is_mismatch() -> None:
    backend = FakeBackend('```json\n{"match": true, "confidence": 0.3, "reason": "unsure"}\n```')

    result = verify(backend)

    assert not result.ok
    assert result.status == "mismatch"
    assert result.confidence == 0.3


def test_backend_failure_fails_open_as_unverified() -> None:
    result = verify(FakeBackend(error=RuntimeError("service down")), fail_open=True)

    assert result.ok
    assert result.status == "unverified"
    assert "service down" in result.error


def test_backend_failure_without_fail_open_is_error() -> None:
    result = verify(FakeBackend(content="not json at all"), fail_open=False)

    assert not result.ok
    assert result.status == "error"


def test_null_fields_fall_back_to_defaults() -> None:
    backend = FakeBackend(json.dumps({"match": None, "confidence": None, "reason": None, "pageSummary": None}))

    result = verify(backend)

    assert result.status == "mismatch"
    assert result.reason == ""


def test_extract_json_object_tolerates_prose() -> None:
    assert extract_json_object('Sure! {"match": false} Hope that helps.') == {"match": False}
    assert extract_json_object("[1, 2]") == {}
    assert extract_json_object("") == {}
