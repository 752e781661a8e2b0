"""
AI-backed check that fetched page text actually covers the claimed news event.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.services.ai_backends import ChatBackend, extract_json_object

LOGGER = logging.getLogger(__name__)

VERIFY_SYSTEM_PROMPT = " ".join(
    [
        "You verify that the provided page text matches the news event.",
        "Return ONLY JSON with keys:",
        "- match (boolean)",
        "- confidence (number 0-1)",
        "- reason (string, <=200 chars)",
        "- page_summary (string, <=200 chars)",
    ]
)


def should_verify(mode: str, is_fallback: bool, text_length: int, short_threshold: int) -> bool:
    if mode == "always":
        return True
    if mode == "fallback":
        return is_fallback
    if mode == "short":
        return text_length < short_threshold
    return False


class VerifyJudgment(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    match: bool = False
    confidence: float = 0.0
    reason: str = ""
    page_summary: str = Field(default="", alias="pageSummary")

    @field_validator("match", "confidence", "reason", "page_summary", mode="before")
    @classmethod
    def _none_to_default(cls, value: Any, info: Any) -> Any:
        if value is None:
            return {"match": False, "confidence": 0.0}.get(info.field_name, "")
        return value


@dataclass
class VerifyResult:
    ok: bool
    status: str
    match: bool = False
    confidence: float = 0.0
    reason: str = ""
    page_summary: str = ""
    verified: bool = False
    tokens: int | None = None
    error: str | None = None

    @classmethod
    def skipped(cls) -> "VerifyResult":
        return cls(ok=True, status="skipped")


class VerificationError(RuntimeError):
    """Raised when the model reply cannot be read as a judgment."""


class ArticleVerifier:
    def __init__(self, backend: ChatBackend, max_chars: int = 6000, summary_max_chars: int = 200) -> None:
        self.backend = backend
        self.max_chars = max_chars
        self.summary_max_chars = summary_max_chars

    def _clamp(self, value: Any) -> str:
        text = str(value or "")
        return text[: self.summary_max_chars]

    def verify(
        self,
        title: str,
        source: str,
        url: str,
        text: str,
        min_confidence: float,
        fail_open: bool,
    ) -> VerifyResult:
        user = "\n".join(
            [
                f"Title: {title or ''}",
                f"Source: {source or ''}",
                f"URL: {url or ''}",
                "Text:",
                (text or "")[: self.max_chars],
            ]
        )
        try:
            completion = self.backend.complete(VERIFY_SYSTEM_PROMPT, user, temperature=0.0)
            payload = extract_json_object(completion.content)
            if not payload:
                raise VerificationError(f"unparseable verifier reply: {completion.content[:120]!r}")
            judgment = VerifyJudgment.model_validate(payload)
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("verify failed: %s", exc)
            if fail_open:
                return VerifyResult(
                    ok=True,
                    status="unverified",
                    reason="verification unavailable",
                    error=str(exc),
                )
            return VerifyResult(
                ok=False,
                status="error",
                reason="verification failed",
                error=str(exc),
            )
        ok = judgment.match and judgment.confidence >= min_confidence
        return VerifyResult(
            ok=ok,
            status="ok" if ok else "mismatch",
            match=judgment.match,
            confidence=judgment.confidence,
            reason=self._clamp(judgment.reason),
            page_summary=self._clamp(judgment.page_summary),
            verified=True,
            tokens=completion.total_tokens,
        )
