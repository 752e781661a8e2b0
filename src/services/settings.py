"""
Runtime configuration for the resolution pipeline, read from the environment (and an
optional `.env` file at the repository root).
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

LOGGER = logging.getLogger(__name__)

REPO_ROOT = Path(__file__).resolve().parents[2]

VERIFY_MODES = ("always", "fallback", "short", "off")


def _bool_env(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        LOGGER.warning("Ignoring non-integer %s=%r; using %s", name, raw, default)
        return default


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        LOGGER.warning("Ignoring non-numeric %s=%r; using %s", name, raw, default)
        return default


@dataclass
class ExternalSearchSettings:
    enabled: bool = True
    provider: str = "serpapi"
    api_key: str = ""
    max_results: int = 6
    timeout: float = 10.0

    @property
    def active(self) -> bool:
        return self.enabled and bool(self.api_key)


@dataclass
class Settings:
    verify_mode: str = "fallback"
    verify_min_confidence: float = 0.6
    verify_short_threshold: int = 1500
    verify_fail_open: bool = True
    verify_max_chars: int = 6000
    verify_summary_max_chars: int = 200
    min_trust_level: int = 3
    fallback_min_trust_level: int = 1
    external_search: ExternalSearchSettings = field(default_factory=ExternalSearchSettings)
    archive_delay_ms: int = 5000
    archive_cooldown_ms: int = 10 * 60 * 1000
    log_alt_fetch: bool = False
    news_search_delay: float = 2.0
    decode_failure_pause: float = 5 * 60.0
    fetch_log_file: Path | None = None
    log_max_string_length: int = 800
    failure_digest_limit: int = 20
    save_debounce_ms: int = 2000
    drop_oversize: bool = False
    max_cell_chars: int = 50000
    articles_dir: Path = Path("articles")
    rows_db: Path = Path("datasets/rows.sqlite")
    ai_backend: str = "openai"
    ai_model: str = "gpt-4o"
    ai_instructions_file: Path | None = None
    browser_enabled: bool = True

    @classmethod
    def from_env(cls, load_env_file: bool = True) -> "Settings":
        if load_env_file and load_dotenv(dotenv_path=REPO_ROOT / ".env"):
            LOGGER.debug("Loaded environment variables from .env file.")
        verify_mode = os.getenv("VERIFY_MODE", "fallback").strip().lower() or "fallback"
        if verify_mode not in VERIFY_MODES:
            LOGGER.info("Unknown VERIFY_MODE %r; verification will be skipped.", verify_mode)
        fetch_log = os.getenv("FETCH_LOG_FILE", "").strip()
        instructions = os.getenv("AI_INSTRUCTIONS_FILE", "").strip()
        return cls(
            verify_mode=verify_mode,
            verify_min_confidence=_float_env("VERIFY_MIN_CONFIDENCE", 0.6),
            verify_short_threshold=_int_env("VERIFY_SHORT_THRESHOLD", 1500),
            verify_fail_open=_bool_env("VERIFY_FAIL_OPEN", True),
            verify_max_chars=_int_env("VERIFY_MAX_CHARS", 6000),
            verify_summary_max_chars=_int_env("VERIFY_SUMMARY_MAX_CHARS", 200),
            min_trust_level=_int_env("MIN_TRUST_LEVEL", 3),
            fallback_min_trust_level=_int_env("FALLBACK_MIN_TRUST_LEVEL", 1),
            external_search=ExternalSearchSettings(
                enabled=_bool_env("EXTERNAL_SEARCH_ENABLED", True),
                provider=os.getenv("SEARCH_PROVIDER", "serpapi").strip().lower() or "serpapi",
                api_key=os.getenv("SEARCH_API_KEY", "").strip(),
                max_results=_int_env("SEARCH_MAX_RESULTS", 6),
                timeout=_float_env("SEARCH_TIMEOUT", 10.0),
            ),
            archive_delay_ms=_int_env("ARCHIVE_DELAY_MS", 5000),
            archive_cooldown_ms=_int_env("ARCHIVE_COOLDOWN_MS", 10 * 60 * 1000),
            log_alt_fetch=_bool_env("ALT_FETCH_LOG"),
            news_search_delay=_float_env("NEWS_SEARCH_DELAY", 2.0),
            decode_failure_pause=_float_env("DECODE_FAILURE_PAUSE", 5 * 60.0),
            fetch_log_file=Path(fetch_log) if fetch_log else None,
            log_max_string_length=_int_env("LOG_MAX_STRING_LENGTH", 800),
            failure_digest_limit=_int_env("FAILURE_DIGEST_LIMIT", 20),
            save_debounce_ms=max(200, _int_env("SAVE_DEBOUNCE_MS", 2000)),
            drop_oversize=_bool_env("SHEETS_DROP_OVERSIZE"),
            max_cell_chars=_int_env("MAX_CELL_CHARS", 50000),
            articles_dir=Path(os.getenv("ARTICLES_DIR", "articles")),
            rows_db=Path(os.getenv("ROWS_DB", "datasets/rows.sqlite")),
            ai_backend=os.getenv("AI_BACKEND", "openai").strip().lower() or "openai",
            ai_model=os.getenv("AI_MODEL", "gpt-4o").strip() or "gpt-4o",
            ai_instructions_file=Path(instructions) if instructions else None,
            browser_enabled=_bool_env("BROWSER_ENABLED", True),
        )
