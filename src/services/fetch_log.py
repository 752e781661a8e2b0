"""
Structured per-transition logging for event resolution and the end-of-run digest of
events that could not be completed.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from src.services.models import Event, title_for

LOGGER = logging.getLogger(__name__)

LEVELS = {
    "ok": logging.INFO,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


def truncate_string(value: Any, limit: int) -> Any:
    if not isinstance(value, str) or len(value) <= limit:
        return value
    suffix = f"... ({len(value) - limit} more chars)"
    return value[: max(0, limit - len(suffix))] + suffix


def sanitize_data(value: Any, limit: int) -> Any:
    if isinstance(value, str):
        return truncate_string(value, limit)
    if isinstance(value, (list, tuple)):
        return [sanitize_data(item, limit) for item in value]
    if isinstance(value, dict):
        return {key: sanitize_data(item, limit) for key, item in value.items()}
    return value


class FetchLog:
    """Writes one log line per state transition and, optionally, a JSON line to a file."""

    def __init__(self, log_file: Path | None = None, max_string_length: int = 800) -> None:
        self.log_file = log_file
        self.max_string_length = max_string_length
        if self.log_file:
            self.log_file.parent.mkdir(parents=True, exist_ok=True)

    def record(
        self,
        event: Event,
        phase: str,
        status: str,
        message: str = "",
        level: str = "info",
        **data: Any,
    ) -> None:
        state = event.state
        state.last_phase = phase
        state.last_status = status
        if data.get("method"):
            state.last_method = str(data["method"])
        if data.get("reason"):
            state.last_reason = str(data["reason"])
        if data.get("page_summary"):
            state.last_page_summary = str(data["page_summary"])
        if message:
            LOGGER.log(LEVELS.get(level, logging.INFO), "[%s] %s", level, truncate_string(message, self.max_string_length))
        if not self.log_file:
            return
        payload = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": level,
            "message": message,
            "eventId": event.id,
            "title": title_for(event),
            "source": event.source,
            "gnUrl": event.gn_url,
            "url": event.url,
            "phase": phase,
            "status": status,
            **data,
        }
        try:
            with self.log_file.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(sanitize_data(payload, self.max_string_length), default=str) + "\n")
        except OSError:
            LOGGER.warning("Failed to append fetch log to %s", self.log_file, exc_info=True)


@dataclass
class FailureEntry:
    id: int | None
    title: str
    source: str
    phase: str
    status: str
    reason: str


@dataclass
class FailureDigest:
    limit: int = 20
    entries: list[FailureEntry] = field(default_factory=list)

    def add(self, event: Event) -> None:
        state = event.state
        self.entries.append(
            FailureEntry(
                id=event.id,
                title=title_for(event),
                source=event.source,
                phase=state.last_phase,
                status=state.last_status,
                reason=state.last_reason,
            )
        )

    def __len__(self) -> int:
        return len(self.entries)

    def lines(self) -> list[str]:
        lines = []
        for entry in self.entries[: self.limit]:
            detail = f"{entry.phase or '-'}/{entry.status or '-'}"
            if entry.reason:
                detail += f" ({entry.reason})"
            lines.append(f"#{entry.id} {entry.title[:80]} [{entry.source or '?'}] {detail}")
        hidden = len(self.entries) - self.limit
        if hidden > 0:
            lines.append(f"... and {hidden} more")
        return lines

    def log(self) -> None:
        if not self.entries:
            return
        LOGGER.warning("%s events failed to resolve:", len(self.entries))
        for line in self.lines():
            LOGGER.warning("  %s", line)
