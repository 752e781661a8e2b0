"""
Persistence for the event table.

Rows are header-keyed dicts; stores keep them in header order the way a spreadsheet does.
`EventTable` owns the in-memory events and pushes changes back through a debounced save.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, List, Sequence

from src.services.models import COLUMN_MAP, Event

LOGGER = logging.getLogger(__name__)

MAX_CELL_CHARS = 50000
OVERSIZE_LOG_LIMIT = 20
MIN_DEBOUNCE_MS = 200
DEFAULT_COLUMNS = [*COLUMN_MAP.keys(), "articles"]


class OversizeCellError(ValueError):
    """Raised when a cell exceeds the store's size limit and dropping is disabled."""


@dataclass(frozen=True)
class OversizeCell:
    row: int
    column: str
    length: int
    id: Any


class RowStore:
    """Abstract interface for tabular row persistence."""

    def load_rows(self) -> tuple[List[str], List[dict[str, Any]]]:
        raise NotImplementedError

    def save_row(self, index: int, headers: Sequence[str], row: dict[str, Any]) -> None:
        raise NotImplementedError

    def save_all_rows(self, headers: Sequence[str], rows: Sequence[dict[str, Any]]) -> None:
        raise NotImplementedError


def _build_values(
    headers: Sequence[str],
    row: dict[str, Any],
    index: int,
    max_cell_chars: int,
    drop_oversize: bool,
    oversize: List[OversizeCell],
) -> List[Any]:
    row_id = row.get("id") or row.get("sqk") or row.get("url") or ""
    values: List[Any] = []
    for header in headers:
        value = row.get(header)
        if value is None:
            values.append("")
            continue
        if isinstance(value, str) and len(value) > max_cell_chars:
            oversize.append(OversizeCell(row=index, column=header, length=len(value), id=row_id))
            values.append("" if drop_oversize else value)
            continue
        values.append(value)
    return values


def _report_oversize(oversize: List[OversizeCell], max_cell_chars: int, drop_oversize: bool) -> None:
    if not oversize:
        return
    LOGGER.warning("Oversized cells detected (%s). Max is %s chars.", len(oversize), max_cell_chars)
    for item in oversize[:OVERSIZE_LOG_LIMIT]:
        LOGGER.warning(
            'Oversized cell row %s col "%s" len %s%s',
            item.row,
            item.column,
            item.length,
            f" id {item.id}" if item.id else "",
        )
    if len(oversize) > OVERSIZE_LOG_LIMIT:
        LOGGER.warning("Oversized cell log truncated (%s more)", len(oversize) - OVERSIZE_LOG_LIMIT)
    if not drop_oversize:
        raise OversizeCellError(
            f"{len(oversize)} cell(s) exceed {max_cell_chars} chars. Set SHEETS_DROP_OVERSIZE=1 to drop them."
        )


class SQLiteRowStore(RowStore):
    def __init__(self, path: Path, max_cell_chars: int = MAX_CELL_CHARS, drop_oversize: bool = False) -> None:
        self.path = Path(path)
        self.max_cell_chars = max_cell_chars
        self.drop_oversize = drop_oversize
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.lock = threading.Lock()
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.path)

    def _init_schema(self) -> None:
        conn = self._connect()
        try:
            conn.executescript(
                """
                PRAGMA journal_mode=WAL;
                CREATE TABLE IF NOT EXISTS headers (
                    position INTEGER PRIMARY KEY,
                    name TEXT NOT NULL
                );
                CREATE TABLE IF NOT EXISTS rows (
                    position INTEGER PRIMARY KEY,
                    cells TEXT NOT NULL
                );
                """
            )
        finally:
            conn.close()

    def load_rows(self) -> tuple[List[str], List[dict[str, Any]]]:
        with self.lock:
            conn = self._connect()
            try:
                headers = [name for (name,) in conn.execute("SELECT name FROM headers ORDER BY position")]
                stored = conn.execute("SELECT cells FROM rows ORDER BY position").fetchall()
            finally:
                conn.close()
        rows = []
        for (cells,) in stored:
            values = json.loads(cells)
            rows.append({header: values[i] if i < len(values) else "" for i, header in enumerate(headers)})
        return headers, rows

    def _write_headers(self, conn: sqlite3.Connection, headers: Sequence[str]) -> None:
        conn.execute("DELETE FROM headers")
        conn.executemany(
            "INSERT INTO headers (position, name) VALUES (?, ?)",
            list(enumerate(headers)),
        )

    def save_row(self, index: int, headers: Sequence[str], row: dict[str, Any]) -> None:
        oversize: List[OversizeCell] = []
        values = _build_values(headers, row, index, self.max_cell_chars, self.drop_oversize, oversize)
        _report_oversize(oversize, self.max_cell_chars, self.drop_oversize)
        with self.lock:
            conn = self._connect()
            try:
                self._write_headers(conn, headers)
                conn.execute(
                    "INSERT OR REPLACE INTO rows (position, cells) VALUES (?, ?)",
                    (index, json.dumps(values, ensure_ascii=False)),
                )
                conn.commit()
            finally:
                conn.close()

    def save_all_rows(self, headers: Sequence[str], rows: Sequence[dict[str, Any]]) -> None:
        oversize: List[OversizeCell] = []
        payload = [
            (index, json.dumps(
                _build_values(headers, row, index, self.max_cell_chars, self.drop_oversize, oversize),
                ensure_ascii=False,
            ))
            for index, row in enumerate(rows)
        ]
        _report_oversize(oversize, self.max_cell_chars, self.drop_oversize)
        with self.lock:
            conn = self._connect()
            try:
                self._write_headers(conn, headers)
                conn.execute("DELETE FROM rows")
                conn.executemany("INSERT INTO rows (position, cells) VALUES (?, ?)", payload)
                conn.commit()
            finally:
                conn.close()


class JsonlRowStore(RowStore):
    """One JSON object per line; used to hand rows over from ingestion runs."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def load_rows(self) -> tuple[List[str], List[dict[str, Any]]]:
        if not self.path.exists():
            return [], []
        headers: List[str] = []
        rows: List[dict[str, Any]] = []
        with self.path.open("r", encoding="utf-8") as handle:
            for line_number, line in enumerate(handle, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    payload = json.loads(line)
                except json.JSONDecodeError:
                    LOGGER.warning("Skipping malformed JSONL line %s in %s", line_number, self.path)
                    continue
                if not isinstance(payload, dict):
                    continue
                if isinstance(payload.get("articles"), list):
                    payload["articles"] = json.dumps(payload["articles"], ensure_ascii=False)
                for key in payload:
                    if key not in headers:
                        headers.append(key)
                rows.append(payload)
        return headers, rows

    def save_row(self, index: int, headers: Sequence[str], row: dict[str, Any]) -> None:
        _, rows = self.load_rows()
        while len(rows) <= index:
            rows.append({})
        rows[index] = row
        self.save_all_rows(headers, rows)

    def save_all_rows(self, headers: Sequence[str], rows: Sequence[dict[str, Any]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("w", encoding="utf-8") as handle:
            for row in rows:
                handle.write(json.dumps({header: row.get(header, "") for header in headers}, ensure_ascii=False) + "\n")


class EventTable:
    """In-memory events plus a debounced write-back to a `RowStore`."""

    def __init__(
        self,
        store: RowStore,
        events: Iterable[Event] = (),
        headers: Sequence[str] = (),
        save_debounce_ms: int = 2000,
    ) -> None:
        self.store = store
        self.events: List[Event] = list(events)
        self.headers: List[str] = list(headers) or list(DEFAULT_COLUMNS)
        self.debounce_seconds = max(MIN_DEBOUNCE_MS, save_debounce_ms) / 1000.0
        self._lock = threading.RLock()
        self._timer: threading.Timer | None = None
        self._pending = False
        self._paused = False
        self._saving = False

    @classmethod
    def load(cls, store: RowStore, save_debounce_ms: int = 2000) -> "EventTable":
        headers, rows = store.load_rows()
        events = [Event.from_row(row) for row in rows]
        table = cls(store, events, headers, save_debounce_ms)
        LOGGER.info("Loaded %s rows with %s columns", len(events), len(table.headers))
        return table

    def __len__(self) -> int:
        return len(self.events)

    def __iter__(self):
        return iter(self.events)

    def ensure_header(self, name: str) -> bool:
        with self._lock:
            if name in self.headers:
                return False
            self.headers.append(name)
            self._pending = True
            return True

    def append(self, event: Event) -> None:
        with self._lock:
            self.events.append(event)
        self.mark_dirty()

    def next_id(self) -> int:
        return max((event.id or 0 for event in self.events), default=0) + 1

    def rows(self) -> List[dict[str, Any]]:
        return [event.to_row() for event in self.events]

    def mark_dirty(self) -> None:
        with self._lock:
            self._pending = True
            if self._paused or self._timer is not None:
                return
            self._timer = threading.Timer(self.debounce_seconds, self._on_timer)
            self._timer.daemon = True
            self._timer.start()

    def _on_timer(self) -> None:
        with self._lock:
            self._timer = None
        self.flush()

    def pause_auto_save(self) -> None:
        with self._lock:
            self._paused = True
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def resume_auto_save(self, flush: bool = True) -> None:
        with self._lock:
            self._paused = False
        if flush:
            self.flush(bypass_pause=True)
        elif self._pending:
            self.mark_dirty()

    def flush(self, force: bool = False, bypass_pause: bool = False) -> bool:
        """Write the table if anything changed; returns True when a save was attempted."""
        with self._lock:
            if self._saving:
                self._pending = True
                return False
            if not self._pending and not force:
                return False
            if self._paused and not bypass_pause:
                return False
            self._pending = False
            self._saving = True
            headers = list(self.headers)
            rows = self.rows()
        try:
            self.store.save_all_rows(headers, rows)
        except Exception:  # noqa: BLE001
            LOGGER.warning("Failed to save %s rows", len(rows), exc_info=True)
        finally:
            with self._lock:
                self._saving = False
                requeue = self._pending and not self._paused
        if requeue:
            self.mark_dirty()
        return True

    def save(self) -> None:
        try:
            self.store.save_all_rows(list(self.headers), self.rows())
        except Exception:  # noqa: BLE001
            LOGGER.warning("Failed to save", exc_info=True)

    def save_event(self, event: Event) -> None:
        index = next((i for i, item in enumerate(self.events) if item is event), None)
        if index is None:
            LOGGER.warning("Event #%s is not part of the table", event.id)
            return
        try:
            self.store.save_row(index, list(self.headers), event.to_row())
        except Exception:  # noqa: BLE001
            LOGGER.warning("Failed to save row %s", index, exc_info=True)

    def sort(self, key) -> None:
        with self._lock:
            self.events.sort(key=key)
        self.mark_dirty()

    def close(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
        self.flush()
