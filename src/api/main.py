"""
FastAPI app exposing resolved news rows from the SQLite row store.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from src.services.models import Event, is_complete, missing_fields
from src.services.resolution import order_key
from src.services.row_store import SQLiteRowStore

DB_PATH = os.getenv("ROWS_DB", "datasets/rows.sqlite")
MAX_ROWS = 2000
LOGGER = logging.getLogger("rows_api")
if not LOGGER.handlers:
    LOGGER.setLevel(logging.INFO)
    LOG_PATH = Path("logs")
    LOG_PATH.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(LOG_PATH / "api_requests.log")
    formatter = logging.Formatter("%(asctime)s %(levelname)s %(message)s")
    file_handler.setFormatter(formatter)
    LOGGER.addHandler(file_handler)


def get_store() -> SQLiteRowStore:
    return SQLiteRowStore(Path(DB_PATH))


class RowOut(BaseModel):
    id: int
    sqk: Optional[int] = None
    date: Optional[str] = None
    topic: Optional[str] = None
    priority: Optional[int] = None
    titleEn: Optional[str] = None
    titleRu: Optional[str] = None
    source: Optional[str] = None
    gnUrl: Optional[str] = None
    url: Optional[str] = None
    summary: Optional[str] = None
    verifyStatus: Optional[str] = None
    complete: bool = Field(..., description="True when every required field is filled")
    missing: list[str] = Field(default_factory=list)


app = FastAPI(title="News Rows API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://localhost:5173"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _to_out(event: Event) -> RowOut:
    return RowOut(
        id=event.id or 0,
        sqk=event.sqk,
        date=event.date or None,
        topic=event.topic or None,
        priority=event.priority,
        titleEn=event.title_en or None,
        titleRu=event.title_ru or None,
        source=event.source or None,
        gnUrl=event.gn_url or None,
        url=event.url or None,
        summary=event.summary or None,
        verifyStatus=event.verify_status or None,
        complete=is_complete(event),
        missing=missing_fields(event),
    )


def _load_events(store: SQLiteRowStore) -> list[Event]:
    _, rows = store.load_rows()
    events = [Event.from_row(row) for row in rows]
    for position, event in enumerate(events, start=1):
        if event.id is None:
            event.id = position
    return events


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/api/rows", response_model=list[RowOut])
def get_rows(
    complete: Optional[bool] = Query(
        default=None,
        description="Filter on completeness; omit to return every row.",
    ),
    store: SQLiteRowStore = Depends(get_store),
) -> list[RowOut]:
    LOGGER.info("Fetching rows complete=%s", complete)
    events = sorted(_load_events(store), key=order_key)
    results = [_to_out(event) for event in events]
    if complete is not None:
        results = [row for row in results if row.complete == complete]
    return results[:MAX_ROWS]


@app.get("/api/rows/{row_id}", response_model=RowOut)
def get_row(row_id: int, store: SQLiteRowStore = Depends(get_store)) -> RowOut:
    LOGGER.info("Fetching row id=%s", row_id)
    for event in _load_events(store):
        if event.id == row_id:
            return _to_out(event)
    raise HTTPException(status_code=404, detail=f"Row {row_id} not found")
