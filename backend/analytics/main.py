"""FastAPI application entrypoint for the analytics API."""
from __future__ import annotations

import logging
import os
import threading
import time
from datetime import datetime, timezone
from typing import List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from . import schemas
from .aggregator import Aggregator
from .dashboard import DEFAULT_RANGE, since_for_range
from .database import SessionLocal, engine
from .models import Base
from .records import EventRecord, TicketClickRecord, as_utc
from .sink import SqlAlchemySink, load_events_since, store_event, store_ticket_click

logger = logging.getLogger(__name__)

Base.metadata.create_all(bind=engine)

app = FastAPI(
    title="Nightlife Analytics API",
    description="API for collecting anonymous interaction events and serving dashboard metrics.",
    version="0.1.0",
)


def get_db() -> Session:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


class RateLimitError(Exception):
    """Raised when a caller exceeds the configured rate limit."""


class FixedWindowRateLimiter:
    """Simple in-memory fixed window rate limiter keyed by identifier."""

    def __init__(self, max_requests: int, window_seconds: int) -> None:
        self._max_requests = max_requests
        self._window_seconds = window_seconds
        self._counters: dict[str, tuple[int, float]] = {}
        self._lock = threading.Lock()

    def check(self, key: str) -> None:
        now = time.monotonic()
        with self._lock:
            count, window_start = self._counters.get(key, (0, now))
            if now - window_start >= self._window_seconds:
                count = 0
                window_start = now
            if count >= self._max_requests:
                raise RateLimitError(f"Rate limit exceeded for key {key}")
            self._counters[key] = (count + 1, window_start)


def _get_rate_limiter() -> FixedWindowRateLimiter:
    requests_per_window = int(os.environ.get("ANALYTICS_METRICS_RATE_LIMIT", "60"))
    window_seconds = int(os.environ.get("ANALYTICS_METRICS_RATE_WINDOW", "60"))
    return FixedWindowRateLimiter(requests_per_window, window_seconds)


def _get_timezone() -> Optional[ZoneInfo]:
    name = os.environ.get("ANALYTICS_TIMEZONE")
    if not name:
        return None
    try:
        return ZoneInfo(name)
    except ZoneInfoNotFoundError:
        logger.warning("Unknown ANALYTICS_TIMEZONE %r, using server local time", name)
        return None


_metrics_rate_limiter = _get_rate_limiter()


def get_aggregator() -> Aggregator:
    return Aggregator(SqlAlchemySink(SessionLocal), tz=_get_timezone())


@app.get("/health")
def health() -> dict:
    return {"ok": True, "service": "nightlife-analytics"}


@app.post("/events", response_model=schemas.EventOut, status_code=status.HTTP_201_CREATED)
def ingest_event(record: EventRecord, db: Session = Depends(get_db)) -> schemas.EventOut:
    row = store_event(db, record)
    if row.created_at is None:
        raise HTTPException(status_code=500, detail="Failed to persist event")
    db.commit()
    db.refresh(row)
    return schemas.EventOut(id=row.id, kind=row.event_name, created_at=as_utc(row.created_at))


@app.post("/ticket-clicks", response_model=schemas.TicketClickOut, status_code=status.HTTP_201_CREATED)
def ingest_ticket_click(record: TicketClickRecord, db: Session = Depends(get_db)) -> schemas.TicketClickOut:
    row = store_ticket_click(db, record)
    if row.created_at is None:
        raise HTTPException(status_code=500, detail="Failed to persist ticket click")
    db.commit()
    db.refresh(row)
    return schemas.TicketClickOut(id=row.id, event_id=row.event_id, created_at=as_utc(row.created_at))


@app.get("/events", response_model=List[EventRecord])
def list_events(
    since: datetime = Query(..., description="Return events created at or after this instant"),
    limit: Optional[int] = Query(None, ge=1, le=10000),
    db: Session = Depends(get_db),
) -> List[EventRecord]:
    return load_events_since(db, since, limit=limit)


@app.get("/dashboard/metrics", response_model=schemas.MetricsResponse)
async def dashboard_metrics(
    request: Request,
    range_name: str = Query(DEFAULT_RANGE, alias="range"),
    aggregator: Aggregator = Depends(get_aggregator),
) -> schemas.MetricsResponse:
    client_identifier = "anonymous"
    if request.client:
        client_identifier = request.client.host or client_identifier

    try:
        _metrics_rate_limiter.check(client_identifier)
    except RateLimitError:
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail="Rate limit exceeded")

    now = datetime.now(timezone.utc)
    try:
        since = since_for_range(range_name, now)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc

    result = await aggregator.compute(since)
    return schemas.MetricsResponse(
        range=range_name,
        since=since,
        generated_at=now,
        error=result.error,
        metrics=result.metrics,
    )


def reset_application_state() -> None:
    """Reset mutable globals for test isolation."""

    global _metrics_rate_limiter
    _metrics_rate_limiter = _get_rate_limiter()
