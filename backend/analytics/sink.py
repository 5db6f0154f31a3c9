"""Append-only event sinks.

A sink accepts records one at a time and serves time-bounded reads, newest
first. ``MemorySink`` keeps rows in process, ``SqlAlchemySink`` writes through
the relational store and ``HttpSink`` talks to the ingestion API.
"""
from __future__ import annotations

import asyncio
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Callable, List, Optional, Union

import requests
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session

from .database import session_scope
from .models import AnalyticsEvent, TicketClick
from .records import EventRecord, TicketClickRecord, as_utc

SinkRecord = Union[EventRecord, TicketClickRecord]


class SinkError(Exception):
    """Raised when a sink cannot append or read records."""


class Sink(ABC):
    @abstractmethod
    async def append(self, record: SinkRecord) -> None:
        ...

    @abstractmethod
    async def read_range(self, since: datetime) -> List[EventRecord]:
        """Return every event record created at or after ``since``, newest first."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MemorySink(Sink):
    """In-process sink; assigns ``created_at`` from ``clock`` when omitted."""

    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock
        self._events: List[EventRecord] = []
        self._ticket_clicks: List[TicketClickRecord] = []
        self._lock = threading.Lock()

    @property
    def events(self) -> List[EventRecord]:
        with self._lock:
            return list(self._events)

    @property
    def ticket_clicks(self) -> List[TicketClickRecord]:
        with self._lock:
            return list(self._ticket_clicks)

    async def append(self, record: SinkRecord) -> None:
        if record.created_at is None:
            record = record.model_copy(update={"created_at": as_utc(self._clock())})
        with self._lock:
            if isinstance(record, TicketClickRecord):
                self._ticket_clicks.append(record)
            else:
                self._events.append(record)

    async def read_range(self, since: datetime) -> List[EventRecord]:
        since = as_utc(since)
        with self._lock:
            indexed = [(idx, rec) for idx, rec in enumerate(self._events) if rec.created_at >= since]
        indexed.sort(key=lambda item: (item[1].created_at, item[0]), reverse=True)
        return [rec for _, rec in indexed]


def store_event(db: Session, record: EventRecord) -> AnalyticsEvent:
    row = AnalyticsEvent(
        session_id=record.session_id,
        event_name=record.kind,
        subject_id=record.subject_id,
        label=record.label,
        context=record.context,
        device_type=record.device_class,
        referrer=record.referrer,
        page_url=record.page_url,
        properties=dict(record.metadata),
    )
    if record.created_at is not None:
        row.created_at = record.created_at
    db.add(row)
    db.flush()
    return row


def store_ticket_click(db: Session, record: TicketClickRecord) -> TicketClick:
    row = TicketClick(**record.model_dump(exclude={"created_at", "device_class"}), device_type=record.device_class)
    if record.created_at is not None:
        row.created_at = record.created_at
    db.add(row)
    db.flush()
    return row


def record_from_row(row: AnalyticsEvent) -> EventRecord:
    return EventRecord(
        session_id=row.session_id,
        kind=row.event_name,
        subject_id=row.subject_id or "",
        label=row.label or "",
        context=row.context or "",
        device_class=row.device_type or "desktop",
        referrer=row.referrer or "",
        page_url=row.page_url or "",
        metadata=row.properties or {},
        created_at=row.created_at,
    )


def load_events_since(db: Session, since: datetime, limit: Optional[int] = None) -> List[EventRecord]:
    stmt = (
        select(AnalyticsEvent)
        .where(AnalyticsEvent.created_at >= as_utc(since))
        .order_by(AnalyticsEvent.created_at.desc(), AnalyticsEvent.id.desc())
    )
    if limit is not None:
        stmt = stmt.limit(limit)
    rows = db.execute(stmt).scalars().all()
    return [record_from_row(row) for row in rows]


class SqlAlchemySink(Sink):
    """Sink backed by the relational store; blocking I/O runs off the event loop."""

    def __init__(self, session_factory) -> None:
        self._session_factory = session_factory

    def _append_sync(self, record: SinkRecord) -> None:
        with session_scope(self._session_factory) as db:
            if isinstance(record, TicketClickRecord):
                store_ticket_click(db, record)
            else:
                store_event(db, record)

    def _read_sync(self, since: datetime) -> List[EventRecord]:
        with session_scope(self._session_factory) as db:
            return load_events_since(db, since)

    async def append(self, record: SinkRecord) -> None:
        await asyncio.to_thread(self._append_sync, record)

    async def read_range(self, since: datetime) -> List[EventRecord]:
        return await asyncio.to_thread(self._read_sync, since)


class HttpSink(Sink):
    """Sink that forwards records to the ingestion API over HTTP."""

    def __init__(self, base_url: str, timeout: float = 10.0, session: Optional[requests.Session] = None) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._http = session or requests.Session()

    def _post(self, path: str, body: dict) -> None:
        try:
            response = self._http.post(f"{self._base_url}{path}", json=body, timeout=self._timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise SinkError(f"POST {path} failed: {exc}") from exc

    def _get_events(self, since: datetime) -> List[EventRecord]:
        try:
            response = self._http.get(
                f"{self._base_url}/events",
                params={"since": as_utc(since).isoformat()},
                timeout=self._timeout,
            )
            response.raise_for_status()
            return [EventRecord.model_validate(item) for item in response.json()]
        except (requests.RequestException, ValidationError, ValueError, TypeError) as exc:
            raise SinkError(f"GET /events failed: {exc}") from exc

    async def append(self, record: SinkRecord) -> None:
        path = "/ticket-clicks" if isinstance(record, TicketClickRecord) else "/events"
        await asyncio.to_thread(self._post, path, record.model_dump(mode="json"))

    async def read_range(self, since: datetime) -> List[EventRecord]:
        return await asyncio.to_thread(self._get_events, since)
