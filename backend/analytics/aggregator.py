"""Reduce a slice of the event log into dashboard metrics.

``summarize`` is the pure, single-pass reduction over records that are
already in memory. ``Aggregator`` adds the sink read in front of it and turns
read failures into an empty snapshot.
"""
from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timezone, tzinfo
from typing import Callable, Iterable, List, Optional, Tuple

from pydantic import BaseModel, Field

from .records import EventRecord, as_utc
from .sink import Sink
from .taxonomy import EventKind

logger = logging.getLogger(__name__)

TOP_N = 10
RECENT_LIMIT = 50
UNKNOWN_LABEL = "Unknown"
SOURCE_RULES: Tuple[Tuple[str, str], ...] = (
    ("google", "google"),
    ("instagram", "instagram"),
    ("facebook", "facebook"),
)


class TopEvent(BaseModel):
    title: str
    views: int


class TopVenue(BaseModel):
    name: str
    views: int


class DeviceCount(BaseModel):
    device: str
    count: int


class HourBucket(BaseModel):
    hour: int
    count: int


class SourceCount(BaseModel):
    source: str
    count: int


def _empty_hours() -> List[HourBucket]:
    return [HourBucket(hour=hour, count=0) for hour in range(24)]


class Metrics(BaseModel):
    total_sessions: int = 0
    total_events: int = 0
    unique_users: int = 0
    today_sessions: int = 0
    today_users: int = 0
    ticket_clicks: int = 0
    event_views: int = 0
    event_views_per_session: float = 0.0
    directions_clicks: int = 0
    shares: int = 0
    claims_started: int = 0
    claims_submitted: int = 0
    conversion_rate: float = 0.0
    top_events: List[TopEvent] = Field(default_factory=list)
    top_venues: List[TopVenue] = Field(default_factory=list)
    device_breakdown: List[DeviceCount] = Field(default_factory=list)
    hourly_activity: List[HourBucket] = Field(default_factory=_empty_hours)
    source_breakdown: List[SourceCount] = Field(default_factory=list)
    recent_events: List[EventRecord] = Field(default_factory=list)


class MetricsResult(BaseModel):
    """Metrics plus the read error, if any; ``metrics`` is zeroed on error."""

    metrics: Metrics
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def classify_source(referrer: Optional[str]) -> str:
    if not referrer:
        return "direct"
    lowered = referrer.lower()
    for needle, source in SOURCE_RULES:
        if needle in lowered:
            return source
    return "other"


def _ranked(counter: Counter) -> List[Tuple[str, int]]:
    # Counter preserves first-seen order and sorted() is stable.
    return sorted(counter.items(), key=lambda item: item[1], reverse=True)


def _text(metadata: dict, key: str) -> Optional[str]:
    # metadata is free-form; only non-empty strings are usable as keys.
    value = metadata.get(key)
    if isinstance(value, str) and value:
        return value
    return None


def _event_title(record: EventRecord) -> str:
    return _text(record.metadata, "event_title") or record.label or UNKNOWN_LABEL


def _venue_name(record: EventRecord) -> str:
    return _text(record.metadata, "venue_name") or record.context or UNKNOWN_LABEL


def summarize(
    records: Iterable[EventRecord],
    now: Optional[datetime] = None,
    tz: Optional[tzinfo] = None,
) -> Metrics:
    """Build the metrics snapshot for ``records`` (expected newest first).

    "Today" and the hour buckets are evaluated in ``tz``; ``None`` means the
    server's local time zone.
    """

    records = list(records)
    if not records:
        return Metrics()

    now_local = as_utc(now or datetime.now(timezone.utc)).astimezone(tz)
    today = now_local.date()

    sessions = set()
    anon_ids = set()
    today_sessions = set()
    today_anon_ids = set()
    kinds: Counter = Counter()
    top_events: Counter = Counter()
    top_venues: Counter = Counter()
    devices: Counter = Counter()
    sources: Counter = Counter()
    hours = [0] * 24

    for record in records:
        sessions.add(record.session_id)
        kinds[record.kind] += 1
        anon_id = _text(record.metadata, "anon_id")
        if anon_id:
            anon_ids.add(anon_id)

        local = record.created_at.astimezone(tz) if record.created_at is not None else now_local
        hours[local.hour] += 1
        if local.date() == today:
            if anon_id:
                today_anon_ids.add(anon_id)
            if record.kind == EventKind.SESSION_START.value:
                today_sessions.add(record.session_id)

        if record.kind == EventKind.EVENT_VIEW.value:
            top_events[_event_title(record)] += 1
            top_venues[_venue_name(record)] += 1
        elif record.kind == EventKind.SESSION_START.value:
            devices[record.device_class or "desktop"] += 1

        sources[classify_source(record.referrer)] += 1

    ticket_clicks = kinds[EventKind.TICKET_CLICK.value]
    event_views = kinds[EventKind.EVENT_VIEW.value]
    total_sessions = len(sessions)

    return Metrics(
        total_sessions=total_sessions,
        total_events=len(records),
        unique_users=len(anon_ids),
        today_sessions=len(today_sessions),
        today_users=len(today_anon_ids),
        ticket_clicks=ticket_clicks,
        event_views=event_views,
        event_views_per_session=(event_views / total_sessions) if total_sessions else 0.0,
        directions_clicks=kinds[EventKind.DIRECTIONS_CLICK.value],
        shares=kinds[EventKind.SHARE_CLICK.value],
        claims_started=kinds[EventKind.CLAIM_START.value],
        claims_submitted=kinds[EventKind.CLAIM_SUBMIT.value],
        conversion_rate=(ticket_clicks / event_views) * 100 if event_views > 0 else 0.0,
        top_events=[TopEvent(title=title, views=views) for title, views in _ranked(top_events)[:TOP_N]],
        top_venues=[TopVenue(name=name, views=views) for name, views in _ranked(top_venues)[:TOP_N]],
        device_breakdown=[DeviceCount(device=device, count=count) for device, count in _ranked(devices)],
        hourly_activity=[HourBucket(hour=hour, count=count) for hour, count in enumerate(hours)],
        source_breakdown=[SourceCount(source=source, count=count) for source, count in _ranked(sources)],
        recent_events=records[:RECENT_LIMIT],
    )


class Aggregator:
    def __init__(
        self,
        sink: Sink,
        tz: Optional[tzinfo] = None,
        clock: Optional[Callable[[], datetime]] = None,
        diagnostics: Optional[Callable[[BaseException], None]] = None,
    ) -> None:
        self._sink = sink
        self._tz = tz
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._diagnostics = diagnostics

    def _failed(self, exc: Exception, message: str, *args) -> MetricsResult:
        logger.warning(message, *args, exc)
        if self._diagnostics is not None:
            try:
                self._diagnostics(exc)
            except Exception:
                logger.exception("Aggregator diagnostics callback failed")
        return MetricsResult(metrics=Metrics(), error=str(exc) or exc.__class__.__name__)

    async def compute(self, since: datetime) -> MetricsResult:
        try:
            records = await self._sink.read_range(since)
        except Exception as exc:
            return self._failed(exc, "Reading analytics events since %s failed: %s", since)
        try:
            metrics = summarize(records, now=self._clock(), tz=self._tz)
        except Exception as exc:
            return self._failed(exc, "Summarising analytics events failed: %s")
        return MetricsResult(metrics=metrics)

    async def compute_metrics(self, since: datetime) -> Metrics:
        """Metrics for ``since`` onwards; a failed read yields the empty snapshot."""

        return (await self.compute(since)).metrics
