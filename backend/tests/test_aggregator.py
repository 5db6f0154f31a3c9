import asyncio
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from backend.analytics import aggregator as aggregator_module  # noqa: E402
from backend.analytics.aggregator import (  # noqa: E402
    RECENT_LIMIT,
    Aggregator,
    Metrics,
    classify_source,
    summarize,
)
from backend.analytics.records import EventRecord  # noqa: E402
from backend.analytics.session import MemoryStorage, SessionStore  # noqa: E402
from backend.analytics.sink import MemorySink, SinkError  # noqa: E402
from backend.analytics.tracker import BrowsingContext, Tracker  # noqa: E402

NOW = datetime(2026, 10, 18, 22, 0, tzinfo=timezone.utc)
UTC = timezone.utc


class UnreadableSink(MemorySink):
    async def read_range(self, since):
        raise SinkError("connection refused")


def _record(kind, session_id="s1", created_at=NOW, **fields):
    return EventRecord(session_id=session_id, kind=kind, created_at=created_at, **fields)


def _assert_empty(metrics: Metrics) -> None:
    assert metrics.total_sessions == 0
    assert metrics.total_events == 0
    assert metrics.unique_users == 0
    assert metrics.today_sessions == 0
    assert metrics.ticket_clicks == 0
    assert metrics.event_views == 0
    assert metrics.conversion_rate == 0
    assert metrics.top_events == []
    assert metrics.top_venues == []
    assert metrics.device_breakdown == []
    assert metrics.source_breakdown == []
    assert metrics.recent_events == []
    assert [bucket.hour for bucket in metrics.hourly_activity] == list(range(24))
    assert all(bucket.count == 0 for bucket in metrics.hourly_activity)


def test_empty_input_yields_zeroed_metrics():
    _assert_empty(summarize([], now=NOW, tz=UTC))


def test_conversion_rate_is_zero_without_views():
    records = [_record("ticket_click"), _record("ticket_click")]

    metrics = summarize(records, now=NOW, tz=UTC)

    assert metrics.ticket_clicks == 2
    assert metrics.event_views == 0
    assert metrics.conversion_rate == 0


def test_conversion_rate_is_an_unrounded_percentage():
    records = [_record("ticket_click")] + [_record("event_view") for _ in range(3)]

    metrics = summarize(records, now=NOW, tz=UTC)

    assert metrics.conversion_rate == pytest.approx(100 / 3)


def test_hourly_activity_always_has_24_buckets():
    records = [
        _record("page_view", created_at=NOW.replace(hour=23)),
        _record("page_view", created_at=NOW.replace(hour=23)),
        _record("page_view", created_at=NOW.replace(hour=2)),
    ]

    metrics = summarize(records, now=NOW, tz=UTC)

    counts = [bucket.count for bucket in metrics.hourly_activity]
    assert len(counts) == 24
    assert counts[23] == 2
    assert counts[2] == 1
    assert sum(counts) == 3


def test_hourly_activity_uses_requested_timezone():
    plus_two = timezone(timedelta(hours=2))
    records = [_record("page_view", created_at=NOW.replace(hour=23))]

    metrics = summarize(records, now=NOW, tz=plus_two)

    assert metrics.hourly_activity[1].count == 1


def test_sessions_users_and_today_partition():
    yesterday = NOW - timedelta(days=1)
    records = [
        _record("event_view", "s3", metadata={"anon_id": "user_b"}),
        _record("session_start", "s3", metadata={"anon_id": "user_b"}, device_class="mobile"),
        _record("page_view", "s2"),
        _record("session_start", "s2", device_class="desktop"),
        _record("event_view", "s1", created_at=yesterday, metadata={"anon_id": "user_a"}),
        _record("session_start", "s1", created_at=yesterday, metadata={"anon_id": "user_a"}, device_class="mobile"),
    ]

    metrics = summarize(records, now=NOW, tz=UTC)

    assert metrics.total_sessions == 3
    assert metrics.total_events == 6
    assert metrics.unique_users == 2
    assert metrics.today_sessions == 2
    assert metrics.today_users == 1
    assert [(d.device, d.count) for d in metrics.device_breakdown] == [("mobile", 2), ("desktop", 1)]
    assert metrics.event_views_per_session == pytest.approx(2 / 3)


def test_top_events_round_trip_counts_views():
    sink = MemorySink()
    tracker = Tracker(sink, SessionStore(MemoryStorage()))

    async def scenario():
        for _ in range(7):
            tracker.track_event_view("evt-1", "Basement Jam", "The Cellar", "list")
        await tracker.drain()
        return await Aggregator(sink).compute_metrics(datetime.now(timezone.utc) - timedelta(days=1))

    metrics = asyncio.run(scenario())

    assert [(e.title, e.views) for e in metrics.top_events] == [("Basement Jam", 7)]
    assert [(v.name, v.views) for v in metrics.top_venues] == [("The Cellar", 7)]


def test_scenario_ticket_click_and_view_convert_fully():
    sink = MemorySink()
    tracker = Tracker(sink, SessionStore(MemoryStorage()), context=BrowsingContext(user_agent=None))

    async def scenario():
        tracker.track_ticket_click(
            "evt-1", "Warehouse Rave", "Digital", "ven-1", "techno", "Techno",
            "pro-1", "Sounded Out", None, 10.0, "https://tickets.example.com/1", "detail_card",
        )
        tracker.track_event_view("evt-1", "Warehouse Rave", "Digital", "detail")
        await tracker.drain()
        return await Aggregator(sink).compute_metrics(datetime.now(timezone.utc) - timedelta(days=1))

    metrics = asyncio.run(scenario())

    assert metrics.ticket_clicks == 1
    assert metrics.event_views == 1
    assert metrics.conversion_rate == 100
    assert metrics.total_sessions == 1


def test_scenario_top_events_ranked_by_views():
    titles = ["Warehouse Rave", "Warehouse Rave", "Disco Night"]
    records = [_record("event_view", metadata={"event_title": title}) for title in titles]

    metrics = summarize(records, now=NOW, tz=UTC)

    assert [e.model_dump() for e in metrics.top_events] == [
        {"title": "Warehouse Rave", "views": 2},
        {"title": "Disco Night", "views": 1},
    ]


def test_top_events_fall_back_to_label_then_unknown():
    records = [
        _record("event_view", label="Label Only"),
        _record("event_view"),
    ]

    metrics = summarize(records, now=NOW, tz=UTC)

    assert [e.title for e in metrics.top_events] == ["Label Only", "Unknown"]
    assert [v.name for v in metrics.top_venues] == ["Unknown"]


def test_top_events_ties_keep_first_seen_order_and_cap_at_ten():
    records = [_record("event_view", label=f"Event {idx}") for idx in range(12)]
    records.append(_record("event_view", label="Event 11"))

    metrics = summarize(records, now=NOW, tz=UTC)

    titles = [e.title for e in metrics.top_events]
    assert len(titles) == 10
    assert titles[0] == "Event 11"
    assert titles[1:] == [f"Event {idx}" for idx in range(9)]


def test_scenario_source_breakdown():
    referrers = ["https://google.com/x", "", "https://instagram.com/y"]
    records = [_record("page_view", referrer=ref) for ref in referrers]

    metrics = summarize(records, now=NOW, tz=UTC)

    assert {s.source: s.count for s in metrics.source_breakdown} == {
        "google": 1,
        "direct": 1,
        "instagram": 1,
    }


@pytest.mark.parametrize(
    "referrer, expected",
    [
        ("https://www.google.co.uk/", "google"),
        ("https://l.instagram.com/?u=google", "google"),
        ("https://l.instagram.com/", "instagram"),
        ("https://m.facebook.com/", "facebook"),
        ("https://ra.co/events", "other"),
        ("", "direct"),
        (None, "direct"),
    ],
)
def test_classify_source(referrer, expected):
    assert classify_source(referrer) == expected


def test_recent_events_keep_newest_fifty_in_read_order():
    records = [
        _record("page_view", created_at=NOW - timedelta(minutes=idx), label=f"/p{idx}")
        for idx in range(60)
    ]

    metrics = summarize(records, now=NOW, tz=UTC)

    assert len(metrics.recent_events) == RECENT_LIMIT
    assert metrics.recent_events[0].label == "/p0"
    assert metrics.recent_events[-1].label == "/p49"


def test_scenario_no_events_in_range():
    sink = MemorySink(clock=lambda: NOW - timedelta(days=10))
    tracker = Tracker(sink, SessionStore(MemoryStorage()))

    async def scenario():
        tracker.track_page_view("/")
        await tracker.drain()
        return await Aggregator(sink, clock=lambda: NOW).compute(NOW - timedelta(days=1))

    result = asyncio.run(scenario())

    assert result.ok
    _assert_empty(result.metrics)


def test_read_failure_yields_no_data_and_reports_error():
    errors = []
    aggregator = Aggregator(UnreadableSink(), diagnostics=errors.append)

    result = asyncio.run(aggregator.compute(NOW - timedelta(days=7)))
    metrics = asyncio.run(aggregator.compute_metrics(NOW - timedelta(days=7)))

    assert not result.ok
    assert "connection refused" in result.error
    _assert_empty(result.metrics)
    _assert_empty(metrics)
    assert len(errors) == 2


def test_non_string_metadata_falls_back_to_columns():
    sink = MemorySink()
    records = [
        _record("event_view", metadata={"anon_id": ["a", "b"], "event_title": 42}, label="Warehouse Rave"),
        _record("event_view", metadata={"venue_name": {"id": 3}, "anon_id": "user_a"}, context="Digital"),
    ]
    for record in records:
        asyncio.run(sink.append(record))

    result = asyncio.run(Aggregator(sink, tz=UTC, clock=lambda: NOW).compute(NOW - timedelta(days=1)))

    assert result.ok
    assert result.metrics.unique_users == 1
    assert sorted((e.title, e.views) for e in result.metrics.top_events) == [("Unknown", 1), ("Warehouse Rave", 1)]
    assert sorted((v.name, v.views) for v in result.metrics.top_venues) == [("Digital", 1), ("Unknown", 1)]


def test_reduction_failure_yields_no_data_and_reports_error(monkeypatch):
    def explode(records, now=None, tz=None):
        raise TypeError("unhashable type: 'list'")

    monkeypatch.setattr(aggregator_module, "summarize", explode)
    sink = MemorySink()
    asyncio.run(sink.append(_record("page_view")))
    errors = []

    result = asyncio.run(Aggregator(sink, diagnostics=errors.append).compute(NOW - timedelta(days=1)))

    assert not result.ok
    assert "unhashable" in result.error
    _assert_empty(result.metrics)
    assert len(errors) == 1
