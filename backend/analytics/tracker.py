"""Fire-and-forget interaction tracker.

Every ``track_*`` call resolves the session, classifies the device, builds the
record(s) for one interaction and hands them to the sink without waiting.
Delivery is best effort: failures are logged and reported to the diagnostics
callback, never raised and never retried.
"""
from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Set

from . import taxonomy
from .device import classify_device
from .records import EventRecord, TicketClickRecord, as_utc
from .session import SessionStore
from .sink import Sink, SinkRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BrowsingContext:
    user_agent: Optional[str] = None
    referrer: str = ""
    page_url: str = ""


@dataclass(frozen=True)
class TrackingFailure:
    kind: str
    error: BaseException
    record: Optional[SinkRecord] = None


Diagnostics = Callable[[TrackingFailure], None]


class Tracker:
    def __init__(
        self,
        sink: Sink,
        sessions: SessionStore,
        context: Optional[BrowsingContext] = None,
        diagnostics: Optional[Diagnostics] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._sink = sink
        self._sessions = sessions
        self._context = context or BrowsingContext()
        self._diagnostics = diagnostics
        self._clock = clock
        self._pending: Set[asyncio.Task] = set()
        self._threads: List[threading.Thread] = []
        self._threads_lock = threading.Lock()

    # -- dispatch ---------------------------------------------------------

    def _report(self, failure: TrackingFailure) -> None:
        logger.warning("Tracking %s failed: %s", failure.kind, failure.error)
        if self._diagnostics is None:
            return
        try:
            self._diagnostics(failure)
        except Exception:
            logger.exception("Tracking diagnostics callback failed")

    async def _deliver(self, kind: str, records: List[SinkRecord]) -> None:
        for record in records:
            try:
                await self._sink.append(record)
            except Exception as exc:
                self._report(TrackingFailure(kind=kind, error=exc, record=record))

    def _dispatch(self, kind: str, records: List[SinkRecord]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is not None:
            task = loop.create_task(self._deliver(kind, records))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
            return

        thread = threading.Thread(
            target=asyncio.run,
            args=(self._deliver(kind, records),),
            name=f"analytics-{kind}",
            daemon=True,
        )
        with self._threads_lock:
            self._threads = [t for t in self._threads if t.is_alive()]
            self._threads.append(thread)
        thread.start()

    async def drain(self) -> None:
        """Wait for deliveries dispatched on the running loop."""

        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def join(self, timeout: Optional[float] = None) -> None:
        """Wait for deliveries dispatched outside an event loop."""

        with self._threads_lock:
            threads = list(self._threads)
        for thread in threads:
            thread.join(timeout)

    # -- record building ----------------------------------------------------

    def _now(self) -> Optional[datetime]:
        return as_utc(self._clock()) if self._clock is not None else None

    def _build(self, session_id: str, anon_id: str, device: str, payload) -> EventRecord:
        columns = payload.columns()
        metadata = dict(columns.metadata)
        metadata["anon_id"] = anon_id
        return EventRecord(
            session_id=session_id,
            kind=payload.kind,
            subject_id=columns.subject_id,
            label=columns.label,
            context=columns.context,
            device_class=device,
            referrer=self._context.referrer,
            page_url=self._context.page_url,
            metadata=metadata,
            created_at=self._now(),
        )

    def track(self, payload: taxonomy.Interaction) -> None:
        """Record one interaction. Never raises and returns nothing."""

        kind = getattr(payload, "kind", "unknown")
        try:
            session_id = self._sessions.ensure_session_id()
            anon_id = self._sessions.ensure_anon_id()
            device = classify_device(self._context.user_agent)

            records: List[SinkRecord] = [self._build(session_id, anon_id, device, payload)]
            if isinstance(payload, taxonomy.TicketClick):
                records.append(
                    TicketClickRecord(
                        session_id=session_id,
                        event_id=payload.event_id,
                        event_name=payload.event_name,
                        venue_id=payload.venue_id,
                        venue_name=payload.venue_name,
                        genre_slug=payload.genre_slug,
                        genre_name=payload.genre_name,
                        promoter_id=payload.promoter_id,
                        promoter_name=payload.promoter_name,
                        event_start_time=payload.start_time,
                        ticket_price=payload.price,
                        ticket_url=payload.ticket_url,
                        click_source=payload.click_source,
                        device_class=device,
                        created_at=self._now(),
                    )
                )
        except Exception as exc:
            self._report(TrackingFailure(kind=kind, error=exc))
            return

        self._dispatch(kind, records)

    def _emit(self, payload_type, **fields) -> None:
        try:
            payload = payload_type(**fields)
        except Exception as exc:
            self._report(TrackingFailure(kind=payload_type.model_fields["kind"].default, error=exc))
            return
        self.track(payload)

    # -- one method per interaction kind -------------------------------------

    def track_session_start(self) -> None:
        """Mark the start of a visit; call once when the page boots."""

        self._emit(taxonomy.SessionStart, device_type=classify_device(self._context.user_agent))

    def track_page_view(self, page: str) -> None:
        self._emit(taxonomy.PageView, page=page)

    def track_event_view(self, event_id: str, event_title: str, venue_name: str, source: str = "") -> None:
        self._emit(
            taxonomy.EventView,
            event_id=event_id,
            event_title=event_title,
            venue_name=venue_name,
            view_source=source,
        )

    def track_ticket_click(
        self,
        event_id: str,
        event_name: str,
        venue_name: str,
        venue_id: str,
        genre_slug: str,
        genre_name: str,
        promoter_id: str,
        promoter_name: str,
        start_time: Optional[str],
        price: float,
        ticket_url: str,
        click_source: str,
    ) -> None:
        self._emit(
            taxonomy.TicketClick,
            event_id=event_id,
            event_name=event_name,
            venue_name=venue_name,
            venue_id=venue_id,
            genre_slug=genre_slug,
            genre_name=genre_name,
            promoter_id=promoter_id,
            promoter_name=promoter_name,
            start_time=start_time,
            price=price,
            ticket_url=ticket_url,
            click_source=click_source,
        )

    def track_map_loaded(self, event_count: int) -> None:
        self._emit(taxonomy.MapLoaded, event_count=event_count)

    def track_marker_click(self, event_id: str, event_title: str, venue_name: str) -> None:
        self._emit(taxonomy.MarkerClick, event_id=event_id, event_title=event_title, venue_name=venue_name)

    def track_location_enabled(self) -> None:
        self._emit(taxonomy.LocationEnabled)

    def track_location_denied(self) -> None:
        self._emit(taxonomy.LocationDenied)

    def track_menu_open(self) -> None:
        self._emit(taxonomy.MenuOpen)

    def track_menu_item(self, item: str) -> None:
        self._emit(taxonomy.MenuItem, item=item)

    def track_list_open(self, event_count: int) -> None:
        self._emit(taxonomy.ListOpen, event_count=event_count)

    def track_date_filter(self, filter_value: str, result_count: int) -> None:
        self._emit(taxonomy.DateFilter, filter_value=filter_value, result_count=result_count)

    def track_genre_filter(self, genre: str, result_count: int) -> None:
        self._emit(taxonomy.GenreFilter, genre=genre, result_count=result_count)

    def track_directions_click(self, venue_id: str, venue_name: str) -> None:
        self._emit(taxonomy.DirectionsClick, venue_id=venue_id, venue_name=venue_name)

    def track_share_click(self, event_id: str, method: str) -> None:
        self._emit(taxonomy.ShareClick, event_id=event_id, method=method)

    def track_cta_click(self, cta: str, location: str) -> None:
        self._emit(taxonomy.CtaClick, cta=cta, location=location)

    def track_claim_start(self, claim_type: str, name: str) -> None:
        self._emit(taxonomy.ClaimStart, claim_type=claim_type, name=name)

    def track_claim_submit(self, claim_type: str, name: str) -> None:
        self._emit(taxonomy.ClaimSubmit, claim_type=claim_type, name=name)

    def track_event_save(self, event_id: str, event_title: str) -> None:
        self._emit(taxonomy.EventSave, event_id=event_id, event_title=event_title)

    def track_event_unsave(self, event_id: str) -> None:
        self._emit(taxonomy.EventUnsave, event_id=event_id)

    def track_error(self, message: str, where: str) -> None:
        self._emit(taxonomy.ErrorOccurred, message=message, where=where)
