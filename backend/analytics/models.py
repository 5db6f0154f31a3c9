"""SQLAlchemy models for the analytics event log."""
from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Float, Index, Integer, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AnalyticsEvent(Base):
    __tablename__ = "analytics_events"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(String(64), index=True, nullable=False)
    event_name = Column(String(64), index=True, nullable=False)
    subject_id = Column(String(255), nullable=False, default="")
    label = Column(Text, nullable=False, default="")
    context = Column(Text, nullable=False, default="")
    device_type = Column(String(16), nullable=False, default="desktop")
    referrer = Column(Text, nullable=False, default="")
    page_url = Column(Text, nullable=False, default="")
    properties = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, index=True)

    __table_args__ = (Index("idx_analytics_events_name_created", "event_name", "created_at"),)


class TicketClick(Base):
    __tablename__ = "ticket_clicks"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(String(64), index=True, nullable=False)
    event_id = Column(String(255), index=True, nullable=False)
    event_name = Column(Text, nullable=False, default="")
    venue_id = Column(String(255), nullable=False, default="")
    venue_name = Column(Text, nullable=False, default="")
    genre_slug = Column(String(128), nullable=False, default="")
    genre_name = Column(Text, nullable=False, default="")
    promoter_id = Column(String(255), nullable=False, default="")
    promoter_name = Column(Text, nullable=False, default="")
    event_start_time = Column(String(64), nullable=True)
    ticket_price = Column(Float, nullable=False, default=0.0)
    ticket_url = Column(Text, nullable=False, default="")
    click_source = Column(String(64), nullable=False, default="")
    device_type = Column(String(16), nullable=False, default="desktop")
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, index=True)
