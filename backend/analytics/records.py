"""Immutable records written to and read from the event sink."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def as_utc(value: datetime) -> datetime:
    """Interpret naive datetimes as UTC and normalise aware ones to UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class EventRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    session_id: str
    kind: str = Field(..., description="Taxonomy kind, e.g. event_view")
    subject_id: str = ""
    label: str = ""
    context: str = ""
    device_class: str = "desktop"
    referrer: str = ""
    page_url: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None

    @field_validator("created_at")
    @classmethod
    def _normalise_created_at(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value) if value is not None else None


class TicketClickRecord(BaseModel):
    """Revenue-relevant ticket click, stored alongside the generic event."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    event_id: str
    event_name: str = ""
    venue_id: str = ""
    venue_name: str = ""
    genre_slug: str = ""
    genre_name: str = ""
    promoter_id: str = ""
    promoter_name: str = ""
    event_start_time: Optional[str] = None
    ticket_price: float = 0.0
    ticket_url: str = ""
    click_source: str = ""
    device_class: str = "desktop"
    created_at: Optional[datetime] = None

    @field_validator("created_at")
    @classmethod
    def _normalise_created_at(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value) if value is not None else None
