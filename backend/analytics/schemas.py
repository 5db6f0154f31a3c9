"""Pydantic models for request and response bodies."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from .aggregator import Metrics


class EventOut(BaseModel):
    id: int
    kind: str
    created_at: datetime


class TicketClickOut(BaseModel):
    id: int
    event_id: str
    created_at: datetime


class MetricsResponse(BaseModel):
    range: str = Field(..., description="Selected time range, e.g. 7days")
    since: datetime
    generated_at: datetime
    error: Optional[str] = Field(
        default=None,
        description="Set when the event store could not be read; metrics are then zeroed.",
    )
    metrics: Metrics
