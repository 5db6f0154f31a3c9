"""The closed set of interaction kinds and their typed payloads.

Each kind is one pydantic model carrying a ``kind`` literal, so a parsed
``Interaction`` is a tagged union. ``columns()`` maps the typed fields onto
the generic record columns (subject, label, context, metadata) in one place
per kind.
"""
from __future__ import annotations

from enum import Enum
from types import MappingProxyType
from typing import Annotated, Any, Literal, Mapping, NamedTuple, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class EventKind(str, Enum):
    SESSION_START = "session_start"
    PAGE_VIEW = "page_view"
    EVENT_VIEW = "event_view"
    TICKET_CLICK = "ticket_click"
    MAP_LOADED = "map_loaded"
    MARKER_CLICK = "marker_click"
    LOCATION_ENABLED = "location_enabled"
    LOCATION_DENIED = "location_denied"
    MENU_OPEN = "menu_open"
    MENU_ITEM = "menu_item"
    LIST_OPEN = "list_open"
    DATE_FILTER = "date_filter"
    GENRE_FILTER = "genre_filter"
    DIRECTIONS_CLICK = "directions_click"
    SHARE_CLICK = "share_click"
    CTA_CLICK = "cta_click"
    CLAIM_START = "claim_start"
    CLAIM_SUBMIT = "claim_submit"
    EVENT_SAVE = "event_save"
    EVENT_UNSAVE = "event_unsave"
    ERROR = "error"


class Columns(NamedTuple):
    subject_id: str = ""
    label: str = ""
    context: str = ""
    metadata: Mapping[str, Any] = MappingProxyType({})


class _Payload(BaseModel):
    model_config = ConfigDict(frozen=True)

    def columns(self) -> Columns:
        return Columns()


class SessionStart(_Payload):
    kind: Literal["session_start"] = "session_start"
    device_type: str = "desktop"

    def columns(self) -> Columns:
        return Columns(metadata={"device_type": self.device_type})


class PageView(_Payload):
    kind: Literal["page_view"] = "page_view"
    page: str

    def columns(self) -> Columns:
        return Columns(label=self.page, metadata={"page": self.page})


class EventView(_Payload):
    kind: Literal["event_view"] = "event_view"
    event_id: str
    event_title: str = ""
    venue_name: str = ""
    view_source: str = ""

    def columns(self) -> Columns:
        return Columns(
            subject_id=self.event_id,
            label=self.event_title,
            context=self.venue_name,
            metadata={
                "event_title": self.event_title,
                "venue_name": self.venue_name,
                "view_source": self.view_source,
            },
        )


class TicketClick(_Payload):
    kind: Literal["ticket_click"] = "ticket_click"
    event_id: str
    event_name: str = ""
    venue_name: str = ""
    venue_id: str = ""
    genre_slug: str = ""
    genre_name: str = ""
    promoter_id: str = ""
    promoter_name: str = ""
    start_time: Optional[str] = None
    price: float = 0.0
    ticket_url: str = ""
    click_source: str = ""

    def columns(self) -> Columns:
        return Columns(
            subject_id=self.event_id,
            label=self.event_name,
            context=self.venue_name,
            metadata={
                "event_title": self.event_name,
                "venue_name": self.venue_name,
                "ticket_url": self.ticket_url,
                "click_source": self.click_source,
            },
        )


class MapLoaded(_Payload):
    kind: Literal["map_loaded"] = "map_loaded"
    event_count: int = 0

    def columns(self) -> Columns:
        return Columns(metadata={"event_count": self.event_count})


class MarkerClick(_Payload):
    kind: Literal["marker_click"] = "marker_click"
    event_id: str
    event_title: str = ""
    venue_name: str = ""

    def columns(self) -> Columns:
        return Columns(
            subject_id=self.event_id,
            label=self.event_title,
            context=self.venue_name,
            metadata={"event_title": self.event_title, "venue_name": self.venue_name},
        )


class LocationEnabled(_Payload):
    kind: Literal["location_enabled"] = "location_enabled"


class LocationDenied(_Payload):
    kind: Literal["location_denied"] = "location_denied"


class MenuOpen(_Payload):
    kind: Literal["menu_open"] = "menu_open"


class MenuItem(_Payload):
    kind: Literal["menu_item"] = "menu_item"
    item: str

    def columns(self) -> Columns:
        return Columns(label=self.item)


class ListOpen(_Payload):
    kind: Literal["list_open"] = "list_open"
    event_count: int = 0

    def columns(self) -> Columns:
        return Columns(metadata={"event_count": self.event_count})


class DateFilter(_Payload):
    kind: Literal["date_filter"] = "date_filter"
    filter_value: str
    result_count: int = 0

    def columns(self) -> Columns:
        return Columns(label=self.filter_value, metadata={"result_count": self.result_count})


class GenreFilter(_Payload):
    kind: Literal["genre_filter"] = "genre_filter"
    genre: str
    result_count: int = 0

    def columns(self) -> Columns:
        return Columns(label=self.genre, metadata={"result_count": self.result_count})


class DirectionsClick(_Payload):
    kind: Literal["directions_click"] = "directions_click"
    venue_id: str = ""
    venue_name: str = ""

    def columns(self) -> Columns:
        return Columns(
            subject_id=self.venue_id,
            context=self.venue_name,
            metadata={"venue_name": self.venue_name},
        )


class ShareClick(_Payload):
    kind: Literal["share_click"] = "share_click"
    event_id: str
    method: str = ""

    def columns(self) -> Columns:
        return Columns(subject_id=self.event_id, label=self.method)


class CtaClick(_Payload):
    kind: Literal["cta_click"] = "cta_click"
    cta: str
    location: str = ""

    def columns(self) -> Columns:
        return Columns(label=self.cta, context=self.location)


class ClaimStart(_Payload):
    kind: Literal["claim_start"] = "claim_start"
    claim_type: str
    name: str = ""

    def columns(self) -> Columns:
        return Columns(label=self.claim_type, context=self.name)


class ClaimSubmit(_Payload):
    kind: Literal["claim_submit"] = "claim_submit"
    claim_type: str
    name: str = ""

    def columns(self) -> Columns:
        return Columns(label=self.claim_type, context=self.name)


class EventSave(_Payload):
    kind: Literal["event_save"] = "event_save"
    event_id: str
    event_title: str = ""

    def columns(self) -> Columns:
        return Columns(subject_id=self.event_id, label=self.event_title)


class EventUnsave(_Payload):
    kind: Literal["event_unsave"] = "event_unsave"
    event_id: str

    def columns(self) -> Columns:
        return Columns(subject_id=self.event_id)


class ErrorOccurred(_Payload):
    kind: Literal["error"] = "error"
    message: str
    where: str = ""

    def columns(self) -> Columns:
        return Columns(label=self.message, context=self.where)


Interaction = Annotated[
    Union[
        SessionStart,
        PageView,
        EventView,
        TicketClick,
        MapLoaded,
        MarkerClick,
        LocationEnabled,
        LocationDenied,
        MenuOpen,
        MenuItem,
        ListOpen,
        DateFilter,
        GenreFilter,
        DirectionsClick,
        ShareClick,
        CtaClick,
        ClaimStart,
        ClaimSubmit,
        EventSave,
        EventUnsave,
        ErrorOccurred,
    ],
    Field(discriminator="kind"),
]

PAYLOAD_TYPES = {
    model.model_fields["kind"].default: model
    for model in _Payload.__subclasses__()
}
