from pydantic import Field
from typing import Optional, List, Any

from conxion.schemas.base_schema import RequestBody


EVENT_JOIN_ACTIONS = ("join", "request", "leave", "cancel_request")
EVENT_RESPOND_ACTIONS = ("accept", "decline")


# --------------------------------------------------
# CREATE / UPDATE
# --------------------------------------------------
class EventWrite(RequestBody):
    title: Optional[str] = None
    description: Optional[str] = None
    event_type: Optional[str] = Field(default=None, alias="eventType")
    visibility: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    venue_name: Optional[str] = Field(default=None, alias="venueName")
    venue_address: Optional[str] = Field(default=None, alias="venueAddress")
    starts_at: Optional[str] = Field(default=None, alias="startsAt")
    ends_at: Optional[str] = Field(default=None, alias="endsAt")
    capacity: Optional[float] = None
    cover_url: Optional[str] = Field(default=None, alias="coverUrl")
    status: Optional[str] = None

    # Sanitized in the router; malformed items are dropped, not rejected
    links: Optional[List[Any]] = None
    styles: Optional[List[Any]] = None


class EventReportRequest(RequestBody):
    reason: Optional[str] = None
    note: Optional[str] = None


class EventJoinRequest(RequestBody):
    action: Optional[str] = None
    note: Optional[str] = None


class EventRespondRequest(RequestBody):
    action: Optional[str] = None
    request_id: Optional[str] = Field(default=None, alias="requestId")
    requester_id: Optional[str] = Field(default=None, alias="requesterId")


class EventRequestDecision(RequestBody):
    request_id: Optional[str] = Field(default=None, alias="requestId")
    action: Optional[str] = None


# --------------------------------------------------
# FEEDBACK
# --------------------------------------------------
class EventFeedbackCreate(RequestBody):
    happened_as_described: Optional[bool] = Field(default=None, alias="happenedAsDescribed")
    quality: Optional[int] = None
    note: Optional[str] = None
    visibility: Optional[str] = None
