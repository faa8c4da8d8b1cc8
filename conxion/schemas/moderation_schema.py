from pydantic import Field
from typing import Optional

from conxion.schemas.base_schema import RequestBody


REPORT_ACTIONS = ("resolve", "dismiss", "reopen")
EVENT_MODERATION_ACTIONS = ("approve_cover", "reject_cover", "hide", "unhide", "cancel", "publish")


class ReportModeration(RequestBody):
    report_id: Optional[str] = Field(default=None, alias="reportId")
    action: Optional[str] = None
    note: Optional[str] = None


class EventModeration(RequestBody):
    event_id: Optional[str] = Field(default=None, alias="eventId")
    action: Optional[str] = None
    note: Optional[str] = None
    hidden_reason: Optional[str] = Field(default=None, alias="hiddenReason")
