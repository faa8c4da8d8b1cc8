from pydantic import Field
from typing import Optional

from conxion.schemas.base_schema import RequestBody


SYNC_ACTIONS = ("propose", "accept", "decline", "cancel", "complete")
SYNC_TYPES = ("training", "social_dancing", "workshop")


class SyncActionRequest(RequestBody):
    action: Optional[str] = None
    connection_id: Optional[str] = Field(default=None, alias="connectionId")
    sync_id: Optional[str] = Field(default=None, alias="syncId")
    sync_type: Optional[str] = Field(default=None, alias="syncType")
    scheduled_at: Optional[str] = Field(default=None, alias="scheduledAt")
    note: Optional[str] = None


class SyncCompleteRequest(RequestBody):
    connection_id: Optional[str] = Field(default=None, alias="connectionId")
    sync_id: Optional[str] = Field(default=None, alias="syncId")
    note: Optional[str] = None
