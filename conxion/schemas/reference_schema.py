from pydantic import Field
from typing import Optional

from conxion.schemas.base_schema import RequestBody


REFERENCE_ENTITY_TYPES = ("sync", "trip", "event", "connection")


# --------------------------------------------------
# CREATE
# --------------------------------------------------
class ReferenceCreate(RequestBody):
    connection_id: Optional[str] = Field(default=None, alias="connectionId")
    recipient_id: Optional[str] = Field(default=None, alias="recipientId")
    sentiment: Optional[str] = None
    body: Optional[str] = None
    entity_type: Optional[str] = Field(default=None, alias="entityType")
    entity_id: Optional[str] = Field(default=None, alias="entityId")
    # Older clients send the entity type as "context"
    context: Optional[str] = None


# --------------------------------------------------
# EDIT (author) / REPLY (recipient)
# --------------------------------------------------
class ReferenceUpdate(RequestBody):
    mode: Optional[str] = None
    reference_id: Optional[str] = Field(default=None, alias="referenceId")
    sentiment: Optional[str] = None
    body: Optional[str] = None
    reply_text: Optional[str] = Field(default=None, alias="replyText")
