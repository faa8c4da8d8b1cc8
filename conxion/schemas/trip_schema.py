from pydantic import Field
from typing import Optional

from conxion.schemas.base_schema import RequestBody


class TripRequestRespond(RequestBody):
    action: Optional[str] = None


# --------------------------------------------------
# MESSAGES (connection chat or trip thread)
# --------------------------------------------------
class MessageCreate(RequestBody):
    connection_id: Optional[str] = Field(default=None, alias="connectionId")
    thread_id: Optional[str] = Field(default=None, alias="threadId")
    body: Optional[str] = None
    reply_to_id: Optional[str] = Field(default=None, alias="replyToId")
