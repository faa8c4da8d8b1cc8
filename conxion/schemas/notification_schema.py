from pydantic import Field
from typing import Optional, Any

from conxion.schemas.base_schema import RequestBody


class NotificationCreate(RequestBody):
    user_id: Optional[str] = Field(default=None, alias="userId")
    kind: Optional[str] = None
    title: Optional[str] = None
    body: Optional[str] = None
    link_url: Optional[str] = Field(default=None, alias="linkUrl")
    # Anything that is not an object is stored as {}
    metadata: Optional[Any] = None
