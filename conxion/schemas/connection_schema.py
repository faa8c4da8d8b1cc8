from pydantic import BaseModel, Field
from typing import Optional, Literal

from conxion.schemas.base_schema import RequestBody


CONNECTION_ACTIONS = ("accept", "decline", "undo_decline", "cancel", "block", "unblock", "report")


# --------------------------------------------------
# CONNECT (new request from the caller)
# --------------------------------------------------
class ConnectPayload(RequestBody):
    connect_context: Optional[str] = None
    connect_reason: Optional[str] = None
    connect_reason_role: Optional[str] = None
    connect_note: Optional[str] = None
    trip_id: Optional[str] = None


class ConnectRequest(RequestBody):
    target_id: Optional[str] = Field(default=None, alias="targetId")
    payload: ConnectPayload = ConnectPayload()


# --------------------------------------------------
# ACTION ON AN EXISTING CONNECTION
# --------------------------------------------------
class ConnectionActionRequest(RequestBody):
    conn_id: Optional[str] = Field(default=None, alias="connId")
    target_user_id: Optional[str] = Field(default=None, alias="targetUserId")
    action: Optional[str] = None
    reason: Optional[str] = None
    note: Optional[str] = None
    context: Optional[str] = None
    context_id: Optional[str] = Field(default=None, alias="contextId")


class ConnectionStateOut(BaseModel):
    ok: bool = True
    status: Literal["none", "pending", "accepted", "blocked"]
    id: Optional[str] = None
    role: Optional[Literal["requester", "target"]] = None
