from fastapi import APIRouter, Depends, HTTPException
from postgrest.exceptions import APIError

from conxion.auth.supabase_auth import get_current_user, get_user_supabase
from conxion.core.compat import call_rpc
from conxion.core.errors import MESSAGE_ERRORS
from conxion.schemas.base_schema import clean
from conxion.schemas.trip_schema import MessageCreate

router = APIRouter(prefix="/api/messages", tags=["Messages"])


def outbound_text(body: str, reply_to_id: str = "") -> str:
    """Replies carry the quoted message id on a first line of their own."""
    if reply_to_id:
        return f"[[reply:{reply_to_id}]]\n{body}"
    return body


@router.post("")
def send_message(
    payload: MessageCreate,
    current_user: dict = Depends(get_current_user),
    supabase=Depends(get_user_supabase),
):
    body = clean(payload.body)
    if not body:
        raise HTTPException(400, "Message body is required.")

    text = outbound_text(body, clean(payload.reply_to_id))
    connection_id = clean(payload.connection_id)
    thread_id = clean(payload.thread_id)

    if connection_id:
        data = call_rpc(
            supabase,
            "send_message",
            {"p_connection_id": connection_id, "p_body": text},
            errors=MESSAGE_ERRORS,
        )
        return {"ok": True, "message_id": data if isinstance(data, str) else None}

    if thread_id:
        try:
            res = supabase.table("thread_messages").insert({
                "thread_id": thread_id,
                "sender_id": current_user["sub"],
                "body": text,
            }).execute()
        except APIError as exc:
            raise MESSAGE_ERRORS.from_api_error(exc, "Failed to send message.")
        rows = res.data or []
        return {"ok": True, "message_id": rows[0].get("id") if rows else None}

    raise HTTPException(400, "Thread messaging is unavailable for this chat.")
