import logging

from fastapi import APIRouter, Depends, HTTPException
from postgrest.exceptions import APIError

from conxion.auth.supabase_auth import get_current_user, get_user_supabase
from conxion.core.compat import Step, call_rpc, insert_with_column_swaps, rpc_with_fallback
from conxion.core.connection_state import derive_connection_state
from conxion.core.errors import GENERIC, PASSTHROUGH, is_unavailable
from conxion.core.read_model import fetch_visible_connections
from conxion.schemas.base_schema import clean, is_uuid
from conxion.schemas.connection_schema import (
    CONNECTION_ACTIONS,
    ConnectRequest,
    ConnectionActionRequest,
    ConnectionStateOut,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Connections"])

# Older connection tables have none of the request metadata columns.
CONNECT_SWAPS = {
    "connect_context": None,
    "connect_reason": None,
    "connect_reason_role": None,
    "connect_note": None,
    "trip_id": None,
}

# action -> procedure taking only p_connection_id
SIMPLE_ACTIONS = {
    "accept": "accept_connection_request",
    "decline": "decline_connection_request",
    "undo_decline": "undo_decline_connection_request",
    "cancel": "cancel_connection_request",
    "unblock": "unblock_connection",
}


# --------------------------------------------------
# REQUEST A CONNECTION
# --------------------------------------------------
@router.post("/connect")
def connect(
    payload: ConnectRequest,
    current_user: dict = Depends(get_current_user),
    supabase=Depends(get_user_supabase),
):
    me = current_user["sub"]
    target_id = clean(payload.target_id)
    if not target_id:
        raise HTTPException(400, "Missing targetId.")
    if target_id == me:
        raise HTTPException(400, "You cannot connect with yourself.")

    meta = payload.payload

    def via_rpc():
        return supabase.rpc("create_connection_request", {
            "p_target_id": target_id,
            "p_context": meta.connect_context,
            "p_connect_reason": meta.connect_reason,
            "p_connect_reason_role": meta.connect_reason_role,
            "p_trip_id": meta.trip_id,
            "p_note": meta.connect_note,
        }).execute().data

    def via_insert():
        row = {
            "requester_id": me,
            "target_id": target_id,
            "status": "pending",
            "connect_context": meta.connect_context,
            "connect_reason": meta.connect_reason,
            "connect_reason_role": meta.connect_reason_role,
            "connect_note": meta.connect_note,
            "trip_id": meta.trip_id,
        }
        outcome = insert_with_column_swaps(
            supabase,
            "connections",
            [row],
            swaps=CONNECT_SWAPS,
            fill=lambda column: None,
            errors=PASSTHROUGH,
        )
        return outcome.first_id

    result = rpc_with_fallback(
        [
            Step("create_connection_request", via_rpc, advance=is_unavailable),
            Step("insert", via_insert),
        ],
        errors=PASSTHROUGH,
    )
    connection_id = result.data if isinstance(result.data, str) else None
    return {"ok": True, "connection_id": connection_id, "mode": result.name}


# --------------------------------------------------
# ACT ON A CONNECTION
# --------------------------------------------------
@router.post("/connections/action")
def connection_action(
    payload: ConnectionActionRequest,
    current_user: dict = Depends(get_current_user),
    supabase=Depends(get_user_supabase),
):
    action = payload.action
    conn_id = clean(payload.conn_id) or None
    target_user_id = clean(payload.target_user_id) or None

    if action not in CONNECTION_ACTIONS:
        raise HTTPException(400, "Invalid action.")
    if not conn_id and not (action == "block" and target_user_id):
        raise HTTPException(400, "Missing connId (or targetUserId for block).")

    if action in SIMPLE_ACTIONS:
        call_rpc(supabase, SIMPLE_ACTIONS[action], {"p_connection_id": conn_id}, errors=PASSTHROUGH)
        return {"ok": True}

    if action == "block":
        data = call_rpc(
            supabase,
            "block_connection",
            {"p_connection_id": conn_id, "p_target_user_id": target_user_id},
            errors=PASSTHROUGH,
        )
        return {"ok": True, "connection_id": data or None}

    reason = clean(payload.reason)
    if not reason:
        raise HTTPException(400, "Report reason is required.")

    data = call_rpc(
        supabase,
        "create_report",
        {
            "p_connection_id": conn_id,
            "p_target_user_id": target_user_id,
            "p_context": payload.context or "connection",
            "p_context_id": payload.context_id or conn_id,
            "p_reason": reason,
            "p_note": clean(payload.note) or None,
        },
        errors=PASSTHROUGH,
    )
    logger.info("User %s reported connection %s", current_user["sub"], conn_id or target_user_id)
    return {"ok": True, "report_id": data or None}


# --------------------------------------------------
# READ MODEL
# --------------------------------------------------
@router.get("/connections/visible")
def visible_connections(
    current_user: dict = Depends(get_current_user),
    supabase=Depends(get_user_supabase),
):
    rows = fetch_visible_connections(supabase, current_user["sub"])
    return {"ok": True, "connections": rows}


@router.get("/connections/state/{other_user_id}", response_model=ConnectionStateOut)
def connection_state(
    other_user_id: str,
    current_user: dict = Depends(get_current_user),
    supabase=Depends(get_user_supabase),
):
    me = current_user["sub"]
    if not is_uuid(other_user_id):
        raise HTTPException(400, "Invalid user id.")
    rows = _pair_rows(supabase, me, other_user_id)

    state = derive_connection_state(rows, me, other_user_id)
    return {"ok": True, **state.to_dict()}


def _pair_rows(supabase, me: str, other_user_id: str) -> list:
    pair = (
        f"and(requester_id.eq.{me},target_id.eq.{other_user_id}),"
        f"and(requester_id.eq.{other_user_id},target_id.eq.{me})"
    )
    try:
        res = supabase.table("connections").select("*").or_(pair).limit(50).execute()
    except APIError as exc:
        raise GENERIC.from_api_error(exc)
    return list(res.data or [])
