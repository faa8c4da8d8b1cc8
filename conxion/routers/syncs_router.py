import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException
from postgrest.exceptions import APIError

from conxion.auth.supabase_auth import get_current_user, get_user_supabase
from conxion.core.compat import Step, insert_idempotent, rpc_with_fallback
from conxion.core.errors import (
    PASSTHROUGH,
    api_error_message,
    is_schema_drift,
    should_fallback_sync_completion,
    should_fallback_sync_rpc,
)
from conxion.schemas.base_schema import clean
from conxion.schemas.sync_schema import (
    SYNC_ACTIONS,
    SYNC_TYPES,
    SyncActionRequest,
    SyncCompleteRequest,
)
from conxion.supabase_client import get_optional_service_supabase

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/syncs", tags=["Syncs"])

ACTION_LABELS = {
    "accept": "accepted",
    "decline": "declined",
    "cancel": "cancelled",
    "complete": "completed",
}


def _require_service(service):
    if service is None:
        raise HTTPException(500, "Missing Supabase service role configuration.")
    return service


def _first(rows) -> dict:
    for row in rows or []:
        if isinstance(row, dict):
            return row
    return {}


def _sync_type(value) -> str:
    return value if value in SYNC_TYPES else "training"


# --------------------------------------------------
# PROPOSE (procedure first, service write as fallback)
# --------------------------------------------------
def _propose(payload: SyncActionRequest, me: str, supabase, service) -> dict:
    connection_id = clean(payload.connection_id)
    if not connection_id:
        raise HTTPException(400, "Missing connectionId.")

    sync_type = _sync_type(payload.sync_type)
    note = clean(payload.note) or None
    scheduled_at = clean(payload.scheduled_at) or None

    try:
        data = supabase.rpc("propose_connection_sync", {
            "p_connection_id": connection_id,
            "p_sync_type": sync_type,
            "p_scheduled_at": scheduled_at,
            "p_note": note,
        }).execute().data
        return {"ok": True, "syncId": data if isinstance(data, str) else None, "status": "pending"}
    except APIError as exc:
        message = api_error_message(exc)
        if not should_fallback_sync_rpc(message):
            raise PASSTHROUGH.from_api_error(exc)
        logger.info("propose_connection_sync unavailable, writing directly: %s", message)

    service = _require_service(service)
    try:
        res = (
            service.table("connections")
            .select("id,status,requester_id,target_id")
            .eq("id", connection_id)
            .limit(1)
            .execute()
        )
    except APIError as exc:
        raise PASSTHROUGH.from_api_error(exc)

    conn = _first(res.data)
    if not conn.get("id") or not conn.get("requester_id") or not conn.get("target_id"):
        raise HTTPException(404, "Connection not found.")
    if conn.get("status") != "accepted":
        raise HTTPException(400, "Connection not accepted.")
    if me not in (conn["requester_id"], conn["target_id"]):
        raise HTTPException(403, "Not authorized.")

    recipient_id = conn["target_id"] if conn["requester_id"] == me else conn["requester_id"]
    try:
        inserted = service.table("connection_syncs").insert({
            "connection_id": connection_id,
            "requester_id": me,
            "recipient_id": recipient_id,
            "sync_type": sync_type,
            "scheduled_at": scheduled_at,
            "note": note,
            "status": "pending",
        }).execute()
    except APIError as exc:
        raise PASSTHROUGH.from_api_error(exc)

    row = _first(inserted.data)
    return {"ok": True, "syncId": row.get("id"), "status": row.get("status", "pending")}


# --------------------------------------------------
# ACCEPT / DECLINE / CANCEL / COMPLETE
# --------------------------------------------------
def _transition(payload: SyncActionRequest, action: str, me: str, service) -> dict:
    sync_id = clean(payload.sync_id)
    note = clean(payload.note) or None
    if not sync_id:
        raise HTTPException(400, "Missing syncId.")

    service = _require_service(service)
    try:
        res = (
            service.table("connection_syncs")
            .select("id,connection_id,requester_id,recipient_id,status")
            .eq("id", sync_id)
            .limit(1)
            .execute()
        )
    except APIError as exc:
        if is_schema_drift(api_error_message(exc)):
            raise HTTPException(400, "connection_syncs not available in schema.")
        raise PASSTHROUGH.from_api_error(exc)

    sync = _first(res.data)
    if not all(sync.get(key) for key in ("id", "connection_id", "requester_id", "recipient_id")):
        raise HTTPException(404, "Sync not found.")

    is_requester = sync["requester_id"] == me
    is_recipient = sync["recipient_id"] == me
    if not is_requester and not is_recipient:
        raise HTTPException(403, "Not authorized.")
    if action in ("accept", "decline") and not is_recipient:
        raise HTTPException(403, "Only recipient can respond.")
    if action in ("accept", "decline", "cancel") and sync.get("status") != "pending":
        raise HTTPException(400, "Sync is not pending.")
    if action == "complete" and sync.get("status") != "accepted":
        raise HTTPException(400, "Sync is not accepted.")

    changes = {"status": ACTION_LABELS[action]}
    if action == "complete":
        changes["completed_at"] = datetime.now(timezone.utc).isoformat()
        if note:
            changes["note"] = note

    try:
        updated = service.table("connection_syncs").update(changes).eq("id", sync["id"]).execute()
    except APIError as exc:
        raise PASSTHROUGH.from_api_error(exc)
    row = _first(updated.data)

    if action == "complete":
        # The legacy syncs table is gone in newer schemas.
        insert_idempotent(
            service,
            "syncs",
            {"connection_id": sync["connection_id"], "completed_by": me, "note": note},
            tolerate_drift=True,
            errors=PASSTHROUGH,
        )

    return {
        "ok": True,
        "syncId": row.get("id", sync["id"]),
        "status": row.get("status", changes["status"]),
        "action": ACTION_LABELS[action],
    }


@router.post("/action")
def sync_action(
    payload: SyncActionRequest,
    current_user: dict = Depends(get_current_user),
    supabase=Depends(get_user_supabase),
    service=Depends(get_optional_service_supabase),
):
    action = payload.action
    if action not in SYNC_ACTIONS:
        raise HTTPException(400, "Invalid action.")

    me = current_user["sub"]
    if action == "propose":
        return _propose(payload, me, supabase, service)
    return _transition(payload, action, me, service)


# --------------------------------------------------
# COMPLETE (current procedure, then the legacy one)
# --------------------------------------------------
def _latest_accepted_sync(supabase, connection_id: str) -> str:
    try:
        res = (
            supabase.table("connection_syncs")
            .select("id")
            .eq("connection_id", connection_id)
            .eq("status", "accepted")
            .order("created_at", desc=True)
            .limit(1)
            .execute()
        )
    except APIError as exc:
        logger.info("No accepted sync lookup for %s: %s", connection_id, api_error_message(exc))
        return ""
    return _first(res.data).get("id") or ""


@router.post("/complete")
def complete_sync(
    payload: SyncCompleteRequest,
    current_user: dict = Depends(get_current_user),
    supabase=Depends(get_user_supabase),
):
    connection_id = clean(payload.connection_id)
    sync_id = clean(payload.sync_id)
    note = payload.note if isinstance(payload.note, str) else None
    if not connection_id and not sync_id:
        raise HTTPException(400, "Missing syncId or connectionId.")

    target_sync_id = sync_id or _latest_accepted_sync(supabase, connection_id)

    def current():
        data = supabase.rpc("complete_connection_sync", {
            "p_sync_id": target_sync_id,
            "p_note": note,
        }).execute().data
        return data or target_sync_id

    def legacy():
        if not connection_id:
            raise HTTPException(400, "Legacy completion requires connectionId.")
        data = supabase.rpc("mark_sync_completed", {
            "p_connection_id": connection_id,
            "p_note": note,
        }).execute().data
        return data or None

    steps = [Step("legacy", legacy)]
    if target_sync_id:
        steps.insert(0, Step("connection_syncs", current, advance=should_fallback_sync_completion))

    result = rpc_with_fallback(steps, errors=PASSTHROUGH)
    return {"ok": True, "sync_id": result.data, "mode": result.name}
