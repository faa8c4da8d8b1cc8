import logging

from fastapi import APIRouter, Body, Depends, HTTPException
from postgrest.exceptions import APIError

from conxion.auth.supabase_auth import get_current_user, get_user_supabase
from conxion.core.compat import Step, rpc_with_fallback
from conxion.core.errors import (
    TRIP_REQUEST_ERRORS,
    PASSTHROUGH,
    BackendError,
    api_error_message,
    is_schema_drift,
    should_fallback_trip_rpc,
)
from conxion.core.notifications import create_notification
from conxion.core.threads import ensure_trip_thread
from conxion.schemas.base_schema import clean
from conxion.schemas.trip_schema import TripRequestRespond
from conxion.supabase_client import get_optional_service_supabase

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/trips", tags=["Trips"])


def _require_service(service):
    if service is None:
        raise HTTPException(500, "Missing Supabase service role configuration.")
    return service


def _first(rows) -> dict:
    for row in rows or []:
        if isinstance(row, dict):
            return row
    return {}


def _trip_request(supabase, request_id: str) -> dict:
    """Best-effort read used only to address follow-up notifications."""
    try:
        res = (
            supabase.table("trip_requests")
            .select("id,trip_id,requester_id,status")
            .eq("id", request_id)
            .limit(1)
            .execute()
        )
    except APIError as exc:
        logger.info("Trip request %s unreadable: %s", request_id, api_error_message(exc))
        return {}
    return _first(res.data)


def _set_request_status(supabase, request_id: str, status: str):
    try:
        supabase.table("trip_requests").update({"status": status}).eq("id", request_id).execute()
    except APIError as exc:
        raise TRIP_REQUEST_ERRORS.from_api_error(exc)
    return None


# --------------------------------------------------
# TRIP THREAD
# --------------------------------------------------
@router.post("/{trip_id}/thread")
def ensure_thread(
    trip_id: str,
    payload: dict = Body(default={}),
    current_user: dict = Depends(get_current_user),
    service=Depends(get_optional_service_supabase),
):
    me = current_user["sub"]
    requester_id = clean(payload.get("requesterId")) if isinstance(payload, dict) else ""
    service = _require_service(service)

    try:
        trip = _first(service.table("trips").select("id,user_id").eq("id", trip_id).limit(1).execute().data)
    except APIError as exc:
        raise PASSTHROUGH.from_api_error(exc)
    if not trip.get("id") or not trip.get("user_id"):
        raise HTTPException(404, "Trip not found.")

    allowed = trip["user_id"] == me
    if not allowed:
        try:
            res = (
                service.table("trip_requests")
                .select("id")
                .eq("trip_id", trip_id)
                .eq("requester_id", me)
                .eq("status", "accepted")
                .limit(1)
                .execute()
            )
            allowed = bool(res.data)
        except APIError as exc:
            if not is_schema_drift(api_error_message(exc)):
                raise PASSTHROUGH.from_api_error(exc)
    if not allowed:
        raise HTTPException(403, "Not authorized for trip thread.")

    accepted_ids = []
    try:
        res = (
            service.table("trip_requests")
            .select("requester_id,status")
            .eq("trip_id", trip_id)
            .eq("status", "accepted")
            .limit(500)
            .execute()
        )
        accepted_ids = [row.get("requester_id") for row in res.data or []]
    except APIError as exc:
        if not is_schema_drift(api_error_message(exc)):
            raise PASSTHROUGH.from_api_error(exc)

    thread_id = ensure_trip_thread(service, trip_id, me, [trip["user_id"], me, requester_id, *accepted_ids])
    if not thread_id:
        return {"ok": True, "threadId": None, "legacy": True}
    return {"ok": True, "threadId": thread_id}


# --------------------------------------------------
# RESPOND TO / CANCEL A JOIN REQUEST
# --------------------------------------------------
@router.post("/requests/{request_id}/respond")
def respond_trip_request(
    request_id: str,
    payload: TripRequestRespond,
    current_user: dict = Depends(get_current_user),
    supabase=Depends(get_user_supabase),
    service=Depends(get_optional_service_supabase),
):
    action = payload.action
    if action not in ("accept", "decline"):
        raise HTTPException(400, "Invalid action.")

    me = current_user["sub"]
    request_row = _trip_request(supabase, request_id)
    status = "accepted" if action == "accept" else "declined"

    result = rpc_with_fallback(
        [
            Step(
                "respond_trip_request",
                lambda: supabase.rpc("respond_trip_request", {
                    "p_request_id": request_id,
                    "p_action": action,
                }).execute().data,
                advance=should_fallback_trip_rpc,
            ),
            Step("update", lambda: _set_request_status(supabase, request_id, status)),
        ],
        errors=TRIP_REQUEST_ERRORS,
    )

    trip_id = request_row.get("trip_id")
    requester_id = request_row.get("requester_id")
    if trip_id and requester_id and service is not None:
        _after_response(service, me, action, request_id, trip_id, requester_id)

    return {"ok": True, "status": status, "mode": result.name}


def _after_response(service, me: str, action: str, request_id: str, trip_id: str, requester_id: str):
    """Thread setup and the requester's notification never fail the response."""
    if action == "accept":
        try:
            ensure_trip_thread(service, trip_id, me, [me, requester_id])
        except BackendError as exc:
            logger.warning("Trip thread setup for %s skipped: %s", trip_id, exc.detail)

    accepted = action == "accept"
    try:
        create_notification(
            service,
            user_id=requester_id,
            actor_id=me,
            kind="trip_request_accepted" if accepted else "trip_request_declined",
            title="Trip request accepted" if accepted else "Trip request declined",
            link_url=f"/trips/{trip_id}",
            metadata={"trip_id": trip_id, "request_id": request_id},
        )
    except BackendError as exc:
        logger.warning("Trip request notification for %s skipped: %s", request_id, exc.detail)


@router.post("/requests/{request_id}/cancel")
def cancel_trip_request(
    request_id: str,
    current_user: dict = Depends(get_current_user),
    supabase=Depends(get_user_supabase),
):
    result = rpc_with_fallback(
        [
            Step(
                "cancel_trip_request",
                lambda: supabase.rpc("cancel_trip_request", {"p_request_id": request_id}).execute().data,
                advance=should_fallback_trip_rpc,
            ),
            Step("update", lambda: _set_request_status(supabase, request_id, "cancelled")),
        ],
        errors=TRIP_REQUEST_ERRORS,
    )
    return {"ok": True, "status": "cancelled", "mode": result.name}
