import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from postgrest.exceptions import APIError

from conxion.auth.supabase_auth import (
    get_current_user,
    get_optional_user,
    get_user_supabase,
    get_viewer_supabase,
)
from conxion.core.compat import call_rpc
from conxion.core.errors import (
    CREATE_EVENT_ERRORS,
    EVENT_JOIN_ERRORS,
    EVENT_REPORT_ERRORS,
    EVENT_REQUESTS_ERRORS,
    EVENT_RESPOND_ERRORS,
    FEEDBACK_ERRORS,
    GENERIC,
    UPDATE_EVENT_ERRORS,
    api_error_message,
)
from conxion.core.event_feed import FEED_LIMIT, load_event_feed
from conxion.core.event_filters import (
    DatePreset,
    EventFilters,
    ViewerContext,
    connected_attendees_by_event,
    filter_events,
)
from conxion.core.events import map_event_request_rows, sanitize_links, sanitize_styles
from conxion.schemas.base_schema import clean
from conxion.schemas.event_schema import (
    EVENT_JOIN_ACTIONS,
    EVENT_RESPOND_ACTIONS,
    EventFeedbackCreate,
    EventJoinRequest,
    EventReportRequest,
    EventRequestDecision,
    EventRespondRequest,
    EventWrite,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/events", tags=["Events"])

REQUIRED_FIELDS_ERROR = "title, city, country, startsAt, and endsAt are required."


# --------------------------------------------------
# LISTING
# --------------------------------------------------
def _date_preset(value: str) -> DatePreset:
    try:
        return DatePreset(value)
    except ValueError:
        return DatePreset.ANY


@router.get("")
def list_events(
    q: str = "",
    access: str = "all",
    event_type: str = Query("all", alias="type"),
    style: str = "all",
    date: str = "any",
    date_from: str = Query("", alias="from"),
    date_to: str = Query("", alias="to"),
    my_location: bool = Query(False, alias="myLocation"),
    connections_only: bool = Query(False, alias="connectionsOnly"),
    limit: int = Query(FEED_LIMIT, ge=1, le=FEED_LIMIT),
    viewer: Optional[dict] = Depends(get_optional_user),
    supabase=Depends(get_viewer_supabase),
):
    viewer_id = viewer["sub"] if viewer else None
    feed = load_event_feed(supabase, viewer_id, limit)

    connected = connected_attendees_by_event(feed.members, feed.connected_user_ids)
    filters = EventFilters(
        query=q,
        access=access if access in ("all", "public", "private") else "all",
        event_type=event_type or "all",
        style=style or "all",
        date_preset=_date_preset(date),
        date_from=date_from,
        date_to=date_to,
        my_location_only=my_location,
        connections_only=connections_only,
    )
    context = ViewerContext(
        is_authenticated=viewer_id is not None,
        city=feed.city,
        country=feed.country,
        connected_attendees=connected,
        profiles=feed.profiles,
    )
    events = filter_events(feed.events, filters, context)

    return {
        "ok": True,
        "events": events,
        "total": len(feed.events),
        "profiles": feed.profiles,
        "my_memberships": feed.my_memberships,
        "connected_attendee_counts": {event_id: len(rows) for event_id, rows in connected.items()},
    }


# --------------------------------------------------
# CREATE / UPDATE
# --------------------------------------------------
def _event_params(payload: EventWrite) -> dict:
    title = clean(payload.title)
    city = clean(payload.city)
    country = clean(payload.country)
    starts_at = payload.starts_at or ""
    ends_at = payload.ends_at or ""
    if not title or not city or not country or not starts_at or not ends_at:
        raise HTTPException(400, REQUIRED_FIELDS_ERROR)

    capacity = payload.capacity
    if capacity is not None and capacity.is_integer():
        capacity = int(capacity)

    return {
        "p_title": title,
        "p_description": payload.description or None,
        "p_event_type": payload.event_type or "Social",
        "p_visibility": payload.visibility or "public",
        "p_city": city,
        "p_country": country,
        "p_venue_name": payload.venue_name or None,
        "p_venue_address": payload.venue_address or None,
        "p_starts_at": starts_at,
        "p_ends_at": ends_at,
        "p_capacity": capacity,
        "p_cover_url": payload.cover_url or None,
        "p_links": sanitize_links(payload.links),
        "p_status": payload.status or "published",
        "p_styles": sanitize_styles(payload.styles),
    }


@router.post("")
def create_event(
    payload: EventWrite,
    current_user: dict = Depends(get_current_user),
    supabase=Depends(get_user_supabase),
):
    params = _event_params(payload)
    data = call_rpc(supabase, "create_event", params, errors=CREATE_EVENT_ERRORS)
    logger.info("User %s created event %s", current_user["sub"], data)
    return {"ok": True, "event_id": data or None}


@router.patch("/{event_id}")
def update_event(
    event_id: str,
    payload: EventWrite,
    current_user: dict = Depends(get_current_user),
    supabase=Depends(get_user_supabase),
):
    params = {"p_event_id": event_id, **_event_params(payload)}
    data = call_rpc(supabase, "update_event", params, errors=UPDATE_EVENT_ERRORS)
    return {"ok": True, "event_id": data or event_id}


# --------------------------------------------------
# REPORT
# --------------------------------------------------
@router.post("/{event_id}/report")
def report_event(
    event_id: str,
    payload: EventReportRequest,
    current_user: dict = Depends(get_current_user),
    supabase=Depends(get_user_supabase),
):
    reason = clean(payload.reason)
    if not reason:
        raise HTTPException(400, "Reason is required.")

    data = call_rpc(
        supabase,
        "create_event_report",
        {"p_event_id": event_id, "p_reason": reason, "p_note": payload.note},
        errors=EVENT_REPORT_ERRORS,
    )
    return {"ok": True, "report_id": data or None}


# --------------------------------------------------
# JOIN / REQUEST / LEAVE
# --------------------------------------------------
@router.post("/{event_id}/join")
def join_event(
    event_id: str,
    payload: EventJoinRequest,
    current_user: dict = Depends(get_current_user),
    supabase=Depends(get_user_supabase),
):
    action = payload.action if payload.action in EVENT_JOIN_ACTIONS else "join"

    if action == "join":
        data = call_rpc(supabase, "join_event_guarded", {"p_event_id": event_id}, errors=EVENT_JOIN_ERRORS)
        return {"ok": True, "status": data or None}

    if action == "request":
        data = call_rpc(
            supabase,
            "request_private_event_access",
            {"p_event_id": event_id, "p_note": payload.note},
            errors=EVENT_JOIN_ERRORS,
        )
        return {"ok": True, "request_id": data or None}

    if action == "cancel_request":
        call_rpc(supabase, "cancel_event_request", {"p_event_id": event_id}, errors=EVENT_JOIN_ERRORS)
        return {"ok": True}

    call_rpc(supabase, "leave_event", {"p_event_id": event_id}, errors=EVENT_JOIN_ERRORS)
    return {"ok": True}


# --------------------------------------------------
# HOST DECISIONS ON ACCESS REQUESTS
# --------------------------------------------------
@router.get("/{event_id}/requests")
def list_event_requests(
    event_id: str,
    status: str = "pending",
    current_user: dict = Depends(get_current_user),
    supabase=Depends(get_user_supabase),
):
    try:
        query = supabase.table("event_requests").select("*").eq("event_id", event_id)
        if status != "all":
            query = query.eq("status", status)
        res = query.order("created_at", desc=True).limit(500).execute()
    except APIError as exc:
        raise GENERIC.from_api_error(exc)
    return {"ok": True, "requests": map_event_request_rows(res.data or [])}


@router.post("/{event_id}/respond")
def respond_event_request(
    event_id: str,
    payload: EventRespondRequest,
    current_user: dict = Depends(get_current_user),
    supabase=Depends(get_user_supabase),
):
    action = payload.action
    request_id = clean(payload.request_id)
    requester_id = clean(payload.requester_id)
    if action not in EVENT_RESPOND_ACTIONS:
        raise HTTPException(400, "Invalid action.")
    if not request_id and not requester_id:
        raise HTTPException(400, "requestId or requesterId is required.")

    if request_id:
        data = call_rpc(
            supabase,
            "respond_event_request",
            {"p_request_id": request_id, "p_action": action},
            errors=EVENT_RESPOND_ERRORS,
        )
    else:
        data = call_rpc(
            supabase,
            "respond_event_request_by_id",
            {"p_event_id": event_id, "p_requester_id": requester_id, "p_action": action},
            errors=EVENT_RESPOND_ERRORS,
        )
    return {"ok": True, "event_id": data or event_id}


@router.post("/requests")
def decide_event_request(
    payload: EventRequestDecision,
    current_user: dict = Depends(get_current_user),
    supabase=Depends(get_user_supabase),
):
    request_id = clean(payload.request_id)
    if not request_id or payload.action not in EVENT_RESPOND_ACTIONS:
        raise HTTPException(400, "requestId and valid action are required.")

    data = call_rpc(
        supabase,
        "respond_event_request",
        {"p_request_id": request_id, "p_action": payload.action},
        errors=EVENT_REQUESTS_ERRORS,
    )
    return {"ok": True, "event_id": data or None}


# --------------------------------------------------
# FEEDBACK
# --------------------------------------------------
def _my_feedback(supabase, event_id: str, user_id: str):
    try:
        res = (
            supabase.table("event_feedback")
            .select("id,event_id,author_id,happened_as_described,quality,note,visibility,created_at,updated_at")
            .eq("event_id", event_id)
            .eq("author_id", user_id)
            .limit(1)
            .execute()
        )
    except APIError as exc:
        logger.info("Feedback for %s unreadable: %s", event_id, api_error_message(exc))
        return None
    rows = res.data or []
    return rows[0] if rows else None


def _optional_rpc(supabase, name: str, params: dict):
    try:
        return supabase.rpc(name, params).execute().data
    except APIError as exc:
        logger.info("%s failed: %s", name, api_error_message(exc))
        return None


@router.get("/{event_id}/feedback")
def get_event_feedback(
    event_id: str,
    current_user: dict = Depends(get_current_user),
    supabase=Depends(get_user_supabase),
):
    me = current_user["sub"]
    can_submit = _optional_rpc(supabase, "can_submit_event_feedback", {"p_event_id": event_id, "p_user_id": me})
    summary = _optional_rpc(supabase, "get_event_feedback_summary", {"p_event_id": event_id})

    return {
        "ok": True,
        "mine": _my_feedback(supabase, event_id, me),
        "can_submit": bool(can_submit),
        "summary": summary[0] if isinstance(summary, list) and summary else None,
    }


@router.post("/{event_id}/feedback")
def submit_event_feedback(
    event_id: str,
    payload: EventFeedbackCreate,
    current_user: dict = Depends(get_current_user),
    supabase=Depends(get_user_supabase),
):
    data = call_rpc(
        supabase,
        "submit_event_feedback",
        {
            "p_event_id": event_id,
            "p_happened_as_described": payload.happened_as_described is True,
            "p_quality": payload.quality or 0,
            "p_note": payload.note,
            "p_visibility": payload.visibility or "private",
        },
        errors=FEEDBACK_ERRORS,
    )
    return {"ok": True, "feedback_id": data or None}
