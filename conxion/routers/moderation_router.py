from fastapi import APIRouter, Depends, HTTPException

from conxion.auth.supabase_auth import get_current_user, get_user_supabase
from conxion.core.compat import call_rpc
from conxion.core.errors import MODERATE_EVENT_ERRORS, MODERATE_REPORT_ERRORS
from conxion.schemas.base_schema import clean
from conxion.schemas.moderation_schema import (
    EVENT_MODERATION_ACTIONS,
    REPORT_ACTIONS,
    EventModeration,
    ReportModeration,
)

router = APIRouter(prefix="/api/moderation", tags=["Moderation"])


# Whether the caller may moderate is decided by the procedures themselves.
@router.post("/reports")
def moderate_report(
    payload: ReportModeration,
    current_user: dict = Depends(get_current_user),
    supabase=Depends(get_user_supabase),
):
    report_id = clean(payload.report_id)
    if not report_id or payload.action not in REPORT_ACTIONS:
        raise HTTPException(400, "reportId and valid action are required.")

    data = call_rpc(
        supabase,
        "moderate_report",
        {"p_report_id": report_id, "p_action": payload.action, "p_note": payload.note},
        errors=MODERATE_REPORT_ERRORS,
    )
    return {"ok": True, "moderation_log_id": data or None}


@router.post("/events")
def moderate_event(
    payload: EventModeration,
    current_user: dict = Depends(get_current_user),
    supabase=Depends(get_user_supabase),
):
    event_id = clean(payload.event_id)
    if not event_id or payload.action not in EVENT_MODERATION_ACTIONS:
        raise HTTPException(400, "eventId and valid action are required.")

    data = call_rpc(
        supabase,
        "moderate_event",
        {
            "p_event_id": event_id,
            "p_action": payload.action,
            "p_note": payload.note,
            "p_hidden_reason": payload.hidden_reason,
        },
        errors=MODERATE_EVENT_ERRORS,
    )
    return {"ok": True, "moderation_log_id": data or None}
