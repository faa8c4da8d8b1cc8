import logging

from fastapi import APIRouter, Depends, HTTPException

from conxion.auth.supabase_auth import get_current_user, get_user_supabase
from conxion.config import settings
from conxion.core.load_guard import reference_candidates_guard
from conxion.core.notifications import ensure_reference_received_notification
from conxion.core.reference_writes import (
    check_sync_reference,
    create_reference,
    edit_reference,
    normalize_entity_type,
    reply_reference,
    resolve_reference_connection,
)
from conxion.core.references import (
    RECIPIENT_COLUMNS,
    can_edit_reference,
    can_reply_reference,
    derive_reference_candidates,
    fetch_references_for_actor,
    load_reference_inputs,
    utc_now,
)
from conxion.schemas.base_schema import clean, is_uuid
from conxion.schemas.reference_schema import ReferenceCreate, ReferenceUpdate
from conxion.supabase_client import get_optional_service_supabase

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/references", tags=["References"])


# --------------------------------------------------
# LIST (given, received, still-open candidates)
# --------------------------------------------------
@router.get("")
def list_references(
    current_user: dict = Depends(get_current_user),
    supabase=Depends(get_user_supabase),
):
    me = current_user["sub"]
    now = utc_now()
    window = settings.REFERENCE_WINDOW_DAYS

    ticket = reference_candidates_guard.begin(me)
    try:
        inputs = load_reference_inputs(supabase, me, now, window)
        candidates = derive_reference_candidates(me, inputs, now, window)
    except Exception:
        reference_candidates_guard.abandon(ticket)
        raise
    logger.info("Derived %d reference candidates for %s", len(candidates), me)
    # A newer load may have finished first; then its result is served.
    result = reference_candidates_guard.commit(ticket, candidates)

    given = inputs.given
    received = fetch_references_for_actor(supabase, me, RECIPIENT_COLUMNS)
    for reference in given:
        reference["can_edit"] = can_edit_reference(reference, me, now, window)
    for reference in received:
        reference["can_reply"] = can_reply_reference(reference, me, now, window)

    return {
        "ok": True,
        "given": given,
        "received": received,
        "candidates": result.value or [],
        "load_token": ticket.token,
        "stale": result.stale,
    }


# --------------------------------------------------
# CREATE
# --------------------------------------------------
@router.post("")
def create(
    payload: ReferenceCreate,
    current_user: dict = Depends(get_current_user),
    supabase=Depends(get_user_supabase),
    service=Depends(get_optional_service_supabase),
):
    me = current_user["sub"]
    recipient_id = clean(payload.recipient_id)
    sentiment = payload.sentiment or ""
    body = payload.body or ""
    if not recipient_id or not sentiment or not body.strip():
        raise HTTPException(400, "recipientId, sentiment, and body are required.")
    if not is_uuid(recipient_id):
        raise HTTPException(400, "recipientId must be a member id.")

    entity_type = normalize_entity_type(payload.entity_type or payload.context or "connection")
    entity_id = clean(payload.entity_id) or clean(payload.connection_id)

    connection_id = resolve_reference_connection(
        supabase, me, recipient_id, clean(payload.connection_id), entity_type, entity_id,
    )
    if not connection_id:
        raise HTTPException(400, "No eligible accepted connection found for this reference.")

    if entity_type == "sync":
        check_sync_reference(
            supabase,
            me=me,
            recipient_id=recipient_id,
            connection_id=connection_id,
            sync_id=entity_id,
            window_days=settings.REFERENCE_WINDOW_DAYS,
        )

    reference_id, mode = create_reference(
        supabase,
        me=me,
        recipient_id=recipient_id,
        connection_id=connection_id,
        sentiment=sentiment,
        body=body,
        entity_type=entity_type,
        entity_id=entity_id,
        context=payload.context or "",
    )
    logger.info("Reference %s created by %s via %s", reference_id, me, mode)

    ensure_reference_received_notification(
        service,
        actor_id=me,
        recipient_id=recipient_id,
        reference_id=reference_id or "",
        entity_type=entity_type,
        entity_id=entity_id,
    )
    return {"ok": True, "reference_id": reference_id, "mode": mode}


# --------------------------------------------------
# EDIT / REPLY
# --------------------------------------------------
@router.patch("")
def update(
    payload: ReferenceUpdate,
    current_user: dict = Depends(get_current_user),
    supabase=Depends(get_user_supabase),
):
    me = current_user["sub"]
    mode = payload.mode or ""
    reference_id = clean(payload.reference_id)
    if not mode or not reference_id:
        raise HTTPException(400, "mode and referenceId are required.")

    if mode == "edit":
        sentiment = payload.sentiment or ""
        body = payload.body or ""
        if not sentiment or not body.strip():
            raise HTTPException(400, "sentiment and body are required for edit.")
        result_id, result_mode = edit_reference(
            supabase,
            me=me,
            reference_id=reference_id,
            sentiment=sentiment,
            body=body,
            window_days=settings.REFERENCE_WINDOW_DAYS,
        )
        return {"ok": True, "reference_id": result_id, "mode": result_mode}

    if mode == "reply":
        reply_text = payload.reply_text or ""
        if not reply_text.strip():
            raise HTTPException(400, "replyText is required for reply.")
        result_id, result_mode = reply_reference(
            supabase,
            me=me,
            reference_id=reference_id,
            reply_text=reply_text,
            window_days=settings.REFERENCE_WINDOW_DAYS,
        )
        return {"ok": True, "reference_id": result_id, "mode": result_mode}

    raise HTTPException(400, "Unsupported mode.")
