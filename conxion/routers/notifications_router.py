from fastapi import APIRouter, Depends, HTTPException

from conxion.auth.supabase_auth import get_current_user
from conxion.core.notifications import NOTIFICATION_KINDS, create_notification
from conxion.schemas.base_schema import clean
from conxion.schemas.notification_schema import NotificationCreate
from conxion.supabase_client import get_service_supabase

router = APIRouter(prefix="/api/notifications", tags=["Notifications"])


@router.post("")
def create(
    payload: NotificationCreate,
    current_user: dict = Depends(get_current_user),
    service=Depends(get_service_supabase),
):
    user_id = clean(payload.user_id)
    kind = clean(payload.kind)
    title = clean(payload.title)
    if not user_id or not kind or not title:
        raise HTTPException(400, "userId, kind, and title are required.")
    if kind not in NOTIFICATION_KINDS:
        raise HTTPException(400, "Unsupported notification kind.")

    result = create_notification(
        service,
        user_id=user_id,
        actor_id=current_user["sub"],
        kind=kind,
        title=title,
        body=clean(payload.body),
        link_url=clean(payload.link_url),
        metadata=payload.metadata,
    )
    if result["duplicated"]:
        return {"ok": True, "duplicated": True}
    return {"ok": True, "notification_id": result["notification_id"]}
