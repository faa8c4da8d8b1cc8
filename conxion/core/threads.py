"""
Trip chat threads.

A trip gets one thread; its owner and every accepted requester take part.
Older schemas have no thread tables at all, in which case the trip simply has
no thread.
"""
import logging
from datetime import datetime, timezone
from typing import Iterable, Optional

from postgrest.exceptions import APIError

from conxion.core.errors import (
    PASSTHROUGH,
    api_error_message,
    is_duplicate,
    is_schema_drift,
)

logger = logging.getLogger(__name__)


def _is_missing_schema(message: str) -> bool:
    text = (message or "").lower()
    # Participant tables that require a role reject the role-less payloads.
    return is_schema_drift(text) or ("null value in column" in text and "role" in text)


def participant_payloads(thread_id: str, user_id: str, include_last_read_at: bool) -> list[dict]:
    now_iso = datetime.now(timezone.utc).isoformat()
    payloads = []
    if include_last_read_at:
        payloads.append({"thread_id": thread_id, "user_id": user_id, "role": "member", "last_read_at": now_iso})
    payloads.append({"thread_id": thread_id, "user_id": user_id, "role": "member"})
    if include_last_read_at:
        payloads.append({"thread_id": thread_id, "user_id": user_id, "last_read_at": now_iso})
    payloads.append({"thread_id": thread_id, "user_id": user_id})
    return payloads


def ensure_thread_participant(client, thread_id: str, user_id: str, include_last_read_at: bool = True) -> bool:
    """Add ``user_id`` to the thread with the richest row shape the table accepts."""
    last_error = None
    for payload in participant_payloads(thread_id, user_id, include_last_read_at):
        try:
            client.table("thread_participants").insert(payload).execute()
            return True
        except APIError as exc:
            message = api_error_message(exc)
            if is_duplicate(message, getattr(exc, "code", None)):
                return True
            if not _is_missing_schema(message):
                raise PASSTHROUGH.from_api_error(exc)
            last_error = exc
    if last_error is not None:
        raise PASSTHROUGH.from_api_error(last_error, "Unable to insert thread participant.")
    return False


def _find_trip_thread(client, trip_id: str) -> Optional[str]:
    res = client.table("threads").select("id").eq("trip_id", trip_id).limit(1).execute()
    for row in res.data or []:
        if row.get("id"):
            return row["id"]
    return None


def resolve_trip_thread_id(client, trip_id: str, actor_id: str) -> Optional[str]:
    """Existing thread id for the trip, creating it when missing. ``None`` on legacy schemas."""
    try:
        thread_id = _find_trip_thread(client, trip_id)
    except APIError as exc:
        if _is_missing_schema(api_error_message(exc)):
            return None
        raise PASSTHROUGH.from_api_error(exc)
    if thread_id:
        return thread_id

    try:
        res = client.table("threads").insert({
            "thread_type": "trip",
            "trip_id": trip_id,
            "created_by": actor_id,
            "last_message_at": datetime.now(timezone.utc).isoformat(),
        }).execute()
    except APIError as exc:
        message = api_error_message(exc)
        if _is_missing_schema(message):
            return None
        if not is_duplicate(message, getattr(exc, "code", None)):
            raise PASSTHROUGH.from_api_error(exc)
        # Lost a creation race; the other writer's thread is the one.
        try:
            return _find_trip_thread(client, trip_id)
        except APIError as retry_exc:
            if _is_missing_schema(api_error_message(retry_exc)):
                return None
            raise PASSTHROUGH.from_api_error(retry_exc)

    for row in res.data or []:
        if row.get("id"):
            return row["id"]
    return None


def ensure_trip_thread(client, trip_id: str, actor_id: str, participant_ids: Iterable[str]) -> Optional[str]:
    thread_id = resolve_trip_thread_id(client, trip_id, actor_id)
    if not thread_id:
        logger.info("Trip %s has no thread table, skipping thread setup", trip_id)
        return None

    for user_id in dict.fromkeys(uid for uid in participant_ids if uid):
        ensure_thread_participant(client, thread_id, user_id, include_last_read_at=user_id == actor_id)
    return thread_id
