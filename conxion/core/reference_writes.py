"""
Writing references across schema generations.

New schemas expose ``create_reference_v2``, ``update_reference_author`` and
``reply_reference_receiver``; older ones only ``create_reference`` or nothing
at all, in which case the row is written directly and the edit/reply rules
are enforced here instead of in the database.
"""
import logging
from datetime import datetime
from typing import Mapping, Optional

from postgrest.exceptions import APIError

from conxion.core.compat import Step, insert_with_column_swaps, rpc_with_fallback
from conxion.core.errors import (
    PASSTHROUGH,
    BackendError,
    ErrorKind,
    api_error_message,
    is_schema_drift,
    should_use_reference_compat,
)
from conxion.core.references import (
    AUTHOR_COLUMNS,
    BODY_COLUMNS,
    RECIPIENT_COLUMNS,
    REFERENCE_WINDOW_DAYS,
    REPLY_COLUMNS,
    fetch_references_for_actor,
    utc_now,
    within_reference_window,
)
from conxion.schemas.base_schema import is_uuid

logger = logging.getLogger(__name__)

ENTITY_TYPES = ("sync", "trip", "event", "connection")


def sentiment_to_rating(sentiment: str) -> int:
    if sentiment == "positive":
        return 5
    if sentiment == "neutral":
        return 3
    return 1


REFERENCE_SWAPS = {
    "body": "content",
    "content": "feedback",
    "feedback": "comment",
    "comment": "reference_text",
    "reference_text": None,
    "author_id": "from_user_id",
    "from_user_id": "source_id",
    "recipient_id": "to_user_id",
    "to_user_id": "target_id",
    "connection_id": "connection_request_id",
    "connection_request_id": None,
    "rating": None,
    "context": None,
    "entity_type": None,
    "entity_id": None,
    "sentiment": ("rating", sentiment_to_rating),
    "sync_id": None,
}


def normalize_entity_type(value) -> str:
    key = value.strip().lower() if isinstance(value, str) else ""
    return key if key in ENTITY_TYPES else "connection"


def _first(rows) -> dict:
    for row in rows or []:
        if isinstance(row, dict):
            return row
    return {}


def _first_text(row: Mapping, keys) -> str:
    for key in keys:
        value = row.get(key)
        if isinstance(value, str) and value.strip():
            return value
    return ""


# --------------------------------------------------
# CONNECTION RESOLUTION
# --------------------------------------------------
def resolve_reference_connection(client, me: str, recipient_id: str, connection_id: str = "",
                                 entity_type: str = "connection", entity_id: str = "") -> str:
    """
    The connection a reference hangs off: the one given, the sync's connection,
    or the newest accepted, unblocked connection between the two members.
    """
    if connection_id:
        return connection_id

    if entity_type == "sync" and entity_id:
        try:
            res = client.table("connection_syncs").select("connection_id").eq("id", entity_id).limit(1).execute()
            found = _first(res.data).get("connection_id")
            if isinstance(found, str) and found:
                return found
        except APIError as exc:
            logger.info("Sync %s connection lookup failed: %s", entity_id, api_error_message(exc))

    if not is_uuid(recipient_id):
        logger.info("Reference recipient %r is not a member id", recipient_id)
        return ""
    pair = (
        f"and(requester_id.eq.{me},target_id.eq.{recipient_id}),"
        f"and(requester_id.eq.{recipient_id},target_id.eq.{me})"
    )
    try:
        res = (
            client.table("connections")
            .select("id")
            .eq("status", "accepted")
            .is_("blocked_by", "null")
            .or_(pair)
            .order("created_at", desc=True)
            .limit(1)
            .execute()
        )
    except APIError as exc:
        logger.info("Accepted connection lookup failed: %s", api_error_message(exc))
        return ""
    found = _first(res.data).get("id")
    return found if isinstance(found, str) else ""


# --------------------------------------------------
# SYNC ELIGIBILITY
# --------------------------------------------------
def _sync_row(client, sync_id: str) -> Optional[dict]:
    try:
        res = (
            client.table("connection_syncs")
            .select("id,connection_id,requester_id,recipient_id,status,completed_at")
            .eq("id", sync_id)
            .limit(1)
            .execute()
        )
    except APIError as exc:
        message = api_error_message(exc)
        if not is_schema_drift(message):
            raise PASSTHROUGH.from_api_error(exc)
        return None
    return _first(res.data) or None


def _legacy_sync_completed_at(client, sync_id: str, connection_id: str) -> Optional[str]:
    try:
        res = (
            client.table("syncs")
            .select("id,connection_id,completed_at")
            .eq("id", sync_id)
            .eq("connection_id", connection_id)
            .limit(1)
            .execute()
        )
    except APIError as exc:
        logger.info("Legacy sync %s unreadable: %s", sync_id, api_error_message(exc))
        return None
    return _first(res.data).get("completed_at")


def check_sync_reference(client, *, me: str, recipient_id: str, connection_id: str, sync_id: str,
                         now: Optional[datetime] = None, window_days: int = REFERENCE_WINDOW_DAYS) -> None:
    """Raise unless ``me`` may still leave a reference for this completed sync."""
    not_allowed = BackendError(ErrorKind.INVALID, "sync_reference_not_allowed")
    if not sync_id:
        raise not_allowed

    now = now or utc_now()
    sync = _sync_row(client, sync_id)
    if sync is not None:
        members = (sync.get("requester_id"), sync.get("recipient_id"))
        members_ok = not all(members) or set(members) == {me, recipient_id}
        completed_at = sync.get("completed_at")
        if not within_reference_window(completed_at, now, window_days):
            completed_at = _legacy_sync_completed_at(client, sync_id, connection_id)
        if (
            sync.get("connection_id") != connection_id
            or (sync.get("status") or "completed") != "completed"
            or not within_reference_window(completed_at, now, window_days)
            or not members_ok
        ):
            raise not_allowed
    elif not within_reference_window(_legacy_sync_completed_at(client, sync_id, connection_id), now, window_days):
        raise not_allowed

    for reference in fetch_references_for_actor(client, me, AUTHOR_COLUMNS):
        if reference["entity_type"] == "sync" and reference["entity_id"] == sync_id:
            raise BackendError(ErrorKind.DUPLICATE, "duplicate_reference_not_allowed")


# --------------------------------------------------
# CREATE
# --------------------------------------------------
def compat_payload(*, me: str, recipient_id: str, connection_id: str, sentiment: str, body: str,
                   entity_type: str, entity_id: str, sync_id: str = "") -> dict:
    payload = {
        "author_id": me,
        "recipient_id": recipient_id,
        "connection_id": connection_id,
        "sentiment": sentiment,
        "body": body,
        "context": entity_type,
        "entity_type": entity_type,
        "entity_id": entity_id or None,
    }
    if sync_id:
        payload["sync_id"] = sync_id
    return payload


def _fill(column: str, payload: Mapping, sentiment: str):
    key = column.lower()
    if key in AUTHOR_COLUMNS:
        return payload.get("author_id") or payload.get("from_user_id") or payload.get("source_id")
    if key in RECIPIENT_COLUMNS:
        return payload.get("recipient_id") or payload.get("to_user_id") or payload.get("target_id")
    if key in ("connection_id", "connection_request_id"):
        return payload.get("connection_id") or payload.get("connection_request_id")
    if key in BODY_COLUMNS:
        return next((payload[c] for c in BODY_COLUMNS if payload.get(c)), None)
    if key == "sentiment":
        return sentiment
    if key == "rating":
        return sentiment_to_rating(sentiment)
    if key in ("context", "entity_type"):
        return payload.get("entity_type") or payload.get("context") or "connection"
    return None


def insert_reference_compat(client, payload: dict) -> Optional[str]:
    sentiment = payload.get("sentiment", "")
    outcome = insert_with_column_swaps(
        client,
        "references",
        [payload],
        swaps=REFERENCE_SWAPS,
        fill=lambda column: _fill(column, payload, sentiment),
        duplicate_ok=False,
        errors=PASSTHROUGH,
    )
    return outcome.first_id


def create_reference(client, *, me: str, recipient_id: str, connection_id: str, sentiment: str,
                     body: str, entity_type: str, entity_id: str, context: str = "") -> tuple:
    """Returns ``(reference_id, mode)``."""
    def v2():
        return client.rpc("create_reference_v2", {
            "p_connection_id": connection_id,
            "p_entity_type": entity_type,
            "p_entity_id": entity_id,
            "p_recipient_id": recipient_id,
            "p_sentiment": sentiment,
            "p_body": body,
        }).execute().data

    def legacy():
        return client.rpc("create_reference", {
            "p_connection_id": connection_id,
            "p_recipient_id": recipient_id,
            "p_sentiment": sentiment,
            "p_body": body,
            "p_context": context or entity_type,
        }).execute().data

    payload = compat_payload(
        me=me,
        recipient_id=recipient_id,
        connection_id=connection_id,
        sentiment=sentiment,
        body=body,
        entity_type=entity_type,
        entity_id=entity_id,
        sync_id=entity_id if entity_type == "sync" else "",
    )

    if entity_type == "sync":
        steps = [
            Step("v2_sync", v2, advance=should_use_reference_compat),
            Step("compat_sync_insert", lambda: insert_reference_compat(client, payload)),
        ]
    else:
        steps = [
            Step("v2", v2, advance=should_use_reference_compat),
            Step("legacy", legacy, advance=should_use_reference_compat),
            Step("compat_insert", lambda: insert_reference_compat(client, payload)),
        ]

    result = rpc_with_fallback(steps, errors=PASSTHROUGH)
    reference_id = result.data if isinstance(result.data, str) else None
    return reference_id, result.name


# --------------------------------------------------
# EDIT / REPLY (direct writes when the procedures are missing)
# --------------------------------------------------
def _read_reference(client, reference_id: str) -> dict:
    try:
        res = client.table("references").select("*").eq("id", reference_id).limit(1).execute()
    except APIError as exc:
        raise PASSTHROUGH.from_api_error(exc)
    row = _first(res.data)
    if not row:
        raise BackendError(ErrorKind.INVALID, "reference_not_found")
    return row


def _update_as(client, reference_id: str, payload: dict, actor_columns, me: str, denied: str) -> str:
    last_error = denied
    for column in actor_columns:
        try:
            res = client.table("references").update(payload).eq("id", reference_id).eq(column, me).execute()
        except APIError as exc:
            last_error = api_error_message(exc)
            if is_schema_drift(last_error) or should_use_reference_compat(last_error):
                continue
            break
        row = _first(res.data)
        if row:
            return row.get("id") or reference_id
        last_error = denied
    raise BackendError(ErrorKind.INVALID, last_error)


def _number(value) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str) and value.strip():
        try:
            return int(float(value))
        except ValueError:
            return 0
    return 0


def edit_reference_compat(client, *, me: str, reference_id: str, sentiment: str, body: str,
                          now: Optional[datetime] = None, window_days: int = REFERENCE_WINDOW_DAYS) -> str:
    denied = "reference_update_not_allowed"
    now = now or utc_now()
    row = _read_reference(client, reference_id)

    if _first_text(row, AUTHOR_COLUMNS) != me:
        raise BackendError(ErrorKind.NOT_AUTHORIZED, denied)
    if not within_reference_window(_first_text(row, ("created_at", "createdAt")), now, window_days):
        raise BackendError(ErrorKind.INVALID, denied)
    edit_count = _number(row.get("edit_count", row.get("editCount")))
    if edit_count >= 1 or _first_text(row, ("last_edited_at", "lastEditedAt")):
        raise BackendError(ErrorKind.INVALID, denied)

    now_iso = now.isoformat()
    text = body.strip()
    payload = {column: text for column in BODY_COLUMNS if column in row}
    if not payload:
        payload["body"] = text
    if "sentiment" in row:
        payload["sentiment"] = sentiment
    if "rating" in row:
        payload["rating"] = sentiment_to_rating(sentiment)
    if "edit_count" in row:
        payload["edit_count"] = edit_count + 1
    for column in ("last_edited_at", "updated_at"):
        if column in row:
            payload[column] = now_iso

    columns = [column for column in AUTHOR_COLUMNS if column in row] or list(AUTHOR_COLUMNS)
    return _update_as(client, reference_id, payload, columns, me, denied)


def reply_reference_compat(client, *, me: str, reference_id: str, reply_text: str,
                           now: Optional[datetime] = None, window_days: int = REFERENCE_WINDOW_DAYS) -> str:
    denied = "reference_reply_not_allowed"
    now = now or utc_now()
    row = _read_reference(client, reference_id)

    if _first_text(row, RECIPIENT_COLUMNS) != me:
        raise BackendError(ErrorKind.NOT_AUTHORIZED, denied)
    if not within_reference_window(_first_text(row, ("created_at", "createdAt")), now, window_days):
        raise BackendError(ErrorKind.INVALID, denied)
    if _first_text(row, REPLY_COLUMNS):
        raise BackendError(ErrorKind.INVALID, denied)

    now_iso = now.isoformat()
    text = reply_text.strip()
    payload = {column: text for column in REPLY_COLUMNS if column in row}
    if not payload:
        payload["reply_text"] = text
    for column in ("replied_by", "responder_id"):
        if column in row:
            payload[column] = me
    for column in ("replied_at", "reply_at", "updated_at"):
        if column in row:
            payload[column] = now_iso

    columns = [column for column in RECIPIENT_COLUMNS if column in row] or list(RECIPIENT_COLUMNS)
    return _update_as(client, reference_id, payload, columns, me, denied)


def edit_reference(client, *, me: str, reference_id: str, sentiment: str, body: str,
                   now: Optional[datetime] = None, window_days: int = REFERENCE_WINDOW_DAYS) -> tuple:
    result = rpc_with_fallback(
        [
            Step(
                "rpc_edit",
                lambda: client.rpc("update_reference_author", {
                    "p_reference_id": reference_id,
                    "p_sentiment": sentiment,
                    "p_body": body,
                }).execute().data,
                advance=should_use_reference_compat,
            ),
            Step(
                "compat_edit",
                lambda: edit_reference_compat(
                    client, me=me, reference_id=reference_id, sentiment=sentiment,
                    body=body, now=now, window_days=window_days,
                ),
            ),
        ],
        errors=PASSTHROUGH,
    )
    return result.data or reference_id, result.name


def reply_reference(client, *, me: str, reference_id: str, reply_text: str,
                    now: Optional[datetime] = None, window_days: int = REFERENCE_WINDOW_DAYS) -> tuple:
    result = rpc_with_fallback(
        [
            Step(
                "rpc_reply",
                lambda: client.rpc("reply_reference_receiver", {
                    "p_reference_id": reference_id,
                    "p_reply_text": reply_text,
                }).execute().data,
                advance=should_use_reference_compat,
            ),
            Step(
                "compat_reply",
                lambda: reply_reference_compat(
                    client, me=me, reference_id=reference_id, reply_text=reply_text,
                    now=now, window_days=window_days,
                ),
            ),
        ],
        errors=PASSTHROUGH,
    )
    return result.data or reference_id, result.name
