import logging
from typing import Any, Mapping

from postgrest.exceptions import APIError

from conxion.core.compat import Step, insert_with_column_swaps, rpc_with_fallback
from conxion.core.errors import (
    BackendError,
    ErrorKind,
    PASSTHROUGH,
    api_error_message,
    is_schema_drift,
    is_unavailable,
)

logger = logging.getLogger(__name__)

NOTIFICATION_KINDS = {
    "trip_request_received",
    "trip_request_accepted",
    "trip_request_declined",
    "reference_received",
}

SCHEMA_HINT = "Notifications schema missing or outdated."

RECENT_LIMIT = 30

NOTIFICATION_SWAPS = {
    "actor_id": None,
    "link_url": None,
    "body": "message",
    "title": "message",
    "kind": "type",
    "metadata": "data",
    "user_id": "recipient_id",
    "recipient_id": "user_id",
}


def normalize_metadata(value: Any) -> dict:
    return dict(value) if isinstance(value, Mapping) else {}


def has_same_fingerprint(existing: list, metadata: Mapping) -> bool:
    """
    A notification about the same trip request or reference is already
    there. Without either id nothing is deduplicated.
    """
    request_id = metadata.get("request_id") if isinstance(metadata.get("request_id"), str) else ""
    reference_id = metadata.get("reference_id") if isinstance(metadata.get("reference_id"), str) else ""
    if not request_id and not reference_id:
        return False

    for row in existing:
        previous = row.get("metadata") or {}
        if request_id and previous.get("request_id") == request_id:
            return True
        if reference_id and previous.get("reference_id") == reference_id:
            return True
    return False


def payload_candidates(user_id, actor_id, kind, title, body, link_url, metadata) -> list[dict]:
    """Richest shape first, the bare legacy ``message``/``data`` shape last."""
    return [
        {
            "user_id": user_id,
            "actor_id": actor_id,
            "kind": kind,
            "title": title,
            "body": body or None,
            "link_url": link_url or None,
            "metadata": metadata,
        },
        {"user_id": user_id, "kind": kind, "title": title, "body": body or None, "metadata": metadata},
        {"user_id": user_id, "kind": kind, "title": title, "metadata": metadata},
        {"user_id": user_id, "kind": kind, "message": title, "data": metadata},
    ]


def _fill_value(column: str, params: dict):
    key = column.strip().lower()
    if key in ("user_id", "recipient_id", "to_user_id", "target_id"):
        return params["user_id"]
    if key in ("actor_id", "sender_id", "from_user_id", "source_id"):
        return params["actor_id"]
    if key in ("kind", "type", "event_type"):
        return params["kind"]
    if key in ("title", "message"):
        return params["title"]
    if key in ("body", "content", "text"):
        return params["body"]
    if key in ("link_url", "url"):
        return params["link_url"]
    if key in ("metadata", "data", "payload"):
        return params["metadata"]
    if key in ("is_read", "read"):
        return False
    return None


def recent_notifications(client, user_id: str, kind: str, limit: int = RECENT_LIMIT) -> list:
    try:
        res = (
            client.table("notifications")
            .select("id,metadata")
            .eq("user_id", user_id)
            .eq("kind", kind)
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        )
    except APIError as exc:
        message = api_error_message(exc)
        if is_schema_drift(message):
            raise BackendError(ErrorKind.SCHEMA_DRIFT, SCHEMA_HINT)
        raise PASSTHROUGH.from_api_error(exc)
    return list(res.data or [])


def create_notification(
    client,
    *,
    user_id: str,
    actor_id: str,
    kind: str,
    title: str,
    body: str = "",
    link_url: str = "",
    metadata: Mapping | None = None,
) -> dict:
    """
    Deduplicate against recent notifications, then write through the
    ``create_notification`` procedure or, where it is missing, a direct
    insert that adapts to the table's columns.
    """
    metadata = normalize_metadata(metadata)
    recent = recent_notifications(client, user_id, kind)
    if has_same_fingerprint(recent, metadata):
        return {"duplicated": True, "notification_id": None}

    params = {
        "user_id": user_id,
        "actor_id": actor_id,
        "kind": kind,
        "title": title,
        "body": body,
        "link_url": link_url,
        "metadata": metadata,
    }

    def via_rpc():
        res = client.rpc("create_notification", {
            "p_user_id": user_id,
            "p_kind": kind,
            "p_title": title,
            "p_body": body or None,
            "p_link_url": link_url or None,
            "p_metadata": metadata,
        }).execute()
        return res.data if isinstance(res.data, str) else None

    def via_insert():
        try:
            outcome = insert_with_column_swaps(
                client,
                "notifications",
                payload_candidates(**params),
                swaps=NOTIFICATION_SWAPS,
                fill=lambda column: _fill_value(column, params),
                errors=PASSTHROUGH,
            )
        except BackendError as exc:
            if exc.kind == ErrorKind.SCHEMA_DRIFT:
                raise BackendError(ErrorKind.SCHEMA_DRIFT, SCHEMA_HINT)
            raise
        return outcome.first_id

    result = rpc_with_fallback(
        [
            Step("create_notification", via_rpc, advance=is_unavailable),
            Step("insert", via_insert),
        ],
        errors=PASSTHROUGH,
    )
    return {"duplicated": False, "notification_id": result.data}


def ensure_reference_received_notification(
    client,
    *,
    actor_id: str,
    recipient_id: str,
    reference_id: str,
    entity_type: str,
    entity_id: str,
) -> None:
    """
    Best-effort notice to the recipient of a new reference. Failures are
    logged and never reach the caller.
    """
    if client is None:
        return
    try:
        create_notification(
            client,
            user_id=recipient_id,
            actor_id=actor_id,
            kind="reference_received",
            title="New reference received",
            body="You received a new reference.",
            link_url=f"/members/{recipient_id}",
            metadata={
                "reference_id": reference_id or None,
                "entity_type": entity_type,
                "entity_id": entity_id,
            },
        )
    except BackendError as exc:
        logger.warning("reference_received notification for %s skipped: %s", reference_id, exc.detail)
    except APIError as exc:
        logger.warning("reference_received notification for %s skipped: %s", reference_id, api_error_message(exc))
