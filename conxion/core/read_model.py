import logging
from typing import Any, Mapping

from postgrest.exceptions import APIError

from conxion.core.connection_state import (
    get_other_user_id,
    is_blocked_connection,
)
from conxion.core.errors import GENERIC, api_error_message

logger = logging.getLogger(__name__)

VISIBLE_CONNECTIONS_RPC = "app_visible_connections"
FALLBACK_LIMIT = 500

CONNECTION_CONTEXTS = {"member", "trip", "traveller"}

_TEXT_FIELDS = (
    "connect_reason",
    "connect_reason_role",
    "connect_note",
    "trip_id",
    "trip_destination_city",
    "trip_destination_country",
    "trip_start_date",
    "trip_end_date",
    "trip_purpose",
)


def _as_string(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _as_nullable_string(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _context(value: Any) -> str | None:
    return value if value in CONNECTION_CONTEXTS else None


def _base_row(raw: Mapping[str, Any]) -> dict:
    row = {
        "id": _as_string(raw.get("id")),
        "requester_id": _as_string(raw.get("requester_id")),
        "target_id": _as_string(raw.get("target_id")),
        "status": _as_string(raw.get("status")),
        "blocked_by": _as_nullable_string(raw.get("blocked_by")),
        "created_at": _as_nullable_string(raw.get("created_at")),
        "connect_context": _context(raw.get("connect_context")),
    }
    for key in _TEXT_FIELDS:
        row[key] = _as_nullable_string(raw.get(key))
    return row


def normalize_rpc_row(raw: Mapping[str, Any]) -> dict:
    """Row already classified by the ``app_visible_connections`` procedure."""
    row = _base_row(raw)
    row["other_user_id"] = _as_string(raw.get("other_user_id"))
    for flag in (
        "is_blocked",
        "is_visible_in_messages",
        "is_incoming_pending",
        "is_outgoing_pending",
        "is_accepted_visible",
    ):
        row[flag] = raw.get(flag) is True
    return row


def normalize_fallback_row(raw: Mapping[str, Any], user_id: str) -> dict:
    """Raw ``connections`` row; the visibility flags are derived here."""
    row = _base_row(raw)
    status = row["status"]
    blocked = is_blocked_connection(row)
    accepted_visible = status == "accepted" and not blocked

    row["other_user_id"] = get_other_user_id(row, user_id)
    row["is_blocked"] = blocked
    row["is_visible_in_messages"] = accepted_visible
    row["is_incoming_pending"] = status == "pending" and row["target_id"] == user_id
    row["is_outgoing_pending"] = status == "pending" and row["requester_id"] == user_id
    row["is_accepted_visible"] = accepted_visible
    return row


def fetch_visible_connections(client, user_id: str) -> list[dict]:
    try:
        res = client.rpc(VISIBLE_CONNECTIONS_RPC, {"p_user_id": user_id}).execute()
        if isinstance(res.data, list):
            return [normalize_rpc_row(row) for row in res.data if isinstance(row, dict)]
    except APIError as exc:
        logger.info("%s unavailable, reading connections directly: %s",
                    VISIBLE_CONNECTIONS_RPC, api_error_message(exc))

    try:
        res = (
            client.table("connections")
            .select("*")
            .or_(f"requester_id.eq.{user_id},target_id.eq.{user_id}")
            .limit(FALLBACK_LIMIT)
            .execute()
        )
    except APIError as exc:
        raise GENERIC.from_api_error(exc)

    return [normalize_fallback_row(row, user_id) for row in (res.data or []) if isinstance(row, dict)]


def accepted_connection_index(rows: list[dict]) -> dict[str, str]:
    """other_user_id -> connection id for every visible accepted connection."""
    index: dict[str, str] = {}
    for row in rows:
        if row.get("is_accepted_visible") and row.get("other_user_id") and row.get("id"):
            index[row["other_user_id"]] = row["id"]
    return index
