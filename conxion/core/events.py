"""
Event row normalization.

Rows come back from ``list_public_events_lite`` or straight from the
``events`` / ``event_members`` / ``profiles`` tables, depending on what the
remote schema offers. Everything is normalized here into plain dicts with
snake_case keys; rows missing identity fields are skipped.
"""
import json
from typing import Any, Iterable, Mapping

EVENT_VISIBILITIES = ("public", "private")
EVENT_STATUSES = ("draft", "published", "cancelled")
COVER_STATUSES = ("pending", "approved", "rejected")
MEMBER_STATUSES = ("host", "going", "waitlist", "left")
REQUEST_STATUSES = ("pending", "accepted", "declined", "cancelled")

# Members that count as attending for filters and references.
ATTENDING_STATUSES = ("host", "going", "waitlist")

MAX_EVENT_STYLES = 12


def _record(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _string(row: Mapping[str, Any], key: str, fallback: str = "") -> str:
    value = row.get(key)
    return value if isinstance(value, str) else fallback


def _nullable_string(row: Mapping[str, Any], key: str) -> str | None:
    value = row.get(key)
    return value if isinstance(value, str) and value.strip() else None


def _number(row: Mapping[str, Any], key: str):
    value = row.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


def _choice(raw: str, allowed: tuple, fallback: str) -> str:
    return raw if raw in allowed else fallback


# --------------------------------------------------
# STYLES / LINKS
# --------------------------------------------------
def parse_styles(raw: Any) -> list[str]:
    """
    Accepts a list or a Postgres array literal (``{salsa,"bachata"}``).
    """
    if isinstance(raw, list):
        items = [item.strip().lower() if isinstance(item, str) else "" for item in raw]
        return [item for item in items if item]

    if isinstance(raw, str):
        text = raw.strip()
        if text.startswith("{") and text.endswith("}"):
            items = [item.strip().strip('"').lower() for item in text[1:-1].split(",")]
            return [item for item in items if item]

    return []


def parse_links(raw: Any) -> list[dict]:
    source = raw
    if isinstance(raw, str):
        try:
            source = json.loads(raw)
        except ValueError:
            source = []
    if not isinstance(source, list):
        return []

    links = []
    for item in source:
        row = _record(item)
        url = _string(row, "url").strip()
        if not url:
            continue
        links.append({
            "label": _string(row, "label") or _string(row, "type") or "Link",
            "url": url,
            "type": _string(row, "type") or "link",
        })
    return links


def sanitize_styles(raw: Any) -> list[str]:
    """Request-body styles: lower-cased, blanks dropped, at most twelve."""
    if not isinstance(raw, list):
        return []
    styles = [item.strip().lower() for item in raw if isinstance(item, str)]
    return [item for item in styles if item][:MAX_EVENT_STYLES]


def sanitize_links(raw: Any) -> list[dict]:
    """Request-body links: a url is required, label and type get defaults."""
    if not isinstance(raw, list):
        return []
    links = []
    for item in raw:
        row = _record(item)
        url = _string(row, "url").strip()
        if not url:
            continue
        links.append({
            "label": _string(row, "label").strip() or "Link",
            "url": url,
            "type": _string(row, "type").strip() or "link",
        })
    return links


# --------------------------------------------------
# ROW MAPPERS
# --------------------------------------------------
def map_event_rows(rows: Iterable[Any]) -> list[dict]:
    events = []
    for raw in rows:
        row = _record(raw)
        identity = {
            key: _string(row, key)
            for key in ("id", "host_user_id", "starts_at", "ends_at", "created_at", "updated_at")
        }
        if not all(identity.values()):
            continue

        events.append({
            **identity,
            "title": _string(row, "title") or "Untitled Event",
            "description": _nullable_string(row, "description"),
            "event_type": _string(row, "event_type") or "Social",
            "styles": parse_styles(row.get("styles")),
            "visibility": _choice(_string(row, "visibility"), EVENT_VISIBILITIES, "public"),
            "city": _string(row, "city"),
            "country": _string(row, "country"),
            "venue_name": _nullable_string(row, "venue_name"),
            "venue_address": _nullable_string(row, "venue_address"),
            "capacity": _number(row, "capacity"),
            "cover_url": _nullable_string(row, "cover_url"),
            "cover_status": _choice(_string(row, "cover_status"), COVER_STATUSES, "pending"),
            "hidden_by_admin": row.get("hidden_by_admin") is True,
            "hidden_reason": _nullable_string(row, "hidden_reason"),
            "links": parse_links(row.get("links")),
            "status": _choice(_string(row, "status"), EVENT_STATUSES, "published"),
        })
    return events


def map_event_member_rows(rows: Iterable[Any]) -> list[dict]:
    members = []
    for raw in rows:
        row = _record(raw)
        member_id = _string(row, "id")
        event_id = _string(row, "event_id")
        user_id = _string(row, "user_id")
        if not member_id or not event_id or not user_id:
            continue
        members.append({
            "id": member_id,
            "event_id": event_id,
            "user_id": user_id,
            "member_role": _string(row, "member_role") or "guest",
            "status": _choice(_string(row, "status"), MEMBER_STATUSES, "going"),
            "joined_at": _nullable_string(row, "joined_at"),
        })
    return members


def map_event_request_rows(rows: Iterable[Any]) -> list[dict]:
    requests = []
    for raw in rows:
        row = _record(raw)
        request_id = _string(row, "id")
        event_id = _string(row, "event_id")
        requester_id = _string(row, "requester_id")
        if not request_id or not event_id or not requester_id:
            continue
        requests.append({
            "id": request_id,
            "event_id": event_id,
            "requester_id": requester_id,
            "note": _nullable_string(row, "note"),
            "status": _choice(_string(row, "status"), REQUEST_STATUSES, "pending"),
            "decided_by": _nullable_string(row, "decided_by"),
            "decided_at": _nullable_string(row, "decided_at"),
        })
    return requests


def map_profile_rows(rows: Iterable[Any]) -> dict[str, dict]:
    """user_id -> lightweight profile."""
    profiles: dict[str, dict] = {}
    for raw in rows:
        row = _record(raw)
        user_id = _string(row, "user_id")
        if not user_id:
            continue
        profiles[user_id] = {
            "user_id": user_id,
            "display_name": _string(row, "display_name") or "Member",
            "city": _string(row, "city"),
            "country": _string(row, "country"),
            "avatar_url": _nullable_string(row, "avatar_url"),
        }
    return profiles
