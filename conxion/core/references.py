"""
References: row normalization, the edit/reply rules, and the derivation of
who the viewer may still leave a reference for.

A candidate is a recent interaction with an accepted connection: a completed
sync, an ended trip (owner <-> accepted requester) or an ended event both
attended. All of them share one trailing window (15 days by default), the
same window that bounds editing and replying.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Iterable, Mapping, Optional

from conxion.core.compat import Projection, query_with_fallback, select_rows
from conxion.core.events import ATTENDING_STATUSES
from conxion.core.read_model import accepted_connection_index, fetch_visible_connections

REFERENCE_WINDOW_DAYS = 15
MAX_REFERENCE_EDITS = 1

SENTIMENTS = ("positive", "neutral", "negative")
CANDIDATE_TYPE_RANK = {"sync": 0, "trip": 1, "event": 2}
MEMBER_RANK = {"host": 0, "going": 1}

AUTHOR_COLUMNS = ("author_id", "from_user_id", "source_id")
RECIPIENT_COLUMNS = ("recipient_id", "to_user_id", "target_id")
BODY_COLUMNS = ("body", "content", "feedback", "comment", "reference_text")
REPLY_COLUMNS = ("reply_text", "reply", "response_text", "reply_body")


# --------------------------------------------------
# TIME
# --------------------------------------------------
def parse_timestamp(value) -> Optional[datetime]:
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_day(value) -> str:
    parsed = parse_timestamp(value)
    if parsed is None:
        return "-"
    return f"{parsed:%b} {parsed.day}, {parsed.year}"


def within_reference_window(created_at, now: Optional[datetime] = None,
                            window_days: int = REFERENCE_WINDOW_DAYS) -> bool:
    created = parse_timestamp(created_at)
    if created is None:
        return False
    elapsed = (now or utc_now()) - created
    return timedelta(0) <= elapsed <= timedelta(days=window_days)


# --------------------------------------------------
# ROWS
# --------------------------------------------------
def _first_text(row: Mapping, keys: Iterable[str]) -> str:
    for key in keys:
        value = row.get(key)
        if isinstance(value, str) and value.strip():
            return value
    return ""


def _sentiment(row: Mapping) -> Optional[str]:
    raw = row.get("sentiment")
    if isinstance(raw, str) and raw.lower() in SENTIMENTS:
        return raw.lower()

    rating = row.get("rating")
    if isinstance(rating, str) and rating.strip():
        text = rating.strip().lower()
        if text in SENTIMENTS:
            return text
        try:
            rating = float(text)
        except ValueError:
            return None
    if isinstance(rating, (int, float)) and not isinstance(rating, bool):
        if rating >= 4:
            return "positive"
        if rating <= 2:
            return "negative"
        return "neutral"
    return None


def map_reference_rows(rows: Iterable[Mapping]) -> list[dict]:
    """
    Normalize current and legacy reference rows, newest first. Rows without
    identity, timestamp or a readable sentiment are dropped.
    """
    references = []
    for row in rows:
        if not isinstance(row, Mapping):
            continue
        ref_id = row.get("id") if isinstance(row.get("id"), str) else ""
        author_id = _first_text(row, AUTHOR_COLUMNS)
        recipient_id = _first_text(row, RECIPIENT_COLUMNS)
        created_at = row.get("created_at") if isinstance(row.get("created_at"), str) else ""
        sentiment = _sentiment(row)
        if not ref_id or not author_id or not recipient_id or not created_at or not sentiment:
            continue

        entity_type = _first_text(row, ("entity_type", "context")).lower()
        if not entity_type:
            entity_type = "sync" if row.get("sync_id") else "connection"

        edit_count = row.get("edit_count")
        references.append({
            "id": ref_id,
            "author_id": author_id,
            "recipient_id": recipient_id,
            "sentiment": sentiment,
            "body": _first_text(row, BODY_COLUMNS),
            "context": _first_text(row, ("context", "entity_type")) or "connection",
            "entity_type": entity_type,
            "entity_id": _first_text(row, ("entity_id", "sync_id")) or None,
            "created_at": created_at,
            "reply_text": _first_text(row, REPLY_COLUMNS) or None,
            "edit_count": edit_count if isinstance(edit_count, int) else 0,
        })

    references.sort(key=lambda item: item["created_at"], reverse=True)
    return references


def can_edit_reference(reference: Mapping, user_id: str, now: Optional[datetime] = None,
                       window_days: int = REFERENCE_WINDOW_DAYS) -> bool:
    return (
        reference.get("author_id") == user_id
        and (reference.get("edit_count") or 0) < MAX_REFERENCE_EDITS
        and within_reference_window(reference.get("created_at"), now, window_days)
    )


def can_reply_reference(reference: Mapping, user_id: str, now: Optional[datetime] = None,
                        window_days: int = REFERENCE_WINDOW_DAYS) -> bool:
    return (
        reference.get("recipient_id") == user_id
        and not reference.get("reply_text")
        and within_reference_window(reference.get("created_at"), now, window_days)
    )


# --------------------------------------------------
# CANDIDATES
# --------------------------------------------------
@dataclass
class ReferenceInputs:
    # other_user_id -> accepted connection id
    connections: dict = field(default_factory=dict)
    # user_id -> profile with display_name
    profiles: dict = field(default_factory=dict)
    syncs: list = field(default_factory=list)
    # trips I own, with the accepted requests on them
    my_trips: list = field(default_factory=list)
    owner_requests: list = field(default_factory=list)
    # accepted requests I made, with the trips they point to
    my_requests: list = field(default_factory=list)
    requested_trips: list = field(default_factory=list)
    # ended events I attended, with every attending member
    events: list = field(default_factory=list)
    event_members: list = field(default_factory=list)
    # normalized references I authored
    given: list = field(default_factory=list)


def _display_name(profiles: Mapping, user_id: str) -> Optional[str]:
    profile = profiles.get(user_id) or {}
    return profile.get("display_name") or None


def _trip_ended_in_window(trip: Mapping, cutoff_day: str, today: str) -> bool:
    end_date = (trip.get("end_date") or "")[:10]
    return bool(end_date) and cutoff_day <= end_date <= today


class _CandidateSet:
    def __init__(self, authored: set):
        self.authored = authored
        self.seen: set = set()
        self.items: list = []

    def add(self, kind: str, entity_id: str, other_user_id: str, **fields) -> None:
        if f"{kind}:{entity_id}" in self.authored:
            return
        key = f"{kind}:{entity_id}:{other_user_id}"
        if key in self.seen:
            return
        self.seen.add(key)
        self.items.append({
            "key": key,
            "type": kind,
            "entity_id": entity_id,
            "recipient_id": other_user_id,
            **fields,
        })


def derive_reference_candidates(
    me: str,
    inputs: ReferenceInputs,
    now: Optional[datetime] = None,
    window_days: int = REFERENCE_WINDOW_DAYS,
) -> list[dict]:
    now = now or utc_now()
    cutoff = now - timedelta(days=window_days)
    cutoff_day = cutoff.date().isoformat()
    today = now.date().isoformat()

    connections = inputs.connections
    profiles = inputs.profiles
    authored = {
        f"{ref['entity_type']}:{ref['entity_id']}"
        for ref in inputs.given
        if ref.get("entity_type") and ref.get("entity_id")
    }
    found = _CandidateSet(authored)

    def person(user_id: str) -> dict:
        return {
            "connection_id": connections[user_id],
            "recipient_name": _display_name(profiles, user_id) or "Member",
        }

    # syncs
    for row in inputs.syncs:
        sync_id = row.get("id") or ""
        requester_id = row.get("requester_id") or ""
        recipient_id = row.get("recipient_id") or ""
        completed_at = row.get("completed_at") or ""
        if not sync_id or not row.get("connection_id") or not requester_id or not recipient_id:
            continue
        if row.get("status") != "completed" or me not in (requester_id, recipient_id):
            continue
        completed = parse_timestamp(completed_at)
        if completed is None or completed < cutoff:
            continue

        other = recipient_id if requester_id == me else requester_id
        if other not in connections:
            continue
        name = _display_name(profiles, other)
        found.add(
            "sync", sync_id, other,
            connection_id=row["connection_id"],
            recipient_name=name or "Member",
            title=f"Sync with {name or 'member'}",
            subtitle=f"Completed {format_day(completed_at)}",
            ended_at=completed_at,
        )

    # trips I own
    my_trips = {
        trip["id"]: trip for trip in inputs.my_trips
        if trip.get("id") and trip.get("user_id") == me and _trip_ended_in_window(trip, cutoff_day, today)
    }
    for request in inputs.owner_requests:
        request_id = request.get("id") or ""
        requester_id = request.get("requester_id") or ""
        trip = my_trips.get(request.get("trip_id") or "")
        if not request_id or not requester_id or trip is None:
            continue
        if request.get("status") != "accepted" or requester_id not in connections:
            continue
        details = person(requester_id)
        found.add(
            "trip", request_id, requester_id,
            **details,
            title=f"{trip.get('destination_city') or 'Trip'} trip",
            subtitle=f"{details['recipient_name']} • ended {format_day(trip.get('end_date'))}",
            ended_at=trip.get("end_date") or "",
        )

    # trips I joined
    requested_trips = {
        trip["id"]: trip for trip in inputs.requested_trips
        if trip.get("id") and _trip_ended_in_window(trip, cutoff_day, today)
    }
    for request in inputs.my_requests:
        request_id = request.get("id") or ""
        trip = requested_trips.get(request.get("trip_id") or "")
        if not request_id or trip is None or request.get("status") != "accepted":
            continue
        if request.get("requester_id") != me:
            continue
        owner_id = trip.get("user_id") or ""
        if not owner_id or owner_id not in connections:
            continue
        details = person(owner_id)
        found.add(
            "trip", request_id, owner_id,
            **details,
            title=f"{trip.get('destination_city') or 'Trip'} trip",
            subtitle=f"{details['recipient_name']} • ended {format_day(trip.get('end_date'))}",
            ended_at=trip.get("end_date") or "",
        )

    # events
    members_by_event: dict = {}
    for member in inputs.event_members:
        if member.get("status") in ATTENDING_STATUSES and member.get("event_id"):
            members_by_event.setdefault(member["event_id"], []).append(member)

    for event in inputs.events:
        event_id = event.get("id") or ""
        ended = parse_timestamp(event.get("ends_at"))
        if not event_id or ended is None or not (cutoff <= ended <= now):
            continue
        members = members_by_event.get(event_id, [])
        if not any(member.get("user_id") == me for member in members):
            continue

        others = [member for member in members if member.get("user_id") and member["user_id"] != me]
        others.sort(key=lambda member: MEMBER_RANK.get(member.get("status"), 2))
        picked = next((member for member in others if member["user_id"] in connections), None)
        if picked is None:
            continue

        other = picked["user_id"]
        details = person(other)
        found.add(
            "event", event_id, other,
            **details,
            title=event.get("title") or "Event",
            subtitle=f"{details['recipient_name']} • ended {format_day(event.get('ends_at'))}",
            ended_at=event.get("ends_at") or "",
        )

    def order(item: dict):
        ended_at = parse_timestamp(item["ended_at"])
        return CANDIDATE_TYPE_RANK[item["type"]], -(ended_at.timestamp() if ended_at else 0)

    return sorted(found.items, key=order)


# --------------------------------------------------
# LOADING
# --------------------------------------------------
def fetch_references_for_actor(client, user_id: str, columns: Iterable[str]) -> list[dict]:
    """
    Read references by the first actor column the schema has. When none of
    them exists the result is empty.
    """
    projections = [Projection(name=column, table="references") for column in columns]
    result = query_with_fallback(
        projections,
        lambda projection: select_rows(
            client,
            projection,
            lambda query: query.eq(projection.name, user_id).order("created_at", desc=True).limit(500),
        ),
        optional=True,
    )
    return map_reference_rows(result.rows)


def _rows(client, table: str, columns: str, apply) -> list:
    # A table this deployment lacks contributes no candidates.
    result = query_with_fallback(
        [Projection(name=table, table=table, columns=columns)],
        lambda projection: select_rows(client, projection, apply),
        optional=True,
    )
    return result.rows


def load_reference_inputs(client, me: str, now: Optional[datetime] = None,
                          window_days: int = REFERENCE_WINDOW_DAYS) -> ReferenceInputs:
    now = now or utc_now()
    cutoff_iso = (now - timedelta(days=window_days)).isoformat()
    cutoff_day = cutoff_iso[:10]
    now_iso = now.isoformat()
    today = now_iso[:10]

    visible = fetch_visible_connections(client, me)
    connections = accepted_connection_index(visible)

    profile_ids = list(dict.fromkeys([me, *connections.keys()]))
    profiles = {}
    for row in _rows(client, "profiles", "user_id,display_name,city,country",
                     lambda q: q.in_("user_id", profile_ids)):
        if isinstance(row.get("user_id"), str):
            profiles[row["user_id"]] = {
                "user_id": row["user_id"],
                "display_name": row.get("display_name") or "Member",
            }

    given = fetch_references_for_actor(client, me, AUTHOR_COLUMNS)

    syncs = _rows(
        client, "connection_syncs", "id,connection_id,requester_id,recipient_id,status,completed_at",
        lambda q: q.eq("status", "completed").gte("completed_at", cutoff_iso)
        .or_(f"requester_id.eq.{me},recipient_id.eq.{me}").limit(600),
    )

    trip_columns = "id,user_id,destination_city,destination_country,end_date"
    my_trips = _rows(
        client, "trips", trip_columns,
        lambda q: q.eq("user_id", me).gte("end_date", cutoff_day).lte("end_date", today).limit(300),
    )
    my_trip_ids = [trip["id"] for trip in my_trips if trip.get("id")]
    owner_requests = []
    if my_trip_ids:
        owner_requests = _rows(
            client, "trip_requests", "id,trip_id,requester_id,status",
            lambda q: q.eq("status", "accepted").in_("trip_id", my_trip_ids).limit(600),
        )

    my_requests = _rows(
        client, "trip_requests", "id,trip_id,requester_id,status",
        lambda q: q.eq("status", "accepted").eq("requester_id", me).limit(600),
    )
    requested_trip_ids = list(dict.fromkeys(r["trip_id"] for r in my_requests if r.get("trip_id")))
    requested_trips = []
    if requested_trip_ids:
        requested_trips = _rows(
            client, "trips", trip_columns,
            lambda q: q.in_("id", requested_trip_ids).gte("end_date", cutoff_day).lte("end_date", today).limit(600),
        )

    memberships = _rows(
        client, "event_members", "event_id,user_id,status",
        lambda q: q.eq("user_id", me).in_("status", list(ATTENDING_STATUSES)).limit(1200),
    )
    my_event_ids = list(dict.fromkeys(m["event_id"] for m in memberships if m.get("event_id")))
    events, event_members = [], []
    if my_event_ids:
        events = _rows(
            client, "events", "id,title,city,country,ends_at",
            lambda q: q.in_("id", my_event_ids).gte("ends_at", cutoff_iso).lte("ends_at", now_iso).limit(1200),
        )
        ended_ids = [event["id"] for event in events if event.get("id")]
        if ended_ids:
            event_members = _rows(
                client, "event_members", "event_id,user_id,status",
                lambda q: q.in_("event_id", ended_ids).in_("status", list(ATTENDING_STATUSES)).limit(5000),
            )

    return ReferenceInputs(
        connections=connections,
        profiles=profiles,
        syncs=syncs,
        my_trips=my_trips,
        owner_requests=owner_requests,
        my_requests=my_requests,
        requested_trips=requested_trips,
        events=events,
        event_members=event_members,
        given=given,
    )



def load_reference_candidates(client, me: str, now: Optional[datetime] = None,
                              window_days: int = REFERENCE_WINDOW_DAYS) -> list[dict]:
    now = now or utc_now()
    inputs = load_reference_inputs(client, me, now, window_days)
    return derive_reference_candidates(me, inputs, now, window_days)
