"""
Loader for the public events listing.

Anonymous viewers go through ``list_public_events_lite``; signed-in viewers
read published events directly and get memberships, accepted connections and
host profiles on top. Secondary reads are optional: when they fail the feed
still renders without them.
"""
import logging
from dataclasses import dataclass, field

from postgrest.exceptions import APIError

from conxion.core.errors import GENERIC, api_error_message, is_unavailable
from conxion.core.events import (
    ATTENDING_STATUSES,
    map_event_member_rows,
    map_event_rows,
    map_profile_rows,
)

logger = logging.getLogger(__name__)

FEED_LIMIT = 400
CONNECTION_LIMIT = 2000
PROFILE_LIMIT = 600


@dataclass
class EventFeed:
    events: list = field(default_factory=list)
    members: list = field(default_factory=list)
    my_memberships: list = field(default_factory=list)
    connected_user_ids: list = field(default_factory=list)
    profiles: dict = field(default_factory=dict)
    city: str = ""
    country: str = ""


def _public_events(client, limit: int) -> list:
    try:
        return list(client.rpc("list_public_events_lite", {"p_limit": limit}).execute().data or [])
    except APIError as exc:
        message = api_error_message(exc)
        if not is_unavailable(message):
            raise GENERIC.from_api_error(exc)
        logger.info("list_public_events_lite unavailable, reading events: %s", message)

    try:
        res = (
            client.table("events")
            .select("*")
            .eq("status", "published")
            .eq("visibility", "public")
            .order("starts_at")
            .limit(limit)
            .execute()
        )
    except APIError as exc:
        raise GENERIC.from_api_error(exc)
    return list(res.data or [])


def _published_events(client, limit: int) -> list:
    try:
        res = client.table("events").select("*").eq("status", "published").order("starts_at").limit(limit).execute()
    except APIError as exc:
        raise GENERIC.from_api_error(exc)
    return list(res.data or [])


def _optional_rows(label: str, run) -> list:
    try:
        return list(run().data or [])
    except APIError as exc:
        logger.info("Optional %s read failed: %s", label, api_error_message(exc))
        return []


def _accepted_partner_ids(client, user_id: str) -> list[str]:
    involved = f"requester_id.eq.{user_id},target_id.eq.{user_id}"
    try:
        rows = (
            client.table("connections")
            .select("requester_id,target_id,status,blocked_by")
            .or_(involved)
            .eq("status", "accepted")
            .is_("blocked_by", "null")
            .limit(CONNECTION_LIMIT)
            .execute()
            .data
        )
    except APIError as exc:
        logger.info("Connections without blocked_by: %s", api_error_message(exc))
        rows = _optional_rows(
            "connections",
            lambda: client.table("connections")
            .select("requester_id,target_id,status")
            .or_(involved)
            .eq("status", "accepted")
            .limit(CONNECTION_LIMIT)
            .execute(),
        )

    partners = []
    for row in rows or []:
        if row.get("requester_id") == user_id:
            partners.append(row.get("target_id") or "")
        elif row.get("target_id") == user_id:
            partners.append(row.get("requester_id") or "")
    return list(dict.fromkeys(uid for uid in partners if uid))


def load_event_feed(client, viewer_id: str | None = None, limit: int = FEED_LIMIT) -> EventFeed:
    feed = EventFeed()

    if not viewer_id:
        feed.events = map_event_rows(_public_events(client, limit))
        return feed

    me = _optional_rows(
        "profile",
        lambda: client.table("profiles").select("city,country").eq("user_id", viewer_id).limit(1).execute(),
    )
    if me:
        feed.city = me[0].get("city") or ""
        feed.country = me[0].get("country") or ""

    feed.events = map_event_rows(_published_events(client, limit))
    if not feed.events:
        return feed

    event_ids = [event["id"] for event in feed.events]
    feed.members = map_event_member_rows(_optional_rows(
        "event_members",
        lambda: client.table("event_members")
        .select("*")
        .in_("event_id", event_ids)
        .in_("status", list(ATTENDING_STATUSES))
        .execute(),
    ))
    feed.my_memberships = map_event_member_rows(_optional_rows(
        "memberships",
        lambda: client.table("event_members").select("*").eq("user_id", viewer_id).in_("event_id", event_ids).execute(),
    ))

    feed.connected_user_ids = _accepted_partner_ids(client, viewer_id)

    host_ids = [event["host_user_id"] for event in feed.events]
    profile_ids = list(dict.fromkeys([*host_ids, *feed.connected_user_ids]))[:PROFILE_LIMIT]
    feed.profiles = map_profile_rows(_optional_rows(
        "profiles",
        lambda: client.table("profiles")
        .select("user_id,display_name,city,country,avatar_url")
        .in_("user_id", profile_ids)
        .execute(),
    ))
    return feed
