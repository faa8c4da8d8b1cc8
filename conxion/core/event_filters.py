import enum
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable, Mapping, Optional

from conxion.core.events import ATTENDING_STATUSES


class DatePreset(str, enum.Enum):
    ANY = "any"
    TODAY = "today"
    TOMORROW = "tomorrow"
    THIS_WEEKEND = "this_weekend"
    THIS_WEEK = "this_week"
    NEXT_WEEK = "next_week"
    THIS_MONTH = "this_month"
    CUSTOM = "custom"


@dataclass(frozen=True)
class DateRange:
    # ISO dates (YYYY-MM-DD); an empty bound is open.
    start: str = ""
    end: str = ""

    def contains(self, iso_day: str) -> bool:
        if self.start and iso_day < self.start:
            return False
        if self.end and iso_day > self.end:
            return False
        return True


def _sunday_based_weekday(day: date) -> int:
    # Sunday 0 ... Saturday 6
    return day.isoweekday() % 7


def resolve_date_range(
    preset: DatePreset | str,
    custom_from: str = "",
    custom_to: str = "",
    today: Optional[date] = None,
) -> DateRange:
    preset = DatePreset(preset)
    today = today or date.today()
    day_of_week = _sunday_based_weekday(today)

    if preset == DatePreset.ANY:
        return DateRange()

    if preset == DatePreset.CUSTOM:
        return DateRange(start=custom_from or "", end=custom_to or "")

    if preset == DatePreset.TODAY:
        return DateRange(today.isoformat(), today.isoformat())

    if preset == DatePreset.TOMORROW:
        tomorrow = (today + timedelta(days=1)).isoformat()
        return DateRange(tomorrow, tomorrow)

    if preset == DatePreset.THIS_WEEKEND:
        saturday = today + timedelta(days=(6 - day_of_week + 7) % 7)
        sunday = saturday + timedelta(days=1)
        return DateRange(saturday.isoformat(), sunday.isoformat())

    if preset == DatePreset.THIS_WEEK:
        monday = today + timedelta(days=-6 if day_of_week == 0 else 1 - day_of_week)
        return DateRange(monday.isoformat(), (monday + timedelta(days=6)).isoformat())

    if preset == DatePreset.NEXT_WEEK:
        monday = today + timedelta(days=1 if day_of_week == 0 else 8 - day_of_week)
        return DateRange(monday.isoformat(), (monday + timedelta(days=6)).isoformat())

    # this_month
    first = today.replace(day=1)
    next_month = (first + timedelta(days=32)).replace(day=1)
    last = next_month - timedelta(days=1)
    return DateRange(first.isoformat(), last.isoformat())


# --------------------------------------------------
# EVENT FILTER
# --------------------------------------------------
@dataclass
class EventFilters:
    query: str = ""
    access: str = "all"  # all | public | private
    event_type: str = "all"
    style: str = "all"
    date_preset: DatePreset = DatePreset.ANY
    date_from: str = ""
    date_to: str = ""
    my_location_only: bool = False
    connections_only: bool = False


@dataclass
class ViewerContext:
    is_authenticated: bool = False
    city: str = ""
    country: str = ""
    # event_id -> connected members attending it
    connected_attendees: Mapping[str, list] | None = None
    # user_id -> profile with a display_name
    profiles: Mapping[str, Mapping] | None = None
    today: Optional[date] = None


def connected_attendees_by_event(members: Iterable[Mapping], connected_user_ids: Iterable[str]) -> dict[str, list]:
    connected = set(connected_user_ids)
    grouped: dict[str, list] = {}
    if not connected:
        return grouped

    for member in members:
        if member.get("status") not in ATTENDING_STATUSES:
            continue
        if member.get("user_id") not in connected:
            continue
        grouped.setdefault(member["event_id"], []).append(member)
    return grouped


def _haystack(event: Mapping, profiles: Mapping[str, Mapping]) -> str:
    host = profiles.get(event.get("host_user_id") or "") or {}
    parts = [
        event.get("title") or "",
        event.get("city") or "",
        event.get("country") or "",
        event.get("venue_name") or "",
        event.get("event_type") or "",
        " ".join(event.get("styles") or []),
        host.get("display_name") or "",
    ]
    return " ".join(parts).lower()


def _same_text(left: str, right: str) -> bool:
    return bool(left) and left.lower() == (right or "").lower()


def filter_events(events: list, filters: EventFilters, context: ViewerContext) -> list:
    """
    Conjunctive filtering over normalized event rows. Input order is kept;
    with every facet at its default the input comes back unchanged.
    """
    query_text = filters.query.strip().lower()
    access = filters.access
    if not context.is_authenticated and access == "private":
        access = "all"
    date_range = resolve_date_range(filters.date_preset, filters.date_from, filters.date_to, context.today)
    connected = context.connected_attendees or {}
    profiles = context.profiles or {}

    def keep(event: Mapping) -> bool:
        visibility = event.get("visibility")
        if not context.is_authenticated and visibility != "public":
            return False
        if access != "all" and visibility != access:
            return False
        if filters.event_type != "all" and event.get("event_type") != filters.event_type:
            return False
        if filters.style != "all" and not any(
            style.lower() == filters.style.lower() for style in event.get("styles") or []
        ):
            return False

        if not date_range.contains((event.get("starts_at") or "")[:10]):
            return False

        if filters.my_location_only:
            city_match = _same_text(context.city, event.get("city"))
            country_match = _same_text(context.country, event.get("country"))
            if not city_match and not country_match:
                return False

        if filters.connections_only and not connected.get(event.get("id")):
            return False

        if not query_text:
            return True
        return query_text in _haystack(event, profiles)

    return [event for event in events if keep(event)]


def order_by_start(events: list) -> list:
    return sorted(events, key=lambda event: event.get("starts_at") or "")
