import logging

from fastapi import APIRouter, Depends
from postgrest.exceptions import APIError

from conxion.auth.supabase_auth import get_current_user, get_user_supabase
from conxion.core.compat import Projection, query_with_fallback, select_rows
from conxion.core.errors import api_error_message
from conxion.core.profile_filters import ProfileFilters, active_filter_count, filter_profiles
from conxion.schemas.profile_search_schema import ProfileSearchRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/profiles", tags=["Profiles"])

MAX_SEARCH_LIMIT = 500

PROFILE_PROJECTIONS = (
    Projection(
        name="full",
        table="profiles",
        columns=(
            "user_id,display_name,city,country,avatar_url,roles,languages,"
            "dance_skills,verified,interest,availability,other_style"
        ),
    ),
    Projection(
        name="core",
        table="profiles",
        columns="user_id,display_name,city,country,avatar_url,roles,languages,dance_skills",
    ),
    Projection(name="any", table="profiles"),
)


def _load_profiles(supabase, me: str, limit: int) -> list:
    result = query_with_fallback(
        PROFILE_PROJECTIONS,
        lambda projection: select_rows(
            supabase,
            projection,
            lambda query: query.neq("user_id", me).limit(limit),
        ),
    )
    return [row for row in result.rows if row.get("user_id") and row.get("user_id") != me]


def _my_city(supabase, me: str) -> str:
    try:
        res = supabase.table("profiles").select("city").eq("user_id", me).limit(1).execute()
    except APIError as exc:
        logger.info("City for %s unreadable: %s", me, api_error_message(exc))
        return ""
    rows = res.data or []
    return (rows[0].get("city") or "") if rows else ""


@router.post("/search")
def search_profiles(
    payload: ProfileSearchRequest,
    current_user: dict = Depends(get_current_user),
    supabase=Depends(get_user_supabase),
):
    me = current_user["sub"]
    limit = min(max(payload.limit or 1, 1), MAX_SEARCH_LIMIT)

    filters = ProfileFilters(
        country=payload.country or None,
        cities=[city for city in payload.cities if city],
        roles=payload.roles,
        style_levels=payload.style_levels,
        other_style=payload.other_style,
        languages=payload.languages,
        interest=payload.interest or None,
        availability=payload.availability or None,
        verified_only=payload.verified_only,
        my_city_only=payload.my_city_only,
    )
    my_city = _my_city(supabase, me) if filters.my_city_only else ""

    profiles = _load_profiles(supabase, me, limit)
    matches = filter_profiles(profiles, filters, my_city)

    return {
        "ok": True,
        "profiles": matches,
        "total": len(profiles),
        "active_filters": active_filter_count(filters),
    }
