from fastapi import HTTPException
from supabase import Client, ClientOptions, create_client

from conxion.config import settings


def get_user_client(token: str) -> Client:
    """
    Supabase client acting as the caller: row-level security and the stored
    procedures see the caller's JWT.
    """
    if not settings.SUPABASE_URL or not settings.SUPABASE_ANON_KEY:
        raise RuntimeError("Missing SUPABASE_URL or SUPABASE_ANON_KEY.")

    return create_client(
        settings.SUPABASE_URL,
        settings.SUPABASE_ANON_KEY,
        options=ClientOptions(
            headers={"Authorization": f"Bearer {token}"},
            auto_refresh_token=False,
            persist_session=False,
        ),
    )


def get_anon_client() -> Client:
    """Client for anonymous reads of public data."""
    if not settings.SUPABASE_URL or not settings.SUPABASE_ANON_KEY:
        raise RuntimeError("Missing SUPABASE_URL or SUPABASE_ANON_KEY.")

    return create_client(
        settings.SUPABASE_URL,
        settings.SUPABASE_ANON_KEY,
        options=ClientOptions(auto_refresh_token=False, persist_session=False),
    )


def get_service_client() -> Client:
    """Privileged client; server side only."""
    if not settings.SUPABASE_URL or not settings.SUPABASE_SERVICE_ROLE_KEY:
        raise RuntimeError("Missing Supabase service role configuration.")

    return create_client(
        settings.SUPABASE_URL,
        settings.SUPABASE_SERVICE_ROLE_KEY,
        options=ClientOptions(auto_refresh_token=False, persist_session=False),
    )


# --------------------------------------------------
# FastAPI dependencies
# --------------------------------------------------
def get_service_supabase() -> Client:
    try:
        return get_service_client()
    except RuntimeError as exc:
        raise HTTPException(status_code=500, detail=str(exc))


def get_optional_service_supabase():
    """Service client for best-effort side effects; ``None`` when unconfigured."""
    if not settings.SUPABASE_URL or not settings.SUPABASE_SERVICE_ROLE_KEY:
        return None
    return get_service_client()
