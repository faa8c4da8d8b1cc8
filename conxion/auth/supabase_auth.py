import logging

from jose import JWTError, jwt
from fastapi import Depends, Header, HTTPException

from conxion.config import settings
from conxion.supabase_client import get_anon_client, get_user_client

logger = logging.getLogger(__name__)


def get_bearer_token(authorization: str = Header(None)) -> str:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing auth token.")

    token = authorization[len("Bearer "):].strip()
    if not token:
        raise HTTPException(status_code=401, detail="Missing auth token.")
    return token


def verify_token(token: str) -> dict:
    """
    Returns ``{"sub": user_id, "email": ...}`` for a valid Supabase access
    token. Verified locally when the JWT secret is configured, otherwise by
    asking Supabase Auth.
    """
    if settings.SUPABASE_JWT_SECRET:
        try:
            payload = jwt.decode(
                token,
                settings.SUPABASE_JWT_SECRET,
                algorithms=[settings.JWT_ALGORITHM],
                audience=settings.JWT_AUDIENCE,
            )
        except JWTError:
            raise HTTPException(status_code=401, detail="Invalid auth token.")
        if not payload.get("sub"):
            raise HTTPException(status_code=401, detail="Invalid auth token.")
        return payload

    try:
        res = get_user_client(token).auth.get_user(token)
    except Exception as exc:
        logger.info("Supabase rejected token: %s", exc)
        raise HTTPException(status_code=401, detail="Invalid auth token.")

    user = getattr(res, "user", None)
    if user is None or not getattr(user, "id", None):
        raise HTTPException(status_code=401, detail="Invalid auth token.")
    return {"sub": user.id, "email": getattr(user, "email", None)}


def get_current_user(token: str = Depends(get_bearer_token)) -> dict:
    return verify_token(token)


def get_optional_user(authorization: str = Header(None)):
    """Viewer for public reads: ``None`` when the request is anonymous."""
    if not authorization or not authorization.startswith("Bearer "):
        return None
    try:
        return verify_token(authorization[len("Bearer "):].strip())
    except HTTPException:
        return None


def get_user_supabase(token: str = Depends(get_bearer_token)):
    return get_user_client(token)


def get_viewer_supabase(authorization: str = Header(None)):
    """User client when a bearer token is sent, anonymous client otherwise."""
    if authorization and authorization.startswith("Bearer "):
        token = authorization[len("Bearer "):].strip()
        if token:
            return get_user_client(token)
    try:
        return get_anon_client()
    except RuntimeError as exc:
        raise HTTPException(status_code=500, detail=str(exc))
