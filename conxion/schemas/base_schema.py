from uuid import UUID

from pydantic import BaseModel


# --------------------------------------------------
# REQUEST BODY (camelCase on the wire, snake_case in code)
# --------------------------------------------------
class RequestBody(BaseModel):
    class Config:
        populate_by_name = True
        extra = "ignore"


def clean(value) -> str:
    return value.strip() if isinstance(value, str) else ""


def is_uuid(value) -> bool:
    """Member ids are auth user UUIDs; anything else must not reach a PostgREST filter string."""
    if not isinstance(value, str):
        return False
    try:
        return str(UUID(value)) == value.lower()
    except ValueError:
        return False
