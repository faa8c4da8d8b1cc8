from pydantic import BaseModel
from typing import Optional, List, Dict, Literal


DRAFT_SCHEMA_VERSION = 1


# --------------------------------------------------
# ONBOARDING DRAFT (stored per user)
# --------------------------------------------------
class OnboardingDraft(BaseModel):
    display_name: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None
    roles: List[str] = []

    interests: List[str] = []
    styles: List[str] = []

    # Structured interests/styles (step 2)
    interests_by_role: Dict[str, List[str]] = {}
    style_levels: Dict[str, str] = {}
    other_style_enabled: bool = False
    other_style_name: Optional[str] = None

    languages: List[str] = []
    availability: Dict[str, bool] = {}

    # Photo review workflow
    avatar_path: Optional[str] = None
    avatar_status: Optional[Literal["pending", "approved", "rejected"]] = None


# --------------------------------------------------
# PATCH (only the fields sent are merged)
# --------------------------------------------------
class OnboardingDraftPatch(BaseModel):
    display_name: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None
    roles: Optional[List[str]] = None
    interests: Optional[List[str]] = None
    styles: Optional[List[str]] = None
    interests_by_role: Optional[Dict[str, List[str]]] = None
    style_levels: Optional[Dict[str, str]] = None
    other_style_enabled: Optional[bool] = None
    other_style_name: Optional[str] = None
    languages: Optional[List[str]] = None
    availability: Optional[Dict[str, bool]] = None
    avatar_path: Optional[str] = None
    avatar_status: Optional[Literal["pending", "approved", "rejected"]] = None


class OnboardingDraftOut(BaseModel):
    ok: bool = True
    schema_version: int = DRAFT_SCHEMA_VERSION
    draft: OnboardingDraft
