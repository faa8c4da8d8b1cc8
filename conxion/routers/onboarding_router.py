from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from conxion.auth.supabase_auth import get_current_user
from conxion.core.drafts import clear_draft, merge_draft, read_draft
from conxion.database import get_db
from conxion.schemas.onboarding_schema import OnboardingDraftOut, OnboardingDraftPatch

router = APIRouter(prefix="/api/onboarding", tags=["Onboarding"])


@router.get("/draft", response_model=OnboardingDraftOut)
def get_draft(
    current_user: dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return OnboardingDraftOut(draft=read_draft(db, current_user["sub"]))


@router.patch("/draft", response_model=OnboardingDraftOut)
def patch_draft(
    payload: OnboardingDraftPatch,
    current_user: dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return OnboardingDraftOut(draft=merge_draft(db, current_user["sub"], payload))


@router.delete("/draft")
def delete_draft(
    current_user: dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    cleared = clear_draft(db, current_user["sub"])
    return {"ok": True, "cleared": cleared}
