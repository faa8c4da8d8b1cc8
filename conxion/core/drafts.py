"""
Onboarding draft aggregate.

The multi-step onboarding form saves its progress here between steps. This
module is the only reader and writer of the stored draft.
"""
import logging

from pydantic import ValidationError
from sqlalchemy.orm import Session

from conxion.models.onboarding_draft import OnboardingDraftRecord
from conxion.schemas.onboarding_schema import (
    DRAFT_SCHEMA_VERSION,
    OnboardingDraft,
    OnboardingDraftPatch,
)

logger = logging.getLogger(__name__)

# Fields that may be cleared with an explicit null.
NULLABLE_FIELDS = {
    name for name, info in OnboardingDraft.model_fields.items() if info.default is None
}


def _record(db: Session, user_id: str):
    return (
        db.query(OnboardingDraftRecord)
        .filter(OnboardingDraftRecord.user_id == user_id)
        .first()
    )


def read_draft(db: Session, user_id: str) -> OnboardingDraft:
    record = _record(db, user_id)
    if record is None:
        return OnboardingDraft()

    if record.schema_version != DRAFT_SCHEMA_VERSION:
        logger.info("Ignoring draft for %s with schema version %s", user_id, record.schema_version)
        return OnboardingDraft()

    try:
        return OnboardingDraft.model_validate(record.data or {})
    except ValidationError:
        logger.warning("Stored draft for %s no longer validates, starting over", user_id)
        return OnboardingDraft()


def merge_draft(db: Session, user_id: str, patch: OnboardingDraftPatch) -> OnboardingDraft:
    """Shallow merge: every field present in the patch replaces the stored one."""
    current = read_draft(db, user_id)
    changes = {
        key: value
        for key, value in patch.model_dump(exclude_unset=True).items()
        if value is not None or key in NULLABLE_FIELDS
    }
    merged = current.model_copy(update=changes)
    # Re-validate so bad values in the patch are rejected as a whole.
    merged = OnboardingDraft.model_validate(merged.model_dump())

    record = _record(db, user_id)
    if record is None:
        record = OnboardingDraftRecord(user_id=user_id)
        db.add(record)

    record.schema_version = DRAFT_SCHEMA_VERSION
    record.data = merged.model_dump()
    db.commit()

    return merged


def clear_draft(db: Session, user_id: str) -> bool:
    record = _record(db, user_id)
    if record is None:
        return False
    db.delete(record)
    db.commit()
    return True
