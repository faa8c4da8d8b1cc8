from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    JSON,
)
from sqlalchemy.sql import func

from conxion.database import Base


class OnboardingDraftRecord(Base):
    __tablename__ = "onboarding_drafts"

    # One draft per Supabase user
    user_id = Column(String, primary_key=True, index=True)

    # Drafts written by an older layout are ignored on read
    schema_version = Column(Integer, nullable=False, default=1)

    data = Column(JSON, nullable=False, default=dict)

    created_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
