"""Student profile model (tier is assigned by the billing service)."""
from __future__ import annotations

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from src.db.base import Base

TIER_FREE = "free"
TIER_PREMIUM = "premium"


class Profile(Base):
    """Read-only view of the fields the pipeline needs from a user profile."""

    __tablename__ = "profiles"

    user_id: Mapped[str] = mapped_column(String, primary_key=True)
    tier: Mapped[str] = mapped_column(String, nullable=False, default=TIER_FREE)

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<Profile {self.user_id} tier={self.tier}>"
