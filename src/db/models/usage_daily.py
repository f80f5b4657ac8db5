"""Daily usage aggregation model."""
from __future__ import annotations

from datetime import date

from sqlalchemy import Date, Float, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from src.db.base import Base


class UsageDaily(Base):
    """Stores aggregated AI usage per user and UTC day."""

    __tablename__ = "usage_daily"

    user_id: Mapped[str] = mapped_column(String, primary_key=True)
    usage_date: Mapped[date] = mapped_column(Date, primary_key=True)
    requests_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tokens_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    cost_usd: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
