"""Plan database model."""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import TIMESTAMP, Boolean, Enum, Integer, Text, func, text
from sqlalchemy.orm import Mapped, mapped_column

from plansync.billing.types import PlanKind
from plansync.db.base import Base


class Plan(Base):
    """A sellable plan and the Stripe price behind it."""

    __tablename__ = "plans"

    id: Mapped[str] = mapped_column(Text, primary_key=True)  # e.g. "monthly"
    name: Mapped[str] = mapped_column(Text, nullable=False)
    kind: Mapped[PlanKind] = mapped_column(
        Enum(PlanKind, native_enum=False, length=32), nullable=False, index=True
    )

    # Missing price on a purchasable plan is a catalog misconfiguration
    stripe_price_id: Mapped[str | None] = mapped_column(Text, nullable=True, index=True)

    amount_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    currency: Mapped[str] = mapped_column(Text, nullable=False, server_default="usd")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("true"))

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, server_default=func.now()
    )
