"""
SQLAlchemy models for checkouts.
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import Enum as SQLEnum
from sqlalchemy import Float, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from callrecovery.shared.database import Base, UTCDateTime, new_id, utcnow


class CheckoutStatus(str, Enum):
    """Checkout lifecycle state."""

    OPEN = "OPEN"
    ABANDONED = "ABANDONED"
    CONVERTED = "CONVERTED"
    RECOVERED = "RECOVERED"


CLOSED_CHECKOUT_STATES = (CheckoutStatus.CONVERTED, CheckoutStatus.RECOVERED)


class Checkout(Base):
    """One row per (shop, external checkout id)."""

    __tablename__ = "checkouts"
    __table_args__ = (
        UniqueConstraint("shop", "checkout_id", name="uq_checkouts_shop_checkout_id"),
        Index("ix_checkouts_shop_status_created_at", "shop", "status", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    shop: Mapped[str] = mapped_column(String(255), nullable=False)
    checkout_id: Mapped[str] = mapped_column(String(255), nullable=False)
    token: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    value: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="USD")
    status: Mapped[CheckoutStatus] = mapped_column(
        SQLEnum(CheckoutStatus, name="checkout_status", native_enum=False, length=16),
        nullable=False,
        default=CheckoutStatus.OPEN,
    )
    # Authoritative clock for the delay before a call; set iff ABANDONED.
    abandoned_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    customer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    items_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    raw: Mapped[str | None] = mapped_column(Text, nullable=True)

    recovered_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True, index=True)
    recovered_order_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    recovered_amount: Mapped[float | None] = mapped_column(Float, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    def __repr__(self) -> str:
        return f"<Checkout(shop={self.shop}, checkout_id={self.checkout_id}, status={self.status})>"
