"""
SQLAlchemy model for orders received from the commerce platform.
"""

from datetime import datetime

from sqlalchemy import Float, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from callrecovery.shared.database import Base, UTCDateTime, new_id, utcnow


class Order(Base):
    """One row per (shop, order id)."""

    __tablename__ = "orders"
    __table_args__ = (
        UniqueConstraint("shop", "order_id", name="uq_orders_shop_order_id"),
        Index("ix_orders_shop_created_at", "shop", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    shop: Mapped[str] = mapped_column(String(255), nullable=False)
    order_id: Mapped[str] = mapped_column(String(255), nullable=False)
    checkout_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    checkout_token: Mapped[str | None] = mapped_column(String(255), nullable=True)
    total: Mapped[float | None] = mapped_column(Float, nullable=True)
    currency: Mapped[str | None] = mapped_column(String(8), nullable=True)
    financial_status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    raw: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
