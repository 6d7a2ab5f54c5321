"""
SQLAlchemy model for per-merchant recovery settings.
"""

from datetime import datetime

from sqlalchemy import Boolean, Float, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from callrecovery.shared.database import Base, UTCDateTime, new_id, utcnow

DEFAULT_SETTINGS: dict = {
    "enabled": True,
    "delay_minutes": 30,
    "max_attempts": 2,
    "retry_minutes": 180,
    "min_order_value": 0.0,
    "currency": "USD",
    "call_window_start": "09:00",
    "call_window_end": "19:00",
    "provider_assistant_id": None,
    "provider_phone_number_id": None,
    "merchant_prompt": "",
}


class MerchantSettings(Base):
    """One row per shop, created lazily with defaults."""

    __tablename__ = "merchant_settings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    shop: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    delay_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=2)
    retry_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=180)
    min_order_value: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="USD")
    call_window_start: Mapped[str] = mapped_column(String(5), nullable=False, default="09:00")
    call_window_end: Mapped[str] = mapped_column(String(5), nullable=False, default="19:00")
    provider_assistant_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    provider_phone_number_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    merchant_prompt: Mapped[str | None] = mapped_column(Text, nullable=True, default="")

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    def __repr__(self) -> str:
        return f"<MerchantSettings(shop={self.shop}, enabled={self.enabled})>"
