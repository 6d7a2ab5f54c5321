"""
SQLAlchemy models for call jobs.
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import Enum as SQLEnum
from sqlalchemy import Float, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from callrecovery.shared.database import Base, UTCDateTime, new_id, utcnow


class CallJobStatus(str, Enum):
    """Call job lifecycle state."""

    QUEUED = "QUEUED"
    CALLING = "CALLING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELED = "CANCELED"


IN_FLIGHT_STATES = (CallJobStatus.QUEUED, CallJobStatus.CALLING)
TERMINAL_STATES = (CallJobStatus.COMPLETED, CallJobStatus.FAILED, CallJobStatus.CANCELED)

_IN_FLIGHT_PREDICATE = text("status IN ('QUEUED', 'CALLING')")


class CallJob(Base):
    """One attempted-or-attempting outbound call for a checkout."""

    __tablename__ = "call_jobs"
    __table_args__ = (
        Index("ix_call_jobs_shop_status_scheduled_for", "shop", "status", "scheduled_for"),
        Index("ix_call_jobs_shop_checkout_id", "shop", "checkout_id"),
        # At most one QUEUED/CALLING job per checkout, even across concurrent enqueuers.
        Index(
            "uq_call_jobs_in_flight",
            "shop",
            "checkout_id",
            unique=True,
            postgresql_where=_IN_FLIGHT_PREDICATE,
            sqlite_where=_IN_FLIGHT_PREDICATE,
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    shop: Mapped[str] = mapped_column(String(255), nullable=False)
    checkout_id: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[CallJobStatus] = mapped_column(
        SQLEnum(CallJobStatus, name="call_job_status", native_enum=False, length=16),
        nullable=False,
        default=CallJobStatus.QUEUED,
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    scheduled_for: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    provider: Mapped[str | None] = mapped_column(String(50), nullable=True)
    provider_call_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)

    outcome: Mapped[str | None] = mapped_column(Text, nullable=True)
    ended_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    recording_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    transcript: Mapped[str | None] = mapped_column(Text, nullable=True)
    sentiment: Mapped[str | None] = mapped_column(String(32), nullable=True)
    tags_csv: Mapped[str | None] = mapped_column(Text, nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    next_action: Mapped[str | None] = mapped_column(Text, nullable=True)
    follow_up: Mapped[str | None] = mapped_column(Text, nullable=True)
    analysis_json: Mapped[str | None] = mapped_column(Text, nullable=True)

    attributed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True, index=True)
    attributed_order_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    attributed_amount: Mapped[float | None] = mapped_column(Float, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATES

    def __repr__(self) -> str:
        return f"<CallJob(id={self.id}, checkout_id={self.checkout_id}, status={self.status})>"
