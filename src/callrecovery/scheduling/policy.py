"""
Per-run scheduling rules derived from a merchant's settings row.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from callrecovery.merchants.models import MerchantSettings


@dataclass(frozen=True)
class SchedulingPolicy:
    """Immutable snapshot of the business rules used by one enqueue/dispatch run."""

    enabled: bool = True
    delay_minutes: int = 30
    max_attempts: int = 2
    retry_minutes: int = 180
    min_order_value: float = 0.0
    call_window_start: str = "09:00"
    call_window_end: str = "19:00"

    def __post_init__(self) -> None:
        if self.delay_minutes < 0:
            raise ValueError("delay_minutes must be >= 0")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.retry_minutes < 0:
            raise ValueError("retry_minutes must be >= 0")

    @classmethod
    def from_settings(cls, row: MerchantSettings) -> SchedulingPolicy:
        return cls(
            enabled=bool(row.enabled),
            delay_minutes=max(0, int(row.delay_minutes)),
            max_attempts=max(1, int(row.max_attempts)),
            retry_minutes=max(0, int(row.retry_minutes)),
            min_order_value=float(row.min_order_value or 0.0),
            call_window_start=row.call_window_start or "09:00",
            call_window_end=row.call_window_end or "19:00",
        )
