"""
Registers every ORM model on ``Base.metadata``.
"""

from callrecovery.calls.models import CallJob, CallJobStatus
from callrecovery.checkouts.models import Checkout, CheckoutStatus
from callrecovery.merchants.models import MerchantSettings
from callrecovery.orders.models import Order

__all__ = [
    "CallJob",
    "CallJobStatus",
    "Checkout",
    "CheckoutStatus",
    "MerchantSettings",
    "Order",
]
