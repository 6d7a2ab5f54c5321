"""
Calling provider integration: outbound create-call and inbound webhooks.
"""

from callrecovery.telephony.interface import (
    CallProvider,
    CallProviderError,
    CreateCallRequest,
    CreateCallResult,
)

__all__ = [
    "CallProvider",
    "CallProviderError",
    "CreateCallRequest",
    "CreateCallResult",
]
