"""
Calling provider interface definition.
"""

from abc import ABC
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import anyio


@dataclass(frozen=True)
class CreateCallRequest:
    """Request to place an outbound recovery call."""

    phone: str
    assistant_id: str
    phone_number_id: str
    system_prompt: str
    customer_name: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CreateCallResult:
    """Response from call creation."""

    provider_call_id: str
    created_at: datetime
    raw_response: dict[str, Any] = field(default_factory=dict)


class CallProviderError(Exception):
    """Base exception for calling provider errors."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        provider_response: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.provider_response = provider_response or {}


class CallProvider(ABC):
    """Abstract interface for calling providers.

    Subclasses implement either the async ``create_call`` or the blocking
    ``create_call_sync``; the default async method runs the sync one in a
    worker thread.
    """

    name: str = "provider"

    async def create_call(self, request: CreateCallRequest) -> CreateCallResult:
        """Create an outbound call."""
        return await anyio.to_thread.run_sync(self.create_call_sync, request)

    def create_call_sync(self, request: CreateCallRequest) -> CreateCallResult:
        raise NotImplementedError(f"{type(self).__name__} has no blocking create_call")

    def is_configured(self) -> bool:
        """Whether credentials needed to place calls are present."""
        return True

    async def aclose(self) -> None:
        """Release network resources held by the provider."""
