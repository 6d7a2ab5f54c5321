"""
In-memory calling provider for development and tests.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone

from callrecovery.telephony.interface import (
    CallProvider,
    CallProviderError,
    CreateCallRequest,
    CreateCallResult,
)


@dataclass
class MockCallProvider(CallProvider):
    """Returns sequential call ids and records every request.

    Set ``fail_with`` to make every call raise ``CallProviderError``.
    """

    name = "mock"

    fail_with: str | None = None
    requests: list[CreateCallRequest] = field(default_factory=list)
    _counter: int = 0

    def create_call_sync(self, request: CreateCallRequest) -> CreateCallResult:
        self.requests.append(request)
        if self.fail_with:
            raise CallProviderError(self.fail_with, error_code="MOCK_FAILURE")

        self._counter += 1
        call_id = f"MOCK_CALL_{self._counter:06d}"
        return CreateCallResult(
            provider_call_id=call_id,
            created_at=datetime.now(timezone.utc),
            raw_response={"mock": True, "id": call_id, "to": request.phone},
        )

    async def create_call(self, request: CreateCallRequest) -> CreateCallResult:
        return self.create_call_sync(request)
