"""
Vapi calling provider adapter.
"""

from datetime import datetime, timezone
from typing import Any

import httpx

from callrecovery.shared.logging import get_logger
from callrecovery.telephony.config import TelephonyConfig, get_telephony_config
from callrecovery.telephony.interface import (
    CallProvider,
    CallProviderError,
    CreateCallRequest,
    CreateCallResult,
)

logger = get_logger(__name__)


class VapiCallProvider(CallProvider):
    """Creates outbound calls through the Vapi REST API.

    The per-call system prompt is sent as an assistant override so one
    assistant can serve every merchant.
    """

    name = "vapi"

    def __init__(
        self,
        config: TelephonyConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config or get_telephony_config()
        self._http_client = http_client
        self._owns_client = http_client is None

    def is_configured(self) -> bool:
        return bool(self._config.api_key)

    def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._config.timeout_seconds),
            )
        return self._http_client

    async def aclose(self) -> None:
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    def _build_body(self, request: CreateCallRequest) -> dict[str, Any]:
        customer: dict[str, Any] = {"number": request.phone}
        if request.customer_name:
            customer["name"] = request.customer_name
        return {
            "phoneNumberId": request.phone_number_id,
            "assistantId": request.assistant_id,
            "customer": customer,
            "metadata": dict(request.metadata),
            "assistantOverrides": {
                "model": {
                    "messages": [{"role": "system", "content": request.system_prompt}],
                },
            },
        }

    async def create_call(self, request: CreateCallRequest) -> CreateCallResult:
        """Create an outbound call via ``POST /call``.

        Raises:
            CallProviderError: On non-2xx responses, transport failures or a
                response without a call id.
        """
        if not self._config.api_key:
            raise CallProviderError("Missing Vapi API key", error_code="CONFIG_ERROR")

        url = f"{self._config.base_url.rstrip('/')}/call"
        headers = {"Authorization": f"Bearer {self._config.api_key}"}

        logger.info(
            "Creating Vapi call",
            extra={
                "call_job_id": request.metadata.get("callJobId"),
                "checkout_id": request.metadata.get("checkoutId"),
            },
        )

        try:
            response = await self._get_client().post(url, json=self._build_body(request), headers=headers)
        except httpx.HTTPError as e:
            logger.exception(
                "HTTP error during Vapi call creation",
                extra={"call_job_id": request.metadata.get("callJobId")},
            )
            raise CallProviderError(
                message=f"HTTP error: {e!s}",
                error_code="HTTP_ERROR",
            ) from e

        data = self._safe_json(response)
        if response.status_code >= 400:
            logger.error(
                "Vapi call creation failed",
                extra={
                    "status_code": response.status_code,
                    "error": data,
                    "call_job_id": request.metadata.get("callJobId"),
                },
            )
            message = data.get("message") or data.get("error") or f"HTTP {response.status_code}"
            if isinstance(message, list):
                message = "; ".join(str(m) for m in message)
            raise CallProviderError(
                message=str(message),
                error_code=str(response.status_code),
                provider_response=data,
            )

        call_id = data.get("id")
        if not call_id:
            raise CallProviderError(
                message="Vapi response has no call id",
                error_code="BAD_RESPONSE",
                provider_response=data,
            )

        return CreateCallResult(
            provider_call_id=str(call_id),
            created_at=self._parse_created_at(data.get("createdAt")),
            raw_response=data,
        )

    @staticmethod
    def _safe_json(response: httpx.Response) -> dict[str, Any]:
        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError:
            return {"raw": response.text[:2000]}
        return data if isinstance(data, dict) else {"raw": data}

    @staticmethod
    def _parse_created_at(value: Any) -> datetime:
        if isinstance(value, str) and value:
            try:
                return datetime.fromisoformat(value.replace("Z", "+00:00"))
            except ValueError:
                pass
        return datetime.now(timezone.utc)
