"""
Tests for the Vapi calling provider, using httpx.MockTransport.
"""

import json

import httpx
import pytest

from callrecovery.telephony.config import TelephonyConfig
from callrecovery.telephony.interface import CallProviderError, CreateCallRequest
from callrecovery.telephony.vapi_adapter import VapiCallProvider


@pytest.fixture
def call_request() -> CreateCallRequest:
    return CreateCallRequest(
        phone="+15550001111",
        assistant_id="asst_1",
        phone_number_id="pn_1",
        system_prompt="Be nice.",
        customer_name="Ada",
        metadata={"shop": "demo-shop", "callJobId": "job-1", "checkoutId": "chk-1"},
    )


def provider_for(handler, api_key: str = "vapi-key") -> VapiCallProvider:
    config = TelephonyConfig(api_key=api_key, base_url="https://vapi.test/")
    return VapiCallProvider(config, http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


@pytest.mark.asyncio
async def test_create_call_posts_expected_body(call_request: CreateCallRequest) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201, json={"id": "call_abc", "createdAt": "2025-01-01T10:00:00Z"})

    result = await provider_for(handler).create_call(call_request)

    assert result.provider_call_id == "call_abc"
    assert result.created_at.year == 2025
    [request] = seen
    assert str(request.url) == "https://vapi.test/call"
    assert request.headers["authorization"] == "Bearer vapi-key"
    body = json.loads(request.content)
    assert body["phoneNumberId"] == "pn_1"
    assert body["assistantId"] == "asst_1"
    assert body["customer"] == {"number": "+15550001111", "name": "Ada"}
    assert body["metadata"]["callJobId"] == "job-1"
    assert body["assistantOverrides"]["model"]["messages"] == [{"role": "system", "content": "Be nice."}]


@pytest.mark.asyncio
async def test_error_status_raises(call_request: CreateCallRequest) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"message": ["phoneNumberId must be a UUID", "bad number"]})

    with pytest.raises(CallProviderError) as exc_info:
        await provider_for(handler).create_call(call_request)

    assert exc_info.value.error_code == "400"
    assert str(exc_info.value) == "phoneNumberId must be a UUID; bad number"


@pytest.mark.asyncio
async def test_missing_call_id_raises(call_request: CreateCallRequest) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"status": "queued"})

    with pytest.raises(CallProviderError) as exc_info:
        await provider_for(handler).create_call(call_request)
    assert exc_info.value.error_code == "BAD_RESPONSE"


@pytest.mark.asyncio
async def test_transport_error_raises(call_request: CreateCallRequest) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(CallProviderError) as exc_info:
        await provider_for(handler).create_call(call_request)
    assert exc_info.value.error_code == "HTTP_ERROR"


@pytest.mark.asyncio
async def test_missing_api_key(call_request: CreateCallRequest) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    provider = provider_for(handler, api_key="")

    assert provider.is_configured() is False
    with pytest.raises(CallProviderError) as exc_info:
        await provider.create_call(call_request)
    assert exc_info.value.error_code == "CONFIG_ERROR"
