"""
OpenAI chat-completions summarizer.
"""

import asyncio
from typing import Protocol

import httpx

from callrecovery.llm.config import LLMConfig, get_llm_config
from callrecovery.llm.models import LLMProviderError
from callrecovery.llm.prompts import build_summary_messages
from callrecovery.shared.logging import get_logger

logger = get_logger(__name__)


class TranscriptSummarizer(Protocol):
    """Protocol for transcript summarizers."""

    async def summarize(self, transcript: str, ended_reason: str | None = None) -> str:
        """Return model text expected to contain the analysis JSON."""
        ...

    async def aclose(self) -> None:
        """Release network resources."""
        ...


class OpenAISummarizer:
    """Summarises call transcripts through ``/chat/completions``.

    Transport errors and 429/5xx responses are retried with a linear backoff;
    anything else raises ``LLMProviderError`` immediately.
    """

    def __init__(
        self,
        config: LLMConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
        backoff_seconds: float = 1.0,
    ) -> None:
        self._config = config or get_llm_config()
        self._http_client = http_client
        self._owns_client = http_client is None
        self._backoff_seconds = backoff_seconds
        self._chat_endpoint = f"{self._config.base_url.rstrip('/')}/chat/completions"

    def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._config.timeout_seconds)
        return self._http_client

    async def aclose(self) -> None:
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def _post_once(self, payload: dict) -> str:
        headers = {
            "Authorization": f"Bearer {self._config.api_key}",
            "Content-Type": "application/json",
        }
        try:
            r = await self._get_client().post(self._chat_endpoint, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise LLMProviderError(f"HTTP error: {e!s}", retryable=True) from e

        if r.status_code != 200:
            raise LLMProviderError(
                f"OpenAI error {r.status_code}",
                status_code=r.status_code,
                retryable=r.status_code == 429 or r.status_code >= 500,
            )

        try:
            return r.json()["choices"][0]["message"]["content"] or ""
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise LLMProviderError("Unexpected OpenAI response shape") from e

    async def summarize(self, transcript: str, ended_reason: str | None = None) -> str:
        """Summarise one transcript.

        Args:
            transcript: Full call transcript.
            ended_reason: Provider's reason for the call ending.

        Returns:
            Raw model text, expected to hold one JSON object.

        Raises:
            LLMProviderError: When the backend keeps failing or answers badly.
        """
        payload = {
            "model": self._config.model,
            "messages": [
                {"role": m.role.value, "content": m.content}
                for m in build_summary_messages(transcript, ended_reason)
            ],
            "temperature": self._config.temperature,
            "max_tokens": self._config.max_tokens,
            "response_format": {"type": "json_object"},
        }

        attempt = 0
        while True:
            try:
                return await self._post_once(payload)
            except LLMProviderError as e:
                if not e.retryable or attempt >= self._config.max_retries:
                    raise
                attempt += 1
                logger.warning(
                    "Summarizer request failed, retrying",
                    extra={"attempt": attempt, "status_code": e.status_code},
                )
                await asyncio.sleep(self._backoff_seconds * attempt)


def get_summarizer(config: LLMConfig | None = None) -> TranscriptSummarizer | None:
    """Summarizer for this process, or None when summarisation is off."""
    config = config or get_llm_config()
    if not config.enabled or not config.api_key:
        return None
    return OpenAISummarizer(config)
