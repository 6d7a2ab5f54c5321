"""
Calling provider configuration.
"""

from enum import Enum

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ProviderType(str, Enum):
    """Supported calling provider types."""

    VAPI = "vapi"
    MOCK = "mock"


class TelephonyConfig(BaseSettings):
    """Calling provider configuration from environment."""

    model_config = SettingsConfigDict(
        env_prefix="VAPI_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    provider_type: ProviderType = Field(default=ProviderType.VAPI)

    api_key: str = Field(default="")
    base_url: str = Field(default="https://api.vapi.ai")

    # Used when a merchant's settings row has no identifiers of its own.
    assistant_id: str = Field(default="")
    phone_number_id: str = Field(default="")

    timeout_seconds: float = Field(default=30.0, gt=0, le=300)


def get_telephony_config() -> TelephonyConfig:
    return TelephonyConfig()
