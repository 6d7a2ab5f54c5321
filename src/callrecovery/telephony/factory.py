"""
Calling provider factory.

Configuration always comes from ``TelephonyConfig``; nothing here reads
``VAPI_*`` variables directly.
"""

from functools import lru_cache

from callrecovery.shared.logging import get_logger
from callrecovery.telephony.config import ProviderType, TelephonyConfig
from callrecovery.telephony.config import get_telephony_config as _load_telephony_config
from callrecovery.telephony.interface import CallProvider
from callrecovery.telephony.mock_adapter import MockCallProvider
from callrecovery.telephony.vapi_adapter import VapiCallProvider

logger = get_logger(__name__)


def _mask(value: str, keep: int = 6) -> str:
    if not value:
        return ""
    if len(value) <= keep:
        return "*" * len(value)
    return f"{value[:keep]}***"


@lru_cache(maxsize=1)
def get_telephony_config() -> TelephonyConfig:
    return _load_telephony_config()


@lru_cache(maxsize=1)
def get_call_provider() -> CallProvider:
    """Create and cache the calling provider for this process."""
    cfg = get_telephony_config()

    logger.info(
        "Calling provider config resolved",
        extra={
            "provider_type": cfg.provider_type.value,
            "api_key": _mask(cfg.api_key),
            "base_url": cfg.base_url,
            "timeout_seconds": cfg.timeout_seconds,
        },
    )

    if cfg.provider_type == ProviderType.VAPI:
        return VapiCallProvider(cfg)

    if cfg.provider_type == ProviderType.MOCK:
        return MockCallProvider()

    raise ValueError(f"Unsupported provider_type: {cfg.provider_type}")
