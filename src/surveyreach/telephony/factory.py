"""
Voice provider factory.

Single source of truth for configuration: VoiceConfig (pydantic-settings),
which loads from OS env + .env.
"""

from functools import lru_cache

from surveyreach.shared.logging import get_logger
from surveyreach.telephony.config import ProviderType, VoiceConfig, get_voice_config
from surveyreach.telephony.interface import VoiceProvider
from surveyreach.telephony.mock_adapter import MockVoiceProvider
from surveyreach.telephony.vapi_adapter import VapiAdapter

logger = get_logger(__name__)


def _mask(s: str, keep: int = 6) -> str:
    if not s:
        return ""
    if len(s) <= keep:
        return "*" * len(s)
    return f"{s[:keep]}***"


def create_voice_provider(config: VoiceConfig) -> VoiceProvider:
    """Create a voice provider for the configured type."""
    logger.info(
        "Voice config resolved",
        extra={
            "provider_type": config.provider_type.value,
            "api_base_url": config.api_base_url,
            "api_key": _mask(config.api_key),
            "assistant_id": config.assistant_id,
            "phone_number_id": config.phone_number_id,
            "call_timeout_seconds": config.call_timeout_seconds,
            "webhook_secret_set": bool(config.webhook_secret),
        },
    )

    if config.provider_type == ProviderType.VAPI:
        return VapiAdapter(config)
    if config.provider_type == ProviderType.MOCK:
        return MockVoiceProvider()
    raise ValueError(f"Unsupported voice provider_type: {config.provider_type}")


@lru_cache(maxsize=1)
def get_voice_provider() -> VoiceProvider:
    """Create and cache the voice provider using VoiceConfig."""
    return create_voice_provider(get_voice_config())
