"""
Voice call provider configuration.
"""

from enum import Enum
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ProviderType(str, Enum):
    """Supported voice provider types."""

    VAPI = "vapi"
    MOCK = "mock"


class VoiceConfig(BaseSettings):
    """Voice provider configuration from environment."""

    model_config = SettingsConfigDict(
        env_prefix="VOICE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Provider selection
    provider_type: ProviderType = Field(default=ProviderType.VAPI)

    # Provider credentials
    api_base_url: str = Field(default="https://api.vapi.ai")
    api_key: str = Field(default="")
    assistant_id: str = Field(default="")
    phone_number_id: str = Field(default="")

    # Upper bound on one outbound call request
    call_timeout_seconds: float = Field(default=30.0, gt=0, le=300)

    # Shared secret for HMAC-SHA256 webhook signatures. Empty rejects every event.
    webhook_secret: str = Field(default="")

    # Spoken greeting; {topic} is replaced with the survey topic.
    first_message_template: str = Field(
        default=(
            "Hello! I'm calling to conduct a brief survey about {topic}. "
            "This should only take a few minutes of your time. "
            "Are you available to answer a few questions?"
        ),
    )

    def api_url(self, path: str) -> str:
        return f"{self.api_base_url.rstrip('/')}{path}"


@lru_cache(maxsize=1)
def get_voice_config() -> VoiceConfig:
    """Return cached VoiceConfig loaded from OS env + .env."""
    return VoiceConfig()
