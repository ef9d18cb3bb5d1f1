"""
Email provider configuration.
"""

from enum import Enum
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class EmailProviderType(str, Enum):
    """Supported email provider types."""

    SMTP = "smtp"
    MOCK = "mock"


class EmailConfig(BaseSettings):
    """Email transport configuration from environment."""

    model_config = SettingsConfigDict(
        env_prefix="EMAIL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    provider_type: EmailProviderType = Field(default=EmailProviderType.SMTP)

    # SMTP settings
    smtp_host: str = Field(default="localhost")
    smtp_port: int = Field(default=587, ge=1, le=65535)
    smtp_username: str | None = Field(default=None)
    smtp_password: str | None = Field(default=None)
    smtp_use_tls: bool = Field(default=True)

    # Default sender
    from_email: str = Field(default="noreply@example.com")
    from_name: str = Field(default="Survey Team")

    send_timeout_seconds: float = Field(default=30.0, gt=0, le=300)

    @property
    def default_sender(self) -> str:
        return f"{self.from_name} <{self.from_email}>"


@lru_cache(maxsize=1)
def get_email_config() -> EmailConfig:
    """Return cached EmailConfig loaded from OS env + .env."""
    return EmailConfig()
