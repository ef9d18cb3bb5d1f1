"""
Email provider factory.
"""

from functools import lru_cache

from surveyreach.notifications.email.config import EmailConfig, EmailProviderType, get_email_config
from surveyreach.notifications.email.interface import EmailProvider
from surveyreach.notifications.email.mock_provider import MockEmailProvider
from surveyreach.notifications.email.smtp_provider import SMTPEmailProvider
from surveyreach.shared.logging import get_logger

logger = get_logger(__name__)


def create_email_provider(config: EmailConfig) -> EmailProvider:
    """Create an email provider for the configured type."""
    logger.info(
        "Email config resolved",
        extra={
            "provider_type": config.provider_type.value,
            "smtp_host": config.smtp_host,
            "smtp_port": config.smtp_port,
            "from_email": config.from_email,
        },
    )
    if config.provider_type == EmailProviderType.SMTP:
        return SMTPEmailProvider(config)
    if config.provider_type == EmailProviderType.MOCK:
        return MockEmailProvider()
    raise ValueError(f"Unsupported email provider_type: {config.provider_type}")


@lru_cache(maxsize=1)
def get_email_provider() -> EmailProvider:
    """Create and cache the email provider using EmailConfig."""
    return create_email_provider(get_email_config())
