"""
Email provider interface and data types.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class EmailMessage:
    """Email message to be sent."""

    to_email: str
    subject: str
    body_html: str
    body_text: str | None = None
    from_email: str | None = None
    reply_to: str | None = None
    headers: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class EmailResult:
    """Result of an email send operation."""

    success: bool
    provider_message_id: str | None = None
    error_message: str | None = None
    timestamp: datetime = field(default_factory=_now)


class EmailProvider(ABC):
    """Abstract interface for email providers.

    Implementations never raise for delivery problems; they report them
    through ``EmailResult(success=False)``.
    """

    @abstractmethod
    async def send(self, message: EmailMessage) -> EmailResult:
        """Send an email message.

        Args:
            message: The email message to send.

        Returns:
            EmailResult with success status and provider details.
        """

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if the email provider is reachable."""
