"""
Mock email provider for tests and local development.
"""

from surveyreach.notifications.email.interface import EmailMessage, EmailProvider, EmailResult
from surveyreach.shared.logging import get_logger

logger = get_logger(__name__)


class MockEmailProvider(EmailProvider):
    """Records messages instead of sending them."""

    def __init__(self) -> None:
        self._sent: list[EmailMessage] = []
        self._failing: set[str] = set()
        self._fail_all = False
        self._fail_error = "Mock failure"
        self._next_id = 1

    def reset(self) -> None:
        self._sent.clear()
        self._failing.clear()
        self._fail_all = False
        self._next_id = 1

    def configure_failure(
        self,
        should_fail: bool = True,
        error_message: str = "Mock failure",
        recipients: list[str] | None = None,
    ) -> None:
        """Fail every send, or only sends to the given recipients."""
        self._fail_error = error_message
        if recipients:
            if should_fail:
                self._failing.update(recipients)
            else:
                self._failing.difference_update(recipients)
        else:
            self._fail_all = should_fail

    @property
    def sent(self) -> list[EmailMessage]:
        return self._sent.copy()

    def sent_to(self, email: str) -> list[EmailMessage]:
        return [message for message in self._sent if message.to_email == email]

    async def send(self, message: EmailMessage) -> EmailResult:
        logger.info("Mock: sending email", extra={"to_email": message.to_email})
        if self._fail_all or message.to_email in self._failing:
            return EmailResult(success=False, error_message=self._fail_error)

        self._sent.append(message)
        message_id = f"MOCK_EMAIL_{self._next_id:06d}"
        self._next_id += 1
        return EmailResult(success=True, provider_message_id=message_id)

    async def health_check(self) -> bool:
        return True
