"""
Mock voice provider for tests and local development.
"""

from datetime import datetime, timezone

import anyio

from surveyreach.shared.logging import get_logger
from surveyreach.telephony.interface import (
    CallInitiationError,
    OutboundCallRequest,
    OutboundCallResponse,
    VoiceProvider,
)

logger = get_logger(__name__)


class MockVoiceProvider(VoiceProvider):
    """Records call requests and returns sequential call ids."""

    def __init__(self) -> None:
        self._calls: list[OutboundCallRequest] = []
        self._next_call_id: int = 1
        self._should_fail: bool = False
        self._fail_error: str = "Mock failure"
        self._fail_code: str = "MOCK_ERROR"
        self._delay_seconds: float = 0.0

    def reset(self) -> None:
        self._calls.clear()
        self._next_call_id = 1
        self._should_fail = False
        self._fail_error = "Mock failure"
        self._fail_code = "MOCK_ERROR"
        self._delay_seconds = 0.0

    def configure_failure(
        self,
        should_fail: bool = True,
        error_message: str = "Mock failure",
        error_code: str = "MOCK_ERROR",
    ) -> None:
        self._should_fail = should_fail
        self._fail_error = error_message
        self._fail_code = error_code

    def configure_delay(self, seconds: float) -> None:
        """Delay every response; used to exercise call timeouts."""
        self._delay_seconds = seconds

    @property
    def calls(self) -> list[OutboundCallRequest]:
        return self._calls.copy()

    def calls_to(self, participant_id: str) -> list[OutboundCallRequest]:
        return [call for call in self._calls if call.participant_id == participant_id]

    def get_last_call(self) -> OutboundCallRequest | None:
        return self._calls[-1] if self._calls else None

    async def place_call(self, request: OutboundCallRequest) -> OutboundCallResponse:
        logger.info(
            "Mock: placing call",
            extra={"to": request.to, "participant_id": request.participant_id},
        )
        # Recorded before the outcome so attempts are visible even on failure.
        self._calls.append(request)

        if self._delay_seconds:
            await anyio.sleep(self._delay_seconds)

        if self._should_fail:
            raise CallInitiationError(
                message=self._fail_error,
                error_code=self._fail_code,
            )

        provider_call_id = f"MOCK_CALL_{self._next_call_id:06d}"
        self._next_call_id += 1
        return OutboundCallResponse(
            provider_call_id=provider_call_id,
            status="queued",
            created_at=datetime.now(timezone.utc),
            raw_response={
                "mock": True,
                "participant_id": request.participant_id,
                "provider_call_id": provider_call_id,
            },
        )
