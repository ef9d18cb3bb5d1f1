"""
Voice call provider interface definition.

A provider accepts or rejects an outbound call request. The outcome of an
accepted call arrives later through signed webhook events.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class OutboundCallRequest:
    """Request to place one survey call."""

    to: str
    participant_id: str
    survey_id: str
    batch_id: str
    survey_topic: str
    question_lines: tuple[str, ...] = ()
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def idempotency_key(self) -> str:
        return self.participant_id


@dataclass(frozen=True)
class OutboundCallResponse:
    """Provider acceptance of an outbound call."""

    provider_call_id: str
    status: str
    created_at: datetime
    raw_response: dict[str, Any] = field(default_factory=dict)


class VoiceProviderError(Exception):
    """Base exception for voice provider errors."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        provider_response: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.provider_response = provider_response or {}


class CallInitiationError(VoiceProviderError):
    """The provider rejected the call request."""


class CallTimeoutError(VoiceProviderError):
    """The provider did not answer the call request in time."""


class VoiceProvider(ABC):
    """Abstract interface for outbound voice call providers."""

    @abstractmethod
    async def place_call(self, request: OutboundCallRequest) -> OutboundCallResponse:
        """Place an outbound call.

        Raises:
            CallInitiationError: If the provider rejected the request.
            CallTimeoutError: If the provider did not respond in time.
        """

    async def aclose(self) -> None:
        """Release provider resources."""
