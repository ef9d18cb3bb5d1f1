"""
Vapi voice provider adapter.

Places outbound survey calls through the Vapi REST API. The survey's topic
and questions are passed as assistant variable values; the participant id
travels in the call metadata so every later webhook event can be correlated.
"""

from datetime import datetime, timezone
from typing import Any

import httpx

from surveyreach.shared.logging import get_logger
from surveyreach.telephony.config import VoiceConfig, get_voice_config
from surveyreach.telephony.interface import (
    CallInitiationError,
    CallTimeoutError,
    OutboundCallRequest,
    OutboundCallResponse,
    VoiceProvider,
)

logger = get_logger(__name__)


class VapiAdapter(VoiceProvider):
    """Vapi outbound call adapter using httpx."""

    def __init__(
        self,
        config: VoiceConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config or get_voice_config()
        self._http_client = http_client
        self._owns_client = http_client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._config.call_timeout_seconds)
            )
        return self._http_client

    async def aclose(self) -> None:
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    def build_payload(self, request: OutboundCallRequest) -> dict[str, Any]:
        """Build the Vapi create-call body."""
        cfg = self._config
        return {
            "type": "outboundPhoneCall",
            "phoneNumberId": cfg.phone_number_id,
            "assistantId": cfg.assistant_id,
            "customer": {"number": request.to},
            "metadata": {
                "surveyId": request.survey_id,
                "batchId": request.batch_id,
                "participantId": request.participant_id,
                "surveyTopic": request.survey_topic,
                **request.metadata,
            },
            "assistantOverrides": {
                "variableValues": {
                    "surveyTopic": request.survey_topic,
                    "surveyQuestions": "\n".join(request.question_lines),
                    "questionCount": str(len(request.question_lines)),
                    "firstMessage": cfg.first_message_template.format(topic=request.survey_topic),
                }
            },
        }

    async def place_call(self, request: OutboundCallRequest) -> OutboundCallResponse:
        """Create an outbound phone call."""
        cfg = self._config
        if not cfg.api_key or not cfg.assistant_id or not cfg.phone_number_id:
            raise CallInitiationError(
                message="Vapi credentials are not configured",
                error_code="NOT_CONFIGURED",
            )

        logger.info(
            "Initiating Vapi call",
            extra={
                "participant_id": request.participant_id,
                "survey_id": request.survey_id,
                "batch_id": request.batch_id,
            },
        )

        try:
            response = await self._get_client().post(
                cfg.api_url("/call"),
                json=self.build_payload(request),
                headers={
                    "Authorization": f"Bearer {cfg.api_key}",
                    "Idempotency-Key": request.idempotency_key,
                },
            )
        except httpx.TimeoutException as e:
            raise CallTimeoutError(
                message=f"Vapi did not respond: {e!s}",
                error_code="TIMEOUT",
            ) from e
        except httpx.HTTPError as e:
            logger.exception(
                "HTTP error during Vapi call initiation",
                extra={"participant_id": request.participant_id},
            )
            raise CallInitiationError(
                message=f"HTTP error: {e!s}",
                error_code="HTTP_ERROR",
            ) from e

        if response.status_code >= 400:
            error_data = _json_or_text(response)
            logger.error(
                "Vapi call initiation failed",
                extra={
                    "status_code": response.status_code,
                    "error": error_data,
                    "participant_id": request.participant_id,
                },
            )
            raise CallInitiationError(
                message=str(error_data.get("message", "Call initiation failed")),
                error_code=str(response.status_code),
                provider_response=error_data,
            )

        data = _json_or_text(response)
        call_id = data.get("id")
        if not call_id:
            raise CallInitiationError(
                message="Vapi response did not include a call id",
                error_code="MISSING_CALL_ID",
                provider_response=data,
            )

        return OutboundCallResponse(
            provider_call_id=str(call_id),
            status=str(data.get("status") or "queued"),
            created_at=_parse_timestamp(data.get("createdAt")),
            raw_response=data,
        )


def _json_or_text(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {"message": response.text}
    return data if isinstance(data, dict) else {"message": data}


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            pass
    return datetime.now(timezone.utc)
