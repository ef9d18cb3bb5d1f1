"""
Voice provider webhook events.

Provider payloads are parsed into a closed set of event variants. Anything
that is not recognized becomes ``UnknownEvent`` so schema drift on the
provider side is tolerated instead of failing the webhook.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from surveyreach.telephony.transcript import rebuild_transcript

CALL_ENDED_TYPES = frozenset({"end-of-call-report", "hang"})

# endedReason values meaning the respondent was never surveyed.
FAILED_END_REASONS = frozenset(
    {
        "customer-did-not-answer",
        "customer-busy",
        "twilio-failed-to-connect-call",
        "assistant-error",
        "pipeline-error",
    }
)


class CallMetadata(BaseModel):
    """Correlation data echoed back by the provider."""

    model_config = ConfigDict(frozen=True)

    survey_id: str | None = None
    batch_id: str | None = None
    participant_id: str | None = None


class _ProviderEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    event_type: str = Field(..., description="Raw provider message type")
    call_id: str | None = None
    metadata: CallMetadata = Field(default_factory=CallMetadata)
    raw_payload: dict[str, Any] = Field(default_factory=dict)


class CallEndedEvent(_ProviderEvent):
    """The call is over; carries the transcript when available."""

    kind: Literal["call_ended"] = "call_ended"
    transcript: str | None = None
    ended_reason: str | None = None

    @property
    def failed(self) -> bool:
        return self.ended_reason in FAILED_END_REASONS


class StatusUpdateEvent(_ProviderEvent):
    """Intermediate call status change (queued, ringing, in-progress...)."""

    kind: Literal["status_update"] = "status_update"
    status: str | None = None


class TranscriptEvent(_ProviderEvent):
    """Partial live transcript."""

    kind: Literal["transcript"] = "transcript"
    role: str | None = None
    transcript: str | None = None


class UnknownEvent(_ProviderEvent):
    """Any message type this service does not act on."""

    kind: Literal["unknown"] = "unknown"


ProviderEvent = CallEndedEvent | StatusUpdateEvent | TranscriptEvent | UnknownEvent


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _opt_str(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def _metadata(call: dict[str, Any]) -> CallMetadata:
    meta = _as_dict(call.get("metadata"))
    return CallMetadata(
        survey_id=_opt_str(meta.get("surveyId")),
        batch_id=_opt_str(meta.get("batchId")),
        participant_id=_opt_str(meta.get("participantId")),
    )


def _call_transcript(message: dict[str, Any], call: dict[str, Any]) -> str | None:
    artifact = _as_dict(message.get("artifact")) or _as_dict(call.get("artifact"))
    transcript = call.get("transcript") or message.get("transcript") or artifact.get("transcript")
    if isinstance(transcript, str) and transcript.strip():
        return transcript
    messages = artifact.get("messages")
    if isinstance(messages, list):
        rebuilt = rebuild_transcript(messages)
        if rebuilt:
            return rebuilt
    return None


def parse_provider_event(payload: Any) -> ProviderEvent:
    """Parse a decoded webhook body into a provider event.

    The body is ``{"message": {"type": ..., "call": {...}}}``; a bare message
    object and a top-level ``call`` are accepted as well.
    """
    root = _as_dict(payload)
    message = _as_dict(root.get("message")) or root
    call = _as_dict(message.get("call")) or _as_dict(root.get("call"))

    event_type = _opt_str(message.get("type")) or "unknown"
    common: dict[str, Any] = {
        "event_type": event_type,
        "call_id": _opt_str(call.get("id")),
        "metadata": _metadata(call),
        "raw_payload": root,
    }

    status = _opt_str(call.get("status")) or _opt_str(message.get("status"))
    if event_type in CALL_ENDED_TYPES or (event_type == "status-update" and status == "ended"):
        return CallEndedEvent(
            **common,
            transcript=_call_transcript(message, call),
            ended_reason=_opt_str(message.get("endedReason")) or _opt_str(call.get("endedReason")),
        )
    if event_type == "status-update":
        return StatusUpdateEvent(**common, status=status)
    if event_type == "transcript":
        return TranscriptEvent(
            **common,
            role=_opt_str(message.get("role")),
            transcript=_opt_str(message.get("transcript") or message.get("transcriptPart")),
        )
    return UnknownEvent(**common)
