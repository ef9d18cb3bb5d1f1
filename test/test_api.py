"""
HTTP API tests against an isolated application instance.
"""

import json
from urllib.parse import parse_qs, urlparse

import pytest
from httpx import AsyncClient

from conftest import WEBHOOK_SECRET
from surveyreach.notifications.email.mock_provider import MockEmailProvider
from surveyreach.telephony.mock_adapter import MockVoiceProvider
from surveyreach.telephony.signature import compute_signature

SURVEY = {
    "id": "s_api",
    "topic": "Product Feedback",
    "questions": [
        {"text": "How likely are you to recommend us?", "type": "rating"},
        {"id": "improve", "text": "What should we improve?"},
    ],
    "start_date": "2026-03-02",
    "end_date": "2026-03-09",
    "timezone": "Europe/Rome",
}


async def create_survey(client: AsyncClient) -> dict:
    response = await client.post("/surveys", json=SURVEY)
    assert response.status_code == 201
    return response.json()


async def send_batch(client: AsyncClient, count: int = 3, **options) -> dict:
    body = {
        "recipients": [
            {"email": f"r{i}@example.com", "phone": f"+1555123{i:04d}"} for i in range(count)
        ],
        **options,
    }
    response = await client.post(f"/surveys/{SURVEY['id']}/batches", json=body)
    assert response.status_code == 201
    return response.json()


def token_from(link: str) -> str:
    return parse_qs(urlparse(link).query)["t"][0]


class TestHealth:
    @pytest.mark.asyncio
    async def test_health_and_correlation_header(self, client: AsyncClient):
        response = await client.get("/health", headers={"X-Correlation-ID": "abc-123"})

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}
        assert response.headers["X-Correlation-ID"] == "abc-123"

    @pytest.mark.asyncio
    async def test_correlation_id_is_generated(self, client: AsyncClient):
        response = await client.get("/health")

        assert response.headers["X-Correlation-ID"]


class TestSurveys:
    @pytest.mark.asyncio
    async def test_create_and_get(self, client: AsyncClient):
        created = await create_survey(client)

        assert [q["id"] for q in created["questions"]] == ["question_1", "improve"]

        response = await client.get(f"/surveys/{SURVEY['id']}")
        assert response.status_code == 200
        assert response.json()["topic"] == "Product Feedback"

    @pytest.mark.asyncio
    async def test_duplicate_id_rejected(self, client: AsyncClient):
        await create_survey(client)

        response = await client.post("/surveys", json=SURVEY)

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_unknown_survey(self, client: AsyncClient):
        response = await client.get("/surveys/nope")

        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_invalid_timezone_is_422(self, client: AsyncClient):
        response = await client.post("/surveys", json={"topic": "x", "timezone": "Mars/Base"})

        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_reminder_plan(self, client: AsyncClient):
        await create_survey(client)

        response = await client.get(f"/surveys/{SURVEY['id']}/reminder-plan")

        assert response.status_code == 200
        plan = response.json()
        assert plan["timezone"] == "Europe/Rome"
        assert [(r["date"], r["type"]) for r in plan["reminders"]] == [
            ("2026-03-05", "midpoint"),
            ("2026-03-09", "closing"),
        ]
        assert plan["reminders"][0]["due_at"].startswith("2026-03-05T08:00:00")


class TestBatches:
    @pytest.mark.asyncio
    async def test_send_batch_emails_invitations(
        self, client: AsyncClient, email_provider: MockEmailProvider
    ):
        await create_survey(client)

        body = await send_batch(client, count=2)

        assert body["sent"] == 2
        assert body["failed"] == 0
        assert body["batch"]["escalation_state"] == "waiting"
        assert len(email_provider.sent) == 2
        link = body["invitations"][0]["link"]
        assert link.startswith("https://surveys.example.com/survey/s_api?")

    @pytest.mark.asyncio
    async def test_send_to_unknown_survey(self, client: AsyncClient):
        response = await client.post(
            "/surveys/nope/batches", json={"recipients": [{"email": "a@example.com"}]}
        )

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_empty_recipients_rejected(self, client: AsyncClient):
        await create_survey(client)

        response = await client.post(f"/surveys/{SURVEY['id']}/batches", json={"recipients": []})

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_participants_and_stats(self, client: AsyncClient):
        await create_survey(client)
        first = await send_batch(client, count=2)
        await send_batch(client, count=3)
        batch_id = first["batch"]["id"]

        scoped = await client.get(
            f"/surveys/{SURVEY['id']}/participants", params={"batch_id": batch_id}
        )
        everyone = await client.get(f"/surveys/{SURVEY['id']}/participants")

        assert scoped.json()["total"] == 2
        assert everyone.json()["total"] == 5

        pid = first["invitations"][0]["participant_id"]
        one = await client.get(f"/surveys/{SURVEY['id']}/batches/{batch_id}/participants/{pid}")
        assert one.status_code == 200
        assert one.json()["status"] == "sent"

        stats = await client.get(f"/surveys/{SURVEY['id']}/stats")
        assert stats.json()["total"] == 5
        assert len(stats.json()["batches"]) == 2

    @pytest.mark.asyncio
    async def test_participant_in_wrong_batch_is_404(self, client: AsyncClient):
        await create_survey(client)
        first = await send_batch(client, count=1)
        second = await send_batch(client, count=1)
        pid = first["invitations"][0]["participant_id"]

        response = await client.get(
            f"/surveys/{SURVEY['id']}/batches/{second['batch']['id']}/participants/{pid}"
        )

        assert response.status_code == 404


class TestSubmit:
    @pytest.mark.asyncio
    async def test_submit_acknowledges_and_stops_escalation(
        self, client: AsyncClient, voice_provider: MockVoiceProvider
    ):
        await create_survey(client)
        batch = await send_batch(client, count=2, escalation_delay_minutes=0)
        token = token_from(batch["invitations"][0]["link"])

        response = await client.post("/submit", json={"token": token, "answers": {"q": 9}})

        assert response.status_code == 202
        assert response.json() == {
            "participantId": batch["invitations"][0]["participant_id"],
            "status": "responded",
            "firstResponse": True,
        }

        trigger = await client.post("/trigger-escalation", json={"surveyId": SURVEY["id"]})
        assert trigger.json()["successful"] == 1
        assert [c.participant_id for c in voice_provider.calls] == [
            batch["invitations"][1]["participant_id"]
        ]

    @pytest.mark.asyncio
    async def test_invalid_token_is_400(self, client: AsyncClient):
        response = await client.post("/submit", json={"token": "bogus", "answers": {}})

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "INVALID_TOKEN"

    @pytest.mark.asyncio
    async def test_missing_token_is_422(self, client: AsyncClient):
        response = await client.post("/submit", json={"answers": {}})

        assert response.status_code == 422


class TestEscalationEndpoints:
    @pytest.mark.asyncio
    async def test_trigger_single_batch(self, client: AsyncClient, voice_provider: MockVoiceProvider):
        await create_survey(client)
        first = await send_batch(client, count=2)
        await send_batch(client, count=2)

        response = await client.post(
            "/trigger-escalation",
            json={"surveyId": SURVEY["id"], "batchId": first["batch"]["id"]},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["successful"] == 2
        assert body["failed"] == 0
        assert body["batches"] == [first["batch"]["id"]]
        assert {d["batchId"] for d in body["details"]} == {first["batch"]["id"]}
        assert len(voice_provider.calls) == 2

    @pytest.mark.asyncio
    async def test_trigger_unknown_batch_is_404(self, client: AsyncClient):
        await create_survey(client)

        response = await client.post(
            "/trigger-escalation", json={"surveyId": SURVEY["id"], "batchId": "b_missing"}
        )

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_schedules(self, client: AsyncClient, clock):
        await create_survey(client)
        batch = await send_batch(client, count=2)
        clock.advance(minutes=20)

        response = await client.get("/schedules")

        assert response.status_code == 200
        body = response.json()
        assert body["schedulerStatus"] == "stopped"
        assert body["intervalSeconds"] == 60
        schedule = body["schedules"][0]
        assert schedule["batchId"] == batch["batch"]["id"]
        assert schedule["timeUntilDue"] == 40 * 60
        assert schedule["isDue"] is False
        assert schedule["pending"] == 2

    @pytest.mark.asyncio
    async def test_scheduler_process_runs_one_tick(
        self, client: AsyncClient, voice_provider: MockVoiceProvider, clock
    ):
        await create_survey(client)
        await send_batch(client, count=3)
        clock.advance(minutes=61)

        response = await client.post("/scheduler", json={"action": "process"})

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Tick processed"
        assert body["escalation"]["successful"] == 3
        assert body["staleFailed"] == 0
        assert len(voice_provider.calls) == 3

    @pytest.mark.asyncio
    async def test_scheduler_start_and_stop(self, client: AsyncClient):
        started = await client.post("/scheduler", json={"action": "start"})
        stopped = await client.post("/scheduler", json={"action": "stop"})

        assert started.json()["schedulerStatus"] == "running"
        assert stopped.json()["schedulerStatus"] == "stopped"

    @pytest.mark.asyncio
    async def test_scheduler_rejects_unknown_action(self, client: AsyncClient):
        response = await client.post("/scheduler", json={"action": "pause"})

        assert response.status_code == 422


class TestWebhookEndpoint:
    @pytest.mark.asyncio
    async def test_signed_event_completes_call(
        self, client: AsyncClient, voice_provider: MockVoiceProvider
    ):
        await create_survey(client)
        batch = await send_batch(client, count=1)
        await client.post("/trigger-escalation", json={"surveyId": SURVEY["id"]})
        call = voice_provider.get_last_call()
        raw = json.dumps(
            {
                "message": {
                    "type": "end-of-call-report",
                    "endedReason": "customer-ended-call",
                    "call": {"id": "MOCK_CALL_000001", "metadata": {"participantId": call.participant_id}},
                    "artifact": {"transcript": 'SURVEY_COMPLETE {"answers": {"question_1": "10"}}'},
                }
            }
        ).encode()

        response = await client.post(
            "/webhook",
            content=raw,
            headers={
                "Content-Type": "application/json",
                "X-Signature": compute_signature(WEBHOOK_SECRET, raw),
            },
        )

        assert response.status_code == 200
        assert response.json() == {"received": True, "outcome": "applied"}
        pid = batch["invitations"][0]["participant_id"]
        participant = await client.get(
            f"/surveys/{SURVEY['id']}/batches/{batch['batch']['id']}/participants/{pid}"
        )
        assert participant.json()["status"] == "call_completed"
        assert participant.json()["call_answers"] == {"question_1": "10"}

    @pytest.mark.asyncio
    async def test_vapi_signature_header_accepted(self, client: AsyncClient):
        raw = b'{"message": {"type": "speech-update"}}'

        response = await client.post(
            "/webhook",
            content=raw,
            headers={"X-Vapi-Signature": "sha256=" + compute_signature(WEBHOOK_SECRET, raw)},
        )

        assert response.status_code == 200
        assert response.json()["outcome"] == "ignored"

    @pytest.mark.asyncio
    async def test_unsigned_event_is_401(self, client: AsyncClient):
        response = await client.post("/webhook", content=b'{"message": {"type": "hang"}}')

        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}
