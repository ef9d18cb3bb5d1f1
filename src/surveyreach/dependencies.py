"""
FastAPI dependencies.

Services are built once per application by ``create_app`` and stored on
``app.state.services``; these helpers hand them to route handlers.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from surveyreach.config import Settings
from surveyreach.participants.registry import BatchRegistry
from surveyreach.reminders.service import ReminderService
from surveyreach.responses.service import ResponseIngester
from surveyreach.telephony.webhooks.handler import WebhookIngester

if TYPE_CHECKING:
    from surveyreach.escalation.scheduler import EscalationScheduler


@dataclass
class ServiceContainer:
    """Per-application service instances."""

    settings: Settings
    session_factory: async_sessionmaker[AsyncSession]
    registry: BatchRegistry
    reminders: ReminderService
    responses: ResponseIngester
    webhooks: WebhookIngester
    scheduler: "EscalationScheduler"


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


def get_session_factory(request: Request) -> async_sessionmaker[AsyncSession]:
    return get_services(request).session_factory


def get_registry(request: Request) -> BatchRegistry:
    return get_services(request).registry


def get_reminder_service(request: Request) -> ReminderService:
    return get_services(request).reminders


def get_response_ingester(request: Request) -> ResponseIngester:
    return get_services(request).responses


def get_webhook_ingester(request: Request) -> WebhookIngester:
    return get_services(request).webhooks


def get_scheduler(request: Request) -> "EscalationScheduler":
    return get_services(request).scheduler
