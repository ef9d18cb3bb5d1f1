"""
FastAPI router for voice provider webhooks.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse

from surveyreach.dependencies import get_webhook_ingester
from surveyreach.telephony.webhooks.handler import WebhookIngester

router = APIRouter(tags=["webhooks"])


@router.post("/webhook")
async def receive_provider_event(
    request: Request,
    ingester: Annotated[WebhookIngester, Depends(get_webhook_ingester)],
    x_signature: Annotated[str | None, Header()] = None,
    x_vapi_signature: Annotated[str | None, Header()] = None,
) -> JSONResponse:
    """Receive a signed call event from the voice provider.

    The HMAC is computed over the exact request bytes, so the body is read
    raw rather than through a pydantic model.
    """
    raw_body = await request.body()
    result = await ingester.handle_provider_event(raw_body, x_signature or x_vapi_signature)
    return JSONResponse(status_code=result.status_code, content=result.body)
