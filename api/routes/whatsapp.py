"""
WhatsApp voice message routes.
Receives Twilio inbound-message callbacks and serves stored voice messages
to the dashboard.
"""

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import PlainTextResponse

from middleware.error_handler import NotFoundError
from models.records import InboundVoiceWebhook
from services.backend import Backend, get_backend
from services.voice_message_service import (
    VoiceMessageNotFoundError,
    get_voice_message,
    ingest_voice_webhook,
    list_voice_messages,
)
from utils.helpers import mask_phone_number
from utils.metrics import track_webhook

logger = structlog.get_logger(__name__)

router = APIRouter()
dashboard_router = APIRouter()


@router.post("/voice", response_class=PlainTextResponse)
async def voice_webhook(request: Request, backend: Backend = Depends(get_backend)) -> str:
    """
    Handle a Twilio WhatsApp inbound message.

    Only audio notes are stored; transcription and the reply run on the
    task queue so Twilio gets its answer immediately.
    """
    form = await request.form()
    webhook = InboundVoiceWebhook.from_form(dict(form))

    logger.info(
        "voice_webhook_received",
        message_sid=webhook.message_sid,
        from_number=mask_phone_number(webhook.from_number),
        num_media=webhook.num_media,
    )

    record = await ingest_voice_webhook(backend, webhook)
    track_webhook("twilio", "stored" if record else "skipped")

    return "OK"


@dashboard_router.get("/voice-messages")
async def voice_messages(
    agent_id: Optional[str] = Query(None),
    backend: Backend = Depends(get_backend),
) -> list[dict]:
    """Voice messages, newest first, optionally for one agent."""
    return await list_voice_messages(backend, agent_id)


@dashboard_router.get("/voice-messages/{voice_message_id}")
async def voice_message_detail(voice_message_id: str, backend: Backend = Depends(get_backend)) -> dict:
    """A single voice message."""
    try:
        message = await get_voice_message(backend, voice_message_id)
    except VoiceMessageNotFoundError as e:
        raise NotFoundError("Voice message not found") from e

    return message.model_dump(mode="json")
