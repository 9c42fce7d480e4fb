"""
WhatsApp voice-message pipeline.

ingest -> transcribe (task) -> reply (task)

The webhook only records the message and submits the transcription task;
everything slow or failure-prone runs on the task queue. Each step checks
what is already stored on the record so a retried task does not repeat
finished work.
"""

from datetime import datetime
from typing import Any, Optional

import structlog

from models.records import InboundVoiceWebhook, TranscriptionStatus, VoiceMessage
from services.backend import Backend, BackendError, get_backend
from services.cache_service import cache_service
from services.claude_service import FALLBACK_REPLY, claude_service
from services.deepgram_service import deepgram_service
from services.task_queue import Task, TaskQueue, task_queue
from services.twilio_service import twilio_service
from utils.helpers import mask_phone_number, normalize_whatsapp_number

logger = structlog.get_logger(__name__)

VOICE_TABLE = "whatsapp_voice_messages"
PROFILES_TABLE = "profiles"

TRANSCRIBE_TASK = "transcribe_voice_message"
SEND_RESPONSE_TASK = "send_voice_response"


class VoiceMessageNotFoundError(Exception):
    """No voice message with the given id."""


def _now() -> str:
    return datetime.utcnow().isoformat()


async def resolve_agent_id(backend: Backend, to_number: Optional[str]) -> Optional[str]:
    """
    Find the agent whose profile phone number received the message.

    Returns:
        Profile id, or None if no agent matches or the lookup fails
    """
    number = normalize_whatsapp_number(to_number)
    if not number:
        return None

    try:
        profile = await backend.select_one(PROFILES_TABLE, {"phone_number": number})
    except BackendError as e:
        logger.warning("agent_lookup_error", to=mask_phone_number(number), error=e.message)
        return None

    if profile is None:
        logger.info("agent_not_found_for_number", to=mask_phone_number(number))
        return None

    return profile["id"]


async def ingest_voice_webhook(
    backend: Backend,
    webhook: InboundVoiceWebhook,
    queue: TaskQueue = task_queue,
) -> Optional[dict[str, Any]]:
    """
    Record an inbound voice message and schedule its transcription.

    Args:
        backend: Backend collaborator
        webhook: Parsed Twilio callback
        queue: Task queue for the transcription step

    Returns:
        The stored record, or None when the message is not a voice note

    Raises:
        BackendError: If the record cannot be stored
    """
    if not webhook.is_voice_message:
        logger.info(
            "voice_webhook_skipped",
            num_media=webhook.num_media,
            content_type=webhook.media_content_type,
        )
        return None

    agent_id = await resolve_agent_id(backend, webhook.to_number)

    record = await backend.insert(
        VOICE_TABLE,
        {
            "message_sid": webhook.message_sid,
            "from_number": webhook.from_number,
            "to_number": webhook.to_number,
            "media_url": webhook.media_url,
            "media_content_type": webhook.media_content_type,
            "agent_id": agent_id,
            "transcription_status": TranscriptionStatus.PENDING.value,
            "response_sent": False,
        },
    )

    logger.info(
        "voice_message_stored",
        voice_message_id=record["id"],
        agent_id=agent_id,
        from_number=mask_phone_number(webhook.from_number),
    )

    if webhook.media_url:
        queue.submit(
            TRANSCRIBE_TASK,
            {"voice_message_id": record["id"], "media_url": webhook.media_url},
            task_id=f"transcribe:{record['id']}",
        )

    return record


async def get_voice_message(backend: Backend, voice_message_id: str) -> VoiceMessage:
    """Load a voice message or raise VoiceMessageNotFoundError."""
    row = await backend.select_one(VOICE_TABLE, {"id": voice_message_id})
    if row is None:
        raise VoiceMessageNotFoundError(voice_message_id)
    return VoiceMessage.model_validate(row)


async def list_voice_messages(backend: Backend, agent_id: Optional[str] = None) -> list[dict[str, Any]]:
    """Newest voice messages first, served from cache when possible."""
    key = cache_service.make_key(VOICE_TABLE, "list", agent_id)
    cached = await cache_service.get_json(key)
    if cached is not None:
        return cached

    generation = cache_service.generation(VOICE_TABLE)
    filters = {"agent_id": agent_id} if agent_id else None
    rows = await backend.select(VOICE_TABLE, filters, order_by="created_at", descending=True)
    await cache_service.set_json(VOICE_TABLE, key, rows, generation=generation)
    return rows


async def process_voice_message(
    backend: Backend,
    voice_message_id: str,
    media_url: str,
    queue: TaskQueue = task_queue,
) -> VoiceMessage:
    """
    Transcribe a stored voice message and prepare the reply.

    Raises:
        VoiceMessageNotFoundError: If the record is gone
        httpx.HTTPError, BackendError, anthropic.APIError: On provider failure
    """
    message = await get_voice_message(backend, voice_message_id)

    if message.transcription_status != TranscriptionStatus.COMPLETED or message.transcription is None:
        audio = await twilio_service.download_media(media_url)
        transcription = await deepgram_service.transcribe(
            audio,
            content_type=message.media_content_type or "audio/ogg",
        )
        await backend.update(
            VOICE_TABLE,
            {"id": voice_message_id},
            {
                "transcription": transcription,
                "transcription_status": TranscriptionStatus.COMPLETED.value,
                "updated_at": _now(),
            },
        )
        message.transcription = transcription
        message.transcription_status = TranscriptionStatus.COMPLETED
        logger.info("voice_message_transcribed", voice_message_id=voice_message_id)

    if message.response_text is None:
        reply = await claude_service.generate_voice_reply(message.transcription or "")
        await backend.update(
            VOICE_TABLE,
            {"id": voice_message_id},
            {"response_text": reply, "updated_at": _now()},
        )
        message.response_text = reply

    queue.submit(
        SEND_RESPONSE_TASK,
        {"voice_message_id": voice_message_id},
        task_id=f"send-response:{voice_message_id}",
    )
    return message


async def send_voice_response(backend: Backend, voice_message_id: str) -> bool:
    """
    Send the prepared reply back to the client over WhatsApp.

    Returns:
        True if a message was sent, False if it had already been sent
    """
    message = await get_voice_message(backend, voice_message_id)
    if message.response_sent:
        logger.info("voice_response_already_sent", voice_message_id=voice_message_id)
        return False

    if not message.from_number or not message.to_number:
        raise ValueError(f"voice message {voice_message_id} has no reply address")

    await twilio_service.send_message(
        from_number=message.to_number,
        to_number=message.from_number,
        body=message.response_text or FALLBACK_REPLY,
    )

    try:
        await backend.update(
            VOICE_TABLE,
            {"id": voice_message_id},
            {"response_sent": True, "updated_at": _now()},
        )
    except Exception as e:
        logger.error("voice_response_mark_sent_error", voice_message_id=voice_message_id, error=str(e))

    logger.info("voice_response_sent", voice_message_id=voice_message_id)
    return True


async def mark_transcription_failed(backend: Backend, voice_message_id: str) -> None:
    """Record that transcription gave up on a message."""
    await backend.update(
        VOICE_TABLE,
        {"id": voice_message_id},
        {"transcription_status": TranscriptionStatus.FAILED.value, "updated_at": _now()},
    )
    logger.warning("voice_message_transcription_failed", voice_message_id=voice_message_id)


# ============================================
# Task Handlers
# ============================================

async def _transcribe_task(payload: dict[str, Any]) -> None:
    await process_voice_message(get_backend(), payload["voice_message_id"], payload["media_url"])


async def _send_response_task(payload: dict[str, Any]) -> None:
    await send_voice_response(get_backend(), payload["voice_message_id"])


async def _transcribe_dead_letter(task: Task) -> None:
    await mark_transcription_failed(get_backend(), task.payload["voice_message_id"])


def register_voice_tasks(queue: TaskQueue = task_queue) -> None:
    """Register the voice pipeline handlers on a task queue."""
    queue.register(TRANSCRIBE_TASK, _transcribe_task)
    queue.register(SEND_RESPONSE_TASK, _send_response_task)
    queue.on_dead_letter(TRANSCRIBE_TASK, _transcribe_dead_letter)
