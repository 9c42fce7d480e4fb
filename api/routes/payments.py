"""
Paystack payment webhook.
Confirms payments after verifying the HMAC-SHA512 signature of the raw body.
"""

import structlog
from fastapi import APIRouter, Depends, Header, Request

from config import settings
from middleware.error_handler import APIError, AuthenticationError, NotFoundError, ValidationError
from services.backend import Backend, get_backend
from services.payment_service import (
    InvalidPayloadError,
    PaymentNotFoundError,
    handle_event,
    parse_event,
    verify_paystack_signature,
)
from utils.metrics import track_webhook

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.post("/paystack")
async def paystack_webhook(
    request: Request,
    x_paystack_signature: str | None = Header(None),
    backend: Backend = Depends(get_backend),
) -> dict:
    """
    Handle Paystack events.

    Returns 200 for every verified event Paystack should stop retrying:
    confirmed payments, payments that were already confirmed and event
    types this service does not act on.
    """
    secret = settings.paystack_secret_key
    if not secret:
        track_webhook("paystack", "misconfigured")
        logger.error("paystack_secret_not_configured")
        raise APIError("Payment webhook is not configured", status_code=500, error_code="configuration_error")

    # Signature covers the exact bytes received, so read before any parsing
    body = await request.body()

    if not verify_paystack_signature(body, x_paystack_signature, secret):
        track_webhook("paystack", "invalid_signature")
        logger.warning("paystack_invalid_signature", has_signature=bool(x_paystack_signature))
        raise AuthenticationError("Invalid signature")

    try:
        event = parse_event(body)
    except InvalidPayloadError as e:
        track_webhook("paystack", "invalid_payload")
        logger.warning("paystack_invalid_payload", error=str(e))
        raise ValidationError("Invalid payload") from e

    logger.info("paystack_event_received", event_type=event.event, reference=event.data.reference)

    try:
        outcome = await handle_event(backend, event)
    except PaymentNotFoundError as e:
        track_webhook("paystack", "not_found")
        raise NotFoundError("Payment not found") from e

    track_webhook("paystack", outcome.value)
    return {"received": True, "outcome": outcome.value}
