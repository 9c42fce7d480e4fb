"""
Paystack payment confirmation.
Verifies webhook signatures and applies charge.success events to the
payments table. Payment confirmation is the critical path; the user
notification that follows it is best-effort.
"""

import hashlib
import hmac
import json
from enum import Enum
from typing import Optional

import structlog
from pydantic import ValidationError as PydanticValidationError

from models.records import PaymentStatus, PaystackEvent
from services.backend import Backend
from services.notification_service import notification_service

logger = structlog.get_logger(__name__)

CHARGE_SUCCESS = "charge.success"


class InvalidPayloadError(Exception):
    """Webhook body is not a JSON Paystack event."""


class PaymentNotFoundError(Exception):
    """No payment row matches the event reference."""

    def __init__(self, reference: Optional[str]):
        self.reference = reference
        super().__init__(f"payment not found for reference {reference}")


class PaymentOutcome(str, Enum):
    """What a webhook delivery did."""
    MARKED_PAID = "marked_paid"
    ALREADY_PAID = "already_paid"
    IGNORED = "ignored"


def compute_paystack_signature(body: bytes, secret: str) -> str:
    """Hex HMAC-SHA512 of the raw body keyed with the Paystack secret."""
    return hmac.new(secret.encode(), body, hashlib.sha512).hexdigest()


def verify_paystack_signature(body: bytes, signature: Optional[str], secret: str) -> bool:
    """
    Check the x-paystack-signature header against the raw body.

    Args:
        body: Raw request body, exactly as received
        signature: Header value (hex)
        secret: Paystack secret key

    Returns:
        True only if the signature matches
    """
    if not signature or not secret:
        return False

    expected = compute_paystack_signature(body, secret)
    return hmac.compare_digest(expected.encode(), signature.encode())


def parse_event(body: bytes) -> PaystackEvent:
    """Parse a verified body into a PaystackEvent."""
    try:
        data = json.loads(body)
    except (ValueError, UnicodeDecodeError) as e:
        raise InvalidPayloadError("body is not valid JSON") from e

    if not isinstance(data, dict):
        raise InvalidPayloadError("body is not a JSON object")

    try:
        return PaystackEvent.model_validate(data)
    except PydanticValidationError as e:
        raise InvalidPayloadError("body is not a Paystack event") from e


async def handle_event(backend: Backend, event: PaystackEvent) -> PaymentOutcome:
    """
    Apply a verified Paystack event.

    The status flip is a compare-and-set on the status that was read, so of
    two concurrent deliveries only the one whose update matches a row
    notifies the user.

    Raises:
        PaymentNotFoundError: If a charge.success references an unknown payment
        BackendError: If reading or updating the payment fails
    """
    if event.event != CHARGE_SUCCESS:
        logger.info("paystack_event_ignored", event_type=event.event)
        return PaymentOutcome.IGNORED

    reference = event.data.reference
    if not reference:
        raise PaymentNotFoundError(reference)

    row = await backend.select_one("payments", {"transaction_id": reference})
    if row is None:
        logger.warning("payment_not_found", reference=reference)
        raise PaymentNotFoundError(reference)

    # Rows are read loosely: amount is whatever the dashboard stored
    payment_id = row.get("id")
    current_status = row.get("status")

    if current_status == PaymentStatus.PAID.value:
        logger.info("payment_already_paid", reference=reference, payment_id=payment_id)
        return PaymentOutcome.ALREADY_PAID

    filters = {"transaction_id": reference}
    if current_status is not None:
        filters["status"] = current_status

    updated = await backend.update("payments", filters, {"status": PaymentStatus.PAID.value})
    if not updated:
        logger.info("payment_paid_concurrently", reference=reference, payment_id=payment_id)
        return PaymentOutcome.ALREADY_PAID

    logger.info("payment_marked_paid", reference=reference, payment_id=payment_id)

    # Paystack reports the charged amount in kobo
    await notification_service.notify_payment_success(backend, row.get("user_id"), event.data.amount)

    return PaymentOutcome.MARKED_PAID
