"""
Models package initialization.
"""

from .records import (
    ChangeEvent,
    ChangeType,
    DuplicateImage,
    ImageHashRecord,
    InboundVoiceWebhook,
    InvitationEmailRequest,
    Notification,
    Payment,
    PaymentStatus,
    PaystackEvent,
    TranscriptionStatus,
    VoiceMessage,
)

__all__ = [
    "ChangeEvent",
    "ChangeType",
    "DuplicateImage",
    "ImageHashRecord",
    "InboundVoiceWebhook",
    "InvitationEmailRequest",
    "Notification",
    "Payment",
    "PaymentStatus",
    "PaystackEvent",
    "TranscriptionStatus",
    "VoiceMessage",
]
