"""
Utils package initialization.
"""

from .helpers import (
    format_naira,
    mask_email,
    mask_phone_number,
    normalize_whatsapp_number,
    truncate_text,
)
from .metrics import track_duplicate_check, track_request, track_task, track_webhook

__all__ = [
    "track_request",
    "track_webhook",
    "track_task",
    "track_duplicate_check",
    "normalize_whatsapp_number",
    "mask_phone_number",
    "mask_email",
    "format_naira",
    "truncate_text",
]
