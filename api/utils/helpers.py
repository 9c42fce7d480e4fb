"""
Utility helper functions.
Common utilities used across the application.
"""

import re
from typing import Optional

import phonenumbers
from phonenumbers import NumberParseException

WHATSAPP_PREFIX = "whatsapp:"


def normalize_whatsapp_number(number: Optional[str]) -> Optional[str]:
    """
    Strip the Twilio channel prefix from a WhatsApp address and format it as E.164.

    Args:
        number: Address such as "whatsapp:+234 803 123 4567"

    Returns:
        Bare number ("+2348031234567"), or None if empty
    """
    if not number:
        return None

    cleaned = number.strip()
    if cleaned.lower().startswith(WHATSAPP_PREFIX):
        cleaned = cleaned[len(WHATSAPP_PREFIX):]

    # Remove common formatting characters
    cleaned = re.sub(r"[\s\-\(\)\.]+", "", cleaned)
    if not cleaned:
        return None

    try:
        parsed = phonenumbers.parse(cleaned, None)
        if phonenumbers.is_valid_number(parsed):
            return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)
    except NumberParseException:
        pass

    return cleaned


def mask_phone_number(phone: Optional[str]) -> str:
    """
    Mask phone number for logging (show only last 4 digits).

    Args:
        phone: Full phone number

    Returns:
        Masked phone number
    """
    if not phone or len(phone) < 4:
        return "****"
    return "*" * (len(phone) - 4) + phone[-4:]


def mask_email(email: str) -> str:
    """Mask the local part of an email address for logging."""
    local, _, domain = email.partition("@")
    if not domain:
        return "***"
    return f"{local[:1]}***@{domain}"


def format_naira(amount_kobo: int) -> str:
    """Format an amount in kobo as naira with two decimals."""
    return f"NGN {amount_kobo / 100:.2f}"


def truncate_text(text: str, max_length: int = 160, suffix: str = "...") -> str:
    """
    Truncate text to maximum length with suffix.

    Args:
        text: Text to truncate
        max_length: Maximum length including suffix
        suffix: Suffix to add when truncating

    Returns:
        Truncated text
    """
    if len(text) <= max_length:
        return text

    return text[: max_length - len(suffix)].rsplit(" ", 1)[0] + suffix
