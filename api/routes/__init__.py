"""Routes package initialization."""

from routes import health, invitations, payments, properties, whatsapp

__all__ = ["health", "invitations", "payments", "properties", "whatsapp"]
