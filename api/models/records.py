"""
Record and payload models for the webhook service.
Pydantic models for backend rows, provider payloads and API responses.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class PaymentStatus(str, Enum):
    """Payment lifecycle states."""
    PENDING = "Pending"
    PAID = "Paid"
    FAILED = "Failed"


class TranscriptionStatus(str, Enum):
    """Transcription states of a voice message."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class ChangeType(str, Enum):
    """Kinds of row change published on the change feed."""
    INSERT = "INSERT"
    UPDATE = "UPDATE"


class InvitationRole(str, Enum):
    """Roles an admin invitation can grant."""
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


# ============================================
# Backend Rows
# ============================================

class Payment(BaseModel):
    """Row of the payments table."""

    model_config = ConfigDict(extra="ignore")

    id: str
    transaction_id: str
    amount: float = Field(..., description="Amount in naira as entered on the dashboard")
    status: PaymentStatus = PaymentStatus.PENDING
    user_id: Optional[str] = None
    payment_method: Optional[str] = None
    created_at: Optional[datetime] = None


class Notification(BaseModel):
    """Row inserted into the notifications table."""

    title: str
    description: str
    type: str
    user_id: Optional[str] = None
    read: bool = False


class VoiceMessage(BaseModel):
    """Row of the whatsapp_voice_messages table."""

    model_config = ConfigDict(extra="ignore")

    id: str
    message_sid: Optional[str] = None
    from_number: Optional[str] = None
    to_number: Optional[str] = None
    media_url: Optional[str] = None
    media_content_type: Optional[str] = None
    agent_id: Optional[str] = None
    transcription: Optional[str] = None
    transcription_status: TranscriptionStatus = TranscriptionStatus.PENDING
    response_text: Optional[str] = None
    response_sent: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ImageHashRecord(BaseModel):
    """Row of the property_image_hashes table. Never updated once stored."""

    model_config = ConfigDict(frozen=True)

    property_id: str
    agent_id: str
    image_hash: str
    image_url: Optional[str] = None
    hash_algorithm: str = "sha256"
    file_size: Optional[int] = None
    similarity_score: float = 1.0


class DuplicateImage(BaseModel):
    """Row returned by the detect_image_duplicates procedure."""

    model_config = ConfigDict(extra="ignore")

    property_id: str
    agent_id: str
    image_hash: str
    similarity_score: float
    created_at: Optional[datetime] = None


# ============================================
# Provider Payloads
# ============================================

class PaystackEventData(BaseModel):
    """The data object of a Paystack event."""

    model_config = ConfigDict(extra="allow")

    reference: Optional[str] = None
    amount: int = 0
    customer: dict[str, Any] = Field(default_factory=dict)


class PaystackEvent(BaseModel):
    """Paystack webhook event envelope."""

    model_config = ConfigDict(extra="allow")

    event: str
    data: PaystackEventData = Field(default_factory=PaystackEventData)


class InboundVoiceWebhook(BaseModel):
    """Twilio WhatsApp inbound message callback (form-encoded)."""

    message_sid: Optional[str] = None
    from_number: Optional[str] = None
    to_number: Optional[str] = None
    media_url: Optional[str] = None
    media_content_type: Optional[str] = None
    num_media: int = 0

    @classmethod
    def from_form(cls, form: dict[str, Any]) -> "InboundVoiceWebhook":
        """Build from Twilio form fields. Unparseable NumMedia counts as zero."""
        try:
            num_media = int(form.get("NumMedia") or 0)
        except (TypeError, ValueError):
            num_media = 0

        return cls(
            message_sid=form.get("MessageSid"),
            from_number=form.get("From"),
            to_number=form.get("To"),
            media_url=form.get("MediaUrl0") or None,
            media_content_type=form.get("MediaContentType0") or None,
            num_media=num_media,
        )

    @property
    def is_voice_message(self) -> bool:
        """Only audio media is processed."""
        return self.num_media > 0 and "audio" in (self.media_content_type or "")


class InvitationEmailRequest(BaseModel):
    """Request body of the invitation email endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    email: EmailStr
    role: str
    invitation_token: str = Field(..., alias="invitationToken", min_length=1)
    inviter_name: Optional[str] = Field(None, alias="inviterName")

    @property
    def role_label(self) -> str:
        return "Super Admin" if self.role == InvitationRole.SUPER_ADMIN.value else "Admin"


# ============================================
# Change Feed
# ============================================

class ChangeEvent(BaseModel):
    """A row change published after a successful backend write."""

    table: str
    event_type: ChangeType
    record: dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=datetime.utcnow)


# ============================================
# API Response Models
# ============================================

class DuplicateCheckResponse(BaseModel):
    """Response of a duplicate image check."""

    image_hash: str
    is_duplicate: bool
    duplicates: list[DuplicateImage] = Field(default_factory=list)


class ImageUploadResponse(BaseModel):
    """Response of a property image upload."""

    image_hash: str
    image_url: str
    duplicates: list[DuplicateImage] = Field(default_factory=list)
    warning: Optional[str] = None

